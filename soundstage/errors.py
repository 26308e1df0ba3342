"""
Error types for SoundStage.

Every condition the engine reports carries a stable ``code`` so it can be
surfaced through the ERROR event payload without leaking exception objects
to subscribers.
"""

from typing import Optional


class SoundStageError(Exception):
    """Base exception for SoundStage errors."""

    code = "SoundStageError"


class NotInitializedError(SoundStageError):
    """Raised when the engine is used before initialize()."""

    code = "NotInitialized"


class InvalidTrackError(SoundStageError):
    """Raised when a track is malformed (missing song id, negative duration)."""

    code = "InvalidTrack"

    def __init__(self, message: str, position: Optional[int] = None) -> None:
        """
        Initialize track error.

        Args:
            message: Error message
            position: 1-based playlist position of the offending entry, if any
        """
        super().__init__(message)
        self.position = position


class InvalidPlaylistError(SoundStageError):
    """Raised when a playlist is malformed or empty."""

    code = "InvalidPlaylist"


class LockedError(SoundStageError):
    """Raised when a transition is attempted while the transition lock is held."""

    code = "Locked"


class NoOutputDevicesError(SoundStageError):
    """Raised when a command is issued with no output devices registered."""

    code = "NoOutputDevices"


class DeviceFailure(SoundStageError):
    """A single output device rejected or failed a command. Never fatal."""

    code = "DeviceFailure"

    def __init__(self, message: str, device_id: Optional[str] = None, action: Optional[str] = None) -> None:
        """
        Initialize device failure.

        Args:
            message: Error message
            device_id: Id of the failing device
            action: Command that failed ("play" or "stop")
        """
        super().__init__(message)
        self.device_id = device_id
        self.action = action


class HandlerFailure(SoundStageError):
    """An event subscriber raised. Never fatal."""

    code = "HandlerFailure"

    def __init__(self, message: str, event_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.event_type = event_type


class ConfigError(SoundStageError, ValueError):
    """Raised when configuration values are invalid."""

    code = "ConfigError"


__all__ = [
    "ConfigError",
    "DeviceFailure",
    "HandlerFailure",
    "InvalidPlaylistError",
    "InvalidTrackError",
    "LockedError",
    "NoOutputDevicesError",
    "NotInitializedError",
    "SoundStageError",
]
