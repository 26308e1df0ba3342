from abc import ABC, abstractmethod


class BaseOutputDevice(ABC):
    """
    Abstract base class for all output devices.

    A device renders a sound identifier at a volume; it owns decoding and
    playback. All devices must implement play() and stop(). Either may raise;
    the output layer treats a raise as a per-device failure.
    """

    def __init__(self, device_id: str):
        if not device_id:
            raise ValueError("Output device requires a non-empty device_id")
        self.device_id = device_id

    @abstractmethod
    def play(self, sound_id: str, volume: float) -> None:
        """
        Render a sound on this device.

        Args:
            sound_id: Opaque sound identifier
            volume: Effective volume in [0, 1]
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """
        Stop whatever this device is rendering.
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.device_id!r})"
