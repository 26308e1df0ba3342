import logging

from .base_device import BaseOutputDevice

logger = logging.getLogger(__name__)


class NullDevice(BaseOutputDevice):
    """A device that discards all commands. Useful for dry runs and long-running tests."""

    def __init__(self, device_id: str, log_commands: bool = False):
        super().__init__(device_id)
        self.log_commands = log_commands

    def play(self, sound_id: str, volume: float) -> None:
        if self.log_commands:
            logger.info(f"[{self.device_id}] play {sound_id} @ {volume:.3f}")

    def stop(self) -> None:
        if self.log_commands:
            logger.info(f"[{self.device_id}] stop")
