"""
Output Layer for SoundStage.

Registry of output devices with stereo roles and balance factors, and the
fan-out point for every play/stop command the engine issues.

Fan-out rules:
- every registered device is attempted, in registration order
- a failing device is logged and recorded; it never aborts the broadcast
- the aggregate result is successful only if every device succeeded
- commands run against a registry snapshot, so devices may attach/detach
  concurrently with a broadcast
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from soundstage.errors import DeviceFailure
from soundstage.mixer.mixer import StereoMixer
from .base_device import BaseOutputDevice

logger = logging.getLogger(__name__)


class SpeakerRole(str, Enum):
    NONE = "none"
    LEFT = "left"
    RIGHT = "right"


@dataclass
class SpeakerDevice:
    """
    Registry entry for one output device.

    Attributes:
        device: The output device itself
        role: Stereo role (exclusive across the registry for LEFT and RIGHT)
        balance_factor: Multiplier applied to the base volume when role is LEFT/RIGHT
    """
    device: BaseOutputDevice
    role: SpeakerRole = SpeakerRole.NONE
    balance_factor: float = 1.0

    @property
    def device_id(self) -> str:
        return self.device.device_id

    @property
    def gain(self) -> float:
        """Factor actually applied to the base volume."""
        if self.role in (SpeakerRole.LEFT, SpeakerRole.RIGHT):
            return self.balance_factor
        return 1.0


@dataclass
class BroadcastResult:
    """
    Aggregate outcome of a fan-out command.

    Truthy only when every device succeeded (and at least one was attempted).
    """
    action: str
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    volumes: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.succeeded) and not self.failed

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def __bool__(self) -> bool:
        return self.ok


FailureListener = Callable[[DeviceFailure], None]


class OutputLayer:
    """
    Concurrency-safe device registry and command fan-out.
    """

    def __init__(
        self,
        mixer: Optional[StereoMixer] = None,
        left_speaker: Optional[str] = None,
        right_speaker: Optional[str] = None,
        on_failure: Optional[FailureListener] = None,
    ):
        """
        Initialize the output layer.

        Args:
            mixer: Balance mixer (default StereoMixer)
            left_speaker: Device id that takes the LEFT role when it attaches
            right_speaker: Device id that takes the RIGHT role when it attaches
            on_failure: Called with a DeviceFailure for every failed device command
        """
        self._mixer = mixer or StereoMixer()
        self._lock = threading.RLock()
        self._devices: Dict[str, SpeakerDevice] = {}
        self._left_speaker = left_speaker
        self._right_speaker = right_speaker
        # Balance remembered for role holders that attach later
        self._balance_left = 1.0
        self._balance_right = 1.0
        self.on_failure = on_failure

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(
        self,
        device: BaseOutputDevice,
        role: SpeakerRole = SpeakerRole.NONE,
        balance_factor: Optional[float] = None,
    ) -> SpeakerDevice:
        """
        Register (or replace) a device.

        Args:
            device: Output device
            role: Initial role; LEFT/RIGHT demote the current holder to NONE
            balance_factor: Initial balance (defaults to the remembered factor for the role)

        Returns:
            The registry entry
        """
        role = SpeakerRole(role)
        with self._lock:
            entry = SpeakerDevice(device=device)
            self._devices[device.device_id] = entry
            self._set_role_locked(entry, role)
            if balance_factor is not None:
                self.set_balance(device.device_id, balance_factor)
            total = len(self._devices)
        logger.info(
            f"[OUTPUT] Registered {device.device_id} (role={entry.role.value}, "
            f"balance={entry.balance_factor:.2f}, total={total})"
        )
        return entry

    def unregister(self, device_id: str) -> bool:
        with self._lock:
            entry = self._devices.pop(device_id, None)
        if entry is None:
            return False
        logger.info(f"[OUTPUT] Unregistered {device_id}")
        return True

    def device_attached(self, device: BaseOutputDevice) -> SpeakerDevice:
        """
        Presence hook: a device became available.

        Devices whose id matches the configured left/right speaker take that role.
        """
        if device.device_id == self._left_speaker:
            role = SpeakerRole.LEFT
        elif device.device_id == self._right_speaker:
            role = SpeakerRole.RIGHT
        else:
            role = SpeakerRole.NONE
        return self.register(device, role=role)

    def device_detached(self, device_id: str) -> bool:
        """Presence hook: a device went away."""
        return self.unregister(device_id)

    def assign_role(self, device_id: str, role: SpeakerRole) -> bool:
        role = SpeakerRole(role)
        with self._lock:
            entry = self._devices.get(device_id)
            if entry is None:
                logger.warning(f"[OUTPUT] Cannot assign role {role.value}: unknown device {device_id}")
                return False
            self._set_role_locked(entry, role)
        return True

    def set_balance(self, device_id: str, factor: float) -> bool:
        with self._lock:
            entry = self._devices.get(device_id)
            if entry is None:
                logger.warning(f"[OUTPUT] Cannot set balance: unknown device {device_id}")
                return False
            entry.balance_factor = StereoMixer.clamp(factor)
            if entry.role is SpeakerRole.LEFT:
                self._balance_left = entry.balance_factor
            elif entry.role is SpeakerRole.RIGHT:
                self._balance_right = entry.balance_factor
        return True

    def configure_stereo(self, left_id: Optional[str], right_id: Optional[str]) -> bool:
        """
        Assign the stereo pair.

        Every device other than left_id/right_id is reset to NONE. The ids are
        remembered so the roles are restored when those devices (re)attach.

        Returns:
            True only if both devices are registered (stereo enabled)
        """
        with self._lock:
            self._left_speaker = left_id
            self._right_speaker = right_id
            for device_id, entry in self._devices.items():
                if device_id == left_id:
                    self._set_role_locked(entry, SpeakerRole.LEFT)
                elif device_id == right_id:
                    self._set_role_locked(entry, SpeakerRole.RIGHT)
                else:
                    entry.role = SpeakerRole.NONE
            enabled = left_id in self._devices and right_id in self._devices
        logger.info(f"[OUTPUT] Stereo configured left={left_id} right={right_id} (enabled={enabled})")
        return enabled

    def set_stereo_balance(self, left: float, right: float) -> None:
        """Set the balance factor of the LEFT and RIGHT role holders."""
        with self._lock:
            self._balance_left = StereoMixer.clamp(left)
            self._balance_right = StereoMixer.clamp(right)
            for entry in self._devices.values():
                if entry.role is SpeakerRole.LEFT:
                    entry.balance_factor = self._balance_left
                elif entry.role is SpeakerRole.RIGHT:
                    entry.balance_factor = self._balance_right

    def _set_role_locked(self, entry: SpeakerDevice, role: SpeakerRole) -> None:
        if role in (SpeakerRole.LEFT, SpeakerRole.RIGHT):
            for other in self._devices.values():
                if other is not entry and other.role is role:
                    logger.debug(f"[OUTPUT] {other.device_id} loses role {role.value} to {entry.device_id}")
                    other.role = SpeakerRole.NONE
            entry.balance_factor = self._balance_left if role is SpeakerRole.LEFT else self._balance_right
        entry.role = role

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_devices(self) -> bool:
        with self._lock:
            return bool(self._devices)

    def device_ids(self) -> List[str]:
        with self._lock:
            return list(self._devices)

    def get_device(self, device_id: str) -> Optional[SpeakerDevice]:
        with self._lock:
            return self._devices.get(device_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    @property
    def primary(self) -> Optional[str]:
        """First registered device id."""
        with self._lock:
            return next(iter(self._devices), None)

    @property
    def stereo_enabled(self) -> bool:
        with self._lock:
            roles = {entry.role for entry in self._devices.values()}
        return SpeakerRole.LEFT in roles and SpeakerRole.RIGHT in roles

    def role_holder(self, role: SpeakerRole) -> Optional[str]:
        with self._lock:
            for device_id, entry in self._devices.items():
                if entry.role is role:
                    return device_id
        return None

    def get_status(self, base_volume: float = 1.0) -> dict:
        """
        Snapshot of every device with the volume it would receive now.

        Args:
            base_volume: Master render level to apply
        """
        entries = self._snapshot()
        volumes = self._mixer.mix(base_volume, [entry.gain for entry in entries])
        primary = self.primary
        speakers = {}
        for entry, volume in zip(entries, volumes):
            speakers[entry.device_id] = {
                "role": entry.role.value,
                "is_left": entry.role is SpeakerRole.LEFT,
                "is_right": entry.role is SpeakerRole.RIGHT,
                "is_primary": entry.device_id == primary,
                "balance": entry.balance_factor,
                "volume": float(volume),
            }
        return {
            "total": len(entries),
            "stereo_enabled": self.stereo_enabled,
            "speakers": speakers,
        }

    def get_config(self) -> dict:
        with self._lock:
            return {
                "left": self.role_holder(SpeakerRole.LEFT) or self._left_speaker,
                "right": self.role_holder(SpeakerRole.RIGHT) or self._right_speaker,
                "primary": self.primary,
                "stereo_enabled": self.stereo_enabled,
                "balance": {"left": self._balance_left, "right": self._balance_right},
            }

    def _snapshot(self) -> List[SpeakerDevice]:
        with self._lock:
            return [
                SpeakerDevice(entry.device, entry.role, entry.balance_factor)
                for entry in self._devices.values()
            ]

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast_play(self, song_id: str, base_volume: float) -> BroadcastResult:
        """
        Issue play(song_id, effective_volume) to every device.

        effective_volume = clamp01(base_volume * balance) where balance is the
        device's factor for LEFT/RIGHT roles and 1.0 otherwise.

        Args:
            song_id: Sound identifier
            base_volume: Master render level

        Returns:
            BroadcastResult (truthy only if every device succeeded)
        """
        result = BroadcastResult(action="play")
        entries = self._snapshot()
        if not entries:
            logger.warning(f"[OUTPUT] No output devices registered; cannot play {song_id}")
            return result

        volumes = self._mixer.mix(base_volume, [entry.gain for entry in entries])
        for entry, volume in zip(entries, volumes):
            volume = float(volume)
            result.volumes[entry.device_id] = volume
            self._issue(result, entry, lambda d=entry.device, v=volume: d.play(song_id, v))
        return result

    def broadcast_stop(self) -> BroadcastResult:
        """Issue stop() to every device."""
        result = BroadcastResult(action="stop")
        for entry in self._snapshot():
            self._issue(result, entry, entry.device.stop)
        return result

    def _issue(self, result: BroadcastResult, entry: SpeakerDevice, command: Callable[[], None]) -> None:
        try:
            command()
            result.succeeded.append(entry.device_id)
        except Exception as e:
            result.failed[entry.device_id] = str(e)
            failure = e if isinstance(e, DeviceFailure) else DeviceFailure(
                f"{entry.device_id} failed {result.action}: {e}",
                device_id=entry.device_id,
                action=result.action,
            )
            logger.warning(f"[OUTPUT] Device {entry.device_id} failed {result.action}: {e}")
            if self.on_failure is not None:
                self.on_failure(failure)


__all__ = [
    "BroadcastResult",
    "OutputLayer",
    "SpeakerDevice",
    "SpeakerRole",
]
