"""
Outputs module for SoundStage.

This package contains the output device interface, the concrete devices
and the output layer that fans commands out to them.
"""

from .base_device import BaseOutputDevice
from .null_device import NullDevice
from .http_device import HttpSpeakerDevice
from .output_layer import BroadcastResult, OutputLayer, SpeakerDevice, SpeakerRole

__all__ = [
    "BaseOutputDevice",
    "NullDevice",
    "HttpSpeakerDevice",
    "BroadcastResult",
    "OutputLayer",
    "SpeakerDevice",
    "SpeakerRole",
]
