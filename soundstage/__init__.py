"""
SoundStage - audio-playback orchestration for multi-speaker sound systems.
"""

__version__ = "1.0.0"
