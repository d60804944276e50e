"""Viewer-side playback: live queue, transcript reveal and manifest replay."""

from playback.live_queue import LiveAudioQueue, ReadySegment
from playback.output import AudioOutput, PlaybackError, TimedOutput, create_output
from playback.replay import SPEEDS, ReplayPlayer, load
from playback.reveal import RevealMode, RevealSynchronizer, Transcript
from playback.session import DecisionViewSession

__all__ = [
    "SPEEDS",
    "AudioOutput",
    "DecisionViewSession",
    "LiveAudioQueue",
    "PlaybackError",
    "ReadySegment",
    "ReplayPlayer",
    "RevealMode",
    "RevealSynchronizer",
    "TimedOutput",
    "Transcript",
    "create_output",
    "load",
]
