"""Text-to-speech providers and the debate audio pipeline."""

from audio.pipeline import LiveAudioSession, TTSPipeline, build_manifest, gap_between
from audio.tts import ElevenLabsTTS, OpenAITTS, TTSError, TTSProvider, create_tts_provider

__all__ = [
    "ElevenLabsTTS",
    "LiveAudioSession",
    "OpenAITTS",
    "TTSError",
    "TTSPipeline",
    "TTSProvider",
    "build_manifest",
    "create_tts_provider",
    "gap_between",
]
