"""Text-to-speech providers (OpenAI and ElevenLabs).

A provider turns one turn of text into MP3 bytes plus an estimated
duration.  Voices are picked per agent: built-in personas have a fixed
voice, custom agents get one by voice gender, and ``voices`` overrides
from config always win.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# 128 kbps CBR MP3 → 16 000 bytes per second of audio.
_MP3_BYTES_PER_SECOND = 16_000


class TTSError(RuntimeError):
    """Synthesis failed for a single segment."""


def estimate_duration_ms(audio: bytes) -> int:
    return len(audio) * 1000 // _MP3_BYTES_PER_SECOND


class TTSProvider(ABC):
    """Provider-agnostic speech synthesis."""

    name: str

    def __init__(
        self,
        api_key: str | None = None,
        api_key_env: str | None = None,
        voices: dict[str, str] | None = None,
        timeout: int = 60,
    ) -> None:
        self.api_key = api_key or os.getenv(api_key_env or "")
        if not self.api_key:
            raise ValueError(
                f"No API key for {self.name} TTS. "
                f"Set {api_key_env!r} or pass api_key explicitly."
            )
        self.voices = dict(voices or {})
        self.timeout = timeout

    async def synthesize(
        self, text: str, voice_gender: str, agent: str | None = None
    ) -> tuple[bytes, int]:
        """Return ``(mp3_bytes, duration_ms)`` for *text*."""
        if not text.strip():
            raise TTSError("Nothing to synthesize")
        voice = self.voice_for(agent, voice_gender)
        try:
            audio = await self._synthesize_api(text, voice, agent)
        except TTSError:
            raise
        except Exception as exc:
            raise TTSError(f"[{self.name}] synthesis failed for {agent}: {exc}") from exc
        if not audio:
            raise TTSError(f"[{self.name}] returned no audio for {agent}")
        return audio, estimate_duration_ms(audio)

    def voice_for(self, agent: str | None, voice_gender: str) -> str:
        if agent and self.voices.get(agent):
            return self.voices[agent]
        return self._default_voice(agent, voice_gender)

    @abstractmethod
    def _default_voice(self, agent: str | None, voice_gender: str) -> str:
        ...

    @abstractmethod
    async def _synthesize_api(self, text: str, voice: str, agent: str | None) -> bytes:
        ...


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

_OPENAI_VOICES = {
    "rationalist": "onyx",
    "advocate": "nova",
    "contrarian": "echo",
    "visionary": "shimmer",
    "pragmatist": "fable",
    "moderator": "alloy",
}


class OpenAITTS(TTSProvider):
    """OpenAI ``audio.speech`` endpoint via the ``openai`` client."""

    name = "openai"

    def __init__(self, model: str = "tts-1", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "OPENAI_API_KEY")
        super().__init__(**kwargs)
        self.model = model
        import openai
        self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)

    def _default_voice(self, agent: str | None, voice_gender: str) -> str:
        if agent in _OPENAI_VOICES:
            return _OPENAI_VOICES[agent]
        return "nova" if voice_gender == "female" else "onyx"

    async def _synthesize_api(self, text: str, voice: str, agent: str | None) -> bytes:
        response = await self._client.audio.speech.create(
            model=self.model,
            voice=voice,
            input=text,
            response_format="mp3",
        )
        return response.content


# ---------------------------------------------------------------------------
# ElevenLabs
# ---------------------------------------------------------------------------

_ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

_ELEVENLABS_VOICES = {
    "rationalist": "onwK4e9ZLuTAKqWW03F9",  # Daniel
    "advocate": "21m00Tcm4TlvDq8ikWAM",  # Rachel
    "contrarian": "ErXwobaYiN019PkySvjV",  # Antoni
    "visionary": "EXAVITQu4vr4xnSDxMaL",  # Bella
    "pragmatist": "VR6AewLTigWG4xSOukaG",  # Arnold
    "moderator": "2EiwWnXFnvU5JabPnv8n",  # Clyde
}

# (stability, similarity_boost, style)
_ELEVENLABS_SETTINGS = {
    "rationalist": (0.7, 0.8, 0.3),
    "advocate": (0.4, 0.7, 0.6),
    "contrarian": (0.3, 0.7, 0.8),
    "visionary": (0.6, 0.8, 0.4),
    "pragmatist": (0.6, 0.7, 0.3),
    "moderator": (0.7, 0.9, 0.5),
}
_ELEVENLABS_DEFAULT_SETTINGS = (0.5, 0.75, 0.5)


class ElevenLabsTTS(TTSProvider):
    """ElevenLabs REST API over ``httpx``."""

    name = "elevenlabs"

    def __init__(self, model: str = "eleven_multilingual_v2", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "ELEVENLABS_API_KEY")
        super().__init__(**kwargs)
        self.model = model

    def _default_voice(self, agent: str | None, voice_gender: str) -> str:
        if agent in _ELEVENLABS_VOICES:
            return _ELEVENLABS_VOICES[agent]
        return _ELEVENLABS_VOICES["advocate" if voice_gender == "female" else "rationalist"]

    async def _synthesize_api(self, text: str, voice: str, agent: str | None) -> bytes:
        stability, similarity, style = _ELEVENLABS_SETTINGS.get(
            agent or "", _ELEVENLABS_DEFAULT_SETTINGS
        )
        headers = {
            "xi-api-key": self.api_key,
            "accept": "audio/mpeg",
            "content-type": "application/json",
        }
        payload = {
            "text": text,
            "model_id": self.model,
            "voice_settings": {
                "stability": stability,
                "similarity_boost": similarity,
                "style": style,
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                _ELEVENLABS_URL.format(voice_id=voice), headers=headers, json=payload
            )
            if resp.status_code != 200:
                raise TTSError(f"ElevenLabs returned HTTP {resp.status_code}: {resp.text[:200]}")
            return resp.content


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_TTS_PROVIDERS: dict[str, type[TTSProvider]] = {
    "openai": OpenAITTS,
    "elevenlabs": ElevenLabsTTS,
}


def create_tts_provider(name: str, **kwargs: Any) -> TTSProvider:
    """Instantiate a TTS provider by its short name."""
    cls = _TTS_PROVIDERS.get(name.lower())
    if cls is None:
        raise ValueError(
            f"Unknown TTS provider {name!r}. Choose from {list(_TTS_PROVIDERS)}"
        )
    return cls(**kwargs)
