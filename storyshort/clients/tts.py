from __future__ import annotations

import logging
from typing import Optional

import httpx

from storyshort.clients.classify import to_media_error
from storyshort.errors import InvalidCredentials, InvalidInputError


class ElevenLabsClient:
    provider = "elevenlabs"

    def __init__(
        self,
        api_key: str | None,
        voice_id: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.voice_id = (voice_id or "").strip()
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key and self.voice_id)

    def synthesize(self, text: str) -> bytes:
        if not self.enabled():
            raise InvalidCredentials("ElevenLabs client is not configured", provider=self.provider)
        if not (text or "").strip():
            raise InvalidInputError("narration text is empty", provider=self.provider)
        url = f"{self.base_url}/v1/text-to-speech/{self.voice_id}"
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.4, "similarity_boost": 0.75},
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        with httpx.Client(timeout=self.timeout) as client:
            try:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise to_media_error(exc, self.provider, self.log) from exc
            audio = response.content
        self.log.info(
            "elevenlabs synthesis completed",
            extra={
                "voice_id": self.voice_id,
                "model_id": self.model_id,
                "content_length": len(audio),
            },
        )
        return audio
