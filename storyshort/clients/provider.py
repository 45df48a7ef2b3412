from __future__ import annotations

import logging
from typing import List, Optional

from storyshort.clients.images import OpenAIImageClient
from storyshort.clients.openrouter import OpenRouterClient
from storyshort.clients.tts import ElevenLabsClient
from storyshort.clients.whisper import LocalWhisperClient
from storyshort.config import Settings
from storyshort.errors import ProviderError
from storyshort.models.domain import CaptionSegment, SpeechResult, StoryboardScene
from storyshort.render.media import measure_audio_bytes


class MediaProvider:
    """The five generative capabilities the pipeline depends on.

    Every method raises only :class:`storyshort.errors.MediaError` subclasses;
    provider-specific failures are classified inside the client adapters.
    """

    def __init__(
        self,
        llm: OpenRouterClient,
        image_client: OpenAIImageClient,
        tts: ElevenLabsClient,
        transcriber: LocalWhisperClient | None = None,
        fallback_image_client: OpenAIImageClient | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.llm = llm
        self.image_client = image_client
        self.fallback_image_client = fallback_image_client
        self.tts = tts
        self.transcriber = transcriber
        self.log = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings, logger: Optional[logging.Logger] = None) -> "MediaProvider":
        log = logger or logging.getLogger(__name__)
        fallback = None
        if settings.fallback_image_model:
            fallback = OpenAIImageClient(
                api_key=settings.openai_api_key,
                model=settings.fallback_image_model,
                size=settings.fallback_image_size,
                base_url=settings.openai_base_url,
                timeout=settings.image_timeout,
                logger=log,
            )
        transcriber = None
        if settings.whisper_local_model:
            transcriber = LocalWhisperClient(model_name=settings.whisper_local_model, logger=log)
        return cls(
            llm=OpenRouterClient(
                api_key=settings.llm_api_key,
                model=settings.llm_model,
                base_url=settings.llm_base_url,
                timeout=settings.llm_timeout,
                max_scenes=settings.max_scenes,
                logger=log,
            ),
            image_client=OpenAIImageClient(
                api_key=settings.openai_api_key,
                model=settings.image_model,
                size=settings.image_size,
                base_url=settings.openai_base_url,
                timeout=settings.image_timeout,
                logger=log,
            ),
            fallback_image_client=fallback,
            tts=ElevenLabsClient(
                api_key=settings.elevenlabs_api_key,
                voice_id=settings.elevenlabs_voice_id,
                model_id=settings.elevenlabs_model_id,
                base_url=settings.elevenlabs_base_url,
                timeout=settings.tts_timeout,
                logger=log,
            ),
            transcriber=transcriber,
            logger=log,
        )

    def script(self, input_text: str) -> str:
        return self.llm.generate_script(input_text)

    def storyboard(self, script: str) -> List[StoryboardScene]:
        return self.llm.generate_storyboard(script)

    def image(self, prompt: str) -> bytes:
        return self.image_client.generate(prompt)

    def has_fallback_image(self) -> bool:
        return self.fallback_image_client is not None

    def fallback_image(self, prompt: str) -> bytes:
        if self.fallback_image_client is None:
            raise ProviderError("no fallback image provider configured")
        return self.fallback_image_client.generate(prompt)

    def speech(self, text: str) -> SpeechResult:
        audio = self.tts.synthesize(text)
        return SpeechResult(audio=audio, duration_seconds=measure_audio_bytes(audio))

    def transcribe(self, audio: bytes) -> List[CaptionSegment]:
        if self.transcriber is None or not self.transcriber.enabled():
            raise ProviderError("no transcription provider configured")
        return self.transcriber.transcribe(audio)
