from __future__ import annotations

import logging
import tempfile
from typing import List, Optional

from storyshort.errors import ProviderError
from storyshort.models.domain import CaptionSegment


class LocalWhisperClient:
    provider = "whisper"

    def __init__(
        self,
        model_name: str = "base",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.model_name = model_name
        self.log = logger or logging.getLogger(__name__)
        self._model = None

    def enabled(self) -> bool:
        return bool(self.model_name)

    def _load_model(self):
        if self._model is None:
            # openai-whisper pulls in torch; it is an optional extra.
            import whisper

            self._model = whisper.load_model(self.model_name)
            self.log.info("local whisper model loaded", extra={"model": self.model_name})
        return self._model

    def transcribe(self, audio: bytes, suffix: str = ".mp3") -> List[CaptionSegment]:
        try:
            model = self._load_model()
            with tempfile.NamedTemporaryFile(suffix=suffix) as tmp:
                tmp.write(audio)
                tmp.flush()
                result = model.transcribe(tmp.name, task="transcribe", verbose=False)
        except Exception as exc:
            raise ProviderError(f"whisper transcription failed: {exc}", provider=self.provider) from exc
        segments = [
            CaptionSegment(
                start_seconds=float(segment["start"]),
                end_seconds=float(segment["end"]),
                text=str(segment["text"]).strip(),
            )
            for segment in result.get("segments", [])
            if str(segment.get("text", "")).strip()
        ]
        self.log.info(
            "whisper transcription completed (local)",
            extra={"model": self.model_name, "segments": len(segments)},
        )
        return segments
