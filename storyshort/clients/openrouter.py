from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

import httpx

from storyshort.clients.classify import to_media_error
from storyshort.errors import InvalidInputError, ProviderError
from storyshort.models.domain import StoryboardScene
from storyshort.services.script_text import split_sentences, strip_meta, to_plain_narration


class OpenRouterClient:
    """Chat-completions client used for the script and storyboard stages."""

    provider = "openrouter"

    def __init__(
        self,
        api_key: str | None,
        model: str = "anthropic/claude-3.5-sonnet",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 60.0,
        max_scenes: int = 8,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_scenes = max(1, max_scenes)
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def generate_script(self, input_text: str) -> str:
        idea = (input_text or "").strip()
        if not idea:
            raise InvalidInputError("input text is empty", provider=self.provider)
        if not self.enabled():
            return self._fallback_script(idea)
        raw = self._complete(self._build_script_prompt(idea), max_tokens=800)
        script = to_plain_narration(strip_meta(raw))
        if not script:
            raise ProviderError("script generation returned empty text", provider=self.provider)
        return script

    def generate_storyboard(self, script: str) -> List[StoryboardScene]:
        text = (script or "").strip()
        if not text:
            raise InvalidInputError("script is empty", provider=self.provider)
        if not self.enabled():
            return self._fallback_storyboard(text)
        raw = self._complete(self._build_storyboard_prompt(text), max_tokens=2000)
        return self._parse_storyboard(raw)

    def _complete(self, prompt: str, max_tokens: int) -> str:
        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": 0.7,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=self.timeout) as client:
            try:
                response = client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise to_media_error(exc, self.provider, self.log) from exc
            body = response.json()
        self.log.info("llm response received", extra={"model": self.model})
        return self._extract_text(body)

    def _extract_text(self, payload: dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            self.log.error("llm response does not include choices", extra={"payload": payload})
            raise ProviderError("LLM response does not include choices", provider=self.provider)
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise ProviderError("LLM response missing message content", provider=self.provider)
        return content

    def _parse_storyboard(self, raw: str) -> List[StoryboardScene]:
        try:
            data = json.loads(self._strip_code_fence(raw))
        except json.JSONDecodeError as exc:
            raise ProviderError(f"storyboard is not valid JSON: {exc}", provider=self.provider) from exc
        items = data.get("scenes") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ProviderError("storyboard JSON has no scenes array", provider=self.provider)
        scenes: List[StoryboardScene] = []
        for idx, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                raise ProviderError(f"scene {idx} is not an object", provider=self.provider)
            narration = (item.get("narration") or item.get("text") or item.get("description") or "").strip()
            prompt = (item.get("image_prompt") or "").strip()
            if not narration or not prompt:
                raise ProviderError(f"scene {idx} missing required fields", provider=self.provider)
            scenes.append(StoryboardScene(narration_text=narration, image_prompt=prompt))
        if not scenes:
            raise InvalidInputError("storyboard contains no scenes", provider=self.provider)
        return scenes[: self.max_scenes]

    def _strip_code_fence(self, payload: str) -> str:
        text = payload.strip()
        if text.startswith("```"):
            text = text[3:]
            if text.lower().startswith("json"):
                text = text[4:]
            text = text.lstrip("\n\r")
        if text.endswith("```"):
            text = text[:-3]
        return text.strip()

    def _build_script_prompt(self, idea: str) -> str:
        return (
            "Write the narration for a 30-45 second vertical short video. "
            "Use three labelled parts: HOOK:, BODY:, CTA:. "
            "Plain spoken sentences only, no stage directions, no emojis. "
            f"Story idea: {idea}"
        )

    def _build_storyboard_prompt(self, script: str) -> str:
        return (
            "Create a storyboard for this narration. Return only valid JSON of the form "
            '{"scenes": [{"narration": str, "image_prompt": str}]}. '
            "Split the narration into consecutive slices, one per scene, without changing words. "
            "image_prompt is a detailed visual description for a vertical 1080x1920 illustration. "
            f"Use between 3 and {self.max_scenes} scenes.\n\n"
            f"Narration:\n{script}"
        )

    def _fallback_script(self, idea: str) -> str:
        return (
            f"{idea.rstrip('.')}. "
            "It started like any other day, but something was about to change. "
            "One small moment turned into a story worth telling. "
            "Follow for more stories like this."
        )

    def _fallback_storyboard(self, script: str) -> List[StoryboardScene]:
        sentences = split_sentences(script) or [script]
        count = min(len(sentences), self.max_scenes)
        per_scene = -(-len(sentences) // count)
        scenes: List[StoryboardScene] = []
        for start in range(0, len(sentences), per_scene):
            narration = " ".join(sentences[start : start + per_scene])
            scenes.append(
                StoryboardScene(
                    narration_text=narration,
                    image_prompt=f"Cinematic vertical illustration: {narration}",
                )
            )
        return scenes
