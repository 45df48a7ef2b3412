from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional

import httpx

from storyshort.clients.classify import to_media_error
from storyshort.errors import InvalidCredentials, ProviderError


class OpenAIImageClient:
    def __init__(
        self,
        api_key: str | None,
        model: str = "dall-e-3",
        size: str = "1024x1792",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.size = size
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.log = logger or logging.getLogger(__name__)

    @property
    def provider(self) -> str:
        return f"openai:{self.model}"

    def enabled(self) -> bool:
        return bool(self.api_key)

    def generate(self, prompt: str) -> bytes:
        if not self.enabled():
            raise InvalidCredentials("image provider API key is not configured", provider=self.provider)
        payload = {
            "model": self.model,
            "prompt": prompt,
            "n": 1,
            "size": self.size,
            "response_format": "b64_json",
        }
        if self.model == "dall-e-3":
            payload["quality"] = "standard"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = client.post(f"{self.base_url}/images/generations", headers=headers, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise to_media_error(exc, self.provider, self.log) from exc
            try:
                item = response.json()["data"][0]
            except (KeyError, IndexError, TypeError, ValueError) as exc:
                raise ProviderError(f"no image data received from {self.provider}", provider=self.provider) from exc
            image = self._decode(item) if item.get("b64_json") else self._download(client, item.get("url"))
        self.log.info(
            "image generated",
            extra={"model": self.model, "content_length": len(image)},
        )
        return image

    def _decode(self, item: dict) -> bytes:
        try:
            return base64.b64decode(item["b64_json"], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProviderError(f"undecodable image data from {self.provider}", provider=self.provider) from exc

    def _download(self, client: httpx.Client, url: str | None) -> bytes:
        # some models ignore response_format and only return a hosted url
        if not url:
            raise ProviderError(f"no image data received from {self.provider}", provider=self.provider)
        try:
            response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise to_media_error(exc, self.provider, self.log) from exc
        return response.content
