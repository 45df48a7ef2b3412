from __future__ import annotations

from typing import Dict
from uuid import UUID

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from storyshort.errors import StoreError


class AssetKind:
    IMAGES = "images"
    AUDIO = "audio"
    CAPTIONS = "captions"
    FINAL = "final"


class S3StorageClient:
    """Object store for job assets.

    Keys follow ``{prefix}/{job_id}/{kind}/{name}`` so any tool can rebuild a job's
    asset locations from its id. Without credentials the client keeps objects in
    memory, which is what tests and local runs use.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        folder_prefix: str = "videos",
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.folder_prefix = self._normalize_path(folder_prefix)
        self._memory: Dict[str, bytes] = {}
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def asset_key(self, job_id: UUID, kind: str, name: str) -> str:
        parts = [self.folder_prefix, str(job_id), kind, name]
        return "/".join(part for part in parts if part)

    def image_key(self, job_id: UUID, scene_index: int) -> str:
        return self.asset_key(job_id, AssetKind.IMAGES, f"scene-{scene_index + 1}.png")

    def audio_key(self, job_id: UUID) -> str:
        return self.asset_key(job_id, AssetKind.AUDIO, "narration.mp3")

    def captions_key(self, job_id: UUID) -> str:
        return self.asset_key(job_id, AssetKind.CAPTIONS, "captions.srt")

    def final_video_key(self, job_id: UUID) -> str:
        return self.asset_key(job_id, AssetKind.FINAL, f"{job_id}.mp4")

    def put(self, key: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        key = self._normalize_path(key)
        if self._client is None:
            self._memory[key] = content
            return self.public_url(key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise StoreError(f"S3 upload failed for {key}: {exc}") from exc
        return self.public_url(key)

    def put_text(self, key: str, text: str, content_type: str = "text/plain; charset=utf-8") -> str:
        return self.put(key, text.encode("utf-8"), content_type)

    def get(self, url: str) -> bytes:
        key = self.key_from_url(url)
        if self._client is None:
            if key not in self._memory:
                raise StoreError(f"object not found in memory storage: {key}")
            return self._memory[key]
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            return body.read()
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StoreError(f"S3 download failed for {key}: {exc}") from exc

    def delete(self, url: str) -> None:
        key = self.key_from_url(url)
        if self._client is None:
            self._memory.pop(key, None)
            return
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StoreError(f"S3 delete failed for {key}: {exc}") from exc

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        return f"{self._url_base()}/{clean}"

    def key_from_url(self, url: str) -> str:
        base = self._url_base()
        value = (url or "").strip()
        if value.startswith(base + "/"):
            value = value[len(base) + 1 :]
        return self._normalize_path(value.split("?", 1)[0])

    def _url_base(self) -> str:
        if self.public_url_base:
            return self.public_url_base
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}"
        return f"/{self.bucket}"

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
