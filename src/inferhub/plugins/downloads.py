"""Streaming model downloads.

Artifacts can be several gigabytes, so the response body is never held in
memory: chunks go straight into ``<target>.part`` and the file is moved
into place only after the whole stream arrived.  Any failure (network,
disk, cancellation) removes the ``.part`` file, so nothing half-written
is ever left under the final name.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from urllib.parse import quote

import httpx

from inferhub.config import Settings
from inferhub.plugins.errors import (
    ChecksumOrSizeMismatch,
    DestinationExists,
    DownloadFailed,
    InvalidDestination,
    InvalidRequest,
)
from inferhub.plugins.models import DownloadRequest, DownloadResult, PluginCapability
from inferhub.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_PART_SUFFIX = ".part"


def build_download_url(base_url: str, request: DownloadRequest) -> str:
    """``{base}/{model_id}/resolve/{revision}/{filename}?download=1``"""
    segments = [s for s in request.model_id.split("/") if s]
    segments.append("resolve")
    segments.append(request.revision)
    segments.extend(s for s in request.filename.split("/") if s)
    path = "/".join(quote(s, safe="") for s in segments)
    return f"{base_url.rstrip('/')}/{path}?download=1"


def resolve_target(destination_dir: Path, filename: str) -> Path:
    """Join ``filename`` onto ``destination_dir`` refusing anything that escapes it."""
    try:
        root = destination_dir.resolve()
        target = (root / filename).resolve()
    except ValueError as e:
        raise InvalidDestination(f"Filename {filename!r} is not a valid path: {e}") from e
    if target == root or not target.is_relative_to(root):
        raise InvalidDestination(
            f"Filename '{filename}' resolves outside of the destination directory {root}"
        )
    return target


def _declared_length(response: httpx.Response) -> int | None:
    """Content-Length, when it describes the bytes we will actually read."""
    if response.headers.get("content-encoding", "identity") != "identity":
        return None
    raw = response.headers.get("content-length")
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


class DownloadPipeline:
    """Fetches one named artifact per call and streams it to disk."""

    def __init__(
        self,
        registry: PluginRegistry,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ):
        self.registry = registry
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self.settings.download_timeout),
                headers={"User-Agent": self.settings.user_agent},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def destination_dir(self, plugin_id: str, request: DownloadRequest) -> Path:
        if request.destination_dir and request.destination_dir.strip():
            return Path(request.destination_dir.strip()).expanduser()
        return self.settings.models_dir / plugin_id / request.task_type.value

    async def download(self, plugin_id: str, request: DownloadRequest) -> DownloadResult:
        """Download ``request.filename`` from ``request.model_id``."""
        self.registry.require(plugin_id, PluginCapability.MODEL_DOWNLOAD)

        if not request.model_id.strip():
            raise InvalidRequest("model_id is required")
        if not request.filename.strip():
            raise InvalidRequest("filename is required")
        if not request.revision.strip():
            raise InvalidRequest("revision must not be empty")

        destination_dir = self.destination_dir(plugin_id, request)
        target = resolve_target(destination_dir, request.filename.strip())
        if target.exists() and not request.overwrite:
            raise DestinationExists(f"{target} already exists (set overwrite to replace it)")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InvalidDestination(f"Cannot create {target.parent}: {e}") from e

        url = build_download_url(self.settings.model_repository_url, request)
        headers = {}
        if request.auth_token:
            headers["Authorization"] = f"Bearer {request.auth_token}"

        logger.info("Downloading %s -> %s", url, target)
        part_path = target.with_name(target.name + _PART_SUFFIX)

        try:
            bytes_written = await self._stream_to_file(url, headers, part_path)
            os.replace(part_path, target)
        except httpx.HTTPStatusError as e:
            part_path.unlink(missing_ok=True)
            raise DownloadFailed(
                f"Repository answered HTTP {e.response.status_code} for {request.model_id}/"
                f"{request.filename}@{request.revision}"
            ) from e
        except (httpx.HTTPError, OSError) as e:
            part_path.unlink(missing_ok=True)
            logger.warning("Download of %s failed: %s", url, e)
            raise DownloadFailed(f"Download of {request.filename} failed: {e}") from e
        except (ChecksumOrSizeMismatch, asyncio.CancelledError):
            part_path.unlink(missing_ok=True)
            raise

        logger.info("Saved %s (%d bytes)", target, bytes_written)
        return DownloadResult(saved_path=str(target), bytes_written=bytes_written)

    async def _stream_to_file(self, url: str, headers: dict[str, str], part_path: Path) -> int:
        bytes_written = 0
        async with self.client.stream("GET", url, headers=headers) as response:
            response.raise_for_status()
            expected = _declared_length(response)
            with part_path.open("wb") as fh:
                async for chunk in response.aiter_bytes(self.settings.download_chunk_size):
                    fh.write(chunk)
                    bytes_written += len(chunk)

        if expected is not None and bytes_written != expected:
            raise ChecksumOrSizeMismatch(
                f"Expected {expected} bytes but received {bytes_written}"
            )
        return bytes_written
