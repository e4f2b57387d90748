import asyncio

import httpx
import pytest

from inferhub.plugins.downloads import DownloadPipeline, build_download_url, resolve_target
from inferhub.plugins.errors import (
    CapabilityNotSupported,
    ChecksumOrSizeMismatch,
    DestinationExists,
    DownloadFailed,
    InvalidDestination,
    InvalidRequest,
    UnknownPlugin,
)
from inferhub.plugins.models import DownloadRequest, TaskType


class _ChunkStream(httpx.AsyncByteStream):
    """Yields ``chunks`` and then optionally fails or stalls."""

    def __init__(self, chunks, error: Exception | None = None, stall: bool = False):
        self._chunks = chunks
        self._error = error
        self._stall = stall

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._stall:
            await asyncio.sleep(30)
        if self._error is not None:
            raise self._error


def _pipeline(registry, settings, handler) -> DownloadPipeline:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return DownloadPipeline(registry, settings, client=client)


def _request(**kwargs) -> DownloadRequest:
    data = {"model_id": "org/model", "filename": "model.gguf", "task_type": TaskType.TEXT}
    data.update(kwargs)
    return DownloadRequest(**data)


def test_build_download_url_encodes_segments():
    request = _request(model_id="org/my model", filename="onnx/model v2.onnx", revision="refs/pr/1")
    url = build_download_url("https://models.test/", request)
    assert url == (
        "https://models.test/org/my%20model/resolve/refs%2Fpr%2F1/onnx/model%20v2.onnx?download=1"
    )


def test_resolve_target_rejects_escape(tmp_path):
    with pytest.raises(InvalidDestination):
        resolve_target(tmp_path, "../outside.gguf")
    with pytest.raises(InvalidDestination):
        resolve_target(tmp_path, "/etc/passwd")
    with pytest.raises(InvalidDestination):
        resolve_target(tmp_path, "model\x00.gguf")
    assert resolve_target(tmp_path, "sub/model.gguf") == (tmp_path / "sub" / "model.gguf").resolve()


@pytest.mark.asyncio
async def test_download_streams_to_default_directory(registry, settings):
    payload = b"gguf" * 2000
    seen: dict[str, str] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["query"] = request.url.query.decode()
        seen["auth"] = request.headers.get("authorization", "")
        return httpx.Response(200, content=payload)

    pipeline = _pipeline(registry, settings, handler)
    result = await pipeline.download("llmserver-rs", _request(auth_token="hf_secret"))
    await pipeline.aclose()

    saved = settings.models_dir.resolve() / "llmserver-rs" / "text" / "model.gguf"
    assert result.saved_path == str(saved)
    assert result.bytes_written == len(payload)
    assert saved.stat().st_size == result.bytes_written
    assert saved.read_bytes() == payload
    assert seen["path"] == "/org/model/resolve/main/model.gguf"
    assert seen["query"] == "download=1"
    assert seen["auth"] == "Bearer hf_secret"
    assert not saved.with_name("model.gguf.part").exists()


@pytest.mark.asyncio
async def test_download_to_explicit_directory_with_subfolder(registry, settings, tmp_path):
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/org/model/resolve/v1/onnx/model.onnx"
        return httpx.Response(200, stream=_ChunkStream([b"a" * 700, b"b" * 700]))

    pipeline = _pipeline(registry, settings, handler)
    result = await pipeline.download(
        "llmserver-rs",
        _request(filename="onnx/model.onnx", revision="v1", destination_dir=str(tmp_path / "dl")),
    )

    target = (tmp_path / "dl" / "onnx" / "model.onnx").resolve()
    assert result.saved_path == str(target)
    assert result.bytes_written == 1400 == target.stat().st_size


@pytest.mark.asyncio
async def test_interrupted_stream_leaves_no_file(registry, settings):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            stream=_ChunkStream([b"x" * 4096], error=httpx.ReadError("connection reset")),
        )

    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(DownloadFailed, match="connection reset"):
        await pipeline.download("llmserver-rs", _request())

    target_dir = settings.models_dir / "llmserver-rs" / "text"
    assert not (target_dir / "model.gguf").exists()
    assert not (target_dir / "model.gguf.part").exists()


@pytest.mark.asyncio
async def test_http_error_is_download_failed(registry, settings):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="Unauthorized")

    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(DownloadFailed, match="HTTP 401") as exc_info:
        await pipeline.download("llmserver-rs", _request())

    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)
    assert not (settings.models_dir / "llmserver-rs" / "text" / "model.gguf").exists()


@pytest.mark.asyncio
async def test_short_body_is_size_mismatch(registry, settings):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Length": "100"},
            stream=_ChunkStream([b"y" * 40]),
        )

    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(ChecksumOrSizeMismatch):
        await pipeline.download("llmserver-rs", _request())

    target_dir = settings.models_dir / "llmserver-rs" / "text"
    assert not (target_dir / "model.gguf").exists()
    assert not (target_dir / "model.gguf.part").exists()


@pytest.mark.asyncio
async def test_cancelled_download_removes_partial_file(registry, settings):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=_ChunkStream([b"z" * 2048], stall=True))

    pipeline = _pipeline(registry, settings, handler)
    part = settings.models_dir / "llmserver-rs" / "text" / "model.gguf.part"

    task = asyncio.create_task(pipeline.download("llmserver-rs", _request()))
    for _ in range(100):
        if part.exists():
            break
        await asyncio.sleep(0.02)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not part.exists()
    assert not part.with_name("model.gguf").exists()


@pytest.mark.asyncio
async def test_path_traversal_rejected_before_network(registry, settings):
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b"nope")

    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(InvalidDestination):
        await pipeline.download("llmserver-rs", _request(filename="../../escape.gguf"))
    assert calls == []


@pytest.mark.asyncio
async def test_existing_file_requires_overwrite(registry, settings, tmp_path):
    dest = tmp_path / "models"
    dest.mkdir()
    (dest / "model.gguf").write_bytes(b"old")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"brand-new")

    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(DestinationExists):
        await pipeline.download("llmserver-rs", _request(destination_dir=str(dest)))
    assert (dest / "model.gguf").read_bytes() == b"old"

    result = await pipeline.download(
        "llmserver-rs", _request(destination_dir=str(dest), overwrite=True)
    )
    assert result.bytes_written == len(b"brand-new")
    assert (dest / "model.gguf").read_bytes() == b"brand-new"


@pytest.mark.asyncio
async def test_validation_failures_touch_nothing(registry, settings):
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b"")

    registry.register_definition({"id": "serve-only", "capabilities": ["service_start"]})
    pipeline = _pipeline(registry, settings, handler)
    with pytest.raises(UnknownPlugin):
        await pipeline.download("ghost", _request())
    with pytest.raises(CapabilityNotSupported):
        await pipeline.download("serve-only", _request())
    with pytest.raises(InvalidRequest, match="model_id"):
        await pipeline.download("llmserver-rs", _request(model_id=" "))
    with pytest.raises(InvalidRequest, match="filename"):
        await pipeline.download("llmserver-rs", _request(filename=""))

    assert calls == []
    assert not settings.models_dir.exists() or not any(settings.models_dir.rglob("*.gguf"))
