import httpx
import pytest

from inferhub.plugins.downloads import DownloadPipeline
from inferhub.plugins.errors import InvalidRequest, ServiceAlreadyRunning, UnknownPlugin
from inferhub.plugins.manager import PluginManager
from inferhub.plugins.models import StartRequest, StopRequest, TaskType
from inferhub.plugins.supervisor import ProcessSupervisor


@pytest.fixture
async def manager(registry, settings):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x00" * 3000)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    mgr = PluginManager(
        registry=registry,
        supervisor=ProcessSupervisor(registry, settings),
        downloads=DownloadPipeline(registry, settings, client=client),
    )
    yield mgr
    await mgr.shutdown()
    await client.aclose()


@pytest.mark.asyncio
async def test_llmserver_service_scenario(manager):
    first = await manager.start(
        "llmserver-rs", StartRequest(model_path="/m/a.gguf", task_type=TaskType.TEXT)
    )
    assert first.pid > 0

    with pytest.raises(ServiceAlreadyRunning):
        await manager.start(
            "llmserver-rs", StartRequest(model_path="/m/other.gguf", task_type=TaskType.TEXT)
        )

    stopped = await manager.stop("llmserver-rs", StopRequest(task_type=TaskType.TEXT))
    assert stopped.terminated is True

    third = await manager.start(
        "llmserver-rs", StartRequest(model_path="/m/a.gguf", task_type=TaskType.TEXT)
    )
    assert third.pid > 0
    assert [s.model_path for s in manager.services("llmserver-rs")] == ["/m/a.gguf"]


@pytest.mark.asyncio
async def test_dispatch_routes_actions(manager, settings):
    plugins = await manager.dispatch(None, "list")
    assert [p.id for p in plugins] == ["llmserver-rs", "download-only"]

    downloaded = await manager.dispatch(
        "llmserver-rs",
        "download",
        {"model_id": "org/model", "filename": "model.gguf", "revision": "main", "task_type": "text"},
    )
    assert downloaded.bytes_written == 3000
    assert downloaded.saved_path.startswith(str(settings.models_dir.resolve()))

    started = await manager.dispatch(
        "llmserver-rs", "start", {"model_path": "/m/a.gguf", "task_type": "tts"}
    )
    assert started.pid > 0

    stopped = await manager.dispatch("llmserver-rs", "stop", {"task_type": "tts"})
    assert stopped.terminated is True


@pytest.mark.asyncio
async def test_dispatch_rejects_bad_input(manager):
    with pytest.raises(InvalidRequest, match="Unknown action"):
        await manager.dispatch("llmserver-rs", "restart")
    with pytest.raises(InvalidRequest, match="plugin_id"):
        await manager.dispatch(None, "stop", {"task_type": "text"})
    with pytest.raises(InvalidRequest, match="StopRequest"):
        await manager.dispatch("llmserver-rs", "stop", {"task_type": "video"})


@pytest.mark.asyncio
async def test_unknown_plugin_has_no_side_effects(manager, settings):
    with pytest.raises(UnknownPlugin):
        await manager.start("ghost", StartRequest(model_path="/m/a.gguf", task_type=TaskType.TEXT))
    with pytest.raises(UnknownPlugin):
        await manager.stop("ghost", StopRequest(task_type=TaskType.TEXT))
    with pytest.raises(UnknownPlugin):
        await manager.dispatch(
            "ghost", "download", {"model_id": "org/m", "filename": "m.gguf", "task_type": "text"}
        )

    assert manager.services() == []
    assert not (settings.models_dir / "ghost").exists()


def test_bootstrap_creates_directories(settings, tmp_path):
    settings.plugins_dir = tmp_path / "plugins"
    mgr = PluginManager.bootstrap(settings)

    assert settings.models_dir.is_dir()
    assert settings.logs_dir.is_dir()
    assert "llmserver-rs" in mgr.registry
