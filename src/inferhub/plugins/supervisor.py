"""Process supervisor — one inference service per (plugin, task type) slot.

Slot lifecycle:

    absent -> starting -> running -> stopping -> absent

A start claims its slot before anything is spawned, so two concurrent
starts can never both succeed.  The claim is a short synchronous critical
section; spawning and stopping happen outside of it, so unrelated slots
never wait on each other.

Each service runs in its own session (process group) and writes its
stdout/stderr to ``<logs_dir>/<plugin>-<task>.log``.  A reaper task per
service clears the slot when the process dies on its own.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from inferhub.config import Settings
from inferhub.plugins.errors import InvalidRequest, ProcessSpawnFailed, ServiceAlreadyRunning
from inferhub.plugins.models import (
    PluginCapability,
    ServiceState,
    ServiceStatus,
    StartRequest,
    StartResult,
    StopRequest,
    StopResult,
    TaskType,
)
from inferhub.plugins.registry import LaunchProfile, PluginRegistry

logger = logging.getLogger(__name__)

SlotKey = tuple[str, TaskType]

# Seconds to wait for a killed child before giving up on reaping it
_REAP_TIMEOUT = 5.0


@dataclass
class ManagedProcess:
    plugin_id: str
    task_type: TaskType
    command: str
    args: list[str]
    model_path: str
    log_path: Path
    state: ServiceState = ServiceState.STARTING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    reaper: asyncio.Task | None = field(default=None, repr=False)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    def snapshot(self) -> ServiceStatus:
        return ServiceStatus(
            plugin_id=self.plugin_id,
            task_type=self.task_type,
            pid=self.pid,
            state=self.state,
            command=self.command,
            args=list(self.args),
            model_path=self.model_path,
            started_at=self.started_at,
        )


def _safe_name(value: str) -> str:
    return "".join(c if c.isalnum() or c in "-." else "_" for c in value) or "plugin"


def _send_signal(proc: asyncio.subprocess.Process, force: bool) -> None:
    """Terminate the process group (or single process on Windows)."""
    if hasattr(os, "killpg") and hasattr(os, "getpgid"):
        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            os.killpg(os.getpgid(proc.pid), sig)
        except (ProcessLookupError, PermissionError, OSError):
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass
        return

    try:
        if force:
            proc.kill()
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


class ProcessSupervisor:
    """Owns every spawned service process and its slot."""

    def __init__(self, registry: PluginRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings
        self._lock = threading.Lock()
        self._slots: dict[SlotKey, ManagedProcess] = {}

    # ─── Slot bookkeeping ────────────────────────────────────────────────

    def _claim(self, key: SlotKey, managed: ManagedProcess) -> None:
        with self._lock:
            if key in self._slots:
                raise ServiceAlreadyRunning(key[0], key[1].value)
            self._slots[key] = managed

    def _release(self, key: SlotKey, managed: ManagedProcess) -> None:
        with self._lock:
            if self._slots.get(key) is managed:
                del self._slots[key]

    def _abandon(self, key: SlotKey, managed: ManagedProcess) -> None:
        managed.state = ServiceState.STOPPED
        self._release(key, managed)
        managed.settled.set()

    def _get(self, key: SlotKey) -> ManagedProcess | None:
        with self._lock:
            return self._slots.get(key)

    # ─── Resolution ──────────────────────────────────────────────────────

    def _resolve_binary(
        self, plugin_id: str, request: StartRequest, profile: LaunchProfile
    ) -> str:
        if request.binary_path and request.binary_path.strip():
            return request.binary_path.strip()

        configured = self.settings.plugin_binaries.get(plugin_id)
        if configured:
            return configured

        if profile.binary:
            if Path(profile.binary).is_absolute() or os.sep in profile.binary:
                return profile.binary
            found = shutil.which(profile.binary)
            if found:
                return found
            raise InvalidRequest(
                f"binary_path not provided and '{profile.binary}' was not found on PATH"
            )

        raise InvalidRequest(
            f"binary_path not provided and no default binary configured for '{plugin_id}'"
        )

    def log_path(self, plugin_id: str, task_type: TaskType) -> Path:
        return self.settings.logs_dir / f"{_safe_name(plugin_id)}-{task_type.value}.log"

    # ─── Start ───────────────────────────────────────────────────────────

    async def start(self, plugin_id: str, request: StartRequest) -> StartResult:
        """Spawn the plugin's service for ``request.task_type``."""
        self.registry.require(plugin_id, PluginCapability.SERVICE_START)

        model_path = request.model_path.strip()
        if not model_path:
            raise InvalidRequest("model_path is required")

        profile = self.registry.launch_profile(plugin_id)
        binary = self._resolve_binary(plugin_id, request, profile)
        args = profile.render_args(model_path, request.task_type.value) + list(request.args)

        env = dict(os.environ)
        env.update(profile.env)
        env.update({str(k): str(v) for k, v in request.environment.items()})

        key: SlotKey = (plugin_id, request.task_type)
        managed = ManagedProcess(
            plugin_id=plugin_id,
            task_type=request.task_type,
            command=binary,
            args=args,
            model_path=model_path,
            log_path=self.log_path(plugin_id, request.task_type),
        )
        self._claim(key, managed)

        try:
            managed.process = await self._spawn(managed, env)
        except (OSError, ValueError) as e:
            # ValueError: NUL bytes or '=' in an env name, NUL bytes in argv
            self._abandon(key, managed)
            logger.warning("Failed to spawn '%s' for %s/%s: %s", binary, *_slot_label(key), e)
            raise ProcessSpawnFailed(f"Failed to start '{binary}': {e}") from e
        except BaseException:
            self._abandon(key, managed)
            raise

        try:
            exit_code = await self._wait_exit(managed.process, self.settings.startup_check_seconds)
        except asyncio.CancelledError:
            _send_signal(managed.process, force=True)
            try:
                await asyncio.wait_for(
                    asyncio.shield(managed.process.wait()), timeout=_REAP_TIMEOUT
                )
            except TimeoutError:
                logger.warning("pid %s did not exit after SIGKILL", managed.pid)
            finally:
                self._abandon(key, managed)
            raise

        if exit_code is not None:
            self._abandon(key, managed)
            raise ProcessSpawnFailed(
                f"'{binary}' exited immediately with code {exit_code} "
                f"(see {managed.log_path})"
            )

        managed.state = ServiceState.RUNNING
        managed.settled.set()
        managed.reaper = asyncio.create_task(self._reap(key, managed))

        logger.info(
            "Started %s/%s: pid %s, %s %s",
            *_slot_label(key),
            managed.pid,
            binary,
            " ".join(args),
        )
        return StartResult(pid=managed.pid, command=binary, args=args)

    async def _spawn(
        self, managed: ManagedProcess, env: dict[str, str]
    ) -> asyncio.subprocess.Process:
        managed.log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = managed.log_path.open("a", encoding="utf-8")
        try:
            log_file.write(
                f"--- {managed.started_at.isoformat()} {managed.command} "
                f"{' '.join(managed.args)}\n"
            )
            log_file.flush()
            return await asyncio.create_subprocess_exec(
                managed.command,
                *managed.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
                start_new_session=hasattr(os, "setsid"),
            )
        finally:
            log_file.close()

    @staticmethod
    async def _wait_exit(proc: asyncio.subprocess.Process, timeout: float) -> int | None:
        """Return the exit code if ``proc`` exits within ``timeout`` seconds."""
        if timeout <= 0:
            return proc.returncode
        try:
            return await asyncio.wait_for(proc.wait(), timeout=timeout)
        except TimeoutError:
            return None

    async def _reap(self, key: SlotKey, managed: ManagedProcess) -> None:
        returncode = await managed.process.wait()
        if managed.state is ServiceState.RUNNING:
            logger.warning(
                "Service %s/%s (pid %s) exited unexpectedly with code %s",
                *_slot_label(key),
                managed.pid,
                returncode,
            )
            managed.state = ServiceState.STOPPED
            self._release(key, managed)

    # ─── Stop ────────────────────────────────────────────────────────────

    async def stop(self, plugin_id: str, request: StopRequest) -> StopResult:
        """Stop the service in the slot. An empty slot is not an error."""
        self.registry.require(plugin_id, PluginCapability.SERVICE_STOP)
        terminated = await self._stop_slot((plugin_id, request.task_type))
        return StopResult(task_type=request.task_type, terminated=terminated)

    async def _stop_slot(self, key: SlotKey) -> bool:
        while True:
            managed = self._get(key)
            if managed is None:
                return False
            if managed.state is not ServiceState.STARTING:
                break
            await managed.settled.wait()

        with self._lock:
            if self._slots.get(key) is not managed or managed.state is not ServiceState.RUNNING:
                return False
            managed.state = ServiceState.STOPPING

        try:
            await self._terminate(managed)
        finally:
            managed.state = ServiceState.STOPPED
            self._release(key, managed)

        logger.info("Stopped %s/%s (pid %s)", *_slot_label(key), managed.pid)
        return True

    async def _terminate(self, managed: ManagedProcess) -> None:
        proc = managed.process
        if proc.returncode is None:
            _send_signal(proc, force=False)

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.settings.stop_grace_period)
            return
        except TimeoutError:
            logger.warning(
                "Service %s/%s (pid %s) ignored SIGTERM for %.1fs, killing",
                managed.plugin_id,
                managed.task_type.value,
                managed.pid,
                self.settings.stop_grace_period,
            )

        _send_signal(proc, force=True)
        await proc.wait()

    # ─── Introspection ───────────────────────────────────────────────────

    def status(self, plugin_id: str | None = None) -> list[ServiceStatus]:
        """Snapshot of every occupied slot, optionally for one plugin."""
        if plugin_id is not None:
            self.registry.resolve(plugin_id)
        with self._lock:
            items = list(self._slots.values())
        return [
            m.snapshot() for m in items if plugin_id is None or m.plugin_id == plugin_id
        ]

    def read_logs(self, plugin_id: str, task_type: TaskType, lines: int = 200) -> list[str]:
        """Return the last ``lines`` lines of a slot's service log."""
        self.registry.resolve(plugin_id)
        log_path = self.log_path(plugin_id, task_type)
        if not log_path.exists():
            return []
        try:
            text = log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return []
        return text.strip().splitlines()[-lines:]

    async def shutdown(self) -> None:
        """Stop every running service."""
        with self._lock:
            keys = list(self._slots)
        if not keys:
            return
        logger.info("Stopping %d running service(s)", len(keys))
        await asyncio.gather(*(self._stop_slot(key) for key in keys))


def _slot_label(key: SlotKey) -> tuple[str, str]:
    return key[0], key[1].value
