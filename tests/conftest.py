"""
Shared fixtures for the addon tests.

- FakeRuntime: in-memory container engine recording every call
- registry / catalog / controller wired the way AddonContext wires them
- an API client backed by the fake engine
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from backend.app.addons.context import AddonContext
from backend.app.addons.domain.models import ContainerHandle, ContainerSpec, ContainerState
from backend.app.addons.lifecycle import LifecycleController
from backend.app.addons.runtime.adapter import ContainerNotFound, ContainerRuntimeAdapter, RuntimeAdapterError
from backend.app.addons.services.catalog import AddonCatalog
from backend.app.addons.services.registry import AddonRegistry
from backend.app.config import Settings
from backend.app.main import create_app


class FakeRuntime(ContainerRuntimeAdapter):
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.containers: Dict[str, str] = {}  # ref -> state
        self.logs: Dict[str, List[str]] = {}
        self.calls: List[tuple] = []
        self.specs: List[ContainerSpec] = []
        self.fail_on: Dict[str, Exception] = {}
        # when set, stop() waits on it so tests can hold a transition open
        self.stop_gate: Optional[threading.Event] = None
        self._seq = 0

    def _record(self, op: str, *args) -> None:
        with self.lock:
            self.calls.append((op,) + args)

    def count(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)

    def _maybe_fail(self, op: str) -> None:
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    def create_and_start(self, spec: ContainerSpec) -> ContainerHandle:
        self._record("create", spec.image)
        self.specs.append(spec)
        self._maybe_fail("create")
        with self.lock:
            self._seq += 1
            ref = f"c{self._seq:04d}" + "0" * 60
            self.containers[ref] = "running"
            self.logs[ref] = [f"line {i}" for i in range(1, 6)]
        return ContainerHandle(container_ref=ref, internal_endpoint=f"http://127.0.0.1:{49000 + self._seq}")

    def stop(self, container_ref: str) -> None:
        self._record("stop", container_ref)
        if self.stop_gate is not None:
            self.stop_gate.wait(timeout=5)
        self._maybe_fail("stop")
        if container_ref not in self.containers:
            raise ContainerNotFound("gone", operation="stop", container_ref=container_ref)
        self.containers[container_ref] = "exited"

    def remove(self, container_ref: str) -> None:
        self._record("remove", container_ref)
        self._maybe_fail("remove")
        if self.containers.pop(container_ref, None) is None:
            raise ContainerNotFound("gone", operation="remove", container_ref=container_ref)

    def fetch_logs(self, container_ref: str, tail: int) -> List[str]:
        self._record("logs", container_ref, tail)
        self._maybe_fail("logs")
        if container_ref not in self.containers:
            raise ContainerNotFound("gone", operation="logs", container_ref=container_ref)
        return self.logs[container_ref][-tail:]

    def inspect_status(self, container_ref: str) -> ContainerState:
        self._record("inspect", container_ref)
        self._maybe_fail("inspect")
        state = self.containers.get(container_ref)
        return ContainerState(state) if state else ContainerState.NOT_FOUND


def engine_error(op: str, message: str = "engine exploded") -> RuntimeAdapterError:
    return RuntimeAdapterError(message, operation=op)


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def addons_dir(tmp_path: Path) -> Path:
    d = tmp_path / "addons"
    (d / "echo").mkdir(parents=True)
    (d / "echo" / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    (d / "echo" / "manifest.json").write_text(
        '{"name": "Echo", "description": "Echo addon", "port": 9090}', encoding="utf-8"
    )
    return d


@pytest.fixture
def settings(tmp_path: Path, addons_dir: Path) -> Settings:
    return Settings(
        addons_dir=addons_dir,
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        health_timeout=0,
    )


@pytest.fixture
def registry(settings: Settings) -> AddonRegistry:
    return AddonRegistry(settings.records_path)


@pytest.fixture
def catalog(settings: Settings) -> AddonCatalog:
    return AddonCatalog(settings.addons_dir)


@pytest.fixture
def controller(registry: AddonRegistry, runtime: FakeRuntime, catalog: AddonCatalog) -> LifecycleController:
    return LifecycleController(registry, runtime, catalog)


@pytest.fixture
def context(settings: Settings, runtime: FakeRuntime, registry: AddonRegistry) -> AddonContext:
    return AddonContext.build(settings, runtime=runtime, registry=registry)


@pytest.fixture
def client(settings: Settings, context: AddonContext):
    app = create_app(settings, context=context, configure_logging=False)
    with TestClient(app) as c:
        yield c
