"""
Tests for log tailing and the detail view.
"""
import pytest

from backend.app.addons.domain.models import AddonStatus, ContainerState
from backend.app.addons.errors import ErrorCode
from backend.app.addons.runtime.adapter import RuntimeTimeout
from backend.app.addons.services.logs import AddonInspector, LogReader, parse_tail

from conftest import engine_error


@pytest.fixture
def reader(registry, runtime) -> LogReader:
    return LogReader(registry, runtime)


@pytest.fixture
def inspector(registry, runtime) -> AddonInspector:
    return AddonInspector(registry, runtime)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, 100),
        ("", 100),
        ("abc", 100),
        (True, 100),
        ("50", 50),
        (" 7 ", 7),
        (0, 1),
        ("-3", 1),
        (5000, 1000),
        ("1000", 1000),
    ],
)
def test_parse_tail(raw, expected):
    assert parse_tail(raw) == expected


class TestLogReader:
    def test_logs_of_running_addon(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value

        result = reader.get_logs("u1", record.id, 3)

        assert result.ok
        assert result.value == ["line 3", "line 4", "line 5"]
        assert runtime.calls[-1] == ("logs", record.container_ref, 3)

    def test_tail_is_clamped_before_reaching_engine(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value
        reader.get_logs("u1", record.id, 5000)
        assert runtime.calls[-1][2] == 1000
        reader.get_logs("u1", record.id, "abc")
        assert runtime.calls[-1][2] == 100

    def test_logs_of_failed_addon_with_container(self, controller, reader, runtime, registry):
        record = controller.install("u1", "nginx").value
        registry.update(record.id, {"status": AddonStatus.FAILED, "internal_endpoint": None})
        assert reader.get_logs("u1", record.id).ok

    def test_foreign_addon_is_not_found(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value
        result = reader.get_logs("u2", record.id)
        assert result.code == ErrorCode.NOT_FOUND
        assert runtime.count("logs") == 0

    def test_stopped_addon_is_gone(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value
        controller.stop("u1", record.id)

        result = reader.get_logs("u1", record.id)

        assert result.code == ErrorCode.GONE
        assert runtime.count("logs") == 0

    def test_container_removed_behind_our_back_is_gone(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value
        runtime.containers.clear()
        assert reader.get_logs("u1", record.id).code == ErrorCode.GONE

    def test_engine_errors(self, controller, reader, runtime):
        record = controller.install("u1", "nginx").value

        runtime.fail_on["logs"] = RuntimeTimeout("slow", operation="logs")
        assert reader.get_logs("u1", record.id).code == ErrorCode.TIMEOUT

        runtime.fail_on["logs"] = engine_error("logs")
        assert reader.get_logs("u1", record.id).code == ErrorCode.RUNTIME_ERROR


class TestInspector:
    def test_running_addon(self, controller, inspector):
        record = controller.install("u1", "nginx").value
        detail = inspector.describe("u1", record.id).value
        assert detail.addon == record
        assert detail.container_state == ContainerState.RUNNING

    def test_stopped_addon_has_no_container(self, controller, inspector, runtime):
        record = controller.install("u1", "nginx").value
        controller.stop("u1", record.id)
        detail = inspector.describe("u1", record.id).value
        assert detail.container_state == ContainerState.NOT_FOUND
        assert runtime.count("inspect") == 0

    def test_engine_error_does_not_touch_record(self, controller, inspector, runtime, registry):
        record = controller.install("u1", "nginx").value
        runtime.fail_on["inspect"] = engine_error("inspect")

        detail = inspector.describe("u1", record.id).value

        assert detail.container_state == ContainerState.UNKNOWN
        assert registry.get(record.id) == record

    def test_exited_container_does_not_change_status(self, controller, inspector, runtime, registry):
        record = controller.install("u1", "nginx").value
        runtime.containers[record.container_ref] = "exited"

        detail = inspector.describe("u1", record.id).value

        assert detail.container_state == ContainerState.EXITED
        assert registry.get(record.id).status == AddonStatus.RUNNING

    def test_foreign_addon_is_not_found(self, controller, inspector):
        record = controller.install("u1", "nginx").value
        assert inspector.describe("u2", record.id).code == ErrorCode.NOT_FOUND
