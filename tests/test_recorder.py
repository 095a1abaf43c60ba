import pytest

from canary.models import Canary, CanaryPhase, CanaryStatus
from canary.recorder import PROMOTED, PendingEvent, StatusRecorder
from cluster.backend import EVENT
from conftest import NAMESPACE, new_canary


@pytest.fixture
def canary():
    return Canary.from_dict(new_canary())


def test_set_phase_queues_event_and_condition(canary):
    status = CanaryStatus()
    events = []

    StatusRecorder().set_phase(canary, status, CanaryPhase.PROGRESSING, "Starting", events)

    assert status.phase == CanaryPhase.PROGRESSING
    assert status.last_transition_time
    condition = status.get_condition(PROMOTED)
    assert (condition.status, condition.reason, condition.message) == ("Unknown", "Progressing", "Starting")
    assert events == [PendingEvent("Normal", "Progressing", "Starting")]


def test_phase_change_log_carries_canary_and_phase(canary, caplog):
    with caplog.at_level("INFO", logger="canary.recorder"):
        StatusRecorder().set_phase(canary, CanaryStatus(), CanaryPhase.PROGRESSING, "Starting", [])

    [record] = caplog.records
    assert record.canary == "default/podinfo"
    assert record.phase == "Progressing"


def test_condition_unchanged_keeps_timestamps(canary):
    recorder = StatusRecorder()
    status = CanaryStatus()
    recorder.set_condition(status, "Initialized", "waiting")
    condition = status.get_condition(PROMOTED)
    condition.last_update_time = "2024-01-01T00:00:00Z"

    recorder.set_condition(status, "Initialized", "waiting")

    assert status.get_condition(PROMOTED).last_update_time == "2024-01-01T00:00:00Z"
    assert len(status.conditions) == 1


def test_terminal_condition_status(canary):
    recorder = StatusRecorder()
    status = CanaryStatus()
    events = []

    recorder.set_phase(canary, status, CanaryPhase.FAILED, "rolled back", events, warning=True)

    assert status.get_condition(PROMOTED).status == "False"
    assert events[0].event_type == "Warning"


@pytest.mark.asyncio
async def test_flush_creates_events(accessor, backend, canary):
    recorder = StatusRecorder(accessor, component="test")

    await recorder.flush(canary, [PendingEvent("Normal", "Progressing", "Advance weight 10")])

    [event] = backend.list(EVENT, NAMESPACE)
    assert event["metadata"]["name"].startswith("podinfo.")
    assert event["involvedObject"]["uid"] == canary.uid
    assert event["reason"] == "Progressing"
    assert event["source"] == {"component": "test"}
