"""Shared fixtures for trialflow tests."""

from typing import Any

import pytest

from trialflow.exceptions import NonRetryableRequestError, RequestFailedError
from trialflow.tree.parser import parse_trial_document


def trial(trial_id: str, label: str | None = None, **extra: Any) -> dict[str, Any]:
    """Raw standalone trial record."""
    record = {"id": trial_id, "type": "standalone", "label": label or trial_id}
    record.update(extra)
    return record


def within(group_id: str, children: list[dict], ordering: str | None = "latin_square", **extra: Any) -> dict:
    record = {
        "id": group_id,
        "type": "within",
        "label": group_id,
        "withinSubjectsIVs": ["iv"],
        "childTrials": children,
    }
    if ordering:
        record["trialOrdering"] = ordering
    record.update(extra)
    return record


def between(group_id: str, children: list[dict], **extra: Any) -> dict:
    record = {
        "id": group_id,
        "type": "between",
        "label": group_id,
        "betweenSubjectsIVs": ["cond"],
        "childTrials": children,
    }
    record.update(extra)
    return record


def nodes_of(*records: dict):
    return parse_trial_document(list(records))


async def no_sleep(delay: float) -> None:
    return None


class FakeRemote:
    """In-memory checkpoint endpoint with scriptable failures."""

    def __init__(self):
        self.stored: dict[tuple[str, str], int] = {}
        self.put_calls = 0
        self.get_calls = 0
        self.put_failures: list[Exception] = []
        self.get_failures: list[Exception] = []

    async def get_checkpoint(self, participant_id: str, experiment_id: str) -> int | None:
        self.get_calls += 1
        if self.get_failures:
            raise self.get_failures.pop(0)
        return self.stored.get((participant_id, experiment_id))

    async def put_checkpoint(self, participant_id: str, experiment_id: str, index: int) -> None:
        self.put_calls += 1
        if self.put_failures:
            raise self.put_failures.pop(0)
        self.stored[(participant_id, experiment_id)] = index

    def fail_puts(self, count: int, status: int | None = 500) -> None:
        self.put_failures = [RequestFailedError("/checkpoint", status) for _ in range(count)]

    def fail_gets(self, count: int, status: int | None = 500) -> None:
        if status in (401, 403, 404):
            self.get_failures = [NonRetryableRequestError("/checkpoint", status) for _ in range(count)]
        else:
            self.get_failures = [RequestFailedError("/checkpoint", status) for _ in range(count)]


class FakeSource:
    """Trial document source returning a fixed payload."""

    def __init__(self, document: Any, failures: list[Exception] | None = None):
        self.document = document
        self.failures = list(failures or [])
        self.calls = 0

    async def fetch_trial_document(self, experiment_id: str) -> Any:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.document


class EventRecorder:
    """Collects workflow events in delivery order."""

    def __init__(self, workflow, events):
        self.received: list[tuple[Any, Any]] = []
        for event in events:
            workflow.on(event, lambda payload, event=event: self.received.append((event, payload)))

    def of(self, event) -> list[Any]:
        return [payload for received, payload in self.received if received == event]


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()
