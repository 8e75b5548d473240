import json
from typing import Any, List, Optional

import pytest

from exscout_core.pattern_store import PatternStore
from exscout_core.surface import ResponseRecord


class FakeResponseSource:
    """In-memory response stream; tests push records with ``emit``."""

    def __init__(self):
        self.callbacks: List[Any] = []
        self.subscribe_calls = 0

    def subscribe(self, callback) -> None:
        self.subscribe_calls += 1
        if callback not in self.callbacks:
            self.callbacks.append(callback)

    def unsubscribe(self, callback) -> None:
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    async def emit(self, record: ResponseRecord) -> None:
        for callback in list(self.callbacks):
            await callback(record)


def json_response(url: str, payload: Any, headers: Optional[dict] = None, status: int = 200) -> ResponseRecord:
    all_headers = {"content-type": "application/json; charset=utf-8"}
    all_headers.update(headers or {})
    return ResponseRecord(url=url, status_code=status, headers=all_headers, body_text=json.dumps(payload))


@pytest.fixture
def response_source():
    return FakeResponseSource()


@pytest.fixture
def store(tmp_path):
    return PatternStore(tmp_path / "patterns.sqlite")
