from __future__ import annotations

import os
import tempfile
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

import orjson
import pytest

# Keep server-start log files out of the repo while testing
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="btc-prices-logs-"))


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"", reason: str = "", exc: Optional[BaseException] = None) -> None:
        self.status = status
        self.reason = reason
        self._body = body
        self._exc = exc

    async def __aenter__(self) -> "FakeResponse":
        if self._exc is not None:
            raise self._exc
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def read(self) -> bytes:
        return self._body


class FakeSession:
    """Stands in for ``aiohttp.ClientSession.get``; routes by URL fragment.

    Queued responses for a fragment are served in order and the last one is
    reused for any further calls.
    """

    def __init__(self) -> None:
        self._routes: Dict[str, Deque[FakeResponse]] = defaultdict(deque)
        self.calls: List[Tuple[str, Dict[str, str], Dict[str, str]]] = []

    def add(
        self,
        fragment: str,
        *,
        status: int = 200,
        json: Any = None,
        body: Optional[bytes] = None,
        reason: str = "",
        exc: Optional[BaseException] = None,
    ) -> None:
        if body is None:
            body = orjson.dumps(json) if json is not None else b""
        self._routes[fragment].append(FakeResponse(status=status, body=body, reason=reason, exc=exc))

    def get(self, url: str, params: Optional[Dict[str, str]] = None, headers: Optional[Dict[str, str]] = None) -> FakeResponse:
        self.calls.append((url, dict(params or {}), dict(headers or {})))
        for fragment, queue in self._routes.items():
            if fragment in url:
                if len(queue) > 1:
                    return queue.popleft()
                return queue[0]
        raise AssertionError(f"unexpected upstream call: {url}")

    def count(self, fragment: str) -> int:
        return sum(1 for url, _, _ in self.calls if fragment in url)

    def last_call(self, fragment: str) -> Tuple[str, Dict[str, str], Dict[str, str]]:
        matching = [call for call in self.calls if fragment in call[0]]
        assert matching, f"no call to {fragment}"
        return matching[-1]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 8, 30, 0, tzinfo=timezone.utc))
