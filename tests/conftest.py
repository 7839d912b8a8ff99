"""Shared fixtures: controllable time, recorded sleeps and a fake DeepSeek API."""

import json
from datetime import datetime, timedelta

import httpx
import pytest


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def chart_payload(**metadata) -> dict:
    """A chart response that satisfies the chart schema."""
    return {
        "config": {
            "type": "line",
            "data": {
                "labels": ["Jan", "Feb", "Mar"],
                "datasets": [{"label": "Sales", "data": [10, 20, 15]}],
            },
            "options": {"responsive": True},
        },
        "metadata": {
            "chartType": "line",
            "dataPoints": 3,
            "recommendations": ["Consider a bar chart for comparisons"],
            "generatedAt": "2026-01-01T12:00:00Z",
            **metadata,
        },
    }


def analysis_payload() -> dict:
    return {
        "summary": {"rows": 3, "trend": "up"},
        "insights": ["Sales peaked in February"],
        "recommendations": ["Investigate the March dip"],
        "visualizations": ["line"],
    }


def completion(content: str, total_tokens: int = 42) -> dict:
    """Body of a chat completion response."""
    return {
        "id": "cmpl-1",
        "object": "chat.completion",
        "model": "deepseek-chat",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": total_tokens},
    }


class FakeDeepSeek:
    """
    Scripted chat completions endpoint.

    Each queued item is either an httpx.Response, an exception to raise, or
    a string used as the message content of a 200 response. The last item
    is repeated once the queue runs out.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [json.dumps(chart_payload())]
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=completion(item))

    @property
    def calls(self) -> int:
        return len(self.requests)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
