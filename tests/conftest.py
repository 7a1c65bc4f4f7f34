from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import pytest

from datalens.core.session import AnalysisSession
from datalens.utils.settings import Settings


class FakeResponse:
    def __init__(self, text):
        self._text = text

    def text(self):
        return self._text


class FakeClient:
    """Replies from a script (last reply repeats) or raises `error`."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[BaseException] = None, delay: float = 0.0):
        self.replies = list(replies or ["Insight one.\nInsight two."])
        self.error = error
        self.delay = delay
        self.prompts: List[str] = []

    async def generate_content(self, prompt: str):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return FakeResponse(reply)


class ControlledClient:
    """Each call waits until the test resolves its future."""

    def __init__(self):
        self.pending: List[Tuple[str, asyncio.Future]] = []

    async def generate_content(self, prompt: str):
        fut = asyncio.get_running_loop().create_future()
        self.pending.append((prompt, fut))
        return FakeResponse(await fut)

    async def wait_for_calls(self, n: int, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.pending) < n:
            if loop.time() > deadline:
                raise AssertionError(f"expected {n} LLM calls, got {len(self.pending)}")
            await asyncio.sleep(0.001)


SAMPLE_CSV = """region,units,price,note
North,10,2.5,first
South,20,3.5,second
East,30,4.5,third
"""


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(llm_timeout=1.0, llm_retries=0)


@pytest.fixture
def make_session(fast_settings):
    def _make(client=None, **overrides) -> AnalysisSession:
        settings = fast_settings.with_overrides(**overrides) if overrides else fast_settings
        return AnalysisSession(client=client or FakeClient(), settings=settings)
    return _make


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return SAMPLE_CSV.encode("utf-8")
