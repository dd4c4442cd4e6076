"""
Shared fixtures: a scripted stand-in for the OpenAI client, a fake clock,
and settings with test-sized limits.
"""

import inspect
import random
from types import SimpleNamespace

import httpx
import openai
import pytest
from loguru import logger

from evaluator.client import ResilientClient
from shared.config import Settings


def embedding_response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=list(vector))])


def chat_response(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _request():
    return httpx.Request("POST", "https://api.openai.com/v1/test")


def api_error(status: int, message: str = "provider error") -> openai.APIStatusError:
    response = httpx.Response(status, request=_request())
    return openai.APIStatusError(message, response=response, body=None)


def api_timeout() -> openai.APITimeoutError:
    return openai.APITimeoutError(request=_request())


class ScriptedEndpoint:
    """Plays back outcomes in order, then ``default``. Exceptions are raised."""

    def __init__(self, outcomes=None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome(**kwargs)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        return outcome


class FakeOpenAI:
    """Just enough of AsyncOpenAI for the resilient client."""

    def __init__(self, embeddings=None, completions=None):
        self.embeddings = embeddings or ScriptedEndpoint()
        self.chat = SimpleNamespace(completions=completions or ScriptedEndpoint())

    @property
    def completions(self) -> ScriptedEndpoint:
        return self.chat.completions


class FakeTime:
    """Clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        app_env="test",
        embedding_dimensions=3,
        generation_model="test-model",
        embedding_model="test-embedding",
        worker_concurrency=2,
    )


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def log_records():
    """Loguru records emitted while the test runs."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def events(records, name):
    return [record for record in records if record["extra"].get("event") == name]


@pytest.fixture
def make_client(settings, fake_time):
    def _make(fake_openai: FakeOpenAI, **kwargs) -> ResilientClient:
        kwargs.setdefault("sleep", fake_time.sleep)
        kwargs.setdefault("clock", fake_time.clock)
        kwargs.setdefault("rng", random.Random(7))
        return ResilientClient(settings=settings, client=fake_openai, **kwargs)

    return _make
