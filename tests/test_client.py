import asyncio
import random
from types import SimpleNamespace

import httpx
import pytest

from conftest import (
    FakeOpenAI,
    ScriptedEndpoint,
    api_error,
    api_timeout,
    chat_response,
    embedding_response,
    events,
)
from evaluator.client import ResilientClient, is_retryable
from shared.errors import (
    CircuitOpenError,
    DeadlineExceededError,
    MaxRetriesExceededError,
    PermanentProviderError,
    ResponseValidationError,
)


def generating(*outcomes, default=None):
    return FakeOpenAI(completions=ScriptedEndpoint(outcomes, default=default))


def embedding(*outcomes, default=None):
    return FakeOpenAI(embeddings=ScriptedEndpoint(outcomes, default=default))


class TestIsRetryable:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (api_error(429), True),
            (api_error(500), True),
            (api_error(502), True),
            (api_error(503), True),
            (api_error(504), True),
            (api_error(400), False),
            (api_error(401), False),
            (api_error(403), False),
            (api_error(404), False),
            (api_timeout(), True),
            (httpx.ConnectError("connection refused"), True),
            (ConnectionResetError("connection reset by peer"), True),
            (RuntimeError("unexpected EOF"), True),
            (RuntimeError("read: timed out"), True),
            (RuntimeError("temporary failure in name resolution"), True),
            (RuntimeError("invalid argument"), False),
            (RuntimeError("context canceled"), False),
            (RuntimeError("context deadline exceeded"), False),
            (DeadlineExceededError("out of time"), False),
            (asyncio.CancelledError(), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected

    def test_same_error_same_verdict(self):
        error = api_error(503)
        assert [is_retryable(error) for _ in range(3)] == [True, True, True]

    def test_caller_abort_wins_over_status(self):
        assert is_retryable(api_error(503, "context canceled")) is False


class TestBackoff:
    def test_delays_stay_within_jitter_bounds(self, settings):
        client = ResilientClient(settings=settings, client=FakeOpenAI(), rng=random.Random(1))
        for attempt in range(1, 12):
            nominal = min(90.0, 1.0 * 2 ** (attempt - 1))
            for _ in range(20):
                delay = client.backoff_delay(attempt)
                assert nominal * 0.875 <= delay <= nominal * 1.125

    def test_delay_is_capped(self, settings):
        client = ResilientClient(settings=settings, client=FakeOpenAI(), rng=random.Random(1))
        assert client.backoff_delay(30) <= 90.0 * 1.125


class TestGenerate:
    def test_success(self, make_client):
        fake = generating(chat_response("hello"))
        client = make_client(fake)

        assert asyncio.run(client.generate("test-model", "prompt")) == "hello"
        call = fake.completions.calls[0]
        assert call["model"] == "test-model"
        assert call["messages"] == [{"role": "user", "content": "prompt"}]
        assert call["temperature"] == 0.1

    def test_retries_transient_errors_then_succeeds(self, make_client, fake_time, log_records):
        fake = generating(api_error(503), api_timeout(), chat_response("ok"))
        client = make_client(fake)

        assert asyncio.run(client.generate("test-model", "prompt")) == "ok"
        assert len(fake.completions.calls) == 3
        assert len(fake_time.sleeps) == 2
        assert client.circuit_status() == (0, False)
        assert [r["extra"]["attempt"] for r in events(log_records, "retry")] == [1, 2]

    def test_gives_up_after_max_retries(self, make_client, fake_time):
        fake = generating(default=api_error(503))
        client = make_client(fake)

        with pytest.raises(MaxRetriesExceededError) as exc_info:
            asyncio.run(client.generate("test-model", "prompt"))

        assert len(fake.completions.calls) == 4
        assert len(fake_time.sleeps) == 3
        assert exc_info.value.status_code == 503
        assert "max retries (3) exceeded" in str(exc_info.value)
        assert client.circuit_status() == (1, False)

    def test_permanent_error_is_not_retried(self, make_client, fake_time):
        fake = generating(default=api_error(401, "invalid api key"))
        client = make_client(fake)

        with pytest.raises(PermanentProviderError) as exc_info:
            asyncio.run(client.generate("test-model", "prompt"))

        assert len(fake.completions.calls) == 1
        assert fake_time.sleeps == []
        assert exc_info.value.status_code == 401
        assert client.circuit_status() == (1, False)

    @pytest.mark.parametrize(
        "response",
        [
            SimpleNamespace(choices=[]),
            SimpleNamespace(choices=[SimpleNamespace(message=None)]),
            chat_response("   "),
            None,
        ],
    )
    def test_unusable_response_is_not_retried(self, make_client, fake_time, response):
        fake = generating(response)
        client = make_client(fake)

        with pytest.raises(ResponseValidationError):
            asyncio.run(client.generate("test-model", "prompt"))

        assert len(fake.completions.calls) == 1
        assert fake_time.sleeps == []

    @pytest.mark.parametrize("model, prompt", [("", "prompt"), ("  ", "prompt"), ("m", ""), ("m", " \n")])
    def test_empty_arguments(self, make_client, model, prompt):
        fake = generating(chat_response("unused"))
        client = make_client(fake)

        with pytest.raises(ValueError):
            asyncio.run(client.generate(model, prompt))
        assert fake.completions.calls == []

    def test_ping_uses_configured_model(self, make_client):
        fake = generating(chat_response("AI learns patterns from data."))
        client = make_client(fake)

        assert asyncio.run(client.ping()) == "AI learns patterns from data."
        assert fake.completions.calls[0]["model"] == "test-model"


class TestEmbed:
    def test_success(self, make_client):
        fake = embedding(embedding_response([0.1, 0.2, 0.3]))
        client = make_client(fake)

        assert asyncio.run(client.embed("  some text  ")) == [0.1, 0.2, 0.3]
        assert fake.embeddings.calls[0] == {"model": "test-embedding", "input": "some text"}

    def test_long_text_is_truncated(self, make_client, log_records):
        fake = embedding(embedding_response([1.0]))
        client = make_client(fake)

        asyncio.run(client.embed("x" * 12_000))

        assert len(fake.embeddings.calls[0]["input"]) == 10_000
        assert any("truncating" in r["message"] for r in log_records)

    def test_empty_text(self, make_client):
        fake = embedding(embedding_response([1.0]))
        client = make_client(fake)

        with pytest.raises(ValueError):
            asyncio.run(client.embed("   "))
        assert fake.embeddings.calls == []

    @pytest.mark.parametrize(
        "response",
        [
            SimpleNamespace(data=[]),
            embedding_response([]),
            embedding_response([0.1, float("nan")]),
            embedding_response([float("inf")]),
        ],
    )
    def test_invalid_vector(self, make_client, fake_time, response):
        fake = embedding(response)
        client = make_client(fake)

        with pytest.raises(ResponseValidationError):
            asyncio.run(client.embed("text"))
        assert len(fake.embeddings.calls) == 1
        assert fake_time.sleeps == []


class TestCircuitBreaker:
    def test_opens_after_consecutive_failures(self, make_client, log_records):
        fake = generating(default=api_error(401))
        client = make_client(fake)

        for _ in range(5):
            with pytest.raises(PermanentProviderError):
                asyncio.run(client.generate("test-model", "prompt"))

        assert client.circuit_status() == (5, True)
        assert len(events(log_records, "circuit_open")) == 1

        with pytest.raises(CircuitOpenError) as exc_info:
            asyncio.run(client.generate("test-model", "prompt"))
        assert "too many consecutive errors (5)" in str(exc_info.value)
        assert len(fake.completions.calls) == 5

    def test_embeddings_and_generations_share_the_counter(self, make_client):
        fake = FakeOpenAI(
            embeddings=ScriptedEndpoint(default=api_error(400)),
            completions=ScriptedEndpoint(default=api_error(400)),
        )
        client = make_client(fake)

        for _ in range(3):
            with pytest.raises(PermanentProviderError):
                asyncio.run(client.embed("text"))
        for _ in range(2):
            with pytest.raises(PermanentProviderError):
                asyncio.run(client.generate("test-model", "prompt"))

        with pytest.raises(CircuitOpenError):
            asyncio.run(client.embed("text"))

    def test_success_resets_counter(self, make_client):
        fake = generating(api_error(401), api_error(401), chat_response("ok"))
        client = make_client(fake)

        for _ in range(2):
            with pytest.raises(PermanentProviderError):
                asyncio.run(client.generate("test-model", "prompt"))
        assert client.circuit_status() == (2, False)

        asyncio.run(client.generate("test-model", "prompt"))
        assert client.circuit_status() == (0, False)

    def test_manual_reset_closes_circuit(self, make_client):
        fake = generating(*[api_error(403)] * 5, default=chat_response("back"))
        client = make_client(fake)

        for _ in range(5):
            with pytest.raises(PermanentProviderError):
                asyncio.run(client.generate("test-model", "prompt"))
        assert client.circuit_status()[1] is True

        client.reset_circuit()
        assert client.circuit_status() == (0, False)
        assert asyncio.run(client.generate("test-model", "prompt")) == "back"


class TestDeadline:
    def test_backoff_longer_than_remaining_time(self, make_client, fake_time):
        fake = generating(default=api_error(503))
        client = make_client(fake)
        deadline = client.now() + 1.5

        with pytest.raises(DeadlineExceededError):
            asyncio.run(client.generate("test-model", "prompt", deadline=deadline))

        # first retry (~1s) fits in the budget, the second (~2s) does not
        assert len(fake_time.sleeps) == 1
        assert len(fake.completions.calls) == 2
        assert client.circuit_status() == (1, False)

    def test_expired_deadline_makes_no_call(self, make_client, fake_time):
        fake = generating(chat_response("unused"))
        client = make_client(fake)

        with pytest.raises(DeadlineExceededError):
            asyncio.run(client.generate("test-model", "prompt", deadline=client.now() - 1))
        assert fake.completions.calls == []

    def test_attempt_running_past_deadline(self, make_client, fake_time):
        async def slow_request(**kwargs):
            fake_time.now += 500
            raise asyncio.TimeoutError()

        fake = generating(slow_request, default=chat_response("unused"))
        client = make_client(fake)

        with pytest.raises(DeadlineExceededError):
            asyncio.run(client.generate("test-model", "prompt"))
        assert len(fake.completions.calls) == 1
        assert fake_time.sleeps == []

    def test_timeout_before_deadline_is_retried(self, make_client, fake_time):
        async def timed_out(**kwargs):
            raise asyncio.TimeoutError()

        fake = generating(timed_out, default=chat_response("ok"))
        client = make_client(fake)

        assert asyncio.run(client.generate("test-model", "prompt")) == "ok"
        assert len(fake.completions.calls) == 2
        assert len(fake_time.sleeps) == 1
