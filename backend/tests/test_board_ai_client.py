# tests/test_board_ai_client.py — Generative backend adapter (retries, providers, helpers)
import json

import httpx
import pytest

from ai_tokens import TokenStore
from board_ai_client import (
    BackendError, BackendUnavailableError, BackoffPolicy, RateLimitError,
    describe_backend_error,
)
from board_schema import GenerationOptions
from structured_text import DecodeError


class Script:
    """Replays a list of responses (or exceptions) and records requests."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)


def ok(gemini_reply, text):
    return httpx.Response(200, json=gemini_reply(text))


# ── Backoff policy ────────────────────────────────────────────────────────────

def test_backoff_policy_is_exponential():
    policy = BackoffPolicy()
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_backoff_policy_caps_and_jitters():
    policy = BackoffPolicy(base_delay=10, max_delay=15, jitter=0.5)
    assert policy.delay_for(3, rng=lambda: 0.0) == 15
    assert policy.delay_for(1, rng=lambda: 1.0) == 15.0


# ── Retry loop ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_retries_transient_errors_then_succeeds(make_backend, sleep_recorder, gemini_reply):
    script = Script(httpx.Response(503), httpx.Response(429), ok(gemini_reply, "hello"))
    backend = make_backend(script)
    assert await backend.complete("hi") == "hello"
    assert len(script.requests) == 3
    assert sleep_recorder.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_bound_is_three_attempts(make_backend, sleep_recorder):
    script = Script(httpx.Response(500, json={"error": {"message": "Internal error"}}))
    backend = make_backend(script)
    with pytest.raises(BackendError) as exc:
        await backend.complete("hi")
    assert len(script.requests) == 3
    assert sleep_recorder.delays == [1.0, 2.0]
    assert exc.value.status == 500
    assert exc.value.retryable
    assert str(exc.value) == "Internal error"


@pytest.mark.asyncio
async def test_terminal_errors_are_not_retried(make_backend, sleep_recorder):
    script = Script(httpx.Response(400, json={"error": {"message": "Bad request"}}))
    backend = make_backend(script)
    with pytest.raises(BackendError) as exc:
        await backend.complete("hi")
    assert len(script.requests) == 1
    assert sleep_recorder.delays == []
    assert exc.value.status == 400
    assert not exc.value.retryable


@pytest.mark.asyncio
async def test_rate_limit_error_type(make_backend):
    backend = make_backend(Script(httpx.Response(429)), policy=BackoffPolicy(max_attempts=1))
    with pytest.raises(RateLimitError) as exc:
        await backend.complete("hi")
    assert exc.value.status == 429


@pytest.mark.asyncio
async def test_network_failures_map_to_gateway_statuses(make_backend, sleep_recorder):
    request = httpx.Request("POST", "https://example.invalid")
    timeout = make_backend(Script(httpx.ReadTimeout("slow", request=request)))
    with pytest.raises(BackendError) as exc:
        await timeout.complete("hi")
    assert exc.value.status == 504

    refused = make_backend(Script(httpx.ConnectError("refused", request=request)))
    with pytest.raises(BackendError) as exc:
        await refused.complete("hi")
    assert exc.value.status == 503
    # two exhausted retry loops
    assert sleep_recorder.delays == [1.0, 2.0, 1.0, 2.0]


@pytest.mark.asyncio
async def test_empty_or_non_json_responses_are_retryable(make_backend, gemini_reply):
    script = Script(httpx.Response(200, text="<html>"), ok(gemini_reply, "  "), ok(gemini_reply, "done"))
    assert await make_backend(script).complete("hi") == "done"


@pytest.mark.asyncio
@pytest.mark.parametrize("provider,body", [
    ("google", ["oops"]),
    ("google", {"candidates": ["x"]}),
    ("google", {"candidates": [{"content": {"parts": "x"}}]}),
    ("openai", {"choices": [{"message": "x"}]}),
    ("openai", {"choices": [{"message": {"content": 42}}]}),
])
async def test_unexpected_body_shapes_are_retryable(make_backend, sleep_recorder, provider, body):
    script = Script(httpx.Response(200, json=body))
    with pytest.raises(BackendError) as exc:
        await make_backend(script, provider=provider).complete("hi")
    assert exc.value.status == 502
    assert exc.value.code == "BAD_RESPONSE"
    assert len(script.requests) == 3
    assert sleep_recorder.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_unexpected_body_recovers_on_retry(make_backend, sleep_recorder, gemini_reply):
    script = Script(httpx.Response(200, json=["oops"]), ok(gemini_reply, "done"))
    assert await make_backend(script).complete("hi") == "done"
    assert sleep_recorder.delays == [1.0]


@pytest.mark.asyncio
async def test_blocked_prompt_is_terminal(make_backend):
    script = Script(httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
    with pytest.raises(BackendError) as exc:
        await make_backend(script).complete("hi")
    assert exc.value.code == "CONTENT_BLOCKED"
    assert len(script.requests) == 1


# ── Credentials & providers ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missing_credential_is_unavailable(make_backend):
    script = Script(httpx.Response(200))
    backend = make_backend(script, environ={})
    assert not await backend.is_available()
    with pytest.raises(BackendUnavailableError):
        await backend.complete("hi")
    assert script.requests == []


@pytest.mark.asyncio
async def test_google_request_shape(make_backend, gemini_reply):
    script = Script(ok(gemini_reply, "ok"))
    await make_backend(script).complete("prompt text", max_tokens=321, temperature=0.1)
    request = script.requests[0]
    assert request.url.path.endswith("/models/gemini-1.5-flash:generateContent")
    assert request.headers["x-goog-api-key"] == "test-key"
    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == "prompt text"
    assert body["generationConfig"] == {"maxOutputTokens": 321, "temperature": 0.1}


@pytest.mark.asyncio
async def test_openai_compatible_provider(make_backend):
    script = Script(httpx.Response(200, json={"choices": [{"message": {"content": "from openai"}}]}))
    backend = make_backend(script, provider="openai")
    assert await backend.complete("hi") == "from openai"
    request = script.requests[0]
    assert request.url.path.endswith("/chat/completions")
    assert request.headers["authorization"] == "Bearer test-key"
    assert json.loads(request.content)["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_usage_recorded_only_on_success(make_backend, gemini_reply):
    store = TokenStore(environ={"GOOGLE_API_KEY": "k"})
    await make_backend(Script(ok(gemini_reply, "ok")), token_store=store).complete("hi")
    assert store.environment_usage() == {"google": 1}

    failing = make_backend(Script(httpx.Response(400)), token_store=store)
    with pytest.raises(BackendError):
        await failing.complete("hi")
    assert store.environment_usage() == {"google": 1}


# ── Helper operations ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_generate_structure_prompt_mentions_checklists_only_when_requested(make_backend, gemini_reply):
    script = Script(ok(gemini_reply, "{}"))
    backend = make_backend(script)
    await backend.generate_structure("Plan a launch", GenerationOptions(include_checklists=False))
    await backend.generate_structure("Plan a launch", GenerationOptions(max_tokens=1500))
    first, second = (json.loads(r.content) for r in script.requests)
    assert '"checklists"' not in first["contents"][0]["parts"][0]["text"]
    assert '"checklists"' in second["contents"][0]["parts"][0]["text"]
    assert second["generationConfig"]["maxOutputTokens"] == 1500


@pytest.mark.asyncio
async def test_analyze_prompt(make_backend, gemini_reply):
    reply = '```json\n{"goals": ["Sell online", 7], "keyFeatures": ["Cart"], "targetUsers": []}\n```'
    analysis = await make_backend(Script(ok(gemini_reply, reply))).analyze_prompt("shop")
    assert analysis == {"goals": ["Sell online", "7"], "keyFeatures": ["Cart"], "targetUsers": []}


@pytest.mark.asyncio
async def test_moderate_content(make_backend, gemini_reply):
    reply = '{"flagged": true, "reason": "violence", "categories": ["violence"]}'
    verdict = await make_backend(Script(ok(gemini_reply, reply))).moderate_content("text")
    assert verdict == {"flagged": True, "reason": "violence", "categories": ["violence"]}


@pytest.mark.asyncio
async def test_auto_complete_returns_three(make_backend, gemini_reply):
    reply = '["a", "b", "c", "d"]'
    assert await make_backend(Script(ok(gemini_reply, reply))).auto_complete_prompt("Build") == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_smart_suggestions_limits(make_backend, gemini_reply):
    reply = json.dumps({"suggestions": list("abcdefg"), "categories": ["x", "y", "z", "w"]})
    result = await make_backend(Script(ok(gemini_reply, reply))).get_smart_suggestions("board text")
    assert len(result["suggestions"]) == 5
    assert result["categories"] == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_quick_templates(make_backend, gemini_reply):
    reply = '{"templates": [{"name": "Sprint", "description": "Two weeks"}, {"description": "nameless"}]}'
    templates = await make_backend(Script(ok(gemini_reply, reply))).generate_quick_templates("software", 9)
    assert templates == [{"name": "Sprint", "description": "Two weeks"}]


@pytest.mark.asyncio
async def test_helper_decode_failure_raises(make_backend, gemini_reply):
    with pytest.raises(DecodeError):
        await make_backend(Script(ok(gemini_reply, "no json here"))).analyze_prompt("x")


@pytest.mark.asyncio
async def test_model_info(make_backend, offline_backend):
    info = await make_backend(Script(httpx.Response(200))).model_info()
    assert info["provider"] == "google"
    assert info["model"] == "gemini-1.5-flash"
    assert info["available"] is True
    assert "board_generation" in info["features"]
    assert (await offline_backend.model_info())["available"] is False


# ── Error wording ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("error,fragment", [
    (BackendError("x", status=503), "temporarily overloaded"),
    (RateLimitError(), "rate limit"),
    (BackendError("x", status=500), "experiencing issues"),
    (BackendError("The model is overloaded", status=400), "currently overloaded"),
    (BackendUnavailableError(), "not configured"),
    (BackendError("Something specific", status=418), "Something specific"),
])
def test_describe_backend_error(error, fragment):
    assert fragment in describe_backend_error(error)
