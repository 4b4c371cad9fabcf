from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import httpx
import pytest
from openai import RateLimitError
from pydantic_ai.exceptions import ModelHTTPError
from rich.console import Console

from scholar.config.settings import ModelCostLimits, Settings
from scholar.services.gateway import (
    ChatMessage,
    CostLimitExceededError,
    GatewayErrorKind,
    ModelGateway,
    ModelGatewayError,
    TaskTier,
    UsageTracker,
    classify_error,
    parse_json_content,
)
from support import FakeCompletionClient, make_gateway


def _messages(text: str) -> list[ChatMessage]:
    return [ChatMessage(role="system", content="You are terse."), ChatMessage(role="user", content=text)]


def test_request_near_daily_limit_is_rejected_without_model_call(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    tracker = UsageTracker(console=console)
    tracker.record(4.95, daily_limit=5.00)
    gateway = make_gateway(client, console, settings, tracker=tracker)

    # ~12k input tokens on gpt-4o price at roughly $0.07.
    with pytest.raises(CostLimitExceededError) as excinfo:
        asyncio.run(gateway.make_request(_messages("x" * 48_000), model="gpt-4o"))

    assert "daily limit" in str(excinfo.value)
    assert excinfo.value.estimated_cost > 0.05
    assert client.calls == []
    assert tracker.state.daily_usage == pytest.approx(4.95)
    assert tracker.state.request_count == 1


def test_request_above_per_video_limit_is_rejected_before_network_call(
    console: Console,
    settings: Settings,
) -> None:
    client = FakeCompletionClient()
    gateway = make_gateway(client, console, settings)

    with pytest.raises(CostLimitExceededError) as excinfo:
        asyncio.run(gateway.make_request(_messages("y" * 100_000), model="gpt-4o"))

    assert "per-video limit" in str(excinfo.value)
    assert excinfo.value.kind is GatewayErrorKind.QUOTA_EXCEEDED
    assert client.calls == []


def test_successful_request_records_cost_and_usage(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(lambda _messages: '{"ok": true}', prompt_tokens=1000, completion_tokens=500)
    tracker = UsageTracker(console=console)
    gateway = make_gateway(client, console, settings, tracker=tracker)

    response = asyncio.run(gateway.make_request(_messages("hello"), response_format="json"))

    expected_cost = 1000 / 1000 * 0.00015 + 500 / 1000 * 0.0006
    assert response.content == '{"ok": true}'
    assert response.usage.total_tokens == 1500
    assert response.cost == pytest.approx(expected_cost)
    assert response.model == "gpt-4o-mini"
    assert client.calls[0]["response_format"] == "json"

    stats = gateway.get_usage_stats()
    assert stats.request_count == 1
    assert stats.daily_usage == pytest.approx(expected_cost)
    assert stats.remaining_daily_budget == pytest.approx(5.00 - expected_cost)


def test_client_failures_are_classified(console: Console, settings: Settings) -> None:
    gateway = make_gateway(FakeCompletionClient(error=ConnectionError("reset")), console, settings)

    with pytest.raises(ModelGatewayError) as excinfo:
        asyncio.run(gateway.make_request(_messages("hello")))

    assert excinfo.value.kind is GatewayErrorKind.NETWORK


def test_missing_client_is_an_invalid_key_error(console: Console, settings: Settings) -> None:
    gateway = ModelGateway(settings=settings, console=console, usage_tracker=UsageTracker(console=console))

    assert gateway.is_ready() is False
    with pytest.raises(ModelGatewayError) as excinfo:
        asyncio.run(gateway.make_request(_messages("hello")))
    assert excinfo.value.kind is GatewayErrorKind.INVALID_KEY


def test_estimate_tokens_caps_output(console: Console, settings: Settings) -> None:
    gateway = make_gateway(FakeCompletionClient(), console, settings)

    small = gateway.estimate_tokens("a" * 400)
    large = gateway.estimate_tokens("a" * 40_000, max_output_tokens=200)

    assert small.input_tokens == 100
    assert small.output_tokens == 30
    assert large.output_tokens == 200


def test_unknown_models_use_default_pricing() -> None:
    assert ModelGateway.estimate_cost(1000, 1000, "mystery-model") == ModelGateway.estimate_cost(1000, 1000)


def test_model_strategy_and_limits_can_be_updated(console: Console, settings: Settings) -> None:
    gateway = make_gateway(FakeCompletionClient(), console, settings)

    assert gateway.get_model_for_task(TaskTier.COMPLEX_ANALYSIS) == "gpt-4o"
    gateway.update_model_strategy(complex_analysis="gpt-4o-mini")
    assert gateway.get_model_for_task(TaskTier.COMPLEX_ANALYSIS) == "gpt-4o-mini"

    limits = gateway.update_limits(daily_limit=1.5)
    assert limits.daily_limit == 1.5
    assert limits.per_video_limit == ModelCostLimits().per_video_limit


def test_usage_tracker_persists_and_rolls_over(tmp_path: Path, console: Console) -> None:
    path = tmp_path / "state" / "usage.json"
    today = {"value": date(2026, 3, 31)}
    tracker = UsageTracker(path=path, console=console, today=lambda: today["value"])
    tracker.record(1.25, daily_limit=5.0)

    reloaded = UsageTracker(path=path, console=console, today=lambda: today["value"])
    assert reloaded.load().daily_usage == pytest.approx(1.25)

    today["value"] = date(2026, 4, 1)
    rolled = reloaded.state
    assert rolled.daily_usage == 0.0
    assert rolled.monthly_usage == 0.0
    assert rolled.total_cost == pytest.approx(1.25)


def test_usage_tracker_ignores_corrupt_state(tmp_path: Path, console: Console) -> None:
    path = tmp_path / "usage.json"
    path.write_text("{not json", encoding="utf-8")

    state = UsageTracker(path=path, console=console).load()

    assert state.daily_usage == 0.0


def test_reset_daily_usage_keeps_lifetime_totals(console: Console) -> None:
    tracker = UsageTracker(console=console)
    tracker.record(5.0, daily_limit=5.0)
    assert tracker.state.quota_exceeded is True

    tracker.reset_daily_usage()

    assert tracker.state.daily_usage == 0.0
    assert tracker.state.quota_exceeded is False
    assert tracker.state.total_cost == pytest.approx(5.0)


def test_classify_error_passes_through_gateway_errors() -> None:
    original = ModelGatewayError("boom", kind=GatewayErrorKind.RATE_LIMIT, retry_after=5)

    assert classify_error(original) is original
    assert classify_error(TimeoutError()).kind is GatewayErrorKind.NETWORK
    assert classify_error(RuntimeError("odd")).kind is GatewayErrorKind.UNKNOWN


def test_parse_json_content_requires_an_object() -> None:
    assert parse_json_content('{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        parse_json_content("[1, 2]")


def test_slow_completions_time_out_as_network_errors(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(delay=0.5)
    gateway = make_gateway(client, console, settings, limits=ModelCostLimits(request_timeout_seconds=0.01))

    with pytest.raises(ModelGatewayError) as excinfo:
        asyncio.run(gateway.make_request(_messages("hello")))

    assert excinfo.value.kind is GatewayErrorKind.NETWORK
    assert gateway.get_usage_stats().request_count == 0


def _rate_limit_error(headers: dict[str, str]) -> RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(429, headers=headers, request=request)
    return RateLimitError("Rate limit reached", response=response, body=None)


def test_rate_limits_honor_the_retry_after_header() -> None:
    assert classify_error(_rate_limit_error({"retry-after": "7"})).retry_after == 7
    assert classify_error(_rate_limit_error({"retry-after": "2.5"})).retry_after == 3
    assert classify_error(_rate_limit_error({})).retry_after == 60

    try:
        raise ModelHTTPError(status_code=429, model_name="gpt-4o-mini") from _rate_limit_error({"retry-after": "12"})
    except ModelHTTPError as exc:
        wrapped = classify_error(exc)
    assert wrapped.kind is GatewayErrorKind.RATE_LIMIT
    assert wrapped.retry_after == 12

    assert classify_error(ModelHTTPError(status_code=429, model_name="gpt-4o-mini")).retry_after == 60


def test_unknown_errors_are_sanitized() -> None:
    google_key = "AIza" + "B" * 35
    error = classify_error(
        RuntimeError(f"upstream rejected sk-proj-abc123 and {google_key} at /v1?token=secret&x=1 " + "z" * 400)
    )

    message = str(error)
    assert error.kind is GatewayErrorKind.UNKNOWN
    assert "sk-proj-abc123" not in message
    assert google_key not in message
    assert "secret" not in message
    assert "token=***" in message
    assert len(message) == 300
    assert message.endswith("...")
