"""Cost-gated access to the text-completion service built on Pydantic AI."""

from __future__ import annotations

import asyncio
import json
import math
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Literal, Optional, Protocol, Sequence

from openai import APIConnectionError, APIStatusError, APITimeoutError
from pydantic import BaseModel, Field, ValidationError
from rich.console import Console

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from scholar import __version__ as scholar_version
from scholar.config.settings import ModelCostLimits, Settings, get_settings
from scholar.utils.validation import sanitize_error_message

try:  # pragma: no cover - optional instrumentation dependency
    from langfuse import Langfuse
except ImportError:  # pragma: no cover - optional instrumentation dependency
    Langfuse = None  # type: ignore[assignment]

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from langfuse import Langfuse as LangfuseClient
else:  # pragma: no cover - runtime fallback
    LangfuseClient = object  # type: ignore[misc, assignment]

DEFAULT_MODEL_NAME = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.3
DEFAULT_RETRY_AFTER_SECONDS = 60
CHARS_PER_TOKEN = 4
MAX_ESTIMATED_OUTPUT_TOKENS = 500
OUTPUT_TOKEN_RATIO = 0.3

# USD per 1K tokens.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.005, "output": 0.015},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
}

ResponseFormat = Literal["text", "json"]
MessageRole = Literal["system", "user", "assistant"]


class TaskTier(str, Enum):
    """Kinds of work routed to differently priced models."""

    RELEVANCE_SCORING = "relevance_scoring"
    CONTENT_INSIGHTS = "content_insights"
    COMPLEX_ANALYSIS = "complex_analysis"
    FALLBACK = "fallback"


DEFAULT_MODEL_STRATEGY: Dict[TaskTier, str] = {
    TaskTier.RELEVANCE_SCORING: "gpt-4o-mini",
    TaskTier.CONTENT_INSIGHTS: "gpt-4o-mini",
    TaskTier.COMPLEX_ANALYSIS: "gpt-4o",
    TaskTier.FALLBACK: "gpt-3.5-turbo",
}


class GatewayErrorKind(str, Enum):
    """Failure classes surfaced by the model gateway."""

    INVALID_KEY = "invalid_key"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ModelGatewayError(RuntimeError):
    """Raised when a completion request fails or is refused."""

    def __init__(
        self,
        message: str,
        *,
        kind: GatewayErrorKind = GatewayErrorKind.UNKNOWN,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.retry_after = retry_after


class CostLimitExceededError(ModelGatewayError):
    """Raised before any network call when a request would break a spend limit."""

    def __init__(self, message: str, *, estimated_cost: float) -> None:
        super().__init__(message, kind=GatewayErrorKind.QUOTA_EXCEEDED)
        self.estimated_cost = estimated_cost


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Single message in a completion conversation."""

    role: MessageRole
    content: str


@dataclass(slots=True, frozen=True)
class CompletionReply:
    """Raw reply from a :class:`CompletionClient`."""

    content: str
    prompt_tokens: int
    completion_tokens: int


class TokenUsage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)


class CompletionResponse(BaseModel):
    """Completion content with token usage and the cost charged for it."""

    content: str
    usage: TokenUsage
    cost: float = Field(ge=0.0)
    model: str


class TokenEstimation(BaseModel):
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    model: str


class UsageState(BaseModel):
    """Persisted spend counters."""

    daily_usage: float = Field(default=0.0, ge=0.0)
    monthly_usage: float = Field(default=0.0, ge=0.0)
    total_cost: float = Field(default=0.0, ge=0.0)
    request_count: int = Field(default=0, ge=0)
    last_reset: date = Field(default_factory=date.today)
    quota_exceeded: bool = False


class UsageStats(UsageState):
    """Usage counters enriched with the remaining daily budget."""

    daily_limit: float
    remaining_daily_budget: float
    percentage_used: float


class CompletionClient(Protocol):
    """Remote text-completion service."""

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: ResponseFormat,
    ) -> CompletionReply:
        """Return the completion for ``messages``."""


class UsageTracker:
    """Track model spend, optionally persisted to a JSON file."""

    def __init__(
        self,
        *,
        path: Optional[Path] = None,
        console: Optional[Console] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._path = path
        self._console = console or Console()
        self._today = today
        self._state = UsageState(last_reset=today())

    @property
    def state(self) -> UsageState:
        """Return a copy of the current counters after any day rollover."""

        self._roll_over()
        return self._state.model_copy()

    def load(self) -> UsageState:
        """Read persisted counters; missing or corrupt files start from zero."""

        if self._path is None or not self._path.exists():
            return self.state
        try:
            self._state = UsageState.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            self._console.log(f"[yellow]Ignoring unreadable usage state at {self._path}:[/yellow] {exc}")
            self._state = UsageState(last_reset=self._today())
        return self.state

    def save(self) -> None:
        """Write counters to disk when a state path is configured."""

        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(self._state.model_dump_json(indent=2), encoding="utf-8")

    def record(self, cost: float, *, daily_limit: float) -> None:
        """Charge ``cost`` to every counter and refresh the quota flag."""

        self._roll_over()
        self._state.daily_usage += cost
        self._state.monthly_usage += cost
        self._state.total_cost += cost
        self._state.request_count += 1
        self._state.quota_exceeded = self._state.daily_usage >= daily_limit
        self.save()

    def reset_daily_usage(self) -> None:
        """Zero the daily counter without touching lifetime totals."""

        self._state.daily_usage = 0.0
        self._state.quota_exceeded = False
        self._state.last_reset = self._today()
        self.save()

    def _roll_over(self) -> None:
        today = self._today()
        if self._state.last_reset == today:
            return
        if (self._state.last_reset.year, self._state.last_reset.month) != (today.year, today.month):
            self._state.monthly_usage = 0.0
        self._state.daily_usage = 0.0
        self._state.quota_exceeded = False
        self._state.last_reset = today


class PydanticAICompletionClient:
    """:class:`CompletionClient` backed by a Pydantic AI agent over OpenAI chat models."""

    def __init__(self, *, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._models: Dict[str, OpenAIChatModel] = {}

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: ResponseFormat,
    ) -> CompletionReply:
        system_prompt = "\n\n".join(message.content for message in messages if message.role == "system")
        prompt = "\n\n".join(message.content for message in messages if message.role != "system")

        model_settings: ModelSettings = {
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self._settings.resolved_cost_limits().request_timeout_seconds,
        }
        if response_format == "json":
            model_settings["extra_body"] = {"response_format": {"type": "json_object"}}

        agent = Agent(model=self._model(model), output_type=str, system_prompt=system_prompt)
        result = await agent.run(prompt, model_settings=model_settings)
        usage = result.usage()
        return CompletionReply(
            content=result.output,
            prompt_tokens=usage.input_tokens or 0,
            completion_tokens=usage.output_tokens or 0,
        )

    def _model(self, name: str) -> OpenAIChatModel:
        if name not in self._models:
            if self._settings.openai_api_key is None:
                raise ModelGatewayError(
                    "No language model credentials configured. Set OPENAI_API_KEY.",
                    kind=GatewayErrorKind.INVALID_KEY,
                )
            provider = OpenAIProvider(api_key=self._settings.openai_api_key.get_secret_value())
            self._models[name] = OpenAIChatModel(name, provider=provider)
        return self._models[name]


class ModelGateway:
    """Single choke point for completion requests: routing, cost gate, usage, and errors."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        client: Optional[CompletionClient] = None,
        usage_tracker: Optional[UsageTracker] = None,
        limits: Optional[ModelCostLimits] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._client: Optional[CompletionClient] = client
        if self._client is None and self._settings.openai_api_key is not None:
            self._client = PydanticAICompletionClient(settings=self._settings)
        self._usage = usage_tracker or UsageTracker(console=self._console)
        self._limits = limits or self._settings.resolved_cost_limits()
        self._strategy: Dict[TaskTier, str] = dict(DEFAULT_MODEL_STRATEGY)
        self._langfuse: Optional[LangfuseClient] = self._create_langfuse()

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def make_request(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        response_format: ResponseFormat = "text",
    ) -> CompletionResponse:
        """Send a completion request after checking it against the spend limits.

        Parameters
        ----------
        messages:
            Conversation forwarded to the completion service.
        model:
            Model identifier; defaults to ``gpt-4o-mini``.
        max_tokens:
            Completion token cap, also used to bound the output estimate.
        temperature:
            Sampling temperature.
        response_format:
            ``"json"`` asks the service for a JSON object reply.

        Returns
        -------
        CompletionResponse
            Reply content with token usage and the charged cost.

        Raises
        ------
        CostLimitExceededError
            If the estimated cost breaks the daily or per-video limit. No request is sent.
        ModelGatewayError
            If the client is missing or the completion service fails.
        """

        if self._client is None:
            raise ModelGatewayError(
                "Completion client not configured. Set OPENAI_API_KEY.",
                kind=GatewayErrorKind.INVALID_KEY,
            )

        model_name = model or DEFAULT_MODEL_NAME
        estimation = self.estimate_tokens(
            " ".join(message.content for message in messages),
            model_name,
            max_output_tokens=max_tokens,
        )
        self.check_cost_limits(estimation.estimated_cost)

        trace = self._start_trace(model_name, messages)
        start_time = time.perf_counter()
        try:
            reply = await asyncio.wait_for(
                self._client.complete(
                    messages,
                    model=model_name,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    response_format=response_format,
                ),
                timeout=self._limits.request_timeout_seconds,
            )
        except ModelGatewayError as exc:
            self._end_trace(trace, {"error": str(exc)}, "error", time.perf_counter() - start_time)
            raise
        except Exception as exc:
            error = classify_error(exc)
            self._end_trace(trace, {"error": str(error)}, "error", time.perf_counter() - start_time)
            self._console.log(f"[red]Completion request failed ({error.kind.value}):[/red] {error}")
            raise error from exc

        cost = self.estimate_cost(reply.prompt_tokens, reply.completion_tokens, model_name)
        self._usage.record(cost, daily_limit=self._limits.daily_limit)
        duration_seconds = time.perf_counter() - start_time
        self._end_trace(trace, {"content": reply.content}, "success", duration_seconds)
        self._console.log(
            f"Completion succeeded (model={model_name}, tokens={reply.prompt_tokens + reply.completion_tokens}, "
            f"cost=${cost:.5f}, duration={duration_seconds:.2f}s)"
        )
        return CompletionResponse(
            content=reply.content,
            usage=TokenUsage(
                prompt_tokens=reply.prompt_tokens,
                completion_tokens=reply.completion_tokens,
                total_tokens=reply.prompt_tokens + reply.completion_tokens,
            ),
            cost=cost,
            model=model_name,
        )

    def check_cost_limits(self, estimated_cost: float) -> None:
        """Raise :class:`CostLimitExceededError` when ``estimated_cost`` is not affordable."""

        daily_usage = self._usage.state.daily_usage
        projected = daily_usage + estimated_cost
        if projected > self._limits.daily_limit:
            raise CostLimitExceededError(
                f"Request blocked: would exceed daily limit of ${self._limits.daily_limit:.2f}",
                estimated_cost=estimated_cost,
            )
        if estimated_cost > self._limits.per_video_limit:
            raise CostLimitExceededError(
                f"Request blocked: exceeds per-video limit of ${self._limits.per_video_limit:.2f}",
                estimated_cost=estimated_cost,
            )
        if projected > self._limits.daily_limit * self._limits.warning_threshold:
            self._console.log(
                f"[yellow]Approaching daily limit: ${projected:.4f} / ${self._limits.daily_limit:.2f}[/yellow]"
            )

    def estimate_tokens(
        self,
        text: str,
        model: str = DEFAULT_MODEL_NAME,
        *,
        max_output_tokens: Optional[int] = None,
    ) -> TokenEstimation:
        """Estimate request size at four characters per token with a capped output."""

        input_tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
        output_tokens = min(MAX_ESTIMATED_OUTPUT_TOKENS, math.ceil(input_tokens * OUTPUT_TOKEN_RATIO))
        if max_output_tokens is not None:
            output_tokens = min(output_tokens, max_output_tokens)
        return TokenEstimation(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost=self.estimate_cost(input_tokens, output_tokens, model),
            model=model,
        )

    @staticmethod
    def estimate_cost(input_tokens: int, output_tokens: int, model: str = DEFAULT_MODEL_NAME) -> float:
        """Price tokens with the per-1K table; unknown models use ``gpt-4o-mini`` rates."""

        pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_MODEL_NAME])
        return input_tokens / 1000 * pricing["input"] + output_tokens / 1000 * pricing["output"]

    def get_model_for_task(self, task: TaskTier) -> str:
        """Return the model configured for ``task``."""

        return self._strategy[TaskTier(task)]

    def update_model_strategy(self, **models: str) -> None:
        """Override the model used for one or more task tiers."""

        for task, model_name in models.items():
            self._strategy[TaskTier(task)] = model_name

    def is_ready(self) -> bool:
        """Return ``True`` when a completion client is configured."""

        return self._client is not None

    def get_limits(self) -> ModelCostLimits:
        return self._limits.model_copy()

    def update_limits(
        self,
        *,
        daily_limit: Optional[float] = None,
        per_video_limit: Optional[float] = None,
        warning_threshold: Optional[float] = None,
    ) -> ModelCostLimits:
        """Replace individual spend limits, keeping the others."""

        updates = {
            key: value
            for key, value in {
                "daily_limit": daily_limit,
                "per_video_limit": per_video_limit,
                "warning_threshold": warning_threshold,
            }.items()
            if value is not None
        }
        self._limits = ModelCostLimits.model_validate({**self._limits.model_dump(), **updates})
        return self.get_limits()

    def get_usage_stats(self) -> UsageStats:
        """Return spend counters with the remaining daily budget."""

        state = self._usage.state
        daily_limit = self._limits.daily_limit
        return UsageStats(
            **state.model_dump(),
            daily_limit=daily_limit,
            remaining_daily_budget=max(0.0, daily_limit - state.daily_usage),
            percentage_used=min(100.0, state.daily_usage / daily_limit * 100),
        )

    def reset_daily_usage(self) -> None:
        self._usage.reset_daily_usage()

    # ------------------------------------------------------------------ #
    # Tracing                                                             #
    # ------------------------------------------------------------------ #
    def _create_langfuse(self) -> Optional[LangfuseClient]:
        """Initialise Langfuse tracing if the dependency and credentials are available."""

        if Langfuse is None:
            return None
        if self._settings.langfuse_public_key is None or self._settings.langfuse_secret_key is None:
            return None

        kwargs: Dict[str, str] = {
            "public_key": self._settings.langfuse_public_key.get_secret_value(),
            "secret_key": self._settings.langfuse_secret_key.get_secret_value(),
        }
        if self._settings.langfuse_host is not None:
            kwargs["host"] = str(self._settings.langfuse_host)

        try:
            return Langfuse(**kwargs)  # type: ignore[call-arg]
        except Exception as exc:  # pragma: no cover - instrumentation failures are non-fatal
            self._console.log(f"LangFuse initialization failed: {exc}")
            return None

    def _start_trace(self, model: str, messages: Sequence[ChatMessage]) -> Optional[object]:
        if self._langfuse is None:
            return None
        trace_callable = getattr(self._langfuse, "trace", None)
        if not callable(trace_callable):
            return None
        try:
            return trace_callable(
                name="completion",
                input={"messages": [{"role": m.role, "content": m.content} for m in messages]},
                metadata={"model": model, "version": scholar_version},
            )
        except Exception as exc:  # pragma: no cover - instrumentation failures are non-fatal
            self._console.log(f"LangFuse trace creation failed: {exc}")
            return None

    def _end_trace(
        self,
        trace: Optional[object],
        output: Dict[str, str],
        status: str,
        duration_seconds: float,
    ) -> None:
        if trace is None:
            return
        end_callable = getattr(trace, "end", None)
        if not callable(end_callable):
            return
        try:
            end_callable(output=output, status=status, metadata={"duration_seconds": duration_seconds})
        except Exception as exc:  # pragma: no cover - instrumentation failures are non-fatal
            self._console.log(f"LangFuse trace completion failed: {exc}")


def _retry_after(headers: Optional[object]) -> int:
    value = getattr(headers, "get", lambda _key: None)("retry-after")
    try:
        return max(0, math.ceil(float(value))) if value is not None else DEFAULT_RETRY_AFTER_SECONDS
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


def _http_error_headers(exc: ModelHTTPError) -> Optional[object]:
    """Headers of the provider response wrapped by ``exc``, when it kept one."""

    return getattr(getattr(exc.__cause__, "response", None), "headers", None)


def _status_error(status: int, message: str, retry_after: int) -> ModelGatewayError:
    if status == 429:
        return ModelGatewayError(
            "Rate limit exceeded. Please try again later.",
            kind=GatewayErrorKind.RATE_LIMIT,
            retry_after=retry_after,
        )
    if status == 401:
        return ModelGatewayError(
            "Invalid API key. Please check your OpenAI API key.",
            kind=GatewayErrorKind.INVALID_KEY,
        )
    if status == 402:
        return ModelGatewayError(
            "OpenAI quota exceeded. Please check your billing settings.",
            kind=GatewayErrorKind.QUOTA_EXCEEDED,
        )
    return ModelGatewayError(
        sanitize_error_message(message) or "Unknown completion service error",
        kind=GatewayErrorKind.UNKNOWN,
    )


def classify_error(exc: BaseException) -> ModelGatewayError:
    """Map a completion-service failure to a :class:`ModelGatewayError`."""

    if isinstance(exc, ModelGatewayError):
        return exc
    if isinstance(exc, ModelHTTPError):
        return _status_error(exc.status_code, str(exc), _retry_after(_http_error_headers(exc)))
    if isinstance(exc, APIStatusError):
        return _status_error(exc.status_code, str(exc), _retry_after(exc.response.headers))
    if isinstance(exc, (APIConnectionError, APITimeoutError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ModelGatewayError(
            "Network error. Please check your internet connection.",
            kind=GatewayErrorKind.NETWORK,
        )
    return ModelGatewayError(
        sanitize_error_message(str(exc)) or "Unknown completion service error",
        kind=GatewayErrorKind.UNKNOWN,
    )


def parse_json_content(content: str) -> Dict[str, object]:
    """Decode a JSON object reply, raising :class:`ValueError` for anything else."""

    payload = json.loads(content)
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object in the completion reply")
    return payload


__all__ = [
    "ChatMessage",
    "CompletionClient",
    "CompletionReply",
    "CompletionResponse",
    "CostLimitExceededError",
    "DEFAULT_MODEL_STRATEGY",
    "GatewayErrorKind",
    "MODEL_PRICING",
    "ModelGateway",
    "ModelGatewayError",
    "PydanticAICompletionClient",
    "TaskTier",
    "TokenEstimation",
    "TokenUsage",
    "UsageState",
    "UsageStats",
    "UsageTracker",
    "classify_error",
    "parse_json_content",
]
