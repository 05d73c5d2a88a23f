"""Usage normalization, cost calculation and context-window status."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

from .model_config import ModelConfigLoader

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LENGTH = 128000
DEFAULT_MAX_OUTPUT_TOKENS = 8192
DEFAULT_AVAILABLE_TOKENS = 120000

SLIDING_THRESHOLD = 70.0
SUMMARIZATION_THRESHOLD = 75.0
MODERATE_THRESHOLD = 50.0
WARNING_THRESHOLD = 75.0
CRITICAL_THRESHOLD = 85.0


@dataclass
class UsageCounters:
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0
    cache_creation_tokens: int = 0

    def add(self, other: Optional["UsageCounters"]) -> "UsageCounters":
        if other is None:
            return self
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.reasoning_tokens += other.reasoning_tokens
        self.cached_tokens += other.cached_tokens
        self.total_tokens += other.total_tokens
        self.cache_creation_tokens += other.cache_creation_tokens
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class CostBreakdown:
    total_cost: float
    input_cost: float
    output_cost: float
    reasoning_cost: float
    cached_input_cost: float
    tokens: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cost": self.total_cost,
            "breakdown": {
                "input_cost": self.input_cost,
                "output_cost": self.output_cost,
                "reasoning_cost": self.reasoning_cost,
                "cached_input_cost": self.cached_input_cost,
            },
            "tokens": dict(self.tokens),
        }


@dataclass
class ContextInfo:
    context_length: int
    max_output_tokens: int
    available_for_input: int


@dataclass
class ContextStatus:
    current_tokens: int
    max_tokens: int
    available_tokens: int
    used_percentage: float
    remaining_tokens: int
    needs_sliding: bool
    needs_summarization: bool
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _nested(raw: Mapping[str, Any], outer: str, inner: str) -> int:
    details = raw.get(outer) or {}
    if not isinstance(details, Mapping):
        details = getattr(details, "__dict__", {}) or {}
    return _int(details.get(inner))


class TokenContextManager:
    """Normalizes vendor usage, prices it and tracks context-window fullness."""

    def __init__(self, model_config: Optional[ModelConfigLoader] = None) -> None:
        self.model_config = model_config or ModelConfigLoader()
        self._gemini_warning_logged = False
        self._cumulative_tokens = 0

    # --- cumulative tracking -------------------------------------------
    def set_cumulative_tokens(self, tokens: Optional[int]) -> None:
        self._cumulative_tokens = _int(tokens)

    def add_cumulative_tokens(self, tokens: Optional[int]) -> None:
        self._cumulative_tokens += _int(tokens)

    def get_cumulative_tokens(self) -> int:
        return self._cumulative_tokens

    # --- usage ----------------------------------------------------------
    def normalize_usage(self, raw: Optional[Mapping[str, Any]], vendor: str) -> Optional[UsageCounters]:
        """Map a vendor usage payload onto :class:`UsageCounters`.

        Totals follow each vendor's own accounting:

        * openai / azure / openrouter: reported ``total_tokens`` or input + output
        * anthropic / bedrock: input + output, cache reads reported separately
        * gemini: the reported total; the excess over input + output is reasoning
        """

        if not raw:
            return None
        if vendor in {"openai", "azure", "openrouter"}:
            usage = self._normalize_openai(raw)
            return usage if usage is not None else self._normalize_generic(raw)
        if vendor in {"anthropic", "bedrock"}:
            return self._normalize_anthropic(raw)
        if vendor == "gemini":
            return self._normalize_gemini(raw)
        return self._normalize_generic(raw)

    def _normalize_openai(self, raw: Mapping[str, Any]) -> Optional[UsageCounters]:
        if raw.get("prompt_tokens") is not None:
            input_tokens = _int(raw.get("prompt_tokens"))
            output_tokens = _int(raw.get("completion_tokens"))
            return UsageCounters(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                reasoning_tokens=_nested(raw, "completion_tokens_details", "reasoning_tokens"),
                cached_tokens=_nested(raw, "prompt_tokens_details", "cached_tokens"),
                total_tokens=_int(raw.get("total_tokens")) or input_tokens + output_tokens,
            )
        if raw.get("input_tokens") is not None:
            input_tokens = _int(raw.get("input_tokens"))
            output_tokens = _int(raw.get("output_tokens"))
            return UsageCounters(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                reasoning_tokens=_nested(raw, "output_tokens_details", "reasoning_tokens"),
                cached_tokens=_nested(raw, "input_tokens_details", "cached_tokens"),
                total_tokens=_int(raw.get("total_tokens")) or input_tokens + output_tokens,
            )
        return None

    def _normalize_anthropic(self, raw: Mapping[str, Any]) -> UsageCounters:
        input_tokens = _int(raw.get("input_tokens"))
        output_tokens = _int(raw.get("output_tokens"))
        return UsageCounters(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_tokens=_int(raw.get("cache_read_input_tokens")),
            cache_creation_tokens=_int(raw.get("cache_creation_input_tokens")),
            total_tokens=input_tokens + output_tokens,
        )

    def _normalize_gemini(self, raw: Mapping[str, Any]) -> UsageCounters:
        input_tokens = _int(raw.get("prompt_tokens"))
        output_tokens = _int(raw.get("completion_tokens"))
        expected = input_tokens + output_tokens
        total_tokens = _int(raw.get("total_tokens")) or expected
        if total_tokens != expected and not self._gemini_warning_logged:
            logger.warning(
                "Gemini total_tokens (%s) differs from input+output (%s); treating the difference as reasoning",
                total_tokens,
                expected,
            )
            self._gemini_warning_logged = True
        return UsageCounters(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            reasoning_tokens=max(0, total_tokens - expected),
            cached_tokens=_nested(raw, "prompt_tokens_details", "cached_tokens"),
            total_tokens=total_tokens,
        )

    def _normalize_generic(self, raw: Mapping[str, Any]) -> UsageCounters:
        input_tokens = _int(raw.get("input_tokens") or raw.get("prompt_tokens") or raw.get("inputTokens"))
        output_tokens = _int(raw.get("output_tokens") or raw.get("completion_tokens") or raw.get("outputTokens"))
        return UsageCounters(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            reasoning_tokens=_int(raw.get("reasoning_tokens") or raw.get("reasoningTokens")),
            cached_tokens=_int(raw.get("cached_tokens") or raw.get("cachedTokens")),
            total_tokens=_int(raw.get("total_tokens") or raw.get("totalTokens")) or input_tokens + output_tokens,
        )

    # --- cost -----------------------------------------------------------
    def calculate_cost(
        self,
        usage: Optional[UsageCounters],
        model: str,
        vendor: Optional[str] = None,
        tier: str = "standard",
    ) -> Optional[CostBreakdown]:
        """Price ``usage`` for ``model``. Returns ``None`` when the model has no known pricing."""

        if usage is None:
            return None
        pricing = self.model_config.get_pricing(model, vendor, tier)
        if pricing is None:
            return None

        cached = usage.cached_tokens
        non_cached_input = max(0, usage.input_tokens - cached)
        cached_rate = pricing.cached_input_per_1m if pricing.cached_input_per_1m is not None else pricing.input_per_1m
        cached_cost = cached / 1_000_000 * cached_rate
        input_cost = non_cached_input / 1_000_000 * pricing.input_per_1m + cached_cost
        output_cost = usage.output_tokens / 1_000_000 * pricing.output_per_1m
        reasoning_rate = pricing.reasoning_per_1m or pricing.output_per_1m
        reasoning_cost = usage.reasoning_tokens / 1_000_000 * reasoning_rate

        return CostBreakdown(
            total_cost=input_cost + output_cost + reasoning_cost,
            input_cost=input_cost,
            output_cost=output_cost,
            reasoning_cost=reasoning_cost,
            cached_input_cost=cached_cost,
            tokens={
                "input": usage.input_tokens,
                "output": usage.output_tokens,
                "reasoning": usage.reasoning_tokens,
                "cached": cached,
            },
        )

    # --- context window ---------------------------------------------------
    def get_context_info(self, model: str, vendor: Optional[str] = None) -> ContextInfo:
        context_length, max_output = self.model_config.get_limits(model, vendor)
        max_output = max_output or DEFAULT_MAX_OUTPUT_TOKENS
        if context_length:
            available = context_length - max_output
        else:
            context_length = DEFAULT_CONTEXT_LENGTH
            available = DEFAULT_AVAILABLE_TOKENS
        return ContextInfo(context_length=context_length, max_output_tokens=max_output, available_for_input=available)

    def get_context_status(self, cumulative_tokens: int, model: str, vendor: Optional[str] = None) -> ContextStatus:
        """Advisory context fullness; thresholds are reported, never enforced here."""

        info = self.get_context_info(model, vendor)
        available = max(1, info.available_for_input)
        percentage = cumulative_tokens / available * 100.0
        if percentage >= CRITICAL_THRESHOLD:
            status = "critical"
        elif percentage >= WARNING_THRESHOLD:
            status = "warning"
        elif percentage >= MODERATE_THRESHOLD:
            status = "moderate"
        else:
            status = "normal"
        return ContextStatus(
            current_tokens=cumulative_tokens,
            max_tokens=info.context_length,
            available_tokens=info.available_for_input,
            used_percentage=min(100.0, percentage),
            remaining_tokens=max(0, info.available_for_input - cumulative_tokens),
            needs_sliding=percentage >= SLIDING_THRESHOLD,
            needs_summarization=percentage >= SUMMARIZATION_THRESHOLD,
            status=status,
        )

    def format_usage_log(
        self,
        usage: Optional[UsageCounters],
        cost: Optional[CostBreakdown],
        vendor: str,
        model: str,
    ) -> str:
        if usage is None:
            return f"No usage data for {vendor}/{model}"
        line = f"{vendor}/{model}: in={usage.input_tokens} out={usage.output_tokens}"
        if usage.reasoning_tokens:
            line += f" reasoning={usage.reasoning_tokens}"
        if usage.cached_tokens:
            line += f" cached={usage.cached_tokens}"
        line += f" total={usage.total_tokens}"
        if cost is not None:
            line += f" | ${cost.total_cost:.6f}"
        return line
