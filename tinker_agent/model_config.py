"""Model limits and pricing loaded from YAML, with fuzzy model-name matching."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODEL_CONFIG_PATH = Path(__file__).parent / "config" / "model_config.yaml"

# Vendors that bill through another vendor's price sheet.
PROVIDER_MAP: Dict[str, str] = {
    "bedrock": "anthropic",
    "azure": "openai",
}

MODEL_ALIASES: Dict[str, str] = {
    "sonnet-4": "claude-sonnet-4",
    "opus-4": "claude-opus-4",
    "sonnet-3.7": "claude-3-7-sonnet",
    "sonnet-3-7": "claude-3-7-sonnet",
    "claude-3.7-sonnet": "claude-3-7-sonnet",
    "sonnet-3.5": "claude-3-5-sonnet",
    "sonnet-3-5": "claude-3-5-sonnet",
    "claude-3.5-sonnet": "claude-3-5-sonnet",
    "haiku-3.5": "claude-3-5-haiku",
    "claude-3.5-haiku": "claude-3-5-haiku",
    "gpt4o": "gpt-4o",
    "gpt-4-o": "gpt-4o",
    "gemini-flash": "gemini-2.5-flash",
    "gemini-pro": "gemini-2.5-pro",
    "flash-2": "gemini-2.0-flash",
}

MATCH_THRESHOLD = 50.0

_ARN_RE = re.compile(r"^.*(?:foundation-model|inference-profile)/")
_REGION_PREFIX_RE = re.compile(r"^(?:us|eu|apac|global)\.")
_VENDOR_PREFIX_RE = re.compile(r"^(?:anthropic|amazon|meta|cohere|ai21|mistral)\.")
_ROUTED_PREFIX_RE = re.compile(r"^[\w.-]+/")
_VERSION_SUFFIX_RES = (re.compile(r"[:-]v?\d+:\d+$"), re.compile(r":\d+$"))
_DATE_SUFFIX_RES = (re.compile(r"-\d{8}$"), re.compile(r"-\d{4}-\d{2}-\d{2}$"))
_PART_SPLIT_RE = re.compile(r"[-_.:]")


@dataclass
class ModelPricing:
    input_per_1m: float = 0.0
    output_per_1m: float = 0.0
    cached_input_per_1m: Optional[float] = None
    reasoning_per_1m: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelPricing":
        return cls(
            input_per_1m=float(data.get("input_per_1m") or 0.0),
            output_per_1m=float(data.get("output_per_1m") or 0.0),
            cached_input_per_1m=_optional_float(data.get("cached_input_per_1m")),
            reasoning_per_1m=_optional_float(data.get("reasoning_per_1m")),
        )


@dataclass
class ModelSpec:
    name: str
    provider: str
    context_length: Optional[int] = None
    max_output_tokens: Optional[int] = None
    tiers: Dict[str, ModelPricing] = field(default_factory=dict)

    def pricing(self, tier: str = "standard") -> Optional[ModelPricing]:
        return self.tiers.get(tier) or self.tiers.get("standard")


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def normalize_model_name(name: str) -> str:
    """Reduce a vendor model id to its bare family name (``claude-sonnet-4``, ``gpt-4o``)."""

    normalized = (name or "").strip().lower()
    normalized = _ARN_RE.sub("", normalized)
    normalized = _REGION_PREFIX_RE.sub("", normalized)
    normalized = _VENDOR_PREFIX_RE.sub("", normalized)
    normalized = _ROUTED_PREFIX_RE.sub("", normalized)
    for pattern in _VERSION_SUFFIX_RES:
        normalized = pattern.sub("", normalized)
    for pattern in _DATE_SUFFIX_RES:
        normalized = pattern.sub("", normalized)
    return MODEL_ALIASES.get(normalized, normalized)


def match_score(candidate: str, target: str) -> float:
    """Similarity between two normalized names on a 0-100 scale."""

    if candidate == target:
        return 100.0
    if not candidate or not target:
        return 0.0
    if candidate in target or target in candidate:
        shorter, longer = sorted((len(candidate), len(target)))
        return 70.0 + (shorter / longer) * 25.0
    candidate_parts = {part for part in _PART_SPLIT_RE.split(candidate) if part}
    target_parts = {part for part in _PART_SPLIT_RE.split(target) if part}
    if not candidate_parts or not target_parts:
        return 0.0
    overlap = len(candidate_parts & target_parts) / max(len(candidate_parts), len(target_parts))
    return overlap * 70.0


class ModelConfigLoader:
    """Loads ``providers.<provider>.models.<name>`` entries from a YAML file."""

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        *,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.path = Path(path) if path else DEFAULT_MODEL_CONFIG_PATH
        self._data = data
        self._specs: Optional[Dict[str, Dict[str, ModelSpec]]] = None

    def load(self) -> Dict[str, Dict[str, ModelSpec]]:
        if self._specs is not None:
            return self._specs
        raw = self._data
        if raw is None:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as exc:
                logger.warning("Could not load model config %s: %s", self.path, exc)
                raw = {}
        specs: Dict[str, Dict[str, ModelSpec]] = {}
        for provider, provider_doc in (raw.get("providers") or {}).items():
            models = (provider_doc or {}).get("models") or {}
            specs[provider] = {}
            for name, model_doc in models.items():
                model_doc = model_doc or {}
                tiers = ((model_doc.get("pricing") or {}).get("tiers") or {})
                specs[provider][str(name)] = ModelSpec(
                    name=str(name),
                    provider=provider,
                    context_length=model_doc.get("context_length"),
                    max_output_tokens=model_doc.get("max_output_tokens"),
                    tiers={tier: ModelPricing.from_dict(values or {}) for tier, values in tiers.items()},
                )
        self._specs = specs
        return specs

    def _candidate_providers(self, vendor: Optional[str]) -> List[str]:
        specs = self.load()
        if vendor:
            mapped = PROVIDER_MAP.get(vendor, vendor)
            if mapped in specs:
                return [mapped]
        return list(specs)

    def find_model(self, model: str, vendor: Optional[str] = None) -> Optional[ModelSpec]:
        """Exact name, then normalized name, then best fuzzy match above the threshold."""

        if not model:
            return None
        specs = self.load()
        providers = self._candidate_providers(vendor)
        lowered = model.strip().lower()
        for provider in providers:
            if lowered in specs[provider]:
                return specs[provider][lowered]

        target = normalize_model_name(model)
        best: Optional[Tuple[float, ModelSpec]] = None
        for provider in providers:
            for name, spec in specs[provider].items():
                score = match_score(normalize_model_name(name), target)
                if best is None or score > best[0]:
                    best = (score, spec)
        if best is not None and best[0] > MATCH_THRESHOLD:
            logger.debug("Matched model %s to %s/%s (score %.1f)", model, best[1].provider, best[1].name, best[0])
            return best[1]
        return None

    def get_pricing(self, model: str, vendor: Optional[str] = None, tier: str = "standard") -> Optional[ModelPricing]:
        spec = self.find_model(model, vendor)
        return spec.pricing(tier) if spec else None

    def get_limits(self, model: str, vendor: Optional[str] = None) -> Tuple[Optional[int], Optional[int]]:
        spec = self.find_model(model, vendor)
        if spec is None:
            return None, None
        return spec.context_length, spec.max_output_tokens
