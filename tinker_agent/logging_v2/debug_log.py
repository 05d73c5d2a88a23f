from __future__ import annotations

import datetime as _dt
import itertools
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEBUG_DIR = "~/.tinker-debug"
REDACTED = "***REDACTED***"
SECRET_KEYS = {
    "api_key",
    "apikey",
    "authorization",
    "x-api-key",
    "openai_api_key",
    "openrouter_api_key",
    "anthropic_api_key",
    "azure_openai_api_key",
    "aws_access_key",
    "aws_secret_key",
    "aws_session_token",
}


def redact(data: Any) -> Any:
    """Replace values under secret-looking keys, recursively."""

    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower() in SECRET_KEYS:
                out[k] = REDACTED
            else:
                out[k] = redact(v)
        return out
    if isinstance(data, (list, tuple)):
        return [redact(x) for x in data]
    return data


class DebugLogWriter:
    """Writes one JSON snapshot per request/response/error when enabled.

    Usage:
      writer = DebugLogWriter(enabled=True)
      writer.write("stream_request", {"vendor": "openai", "request": {...}})
    """

    def __init__(self, enabled: bool = False, directory: Optional[str] = None) -> None:
        self.enabled = enabled
        self.directory = Path(os.path.expanduser(directory or DEFAULT_DEBUG_DIR))
        self._seq = itertools.count(1)

    def _now_ts(self) -> str:
        return _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d-%H%M%S-%f")

    def write(self, kind: str, payload: Dict[str, Any]) -> Optional[Path]:
        if not self.enabled:
            return None
        record = {
            "kind": kind,
            "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
            "payload": redact(payload),
        }
        path = self.directory / f"{self._now_ts()}_{next(self._seq):04d}_{kind}.json"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record, indent=2, default=str), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write debug log %s: %s", path, exc)
            return None
        return path
