"""
Error handling for the agent loop
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_HINT = "Verify provider credentials/quotas and model availability; rerun with a known-good model if needed."
RATE_LIMIT_HINT = "Provider indicated a rate limit or quota issue. Reduce request rate or wait before retrying."
SLOW_DOWN_HINT = "Provider signaled rate limiting (slow_down). Allow a cool-off period before retrying."
AUTH_HINT = "Provider rejected the credentials. Check the API key for this provider."
CONTEXT_HINT = "The request exceeded the model's context window. Start a new conversation or trim the history."


class ErrorHandler:
    """Builds the payloads surfaced to the user and the model when something fails"""

    def __init__(self, output_json_path: Optional[str] = None):
        self.output_json_path = output_json_path

    def handle_provider_error(self, error: Exception) -> Dict[str, Any]:
        """Handle provider API errors (network, auth, vendor rejection)"""

        details = getattr(error, "details", None)
        result: Dict[str, Any] = {
            "error": str(error),
            "error_type": error.__class__.__name__,
            "hint": self._hint_for(error, details),
        }
        vendor = getattr(error, "vendor", None)
        if vendor:
            result["vendor"] = vendor
        if details:
            result["details"] = details

        logger.error("Provider error (%s): %s", result["error_type"], result["error"])
        self.write_error_snapshot(result)
        return result

    def handle_execution_error(self, error: Exception, tool_name: str, tool_args: Dict[str, Any]) -> Dict[str, Any]:
        """Handle tool execution errors"""
        return {
            "error": str(error) or error.__class__.__name__,
            "function": tool_name,
            "args": tool_args,
            "error_type": "execution_error",
        }

    def handle_timeout(self, tool_name: str, tool_args: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        return {
            "error": f"Tool {tool_name} timed out after {timeout:g}s",
            "function": tool_name,
            "args": tool_args,
            "error_type": "timeout",
        }

    def _hint_for(self, error: Exception, details: Any) -> str:
        status_code = details.get("status_code") if isinstance(details, dict) else None
        text = str(error).lower()
        if isinstance(details, dict):
            text += " " + str(details.get("body_snippet") or "").lower()

        if "slow_down" in text:
            return SLOW_DOWN_HINT
        if status_code == 429 or "rate limit" in text or "quota" in text:
            return RATE_LIMIT_HINT
        if status_code in (401, 403) or "api key" in text or "unauthorized" in text:
            return AUTH_HINT
        if "context length" in text or "context window" in text or "too many tokens" in text:
            return CONTEXT_HINT
        return DEFAULT_PROVIDER_HINT

    def write_error_snapshot(self, error_result: Dict[str, Any]) -> None:
        """Write error snapshot to JSON file"""
        if not self.output_json_path:
            return
        try:
            Path(self.output_json_path).write_text(json.dumps(error_result, indent=2, default=str))
        except OSError as exc:
            logger.warning("Could not write error snapshot to %s: %s", self.output_json_path, exc)
