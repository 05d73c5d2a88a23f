"""Tool executor interface, JSON Schema validation and bounded validation retries."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

from ..provider_ir import ToolDeclaration

logger = logging.getLogger(__name__)

MAX_TOOL_RETRIES = 3


class ToolExecutor:
    """Interface for anything that can run a named tool with structured arguments."""

    def declarations(self) -> List[ToolDeclaration]:
        return []

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        raise NotImplementedError


class ToolValidationError(Exception):
    """Arguments supplied by the model do not satisfy the tool's schema."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        *,
        details: Optional[List[Dict[str, Any]]] = None,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.details = details or []
        self.hint = hint

    def to_result(self, provided_args: Any) -> Dict[str, Any]:
        return {
            "validation_error": True,
            "tool_name": self.tool_name,
            "provided_args": provided_args,
            "error": str(self),
            "details": self.details,
            "hint": self.hint,
        }


def is_validation_error(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("validation_error"))


def _error_path(error: ValidationError) -> str:
    return ".".join(str(part) for part in error.absolute_path) or "<root>"


def _hint_for(errors: List[Dict[str, Any]]) -> str:
    hints: List[str] = []
    for err in errors:
        if err["validator"] == "type":
            hints.append(f'Field "{err["path"]}" has wrong type. {err["message"]}')
        elif err["validator"] == "enum":
            hints.append(f'Field "{err["path"]}" has invalid value. {err["message"]}')
        else:
            hints.append(f'{err["path"]}: {err["message"]}')
    return "; ".join(hints)


class ValidatingToolExecutor(ToolExecutor):
    """Validates arguments against each tool's JSON Schema before delegating.

    Validation failures are returned as a structured result, not raised, so
    the loop can hand them back to the model.
    """

    def __init__(self, inner: ToolExecutor, declarations: Optional[List[ToolDeclaration]] = None) -> None:
        self.inner = inner
        self._declarations = list(declarations) if declarations is not None else inner.declarations()
        self._validators: Dict[str, Draft7Validator] = {
            decl.name: Draft7Validator(decl.parameters) for decl in self._declarations
        }

    def declarations(self) -> List[ToolDeclaration]:
        return list(self._declarations)

    def validate(self, name: str, args: Any) -> None:
        validator = self._validators.get(name)
        if validator is None:
            known = ", ".join(sorted(self._validators)) or "none"
            raise ToolValidationError(
                name,
                f"Unknown tool: {name}",
                hint=f"Call one of the available tools: {known}",
            )
        errors = sorted(validator.iter_errors(args), key=lambda e: list(e.absolute_path))
        if not errors:
            return
        details = [
            {"path": _error_path(err), "message": err.message, "validator": err.validator}
            for err in errors
        ]
        summary = "; ".join(f'{d["path"]}: {d["message"]}' for d in details)
        raise ToolValidationError(
            name,
            f"Invalid arguments for {name}: {summary}",
            details=details,
            hint=_hint_for(details),
        )

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        try:
            self.validate(name, args)
        except ToolValidationError as exc:
            logger.info("Tool %s rejected arguments: %s", name, exc)
            return exc.to_result(args)
        return await self.inner.execute(name, args)


class ToolRetryTracker:
    """Counts validation failures per retry chain.

    A chain starts at the first failing call id. A later call that reuses that
    id, or calls the same tool while its chain is still open, continues the
    chain. A successful call of the tool closes its chain. The first
    ``max_attempts`` failures go back to the model; the next one is terminal and
    the count stays there.
    """

    def __init__(self, max_attempts: int = MAX_TOOL_RETRIES) -> None:
        self.max_attempts = max_attempts
        self._attempts: Dict[str, int] = {}
        self._chain_for_call: Dict[str, str] = {}
        self._open_chain_for_tool: Dict[str, str] = {}

    def _chain(self, call_id: str, tool_name: str) -> str:
        return self._chain_for_call.get(call_id) or self._open_chain_for_tool.get(tool_name) or call_id

    def record_failure(self, call_id: str, tool_name: str) -> int:
        chain = self._chain(call_id, tool_name)
        self._chain_for_call[call_id] = chain
        self._open_chain_for_tool[tool_name] = chain
        self._attempts[chain] = min(self._attempts.get(chain, 0) + 1, self.max_attempts + 1)
        return self._attempts[chain]

    def record_success(self, call_id: str, tool_name: str) -> None:
        self._open_chain_for_tool.pop(tool_name, None)

    def attempts(self, call_id: str, tool_name: str) -> int:
        return self._attempts.get(self._chain(call_id, tool_name), 0)

    def exhausted(self, attempt: int) -> bool:
        return attempt > self.max_attempts
