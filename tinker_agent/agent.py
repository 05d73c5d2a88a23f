"""
Simplified agent interface.

Wires an :class:`EngineConfig` into a provider runtime, the workspace tools
and an :class:`AgentLoop`, and applies the edit blocks the model produced.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .agent_loop import AgentLoop, LoopResult
from .core.config_schema import EngineConfig, load_engine_config
from .dialects.aider_diff import AiderDiffDialect
from .diff_applier import ApplyResult, DiffApplier
from .error_handling.error_handler import ErrorHandler
from .logging_v2.debug_log import DebugLogWriter
from .messaging.events import EventChannel
from .model_config import ModelConfigLoader
from .provider_runtime import ProviderRuntime, create_provider
from .secrets_store import EnvSecretStore, SecretStore
from .state.conversation_store import ConversationStore
from .token_context import TokenContextManager
from .tool_calling.workspace_tools import WorkspaceTools

logger = logging.getLogger(__name__)

BASE_SYSTEM_PROMPT = (
    "You are a coding agent working inside the user's workspace. Use the tools to inspect files before "
    "changing them, keep tool use focused, and finish with a clear answer."
)


class TinkerAgent:
    """Runs coding tasks against one workspace."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        workspace_dir: Optional[str] = None,
        *,
        client: Any = None,
        secret_store: Optional[SecretStore] = None,
        store: Optional[ConversationStore] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.workspace_dir = str(Path(workspace_dir or self.config.workspace.root).resolve())
        self.tools = WorkspaceTools(self.workspace_dir)
        self.dialect = AiderDiffDialect()
        self.applier = DiffApplier(self.tools.fs)
        self.events = events or EventChannel()
        self.debug_log = DebugLogWriter(
            enabled=self.config.logging.debug or self.config.provider.debug_logging,
            directory=self.config.logging.debug_dir,
        )
        self.provider: ProviderRuntime = create_provider(
            self.config.provider,
            client=client,
            secret_store=secret_store or EnvSecretStore(),
            debug_log=self.debug_log,
        )
        model_config = ModelConfigLoader(self.config.model_config_path) if self.config.model_config_path else None
        self.token_manager = TokenContextManager(model_config)
        self.store = store
        self.loop: Optional[AgentLoop] = None

    async def build_system_prompt(self) -> str:
        tree = await self.tools.get_file_tree({"max_depth": 3})
        parts = [
            self.config.system_prompt or BASE_SYSTEM_PROMPT,
            f"## Workspace\n```\n{tree['tree']}\n```",
            self.dialect.prompt_for_edits(),
        ]
        return "\n\n".join(parts)

    async def run_task(
        self,
        task: str,
        *,
        history: Optional[List[Dict[str, Any]]] = None,
        conversation_id: Optional[str] = None,
    ) -> LoopResult:
        """Run a single task and return results."""
        self.loop = AgentLoop(
            self.provider,
            self.tools,
            system_prompt=await self.build_system_prompt(),
            events=self.events,
            token_manager=self.token_manager,
            store=self.store,
            config=self.config.loop,
            error_handler=ErrorHandler(),
        )
        user_message = {"role": "user", "content": task}
        if self.store is not None:
            conversation_id, history = await self._restore_history(conversation_id, history, user_message)
        messages = list(history or []) + [user_message]
        return await self.loop.run(messages, conversation_id=conversation_id)

    async def _restore_history(
        self,
        conversation_id: Optional[str],
        history: Optional[List[Dict[str, Any]]],
        user_message: Dict[str, Any],
    ) -> Tuple[Optional[str], Optional[List[Dict[str, Any]]]]:
        """Reload stored turns for an existing conversation and record the new user message."""
        try:
            if conversation_id is None:
                conversation_id = (await self.store.create_conversation())["id"]
            elif history is None:
                stored = await self.store.get_all_messages(conversation_id)
                history = [{"role": m["role"], "content": m.get("content", "")} for m in stored if m.get("role")]
            await self.store.add_message(conversation_id, user_message)
        except Exception as exc:
            logger.warning("Could not restore conversation %s: %s", conversation_id, exc)
        return conversation_id, history

    def stop(self) -> None:
        if self.loop is not None:
            self.loop.stop()

    def apply_edits(self, result: LoopResult) -> List[ApplyResult]:
        outcomes = self.applier.apply_all(result.edit_blocks)
        for outcome in outcomes:
            if outcome.success:
                logger.info("Applied edit to %s", outcome.path)
            else:
                logger.warning("Edit to %s failed: %s", outcome.path, outcome.error)
        return outcomes


def create_agent(config_path: Optional[str] = None, workspace_dir: Optional[str] = None, **kwargs: Any) -> TinkerAgent:
    """Convenient factory function to create an agent."""
    config = load_engine_config(config_path) if config_path else EngineConfig()
    return TinkerAgent(config, workspace_dir, **kwargs)
