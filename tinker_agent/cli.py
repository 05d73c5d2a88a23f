#!/usr/bin/env python3
"""
Command-line entry point: run one task against a workspace.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .agent import TinkerAgent
from .core.config_schema import ConfigValidationError, EngineConfig, load_engine_config
from .messaging import events as ev
from .provider_routing import VENDORS
from .provider_runtime import ProviderError
from .state.conversation_store import JSONConversationStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tinker multi-provider coding agent")
    parser.add_argument("task", help="Task text, or a path to a file holding the task")
    parser.add_argument("-c", "--config", help="Path to engine config YAML")
    parser.add_argument("-w", "--workspace", help="Workspace directory (default: config workspace.root)")
    parser.add_argument("-p", "--provider", choices=sorted(VENDORS), help="Override provider vendor")
    parser.add_argument("-m", "--model", help="Override model id")
    parser.add_argument("--max-turns", type=int, help="Override loop.max_turns")
    parser.add_argument("--responses-api", action="store_true", help="Use the responses request shape")
    parser.add_argument("--apply", action="store_true", help="Apply edit blocks to the workspace")
    parser.add_argument("--store", help="Directory for JSON conversation history")
    parser.add_argument("--conversation", help="Continue an existing conversation id")
    parser.add_argument("--debug", action="store_true", help="Write JSON debug snapshots")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("-q", "--quiet", action="store_true", help="Do not stream text to stdout")
    return parser


def _read_task(task: str) -> str:
    path = Path(task)
    try:
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return task
    return task


def load_config(args: argparse.Namespace) -> EngineConfig:
    config = load_engine_config(args.config) if args.config else EngineConfig()
    if args.provider:
        config.provider.vendor = args.provider
    if args.model:
        config.provider.model = args.model
    if args.responses_api:
        config.provider.use_responses_api = True
    if args.debug:
        config.logging.debug = True
    if args.max_turns:
        config.loop.max_turns = args.max_turns
    return config


async def _run(args: argparse.Namespace, config: EngineConfig) -> int:
    store = JSONConversationStore(args.store) if args.store else None
    agent = TinkerAgent(config, args.workspace, store=store)
    if not args.quiet and not args.json:
        def echo(event_type: str, payload: dict) -> None:
            if event_type == ev.CONTENT_DELTA:
                sys.stdout.write(payload["text"])
                sys.stdout.flush()
            elif event_type == ev.TOOL_CALL_STARTED:
                print(f"\n[tool] {payload['name']} {json.dumps(payload['args'])}", file=sys.stderr)
            elif event_type == ev.ERROR:
                print(f"\n[error] {payload.get('error')}\n[hint] {payload.get('hint')}", file=sys.stderr)

        agent.events.subscribe(echo)

    result = await agent.run_task(_read_task(args.task), conversation_id=args.conversation)

    outcomes = agent.apply_edits(result) if args.apply and result.edit_blocks else []
    if args.json:
        payload = result.to_dict()
        payload["applied"] = [outcome.to_dict() for outcome in outcomes]
        print(json.dumps(payload, indent=2, default=str))
    else:
        print()
        for outcome in outcomes:
            status = "ok" if outcome.success else f"FAILED: {outcome.error}"
            print(f"[edit] {outcome.path}: {status}")
        cost = f"${result.cost.total_cost:.4f}" if result.cost else "n/a"
        print(
            f"[done] {result.stop_reason} turns={result.turns} tools={len(result.tool_calls)} "
            f"tokens={result.usage.total_tokens} cost={cost}",
            file=sys.stderr,
        )
    return 1 if result.error else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        config = load_config(args)
    except ConfigValidationError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if config.logging.debug else config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(_run(args, config))
    except ProviderError as exc:
        print(f"Provider error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
