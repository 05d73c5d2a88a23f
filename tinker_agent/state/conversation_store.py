"""Conversation persistence: interface plus in-memory and JSON-file stores."""

import asyncio
import json
import os
import threading
import time
import uuid
from typing import Any, Dict, List, Optional


def _generate_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationStore:
    """Append-only message store keyed by conversation id."""

    async def create_conversation(self, initial: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def add_message(self, conversation_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_all_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update_conversation(self, conversation_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


def _new_conversation(initial: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    now = _now_ms()
    conversation = {
        "id": _generate_id(),
        "title": "New Conversation",
        "created_at": now,
        "updated_at": now,
        "cumulative_tokens": 0,
        "messages": [],
    }
    conversation.update(initial or {})
    return conversation


def _stamp(message: Dict[str, Any]) -> Dict[str, Any]:
    stored = dict(message)
    stored.setdefault("id", _generate_id())
    stored.setdefault("timestamp", _now_ms())
    return stored


class InMemoryConversationStore(ConversationStore):
    def __init__(self) -> None:
        self._conversations: Dict[str, Dict[str, Any]] = {}

    async def create_conversation(self, initial: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        conversation = _new_conversation(initial)
        self._conversations[conversation["id"]] = conversation
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return self._conversations.get(conversation_id)

    async def add_message(self, conversation_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = _new_conversation({"id": conversation_id})
            self._conversations[conversation_id] = conversation
        stored = _stamp(message)
        conversation["messages"].append(stored)
        conversation["updated_at"] = _now_ms()
        return stored

    async def get_all_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        conversation = self._conversations.get(conversation_id)
        return list(conversation["messages"]) if conversation else []

    async def update_conversation(self, conversation_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        conversation.update({k: v for k, v in updates.items() if k not in {"id", "messages"}})
        conversation["updated_at"] = _now_ms()
        return conversation


class JSONConversationStore(ConversationStore):
    """One JSON document per conversation under ``root``."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)
        self._lock = threading.Lock()

    def _p(self, conversation_id: str) -> str:
        full = os.path.abspath(os.path.join(self.root, f"{conversation_id}.json"))
        if not full.startswith(self.root + os.sep):
            raise ValueError("Path escapes storage root")
        return full

    def _read(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        path = self._p(conversation_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, conversation: Dict[str, Any]) -> None:
        path = self._p(conversation["id"])
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(conversation, f, indent=2)
        os.replace(tmp, path)

    def _append(self, conversation_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            conversation = self._read(conversation_id) or _new_conversation({"id": conversation_id})
            stored = _stamp(message)
            conversation["messages"].append(stored)
            conversation["updated_at"] = _now_ms()
            self._write(conversation)
            return stored

    def _update(self, conversation_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            conversation = self._read(conversation_id)
            if conversation is None:
                return None
            conversation.update({k: v for k, v in updates.items() if k not in {"id", "messages"}})
            conversation["updated_at"] = _now_ms()
            self._write(conversation)
            return conversation

    # file access runs in a worker thread
    async def create_conversation(self, initial: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        conversation = _new_conversation(initial)
        await asyncio.to_thread(self._write, conversation)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._read, conversation_id)

    async def add_message(self, conversation_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._append, conversation_id, message)

    async def get_all_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        conversation = await asyncio.to_thread(self._read, conversation_id)
        return list(conversation["messages"]) if conversation else []

    async def update_conversation(self, conversation_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._update, conversation_id, updates)

    def list_conversations(self) -> List[str]:
        return sorted(name[:-5] for name in os.listdir(self.root) if name.endswith(".json"))
