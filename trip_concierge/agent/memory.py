from abc import ABC, abstractmethod
from typing import List, Dict, Any


class AgentMemory(ABC):
    """Conversation history for a single agent run.

    Messages use the provider-neutral format understood by every LLMProvider:

        {"role": "user", "content": "..."}
        {"role": "assistant", "content": "...", "tool_calls": [{"id", "name", "arguments"}]}
        {"role": "tool", "tool_call_id": "...", "name": "...", "content": "..."}
    """

    @abstractmethod
    def add_message(self, message: Dict[str, Any]):
        pass

    @abstractmethod
    def get_messages(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def clear(self):
        pass


class InMemoryMemory(AgentMemory):
    """List-backed memory. One instance per request; nothing is persisted."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def add_message(self, message: Dict[str, Any]):
        self.messages.append(message)

    def get_messages(self) -> List[Dict[str, Any]]:
        # Copy so callers can't rewrite history behind the orchestrator's back
        return list(self.messages)

    def clear(self):
        self.messages = []
