import os
import json
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from langfuse import Langfuse, observe

logger = logging.getLogger(__name__)

# Langfuse Observability (enabled only when keys are configured)
_langfuse_secret = os.getenv("LANGFUSE_SECRET_KEY")
_langfuse_public = os.getenv("LANGFUSE_PUBLIC_KEY")

if _langfuse_secret and _langfuse_public:
    langfuse_client = Langfuse(
        secret_key=_langfuse_secret,
        public_key=_langfuse_public,
        host=os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com")
    )
    LANGFUSE_ENABLED = True
else:
    langfuse_client = None
    LANGFUSE_ENABLED = False


def langfuse_observe(name: str = None, as_type: str = None):
    """Decorator that wraps @observe when Langfuse is enabled, no-op otherwise."""
    def decorator(func):
        if LANGFUSE_ENABLED:
            return observe(name=name, as_type=as_type)(func)
        return func
    return decorator


def langfuse_trace(name: str, session_id: str, metadata: Optional[Dict[str, Any]] = None):
    """Open a root span for one agent run. Returns None when tracing is off."""
    if not LANGFUSE_ENABLED:
        return None
    span = langfuse_client.start_span(name=name, metadata=metadata)
    span.update_trace(session_id=session_id)
    return span


def langfuse_generation(trace, name: str, model: str, input_data: Any, output_data: Any,
                        metadata: Optional[Dict[str, Any]] = None):
    if trace is None:
        return
    generation = trace.start_generation(
        name=name,
        model=model,
        input=input_data,
        output=output_data,
        metadata=metadata
    )
    generation.end()


def langfuse_flush():
    if langfuse_client is not None:
        langfuse_client.flush()


JSON_ONLY_INSTRUCTION = "Respond with a single JSON object only. Do not add any prose or Markdown."


class LLMProvider(ABC):
    """Abstract base class for LLM providers (Async)."""

    model: str

    @abstractmethod
    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None, json_mode: bool = False) -> str:
        """Generate text from the LLM. With json_mode, the output should be a single JSON object."""
        pass

    @abstractmethod
    async def call_tool(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]],
                        require_tool: bool = False) -> Dict[str, Any]:
        """Generate a response that might include tool calls.

        Returns {"content": str | None, "tool_calls": [{"id", "name", "arguments"}] | None}.
        """
        pass


class OpenAIProvider(LLMProvider):
    def __init__(self, api_key: str, model: str = "gpt-4o", base_url: Optional[str] = None):
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model

    @langfuse_observe(name="openai-generate-text", as_type="generation")
    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None, json_mode: bool = False) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {"model": self.model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        return response.choices[0].message.content

    @staticmethod
    def _convert_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Generic tool-call turns -> OpenAI function-call wire format
        converted = []
        for msg in messages:
            if msg["role"] == "assistant" and msg.get("tool_calls"):
                converted.append({
                    "role": "assistant",
                    "content": msg.get("content"),
                    "tool_calls": [{
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": json.dumps(tc["arguments"])}
                    } for tc in msg["tool_calls"]]
                })
            elif msg["role"] == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg["tool_call_id"],
                    "content": msg["content"]
                })
            else:
                converted.append({"role": msg["role"], "content": msg.get("content") or ""})
        return converted

    @langfuse_observe(name="openai-call-tool", as_type="generation")
    async def call_tool(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]],
                        require_tool: bool = False) -> Dict[str, Any]:
        openai_tools = []
        for tool in tools:
            openai_tools.append({
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("inputSchema", {})
                }
            })

        kwargs = {"model": self.model, "messages": self._convert_messages(messages)}
        if openai_tools:
            kwargs["tools"] = openai_tools
            kwargs["tool_choice"] = "required" if require_tool else "auto"

        response = await self.client.chat.completions.create(**kwargs)

        message = response.choices[0].message

        if message.tool_calls:
            tool_calls = []
            for tc in message.tool_calls:
                try:
                    arguments = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError:
                    logger.warning(f"Unparseable arguments for tool {tc.function.name}")
                    arguments = {}
                tool_calls.append({
                    "id": tc.id,
                    "name": tc.function.name,
                    "arguments": arguments
                })
            return {"content": message.content, "tool_calls": tool_calls}

        return {"content": message.content, "tool_calls": None}


class AnthropicProvider(LLMProvider):
    def __init__(self, api_key: str, model: str = "claude-3-5-sonnet-20241022"):
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model

    @langfuse_observe(name="anthropic-generate-text", as_type="generation")
    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None, json_mode: bool = False) -> str:
        if json_mode:
            # No native JSON mode; the caller parses and validates the output
            system_prompt = f"{system_prompt}\n\n{JSON_ONLY_INSTRUCTION}" if system_prompt else JSON_ONLY_INSTRUCTION

        kwargs = {
            "model": self.model,
            "max_tokens": 1024,
            "messages": [{"role": "user", "content": prompt}]
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self.client.messages.create(**kwargs)
        return "".join(block.text for block in response.content if block.type == "text")

    @langfuse_observe(name="anthropic-call-tool", as_type="generation")
    async def call_tool(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]],
                        require_tool: bool = False) -> Dict[str, Any]:
        # Anthropic Tool Use Format:
        # User: ...
        # Assistant: <tool_use>...</tool_use>
        # User: <tool_result>...</tool_result>

        anthropic_tools = []
        for tool in tools:
            anthropic_tools.append({
                "name": tool["name"],
                "description": tool.get("description", ""),
                "input_schema": tool.get("inputSchema", {})
            })

        system_prompt = None
        converted_messages = []

        for msg in messages:
            if msg["role"] == "system":
                system_prompt = msg["content"]
            elif msg["role"] == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg["tool_call_id"],
                    "content": msg["content"]
                }
                # Parallel tool results must share one user turn
                if converted_messages and converted_messages[-1]["role"] == "user" \
                        and isinstance(converted_messages[-1]["content"], list):
                    converted_messages[-1]["content"].append(block)
                else:
                    converted_messages.append({"role": "user", "content": [block]})
            elif msg["role"] == "assistant" and msg.get("tool_calls"):
                content_blocks = []
                if msg.get("content"):
                    content_blocks.append({"type": "text", "text": msg["content"]})

                for tc in msg["tool_calls"]:
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tc["id"],
                        "name": tc["name"],
                        "input": tc["arguments"]
                    })

                converted_messages.append({
                    "role": "assistant",
                    "content": content_blocks
                })
            else:
                # Anthropic does not allow empty content blocks
                if not msg.get("content"):
                    continue
                converted_messages.append({"role": msg["role"], "content": msg["content"]})

        kwargs = {
            "model": self.model,
            "max_tokens": 1024,
            "messages": converted_messages,
            "tools": anthropic_tools
        }
        if anthropic_tools:
            kwargs["tool_choice"] = {"type": "any"} if require_tool else {"type": "auto"}
        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self.client.messages.create(**kwargs)

        tool_calls = []
        content_text = ""

        for block in response.content:
            if block.type == "text":
                content_text += block.text
            elif block.type == "tool_use":
                tool_calls.append({
                    "id": block.id,
                    "name": block.name,
                    "arguments": block.input
                })

        return {"content": content_text or None, "tool_calls": tool_calls if tool_calls else None}


def get_llm_provider(provider_name: str, api_key: str, model: Optional[str] = None,
                     base_url: Optional[str] = None) -> LLMProvider:
    if provider_name.lower() == "openai":
        return OpenAIProvider(api_key, model=model or "gpt-4o", base_url=base_url)
    elif provider_name.lower() == "anthropic":
        return AnthropicProvider(api_key, model=model or "claude-3-5-sonnet-20241022")
    else:
        raise ValueError(f"Unknown provider: {provider_name}")
