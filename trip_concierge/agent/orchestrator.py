import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..capabilities.protocol import CapabilityCall, CapabilityName, CapabilityResult, Success
from ..capabilities.server import CapabilityServer
from ..errors import ModelRefusal
from ..schemas import FinalResponse, LogisticsPlan, TripRequest, WeatherSummary
from .llm import LLMProvider, langfuse_flush, langfuse_generation, langfuse_trace
from .memory import AgentMemory, InMemoryMemory

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful AI travel agent.
Give highly specific answers based on the information you're provided.
You MUST use the available tools to answer questions.
DO NOT make up information - always call the tools to get real data.
Prefer to gather information with the tools provided to you rather than giving basic, generic answers.
There are 2 questions that need to be answered. Ensure you answer both questions using the available tools."""


class LoopState(str, Enum):
    DISPATCHING = "dispatching"
    AWAITING_CAPABILITIES = "awaiting_capabilities"
    MERGING = "merging"
    TERMINAL = "terminal"


Resolved = Dict[CapabilityName, CapabilityResult]


def build_task(trip: TripRequest) -> str:
    """Both questions go in one task so the model requests both capabilities in one round."""
    return f"""I am travelling to {trip.destination} on {trip.fromDate} and returning on {trip.toDate}.
I am flying from {trip.flyingFrom}.
I am travelling with {trip.travelers} people.
My budget is ${trip.budget:g}.
The trip is a {trip.tripType} trip.

Answer these 2 questions:
1. What is the best flight and hotel options for me?
2. What is the current weather in {trip.destination}?"""


def parse_capability_name(name: Any) -> Optional[CapabilityName]:
    try:
        return CapabilityName(name)
    except ValueError:
        return None


def merge_result(response: FinalResponse, result: CapabilityResult) -> FinalResponse:
    """Fold one capability result into the accumulator, returning a new value."""
    if not isinstance(result, Success):
        return response.with_failure(result.reason)
    if result.capability is CapabilityName.PLAN_LOGISTICS and isinstance(result.payload, LogisticsPlan):
        return response.with_logistics(result.payload)
    elif result.capability is CapabilityName.GET_WEATHER and isinstance(result.payload, WeatherSummary):
        response = response.with_weather(result.payload)
        if result.payload.summaryError:
            response = response.with_failure(f"{result.capability.value}: {result.payload.summaryError}")
        return response
    raise TypeError(f"{result.capability.value} returned an unexpected payload: {type(result.payload).__name__}")


class AgentOrchestrator:
    def __init__(self, llm: LLMProvider, server: CapabilityServer, max_rounds: int = 4):
        self.llm = llm
        self.server = server
        self.max_rounds = max_rounds

    def _select_calls(self, tool_calls: List[Dict[str, Any]], resolved: Resolved) -> List[CapabilityCall]:
        """Pick the calls to execute: known capabilities, each at most once per request."""
        selected = []
        seen = set(resolved)
        for tool_call in tool_calls:
            name = parse_capability_name(tool_call.get("name"))
            if name is None:
                logger.warning(f"Model requested unknown capability: {tool_call.get('name')}")
                continue
            if name in seen:
                continue
            seen.add(name)
            arguments = tool_call.get("arguments")
            selected.append(CapabilityCall(
                id=str(tool_call.get("id")),
                name=name,
                arguments=arguments if isinstance(arguments, dict) else {}
            ))
        return selected

    async def _execute(self, calls: List[CapabilityCall], request_id: str) -> List[CapabilityResult]:
        for call in calls:
            logger.info(f"Executing capability: {call.name.value}",
                        extra={"request_id": request_id, "capability": call.name.value})
        # Capabilities are independent; call_tool never raises
        return list(await asyncio.gather(*(self.server.call_tool(call) for call in calls)))

    def _merge(self, memory: AgentMemory, reply: Dict[str, Any], results: List[CapabilityResult],
               response: FinalResponse, resolved: Resolved) -> Tuple[FinalResponse, Resolved]:
        resolved = dict(resolved)
        for result in results:
            resolved[result.capability] = result
            response = merge_result(response, result)

        memory.add_message({
            "role": "assistant",
            "content": reply.get("content"),
            "tool_calls": reply["tool_calls"]
        })
        # One tool turn per requested call so every call id gets an answer
        for tool_call in reply["tool_calls"]:
            name = parse_capability_name(tool_call.get("name"))
            if name is None:
                content = f"Error: unknown capability '{tool_call.get('name')}'"
            else:
                content = resolved[name].to_text()
            memory.add_message({
                "role": "tool",
                "tool_call_id": tool_call.get("id"),
                "name": tool_call.get("name"),
                "content": content
            })
        return response, resolved

    async def run(self, trip: TripRequest, request_id: str = "default",
                  memory: Optional[AgentMemory] = None) -> FinalResponse:
        """Drive the dispatch loop for one trip request until it reaches TERMINAL."""
        logger.info("Starting agent run", extra={"request_id": request_id})
        trace = langfuse_trace(name="agent-run", session_id=request_id,
                               metadata={"destination": trip.destination})

        memory = memory or InMemoryMemory()
        memory.add_message({"role": "system", "content": SYSTEM_PROMPT})
        memory.add_message({"role": "user", "content": build_task(trip)})
        tools = self.server.list_tools()

        state = LoopState.DISPATCHING
        response = FinalResponse()
        resolved: Resolved = {}
        reply: Dict[str, Any] = {}
        pending: List[CapabilityCall] = []
        results: List[CapabilityResult] = []
        stop_text = None
        dispatch_failed = False
        rounds = 0

        while state is not LoopState.TERMINAL:
            if state is LoopState.DISPATCHING:
                if rounds >= self.max_rounds:
                    logger.warning("Dispatch round limit reached", extra={"request_id": request_id})
                    state = LoopState.TERMINAL
                    continue
                rounds += 1
                logger.info("Calling LLM", extra={"request_id": request_id})
                try:
                    reply = await self.llm.call_tool(memory.get_messages(), tools, require_tool=not resolved)
                except Exception as e:
                    logger.error(f"LLM dispatch failed: {e}", extra={"request_id": request_id})
                    response = response.with_failure(f"Error: {e}")
                    dispatch_failed = True
                    state = LoopState.TERMINAL
                    continue

                tool_calls = reply.get("tool_calls")
                langfuse_generation(
                    trace=trace,
                    name="dispatch",
                    model=getattr(self.llm, "model", "unknown"),
                    input_data={"messages_count": len(memory.get_messages()), "tools_count": len(tools)},
                    output_data={"content": reply.get("content"),
                                 "tool_calls": [tc.get("name") for tc in tool_calls] if tool_calls else None},
                    metadata={"round": rounds}
                )

                if not tool_calls:
                    stop_text = reply.get("content")
                    logger.info("No tool calls, model stopped", extra={"request_id": request_id})
                    state = LoopState.TERMINAL
                else:
                    pending = self._select_calls(tool_calls, resolved)
                    state = LoopState.AWAITING_CAPABILITIES

            elif state is LoopState.AWAITING_CAPABILITIES:
                results = await self._execute(pending, request_id)
                state = LoopState.MERGING

            elif state is LoopState.MERGING:
                response, resolved = self._merge(memory, reply, results, response, resolved)
                for result in results:
                    logger.info(f"Capability resolved: {result.capability.value}",
                                extra={"request_id": request_id, "is_error": result.is_error})
                if all(name in resolved for name in CapabilityName):
                    state = LoopState.TERMINAL
                else:
                    state = LoopState.DISPATCHING

        unresolved = [name.value for name in CapabilityName if name not in resolved]
        if unresolved and not dispatch_failed:
            refusal = ModelRefusal(stop_text or f"Model stopped without invoking: {', '.join(unresolved)}")
            logger.warning(f"Model refusal: {refusal}", extra={"request_id": request_id})
            response = response.with_failure(str(refusal))

        if trace is not None:
            trace.end()
        langfuse_flush()

        logger.info("Agent run complete", extra={"request_id": request_id})
        return response
