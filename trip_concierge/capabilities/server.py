import logging
from typing import Any, Dict, List

from ..agent.llm import LLMProvider
from ..errors import CapabilityFailure, SchemaViolation
from ..schemas import TripRequest, validate_payload
from ..tools import ImageGenerator, WeatherClient, get_current_weather, plan_logistics
from .protocol import (
    CapabilityCall,
    CapabilityName,
    CapabilityResult,
    Failure,
    Success,
    WeatherArguments,
    list_tool_definitions,
)

logger = logging.getLogger(__name__)


class CapabilityServer:
    """Hosts the fixed capability set and converts every outcome into a CapabilityResult."""

    def __init__(self, llm: LLMProvider, weather: WeatherClient, images: ImageGenerator):
        self.llm = llm
        self.weather = weather
        self.images = images
        self.tool_definitions: List[Dict[str, Any]] = list_tool_definitions()

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.tool_definitions

    async def _invoke(self, call: CapabilityCall):
        if call.name is CapabilityName.PLAN_LOGISTICS:
            trip = validate_payload(TripRequest, call.arguments)
            return await plan_logistics(self.llm, trip)
        elif call.name is CapabilityName.GET_WEATHER:
            args = validate_payload(WeatherArguments, call.arguments)
            return await get_current_weather(args.destination, self.llm, self.weather, self.images)
        raise AssertionError(f"Unhandled capability: {call.name}")

    async def call_tool(self, call: CapabilityCall) -> CapabilityResult:
        """Run one capability. Never raises: failures come back as Failure values."""
        try:
            payload = await self._invoke(call)
        except SchemaViolation as e:
            logger.warning(f"{call.name.value} produced invalid data: {e}", extra={"capability": call.name.value})
            return Failure(capability=call.name, call_id=call.id, reason=f"{call.name.value}: {e}")
        except CapabilityFailure as e:
            logger.warning(f"{call.name.value} failed: {e}", extra={"capability": call.name.value})
            return Failure(capability=call.name, call_id=call.id, reason=f"{call.name.value}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error in {call.name.value}", extra={"capability": call.name.value})
            return Failure(capability=call.name, call_id=call.id, reason=f"{call.name.value}: {e}")

        return Success(capability=call.name, call_id=call.id, payload=payload)
