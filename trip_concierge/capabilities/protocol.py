from enum import Enum
from typing import Any, Dict, List, Literal, Type, Union

from pydantic import BaseModel, Field

from ..schemas import LogisticsPlan, TripRequest, WeatherSummary


class CapabilityName(str, Enum):
    """The closed set of capabilities the model may invoke."""

    PLAN_LOGISTICS = "generateLogisticsPlan"
    GET_WEATHER = "getCurrentWeather"


class WeatherArguments(BaseModel):
    destination: str = Field(min_length=1, description="The destination city name")


# Argument shape declared to the model for each capability
ARGUMENT_MODELS: Dict[CapabilityName, Type[BaseModel]] = {
    CapabilityName.PLAN_LOGISTICS: TripRequest,
    CapabilityName.GET_WEATHER: WeatherArguments,
}

DESCRIPTIONS: Dict[CapabilityName, str] = {
    CapabilityName.PLAN_LOGISTICS: (
        "Generate a complete travel logistics plan with flights and hotels based on user requirements"
    ),
    CapabilityName.GET_WEATHER: "Get the current weather conditions for a destination city",
}


class Tool(BaseModel):
    name: str
    description: str
    inputSchema: Dict[str, Any]


class CapabilityCall(BaseModel):
    """A model request to invoke one capability."""

    id: str
    name: CapabilityName
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Success(BaseModel):
    kind: Literal["success"] = "success"
    capability: CapabilityName
    call_id: str
    payload: Union[LogisticsPlan, WeatherSummary]

    @property
    def is_error(self) -> bool:
        return False

    def to_text(self) -> str:
        return self.payload.model_dump_json()


class Failure(BaseModel):
    kind: Literal["failure"] = "failure"
    capability: CapabilityName
    call_id: str
    reason: str

    @property
    def is_error(self) -> bool:
        return True

    def to_text(self) -> str:
        return f"Error: {self.reason}"


CapabilityResult = Union[Success, Failure]


def create_tool_definition(name: CapabilityName) -> Dict[str, Any]:
    """Build the signature the model sees for a capability."""
    schema = ARGUMENT_MODELS[name].model_json_schema()
    schema.pop("title", None)
    tool = Tool(name=name.value, description=DESCRIPTIONS[name], inputSchema=schema)
    return tool.model_dump()


def list_tool_definitions() -> List[Dict[str, Any]]:
    return [create_tool_definition(name) for name in CapabilityName]
