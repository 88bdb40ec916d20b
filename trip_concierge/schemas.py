import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from .errors import InvalidRequest, SchemaViolation

ModelT = TypeVar("ModelT", bound=BaseModel)

DIRECT_FLIGHT = "direct"
_DIRECT_SPELLINGS = {"direct", "direct flight", "nonstop", "non-stop", "none", "no layover"}

# Tolerance (in currency units) when checking that the total matches the parts
COST_TOLERANCE = 1.0

# pydantic error type -> human readable constraint family
_CONSTRAINT_KINDS = {
    "missing": "missing field",
    "greater_than": "out of range",
    "greater_than_equal": "out of range",
    "less_than": "out of range",
    "less_than_equal": "out of range",
    "too_short": "wrong length",
    "too_long": "wrong length",
    "string_too_short": "wrong length",
    "string_too_long": "wrong length",
    "finite_number": "out of range",
}


class TripRequest(BaseModel):
    """The immutable trip parameters for one request."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, allow_inf_nan=False)

    destination: str = Field(min_length=1, description="The destination city name")
    flyingFrom: str = Field(min_length=1, description="The origin city or airport")
    fromDate: str = Field(min_length=1, description="Departure date")
    toDate: str = Field(min_length=1, description="Return date")
    budget: float = Field(gt=0, description="Total budget in USD for all travelers")
    travelers: int = Field(gt=0, description="Number of travelers")
    tripType: str = Field(min_length=1, description="Trip category, e.g. leisure or business")


class FlightPlan(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    airline: str = Field(min_length=1, description="The airline name")
    departure: str = Field(description="Departure time and date")
    arrival: str = Field(description="Arrival time and date")
    layover: str = Field(description='Layover city or "direct" for a direct flight')
    price: float = Field(gt=0, description="Total price for all travelers")

    @field_validator("layover")
    @classmethod
    def normalize_layover(cls, value: str) -> str:
        value = value.strip()
        if value.lower() in _DIRECT_SPELLINGS:
            return DIRECT_FLIGHT
        if not re.search(r"[^\W\d_]", value):
            raise ValueError("must be a place name or 'direct'")
        return value


class HotelPlan(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    name: str = Field(min_length=1, description="Hotel name")
    stars: int = Field(ge=4, le=5, description="Star rating (4 or 5)")
    roomType: str = Field(description="Type of room")
    price: float = Field(gt=0, description="Total price for the stay")
    location: str = Field(description="Hotel location in the city")


class LogisticsPlan(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    flightPlan: FlightPlan
    flightRecommendation: str = Field(description="Brief phrase about the flight, price, and layover")
    hotelPlan: HotelPlan
    hotelRecommendation: str = Field(description="Brief phrase about the hotel, star level, room type, and price")
    totalEstimatedCost: float = Field(gt=0, description="Total cost of flight + hotel")
    conclusion: str = Field(description="Whether the plan fits within budget or if revision is needed")
    activitiesToDo: List[str] = Field(
        min_length=3, max_length=3, description="3 activities with emojis based on trip type"
    )

    @field_validator("totalEstimatedCost")
    @classmethod
    def total_matches_parts(cls, value: float, info: ValidationInfo) -> float:
        flight = info.data.get("flightPlan")
        hotel = info.data.get("hotelPlan")
        # Parts already failed validation; their own errors are reported instead
        if flight is None or hotel is None:
            return value
        expected = flight.price + hotel.price
        if abs(value - expected) > COST_TOLERANCE:
            raise ValueError(f"must equal flight price + hotel price ({expected:.2f})")
        return value


class WeatherDescription(BaseModel):
    description: str = Field(max_length=150, description="A 30-word paragraph describing the current weather")
    temperature: str = Field(description="Current temperature with unit")
    conditions: str = Field(description="Brief weather conditions")


class CurrentConditions(BaseModel):
    """Current-moment fields pulled from the weather provider."""

    model_config = ConfigDict(allow_inf_nan=False)

    temperature: float
    description: str
    main: str
    # Untrusted for naming: often names a different city than the destination
    timezone: Optional[str] = None


class WeatherSummary(BaseModel):
    description: Optional[str] = None
    temperature: Optional[str] = None
    conditions: Optional[str] = None
    imageUrl: Optional[str] = None
    # Set when summarization failed but the image survived; never serialized
    summaryError: Optional[str] = Field(default=None, exclude=True)


class FinalResponse(BaseModel):
    """Accumulated loop result. Every update returns a new instance."""

    model_config = ConfigDict(frozen=True)

    logisticsPlan: Optional[LogisticsPlan] = None
    weather: Optional[WeatherSummary] = None
    failureReason: Optional[str] = None

    def with_logistics(self, plan: LogisticsPlan) -> "FinalResponse":
        return self.model_copy(update={"logisticsPlan": plan})

    def with_weather(self, weather: WeatherSummary) -> "FinalResponse":
        return self.model_copy(update={"weather": weather})

    def with_failure(self, reason: str) -> "FinalResponse":
        if self.failureReason:
            reason = f"{self.failureReason}; {reason}"
        return self.model_copy(update={"failureReason": reason})


def _describe_error(error: Dict[str, Any]) -> SchemaViolation:
    field = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
    error_type = error.get("type", "")
    if error_type in _CONSTRAINT_KINDS:
        kind = _CONSTRAINT_KINDS[error_type]
    elif error_type.endswith("_type") or error_type.endswith("_parsing") or error_type == "int_from_float":
        kind = "wrong type"
    else:
        kind = "invalid value"
    return SchemaViolation(field, f"{kind}: {error.get('msg', '')}")


def validate_payload(model_cls: Type[ModelT], raw: Any) -> ModelT:
    """Validate raw capability output against a declared shape.

    Raises SchemaViolation naming the first offending field. There is no
    partial acceptance: any violation discards the whole payload.
    """
    try:
        return model_cls.model_validate(raw)
    except ValidationError as e:
        raise _describe_error(e.errors()[0]) from e


def parse_trip_request(raw: Any) -> TripRequest:
    """Validate an incoming request body before any model call is made."""
    if not isinstance(raw, dict):
        raise InvalidRequest("Request body must be a JSON object")
    try:
        return TripRequest.model_validate(raw)
    except ValidationError as e:
        violation = _describe_error(e.errors()[0])
        raise InvalidRequest(f"Invalid field '{violation.field}': {violation.constraint}") from e


def parse_structured(text: Optional[str], model_cls: Type[ModelT]) -> ModelT:
    """Parse model text output as JSON and validate it."""
    if not text:
        raise SchemaViolation("<root>", "empty model output")

    # Models sometimes wrap JSON in Markdown fences or add a preamble
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end < start:
        raise SchemaViolation("<root>", "expected a JSON object")

    try:
        raw = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise SchemaViolation("<root>", f"output is not valid JSON: {e.msg}") from e

    return validate_payload(model_cls, raw)


def schema_for_prompt(model_cls: Type[BaseModel]) -> str:
    """Render a model's JSON schema for inclusion in a prompt."""
    return json.dumps(model_cls.model_json_schema(), indent=2)
