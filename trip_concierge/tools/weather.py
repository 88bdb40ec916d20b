import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from ..agent.llm import LLMProvider
from ..errors import CapabilityFailure
from ..schemas import CurrentConditions, WeatherDescription, WeatherSummary, parse_structured, schema_for_prompt
from .images import ImageGenerator

logger = logging.getLogger(__name__)

# Forecast arrays the one-call endpoint may include; only current-moment fields are used
FORECAST_KEYS = ("minutely", "hourly", "daily", "alerts")


class WeatherClient:
    """OpenWeather geocoding + current conditions."""

    def __init__(self, api_key: str, base_url: str = "https://api.openweathermap.org",
                 timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        params = {**params, "appid": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}{path}", params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise CapabilityFailure(f"weather provider request failed: {e}") from e
        except ValueError as e:
            raise CapabilityFailure(f"weather provider returned invalid JSON: {e}") from e

    async def geocode(self, destination: str) -> Tuple[float, float]:
        results = await self._get_json("/geo/1.0/direct", {"q": destination, "limit": 1})
        if not results:
            raise CapabilityFailure(f"unresolvable destination: {destination}")
        try:
            return float(results[0]["lat"]), float(results[0]["lon"])
        except (KeyError, TypeError, ValueError) as e:
            raise CapabilityFailure(f"malformed geocoding result for {destination}") from e

    async def current_conditions(self, latitude: float, longitude: float) -> CurrentConditions:
        data = await self._get_json("/data/3.0/onecall", {
            "lat": latitude,
            "lon": longitude,
            "units": "metric",
            "exclude": ",".join(FORECAST_KEYS),
        })
        data = strip_forecast(data)
        try:
            current = data["current"]
            weather = current["weather"][0]
            return CurrentConditions(
                temperature=current["temp"],
                description=weather["description"],
                main=weather["main"],
                timezone=data.get("timezone"),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise CapabilityFailure("malformed current-conditions payload") from e


def strip_forecast(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return data
    return {key: value for key, value in data.items() if key not in FORECAST_KEYS}


def build_description_prompt(destination: str, conditions: CurrentConditions) -> str:
    return f"""Describe the current weather in {destination} based on this data:
Temperature: {conditions.temperature}°C
Conditions: {conditions.description}
Weather Type: {conditions.main}

Write a natural 30-word paragraph (at most 150 characters) mentioning the city and country (e.g., "Paris, France").
Take the city name from "{destination}". Do NOT use the timezone property for the city name.

Return a JSON object matching this JSON schema:
{schema_for_prompt(WeatherDescription)}"""


def build_image_prompt(destination: str, conditions: CurrentConditions) -> str:
    return f"Generate a beautiful image representing this weather: {conditions.description} in {destination}"


async def describe_weather(llm: LLMProvider, destination: str, conditions: CurrentConditions) -> WeatherDescription:
    text = await llm.generate_text(build_description_prompt(destination, conditions), json_mode=True)
    return parse_structured(text, WeatherDescription)


async def get_current_weather(destination: str, llm: LLMProvider, weather: WeatherClient,
                              images: ImageGenerator) -> WeatherSummary:
    """Geocode, fetch current conditions, then summarize and illustrate.

    Geocode or fetch failures raise CapabilityFailure. The description and
    the image are independent: either may fail without discarding the other.
    """
    logger.info(f"Getting current weather for {destination}")
    latitude, longitude = await weather.geocode(destination)
    conditions = await weather.current_conditions(latitude, longitude)

    description, image_url = await asyncio.gather(
        describe_weather(llm, destination, conditions),
        images.generate(build_image_prompt(destination, conditions)),
        return_exceptions=True,
    )

    summary = WeatherSummary()
    if isinstance(description, Exception):
        logger.error(f"Error getting weather description for {destination}: {description}")
        summary = summary.model_copy(update={"summaryError": f"weather description failed: {description}"})
    else:
        summary = summary.model_copy(update=description.model_dump())

    if isinstance(image_url, Exception):
        logger.error(f"Error generating weather image for {destination}: {image_url}")
    else:
        summary = summary.model_copy(update={"imageUrl": image_url})

    if summary.description is None and summary.imageUrl is None:
        raise CapabilityFailure(f"no weather summary or image could be produced for {destination}")
    return summary
