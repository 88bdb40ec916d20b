from typing import Any, Dict

from ..schemas import FinalResponse


def build_payload(final: FinalResponse) -> Dict[str, Any]:
    """Shape the accumulated loop result into the outward response body.

    Pure: nothing is recomputed, never-populated fields default to None.
    """
    weather = final.weather
    return {
        "logisticsPlanRecommendation": final.logisticsPlan.model_dump() if final.logisticsPlan else None,
        "currentWeather": weather.description if weather else None,
        "currentWeatherImageUrl": weather.imageUrl if weather else None,
        "failureReason": final.failureReason,
    }
