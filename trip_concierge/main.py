import argparse
import asyncio
import json
import logging
import uuid
from typing import Optional

from pydantic import ValidationError

from .config import Config, setup_logging
from .agent.llm import get_llm_provider
from .agent.orchestrator import AgentOrchestrator
from .agent.aggregator import build_payload
from .capabilities import CapabilityServer
from .schemas import TripRequest
from .tools import ImageGenerator, WeatherClient

logger = logging.getLogger(__name__)


def build_agent() -> Optional[AgentOrchestrator]:
    """Wire the LLM provider, collaborators and capability server from Config."""
    if not Config.validate():
        return None

    try:
        llm = get_llm_provider(
            Config.LLM_PROVIDER,
            Config.provider_api_key(),
            model=Config.LLM_MODEL,
            base_url=Config.OPENAI_BASE_URL
        )
    except ValueError as e:
        logger.error(f"Error initializing LLM: {e}")
        return None

    weather = WeatherClient(
        Config.OPENWEATHER_API_KEY,
        base_url=Config.OPENWEATHER_BASE_URL,
        timeout=Config.HTTP_TIMEOUT_SECONDS
    )
    images = ImageGenerator(Config.OPENAI_API_KEY, model=Config.IMAGE_MODEL, base_url=Config.OPENAI_BASE_URL)
    server = CapabilityServer(llm, weather, images)

    logger.info(f"Agent initialized with: {Config.LLM_PROVIDER.upper()}")
    return AgentOrchestrator(llm, server, max_rounds=Config.MAX_DISPATCH_ROUNDS)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Plan a trip and report the current weather at the destination.")
    parser.add_argument("--destination", required=True)
    parser.add_argument("--flying-from", dest="flyingFrom", required=True)
    parser.add_argument("--from-date", dest="fromDate", required=True)
    parser.add_argument("--to-date", dest="toDate", required=True)
    parser.add_argument("--budget", type=float, required=True)
    parser.add_argument("--travelers", type=int, required=True)
    parser.add_argument("--trip-type", dest="tripType", required=True)
    return parser.parse_args(argv)


def main(argv=None):
    setup_logging(Config.LOG_LEVEL)
    args = parse_args(argv)

    try:
        trip = TripRequest(**vars(args))
    except ValidationError as e:
        print(f"Invalid trip request: {e}")
        return 2

    agent = build_agent()
    if agent is None:
        print("Agent could not be initialized. Check your .env configuration.")
        return 1

    final = asyncio.run(agent.run(trip, request_id=str(uuid.uuid4())))
    print(json.dumps({"done": True, "response": build_payload(final)}, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
