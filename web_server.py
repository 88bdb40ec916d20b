import logging
import uuid
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from trip_concierge.config import Config, setup_logging
from trip_concierge.errors import InvalidRequest, OriginRejected
from trip_concierge.schemas import parse_trip_request
from trip_concierge.agent.aggregator import build_payload
from trip_concierge.main import build_agent

# Configure Logging
setup_logging(Config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Trip Concierge")

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Initialize Agent Global Variable
agent = None


def initialize_agent():
    global agent
    agent = build_agent()
    if agent is None:
        logger.error("Agent initialization failed.")
    return agent is not None


def is_origin_allowed(origin: Optional[str]) -> bool:
    if not origin:
        return False
    return origin in Config.allowed_origins()


def check_origin(origin: Optional[str]):
    if not is_origin_allowed(origin):
        raise OriginRejected(origin)


def cors_headers(origin: Optional[str]) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin if origin and is_origin_allowed(origin) else "",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Allow-Credentials": "true",
        "Content-Type": "application/json",
    }


@app.api_route("/{path:path}", methods=ALL_METHODS)
async def plan_trip(request: Request, path: str):
    """
    Single trip endpoint.
    Answers preflight, enforces the origin allow-list, then runs the agent loop.
    """
    origin = request.headers.get("origin")
    headers = cors_headers(origin)

    # Preflight never touches the model or data providers
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=headers)

    try:
        check_origin(origin)
    except OriginRejected as e:
        logger.warning(str(e))
        return JSONResponse({"error": "Origin not allowed"}, status_code=403, headers=headers)

    if request.method != "POST":
        return JSONResponse({"error": f"Method {request.method} not allowed"}, status_code=405, headers=headers)

    try:
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequest("Request body must be valid JSON") from e
        trip = parse_trip_request(body)
    except InvalidRequest as e:
        logger.warning(f"Invalid request: {e}")
        return JSONResponse({"error": str(e)}, status_code=400, headers=headers)

    if agent is None and not initialize_agent():
        return JSONResponse({"error": "Agent not initialized"}, status_code=500, headers=headers)

    request_id = str(uuid.uuid4())
    final = await agent.run(trip, request_id=request_id)
    return JSONResponse({"done": True, "response": build_payload(final)}, headers=headers)


if __name__ == "__main__":
    uvicorn.run("web_server:app", host="0.0.0.0", port=5000, reload=True)
