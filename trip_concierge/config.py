import os
import json
import logging
from dotenv import load_dotenv
from pathlib import Path
from typing import List

# Load environment variables from .env file in project root
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGIN = "http://localhost:5173"


class Config:
    """Configuration management for the Trip Concierge."""

    # LLM
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").lower()
    LLM_MODEL = os.getenv("LLM_MODEL")
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")  # Optional AI gateway in front of OpenAI
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    IMAGE_MODEL = os.getenv("IMAGE_MODEL", "dall-e-3")

    # Weather data provider
    OPENWEATHER_API_KEY = os.getenv("OPENWEATHER_API_KEY")
    OPENWEATHER_BASE_URL = os.getenv("OPENWEATHER_BASE_URL", "https://api.openweathermap.org")

    # HTTP boundary
    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

    # Agent loop
    MAX_DISPATCH_ROUNDS = int(os.getenv("MAX_DISPATCH_ROUNDS", "4"))
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def allowed_origins(cls) -> List[str]:
        """Parse the comma-separated allow-list, falling back to the local dev origin."""
        if not cls.ALLOWED_ORIGINS:
            return [DEFAULT_ALLOWED_ORIGIN]
        return [origin.strip() for origin in cls.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @classmethod
    def provider_api_key(cls):
        if cls.LLM_PROVIDER == "anthropic":
            return cls.ANTHROPIC_API_KEY
        return cls.OPENAI_API_KEY

    @classmethod
    def validate(cls):
        """Check for missing critical keys."""
        missing = []
        if not cls.provider_api_key():
            missing.append(f"LLM API key for provider '{cls.LLM_PROVIDER}'")
        if not cls.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY (required for weather images)")
        if not cls.OPENWEATHER_API_KEY:
            missing.append("OPENWEATHER_API_KEY")

        if missing:
            logger.warning(f"Missing keys: {', '.join(missing)}")
            logger.warning("Please create a .env file based on .env.example")
            return False
        return True


def setup_logging(level="INFO"):
    """Configure structured JSON logging."""
    import sys

    # Create a handler that writes to stdout
    handler = logging.StreamHandler(sys.stdout)

    # Use a custom formatter for JSON output
    class JsonFormatter(logging.Formatter):
        def format(self, record):
            log_record = {
                "timestamp": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "message": record.getMessage(),
                "module": record.module,
                "function": record.funcName,
            }
            if hasattr(record, "request_id"):
                log_record["request_id"] = record.request_id
            if hasattr(record, "capability"):
                log_record["capability"] = record.capability
            if record.exc_info:
                log_record["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_record)

    handler.setFormatter(JsonFormatter())

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(level)
    # Remove existing handlers to avoid duplication
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
