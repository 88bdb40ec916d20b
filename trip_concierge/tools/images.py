import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from ..errors import CapabilityFailure

logger = logging.getLogger(__name__)


class ImageGenerator:
    """Single square image per prompt via the OpenAI Images API."""

    def __init__(self, api_key: str, model: str = "dall-e-3", size: str = "1024x1024",
                 base_url: Optional[str] = None):
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.size = size

    async def generate(self, prompt: str) -> str:
        logger.info(f"Generating image with {self.model}")
        try:
            image = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1
            )
        except OpenAIError as e:
            raise CapabilityFailure(f"image generation failed: {e}") from e

        url = image.data[0].url if image.data else None
        if not url:
            raise CapabilityFailure("image generation returned no URL")
        return url
