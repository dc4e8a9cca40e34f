from __future__ import annotations

import logging
from dataclasses import dataclass, field

from openai import AsyncOpenAI

from storyquest.agents.autogen_config import resolve_api_key, settings_from_env

logger = logging.getLogger(__name__)


class ImageGenerationError(RuntimeError):
    pass


@dataclass(slots=True)
class OpenAIImageCollaborator:
    """Image generation through the OpenAI images API."""

    model: str
    size: str = "1024x1024"
    client: AsyncOpenAI | None = None

    def _client(self) -> AsyncOpenAI:
        if self.client is None:
            s = settings_from_env()
            self.client = AsyncOpenAI(api_key=resolve_api_key(s), base_url=s.base_url)
        return self.client

    async def request_image(self, prompt: str) -> str:
        response = await self._client().images.generate(model=self.model, prompt=prompt, size=self.size, n=1)
        if not response.data:
            raise ImageGenerationError("Image API returned no data")
        url = response.data[0].url
        if not url:
            raise ImageGenerationError("Image API returned no URL")
        logger.info("image generated (model=%s)", self.model)
        return url


@dataclass(slots=True)
class LoggingImageCollaborator:
    """Dev/test stand-in: records prompts instead of calling an image API."""

    prompts: list[str] = field(default_factory=list)

    async def request_image(self, prompt: str) -> str:
        self.prompts.append(prompt)
        logger.info("image requested: %s", prompt)
        return f"logged:{len(self.prompts)}"
