"""Multimodal text capability used for identification and refinement."""

import base64
from abc import ABC, abstractmethod

import openai

from ..errors import ClassificationError
from ..extractor_logging import LogCategory, get_category_logger

logger = get_category_logger(LogCategory.VISION)

DEFAULT_VISION_MODEL = "gpt-4o-mini"


def image_data_url(image: bytes, mime_type: str = "image/png") -> str:
    """Inline image bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"


class VisionClient(ABC):
    """A capability that answers a prompt about one or more images."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, images: list[bytes]) -> str:
        """Return the capability's raw text answer.

        Raises:
            ClassificationError: On network, authorization or quota failures.
        """
        pass


class OpenAIVisionClient(VisionClient):
    """Vision client backed by OpenAI chat completions with inline PNG images."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_VISION_MODEL,
        base_url: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        client: openai.AsyncOpenAI | None = None,
    ):
        if not api_key and client is None:
            raise ClassificationError(
                "OpenAI API key is required for component identification",
                model=model,
                suggestion="Set OPENAI_API_KEY or pass openai_api_key in the config file",
            )
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(self, system_prompt: str, user_prompt: str, images: list[bytes]) -> str:
        content: list[dict] = [{"type": "text", "text": user_prompt}]
        for image in images:
            content.append({"type": "image_url", "image_url": {"url": image_data_url(image)}})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": content},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            raise ClassificationError(
                f"Vision request to {self.model} failed: {e}", model=self.model
            ) from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            logger.warning(f"Empty response from {self.model}")
            return ""
        return text
