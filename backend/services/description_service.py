import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI

from utils.env import Settings
from utils.scene_prompt_builder import create_description_request, create_fallback_prompt

logger = logging.getLogger("description_service")


@dataclass
class Description:
    text: str
    used_fallback: bool = False
    failure: Optional[str] = None


class DescriptionService:
    """Vision-model scene description with a deterministic fallback.

    ``describe`` never raises: a network error, a non-success response or an
    empty answer all produce the fallback prompt instead.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.model = settings.OPENAI_VISION_MODEL
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY,
                timeout=self.settings.DESCRIPTION_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def _fallback(self, camera_control: str, reason: str) -> Description:
        logger.warning(f"Description fallback used: {reason}")
        return Description(text=create_fallback_prompt(camera_control), used_fallback=True, failure=reason)

    async def describe(self, image_url: str, camera_control: str) -> Description:
        instruction = create_description_request(camera_control)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": instruction},
                            {"type": "image_url", "image_url": {"url": image_url}},
                        ],
                    }
                ],
                max_tokens=self.settings.DESCRIPTION_MAX_TOKENS,
            )
        except Exception as e:
            return self._fallback(camera_control, f"{type(e).__name__}: {e}")

        content = ""
        if response.choices and response.choices[0].message:
            content = (response.choices[0].message.content or "").strip()
        if not content:
            return self._fallback(camera_control, "empty description")

        logger.info(f"Description received ({len(content)} chars)")
        return Description(text=content)
