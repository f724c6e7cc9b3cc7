import asyncio
import logging
from typing import Optional

import aiohttp

from models.job import HIGH_TIER_VIDEO_SIZE, GenerationProfile, Prediction
from utils.env import Settings
from utils.errors import (
    NotFoundError,
    PredictionSubmissionFailedError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

logger = logging.getLogger("prediction_service")


def select_profile(settings: Settings, video_size: Optional[str]) -> GenerationProfile:
    """Exactly ``1080p`` gets the high-tier model; anything else, including nothing, is standard."""
    if video_size == HIGH_TIER_VIDEO_SIZE:
        return GenerationProfile(name="high", model=settings.HIGH_MODEL)
    return GenerationProfile(name="standard", model=settings.STANDARD_MODEL)


def _parse_prediction(data: dict) -> Prediction:
    error = data.get("error")
    return Prediction(
        id=str(data.get("id") or ""),
        status=str(data.get("status") or "starting"),
        output=data.get("output"),
        error=str(error) if error else None,
    )


class PredictionService:
    """Client for the Replicate predictions API."""

    def __init__(self, settings: Settings):
        self.base_url = settings.REPLICATE_BASE_URL.rstrip("/")
        self.api_token = settings.REPLICATE_API_TOKEN
        self.timeout = aiohttp.ClientTimeout(total=settings.PREDICTION_TIMEOUT_SECONDS)
        self._session: aiohttp.ClientSession | None = None

    async def ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={
                    "Authorization": f"Token {self.api_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._session

    async def close_session(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        url: str,
        payload: dict | None = None,
        not_found_message: str | None = None,
    ) -> dict:
        session = await self.ensure_session()
        try:
            async with session.request(method, url, json=payload) as response:
                if response.status == 404 and not_found_message:
                    raise NotFoundError(not_found_message)
                if response.status >= 400:
                    text = await response.text()
                    logger.error(f"Replicate {method} {url} -> {response.status}: {text[:500]}")
                    raise UpstreamUnavailableError(
                        f"Prediction service returned {response.status}: {text[:200]}"
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            logger.error(f"Replicate {method} {url} timed out")
            raise UpstreamTimeoutError("Prediction service timed out") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            logger.error(f"Replicate {method} {url} failed: {exc}")
            raise UpstreamUnavailableError(f"Prediction service unavailable: {exc}") from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailableError("Prediction service returned an unexpected body")
        return data

    async def create(
        self,
        profile: GenerationProfile,
        prompt: str,
        image_url: str,
        duration: int,
    ) -> Prediction:
        url = f"{self.base_url}/models/{profile.model}/predictions"
        payload = {
            "input": {
                "start_image": image_url,
                "prompt": prompt,
                "duration": duration,
            }
        }
        logger.info(f"Creating prediction with {profile.name} profile ({profile.model}), duration={duration}s")
        data = await self._request("POST", url, payload)
        prediction = _parse_prediction(data)
        if not prediction.id:
            raise PredictionSubmissionFailedError("Prediction service did not return a prediction id")
        logger.info(f"Prediction created: {prediction.id} status={prediction.status}")
        return prediction

    async def get(self, prediction_id: str) -> Prediction:
        data = await self._request(
            "GET",
            f"{self.base_url}/predictions/{prediction_id}",
            not_found_message=f"Prediction {prediction_id} not found",
        )
        prediction = _parse_prediction(data)
        if not prediction.id:
            prediction.id = prediction_id
        logger.debug(f"Prediction {prediction_id} status={prediction.status}")
        return prediction
