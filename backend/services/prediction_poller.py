import asyncio
import logging
from typing import Awaitable, Callable, Optional

from models.job import FAILED, GENERATING, SUCCEEDED, Job, PollResult, Prediction
from services.job_store import JobStore
from services.prediction_service import PredictionService
from utils.env import Settings
from utils.errors import JobStateConflictError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger("prediction_poller")

NOT_READY_MESSAGE = "Video not ready after polling"


class PredictionPoller:
    def __init__(
        self,
        settings: Settings,
        job_store: JobStore,
        prediction_service: PredictionService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.job_store = job_store
        self.prediction_service = prediction_service
        self._sleep = sleep

    async def poll(self, prediction_id: Optional[str]) -> PollResult:
        """Report the current state of a prediction once.

        Jobs already in a terminal status are answered from the store; the
        prediction service is only asked about work still in flight.
        """
        prediction_id = (prediction_id or "").strip()
        if not prediction_id:
            raise ValidationError("Missing or invalid predictionId")

        job = await self.job_store.find_by_prediction(prediction_id)
        return await self._poll(prediction_id, job)

    async def _poll(self, prediction_id: str, job: Optional[Job]) -> PollResult:
        if job is not None and job.is_terminal:
            logger.debug(f"[{job.id}] already {job.status}, skipping external poll")
            return PollResult.from_job(job)

        logger.info(f"Polling prediction status for {prediction_id}")
        prediction = await self.prediction_service.get(prediction_id)
        result = self._to_result(prediction, job.id if job else None)
        if job is None or not result.is_terminal:
            return result
        return await self._record_terminal(job.id, result)

    def _to_result(self, prediction: Prediction, job_id: Optional[str]) -> PollResult:
        status = prediction.normalized_status
        video_url = prediction.video_url
        error = None
        if status == SUCCEEDED and not video_url:
            status = FAILED
            error = "Prediction succeeded but returned no video"
        elif status == FAILED:
            error = prediction.failure_reason

        return PollResult(
            prediction_id=prediction.id,
            status=status,
            output=prediction.output,
            error=error,
            video_url=video_url if status == SUCCEEDED else None,
            job_id=job_id,
        )

    async def _record_terminal(self, job_id: str, result: PollResult) -> PollResult:
        if result.status == SUCCEEDED:
            changes = {"status": SUCCEEDED, "video_url": result.video_url, "error": None}
        else:
            changes = {"status": FAILED, "error": result.error}

        try:
            await self.job_store.update(job_id, **changes)
        except JobStateConflictError:
            # Another poller got there first; its result stands
            stored = await self.job_store.get(job_id)
            logger.info(f"[{job_id}] terminal status already recorded as {stored.status}")
            return PollResult.from_job(stored)

        if result.status == SUCCEEDED:
            logger.info(f"[{job_id}] Video ready: {result.video_url}")
        else:
            logger.error(f"[{job_id}] Prediction failed: {result.error}")
        return result

    async def poll_until_terminal(
        self,
        prediction_id: str,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> PollResult:
        """Poll at a fixed interval until a terminal status or the attempt ceiling.

        Running out of attempts fails the job and raises a timeout instead of
        leaving it ``generating``.
        """
        interval = self.settings.POLL_INTERVAL_SECONDS if interval is None else interval
        max_attempts = self.settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts

        for attempt in range(1, max_attempts + 1):
            await self._sleep(interval)
            result = await self.poll(prediction_id)
            if result.is_terminal:
                return result
            logger.debug(f"Prediction {prediction_id} still {result.status} ({attempt}/{max_attempts})")

        logger.error(f"Prediction {prediction_id} not terminal after {max_attempts} attempts")
        job = await self.job_store.find_by_prediction(prediction_id)
        if job is not None:
            try:
                await self.job_store.update(job.id, status=FAILED, error=NOT_READY_MESSAGE)
            except JobStateConflictError:
                stored = await self.job_store.get(job.id)
                if stored.is_terminal:
                    return PollResult.from_job(stored)
                raise
        raise UpstreamTimeoutError(NOT_READY_MESSAGE)

    async def job_status(self, job_id: str) -> Job:
        """Stored job, refreshed from the prediction service while generating."""
        job = await self.job_store.get(job_id)
        if job.status == GENERATING and job.prediction_id:
            await self._poll(job.prediction_id, job)
            job = await self.job_store.get(job_id)
        return job
