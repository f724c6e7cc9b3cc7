import logging
import posixpath

from models.job import (
    GENERATING,
    PROMPTING,
    UPLOADING,
    GenerationParams,
    SubmissionRequest,
    SubmissionResult,
)
from services.description_service import DescriptionService
from services.job_store import JobStore
from services.prediction_service import PredictionService, select_profile
from services.storage_service import StorageService
from utils.env import Settings
from utils.errors import AppError, JobStateConflictError, ValidationError
from utils.image import decode_image_payload, infer_mime_type
from utils.scene_prompt_builder import clamp_prompt

logger = logging.getLogger("job_service")


class JobService:
    """Runs upload -> signed URL -> description -> prediction for one job.

    Submission hands off as soon as the prediction exists; the poller takes
    the job from ``generating`` to a terminal status.
    """

    def __init__(
        self,
        settings: Settings,
        storage_service: StorageService,
        job_store: JobStore,
        description_service: DescriptionService,
        prediction_service: PredictionService,
    ):
        logger.info("Initializing JobService...")
        self.settings = settings
        self.storage = storage_service
        self.job_store = job_store
        self.description_service = description_service
        self.prediction_service = prediction_service

    def _small_image_path(self, filename: str) -> str:
        name = posixpath.basename(filename.replace("\\", "/"))
        if not name or name in (".", ".."):
            raise ValidationError(f"Invalid filename: {filename!r}")
        return f"{self.settings.SMALL_IMAGE_PREFIX.strip('/')}/{name}"

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        jid = request.job_id
        small_path = self._small_image_path(request.filename)
        image_bytes = decode_image_payload(request.image_base64)

        job = await self.job_store.get(jid)
        if job.prediction_id:
            logger.info(f"[{jid}] already submitted as {job.prediction_id}, not resubmitting")
            # A previous attempt may have stored the handle but failed to index it
            await self.job_store.link_prediction(job.prediction_id, jid)
            return SubmissionResult(
                job_id=jid,
                prediction_id=job.prediction_id,
                prompt=job.prompt,
                resubmitted=True,
            )

        params = GenerationParams.resolve(job, request)
        logger.info(
            f"[{jid}] Starting job: camera={params.camera_control} size={params.video_size} "
            f"duration={params.duration}s"
        )

        try:
            await self.job_store.update(jid, status=UPLOADING, error=None)
            await self.storage.put(small_path, image_bytes, infer_mime_type(image_bytes), overwrite=True)
            logger.info(f"[{jid}] Small image uploaded to {small_path}")

            small_image_url = await self.storage.sign_url(small_path, self.settings.SIGNED_URL_TTL_SECONDS)
            changes = {"status": PROMPTING, "small_image_url": small_image_url}
            if request.image_url:
                changes["image_url"] = request.image_url
            await self.job_store.update(jid, **changes)

            description = await self.description_service.describe(small_image_url, params.camera_control)
            prompt = clamp_prompt(description.text, self.settings.PROMPT_MAX_CHARS)
            logger.info(f"[{jid}] Prompt ready (fallback={description.used_fallback}): {prompt[:80]}")

            profile = select_profile(self.settings, params.video_size)
            prediction = await self.prediction_service.create(
                profile=profile,
                prompt=prompt,
                image_url=request.image_url or small_image_url,
                duration=params.duration,
            )
        except JobStateConflictError as exc:
            # Another submission moved the job on; its state stands
            logger.warning(f"[{jid}] Submission lost a race: {exc.message}")
            raise
        except AppError as exc:
            logger.error(f"[{jid}] Submission failed: {exc.message}")
            await self._record_error(jid, exc.message)
            raise

        await self.job_store.update(
            jid,
            prompt=prompt,
            prediction_id=prediction.id,
            status=GENERATING,
        )
        await self.job_store.link_prediction(prediction.id, jid)
        logger.info(f"[{jid}] Video generation started: {prediction.id}")

        return SubmissionResult(
            job_id=jid,
            prediction_id=prediction.id,
            prompt=prompt,
            used_fallback_prompt=description.used_fallback,
        )

    async def _record_error(self, job_id: str, message: str):
        # The status stays non-terminal so the caller can resubmit
        try:
            await self.job_store.update(job_id, error=message)
        except AppError as exc:
            logger.error(f"[{job_id}] Could not record submission error: {exc.message}")
