import json
import logging
from typing import Optional

from google.api_core import exceptions as gcloud_exceptions

from models.job import Job, apply_update, utc_now
from services.storage_service import StorageService
from utils.env import Settings
from utils.errors import JobStateConflictError, NotFoundError, UpstreamUnavailableError

logger = logging.getLogger("job_store")


class JobStore:
    """Job records keyed by job id, plus a prediction-handle index."""

    async def find(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    async def create(self, job: Job) -> Job:
        raise NotImplementedError

    async def update(self, job_id: str, **changes) -> Job:
        raise NotImplementedError

    async def link_prediction(self, prediction_id: str, job_id: str):
        raise NotImplementedError

    async def find_job_id_for_prediction(self, prediction_id: str) -> Optional[str]:
        raise NotImplementedError

    async def get(self, job_id: str) -> Job:
        job = await self.find(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def find_by_prediction(self, prediction_id: str) -> Optional[Job]:
        job_id = await self.find_job_id_for_prediction(prediction_id)
        if not job_id:
            return None
        return await self.find(job_id)


class MemoryJobStore(JobStore):
    """Process-local store used when no bucket is configured."""

    def __init__(self):
        self._jobs: dict[str, dict] = {}
        self._predictions: dict[str, str] = {}

    async def find(self, job_id: str) -> Optional[Job]:
        data = self._jobs.get(job_id)
        return Job.from_dict(data) if data is not None else None

    async def create(self, job: Job) -> Job:
        if job.id in self._jobs:
            raise JobStateConflictError(f"Job {job.id} already exists")
        now = utc_now()
        job.created_at = job.created_at or now
        job.updated_at = now
        self._jobs[job.id] = job.to_dict()
        return job

    async def update(self, job_id: str, **changes) -> Job:
        job = await self.get(job_id)
        updated = apply_update(job, changes)
        self._jobs[job_id] = updated.to_dict()
        return updated

    async def link_prediction(self, prediction_id: str, job_id: str):
        self._predictions[prediction_id] = job_id

    async def find_job_id_for_prediction(self, prediction_id: str) -> Optional[str]:
        return self._predictions.get(prediction_id)


class GcsJobStore(JobStore):
    """Job documents stored as JSON blobs next to the uploaded images.

    Every write is a read-modify-write guarded by the blob generation, so two
    handlers touching the same job never silently drop each other's update.
    """

    def __init__(self, settings: Settings, storage_service: StorageService):
        self.storage = storage_service
        self.jobs_prefix = settings.JOBS_PREFIX.strip("/")
        self.predictions_prefix = settings.PREDICTIONS_PREFIX.strip("/")
        self.write_attempts = max(1, settings.JOB_WRITE_ATTEMPTS)
        self.timeout = settings.STORAGE_TIMEOUT_SECONDS

    def _job_blob_path(self, job_id: str) -> str:
        return f"{self.jobs_prefix}/{job_id}.json"

    def _prediction_blob_path(self, prediction_id: str) -> str:
        return f"{self.predictions_prefix}/{prediction_id}.json"

    def _download_json_sync(self, blob_path: str) -> tuple[Optional[dict], int]:
        """Return the document and its generation, or ``(None, 0)`` if missing."""
        blob = self.storage.get_bucket().blob(blob_path)
        try:
            raw = blob.download_as_text(timeout=self.timeout)
        except gcloud_exceptions.NotFound:
            logger.debug(f"_download_json_sync: blob does not exist: {blob_path}")
            return None, 0
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise UpstreamUnavailableError(f"Corrupt document at {blob_path}") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailableError(f"Corrupt document at {blob_path}")
        return data, blob.generation or 0

    def _upload_json_sync(self, blob_path: str, data: dict, if_generation_match: Optional[int] = None):
        blob = self.storage.get_bucket().blob(blob_path)
        kwargs = {}
        if if_generation_match is not None:
            kwargs["if_generation_match"] = if_generation_match
        blob.upload_from_string(
            json.dumps(data, separators=(",", ":"), sort_keys=True),
            content_type="application/json",
            timeout=self.timeout,
            **kwargs,
        )

    def _update_job_sync(self, job_id: str, changes: dict) -> Job:
        blob_path = self._job_blob_path(job_id)
        for attempt in range(1, self.write_attempts + 1):
            data, generation = self._download_json_sync(blob_path)
            if data is None:
                raise NotFoundError(f"Job {job_id} not found")
            job = Job.from_dict({**data, "id": job_id})
            updated = apply_update(job, changes)
            if updated is job:
                return job
            try:
                self._upload_json_sync(blob_path, updated.to_dict(), if_generation_match=generation)
            except gcloud_exceptions.PreconditionFailed:
                logger.info(f"[{job_id}] concurrent write detected, retry {attempt}/{self.write_attempts}")
                continue
            logger.info(f"[{job_id}] stored status={updated.status}")
            return updated
        raise JobStateConflictError(f"Job {job_id} is being updated concurrently")

    async def find(self, job_id: str) -> Optional[Job]:
        data, _ = await self.storage.run("job read", lambda: self._download_json_sync(self._job_blob_path(job_id)))
        if data is None:
            return None
        logger.debug(f"find: loaded job {job_id} from GCS, status={data.get('status')}")
        return Job.from_dict({**data, "id": job_id})

    async def create(self, job: Job) -> Job:
        now = utc_now()
        job.created_at = job.created_at or now
        job.updated_at = now
        try:
            await self.storage.run(
                "job create",
                lambda: self._upload_json_sync(self._job_blob_path(job.id), job.to_dict(), if_generation_match=0),
            )
        except UpstreamUnavailableError as exc:
            if isinstance(exc.__cause__, gcloud_exceptions.PreconditionFailed):
                raise JobStateConflictError(f"Job {job.id} already exists") from exc
            raise
        return job

    async def update(self, job_id: str, **changes) -> Job:
        return await self.storage.run("job update", lambda: self._update_job_sync(job_id, changes))

    async def link_prediction(self, prediction_id: str, job_id: str):
        await self.storage.run(
            "prediction index write",
            lambda: self._upload_json_sync(self._prediction_blob_path(prediction_id), {"job_id": job_id}),
        )

    async def find_job_id_for_prediction(self, prediction_id: str) -> Optional[str]:
        data, _ = await self.storage.run(
            "prediction index read",
            lambda: self._download_json_sync(self._prediction_blob_path(prediction_id)),
        )
        return data.get("job_id") if data else None


def build_job_store(settings: Settings, storage_service: StorageService) -> JobStore:
    if settings.job_persistence_enabled:
        return GcsJobStore(settings, storage_service)
    logger.warning("GOOGLE_CLOUD_BUCKET_NAME not set - jobs are kept in memory only")
    return MemoryJobStore()
