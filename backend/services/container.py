import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from services.description_service import DescriptionService
from services.job_service import JobService
from services.job_store import JobStore, build_job_store
from services.prediction_poller import PredictionPoller
from services.prediction_service import PredictionService
from services.storage_service import StorageService
from utils.env import Settings


@dataclass
class Services:
    settings: Settings
    storage: StorageService
    job_store: JobStore
    description_service: DescriptionService
    prediction_service: PredictionService
    job_service: JobService
    poller: PredictionPoller

    async def close(self):
        close_session = getattr(self.prediction_service, "close_session", None)
        if close_session is not None:
            await close_session()


def build_services(
    settings: Settings,
    storage: Optional[StorageService] = None,
    job_store: Optional[JobStore] = None,
    description_service: Optional[DescriptionService] = None,
    prediction_service: Optional[PredictionService] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Services:
    """Wire every component from one settings object; any piece can be swapped."""
    storage = storage or StorageService(settings)
    job_store = job_store or build_job_store(settings, storage)
    description_service = description_service or DescriptionService(settings)
    prediction_service = prediction_service or PredictionService(settings)

    return Services(
        settings=settings,
        storage=storage,
        job_store=job_store,
        description_service=description_service,
        prediction_service=prediction_service,
        job_service=JobService(settings, storage, job_store, description_service, prediction_service),
        poller=PredictionPoller(settings, job_store, prediction_service, sleep=sleep),
    )
