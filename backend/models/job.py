from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Optional, Literal

from utils.errors import JobStateConflictError, ValidationError

PENDING = "pending"
UPLOADING = "uploading"
PROMPTING = "prompting"
GENERATING = "generating"
SUCCEEDED = "succeeded"
FAILED = "failed"

JobStatusValue = Literal["pending", "uploading", "prompting", "generating", "succeeded", "failed"]

TERMINAL_STATUSES = frozenset({SUCCEEDED, FAILED})

# Pre-submission statuses share a rank so a retried submission can rerun its steps
_STATUS_RANK = {
    PENDING: 0,
    UPLOADING: 0,
    PROMPTING: 0,
    GENERATING: 1,
    SUCCEEDED: 2,
    FAILED: 2,
}

DEFAULT_CAMERA_CONTROL = "stationary"
DEFAULT_VIDEO_SIZE = "720p"
DEFAULT_DURATION = 5
HIGH_TIER_VIDEO_SIZE = "1080p"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Job:
    """Persisted record of one image-to-video request"""
    id: str
    camera_control: Optional[str] = None
    video_size: Optional[str] = None
    duration: Optional[int] = None
    small_image_url: Optional[str] = None
    image_url: Optional[str] = None
    prompt: Optional[str] = None
    prediction_id: Optional[str] = None
    status: JobStatusValue = PENDING
    error: Optional[str] = None
    video_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


_UPDATABLE_FIELDS = frozenset(
    f.name for f in fields(Job) if f.name not in ("id", "created_at", "updated_at")
)


def apply_update(job: Job, changes: dict) -> Job:
    """Return ``job`` with ``changes`` applied, enforcing the lifecycle rules.

    - a terminal job never changes again; rewriting identical values is a no-op
    - status rank never decreases
    - the prediction handle is written once
    - a video URL only accompanies ``succeeded``
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

    new_status = changes.get("status", job.status)
    if new_status not in _STATUS_RANK:
        raise ValueError(f"Unknown job status: {new_status}")

    if job.is_terminal:
        if any(getattr(job, key) != value for key, value in changes.items()):
            raise JobStateConflictError(f"Job {job.id} is already {job.status}")
        return job

    if _STATUS_RANK[new_status] < _STATUS_RANK[job.status]:
        raise JobStateConflictError(
            f"Job {job.id} cannot move from {job.status} to {new_status}"
        )

    new_prediction_id = changes.get("prediction_id", job.prediction_id)
    if job.prediction_id and new_prediction_id != job.prediction_id:
        raise JobStateConflictError(f"Job {job.id} already has prediction {job.prediction_id}")
    if new_status == GENERATING and not new_prediction_id:
        raise JobStateConflictError(f"Job {job.id} cannot be generating without a prediction")
    if changes.get("video_url") and new_status != SUCCEEDED:
        raise JobStateConflictError(f"Job {job.id} cannot store a video before it succeeds")

    return replace(job, **changes, updated_at=utc_now())


def _first(payload: dict, *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _coerce_duration(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        duration = int(value)
    except (TypeError, ValueError):
        return None
    return duration if duration > 0 else None


@dataclass
class SubmissionRequest:
    """Normalized submission, whichever field naming the caller used"""
    job_id: str
    filename: str
    image_base64: str
    image_url: Optional[str] = None
    camera_control: Optional[str] = None
    video_size: Optional[str] = None
    duration: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "SubmissionRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        job_id = str(_first(payload, "jobId", "job_id") or "").strip()
        filename = str(_first(payload, "filename", "fileName") or "").strip()
        image_base64 = _first(
            payload, "smallImageBase64", "small_image_base64", "imageBase64", "image_base64", "image"
        )

        missing = []
        if not job_id:
            missing.append("jobId")
        if not filename:
            missing.append("filename")
        if not image_base64:
            missing.append("smallImageBase64")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if not isinstance(image_base64, str):
            raise ValidationError("smallImageBase64 must be a base64 string")

        image_url = _first(payload, "imageUrl", "image_url")
        camera_control = _first(payload, "cameraControl", "camera_control")
        video_size = _first(payload, "videoSize", "video_size")

        return cls(
            job_id=job_id,
            filename=filename,
            image_base64=image_base64,
            image_url=str(image_url).strip() if image_url else None,
            camera_control=str(camera_control).strip() if camera_control else None,
            video_size=str(video_size).strip() if video_size else None,
            duration=_coerce_duration(_first(payload, "duration", "duration_seconds")),
        )


@dataclass
class GenerationParams:
    camera_control: str = DEFAULT_CAMERA_CONTROL
    video_size: str = DEFAULT_VIDEO_SIZE
    duration: int = DEFAULT_DURATION

    @classmethod
    def resolve(cls, job: Job, request: SubmissionRequest) -> "GenerationParams":
        """The job record wins; request values only fill gaps it leaves."""
        return cls(
            camera_control=job.camera_control or request.camera_control or DEFAULT_CAMERA_CONTROL,
            video_size=job.video_size or request.video_size or DEFAULT_VIDEO_SIZE,
            duration=job.duration or request.duration or DEFAULT_DURATION,
        )


@dataclass
class SubmissionResult:
    job_id: str
    prediction_id: str
    prompt: Optional[str] = None
    used_fallback_prompt: bool = False
    resubmitted: bool = False


@dataclass
class GenerationProfile:
    name: Literal["standard", "high"]
    model: str


@dataclass
class Prediction:
    """Last observed state of an external prediction"""
    id: str
    status: str
    output: Any = None
    error: Optional[str] = None

    @property
    def normalized_status(self) -> JobStatusValue:
        if self.status == "succeeded":
            return SUCCEEDED
        if self.status in ("failed", "canceled"):
            return FAILED
        return GENERATING

    @property
    def video_url(self) -> Optional[str]:
        if isinstance(self.output, str):
            return self.output or None
        if isinstance(self.output, list) and self.output:
            return str(self.output[0])
        return None

    @property
    def failure_reason(self) -> str:
        if self.status == "canceled":
            return "Prediction canceled"
        return self.error or f"Prediction {self.status}"


@dataclass
class PollResult:
    prediction_id: str
    status: JobStatusValue
    output: Any = None
    error: Optional[str] = None
    video_url: Optional[str] = None
    job_id: Optional[str] = None
    cached: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_job(cls, job: Job) -> "PollResult":
        return cls(
            prediction_id=job.prediction_id or "",
            status=job.status,
            output=job.video_url,
            error=job.error,
            video_url=job.video_url,
            job_id=job.id,
            cached=True,
        )

    def to_response(self) -> dict:
        return {
            "id": self.prediction_id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "videoUrl": self.video_url,
            "jobId": self.job_id,
        }
