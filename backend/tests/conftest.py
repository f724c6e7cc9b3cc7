import asyncio
import base64
import itertools
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gcloud_exceptions

from models.job import Job, Prediction
from services.container import build_services
from services.description_service import DescriptionService
from services.job_store import MemoryJobStore
from utils.env import Settings
from utils.errors import UpstreamUnavailableError

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 32
JPEG_BASE64 = base64.b64encode(JPEG_BYTES).decode()


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.puts: list[str] = []
        self.signed: list[tuple[str, int]] = []
        self.put_error: Exception | None = None

    async def put(self, path, data, content_type, overwrite=True):
        if self.put_error is not None:
            raise self.put_error
        if not overwrite and path in self.objects:
            raise UpstreamUnavailableError(f"{path} exists")
        self.objects[path] = (data, content_type)
        self.puts.append(path)
        return f"gs://test-bucket/{path}"

    async def sign_url(self, path, ttl_seconds):
        self.signed.append((path, ttl_seconds))
        return f"https://storage.example.com/{path}?expires={ttl_seconds}"


class FakeOpenAI:
    """Stands in for ``AsyncOpenAI``; only chat completions are used."""

    def __init__(self, content="A sunlit living room, curtains swaying as the camera zooms in."):
        self.content = content
        self.error: Exception | None = None
        self.calls: list[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakePredictionService:
    def __init__(self):
        self._ids = itertools.count(1)
        self.created: list[dict] = []
        self.gets: list[str] = []
        self.create_error: Exception | None = None
        # prediction id -> statuses returned by successive get() calls
        self.scripts: dict[str, list[Prediction]] = {}

    async def create(self, profile, prompt, image_url, duration):
        if self.create_error is not None:
            raise self.create_error
        prediction_id = f"pred-{next(self._ids)}"
        self.created.append(
            {
                "id": prediction_id,
                "profile": profile,
                "prompt": prompt,
                "image_url": image_url,
                "duration": duration,
            }
        )
        return Prediction(id=prediction_id, status="starting")

    def script(self, prediction_id, *states):
        self.scripts[prediction_id] = [
            Prediction(id=prediction_id, status=status, output=output, error=error)
            for status, output, error in states
        ]

    async def get(self, prediction_id):
        self.gets.append(prediction_id)
        states = self.scripts.get(prediction_id) or [Prediction(id=prediction_id, status="processing")]
        return states.pop(0) if len(states) > 1 else states[0]


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.generation = None

    def download_as_text(self, timeout=None):
        if self.name not in self.bucket.objects:
            raise gcloud_exceptions.NotFound(f"No such object: {self.name}")
        data, generation, _ = self.bucket.objects[self.name]
        self.generation = generation
        return data.decode() if isinstance(data, bytes) else data

    def upload_from_string(self, data, content_type=None, timeout=None, if_generation_match=None):
        self.bucket.upload_calls.append((self.name, if_generation_match))
        if self.bucket.before_upload is not None:
            hook, self.bucket.before_upload = self.bucket.before_upload, None
            hook(self.bucket)
        current = self.bucket.objects.get(self.name)
        current_generation = current[1] if current else 0
        if if_generation_match is not None and if_generation_match != current_generation:
            raise gcloud_exceptions.PreconditionFailed("generation mismatch")
        self.bucket.generation += 1
        self.bucket.objects[self.name] = (data, self.bucket.generation, content_type)

    def generate_signed_url(self, version, expiration, method):
        return f"https://signed.example.com/{self.bucket.name}/{self.name}?v={version}&ttl={int(expiration.total_seconds())}&m={method}"


class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.objects: dict[str, tuple] = {}
        self.generation = 0
        self.upload_calls: list[tuple] = []
        self.before_upload = None

    def blob(self, name):
        return FakeBlob(self, name)


class FakeGcsClient:
    def __init__(self):
        self.buckets: dict[str, FakeBucket] = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        GOOGLE_CLOUD_BUCKET_NAME="",
        OPENAI_API_KEY="test-key",
        REPLICATE_API_TOKEN="test-token",
        POLL_INTERVAL_SECONDS=6,
        POLL_MAX_ATTEMPTS=3,
    )


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def openai_client():
    return FakeOpenAI()


@pytest.fixture
def predictions():
    return FakePredictionService()


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def services(settings, storage, openai_client, predictions, job_store, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return build_services(
        settings,
        storage=storage,
        job_store=job_store,
        description_service=DescriptionService(settings, client=openai_client),
        prediction_service=predictions,
        sleep=fake_sleep,
    )


@pytest.fixture
def make_job(job_store):
    """Create a job record synchronously; jobs are created outside this service."""

    def _make_job(job_id="J1", **fields):
        defaults = {"camera_control": "zoom-in", "video_size": "720p", "duration": 5}
        defaults.update(fields)
        return asyncio.run(job_store.create(Job(id=job_id, **defaults)))

    return _make_job
