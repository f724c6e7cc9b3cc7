import json

import pytest

from conftest import FakeGcsClient
from models.job import GENERATING, SUCCEEDED, UPLOADING, Job
from services.job_store import GcsJobStore, MemoryJobStore, build_job_store
from services.storage_service import StorageService
from utils.env import Settings
from utils.errors import JobStateConflictError, NotFoundError, UpstreamUnavailableError


@pytest.fixture
def gcs_settings():
    return Settings(_env_file=None, GOOGLE_CLOUD_BUCKET_NAME="media-bucket", JOB_WRITE_ATTEMPTS=2)


@pytest.fixture
def gcs_client():
    return FakeGcsClient()


@pytest.fixture
def bucket(gcs_client):
    return gcs_client.bucket("media-bucket")


@pytest.fixture
def gcs_storage(gcs_settings, gcs_client):
    return StorageService(gcs_settings, client=gcs_client)


@pytest.fixture
def gcs_store(gcs_settings, gcs_storage):
    return GcsJobStore(gcs_settings, gcs_storage)


def test_build_job_store_picks_backend(settings, gcs_settings, gcs_storage):
    assert isinstance(build_job_store(settings, gcs_storage), MemoryJobStore)
    assert isinstance(build_job_store(gcs_settings, gcs_storage), GcsJobStore)


async def test_memory_store_get_missing():
    with pytest.raises(NotFoundError):
        await MemoryJobStore().get("nope")


async def test_memory_store_returns_copies():
    store = MemoryJobStore()
    job = await store.create(Job(id="J1"))
    job.status = SUCCEEDED
    assert (await store.get("J1")).status == "pending"


async def test_gcs_store_writes_json_document(gcs_store, bucket):
    await gcs_store.create(Job(id="J1", camera_control="zoom-in", duration=5))

    data, generation, content_type = bucket.objects["jobs/J1.json"]
    assert content_type == "application/json"
    assert json.loads(data)["camera_control"] == "zoom-in"
    assert bucket.upload_calls == [("jobs/J1.json", 0)]

    job = await gcs_store.get("J1")
    assert job.duration == 5
    assert job.created_at is not None


async def test_gcs_store_refuses_duplicate_create(gcs_store):
    await gcs_store.create(Job(id="J1"))
    with pytest.raises(JobStateConflictError):
        await gcs_store.create(Job(id="J1"))


async def test_gcs_update_is_conditional_on_generation(gcs_store, bucket):
    await gcs_store.create(Job(id="J1"))
    generation = bucket.objects["jobs/J1.json"][1]

    job = await gcs_store.update("J1", status=UPLOADING)

    assert job.status == UPLOADING
    assert bucket.upload_calls[-1] == ("jobs/J1.json", generation)


async def test_gcs_update_retries_after_concurrent_write(gcs_store, bucket):
    await gcs_store.create(Job(id="J1"))

    def concurrent_writer(bkt):
        data, generation, content_type = bkt.objects["jobs/J1.json"]
        doc = json.loads(data)
        doc["small_image_url"] = "https://signed/other"
        bkt.generation += 1
        bkt.objects["jobs/J1.json"] = (json.dumps(doc), bkt.generation, content_type)

    bucket.before_upload = concurrent_writer

    job = await gcs_store.update("J1", status=UPLOADING)

    # the retry re-read the document, so the other writer's field survives
    assert job.small_image_url == "https://signed/other"
    assert job.status == UPLOADING
    assert len([c for c in bucket.upload_calls if c[0] == "jobs/J1.json"]) == 3


async def test_gcs_update_enforces_lifecycle(gcs_store):
    await gcs_store.create(Job(id="J1"))
    await gcs_store.update("J1", status=GENERATING, prediction_id="p1")
    await gcs_store.update("J1", status=SUCCEEDED, video_url="https://v/1.mp4")

    with pytest.raises(JobStateConflictError):
        await gcs_store.update("J1", status=GENERATING)


async def test_gcs_update_missing_job(gcs_store):
    with pytest.raises(NotFoundError):
        await gcs_store.update("ghost", status=UPLOADING)


async def test_gcs_prediction_index(gcs_store, bucket):
    await gcs_store.create(Job(id="J1"))
    await gcs_store.link_prediction("p1", "J1")

    assert json.loads(bucket.objects["predictions/p1.json"][0]) == {"job_id": "J1"}
    assert (await gcs_store.find_by_prediction("p1")).id == "J1"
    assert await gcs_store.find_by_prediction("p2") is None


async def test_storage_put_overwrites_by_default(gcs_storage, bucket):
    await gcs_storage.put("small/a.jpg", b"first", "image/jpeg")
    uri = await gcs_storage.put("small/a.jpg", b"second", "image/jpeg")

    assert uri == "gs://media-bucket/small/a.jpg"
    assert bucket.objects["small/a.jpg"][0] == b"second"
    assert bucket.upload_calls == [("small/a.jpg", None), ("small/a.jpg", None)]


async def test_storage_put_without_overwrite_fails_on_existing(gcs_storage):
    await gcs_storage.put("small/a.jpg", b"first", "image/jpeg")
    with pytest.raises(UpstreamUnavailableError):
        await gcs_storage.put("small/a.jpg", b"second", "image/jpeg", overwrite=False)


async def test_storage_sign_url(gcs_storage):
    url = await gcs_storage.sign_url("small/a.jpg", 900)
    assert url == "https://signed.example.com/media-bucket/small/a.jpg?v=v4&ttl=900&m=GET"


async def test_storage_requires_bucket(settings):
    with pytest.raises(UpstreamUnavailableError):
        await StorageService(settings, client=FakeGcsClient()).put("small/a.jpg", b"x", "image/jpeg")


async def test_gcs_corrupt_job_document(gcs_store, bucket):
    bucket.objects["jobs/J1.json"] = ("{not json", 1, "application/json")

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await gcs_store.get("J1")
    assert excinfo.value.message == "Corrupt document at jobs/J1.json"
