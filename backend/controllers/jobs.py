# Job controller for the image-to-video pipeline
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from models.job import FAILED, SubmissionRequest
from services.container import Services
from utils.errors import PredictionFailedError, ValidationError

logger = logging.getLogger("jobs_controller")

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def get_services(request: Request) -> Services:
    return request.app.state.services


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


@router.post("/submit")
async def submit_job(request: Request, services: Services = Depends(get_services)):
    """Start generation for a job and return its prediction handle without waiting."""
    submission = SubmissionRequest.from_payload(await _read_json(request))
    logger.info(f"/submit: job={submission.job_id} filename={submission.filename}")

    result = await services.job_service.submit(submission)
    return {"success": True, "predictionId": result.prediction_id}


@router.get("/poll")
async def poll_prediction(
    prediction_id: Optional[str] = Query(None, alias="predictionId"),
    services: Services = Depends(get_services),
):
    result = await services.poller.poll(prediction_id)
    return {"success": True, "prediction": result.to_response()}


@router.post("/poll")
async def poll_prediction_body(request: Request, services: Services = Depends(get_services)):
    body = await _read_json(request)
    prediction_id = body.get("predictionId") or body.get("prediction_id")
    if prediction_id is not None and not isinstance(prediction_id, str):
        raise ValidationError("Missing or invalid predictionId")
    result = await services.poller.poll(prediction_id)
    return {"success": True, "prediction": result.to_response()}


@router.post("/generate")
async def generate_video(request: Request, services: Services = Depends(get_services)):
    """Submit, then hold the request open until the video is ready or polling gives up."""
    submission = SubmissionRequest.from_payload(await _read_json(request))
    logger.info(f"/generate: job={submission.job_id} filename={submission.filename}")

    submitted = await services.job_service.submit(submission)
    result = await services.poller.poll_until_terminal(submitted.prediction_id)
    if result.status == FAILED:
        raise PredictionFailedError(f"Video generation failed: {result.error}")

    return {
        "success": True,
        "predictionId": submitted.prediction_id,
        "videoUrl": result.video_url,
    }


@router.get("/status/{job_id}")
async def get_status(job_id: str, services: Services = Depends(get_services)):
    job = await services.poller.job_status(job_id)
    logger.debug(f"Job {job_id} status response: status={job.status}")
    return {
        "success": True,
        "job": {
            "id": job.id,
            "status": job.status,
            "predictionId": job.prediction_id,
            "prompt": job.prompt,
            "videoUrl": job.video_url,
            "error": job.error,
            "updatedAt": job.updated_at,
        },
    }
