import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Dict, List

import aiofiles
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from dualcast.api.deps import get_current_owner_id, get_job_runner, get_job_store
from dualcast.core.config import settings
from dualcast.core.exceptions import (
    ActiveJobExistsError, JobNotFoundError, PayloadTooLargeError,
    UnsupportedMediaError, ValidationError,
)
from dualcast.models.publish_job import JobStatus
from dualcast.schemas.publish_job import (
    ContentField, ProviderConfig, PublishAcceptedResponse, PublishJobResponse,
)
from dualcast.services.ai.providers import AIServiceFactory
from dualcast.services.publishing.broadcaster import ProgressBroadcaster, Subscription
from dualcast.services.publishing.job_store import JobStore
from dualcast.services.publishing.runner import JobRunner

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_SIZE = 1024 * 1024
UPLOAD_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
}


def parse_provider_config(raw: str) -> ProviderConfig:
    """Parse and check the per-field provider JSON sent with the upload"""
    try:
        config = ProviderConfig(**json.loads(raw))
    except (ValueError, TypeError) as e:
        # pydantic's ValidationError is a ValueError
        detail = e.errors()[0].get("msg") if isinstance(e, PydanticValidationError) else str(e)
        raise ValidationError(f"Invalid providers configuration: {detail}")

    for field in ContentField:
        field_config = config.for_field(field)
        if not AIServiceFactory.is_supported(field_config.provider):
            raise ValidationError(f"Unsupported provider '{field_config.provider}' for {field.value}")
        if not AIServiceFactory.has_credentials(field_config.provider, field_config.apiKey):
            raise ValidationError(
                f"No API key available for provider '{field_config.provider}' ({field.value})"
            )
    return config


async def save_upload(video: UploadFile) -> str:
    """Stream the upload to disk, enforcing the size cap while writing"""
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    extension = UPLOAD_EXTENSIONS.get(video.content_type, Path(video.filename or "").suffix or ".mp4")
    path = upload_dir / f"{uuid.uuid4().hex}{extension}"
    max_bytes = settings.MAX_VIDEO_SIZE_MB * 1024 * 1024

    written = 0
    try:
        async with aiofiles.open(path, "wb") as f:
            while True:
                chunk = await video.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise PayloadTooLargeError(
                        f"Video exceeds the {settings.MAX_VIDEO_SIZE_MB}MB upload limit"
                    )
                await f.write(chunk)
    except Exception:
        if path.exists():
            os.remove(path)
        raise

    if written == 0:
        os.remove(path)
        raise ValidationError("Uploaded video is empty")

    logger.info(f"Saved upload {video.filename} ({written} bytes) to {path}")
    return str(path)


@router.post("", response_model=PublishAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_publish_job(
    video: UploadFile = File(...),
    brief: str = Form(...),
    providers: str = Form(...),
    owner_id: str = Depends(get_current_owner_id),
    job_store: JobStore = Depends(get_job_store),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Accept a video and a content brief for publishing to Instagram Reels and
    YouTube Shorts. Publishing runs in the background; follow it through
    GET /publish/{job_id} or the progress WebSocket.
    """
    if not brief.strip():
        raise ValidationError("brief is required")
    if video.content_type not in settings.SUPPORTED_VIDEO_MIME_TYPES:
        raise UnsupportedMediaError(
            f"Unsupported video type {video.content_type}. "
            f"Allowed: {', '.join(settings.SUPPORTED_VIDEO_MIME_TYPES)}"
        )
    provider_config = parse_provider_config(providers)

    if job_store.has_active_job(owner_id):
        raise ActiveJobExistsError()

    video_path = await save_upload(video)
    try:
        job_id = job_store.create_job(
            owner_id=owner_id,
            video_filename=video.filename or os.path.basename(video_path),
            video_path=video_path,
            brief=brief.strip(),
            provider_config=provider_config.redacted(),
            exclusive=True,
        )
    except Exception:
        # Also reached when a concurrent upload from this owner created its job first
        os.remove(video_path)
        raise

    runner.submit(job_id, provider_config)
    return PublishAcceptedResponse(jobId=job_id, status=JobStatus.PENDING.value)


@router.get("/jobs", response_model=List[PublishJobResponse])
def list_publish_jobs(
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_current_owner_id),
    job_store: JobStore = Depends(get_job_store),
):
    """
    The caller's publish jobs, most recent first
    """
    return [PublishJobResponse.from_model(job) for job in job_store.list_jobs(owner_id, limit)]


async def _forward_events(websocket: WebSocket, broadcaster: ProgressBroadcaster, subscription: Subscription):
    try:
        async for event in subscription:
            await websocket.send_json(event.to_message())
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"Stopped forwarding {subscription.job_id} events: {e!r}")
    finally:
        broadcaster.close(subscription)


@router.websocket("/ws")
async def publish_progress(websocket: WebSocket):
    """
    Progress stream. Clients send {"action": "subscribe", "jobId": ...} or
    {"action": "unsubscribe", "jobId": ...}; the current job document is sent
    first, then every event published after the subscription.
    """
    job_store: JobStore = websocket.app.state.job_store
    broadcaster: ProgressBroadcaster = websocket.app.state.broadcaster
    owner_id = websocket.headers.get("x-owner-id") or websocket.query_params.get("ownerId")
    if not owner_id:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    forwarders: Dict[str, asyncio.Task] = {}
    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except ValueError:
                message = None
            if not isinstance(message, dict):
                await websocket.send_json({"event": "error", "message": "Messages must be JSON objects"})
                continue
            action = message.get("action")
            job_id = message.get("jobId")

            if action == "subscribe" and job_id:
                if job_id in forwarders and not forwarders[job_id].done():
                    continue
                # Attach before reading so nothing published in between is lost
                subscription = broadcaster.open(job_id)
                job = job_store.get_job(job_id, owner_id)
                if job is None:
                    broadcaster.close(subscription)
                    await websocket.send_json({"event": "error", "jobId": job_id, "message": "Job not found"})
                    continue
                await websocket.send_json({
                    "event": "job:snapshot",
                    "jobId": job_id,
                    "data": PublishJobResponse.from_model(job).model_dump(mode="json"),
                })
                if job.status.is_terminal:
                    broadcaster.close(subscription)
                    continue
                forwarders[job_id] = asyncio.create_task(_forward_events(websocket, broadcaster, subscription))
            elif action == "unsubscribe" and job_id:
                task = forwarders.pop(job_id, None)
                if task:
                    task.cancel()
            else:
                await websocket.send_json({"event": "error", "message": "Unknown action"})
    except WebSocketDisconnect:
        logger.debug(f"Progress socket for owner {owner_id} disconnected")
    finally:
        for task in forwarders.values():
            task.cancel()


@router.get("/{job_id}", response_model=PublishJobResponse)
def get_publish_job(
    job_id: str,
    owner_id: str = Depends(get_current_owner_id),
    job_store: JobStore = Depends(get_job_store),
):
    """
    Current state of a publish job
    """
    job = job_store.get_job(job_id, owner_id)
    if not job:
        raise JobNotFoundError()
    return PublishJobResponse.from_model(job)
