from typing import Optional

from fastapi import Header, HTTPException, Request, status

from dualcast.services.publishing.broadcaster import ProgressBroadcaster
from dualcast.services.publishing.job_store import JobStore
from dualcast.services.publishing.runner import JobRunner


def get_current_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    """
    Identity of the caller

    Authentication happens in front of this service; the gateway forwards the
    authenticated user id in the X-Owner-Id header.
    """
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Owner-Id header"
        )
    return owner_id


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner


def get_progress_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster
