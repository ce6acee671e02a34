from fastapi import APIRouter

from dualcast.api.v1.endpoints import publish

api_router = APIRouter()

api_router.include_router(publish.router, prefix="/publish", tags=["publish"])
