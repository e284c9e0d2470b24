"""FastAPI routers for the cache HTTP API.

Available endpoints:
- GET    /api/cache/{key}          read a value (404 when absent or expired)
- POST   /api/cache/{key}          write a value, optionally with a TTL in seconds
- DELETE /api/cache/{key}          delete a value (idempotent)
- GET    /api/cache/{key}/exists   existence check
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from kvcache.domain.cache_service import CacheService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["cache"])


class CacheValue(BaseModel):
    key: str
    value: Optional[str] = None


class PutCacheEntryRequest(BaseModel):
    """Request to store a value; ``ttl`` is in seconds, omitted means permanent."""

    value: Optional[str] = None
    ttl: Optional[int] = Field(None, ge=0)


class CacheMessage(BaseModel):
    message: str
    key: str


class ExistsResponse(BaseModel):
    exists: bool


def get_cache_service(request: Request) -> CacheService:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.started:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache not ready")
    return runtime.service


@router.get("/{key}", response_model=CacheValue)
async def get_entry(key: str, service: CacheService = Depends(get_cache_service)) -> CacheValue:
    value = await service.get(key)
    if value is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cache entry not found")
    return CacheValue(key=key, value=value)


@router.post("/{key}", response_model=CacheMessage)
async def put_entry(
    key: str,
    payload: PutCacheEntryRequest,
    service: CacheService = Depends(get_cache_service),
) -> CacheMessage:
    await service.put(key, payload.value, payload.ttl)
    return CacheMessage(message="Cache entry created", key=key)


@router.delete("/{key}", response_model=CacheMessage)
async def delete_entry(key: str, service: CacheService = Depends(get_cache_service)) -> CacheMessage:
    await service.delete(key)
    return CacheMessage(message="Cache entry deleted", key=key)


@router.get("/{key}/exists", response_model=ExistsResponse)
async def entry_exists(key: str, service: CacheService = Depends(get_cache_service)) -> ExistsResponse:
    return ExistsResponse(exists=await service.exists(key))


__all__ = ["router", "get_cache_service"]
