"""Service-level routes."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from exposureshield.api.dependencies import get_kv_store
from exposureshield.services.kv_store import KeyValueStore

router = APIRouter()


@router.get("/health")
async def health_check(kv_store: KeyValueStore = Depends(get_kv_store)) -> dict:
    """Health check endpoint.

    Returns:
        Status, timestamp in ISO8601 format, and store reachability
    """
    store_healthy = await kv_store.ping()
    return {
        "ok": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": "healthy" if store_healthy else "unavailable",
        "backend": kv_store.name,
    }
