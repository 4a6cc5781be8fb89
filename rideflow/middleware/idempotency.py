import json
import logging
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from rideflow.config import get_settings
from rideflow.redis_client import get_redis

logger = logging.getLogger(__name__)
settings = get_settings()


def _cache_key(request: Request, principal_id: str, key: str) -> str:
    # Scoped to caller and endpoint so a key cannot replay someone else's response
    return f"idempotency:{principal_id}:{request.method}:{request.url.path}:{key}"


async def check_idempotency(request: Request, principal_id: str) -> Optional[Response]:
    """
    Returns a cached Response if the Idempotency-Key was already used by this
    caller on this endpoint, otherwise None (proceed normally).
    """
    key = request.headers.get("Idempotency-Key")
    if not key:
        return None

    redis = await get_redis()
    try:
        cached = await redis.get(_cache_key(request, principal_id, key))
    except RedisError as exc:
        logger.warning("Idempotency lookup failed, proceeding: %s", exc)
        return None

    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(
    request: Request,
    principal_id: str,
    status_code: int,
    body: dict,
) -> None:
    """Persist the response for the request's Idempotency-Key."""
    key = request.headers.get("Idempotency-Key")
    if not key:
        return
    redis = await get_redis()
    try:
        await redis.setex(
            _cache_key(request, principal_id, key),
            settings.idempotency_ttl_seconds,
            json.dumps({"status_code": status_code, "body": body}),
        )
    except RedisError as exc:
        logger.warning("Idempotency store failed: %s", exc)
