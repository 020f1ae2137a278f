"""Idempotent replay of recipe submissions.

A client may send an Idempotency-Key header with a submission. The first
request with that key claims it in Redis for a short while; once it
completes, its status and body are kept and replayed for retries that carry
the same key and the same form.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from .redis_client import get_redis

logger = logging.getLogger("recipeshare.idempotency")

REPLAY_TTL_SEC = 24 * 60 * 60
CLAIM_TTL_SEC = 60

IN_FLIGHT_DETAIL = "A request with this Idempotency-Key is in progress, retry shortly"
MISMATCH_DETAIL = "Idempotency-Key reused with different request payload"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _record(state: str, fingerprint: str, status: Optional[int] = None, body=None) -> str:
    return json.dumps({
        "state": state,
        "status": status,
        "body": body,
        "fingerprint": fingerprint,
        "updated_at": _utc_now(),
    })


async def _form_fingerprint(request: Request) -> str:
    """Digest of method, path and parsed form fields.

    Multipart boundaries differ between retries, so the raw body cannot be
    hashed. Files contribute their name and a digest of their content and are
    rewound for the endpoint.
    """
    digest = hashlib.sha256(f"{request.method} {request.url.path}\n".encode("utf-8"))
    form = await request.form()
    for name, value in form.multi_items():
        if hasattr(value, "read"):
            content = await value.read()
            await value.seek(0)
            digest.update(f"{name}@{value.filename}#{hashlib.sha256(content).hexdigest()}\n".encode("utf-8"))
        else:
            digest.update(f"{name}={value}\n".encode("utf-8"))
    return digest.hexdigest()


def idempotency_redis_key(user_id: str, route_key: str, idem_key: str) -> str:
    return f"recipeshare:idemp:{user_id}:{route_key}:{idem_key}"


async def idempotency_precheck(
    request: Request, *, user_id: str, route_key: str
) -> Union[tuple[str, str], JSONResponse, None]:
    """Claim the request's Idempotency-Key.

    Returns None when the request carries no key, a JSONResponse replaying a
    finished request, or (redis_key, fingerprint) for the caller to finish
    with idempotency_store_result.
    Raises HTTPException 409 when the key is in flight or was used for a
    different form.
    """
    idem_key = request.headers.get("Idempotency-Key")
    if not idem_key:
        return None

    fingerprint = await _form_fingerprint(request)
    rkey = idempotency_redis_key(user_id, route_key, idem_key)
    r = await get_redis()

    claimed = await r.set(rkey, _record("processing", fingerprint), ex=CLAIM_TTL_SEC, nx=True)
    if claimed:
        return (rkey, fingerprint)

    raw = await r.get(rkey)
    if raw is None:
        # Claim expired between SET and GET
        raise HTTPException(status_code=409, detail=IN_FLIGHT_DETAIL)

    previous = json.loads(raw)
    if previous.get("fingerprint") != fingerprint:
        raise HTTPException(status_code=409, detail=MISMATCH_DETAIL)
    if previous.get("state") != "done":
        raise HTTPException(status_code=409, detail=IN_FLIGHT_DETAIL)

    logger.info(f"Replaying stored response for {rkey}")
    return JSONResponse(content=previous.get("body"), status_code=int(previous["status"]))


async def idempotency_store_result(redis_key: str, fingerprint: str, *, status: int, body: dict):
    r = await get_redis()
    await r.set(redis_key, _record("done", fingerprint, int(status), body), ex=REPLAY_TTL_SEC)


async def idempotency_clear_key(redis_key: str):
    """Release the key after a failed request so the client can retry."""
    try:
        r = await get_redis()
        await r.delete(redis_key)
    except RedisError as e:
        logger.warning(f"Failed to clear idempotency key {redis_key}: {e}")
