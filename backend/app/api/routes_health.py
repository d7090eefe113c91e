import asyncio
import logging
import time

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

router = APIRouter()
logger = logging.getLogger(__name__)

_STORE_CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _store_check(request: Request) -> tuple[bool, dict]:
    services = getattr(request.app.state, "services", None)
    if services is None:
        return False, {"message": "services unavailable"}
    try:
        reachable = await asyncio.wait_for(services.kv.ping(), timeout=_STORE_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "store check timed out", "timeout_seconds": _STORE_CHECK_TIMEOUT_SECONDS}
    if not reachable:
        return False, {"message": "store unreachable"}
    return True, {"message": "store reachable"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    start = time.perf_counter()
    ok, detail = await _store_check(request)
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    check = {"name": "store", "ok": ok, "ms": elapsed_ms, "detail": detail}
    if not ok:
        logger.warning("readiness_check_failed", extra={"extra": {"check": "store", **detail}})
        return JSONResponse(status_code=503, content={"status": "error", "checks": [check]})
    return JSONResponse(status_code=200, content={"status": "ok", "checks": [check]})
