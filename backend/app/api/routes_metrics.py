import secrets

from fastapi import APIRouter, HTTPException, Request, Response

router = APIRouter()


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return None


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> Response:
    services = getattr(request.app.state, "services", None)
    metrics_client = services.metrics if services is not None else None
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")

    app_settings = getattr(request.app.state, "app_settings", None)
    token = (getattr(app_settings, "metrics_token", None) or "").strip()
    if token:
        provided = _bearer_token(request)
        if not provided or not secrets.compare_digest(provided, token):
            raise HTTPException(status_code=401, detail="Unauthorized")
    elif app_settings is not None and app_settings.app_env == "prod":
        raise HTTPException(status_code=500, detail="Metrics token misconfigured")

    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)
