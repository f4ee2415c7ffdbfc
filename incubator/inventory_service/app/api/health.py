from fastapi import APIRouter, Request, status

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck(request: Request) -> dict[str, str]:
    """Liveness check; also reports whether the reservation sweeper is running."""

    sweeper = getattr(request.app.state, "reservation_sweeper", None)
    if sweeper is not None and not sweeper.running and request.app.state.settings.reservation_sweep_interval_seconds > 0:
        return {"status": "degraded"}
    return {"status": "ok"}
