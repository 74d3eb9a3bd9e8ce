from fastapi import APIRouter, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping(request: Request) -> dict[str, str]:
    sweeper = getattr(request.app.state, "recovery_service", None)
    return {
        "status": "ok",
        "recovery_sweeper": "running" if sweeper is not None and sweeper.running else "stopped",
    }
