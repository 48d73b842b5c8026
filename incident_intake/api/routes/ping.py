import asyncpg
from fastapi import APIRouter, HTTPException, Request

from incident_intake.dependencies.auth import CurrentUser

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/database", summary="Database connectivity probe")
async def ping_database(request: Request) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await tester.test_connection()
    except (OSError, asyncpg.PostgresError) as exc:
        raise HTTPException(status_code=503, detail="Database is unreachable") from exc
    return {"status": "ok"}


@router.get("/secure", summary="Authenticated health probe")
async def secure_ping(user: CurrentUser) -> dict[str, str]:
    return {"status": "ok", "user": user.uid}
