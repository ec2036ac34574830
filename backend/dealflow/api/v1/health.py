"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from dealflow.dependencies import get_engine
from dealflow.engine import Engine
from dealflow.schemas import HealthCheckResponse

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(engine: Engine = Depends(get_engine)):
    """Return service health status.

    Checks that the record store answers a read and reports whether the
    scheduler is ticking.
    """
    services = {}

    try:
        await engine.store.get("health:ping")
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"
    services["database"] = db_status

    scheduler_status = "running" if engine.scheduler.running else "stopped"
    services["scheduler"] = scheduler_status

    return HealthCheckResponse(
        status="ok" if db_status == "ok" else "degraded",
        database=db_status,
        scheduler=scheduler_status,
        offers_indexed=len(engine.index),
        services=services,
    )
