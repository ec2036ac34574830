"""FastAPI dependency injection providers."""

from fastapi import Depends, Request

from dealflow.engine import Engine
from dealflow.scheduler import Scheduler
from dealflow.services.query import QueryService


def get_engine(request: Request) -> Engine:
    """The Engine built by the application lifespan."""
    return request.app.state.engine


def get_query_service(engine: Engine = Depends(get_engine)) -> QueryService:
    return engine.query


def get_scheduler(engine: Engine = Depends(get_engine)) -> Scheduler:
    return engine.scheduler
