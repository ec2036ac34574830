"""Configured source adapters."""

from typing import List

from fastapi import APIRouter, Depends

from dealflow.dependencies import get_engine
from dealflow.engine import Engine
from dealflow.schemas import ApiResponse, ListMeta, SourceResponse

router = APIRouter()


@router.get("", response_model=ApiResponse[List[SourceResponse]])
async def list_sources(engine: Engine = Depends(get_engine)):
    sources = [adapter.describe() for adapter in engine.sources.all()]
    return ApiResponse(
        status="success",
        data=[SourceResponse.model_validate(source) for source in sources],
        meta=ListMeta(total=len(sources)),
    )
