"""Deals API endpoints.

Read-only views over the scored index. Every list is ordered by deal score,
highest first.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dealflow.core.exceptions import NotFoundError
from dealflow.dependencies import get_query_service
from dealflow.schemas import (
    ApiResponse,
    DealDetailResponse,
    ListMeta,
    PredictionResponse,
    PricePointResponse,
    PriceStatsResponse,
    ScoredOfferResponse,
)
from dealflow.services.query import QueryService

router = APIRouter()


def _listing(offers, limit: Optional[int] = None) -> ApiResponse:
    return ApiResponse(
        status="success",
        data=[ScoredOfferResponse.model_validate(s) for s in offers],
        meta=ListMeta(total=len(offers), limit=limit),
    )


@router.get("/search", response_model=ApiResponse)
async def search_deals(
    q: str = Query(..., description="Search query; every token must match"),
    category: Optional[str] = Query(None, description="Canonical category prefix"),
    query: QueryService = Depends(get_query_service),
):
    """Search indexed deals by title, brand and category."""
    return _listing(query.search(q, category))


@router.get("/top", response_model=ApiResponse)
async def top_deals(
    limit: int = Query(20, ge=1, le=100, description="Number of top deals to return"),
    query: QueryService = Depends(get_query_service),
):
    """Get the highest-scoring deals across all categories."""
    return _listing(query.top_n(limit), limit)


@router.get("/category", response_model=ApiResponse)
async def deals_by_category(
    prefix: str = Query(..., min_length=1, description="Category prefix, e.g. 'Electronics > Audio'"),
    query: QueryService = Depends(get_query_service),
):
    """Get every deal whose canonical category starts with the prefix."""
    return _listing(query.by_category(prefix))


@router.get("/{fingerprint:path}/prediction", response_model=ApiResponse[PredictionResponse])
async def deal_prediction(
    fingerprint: str,
    query: QueryService = Depends(get_query_service),
):
    """Predict the short-term price direction of a product."""
    if query.by_fingerprint(fingerprint) is None:
        raise NotFoundError("Deal", fingerprint)

    prediction = query.prediction(fingerprint)
    return ApiResponse(
        status="success",
        data=PredictionResponse(
            fingerprint=fingerprint,
            direction=prediction.direction,
            change_percent=prediction.change_percent,
            confidence=prediction.confidence,
            reasoning=prediction.reasoning,
            suggested_wait_days=prediction.suggested_wait_days,
        ),
    )


@router.get("/{fingerprint:path}", response_model=ApiResponse[DealDetailResponse])
async def get_deal(
    fingerprint: str,
    query: QueryService = Depends(get_query_service),
):
    """Get a single deal with its price history and statistics."""
    scored = query.by_fingerprint(fingerprint)
    if scored is None:
        raise NotFoundError("Deal", fingerprint)

    stats = query.price_stats(fingerprint)
    detail = DealDetailResponse(
        **ScoredOfferResponse.model_validate(scored).model_dump(),
        price_history=[PricePointResponse.model_validate(p) for p in query.price_history(fingerprint)],
        price_stats=PriceStatsResponse.model_validate(stats) if stats is not None else None,
    )
    return ApiResponse(status="success", data=detail)
