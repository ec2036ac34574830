"""User deal submission endpoint."""

from fastapi import APIRouter, Depends, status

from dealflow.dependencies import get_engine
from dealflow.engine import Engine
from dealflow.schemas import ApiResponse, SubmissionRequest, SubmissionResponse

router = APIRouter()


@router.post(
    "",
    response_model=ApiResponse[SubmissionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def submit_deal(body: SubmissionRequest, engine: Engine = Depends(get_engine)):
    """Queue a user-submitted deal for the next submission intake run.

    Invalid or duplicate submissions are rejected with 422.
    """
    submission = engine.submissions.submit(**body.model_dump())
    return ApiResponse(status="success", data=SubmissionResponse.model_validate(submission))
