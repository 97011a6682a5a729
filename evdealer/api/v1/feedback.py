"""
Customer feedback API endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from evdealer.api.deps import CurrentIdentity, FeedbackServiceDep
from evdealer.schemas.feedback import FeedbackCreateRequest, FeedbackFilter, FeedbackResponse
from evdealer.schemas.orders import PagedResponse

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post(
    "/",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Leave feedback",
)
async def create_feedback(
    request: FeedbackCreateRequest,
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
) -> FeedbackResponse:
    return await service.create_feedback(identity, request.content, request.order_id)


@router.get(
    "/me",
    response_model=PagedResponse[FeedbackResponse],
    summary="List my feedback",
)
async def get_my_feedbacks(
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
    page: int = Query(1),
    page_size: int = Query(10),
) -> PagedResponse[FeedbackResponse]:
    return await service.get_my_feedbacks(identity, page, page_size)


@router.get(
    "/",
    response_model=PagedResponse[FeedbackResponse],
    summary="List all feedback",
)
async def get_all_feedbacks(
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
    page: int = Query(1),
    page_size: int = Query(10),
    search_term: Optional[str] = Query(None, max_length=200),
    is_resolved: Optional[bool] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    order_id: Optional[UUID] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
) -> PagedResponse[FeedbackResponse]:
    filters = FeedbackFilter(
        search_term=search_term,
        is_resolved=is_resolved,
        customer_id=customer_id,
        order_id=order_id,
        from_date=from_date,
        to_date=to_date,
    )
    return await service.get_all_feedbacks(identity, page, page_size, filters)


@router.get(
    "/{feedback_id}",
    response_model=FeedbackResponse,
    summary="Get feedback",
)
async def get_feedback(
    feedback_id: UUID,
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
) -> FeedbackResponse:
    return await service.get_feedback(identity, feedback_id)


@router.post(
    "/{feedback_id}/resolve",
    response_model=FeedbackResponse,
    summary="Resolve feedback",
)
async def resolve_feedback(
    feedback_id: UUID,
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
) -> FeedbackResponse:
    return await service.resolve_feedback(identity, feedback_id)


@router.delete(
    "/{feedback_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete feedback",
)
async def delete_feedback(
    feedback_id: UUID,
    identity: CurrentIdentity,
    service: FeedbackServiceDep,
) -> Response:
    await service.delete_feedback(identity, feedback_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
