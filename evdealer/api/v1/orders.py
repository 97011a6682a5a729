"""
Order API endpoints.

Placement, cancellation, staff status changes and assignment, and order
listings. Workflow errors propagate to the application exception handlers.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from evdealer.api.deps import CurrentIdentity, OrderServiceDep
from evdealer.core.logging import get_logger
from evdealer.database.models.order import OrderStatus
from evdealer.schemas.orders import (
    AssignStaffRequest,
    OrderCancelRequest,
    OrderCreatedResponse,
    OrderCreateRequest,
    OrderFilter,
    OrderResponse,
    OrderStatusUpdateRequest,
    PagedResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Reserve one unit of the vehicle and issue an unpaid invoice",
)
async def create_order(
    request: OrderCreateRequest,
    identity: CurrentIdentity,
    service: OrderServiceDep,
) -> OrderCreatedResponse:
    logger.info("Creating order", vehicle_id=str(request.vehicle_id))
    order_id = await service.create_order(identity, request.vehicle_id, request.notes)
    return OrderCreatedResponse(order_id=order_id)


@router.get(
    "/me",
    response_model=PagedResponse[OrderResponse],
    summary="List my orders",
)
async def get_my_orders(
    identity: CurrentIdentity,
    service: OrderServiceDep,
    page: int = Query(1),
    page_size: int = Query(10),
) -> PagedResponse[OrderResponse]:
    return await service.get_my_orders(identity, page, page_size)


@router.get(
    "/",
    response_model=PagedResponse[OrderResponse],
    summary="List all orders",
    description="Staff listing with optional filters, newest first",
)
async def get_all_orders(
    identity: CurrentIdentity,
    service: OrderServiceDep,
    page: int = Query(1),
    page_size: int = Query(10),
    customer_id: Optional[UUID] = Query(None),
    staff_id: Optional[UUID] = Query(None),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    search_term: Optional[str] = Query(None, max_length=200),
) -> PagedResponse[OrderResponse]:
    filters = OrderFilter(
        customer_id=customer_id,
        staff_id=staff_id,
        status=order_status,
        from_date=from_date,
        to_date=to_date,
        search_term=search_term,
    )
    return await service.get_all_orders(identity, page, page_size, filters)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: UUID,
    identity: CurrentIdentity,
    service: OrderServiceDep,
) -> OrderResponse:
    return await service.get_order(identity, order_id)


@router.post(
    "/{order_id}/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel an order",
    description="Cancel a pending or confirmed order and return its units to stock",
)
async def cancel_order(
    order_id: UUID,
    request: OrderCancelRequest,
    identity: CurrentIdentity,
    service: OrderServiceDep,
) -> Response:
    logger.info("Cancelling order", order_id=str(order_id))
    await service.cancel_order(identity, order_id, request.reason)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    identity: CurrentIdentity,
    service: OrderServiceDep,
) -> OrderResponse:
    logger.info(
        "Updating order status",
        order_id=str(order_id),
        new_status=request.status.value,
    )
    return await service.update_order_status(identity, order_id, request.status, request.notes)


@router.put(
    "/{order_id}/staff",
    response_model=OrderResponse,
    summary="Assign dealer staff to an order",
)
async def assign_staff(
    order_id: UUID,
    request: AssignStaffRequest,
    identity: CurrentIdentity,
    service: OrderServiceDep,
) -> OrderResponse:
    return await service.assign_staff(identity, order_id, request.staff_id)
