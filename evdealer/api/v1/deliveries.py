"""
Delivery API endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from evdealer.api.deps import CurrentIdentity, DeliveryServiceDep
from evdealer.core.logging import get_logger
from evdealer.database.models.delivery import DeliveryStatus
from evdealer.schemas.deliveries import (
    ConfirmDeliveryRequest,
    DeliveryCreateRequest,
    DeliveryFilter,
    DeliveryResponse,
    DeliveryStatusUpdateRequest,
)
from evdealer.schemas.orders import PagedResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.post(
    "/",
    response_model=DeliveryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request delivery of a confirmed order",
)
async def request_delivery(
    request: DeliveryCreateRequest,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    logger.info("Requesting delivery", order_id=str(request.order_id))
    return await service.request_delivery(
        identity, request.order_id, request.shipping_address, request.notes
    )


@router.get(
    "/",
    response_model=PagedResponse[DeliveryResponse],
    summary="List deliveries",
)
async def get_all_deliveries(
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
    page: int = Query(1),
    page_size: int = Query(10),
    delivery_status: Optional[DeliveryStatus] = Query(None, alias="status"),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    search_term: Optional[str] = Query(None, max_length=200),
) -> PagedResponse[DeliveryResponse]:
    filters = DeliveryFilter(
        status=delivery_status,
        from_date=from_date,
        to_date=to_date,
        search_term=search_term,
    )
    return await service.get_all_deliveries(identity, page, page_size, filters)


@router.get(
    "/orders/{order_id}",
    response_model=DeliveryResponse,
    summary="Get the delivery of an order",
)
async def get_delivery_by_order(
    order_id: UUID,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    return await service.get_delivery_by_order(identity, order_id)


@router.get(
    "/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get delivery details",
)
async def get_delivery(
    delivery_id: UUID,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    return await service.get_delivery(identity, delivery_id)


@router.post(
    "/{delivery_id}/confirm",
    response_model=DeliveryResponse,
    summary="Schedule a pending delivery",
)
async def confirm_delivery(
    delivery_id: UUID,
    request: ConfirmDeliveryRequest,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    return await service.confirm_delivery(
        identity, delivery_id, request.planned_date, request.staff_notes
    )


@router.patch(
    "/{delivery_id}/status",
    response_model=DeliveryResponse,
    summary="Update delivery status",
)
async def update_delivery_status(
    delivery_id: UUID,
    request: DeliveryStatusUpdateRequest,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    logger.info(
        "Updating delivery status",
        delivery_id=str(delivery_id),
        new_status=request.status.value,
    )
    return await service.update_delivery_status(
        identity,
        delivery_id,
        request.status,
        planned_date=request.planned_date,
        actual_date=request.actual_date,
    )


@router.post(
    "/{delivery_id}/cancel",
    response_model=DeliveryResponse,
    summary="Cancel a delivery",
)
async def cancel_delivery(
    delivery_id: UUID,
    identity: CurrentIdentity,
    service: DeliveryServiceDep,
) -> DeliveryResponse:
    return await service.cancel_delivery(identity, delivery_id)
