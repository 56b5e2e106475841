import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import Actor, can_view_order, get_current_actor, get_current_admin, get_current_seller
from ..database import get_db
from ..errors import Forbidden, NotFound
from ..messaging import emit_event, order_event_payload
from ..responses import envelope, order_data

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/orders",
    tags=["Orders"]
)


def _get_order_or_404(db: Session, order_id: int):
    db_order = crud.get_order(db=db, order_id=order_id)
    if not db_order:
        raise NotFound("Order not found")
    return db_order


def _page(orders, total: int, skip: int, limit: int) -> dict:
    return {
        "orders": [order_data(o) for o in orders],
        "total": total,
        "skip": skip,
        "limit": limit,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    body: schemas.OrderCreate,
    current_user: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    db_order = crud.create_order(
        db,
        customer=current_user,
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address.model_dump(),
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
        payment_method=body.payment.method.value,
        customer_notes=body.customer_notes,
    )
    logger.info("order %s placed by customer %s", db_order.order_number, current_user.id)

    emit_event("order.created", order_event_payload(db_order))
    return envelope(data=order_data(db_order), message="Order created successfully")


@router.get("")
def get_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    current_admin: Actor = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    status_value = order_status.value if order_status else None
    orders = crud.get_orders(db=db, skip=skip, limit=limit, status=status_value)
    total = crud.get_order_count(db=db, status=status_value)
    return envelope(data=_page(orders, total, skip, limit))


@router.get("/me")
def get_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    current_user: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    status_value = order_status.value if order_status else None
    orders = crud.get_orders_by_customer(db, current_user.id, skip=skip, limit=limit, status=status_value)
    total = crud.get_customer_order_count(db, current_user.id, status=status_value)
    return envelope(data=_page(orders, total, skip, limit))


@router.get("/seller")
def get_seller_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    current_seller: Actor = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    """Orders containing at least one item sold by the caller."""
    status_value = order_status.value if order_status else None
    orders = crud.get_orders_by_seller(db, current_seller.id, skip=skip, limit=limit, status=status_value)
    total = crud.get_seller_order_count(db, current_seller.id, status=status_value)
    return envelope(data=_page(orders, total, skip, limit))


@router.get("/{order_id:int}")
def get_order(
    order_id: int,
    current_user: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    db_order = _get_order_or_404(db, order_id)
    if not can_view_order(current_user, db_order):
        raise Forbidden("You do not have permission to view this order")
    return envelope(data=order_data(db_order))


@router.put("/{order_id:int}/status")
def update_order_status(
    order_id: int,
    body: schemas.StatusUpdate,
    current_user: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    db_order = _get_order_or_404(db, order_id)
    previous_status = db_order.status

    db_order = crud.update_order_status(
        db,
        db_order,
        actor=current_user,
        new_status=body.status,
        message=body.message,
        tracking_number=body.tracking_number,
    )
    logger.info(
        "order %s moved %s -> %s by %s %s",
        db_order.order_number, previous_status, db_order.status, current_user.role, current_user.id,
    )

    emit_event(
        "order.status_changed",
        {**order_event_payload(db_order), "previous_status": previous_status},
    )
    return envelope(data=order_data(db_order), message="Order status updated successfully")


@router.post("/{order_id:int}/cancel")
def cancel_order(
    order_id: int,
    body: schemas.CancelRequest,
    current_user: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    db_order = _get_order_or_404(db, order_id)
    db_order = crud.cancel_order(db, db_order, actor=current_user, reason=body.reason)
    logger.info("order %s cancelled by customer %s", db_order.order_number, current_user.id)

    emit_event("order.cancelled", {**order_event_payload(db_order), "reason": body.reason})
    return envelope(data=order_data(db_order), message="Order cancelled successfully")


@router.get("/{order_id:int}/track")
def track_order(
    order_id: int,
    db: Session = Depends(get_db),
):
    """Public status page data; shareable without logging in."""
    db_order = _get_order_or_404(db, order_id)
    track = schemas.OrderTrackOut.model_validate(db_order).model_dump(mode="json")
    return envelope(data=track)
