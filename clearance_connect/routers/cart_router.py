from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import cart, crud, schemas
from ..auth import Actor, get_current_actor
from ..cart_store import CartStore, get_cart_store
from ..database import get_db
from ..messaging import emit_event, order_event_payload
from ..responses import envelope, order_data

router = APIRouter(
    prefix="/api/cart",
    tags=["Cart"]
)


@router.get("")
def get_my_cart(
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    """Cart lines joined with live product data, plus totals."""
    return envelope(data=cart.read_cart(db, store, current_user.id))


@router.post("/add")
def add_to_cart(
    body: schemas.CartAdd,
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    counts = cart.add_item(db, store, current_user.id, body.product_id, body.quantity)
    return envelope(data=counts, message="Item added to cart successfully")


@router.put("/update")
def update_cart_item(
    body: schemas.CartUpdate,
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    """Set the quantity of a cart line; quantity 0 removes it."""
    counts = cart.update_item(db, store, current_user.id, body.product_id, body.quantity)
    message = "Item removed from cart" if body.quantity == 0 else "Cart updated successfully"
    return envelope(data=counts, message=message)


@router.delete("/remove/{product_id:int}")
def remove_cart_item(
    product_id: int,
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
):
    counts = cart.remove_item(store, current_user.id, product_id)
    return envelope(data=counts, message="Item removed from cart successfully")


@router.delete("/clear")
def clear_my_cart(
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
):
    return envelope(data=cart.clear_cart(store, current_user.id), message="Cart cleared successfully")


@router.post("/validate")
def validate_my_cart(
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    result = cart.validate_cart(db, store, current_user.id)
    ok = result["can_proceed_to_checkout"]
    return envelope(
        data=result,
        success=ok,
        message="Cart validation successful" if ok else "Cart validation failed",
    )


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
def checkout_my_cart(
    body: schemas.CheckoutDetails,
    current_user: Actor = Depends(get_current_actor),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    """Turn the validated cart into an order and empty the cart."""
    items = cart.checkout_items(db, store, current_user.id)

    db_order = crud.create_order(
        db,
        customer=current_user,
        items=items,
        shipping_address=body.shipping_address.model_dump(),
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
        payment_method=body.payment.method.value,
        customer_notes=body.customer_notes,
    )
    cart.clear_cart(store, current_user.id)

    emit_event("order.created", order_event_payload(db_order))
    return envelope(data=order_data(db_order), message="Order created successfully")
