from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import Actor, can_manage_product, get_current_admin, get_current_seller
from ..database import get_db
from ..errors import Forbidden, InvalidState, NotFound
from ..external_services import is_seller_approved
from ..responses import envelope, product_data

router = APIRouter(prefix="/api/products", tags=["Products"])


def _get_product_or_404(db: Session, product_id: int):
    product = crud.get_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def _get_managed_product(db: Session, product_id: int, actor: Actor):
    product = _get_product_or_404(db, product_id)
    if not can_manage_product(actor, product):
        raise Forbidden("You can only manage your own products")
    return product


@router.get("")
def list_products(
    skip: int = Query(0, ge=0, description="**Skip** number of products"),
    limit: int = Query(20, ge=1, le=100, description="**Limit** number of products"),
    search: Optional[str] = Query(None, description="**Search** in name, description, or category"),
    category: Optional[str] = Query(None),
    seller_id: Optional[int] = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    products = crud.get_products(
        db, skip=skip, limit=limit, search=search, category=category, seller_id=seller_id
    )
    return envelope(data=[product_data(p) for p in products])


@router.get("/{product_id:int}")
def view_product(
    product_id: int,
    db: Session = Depends(get_db),
):
    product = _get_product_or_404(db, product_id)
    crud.increment_views(db, product_id)
    return envelope(data=product_data(product))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    body: schemas.ProductCreate,
    current_seller: Actor = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    """New listings wait for admin approval before they can be bought."""
    product = crud.create_product(db, current_seller.id, body.model_dump())
    return envelope(data=product_data(product), message="Product submitted for approval")


@router.patch("/{product_id:int}")
def update_product(
    product_id: int,
    body: schemas.ProductUpdate,
    current_seller: Actor = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    product = _get_managed_product(db, product_id, current_seller)
    update_data = body.model_dump(exclude_none=True)
    product = crud.update_product(db, product, update_data)
    return envelope(data=product_data(product), message="Product updated successfully")


@router.patch("/{product_id:int}/stock")
def update_product_stock(
    product_id: int,
    body: schemas.StockUpdate,
    current_seller: Actor = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    _get_managed_product(db, product_id, current_seller)
    product = crud.set_product_stock(db, product_id, body.quantity)
    return envelope(data=product_data(product), message="Stock updated successfully")


@router.post("/{product_id:int}/approve")
def approve_product(
    product_id: int,
    current_admin: Actor = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    product = _get_product_or_404(db, product_id)
    if not is_seller_approved(product.seller_id):
        raise InvalidState("Seller is not approved")
    product = crud.approve_product(db, product)
    return envelope(data=product_data(product), message="Product approved")


@router.delete("/{product_id:int}")
def delete_product(
    product_id: int,
    current_seller: Actor = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    product = _get_managed_product(db, product_id, current_seller)
    product = crud.soft_delete_product(db, product)
    return envelope(data=product_data(product), message="Product deleted successfully")
