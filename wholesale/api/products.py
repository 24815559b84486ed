from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from wholesale.infrastructure.db import get_db
from wholesale.infrastructure.cache import ProductListingCache, get_product_cache
from wholesale.application.catalog import CatalogService
from wholesale.application.rbac import Actor
from wholesale.application.schemas import ProductCreate, ProductRead
from .deps import get_optional_actor, require_permission

router = APIRouter(prefix="/products", tags=["products"])

@router.get("/")
def list_products(
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    cache: ProductListingCache = Depends(get_product_cache),
    actor: Optional[Actor] = Depends(get_optional_actor),
):
    """Public catalog; prices are included for verified customers and staff."""
    return CatalogService(db, cache).list_products(category, actor)

@router.post("/", response_model=ProductRead, status_code=201)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    cache: ProductListingCache = Depends(get_product_cache),
    actor: Actor = Depends(require_permission("manage_products")),
):
    return CatalogService(db, cache).create_product(payload, actor)
