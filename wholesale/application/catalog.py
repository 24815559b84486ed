from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from typing import Iterable, Optional
import re
import unicodedata
from wholesale.domain.models import Product, ProductVariant, ProductStatus, Role
from wholesale.infrastructure.cache import ProductListingCache
from shared.core import get_logger
from .audit import AuditLogger, ENTITY_PRODUCT
from .errors import PersistenceError
from .rbac import Actor, can
from .schemas import ProductCreate, ProductPublicRead, ProductRead

logger = get_logger(__name__)


def generate_slug(value: str, separator: str = "-", fallback: str = "item") -> str:
    """Lowercase ASCII slug, e.g. ``"Blue Dream #2" -> "blue-dream-2"``."""
    if not value:
        return fallback
    slug = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", separator, slug).strip(separator)
    return slug or fallback


class CatalogService:
    def __init__(self, db: Session, cache: Optional[ProductListingCache] = None):
        self.db = db
        self.cache = cache

    def find_products_by_ids(self, ids: Iterable[int]) -> list[Product]:
        ids = set(ids)
        if not ids:
            return []
        return list(self.db.scalars(select(Product).where(Product.id.in_(ids))))

    def find_variant(self, variant_id: int) -> Optional[ProductVariant]:
        return self.db.get(ProductVariant, variant_id)

    def list_products(self, category: Optional[str], actor: Optional[Actor]) -> list[dict]:
        """Active products; tier prices only for verified customers and staff.

        Anonymous listings are served from the cache.
        """
        role = actor.role if actor else Role.PUBLIC
        cache_key = ProductListingCache.key(category, role.value)
        if actor is None and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        query = (
            select(Product)
            .where(Product.status == ProductStatus.ACTIVE.value)
            .options(selectinload(Product.variants))
            .order_by(Product.id)
        )
        if category and category != "All":
            query = query.where(Product.category == category)
        products = self.db.scalars(query).all()

        schema = ProductRead if actor is not None and can(actor, "view_pricing") else ProductPublicRead
        data = [schema.model_validate(p).model_dump(mode="json", by_alias=True) for p in products]

        if actor is None and self.cache is not None:
            self.cache.set(cache_key, data)
        return data

    def _unique_slug(self, name: str) -> str:
        base = generate_slug(name)
        slug, suffix = base, 2
        while self.db.scalar(select(Product.id).where(Product.slug == slug)) is not None:
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def create_product(self, data: ProductCreate, actor: Actor) -> Product:
        product = Product(
            name=data.name.strip(),
            slug=self._unique_slug(data.name),
            description=data.description.strip() if data.description else None,
            category=data.category.strip(),
            status=data.status.value,
            price_gold=data.price_gold,
            price_platinum=data.price_platinum,
            price_diamond=data.price_diamond,
            variants=[
                ProductVariant(
                    subcategory=v.subcategory.strip(),
                    price_gold=v.price_gold,
                    price_platinum=v.price_platinum,
                    price_diamond=v.price_diamond,
                )
                for v in data.variants
            ],
        )
        try:
            self.db.add(product)
            self.db.flush()
            AuditLogger(self.db).record(actor, "CREATE_PRODUCT", ENTITY_PRODUCT, product.id, {
                "name": product.name,
                "category": product.category,
                "variantCount": len(product.variants),
            })
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to create product", exc_info=True)
            raise PersistenceError("Failed to create product") from exc
        self.db.refresh(product)
        if self.cache is not None:
            self.cache.invalidate()
        logger.info(f"Product created: {product.slug}")
        return product
