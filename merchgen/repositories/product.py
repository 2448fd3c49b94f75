"""ProductRepository for the merchandise catalog.

The pipeline only reads the active catalog. Creation exists for seeding
the default catalog at startup.
"""

import time
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import db_logger, get_logger
from merchgen.models.product import Product

logger = get_logger(__name__)


class ProductRepository:
    """Repository for Product reads and seeding."""

    TABLE_NAME = "products"
    SLOW_OPERATION_THRESHOLD_MS = 1000  # 1 second

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self) -> list[Product]:
        """Non-archived products ordered by name."""
        start_time = time.monotonic()
        try:
            result = await self.session.execute(
                select(Product)
                .where(Product.is_archived.is_(False))
                .order_by(Product.name)
            )
            products = list(result.scalars().all())

            duration_ms = (time.monotonic() - start_time) * 1000
            if duration_ms > self.SLOW_OPERATION_THRESHOLD_MS:
                db_logger.slow_query(
                    query="SELECT active products",
                    duration_ms=duration_ms,
                    table=self.TABLE_NAME,
                )
            return products

        except SQLAlchemyError as e:
            logger.error(
                "Failed to list active products",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
            raise

    async def count(self) -> int:
        """Total products, archived included."""
        result = await self.session.execute(select(func.count(Product.id)))
        return int(result.scalar_one())

    async def create(self, **fields: Any) -> Product:
        """Insert a product."""
        try:
            product = Product(**fields)
            self.session.add(product)
            await self.session.flush()
            logger.debug(
                "Product created",
                extra={"product_id": product.id, "product_name": product.name},
            )
            return product

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.TABLE_NAME,
                context=f"Creating product name={fields.get('name')}",
            )
            raise
