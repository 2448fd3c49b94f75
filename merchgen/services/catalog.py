"""Default merchandise catalog.

seed_default_products() inserts the built-in products when the products
table is empty. Existing catalogs are never touched.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import get_logger
from merchgen.repositories.product import ProductRepository

logger = get_logger(__name__)

DEFAULT_PRODUCTS: list[dict[str, Any]] = [
    {
        "name": "T-Shirt",
        "print_zones": ["front", "back"],
        "max_colors": 8,
        "recommended_elements": ["icon", "graphic", "typography"],
        "constraints": "Standard screen printing zones. Front: 12x16 inches max. "
        "Back: 12x14 inches max.",
    },
    {
        "name": "Hoodie",
        "print_zones": ["front", "back", "sleeves", "pocket"],
        "max_colors": 8,
        "recommended_elements": ["icon", "graphic"],
        "constraints": "No inside printing. Solid cuffs only. Pocket embroidery max "
        "2x2cm. Sleeve prints max 4x8 inches.",
    },
    {
        "name": "Mug",
        "print_zones": ["wrap"],
        "max_colors": 999,
        "recommended_elements": ["pattern", "graphic", "icon"],
        "constraints": "360 degree full-color sublimation print. Handle area will be solid.",
    },
    {
        "name": "USB Stick",
        "print_zones": ["front"],
        "max_colors": 4,
        "recommended_elements": ["icon"],
        "constraints": "Logo area only: 2x2cm max. Single-color engraving or full-color print.",
    },
    {
        "name": "Socks",
        "print_zones": ["ankle"],
        "max_colors": 6,
        "recommended_elements": ["icon", "pattern"],
        "constraints": "Ankle area only (no heel/toe). Stretch fabric - avoid fine "
        "details under 5mm.",
    },
]


async def seed_default_products(session: AsyncSession) -> int:
    """Insert DEFAULT_PRODUCTS into an empty catalog.

    Returns:
        Number of products inserted (0 when the catalog already has rows)
    """
    repo = ProductRepository(session)
    existing = await repo.count()
    if existing:
        logger.debug("Product catalog already populated", extra={"count": existing})
        return 0

    for product in DEFAULT_PRODUCTS:
        await repo.create(**product)
    await session.commit()

    logger.info("Seeded default product catalog", extra={"count": len(DEFAULT_PRODUCTS)})
    return len(DEFAULT_PRODUCTS)
