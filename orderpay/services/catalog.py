# orderpay/services/catalog.py
from __future__ import annotations

import uuid
from typing import Any, Dict, List

from ..db import get_store
from ..schemas.products import ProductIn
from ..utils.logging import logger


def _pid() -> str:
    return f"prod-{uuid.uuid4().hex[:12]}"


async def list_products(active_only: bool = True) -> List[Dict[str, Any]]:
    return await get_store().list_products(active_only=active_only)


async def upsert_product(body: ProductIn) -> Dict[str, Any]:
    data = body.model_dump()
    data["id"] = data.get("id") or _pid()
    data["currency"] = body.currency.value
    product = await get_store().upsert_product(data)
    logger.info("product_upserted", product_id=product["id"], stock=product["stock"])
    return product
