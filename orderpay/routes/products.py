# orderpay/routes/products.py
from __future__ import annotations
from typing import List
from fastapi import APIRouter, Depends

from ..schemas.products import ProductIn, ProductOut
from ..services.catalog import list_products, upsert_product
from .auth import require_admin

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductOut])
async def list_products_endpoint():
    return await list_products(active_only=True)


@router.post("", response_model=ProductOut, dependencies=[Depends(require_admin)])
async def upsert_product_endpoint(body: ProductIn):
    return await upsert_product(body)
