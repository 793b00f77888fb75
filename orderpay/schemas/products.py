# orderpay/schemas/products.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .orders import Currency


class ProductIn(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    currency: Currency = Currency.IDR
    image_url: str = ""
    stock: int = Field(0, ge=0)
    is_active: bool = True
    category: str = "general"


class ProductOut(ProductIn):
    id: str
