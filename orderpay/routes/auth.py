from __future__ import annotations
import hmac
from typing import Optional
from fastapi import APIRouter, Depends, Header

from ..errors import Unauthorized
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    """Admin routes send the token the admin UI stores in the x-admin-token header."""
    expected = settings.admin_token
    if not expected or not x_admin_token:
        raise Unauthorized("admin token required")
    if not hmac.compare_digest(x_admin_token.encode("utf-8"), expected.encode("utf-8")):
        raise Unauthorized("invalid admin token")


@router.get("/me", dependencies=[Depends(require_admin)])
def me():
    return {"ok": True}
