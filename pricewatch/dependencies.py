"""
FastAPI dependencies: caller identity and the request-level search quota.

Authentication itself happens upstream; by the time a request reaches this
service the auth layer has put the user's id in the ``X-User-Id`` header.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException

from pricewatch.core.errors import UserLimitExceeded
from pricewatch.services import price_intelligence_service


def limit_exceeded_detail(error: UserLimitExceeded, stage: Optional[str] = None) -> Dict[str, Any]:
    detail = {
        "success": False,
        "message": str(error),
        "limit": error.limit,
        "limit_resets_at": error.resets_at.isoformat() if error.resets_at else None,
    }
    if stage:
        detail["stage"] = stage
    return detail


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity of the authenticated caller; users are provisioned on first sight."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")

    database = price_intelligence_service.get_database()
    user = await database.get_or_create_user(x_user_id.strip())
    return user.user_id


async def check_search_limit(user_id: str = Depends(get_current_user_id)) -> str:
    """Reject the request with 429 when the daily search allowance is used up."""
    gate = price_intelligence_service.get_request_gate()
    try:
        await gate.check(user_id)
    except UserLimitExceeded as e:
        raise HTTPException(status_code=429, detail=limit_exceeded_detail(e))
    return user_id
