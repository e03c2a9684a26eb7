"""
FastAPI dependencies (DB session, cron authorization)
"""
import hmac

from fastapi import Header, HTTPException, status

from allstar.config import get_settings
from allstar.infrastructure.db.session import get_db as _get_db


# Re-export get_db for routers
get_db = _get_db


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """
    Check "Authorization: Bearer <CRON_SECRET>".

    An empty CRON_SECRET leaves the endpoint open (local development).

    Raises:
        HTTPException(401): header missing or wrong
    """
    secret = get_settings().CRON_SECRET
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
