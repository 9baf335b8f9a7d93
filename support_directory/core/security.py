import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from support_directory.core.config import Settings, get_settings


def admin_key_matches(settings: Settings, provided: str | None) -> bool:
    """An unset admin key leaves administrative flags open, as in local development."""
    if not settings.admin_api_key:
        return True
    if not provided:
        return False
    expected_hash = hashlib.sha256(settings.admin_api_key.encode("utf-8")).hexdigest()
    provided_hash = hashlib.sha256(provided.encode("utf-8")).hexdigest()
    return hmac.compare_digest(expected_hash, provided_hash)


async def require_admin(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    if not admin_key_matches(settings, x_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"administrative access requires a valid {settings.admin_api_key_header}",
        )
