"""Admin key check for the /api/admin endpoints"""

import secrets

from fastapi import Security
from fastapi.security import APIKeyHeader

from config.settings import settings
from core.exceptions import AdminAccessDeniedException, AdminNotConfiguredException
from core.logging import logger

admin_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_admin_api_key(api_key: str = Security(admin_key_header)) -> str:
    """
    Require the configured admin key

    Raises:
        AdminNotConfiguredException: If ADMIN_API_KEY is unset
        AdminAccessDeniedException: If the header is missing or wrong
    """
    if not settings.ADMIN_API_KEY:
        logger.error("❌ Admin endpoint called but ADMIN_API_KEY is not set")
        raise AdminNotConfiguredException()

    if not api_key or not secrets.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        logger.warning("🔒 Rejected admin request with missing or invalid key")
        raise AdminAccessDeniedException()

    return api_key
