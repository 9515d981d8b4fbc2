import secrets

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_gateway.core.config import settings
from ai_gateway.db.session import async_session_factory
from ai_gateway.gateway.ledger import UsageLedger
from ai_gateway.gateway.quota import QuotaEnforcer
from ai_gateway.services.ai_settings import SqlFeatureLimitSource


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_ledger(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)) -> UsageLedger:
    return UsageLedger(session_factory)


def get_enforcer(
    ledger: UsageLedger = Depends(get_ledger),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> QuotaEnforcer:
    return QuotaEnforcer(ledger, tz=settings.quota_timezone, feature_limits=SqlFeatureLimitSource(session_factory))


async def require_admin(x_admin_token: str | None = Header(None, description="Admin API token")) -> None:
    """Guard for admin routes. No-op when ADMIN_API_TOKEN is not configured."""
    if not settings.admin_api_token:
        return
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.admin_api_token):
        raise HTTPException(status_code=403, detail="Invalid admin token")
