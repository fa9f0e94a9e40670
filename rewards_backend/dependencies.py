"""FastAPI dependencies."""
import logging

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from rewards_backend.database import get_db
from rewards_backend.models.user import UserAccount
from rewards_backend.services.auth_service import AuthService, AuthError
from rewards_backend.services.payment_providers import PaymentProviderClient, get_payment_providers

logger = logging.getLogger(__name__)


async def get_current_user(
        authorization: str | None = Header(default=None, alias="Authorization"),
        db: AsyncSession = Depends(get_db),
) -> UserAccount:
    """Resolve the authenticated user from a Bearer access token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="missing_credentials")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="invalid_authorization_header")

    try:
        payload = AuthService().decode_access_token(token)
        user_id_str = payload.get("sub")
        if not user_id_str:
            raise AuthError("invalid_token")
        user_id = UUID(str(user_id_str))
    except (ValueError, AuthError) as exc:
        detail = "token_expired" if isinstance(exc, AuthError) and str(exc) == "token_expired" else "invalid_token"
        raise HTTPException(status_code=401, detail=detail) from exc

    result = await db.execute(select(UserAccount).where(UserAccount.user_id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        logger.warning(f"Token subject {user_id} has no account")
        raise HTTPException(status_code=401, detail="invalid_token")

    return user


def get_payout_providers() -> dict[str, PaymentProviderClient]:
    """Payment provider clients keyed by provider name."""
    return get_payment_providers()
