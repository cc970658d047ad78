"""Shared route dependencies"""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.db.database import get_db
from tempsocial.db.models import User
from tempsocial.errors import AuthenticationError
from tempsocial.services.notifier import Notifier
from tempsocial.services.payment_gateway import PaymentGateway
from tempsocial.services.presence import PresenceRegistry
from tempsocial.services.relay import RelayService
from tempsocial.services.sessions import SessionService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to a live identity"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")
    return await SessionService(db).authenticate(credentials.credentials)


def get_presence(request: Request) -> PresenceRegistry:
    return request.app.state.presence


def get_relay(request: Request) -> RelayService:
    return request.app.state.relay


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_gateway(request: Request) -> PaymentGateway | None:
    return request.app.state.gateway
