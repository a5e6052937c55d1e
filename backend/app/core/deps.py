"""
Dependency Injection
Progetto: Contractor Manager (Gestionale Cantieri)

Funzioni di dependency injection per identità del contractor,
notifiche e rate limit degli endpoint pubblici.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import approval_rate_limiter, decode_token
from app.schemas.token import TokenPayload
from app.services.notification_service import NotificationPort, get_notification_service

# OAuth2 scheme - estrae il token dall'header Authorization
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=False,
)


async def get_current_token(
    token: Optional[str] = Depends(oauth2_scheme),
) -> TokenPayload:
    """
    Dependency per ottenere il payload del token del contractor corrente.

    Raises:
        HTTPException 401: Se il token manca, è invalido o non è di accesso
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(token)

    # Verifica che sia un token di accesso
    if token_data.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di refresh non valido per questa operazione",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data


async def get_current_user_id(
    token_data: Annotated[TokenPayload, Depends(get_current_token)],
) -> str:
    """ID del contractor autenticato (claim 'sub')."""
    return token_data.sub


def get_notifier() -> NotificationPort:
    """Adapter di notifica configurato; sostituibile nei test con dependency_overrides."""
    return get_notification_service()


async def enforce_approval_rate_limit(request: Request) -> None:
    """
    Applica il rate limit per indirizzo client agli endpoint del token.

    Raises:
        RateLimitError 429: Se il client ha superato il limite
    """
    client_key = request.client.host if request.client else "unknown"
    approval_rate_limiter.hit(client_key)


# Type aliases per uso comune
CurrentToken = Annotated[TokenPayload, Depends(get_current_token)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Notifier = Annotated[NotificationPort, Depends(get_notifier)]


# Export
__all__ = [
    "oauth2_scheme",
    "get_current_token",
    "get_current_user_id",
    "get_notifier",
    "enforce_approval_rate_limit",
    "CurrentToken",
    "CurrentUserId",
    "Notifier",
]
