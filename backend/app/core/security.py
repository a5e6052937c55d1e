"""
Modulo di sicurezza
Progetto: Contractor Manager (Gestionale Cantieri)

- Verifica dei token JWT emessi dal servizio di autenticazione
- Rate limit in memoria per gli endpoint pubblici di approvazione
"""

import logging
import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from app.core.config import settings
from app.core.exceptions import RateLimitError
from app.schemas.token import TokenPayload

logger = logging.getLogger(__name__)


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_minutes: int = 30,
) -> str:
    """
    Crea un token di accesso JWT.

    In produzione i token arrivano dal servizio di autenticazione;
    questa funzione serve agli script di sviluppo e ai test.

    Args:
        user_id: ID del contractor
        email: E-mail del contractor (opzionale)
        expires_minutes: Validità del token in minuti

    Returns:
        Token JWT codificato
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)

    payload = {
        "sub": user_id,
        "exp": expire,
        "type": "access",
    }
    if email:
        payload["email"] = email

    return jwt.encode(
        payload,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token invalido o scaduto: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalido: missing subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(
        sub=str(payload["sub"]),
        exp=datetime.fromtimestamp(int(payload.get("exp", 0)), tz=timezone.utc),
        type=payload.get("type", "access"),
        email=payload.get("email"),
    )


class ApprovalRateLimiter:
    """
    Rate limiter a finestra scorrevole, in memoria, per chiave client.

    Limita i tentativi di enumerazione dei token sugli endpoint pubblici.
    Lo stato è per processo: con più worker il limite è per worker.
    """

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_purge: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def tracked_keys(self) -> int:
        """Numero di chiavi con richieste ancora in memoria."""
        return len(self._hits)

    def _purge(self, cutoff: float) -> None:
        # Rimuove le chiavi la cui ultima richiesta è fuori finestra
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug(f"Rate limiter: rimosse {len(stale)} chiavi inattive")

    def hit(self, key: str, now: Optional[float] = None) -> None:
        """
        Registra una richiesta per la chiave indicata.

        Al più una volta per finestra rimuove le chiavi inattive,
        così la memoria resta proporzionale ai client recenti.

        Raises:
            RateLimitError: Se la chiave ha superato il limite nella finestra
        """
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds

        with self._lock:
            if self._last_purge is None or now - self._last_purge >= self.window_seconds:
                self._purge(cutoff)
                self._last_purge = now

            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_attempts:
                logger.warning(f"Rate limit superato per il client {key}")
                raise RateLimitError(
                    extra={"retry_after_seconds": self.window_seconds},
                )

            hits.append(now)

    def reset(self) -> None:
        """Svuota lo stato (usato nei test)."""
        with self._lock:
            self._hits.clear()
            self._last_purge = None


# Istanza condivisa dagli endpoint pubblici
approval_rate_limiter = ApprovalRateLimiter(
    max_attempts=settings.approval_rate_limit_attempts,
    window_seconds=settings.approval_rate_limit_window_seconds,
)


# Export delle funzioni
__all__ = [
    "create_access_token",
    "decode_token",
    "ApprovalRateLimiter",
    "approval_rate_limiter",
]
