"""
Service per i token di approvazione
Progetto: Contractor Manager (Gestionale Cantieri)

Genera i token bearer per la risposta del cliente e i relativi URL.
Il token è l'unica credenziale richiesta per rispondere: viene generato
da una sorgente casuale crittografica e non dipende da altri campi.
"""

import hmac
import secrets
from typing import Optional

from app.core.config import settings


class ApprovalTokenIssuer:
    """
    Emette token opachi e URL di approvazione.

    Metodi puri o quasi: nessun accesso al database.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_bytes: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.approval_base_url).rstrip("/")
        self.token_bytes = token_bytes if token_bytes is not None else settings.approval_token_bytes

    def generate_token(self) -> str:
        """Nuovo token URL-safe con token_bytes byte di entropia."""
        return secrets.token_urlsafe(self.token_bytes)

    def generate_approval_url(self, token: str, base_url: Optional[str] = None) -> str:
        """
        URL pubblico di approvazione per il token.

        Deterministico dati token e base URL:
        {base_url}/change-orders/approve/{token}
        """
        base = (base_url if base_url is not None else self.base_url).rstrip("/")
        return f"{base}/change-orders/approve/{token}"

    def simple_approval_url(self, change_order_id: str) -> str:
        """URL di approvazione diretta tramite ID (condivisione fuori banda)."""
        return f"{self.base_url}/change-orders/approve-simple/{change_order_id}"

    @staticmethod
    def tokens_match(expected: str, provided: str) -> bool:
        """Confronto a tempo costante tra token."""
        return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


# Istanza condivisa
approval_token_issuer = ApprovalTokenIssuer()
