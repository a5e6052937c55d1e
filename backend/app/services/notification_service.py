"""
Service per le notifiche e-mail
Progetto: Contractor Manager (Gestionale Cantieri)

Le notifiche sono best-effort: il workflow degli ordini di modifica
cattura e logga ogni NotificationFailure, senza mai annullare
una transizione di stato già salvata.

Adapter disponibili:
- LoggingNotificationService: renderizza il messaggio e lo scrive nel log
- SmtpNotificationService: invia via SMTP (smtplib, in un thread)
"""

import asyncio
import logging
import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from functools import lru_cache
from typing import Optional, Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.clock import ensure_utc
from app.core.config import settings
from app.core.exceptions import NotificationFailure
from app.models.change_order import ChangeOrder

logger = logging.getLogger(__name__)

# Path alla cartella templates
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")


class NotificationPort(Protocol):
    """Contratto delle notifiche in uscita."""

    async def send_response_confirmation(
        self,
        change_order: ChangeOrder,
        response: str,
        contractor_email: str,
    ) -> None:
        ...

    async def send_approval_request(
        self,
        change_order: ChangeOrder,
        approval_url: str,
    ) -> None:
        ...


class EmailRenderer:
    """Renderizza oggetto e corpo HTML delle e-mail dai template Jinja2."""

    def __init__(self, templates_dir: str = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=select_autoescape(["html"]),
        )

    def response_confirmation(self, change_order: ChangeOrder, response: str) -> tuple[str, str]:
        """Oggetto e corpo della conferma di risposta per il contractor."""
        label = "approvato" if response == "approved" else "rifiutato"
        subject = f"Ordine di modifica {change_order.change_order_number} {label}"
        template = self.env.get_template("change_order_response.html")
        html = template.render(change_order=change_order, response=response)
        return subject, html

    def approval_request(self, change_order: ChangeOrder, approval_url: str) -> tuple[str, str]:
        """Oggetto e corpo della richiesta di approvazione per il cliente."""
        subject = (
            f"Richiesta di approvazione: ordine di modifica "
            f"{change_order.change_order_number}"
        )
        template = self.env.get_template("change_order_approval_request.html")
        html = template.render(
            change_order=change_order,
            approval_url=approval_url,
            expires_at=ensure_utc(change_order.expires_at),
        )
        return subject, html


class LoggingNotificationService:
    """
    Adapter di default: nessun invio, solo log.

    Utile in sviluppo e quando l'SMTP non è configurato.
    """

    def __init__(self, renderer: Optional[EmailRenderer] = None):
        self.renderer = renderer or EmailRenderer()

    async def send_response_confirmation(
        self,
        change_order: ChangeOrder,
        response: str,
        contractor_email: str,
    ) -> None:
        subject, _ = self.renderer.response_confirmation(change_order, response)
        logger.info(f"[email] a={contractor_email} oggetto='{subject}'")

    async def send_approval_request(
        self,
        change_order: ChangeOrder,
        approval_url: str,
    ) -> None:
        if not change_order.client_email:
            raise NotificationFailure(
                f"Ordine di modifica {change_order.id} senza e-mail del cliente"
            )
        subject, _ = self.renderer.approval_request(change_order, approval_url)
        logger.info(f"[email] a={change_order.client_email} oggetto='{subject}' link={approval_url}")


class SmtpNotificationService:
    """Invio via SMTP; smtplib è bloccante e gira in un thread separato."""

    def __init__(self, renderer: Optional[EmailRenderer] = None):
        self.renderer = renderer or EmailRenderer()

    def _build_message(self, to: str, subject: str, html_body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((settings.email_sender_name, settings.email_sender))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("Questo messaggio richiede un client e-mail con supporto HTML.")
        msg.add_alternative(html_body, subtype="html")
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_user and settings.smtp_password:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(msg)

    async def _deliver(self, to: str, subject: str, html_body: str) -> None:
        msg = self._build_message(to, subject, html_body)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(f"Invio e-mail a {to} fallito: {e}") from e
        logger.info(f"E-mail '{subject}' inviata a {to}")

    async def send_response_confirmation(
        self,
        change_order: ChangeOrder,
        response: str,
        contractor_email: str,
    ) -> None:
        subject, html = self.renderer.response_confirmation(change_order, response)
        await self._deliver(contractor_email, subject, html)

    async def send_approval_request(
        self,
        change_order: ChangeOrder,
        approval_url: str,
    ) -> None:
        if not change_order.client_email:
            raise NotificationFailure(
                f"Ordine di modifica {change_order.id} senza e-mail del cliente"
            )
        subject, html = self.renderer.approval_request(change_order, approval_url)
        await self._deliver(change_order.client_email, subject, html)


@lru_cache()
def get_notification_service() -> NotificationPort:
    """Adapter scelto da settings.notification_backend."""
    if settings.notification_backend == "smtp":
        return SmtpNotificationService()
    return LoggingNotificationService()


__all__ = [
    "NotificationPort",
    "EmailRenderer",
    "LoggingNotificationService",
    "SmtpNotificationService",
    "get_notification_service",
]
