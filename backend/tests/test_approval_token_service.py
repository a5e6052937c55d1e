"""
Tests for approval tokens, rate limiting, JWT decoding and notifications.
"""

import smtplib
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from app.core.clock import utcnow
from app.core.exceptions import NotificationFailure, RateLimitError
from app.core.security import ApprovalRateLimiter, create_access_token, decode_token
from app.services.approval_token_service import ApprovalTokenIssuer
from app.services.notification_service import (
    EmailRenderer,
    LoggingNotificationService,
    SmtpNotificationService,
)


def fake_change_order(**overrides):
    data = {
        "id": "co-1",
        "change_order_number": "CO-20250101-042",
        "project_name": "Villa Rossi",
        "client_name": "Luigi <Bianchi>",
        "client_email": "cliente@example.com",
        "title": "Ampliamento bagno",
        "description": "Spostamento parete",
        "reason": "Richiesta del cliente",
        "impact_on_schedule": None,
        "original_amount": Decimal("50000.00"),
        "change_amount": Decimal("7500.00"),
        "new_total_amount": Decimal("57500.00"),
        "client_response_date": utcnow(),
        "client_response_notes": "Procedete pure",
        "expires_at": utcnow() + timedelta(days=7),
        "items": [],
    }
    data.update(overrides)
    return SimpleNamespace(**data)


# ============================================================
# Tests for ApprovalTokenIssuer
# ============================================================


class TestApprovalTokenIssuer:
    """Tests for token and URL generation."""

    def test_tokens_are_unique_and_long(self):
        """Test token casuali e sufficientemente lunghi."""
        issuer = ApprovalTokenIssuer(token_bytes=32)
        tokens = {issuer.generate_token() for _ in range(200)}

        assert len(tokens) == 200
        assert all(len(token) >= 43 for token in tokens)

    def test_approval_url(self):
        """Test URL deterministico dati token e base URL."""
        issuer = ApprovalTokenIssuer(base_url="https://app.example.com")

        assert issuer.generate_approval_url("abc") == "https://app.example.com/change-orders/approve/abc"
        assert issuer.generate_approval_url("abc") == issuer.generate_approval_url("abc")

    def test_trailing_slash_removed(self):
        """Test nessuno slash doppio con base URL terminante in '/'."""
        issuer = ApprovalTokenIssuer(base_url="https://app.example.com/")

        assert issuer.generate_approval_url("abc") == "https://app.example.com/change-orders/approve/abc"
        assert (
            issuer.generate_approval_url("abc", base_url="https://other.example.com//")
            == "https://other.example.com/change-orders/approve/abc"
        )

    def test_simple_approval_url(self):
        """Test URL di approvazione diretta."""
        issuer = ApprovalTokenIssuer(base_url="https://app.example.com")

        assert issuer.simple_approval_url("co-1") == "https://app.example.com/change-orders/approve-simple/co-1"

    def test_tokens_match(self):
        """Test confronto tra token."""
        assert ApprovalTokenIssuer.tokens_match("abc", "abc") is True
        assert ApprovalTokenIssuer.tokens_match("abc", "abd") is False
        assert ApprovalTokenIssuer.tokens_match("abc", "abcd") is False


# ============================================================
# Tests for ApprovalRateLimiter
# ============================================================


class TestApprovalRateLimiter:
    """Tests for the sliding window limiter."""

    def test_limit_per_key(self):
        """Test oltre il limite la chiave viene bloccata, le altre no."""
        limiter = ApprovalRateLimiter(max_attempts=3, window_seconds=60)
        for _ in range(3):
            limiter.hit("1.2.3.4", now=100.0)

        with pytest.raises(RateLimitError) as exc_info:
            limiter.hit("1.2.3.4", now=101.0)

        assert exc_info.value.extra["retry_after_seconds"] == 60
        limiter.hit("5.6.7.8", now=101.0)

    def test_window_slides(self):
        """Test le richieste fuori finestra non contano."""
        limiter = ApprovalRateLimiter(max_attempts=2, window_seconds=10)
        limiter.hit("k", now=0.0)
        limiter.hit("k", now=5.0)

        limiter.hit("k", now=10.5)

        with pytest.raises(RateLimitError):
            limiter.hit("k", now=11.0)

    def test_inactive_keys_removed(self):
        """Test le chiavi inattive non restano in memoria."""
        limiter = ApprovalRateLimiter(max_attempts=5, window_seconds=60)
        for key in ("1.1.1.1", "2.2.2.2", "3.3.3.3"):
            limiter.hit(key, now=0.0)
        assert limiter.tracked_keys == 3

        limiter.hit("4.4.4.4", now=61.0)

        assert limiter.tracked_keys == 1

    def test_active_key_kept_after_purge(self):
        """Test una chiave recente sopravvive alla pulizia e conserva i conteggi."""
        limiter = ApprovalRateLimiter(max_attempts=2, window_seconds=60)
        limiter.hit("old", now=0.0)
        limiter.hit("recent", now=50.0)
        limiter.hit("recent", now=55.0)

        with pytest.raises(RateLimitError):
            limiter.hit("recent", now=70.0)

        assert limiter.tracked_keys == 1

    def test_reset(self):
        """Test reset dello stato."""
        limiter = ApprovalRateLimiter(max_attempts=1, window_seconds=60)
        limiter.hit("k", now=0.0)
        limiter.reset()

        limiter.hit("k", now=1.0)


# ============================================================
# Tests for JWT
# ============================================================


class TestAccessToken:
    """Tests for token encoding and decoding."""

    def test_round_trip(self):
        """Test sub e email preservati."""
        payload = decode_token(create_access_token("contractor-1", email="impresa@example.com"))

        assert payload.sub == "contractor-1"
        assert payload.email == "impresa@example.com"
        assert payload.type == "access"

    def test_expired_token(self):
        """Test token scaduto rifiutato."""
        token = create_access_token("contractor-1", expires_minutes=-1)

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401

    def test_garbage_token(self):
        """Test token non valido."""
        with pytest.raises(HTTPException):
            decode_token("non-un-jwt")


# ============================================================
# Tests for notifications
# ============================================================


class TestEmailRenderer:
    """Tests for the Jinja2 e-mail templates."""

    def test_response_confirmation(self):
        """Test conferma di approvazione con importi e note."""
        subject, html = EmailRenderer().response_confirmation(fake_change_order(), "approved")

        assert subject == "Ordine di modifica CO-20250101-042 approvato"
        assert "57500.00" in html
        assert "Procedete pure" in html
        # Autoescape attivo
        assert "Luigi &lt;Bianchi&gt;" in html

    def test_response_declined(self):
        """Test oggetto per il rifiuto."""
        subject, _ = EmailRenderer().response_confirmation(fake_change_order(), "declined")

        assert subject.endswith("rifiutato")

    def test_approval_request(self):
        """Test richiesta di approvazione con link."""
        url = "https://app.example.com/change-orders/approve/abc"
        subject, html = EmailRenderer().approval_request(fake_change_order(), url)

        assert "CO-20250101-042" in subject
        assert url in html


class TestNotificationServices:
    """Tests for the notification adapters."""

    async def test_logging_service_requires_client_email(self):
        """Test richiesta senza e-mail del cliente."""
        service = LoggingNotificationService()

        with pytest.raises(NotificationFailure):
            await service.send_approval_request(fake_change_order(client_email=None), "https://x")

    async def test_smtp_sends_html_message(self, monkeypatch):
        """Test messaggio inviato al contractor via SMTP."""
        sent = []

        class FakeSMTP:
            def __init__(self, host, port, timeout=None):
                pass

            def __enter__(self):
                return self

            def __exit__(self, *args):
                return False

            def starttls(self):
                pass

            def login(self, user, password):
                pass

            def send_message(self, msg):
                sent.append(msg)

        monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)

        await SmtpNotificationService().send_response_confirmation(
            fake_change_order(), "approved", "impresa@example.com"
        )

        assert len(sent) == 1
        assert sent[0]["To"] == "impresa@example.com"
        assert sent[0]["Subject"] == "Ordine di modifica CO-20250101-042 approvato"

    async def test_smtp_failure_is_wrapped(self, monkeypatch):
        """Test errore SMTP convertito in NotificationFailure."""

        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(smtplib, "SMTP", refuse)

        with pytest.raises(NotificationFailure):
            await SmtpNotificationService().send_response_confirmation(
                fake_change_order(), "approved", "impresa@example.com"
            )
