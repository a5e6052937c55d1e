"""
Eccezioni Custom per l'applicazione.
Progetto: Contractor Manager (Gestionale Cantieri)

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business logic (gestiti dal nostro handler → 422)

ProjectionFailure e NotificationFailure non arrivano mai al client:
vengono sollevate dagli effetti collaterali e catturate dal workflow,
che si limita a loggarle.
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "ConflictError",
    "ExpiredError",
    "AlreadyRespondedError",
    "AuthorizationError",
    "RateLimitError",
    "ProjectionFailure",
    "NotificationFailure",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata anche quando un token di approvazione non corrisponde
    ad alcun ordine di modifica.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.
    Viene sempre sollevata prima di qualsiasi scrittura.

    Esempi di utilizzo:
        - "L'importo del pagamento deve essere maggiore di zero"
        - "Transizione di stato non consentita"
        - "È necessario accettare le condizioni per approvare"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


# Alias per compatibilità
ValidationError = BusinessValidationError


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Utilizzata quando un'operazione non può essere eseguita
    a causa dello stato corrente della risorsa.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ExpiredError(AppException):
    """
    Risposta a un ordine di modifica dopo la data di scadenza.

    Distinta da NotFoundError così che il frontend possa spiegare
    al cliente perché il link non è più utilizzabile.
    """

    status_code: int = 410
    error_code: str = "CHANGE_ORDER_EXPIRED"

    def __init__(
        self,
        detail: str = "L'ordine di modifica è scaduto",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AlreadyRespondedError(ConflictError):
    """
    Secondo tentativo di risposta a un ordine di modifica.

    Per il chiamante è un esito idempotente ("già elaborato"):
    extra contiene la risposta registrata in precedenza.
    """

    error_code: str = "CHANGE_ORDER_ALREADY_RESPONDED"

    def __init__(
        self,
        detail: str = "L'ordine di modifica ha già ricevuto una risposta",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AuthorizationError(AppException):
    """
    Eccezione sollevata per accesso non autorizzato.

    Utilizzata quando un contractor tenta di accedere a un record
    di cui non è proprietario (user_id diverso).
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Accesso non autorizzato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class RateLimitError(AppException):
    """Troppe richieste sugli endpoint pubblici di approvazione."""

    status_code: int = 429
    error_code: str = "TOO_MANY_REQUESTS"

    def __init__(
        self,
        detail: str = "Troppe richieste, riprovare più tardi",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ProjectionFailure(AppException):
    """
    Aggiornamento del budget di progetto fallito dopo un'approvazione.

    L'approvazione resta valida; il delta viene riapplicato
    dalla riconciliazione (ProjectBudgetProjector.reconcile).
    """

    error_code: str = "BUDGET_PROJECTION_FAILED"


class NotificationFailure(AppException):
    """Invio notifica fallito. Sempre catturata e loggata dal chiamante."""

    error_code: str = "NOTIFICATION_FAILED"
