"""
Utility per date/ora in UTC
Progetto: Contractor Manager (Gestionale Cantieri)

Tutti i confronti con scadenze avvengono in UTC. SQLite restituisce
datetime naive anche per colonne DateTime(timezone=True), quindi ogni
valore letto dal database passa da ensure_utc prima del confronto.
"""

import datetime
from typing import Optional


def utcnow() -> datetime.datetime:
    """Data/ora corrente con timezone UTC."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """
    Normalizza un datetime a UTC.

    I valori naive sono interpretati come già espressi in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)
