"""
Elimina e ricrea lo schema del database (solo sviluppo).
Progetto: Contractor Manager (Gestionale Cantieri)

Uso: python reset_db.py --yes
"""

import argparse
import asyncio
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare app.* senza installazione
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.config import settings
from app.core.database import engine
from app.models import Base


async def reset() -> None:
    print(f"Connessione a {engine.url.render_as_string(hide_password=True)}, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        print("Tabelle eliminate. Creazione nuove tabelle...")
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print(f"Tabelle create: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset dello schema del database")
    parser.add_argument("--yes", action="store_true", help="Conferma l'eliminazione dei dati")
    args = parser.parse_args()

    if settings.is_production:
        sys.exit("Reset non consentito in produzione")
    if not args.yes:
        sys.exit("Operazione distruttiva: rieseguire con --yes")

    asyncio.run(reset())
