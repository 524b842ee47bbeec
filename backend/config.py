"""
Configuration et utilitaires partagés
"""

import os
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

logger = logging.getLogger("config")

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'portail_citoyen')

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

logger.info(f"[CONFIG] Using database: {DB_NAME}")

# Longueur minimale d'un motif de rejet / d'une solution
MIN_MOTIF_LENGTH = 10

# Longueur minimale du rapport de clôture d'un événement
MIN_RAPPORT_CLOTURE_LENGTH = 20


def get_db():
    """FastAPI dependency: base de données courante"""
    return db


# ==================== HELPERS ====================

def new_id() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return now_utc().isoformat()


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Convertit une date ISO (ou un datetime) en datetime UTC.
    Les valeurs sans fuseau sont considérées comme UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
