"""
Portail Citoyen - Service Settings

Paramètres système, un document par section dans la collection settings
(identifié par key): general, security, notifications, reclamations.

Le snapshot est chargé une fois et conservé jusqu'à invalidate(),
appelé après chaque écriture. Pas d'expiration temporelle.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from config import get_db, now_iso
from models.auth import ADMIN_ROLES
from services.effects import audit_effect
from services.errors import Forbidden, MaintenanceMode, ValidationError
from services.permissions import AuthorizationGate

logger = logging.getLogger("settings")


# ==================== MODELS ====================

class GeneralSettings(BaseModel):
    site_name: str = "Portail Mediouna"
    site_description: str = "Plateforme citoyenne pour la province de Médiouna"
    maintenance_mode: bool = False
    registration_enabled: bool = True
    email_verification_required: bool = True


class SecuritySettings(BaseModel):
    max_login_attempts: int = Field(default=5, ge=1)
    lockout_duration: int = Field(default=15, ge=0)     # minutes
    session_timeout: int = Field(default=30, ge=1)      # minutes
    require_2fa: bool = False
    password_min_length: int = Field(default=8, ge=6)


class NotificationSettings(BaseModel):
    email_notifications: bool = True
    push_notifications: bool = True
    admin_alerts: bool = True
    reclamation_alerts: bool = True


class ReclamationSettings(BaseModel):
    auto_assign_enabled: bool = False
    max_file_size: int = Field(default=10, ge=1)        # Mo
    allowed_file_types: List[str] = Field(default_factory=lambda: ["jpg", "png", "pdf", "doc"])
    urgent_threshold: int = Field(default=24, ge=1)     # heures
    auto_close_after_days: int = Field(default=30, ge=1)


class SystemSettings(BaseModel):
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    reclamations: ReclamationSettings = Field(default_factory=ReclamationSettings)


SECTIONS = {
    "general": GeneralSettings,
    "security": SecuritySettings,
    "notifications": NotificationSettings,
    "reclamations": ReclamationSettings,
}

_META_FIELDS = {"key", "created_at", "updated_at", "updated_by"}


# ==================== LOAD ====================

async def load_settings(db) -> SystemSettings:
    """Defaults + documents de la collection settings"""
    docs = await db.settings.find({"key": {"$in": list(SECTIONS)}}, {"_id": 0}).to_list(100)
    values: Dict[str, Dict[str, Any]] = {}
    for doc in docs:
        section = doc["key"]
        fields = SECTIONS[section].model_fields
        values[section] = {k: v for k, v in doc.items() if k in fields and k not in _META_FIELDS}
    return SystemSettings.model_validate(values)


def is_maintenance_mode_active(snapshot: SystemSettings) -> bool:
    return snapshot.general.maintenance_mode


def is_registration_enabled(snapshot: SystemSettings) -> bool:
    return snapshot.general.registration_enabled and not snapshot.general.maintenance_mode


def check_maintenance(snapshot: SystemSettings, actor: dict):
    """Mode maintenance: seuls ADMIN / SUPER_ADMIN peuvent modifier"""
    if is_maintenance_mode_active(snapshot) and actor.get("role") not in ADMIN_ROLES:
        raise MaintenanceMode("Le portail est en maintenance. Réessayez plus tard.")


# ==================== PROVIDER ====================

class SettingsProvider:

    def __init__(self):
        self._snapshot: Optional[SystemSettings] = None

    async def get(self, db) -> SystemSettings:
        if self._snapshot is None:
            self._snapshot = await load_settings(db)
        return self._snapshot

    def invalidate(self):
        self._snapshot = None

    async def update_section(self, db, section: str, values: Dict[str, Any], actor: dict) -> Dict[str, Any]:
        if not await AuthorizationGate(db).can(actor, "system.settings.edit"):
            logger.warning(f"[PERMISSION_DENIED] user={actor.get('id')} key=system.settings.edit")
            raise Forbidden("Permission requise: system.settings.edit")

        model = SECTIONS.get(section)
        if model is None:
            raise ValidationError(f"Section inconnue: {section}", {"sections": list(SECTIONS)})

        unknown = sorted(set(values) - set(model.model_fields))
        if unknown:
            raise ValidationError("Paramètres inconnus", {"fields": unknown})

        current = getattr(await load_settings(db), section)
        try:
            updated = model.model_validate({**current.model_dump(), **values})
        except PydanticValidationError as e:
            raise ValidationError("Paramètres invalides", {
                "errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            })

        data = updated.model_dump()
        data.update({"key": section, "updated_at": now_iso(), "updated_by": actor.get("id")})
        existing = await db.settings.find_one({"key": section})
        if existing:
            await db.settings.update_one({"key": section}, {"$set": data})
        else:
            data["created_at"] = now_iso()
            await db.settings.insert_one(data)

        self.invalidate()
        logger.info(f"[SETTINGS] section={section} mise à jour | by={actor.get('id')}")

        return {
            "section": section,
            "values": updated.model_dump(),
            "effects": [
                audit_effect("settings", section, "UPDATE_SETTINGS", actor.get("id"),
                             {"champs": sorted(values)}),
            ],
        }


settings_provider = SettingsProvider()


async def get_settings_snapshot(db=Depends(get_db)) -> SystemSettings:
    """FastAPI dependency: snapshot des paramètres pour la requête"""
    return await settings_provider.get(db)
