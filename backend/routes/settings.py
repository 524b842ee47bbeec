"""
Portail Citoyen - Routes Settings (Admin)

Endpoints pour gerer les parametres systeme:
- general (maintenance, inscriptions)
- security, notifications, reclamations (auto-affectation)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from config import get_db
from services.permissions import require_permission
from services.settings import SystemSettings, get_settings_snapshot, settings_provider
from services.workflow import commit_effects

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("")
async def list_settings(
    user: dict = Depends(require_permission("system.settings.read")),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    """Tous les paramètres (defaults inclus)"""
    return {"settings": snapshot.model_dump()}


@router.get("/public")
async def public_settings(snapshot: SystemSettings = Depends(get_settings_snapshot)):
    """Sans authentification: utilisé par le front pour la bannière maintenance"""
    return {
        "site_name": snapshot.general.site_name,
        "maintenance_mode": snapshot.general.maintenance_mode,
        "registration_enabled": snapshot.general.registration_enabled,
    }


@router.put("/{section}")
async def update_section(
    section: str,
    values: Dict[str, Any],
    user: dict = Depends(require_permission("system.settings.edit")),
    db=Depends(get_db),
):
    result = await settings_provider.update_section(db, section, values, user)
    await commit_effects(db, result)
    return {"success": True, "section": section, "values": result["values"]}
