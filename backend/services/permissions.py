"""
Portail Citoyen - Permission System
Role defaults + explicit grants + FastAPI dependencies.

Effective set = role defaults ∪ active, non-expired grants,
restricted to codes that are registered AND active (fail closed).
SUPER_ADMIN = every active code, grants are never consulted.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from fastapi import Depends

from config import get_db, now_utc, parse_iso
from models.auth import Role
from services.errors import Forbidden, NotFound
from services.permission_registry import PermissionRegistry

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ROLE DEFAULTS
# ════════════════════════════════════════════════════════════════════════

_BASE = [
    "auth.login", "auth.logout", "auth.reset-password",
    "users.me.read", "users.me.edit",
]

_READ = ["actualites.read", "campagnes.read", "evenements.read", "etablissements.read"]

ROLE_DEFAULT_PERMISSIONS: Dict[str, List[str]] = {
    "CITOYEN": _BASE + [
        "reclamations.create", "reclamations.read", "reclamations.edit", "reclamations.delete",
        "etablissements.read", "etablissements.subscribe",
        "evenements.read", "evenements.subscribe", "evenements.participate",
        "evaluations.create", "evaluations.read", "evaluations.edit", "evaluations.delete", "evaluations.report",
        "actualites.read",
        "campagnes.read", "campagnes.participate",
        "suggestions.create", "suggestions.read.own",
        "map.view",
    ],

    # Pas d'héritage CITOYEN
    "DELEGATION": _BASE + ["map.view"] + _READ + [
        "evenements.create", "evenements.edit", "evenements.delete", "evenements.report",
        "actualites.create", "actualites.edit", "actualites.delete", "actualites.publish",
        "campagnes.create", "campagnes.edit", "campagnes.activate",
        "stats.view.secteur", "stats.view.etablissement",
    ],

    "AUTORITE_LOCALE": _BASE + ["map.view"] + _READ + [
        "reclamations.read.assigned", "reclamations.resolve", "reclamations.comment.internal",
        "evenements.report",
        "stats.view.commune", "stats.view.etablissement",
    ],

    "COORDINATEUR_ACTIVITES": _BASE + ["map.view"] + _READ + [
        "programmes.create", "programmes.edit", "programmes.delete", "programmes.report",
        "programmes.read",
        "stats.view.etablissement",
    ],

    "ADMIN": _BASE + ["map.view"] + _READ + [
        "users.read", "users.read.full", "users.create", "users.edit", "users.edit.role", "users.activate",
        "reclamations.read.all", "reclamations.validate", "reclamations.assign", "reclamations.archive",
        "evenements.read.all", "evenements.validate", "evenements.delete", "evenements.feature",
        "evenements.edit.all", "evenements.report",
        "actualites.validate", "actualites.publish", "actualites.delete",
        "etablissements.create", "etablissements.edit", "etablissements.validate",
        "etablissements.publish", "etablissements.delete",
        "evaluations.validate", "evaluations.delete",
        "campagnes.activate", "campagnes.validate",
        "programmes.validate",
        "stats.view.global", "stats.view.secteur", "stats.view.commune", "reports.export",
        "communes.manage",
        "system.logs.view",
    ],

    # Lecture seule globale, aucune évaluation
    "GOUVERNEUR": _BASE + [
        "users.read",
        "reclamations.read.all",
        "evenements.read.all",
        "actualites.read",
        "etablissements.read",
        "campagnes.read",
        "programmes.read",
        "stats.view.global", "stats.view.secteur", "stats.view.commune", "stats.view.etablissement",
        "reports.export",
        "map.view.full",
    ],

    # Implicite: toutes les permissions actives
    "SUPER_ADMIN": [],
}


def get_role_defaults(role: str) -> List[str]:
    """Returns the default permissions for a role."""
    return list(ROLE_DEFAULT_PERMISSIONS.get(role, []))


def is_grant_effective(grant: dict, now: Optional[datetime] = None) -> bool:
    """Attribution active et non expirée"""
    if not grant.get("is_active", False):
        return False
    expires_at = parse_iso(grant.get("expires_at"))
    if expires_at is None:
        return True
    return expires_at > (now or now_utc())


def resolve_effective_permissions(
    role: str,
    grants: Iterable[dict],
    registry: PermissionRegistry,
    now: Optional[datetime] = None,
    is_active: bool = True,
) -> frozenset:
    """Pure: aucun accès base. Un compte désactivé n'a aucune permission, sauf SUPER_ADMIN."""
    active_codes = registry.active_codes()

    if role == Role.SUPER_ADMIN.value:
        return active_codes

    if not is_active:
        return frozenset()

    codes = set(get_role_defaults(role))
    for grant in grants:
        if is_grant_effective(grant, now):
            codes.add(grant.get("permission_code"))

    return frozenset(codes & active_codes)


# ════════════════════════════════════════════════════════════════════════
# AUTHORIZATION GATE
# ════════════════════════════════════════════════════════════════════════

class AuthorizationGate:
    """Point d'entrée unique: can(actor, code)"""

    def __init__(self, db, registry: Optional[PermissionRegistry] = None):
        self.db = db
        self._registry = registry

    async def registry(self) -> PermissionRegistry:
        if self._registry is None:
            self._registry = await PermissionRegistry.load(self.db)
        return self._registry

    async def load_actor(self, actor: Union[str, dict]) -> dict:
        if isinstance(actor, dict):
            return actor
        user = await self.db.users.find_one({"id": actor}, {"_id": 0, "password": 0})
        if not user:
            raise NotFound("Utilisateur non trouvé", {"actor_id": actor})
        return user

    async def effective_permissions(self, actor: Union[str, dict], now: Optional[datetime] = None) -> frozenset:
        user = await self.load_actor(actor)
        role = user.get("role", Role.CITOYEN.value)
        is_active = user.get("is_active", True)
        registry = await self.registry()

        grants: List[dict] = []
        if role != Role.SUPER_ADMIN.value and is_active:
            grants = await self.db.user_permissions.find(
                {"user_id": user["id"], "is_active": True},
                {"_id": 0}
            ).to_list(500)

        return resolve_effective_permissions(role, grants, registry, now=now, is_active=is_active)

    async def can(self, actor: Union[str, dict], permission_code: str, now: Optional[datetime] = None) -> bool:
        try:
            permissions = await self.effective_permissions(actor, now=now)
        except NotFound:
            return False
        return permission_code in permissions


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: @router.get("/endpoint", dependencies=[Depends(require_permission("reclamations.read.all"))])
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user), db=Depends(get_db)):
        if not await AuthorizationGate(db).can(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('id')} "
                f"key={permission_key} role={user.get('role')}"
            )
            raise Forbidden(f"Permission requise: {permission_key}")
        return user

    return _check


def require_super_admin():
    """FastAPI dependency: only SUPER_ADMIN allowed."""
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if user.get("role") != Role.SUPER_ADMIN.value:
            raise Forbidden("Accès Super Admin requis")
        return user

    return _check
