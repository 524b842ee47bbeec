"""
Portail Citoyen - Administration des comptes (rôle, activation)

Invariants:
- personne ne modifie son propre rôle ni ne désactive son propre compte
- seul un SUPER_ADMIN touche un SUPER_ADMIN ou promeut ADMIN / SUPER_ADMIN
- une commune a au plus UNE autorité locale rattachée
"""

import logging
from typing import Any, Dict, List, Optional

from models.auth import ADMIN_ROLES, VALID_ROLES, Role
from services.effects import audit_effect, notification_effect
from services.errors import Conflict, Forbidden, NotFound, ValidationError
from services.permissions import AuthorizationGate

logger = logging.getLogger("user_admin")

ROLE_LABELS = {
    "CITOYEN": "Citoyen",
    "DELEGATION": "Délégation",
    "AUTORITE_LOCALE": "Autorité locale",
    "COORDINATEUR_ACTIVITES": "Coordinateur d'activités",
    "ADMIN": "Administrateur",
    "SUPER_ADMIN": "Super Administrateur",
    "GOUVERNEUR": "Gouverneur",
}


async def _require(db, actor: dict, code: str):
    if not await AuthorizationGate(db).can(actor, code):
        logger.warning(f"[PERMISSION_DENIED] user={actor.get('id')} key={code}")
        raise Forbidden(f"Permission requise: {code}", {"permission": code})


async def _load_user(db, user_id: str) -> dict:
    user = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    if not user:
        raise NotFound("Utilisateur non trouvé", {"user_id": user_id})
    return user


def _is_super_admin(user: dict) -> bool:
    return user.get("role") == Role.SUPER_ADMIN.value


async def change_role(
    db,
    target_id: str,
    role: str,
    actor: dict,
    commune_responsable_id: Optional[str] = None,
    secteur_responsable: Optional[str] = None,
    etablissements_geres: Optional[List[str]] = None,
) -> Dict[str, Any]:
    await _require(db, actor, "users.edit.role")

    if role not in VALID_ROLES:
        raise ValidationError(f"Rôle invalide: {role}", {"roles_valides": VALID_ROLES})

    target = await _load_user(db, target_id)

    if target["id"] == actor.get("id"):
        raise Forbidden("Vous ne pouvez pas modifier votre propre rôle")
    if _is_super_admin(target) and not _is_super_admin(actor):
        raise Forbidden("Seul un Super Admin peut modifier un Super Admin")
    if role in ADMIN_ROLES and not _is_super_admin(actor):
        raise Forbidden("Seul un Super Admin peut attribuer un rôle d'administration")

    # Champs propres au rôle: remis à zéro à chaque changement
    updates: Dict[str, Any] = {
        "role": role,
        "secteur_responsable": None,
        "commune_responsable_id": None,
        "etablissements_geres": [],
    }

    if role == Role.DELEGATION.value:
        if not secteur_responsable:
            raise ValidationError("Un secteur est requis pour le rôle Délégation",
                                  {"field": "secteur_responsable"})
        updates["secteur_responsable"] = secteur_responsable

    elif role == Role.AUTORITE_LOCALE.value:
        if not commune_responsable_id:
            raise ValidationError("Une commune est requise pour le rôle Autorité locale",
                                  {"field": "commune_responsable_id"})
        commune = await db.communes.find_one({"id": commune_responsable_id}, {"_id": 0})
        if not commune:
            raise ValidationError("Commune introuvable", {"commune_responsable_id": commune_responsable_id})
        holder = await db.users.find_one(
            {
                "role": Role.AUTORITE_LOCALE.value,
                "commune_responsable_id": commune_responsable_id,
                "id": {"$ne": target["id"]},
            },
            {"_id": 0, "id": 1, "nom": 1, "prenom": 1}
        )
        if holder:
            raise Conflict(
                f"La commune {commune.get('nom', commune_responsable_id)} a déjà une autorité locale",
                {"commune_responsable_id": commune_responsable_id, "user_id": holder["id"]},
            )
        updates["commune_responsable_id"] = commune_responsable_id

    elif role == Role.COORDINATEUR_ACTIVITES.value:
        if not etablissements_geres:
            raise ValidationError("Au moins un établissement est requis pour le rôle Coordinateur",
                                  {"field": "etablissements_geres"})
        updates["etablissements_geres"] = list(etablissements_geres)

    await db.users.update_one({"id": target["id"]}, {"$set": updates})
    logger.info(
        f"[USER_ADMIN] role user={target['id']} {target.get('role')} -> {role} | by={actor.get('id')}"
    )

    return {
        "user": {**target, **updates},
        "effects": [
            notification_effect(
                kind="ROLE_CHANGED",
                titre="Changement de rôle",
                message=f"Votre rôle a été modifié: {ROLE_LABELS.get(role, role)}.",
                lien="/profil",
                recipient_id=target["id"],
            ),
            audit_effect("user", target["id"], "CHANGE_ROLE", actor.get("id"), {
                "ancien_role": target.get("role"),
                "nouveau_role": role,
                "commune_responsable_id": updates["commune_responsable_id"],
                "secteur_responsable": updates["secteur_responsable"],
            }),
        ],
    }


async def set_active(db, target_id: str, is_active: bool, actor: dict) -> Dict[str, Any]:
    await _require(db, actor, "users.activate")
    target = await _load_user(db, target_id)

    if target["id"] == actor.get("id") and not is_active:
        raise Forbidden("Vous ne pouvez pas désactiver votre propre compte")
    if _is_super_admin(target) and not _is_super_admin(actor):
        raise Forbidden("Seul un Super Admin peut modifier un Super Admin")

    await db.users.update_one({"id": target["id"]}, {"$set": {"is_active": is_active}})

    sessions_closed = 0
    if not is_active:
        result = await db.sessions.delete_many({"user_id": target["id"]})
        sessions_closed = result.deleted_count

    logger.info(
        f"[USER_ADMIN] user={target['id']} is_active={is_active} "
        f"sessions_closed={sessions_closed} | by={actor.get('id')}"
    )
    return {
        "user": {**target, "is_active": is_active},
        "sessions_closed": sessions_closed,
        "effects": [
            audit_effect("user", target["id"], "USER_ACTIVATED" if is_active else "USER_DEACTIVATED",
                         actor.get("id"), {"sessions_closed": sessions_closed}),
        ],
    }
