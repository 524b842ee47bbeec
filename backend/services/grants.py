"""
Portail Citoyen - Attributions explicites de permissions

Règles:
- seul un SUPER_ADMIN attribue / retire des permissions
- les permissions d'un SUPER_ADMIN ne sont jamais modifiables
- une ligne par (utilisateur, code): ré-attribuer met à jour la ligne
- retirer désactive la ligne, on ne supprime jamais (audit)
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from config import new_id, now_utc, parse_iso
from models.auth import Role
from services.effects import audit_effect, notification_effect
from services.errors import Forbidden, NotFound, ValidationError
from services.permission_registry import PermissionRegistry

logger = logging.getLogger("grants")


def _require_super_admin(actor: dict):
    if actor.get("role") != Role.SUPER_ADMIN.value:
        logger.warning(f"[PERMISSION_DENIED] user={actor.get('id')} action=manage_grants")
        raise Forbidden("Seul un Super Admin peut gérer les permissions des utilisateurs")


async def _load_target(db, target_id: str) -> dict:
    target = await db.users.find_one({"id": target_id}, {"_id": 0, "password": 0})
    if not target:
        raise NotFound("Utilisateur non trouvé", {"user_id": target_id})
    if target.get("role") == Role.SUPER_ADMIN.value:
        raise Forbidden("Les permissions d'un Super Admin ne sont pas modifiables")
    return target


def _clean_codes(codes: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for code in codes:
        code = (code or "").strip()
        if code and code not in seen:
            seen.append(code)
    return seen


def _check_codes(registry: PermissionRegistry, codes: List[str]):
    invalid = [c for c in codes if not registry.is_active(c)]
    if invalid:
        raise ValidationError(
            f"Permissions invalides: {', '.join(invalid)}",
            {"invalid_codes": invalid},
        )


def _check_expiry(expires_at: Optional[Union[str, datetime]], now: datetime) -> Optional[str]:
    if not expires_at:
        return None
    try:
        parsed = parse_iso(expires_at)
    except ValueError:
        raise ValidationError("Date d'expiration invalide", {"field": "expires_at"})
    if parsed <= now:
        raise ValidationError("La date d'expiration doit être dans le futur", {"field": "expires_at"})
    return parsed.isoformat()


def _changed_notification(target_id: str) -> Dict[str, Any]:
    return notification_effect(
        kind="PERMISSIONS_MODIFIEES",
        titre="Permissions mises à jour",
        message="Vos permissions ont été modifiées par un administrateur.",
        lien="/profil",
        recipient_id=target_id,
    )


async def _upsert_grant(db, target_id: str, code: str, actor: dict, expires_at: Optional[str], now: datetime):
    fields = {
        "granted_by": actor.get("id"),
        "granted_at": now.isoformat(),
        "expires_at": expires_at,
        "is_active": True,
    }
    existing = await db.user_permissions.find_one({"user_id": target_id, "permission_code": code})
    if existing:
        await db.user_permissions.update_one(
            {"user_id": target_id, "permission_code": code},
            {"$set": fields}
        )
    else:
        await db.user_permissions.insert_one({
            "id": new_id(),
            "user_id": target_id,
            "permission_code": code,
            **fields,
        })


async def list_grants(db, target_id: str, actor: dict) -> List[Dict[str, Any]]:
    """Toutes les attributions (actives ou non) d'un utilisateur"""
    _require_super_admin(actor)
    target = await db.users.find_one({"id": target_id}, {"_id": 0, "id": 1})
    if not target:
        raise NotFound("Utilisateur non trouvé", {"user_id": target_id})
    return await db.user_permissions.find({"user_id": target_id}, {"_id": 0}).to_list(1000)


async def grant_permissions(db, target_id: str, codes: Iterable[str], actor: dict,
                            expires_at: Optional[Union[str, datetime]] = None,
                            now: Optional[datetime] = None) -> Dict[str, Any]:
    _require_super_admin(actor)
    target = await _load_target(db, target_id)
    now = now or now_utc()

    codes = _clean_codes(codes)
    if not codes:
        raise ValidationError("Aucune permission fournie", {"field": "permissions"})
    registry = await PermissionRegistry.load(db)
    _check_codes(registry, codes)
    expiry = _check_expiry(expires_at, now)

    for code in codes:
        await _upsert_grant(db, target["id"], code, actor, expiry, now)

    logger.info(f"[GRANTS] {len(codes)} permission(s) -> user={target['id']} | by={actor.get('id')}")
    return {
        "user_id": target["id"],
        "granted": codes,
        "expires_at": expiry,
        "effects": [
            _changed_notification(target["id"]),
            audit_effect("user", target["id"], "GRANT_PERMISSIONS", actor.get("id"),
                         {"permissions": codes, "expires_at": expiry}),
        ],
    }


async def revoke_permissions(db, target_id: str, codes: Iterable[str], actor: dict) -> Dict[str, Any]:
    _require_super_admin(actor)
    target = await _load_target(db, target_id)

    codes = _clean_codes(codes)
    if not codes:
        raise ValidationError("Aucune permission fournie", {"field": "permissions"})

    result = await db.user_permissions.update_many(
        {"user_id": target["id"], "permission_code": {"$in": codes}, "is_active": True},
        {"$set": {"is_active": False}}
    )

    logger.info(
        f"[GRANTS] {result.modified_count} permission(s) retirée(s) user={target['id']} | by={actor.get('id')}"
    )
    return {
        "user_id": target["id"],
        "revoked": codes,
        "count": result.modified_count,
        "effects": [
            _changed_notification(target["id"]),
            audit_effect("user", target["id"], "REVOKE_PERMISSIONS", actor.get("id"), {"permissions": codes}),
        ],
    }


async def sync_permissions(db, target_id: str, codes: Iterable[str], actor: dict,
                           expires_at: Optional[Union[str, datetime]] = None,
                           now: Optional[datetime] = None) -> Dict[str, Any]:
    """L'ensemble des attributions actives devient exactement `codes`."""
    _require_super_admin(actor)
    target = await _load_target(db, target_id)
    now = now or now_utc()

    codes = _clean_codes(codes)
    registry = await PermissionRegistry.load(db)
    _check_codes(registry, codes)
    expiry = _check_expiry(expires_at, now)

    current = await db.user_permissions.find(
        {"user_id": target["id"], "is_active": True},
        {"_id": 0, "permission_code": 1}
    ).to_list(1000)
    current_codes = {g["permission_code"] for g in current}

    to_revoke = sorted(current_codes - set(codes))
    if to_revoke:
        await db.user_permissions.update_many(
            {"user_id": target["id"], "permission_code": {"$in": to_revoke}},
            {"$set": {"is_active": False}}
        )
    for code in codes:
        await _upsert_grant(db, target["id"], code, actor, expiry, now)

    added = sorted(set(codes) - current_codes)
    logger.info(
        f"[GRANTS] sync user={target['id']} +{len(added)} -{len(to_revoke)} | by={actor.get('id')}"
    )
    return {
        "user_id": target["id"],
        "permissions": codes,
        "added": added,
        "revoked": to_revoke,
        "effects": [
            _changed_notification(target["id"]),
            audit_effect("user", target["id"], "SYNC_PERMISSIONS", actor.get("id"),
                         {"added": added, "revoked": to_revoke}),
        ],
    }
