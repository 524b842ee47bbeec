"""
Portail Citoyen - Descripteurs d'effets de bord

Les services de décision ne notifient et n'écrivent jamais l'audit eux-mêmes:
ils retournent une liste de descripteurs (dicts) que l'appelant exécute
via services.notifications.dispatch_effects.
"""

from typing import Any, Dict, List, Optional

from config import now_iso


def field_effect(field: str, value: Any, kind: str = "field") -> Dict[str, Any]:
    """kind: timestamp | visibility | field"""
    return {"type": kind, "field": field, "value": value}


def notification_effect(
    kind: str,
    titre: str,
    message: str,
    lien: str = "",
    recipient_id: Optional[str] = None,
    recipient_roles: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "type": "notification",
        "recipient_id": recipient_id,
        "recipient_roles": recipient_roles or [],
        "kind": kind,
        "titre": titre,
        "message": message,
        "lien": lien,
    }


def audit_effect(
    entity_type: str,
    entity_id: str,
    action: str,
    user: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "type": "audit",
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "user": user,
        "details": details or {},
        "created_at": now_iso(),
    }


def effects_of_type(effects: List[Dict[str, Any]], effect_type: str) -> List[Dict[str, Any]]:
    return [e for e in effects if e.get("type") == effect_type]
