"""
Portail Citoyen - Event Logger

Journal d'audit centralisé, append-only: on insère, on ne modifie jamais.
Collection: event_log
"""

from typing import Any, Dict, List

from config import new_id, now_iso


async def log_event(
    db,
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None,
    created_at: str = None,
) -> Dict[str, Any]:
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. ACCEPTATION, REJET, AFFECTATION, STATUT_PUBLIEE, GRANT_PERMISSIONS
        entity_type: reclamation | evenement | actualite | activite | campagne | user | permission | settings
        entity_id: ID of the primary entity
        user: id of the actor performing the action
        details: free-form dict (motif, ancien_statut, nouveau_statut, ...)
        related: linked entity IDs
    """
    entry = {
        "id": new_id(),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": created_at or now_iso(),
    }
    await db.event_log.insert_one(dict(entry))
    return entry


async def append_audit(db, effect: Dict[str, Any]) -> Dict[str, Any]:
    """Persiste un descripteur d'effet de type audit"""
    return await log_event(
        db,
        action=effect["action"],
        entity_type=effect["entity_type"],
        entity_id=effect["entity_id"],
        user=effect.get("user") or "system",
        details=effect.get("details"),
        created_at=effect.get("created_at"),
    )


async def get_entity_history(db, entity_type: str, entity_id: str, limit: int = 500) -> List[Dict[str, Any]]:
    """Historique d'une entité, du plus ancien au plus récent"""
    return await db.event_log.find(
        {"entity_type": entity_type, "entity_id": entity_id},
        {"_id": 0}
    ).sort("created_at", 1).to_list(limit)
