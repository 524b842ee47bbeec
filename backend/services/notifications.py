"""
Portail Citoyen - Notifications & exécution des effets

dispatch_effects exécute les descripteurs retournés par les services de décision:
- audit        -> event_log (un échec est fatal: l'appelant reçoit l'exception)
- notification -> notifications (best-effort: un échec est loggé, jamais propagé)
Les effets de champ (timestamp/visibility/field) sont déjà persistés par le service.
"""

import logging
from typing import Any, Dict, List, Optional

from config import new_id, now_iso
from services.event_logger import append_audit

logger = logging.getLogger("notifications")


class NotificationEmitter:

    def __init__(self, db):
        self.db = db

    async def recipients(self, descriptor: Dict[str, Any]) -> List[str]:
        if descriptor.get("recipient_id"):
            return [descriptor["recipient_id"]]
        roles = descriptor.get("recipient_roles") or []
        if not roles:
            return []
        users = await self.db.users.find(
            {"role": {"$in": roles}, "is_active": True},
            {"_id": 0, "id": 1}
        ).to_list(1000)
        return [u["id"] for u in users]

    async def emit(self, descriptor: Dict[str, Any]) -> int:
        """Écrit une notification par destinataire. Retourne le nombre écrit."""
        created = 0
        for user_id in await self.recipients(descriptor):
            await self.db.notifications.insert_one({
                "id": new_id(),
                "user_id": user_id,
                "type": descriptor.get("kind"),
                "titre": descriptor.get("titre", ""),
                "message": descriptor.get("message", ""),
                "lien": descriptor.get("lien", ""),
                "is_read": False,
                "created_at": now_iso(),
            })
            created += 1
        return created


async def dispatch_effects(db, effects: List[Dict[str, Any]],
                           emitter: Optional[NotificationEmitter] = None) -> Dict[str, int]:
    emitter = emitter or NotificationEmitter(db)
    stats = {"audits": 0, "notifications": 0, "failed": 0}

    for effect in effects:
        if effect.get("type") == "audit":
            await append_audit(db, effect)
            stats["audits"] += 1

    for effect in effects:
        if effect.get("type") != "notification":
            continue
        try:
            stats["notifications"] += await emitter.emit(effect)
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"[NOTIFICATION_FAILED] kind={effect.get('kind')} error={str(e)}")

    return stats
