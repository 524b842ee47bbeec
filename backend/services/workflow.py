"""
Portail Citoyen - Orchestration des actions de modération

Une action = décision (state machine / dispatcher) + écriture,
puis exécution des effets retournés (audit, notifications).
Utilisé par les routes, jamais par les services de décision.
"""

import logging
from typing import Any, Dict, List, Optional

from services.assignment import AssignmentDispatcher, is_assigned
from services.errors import PortailError
from services.notifications import dispatch_effects
from services.settings import SystemSettings
from services.state_machine import ContentStateMachine

logger = logging.getLogger("workflow")


def filter_effects(effects: List[Dict[str, Any]], snapshot: Optional[SystemSettings]) -> List[Dict[str, Any]]:
    """Les alertes broadcast admin peuvent être coupées dans les paramètres"""
    if snapshot is None or snapshot.notifications.admin_alerts:
        return list(effects)
    return [
        e for e in effects
        if not (e.get("type") == "notification" and e.get("recipient_roles"))
    ]


async def commit_effects(db, result: Dict[str, Any], snapshot: Optional[SystemSettings] = None) -> Dict[str, Any]:
    effects = filter_effects(result.get("effects", []), snapshot)
    result["dispatch"] = await dispatch_effects(db, effects)
    result["effects"] = effects
    return result


async def apply_transition(
    db,
    kind: str,
    content_id: str,
    statut: str,
    actor: dict,
    motif: Optional[str] = None,
    statut_attendu: Optional[str] = None,
    snapshot: Optional[SystemSettings] = None,
) -> Dict[str, Any]:
    machine = ContentStateMachine(db)
    result = await machine.transition(
        kind, content_id, statut, actor, reason=motif, expected_state=statut_attendu
    )

    auto_assign = snapshot is not None and snapshot.reclamations.auto_assign_enabled
    if (kind == "reclamation" and result["state"] == "ACCEPTEE" and auto_assign
            and not is_assigned(result["content"])):
        # la décision est déjà écrite: un échec du routage ne doit pas la masquer
        try:
            routed = await AssignmentDispatcher(db, machine.gate).route_to_jurisdiction(content_id, actor)
            result["content"] = routed["content"]
            result["effects"] = result["effects"] + routed["effects"]
        except PortailError as e:
            # la réclamation reste acceptée, affectation manuelle
            logger.warning(f"[AFFECTATION] auto-affectation impossible reclamation={content_id}: {e.message}")
            result["routing_error"] = e.to_dict()

    return await commit_effects(db, result, snapshot)
