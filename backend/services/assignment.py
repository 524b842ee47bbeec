"""
Portail Citoyen - Affectation des réclamations

Invariant: au plus UNE autorité locale affectée par réclamation.
  affectee_a_autorite_id != None  <=>  affectation_reclamation == AFFECTEE

Toute opération réussie produit exactement une entrée d'historique (audit).
Les notifications sont retournées comme effets, jamais envoyées ici.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import MIN_MOTIF_LENGTH, now_utc
from models.auth import ADMIN_ROLES, Role
from models.contenu import Affectation
from services.content_store import load_content, save_content
from services.effects import audit_effect, notification_effect
from services.errors import (
    Forbidden, InvalidAssignee, InvalidTransition, NoJurisdictionBound, ValidationError,
)
from services.event_logger import get_entity_history
from services.permissions import AuthorizationGate

logger = logging.getLogger("assignment")

KIND = "reclamation"


def is_assigned(complaint: dict) -> bool:
    return (
        complaint.get("affectation_reclamation") == Affectation.AFFECTEE.value
        and bool(complaint.get("affectee_a_autorite_id"))
    )


def _check_assignable(complaint: dict):
    if complaint.get("statut") == "REJETEE":
        raise InvalidTransition(
            "Une réclamation rejetée ne peut pas être affectée",
            {"statut": complaint.get("statut")},
        )
    if complaint.get("date_resolution"):
        raise InvalidTransition(
            "Cette réclamation est déjà résolue",
            {"date_resolution": complaint.get("date_resolution")},
        )


def _assignment_updates(assignee: dict, actor: dict, now: datetime,
                        secteur_affecte: Optional[str] = None,
                        service_interne_province: Optional[str] = None) -> Dict[str, Any]:
    return {
        "affectation_reclamation": Affectation.AFFECTEE.value,
        "affectee_a_autorite_id": assignee["id"],
        "affectee_par_admin_id": actor.get("id"),
        "secteur_affecte": secteur_affecte,
        "service_interne_province": service_interne_province,
        "date_affectation": now.isoformat(),
    }


_CLEARED = {
    "affectation_reclamation": Affectation.NON_AFFECTEE.value,
    "affectee_a_autorite_id": None,
    "affectee_par_admin_id": None,
    "secteur_affecte": None,
    "service_interne_province": None,
    "date_affectation": None,
}


def _assignee_notification(complaint: dict, assignee: dict, actor: dict) -> List[Dict[str, Any]]:
    if assignee["id"] == actor.get("id"):
        return []
    return [notification_effect(
        kind="RECLAMATION_AFFECTEE",
        titre="Nouvelle réclamation affectée",
        message=f'La réclamation "{complaint.get("titre", "")}" vous a été affectée.',
        lien=f"/autorite/reclamations/{complaint['id']}",
        recipient_id=assignee["id"],
    )]


def _result(complaint: dict, changed: bool, effects: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "id": complaint["id"],
        "affectation": complaint.get("affectation_reclamation"),
        "assignee_id": complaint.get("affectee_a_autorite_id"),
        "changed": changed,
        "content": complaint,
        "effects": effects,
    }


class AssignmentDispatcher:

    def __init__(self, db, gate: Optional[AuthorizationGate] = None):
        self.db = db
        self.gate = gate or AuthorizationGate(db)

    async def _require(self, actor: dict, code: str, now: Optional[datetime] = None):
        if not await self.gate.can(actor, code, now=now):
            logger.warning(f"[PERMISSION_DENIED] user={actor.get('id')} key={code}")
            raise Forbidden(f"Permission requise: {code}", {"permission": code})

    async def _load_assignee(self, autorite_id: str) -> dict:
        user = await self.db.users.find_one({"id": autorite_id}, {"_id": 0, "password": 0})
        if not user:
            raise InvalidAssignee("Agent non trouvé", {"autorite_id": autorite_id})
        if user.get("role") != Role.AUTORITE_LOCALE.value:
            raise InvalidAssignee(
                "Seule une autorité locale peut recevoir une réclamation",
                {"autorite_id": autorite_id, "role": user.get("role")},
            )
        if not user.get("is_active", True):
            raise InvalidAssignee("Agent inactif", {"autorite_id": autorite_id})
        return user

    async def assign(self, complaint_id: str, autorite_id: str, actor: dict,
                     secteur_affecte: Optional[str] = None,
                     service_interne_province: Optional[str] = None,
                     commentaire: Optional[str] = None,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
        await self._require(actor, "reclamations.assign", now)
        complaint = await load_content(self.db, KIND, complaint_id)
        assignee = await self._load_assignee(autorite_id)
        return await self._assign(complaint, assignee, actor, secteur_affecte,
                                  service_interne_province, commentaire, now)

    async def _assign(self, complaint: dict, assignee: dict, actor: dict,
                      secteur_affecte: Optional[str], service_interne_province: Optional[str],
                      commentaire: Optional[str], now: Optional[datetime],
                      action: str = "AFFECTATION") -> Dict[str, Any]:
        _check_assignable(complaint)

        if is_assigned(complaint):
            if complaint.get("affectee_a_autorite_id") == assignee["id"]:
                return _result(complaint, False, [])
            raise InvalidTransition(
                "Réclamation déjà affectée à une autre autorité: utilisez la réaffectation",
                {"assignee_id": complaint.get("affectee_a_autorite_id")},
            )

        now = now or now_utc()
        updates = _assignment_updates(assignee, actor, now, secteur_affecte, service_interne_province)
        effects = _assignee_notification(complaint, assignee, actor)
        effects.append(audit_effect(KIND, complaint["id"], action, actor.get("id"), {
            "message": f"Affectée à {assignee.get('prenom', '')} {assignee.get('nom', '')}".strip(),
            "agent_id": assignee["id"],
            "secteur_affecte": secteur_affecte,
            "commentaire": commentaire,
        }))

        saved = await save_content(self.db, KIND, complaint, updates)
        logger.info(f"[AFFECTATION] reclamation {complaint['id']} -> {assignee['id']} | by={actor.get('id')}")
        return _result(saved, True, effects)

    async def unassign(self, complaint_id: str, actor: dict, commentaire: Optional[str] = None,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
        await self._require(actor, "reclamations.assign", now)
        complaint = await load_content(self.db, KIND, complaint_id)

        if not is_assigned(complaint):
            raise InvalidTransition("Cette réclamation n'est pas affectée")
        if complaint.get("date_resolution"):
            raise InvalidTransition("Une réclamation résolue ne peut pas être désaffectée")

        effects = [audit_effect(KIND, complaint["id"], "DESAFFECTATION", actor.get("id"), {
            "message": "Réclamation désaffectée",
            "ancien_agent_id": complaint.get("affectee_a_autorite_id"),
            "commentaire": commentaire,
        })]
        saved = await save_content(self.db, KIND, complaint, dict(_CLEARED))
        logger.info(f"[AFFECTATION] reclamation {complaint['id']} désaffectée | by={actor.get('id')}")
        return _result(saved, True, effects)

    async def reassign(self, complaint_id: str, autorite_id: str, actor: dict,
                       secteur_affecte: Optional[str] = None,
                       service_interne_province: Optional[str] = None,
                       commentaire: Optional[str] = None,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
        """Désaffectation + affectation en une seule écriture et une seule entrée d'historique."""
        await self._require(actor, "reclamations.assign", now)
        complaint = await load_content(self.db, KIND, complaint_id)
        _check_assignable(complaint)

        if not is_assigned(complaint):
            raise InvalidTransition("Cette réclamation n'est pas affectée: utilisez l'affectation")

        assignee = await self._load_assignee(autorite_id)
        previous = complaint.get("affectee_a_autorite_id")
        if previous == assignee["id"]:
            return _result(complaint, False, [])

        now = now or now_utc()
        updates = _assignment_updates(assignee, actor, now, secteur_affecte, service_interne_province)
        effects = _assignee_notification(complaint, assignee, actor)
        effects.append(audit_effect(KIND, complaint["id"], "REAFFECTATION", actor.get("id"), {
            "ancien_agent_id": previous,
            "agent_id": assignee["id"],
            "secteur_affecte": secteur_affecte,
            "commentaire": commentaire,
        }))

        saved = await save_content(self.db, KIND, complaint, updates)
        logger.info(
            f"[AFFECTATION] reclamation {complaint['id']} {previous} -> {assignee['id']} | by={actor.get('id')}"
        )
        return _result(saved, True, effects)

    async def claim(self, complaint_id: str, actor: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Prise en charge par l'autorité locale de la commune de la réclamation."""
        if actor.get("role") != Role.AUTORITE_LOCALE.value or not actor.get("is_active", True):
            raise InvalidAssignee("Seule une autorité locale active peut prendre en charge une réclamation")

        commune_id = actor.get("commune_responsable_id")
        if not commune_id:
            raise NoJurisdictionBound(
                "Votre compte n'est rattaché à aucune commune",
                {"actor_id": actor.get("id")},
            )

        complaint = await load_content(self.db, KIND, complaint_id)
        if complaint.get("commune_id") != commune_id:
            logger.warning(
                f"[PERMISSION_DENIED] user={actor.get('id')} claim reclamation {complaint_id} "
                f"hors commune {commune_id}"
            )
            raise Forbidden("Cette réclamation ne relève pas de votre commune")

        return await self._assign(complaint, actor, actor, None, None, None, now, action="PRISE_EN_CHARGE")

    async def route_to_jurisdiction(self, complaint_id: str, actor: dict,
                                    now: Optional[datetime] = None) -> Dict[str, Any]:
        """Affecte la réclamation à l'autorité locale active de sa commune."""
        await self._require(actor, "reclamations.assign", now)
        complaint = await load_content(self.db, KIND, complaint_id)

        commune_id = complaint.get("commune_id")
        authority = None
        if commune_id:
            authority = await self.db.users.find_one(
                {"role": Role.AUTORITE_LOCALE.value, "commune_responsable_id": commune_id, "is_active": True},
                {"_id": 0, "password": 0},
            )
        if not authority:
            raise NoJurisdictionBound(
                "Aucune autorité locale n'est rattachée à la commune de cette réclamation",
                {"commune_id": commune_id},
            )

        return await self._assign(complaint, authority, actor, None, None, None, now)

    async def resolve(self, complaint_id: str, actor: dict, solution: str,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
        await self._require(actor, "reclamations.resolve", now)
        complaint = await load_content(self.db, KIND, complaint_id)

        if complaint.get("statut") != "ACCEPTEE" or not is_assigned(complaint):
            raise InvalidTransition(
                "Seule une réclamation acceptée et affectée peut être résolue",
                {"statut": complaint.get("statut"), "affectation": complaint.get("affectation_reclamation")},
            )
        if complaint.get("date_resolution"):
            raise InvalidTransition(
                "Cette réclamation est déjà résolue",
                {"date_resolution": complaint.get("date_resolution")},
            )
        if complaint.get("affectee_a_autorite_id") != actor.get("id"):
            raise Forbidden("Cette réclamation ne vous est pas affectée")

        cleaned = (solution or "").strip()
        if len(cleaned) < MIN_MOTIF_LENGTH:
            raise ValidationError(
                f"La solution doit contenir au moins {MIN_MOTIF_LENGTH} caractères",
                {"field": "solution", "min_length": MIN_MOTIF_LENGTH},
            )

        now = now or now_utc()
        updates = {
            "date_resolution": now.isoformat(),
            "solution_apportee": cleaned,
            "resolue_par": actor.get("id"),
        }

        titre = complaint.get("titre", "")
        effects: List[Dict[str, Any]] = [
            {"type": "timestamp", "field": "date_resolution", "value": updates["date_resolution"]},
        ]
        if complaint.get("created_by") and complaint.get("created_by") != actor.get("id"):
            effects.append(notification_effect(
                kind="RECLAMATION_RESOLUE",
                titre="Réclamation résolue",
                message=f'Votre réclamation "{titre}" a été résolue.',
                lien=f"/mes-reclamations/{complaint['id']}",
                recipient_id=complaint["created_by"],
            ))
        effects.append(notification_effect(
            kind="RECLAMATION_RESOLUE",
            titre="Réclamation résolue",
            message=f'La réclamation "{titre}" a été résolue par l\'autorité locale.',
            lien=f"/admin/reclamations/{complaint['id']}",
            recipient_roles=ADMIN_ROLES,
        ))
        effects.append(audit_effect(KIND, complaint["id"], "RESOLUTION", actor.get("id"), {"solution": cleaned}))

        saved = await save_content(self.db, KIND, complaint, updates)
        logger.info(f"[AFFECTATION] reclamation {complaint['id']} résolue | by={actor.get('id')}")
        return _result(saved, True, effects)

    async def history(self, complaint_id: str) -> List[Dict[str, Any]]:
        """Historique complet de la réclamation, du plus ancien au plus récent."""
        await load_content(self.db, KIND, complaint_id)
        return await get_entity_history(self.db, KIND, complaint_id)
