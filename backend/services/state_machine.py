"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Portail Citoyen - Content State Machine                                     ║
║                                                                              ║
║  UN SEUL moteur pour les 5 types de contenu, paramétré par une table de      ║
║  transitions par type. Chaque demande passe, dans l'ordre:                   ║
║    1. table de transitions      -> InvalidTransition                         ║
║    2. règle de permission       -> Forbidden                                 ║
║    3. gardes (motif, dates...)  -> ValidationError                           ║
║    4. calcul des effets de bord (horodatage, visibilité, notification)       ║
║    5. écriture optimiste        -> Conflict                                  ║
║                                                                              ║
║  Les effets sont RETOURNÉS, jamais exécutés ici.                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from config import MIN_MOTIF_LENGTH, MIN_RAPPORT_CLOTURE_LENGTH, new_id, now_utc, parse_iso
from models.auth import ADMIN_ROLES
from models.contenu import PERMISSION_GROUPS, Affectation
from services.content_store import insert_content, load_content, save_content
from services.effects import audit_effect, field_effect, notification_effect
from services.errors import Conflict, Forbidden, InvalidTransition, ValidationError
from services.permissions import AuthorizationGate

logger = logging.getLogger("state_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

_PUBLICATION_TRANSITIONS = {
    "EN_ATTENTE_VALIDATION": ["VALIDEE", "REJETEE"],
    "VALIDEE": ["PUBLIEE", "REJETEE", "EN_ATTENTE_VALIDATION"],
    "PUBLIEE": ["DEPUBLIEE", "ARCHIVEE"],
    "DEPUBLIEE": ["PUBLIEE", "ARCHIVEE"],
    "REJETEE": ["EN_ATTENTE_VALIDATION"],  # re-soumission après correction
    "ARCHIVEE": [],  # TERMINAL
}

VALID_TRANSITIONS: Dict[str, Dict[str, List[str]]] = {
    "evenement": {
        "EN_ATTENTE_VALIDATION": ["VALIDEE", "ANNULEE"],
        "VALIDEE": ["PUBLIEE", "ANNULEE", "EN_ATTENTE_VALIDATION"],
        "PUBLIEE": ["EN_ACTION", "ANNULEE"],
        "EN_ACTION": ["CLOTUREE", "ANNULEE"],
        "CLOTUREE": [],  # TERMINAL - clôture uniquement via close_event
        "ANNULEE": ["EN_ATTENTE_VALIDATION"],
    },
    # Décision binaire. Après ACCEPTEE, la suite relève de l'affectation.
    "reclamation": {
        "EN_ATTENTE": ["ACCEPTEE", "REJETEE"],
        "ACCEPTEE": [],
        "REJETEE": [],  # TERMINAL
    },
    "activite": {
        "BROUILLON": ["EN_ATTENTE_VALIDATION"],
        "EN_ATTENTE_VALIDATION": ["PLANIFIEE", "BROUILLON"],
        "PLANIFIEE": ["TERMINEE", "RAPPORT_COMPLETE"],
        "TERMINEE": ["RAPPORT_COMPLETE"],
        "RAPPORT_COMPLETE": [],  # TERMINAL
    },
    "actualite": _PUBLICATION_TRANSITIONS,
    "campagne": _PUBLICATION_TRANSITIONS,
}

INITIAL_STATES = {
    "reclamation": "EN_ATTENTE",
    "evenement": "EN_ATTENTE_VALIDATION",
    "actualite": "EN_ATTENTE_VALIDATION",
    "campagne": "EN_ATTENTE_VALIDATION",
    "activite": "BROUILLON",
}

STATUT_LABELS = {
    "EN_ATTENTE": "En attente de décision",
    "ACCEPTEE": "Acceptée",
    "REJETEE": "Rejetée",
    "EN_ATTENTE_VALIDATION": "En attente de validation",
    "VALIDEE": "Validée",
    "PUBLIEE": "Publiée",
    "EN_ACTION": "En cours",
    "CLOTUREE": "Clôturée",
    "ANNULEE": "Annulée",
    "DEPUBLIEE": "Dépubliée",
    "ARCHIVEE": "Archivée",
    "BROUILLON": "Brouillon",
    "PLANIFIEE": "Planifiée",
    "TERMINEE": "Terminée",
    "RAPPORT_COMPLETE": "Rapport complété",
}

KIND_LABELS = {
    "reclamation": "réclamation",
    "evenement": "événement",
    "actualite": "actualité",
    "activite": "activité",
    "campagne": "campagne",
}


# ════════════════════════════════════════════════════════════════════════════
# PERMISSION RULES: target state -> (code if creator, code for anyone)
# ════════════════════════════════════════════════════════════════════════════

def _publication_rules(group: str, validate: str, publish: str, archive: str) -> Dict[str, Tuple]:
    return {
        "VALIDEE": (None, validate),
        "REJETEE": (None, validate),
        "PUBLIEE": (publish, validate),
        "DEPUBLIEE": (publish, validate),
        "ARCHIVEE": (archive, validate),
        "EN_ATTENTE_VALIDATION": (f"{group}.edit", validate),
    }


TRANSITION_RULES: Dict[str, Dict[str, Tuple[Optional[str], Optional[str]]]] = {
    "evenement": {
        "VALIDEE": (None, "evenements.validate"),
        "PUBLIEE": ("evenements.edit", "evenements.validate"),
        "ANNULEE": ("evenements.edit", "evenements.validate"),
        "EN_ACTION": ("evenements.edit", "evenements.edit.all"),
        "EN_ATTENTE_VALIDATION": ("evenements.edit", "evenements.edit.all"),
        "CLOTUREE": ("evenements.report", "evenements.edit.all"),
    },
    "reclamation": {
        "ACCEPTEE": (None, "reclamations.validate"),
        "REJETEE": (None, "reclamations.validate"),
    },
    "actualite": _publication_rules("actualites", "actualites.validate", "actualites.publish", "actualites.delete"),
    "campagne": _publication_rules("campagnes", "campagnes.validate", "campagnes.activate", "campagnes.delete"),
    "activite": {
        "EN_ATTENTE_VALIDATION": ("programmes.edit", "programmes.validate"),
        "PLANIFIEE": (None, "programmes.validate"),
        "BROUILLON": (None, "programmes.validate"),
        "TERMINEE": ("programmes.edit", "programmes.validate"),
        "RAPPORT_COMPLETE": ("programmes.report", "programmes.validate"),
    },
}

# Code "override" pour l'édition du contenu d'autrui
EDIT_OVERRIDES = {
    "evenement": "evenements.edit.all",
    "actualite": "actualites.validate",
    "campagne": "campagnes.validate",
    "activite": "programmes.validate",
    "reclamation": None,
}

REASON_REQUIRED = {
    ("reclamation", "REJETEE"),
    ("actualite", "REJETEE"),
    ("campagne", "REJETEE"),
}

# Transitions qui exigent des données (rapport) -> opération dédiée
DEDICATED_OPERATIONS = {
    ("evenement", "CLOTUREE"): "close_event",
    ("activite", "RAPPORT_COMPLETE"): "submit_activity_report",
}

# Plus aucune édition de contenu dans ces statuts
READ_ONLY_STATES = {
    "evenement": {"CLOTUREE", "ANNULEE"},
    "reclamation": {"ACCEPTEE", "REJETEE"},
    "actualite": {"ARCHIVEE"},
    "campagne": {"ARCHIVEE"},
    "activite": {"RAPPORT_COMPLETE"},
}

PROTECTED_FIELDS = {
    "id", "statut", "version", "created_by", "created_at", "updated_at",
    "is_valide", "is_publie", "is_visible_public", "is_valide_par_admin",
    "date_publication", "date_decision", "motif_rejet", "rapport_complete",
    "affectation_reclamation", "affectee_a_autorite_id", "affectee_par_admin_id",
    "date_affectation", "date_resolution", "solution_apportee",
}

_VISIBILITY_FIELDS = {"is_visible_public", "is_publie", "is_valide", "is_valide_par_admin"}

_LINKS = {
    "reclamation": "/mes-reclamations/{id}",
    "evenement": "/delegation/evenements",
    "actualite": "/actualites/{id}",
    "campagne": "/campagnes/{id}",
    "activite": "/coordinateur/calendrier",
}


# ════════════════════════════════════════════════════════════════════════════
# PURE CHECKS
# ════════════════════════════════════════════════════════════════════════════

def allowed_next_states(kind: str, state: str) -> List[str]:
    table = VALID_TRANSITIONS.get(kind)
    if table is None:
        raise InvalidTransition(f"Type de contenu inconnu: {kind}", {"kind": kind})
    return list(table.get(state, []))


def validate_transition(kind: str, from_state: str, to_state: str) -> bool:
    table = VALID_TRANSITIONS.get(kind)
    if table is None:
        raise InvalidTransition(f"Type de contenu inconnu: {kind}", {"kind": kind})

    if to_state not in table:
        raise InvalidTransition(
            f"Statut inconnu pour {KIND_LABELS[kind]}: {to_state}",
            {"statut": to_state, "statuts_valides": list(table.keys())},
        )

    valid_next = table.get(from_state, [])
    if to_state not in valid_next:
        raise InvalidTransition(
            f'Transition de "{STATUT_LABELS.get(from_state, from_state)}" vers '
            f'"{STATUT_LABELS.get(to_state, to_state)}" non autorisée',
            {"from": from_state, "to": to_state, "transitions_valides": valid_next},
        )
    return True


def is_creator(content: dict, actor: dict) -> bool:
    return bool(content.get("created_by")) and content.get("created_by") == actor.get("id")


def is_authorized(kind: str, to_state: str, content: dict, actor: dict, permissions: frozenset) -> bool:
    owner_code, override_code = TRANSITION_RULES.get(kind, {}).get(to_state, (None, None))
    if override_code and override_code in permissions:
        return True
    if owner_code and owner_code in permissions and is_creator(content, actor):
        return True
    return False


def _clean_reason(kind: str, to_state: str, reason: Optional[str]) -> Optional[str]:
    cleaned = reason.strip() if reason else None
    if (kind, to_state) in REASON_REQUIRED:
        if not cleaned:
            raise ValidationError("Le motif de rejet est obligatoire", {"field": "motif"}, code="MOTIF_REQUIRED")
        if len(cleaned) < MIN_MOTIF_LENGTH:
            raise ValidationError(
                f"Le motif de rejet doit contenir au moins {MIN_MOTIF_LENGTH} caractères",
                {"field": "motif", "min_length": MIN_MOTIF_LENGTH},
                code="MOTIF_REQUIRED",
            )
    return cleaned or None


def _check_date_gates(kind: str, to_state: str, content: dict, now: datetime):
    if kind == "evenement" and to_state == "EN_ACTION":
        date_debut = parse_iso(content.get("date_debut"))
        if date_debut is None or date_debut > now:
            raise ValidationError(
                "L'événement ne peut pas être mis en action avant sa date de début",
                {"date_debut": content.get("date_debut")},
                code="DATE_NOT_REACHED",
            )
    if kind == "activite" and to_state in ("TERMINEE", "RAPPORT_COMPLETE"):
        date_fin = parse_iso(content.get("date_fin"))
        if date_fin is None or date_fin > now:
            raise ValidationError(
                "Le rapport ne peut être rempli qu'après la fin de l'activité",
                {"date_fin": content.get("date_fin")},
                code="DATE_NOT_REACHED",
            )


def _state_updates(kind: str, to_state: str, actor: dict, reason: Optional[str], now_iso_value: str) -> Dict[str, Any]:
    updates: Dict[str, Any] = {"statut": to_state}

    if kind == "evenement":
        if to_state == "VALIDEE":
            updates["date_validation"] = now_iso_value
        elif to_state == "PUBLIEE":
            updates["date_publication"] = now_iso_value
            updates["is_visible_public"] = True
        elif to_state in ("ANNULEE", "EN_ATTENTE_VALIDATION"):
            updates["is_visible_public"] = False

    elif kind == "reclamation":
        updates["date_decision"] = now_iso_value
        updates["decide_par"] = actor.get("id")
        if to_state == "REJETEE":
            updates["motif_rejet"] = reason
            # Une réclamation rejetée n'est plus visible de l'autorité
            updates["affectation_reclamation"] = Affectation.NON_AFFECTEE.value
            updates["affectee_a_autorite_id"] = None
            updates["affectee_par_admin_id"] = None
            updates["secteur_affecte"] = None
            updates["service_interne_province"] = None
            updates["date_affectation"] = None

    elif kind in ("actualite", "campagne"):
        if to_state == "VALIDEE":
            updates["is_valide"] = True
        elif to_state == "PUBLIEE":
            updates["is_valide"] = True
            updates["is_publie"] = True
            updates["date_publication"] = now_iso_value
        elif to_state == "REJETEE":
            updates["is_valide"] = False
            updates["is_publie"] = False
            updates["motif_rejet"] = reason
        elif to_state in ("DEPUBLIEE", "ARCHIVEE"):
            updates["is_publie"] = False
        elif to_state == "EN_ATTENTE_VALIDATION":
            updates["is_valide"] = False
            updates["is_publie"] = False

    elif kind == "activite":
        if to_state == "EN_ATTENTE_VALIDATION":
            updates["date_soumission"] = now_iso_value
        elif to_state == "PLANIFIEE":
            updates["is_valide_par_admin"] = True
            updates["is_visible_public"] = True
        elif to_state == "BROUILLON":
            updates["is_valide_par_admin"] = False
            updates["is_visible_public"] = False
            if reason:
                updates["motif_rejet"] = reason

    return updates


def _field_effects(updates: Dict[str, Any]) -> List[Dict[str, Any]]:
    effects = []
    for field, value in updates.items():
        if field == "statut":
            continue
        if field.startswith("date_"):
            effects.append(field_effect(field, value, "timestamp"))
        elif field in _VISIBILITY_FIELDS:
            effects.append(field_effect(field, value, "visibility"))
        else:
            effects.append(field_effect(field, value))
    return effects


def _creator_notification(kind: str, content: dict, from_state: str, to_state: str,
                          actor: dict, reason: Optional[str]) -> Optional[Dict[str, Any]]:
    creator = content.get("created_by")
    if not creator or creator == actor.get("id"):
        return None

    noun = KIND_LABELS[kind]
    titre = content.get("titre", "")
    message = (
        f'Votre {noun} "{titre}" est passé(e) de "{STATUT_LABELS.get(from_state, from_state)}" '
        f'à "{STATUT_LABELS.get(to_state, to_state)}".'
    )
    if reason:
        message += f" Motif: {reason}"

    if kind == "reclamation":
        notif_kind = f"RECLAMATION_{to_state}"
    else:
        notif_kind = f"{kind.upper()}_STATUT"

    return notification_effect(
        kind=notif_kind,
        titre=f"{noun.capitalize()} : {STATUT_LABELS.get(to_state, to_state)}",
        message=message,
        lien=_LINKS[kind].format(id=content.get("id")),
        recipient_id=creator,
    )


def _audit_action(kind: str, to_state: str) -> str:
    if kind == "reclamation":
        return "ACCEPTATION" if to_state == "ACCEPTEE" else "REJET"
    return f"STATUT_{to_state}"


def plan_transition(
    kind: str,
    content: dict,
    requested_state: str,
    actor: dict,
    permissions: frozenset,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    dedicated: bool = False,
) -> Dict[str, Any]:
    """
    Décision pure (aucune I/O). Retourne {"updates": {...}, "effects": [...]}.
    Lève InvalidTransition / Forbidden / ValidationError.
    """
    now = now or now_utc()
    from_state = content.get("statut")

    validate_transition(kind, from_state, requested_state)

    if not is_authorized(kind, requested_state, content, actor, permissions):
        owner_code, override_code = TRANSITION_RULES.get(kind, {}).get(requested_state, (None, None))
        logger.warning(
            f"[PERMISSION_DENIED] user={actor.get('id')} {kind} {content.get('id')} "
            f"{from_state} -> {requested_state}"
        )
        raise Forbidden(
            f"Vous n'avez pas les droits pour passer ce(tte) {KIND_LABELS[kind]} "
            f'en "{STATUT_LABELS.get(requested_state, requested_state)}"',
            {"permission": override_code, "permission_createur": owner_code},
        )

    operation = DEDICATED_OPERATIONS.get((kind, requested_state))
    if operation and not dedicated:
        raise ValidationError(
            "Cette étape exige un rapport: utilisez l'opération dédiée",
            {"operation": operation},
            code="USE_CLOTURE_OPERATION" if kind == "evenement" else "USE_RAPPORT_OPERATION",
        )

    cleaned_reason = _clean_reason(kind, requested_state, reason)
    _check_date_gates(kind, requested_state, content, now)

    updates = _state_updates(kind, requested_state, actor, cleaned_reason, now.isoformat())

    effects = _field_effects(updates)
    notification = _creator_notification(kind, content, from_state, requested_state, actor, cleaned_reason)
    if notification:
        effects.append(notification)
    effects.append(audit_effect(
        kind, content.get("id"), _audit_action(kind, requested_state), actor.get("id"),
        {"ancien_statut": from_state, "nouveau_statut": requested_state, "motif": cleaned_reason},
    ))

    return {"updates": updates, "effects": effects}


# ════════════════════════════════════════════════════════════════════════════
# ENGINE (lecture + décision + une écriture)
# ════════════════════════════════════════════════════════════════════════════

class ContentStateMachine:

    def __init__(self, db, gate: Optional[AuthorizationGate] = None):
        self.db = db
        self.gate = gate or AuthorizationGate(db)

    async def create(self, kind: str, titre: str, data: Dict[str, Any], actor: dict,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
        """Crée un contenu dans le statut initial de son type."""
        if kind not in INITIAL_STATES:
            raise InvalidTransition(f"Type de contenu inconnu: {kind}", {"kind": kind})

        permissions = await self.gate.effective_permissions(actor, now=now)
        create_code = f"{PERMISSION_GROUPS[kind]}.create"
        if create_code not in permissions:
            raise Forbidden(f"Permission requise: {create_code}", {"permission": create_code})

        if not titre or not titre.strip():
            raise ValidationError("Le titre est obligatoire", {"field": "titre"})

        forbidden_fields = sorted(set(data) & PROTECTED_FIELDS)
        if forbidden_fields:
            raise ValidationError("Champs non modifiables", {"fields": forbidden_fields})

        _check_required_fields(kind, data)

        now = now or now_utc()
        doc = {
            **data,
            "id": new_id(),
            "titre": titre.strip(),
            "statut": INITIAL_STATES[kind],
            "created_by": actor.get("id"),
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
            "version": 0,
        }
        doc.update(_initial_flags(kind))

        await insert_content(self.db, kind, doc)
        logger.info(f"[STATE_MACHINE] {kind} {doc['id']} créé -> {doc['statut']}")

        effects = [audit_effect(kind, doc["id"], "CREATION", actor.get("id"), {"statut": doc["statut"]})]
        if kind == "reclamation":
            effects.append(notification_effect(
                kind="NOUVELLE_RECLAMATION",
                titre="Nouvelle réclamation",
                message=f'Une nouvelle réclamation "{doc["titre"]}" a été soumise.',
                lien=f"/admin/reclamations/{doc['id']}",
                recipient_roles=ADMIN_ROLES,
            ))
        return {"content": doc, "effects": effects}

    async def transition(
        self,
        kind: str,
        content_id: str,
        requested_state: str,
        actor: dict,
        reason: Optional[str] = None,
        expected_state: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        content = await load_content(self.db, kind, content_id)
        if expected_state and content.get("statut") != expected_state:
            raise Conflict(
                "Le statut a changé depuis votre lecture. Rechargez le contenu.",
                {"statut_attendu": expected_state, "statut_actuel": content.get("statut")},
            )

        permissions = await self.gate.effective_permissions(actor, now=now)
        plan = plan_transition(kind, content, requested_state, actor, permissions, reason=reason, now=now)
        return await self._commit(kind, content, plan, actor)

    async def close_event(self, event_id: str, actor: dict, rapport_cloture: str,
                          bilan_participation: Optional[int] = None,
                          now: Optional[datetime] = None) -> Dict[str, Any]:
        """EN_ACTION -> CLOTUREE avec rapport de clôture obligatoire."""
        content = await load_content(self.db, "evenement", event_id)
        permissions = await self.gate.effective_permissions(actor, now=now)
        now = now or now_utc()
        plan = plan_transition("evenement", content, "CLOTUREE", actor, permissions, now=now, dedicated=True)

        rapport = (rapport_cloture or "").strip()
        if len(rapport) < MIN_RAPPORT_CLOTURE_LENGTH:
            raise ValidationError(
                f"Le rapport de clôture est obligatoire (minimum {MIN_RAPPORT_CLOTURE_LENGTH} caractères)",
                {"field": "rapport_cloture", "min_length": MIN_RAPPORT_CLOTURE_LENGTH},
                code="RAPPORT_REQUIRED",
            )
        if bilan_participation is not None and bilan_participation < 0:
            raise ValidationError("Le nombre de participants doit être positif", {"field": "bilan_participation"})

        extra = {
            "bilan_description": rapport,
            "bilan_nb_participants": (
                bilan_participation if bilan_participation is not None else content.get("nombre_inscrits", 0)
            ),
            "bilan_date_publication": now.isoformat(),
            "date_cloture": now.isoformat(),
        }
        _merge_into_plan(plan, extra)
        return await self._commit("evenement", content, plan, actor)

    async def submit_activity_report(self, activity_id: str, actor: dict, report: Dict[str, Any],
                                     now: Optional[datetime] = None) -> Dict[str, Any]:
        """PLANIFIEE/TERMINEE -> RAPPORT_COMPLETE, seulement après la fin de l'activité."""
        content = await load_content(self.db, "activite", activity_id)
        permissions = await self.gate.effective_permissions(actor, now=now)
        now = now or now_utc()
        plan = plan_transition("activite", content, "RAPPORT_COMPLETE", actor, permissions, now=now, dedicated=True)

        presence = report.get("presence_effective")
        if presence is not None:
            presence = _as_int(presence, "presence_effective")
        if presence is None or presence < 0:
            raise ValidationError("Le nombre de participants est requis", {"field": "presence_effective"})

        note = report.get("note_qualite")
        if note is not None:
            note = _as_int(note, "note_qualite")
        if note is not None and not 1 <= note <= 5:
            raise ValidationError("La note qualité doit être comprise entre 1 et 5", {"field": "note_qualite"})

        attendus = content.get("participants_attendus")
        extra = {
            "presence_effective": presence,
            "taux_presence": round(presence / attendus * 100) if attendus else None,
            "commentaire_deroulement": report.get("commentaire_deroulement"),
            "difficultes": report.get("difficultes"),
            "points_positifs": report.get("points_positifs"),
            "note_qualite": note,
            "recommandations": report.get("recommandations"),
            "rapport_complete": True,
            "date_rapport": now.isoformat(),
        }
        _merge_into_plan(plan, extra)
        return await self._commit("activite", content, plan, actor)

    async def edit(self, kind: str, content_id: str, actor: dict, changes: Dict[str, Any],
                   now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Modification du contenu (hors statut).
        Une actualité/campagne VALIDEE modifiée par son auteur non-admin
        repasse EN_ATTENTE_VALIDATION.
        """
        content = await load_content(self.db, kind, content_id)
        permissions = await self.gate.effective_permissions(actor, now=now)

        edit_code = f"{PERMISSION_GROUPS[kind]}.edit"
        override = EDIT_OVERRIDES.get(kind)
        allowed = (override and override in permissions) or (edit_code in permissions and is_creator(content, actor))
        if not allowed:
            raise Forbidden(
                f"Vous n'avez pas les droits pour modifier ce(tte) {KIND_LABELS[kind]}",
                {"permission": override, "permission_createur": edit_code},
            )

        statut = content.get("statut")
        if statut in READ_ONLY_STATES.get(kind, set()):
            raise InvalidTransition(
                f'Un(e) {KIND_LABELS[kind]} "{STATUT_LABELS.get(statut, statut)}" ne peut plus être modifié(e)',
                {"statut": statut},
            )

        if not changes:
            raise ValidationError("Aucune modification fournie")
        forbidden_fields = sorted(set(changes) & PROTECTED_FIELDS)
        if forbidden_fields:
            raise ValidationError("Champs non modifiables", {"fields": forbidden_fields})
        if "titre" in changes and not str(changes["titre"] or "").strip():
            raise ValidationError("Le titre est obligatoire", {"field": "titre"})

        updates = dict(changes)
        effects: List[Dict[str, Any]] = []
        reverted = (
            kind in ("actualite", "campagne")
            and statut == "VALIDEE"
            and is_creator(content, actor)
            and actor.get("role") not in ADMIN_ROLES
        )
        if reverted:
            updates.update({"statut": "EN_ATTENTE_VALIDATION", "is_valide": False, "is_publie": False})
            effects.append(field_effect("is_valide", False, "visibility"))
            effects.append(field_effect("is_publie", False, "visibility"))
            effects.append(notification_effect(
                kind=f"{kind.upper()}_A_REVALIDER",
                titre=f"{KIND_LABELS[kind].capitalize()} à revalider",
                message=f'"{content.get("titre", "")}" a été modifié(e) par son auteur et doit être revalidé(e).',
                lien=_LINKS[kind].format(id=content_id),
                recipient_roles=ADMIN_ROLES,
            ))

        effects.append(audit_effect(
            kind, content_id, "MODIFICATION", actor.get("id"),
            {"champs": sorted(changes), "revalidation": reverted},
        ))

        saved = await save_content(self.db, kind, content, updates)
        logger.info(
            f"[STATE_MACHINE] {kind} {content_id} modifié par {actor.get('id')}"
            + (" -> EN_ATTENTE_VALIDATION (revalidation)" if reverted else "")
        )
        return {
            "kind": kind,
            "id": content_id,
            "previous_state": statut,
            "state": saved.get("statut"),
            "reverted": reverted,
            "content": saved,
            "effects": effects,
        }

    async def _commit(self, kind: str, content: dict, plan: Dict[str, Any], actor: dict) -> Dict[str, Any]:
        saved = await save_content(self.db, kind, content, plan["updates"])
        logger.info(
            f"[STATE_MACHINE] {kind} {content['id']} {content.get('statut')} -> {saved['statut']} "
            f"| by={actor.get('id')}"
        )
        return {
            "kind": kind,
            "id": content["id"],
            "previous_state": content.get("statut"),
            "state": saved["statut"],
            "content": saved,
            "effects": plan["effects"],
        }


# ════════════════════════════════════════════════════════════════════════════
# HELPERS
# ════════════════════════════════════════════════════════════════════════════

def _merge_into_plan(plan: Dict[str, Any], extra: Dict[str, Any]):
    plan["updates"].update(extra)
    # les effets de champ passent avant la notification et l'audit
    plan["effects"] = _field_effects(extra) + plan["effects"]


def _as_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Valeur numérique attendue: {field}", {"field": field})


def _check_required_fields(kind: str, data: Dict[str, Any]):
    required = {
        "reclamation": ["commune_id"],
        "evenement": ["date_debut"],
        "activite": ["date_fin"],
    }.get(kind, [])
    missing = [f for f in required if not data.get(f)]
    if missing:
        raise ValidationError("Champs obligatoires manquants", {"fields": missing})

    for field in ("date_debut", "date_fin"):
        if data.get(field):
            try:
                parse_iso(data[field])
            except ValueError:
                raise ValidationError(f"Date invalide: {field}", {"field": field})


def _initial_flags(kind: str) -> Dict[str, Any]:
    if kind == "reclamation":
        return {
            "affectation_reclamation": Affectation.NON_AFFECTEE.value,
            "affectee_a_autorite_id": None,
            "date_affectation": None,
            "date_resolution": None,
        }
    if kind in ("actualite", "campagne"):
        return {"is_valide": False, "is_publie": False}
    if kind == "evenement":
        return {"is_visible_public": False}
    if kind == "activite":
        return {"is_valide_par_admin": False, "is_visible_public": False, "rapport_complete": False}
    return {}


async def create_content(db, kind: str, data: Dict[str, Any], actor: dict,
                         now: Optional[datetime] = None) -> Dict[str, Any]:
    """Raccourci: data contient le titre."""
    payload = dict(data)
    titre = payload.pop("titre", "")
    return await ContentStateMachine(db).create(kind, titre, payload, actor, now=now)
