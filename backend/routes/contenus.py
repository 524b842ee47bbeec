"""
Portail Citoyen - Routes Contenus modérés
Création, changement de statut, modification, clôture d'événement, rapport d'activité.

Toutes les décisions passent par services.state_machine;
les routes ne font que traduire HTTP <-> service.
"""

from fastapi import APIRouter, Depends

from config import get_db
from models.contenu import ClotureRequest, ContentCreate, ContentEdit, ContentKind, RapportActivite, StatutUpdate
from routes.auth import get_acting_user, get_current_user
from services.content_store import load_content
from services.settings import SystemSettings, get_settings_snapshot
from services.state_machine import ContentStateMachine, allowed_next_states
from services.workflow import apply_transition, commit_effects

router = APIRouter(prefix="/contenus", tags=["Contenus"])


def _response(result: dict) -> dict:
    payload = {
        "success": True,
        "id": result["id"],
        "statut": result["state"],
        "ancien_statut": result["previous_state"],
        "content": result["content"],
    }
    if result.get("routing_error"):
        payload["routing_error"] = result["routing_error"]
    return payload


@router.post("/{kind}")
async def create(
    kind: ContentKind,
    data: ContentCreate,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await ContentStateMachine(db).create(kind.value, data.titre, data.data, user)
    await commit_effects(db, result, snapshot)
    return {"success": True, "id": result["content"]["id"], "content": result["content"]}


@router.get("/{kind}/{content_id}")
async def get_content(
    kind: ContentKind,
    content_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    content = await load_content(db, kind.value, content_id)
    return {
        "content": content,
        "transitions_possibles": allowed_next_states(kind.value, content["statut"]),
    }


@router.put("/{kind}/{content_id}/statut")
async def change_statut(
    kind: ContentKind,
    content_id: str,
    data: StatutUpdate,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await apply_transition(
        db, kind.value, content_id, data.statut, user,
        motif=data.motif, statut_attendu=data.statut_attendu, snapshot=snapshot,
    )
    return _response(result)


@router.put("/{kind}/{content_id}")
async def edit_content(
    kind: ContentKind,
    content_id: str,
    data: ContentEdit,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await ContentStateMachine(db).edit(kind.value, content_id, user, data.changes)
    await commit_effects(db, result, snapshot)
    payload = _response(result)
    payload["revalidation"] = result["reverted"]
    return payload


@router.post("/evenement/{event_id}/cloture")
async def close_event(
    event_id: str,
    data: ClotureRequest,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    """Clôture avec rapport (EN_ACTION -> CLOTUREE)"""
    result = await ContentStateMachine(db).close_event(
        event_id, user, data.rapport_cloture, bilan_participation=data.bilan_participation
    )
    await commit_effects(db, result, snapshot)
    return _response(result)


@router.post("/activite/{activity_id}/rapport")
async def submit_report(
    activity_id: str,
    data: RapportActivite,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    """Rapport d'activité, une fois l'activité terminée"""
    result = await ContentStateMachine(db).submit_activity_report(activity_id, user, data.model_dump())
    await commit_effects(db, result, snapshot)
    return _response(result)
