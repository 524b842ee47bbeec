"""
Portail Citoyen - Routes Réclamations (affectation / résolution)
La décision (ACCEPTEE / REJETEE) passe par /contenus/reclamation/{id}/statut.
"""

from fastapi import APIRouter, Depends

from config import get_db
from models.contenu import AffectationRequest, DesaffectationRequest, ResolutionRequest
from routes.auth import get_acting_user, get_current_user
from services.assignment import AssignmentDispatcher
from services.content_store import load_content
from services.errors import Forbidden
from services.permissions import AuthorizationGate
from services.settings import SystemSettings, get_settings_snapshot
from services.workflow import commit_effects

router = APIRouter(prefix="/reclamations", tags=["Reclamations"])


def _response(result: dict, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "affectation": result["affectation"],
        "assignee_id": result["assignee_id"],
        "changed": result["changed"],
        "reclamation": result["content"],
    }


@router.put("/{reclamation_id}/affecter")
async def assign(
    reclamation_id: str,
    data: AffectationRequest,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await AssignmentDispatcher(db).assign(
        reclamation_id, data.autorite_id, user,
        secteur_affecte=data.secteur_affecte,
        service_interne_province=data.service_interne_province,
        commentaire=data.commentaire,
    )
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation affectée avec succès")


@router.put("/{reclamation_id}/reaffecter")
async def reassign(
    reclamation_id: str,
    data: AffectationRequest,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await AssignmentDispatcher(db).reassign(
        reclamation_id, data.autorite_id, user,
        secteur_affecte=data.secteur_affecte,
        service_interne_province=data.service_interne_province,
        commentaire=data.commentaire,
    )
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation réaffectée")


@router.put("/{reclamation_id}/desaffecter")
async def unassign(
    reclamation_id: str,
    data: DesaffectationRequest,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await AssignmentDispatcher(db).unassign(reclamation_id, user, commentaire=data.commentaire)
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation désaffectée")


@router.post("/{reclamation_id}/prendre-en-charge")
async def claim(
    reclamation_id: str,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await AssignmentDispatcher(db).claim(reclamation_id, user)
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation prise en charge")


@router.post("/{reclamation_id}/router")
async def route_to_jurisdiction(
    reclamation_id: str,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    """Affectation à l'autorité locale de la commune"""
    result = await AssignmentDispatcher(db).route_to_jurisdiction(reclamation_id, user)
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation affectée à l'autorité de la commune")


@router.post("/{reclamation_id}/resoudre")
async def resolve(
    reclamation_id: str,
    data: ResolutionRequest,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    result = await AssignmentDispatcher(db).resolve(reclamation_id, user, data.solution)
    await commit_effects(db, result, snapshot)
    return _response(result, "Réclamation résolue avec succès")


@router.get("/{reclamation_id}/historique")
async def history(
    reclamation_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Historique: auteur, autorité affectée ou lecture globale"""
    complaint = await load_content(db, "reclamation", reclamation_id)
    involved = user["id"] in (complaint.get("created_by"), complaint.get("affectee_a_autorite_id"))
    if not involved and not await AuthorizationGate(db).can(user, "reclamations.read.all"):
        raise Forbidden("Accès à l'historique non autorisé")

    entries = await AssignmentDispatcher(db).history(reclamation_id)
    return {"reclamation_id": reclamation_id, "historique": entries, "count": len(entries)}
