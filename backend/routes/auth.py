"""
Portail Citoyen - Routes Auth
Session courante, profil + permissions effectives, rôle et activation des comptes.
La connexion (mot de passe, 2FA) est gérée en amont: on lit seulement la session.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import get_db, now_iso
from models.auth import RoleUpdate, StatusUpdate, UserResponse
from services.permissions import AuthorizationGate
from services.settings import SystemSettings, check_maintenance, get_settings_snapshot
from services.user_admin import change_role, set_active
from services.workflow import commit_effects

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Non authentifié")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Session expirée")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Utilisateur non trouvé")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    return user


async def get_acting_user(
    user: dict = Depends(get_current_user),
    snapshot: SystemSettings = Depends(get_settings_snapshot),
):
    """Utilisateur autorisé à modifier des données (refusé en maintenance sauf admins)."""
    check_maintenance(snapshot, user)
    return user


# ==================== SESSION ====================

@router.post("/logout")
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Déconnexion"""
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user), db=Depends(get_db)):
    """Utilisateur courant + permissions effectives"""
    permissions = await AuthorizationGate(db).effective_permissions(user)
    return UserResponse(**{**user, "permissions": sorted(permissions)})


# ==================== USERS ====================

@router.put("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    data: RoleUpdate,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
):
    """Changer le rôle d'un utilisateur"""
    result = await change_role(
        db, user_id, data.role, user,
        commune_responsable_id=data.commune_responsable_id,
        secteur_responsable=data.secteur_responsable,
        etablissements_geres=data.etablissements_geres,
    )
    result = await commit_effects(db, result)
    return {"success": True, "user": result["user"]}


@router.put("/users/{user_id}/status")
async def update_user_status(
    user_id: str,
    data: StatusUpdate,
    user: dict = Depends(get_acting_user),
    db=Depends(get_db),
):
    """Activer / désactiver un compte"""
    result = await set_active(db, user_id, data.is_active, user)
    result = await commit_effects(db, result)
    return {
        "success": True,
        "user": result["user"],
        "sessions_closed": result["sessions_closed"],
    }
