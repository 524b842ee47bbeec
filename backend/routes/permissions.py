"""
Portail Citoyen - Routes Permissions (SUPER_ADMIN)

Catalogue groupé, attributions par utilisateur, désactivation / suppression de codes.
"""

from fastapi import APIRouter, Depends

from config import get_db
from models.permission import GrantRequest, RevokeRequest
from services.grants import grant_permissions, list_grants, revoke_permissions, sync_permissions
from services.permission_registry import PermissionRegistry, deactivate_permission, delete_permission
from services.permissions import require_super_admin
from services.workflow import commit_effects

router = APIRouter(prefix="/permissions", tags=["Permissions"])


@router.get("")
async def list_permissions(user: dict = Depends(require_super_admin()), db=Depends(get_db)):
    """Catalogue des permissions actives, groupées"""
    registry = await PermissionRegistry.load(db)
    grouped = registry.list_by_group()
    return {
        "groupes": grouped,
        "count": sum(len(perms) for perms in grouped.values()),
    }


@router.get("/users/{user_id}")
async def get_user_grants(user_id: str, user: dict = Depends(require_super_admin()), db=Depends(get_db)):
    grants = await list_grants(db, user_id, user)
    return {"user_id": user_id, "grants": grants, "count": len(grants)}


@router.post("/users/{user_id}/grant")
async def grant_user_permissions(
    user_id: str,
    data: GrantRequest,
    user: dict = Depends(require_super_admin()),
    db=Depends(get_db),
):
    result = await grant_permissions(db, user_id, data.permissions, user, expires_at=data.expires_at)
    await commit_effects(db, result)
    return {"success": True, "granted": result["granted"], "expires_at": result["expires_at"]}


@router.post("/users/{user_id}/revoke")
async def revoke_user_permissions(
    user_id: str,
    data: RevokeRequest,
    user: dict = Depends(require_super_admin()),
    db=Depends(get_db),
):
    result = await revoke_permissions(db, user_id, data.permissions, user)
    await commit_effects(db, result)
    return {"success": True, "revoked": result["revoked"], "count": result["count"]}


@router.put("/users/{user_id}")
async def sync_user_permissions(
    user_id: str,
    data: GrantRequest,
    user: dict = Depends(require_super_admin()),
    db=Depends(get_db),
):
    """Remplace l'ensemble des attributions actives"""
    result = await sync_permissions(db, user_id, data.permissions, user, expires_at=data.expires_at)
    await commit_effects(db, result)
    return {
        "success": True,
        "permissions": result["permissions"],
        "added": result["added"],
        "revoked": result["revoked"],
    }


@router.post("/{code}/deactivate")
async def deactivate(code: str, user: dict = Depends(require_super_admin()), db=Depends(get_db)):
    result = await deactivate_permission(db, code, user)
    await commit_effects(db, result)
    return {"success": True, "code": code, "active_grants": result["active_grants"]}


@router.delete("/{code}")
async def delete(code: str, user: dict = Depends(require_super_admin()), db=Depends(get_db)):
    result = await delete_permission(db, code, user)
    await commit_effects(db, result)
    return {"success": True, "code": code}
