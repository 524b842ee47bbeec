"""
Portail Citoyen - Modeles Auth & Utilisateurs
Role + Permission hybrid model.
Roles carry a default permission set. Explicit grants come on top.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator


class Role(str, Enum):
    CITOYEN = "CITOYEN"
    DELEGATION = "DELEGATION"
    AUTORITE_LOCALE = "AUTORITE_LOCALE"
    COORDINATEUR_ACTIVITES = "COORDINATEUR_ACTIVITES"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    GOUVERNEUR = "GOUVERNEUR"


VALID_ROLES = [r.value for r in Role]

# Rôles qui reçoivent les alertes "broadcast" de l'administration
ADMIN_ROLES = [Role.ADMIN.value, Role.SUPER_ADMIN.value]


class RoleUpdate(BaseModel):
    role: str
    secteur_responsable: Optional[str] = None
    commune_responsable_id: Optional[str] = None
    etablissements_geres: Optional[List[str]] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f"Rôle invalide: {v}. Rôles autorisés: {', '.join(VALID_ROLES)}")
        return v


class StatusUpdate(BaseModel):
    is_active: bool


class UserResponse(BaseModel):
    id: str
    email: str = ""
    nom: str = ""
    prenom: str = ""
    role: str = Role.CITOYEN.value
    is_active: bool = True
    commune_responsable_id: Optional[str] = None
    secteur_responsable: Optional[str] = None
    etablissements_geres: List[str] = []
    permissions: List[str] = []
