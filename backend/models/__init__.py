"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Portail Citoyen - Models Package                                            ║
║                                                                              ║
║  from models import Role, ContentKind, StatutUpdate, etc.                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth & utilisateurs
from .auth import (
    Role,
    VALID_ROLES,
    ADMIN_ROLES,
    RoleUpdate,
    StatusUpdate,
    UserResponse,
)

# Permissions
from .permission import (
    GrantRequest,
    RevokeRequest,
)

# Contenus modérés
from .contenu import (
    ContentKind,
    VALID_KINDS,
    COLLECTIONS,
    PERMISSION_GROUPS,
    ReclamationStatut,
    Affectation,
    EvenementStatut,
    PublicationStatut,
    ActiviteStatut,
    ContentCreate,
    StatutUpdate,
    ContentEdit,
    ClotureRequest,
    RapportActivite,
    AffectationRequest,
    DesaffectationRequest,
    ResolutionRequest,
)

__all__ = [
    # Auth
    "Role",
    "VALID_ROLES",
    "ADMIN_ROLES",
    "RoleUpdate",
    "StatusUpdate",
    "UserResponse",
    # Permissions
    "GrantRequest",
    "RevokeRequest",
    # Contenus
    "ContentKind",
    "VALID_KINDS",
    "COLLECTIONS",
    "PERMISSION_GROUPS",
    "ReclamationStatut",
    "Affectation",
    "EvenementStatut",
    "PublicationStatut",
    "ActiviteStatut",
    "ContentCreate",
    "StatutUpdate",
    "ContentEdit",
    "ClotureRequest",
    "RapportActivite",
    "AffectationRequest",
    "DesaffectationRequest",
    "ResolutionRequest",
]
