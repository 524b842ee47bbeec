"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Portail Citoyen - Contenus modérés                                          ║
║                                                                              ║
║  5 types: reclamation, evenement, actualite, activite, campagne              ║
║  Les codes de statut sont persistés: les renommer impose une migration.      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ContentKind(str, Enum):
    RECLAMATION = "reclamation"
    EVENEMENT = "evenement"
    ACTUALITE = "actualite"
    ACTIVITE = "activite"
    CAMPAGNE = "campagne"


VALID_KINDS = [k.value for k in ContentKind]

# Collection MongoDB par type
COLLECTIONS = {
    "reclamation": "reclamations",
    "evenement": "evenements",
    "actualite": "actualites",
    "activite": "programmes_activites",
    "campagne": "campagnes",
}

# Préfixe des codes de permission par type
PERMISSION_GROUPS = {
    "reclamation": "reclamations",
    "evenement": "evenements",
    "actualite": "actualites",
    "activite": "programmes",
    "campagne": "campagnes",
}


class ReclamationStatut(str, Enum):
    EN_ATTENTE = "EN_ATTENTE"    # pas encore de décision
    ACCEPTEE = "ACCEPTEE"
    REJETEE = "REJETEE"


class Affectation(str, Enum):
    NON_AFFECTEE = "NON_AFFECTEE"
    AFFECTEE = "AFFECTEE"


class EvenementStatut(str, Enum):
    EN_ATTENTE_VALIDATION = "EN_ATTENTE_VALIDATION"
    VALIDEE = "VALIDEE"
    PUBLIEE = "PUBLIEE"
    EN_ACTION = "EN_ACTION"
    CLOTUREE = "CLOTUREE"
    ANNULEE = "ANNULEE"


class PublicationStatut(str, Enum):
    """Actualités et campagnes"""
    EN_ATTENTE_VALIDATION = "EN_ATTENTE_VALIDATION"
    VALIDEE = "VALIDEE"
    PUBLIEE = "PUBLIEE"
    REJETEE = "REJETEE"
    DEPUBLIEE = "DEPUBLIEE"
    ARCHIVEE = "ARCHIVEE"


class ActiviteStatut(str, Enum):
    BROUILLON = "BROUILLON"
    EN_ATTENTE_VALIDATION = "EN_ATTENTE_VALIDATION"
    PLANIFIEE = "PLANIFIEE"
    TERMINEE = "TERMINEE"
    RAPPORT_COMPLETE = "RAPPORT_COMPLETE"


# ==================== REQUEST BODIES ====================

class ContentCreate(BaseModel):
    titre: str
    data: Dict[str, Any] = Field(default_factory=dict)


class StatutUpdate(BaseModel):
    statut: str
    motif: Optional[str] = None
    # Statut observé par l'appelant (contrôle de concurrence optimiste)
    statut_attendu: Optional[str] = None


class ContentEdit(BaseModel):
    changes: Dict[str, Any]


class ClotureRequest(BaseModel):
    rapport_cloture: str
    bilan_participation: Optional[int] = None


class RapportActivite(BaseModel):
    presence_effective: int
    commentaire_deroulement: Optional[str] = None
    difficultes: Optional[str] = None
    points_positifs: Optional[str] = None
    note_qualite: Optional[int] = None
    recommandations: Optional[str] = None


class AffectationRequest(BaseModel):
    autorite_id: str
    secteur_affecte: Optional[str] = None
    service_interne_province: Optional[str] = None
    commentaire: Optional[str] = Field(default=None, max_length=500)


class DesaffectationRequest(BaseModel):
    commentaire: Optional[str] = Field(default=None, max_length=500)


class ResolutionRequest(BaseModel):
    solution: str
