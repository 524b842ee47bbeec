"""
Portail Citoyen - Registre des permissions

Catalogue canonique des codes de permission, groupés par domaine.
Source de vérité pour "ce code existe-t-il / est-il actif".

Un code n'est jamais supprimé tant qu'il reste des attributions actives:
on le désactive (is_active=False) et il cesse immédiatement d'autoriser.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from models.auth import Role
from services.effects import audit_effect
from services.errors import Conflict, Forbidden, NotFound

logger = logging.getLogger("permission_registry")

# ════════════════════════════════════════════════════════════════════════
# CATALOGUE (seed)
# ════════════════════════════════════════════════════════════════════════

GROUP_LABELS = {
    "auth": "Authentification",
    "users": "Utilisateurs",
    "reclamations": "Réclamations",
    "evenements": "Événements",
    "actualites": "Actualités",
    "etablissements": "Établissements",
    "evaluations": "Évaluations",
    "campagnes": "Campagnes",
    "programmes": "Programmes d'activités",
    "suggestions": "Suggestions",
    "stats": "Statistiques & rapports",
    "map": "Cartographie",
    "system": "Système & administration",
}

_CATALOG_ENTRIES = [
    ("auth", [
        ("auth.login", "Se connecter"),
        ("auth.register", "S'inscrire"),
        ("auth.logout", "Se déconnecter"),
        ("auth.reset-password", "Réinitialiser mot de passe"),
    ]),
    ("users", [
        ("users.read", "Voir utilisateurs (basique)"),
        ("users.read.full", "Voir utilisateurs (complet)"),
        ("users.create", "Créer utilisateur"),
        ("users.edit", "Modifier utilisateur"),
        ("users.edit.role", "Changer rôle"),
        ("users.delete", "Supprimer utilisateur (Soft)"),
        ("users.hard-delete", "Supprimer définitivement (Hard)"),
        ("users.activate", "Activer/Désactiver compte"),
        ("users.security", "Voir infos sécurité"),
        ("users.me.read", "Voir mon profil"),
        ("users.me.edit", "Modifier mon profil"),
    ]),
    ("reclamations", [
        ("reclamations.read", "Voir ses réclamations"),
        ("reclamations.read.all", "Voir toutes les réclamations"),
        ("reclamations.read.assigned", "Voir réclamations affectées"),
        ("reclamations.create", "Créer réclamation"),
        ("reclamations.edit", "Modifier réclamation"),
        ("reclamations.delete", "Supprimer réclamation"),
        ("reclamations.archive", "Archiver réclamation"),
        ("reclamations.assign", "Affecter réclamation"),
        ("reclamations.validate", "Valider/Rejeter décision"),
        ("reclamations.resolve", "Marquer comme résolue"),
        ("reclamations.comment.internal", "Ajouter commentaire interne"),
    ]),
    ("evenements", [
        ("evenements.read", "Voir événements"),
        ("evenements.read.all", "Voir tous événements (admin)"),
        ("evenements.create", "Créer événement"),
        ("evenements.edit", "Modifier événement propre"),
        ("evenements.edit.all", "Modifier tout événement"),
        ("evenements.delete", "Supprimer événement"),
        ("evenements.validate", "Valider événement"),
        ("evenements.feature", "Mettre événement en avant"),
        ("evenements.subscribe", "S'inscrire à un événement"),
        ("evenements.participate", "Participer à un événement"),
        ("evenements.report", "Voir bilan événement"),
    ]),
    ("actualites", [
        ("actualites.read", "Lire actualités"),
        ("actualites.create", "Créer actualité"),
        ("actualites.edit", "Modifier actualité"),
        ("actualites.delete", "Supprimer actualité"),
        ("actualites.publish", "Publier actualité"),
        ("actualites.validate", "Valider actualité"),
    ]),
    ("etablissements", [
        ("etablissements.read", "Voir établissements"),
        ("etablissements.create", "Créer établissement"),
        ("etablissements.edit", "Modifier établissement"),
        ("etablissements.delete", "Supprimer établissement"),
        ("etablissements.validate", "Valider établissement"),
        ("etablissements.publish", "Publier établissement"),
        ("etablissements.subscribe", "S'abonner établissement"),
    ]),
    ("evaluations", [
        ("evaluations.read", "Lire évaluations"),
        ("evaluations.create", "Evaluer"),
        ("evaluations.edit", "Modifier évaluation"),
        ("evaluations.delete", "Supprimer évaluation"),
        ("evaluations.validate", "Modérer évaluation"),
        ("evaluations.report", "Signaler évaluation"),
    ]),
    ("campagnes", [
        ("campagnes.read", "Voir campagnes"),
        ("campagnes.create", "Créer campagne"),
        ("campagnes.edit", "Modifier campagne"),
        ("campagnes.delete", "Supprimer campagne"),
        ("campagnes.activate", "Gérer statut campagne"),
        ("campagnes.validate", "Valider campagne"),
        ("campagnes.participate", "Participer campagne"),
    ]),
    ("programmes", [
        ("programmes.read", "Voir programmes"),
        ("programmes.create", "Créer programme"),
        ("programmes.edit", "Modifier programme"),
        ("programmes.delete", "Supprimer programme"),
        ("programmes.validate", "Valider programme"),
        ("programmes.report", "Remplir rapport activité"),
    ]),
    ("suggestions", [
        ("suggestions.create", "Créer suggestion"),
        ("suggestions.read.own", "Voir mes suggestions"),
    ]),
    ("stats", [
        ("stats.view.global", "Voir stats globales"),
        ("stats.view.secteur", "Voir stats secteur"),
        ("stats.view.commune", "Voir stats commune"),
        ("stats.view.etablissement", "Voir stats établissement"),
        ("reports.export", "Exporter rapports"),
    ]),
    ("map", [
        ("map.view", "Voir carte"),
        ("map.view.full", "Voir carte avancée"),
    ]),
    ("system", [
        ("system.settings.read", "Voir paramètres"),
        ("system.settings.edit", "Modifier paramètres"),
        ("system.logs.view", "Voir logs"),
        ("system.backup", "Gérer backups"),
        ("system.restore", "Restaurer système"),
        ("permissions.manage", "Gérer permissions"),
        ("communes.manage", "Gérer communes"),
    ]),
]

PERMISSION_CATALOG: List[Dict[str, Any]] = [
    {
        "code": code,
        "nom": nom,
        "groupe": groupe,
        "groupe_label": GROUP_LABELS[groupe],
        "ordre": ordre,
        "is_active": True,
    }
    for groupe, entries in _CATALOG_ENTRIES
    for ordre, (code, nom) in enumerate(entries)
]

ALL_PERMISSION_CODES = [p["code"] for p in PERMISSION_CATALOG]


# ════════════════════════════════════════════════════════════════════════
# REGISTRY
# ════════════════════════════════════════════════════════════════════════

class PermissionRegistry:
    """
    Vue en mémoire du catalogue. Le regroupement est mis en cache
    (recalculable à tout moment, jamais autoritaire).
    """

    def __init__(self, permissions: Iterable[Dict[str, Any]]):
        self._by_code: Dict[str, Dict[str, Any]] = {p["code"]: dict(p) for p in permissions}
        self._grouped: Optional[Dict[str, List[Dict[str, Any]]]] = None

    @classmethod
    def from_catalog(cls) -> "PermissionRegistry":
        return cls(PERMISSION_CATALOG)

    @classmethod
    async def load(cls, db) -> "PermissionRegistry":
        """
        État persisté. Base vide (avant le seed) -> catalogue par défaut.
        Les codes du catalogue supprimés sont recréés par seed_permissions au démarrage.
        """
        docs = await db.permissions.find({}, {"_id": 0}).to_list(1000)
        if not docs:
            return cls.from_catalog()
        return cls(docs)

    def resolve(self, code: str) -> Dict[str, Any]:
        perm = self._by_code.get(code)
        if perm is None:
            raise NotFound(f"Permission inconnue: {code}", {"code": code})
        return dict(perm)

    def is_active(self, code: str) -> bool:
        perm = self._by_code.get(code)
        return bool(perm and perm.get("is_active", True))

    def active_codes(self) -> frozenset:
        return frozenset(c for c in self._by_code if self.is_active(c))

    def list_by_group(self) -> Dict[str, List[Dict[str, Any]]]:
        """{groupe_label: [permission, ...]}, permissions actives uniquement"""
        if self._grouped is None:
            perms = sorted(
                (p for p in self._by_code.values() if p.get("is_active", True)),
                key=lambda p: (p.get("groupe", ""), p.get("ordre", 0)),
            )
            grouped: Dict[str, List[Dict[str, Any]]] = {}
            for perm in perms:
                grouped.setdefault(perm.get("groupe_label", perm.get("groupe", "")), []).append(dict(perm))
            self._grouped = grouped
        return self._grouped

    def invalidate(self):
        self._grouped = None


# ════════════════════════════════════════════════════════════════════════
# ADMINISTRATION (SUPER_ADMIN)
# ════════════════════════════════════════════════════════════════════════

async def seed_permissions(db) -> int:
    """Insère les codes du catalogue absents de la base. Retourne le nombre inséré."""
    existing = await db.permissions.find({}, {"_id": 0, "code": 1}).to_list(1000)
    known = {d["code"] for d in existing}
    inserted = 0
    for perm in PERMISSION_CATALOG:
        if perm["code"] not in known:
            await db.permissions.insert_one(dict(perm))
            inserted += 1
    if inserted:
        logger.info(f"[PERMISSIONS_SEED] {inserted} permissions ajoutées")
    return inserted


async def count_active_grants(db, code: str) -> int:
    return await db.user_permissions.count_documents({"permission_code": code, "is_active": True})


def _require_super_admin(actor: dict, action: str):
    if actor.get("role") != Role.SUPER_ADMIN.value:
        logger.warning(f"[PERMISSION_DENIED] user={actor.get('id')} action={action}")
        raise Forbidden("Seul un Super Admin peut gérer le catalogue des permissions")


async def deactivate_permission(db, code: str, actor: dict) -> Dict[str, Any]:
    """Désactive un code. Les attributions existantes sont conservées pour l'audit."""
    _require_super_admin(actor, "deactivate_permission")
    # base vide: le catalogue doit être persisté avant la première désactivation
    if not await db.permissions.count_documents({}):
        await seed_permissions(db)
    registry = await PermissionRegistry.load(db)
    registry.resolve(code)

    await db.permissions.update_one({"code": code}, {"$set": {"is_active": False}})

    active_grants = await count_active_grants(db, code)
    logger.info(f"[PERMISSIONS] {code} désactivée | attributions actives={active_grants}")

    return {
        "code": code,
        "is_active": False,
        "active_grants": active_grants,
        "effects": [
            audit_effect("permission", code, "DEACTIVATE_PERMISSION", actor.get("id"),
                         {"active_grants": active_grants}),
        ],
    }


async def delete_permission(db, code: str, actor: dict) -> Dict[str, Any]:
    """Suppression définitive, refusée tant que des attributions actives existent."""
    _require_super_admin(actor, "delete_permission")
    if not await db.permissions.count_documents({}):
        await seed_permissions(db)
    registry = await PermissionRegistry.load(db)
    registry.resolve(code)

    active_grants = await count_active_grants(db, code)
    if active_grants > 0:
        raise Conflict(
            f"La permission {code} est utilisée par {active_grants} attribution(s) active(s). "
            f"Désactivez-la plutôt que de la supprimer.",
            {"active_grants": active_grants},
        )

    await db.permissions.delete_one({"code": code})
    logger.info(f"[PERMISSIONS] {code} supprimée")
    return {
        "code": code,
        "deleted": True,
        "effects": [audit_effect("permission", code, "DELETE_PERMISSION", actor.get("id"))],
    }
