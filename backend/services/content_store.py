"""
Portail Citoyen - Accès aux contenus modérés

Lecture / écriture des documents avec contrôle de concurrence optimiste:
l'écriture ne passe que si le document a encore le statut ET la version
observés à la lecture. Sinon -> Conflict (le premier qui commit gagne).
"""

import logging
from typing import Any, Dict

from config import now_iso
from models.contenu import COLLECTIONS
from services.errors import Conflict, InvalidTransition, NotFound

logger = logging.getLogger("content_store")


def collection_for(db, kind: str):
    name = COLLECTIONS.get(kind)
    if name is None:
        raise InvalidTransition(f"Type de contenu inconnu: {kind}", {"kind": kind})
    return db[name]


async def load_content(db, kind: str, content_id: str) -> Dict[str, Any]:
    doc = await collection_for(db, kind).find_one({"id": content_id}, {"_id": 0})
    if not doc:
        raise NotFound(f"{kind} {content_id} introuvable", {"kind": kind, "id": content_id})
    return doc


async def insert_content(db, kind: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    await collection_for(db, kind).insert_one(dict(doc))
    return doc


async def save_content(db, kind: str, content: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Applique `updates` si le document n'a pas bougé depuis la lecture.
    Retourne le document mis à jour (version incrémentée).
    """
    version = content.get("version", 0)
    version_filter = {"$in": [None, 0]} if not version else version

    query = {
        "id": content["id"],
        "statut": content.get("statut"),
        "version": version_filter,
    }
    payload = dict(updates)
    payload["version"] = version + 1
    payload["updated_at"] = now_iso()

    result = await collection_for(db, kind).update_one(query, {"$set": payload})
    if result.matched_count == 0:
        logger.warning(
            f"[CONFLICT] {kind} {content['id']} modifié entre-temps "
            f"(statut observé={content.get('statut')}, version={version})"
        )
        raise Conflict(
            "Ce contenu a été modifié par quelqu'un d'autre. Rechargez-le puis réessayez.",
            {"kind": kind, "id": content["id"], "statut_observe": content.get("statut")},
        )

    return {**content, **payload}
