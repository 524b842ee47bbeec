"""
Fixtures partagées: base Motor en mémoire + fabriques d'utilisateurs / contenus.

La fausse base couvre uniquement ce que le backend utilise:
find_one / find().sort().skip().limit().to_list() / insert_one / update_one /
update_many / delete_one / delete_many / count_documents / create_index
"""

import copy
import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest

from config import new_id, now_utc
from models.contenu import COLLECTIONS
from services.settings import settings_provider


# ==================== FAKE MOTOR ====================

def _matches_condition(doc: dict, key: str, cond) -> bool:
    present = key in doc
    value = doc.get(key)

    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if value not in arg:
                    return False
            elif op == "$nin":
                if value in arg:
                    return False
            elif op == "$ne":
                if value == arg:
                    return False
            elif op == "$gt":
                if value is None or not value > arg:
                    return False
            elif op == "$gte":
                if value is None or not value >= arg:
                    return False
            elif op == "$lt":
                if value is None or not value < arg:
                    return False
            elif op == "$lte":
                if value is None or not value <= arg:
                    return False
            elif op == "$exists":
                if present != bool(arg):
                    return False
            else:
                raise NotImplementedError(op)
        return True

    return value == cond


def matches(doc: dict, query: dict) -> bool:
    return all(_matches_condition(doc, k, v) for k, v in (query or {}).items())


def project(doc: dict, projection: dict = None) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        result = {k: doc[k] for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    for k, v in projection.items():
        if not v:
            doc.pop(k, None)
    return doc


def apply_update(doc: dict, update: dict):
    for op, fields in update.items():
        if op == "$set":
            for k, v in fields.items():
                doc[k] = copy.deepcopy(v)
        elif op == "$push":
            for k, v in fields.items():
                doc.setdefault(k, []).append(copy.deepcopy(v))
        elif op == "$inc":
            for k, v in fields.items():
                doc[k] = doc.get(k, 0) + v
        elif op == "$setOnInsert":
            continue
        else:
            raise NotImplementedError(op)


class FakeCursor:

    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=order == -1)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.fail_inserts = False

    def add(self, doc: dict) -> dict:
        """Insertion synchrone pour préparer les tests"""
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", uuid.uuid4().hex)
        self.docs.append(stored)
        return doc

    async def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if matches(doc, query):
                return project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([project(d, projection) for d in self.docs if matches(d, query)])

    async def insert_one(self, doc):
        if self.fail_inserts:
            raise RuntimeError(f"insert refusé sur {self.name}")
        self.add(doc)
        return SimpleNamespace(inserted_id=doc.get("id"))

    async def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if matches(doc, query):
                apply_update(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            new_doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            apply_update(new_doc, update)
            new_doc.update(update.get("$setOnInsert", {}))
            self.add(new_doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=new_doc.get("id"))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def update_many(self, query, update):
        count = 0
        for doc in self.docs:
            if matches(doc, query):
                apply_update(doc, update)
                count += 1
        return SimpleNamespace(matched_count=count, modified_count=count)

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))

    async def create_index(self, *args, **kwargs):
        return None


class FakeDatabase:

    def __init__(self):
        self._collections = {}

    def __getitem__(self, name) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


# ==================== FIXTURES ====================

@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture(autouse=True)
def fresh_settings():
    settings_provider.invalidate()
    yield
    settings_provider.invalidate()


def iso_days(days: float) -> str:
    """Date ISO relative à maintenant (négatif = passé)"""
    return (now_utc() + timedelta(days=days)).isoformat()


@pytest.fixture
def make_user(db):
    def _make(role="CITOYEN", **fields):
        user = {
            "id": new_id(),
            "email": f"{uuid.uuid4().hex[:8]}@portail.test",
            "nom": "Test",
            "prenom": role.capitalize(),
            "role": role,
            "is_active": True,
            "commune_responsable_id": None,
            "secteur_responsable": None,
            "etablissements_geres": [],
        }
        user.update(fields)
        db.users.add(user)
        return user
    return _make


@pytest.fixture
def make_content(db):
    def _make(kind, statut, created_by, **fields):
        doc = {
            "id": new_id(),
            "titre": f"{kind} de test",
            "statut": statut,
            "created_by": created_by,
            "created_at": iso_days(-10),
            "updated_at": iso_days(-10),
            "version": 0,
        }
        if kind == "reclamation":
            doc.update({
                "commune_id": "commune-1",
                "affectation_reclamation": "NON_AFFECTEE",
                "affectee_a_autorite_id": None,
                "date_affectation": None,
                "date_resolution": None,
            })
        elif kind == "evenement":
            doc.update({"date_debut": iso_days(-1), "is_visible_public": False})
        elif kind in ("actualite", "campagne"):
            doc.update({"is_valide": False, "is_publie": False})
        elif kind == "activite":
            doc.update({
                "date_fin": iso_days(-1),
                "participants_attendus": 20,
                "is_valide_par_admin": False,
                "is_visible_public": False,
                "rapport_complete": False,
            })
        doc.update(fields)
        db[COLLECTIONS[kind]].add(doc)
        return doc
    return _make


@pytest.fixture
def make_session(db):
    def _make(user):
        token = uuid.uuid4().hex
        db.sessions.add({"token": token, "user_id": user["id"], "expires_at": iso_days(1)})
        return {"Authorization": f"Bearer {token}"}
    return _make
