"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Portail Citoyen - Permission Registry                                       ║
║                                                                              ║
║  1. Catalogue: codes uniques, groupes, libellés                              ║
║  2. resolve / is_active / list_by_group                                      ║
║  3. Seed idempotent                                                          ║
║  4. Désactivation et suppression (refusée si attributions actives)           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from services.errors import Conflict, Forbidden, NotFound
from services.permission_registry import (
    ALL_PERMISSION_CODES,
    GROUP_LABELS,
    PERMISSION_CATALOG,
    PermissionRegistry,
    deactivate_permission,
    delete_permission,
    seed_permissions,
)
from services.permissions import AuthorizationGate


class TestCatalog:

    def test_codes_are_unique(self):
        assert len(ALL_PERMISSION_CODES) == len(set(ALL_PERMISSION_CODES))

    def test_every_entry_has_known_group(self):
        for perm in PERMISSION_CATALOG:
            assert perm["groupe"] in GROUP_LABELS
            assert perm["groupe_label"] == GROUP_LABELS[perm["groupe"]]
            assert perm["is_active"] is True

    def test_validation_codes_for_every_kind(self):
        for code in ("reclamations.validate", "evenements.validate", "actualites.validate",
                     "campagnes.validate", "programmes.validate"):
            assert code in ALL_PERMISSION_CODES


class TestRegistryLookups:

    def test_resolve_known_code(self):
        registry = PermissionRegistry.from_catalog()
        perm = registry.resolve("evenements.validate")
        assert perm["groupe"] == "evenements"
        assert perm["nom"] == "Valider événement"

    def test_resolve_unknown_code(self):
        registry = PermissionRegistry.from_catalog()
        with pytest.raises(NotFound):
            registry.resolve("evenements.teleport")

    def test_is_active(self):
        registry = PermissionRegistry([
            {"code": "a.on", "groupe": "a", "groupe_label": "A", "ordre": 0, "is_active": True},
            {"code": "a.off", "groupe": "a", "groupe_label": "A", "ordre": 1, "is_active": False},
        ])
        assert registry.is_active("a.on")
        assert not registry.is_active("a.off")
        assert not registry.is_active("a.missing")
        assert registry.active_codes() == frozenset({"a.on"})

    def test_list_by_group_only_active_and_ordered(self):
        registry = PermissionRegistry([
            {"code": "b.second", "groupe": "b", "groupe_label": "Bravo", "ordre": 2},
            {"code": "b.first", "groupe": "b", "groupe_label": "Bravo", "ordre": 1},
            {"code": "a.only", "groupe": "a", "groupe_label": "Alpha", "ordre": 0},
            {"code": "a.off", "groupe": "a", "groupe_label": "Alpha", "ordre": 1, "is_active": False},
        ])
        grouped = registry.list_by_group()
        assert list(grouped.keys()) == ["Alpha", "Bravo"]
        assert [p["code"] for p in grouped["Alpha"]] == ["a.only"]
        assert [p["code"] for p in grouped["Bravo"]] == ["b.first", "b.second"]

    def test_grouping_is_cached_until_invalidate(self):
        registry = PermissionRegistry.from_catalog()
        first = registry.list_by_group()
        assert registry.list_by_group() is first
        registry.invalidate()
        assert registry.list_by_group() is not first
        assert registry.list_by_group() == first


class TestSeedAndLoad:

    @pytest.mark.asyncio
    async def test_empty_db_falls_back_to_catalog(self, db):
        registry = await PermissionRegistry.load(db)
        assert registry.active_codes() == frozenset(ALL_PERMISSION_CODES)

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db):
        inserted = await seed_permissions(db)
        assert inserted == len(PERMISSION_CATALOG)
        assert await seed_permissions(db) == 0
        assert await db.permissions.count_documents({}) == len(PERMISSION_CATALOG)

    @pytest.mark.asyncio
    async def test_persisted_state_wins(self, db):
        await seed_permissions(db)
        await db.permissions.update_one({"code": "map.view"}, {"$set": {"is_active": False}})
        registry = await PermissionRegistry.load(db)
        assert not registry.is_active("map.view")
        assert registry.is_active("map.view.full")


class TestAdministration:

    @pytest.mark.asyncio
    async def test_deactivate_requires_super_admin(self, db, make_user):
        admin = make_user("ADMIN")
        with pytest.raises(Forbidden):
            await deactivate_permission(db, "map.view", admin)

    @pytest.mark.asyncio
    async def test_deactivate_reports_affected_grants(self, db, make_user):
        await seed_permissions(db)
        super_admin = make_user("SUPER_ADMIN")
        db.user_permissions.add({"user_id": "u1", "permission_code": "map.view.full", "is_active": True})

        result = await deactivate_permission(db, "map.view.full", super_admin)

        assert result["active_grants"] == 1
        doc = await db.permissions.find_one({"code": "map.view.full"})
        assert doc["is_active"] is False
        assert result["effects"][0]["action"] == "DEACTIVATE_PERMISSION"

    @pytest.mark.asyncio
    async def test_deactivate_on_unseeded_base_keeps_catalog(self, db, make_user):
        super_admin = make_user("SUPER_ADMIN")
        admin = make_user("ADMIN")

        await deactivate_permission(db, "system.backup", super_admin)

        assert await db.permissions.count_documents({}) == len(PERMISSION_CATALOG)
        registry = await PermissionRegistry.load(db)
        assert not registry.is_active("system.backup")
        assert await AuthorizationGate(db).can(admin, "evenements.validate")

    @pytest.mark.asyncio
    async def test_deactivate_unknown_code(self, db, make_user):
        super_admin = make_user("SUPER_ADMIN")
        with pytest.raises(NotFound):
            await deactivate_permission(db, "nope.nope", super_admin)

    @pytest.mark.asyncio
    async def test_delete_refused_while_granted(self, db, make_user):
        await seed_permissions(db)
        super_admin = make_user("SUPER_ADMIN")
        db.user_permissions.add({"user_id": "u1", "permission_code": "reports.export", "is_active": True})
        db.user_permissions.add({"user_id": "u2", "permission_code": "reports.export", "is_active": False})

        with pytest.raises(Conflict) as exc:
            await delete_permission(db, "reports.export", super_admin)

        assert exc.value.details == {"active_grants": 1}
        assert await db.permissions.count_documents({"code": "reports.export"}) == 1

    @pytest.mark.asyncio
    async def test_delete_without_grants_then_reseed(self, db, make_user):
        await seed_permissions(db)
        super_admin = make_user("SUPER_ADMIN")

        result = await delete_permission(db, "reports.export", super_admin)

        assert result["deleted"] is True
        registry = await PermissionRegistry.load(db)
        with pytest.raises(NotFound):
            registry.resolve("reports.export")

        assert await seed_permissions(db) == 1
