"""
Tests administration des comptes: changement de rôle, activation
"""

import pytest

from services.errors import Conflict, Forbidden, ValidationError
from services.user_admin import change_role, set_active


@pytest.fixture
def communes(db):
    db.communes.add({"id": "commune-1", "nom": "Mediouna"})
    db.communes.add({"id": "commune-2", "nom": "Tit Mellil"})


class TestChangeRole:

    @pytest.mark.asyncio
    async def test_cannot_change_own_role(self, db, make_user):
        admin = make_user("ADMIN")
        with pytest.raises(Forbidden):
            await change_role(db, admin["id"], "CITOYEN", admin)

    @pytest.mark.asyncio
    async def test_admin_cannot_promote_to_admin(self, db, make_user):
        admin = make_user("ADMIN")
        citizen = make_user("CITOYEN")
        for role in ("ADMIN", "SUPER_ADMIN"):
            with pytest.raises(Forbidden):
                await change_role(db, citizen["id"], role, admin)

    @pytest.mark.asyncio
    async def test_admin_cannot_touch_super_admin(self, db, make_user):
        admin = make_user("ADMIN")
        super_admin = make_user("SUPER_ADMIN")
        with pytest.raises(Forbidden):
            await change_role(db, super_admin["id"], "CITOYEN", admin)

    @pytest.mark.asyncio
    async def test_citizen_cannot_change_roles(self, db, make_user):
        citizen = make_user("CITOYEN")
        other = make_user("CITOYEN")
        with pytest.raises(Forbidden):
            await change_role(db, other["id"], "DELEGATION", citizen, secteur_responsable="SANTE")

    @pytest.mark.asyncio
    async def test_invalid_role(self, db, make_user):
        admin = make_user("ADMIN")
        citizen = make_user("CITOYEN")
        with pytest.raises(ValidationError):
            await change_role(db, citizen["id"], "ROI", admin)

    @pytest.mark.asyncio
    async def test_authority_needs_existing_commune(self, db, make_user, communes):
        admin = make_user("ADMIN")
        citizen = make_user("CITOYEN")
        with pytest.raises(ValidationError):
            await change_role(db, citizen["id"], "AUTORITE_LOCALE", admin)
        with pytest.raises(ValidationError):
            await change_role(db, citizen["id"], "AUTORITE_LOCALE", admin, commune_responsable_id="commune-9")

    @pytest.mark.asyncio
    async def test_one_authority_per_commune(self, db, make_user, communes):
        admin = make_user("ADMIN")
        holder = make_user("AUTORITE_LOCALE", commune_responsable_id="commune-1")
        citizen = make_user("CITOYEN")

        with pytest.raises(Conflict) as exc:
            await change_role(db, citizen["id"], "AUTORITE_LOCALE", admin, commune_responsable_id="commune-1")

        assert exc.value.details["user_id"] == holder["id"]

    @pytest.mark.asyncio
    async def test_authority_can_be_rebound_to_same_commune(self, db, make_user, communes):
        admin = make_user("ADMIN")
        holder = make_user("AUTORITE_LOCALE", commune_responsable_id="commune-1")

        result = await change_role(db, holder["id"], "AUTORITE_LOCALE", admin, commune_responsable_id="commune-1")

        assert result["user"]["commune_responsable_id"] == "commune-1"

    @pytest.mark.asyncio
    async def test_role_fields_are_reset(self, db, make_user, communes):
        admin = make_user("ADMIN")
        authority = make_user("AUTORITE_LOCALE", commune_responsable_id="commune-2")

        result = await change_role(db, authority["id"], "DELEGATION", admin, secteur_responsable="EDUCATION")

        stored = await db.users.find_one({"id": authority["id"]})
        assert stored["role"] == "DELEGATION"
        assert stored["secteur_responsable"] == "EDUCATION"
        assert stored["commune_responsable_id"] is None
        assert result["effects"][0]["kind"] == "ROLE_CHANGED"
        assert result["effects"][1]["details"]["ancien_role"] == "AUTORITE_LOCALE"

    @pytest.mark.asyncio
    async def test_super_admin_promotes_admin(self, db, make_user):
        super_admin = make_user("SUPER_ADMIN")
        citizen = make_user("CITOYEN")
        result = await change_role(db, citizen["id"], "ADMIN", super_admin)
        assert result["user"]["role"] == "ADMIN"


class TestSetActive:

    @pytest.mark.asyncio
    async def test_deactivation_closes_sessions(self, db, make_user, make_session):
        admin = make_user("ADMIN")
        citizen = make_user("CITOYEN")
        make_session(citizen)
        make_session(citizen)

        result = await set_active(db, citizen["id"], False, admin)

        assert result["sessions_closed"] == 2
        assert await db.sessions.count_documents({"user_id": citizen["id"]}) == 0
        assert result["effects"][0]["action"] == "USER_DEACTIVATED"

    @pytest.mark.asyncio
    async def test_cannot_deactivate_self(self, db, make_user):
        admin = make_user("ADMIN")
        with pytest.raises(Forbidden):
            await set_active(db, admin["id"], False, admin)

    @pytest.mark.asyncio
    async def test_reactivate(self, db, make_user):
        admin = make_user("ADMIN")
        citizen = make_user("CITOYEN", is_active=False)

        result = await set_active(db, citizen["id"], True, admin)

        assert result["sessions_closed"] == 0
        stored = await db.users.find_one({"id": citizen["id"]})
        assert stored["is_active"] is True
