"""
Tests for member profile reads and partial updates.
"""

import pytest

from directory.client import DirectoryErrorCode
from models.enums import AuditAction
from models.schemas import ProfilePatch
from provisioning.errors import AccountNotFoundError, ValidationError
from services.accounts import AccountRepository
from services.audit import AuditLogger
from services.profiles import ProfileService

from conftest import PNG_DATA_URL


@pytest.fixture
def profiles(db, config, directory):
    return ProfileService(db, config, directory)


async def insert_account(db, email="cb.dvictoria@awscommunity.mx", community_type="cb", **values):
    return await AccountRepository(db).insert({
        "email": email,
        "community_type": community_type,
        "local_part": email.split("@")[0].split(".", 1)[1],
        "primary_name": "David",
        "secondary_name": "Victoria",
        "contact_email": "david@example.com",
        **values,
    })


class TestGetProfile:
    @pytest.mark.asyncio
    async def test_profile_by_signed_in_email(self, db, profiles):
        await insert_account(db, bio="Hi")

        account = await profiles.get_profile("CB.DVictoria@awscommunity.mx")

        assert account.bio == "Hi"

    @pytest.mark.asyncio
    async def test_missing_profile(self, profiles):
        with pytest.raises(AccountNotFoundError) as exc_info:
            await profiles.get_profile("nobody@awscommunity.mx")

        assert exc_info.value.reason == "profile_not_found"


class TestUpdateProfile:
    """Test partial update semantics"""

    @pytest.mark.asyncio
    async def test_only_sent_fields_change(self, db, profiles):
        await insert_account(db, bio="Old bio", location="CDMX", github="https://github.com/old")

        account = await profiles.update_profile(
            "cb.dvictoria@awscommunity.mx",
            ProfilePatch(bio="New bio", github=None),
        )

        assert account.bio == "New bio"
        assert account.github is None
        assert account.location == "CDMX"

        entries = await AuditLogger(db).entries(AuditAction.PROFILE_UPDATED)
        assert len(entries) == 1
        assert entries[0].details["fields"] == ["bio", "github"]

    @pytest.mark.asyncio
    async def test_no_change_is_not_audited(self, db, profiles):
        await insert_account(db, bio="Same")

        await profiles.update_profile("cb.dvictoria@awscommunity.mx", ProfilePatch(bio="Same"))

        assert await AuditLogger(db).count(AuditAction.PROFILE_UPDATED) == 0

    @pytest.mark.asyncio
    async def test_person_fields_rejected_for_organizations(self, db, profiles):
        await insert_account(db, email="ug.cdmx@awscommunity.mx", community_type="ug")

        with pytest.raises(ValidationError):
            await profiles.update_profile("ug.cdmx@awscommunity.mx", ProfilePatch(company="Acme"))

    @pytest.mark.asyncio
    async def test_person_fields_allowed_for_people(self, db, profiles):
        await insert_account(db)

        account = await profiles.update_profile(
            "cb.dvictoria@awscommunity.mx", ProfilePatch(company="Acme", job_title="Architect")
        )

        assert account.company == "Acme"
        assert account.job_title == "Architect"

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(Exception):
            ProfilePatch(email="someone-else@awscommunity.mx")


class TestAvatarUpdate:
    """Test avatar changes through the directory"""

    @pytest.mark.asyncio
    async def test_avatar_is_synced(self, db, profiles, directory):
        await insert_account(db)

        account = await profiles.update_profile("cb.dvictoria@awscommunity.mx", ProfilePatch(avatar=PNG_DATA_URL))

        assert account.avatar.startswith("data:image/jpeg;base64,")
        assert "cb.dvictoria@awscommunity.mx" in directory.photos

    @pytest.mark.asyncio
    async def test_avatar_sync_failure_keeps_upload(self, db, profiles, directory):
        await insert_account(db)
        directory.fail("fetch_photo", DirectoryErrorCode.UPSTREAM)

        account = await profiles.update_profile("cb.dvictoria@awscommunity.mx", ProfilePatch(avatar=PNG_DATA_URL))

        assert account.avatar == PNG_DATA_URL
        failures = await AuditLogger(db).entries(AuditAction.AVATAR_SYNC_FAILED)
        assert failures[0].details["stage"] == "fetch"
        updated = await AuditLogger(db).entries(AuditAction.PROFILE_UPDATED)
        assert updated[0].details["avatar_synced"] is False

    @pytest.mark.asyncio
    async def test_invalid_avatar(self, db, profiles):
        await insert_account(db)

        with pytest.raises(ValidationError):
            await profiles.update_profile("cb.dvictoria@awscommunity.mx", ProfilePatch(avatar="not a data url"))

    @pytest.mark.asyncio
    async def test_without_directory_stores_upload(self, db, config):
        await insert_account(db)

        account = await ProfileService(db, config).update_profile(
            "cb.dvictoria@awscommunity.mx", ProfilePatch(avatar=PNG_DATA_URL)
        )

        assert account.avatar == PNG_DATA_URL
