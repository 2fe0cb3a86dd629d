"""
Tests for address allocation and the account registry.
"""

import pytest

from models.enums import CommunityType
from provisioning.errors import ConflictError, ValidationError
from services.accounts import AccountRepository, DuplicateAccountError
from services.allocator import (
    Allocator,
    derive_local_part,
    normalize_name,
    validate_manual_local_part,
)


def account_values(email="cb.dvictoria@awscommunity.mx", community_type="cb", **overrides):
    values = {
        "email": email,
        "community_type": community_type,
        "local_part": email.split("@")[0].split(".", 1)[1],
        "primary_name": "David",
        "secondary_name": "Victoria",
        "contact_email": "david@example.com",
    }
    values.update(overrides)
    return values


class TestNameNormalization:
    """Test folding of names to ASCII letters"""

    def test_accents_are_folded(self):
        """Test diacritics are removed rather than dropped with the letter"""
        assert normalize_name("Ñúñez-Ávila") == "nunezavila"
        assert normalize_name("José María") == "josemaria"

    def test_non_letters_are_removed(self):
        """Test digits, spaces and punctuation are stripped"""
        assert normalize_name(" O'Brien 3rd ") == "obrienrd"

    def test_empty_input(self):
        assert normalize_name(None) == ""
        assert normalize_name("") == ""

    def test_derived_local_part(self):
        """Test first initial plus family name"""
        assert derive_local_part("David", "Victoria") == "dvictoria"
        assert derive_local_part("Élodie", "De la Peña") == "edelapena"

    def test_name_without_letters_is_rejected(self):
        """Test names that fold to nothing are invalid_name"""
        with pytest.raises(ValidationError) as exc_info:
            derive_local_part("123", "Victoria")
        assert exc_info.value.reason == "invalid_name"

        with pytest.raises(ValidationError):
            derive_local_part("David", "--")


class TestManualLocalPart:
    """Test validation of chosen usernames"""

    def test_valid_username(self):
        assert validate_manual_local_part("cdmx") == "cdmx"
        assert validate_manual_local_part("  gdl2024 ") == "gdl2024"

    @pytest.mark.parametrize("candidate", ["", "a", "CDMX", "cd-mx", "cd.mx", "cd mx", "dévs", " cdmx ", "cdmx\n", None])
    def test_invalid_username(self, candidate):
        """Test format violations are invalid_format"""
        with pytest.raises(ValidationError) as exc_info:
            validate_manual_local_part(candidate)
        assert exc_info.value.reason == "invalid_format"

    def test_length_includes_prefix(self):
        """Test the 64 character limit applies to prefix plus username"""
        assert validate_manual_local_part("a" * 61, prefix="ug.") == "a" * 61
        with pytest.raises(ValidationError):
            validate_manual_local_part("a" * 62, prefix="ug.")


class TestAllocator:
    """Test allocation against the accounts table"""

    @pytest.mark.asyncio
    async def test_person_type_derives_address(self, db, config):
        """Test person types derive the address from the names"""
        allocation = await Allocator(db, config).allocate(CommunityType.cb, None, "David", "Victoria")

        assert allocation.local_part == "dvictoria"
        assert allocation.email == "cb.dvictoria@awscommunity.mx"

    @pytest.mark.asyncio
    async def test_person_type_ignores_supplied_username(self, db, config):
        """Test a username sent for a person type has no effect"""
        allocation = await Allocator(db, config).allocate(CommunityType.hero, "chosen", "Ana", "López")

        assert allocation.email == "hero.alopez@awscommunity.mx"

    @pytest.mark.asyncio
    async def test_organization_type_uses_username(self, db, config):
        """Test organization types use the validated username"""
        allocation = await Allocator(db, config).allocate(CommunityType.ug, "cdmx", "Ciudad de México", "Ana")

        assert allocation.email == "ug.cdmx@awscommunity.mx"

    @pytest.mark.asyncio
    async def test_taken_address_is_rejected(self, db, config):
        """Test an address present in the accounts table is email_taken"""
        await AccountRepository(db).insert(account_values())

        with pytest.raises(ConflictError) as exc_info:
            await Allocator(db, config).allocate(CommunityType.cb, None, "Daniel", "Victoria")

        assert exc_info.value.reason == "email_taken"
        assert exc_info.value.detail == {"local_part": "dvictoria", "email": "cb.dvictoria@awscommunity.mx"}

    @pytest.mark.asyncio
    async def test_same_local_part_other_type_is_free(self, db, config):
        """Test prefixes keep community types apart"""
        await AccountRepository(db).insert(account_values())

        allocation = await Allocator(db, config).allocate(CommunityType.hero, None, "David", "Victoria")
        assert allocation.email == "hero.dvictoria@awscommunity.mx"

    @pytest.mark.asyncio
    async def test_derived_too_long(self, db, config):
        """Test an over-long derived local-part is invalid_name"""
        with pytest.raises(ValidationError) as exc_info:
            Allocator(db, config).candidate(CommunityType.hero, None, "Ana", "x" * 70)
        assert exc_info.value.reason == "invalid_name"

    @pytest.mark.asyncio
    async def test_check_username(self, db, config):
        """Test availability reporting for manual usernames"""
        allocator = Allocator(db, config)
        await AccountRepository(db).insert(account_values("ug.cdmx@awscommunity.mx", "ug"))

        taken = await allocator.check_username(CommunityType.ug, "cdmx")
        free = await allocator.check_username(CommunityType.ug, "gdl")
        bad = await allocator.check_username(CommunityType.ug, "GDL!")

        assert taken.available is False
        assert taken.email == "ug.cdmx@awscommunity.mx"
        assert free.available is True
        assert free.email == "ug.gdl@awscommunity.mx"
        assert bad.available is False
        assert bad.error

    @pytest.mark.asyncio
    async def test_derive_username_preview(self, db, config):
        """Test derived username preview for person and organization types"""
        allocator = Allocator(db, config)

        preview = await allocator.derive_username(CommunityType.cb, "Mónica", "Ruiz")
        org = await allocator.derive_username(CommunityType.cc, "Mónica", "Ruiz")

        assert preview.username == "mruiz"
        assert preview.email == "cb.mruiz@awscommunity.mx"
        assert preview.available is True
        assert org.available is False
        assert org.error


class TestAccountRepository:
    """Test the account registry"""

    @pytest.mark.asyncio
    async def test_duplicate_insert_raises(self, db):
        """Test the unique constraint surfaces as DuplicateAccountError"""
        repo = AccountRepository(db)
        await repo.insert(account_values())

        with pytest.raises(DuplicateAccountError):
            await repo.insert(account_values(contact_email="other@example.com"))

        assert await repo.email_exists("cb.dvictoria@awscommunity.mx")

    @pytest.mark.asyncio
    async def test_find_by_id_or_email(self, db):
        """Test lookup accepts an id, a numeric string or an email"""
        repo = AccountRepository(db)
        account = await repo.insert(account_values())

        assert (await repo.find(account.id)).email == account.email
        assert (await repo.find(str(account.id))).email == account.email
        assert (await repo.find(" CB.DVictoria@awscommunity.mx ")).id == account.id
        assert await repo.find("nobody@awscommunity.mx") is None

    @pytest.mark.asyncio
    async def test_list_accounts_search_and_filter(self, db):
        """Test search over address and contact email, and type filter"""
        repo = AccountRepository(db)
        await repo.insert(account_values())
        await repo.insert(account_values("hero.alopez@awscommunity.mx", "hero", contact_email="ana@example.org"))
        await repo.insert(account_values("ug.cdmx@awscommunity.mx", "ug", contact_email="lead@cdmx.dev"))

        rows, total, pages = await repo.list_accounts()
        assert total == 3
        assert pages == 1

        rows, total, _ = await repo.list_accounts(search="example.org")
        assert [r.email for r in rows] == ["hero.alopez@awscommunity.mx"]

        rows, total, _ = await repo.list_accounts(community_type=CommunityType.ug)
        assert total == 1

    @pytest.mark.asyncio
    async def test_list_accounts_paging(self, db):
        """Test page size and page count"""
        repo = AccountRepository(db)
        for i in range(5):
            await repo.insert(account_values(f"ug.group{i}@awscommunity.mx", "ug"))

        rows, total, pages = await repo.list_accounts(page=2, page_size=2)

        assert total == 5
        assert pages == 3
        assert len(rows) == 2
