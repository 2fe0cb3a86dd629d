"""
Shared fixtures for the unit tests.

- db: AsyncSession on an in-memory SQLite database (aiosqlite), so unique
  constraints are enforced for real
- directory: FakeDirectoryClient, an in-memory DirectoryClient with
  switchable failures
- clock: manual clock for the admission limiter
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-with-at-least-32-chars")
os.environ.setdefault("ADMIN_EMAILS", "admin@awscommunity.mx")

import base64
import time
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import ProvisioningConfig
from database import Base
from directory.client import CreatedIdentity, DirectoryClient, DirectoryError, DirectoryErrorCode, Photo
from models.community import DEFAULT_COMMUNITIES
from models.enums import CommunityType
from provisioning.service import ProvisioningService
from services.rate_limit import AdmissionLimiter, MemoryWindowBackend
from services.secret_store import SecretStore, build_crypt_context

ADMIN_EMAIL = "admin@awscommunity.mx"

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeDirectoryClient(DirectoryClient):
    """
    In-memory directory.

    ``failures`` maps a method name to the error code it raises on every
    call. ``invalid_org_units`` lists org units that create_user rejects.
    """

    def __init__(self):
        self.users: Dict[str, dict] = {}
        self.groups: Dict[str, set] = defaultdict(set)
        self.photos: Dict[str, Photo] = {}
        self.sent: List[dict] = []
        self.failures: Dict[str, DirectoryErrorCode] = {}
        self.invalid_org_units: set = set()
        self.calls: List[tuple] = []

    def fail(self, method: str, code: DirectoryErrorCode = DirectoryErrorCode.UPSTREAM) -> None:
        self.failures[method] = code

    def _check(self, method: str, *args) -> None:
        self.calls.append((method,) + args)
        if method in self.failures:
            raise DirectoryError(self.failures[method], f"simulated {method} failure")

    async def exists(self, email: str) -> bool:
        self._check("exists", email)
        return email in self.users

    async def create_user(self, email, given_name, family_name, org_unit=None) -> CreatedIdentity:
        self._check("create_user", email, org_unit)
        if org_unit and org_unit in self.invalid_org_units:
            raise DirectoryError(DirectoryErrorCode.INVALID_ORG_UNIT, "Invalid Ou Id")
        if email in self.users:
            raise DirectoryError(DirectoryErrorCode.CONFLICT, "Entity already exists.")
        self.users[email] = {
            "given_name": given_name,
            "family_name": family_name,
            "org_unit": org_unit,
            "id": f"uid-{len(self.users) + 1}",
        }
        return CreatedIdentity(email=email, temp_password="Tmp!Pass-1234567", provider_id=self.users[email]["id"])

    async def delete_user(self, email: str) -> None:
        self._check("delete_user", email)
        if email not in self.users:
            raise DirectoryError(DirectoryErrorCode.NOT_FOUND, "Resource Not Found: userKey")
        del self.users[email]

    async def add_to_group(self, email: str, group_email: str) -> None:
        self._check("add_to_group", email, group_email)
        self.groups[group_email].add(email)

    async def upload_photo(self, email: str, data: bytes, mime_type: str) -> None:
        self._check("upload_photo", email)
        self.photos[email] = Photo(data=data, mime_type=mime_type)

    async def fetch_photo(self, email: str) -> Photo:
        self._check("fetch_photo", email)
        if email not in self.photos:
            raise DirectoryError(DirectoryErrorCode.NOT_FOUND, "No photo")
        # The directory re-encodes uploads as JPEG
        return Photo(data=b"processed:" + self.photos[email].data, mime_type="image/jpeg")

    async def send_mail(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        self._check("send_mail", to)
        self.sent.append({"to": to, "subject": subject, "body": body, "html": html})


class StubCredentials:
    """google-auth credentials stand-in: valid, token, refresh(request)"""

    def __init__(self):
        self.valid = False
        self.token = None
        self.refreshes = 0

    def refresh(self, request):
        self.refreshes += 1
        self.token = f"token-{self.refreshes}"
        self.valid = True


class ManualClock:
    def __init__(self, now: Optional[float] = None):
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def config():
    return ProvisioningConfig(
        domain="awscommunity.mx",
        communities=dict(DEFAULT_COMMUNITIES),
        admin_emails=frozenset({ADMIN_EMAIL}),
        organization_name="AWS Community MX",
        avatar_max_bytes=64 * 1024,
    )


@pytest.fixture
def crypt_context():
    # Minimum bcrypt cost keeps the suite fast
    return build_crypt_context(rounds=4)


@pytest.fixture
def directory():
    return FakeDirectoryClient()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def limiter(clock):
    return AdmissionLimiter(MemoryWindowBackend(), clock=clock)


@pytest.fixture
def service(db, config, directory, limiter, crypt_context):
    return ProvisioningService(db, config, directory, limiter, crypt_context=crypt_context)


@pytest.fixture
def secret_store(db, config, crypt_context):
    return SecretStore(db, config, crypt_context)


@pytest_asyncio.fixture
async def secrets(secret_store):
    """Configured plaintext secret per community type"""
    return {t: await secret_store.rotate(t, actor=ADMIN_EMAIL) for t in CommunityType}


def with_org_unit(config: ProvisioningConfig, community_type: CommunityType, org_unit: str) -> ProvisioningConfig:
    communities = dict(config.communities)
    communities[community_type] = replace(communities[community_type], org_unit=org_unit)
    return replace(config, communities=communities)
