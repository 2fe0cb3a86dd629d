"""
Directory client contract.

The provisioning pipeline depends only on this interface. The production
implementation is GoogleWorkspaceClient; tests use an in-memory double.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DirectoryErrorCode(str, Enum):
    CONFLICT = "conflict"
    INVALID_ORG_UNIT = "invalid_org_unit"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"


class DirectoryError(Exception):
    """Remote directory call failed"""

    def __init__(self, code: DirectoryErrorCode, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or code.value)
        self.code = DirectoryErrorCode(code)
        self.message = message or code.value
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"DirectoryError({self.code.value!r}, {self.message!r})"


class DirectoryNotConfiguredError(DirectoryError):
    def __init__(self, message: str = "Directory credentials are not configured"):
        super().__init__(DirectoryErrorCode.UPSTREAM, message)


@dataclass(frozen=True)
class CreatedIdentity:
    email: str
    temp_password: str
    provider_id: Optional[str] = None


@dataclass(frozen=True)
class Photo:
    data: bytes
    mime_type: str = "image/jpeg"


class DirectoryClient(ABC):
    """Capabilities the pipeline needs from the remote directory"""

    @abstractmethod
    async def exists(self, email: str) -> bool:
        """True if the user exists. Errors other than not-found raise."""

    @abstractmethod
    async def create_user(
        self,
        email: str,
        given_name: str,
        family_name: str,
        org_unit: Optional[str] = None,
    ) -> CreatedIdentity:
        """Create the user with a one-time password that must be changed at first login"""

    @abstractmethod
    async def delete_user(self, email: str) -> None:
        """Raises DirectoryError(NOT_FOUND) if the user does not exist"""

    @abstractmethod
    async def add_to_group(self, email: str, group_email: str) -> None:
        """Already being a member is not an error"""

    @abstractmethod
    async def upload_photo(self, email: str, data: bytes, mime_type: str) -> None:
        ...

    @abstractmethod
    async def fetch_photo(self, email: str) -> Photo:
        ...

    @abstractmethod
    async def send_mail(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        ...

    async def close(self) -> None:
        pass
