"""
Google Workspace Directory Client

Implements DirectoryClient against:
- Admin SDK Directory API v1 (users, group members, user photos)
- Gmail API v1 users.messages.send (welcome notifications)

Authentication: a service account with domain-wide delegation, impersonating
GOOGLE_ADMIN_EMAIL. The key is read from GOOGLE_SERVICE_ACCOUNT_KEY as
base64-encoded JSON.

Environment:
- GOOGLE_SERVICE_ACCOUNT_KEY: base64 service account JSON
- GOOGLE_ADMIN_EMAIL: Workspace admin to impersonate
- GOOGLE_API_TIMEOUT: request timeout in seconds
"""

import asyncio
import base64
import binascii
import json
import logging
from email.message import EmailMessage
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from config import Settings
from .client import (
    CreatedIdentity,
    DirectoryClient,
    DirectoryError,
    DirectoryErrorCode,
    DirectoryNotConfiguredError,
    Photo,
)
from .naming import generate_temp_password

logger = logging.getLogger(__name__)

DIRECTORY_API_BASE = "https://admin.googleapis.com/admin/directory/v1"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"

SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.user",
    "https://www.googleapis.com/auth/admin.directory.group",
    "https://www.googleapis.com/auth/admin.directory.group.member",
    "https://www.googleapis.com/auth/gmail.send",
]

# Directory photo API uses its own mime type names
PHOTO_MIME_TYPES = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
}

INVALID_ORG_UNIT_MARKERS = ("invalid ou id", "org unit", "orgunit")


def _user_path(email: str) -> str:
    return f"{DIRECTORY_API_BASE}/users/{quote(email, safe='@')}"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error or payload)[:200]


def map_http_error(response: httpx.Response) -> DirectoryError:
    """Translate a non-2xx Google API response into a DirectoryError"""
    message = _error_message(response)
    status = response.status_code

    if status == 404:
        code = DirectoryErrorCode.NOT_FOUND
    elif status == 409:
        code = DirectoryErrorCode.CONFLICT
    elif status in (400, 412):
        lowered = message.lower()
        if any(marker in lowered for marker in INVALID_ORG_UNIT_MARKERS):
            code = DirectoryErrorCode.INVALID_ORG_UNIT
        else:
            code = DirectoryErrorCode.BAD_REQUEST
    else:
        code = DirectoryErrorCode.UPSTREAM

    return DirectoryError(code, message, status_code=status)


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    """Decoded JSON object of a 2xx response; anything else is an upstream error"""
    try:
        payload = response.json()
    except ValueError:
        raise DirectoryError(
            DirectoryErrorCode.UPSTREAM,
            f"Malformed response: {response.text[:200]}",
            status_code=response.status_code,
        )
    if not isinstance(payload, dict):
        raise DirectoryError(DirectoryErrorCode.UPSTREAM, "Malformed response", status_code=response.status_code)
    return payload


def _urlsafe_b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


class GoogleWorkspaceClient(DirectoryClient):
    """
    Google Workspace implementation of DirectoryClient.

    Usage:
        client = GoogleWorkspaceClient.from_settings(get_settings())
        identity = await client.create_user("cb.dvictoria@awscommunity.mx", "David", "Victoria (Community Builder)")

    ``credentials`` is any google-auth credentials object (``valid``,
    ``token``, ``refresh(request)``). ``http_client`` may be injected, e.g.
    with an httpx.MockTransport in tests.
    """

    def __init__(
        self,
        credentials,
        admin_email: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        temp_password_length: int = 16,
    ):
        self.credentials = credentials
        self.admin_email = admin_email
        self.http = http_client or httpx.AsyncClient(timeout=timeout)
        self.temp_password_length = temp_password_length
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleWorkspaceClient":
        if not settings.GOOGLE_SERVICE_ACCOUNT_KEY or not settings.GOOGLE_ADMIN_EMAIL:
            raise DirectoryNotConfiguredError()

        try:
            info = json.loads(base64.b64decode(settings.GOOGLE_SERVICE_ACCOUNT_KEY).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise DirectoryNotConfiguredError(f"GOOGLE_SERVICE_ACCOUNT_KEY is not base64 JSON: {e}")

        try:
            credentials = service_account.Credentials.from_service_account_info(
                info,
                scopes=SCOPES,
                subject=settings.GOOGLE_ADMIN_EMAIL,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DirectoryNotConfiguredError(f"GOOGLE_SERVICE_ACCOUNT_KEY is not a service account key: {e}")

        return cls(
            credentials,
            admin_email=settings.GOOGLE_ADMIN_EMAIL,
            timeout=settings.GOOGLE_API_TIMEOUT,
            temp_password_length=settings.TEMP_PASSWORD_LENGTH,
        )

    # ==================== TRANSPORT ====================

    async def _access_token(self) -> str:
        async with self._token_lock:
            if not self.credentials.valid:
                # google-auth refresh is blocking
                await asyncio.to_thread(self.credentials.refresh, GoogleAuthRequest())
            return self.credentials.token

    async def _request(self, method: str, url: str, json_body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            token = await self._access_token()
        except Exception as e:
            logger.error(f"Google credential refresh failed: {e}")
            raise DirectoryError(DirectoryErrorCode.UPSTREAM, f"Credential refresh failed: {e}")

        try:
            response = await self.http.request(
                method,
                url,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Google API {method} {url} failed: {e}")
            raise DirectoryError(DirectoryErrorCode.UPSTREAM, str(e))

        if response.status_code >= 400:
            raise map_http_error(response)
        return response

    # ==================== USERS ====================

    async def exists(self, email: str) -> bool:
        try:
            await self._request("GET", f"{_user_path(email)}?fields=id")
        except DirectoryError as e:
            if e.code == DirectoryErrorCode.NOT_FOUND:
                return False
            raise
        return True

    async def create_user(
        self,
        email: str,
        given_name: str,
        family_name: str,
        org_unit: Optional[str] = None,
    ) -> CreatedIdentity:
        temp_password = generate_temp_password(self.temp_password_length)
        body: Dict[str, Any] = {
            "primaryEmail": email,
            "name": {"givenName": given_name, "familyName": family_name},
            "password": temp_password,
            "changePasswordAtNextLogin": True,
        }
        if org_unit:
            body["orgUnitPath"] = org_unit

        response = await self._request("POST", f"{DIRECTORY_API_BASE}/users", body)
        try:
            provider_id = _json_body(response).get("id")
        except DirectoryError as e:
            # The user exists at this point; the id is informational only
            logger.warning(f"Created {email} but could not read the user id: {e.message}")
            provider_id = None
        logger.info(f"Created Workspace user {email}")
        return CreatedIdentity(email=email, temp_password=temp_password, provider_id=provider_id)

    async def delete_user(self, email: str) -> None:
        await self._request("DELETE", _user_path(email))
        logger.info(f"Deleted Workspace user {email}")

    # ==================== GROUPS ====================

    async def add_to_group(self, email: str, group_email: str) -> None:
        try:
            await self._request(
                "POST",
                f"{DIRECTORY_API_BASE}/groups/{quote(group_email, safe='@')}/members",
                {"email": email, "role": "MEMBER"},
            )
        except DirectoryError as e:
            if e.code == DirectoryErrorCode.CONFLICT:
                # Already a member
                return
            raise

    # ==================== PHOTOS ====================

    async def upload_photo(self, email: str, data: bytes, mime_type: str) -> None:
        body = {
            "photoData": base64.urlsafe_b64encode(data).decode("ascii"),
            "mimeType": PHOTO_MIME_TYPES.get(mime_type, "JPEG"),
        }
        await self._request("PUT", f"{_user_path(email)}/photos/thumbnail", body)

    async def fetch_photo(self, email: str) -> Photo:
        response = await self._request("GET", f"{_user_path(email)}/photos/thumbnail")
        payload = _json_body(response)
        photo_data = payload.get("photoData")
        if not photo_data:
            raise DirectoryError(DirectoryErrorCode.NOT_FOUND, "No photo data returned")

        try:
            data = _urlsafe_b64decode(photo_data)
        except (binascii.Error, TypeError, ValueError):
            raise DirectoryError(DirectoryErrorCode.UPSTREAM, "Photo data is not valid base64")

        mime_type = (payload.get("mimeType") or "image/jpeg").lower()
        if "/" not in mime_type:
            mime_type = f"image/{mime_type}"
        return Photo(data=data, mime_type=mime_type)

    # ==================== MAIL ====================

    async def send_mail(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        message = EmailMessage()
        message["From"] = self.admin_email
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        if html:
            message.add_alternative(html, subtype="html")

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")
        await self._request("POST", f"{GMAIL_API_BASE}/users/me/messages/send", {"raw": raw})
        logger.info(f"Sent mail to {to}")

    async def close(self) -> None:
        await self.http.aclose()
