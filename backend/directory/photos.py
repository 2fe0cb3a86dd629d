"""
Avatar handling.

Avatars travel as data URLs (``data:image/png;base64,...``). On registration
and profile edits the image is uploaded to the directory and the directory's
processed copy is read back and stored, since the directory may crop or
transcode it. When either call fails the original image is kept.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .client import DirectoryClient, DirectoryError, Photo

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/bmp")

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class InvalidAvatarError(ValueError):
    pass


def parse_data_url(value: str, max_bytes: Optional[int] = None) -> Photo:
    """
    Decode a base64 data URL into a Photo.

    Raises:
        InvalidAvatarError: not a data URL, unsupported type, bad base64,
            or larger than ``max_bytes``
    """
    match = DATA_URL_PATTERN.match((value or "").strip())
    if not match:
        raise InvalidAvatarError("Avatar must be a base64 data URL")

    mime_type = match.group("mime").lower()
    if mime_type == "image/jpg":
        mime_type = "image/jpeg"
    if mime_type not in ALLOWED_MIME_TYPES:
        raise InvalidAvatarError(f"Unsupported avatar type: {mime_type}")

    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidAvatarError("Avatar is not valid base64")

    if not data:
        raise InvalidAvatarError("Avatar is empty")
    if max_bytes is not None and len(data) > max_bytes:
        raise InvalidAvatarError(f"Avatar exceeds {max_bytes} bytes")

    return Photo(data=data, mime_type=mime_type)


def to_data_url(photo: Photo) -> str:
    return f"data:{photo.mime_type};base64,{base64.b64encode(photo.data).decode('ascii')}"


@dataclass
class PhotoSyncResult:
    avatar: str  # data URL to store
    synced: bool  # True when ``avatar`` is the directory's processed copy
    error: Optional[str] = None
    stage: Optional[str] = None  # "upload" or "fetch" when not synced


async def sync_photo(client: DirectoryClient, email: str, data_url: str, photo: Optional[Photo] = None) -> PhotoSyncResult:
    """
    Upload an avatar and read back the processed copy.

    Never raises for directory failures; falls back to the supplied image.
    """
    photo = photo or parse_data_url(data_url)

    try:
        await client.upload_photo(email, photo.data, photo.mime_type)
    except DirectoryError as e:
        logger.warning(f"Photo upload failed for {email}: {e.message}")
        return PhotoSyncResult(avatar=data_url, synced=False, error=e.code.value, stage="upload")

    try:
        processed = await client.fetch_photo(email)
    except DirectoryError as e:
        logger.warning(f"Photo fetch failed for {email}: {e.message}")
        return PhotoSyncResult(avatar=data_url, synced=False, error=e.code.value, stage="fetch")

    return PhotoSyncResult(avatar=to_data_url(processed), synced=True)
