from .client import (
    DirectoryClient,
    DirectoryError,
    DirectoryErrorCode,
    DirectoryNotConfiguredError,
    CreatedIdentity,
    Photo,
)
from .naming import WorkspaceName, format_workspace_name, generate_temp_password
from .photos import InvalidAvatarError, PhotoSyncResult, parse_data_url, to_data_url, sync_photo

__all__ = [
    'DirectoryClient',
    'DirectoryError',
    'DirectoryErrorCode',
    'DirectoryNotConfiguredError',
    'CreatedIdentity',
    'Photo',
    'WorkspaceName',
    'format_workspace_name',
    'generate_temp_password',
    'InvalidAvatarError',
    'PhotoSyncResult',
    'parse_data_url',
    'to_data_url',
    'sync_photo',
]
