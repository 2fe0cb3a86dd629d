"""
Directory naming conventions and one-time passwords.

Organization types:  given "AWS User Group {name}", family "(México)"
Person types:        given "{first}", family "{last} (AWS Hero)"
"""

import secrets
import string
from dataclasses import dataclass
from typing import Optional

from models.community import CommunityProfile

TEMP_PASSWORD_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits + "!@#$%^&*"


@dataclass(frozen=True)
class WorkspaceName:
    given_name: str
    family_name: str
    display_name: str


def format_workspace_name(
    profile: CommunityProfile,
    primary_name: str,
    secondary_name: Optional[str] = None,
) -> WorkspaceName:
    """Deterministic directory name for (community type, primary, secondary)"""
    primary_name = (primary_name or "").strip()
    secondary_name = (secondary_name or "").strip()

    if profile.is_organization:
        given = profile.name_template.format(name=primary_name)
        family = profile.name_annotation
    else:
        given = primary_name
        family = f"{secondary_name} ({profile.name_annotation})" if profile.name_annotation else secondary_name

    return WorkspaceName(
        given_name=given,
        family_name=family,
        display_name=f"{given} {family}".strip(),
    )


def generate_temp_password(length: int = 16) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_CHARSET) for _ in range(length))
