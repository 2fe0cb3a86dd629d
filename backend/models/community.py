"""
Community type table.

Each community type has its own address prefix, Workspace group, optional
organizational unit and display-name convention. Organization-type
communities pick their local-part by hand; person-type communities get one
derived from the member's name.
"""

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional

from .enums import CommunityKind, CommunityType


@dataclass(frozen=True)
class CommunityProfile:
    type: CommunityType
    kind: CommunityKind
    prefix: str
    label: str
    group_email: Optional[str] = None
    org_unit: Optional[str] = None
    # Organization types: "{label} {name}" style given name, with this suffix as family name.
    # Person types: appended to the family name in parentheses.
    name_template: str = "{name}"
    name_annotation: str = ""

    @property
    def is_person(self) -> bool:
        return self.kind == CommunityKind.person

    @property
    def is_organization(self) -> bool:
        return self.kind == CommunityKind.organization


DEFAULT_COMMUNITIES: Dict[CommunityType, CommunityProfile] = {
    CommunityType.cc: CommunityProfile(
        type=CommunityType.cc,
        kind=CommunityKind.organization,
        prefix="cc.",
        label="AWS Cloud Club",
        group_email="cloudclubs@awscommunity.mx",
        name_template="AWS Cloud Club at {name}",
        name_annotation="(México)",
    ),
    CommunityType.ug: CommunityProfile(
        type=CommunityType.ug,
        kind=CommunityKind.organization,
        prefix="ug.",
        label="AWS User Group",
        group_email="usergroups@awscommunity.mx",
        name_template="AWS User Group {name}",
        name_annotation="(México)",
    ),
    CommunityType.cb: CommunityProfile(
        type=CommunityType.cb,
        kind=CommunityKind.person,
        prefix="cb.",
        label="Community Builder",
        group_email="communitybuilders@awscommunity.mx",
        name_annotation="Community Builder",
    ),
    CommunityType.hero: CommunityProfile(
        type=CommunityType.hero,
        kind=CommunityKind.person,
        prefix="hero.",
        label="AWS Hero",
        group_email="heroes@awscommunity.mx",
        name_annotation="AWS Hero",
    ),
}

_OVERRIDABLE = ("prefix", "label", "group_email", "org_unit", "name_template", "name_annotation")


def apply_overrides(
    base: Mapping[CommunityType, CommunityProfile],
    overrides: Mapping[str, Mapping[str, str]],
) -> Dict[CommunityType, CommunityProfile]:
    """
    Return a copy of ``base`` with per-type overrides applied.

    Empty strings clear optional fields (``group_email``, ``org_unit``).
    Unknown keys raise ValueError.
    """
    result = dict(base)
    for type_name, values in (overrides or {}).items():
        community_type = CommunityType(type_name)
        unknown = set(values) - set(_OVERRIDABLE)
        if unknown:
            raise ValueError(f"Unknown community override keys for {type_name}: {sorted(unknown)}")
        changes = {
            key: (value or None) if key in ("group_email", "org_unit") else value
            for key, value in values.items()
        }
        result[community_type] = replace(result[community_type], **changes)
    return result
