"""
Per-type community rules.

Each typed community kind is described by one CommunityTypeRule: which member
attribute feeds it, how that value becomes the community's distinguishing
attributes, how those attributes are matched, how an auto-created community is
named, and which canonical values are copied back onto the member after a join.
Adding a community type means adding a row to COMMUNITY_TYPE_RULES.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Mapping

from sqlalchemy import func

from community_hub.features.communities.models import Community, CommunityType, Month
from community_hub.features.members.models import Gender
from community_hub.utils import format_readable_label


GENDER_LABELS = {
    Gender.MALE: "Men's",
    Gender.FEMALE: "Women's",
}

# Columns compared case-insensitively
CASE_INSENSITIVE_FIELDS = frozenset({"location", "country"})


def month_from_date(value: Any) -> Month | None:
    """Calendar month of a date, datetime or ISO date string; None if it cannot be read."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return None
    if not isinstance(value, (date, datetime)):
        return None
    return list(Month)[value.month - 1]


def normalize_profession(value: str | None) -> str | None:
    """'software engineer' -> 'SOFTWARE_ENGINEER'"""
    if value is None:
        return None
    words = value.replace("-", " ").replace("_", " ").split()
    return "_".join(word.upper() for word in words) or None


def normalize_gender(value: Any) -> Gender | None:
    if value is None:
        return None
    if isinstance(value, Gender):
        return value
    try:
        return Gender(str(value).strip().upper())
    except ValueError:
        return None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class CommunityTypeRule:
    community_type: CommunityType
    # Distinguishing community columns; the first one is required
    fields: tuple[str, ...]
    # Member attributes whose change triggers a re-sync of this kind
    member_fields: tuple[str, ...]
    extract: Callable[[Mapping[str, Any]], dict[str, Any] | None]
    build_name: Callable[[Mapping[str, Any]], str]
    # Member fields overwritten with the community's canonical value after a join
    canonical_fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        """Lower-case tag used in step names and messages ("cell", "tribe", ...)."""
        return self.community_type.value.lower()

    @property
    def trigger(self) -> str:
        return self.member_fields[0]

    def attributes(self, values: Mapping[str, Any]) -> dict[str, Any] | None:
        """Distinguishing attributes for ``values`` (member-side keys), or None when absent or invalid."""
        if values.get(self.trigger) is None:
            return None
        return self.extract(values)

    def community_attributes(self, community: Community) -> dict[str, Any]:
        return {name: getattr(community, name) for name in self.fields}

    def unique_criteria(self, attrs: Mapping[str, Any], partial: bool = False) -> list[Any]:
        """
        WHERE clauses matching the community identified by ``attrs``.

        With ``partial`` a missing optional key is not constrained (lookup by
        the attributes we know); otherwise it must be NULL (creation-time
        uniqueness).
        """
        clauses = []
        for name in self.fields:
            column = getattr(Community, name)
            value = attrs.get(name)
            if value is None:
                if not partial:
                    clauses.append(column.is_(None))
                continue
            if name in CASE_INSENSITIVE_FIELDS:
                clauses.append(func.lower(column) == str(value).lower())
            else:
                clauses.append(column == value)
        return clauses

    def from_community_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Distinguishing attributes taken from community-side values (a create/update payload)."""
        normalizers = {
            "location": _clean,
            "country": _clean,
            "month": lambda v: Month(v) if v is not None else None,
            "profession": lambda v: normalize_profession(_clean(v)),
            "gender": normalize_gender,
        }
        return {name: normalizers[name](values.get(name)) for name in self.fields}

    def canonical_patch(self, community: Community) -> dict[str, Any]:
        patch = {}
        for member_field, community_field in self.canonical_fields.items():
            value = getattr(community, community_field)
            if value is not None:
                patch[member_field] = value
        return patch


def _cell_attributes(values: Mapping[str, Any]) -> dict[str, Any] | None:
    location = _clean(values.get("location"))
    if location is None:
        return None
    return {"location": location, "country": _clean(values.get("country"))}


def _tribe_attributes(values: Mapping[str, Any]) -> dict[str, Any] | None:
    month = month_from_date(values.get("date_of_birth"))
    return {"month": month} if month else None


def _profession_attributes(values: Mapping[str, Any]) -> dict[str, Any] | None:
    profession = normalize_profession(_clean(values.get("profession")))
    return {"profession": profession} if profession else None


def _ministry_attributes(values: Mapping[str, Any]) -> dict[str, Any] | None:
    gender = normalize_gender(values.get("gender"))
    return {"gender": gender} if gender else None


COMMUNITY_TYPE_RULES: dict[CommunityType, CommunityTypeRule] = {
    CommunityType.CELL: CommunityTypeRule(
        community_type=CommunityType.CELL,
        fields=("location", "country"),
        member_fields=("location", "country"),
        extract=_cell_attributes,
        build_name=lambda attrs: f"{format_readable_label(attrs['location'])} cell community",
        canonical_fields={"location": "location", "country": "country"},
    ),
    CommunityType.TRIBE: CommunityTypeRule(
        community_type=CommunityType.TRIBE,
        fields=("month",),
        member_fields=("date_of_birth",),
        extract=_tribe_attributes,
        build_name=lambda attrs: f"{format_readable_label(Month(attrs['month']).value)} tribe community",
    ),
    CommunityType.PROFESSION: CommunityTypeRule(
        community_type=CommunityType.PROFESSION,
        fields=("profession",),
        member_fields=("profession",),
        extract=_profession_attributes,
        build_name=lambda attrs: f"{format_readable_label(attrs['profession'])} profession community",
        canonical_fields={"profession": "profession"},
    ),
    CommunityType.MINISTRY: CommunityTypeRule(
        community_type=CommunityType.MINISTRY,
        fields=("gender",),
        member_fields=("gender",),
        extract=_ministry_attributes,
        build_name=lambda attrs: f"{GENDER_LABELS[Gender(attrs['gender'])]} Ministry Community",
        canonical_fields={"gender": "gender"},
    ),
}

# All columns that carry a type-specific attribute; nulled when they don't apply
TYPE_SPECIFIC_FIELDS = ("location", "country", "month", "profession", "gender")


def rule_for(community_type: CommunityType) -> CommunityTypeRule | None:
    return COMMUNITY_TYPE_RULES.get(community_type)
