"""Input models for a safety query.

The engine receives these by value and never mutates them. A profile section
set to ``None`` means the caller did not provide it, which is different from an
empty list ("the patient has none") and is reported as an incomplete profile.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nutrisafe.clinical_types import ConfirmationSource, Severity

PROFILE_SECTIONS = ("medications", "conditions", "allergies")


class Medication(BaseModel):
    """A medication as entered by the user or pulled from their record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Annotated[str, Field(min_length=1)]
    dosage: str | None = None
    active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        if not v.strip():
            msg = "medication name must not be blank"
            raise ValueError(msg)
        return v.strip()


class Allergy(BaseModel):
    """A declared allergy. ``severity`` accepts the ``anaphylactic`` alias."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    allergen: Annotated[str, Field(min_length=1)]
    severity: Severity | None = None
    confirmation_source: ConfirmationSource = ConfirmationSource.UNKNOWN

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, v: Any) -> Severity | None:
        return Severity.parse(v) if v is not None else None


class ClinicalProfile(BaseModel):
    """Clinical context of the person the food is being checked for."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    profile_id: str = "anonymous"
    age: Annotated[int, Field(ge=0, le=130)] | None = None
    medications: list[Medication] | None = None
    conditions: list[str] | None = None
    allergies: list[Allergy] | None = None
    dietary_restrictions: list[str] = Field(default_factory=list)
    nutrient_limits: dict[str, Annotated[float, Field(gt=0)]] = Field(default_factory=dict)

    @field_validator("medications", mode="before")
    @classmethod
    def coerce_medications(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"name": m} if isinstance(m, str) else m for m in v]
        return v

    @field_validator("allergies", mode="before")
    @classmethod
    def coerce_allergies(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"allergen": a} if isinstance(a, str) else a for a in v]
        return v

    def missing_sections(self) -> list[str]:
        """Sections the caller did not provide at all."""
        return [name for name in PROFILE_SECTIONS if getattr(self, name) is None]

    @property
    def active_medications(self) -> list[Medication]:
        return [m for m in self.medications or [] if m.active]


class CandidateItem(BaseModel):
    """A food, ingredient list or recipe to check.

    A bare food can be given by ``name`` alone; its name is then used as its
    only ingredient.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    item_id: Annotated[str, Field(min_length=1)]
    name: str = ""
    ingredients: list[str] = Field(default_factory=list)
    may_contain: list[str] = Field(default_factory=list)
    nutrient_tags: list[str] = Field(default_factory=list)
    nutrients: dict[str, Annotated[float, Field(ge=0)]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        name = data.get("name") or ""
        if not data.get("item_id") and name:
            data["item_id"] = name.strip().lower().replace(" ", "-")
        if not data.get("ingredients") and name:
            data["ingredients"] = [name]
        return data

    @field_validator("ingredients", "may_contain", "nutrient_tags")
    @classmethod
    def drop_blank(cls, v: list[str]) -> list[str]:
        return [x.strip() for x in v if x.strip()]


def _new_query_id() -> str:
    return uuid.uuid4().hex[:12]


class SafetyQuery(BaseModel):
    """One evaluation request: a profile and the items to check against it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    query_id: str = Field(default_factory=_new_query_id)
    profile: ClinicalProfile
    items: list[CandidateItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_items(self) -> Self:
        ids = [item.item_id for item in self.items]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            msg = f"duplicate item_id values: {duplicates}"
            raise ValueError(msg)
        return self


__all__ = ["Medication", "Allergy", "ClinicalProfile", "CandidateItem", "SafetyQuery", "PROFILE_SECTIONS"]
