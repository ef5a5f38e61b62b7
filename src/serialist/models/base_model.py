# src/serialist/models/base_model.py
"""Shared Pydantic base model that tolerates loosely shaped model output."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class LenientEnum(StrEnum):
    """String enum that matches case-insensitively and falls back to a safe member."""

    @classmethod
    def fallback(cls) -> LenientEnum | None:
        return None

    @classmethod
    def _missing_(cls, value: object) -> LenientEnum | None:
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            for member in cls:
                if key in {member.value, member.name.lower()}:
                    return member
        return cls.fallback()


class SerialistBaseModel(BaseModel):
    """Base model for records parsed from model output or loaded from the store.

    Accepts camelCase or snake_case keys, ignores unknown keys, and coerces
    enum fields through :class:`LenientEnum` before validation.
    """

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        validate_assignment=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_enums(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        for name, field in cls.model_fields.items():
            annotation = field.annotation
            if not (isinstance(annotation, type) and issubclass(annotation, LenientEnum)):
                continue
            for key in (name, field.alias):
                value = data.get(key) if key else None
                if value is None:
                    continue
                member = annotation(value) if isinstance(value, str) else None
                if member is not None:
                    data = {**data, key: member}
        return data


__all__ = ["LenientEnum", "SerialistBaseModel"]
