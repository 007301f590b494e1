from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from .models import FieldError, StartupProfile


@dataclass
class ProfileValidation:
    profile: Optional[StartupProfile] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.profile is not None and not self.errors


def _error_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "body"


def validate_profile(payload: Any) -> ProfileValidation:
    """Validate an inbound profile body.

    Returns the normalized profile, or the field-level errors. Bad input never
    raises. Unknown keys, non-numeric numbers and more than five top investors
    are rejected. An empty object is a valid (empty) profile.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return ProfileValidation(
            errors=[FieldError(path="body", message="Profile must be a JSON object.", type="object_type")]
        )

    try:
        profile = StartupProfile.model_validate(payload)
    except ValidationError as exc:
        return ProfileValidation(
            errors=[
                FieldError(path=_error_path(err["loc"]), message=err["msg"], type=err["type"])
                for err in exc.errors()
            ]
        )
    return ProfileValidation(profile=profile)


def _column_value(value: Any) -> Any:
    if isinstance(value, list):
        return [
            item.model_dump(by_alias=True) if isinstance(item, BaseModel) else item
            for item in value
        ]
    return value


def profile_columns(profile: StartupProfile) -> Dict[str, Any]:
    """Storage columns for the fields the submitter actually sent.

    Nested records (founders, metrics) are kept in their camelCase wire shape.
    """
    return {name: _column_value(getattr(profile, name)) for name in profile.model_fields_set}


def profile_for_prompt(profile: StartupProfile) -> Dict[str, Any]:
    return profile.model_dump(mode="json", by_alias=True, exclude_unset=True)
