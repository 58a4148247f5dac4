# catalog/rules.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

FIELD_TYPES = {"text", "textarea", "number", "date", "select", "checkbox", "email", "url"}


@dataclass(frozen=True)
class FormField:
    name: str
    label: str = ""
    required: bool = False
    type: str = "text"

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass(frozen=True)
class ValidationRules:
    """
    Kind-specific rules stored in RequirementDefinition.validation_rules.
    Unset values mean "no constraint"; max_file_size falls back to the
    COMPLIANCE["DEFAULT_MAX_FILE_SIZE"] setting at validation time.
    """
    min_score: Optional[float] = None
    completion_evidence_required: bool = False
    file_types: Tuple[str, ...] = ()
    max_file_size: Optional[int] = None
    max_files: Optional[int] = None
    form_fields: Tuple[FormField, ...] = ()
    required_fields: Tuple[str, ...] = ()

    @property
    def required_form_fields(self) -> Tuple[FormField, ...]:
        required = [f for f in self.form_fields if f.required]
        known = {f.name for f in required}
        # legacy flat list of names
        required += [FormField(name=n, required=True) for n in self.required_fields if n not in known]
        return tuple(required)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "ValidationRules":
        """Parse stored JSON; raises ValueError on malformed rules."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("validation_rules must be an object.")

        min_score = data.get("min_score")
        if min_score is not None:
            min_score = _number(min_score, "min_score")

        max_file_size = data.get("max_file_size")
        if max_file_size is not None:
            max_file_size = _positive_int(max_file_size, "max_file_size")

        max_files = data.get("max_files")
        if max_files is not None:
            max_files = _positive_int(max_files, "max_files")

        file_types = data.get("file_types") or []
        if not isinstance(file_types, (list, tuple)):
            raise ValueError("file_types must be a list.")

        form_fields = []
        for raw in data.get("form_fields") or []:
            if not isinstance(raw, dict):
                raise ValueError("form_fields entries must be objects.")
            # "id" is the older key for the field name
            name = raw.get("name") or raw.get("id")
            if not name:
                raise ValueError("form_fields entries need a name.")
            ftype = raw.get("type") or "text"
            if ftype not in FIELD_TYPES:
                raise ValueError(f"Unknown form field type '{ftype}'.")
            form_fields.append(
                FormField(
                    name=str(name),
                    label=str(raw.get("label") or ""),
                    required=bool(raw.get("required", False)),
                    type=ftype,
                )
            )

        required_fields = data.get("required_fields") or []
        if not isinstance(required_fields, (list, tuple)):
            raise ValueError("required_fields must be a list.")

        return cls(
            min_score=min_score,
            completion_evidence_required=bool(data.get("completion_evidence_required", False)),
            file_types=tuple(str(t).lower().lstrip(".") for t in file_types),
            max_file_size=max_file_size,
            max_files=max_files,
            form_fields=tuple(form_fields),
            required_fields=tuple(str(n) for n in required_fields),
        )


def _number(value, name):
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number.")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number.") from None


def _positive_int(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return value
