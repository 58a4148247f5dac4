# catalog/validators.py
"""
Submission validation, one validator per requirement kind.

Payloads arrive as plain dicts from the API. `parse_payload` turns them into the
tagged submission type for the requirement's kind, the matching validator checks
it against the requirement's rules and returns the normalized dict that the record
store persists. Nothing in here touches the database.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.conf import settings
from django.utils.dateparse import parse_date, parse_datetime

from core.errors import (
    FieldError,
    ValidationFailed,
    INSUFFICIENT_EVIDENCE,
    INVALID_PAYLOAD,
    MISSING_EVIDENCE,
    MISSING_FIELD,
    SCORE_BELOW_MINIMUM,
    SIZE_EXCEEDED,
    TOO_MANY_FILES,
    TYPE_NOT_ALLOWED,
)
from .models import RequirementDefinition
from .rules import ValidationRules

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

Kind = RequirementDefinition.Kind


# ---------------------------------------------------------------------------
# Tagged submission payloads
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EvidenceFile:
    """Metadata for a file already stored by the evidence service."""
    reference: str
    name: str
    size: int
    type: str = ""


@dataclass(frozen=True)
class FormSubmission:
    fields: Dict[str, Any]
    kind: str = Kind.FORM


@dataclass(frozen=True)
class FileUploadSubmission:
    files: Tuple[EvidenceFile, ...]
    notes: str = ""
    kind: str = Kind.FILE_UPLOAD


@dataclass(frozen=True)
class ExternalLinkSubmission:
    score: Any = None
    completion_code: str = ""
    url: str = ""
    completed_at: Any = None
    notes: str = ""
    kind: str = Kind.EXTERNAL_LINK


def _invalid(field: str, message: str) -> ValidationFailed:
    return ValidationFailed([FieldError(field, INVALID_PAYLOAD, message)])


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _parse_form(raw: Dict[str, Any]) -> FormSubmission:
    fields = raw.get("fields")
    if fields is None:
        fields = raw
    if not isinstance(fields, dict):
        raise _invalid("fields", "Form fields must be an object.")
    return FormSubmission(fields=dict(fields))


def _parse_file_upload(raw: Dict[str, Any]) -> FileUploadSubmission:
    files = raw.get("files") or []
    if not isinstance(files, list):
        raise _invalid("files", "Files must be a list.")
    parsed = []
    for i, item in enumerate(files):
        if not isinstance(item, dict):
            raise _invalid(f"files[{i}]", "Each file must be an object.")
        size = item.get("size")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise _invalid(f"files[{i}].size", "File size must be a non-negative integer.")
        # "id"/"url" are what the evidence service hands back
        reference = _text(item.get("reference") or item.get("id") or item.get("url"))
        if not reference:
            raise _invalid(f"files[{i}].reference", "File reference is required.")
        parsed.append(
            EvidenceFile(
                reference=reference,
                name=_text(item.get("name")),
                size=size,
                type=_text(item.get("type")),
            )
        )
    return FileUploadSubmission(files=tuple(parsed), notes=_text(raw.get("notes")))


def _parse_external_link(raw: Dict[str, Any]) -> ExternalLinkSubmission:
    return ExternalLinkSubmission(
        score=raw.get("score"),
        completion_code=_text(raw.get("completion_code") or raw.get("certificate_id")),
        url=_text(raw.get("url")),
        completed_at=raw.get("completed_at"),
        notes=_text(raw.get("notes")),
    )


_PARSERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    Kind.FORM: _parse_form,
    Kind.FILE_UPLOAD: _parse_file_upload,
    Kind.EXTERNAL_LINK: _parse_external_link,
}


def parse_payload(kind: str, raw: Any):
    if not isinstance(raw, dict):
        raise _invalid("payload", "Submission payload must be an object.")
    try:
        parser = _PARSERS[kind]
    except KeyError:
        raise _invalid("kind", f"Unknown requirement kind '{kind}'.") from None
    return parser(raw)


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------
def coerce_number(value) -> Optional[float]:
    """Numeric value or None when it cannot be read as a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return int(number) if number.is_integer() else number


def coerce_iso_date(value) -> Optional[str]:
    """ISO 8601 string for a date/datetime or a parseable string; None if unreadable."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        try:
            # date-only first: parse_datetime would widen "2025-01-31" to midnight
            parsed_date = parse_date(text)
            if parsed_date is not None:
                return parsed_date.isoformat()
            parsed = parse_datetime(text)
            if parsed is not None:
                return parsed.isoformat()
        except ValueError:
            return None
    return None


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def default_max_file_size() -> int:
    return getattr(settings, "COMPLIANCE", {}).get("DEFAULT_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE)


def _file_type(value: str) -> str:
    """Reduce a MIME type or extension to its bare form: application/pdf and .PDF give pdf."""
    return value.strip().lower().split("/")[-1].lstrip(".")


def _type_allowed(f: EvidenceFile, allowed: Tuple[str, ...]) -> bool:
    # fall back to the file name's extension when no type was declared
    declared = _file_type(f.type) or (_file_type(f.name.rsplit(".", 1)[-1]) if "." in f.name else "")
    if not declared:
        return False
    return declared in {_file_type(a) for a in allowed}


# ---------------------------------------------------------------------------
# Validators (one per kind)
# ---------------------------------------------------------------------------
def validate_form(submission: FormSubmission, rules: ValidationRules) -> Dict[str, Any]:
    errors: List[FieldError] = []
    values = dict(submission.fields)

    for f in rules.required_form_fields:
        value = values.get(f.name)
        if _is_empty(value) or (f.type == "checkbox" and value is False):
            errors.append(FieldError(f.name, MISSING_FIELD, f"{f.display_name} is required."))

    for f in rules.form_fields:
        value = values.get(f.name)
        if _is_empty(value):
            continue
        if f.type == "date":
            iso = coerce_iso_date(value)
            if iso is None:
                errors.append(FieldError(f.name, INVALID_PAYLOAD, f"{f.display_name} must be a date."))
            else:
                values[f.name] = iso
        elif f.type == "number":
            number = coerce_number(value)
            if number is None:
                errors.append(FieldError(f.name, INVALID_PAYLOAD, f"{f.display_name} must be a number."))
            else:
                values[f.name] = number

    if errors:
        raise ValidationFailed(errors)
    return {"kind": Kind.FORM.value, "fields": values}


def _file_problems(index: int, f: EvidenceFile, rules: ValidationRules, max_size: int) -> List[FieldError]:
    label = f.name or f.reference
    problems = []
    if f.size > max_size:
        problems.append(
            FieldError(f"files[{index}]", SIZE_EXCEEDED, f"{label} exceeds the {max_size} byte limit.")
        )
    if rules.file_types and not _type_allowed(f, rules.file_types):
        problems.append(
            FieldError(f"files[{index}]", TYPE_NOT_ALLOWED, f"{label} is not an allowed file type.")
        )
    return problems


def validate_file_upload(submission: FileUploadSubmission, rules: ValidationRules) -> Dict[str, Any]:
    """
    Files are judged one at a time: violating files are dropped and reported
    under "rejected_files", the rest are kept. The submission only fails when
    nothing is left to keep.
    """
    if not submission.files:
        raise ValidationFailed(
            [FieldError("files", INSUFFICIENT_EVIDENCE, "At least one file must be uploaded.")]
        )

    max_size = rules.max_file_size or default_max_file_size()
    accepted: List[EvidenceFile] = []
    rejected: List[FieldError] = []
    for i, f in enumerate(submission.files):
        problems = _file_problems(i, f, rules, max_size)
        if problems:
            rejected.extend(problems)
        else:
            accepted.append(f)

    if not accepted:
        raise ValidationFailed(
            [FieldError("files", INSUFFICIENT_EVIDENCE, "None of the uploaded files could be accepted.")]
            + rejected
        )
    if rules.max_files and len(accepted) > rules.max_files:
        raise ValidationFailed(
            [FieldError("files", TOO_MANY_FILES, f"At most {rules.max_files} file(s) may be uploaded.")]
        )

    return {
        "kind": Kind.FILE_UPLOAD.value,
        "files": [
            {"reference": f.reference, "name": f.name, "size": f.size, "type": f.type}
            for f in accepted
        ],
        "rejected_files": [
            {"field": e.field, "cause": e.cause, "message": e.message} for e in rejected
        ],
        "notes": submission.notes,
    }


def validate_external_link(submission: ExternalLinkSubmission, rules: ValidationRules) -> Dict[str, Any]:
    errors: List[FieldError] = []
    score = coerce_number(submission.score)

    if rules.min_score is not None and (score is None or score < rules.min_score):
        min_display = coerce_number(rules.min_score)
        errors.append(
            FieldError("score", SCORE_BELOW_MINIMUM, f"Minimum score of {min_display} required.")
        )
    if rules.completion_evidence_required and not submission.completion_code:
        errors.append(
            FieldError(
                "completion_code", MISSING_EVIDENCE, "A completion code or certificate id is required."
            )
        )

    completed_at = None
    if not _is_empty(submission.completed_at):
        completed_at = coerce_iso_date(submission.completed_at)
        if completed_at is None:
            errors.append(FieldError("completed_at", INVALID_PAYLOAD, "completed_at must be a date."))

    if errors:
        raise ValidationFailed(errors)

    return {
        "kind": Kind.EXTERNAL_LINK.value,
        "score": score,
        "completion_code": submission.completion_code,
        "url": submission.url,
        "completed_at": completed_at,
        "notes": submission.notes,
    }


VALIDATORS: Dict[str, Callable[[Any, ValidationRules], Dict[str, Any]]] = {
    Kind.FORM: validate_form,
    Kind.FILE_UPLOAD: validate_file_upload,
    Kind.EXTERNAL_LINK: validate_external_link,
}


def validate_submission(requirement: RequirementDefinition, payload: Any) -> Dict[str, Any]:
    """
    Accept or reject `payload` for `requirement`.
    Returns the normalized payload; raises ValidationFailed otherwise.
    """
    submission = parse_payload(requirement.kind, payload)
    try:
        rules = requirement.rules
    except ValueError as e:
        # a definition with broken rules cannot accept evidence
        raise _invalid("validation_rules", str(e)) from e
    return VALIDATORS[requirement.kind](submission, rules)
