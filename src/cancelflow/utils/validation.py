"""Input sanitization and per-step answer validation.

Every free-text answer passes through ``sanitize_string`` before the flow
controller hands it to a store. Rejections raise ``InputRejected`` so the
submitting step can re-prompt with the message; nothing is truncated.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from cancelflow.utils.exceptions import InputRejected

_HTML_ENTITIES = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}

ROLES_APPLIED_CHOICES = ("0", "1 - 5", "6 - 20", "20+")
COMPANIES_EMAILED_CHOICES = ("0", "1-5", "6-20", "20+")
COMPANIES_INTERVIEWED_CHOICES = ("0", "1-2", "3-5", "5+")

TOO_EXPENSIVE = "Too expensive"
CANCELLATION_REASONS = (
    TOO_EXPENSIVE,
    "Platform not helpful",
    "Not enough relevant jobs",
    "Decided not to move",
    "Other",
)

FEEDBACK_MAX_LENGTH = 2000
REASON_DETAILS_MIN_LENGTH = 25
REASON_DETAILS_MAX_LENGTH = 500
PRICE_DETAILS_MAX_LENGTH = 50
VISA_TYPE_MIN_LENGTH = 2
VISA_TYPE_MAX_LENGTH = 100


def sanitize_string(value: Any, max_length: int = 1000, field: str | None = None) -> str:
    """HTML-entity-encode and trim a string, enforcing a length cap.

    The encoded characters never appear in their own replacements, so
    sanitizing an already sanitized string leaves it unchanged.

    Args:
        value: The raw input.
        max_length: Maximum length of the encoded result.
        field: Answer field name reported on rejection.

    Returns:
        The sanitized string.

    Raises:
        InputRejected: If the input is not a string or is too long once encoded.
    """
    if not isinstance(value, str):
        raise InputRejected("Input must be a string", field=field)

    sanitized = "".join(_HTML_ENTITIES.get(char, char) for char in value).strip()
    if len(sanitized) > max_length:
        raise InputRejected(
            f"Input exceeds maximum length of {max_length} characters", field=field
        )
    return sanitized


def sanitize_for_store(fields: dict[str, Any], max_length: int = 1000) -> dict[str, Any]:
    """Prepare a partial record for a store call.

    Strings are sanitized, enums are reduced to their values, scalars and
    datetimes pass through, and anything else is dropped.
    """
    sanitized: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            sanitized[key] = None
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value, max_length=max_length, field=key)
        elif isinstance(value, (bool, int, float, datetime)):
            sanitized[key] = value
    return sanitized


def validate_feedback(text: Any, min_length: int = 25) -> str:
    """Validate the free-text feedback step.

    Raises:
        InputRejected: If the feedback is empty, shorter than ``min_length``
            characters, or longer than the feedback cap.
    """
    if not isinstance(text, str) or not text.strip():
        raise InputRejected("Feedback must be a non-empty string", field="feedback_text")
    if len(text.strip()) < min_length:
        raise InputRejected(
            f"Feedback must be at least {min_length} characters long",
            field="feedback_text",
        )
    return sanitize_string(text, FEEDBACK_MAX_LENGTH, field="feedback_text")


def validate_survey_answers(
    roles_applied: Any,
    companies_emailed: Any,
    companies_interviewed: Any,
) -> dict[str, str]:
    """Check the three job-search survey answers against their option sets."""
    answers = {
        "roles_applied": (roles_applied, ROLES_APPLIED_CHOICES),
        "companies_emailed": (companies_emailed, COMPANIES_EMAILED_CHOICES),
        "companies_interviewed": (companies_interviewed, COMPANIES_INTERVIEWED_CHOICES),
    }
    validated: dict[str, str] = {}
    for field, (value, choices) in answers.items():
        if value not in choices:
            raise InputRejected(
                f"Please answer '{field.replace('_', ' ')}' with one of: "
                + ", ".join(choices),
                field=field,
            )
        validated[field] = value
    return validated


def validate_visa_type(visa_type: Any, required: bool) -> str | None:
    """Validate the visa type entered on the visa or downsell offer step.

    Returns:
        The sanitized visa type, or None when it is optional and blank.
    """
    if visa_type is None or (isinstance(visa_type, str) and not visa_type.strip()):
        if required:
            raise InputRejected("Visa type is required", field="visa_type")
        return None

    sanitized = sanitize_string(visa_type, VISA_TYPE_MAX_LENGTH, field="visa_type")
    if len(sanitized) < VISA_TYPE_MIN_LENGTH:
        raise InputRejected(
            f"Visa type must be at least {VISA_TYPE_MIN_LENGTH} characters long",
            field="visa_type",
        )
    return sanitized


def validate_cancellation_reason(reason: Any, details: Any) -> tuple[str, str]:
    """Validate the cancellation reason and its follow-up detail.

    "Too expensive" asks what price would have worked; every other reason
    asks for at least 25 characters of explanation.

    Returns:
        A ``(reason, sanitized_details)`` pair.

    Raises:
        InputRejected: If the reason is unknown or the detail is missing,
            too short, or too long.
    """
    if reason not in CANCELLATION_REASONS:
        raise InputRejected("Invalid cancellation reason", field="cancellation_reason")

    if not isinstance(details, str) or not details.strip():
        raise InputRejected(
            "Please tell us a bit more about your reason",
            field="cancellation_reason_details",
        )

    if reason == TOO_EXPENSIVE:
        return reason, sanitize_string(
            details, PRICE_DETAILS_MAX_LENGTH, field="cancellation_reason_details"
        )

    if len(details.strip()) < REASON_DETAILS_MIN_LENGTH:
        raise InputRejected(
            f"Please enter at least {REASON_DETAILS_MIN_LENGTH} characters "
            "so we can understand your feedback",
            field="cancellation_reason_details",
        )
    return reason, sanitize_string(
        details, REASON_DETAILS_MAX_LENGTH, field="cancellation_reason_details"
    )
