"""
Input validation for values sent to Trac.

Each validator returns ``(is_valid, error_message)`` so callers can decide
whether to raise or to report.
"""

MAX_SUMMARY_LENGTH = 255
MAX_COMMENT_LENGTH = 10_000


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Summary")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_summary(summary: str) -> tuple[bool, str]:
    """
    Validate a ticket summary (the node title).

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain line breaks
        - Cannot exceed MAX_SUMMARY_LENGTH characters
    """
    if not summary or not summary.strip():
        return (False, format_validation_error("Summary", "cannot be empty"))

    if "\n" in summary or "\r" in summary:
        return (
            False,
            format_validation_error("Summary", "cannot contain line breaks"),
        )

    if len(summary) > MAX_SUMMARY_LENGTH:
        return (
            False,
            format_validation_error(
                "Summary", f"exceeds maximum length of {MAX_SUMMARY_LENGTH}"
            ),
        )

    return (True, "")


def validate_comment(comment: str) -> tuple[bool, str]:
    """Validate comment text against Trac's comment length limit."""
    if len(comment) > MAX_COMMENT_LENGTH:
        return (
            False,
            format_validation_error(
                "Comment",
                f"exceeds maximum length of {MAX_COMMENT_LENGTH} characters",
            ),
        )
    return (True, "")


def validate_ticket_id(value: object) -> tuple[bool, str]:
    """
    Validate a ticket id given by a caller (int or "#123" string).
    """
    if isinstance(value, bool):
        return (False, format_validation_error("Ticket id", "must be a number"))
    if isinstance(value, str):
        value = value.strip().removeprefix("#")
        if not value.isdigit():
            return (
                False,
                format_validation_error("Ticket id", "must be a number"),
            )
        value = int(value)
    if not isinstance(value, int):
        return (False, format_validation_error("Ticket id", "must be a number"))
    if value < 1:
        return (False, format_validation_error("Ticket id", "must be positive"))
    return (True, "")
