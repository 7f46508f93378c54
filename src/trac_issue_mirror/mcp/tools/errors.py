"""Error response builders for MCP tool handlers.

This module turns failures into structured error responses with
corrective actions, so an agent driving the mirror can recover without
human intervention.
"""

import xmlrpc.client

import mcp.types as types

from ...sync.errors import (
    BaselineCommitError,
    DocumentError,
    FetchError,
    PartialActionFailure,
    PlanningError,
    SyncError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied, version_conflict,
            validation_error, fetch_error, partial_failure, document_error,
            baseline_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Ticket #123 not found", "Check the root ticket id.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# XML-RPC faults
# ---------------------------------------------------------------------------

_TICKET_MESSAGES: dict[str, str] = {
    "not_found": "Check the ticket id, or run ticket_tree_status to see the mirrored tree.",
    "permission": "Ask the Trac administrator for TICKET_MODIFY/TICKET_CREATE, or sync without local changes.",
    "version": "Another user changed the ticket meanwhile. Re-run ticket_tree_sync with pull=true.",
    "server": "Contact Trac administrator or retry later.",
}


def translate_xmlrpc_error(
    error: xmlrpc.client.Fault,
) -> types.CallToolResult:
    """Translate an XML-RPC fault to a structured error response.

    Args:
        error: XML-RPC fault exception

    Returns:
        CallToolResult with isError=True and corrective action
    """
    fault_str = error.faultString.lower()

    match fault_str:
        case s if "not found" in s or "does not exist" in s:
            return build_error_response(
                "not_found", error.faultString, _TICKET_MESSAGES["not_found"]
            )
        case s if "permission" in s or "denied" in s:
            return build_error_response(
                "permission_denied",
                error.faultString,
                _TICKET_MESSAGES["permission"],
            )
        case s if "version" in s or "modified" in s or "changed" in s:
            return build_error_response(
                "version_conflict", error.faultString, _TICKET_MESSAGES["version"]
            )
        case _:
            return build_error_response(
                "server_error", error.faultString, _TICKET_MESSAGES["server"]
            )


# ---------------------------------------------------------------------------
# Sync engine errors
# ---------------------------------------------------------------------------


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate a sync engine failure to a structured error response.

    A failed remote mutation whose cause is an XML-RPC fault keeps the
    fault's category (permission, version conflict) so the corrective
    action fits; the completed count is prepended to the message.
    """
    match error:
        case FetchError():
            if isinstance(error.__cause__, xmlrpc.client.Fault):
                return translate_xmlrpc_error(error.__cause__)
            return build_error_response(
                "fetch_error",
                str(error),
                "Nothing was written. Check the root ticket id and Trac connectivity, then retry.",
            )
        case PartialActionFailure():
            action = (
                "Changes before the failure were applied and recorded in the "
                "working document. Fix the cause and re-run ticket_tree_sync; "
                "completed changes are not repeated."
            )
            if isinstance(error.cause, xmlrpc.client.Fault):
                translated = translate_xmlrpc_error(error.cause)
                detail = translated.content[0].text
                return build_error_response(
                    "partial_failure",
                    f"{len(error.completed)} action(s) completed before failure. {detail}",
                    action,
                )
            return build_error_response("partial_failure", str(error), action)
        case DocumentError():
            return build_error_response(
                "document_error",
                str(error),
                "Fix or remove the working document, or sync from the root ticket id to clone it again.",
            )
        case PlanningError():
            return build_error_response(
                "validation_error",
                str(error),
                "Edit the working document so every new ticket has a one-line title.",
            )
        case BaselineCommitError():
            return build_error_response(
                "baseline_error",
                str(error),
                "Remote changes were applied. Check the baseline directory is writable "
                "(and git is installed for the git backend), then re-run the sync.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Contact Trac administrator or retry later.",
            )
