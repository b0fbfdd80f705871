"""The fixed catalog of tools exposed through ``tools/list``."""

from typing import Any

from mcp.types import Tool

_SENDER = {"type": "string", "description": "Sender identity (email or identity ID from listAccounts)"}
_CC = {"type": "string", "description": "CC recipients (comma-separated)"}
_BCC = {"type": "string", "description": "BCC recipients (comma-separated)"}
_IS_HTML = {"type": "boolean", "description": "Set true if body contains HTML (default: false)"}
_MESSAGE_ID = {"type": "string", "description": "The message ID (from search results)"}
_FOLDER_PATH = {"type": "string", "description": "The folder URI path (from search results)"}


def _attachments(description: str = "Array of file paths to attach") -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def _compose_properties(to_description: str) -> dict[str, Any]:
    return {
        "to": {"type": "string", "description": to_description},
        "subject": {"type": "string", "description": "Email subject line"},
        "body": {"type": "string", "description": "Email body text"},
        "cc": _CC,
        "bcc": _BCC,
        "isHtml": _IS_HTML,
        "from": _SENDER,
        "attachments": _attachments(),
    }


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="listAccounts",
        title="List Accounts",
        description="List all email accounts and their identities",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="searchMessages",
        title="Search Messages (Headers)",
        description=(
            "Search message headers with date/sort/limit filtering. "
            "Returns IDs and folder paths for use with getMessage."
        ),
        inputSchema=_schema(
            {
                "query": {
                    "type": "string",
                    "description": "Text to search in subject, author, or recipients (empty string matches all)",
                },
                "startDate": {"type": "string", "description": "Filter messages on or after this ISO 8601 date"},
                "endDate": {"type": "string", "description": "Filter messages on or before this ISO 8601 date"},
                "maxResults": {"type": "number", "description": "Maximum results to return (default 50, max 200)"},
                "sortOrder": {
                    "type": "string",
                    "description": "Date sort: 'asc' (oldest first) or 'desc' (newest first, default)",
                },
            },
            ["query"],
        ),
    ),
    Tool(
        name="fullTextSearch",
        title="Full-Text Search",
        description=(
            "Search message bodies and headers using the mail client's full-text index. "
            "Faster than searchMessages for body content."
        ),
        inputSchema=_schema(
            {"query": {"type": "string", "description": "Text to search for across message bodies and headers"}},
            ["query"],
        ),
    ),
    Tool(
        name="getMessage",
        title="Get Message",
        description="Read the full content of an email message by its ID and folder path",
        inputSchema=_schema({"messageId": _MESSAGE_ID, "folderPath": _FOLDER_PATH}, ["messageId", "folderPath"]),
    ),
    Tool(
        name="sendMail",
        title="Send Mail",
        description="Open a compose window with the given email for user review before sending",
        inputSchema=_schema(
            _compose_properties("Recipient email address(es), comma-separated"), ["to", "subject", "body"]
        ),
    ),
    Tool(
        name="composeMail",
        title="Compose Mail",
        description="Open a compose window for user review before sending",
        inputSchema=_schema(_compose_properties("Recipient email address"), ["to", "subject", "body"]),
    ),
    Tool(
        name="replyToMessage",
        title="Reply to Message",
        description="Open a reply compose window with quoted original and proper threading headers",
        inputSchema=_schema(
            {
                "messageId": {"type": "string", "description": "The message ID to reply to"},
                "folderPath": _FOLDER_PATH,
                "body": {"type": "string", "description": "Reply body text"},
                "replyAll": {"type": "boolean", "description": "Reply to all recipients (default: false)"},
                "isHtml": _IS_HTML,
                "to": {"type": "string", "description": "Override recipient (default: original sender)"},
                "cc": _CC,
                "bcc": _BCC,
                "from": _SENDER,
                "attachments": _attachments("File paths to attach"),
            },
            ["messageId", "folderPath", "body"],
        ),
    ),
    Tool(
        name="forwardMessage",
        title="Forward Message",
        description="Open a forward compose window with original attachments preserved",
        inputSchema=_schema(
            {
                "messageId": {"type": "string", "description": "The message ID to forward"},
                "folderPath": _FOLDER_PATH,
                "to": {"type": "string", "description": "Recipient email address"},
                "body": {"type": "string", "description": "Additional text to prepend (optional)"},
                "isHtml": _IS_HTML,
                "cc": _CC,
                "bcc": _BCC,
                "from": _SENDER,
                "attachments": _attachments("Additional file paths to attach"),
            },
            ["messageId", "folderPath", "to"],
        ),
    ),
    Tool(
        name="searchContacts",
        title="Search Contacts",
        description="Find contacts by name or email across all address books",
        inputSchema=_schema(
            {"query": {"type": "string", "description": "Name or email address to search for"}}, ["query"]
        ),
    ),
    Tool(
        name="listCalendars",
        title="List Calendars",
        description="Return the user's calendars",
        inputSchema=_schema({}, []),
    ),
)

TOOL_NAMES: frozenset[str] = frozenset(tool.name for tool in TOOLS)


def tools_payload() -> list[dict[str, Any]]:
    """The catalog as plain JSON objects for a ``tools/list`` result."""
    return [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]
