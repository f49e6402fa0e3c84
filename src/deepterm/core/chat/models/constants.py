"""Role, status, feedback and wire-protocol constants."""

# ---------------------------------------------------------------------------
# Message roles
# ---------------------------------------------------------------------------

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

# ---------------------------------------------------------------------------
# Message lifecycle: streaming -> complete | error
# ---------------------------------------------------------------------------

STATUS_STREAMING = "streaming"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"

FINAL_STATUSES = frozenset({STATUS_COMPLETE, STATUS_ERROR})

FEEDBACK_POSITIVE = "positive"
FEEDBACK_NEGATIVE = "negative"

# ---------------------------------------------------------------------------
# Stream event types
# ---------------------------------------------------------------------------

EVENT_TYPE_METADATA = "metadata"
EVENT_TYPE_CONTENT = "content"
EVENT_TYPE_ERROR = "error"
EVENT_TYPE_DONE = "done"

VALID_EVENT_TYPES = frozenset(
    {
        EVENT_TYPE_METADATA,
        EVENT_TYPE_CONTENT,
        EVENT_TYPE_ERROR,
        EVENT_TYPE_DONE,
    }
)

# ---------------------------------------------------------------------------
# Wire framing
# ---------------------------------------------------------------------------

STREAM_DATA_PREFIX = "data: "
STREAM_DONE_SENTINEL = "[DONE]"

ERROR_CONTENT_PREFIX = "Error: "
DEFAULT_ERROR_REASON = "An error occurred"
