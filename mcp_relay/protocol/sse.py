"""
SSE Wire Framing

Encodes the byte sequences written to a session's output stream.

Wire format:
    Content-Type: text/event-stream
    Cache-Control: no-cache
    Connection: keep-alive
    Access-Control-Allow-Origin: *

    event: endpoint
    data: <submission-url>?sessionId=<id>

    event: message
    data: <json-rpc-message>

Each event block ends with a blank line.
"""

from urllib.parse import quote

SSE_HEADERS = (
    "Content-Type: text/event-stream\n"
    "Cache-Control: no-cache\n"
    "Connection: keep-alive\n"
    "Access-Control-Allow-Origin: *\n"
    "\n"
)

# Characters left intact when percent-encoding an endpoint URL (URI reserved set)
_URL_SAFE = ";,/?:@&=+$#!*'()"


def encode_headers() -> bytes:
    """The fixed stream preamble."""
    return SSE_HEADERS.encode("utf-8")


def encode_event(event_type: str, data: str) -> bytes:
    """Frame one SSE event."""
    return f"event: {event_type}\ndata: {data}\n\n".encode("utf-8")


def endpoint_url(endpoint: str, session_id: str) -> str:
    """Submission URL announced to the client for a session."""
    return f"{quote(endpoint, safe=_URL_SAFE)}?sessionId={quote(session_id, safe='')}"
