import re

from services.message import IncomingMessage

# http:// or https:// followed by a run of URL-safe characters
_URL_RE = re.compile(r"https?://[-\w@:%+.~#?,&/=]+", re.ASCII)


def find_url(text: str | None) -> str:
    """Return the first http(s) URL in *text*, or ``""``."""
    match = _URL_RE.search(text or "")
    return match.group(0) if match else ""


def extract_url(message: IncomingMessage) -> str:
    """Return the URL a message points at.

    An attachment wins over anything in the text.  Non-message activities
    never carry a URL.
    """
    if message.type != "message":
        return ""
    if message.attachments:
        return message.attachments[0].content_url
    return find_url(message.text)
