from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Attachment:
    """A file reference carried by an incoming message."""
    content_url: str
    content_type: str = ""
    name: str = ""


@dataclass(frozen=True)
class IncomingMessage:
    """Snapshot of one Bot Framework activity, as seen by the dispatcher."""
    type: str            # "message" for user messages; anything else is ignored
    text: str
    attachments: tuple[Attachment, ...] = ()
    source: str = ""     # Bot Framework channelId, e.g. "skype", "msteams", "webchat"
    address: dict = field(default_factory=dict, compare=False)  # reply routing info

    @property
    def first_attachment(self) -> Attachment | None:
        return self.attachments[0] if self.attachments else None

    @classmethod
    def from_activity(cls, activity: dict) -> IncomingMessage:
        attachments = tuple(
            Attachment(
                content_url=raw.get("contentUrl") or "",
                content_type=raw.get("contentType") or "",
                name=raw.get("name") or "",
            )
            for raw in (activity.get("attachments") or [])
            if isinstance(raw, dict) and raw.get("contentUrl")
        )
        address = {
            "service_url":     (activity.get("serviceUrl") or "").rstrip("/"),
            "conversation":    activity.get("conversation") or {},
            "activity_id":     activity.get("id") or "",
            "bot":             activity.get("recipient") or {},
            "user":            activity.get("from") or {},
        }
        return cls(
            type=activity.get("type") or "",
            text=activity.get("text") or "",
            attachments=attachments,
            source=activity.get("channelId") or "",
            address=address,
        )
