import re
from dataclasses import dataclass
from typing import Awaitable, Callable

import services.logger as log
from services.media import AttachmentFetcher
from services.message import Attachment, IncomingMessage
from services.ocr_parser import extract_text
from services.urls import extract_url
from services.vision import VisionClient

l = log.get_logger()

Reply = Callable[[str], Awaitable[None]]

GREETING = "Hi!  Try attaching an image or url link with words in it (jpeg, png, gif, or bmp work for me)."
FAREWELL = "Ok... See you later."
ERROR_PREFIX = "Error with attachment or reading image with"


@dataclass(frozen=True)
class Trigger:
    """A message pattern that pre-empts normal dispatch with a fixed reply."""
    name: str
    pattern: re.Pattern
    reply: str

    def matches(self, message: IncomingMessage) -> bool:
        return message.type == "message" and bool(self.pattern.match(message.text))


BYE = Trigger("bye", re.compile(r"bye", re.IGNORECASE), FAREWELL)

DEFAULT_TRIGGERS: tuple[Trigger, ...] = (BYE,)


class Dispatcher:
    """
    Routes one message to exactly one reply.

    Branches, in priority order: the first attachment is downloaded and sent
    to OCR as bytes; otherwise a URL found in the text is sent to OCR as
    JSON; otherwise the user gets the instructional greeting.  Any failure
    along the way becomes a single apology reply.
    """

    def __init__(self, fetcher: AttachmentFetcher, vision: VisionClient):
        self.fetcher = fetcher
        self.vision = vision

    async def dispatch(self, message: IncomingMessage, reply: Reply) -> str:
        try:
            text = await self._answer(message)
        except Exception as e:
            l.error(f"Error with attachment or OCR for {message.source!r} message: {e!r}")
            text = f"{ERROR_PREFIX} {str(e) or type(e).__name__}"
        await reply(text)
        return text

    async def _answer(self, message: IncomingMessage) -> str:
        attachment = message.first_attachment
        if attachment is not None:
            return await self._read_attachment(attachment, message)

        url = extract_url(message)
        if url:
            l.info(f"Reading text from URL {url!r}")
            response = await self.vision.read_image_url(url)
            return extract_text(response.body)

        return GREETING

    async def _read_attachment(self, attachment: Attachment, message: IncomingMessage) -> str:
        l.info(
            f"Reading text from {attachment.content_type or 'unknown'} attachment "
            f"{attachment.name or attachment.content_url!r}"
        )
        data = await self.fetcher.fetch(attachment.content_url, message)
        response = await self.vision.read_image(data)
        return extract_text(response.body)


class Bot:
    """Entry point for incoming messages: triggers first, then dispatch."""

    def __init__(self, dispatcher: Dispatcher, triggers: tuple[Trigger, ...] = DEFAULT_TRIGGERS):
        self.dispatcher = dispatcher
        self.triggers = triggers

    def match_trigger(self, message: IncomingMessage) -> Trigger | None:
        for trigger in self.triggers:
            if trigger.matches(message):
                return trigger
        return None

    async def handle(self, message: IncomingMessage, reply: Reply) -> str:
        trigger = self.match_trigger(message)
        if trigger is not None:
            l.info(f"Trigger '{trigger.name}' matched, ending interaction")
            await reply(trigger.reply)
            return trigger.reply
        return await self.dispatcher.dispatch(message, reply)
