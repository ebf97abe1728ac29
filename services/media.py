# Attachment download used by the dispatcher before an image goes to OCR.
#
# Skype and Teams serve attachment content behind the bot's own access token,
# so messages from those channels are fetched with an Authorization header.
# Every other channel hands out plain, publicly readable URLs.
#
# Usage:
#   fetcher = AttachmentFetcher(session, driver.get_access_token)
#   data = await fetcher.fetch(attachment.content_url, message)

from typing import Awaitable, Callable, Iterable

import aiohttp

import services.logger as log
from services.error import DownloadError
from services.message import IncomingMessage

l = log.get_logger()

_DEFAULT_MAX = 20 * 1024 * 1024  # 20 MB

AUTHENTICATED_CHANNELS = frozenset({"skype", "msteams"})

TokenProvider = Callable[[], Awaitable[str]]


class AttachmentFetcher:

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_provider: TokenProvider,
        auth_channels: Iterable[str] = AUTHENTICATED_CHANNELS,
        max_bytes: int = _DEFAULT_MAX,
    ):
        self._session = session
        self._token_provider = token_provider
        self._auth_channels = frozenset(auth_channels)
        self._max_bytes = max_bytes

    def requires_token(self, message: IncomingMessage) -> bool:
        return message.source in self._auth_channels

    async def fetch(self, url: str, message: IncomingMessage) -> bytes:
        """
        Download *url* and return its body.

        The token, when the channel needs one, is obtained before the GET is
        issued.  Raises ``DownloadError`` for a non-2xx status, a network
        failure, a token failure, or a body larger than the configured limit.
        """
        if not url:
            raise DownloadError(None, "attachment has no content URL")

        headers = {}
        if self.requires_token(message):
            try:
                token = await self._token_provider()
            except Exception as e:
                raise DownloadError(None, f"could not obtain access token: {e}") from e
            headers["Authorization"] = f"Bearer {token}"

        l.debug(f"media.fetch: downloading {url!r} (source={message.source!r}, auth={bool(headers)})")
        try:
            async with self._session.get(url, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    reason = resp.reason or "download failed"
                    l.error(f"media.fetch: {url!r} returned HTTP {resp.status}")
                    raise DownloadError(resp.status, reason)

                chunks: list[bytes] = []
                total = 0
                async for chunk in resp.content.iter_chunked(65536):
                    total += len(chunk)
                    if total > self._max_bytes:
                        raise DownloadError(None, f"attachment exceeds {self._max_bytes} bytes")
                    chunks.append(chunk)
                return b"".join(chunks)

        except aiohttp.ClientError as e:
            l.error(f"media.fetch failed for {url!r}: {e}")
            raise DownloadError(None, str(e) or type(e).__name__) from e
