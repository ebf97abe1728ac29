# OCR client for a Computer Vision style service.
#
# Both request shapes go to POST {api_url}/ocr/ and authenticate with the
# Ocp-Apim-Subscription-Key header:
#   read_image      – raw image bytes, Content-Type: application/octet-stream
#   read_image_url  – {"url": ..., "language": "en"}, Content-Type: application/json
#
# The response body is handed back untouched; services.ocr_parser reads it.

import json
from dataclasses import dataclass, field

import aiohttp

import services.logger as log
from services.config_schema import VisionConfig
from services.error import TransportError

l = log.get_logger()


@dataclass
class OcrResponse:
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class VisionClient:

    def __init__(self, session: aiohttp.ClientSession, config: VisionConfig):
        self._session = session
        self.config = config

    @property
    def endpoint(self) -> str:
        return self.config.api_url.rstrip("/") + "/ocr/"

    async def read_image(self, data: bytes) -> OcrResponse:
        headers = {
            "Ocp-Apim-Subscription-Key": self.config.api_key,
            "Content-Type":              "application/octet-stream",
        }
        return await self._post(data, headers)

    async def read_image_url(self, url: str) -> OcrResponse:
        headers = {
            "Ocp-Apim-Subscription-Key": self.config.api_key,
            "Content-Type":              "application/json",
        }
        body = json.dumps({"url": url, "language": self.config.language})
        return await self._post(body.encode("utf-8"), headers)

    async def _post(self, data: bytes, headers: dict) -> OcrResponse:
        try:
            async with self._session.post(self.endpoint, data=data, headers=headers) as resp:
                text = (await resp.read()).decode("utf-8", errors="replace")
                result = OcrResponse(status=resp.status, body=text, headers=dict(resp.headers))
        except aiohttp.ClientError as e:
            l.error(f"OCR request to {self.endpoint} failed: {e}")
            raise TransportError(f"OCR service unreachable: {e}") from e

        if not result.ok:
            l.warning(f"OCR service returned HTTP {result.status}: {result.body[:200]}")
        return result
