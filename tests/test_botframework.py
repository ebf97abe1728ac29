"""End-to-end tests for the Bot Framework webhook driver."""

from __future__ import annotations

import asyncio
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from drivers.botframework import BotFrameworkConfig, BotFrameworkDriver
from services.config_schema import VisionConfig
import services.logger as log
from services.dispatcher import FAREWELL, GREETING
from services.error import TokenError
from services.message import IncomingMessage

OCR_RESULT = {"regions": [{"lines": [{"words": [{"text": "Hello"}, {"text": "world"}]}]}]}


class Backend:
    """One local server playing token issuer, file host, OCR service and connector."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.replies: list[tuple[str, dict, str | None]] = []
        self.replied = asyncio.Event()

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/token", self.token)
        app.router.add_get("/files/sign.png", self.file)
        app.router.add_post("/ocr/", self.ocr)
        app.router.add_post("/v3/conversations/{conv}/activities/{activity}", self.reply)
        return app

    async def token(self, request: web.Request) -> web.Response:
        form = await request.post()
        assert form["grant_type"] == "client_credentials"
        assert form["client_id"] == "app-id"
        self.calls.append("token")
        return web.json_response({"access_token": "tok-123456789", "expires_in": 3600})

    async def file(self, request: web.Request) -> web.Response:
        self.calls.append(f"download:{request.headers.get('Authorization')}")
        return web.Response(body=b"\x89PNG", content_type="image/png")

    async def ocr(self, request: web.Request) -> web.Response:
        self.calls.append(f"ocr:{request.headers.get('Content-Type')}")
        return web.json_response(OCR_RESULT)

    async def reply(self, request: web.Request) -> web.Response:
        self.calls.append("reply")
        self.replies.append((request.path, await request.json(), request.headers.get("Authorization")))
        self.replied.set()
        return web.json_response({"id": "reply-1"})

    async def next_reply(self) -> dict:
        await asyncio.wait_for(self.replied.wait(), timeout=5)
        self.replied.clear()
        return self.replies[-1][1]


def _activity(base: str, text: str = "", *, channel: str = "skype", attachments: list | None = None) -> dict:
    return {
        "type": "message",
        "id": "act-1",
        "channelId": channel,
        "serviceUrl": base,
        "from": {"id": "29:user"},
        "recipient": {"id": "28:bot"},
        "conversation": {"id": "conv-9"},
        "text": text,
        "attachments": attachments or [],
    }


def _driver(base: str, app_id: str = "app-id") -> BotFrameworkDriver:
    cfg = BotFrameworkConfig(app_id=app_id, app_password="app-password", token_url=f"{base}/token")
    return BotFrameworkDriver("test", cfg, VisionConfig(api_url=base, api_key="vision-key"))


class TestBotFrameworkDriver:
    """Activities in, connector replies out."""

    @pytest.mark.asyncio
    async def test_skype_attachment_round_trip(self, serve) -> None:
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")
        activity = _activity(base, channel="skype", attachments=[
            {"contentType": "image/png", "contentUrl": f"{base}/files/sign.png", "name": "sign.png"},
        ])

        async with TestClient(TestServer(_driver(base).build_app())) as client:
            resp = await client.post("/api/messages", json=activity)
            assert resp.status == 200
            body = await backend.next_reply()

        assert body["text"] == "Hello world"
        assert body["replyToId"] == "act-1"
        assert body["from"] == {"id": "28:bot"}
        assert body["recipient"] == {"id": "29:user"}
        path, _, auth = backend.replies[0]
        assert path == "/v3/conversations/conv-9/activities/act-1"
        assert auth == "Bearer tok-123456789"
        # The token is cached, so the reply reuses the one fetched for the download.
        assert backend.calls == [
            "token",
            "download:Bearer tok-123456789",
            "ocr:application/octet-stream",
            "reply",
        ]

    @pytest.mark.asyncio
    async def test_webchat_url_message(self, serve) -> None:
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")

        async with TestClient(TestServer(_driver(base, app_id="").build_app())) as client:
            await client.post("/api/messages", json=_activity(base, "see http://example.com/x.png", channel="webchat"))
            body = await backend.next_reply()

        assert body["text"] == "Hello world"
        assert backend.calls == ["ocr:application/json", "reply"]
        assert backend.replies[0][2] is None

    @pytest.mark.asyncio
    async def test_greeting_and_bye(self, serve) -> None:
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")

        async with TestClient(TestServer(_driver(base, app_id="").build_app())) as client:
            await client.post("/api/messages", json=_activity(base, "hello", channel="webchat"))
            greeting = await backend.next_reply()
            await client.post("/api/messages", json=_activity(base, "Bye!", channel="webchat"))
            farewell = await backend.next_reply()

        assert greeting["text"] == GREETING
        assert farewell["text"] == FAREWELL
        assert backend.calls == ["reply", "reply"]

    @pytest.mark.asyncio
    async def test_download_failure_still_replies(self, serve) -> None:
        """A missing attachment produces one apology reply."""
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")
        activity = _activity(base, channel="webchat", attachments=[
            {"contentType": "image/png", "contentUrl": f"{base}/files/missing.png"},
        ])

        async with TestClient(TestServer(_driver(base, app_id="").build_app())) as client:
            await client.post("/api/messages", json=activity)
            body = await backend.next_reply()

        assert body["text"].startswith("Error with attachment or reading image with HTTP 404")
        assert len(backend.replies) == 1

    @pytest.mark.asyncio
    async def test_non_message_activity_is_ignored(self, serve) -> None:
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")
        activity = dict(_activity(base, "bye"), type="conversationUpdate")

        async with TestClient(TestServer(_driver(base).build_app())) as client:
            resp = await client.post("/api/messages", json=activity)
            assert resp.status == 200

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_bad_json_and_health(self, serve) -> None:
        async with TestClient(TestServer(_driver("http://127.0.0.1:1").build_app())) as client:
            resp = await client.post("/api/messages", data=b"{not json")
            assert resp.status == 400

            resp = await client.post("/api/messages", data=json.dumps(["list"]))
            assert resp.status == 400

            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_token_failure_for_attachment(self, serve) -> None:
        """Without app credentials an authenticated download fails politely."""
        backend = Backend()
        server = await serve(backend.app())
        base = str(server.make_url("/")).rstrip("/")
        activity = _activity(base, channel="msteams", attachments=[
            {"contentType": "image/png", "contentUrl": f"{base}/files/sign.png"},
        ])

        async with TestClient(TestServer(_driver(base, app_id="").build_app())) as client:
            await client.post("/api/messages", json=activity)
            body = await backend.next_reply()

        assert "could not obtain access token" in body["text"]
        assert backend.calls == ["reply"]


def _token_app(bodies: list[web.Response], posted: list) -> web.Application:
    async def token(request: web.Request) -> web.Response:
        return bodies.pop(0)

    async def reply(request: web.Request) -> web.Response:
        posted.append(await request.json())
        return web.json_response({"id": "reply-1"})

    app = web.Application()
    app.router.add_post("/token", token)
    app.router.add_post("/v3/conversations/{conv}/activities/{activity}", reply)
    return app


class TestAccessToken:
    """Token endpoint answers that cannot be used."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "make_body",
        [
            lambda: web.Response(text="<html>maintenance</html>", content_type="text/html"),
            lambda: web.json_response(["not", "a", "dict"]),
            lambda: web.json_response({"token_type": "Bearer"}),
            lambda: web.Response(body=b"\xff\xfe{", content_type="application/json"),
        ],
    )
    async def test_unusable_token_body(self, serve, make_body) -> None:
        """Malformed token answers raise TokenError and replies are dropped quietly."""
        posted: list = []
        server = await serve(_token_app([make_body(), make_body()], posted))
        base = str(server.make_url("/")).rstrip("/")
        driver = _driver(base)
        app = driver.build_app()
        address = {
            "service_url": base,
            "conversation": {"id": "conv-9"},
            "activity_id": "act-1",
        }

        try:
            with pytest.raises(TokenError):
                await driver.get_access_token()
            await driver.reply(address, "hi")
        finally:
            await driver._on_cleanup(app)

        assert posted == []

    @pytest.mark.asyncio
    async def test_refreshed_token_replaces_masked_value(self, serve) -> None:
        posted: list = []
        bodies = [
            web.json_response({"access_token": "first-token-value", "expires_in": 3600}),
            web.json_response({"access_token": "second-token-value", "expires_in": "3600"}),
        ]
        server = await serve(_token_app(bodies, posted))
        base = str(server.make_url("/")).rstrip("/")
        driver = _driver(base)
        app = driver.build_app()

        try:
            assert await driver.get_access_token() == "first-token-value"
            driver._token_expires = 0.0
            assert await driver.get_access_token() == "second-token-value"
        finally:
            await driver._on_cleanup(app)

        assert "first-token-value" not in log._sensitive
        assert "second-token-value" in log._sensitive

    @pytest.mark.asyncio
    async def test_html_token_still_answers_user(self, serve) -> None:
        """An authenticated download with a broken token endpoint ends in one apology."""
        posted: list = []
        server = await serve(_token_app(
            [web.Response(text="<html>maintenance</html>", content_type="text/html")],
            posted,
        ))
        base = str(server.make_url("/")).rstrip("/")
        driver = _driver(base)
        app = driver.build_app()
        message = IncomingMessage.from_activity(_activity(base, channel="skype", attachments=[
            {"contentType": "image/png", "contentUrl": f"{base}/files/sign.png"},
        ]))
        replies: list[str] = []

        async def record(text: str) -> None:
            replies.append(text)

        try:
            await driver.bot.handle(message, record)
        finally:
            await driver._on_cleanup(app)

        assert len(replies) == 1
        assert replies[0].startswith("Error with attachment or reading image with")
