# Bot Framework driver: the chat-facing side of the OCR bot.
#
# Receive: aiohttp HTTP server that accepts activities POSTed by the Bot
#          Framework connector.  Point the Azure bot's messaging endpoint at
#          http(s)://<host>:<listen_port><listen_path>.
#
# Reply:   Bot Connector REST API, answering the activity that was received.
#          An OAuth2 client-credentials token is obtained from Microsoft
#          identity and cached until shortly before it expires.  The same
#          token unlocks Skype / Teams attachment downloads.
#
# Config keys (under botframework.<instance_id>):
#   app_id        – Azure bot application (client) ID        (empty: emulator, no auth)
#   app_password  – Azure bot client secret
#   listen_port   – HTTP port for the messaging endpoint     (default: 3978)
#   listen_path   – HTTP path for the messaging endpoint     (default: "/api/messages")
#   max_file_size – Max bytes per downloaded attachment      (default 20 MB)
#   auth_channels – channelIds whose attachments need a token (default: skype, msteams)

import asyncio
import json
import time

import aiohttp
from aiohttp import web

import services.logger as log
from services.config_schema import CoercedList, VisionConfig, _StrictConfig
from services.dispatcher import Bot, Dispatcher
from services.error import TokenError
from services.media import AUTHENTICATED_CHANNELS, AttachmentFetcher
from services.message import IncomingMessage
from services.vision import VisionClient
from drivers import BaseDriver


class BotFrameworkConfig(_StrictConfig):
    app_id:        str = ""
    app_password:  str = ""
    listen_port:   int = 3978
    listen_path:   str = "/api/messages"
    max_file_size: int = 20 * 1024 * 1024
    auth_channels: CoercedList = sorted(AUTHENTICATED_CHANNELS)
    token_url:     str = "https://login.microsoftonline.com/botframework.com/oauth2/v2.0/token"
    token_scope:   str = "https://api.botframework.com/.default"


l = log.get_logger()


class BotFrameworkDriver(BaseDriver[BotFrameworkConfig]):

    def __init__(self, instance_id: str, config: BotFrameworkConfig, vision: VisionConfig):
        super().__init__(instance_id, config, vision)
        self._session: aiohttp.ClientSession | None = None
        self._access_token: str = ""
        self._token_expires: float = 0.0
        self._tasks: set[asyncio.Task] = set()
        self.bot: Bot | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        """Create the HTTP session, the bot and the aiohttp application."""
        self._session = aiohttp.ClientSession()
        fetcher = AttachmentFetcher(
            self._session,
            self.get_access_token,
            auth_channels=self.config.auth_channels,
            max_bytes=self.config.max_file_size,
        )
        self.bot = Bot(Dispatcher(fetcher, VisionClient(self._session, self.vision)))

        app = web.Application()
        app.router.add_post(self.config.listen_path, self._handle_activity)
        app.router.add_get("/health", self._handle_health)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def start(self):
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", self.config.listen_port)
        await site.start()
        l.info(
            f"Bot Framework [{self.instance_id}] listening on "
            f"0.0.0.0:{self.config.listen_port}{self.config.listen_path}"
        )
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """Return a bearer token for the Bot Connector, raising ``TokenError``."""
        if self._access_token and time.time() < self._token_expires - 60:
            return self._access_token
        if not self.config.app_id:
            raise TokenError("no app_id configured")
        if self._session is None:
            raise TokenError("driver not started")
        data = {
            "grant_type":    "client_credentials",
            "client_id":     self.config.app_id,
            "client_secret": self.config.app_password,
            "scope":         self.config.token_scope,
        }
        try:
            async with self._session.post(self.config.token_url, data=data) as resp:
                raw = await resp.read()
                if resp.status != 200:
                    l.error(
                        f"Bot Framework [{self.instance_id}] token fetch failed "
                        f"HTTP {resp.status}: {raw[:200].decode('utf-8', errors='replace')}"
                    )
                    raise TokenError(f"token endpoint returned HTTP {resp.status}")
        except aiohttp.ClientError as e:
            l.error(f"Bot Framework [{self.instance_id}] token fetch error: {e}")
            raise TokenError(str(e)) from e

        try:
            js = json.loads(raw)
        except ValueError as e:
            l.error(f"Bot Framework [{self.instance_id}] token endpoint sent invalid JSON: {raw[:200]!r}")
            raise TokenError("token endpoint returned invalid JSON") from e
        if not isinstance(js, dict):
            raise TokenError("token endpoint returned an unexpected body")

        token = js.get("access_token")
        if not token or not isinstance(token, str):
            raise TokenError("token endpoint returned no access_token")
        try:
            expires_in = float(js.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600.0

        if self._access_token:
            log.unregister_sensitive([self._access_token])
        log.register_sensitive([token])
        self._access_token = token
        self._token_expires = time.time() + expires_in
        return self._access_token

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def _handle_activity(self, request: web.Request) -> web.Response:
        try:
            body = await request.read()
            activity = json.loads(body)
        except ValueError:
            return web.Response(status=400, text="Bad JSON")
        if not isinstance(activity, dict):
            return web.Response(status=400, text="Bad activity")

        if activity.get("type") != "message":
            l.debug(f"Bot Framework [{self.instance_id}] ignoring activity type {activity.get('type')!r}")
            return web.Response(status=200, text="ok")

        message = IncomingMessage.from_activity(activity)
        l.info(
            f"Bot Framework [{self.instance_id}] message from {message.source!r} "
            f"with {len(message.attachments)} attachment(s)"
        )

        async def reply(text: str) -> None:
            await self.reply(message.address, text)

        task = asyncio.create_task(self.bot.handle(message, reply))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return web.Response(status=200, text="ok")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            l.error(f"Bot Framework [{self.instance_id}] message handling crashed: {exc!r}")

    # ------------------------------------------------------------------
    # Reply
    # ------------------------------------------------------------------

    async def reply(self, address: dict, text: str) -> None:
        if self._session is None:
            l.warning(f"Bot Framework [{self.instance_id}] reply: driver not started")
            return

        service_url = address.get("service_url", "")
        conversation = address.get("conversation") or {}
        conversation_id = conversation.get("id", "")
        if not service_url or not conversation_id:
            l.warning(
                f"Bot Framework [{self.instance_id}] reply: missing serviceUrl or "
                f"conversation id in {address}"
            )
            return

        headers = {"Content-Type": "application/json"}
        if self.config.app_id:
            try:
                token = await self.get_access_token()
            except TokenError as e:
                l.error(f"Bot Framework [{self.instance_id}] reply: could not obtain access token: {e}")
                return
            headers["Authorization"] = f"Bearer {token}"

        activity_id = address.get("activity_id", "")
        url = f"{service_url}/v3/conversations/{conversation_id}/activities"
        if activity_id:
            url = f"{url}/{activity_id}"

        body = {
            "type":         "message",
            "text":         text,
            "from":         address.get("bot") or {},
            "recipient":    address.get("user") or {},
            "conversation": conversation,
        }
        if activity_id:
            body["replyToId"] = activity_id
        await self._post_activity(url, headers, body)

    async def _post_activity(self, url: str, headers: dict, body: dict) -> None:
        try:
            async with self._session.post(url, json=body, headers=headers) as resp:
                if resp.status not in (200, 201, 202):
                    text = await resp.text()
                    l.error(
                        f"Bot Framework [{self.instance_id}] post activity failed "
                        f"HTTP {resp.status}: {text[:200]}"
                    )
        except aiohttp.ClientError as e:
            l.error(f"Bot Framework [{self.instance_id}] post activity error: {e}")


from drivers.registry import register
register("botframework", BotFrameworkConfig, BotFrameworkDriver)
