"""Rust WebRCON client and the game-server adapter built on it."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence, Set

import aiohttp

from .grant import ExternalEffectFailure
from .models import Subject

logger = logging.getLogger("kitbot.rcon")

LineHandler = Callable[[str], Awaitable[None]]

DEFAULT_GIVE_TEMPLATE = "inventory.giveto {subject} {shortcode} {amount}"
DEFAULT_STRIP_TEMPLATE = ""
# Vanilla RCON has no per-player message command; a plugin command such as
# 'pm {subject} "{text}"' has to be configured for kit messages to be sent.
DEFAULT_MESSAGE_TEMPLATE = ""
DEFAULT_FAILURE_MARKERS = ("not found", "invalid", "couldn't", "unknown command")

_MAX_RECONNECT_DELAY = 120.0


class RconError(Exception):
    """Raised when the RCON connection is unavailable or a command times out."""


class RconClient:
    """Single websocket connection to a Rust server's WebRCON endpoint.

    Replies are matched to commands by ``Identifier``; chat frames are
    dropped, and every other frame is console output handed to the line
    handler one line at a time.
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        *,
        timeout: float = 10.0,
        reconnect_delay: float = 5.0,
    ):
        self.host = host
        self.port = port
        self._password = password
        self.timeout = timeout
        self.reconnect_delay = max(0.1, reconnect_delay)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1000)
        self._handler_tasks: Set[asyncio.Task] = set()
        self._closing = False
        self.connected = asyncio.Event()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/{self._password}"

    def __repr__(self) -> str:
        return f"<RconClient {self.host}:{self.port} connected={self.connected.is_set()}>"

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, connect=self.timeout))
        return await self._session.ws_connect(self.url, heartbeat=30.0)

    async def run(self, handler: LineHandler) -> None:
        """Keep the connection open, reconnecting with backoff, until ``close``."""
        delay = self.reconnect_delay
        while not self._closing:
            try:
                self._ws = await self._open()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                logger.warning("RCON connect to %s:%s failed: %s. Retrying in %.1fs", self.host, self.port, exc, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, _MAX_RECONNECT_DELAY)
                continue

            delay = self.reconnect_delay
            self.connected.set()
            logger.info("RCON connected to %s:%s", self.host, self.port)
            try:
                await self._read_loop(self._ws, handler)
            finally:
                self.connected.clear()
                self._fail_pending(RconError("RCON connection lost"))
                self._ws = None
            if not self._closing:
                logger.warning("RCON connection to %s:%s closed. Reconnecting in %.1fs", self.host, self.port, delay)
                await asyncio.sleep(delay)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse, handler: LineHandler) -> None:
        async for frame in ws:
            if frame.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(frame.data, handler)
            elif frame.type == aiohttp.WSMsgType.ERROR:
                logger.warning("RCON websocket error: %s", ws.exception())
                break

    def _dispatch(self, raw: str, handler: LineHandler) -> None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON RCON frame: %.200s", raw)
            return
        if not isinstance(payload, dict):
            return
        message = str(payload.get("Message") or "")
        identifier = payload.get("Identifier")
        future = self._pending.pop(identifier, None) if isinstance(identifier, int) else None
        if future is not None:
            if not future.done():
                future.set_result(message)
            return
        if str(payload.get("Type") or "").lower() == "chat":
            logger.debug("Ignoring RCON chat frame: %.200s", message)
            return
        for line in message.splitlines():
            if not line.strip():
                continue
            # Handlers issue RCON commands themselves, so they must not block this reader.
            task = asyncio.create_task(handler(line))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("RCON line handler failed: %s", exc, exc_info=exc)

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)

    async def command(self, text: str) -> str:
        """Send a console command and return the server's reply text."""
        ws = self._ws
        if ws is None or ws.closed:
            raise RconError("RCON is not connected")
        identifier = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[identifier] = future
        try:
            await ws.send_json({"Identifier": identifier, "Message": text, "Name": "KitBot"})
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise RconError(f"RCON command timed out after {self.timeout:.1f}s: {text}") from exc
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise RconError(f"RCON send failed: {exc}") from exc
        finally:
            self._pending.pop(identifier, None)

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        for task in list(self._handler_tasks):
            task.cancel()
        self._fail_pending(RconError("RCON client closed"))


def _quote(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class RconGameServer:
    """Game-server collaborator that expresses every effect as a console command."""

    def __init__(
        self,
        client: RconClient,
        *,
        give_template: str = DEFAULT_GIVE_TEMPLATE,
        strip_template: str = DEFAULT_STRIP_TEMPLATE,
        message_template: str = DEFAULT_MESSAGE_TEMPLATE,
        failure_markers: Sequence[str] = DEFAULT_FAILURE_MARKERS,
    ):
        self.client = client
        self.give_template = give_template
        self.strip_template = strip_template
        self.message_template = message_template
        self.failure_markers = tuple(marker.lower() for marker in failure_markers if marker)

    async def _send(self, command: str) -> str:
        try:
            reply = await self.client.command(command)
        except RconError as exc:
            raise ExternalEffectFailure(str(exc)) from exc
        lowered = reply.lower()
        for marker in self.failure_markers:
            if marker in lowered:
                raise ExternalEffectFailure(f"Server rejected `{command}`: {reply.strip()}")
        return reply

    async def execute(self, command: str) -> None:
        await self._send(command)

    async def strip(self, subject: Subject) -> None:
        if not self.strip_template:
            raise ExternalEffectFailure("No inventory strip command configured (KITBOT_STRIP_TEMPLATE).")
        await self._send(self.strip_template.format(subject=subject))

    async def give(self, subject: Subject, shortcode: str, amount: int) -> None:
        await self._send(self.give_template.format(subject=subject, shortcode=shortcode, amount=amount))

    async def message(self, subject: Subject, text: str) -> None:
        if not self.message_template:
            raise ExternalEffectFailure("No message command configured (KITBOT_MESSAGE_TEMPLATE).")
        await self._send(self.message_template.format(subject=subject, text=_quote(text)))


__all__ = [
    "DEFAULT_FAILURE_MARKERS",
    "DEFAULT_GIVE_TEMPLATE",
    "DEFAULT_MESSAGE_TEMPLATE",
    "DEFAULT_STRIP_TEMPLATE",
    "RconClient",
    "RconError",
    "RconGameServer",
]
