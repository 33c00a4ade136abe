from __future__ import annotations

import asyncio
import json
from typing import Dict, Optional

from nats.aio.client import Client as NATS
from nats.errors import ConnectionClosedError, NoServersError

from sim_race_steward.logging import get_logger
from ..broadcast.hub import BroadcastHub, BroadcastMessage, Connection
from ..config.settings import Settings
from ..ingest.gateway import Ack, IngestGateway

_LOGGER = get_logger(__name__)


def _token(value: str) -> str:
    return value.replace(".", "_").replace(" ", "_") or "_"


class NATSRelayListener:
    """Relay agents over NATS.

    Inbound: `<relay_prefix>.<event_type>` with a JSON body; request/reply
    publishers receive `{originalType, success}` acks. Outbound: every relay
    gets a hub connection whose room traffic is republished on
    `<broadcast_prefix>.<session_id|all>.<event>`.
    """

    def __init__(self, gateway: IngestGateway, hub: BroadcastHub, settings: Settings):
        self.gateway = gateway
        self.hub = hub
        self.settings = settings
        self.nc: Optional[NATS] = None
        self._stop = asyncio.Event()
        self._forwarders: Dict[str, asyncio.Task] = {}
        self.received = 0
        self.forwarded = 0

    # ---------------- Connection -----------------
    async def connect(self):
        nc = NATS()
        opts = {}
        if self.settings.nats.username and self.settings.nats.password:
            opts["user"] = self.settings.nats.username
            opts["password"] = self.settings.nats.password
        await asyncio.wait_for(
            nc.connect(servers=[self.settings.nats.url], **opts),
            timeout=self.settings.nats.connect_timeout,
        )
        self.nc = nc
        _LOGGER.info("[nats] connected %s", self.settings.nats.url)

    async def close(self):
        for relay_id, task in list(self._forwarders.items()):
            task.cancel()
            self.hub.unregister(f"nats:{relay_id}")
        if self._forwarders:
            await asyncio.gather(*self._forwarders.values(), return_exceptions=True)
        self._forwarders.clear()
        if self.nc:
            try:
                await self.nc.drain()
            except (ConnectionClosedError, asyncio.TimeoutError):
                _LOGGER.debug("[nats] drain on closed connection")
            self.nc = None

    def stop(self):
        self._stop.set()

    # ---------------- Relay connections -----------------
    def relay_connection(self, relay_id: str) -> Connection:
        conn = self.hub.register(f"nats:{relay_id}")
        task = self._forwarders.get(relay_id)
        if task is None or task.done():
            self._forwarders[relay_id] = asyncio.create_task(
                self._forward(conn), name=f"nats_forward:{relay_id}"
            )
        return conn

    def _subject_for(self, msg: BroadcastMessage) -> str:
        scope = _token(msg.session_id) if msg.session_id else "all"
        return f"{self.settings.nats.broadcast_prefix}.{scope}.{msg.event}"

    async def _forward(self, conn: Connection):
        while True:
            msg = await conn.next()
            if self.nc is None:
                continue
            try:
                await self.nc.publish(self._subject_for(msg), json.dumps(msg.to_frame()).encode())
                self.forwarded += 1
            except ConnectionClosedError:
                _LOGGER.debug("[nats] forward dropped, connection closed")

    # ---------------- Handlers -----------------
    async def _handle(self, msg):
        event_type = msg.subject.rsplit(".", 1)[-1]
        try:
            payload = json.loads(msg.data.decode())
        except (UnicodeDecodeError, ValueError):
            _LOGGER.debug("[nats] undecodable payload on %s", msg.subject)
            return
        if not isinstance(payload, dict):
            return
        self.received += 1
        relay_id = payload.get("relayId") or (msg.headers or {}).get("Relay-Id") or "default"
        conn = self.relay_connection(str(relay_id))

        async def _reply(ack: Ack) -> None:
            await msg.respond(json.dumps(ack.to_dict()).encode())

        try:
            await self.gateway.handle(conn, event_type, payload, _reply if msg.reply else None)
        except Exception:
            _LOGGER.exception("[nats] failed handling %s", msg.subject)

    # ---------------- Run loop -----------------
    async def run(self):  # pragma: no cover
        backoff = 1.0
        while not self._stop.is_set():
            try:
                await self.connect()
                assert self.nc
                await self.nc.subscribe(f"{self.settings.nats.relay_prefix}.*", cb=self._handle)
                _LOGGER.info("[nats] subscribed %s.*", self.settings.nats.relay_prefix)
                backoff = 1.0
                await self._stop.wait()
            except (ConnectionClosedError, NoServersError, asyncio.TimeoutError, OSError) as e:
                if self._stop.is_set():
                    break
                _LOGGER.warning("[nats] connection problem (%s); retry in %.0fs", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 30)
            finally:
                await self.close()
