"""
Pairing protocol adapter.

The lifecycle manager only sees three things from WhatsApp: a session bound
to a credential folder, a pairing-code request, and a stream of typed
connection events. `WhatsAppAdapter` provides those on top of pyaileys;
tests substitute their own `PairingProtocolAdapter`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import IntEnum
from functools import partial
from pathlib import Path
from typing import Protocol, TypeAlias

from loguru import logger
from pyaileys import WhatsAppClient
from pyaileys.auth.creds import AuthenticationCreds, Contact
from pyaileys.auth.store import MultiFileAuthState
from pyaileys.exceptions import PyaileysError, TransportError
from pyaileys.socket import ConnectionUpdate
from pyaileys.socket_config import SocketConfig
from pyaileys.wabinary.jid import jid_encode
from pyaileys.wabinary.types import BinaryNode

from .constants import BROWSER, USER_SERVER
from .exceptions import ProtocolError, ProtocolRejected
from .pairing_code import (
    build_companion_finish,
    build_companion_hello,
    companion_finish_material,
    format_pairing_code,
    generate_pairing_code,
    wrap_companion_ephemeral,
)
from .util.asyncio import cancel_suppress, ensure_task

STREAM_ERROR_EVENT = "cb:stream:error"
LINK_CODE_NOTIFICATION_EVENT = "cb:notification,type:link_code_companion_reg"


class DisconnectReason(IntEnum):
    """Close codes, mirroring Baileys' `DisconnectReason`."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    # Pairing code was issued but the socket went away before it was used.
    CONNECTION_CLOSED = 428
    RATE_OVERLIMIT = 429
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


REJECTION_CODES = frozenset(
    {
        DisconnectReason.FORBIDDEN,
        DisconnectReason.CONNECTION_CLOSED,
        DisconnectReason.RATE_OVERLIMIT,
    }
)


@dataclass(frozen=True, slots=True)
class Opened:
    pass


@dataclass(frozen=True, slots=True)
class Closed:
    code: int | None = None


@dataclass(frozen=True, slots=True)
class CredentialsUpdated:
    pass


ProtocolEvent: TypeAlias = Opened | Closed | CredentialsUpdated


class ProtocolSession(Protocol):
    events: asyncio.Queue[ProtocolEvent]

    async def request_pairing_code(self, phone: str) -> str: ...

    async def save_credentials(self) -> None: ...

    async def send_text(self, jid: str, text: str) -> None: ...

    async def close(self) -> None: ...


class PairingProtocolAdapter(Protocol):
    async def open_session(self, credential_dir: Path) -> ProtocolSession: ...


def _child(node: BinaryNode | None, tag: str) -> BinaryNode | None:
    if not node or not isinstance(node.content, list):
        return None
    for c in node.content:
        if isinstance(c, BinaryNode) and c.tag == tag:
            return c
    return None


def _child_bytes(node: BinaryNode | None, tag: str) -> bytes | None:
    c = _child(node, tag)
    if c is None:
        return None
    if isinstance(c.content, (bytes, bytearray, memoryview)):
        return bytes(c.content)
    if isinstance(c.content, str):
        return c.content.encode("utf-8")
    return None


def _parse_code(raw: str | None) -> int | None:
    return int(raw) if raw and raw.isdigit() else None


class WhatsAppSession:
    """
    One pyaileys client bound to one credential folder.

    Socket callbacks never do work themselves: they translate what happened
    into a `ProtocolEvent` and drop it into `events`, which the owner drains
    in order.
    """

    def __init__(
        self,
        client: WhatsAppClient,
        auth_state: MultiFileAuthState,
        *,
        browser: tuple[str, str] = BROWSER,
        ready_timeout_s: float = 20.0,
        query_timeout_s: float = 30.0,
    ) -> None:
        self.events: asyncio.Queue[ProtocolEvent] = asyncio.Queue()
        self._client = client
        self._auth_state = auth_state
        self._browser = browser
        self._ready_timeout_s = ready_timeout_s
        self._query_timeout_s = query_timeout_s

        self._registration_offered = asyncio.Event()
        self._last_stream_error: int | None = None
        self._finish_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def creds(self) -> AuthenticationCreds:
        return self._client.socket.auth.creds

    def install(self) -> None:
        self._client.on("connection.update", self._on_connection_update)
        self._client.on("creds.update", self._on_creds_update)
        self._client.on(STREAM_ERROR_EVENT, self._on_stream_error)
        self._client.on(LINK_CODE_NOTIFICATION_EVENT, self._on_link_code_notification)

    async def request_pairing_code(self, phone: str) -> str:
        socket = self._client.socket
        if not socket.is_open:
            raise ProtocolRejected(DisconnectReason.CONNECTION_CLOSED, "connection closed")

        # The server sends `pair-device` (surfaced as a QR update) once it is
        # ready to register a new companion.
        try:
            await asyncio.wait_for(
                self._registration_offered.wait(), timeout=self._ready_timeout_s
            )
        except TimeoutError as e:
            raise ProtocolError("WhatsApp did not offer companion registration") from e

        creds = self.creds
        code = generate_pairing_code()
        creds.pairing_code = code
        creds.me = Contact(id=jid_encode(phone, USER_SERVER), name="~")
        self.events.put_nowait(CredentialsUpdated())

        wrapped = await asyncio.to_thread(
            wrap_companion_ephemeral, code, creds.pairing_ephemeral_key_pair.public
        )
        node = build_companion_hello(
            jid=creds.me.id,
            wrapped_ephemeral=wrapped,
            noise_public=creds.noise_key.public,
            browser=self._browser,
        )

        try:
            res = await socket.query(node, timeout_s=self._query_timeout_s)
        except TransportError as e:
            raise ProtocolRejected(DisconnectReason.CONNECTION_CLOSED, str(e)) from e
        except TimeoutError as e:
            raise ProtocolError("timed out waiting for the pairing code ack") from e

        if res.attrs.get("type") == "error":
            error = _child(res, "error")
            raw_code = error.attrs.get("code") if error else None
            text = error.attrs.get("text") if error else None
            status = _parse_code(raw_code)
            if status is not None and status in REJECTION_CODES:
                raise ProtocolRejected(status, text)
            raise ProtocolError(f"pairing code request failed (code={raw_code}, text={text})")

        return format_pairing_code(code)

    async def save_credentials(self) -> None:
        await self._auth_state.save_creds()

    async def send_text(self, jid: str, text: str) -> None:
        await self._client.send_text(jid, text)

    async def close(self) -> None:
        self._closing = True
        await cancel_suppress(self._finish_task)
        self._finish_task = None
        await self._client.disconnect()

    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        if update.qr:
            self._registration_offered.set()

        if update.connection == "open":
            self.events.put_nowait(Opened())
        elif update.connection == "close":
            code = self._close_code(update)
            self._last_stream_error = None
            if self._closing:
                return
            if code == DisconnectReason.RESTART_REQUIRED:
                # pyaileys reconnects by itself after pair-success.
                logger.debug("Restart requested by WhatsApp, waiting for reconnect")
                return
            self.events.put_nowait(Closed(code=code))

    def _close_code(self, update: ConnectionUpdate) -> int:
        if self._last_stream_error is not None:
            return self._last_stream_error
        if isinstance(update.last_disconnect, TransportError):
            return DisconnectReason.CONNECTION_CLOSED
        # Closed without a stream error or transport failure: keepalive gave up.
        return DisconnectReason.CONNECTION_LOST

    async def _on_creds_update(self, _creds: AuthenticationCreds) -> None:
        self.events.put_nowait(CredentialsUpdated())

    async def _on_stream_error(self, stanza: BinaryNode) -> None:
        code = _parse_code(stanza.attrs.get("code"))
        if code is None:
            code = (
                DisconnectReason.CONNECTION_REPLACED
                if _child(stanza, "conflict") is not None
                else DisconnectReason.BAD_SESSION
            )
        self._last_stream_error = int(code)

    async def _on_link_code_notification(self, stanza: BinaryNode) -> None:
        # Runs on the receive loop; the finish IQ needs that loop to deliver
        # its response, so it must not be awaited here.
        if self._finish_task and not self._finish_task.done():
            return
        self._finish_task = ensure_task(
            self._complete_link_code(stanza), name="link_code_companion_finish"
        )

    async def _complete_link_code(self, stanza: BinaryNode) -> None:
        reg = _child(stanza, "link_code_companion_reg")
        ref = _child_bytes(reg, "link_code_pairing_ref")
        primary_identity = _child_bytes(reg, "primary_identity_pub")
        primary_wrapped = _child_bytes(reg, "link_code_pairing_wrapped_primary_ephemeral_pub")
        if not ref or not primary_identity or not primary_wrapped:
            logger.warning("link_code_companion_reg notification missing key material")
            return

        creds = self.creds
        if not creds.pairing_code or creds.me is None:
            logger.warning("link_code_companion_reg received without a pending pairing code")
            return

        try:
            bundle, adv_secret = await asyncio.to_thread(
                partial(
                    companion_finish_material,
                    pairing_code=creds.pairing_code,
                    pairing_ephemeral=creds.pairing_ephemeral_key_pair,
                    signed_identity=creds.signed_identity_key,
                    primary_identity_public=primary_identity,
                    primary_ephemeral_wrapped=primary_wrapped,
                )
            )
            creds.adv_secret_key = adv_secret
            await self._client.socket.query(
                build_companion_finish(
                    jid=creds.me.id,
                    wrapped_key_bundle=bundle,
                    identity_public=creds.signed_identity_key.public,
                    pairing_ref=ref,
                ),
                timeout_s=self._query_timeout_s,
            )
        except (PyaileysError, TimeoutError, ValueError):
            logger.exception(f"companion_finish failed for {creds.me.id}")
            return

        creds.registered = True
        self.events.put_nowait(CredentialsUpdated())


class WhatsAppAdapter:
    """Opens pyaileys-backed sessions identifying as `browser`."""

    def __init__(
        self,
        *,
        browser: tuple[str, str] = BROWSER,
        socket_config: SocketConfig | None = None,
        ready_timeout_s: float = 20.0,
    ) -> None:
        self._browser = browser
        self._socket_config = socket_config
        self._ready_timeout_s = ready_timeout_s

    async def open_session(self, credential_dir: Path) -> WhatsAppSession:
        socket_config = self._socket_config or SocketConfig(browser=self._browser)
        client, auth_state = await WhatsAppClient.from_auth_folder(
            str(credential_dir), socket=socket_config
        )
        session = WhatsAppSession(
            client,
            auth_state,
            browser=self._browser,
            ready_timeout_s=self._ready_timeout_s,
            query_timeout_s=socket_config.connect_timeout_s,
        )
        session.install()

        try:
            await client.connect()
        except (PyaileysError, OSError, TimeoutError) as e:
            await session.close()
            raise ProtocolError(f"failed to connect to WhatsApp: {e}") from e

        await auth_state.save_creds()
        return session
