"""
Per-phone pairing attempt lifecycle.

Each phone number has at most one attempt in the registry. An attempt ends in
exactly one of three ways: the connection opens (success), it closes
(failure), or the expiry timer fires (timeout). Whichever handler gets there
first settles the attempt; the others find it settled, or gone, and do
nothing.

All registry reads and writes happen on the event loop between awaits, so no
locking is needed as long as a check and the mutation it guards are never
separated by an `await`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loguru import logger

from .adapter import (
    Closed,
    CredentialsUpdated,
    DisconnectReason,
    Opened,
    PairingProtocolAdapter,
    ProtocolEvent,
    ProtocolSession,
)
from .archive import archive_directory
from .constants import BRAND, SESSION_TIMEOUT_S, USER_SERVER
from .credentials import CredentialStore
from .delivery import DeliverySlots, format_session_message
from .exceptions import (
    AttemptAlreadyActive,
    PostPairingDeliveryFailure,
    ProtocolError,
    ProtocolRejected,
)
from .util.asyncio import cancel_soon, ensure_task


class Outcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class PairingAttempt:
    phone: str
    credential_dir: Path
    session: ProtocolSession | None = None
    outcome: Outcome = Outcome.PENDING
    expiry_task: asyncio.Task[None] | None = None
    events_task: asyncio.Task[None] | None = None
    close_code: int | None = None
    # Set by the first terminal handler; the attempt stays registered until
    # its cleanup has finished.
    settled: bool = False


class SessionRegistry:
    """Phone number -> in-flight pairing attempt."""

    def __init__(self) -> None:
        self._attempts: dict[str, PairingAttempt] = {}

    def __contains__(self, phone: object) -> bool:
        return phone in self._attempts

    def __len__(self) -> int:
        return len(self._attempts)

    def get(self, phone: str) -> PairingAttempt | None:
        return self._attempts.get(phone)

    def add(self, attempt: PairingAttempt) -> None:
        if attempt.phone in self._attempts:
            raise AttemptAlreadyActive(attempt.phone)
        self._attempts[attempt.phone] = attempt

    def discard(self, attempt: PairingAttempt) -> None:
        if self._attempts.get(attempt.phone) is attempt:
            del self._attempts[attempt.phone]

    def phones(self) -> list[str]:
        return list(self._attempts)

    def attempts(self) -> list[PairingAttempt]:
        return list(self._attempts.values())


class SessionLifecycleManager:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        adapter: PairingProtocolAdapter,
        store: CredentialStore,
        deliveries: DeliverySlots,
        brand: str = BRAND,
        timeout_s: float = SESSION_TIMEOUT_S,
        delete_after_delivery: bool = True,
    ) -> None:
        self.registry = registry
        self.adapter = adapter
        self.store = store
        self.deliveries = deliveries
        self.brand = brand
        self.timeout_s = timeout_s
        self.delete_after_delivery = delete_after_delivery

    def __contains__(self, phone: object) -> bool:
        return phone in self.registry

    def active_phones(self) -> list[str]:
        return self.registry.phones()

    async def start_pairing(self, phone: str) -> str:
        """
        Begin pairing `phone` and return the code the user types on their phone.

        `phone` must already be normalized. Raises `AttemptAlreadyActive` if an
        attempt is in flight; adapter failures (`ProtocolRejected`,
        `ProtocolError`, ...) propagate after the attempt has been torn down.
        """

        attempt = PairingAttempt(phone=phone, credential_dir=self.store.path_for(phone))
        # Registered before the first await so a concurrent request for the
        # same phone is refused.
        self.registry.add(attempt)

        try:
            attempt.credential_dir = await self.store.create(phone)
            session = await self.adapter.open_session(attempt.credential_dir)
            attempt.session = session
            attempt.events_task = ensure_task(
                self._consume_events(attempt), name=f"pairing_events.{phone}"
            )
            attempt.expiry_task = ensure_task(self._expire(attempt), name=f"expiry.{phone}")
            logger.info(f"Requesting pairing code for {phone}")
            code = await session.request_pairing_code(phone)
        except ProtocolRejected as e:
            logger.warning(f"WhatsApp rejected pairing for {phone}: {e}")
            await self._abort(attempt)
            raise
        except BaseException:
            logger.exception(f"Pairing setup failed for {phone}")
            await self._abort(attempt)
            raise

        if attempt.settled:
            # The connection ended while the code was being requested.
            logger.warning(f"Pairing attempt for {phone} ended before its code was issued")
            if attempt.close_code is not None:
                raise ProtocolRejected(attempt.close_code, "connection closed during code request")
            raise ProtocolError("pairing attempt ended before the code was issued")

        logger.info(f"Pairing code issued for {phone}")
        return code

    async def on_connection_open(self, phone: str, attempt: PairingAttempt | None = None) -> None:
        attempt = self._settle(phone, attempt)
        if attempt is None:
            return

        logger.info(f"Paired with {phone}")
        outcome = Outcome.FAILED
        try:
            blob = await asyncio.to_thread(archive_directory, attempt.credential_dir)
            await self._deliver(attempt, blob)
            outcome = Outcome.SUCCEEDED
            logger.info(f"Session delivered to {phone}")
        except Exception:
            logger.exception(f"Session delivery failed for {phone}")
        finally:
            await self._release(
                attempt, outcome, remove_credentials=self.delete_after_delivery
            )

    async def on_connection_close(
        self, phone: str, code: int | None, attempt: PairingAttempt | None = None
    ) -> None:
        attempt = self._settle(phone, attempt)
        if attempt is None:
            return

        logger.warning(f"Connection closed for {phone} (status: {code or 'unknown'})")
        attempt.close_code = code
        # 428: the code was handed out but not used yet; keep the keys it was
        # issued against.
        keep = code == DisconnectReason.CONNECTION_CLOSED
        await self._release(attempt, Outcome.FAILED, remove_credentials=not keep)

    async def on_expiry(self, phone: str, attempt: PairingAttempt | None = None) -> None:
        attempt = self._settle(phone, attempt)
        if attempt is None:
            return

        logger.warning(f"Pairing timed out for {phone}")
        await self._release(attempt, Outcome.TIMED_OUT, remove_credentials=True)

    async def aclose(self) -> None:
        """Tear down every live attempt (application shutdown)."""

        for attempt in self.registry.attempts():
            if self._settle(attempt.phone, attempt) is None:
                continue
            logger.info(f"Abandoning pairing attempt for {attempt.phone}")
            await self._release(attempt, Outcome.FAILED, remove_credentials=True)

    def _settle(self, phone: str, attempt: PairingAttempt | None) -> PairingAttempt | None:
        current = self.registry.get(phone)
        if current is None or current.settled:
            return None
        if attempt is not None and current is not attempt:
            return None
        current.settled = True
        cancel_soon(current.expiry_task)
        return current

    async def _abort(self, attempt: PairingAttempt) -> None:
        if self._settle(attempt.phone, attempt) is None:
            return
        await self._release(attempt, Outcome.FAILED, remove_credentials=True)

    async def _release(
        self, attempt: PairingAttempt, outcome: Outcome, *, remove_credentials: bool
    ) -> None:
        attempt.outcome = outcome
        try:
            if attempt.session is not None:
                try:
                    await attempt.session.close()
                except Exception:
                    logger.exception(f"Failed to close protocol session for {attempt.phone}")
            cancel_soon(attempt.events_task)
            if remove_credentials:
                await self.store.remove(attempt.phone)
        finally:
            # Dropped last, so a new attempt for the same phone cannot start
            # while this one's folder is still being removed.
            self.registry.discard(attempt)

    async def _deliver(self, attempt: PairingAttempt, blob: str) -> None:
        self.deliveries.put(attempt.phone, blob)
        if attempt.session is None:
            raise PostPairingDeliveryFailure("no protocol session to send the session message")
        jid = f"{attempt.phone}@{USER_SERVER}"
        await attempt.session.send_text(jid, format_session_message(self.brand, blob))

    async def _expire(self, attempt: PairingAttempt) -> None:
        await asyncio.sleep(self.timeout_s)
        await self.on_expiry(attempt.phone, attempt)

    async def _consume_events(self, attempt: PairingAttempt) -> None:
        session = attempt.session
        assert session is not None, "session must be open before consuming its events"

        while not attempt.settled:
            event: ProtocolEvent = await session.events.get()
            if isinstance(event, CredentialsUpdated):
                await self._save_credentials(attempt, session)
            elif isinstance(event, Opened):
                await self.on_connection_open(attempt.phone, attempt)
            elif isinstance(event, Closed):
                await self.on_connection_close(attempt.phone, event.code, attempt)

    async def _save_credentials(self, attempt: PairingAttempt, session: ProtocolSession) -> None:
        try:
            await session.save_credentials()
        except Exception:
            logger.exception(f"Failed to persist credentials for {attempt.phone}")
