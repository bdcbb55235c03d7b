from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .constants import DELIVERY_TTL_S


@dataclass(frozen=True, slots=True)
class _Slot:
    blob: str
    expires_at: float


class DeliverySlots:
    """
    Short-lived, read-once cache of finished session blobs keyed by phone.

    The pairing page polls this after the user typed the code; the first
    successful read consumes the blob.
    """

    def __init__(
        self, *, ttl_s: float = DELIVERY_TTL_S, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._slots: dict[str, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def put(self, phone: str, blob: str) -> None:
        self.purge_expired()
        self._slots[phone] = _Slot(blob=blob, expires_at=self._clock() + self._ttl_s)

    def take(self, phone: str) -> str | None:
        slot = self._slots.pop(phone, None)
        if slot is None or slot.expires_at <= self._clock():
            return None
        return slot.blob

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [phone for phone, slot in self._slots.items() if slot.expires_at <= now]
        for phone in expired:
            del self._slots[phone]
        return len(expired)


def format_session_message(brand: str, blob: str) -> str:
    return (
        f"🟢 {brand} SESSION_ID\n"
        "\n"
        f"{blob}\n"
        "\n"
        "✔ Pairing Successful!\n"
        "📌 Copy this SESSION_ID into your bot.\n"
        "⚠ Do NOT share this with anyone!"
    )
