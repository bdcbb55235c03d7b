from __future__ import annotations


class WapairError(Exception):
    """Base error for the pairing server."""


class InvalidPhoneFormat(WapairError):
    """Input did not match the accepted phone number format."""


class AttemptAlreadyActive(WapairError):
    """A pairing attempt for this phone number is still pending."""

    def __init__(self, phone: str) -> None:
        super().__init__(f"pairing attempt already active for {phone}")
        self.phone = phone


class ProtocolRejected(WapairError):
    """
    WhatsApp explicitly refused the pairing request.

    `status_code` follows the Baileys disconnect taxonomy (428 means the
    request was blocked for now and can be retried later).
    """

    def __init__(self, status_code: int, reason: str | None = None) -> None:
        msg = f"pairing request rejected (status={status_code})"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.status_code = int(status_code)
        self.reason = reason


class ProtocolError(WapairError):
    """Any other failure while talking to WhatsApp."""


class PostPairingDeliveryFailure(WapairError):
    """Archiving or delivering the session blob failed after a successful handshake."""


class ArchiveError(PostPairingDeliveryFailure):
    """Credential directory could not be archived."""
