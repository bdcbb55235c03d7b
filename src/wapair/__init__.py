"""
wapair: WhatsApp pairing-code session server.

Users request a linked-device pairing code for their number over HTTP; once
they type it on their phone, the credentials produced by the login are zipped
into a portable session blob and sent back to them.
"""

from __future__ import annotations

from .exceptions import WapairError
from .manager import Outcome, SessionLifecycleManager, SessionRegistry

__all__ = [
    "Outcome",
    "SessionLifecycleManager",
    "SessionRegistry",
    "WapairError",
]

__version__ = "0.1.0"
