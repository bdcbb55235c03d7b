"""
Pairing-code ("link with phone number") companion registration.

pyaileys only implements QR pairing. This module adds the pieces Baileys uses
for `requestPairingCode()`:

1) `companion_hello`: the companion wraps its pairing ephemeral public key
   with a key derived from the 8-character code and sends it to the server.
2) The primary phone answers (after the user typed the code) with a
   `link_code_companion_reg` notification carrying its own wrapped ephemeral
   key and identity key.
3) `companion_finish`: both sides derive a shared secret; the companion sends
   its identity key encrypted under it and derives a fresh ADV secret, which
   later authenticates the regular `pair-success` stanza.

Everything here is a pure function so it can be exercised without a socket.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from pyaileys.auth.creds import KeyPair
from pyaileys.crypto.aes import aes_decrypt_ctr, aes_encrypt_ctr, aes_encrypt_gcm
from pyaileys.crypto.curve import Curve25519Provider, DefaultCurve25519Provider
from pyaileys.crypto.hkdf import hkdf_sha256
from pyaileys.wabinary import S_WHATSAPP_NET
from pyaileys.wabinary.types import BinaryNode

from .constants import (
    ADV_SECRET_INFO,
    LINK_CODE_BUNDLE_INFO,
    PAIRING_CODE_CHARSET,
    PAIRING_CODE_KDF_ROUNDS,
)

# proto.DeviceProps.PlatformType values (subset).
_PLATFORM_TYPES = {
    "CHROME": 1,
    "FIREFOX": 2,
    "IE": 3,
    "OPERA": 4,
    "SAFARI": 5,
    "EDGE": 6,
    "DESKTOP": 7,
}


def bytes_to_crockford(data: bytes) -> str:
    value = 0
    bit_count = 0
    out: list[str] = []
    for b in data:
        value = ((value << 8) | b) & 0xFFFF
        bit_count += 8
        while bit_count >= 5:
            out.append(PAIRING_CODE_CHARSET[(value >> (bit_count - 5)) & 31])
            bit_count -= 5
    if bit_count > 0:
        out.append(PAIRING_CODE_CHARSET[(value << (5 - bit_count)) & 31])
    return "".join(out)


def generate_pairing_code() -> str:
    # 5 random bytes -> 40 bits -> 8 Crockford characters.
    return bytes_to_crockford(secrets.token_bytes(5))


def format_pairing_code(code: str) -> str:
    """Split an 8-character code for display: `ABCD1234` -> `ABCD-1234`."""

    if len(code) != 8:
        return code
    return f"{code[:4]}-{code[4:]}"


def platform_id(browser_name: str) -> str:
    return str(_PLATFORM_TYPES.get(browser_name.upper(), 1))


def derive_pairing_code_key(
    pairing_code: str, salt: bytes, *, rounds: int = PAIRING_CODE_KDF_ROUNDS
) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", pairing_code.encode("utf-8"), salt, rounds, dklen=32)


def wrap_companion_ephemeral(
    pairing_code: str, ephemeral_public: bytes, *, rounds: int = PAIRING_CODE_KDF_ROUNDS
) -> bytes:
    """Return `salt(32) || iv(16) || AES-CTR(ephemeral_public)`."""

    salt = secrets.token_bytes(32)
    iv = secrets.token_bytes(16)
    key = derive_pairing_code_key(pairing_code, salt, rounds=rounds)
    return salt + iv + aes_encrypt_ctr(ephemeral_public, key=key, iv=iv)


def unwrap_primary_ephemeral(
    pairing_code: str, wrapped: bytes, *, rounds: int = PAIRING_CODE_KDF_ROUNDS
) -> bytes:
    if len(wrapped) < 80:
        raise ValueError(f"wrapped primary ephemeral key too short ({len(wrapped)} bytes)")
    salt = wrapped[:32]
    iv = wrapped[32:48]
    payload = wrapped[48:80]
    key = derive_pairing_code_key(pairing_code, salt, rounds=rounds)
    return aes_decrypt_ctr(payload, key=key, iv=iv)


def companion_finish_material(
    *,
    pairing_code: str,
    pairing_ephemeral: KeyPair,
    signed_identity: KeyPair,
    primary_identity_public: bytes,
    primary_ephemeral_wrapped: bytes,
    curve: Curve25519Provider | None = None,
    rounds: int = PAIRING_CODE_KDF_ROUNDS,
) -> tuple[bytes, str]:
    """
    Compute the `companion_finish` key bundle and the new ADV secret.

    Returns `(wrapped_key_bundle, adv_secret_key_b64)` where the bundle is
    `salt(32) || iv(12) || AES-GCM(identity_pub || primary_identity_pub || random)`.
    """

    curve = curve or DefaultCurve25519Provider()

    primary_ephemeral = unwrap_primary_ephemeral(
        pairing_code, primary_ephemeral_wrapped, rounds=rounds
    )
    companion_shared = curve.shared_key(pairing_ephemeral.private, primary_ephemeral)

    random = secrets.token_bytes(32)
    bundle_salt = secrets.token_bytes(32)
    bundle_key = hkdf_sha256(
        ikm=companion_shared, length=32, salt=bundle_salt, info=LINK_CODE_BUNDLE_INFO
    )
    bundle_iv = secrets.token_bytes(12)
    bundle_plain = signed_identity.public + primary_identity_public + random
    encrypted = aes_encrypt_gcm(bundle_plain, key=bundle_key, iv=bundle_iv, aad=b"")

    identity_shared = curve.shared_key(signed_identity.private, primary_identity_public)
    adv_secret = hkdf_sha256(
        ikm=companion_shared + identity_shared + random, length=32, salt=b"", info=ADV_SECRET_INFO
    )

    return bundle_salt + bundle_iv + encrypted, base64.b64encode(adv_secret).decode("ascii")


def build_companion_hello(
    *,
    jid: str,
    wrapped_ephemeral: bytes,
    noise_public: bytes,
    browser: tuple[str, str],
    msg_id: str | None = None,
) -> BinaryNode:
    os_name, browser_name = browser
    attrs = {"to": S_WHATSAPP_NET, "type": "set", "xmlns": "md"}
    if msg_id:
        attrs["id"] = msg_id
    return BinaryNode(
        tag="iq",
        attrs=attrs,
        content=[
            BinaryNode(
                tag="link_code_companion_reg",
                attrs={
                    "jid": jid,
                    "stage": "companion_hello",
                    "should_show_push_notification": "true",
                },
                content=[
                    BinaryNode(
                        tag="link_code_pairing_wrapped_companion_ephemeral_pub",
                        attrs={},
                        content=wrapped_ephemeral,
                    ),
                    BinaryNode(tag="companion_server_auth_key_pub", attrs={}, content=noise_public),
                    BinaryNode(
                        tag="companion_platform_id", attrs={}, content=platform_id(browser_name)
                    ),
                    BinaryNode(
                        tag="companion_platform_display",
                        attrs={},
                        content=f"{browser_name} ({os_name})",
                    ),
                    BinaryNode(tag="link_code_pairing_nonce", attrs={}, content="0"),
                ],
            )
        ],
    )


def build_companion_finish(
    *, jid: str, wrapped_key_bundle: bytes, identity_public: bytes, pairing_ref: bytes
) -> BinaryNode:
    return BinaryNode(
        tag="iq",
        attrs={"to": S_WHATSAPP_NET, "type": "set", "xmlns": "md"},
        content=[
            BinaryNode(
                tag="link_code_companion_reg",
                attrs={"jid": jid, "stage": "companion_finish"},
                content=[
                    BinaryNode(
                        tag="link_code_pairing_wrapped_key_bundle",
                        attrs={},
                        content=wrapped_key_bundle,
                    ),
                    BinaryNode(tag="companion_identity_public", attrs={}, content=identity_public),
                    BinaryNode(tag="link_code_pairing_ref", attrs={}, content=pairing_ref),
                ],
            )
        ],
    )
