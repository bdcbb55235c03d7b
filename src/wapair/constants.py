from __future__ import annotations

BRAND = "King RANUX"

# Accepted phone format: Sri Lankan mobile numbers in international form.
PHONE_COUNTRY_PREFIX = "94"
PHONE_LENGTH = 11
PHONE_EXAMPLE = "+94 7X XXX XXXX"

SESSION_TIMEOUT_S = 90.0
DELIVERY_TTL_S = 300.0

# Shown to the primary phone as the linked device name ("Safari (Mac OS)").
BROWSER = ("Mac OS", "Safari")

# Baileys derives the pairing-code wrapping key with PBKDF2-SHA256, 2 << 16 rounds.
PAIRING_CODE_KDF_ROUNDS = 2 << 16
PAIRING_CODE_CHARSET = "123456789ABCDEFGHJKLMNPQRSTVWXYZ"

LINK_CODE_BUNDLE_INFO = b"link_code_pairing_key_bundle_encryption_key"
ADV_SECRET_INFO = b"adv_secret"

USER_SERVER = "s.whatsapp.net"
