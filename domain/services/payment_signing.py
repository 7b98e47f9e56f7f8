"""
VNPay signing protocol.

Two canonical forms are in use and must not be mixed up:

* payment creation and inbound callbacks sign ``k=v`` pairs joined with ``&``
  in sorted key order (empty values dropped);
* ``querydr`` / ``refund`` API commands sign a ``|``-joined list of values in
  a fixed, command-specific order.

The outbound redirect query string is URL-encoded in the same sorted order
used for signing.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Iterable, Mapping, Optional
from urllib.parse import quote_plus

from domain.common.exceptions import InvalidSignatureError


SECURE_HASH_KEY = "vnp_SecureHash"
SECURE_HASH_TYPE_KEY = "vnp_SecureHashType"
HASH_KEYS = frozenset({SECURE_HASH_KEY, SECURE_HASH_TYPE_KEY})


def _present(fields: Mapping[str, Optional[str]]) -> list[tuple[str, str]]:
    return sorted(
        (key, str(value))
        for key, value in fields.items()
        if value is not None and str(value) != ""
    )


def canonicalize(fields: Mapping[str, Optional[str]]) -> str:
    """``k1=v1&k2=v2`` over non-empty values, keys in codepoint order."""
    return "&".join(f"{key}={value}" for key, value in _present(fields))


def encode_query(fields: Mapping[str, Optional[str]]) -> str:
    """URL-encoded query string in the signing order (form encoding, space -> ``+``)."""
    return "&".join(
        f"{quote_plus(key)}={quote_plus(value)}" for key, value in _present(fields)
    )


def pipe_join(values: Iterable[Optional[str]]) -> str:
    """Signing input for API commands; ``None`` is rendered as an empty slot."""
    return "|".join("" if value is None else str(value) for value in values)


def sign(secret: str, data: str) -> str:
    """HMAC-SHA512 of ``data`` as 128 lowercase hex characters."""
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def sign_fields(secret: str, fields: Mapping[str, Optional[str]]) -> str:
    unsigned = {k: v for k, v in fields.items() if k not in HASH_KEYS}
    return sign(secret, canonicalize(unsigned))


def verify(secret: str, fields: Mapping[str, Optional[str]], provided_hash: Optional[str]) -> bool:
    """Recompute the signature over ``fields`` minus the hash keys and compare."""
    if not provided_hash:
        return False
    expected = sign_fields(secret, fields)
    return hmac.compare_digest(expected, provided_hash.strip().lower())


def verify_pipe(secret: str, values: Iterable[Optional[str]], provided_hash: Optional[str]) -> bool:
    if not provided_hash:
        return False
    return hmac.compare_digest(sign(secret, pipe_join(values)), provided_hash.strip().lower())


def ensure_valid(secret: str, fields: Mapping[str, Optional[str]]) -> None:
    """Raise ``InvalidSignatureError`` unless ``fields[vnp_SecureHash]`` verifies."""
    if not verify(secret, fields, fields.get(SECURE_HASH_KEY)):
        raise InvalidSignatureError(txn_ref=fields.get("vnp_TxnRef"))


def signed_query(secret: str, fields: Mapping[str, Optional[str]]) -> str:
    """Encoded query string with ``vnp_SecureHash`` appended last."""
    signature = sign_fields(secret, fields)
    return f"{encode_query(fields)}&{SECURE_HASH_KEY}={signature}"
