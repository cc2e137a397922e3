"""RFC 8785 JSON Canonicalization Scheme (JCS) encoder.

This is the single serialization rule shared by the certificate signer and
every verifier. Any implementation that produces the same JCS bytes from the
same JSON value reproduces the signed payload, regardless of how the
certificate file itself was formatted.

Canonical form rules:
  * UTF-8 output, no insignificant whitespace.
  * Object members sorted by the UTF-16 code units of their names.
  * Strings escape only quotation mark, reverse solidus and control characters;
    ``\\b \\t \\n \\f \\r`` use their short forms, other controls ``\\u00xx``.
  * Numbers follow the ECMAScript Number-to-String algorithm: shortest
    round-tripping digits, plain notation for 1e-6 <= |n| < 1e21, otherwise
    ``d.ddde±N``. ``-0`` becomes ``0``. NaN/Infinity raise ValueError.
"""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Any

_SHORT_ESCAPES = {
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
    '"': '\\"',
    "\\": "\\\\",
}


def _escape_string(s: str) -> str:
    out_chars = []
    for ch in s:
        esc = _SHORT_ESCAPES.get(ch)
        if esc is not None:
            out_chars.append(esc)
        elif ord(ch) < 0x20:
            out_chars.append(f"\\u{ord(ch):04x}")
        else:
            out_chars.append(ch)
    return '"' + "".join(out_chars) + '"'


def _canonical_float(n: float) -> str:
    if math.isnan(n) or math.isinf(n):
        raise ValueError("NaN/Infinity not permitted in JSON per RFC 8785")
    if n == 0:
        return "0"
    sign = "-" if n < 0 else ""
    # repr() yields the shortest digit string that round-trips, as ECMAScript does
    tup = Decimal(repr(abs(n))).as_tuple()
    digits = "".join(str(d) for d in tup.digits)
    point = len(digits) + int(tup.exponent)  # value == 0.<digits> * 10**point
    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip("0")
    k = len(digits)
    if k <= point <= 21:
        body = digits + "0" * (point - k)
    elif 0 < point <= 21:
        body = digits[:point] + "." + digits[point:]
    elif -6 < point <= 0:
        body = "0." + "0" * (-point) + digits
    else:
        exp = point - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp)}"
    return sign + body


def _serialize(obj: Any) -> str:
    if obj is None:
        return "null"
    if obj is True:
        return "true"
    if obj is False:
        return "false"
    if isinstance(obj, int):
        return str(obj)
    if isinstance(obj, float):
        return _canonical_float(obj)
    if isinstance(obj, str):
        return _escape_string(obj)
    if isinstance(obj, (list, tuple)):
        return "[" + ",".join(_serialize(v) for v in obj) + "]"
    if isinstance(obj, dict):
        for k in obj:
            if not isinstance(k, str):
                raise TypeError("Object keys must be strings for JSON")
        keys = sorted(obj, key=lambda k: k.encode("utf-16-be"))
        return "{" + ",".join(_escape_string(k) + ":" + _serialize(obj[k]) for k in keys) + "}"
    raise TypeError(f"Unsupported type for JCS canonicalization: {type(obj)!r}")


def jcs_canonical(obj: Any) -> bytes:
    return _serialize(obj).encode("utf-8")

__all__ = ["jcs_canonical"]
