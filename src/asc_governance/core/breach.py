"""Breach-readiness context for PHI access rows.

Client IP and user agent are never stored raw. Each access row carries only
HMAC-SHA256 digests keyed with a server-side salt, plus a request fingerprint
over ``ip|user_agent|endpoint`` so related requests can be correlated during
a breach investigation without exposing the underlying values.
"""

import hashlib
import hmac
from typing import Any

_UNKNOWN = "unknown"


def hmac_hash(value: str, salt: str) -> str:
    return hmac.new(salt.encode(), value.encode(), hashlib.sha256).hexdigest()


def build_breach_context(
    ip_address: str | None,
    user_agent: str | None,
    endpoint: str | None,
    salt: str,
) -> dict[str, Any]:
    """Build the JSONB breach_context payload for one access row.

    Args:
        ip_address: Client IP, or None if unknown.
        user_agent: Client User-Agent header, or None if absent.
        endpoint: Request path, or None if not an HTTP request.
        salt: HMAC key (Settings.breach_hash_salt).

    Returns:
        Dict with ip_hash, user_agent_hash, geo_hint (always None) and
        request_fingerprint.
    """
    ip = ip_address or _UNKNOWN
    ua = user_agent or _UNKNOWN
    path = endpoint or _UNKNOWN
    return {
        "ip_hash": hmac_hash(ip, salt),
        "user_agent_hash": hmac_hash(ua, salt),
        "geo_hint": None,
        "request_fingerprint": hmac_hash(f"{ip}|{ua}|{path}", salt),
    }
