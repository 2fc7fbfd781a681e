"""Request signing for the SKPORT (Endfield) API.

Two schemes are in use upstream:

* v1: ``md5("timestamp=<t>&cred=<cred>")``, accepted by the basic endpoints.
* v2: ``md5(hmac_sha256(secret, path + timestamp + header_json))`` where
  ``header_json`` is the compact JSON of ``{platform, timestamp, dId, vName}``.
  The secret is the ``token`` handed back by the OAuth exchange.

Which scheme an endpoint wants is decided purely by its path. An endpoint that
needs v2 but is missing from ``V2_PATH_PATTERNS`` is not an error here; the
upstream just answers with an auth failure.
"""
import hashlib
import hmac
import json
import time
from typing import Optional, Dict

ENDFIELD_PLATFORM = "3"
ENDFIELD_VERSION = "1.0.0"

V2_PATH_PATTERNS = ("/binding", "/card/detail", "/wiki/", "/enums", "/v2/", "/attendance")


def sign_v1(timestamp: str, cred: str) -> str:
    return hashlib.md5(f"timestamp={timestamp}&cred={cred}".encode("utf-8")).hexdigest()


def sign_header_json(timestamp: str, platform: str, version_name: str, device_id: str = "") -> str:
    # key order and compact separators are part of the signed string
    header = {"platform": platform, "timestamp": timestamp, "dId": device_id, "vName": version_name}
    return json.dumps(header, separators=(",", ":"))


def sign_v2(path: str, timestamp: str, platform: str, version_name: str, secret: str) -> str:
    source = path + timestamp + sign_header_json(timestamp, platform, version_name)
    hmac_hex = hmac.new(secret.encode("utf-8"), source.encode("utf-8"), hashlib.sha256).hexdigest()
    return hashlib.md5(hmac_hex.encode("utf-8")).hexdigest()


def sign_version(path: str) -> str:
    return "v2" if any(p in path for p in V2_PATH_PATTERNS) else "v1"


def build_sign_headers(
    path: str,
    cred: str,
    secret: Optional[str],
    timestamp: Optional[str] = None,
    platform: str = ENDFIELD_PLATFORM,
    version_name: str = ENDFIELD_VERSION,
) -> Dict[str, str]:
    """Headers carrying the signature for ``path``: platform, vName, timestamp, sign."""
    t = timestamp or str(int(time.time()))
    headers = {"platform": platform, "vName": version_name, "timestamp": t}
    if sign_version(path) == "v2":
        if not secret:
            raise ValueError(f"{path} requires a v2 signature but no signing secret is available")
        headers["sign"] = sign_v2(path, t, platform, version_name, secret)
    else:
        headers["sign"] = sign_v1(t, cred)
    return headers
