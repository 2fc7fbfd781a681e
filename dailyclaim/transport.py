import json
import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Tuple, Dict, Any

import aiohttp

from .config import CLAIM_TIMEOUT
from .errors import TransportError

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Accept": "application/json, text/plain, */*",
}


@asynccontextmanager
async def open_session(session: Optional[aiohttp.ClientSession] = None, timeout: float = CLAIM_TIMEOUT):
    """Yield the caller's session, or a throwaway one closed on exit."""
    if session is not None:
        yield session
        return
    t = aiohttp.ClientTimeout(total=timeout, connect=10)
    async with aiohttp.ClientSession(timeout=t, headers=DEFAULT_HEADERS) as s:
        yield s


async def request_json(
    session,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    json_body: Any = None,
    data: Optional[str] = None,
    timeout: float = CLAIM_TIMEOUT,
) -> Tuple[int, Optional[Dict[str, Any]]]:
    """Issue one request and return (status, parsed JSON object or None).

    Non-2xx responses are returned with whatever body they carried; only
    network errors and timeouts raise.
    """
    try:
        async with session.request(
            method, url,
            headers=headers, params=params, json=json_body, data=data,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as r:
            status = r.status
            text = await r.text(errors="ignore")
    except asyncio.TimeoutError as e:
        raise TransportError(f"Request timed out after {timeout:g}s") from e
    except aiohttp.ClientError as e:
        raise TransportError(f"Network error: {e}") from e

    body = None
    if text:
        try:
            body = json.loads(text)
        except ValueError:
            body = None
    if not isinstance(body, dict):
        body = None
    return status, body


def mask_token(token: Optional[str]) -> str:
    """Loggable stand-in for a secret: length and a short prefix only."""
    t = (token or "").strip()
    if not t:
        return "<empty>"
    return f"{t[:6]}… (len={len(t)})"
