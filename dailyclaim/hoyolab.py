"""Hoyolab daily check-in and code redemption for the HoYoverse games."""
import asyncio
import hashlib
import random
import re
import string
import time
from typing import Optional, List, Dict, Iterable

from .config import CLAIM_TIMEOUT, AUX_TIMEOUT, HOYOLAB_GAME_DELAY
from .errors import TransportError
from .models import ClaimResult, GameAccount, RedeemResult, ValidationResult, REASON_AUTH, REASON_MANUAL, REASON_TRANSPORT
from .transport import request_json, open_session, mask_token

HOYOLAB_DS_SALT = "6s25p5ox5y14umn1p61aqyyvbvvl3lrt"

HOYOLAB_GAMES: Dict[str, Dict] = {
    "genshin": {
        "name": "Genshin Impact",
        "icon": "🌍",
        "url": "https://sg-hk4e-api.hoyolab.com/event/sol/sign",
        "act_id": "e202102251931481",
        "biz": "hk4e_global",
    },
    "starRail": {
        "name": "Honkai: Star Rail",
        "icon": "🚂",
        "url": "https://sg-public-api.hoyolab.com/event/luna/os/sign",
        "act_id": "e202303301540311",
        "biz": "hkrpg_global",
    },
    "zenlessZoneZero": {
        "name": "Zenless Zone Zero",
        "icon": "📺",
        "url": "https://sg-public-api.hoyolab.com/event/luna/zzz/os/sign",
        "act_id": "e202406031448091",
        "biz": "nap_global",
        "extra_headers": {"x-rpc-signgame": "zzz"},
    },
    "honkai3": {
        "name": "Honkai Impact 3rd",
        "icon": "⚡",
        "url": "https://sg-public-api.hoyolab.com/event/mani/sign",
        "act_id": "e202110291205111",
        "biz": "bh3_global",
    },
    "tearsOfThemis": {
        "name": "Tears of Themis",
        "icon": "⚖️",
        "url": "https://sg-public-api.hoyolab.com/event/luna/os/sign",
        "act_id": "e202308141137581",
        "biz": "nxx_global",
    },
}

HOYOLAB_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "x-rpc-app_version": "2.34.1",
    "x-rpc-client_type": "4",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Referer": "https://act.hoyolab.com/",
    "Origin": "https://act.hoyolab.com",
}

HOYOLAB_REDEEM_URLS = {
    "genshin": "https://sg-hk4e-api.hoyolab.com",
    "starRail": "https://sg-hkrpg-api.hoyolab.com",
    "zenlessZoneZero": "https://public-operation-nap.hoyoverse.com",
}

HOYOLAB_VALIDATE_URL = "https://sg-hk4e-api.hoyolab.com/event/sol/info"
HOYOLAB_ROLES_URL = "https://api-os-takumi.mihoyo.com/binding/api/getUserGameRolesByCookie"

HOYOLAB_MIN_TOKEN_LENGTH = 30
ALREADY_CLAIMED_RETCODE = -5003
AUTH_FAILURE_RETCODES = {-100, -10001}

LTUID_RX = re.compile(r"(?:^|;\s*)ltuid(?:_v2)?=([^;]*)")


def generate_ds(now: Optional[int] = None, rand: Optional[str] = None) -> str:
    """Dynamic Secret: ``"<t>,<r>,md5(salt=..&t=..&r=..)"``. Fresh for every request."""
    t = int(now if now is not None else time.time())
    r = rand or "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    h = hashlib.md5(f"salt={HOYOLAB_DS_SALT}&t={t}&r={r}".encode("utf-8")).hexdigest()
    return f"{t},{r},{h}"


def sanitize_cookie(raw: str) -> str:
    return re.sub(r'[\r\n"]+', "", (raw or "").strip())


def cookie_warnings(cookie: str) -> List[str]:
    out = []
    if "ltoken" not in cookie:
        out.append("⚠️ **Critical:** `ltoken` is missing. Daily check-in might fail.")
    if "cookie_token" not in cookie:
        out.append("⚠️ **Warning:** `cookie_token` is missing. `/redeem` will FAIL.")
    elif "account_id" not in cookie:
        out.append("⚠️ **Warning:** `account_id` is missing. `/redeem` requires it matching `cookie_token`.")
    return out


def validate_params(cookie: str, games: Optional[Iterable[str]] = None) -> ValidationResult:
    cookie = sanitize_cookie(cookie)
    if len(cookie) < HOYOLAB_MIN_TOKEN_LENGTH:
        return ValidationResult(False, "❌ Cookie is too short. Copy the full cookie string.")
    m = LTUID_RX.search(cookie)
    if not m:
        return ValidationResult(False, "❌ Cookie is missing `ltuid_v2`.")
    if not m.group(1).strip().isdigit():
        return ValidationResult(False, "❌ `ltuid_v2` must be numbers only.")
    if "ltoken" not in cookie:
        return ValidationResult(False, "❌ Cookie is missing `ltoken_v2`.")
    unknown = [g for g in (games or []) if g not in HOYOLAB_GAMES]
    if unknown:
        return ValidationResult(False, f"❌ Unknown game(s): {', '.join(unknown)}")
    return ValidationResult(True)


def interpret_sign(game_name: str, status: int, body: Optional[Dict]) -> ClaimResult:
    if body is None:
        return ClaimResult(False, f"HTTP {status}: no response body", game=game_name, reason=REASON_TRANSPORT)
    retcode = body.get("retcode")
    message = body.get("message") or ""
    data = body.get("data") if isinstance(body.get("data"), dict) else {}

    # a captcha challenge comes back with retcode 0, so check it first
    gt = data.get("gt_result") or {}
    if gt.get("is_risk") or (gt.get("risk_code") or 0) != 0:
        return ClaimResult(False, "Manual action required: CAPTCHA triggered, please claim on the website",
                           game=game_name, reason=REASON_MANUAL)
    if retcode == 0 or message == "OK":
        return ClaimResult(True, "Claimed successfully!", game=game_name)
    if retcode == ALREADY_CLAIMED_RETCODE or "already" in message.lower():
        return ClaimResult(True, "Already claimed today", already_claimed=True, game=game_name)
    if retcode in AUTH_FAILURE_RETCODES:
        return ClaimResult(False, "Authentication failed, run /setup-hoyolab again", game=game_name,
                           reason=REASON_AUTH)
    return ClaimResult(False, message or f"Unknown error (retcode {retcode})", game=game_name)


class HoyolabClient:
    def __init__(self, cookie: str, session=None, game_delay: float = HOYOLAB_GAME_DELAY, sleep=asyncio.sleep):
        self.cookie = sanitize_cookie(cookie)
        self.session = session
        self.game_delay = game_delay
        self._sleep = sleep

    @staticmethod
    def validate_params(cookie: str, games: Optional[Iterable[str]] = None) -> ValidationResult:
        return validate_params(cookie, games)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        h = {**HOYOLAB_HEADERS, "Cookie": self.cookie, "DS": generate_ds()}
        if extra:
            h.update(extra)
        return h

    async def claim_game(self, game_key: str) -> ClaimResult:
        game = HOYOLAB_GAMES.get(game_key)
        if not game:
            return ClaimResult(False, "Unknown game", game=game_key)
        try:
            async with open_session(self.session, timeout=CLAIM_TIMEOUT) as s:
                status, body = await request_json(
                    s, "POST", game["url"],
                    params={"lang": "en-us", "act_id": game["act_id"]},
                    headers=self._headers(game.get("extra_headers")),
                    timeout=CLAIM_TIMEOUT,
                )
        except TransportError as e:
            print(f"[hoyolab] {game_key}: {e}")
            return ClaimResult(False, str(e), game=game["name"], reason=REASON_TRANSPORT)
        result = interpret_sign(game["name"], status, body)
        print(f"[hoyolab] {game_key}: HTTP {status} -> {result.message}")
        return result

    async def claim(self, games: Iterable[str]) -> List[ClaimResult]:
        """Claim every enabled game, one after another, pausing between games."""
        enabled = set(games)
        results: List[ClaimResult] = []
        for key in [g for g in HOYOLAB_GAMES if g in enabled]:
            if results:
                await self._sleep(self.game_delay)
            results.append(await self.claim_game(key))
        return results

    async def validate_token(self) -> ValidationResult:
        try:
            async with open_session(self.session, timeout=AUX_TIMEOUT) as s:
                status, body = await request_json(
                    s, "GET", HOYOLAB_VALIDATE_URL,
                    params={"lang": "en-us", "act_id": HOYOLAB_GAMES["genshin"]["act_id"]},
                    headers=self._headers(), timeout=AUX_TIMEOUT,
                )
        except TransportError as e:
            return ValidationResult(False, str(e))
        if body and body.get("retcode") == 0:
            return ValidationResult(True, "Token valid")
        return ValidationResult(False, (body or {}).get("message") or f"HTTP {status}")

    async def get_game_accounts(self, game_key: str) -> List[GameAccount]:
        game = HOYOLAB_GAMES.get(game_key)
        if not game:
            return []
        try:
            async with open_session(self.session, timeout=AUX_TIMEOUT) as s:
                _, body = await request_json(
                    s, "GET", HOYOLAB_ROLES_URL, params={"game_biz": game["biz"]},
                    headers=self._headers(), timeout=AUX_TIMEOUT,
                )
        except TransportError as e:
            print(f"[hoyolab] accounts for {game_key} failed: {e}")
            return []
        if not body or body.get("retcode") != 0:
            return []
        out = []
        for row in ((body.get("data") or {}).get("list") or []):
            out.append(GameAccount(
                game_biz=row.get("game_biz", game["biz"]),
                region=row.get("region", ""),
                game_uid=str(row.get("game_uid", "")),
                nickname=row.get("nickname", ""),
                level=int(row.get("level") or 0),
                region_name=row.get("region_name", ""),
            ))
        return out

    async def redeem_code(self, game_key: str, account: GameAccount, code: str) -> RedeemResult:
        game = HOYOLAB_GAMES.get(game_key)
        if not game:
            return RedeemResult(False, "Unknown game")
        if "cookie_token" not in self.cookie:
            return RedeemResult(
                False, "Missing required credential: cookie needs `cookie_token`. "
                       "Get a fresh cookie from the official redemption page."
            )
        base = HOYOLAB_REDEEM_URLS.get(game_key, HOYOLAB_REDEEM_URLS["genshin"])
        params = {
            "uid": account.game_uid,
            "region": account.region,
            "lang": "en",
            "cdkey": code,
            "game_biz": game["biz"],
        }
        headers = self._headers({"x-rpc-app_version": "1.5.0", "x-rpc-client_type": "5", "x-rpc-language": "en-us"})
        print(f"[hoyolab] redeem {code} for uid {account.game_uid} ({game_key}), cookie {mask_token(self.cookie)}")
        try:
            async with open_session(self.session, timeout=AUX_TIMEOUT) as s:
                _, body = await request_json(
                    s, "GET", f"{base}/common/apicdkey/api/webExchangeCdkeyHyl",
                    params=params, headers=headers, timeout=AUX_TIMEOUT,
                )
        except TransportError as e:
            return RedeemResult(False, str(e))
        if body and body.get("retcode") == 0:
            return RedeemResult(True, "Redeemed successfully")
        return RedeemResult(False, (body or {}).get("message") or "Request failed")


def format_hoyolab_results(results: List[ClaimResult]) -> str:
    if not results:
        return "No games configured for claiming"
    lines = []
    for r in results:
        icon = ("🔄" if r.already_claimed else "✅") if r.success else "❌"
        lines.append(f"{icon} **{r.game}**: {r.message}")
    return "\n".join(lines)
