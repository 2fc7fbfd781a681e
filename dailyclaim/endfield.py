"""SKPORT / Arknights: Endfield daily attendance."""
import hashlib
import re
import urllib.parse
from typing import Optional, List, Dict, Any, Tuple

from .config import CLAIM_TIMEOUT
from .cred_cache import CredentialCache
from .endfield_oauth import exchange_credentials, normalize_account_token
from .errors import OAuthStepFailure, TransportError, NoCredentials
from .models import (
    ClaimResult, Reward, SigningCredential, ValidationResult,
    REASON_AUTH, REASON_OAUTH, REASON_TRANSPORT, REASON_NO_CREDENTIALS,
)
from .signing import build_sign_headers, ENDFIELD_PLATFORM, ENDFIELD_VERSION
from .transport import request_json, open_session

ENDFIELD_NAME = "Arknights: Endfield"
ENDFIELD_ATTENDANCE_URL = "https://zonai.skport.com/web/v1/game/endfield/attendance"

ENDFIELD_SERVERS = {"2": "Asia", "3": "Americas/Europe"}
ENDFIELD_MIN_TOKEN_LENGTH = 20

ENDFIELD_HEADERS = {
    "accept": "*/*",
    "content-type": "application/json",
    "origin": "https://game.skport.com",
    "referer": "https://game.skport.com/",
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:147.0) Gecko/20100101 Firefox/147.0",
    "accept-language": "en-CA,en-US;q=0.9,en;q=0.8",
    "sk-language": "en",
}

SUCCESS_CODE = 0
ALREADY_CLAIMED_CODES = {10001}
AUTH_FAILURE_CODES = {10000, 10002, 10003}
ALREADY_CLAIMED_PHRASES = ("already", "请勿重复签到", "do not sign in again")

DIGITS_RX = re.compile(r"^\d+$")


def validate_params(account_token: str, game_id: str, server: str) -> ValidationResult:
    token = (account_token or "").strip()
    if len(token) < ENDFIELD_MIN_TOKEN_LENGTH:
        return ValidationResult(False, "❌ Invalid account token (too short). Copy the full ACCOUNT_TOKEN value.")
    if not game_id or not DIGITS_RX.match(game_id.strip()):
        return ValidationResult(False, "❌ Invalid Game ID (must be numbers only)")
    if server not in ENDFIELD_SERVERS:
        return ValidationResult(
            False, f"❌ Invalid server (use 2 for {ENDFIELD_SERVERS['2']} or 3 for {ENDFIELD_SERVERS['3']})"
        )
    return ValidationResult(True)


def game_role(game_id: str, server: str) -> str:
    return f"{ENDFIELD_PLATFORM}_{game_id}_{server}"


def token_fingerprint(account_token: Optional[str]) -> str:
    """Stable short id for an account token. Cache keys carry this, never the token."""
    token = normalize_account_token(account_token or "")
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def _reward_count(value: Any) -> int:
    try:
        return int(value) if value not in (None, "") else 1
    except (TypeError, ValueError):
        return 1


def parse_rewards(award_ids: Any, resource_info_map: Any) -> List[Reward]:
    if not isinstance(award_ids, list) or not isinstance(resource_info_map, dict):
        return []
    out: List[Reward] = []
    for entry in award_ids:
        rid = entry.get("id") if isinstance(entry, dict) else None
        info = resource_info_map.get(rid) if isinstance(rid, str) else None
        # the reward is already granted by now; an odd entry is dropped, not fatal
        if not isinstance(info, dict):
            continue
        out.append(Reward(
            name=str(info.get("name") or rid),
            count=_reward_count(info.get("count")),
            id=str(info.get("id") or rid),
            icon=info.get("icon") if isinstance(info.get("icon"), str) else None,
        ))
    return out


def is_already_claimed(code: Any, message: str, data: Dict[str, Any]) -> bool:
    msg = (message or "").lower()
    return (
        data.get("hasToday") is True
        or code in ALREADY_CLAIMED_CODES
        or any(p.lower() in msg for p in ALREADY_CLAIMED_PHRASES)
    )


def interpret_attendance(status: int, body: Optional[Dict[str, Any]]) -> ClaimResult:
    """Normalise one attendance response. Every upstream wording change lands here."""
    if body is None:
        return ClaimResult(False, f"HTTP {status}: no response body", game=ENDFIELD_NAME, reason=REASON_TRANSPORT)

    code = body.get("code", body.get("retcode"))
    message = body.get("message") or body.get("msg") or ""
    data = body.get("data") if isinstance(body.get("data"), dict) else {}

    if status == 200 and code == SUCCESS_CODE:
        rewards = parse_rewards(data.get("awardIds"), data.get("resourceInfoMap"))
        text = "Check-in successful" if message in ("", "OK") else message
        return ClaimResult(True, text, rewards=rewards or None, game=ENDFIELD_NAME)

    if is_already_claimed(code, message, data):
        return ClaimResult(True, "Already checked in today", already_claimed=True, game=ENDFIELD_NAME)

    if code in AUTH_FAILURE_CODES or status in (401, 403):
        return ClaimResult(
            False, "Authentication failed, run /setup-endfield again", game=ENDFIELD_NAME, reason=REASON_AUTH
        )

    if status != 200:
        return ClaimResult(False, f"HTTP {status}: {message or 'Request failed'}", game=ENDFIELD_NAME,
                           reason=REASON_TRANSPORT)
    return ClaimResult(False, message or f"Unknown response code {code}", game=ENDFIELD_NAME)


class EndfieldClient:
    """One Endfield game account. Signing credentials come from the shared cache
    or, on miss/expiry, from a fresh OAuth exchange."""

    def __init__(self, account_token: Optional[str], game_id: str, server: str = "2",
                 cache: Optional[CredentialCache] = None, session=None,
                 exchange=exchange_credentials):
        self.account_token = account_token
        self.game_id = str(game_id)
        self.server = server or "2"
        self.cache = cache if cache is not None else CredentialCache()
        self.session = session
        self._exchange = exchange

    @property
    def cache_key(self) -> Tuple[str, str, str]:
        return (self.game_id, self.server, token_fingerprint(self.account_token))

    @staticmethod
    def validate_params(account_token: str, game_id: str, server: str) -> ValidationResult:
        return validate_params(account_token, game_id, server)

    async def resolve_credential(self) -> SigningCredential:
        cached = self.cache.get(self.cache_key)
        if cached:
            return cached
        if not (self.account_token or "").strip():
            raise NoCredentials("No Endfield account token stored")
        cred = await self._exchange(self.account_token, session=self.session)
        self.cache.put(self.cache_key, cred)
        return cred

    def build_headers(self, cred: SigningCredential) -> Dict[str, str]:
        path = urllib.parse.urlparse(ENDFIELD_ATTENDANCE_URL).path
        sign_headers = build_sign_headers(
            path, cred.cred, cred.signing_secret,
            platform=ENDFIELD_PLATFORM, version_name=ENDFIELD_VERSION,
        )
        return {
            **ENDFIELD_HEADERS,
            "cred": cred.cred,
            "sk-game-role": game_role(self.game_id, self.server),
            **sign_headers,
        }

    async def claim(self) -> ClaimResult:
        try:
            cred = await self.resolve_credential()
        except NoCredentials as e:
            return ClaimResult(False, f"{e}. Run /setup-endfield first.", game=ENDFIELD_NAME,
                               reason=REASON_NO_CREDENTIALS)
        except OAuthStepFailure as e:
            print(f"[endfield] exchange failed for {self.game_id}: {e}")
            return ClaimResult(False, f"Credentials invalid, re-setup required ({e.step}: {e.message})",
                               game=ENDFIELD_NAME, reason=REASON_OAUTH)
        except TransportError as e:
            return ClaimResult(False, str(e), game=ENDFIELD_NAME, reason=REASON_TRANSPORT)

        headers = self.build_headers(cred)
        print(f"[endfield] attendance for sk-game-role={headers['sk-game-role']}")
        try:
            async with open_session(self.session, timeout=CLAIM_TIMEOUT) as s:
                status, body = await request_json(
                    s, "POST", ENDFIELD_ATTENDANCE_URL, headers=headers, data="{}", timeout=CLAIM_TIMEOUT,
                )
        except TransportError as e:
            print(f"[endfield] transport error for {self.game_id}: {e}")
            return ClaimResult(False, str(e), game=ENDFIELD_NAME, reason=REASON_TRANSPORT)

        result = interpret_attendance(status, body)
        print(f"[endfield] {self.game_id}: HTTP {status} -> {result.message}")
        return result


def format_endfield_result(result: ClaimResult) -> str:
    if result.already_claimed:
        return f"✅ **{ENDFIELD_NAME}**: Already claimed today"
    if not result.success:
        return f"❌ **{ENDFIELD_NAME}**: {result.message}"
    msg = f"✅ **{ENDFIELD_NAME}**: {result.message}"
    if result.rewards:
        msg += "\n" + "\n".join(f"• {r.name} x{r.count or 1}" for r in result.rewards)
    return msg
