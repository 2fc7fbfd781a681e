"""Gryphline account token -> SKPORT signing credential.

Three calls, in order, no retries: basic info, grant code, generate cred.
Any step that comes back non-zero raises ``OAuthStepFailure`` naming the step.
"""
import urllib.parse
from typing import Optional

from .config import AUX_TIMEOUT
from .errors import OAuthStepFailure
from .models import SigningCredential
from .signing import ENDFIELD_PLATFORM
from .transport import request_json, open_session, mask_token

BASIC_INFO_URL = "https://as.gryphline.com/user/info/v1/basic"
GRANT_CODE_URL = "https://as.gryphline.com/user/oauth2/v2/grant"
GENERATE_CRED_URL = "https://zonai.skport.com/web/v1/user/auth/generate_cred_by_code"

APP_CODE = "6eb76d4e13aa36e6"

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
SKPORT_HEADERS = {
    **JSON_HEADERS,
    "platform": ENDFIELD_PLATFORM,
    "Referer": "https://www.skport.com/",
    "Origin": "https://www.skport.com",
}


def normalize_account_token(raw: str) -> str:
    token = (raw or "").strip()
    if "%" in token:
        token = urllib.parse.unquote(token)
    return token


def _message(body: Optional[dict], code_field: str) -> str:
    if not body:
        return "empty response"
    return body.get("msg") or body.get("message") or f"{code_field} {body.get(code_field)}"


async def get_basic_info(session, token: str) -> dict:
    status, body = await request_json(
        session, "GET", BASIC_INFO_URL,
        params={"token": token}, headers=JSON_HEADERS, timeout=AUX_TIMEOUT,
    )
    if not body or body.get("status") != 0 or not (body.get("data") or {}).get("hgId"):
        raise OAuthStepFailure("step1", _message(body, "status") if body else f"HTTP {status}")
    return body["data"]


async def grant_code(session, token: str) -> str:
    status, body = await request_json(
        session, "POST", GRANT_CODE_URL,
        json_body={"token": token, "appCode": APP_CODE, "type": 0},
        headers=JSON_HEADERS, timeout=AUX_TIMEOUT,
    )
    code = ((body or {}).get("data") or {}).get("code")
    if not body or body.get("status") != 0 or not code:
        raise OAuthStepFailure("step2", _message(body, "status") if body else f"HTTP {status}")
    return code


async def generate_cred(session, code: str) -> dict:
    status, body = await request_json(
        session, "POST", GENERATE_CRED_URL,
        json_body={"code": code, "kind": 1},
        headers=SKPORT_HEADERS, timeout=AUX_TIMEOUT,
    )
    data = (body or {}).get("data") or {}
    if not body or body.get("code") != 0 or not data.get("cred") or not data.get("token"):
        raise OAuthStepFailure("step3", _message(body, "code") if body else f"HTTP {status}")
    return data


async def exchange_credentials(account_token: str, session=None) -> SigningCredential:
    token = normalize_account_token(account_token)
    print(f"[endfield-oauth] exchanging token {mask_token(token)}")
    async with open_session(session, timeout=AUX_TIMEOUT) as s:
        info = await get_basic_info(s, token)
        code = await grant_code(s, token)
        data = await generate_cred(s, code)
    print(f"[endfield-oauth] credentials obtained for hgId={info.get('hgId')}")
    return SigningCredential(
        cred=data["cred"],
        signing_secret=data["token"],
        user_id=str(data.get("userId") or ""),
        hg_id=info.get("hgId"),
    )
