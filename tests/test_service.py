"""Tests for `dailyclaim.service` and the DM delivery path in `dailyclaim.reporter`."""

import asyncio
from datetime import datetime, timedelta, timezone

import aiohttp
import pytest

from conftest import FakeSession, RecordingSleep
from dailyclaim.cred_cache import CredentialCache
from dailyclaim.endfield import token_fingerprint
from dailyclaim.errors import ValidationError
from dailyclaim.models import AccountClaimOutcome, ClaimResult, SigningCredential, REASON_TRANSPORT
from dailyclaim.reporter import deliver_summary, format_summary, build_summary_embed, SUMMARY_TITLE
from dailyclaim.scheduler import DailyClaimScheduler
from dailyclaim.service import ClaimService

COOKIE = "ltoken_v2=v2_abcdefghijklmnop; ltuid_v2=123456789"
EF_TOKEN = "e" * 32
TZ = timezone(timedelta(hours=8))

EF_OK = {"code": 0, "message": "OK", "data": {}}
HOYO_OK = {"retcode": 0, "message": "OK"}


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_direct_message(self, user_id, content, embed=None):
        if self.fail:
            raise RuntimeError("Cannot send messages to this user")
        self.sent.append((user_id, content, embed))


class StubExchange:
    def __init__(self):
        self.tokens = []

    async def __call__(self, token, session=None):
        self.tokens.append(token)
        return SigningCredential(cred="cred", signing_secret="secret", user_id="1")


def make_service(store, session, notifier=None, cache=None):
    if cache is None:
        cache = CredentialCache()
    return ClaimService(store, cache=cache, notifier=notifier, session=session,
                        sleep=RecordingSleep(), exchange=StubExchange())


def test_both_platforms_attempted_when_hoyolab_crashes(tmp_store):
    def explode(call):
        raise ValueError("unexpected payload")

    session = (FakeSession()
               .add("POST", "hoyolab.com", explode)
               .add("POST", "/endfield/attendance", EF_OK))
    tmp_store.upsert_hoyolab(1, "a", COOKIE, games=["genshin"])
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "10012345")
    service = make_service(tmp_store, session)

    outcome = asyncio.run(service.claim_for_account(1))

    assert not outcome.hoyolab_results[0].success
    assert "unexpected payload" in outcome.hoyolab_results[0].message
    assert outcome.endfield_result.success

    rec = tmp_store.find_one(1)
    assert rec.hoyolab.last_claim_result.startswith("❌")
    assert rec.endfield.last_claim_result.startswith("✅")
    assert rec.endfield.last_claim is not None


def test_claim_for_unknown_account(tmp_store):
    assert asyncio.run(make_service(tmp_store, FakeSession()).claim_for_account(9)) is None


def test_process_account_sends_dm_when_opted_in(tmp_store):
    session = FakeSession().add("POST", "hoyolab.com", HOYO_OK)
    tmp_store.upsert_hoyolab(1, "a", COOKIE, games=["genshin"])
    notifier = FakeNotifier()
    service = make_service(tmp_store, session, notifier)

    asyncio.run(service.process_account(tmp_store.find_one(1)))

    assert len(notifier.sent) == 1
    user_id, content, embed = notifier.sent[0]
    assert user_id == "1"
    assert "Genshin Impact" in content
    assert embed.title == SUMMARY_TITLE


def test_process_account_respects_notify_off(tmp_store):
    session = FakeSession().add("POST", "hoyolab.com", HOYO_OK)
    tmp_store.upsert_hoyolab(1, "a", COOKIE, games=["genshin"])
    tmp_store.set_notify(1, False)
    notifier = FakeNotifier()
    asyncio.run(make_service(tmp_store, session, notifier).process_account(tmp_store.find_one(1)))
    assert notifier.sent == []
    assert tmp_store.find_one(1).hoyolab.last_claim_result


def test_dm_failure_is_swallowed(tmp_store, capsys):
    session = FakeSession().add("POST", "hoyolab.com", HOYO_OK)
    tmp_store.upsert_hoyolab(1, "a", COOKIE, games=["genshin"])
    service = make_service(tmp_store, session, FakeNotifier(fail=True))

    outcome = asyncio.run(service.process_account(tmp_store.find_one(1)))

    assert outcome.hoyolab_results[0].success
    assert "[notify]" in capsys.readouterr().out


def test_persist_failure_is_logged_not_raised(tmp_store, capsys):
    class BrokenStore:
        def update_claim_result(self, *a, **kw):
            raise RuntimeError("disk full")

    service = ClaimService(BrokenStore(), cache=CredentialCache())
    tmp_store.upsert_hoyolab(1, "a", COOKIE)
    record = tmp_store.find_one(1)
    service.persist(record, AccountClaimOutcome(hoyolab_results=[ClaimResult(True, "ok", game="GI")]))
    assert "[store]" in capsys.readouterr().out


def ef_key(game_id, server, token=EF_TOKEN):
    return (game_id, server, token_fingerprint(token))


def test_auth_failure_clears_cached_credential(tmp_store):
    session = FakeSession().add("POST", "/endfield/attendance", {"code": 10002, "message": "expired"})
    cache = CredentialCache()
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "10012345", "2")
    service = make_service(tmp_store, session, cache=cache)

    outcome = asyncio.run(service.claim_for_account(1))

    assert outcome.endfield_result.needs_setup
    assert ef_key("10012345", "2") not in cache


def test_success_keeps_cached_credential(tmp_store):
    session = FakeSession().add("POST", "/endfield/attendance", EF_OK)
    cache = CredentialCache()
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "10012345", "2")
    service = make_service(tmp_store, session, cache=cache)
    asyncio.run(service.claim_for_account(1))
    asyncio.run(service.claim_for_account(1))
    assert ef_key("10012345", "2") in cache
    assert service._exchange.tokens == [EF_TOKEN]


def test_clear_cached_credential(tmp_store):
    other_token = "o" * 32
    cache = CredentialCache()
    cache.put(ef_key("10012345", "2"), SigningCredential("c", "s", "1"))
    cache.put(ef_key("10012345", "3"), SigningCredential("c", "s", "1"))
    cache.put(ef_key("10012345", "2", other_token), SigningCredential("c2", "s2", "2"))
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "10012345", "2")
    service = make_service(tmp_store, FakeSession(), cache=cache)
    assert service.clear_cached_credential(1) == 2
    assert len(cache) == 1
    assert ef_key("10012345", "2", other_token) in cache
    assert service.clear_cached_credential(404) == 0


def test_two_users_on_one_game_uid_each_exchange_their_own_token(tmp_store):
    def attendance(call):
        if call.headers["cred"] == "cred-of-bbb":
            return {"code": 10002, "message": "expired"}
        return EF_OK

    class PerTokenExchange:
        def __init__(self):
            self.tokens = []

        async def __call__(self, token, session=None):
            self.tokens.append(token)
            return SigningCredential(cred=f"cred-of-{token[:3]}", signing_secret="secret", user_id="1")

    token_a, token_b = "a" * 32, "b" * 32
    session = FakeSession().add("POST", "/endfield/attendance", attendance)
    cache = CredentialCache()
    exchange = PerTokenExchange()
    service = ClaimService(tmp_store, cache=cache, session=session, sleep=RecordingSleep(), exchange=exchange)
    tmp_store.upsert_endfield(1, "a", token_a, "10012345", "2")
    tmp_store.upsert_endfield(2, "b", token_b, "10012345", "2")

    first = asyncio.run(service.claim_for_account(1))
    second = asyncio.run(service.claim_for_account(2))

    assert exchange.tokens == [token_a, token_b]
    assert [c.headers["cred"] for c in session.calls] == ["cred-of-aaa", "cred-of-bbb"]
    assert first.endfield_result.success
    assert second.endfield_result.needs_setup
    # user 2's rejected credential must not evict user 1's
    assert ef_key("10012345", "2", token_a) in cache
    assert ef_key("10012345", "2", token_b) not in cache


def test_persist_stores_endfield_even_when_hoyolab_write_fails(tmp_store, capsys):
    class FlakyStore:
        def __init__(self):
            self.saved = []

        def update_claim_result(self, discord_id, platform, summary, timestamp=None):
            if platform == "hoyolab":
                raise RuntimeError("database is locked")
            self.saved.append((discord_id, platform, summary))

    store = FlakyStore()
    service = ClaimService(store, cache=CredentialCache())
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "1")
    record = tmp_store.find_one(1)
    service.persist(record, AccountClaimOutcome(
        hoyolab_results=[ClaimResult(True, "ok", game="GI")],
        endfield_result=ClaimResult(True, "Check-in successful", game="Arknights: Endfield"),
    ))
    assert [(d, p) for d, p, _ in store.saved] == [("1", "endfield")]
    assert "[store] failed to save hoyolab result" in capsys.readouterr().out


def test_validate_params_dispatch():
    assert ClaimService.validate_params("hoyolab", {"token": COOKIE, "games": ["genshin"]}).valid
    assert ClaimService.validate_params("endfield", {"account_token": EF_TOKEN, "game_id": "1", "server": "3"}).valid
    assert not ClaimService.validate_params("endfield", {"account_token": "x", "game_id": "1"}).valid
    assert not ClaimService.validate_params("steam", {}).valid


def test_scheduled_run_isolates_one_bad_account(tmp_store):
    def attendance(call):
        if call.headers["sk-game-role"] == "3_3_2":
            raise aiohttp.ClientConnectionError("connection reset")
        return EF_OK

    session = FakeSession().add("POST", "/endfield/attendance", attendance)
    for i in range(1, 6):
        tmp_store.upsert_endfield(i, f"u{i}", EF_TOKEN, str(i))
    notifier = FakeNotifier()
    service = make_service(tmp_store, session, notifier)
    sched = DailyClaimScheduler(service, tmp_store, hour=0, minute=5, tz=TZ, batch_size=5, delay=2.0,
                                shard_id=0, sleep=RecordingSleep())

    stats = asyncio.run(sched.tick(datetime(2026, 3, 1, 0, 5, tzinfo=TZ)))

    assert stats.processed == 5 and stats.failed == 0
    results = {str(i): tmp_store.find_one(i).endfield.last_claim_result for i in range(1, 6)}
    assert all(results.values())
    assert results["3"].startswith("❌")
    assert all(results[k].startswith("✅") for k in ("1", "2", "4", "5"))
    assert len(notifier.sent) == 5


def test_summary_formatting():
    outcome = AccountClaimOutcome(
        hoyolab_results=[ClaimResult(True, "Claimed successfully!", game="Genshin Impact")],
        endfield_result=ClaimResult(False, "Network error: reset", game="Arknights: Endfield",
                                    reason=REASON_TRANSPORT),
    )
    text = format_summary(outcome)
    assert text.startswith("**Hoyolab**\n✅ **Genshin Impact**")
    assert "**SKPORT/Endfield**\n❌ **Arknights: Endfield**: Network error: reset" in text
    assert build_summary_embed(outcome).footer.text is None


def test_deliver_summary_skips_empty_outcome():
    notifier = FakeNotifier()
    assert asyncio.run(deliver_summary(notifier, "1", AccountClaimOutcome())) is False
    assert notifier.sent == []


def test_require_valid_raises_with_message():
    with pytest.raises(ValidationError) as exc:
        ClaimService.require_valid("endfield", {"account_token": EF_TOKEN, "game_id": "12ab"})
    assert "Game ID" in str(exc.value)
    ClaimService.require_valid("hoyolab", {"token": COOKIE})
