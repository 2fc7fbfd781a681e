"""Tests for `dailyclaim.store`."""

import asyncio
from datetime import datetime, timezone

import pytest

from dailyclaim.store import AccountStore

COOKIE = "ltoken_v2=v2_abcdefghijklmnop; ltuid_v2=123456789"
EF_TOKEN = "e" * 32


async def collect(agen):
    return [x async for x in agen]


def test_upsert_and_find(tmp_store):
    tmp_store.upsert_hoyolab(1, "alice", COOKIE, "Alice#1", games=["starRail", "genshin", "genshin"])
    tmp_store.upsert_endfield(1, "", EF_TOKEN, "10012345", "3", "Endmin")

    rec = tmp_store.find_one("1")
    assert rec.discord_id == "1"
    assert rec.username == "alice"
    assert rec.hoyolab.token == COOKIE
    assert rec.hoyolab.games == {"genshin", "starRail"}
    assert rec.endfield.game_id == "10012345"
    assert rec.endfield.server == "3"
    assert rec.notify_on_claim is True


def test_find_missing_returns_none(tmp_store):
    assert tmp_store.find_one("404") is None


def test_update_claim_result_and_notify(tmp_store):
    tmp_store.upsert_endfield(2, "bob", EF_TOKEN, "1")
    ts = datetime(2026, 3, 1, 16, 5, tzinfo=timezone.utc)
    tmp_store.update_claim_result(2, "endfield", "✅ done", ts)
    tmp_store.set_notify(2, False)

    rec = tmp_store.find_one(2)
    assert rec.endfield.last_claim_result == "✅ done"
    assert rec.endfield.last_claim == ts
    assert rec.notify_on_claim is False


def test_update_claim_result_rejects_unknown_platform(tmp_store):
    with pytest.raises(ValueError):
        tmp_store.update_claim_result(1, "steam", "x")


def test_remove_platform_keeps_the_other(tmp_store):
    tmp_store.upsert_hoyolab(3, "c", COOKIE, games=["genshin"])
    tmp_store.upsert_endfield(3, "c", EF_TOKEN, "1")
    tmp_store.remove_platform(3, "hoyolab")

    rec = tmp_store.find_one(3)
    assert rec.hoyolab is None
    assert rec.endfield is not None


def test_iter_only_accounts_with_credentials(tmp_store):
    for i in range(7):
        tmp_store.upsert_hoyolab(100 + i, f"u{i}", COOKIE, games=["genshin"])
    tmp_store.upsert_endfield(200, "ef", EF_TOKEN, "1")
    tmp_store.upsert_hoyolab(300, "gone", COOKIE)
    tmp_store.remove_platform(300, "hoyolab")

    ids = [r.discord_id for r in asyncio.run(collect(tmp_store.iter_accounts_with_credentials(page_size=3)))]
    assert ids == [str(100 + i) for i in range(7)] + ["200"]


def test_counts_and_delete(tmp_store):
    tmp_store.upsert_hoyolab(1, "a", COOKIE)
    tmp_store.upsert_endfield(1, "a", EF_TOKEN, "1")
    tmp_store.upsert_endfield(2, "b", EF_TOKEN, "2")
    tmp_store.set_notify(2, False)
    assert tmp_store.count_accounts() == {"total": 2, "hoyolab": 1, "endfield": 2, "notify": 1}

    tmp_store.delete_account(1)
    assert tmp_store.find_one(1) is None
    assert tmp_store.count_accounts()["total"] == 1


def test_meta_roundtrip_and_default(tmp_store):
    assert tmp_store.get_meta("last_claim_date", "never") == "never"
    tmp_store.set_meta("last_claim_date", "2026-03-02")
    tmp_store.set_meta("last_claim_date", "2026-03-03")
    assert tmp_store.get_meta("last_claim_date") == "2026-03-03"


def test_store_initialises_lazily(tmp_path):
    store = AccountStore(str(tmp_path / "lazy.db"))
    assert store.find_one("1") is None
    store.upsert_hoyolab(1, "x", COOKIE)
    assert store.find_one(1).hoyolab.account_name == "Unknown"
