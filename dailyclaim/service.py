"""Account-level claim orchestration.

This is the single boundary between "something went wrong" and "a stored,
readable result". Every claim path (daily scheduler or the /claim command)
goes through ``ClaimService``.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from .cred_cache import CredentialCache
from .endfield import EndfieldClient, format_endfield_result, token_fingerprint, ENDFIELD_NAME
from .endfield_oauth import exchange_credentials
from .errors import ValidationError
from .hoyolab import HoyolabClient, format_hoyolab_results
from .models import AccountRecord, AccountClaimOutcome, ClaimResult, ValidationResult, REASON_AUTH
from .reporter import deliver_summary
from .store import AccountStore


class ClaimService:
    def __init__(self, store: AccountStore, cache: Optional[CredentialCache] = None,
                 notifier=None, session=None, sleep=asyncio.sleep, exchange=exchange_credentials):
        self.store = store
        self.cache = cache if cache is not None else CredentialCache()
        self.notifier = notifier
        self.session = session
        self._sleep = sleep
        self._exchange = exchange

    # ---- validation (pure) ----
    @staticmethod
    def validate_params(platform: str, fields: Dict[str, Any]) -> ValidationResult:
        if platform == "hoyolab":
            return HoyolabClient.validate_params(fields.get("token", ""), fields.get("games"))
        if platform == "endfield":
            return EndfieldClient.validate_params(
                fields.get("account_token", ""), fields.get("game_id", ""), fields.get("server", "2")
            )
        return ValidationResult(False, f"Unknown platform: {platform}")

    @classmethod
    def require_valid(cls, platform: str, fields: Dict[str, Any]):
        check = cls.validate_params(platform, fields)
        if not check.valid:
            raise ValidationError(check.message)

    def clear_cached_credential(self, discord_id) -> int:
        """Force a fresh OAuth exchange on the next Endfield claim for this user."""
        record = self.store.find_one(discord_id)
        if not record or not record.endfield:
            return 0
        return self.cache.invalidate_account(record.endfield.game_id,
                                             owner=token_fingerprint(record.endfield.account_token))

    # ---- claims ----
    def hoyolab_client(self, record: AccountRecord) -> HoyolabClient:
        return HoyolabClient(record.hoyolab.token, session=self.session, sleep=self._sleep)

    def endfield_client(self, record: AccountRecord) -> EndfieldClient:
        ef = record.endfield
        return EndfieldClient(ef.account_token, ef.game_id, ef.server,
                              cache=self.cache, session=self.session, exchange=self._exchange)

    async def _claim_hoyolab(self, record: AccountRecord):
        try:
            return await self.hoyolab_client(record).claim(record.hoyolab.games)
        except Exception as e:
            print(f"[claim] hoyolab error for {record.discord_id}: {e}")
            return [ClaimResult(False, f"Error: {e}", game="Hoyolab")]

    async def _claim_endfield(self, record: AccountRecord) -> ClaimResult:
        client = self.endfield_client(record)
        try:
            result = await client.claim()
        except Exception as e:
            print(f"[claim] endfield error for {record.discord_id}: {e}")
            return ClaimResult(False, f"Error: {e}", game=ENDFIELD_NAME)
        if result.reason == REASON_AUTH:
            # cached cred was rejected; next attempt must exchange again
            self.cache.invalidate(client.cache_key)
        return result

    async def claim_record(self, record: AccountRecord) -> AccountClaimOutcome:
        """Claim both platforms for one account. Each is attempted even if the other fails."""
        outcome = AccountClaimOutcome()
        if record.hoyolab and record.hoyolab.token:
            outcome.hoyolab_results = await self._claim_hoyolab(record)
        if record.endfield and record.endfield.account_token:
            outcome.endfield_result = await self._claim_endfield(record)
        return outcome

    def persist(self, record: AccountRecord, outcome: AccountClaimOutcome, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        summaries = []
        if outcome.hoyolab_results is not None:
            summaries.append(("hoyolab", lambda: format_hoyolab_results(outcome.hoyolab_results)))
        if outcome.endfield_result is not None:
            summaries.append(("endfield", lambda: format_endfield_result(outcome.endfield_result)))
        for platform, summary in summaries:
            try:
                self.store.update_claim_result(record.discord_id, platform, summary(), now)
            except Exception as e:
                print(f"[store] failed to save {platform} result for {record.discord_id}: {e}")

    async def claim_for_account(self, discord_id) -> Optional[AccountClaimOutcome]:
        """On-demand claim. Safe to run alongside the scheduler for the same user."""
        record = self.store.find_one(discord_id)
        if not record:
            return None
        outcome = await self.claim_record(record)
        self.persist(record, outcome)
        return outcome

    async def process_account(self, record: AccountRecord) -> AccountClaimOutcome:
        """Scheduler work unit: claim, persist, then DM if the user opted in."""
        outcome = await self.claim_record(record)
        self.persist(record, outcome)
        if record.notify_on_claim and self.notifier is not None and not outcome.empty:
            await deliver_summary(self.notifier, record.discord_id, outcome)
        return outcome
