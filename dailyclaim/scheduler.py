"""Daily claim scheduler.

Fires once per local day at ``hour:minute`` in a fixed timezone, streams every
account that has credentials, and works through them in fixed-size batches:
all members of a batch run concurrently, the batch is awaited to completion,
then a fixed pause before the next one. An account that blows up is logged
and counted; it never cancels its siblings.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from .config import (
    CLAIM_BATCH_SIZE, CLAIM_BATCH_DELAY, CLAIM_HOUR_LOCAL, CLAIM_MINUTE_LOCAL, LOCAL_TZ, SHARD_ID,
)

IDLE = "idle"
FIRING = "firing"
BATCH_RUNNING = "batch_running"

LAST_RUN_META_KEY = "last_claim_date"


@dataclass
class RunStats:
    processed: int = 0
    failed: int = 0
    batches: int = 0


async def run_in_batches(
    accounts: AsyncIterator,
    worker: Callable[[object], Awaitable],
    batch_size: int = CLAIM_BATCH_SIZE,
    delay: float = CLAIM_BATCH_DELAY,
    sleep=asyncio.sleep,
    on_batch: Optional[Callable[[], None]] = None,
) -> RunStats:
    stats = RunStats()
    batch: List = []

    async def flush():
        if stats.batches > 0:
            await sleep(delay)
        stats.batches += 1
        if on_batch:
            on_batch()
        results = await asyncio.gather(*(worker(a) for a in batch), return_exceptions=True)
        for acc, res in zip(batch, results):
            stats.processed += 1
            if isinstance(res, BaseException):
                stats.failed += 1
                print(f"[scheduler] account {getattr(acc, 'discord_id', acc)} failed: {res!r}")

    async for account in accounts:
        batch.append(account)
        if len(batch) >= max(1, batch_size):
            await flush()
            batch = []
    if batch:
        await flush()
    return stats


def is_designated_shard(shard_id: Optional[int] = SHARD_ID) -> bool:
    # unsharded bots report None
    return shard_id in (None, 0)


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds <= 0:
        return "N/A"
    minutes, hours = seconds // 60, seconds // 3600
    if hours > 0:
        rem = minutes % 60
        return f"{hours}h {rem}m" if rem else f"{hours}h"
    if minutes > 0:
        rem = seconds % 60
        return f"{minutes}m {rem}s" if rem else f"{minutes}m"
    return f"{seconds}s"


class DailyClaimScheduler:
    """Idle -> Firing -> BatchRunning -> Idle, once per local day."""

    def __init__(self, service, store, hour: int = CLAIM_HOUR_LOCAL, minute: int = CLAIM_MINUTE_LOCAL,
                 tz=LOCAL_TZ, batch_size: int = CLAIM_BATCH_SIZE, delay: float = CLAIM_BATCH_DELAY,
                 shard_id: Optional[int] = SHARD_ID, sleep=asyncio.sleep):
        self.service = service
        self.store = store
        self.hour = hour
        self.minute = minute
        self.tz = tz
        self.batch_size = batch_size
        self.delay = delay
        self.shard_id = shard_id
        self._sleep = sleep
        self.state = IDLE
        self.last_stats: Optional[RunStats] = None

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def is_due(self, now_local: datetime) -> bool:
        if self.store.get_meta(LAST_RUN_META_KEY, "") == now_local.date().isoformat():
            return False
        return (now_local.hour, now_local.minute) >= (self.hour, self.minute)

    def next_run(self, now_local: Optional[datetime] = None) -> datetime:
        now_local = now_local or self.now()
        nxt = now_local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if now_local >= nxt:
            nxt += timedelta(days=1)
        return nxt

    def time_until_next_run(self, now_local: Optional[datetime] = None) -> str:
        now_local = now_local or self.now()
        return format_duration((self.next_run(now_local) - now_local).total_seconds())

    async def tick(self, now_local: Optional[datetime] = None) -> Optional[RunStats]:
        """Called every minute by the bot loop. Runs the day's claims at most once."""
        now_local = now_local or self.now()
        if not is_designated_shard(self.shard_id):
            return None
        if self.state != IDLE or not self.is_due(now_local):
            return None
        # mark first so a crash mid-run never causes a second run the same day
        self.store.set_meta(LAST_RUN_META_KEY, now_local.date().isoformat())
        return await self.run()

    async def run(self) -> Optional[RunStats]:
        if self.state != IDLE:
            print("[scheduler] run already in progress, skipping")
            return None
        self.state = FIRING
        print(f"[scheduler] running daily claims (batch={self.batch_size}, delay={self.delay:g}s)")
        try:
            stats = await run_in_batches(
                self.store.iter_accounts_with_credentials(),
                self.service.process_account,
                batch_size=self.batch_size,
                delay=self.delay,
                sleep=self._sleep,
                on_batch=self._enter_batch,
            )
        except Exception as e:
            print(f"[scheduler] run aborted: {e!r}")
            stats = None
        finally:
            self.state = IDLE
        if stats:
            self.last_stats = stats
            print(f"[scheduler] daily claims done: {stats.processed} accounts in {stats.batches} batch(es), "
                  f"{stats.failed} failed")
        return stats

    def _enter_batch(self):
        self.state = BATCH_RUNNING
