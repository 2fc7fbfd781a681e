# =========================
# Config / ENV
# =========================
import os
from datetime import timedelta, timezone

DB_PATH = os.getenv("DB_PATH", "dailyclaim.db")

CLAIM_HOUR_LOCAL = int(os.getenv("CLAIM_HOUR_LOCAL", "0"))
CLAIM_MINUTE_LOCAL = int(os.getenv("CLAIM_MINUTE_LOCAL", "5"))

CLAIM_BATCH_SIZE = int(os.getenv("CLAIM_BATCH_SIZE", "5"))
CLAIM_BATCH_DELAY = float(os.getenv("CLAIM_BATCH_DELAY", "2.0"))      # seconds between batches
HOYOLAB_GAME_DELAY = float(os.getenv("HOYOLAB_GAME_DELAY", "1.0"))    # seconds between games of one account

CRED_CACHE_TTL_MINUTES = int(os.getenv("CRED_CACHE_TTL_MINUTES", "25"))  # upstream cred lives ~30m

CLAIM_TIMEOUT = float(os.getenv("CLAIM_TIMEOUT", "30"))
AUX_TIMEOUT = float(os.getenv("AUX_TIMEOUT", "15"))

# sharded deployments: only shard 0 runs the daily fire
SHARD_ID = int(os.getenv("SHARD_ID")) if os.getenv("SHARD_ID") else None
SHARD_COUNT = int(os.getenv("SHARD_COUNT")) if os.getenv("SHARD_COUNT") else None

try:
    from zoneinfo import ZoneInfo
    LOCAL_TZ = ZoneInfo(os.getenv("TIMEZONE", "Asia/Singapore"))
except Exception:
    LOCAL_TZ = timezone(timedelta(hours=8))  # fallback UTC+8
