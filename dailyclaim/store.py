import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Iterable, AsyncIterator, Dict

from .config import DB_PATH
from .models import AccountRecord, HoyolabProfile, EndfieldProfile

ACCOUNT_COLUMNS = (
    "discord_id, username, notify_on_claim, "
    "hoyolab_token, hoyolab_games, hoyolab_account_name, hoyolab_last_claim, hoyolab_last_result, "
    "endfield_account_token, endfield_game_id, endfield_server, endfield_account_name, "
    "endfield_last_claim, endfield_last_result"
)

PLATFORMS = ("hoyolab", "endfield")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "")).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def row_to_record(row) -> AccountRecord:
    (discord_id, username, notify,
     h_token, h_games, h_name, h_last, h_result,
     e_token, e_game_id, e_server, e_name, e_last, e_result) = row
    hoyolab = None
    if h_token:
        hoyolab = HoyolabProfile(
            token=h_token,
            games={g for g in (h_games or "").split(",") if g},
            account_name=h_name or "Unknown",
            last_claim=_parse_ts(h_last),
            last_claim_result=h_result,
        )
    endfield = None
    if e_token:
        endfield = EndfieldProfile(
            account_token=e_token,
            game_id=e_game_id or "",
            server=e_server or "2",
            account_name=e_name or "Unknown",
            last_claim=_parse_ts(e_last),
            last_claim_result=e_result,
        )
    return AccountRecord(
        discord_id=str(discord_id),
        username=username or "",
        hoyolab=hoyolab,
        endfield=endfield,
        notify_on_claim=bool(notify),
    )


class AccountStore:
    """Per-user credential records in sqlite. One row per Discord user."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._initialised = False

    def db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    def init_db(self):
        with self.db() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts(
              discord_id TEXT PRIMARY KEY,
              username   TEXT NOT NULL DEFAULT '',
              created_at TEXT NOT NULL,
              notify_on_claim INTEGER NOT NULL DEFAULT 1,
              hoyolab_token TEXT,
              hoyolab_games TEXT DEFAULT '',
              hoyolab_account_name TEXT,
              hoyolab_last_claim TEXT,
              hoyolab_last_result TEXT,
              endfield_account_token TEXT,
              endfield_game_id TEXT,
              endfield_server TEXT,
              endfield_account_name TEXT,
              endfield_last_claim TEXT,
              endfield_last_result TEXT
            );""")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS meta(
              key TEXT PRIMARY KEY,
              value TEXT
            );""")
        self._initialised = True

    def ensure_db(self):
        if not self._initialised:
            self.init_db()

    def _ensure_row(self, conn, discord_id: str, username: str):
        now = datetime.now(timezone.utc).isoformat()
        conn.execute("""
        INSERT INTO accounts(discord_id, username, created_at) VALUES(?,?,?)
        ON CONFLICT(discord_id) DO UPDATE SET
          username=CASE WHEN excluded.username <> '' THEN excluded.username ELSE accounts.username END
        """, (str(discord_id), username or "", now))

    # ---- writes ----
    def upsert_hoyolab(self, discord_id, username: str, token: str, account_name: str = "Unknown",
                       games: Iterable[str] = ()):
        self.ensure_db()
        with self.db() as conn:
            self._ensure_row(conn, discord_id, username)
            conn.execute("""
            UPDATE accounts SET hoyolab_token=?, hoyolab_account_name=?, hoyolab_games=?
            WHERE discord_id=?
            """, (token, account_name, ",".join(sorted(set(games))), str(discord_id)))

    def set_hoyolab_games(self, discord_id, games: Iterable[str]):
        self.ensure_db()
        with self.db() as conn:
            conn.execute("UPDATE accounts SET hoyolab_games=? WHERE discord_id=?",
                         (",".join(sorted(set(games))), str(discord_id)))

    def upsert_endfield(self, discord_id, username: str, account_token: str, game_id: str,
                        server: str = "2", account_name: str = "Unknown"):
        self.ensure_db()
        with self.db() as conn:
            self._ensure_row(conn, discord_id, username)
            conn.execute("""
            UPDATE accounts SET endfield_account_token=?, endfield_game_id=?, endfield_server=?,
              endfield_account_name=?
            WHERE discord_id=?
            """, (account_token, str(game_id), server, account_name, str(discord_id)))

    def set_notify(self, discord_id, enabled: bool):
        self.ensure_db()
        with self.db() as conn:
            conn.execute("UPDATE accounts SET notify_on_claim=? WHERE discord_id=?",
                         (1 if enabled else 0, str(discord_id)))

    def update_claim_result(self, discord_id, platform: str, result_summary: str,
                            timestamp: Optional[datetime] = None):
        if platform not in PLATFORMS:
            raise ValueError(f"unknown platform {platform!r}")
        ts = (timestamp or datetime.now(timezone.utc)).isoformat()
        self.ensure_db()
        with self.db() as conn:
            conn.execute(
                f"UPDATE accounts SET {platform}_last_claim=?, {platform}_last_result=? WHERE discord_id=?",
                (ts, result_summary, str(discord_id)),
            )

    def remove_platform(self, discord_id, platform: str):
        if platform not in PLATFORMS:
            raise ValueError(f"unknown platform {platform!r}")
        cols = {
            "hoyolab": ("hoyolab_token", "hoyolab_games", "hoyolab_account_name",
                        "hoyolab_last_claim", "hoyolab_last_result"),
            "endfield": ("endfield_account_token", "endfield_game_id", "endfield_server",
                         "endfield_account_name", "endfield_last_claim", "endfield_last_result"),
        }[platform]
        self.ensure_db()
        with self.db() as conn:
            conn.execute(f"UPDATE accounts SET {', '.join(c + '=NULL' for c in cols)} WHERE discord_id=?",
                         (str(discord_id),))

    def delete_account(self, discord_id):
        self.ensure_db()
        with self.db() as conn:
            conn.execute("DELETE FROM accounts WHERE discord_id=?", (str(discord_id),))

    # ---- reads ----
    def find_one(self, discord_id) -> Optional[AccountRecord]:
        self.ensure_db()
        with self.db() as conn:
            row = conn.execute(f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE discord_id=?",
                               (str(discord_id),)).fetchone()
        return row_to_record(row) if row else None

    async def iter_accounts_with_credentials(self, page_size: int = 50) -> AsyncIterator[AccountRecord]:
        """Every account with a Hoyolab or Endfield credential, read a page at a time."""
        self.ensure_db()
        conn = self.db()
        try:
            cur = conn.execute(f"""
            SELECT {ACCOUNT_COLUMNS} FROM accounts
            WHERE (hoyolab_token IS NOT NULL AND hoyolab_token <> '')
               OR (endfield_account_token IS NOT NULL AND endfield_account_token <> '')
            ORDER BY discord_id
            """)
            while True:
                rows = cur.fetchmany(page_size)
                if not rows:
                    break
                for row in rows:
                    yield row_to_record(row)
                await asyncio.sleep(0)
        finally:
            conn.close()

    def count_accounts(self) -> Dict[str, int]:
        self.ensure_db()
        with self.db() as conn:
            total, hoyo, endf, notify = conn.execute("""
            SELECT COUNT(*),
                   SUM(CASE WHEN hoyolab_token IS NOT NULL AND hoyolab_token <> '' THEN 1 ELSE 0 END),
                   SUM(CASE WHEN endfield_account_token IS NOT NULL AND endfield_account_token <> '' THEN 1 ELSE 0 END),
                   SUM(notify_on_claim)
            FROM accounts
            """).fetchone()
        return {"total": total or 0, "hoyolab": hoyo or 0, "endfield": endf or 0, "notify": notify or 0}

    # ---- meta ----
    def set_meta(self, key: str, value: str):
        self.ensure_db()
        with self.db() as conn:
            conn.execute("INSERT INTO meta(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                         (key, value))

    def get_meta(self, key: str, default: str = "") -> str:
        self.ensure_db()
        with self.db() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key=?;", (key,)).fetchone()
        return row[0] if row and row[0] is not None else default
