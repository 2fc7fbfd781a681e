# 📋 Daily claim bot: Hoyolab + SKPORT/Endfield auto check-in
# Env: DISCORD_TOKEN (required), DB_PATH, TIMEZONE, CLAIM_HOUR_LOCAL, CLAIM_MINUTE_LOCAL,
#      CLAIM_BATCH_SIZE, CLAIM_BATCH_DELAY, SHARD_ID, SHARD_COUNT
# Run: python claim_bot.py

import os, asyncio
from typing import Optional, List

import discord
from discord import ui, app_commands
from discord.ext import commands, tasks

from dailyclaim.config import DB_PATH, LOCAL_TZ, SHARD_ID, SHARD_COUNT, CLAIM_HOUR_LOCAL, CLAIM_MINUTE_LOCAL
from dailyclaim.cred_cache import CredentialCache
from dailyclaim.endfield import ENDFIELD_NAME, ENDFIELD_SERVERS
from dailyclaim.endfield_oauth import normalize_account_token
from dailyclaim.errors import ValidationError
from dailyclaim.hoyolab import HOYOLAB_GAMES, HoyolabClient, cookie_warnings, sanitize_cookie
from dailyclaim.reporter import DiscordNotifier, build_summary_embed
from dailyclaim.scheduler import DailyClaimScheduler
from dailyclaim.service import ClaimService
from dailyclaim.store import AccountStore
from dailyclaim.transport import mask_token

# =========================
# Config / ENV
# =========================
TOKEN = os.getenv("DISCORD_TOKEN") or ""
if not TOKEN:
    raise RuntimeError("Set DISCORD_TOKEN")

INTENTS = discord.Intents.default()

bot = commands.Bot(command_prefix="!", intents=INTENTS, shard_id=SHARD_ID, shard_count=SHARD_COUNT)
tree = bot.tree

store = AccountStore(DB_PATH)
service = ClaimService(store, cache=CredentialCache(), notifier=DiscordNotifier(bot))
scheduler = DailyClaimScheduler(service, store, shard_id=SHARD_ID)


def is_admin(inter: discord.Interaction) -> bool:
    perms = getattr(inter.user, "guild_permissions", None)
    return bool(perms and perms.administrator)


def ts_or_never(dt) -> str:
    return discord.utils.format_dt(dt, style="R") if dt else "Never"


# =========================
# Hoyolab setup: modal + game select
# =========================
class HoyolabGamesSelect(ui.View):
    def __init__(self, discord_id: int, selected: Optional[List[str]] = None):
        super().__init__(timeout=300)
        self.discord_id = discord_id
        options = [
            discord.SelectOption(label=g["name"], value=key, emoji=g["icon"], default=key in (selected or []))
            for key, g in HOYOLAB_GAMES.items()
        ]
        self.games.options = options
        self.games.max_values = len(options)

    @ui.select(placeholder="Select games to auto-claim", min_values=1, custom_id="claim:hoyolab_games")
    async def games(self, interaction: discord.Interaction, select: ui.Select):
        if interaction.user.id != self.discord_id:
            return await interaction.response.send_message("This menu isn't yours.", ephemeral=True)
        store.set_hoyolab_games(interaction.user.id, select.values)
        names = ", ".join(HOYOLAB_GAMES[v]["name"] for v in select.values)
        await interaction.response.edit_message(content=f"✅ Auto-claim enabled for: **{names}**", view=None)


class HoyolabSetupModal(ui.Modal, title="Setup Hoyolab"):
    cookie = ui.TextInput(label="Hoyolab cookie",
                          style=discord.TextStyle.paragraph,
                          placeholder="ltoken_v2=...; ltuid_v2=...; cookie_token_v2=...; account_id_v2=...",
                          required=True, max_length=4000)
    nickname = ui.TextInput(label="Account nickname (optional)", required=False, max_length=50)

    async def on_submit(self, interaction: discord.Interaction):
        token = sanitize_cookie(str(self.cookie))
        nickname = str(self.nickname).strip() or "Unknown"

        try:
            service.require_valid("hoyolab", {"token": token})
        except ValidationError as e:
            return await interaction.response.send_message(str(e), ephemeral=True)

        await interaction.response.defer(ephemeral=True, thinking=True)
        remote = await HoyolabClient(token).validate_token()
        if not remote.valid:
            return await interaction.followup.send(
                f"❌ Invalid token: {remote.message}\n\nCopy the full cookie including `ltoken_v2` and `ltuid_v2`.",
                ephemeral=True,
            )

        store.upsert_hoyolab(interaction.user.id, interaction.user.name, token, nickname)
        print(f"[bot] hoyolab setup for {interaction.user.id}, cookie {mask_token(token)}")
        warn = "\n".join(cookie_warnings(token))
        await interaction.followup.send(
            f"✅ Hoyolab token saved for **{nickname}**!\n{warn}\n⬇️ **Now pick your games:**",
            view=HoyolabGamesSelect(interaction.user.id),
            ephemeral=True,
        )


@tree.command(name="setup-hoyolab", description="Save your Hoyolab cookie for daily auto-claim.")
async def setup_hoyolab_cmd(interaction: discord.Interaction):
    await interaction.response.send_modal(HoyolabSetupModal())


# =========================
# Endfield setup: modal
# =========================
class EndfieldSetupModal(ui.Modal, title="Setup Endfield"):
    account_token = ui.TextInput(label="ACCOUNT_TOKEN (from gryphline.com)",
                                 style=discord.TextStyle.paragraph,
                                 placeholder="DevTools > Application > Cookies > ACCOUNT_TOKEN",
                                 required=True, max_length=2000)
    game_id = ui.TextInput(label="Game UID", placeholder="e.g. 10012345", required=True, max_length=20)
    server = ui.TextInput(label="Server (2 = Asia, 3 = Americas/Europe)", default="2",
                          required=False, max_length=1)
    nickname = ui.TextInput(label="Account nickname (optional)", required=False, max_length=50)

    async def on_submit(self, interaction: discord.Interaction):
        token = normalize_account_token(str(self.account_token))
        gid = str(self.game_id).strip()
        server = str(self.server).strip() or "2"
        nickname = str(self.nickname).strip() or "Unknown"

        try:
            service.require_valid("endfield", {"account_token": token, "game_id": gid, "server": server})
        except ValidationError as e:
            return await interaction.response.send_message(str(e), ephemeral=True)

        service.clear_cached_credential(interaction.user.id)
        store.upsert_endfield(interaction.user.id, interaction.user.name, token, gid, server, nickname)
        print(f"[bot] endfield setup for {interaction.user.id}, token {mask_token(token)}")
        await interaction.response.send_message(
            f"✅ **Endfield token saved!**\n\n**Account:** {nickname}\n**UID:** {gid}\n"
            f"**Server:** {ENDFIELD_SERVERS[server]}\n\nUse `/claim` to test it.",
            ephemeral=True,
        )


@tree.command(name="setup-endfield", description="Save your SKPORT/Endfield account token for daily auto-claim.")
async def setup_endfield_cmd(interaction: discord.Interaction):
    await interaction.response.send_modal(EndfieldSetupModal())


# =========================
# Claim / status / settings
# =========================
@tree.command(name="claim", description="Claim today's rewards now.")
async def claim_cmd(interaction: discord.Interaction):
    await interaction.response.defer(ephemeral=True, thinking=True)
    outcome = await service.claim_for_account(interaction.user.id)
    if outcome is None or outcome.empty:
        return await interaction.followup.send(
            "❌ Nothing to claim. Use `/setup-hoyolab` or `/setup-endfield` first.", ephemeral=True
        )
    await interaction.followup.send(embed=build_summary_embed(outcome), ephemeral=True)


@tree.command(name="status", description="Show your auto-claim setup and last results.")
async def status_cmd(interaction: discord.Interaction):
    record = store.find_one(interaction.user.id)
    if not record:
        return await interaction.response.send_message(
            "❌ You have not set up any tokens yet. Use `/setup-hoyolab` or `/setup-endfield`.", ephemeral=True
        )
    e = discord.Embed(title="📊 Auto-Claim Status", color=discord.Color.blurple())
    e.description = f"🕐 Next run in **{scheduler.time_until_next_run()}** ({LOCAL_TZ})"

    h = record.hoyolab
    if h:
        games = ", ".join(HOYOLAB_GAMES[g]["name"] for g in HOYOLAB_GAMES if g in h.games) or "None"
        e.add_field(name="🌟 Hoyolab", inline=False, value=(
            f"**Account:** {h.account_name}\n**Games:** {games}\n"
            f"**Last Claim:** {ts_or_never(h.last_claim)}\n**Result:** {h.last_claim_result or 'N/A'}"
        )[:1024])
    else:
        e.add_field(name="🌟 Hoyolab", value="❌ Not configured", inline=False)

    ef = record.endfield
    if ef:
        e.add_field(name=f"🎮 {ENDFIELD_NAME}", inline=False, value=(
            f"**Account:** {ef.account_name}\n**UID:** {ef.game_id}\n"
            f"**Server:** {ENDFIELD_SERVERS.get(ef.server, 'Unknown')}\n"
            f"**Last Claim:** {ts_or_never(ef.last_claim)}\n**Result:** {ef.last_claim_result or 'N/A'}"
        )[:1024])
    else:
        e.add_field(name=f"🎮 {ENDFIELD_NAME}", value="❌ Not configured", inline=False)

    e.add_field(name="⚙️ Settings", value=f"**Notify on Claim:** {'✅ Enabled' if record.notify_on_claim else '❌ Disabled'}")
    await interaction.response.send_message(embed=e, ephemeral=True)


@tree.command(name="notify", description="Turn claim result DMs on or off.")
async def notify_cmd(interaction: discord.Interaction, enabled: bool):
    if not store.find_one(interaction.user.id):
        return await interaction.response.send_message("Set up an account first.", ephemeral=True)
    store.set_notify(interaction.user.id, enabled)
    await interaction.response.send_message(f"DM notifications **{'on' if enabled else 'off'}**.", ephemeral=True)


@tree.command(name="remove", description="Remove a saved platform (or everything).")
@app_commands.choices(platform=[
    app_commands.Choice(name="Hoyolab", value="hoyolab"),
    app_commands.Choice(name="Endfield", value="endfield"),
    app_commands.Choice(name="Everything", value="all"),
])
async def remove_cmd(interaction: discord.Interaction, platform: app_commands.Choice[str]):
    service.clear_cached_credential(interaction.user.id)
    if platform.value == "all":
        store.delete_account(interaction.user.id)
    else:
        store.remove_platform(interaction.user.id, platform.value)
    await interaction.response.send_message(f"🗑️ Removed **{platform.name}**.", ephemeral=True)


@tree.command(name="redeem", description="Redeem a Hoyolab gift code on all your accounts for a game.")
@app_commands.choices(game=[
    app_commands.Choice(name=HOYOLAB_GAMES[k]["name"], value=k) for k in ("genshin", "starRail", "zenlessZoneZero")
])
async def redeem_cmd(interaction: discord.Interaction, game: app_commands.Choice[str], code: str):
    record = store.find_one(interaction.user.id)
    if not record or not record.hoyolab:
        return await interaction.response.send_message("Use `/setup-hoyolab` first.", ephemeral=True)
    await interaction.response.defer(ephemeral=True, thinking=True)
    client = HoyolabClient(record.hoyolab.token)
    accounts = await client.get_game_accounts(game.value)
    if not accounts:
        return await interaction.followup.send(f"No {game.name} accounts found on this cookie.", ephemeral=True)
    lines = []
    for i, acc in enumerate(accounts):
        if i:
            await asyncio.sleep(5)  # redeem endpoint rate-limits per cookie
        res = await client.redeem_code(game.value, acc, code.strip())
        lines.append(f"{'✅' if res.success else '❌'} {acc.nickname} ({acc.game_uid}): {res.message}")
        if not res.success and "cookie_token" in res.message:
            break
    await interaction.followup.send("\n".join(lines), ephemeral=True)


# =========================
# Admin
# =========================
@tree.command(name="claim-all-now", description="Admin: run the daily claim for everyone now.")
async def claim_all_now_cmd(interaction: discord.Interaction):
    if not is_admin(interaction):
        return await interaction.response.send_message("Admins only.", ephemeral=True)
    await interaction.response.defer(ephemeral=True, thinking=True)
    stats = await scheduler.run()
    if stats is None:
        return await interaction.followup.send("A run is already in progress.", ephemeral=True)
    await interaction.followup.send(
        f"Done ✅ {stats.processed} account(s) in {stats.batches} batch(es), {stats.failed} crashed.", ephemeral=True
    )


@tree.command(name="stats", description="Show bot statistics.")
async def stats_cmd(interaction: discord.Interaction):
    c = store.count_accounts()
    last = scheduler.last_stats
    await interaction.response.send_message(
        f"Accounts: **{c['total']}** | Hoyolab: **{c['hoyolab']}** | Endfield: **{c['endfield']}** | "
        f"DMs on: **{c['notify']}**\n"
        f"Daily run: **{CLAIM_HOUR_LOCAL:02d}:{CLAIM_MINUTE_LOCAL:02d}** ({LOCAL_TZ}) | "
        f"Last run: **{last.processed if last else '—'}** processed\n"
        f"Guilds: **{len(bot.guilds)}**",
        ephemeral=True,
    )


@tree.command(name="sync", description="Admin: re-register slash commands here.")
async def sync_cmd(interaction: discord.Interaction):
    if not is_admin(interaction):
        return await interaction.response.send_message("Admins only.", ephemeral=True)
    await tree.sync(guild=interaction.guild)
    await interaction.response.send_message("✅ Synced for this server.", ephemeral=True)


# =========================
# Scheduler
# =========================
@tasks.loop(minutes=1)
async def daily_scheduler():
    try:
        await scheduler.tick()
    except Exception as e:
        print(f"[scheduler] tick failed: {e!r}")


@daily_scheduler.before_loop
async def before_loop():
    await bot.wait_until_ready()
    await asyncio.sleep(2)


# =========================
# Startup
# =========================
@bot.event
async def on_ready():
    store.ensure_db()
    print(f"[bot] DB_PATH={DB_PATH} shard={SHARD_ID}/{SHARD_COUNT}")
    try:
        await tree.sync()
        print("Slash commands synced.")
    except Exception as e:
        print("Slash sync failed:", e)

    if not daily_scheduler.is_running():
        daily_scheduler.start()
    print(f"Logged in as {bot.user} (ID: {bot.user.id}); next daily run in {scheduler.time_until_next_run()}")


bot.run(TOKEN)
