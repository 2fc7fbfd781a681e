from datetime import datetime, timezone
from typing import List, Optional

import discord

from .endfield import format_endfield_result
from .hoyolab import format_hoyolab_results
from .models import AccountClaimOutcome

SUMMARY_TITLE = "📋 Daily Claim Results"


def summary_sections(outcome: AccountClaimOutcome) -> List[str]:
    sections = []
    if outcome.hoyolab_results is not None:
        sections.append("**Hoyolab**\n" + format_hoyolab_results(outcome.hoyolab_results))
    if outcome.endfield_result is not None:
        sections.append("**SKPORT/Endfield**\n" + format_endfield_result(outcome.endfield_result))
    return sections


def format_summary(outcome: AccountClaimOutcome) -> str:
    return "\n\n".join(summary_sections(outcome))


def build_summary_embed(outcome: AccountClaimOutcome) -> discord.Embed:
    results = []
    if outcome.hoyolab_results:
        results.extend(outcome.hoyolab_results)
    if outcome.endfield_result:
        results.append(outcome.endfield_result)
    ok = all(r.success for r in results)
    e = discord.Embed(
        title=SUMMARY_TITLE,
        description=format_summary(outcome)[:4000],
        color=discord.Color.green() if ok else discord.Color.orange(),
        timestamp=datetime.now(timezone.utc),
    )
    if any(r.needs_setup for r in results):
        e.set_footer(text="Some credentials need attention: re-run the setup command for that platform.")
    return e


class DiscordNotifier:
    """Delivers summaries as DMs through the bot."""

    def __init__(self, bot):
        self.bot = bot

    async def send_direct_message(self, user_id, content: str, embed: Optional[discord.Embed] = None):
        user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
        if embed is not None:
            await user.send(embed=embed)
        else:
            await user.send(content)


async def deliver_summary(notifier, user_id, outcome: AccountClaimOutcome) -> bool:
    """Best-effort DM. Never raises; a failure is logged once and dropped."""
    if outcome.empty:
        return False
    try:
        await notifier.send_direct_message(user_id, format_summary(outcome), embed=build_summary_embed(outcome))
        return True
    except Exception as e:
        print(f"[notify] could not DM user {user_id} (DMs off?): {e}")
        return False
