"""CLI entry point for prereg.

Every command builds an ``AppContext`` for the duration of one
``asyncio.run`` and shuts it down afterwards, so registered subscriptions
are always released.
"""

import asyncio
import json
from typing import Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..api.errors import ApiError
from ..api.models import LocalizedText
from ..api.notify import Toast
from ..api.response import ApiResponse
from ..core.bus import Bus, EventPayload
from ..runtime import AppContext, bootstrap_logging
from ..services import RealtimeStatus
from ..views import ReferralStatsView, RealtimeCounter, UserRewardsView

app = typer.Typer(
    name="prereg",
    help="prereg - game pre-registration client",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"prereg {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (debug, info, warn, error)",
    ),
):
    """Pre-register, track referrals and claim rewards."""
    bootstrap_logging(mode="watch" if ctx.invoked_subcommand == "watch" else "cli", level=log_level)


class CommandFailed(Exception):
    """An operation returned an error envelope."""

    def __init__(self, error: ApiError):
        self.error = error
        super().__init__(error.message)


def _unwrap(response: ApiResponse):
    if not response.success or response.error is not None:
        raise CommandFailed(response.error or ApiError(code="UNKNOWN_ERROR", message="unknown error"))
    return response.data


def _run(fn: Callable[[AppContext], Awaitable[None]]) -> None:
    async def runner() -> None:
        ctx = await AppContext.create()
        try:
            await fn(ctx)
        finally:
            await ctx.shutdown()

    try:
        asyncio.run(runner())
    except CommandFailed as e:
        field = f" [dim]({e.error.field})[/dim]" if e.error.field else ""
        console.print(f"[red]Error:[/red] {e.error.message}{field} [dim]{e.error.code}[/dim]")
        raise typer.Exit(1)


def _text(value: LocalizedText, language: str) -> str:
    return value.get(language)


def _resolve_user(ctx: AppContext, user_id: Optional[str]) -> str:
    target = user_id or ctx.last_user.value
    if not target:
        console.print("[red]Error:[/red] No user given and no previous registration found")
        raise typer.Exit(1)
    return target


@app.command()
def register(
    email: str = typer.Argument(..., help="E-mail address"),
    nickname: str = typer.Argument(..., help="Nickname (2-50 characters)"),
    phone: Optional[str] = typer.Option(None, "--phone", help="Phone number"),
    playstyle: Optional[str] = typer.Option(None, "--playstyle", help="warrior, assassin or mage"),
    code: Optional[str] = typer.Option(None, "--code", "-c", help="Referral code of the inviting user"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="ko, en or ja"),
):
    """Pre-register a new user."""

    async def run(ctx: AppContext) -> None:
        user = _unwrap(await ctx.registration.create_user({
            "email": email,
            "nickname": nickname,
            "phone": phone,
            "playstyle": playstyle,
            "referredByCode": code,
            "language": language or ctx.language,
        }))
        ctx.last_user.set(user.id)
        console.print(f"[green]Registered[/green] [bold]{user.nickname}[/bold] <{user.email}>")
        console.print(f"  User ID:       [cyan]{user.id}[/cyan]")
        console.print(f"  Referral code: [bold cyan]{user.referral_code}[/bold cyan]")

    _run(run)


@app.command()
def check(
    field: str = typer.Argument(..., help="email or nickname"),
    value: str = typer.Argument(..., help="Value to check"),
):
    """Check whether an e-mail or nickname is still available."""
    if field not in ("email", "nickname"):
        console.print("[red]Error:[/red] field must be 'email' or 'nickname'")
        raise typer.Exit(2)

    async def run(ctx: AppContext) -> None:
        op = ctx.registration.check_email_exists if field == "email" else ctx.registration.check_nickname_exists
        result = _unwrap(await op(value))
        if result.exists:
            console.print(f"[yellow]{field} '{value}' is taken[/yellow]")
        else:
            console.print(f"[green]{field} '{value}' is available[/green]")

    _run(run)


@app.command()
def stats(
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON"),
):
    """Show global registration statistics."""

    async def run(ctx: AppContext) -> None:
        data = _unwrap(await ctx.registration.get_registration_stats())
        if json_output:
            console.print_json(json.dumps(data.model_dump()))
            return
        console.print("\n[bold]Registration[/bold]\n")
        console.print(f"  Users:       {data.total_users:,}")
        console.print(f"  Referrals:   {data.total_referrals:,}")
        console.print(f"  Today:       {data.today_registrations:,}")
        console.print(f"  Milestone:   {data.target_milestone:,} ({data.completion_percentage:.2f}%)")
        console.print()

    _run(run)


@app.command()
def leaderboard(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries to show"),
):
    """Show the top referrers."""

    async def run(ctx: AppContext) -> None:
        entries = _unwrap(await ctx.referrals.get_referral_leaderboard(limit))
        if not entries:
            console.print("[yellow]No referrals yet[/yellow]")
            return
        table = Table(title="Leaderboard")
        table.add_column("#", justify="right")
        table.add_column("Nickname")
        table.add_column("Code")
        table.add_column("Direct", justify="right")
        table.add_column("Total", justify="right")
        for entry in entries:
            table.add_row(
                str(entry.rank),
                entry.nickname,
                entry.referral_code,
                str(entry.direct_referrals),
                str(entry.total_population),
            )
        console.print(table)

    _run(run)


@app.command()
def referrals(
    user_id: Optional[str] = typer.Argument(None, help="User ID (defaults to the last registration)"),
    depth: int = typer.Option(1, "--depth", "-d", help="Levels of the referral tree to show"),
):
    """Show referral statistics and the referral tree of a user."""

    async def run(ctx: AppContext) -> None:
        target = _resolve_user(ctx, user_id)
        overview = _unwrap(await ctx.referrals.get_referral_stats(target))
        data = overview.stats
        console.print(f"\n[bold]Referrals of {data.nickname or target}[/bold]\n")
        console.print(f"  Direct:     {data.direct_referrals}")
        console.print(f"  Indirect:   {data.indirect_referrals}")
        console.print(f"  Population: {data.total_population}")

        if depth > 1:
            nodes = _unwrap(await ctx.referrals.get_referral_network(target, depth))
            if nodes:
                console.print()
                for node in nodes:
                    indent = "  " * node.level
                    console.print(f"{indent}[cyan]{node.nickname}[/cyan] [dim]{node.referral_code}[/dim]")
        elif overview.recent_referrals:
            console.print("\n  Recent:")
            for item in overview.recent_referrals:
                console.print(f"    [cyan]{item.nickname}[/cyan] [dim]{item.created_at:%Y-%m-%d}[/dim]")
        console.print()

    _run(run)


@app.command()
def rewards(
    user_id: Optional[str] = typer.Argument(None, help="User ID (defaults to the last registration)"),
):
    """Show reward tiers and the rewards a user has unlocked."""

    async def run(ctx: AppContext) -> None:
        target = _resolve_user(ctx, user_id)
        tiers = _unwrap(await ctx.rewards.get_reward_tiers())
        unlocked = {reward.tier_id: reward for reward in _unwrap(await ctx.rewards.get_user_rewards(target))}

        table = Table(title="Rewards")
        table.add_column("Tier")
        table.add_column("Needs", justify="right")
        table.add_column("Reward")
        table.add_column("Status")
        table.add_column("Reward ID", style="dim")
        for tier in tiers:
            reward = unlocked.get(tier.id)
            if reward is None:
                status = "[dim]locked[/dim]"
            elif reward.claimed:
                status = "[green]claimed[/green]"
            else:
                status = "[yellow]unlocked[/yellow]"
            table.add_row(
                tier.tier_name,
                str(tier.referral_requirement),
                _text(tier.reward_title, ctx.language),
                status,
                reward.id if reward else "",
            )
        console.print(table)

        progress = _unwrap(await ctx.rewards.get_next_tier_progress(target))
        if progress is None:
            console.print("[green]All tiers unlocked[/green]")
        else:
            console.print(
                f"Next: [bold]{progress.tier.tier_name}[/bold] "
                f"{progress.current}/{progress.required} ({progress.percentage}%), "
                f"{progress.remaining} to go"
            )

    _run(run)


@app.command()
def claim(
    reward_id: str = typer.Argument(..., help="Reward ID"),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="User ID (defaults to the last registration)"),
):
    """Claim an unlocked reward."""

    async def run(ctx: AppContext) -> None:
        target = _resolve_user(ctx, user_id)
        result = _unwrap(await ctx.rewards.claim_reward(reward_id, target))
        title = _text(result.reward.tier.reward_title, ctx.language) if result.reward.tier else reward_id
        console.print(f"[green]Claimed[/green] {title}")

    _run(run)


@app.command()
def watch(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Also watch this user's referrals and rewards"),
    seconds: Optional[float] = typer.Option(None, "--seconds", "-s", help="Stop after this many seconds"),
):
    """Follow the registration counter (and a user's referrals) live."""

    async def run(ctx: AppContext) -> None:
        unsubscribers = [Bus.subscribe(Toast, _print_toast), Bus.subscribe(RealtimeStatus, _print_channel_error)]
        counter = RealtimeCounter(ctx.registration, ctx.registry, language=ctx.language)
        counter.on_change(lambda: console.print(
            f"[bold]{counter.total:,}[/bold] registrations "
            f"[dim]{'live' if counter.is_connected else 'offline'}[/dim]"
        ))
        views: List = [counter]
        await counter.start()

        if user_id:
            stats_view = ReferralStatsView(ctx.referrals, ctx.registry, user_id, language=ctx.language)

            def show_referrals() -> None:
                if stats_view.stats is not None:
                    console.print(f"referrals: [cyan]{stats_view.stats.direct_referrals}[/cyan] direct")

            stats_view.on_change(show_referrals)
            rewards_view = UserRewardsView(
                ctx.rewards,
                ctx.registry,
                user_id,
                language=ctx.language,
                on_new_reward=lambda unlock: console.print(
                    f"[green]Unlocked[/green] {_text(unlock.reward_title, ctx.language)}"
                ),
            )
            views += [stats_view, rewards_view]
            await stats_view.load()
            await rewards_view.load()

        console.print("[dim]Watching, press Ctrl+C to stop[/dim]")
        try:
            if seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(seconds)
        finally:
            for view in views:
                await view.dispose()
            for unsubscribe in unsubscribers:
                unsubscribe()

    try:
        _run(run)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


def _print_toast(payload: EventPayload) -> None:
    props = payload.properties
    color = {"error": "red", "warning": "yellow", "success": "green"}.get(props.get("level"), "blue")
    console.print(f"[{color}]{props.get('message')}[/{color}]")


def _print_channel_error(payload: EventPayload) -> None:
    if payload.properties.get("status") == "CHANNEL_ERROR":
        console.print(f"[yellow]{payload.properties.get('channel')} disconnected, retrying[/yellow]")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    path: bool = typer.Option(False, "--path", help="Show configuration directory"),
):
    """Inspect configuration."""
    from ..core.config import ConfigManager
    from ..core.global_paths import GlobalPath

    if path:
        console.print(GlobalPath.config())
        return

    if show:
        async def show_config():
            data = await ConfigManager.get()
            console.print_json(json.dumps(data.model_dump(exclude={"backend": {"anon_key"}}), default=str))

        asyncio.run(show_config())
        return

    console.print("Use --show to display configuration or --path to show the config directory")


if __name__ == "__main__":
    app()
