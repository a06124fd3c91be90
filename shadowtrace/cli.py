#!/usr/bin/env python3
"""
cli.py - Entry point for ShadowTrace
Find the public FFLogs report behind an anonymized one.
"""

import argparse
import asyncio
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

import shadowtrace as pkg
from shadowtrace import logger
from shadowtrace.cache import (
    LocalStore,
    RankingCache,
    clear_all_cache,
    clear_encounter_cache,
    default_export_path,
    export_cache_to_file,
    import_cache_from_file,
)
from shadowtrace.cancellation import CancellationToken
from shadowtrace.config import ShadowTraceConfig, load_config
from shadowtrace.errors import ApiRequestError, SearchCancelledError, ShadowTraceError
from shadowtrace.fflogs.client import FFLogsClient
from shadowtrace.rate_limits import RateWindowTracker
from shadowtrace.search.orchestrator import SearchOutcome, partition_text
from shadowtrace.search.search_mode import FightPlayer, cache_predates_report, public_fight_players, run_search
from shadowtrace.search.url_utils import parse_report_url, report_url
from shadowtrace.status import ConsoleStatusSink, format_usage
from shadowtrace.types import AnonymizedFight, VerifiedMatch

console = Console()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def _ui_info(message: str) -> None:
    console.print(f"[cyan][INFO][/cyan] {message}")


def _ui_warn(message: str) -> None:
    console.print(f"[yellow][WARNING][/yellow] {message}")


def _ui_error(message: str) -> None:
    console.print(f"[red][ERROR][/red] {message}")


def _ui_prompt_yesno(label: str, *, default_yes: bool) -> bool:
    suffix = "[Y/n]" if default_yes else "[y/N]"
    choice = Prompt.ask(f"{label} {suffix}", default="Y" if default_yes else "N").strip().lower()
    if not choice:
        return default_yes
    if choice[0] == "y":
        return True
    if choice[0] == "n":
        return False
    return default_yes


def _confirm_sink(assume_yes: bool):
    def _confirm(title: str, message: str) -> bool:
        if assume_yes:
            return True
        return _ui_prompt_yesno(f"{title}: {message}", default_yes=False)

    return _confirm


def _format_timestamp(ts: float) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _format_delta_ms(ms: int) -> str:
    return f"{ms / 1000:.1f}s"


def resolve_config_path(args_config: Optional[str]) -> Path:
    if args_config:
        p = Path(args_config).expanduser()
        if p.is_dir():
            p = p / "config.toml"
        return p

    cwd_candidate = Path.cwd() / "config.toml"
    if cwd_candidate.exists():
        return cwd_candidate

    repo_root = Path(__file__).resolve().parent.parent
    root_candidate = repo_root / "config.toml"
    if root_candidate.exists() and (repo_root / "pyproject.toml").exists():
        return root_candidate
    return cwd_candidate


def _build_tracker(config: ShadowTraceConfig, store: LocalStore) -> RateWindowTracker:
    return RateWindowTracker(
        store,
        window_seconds=config.rate_limit.window_seconds,
        max_requests=config.rate_limit.max_requests,
        safety_margin_seconds=config.rate_limit.safety_margin_seconds,
    )


def _build_client(config: ShadowTraceConfig, store: LocalStore, status: ConsoleStatusSink) -> FFLogsClient:
    return FFLogsClient(
        config.api,
        _build_tracker(config, store),
        status=status,
        points_per_request=config.rate_limit.points_per_request,
    )


def _install_cancel_handler(token: CancellationToken) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _remove_cancel_handler() -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError):
        pass


def _report_progress(fight: AnonymizedFight, verified: list[VerifiedMatch]) -> None:
    names = ", ".join(name for match in verified for name in (match.ranked_names or (match.record.name,)))
    logger.info(f"Match verified for {fight.name}: {names}")


def _format_player(player: FightPlayer) -> str:
    label = escape(f"{player.name}@{player.server or '?'}" + (f" ({player.job})" if player.job else ""))
    if player.matched:
        return f"[bold green]{label}[/bold green]"
    if not player.found:
        return f"[dim]{label}[/dim]"
    return label


async def _render_matches(
    client: FFLogsClient, cache: RankingCache, outcome: SearchOutcome, token: CancellationToken
) -> None:
    location = f"{outcome.region or 'all regions'}, {partition_text(outcome.partition, outcome.partition_name)}"
    table = Table(
        title=f"Matches for {outcome.report_code} ({location})",
        caption="[bold green]matched[/bold green]  found in rankings  [dim]not in cached rankings[/dim]",
    )
    table.add_column("Fight", style="cyan")
    table.add_column("Players")
    table.add_column("Server")
    table.add_column("Report", style="green")
    table.add_column("Start Δ", justify="right")
    table.add_column("Duration Δ", justify="right")

    for match in outcome.matches:
        record = match.record
        try:
            players = await public_fight_players(client, cache, match, token)
        except ApiRequestError as exc:
            logger.warning(f"Could not load players of {record.report_code}#{record.fight_id}: {exc}")
            players = [FightPlayer(name=name, found=True, matched=True) for name in match.ranked_names or (record.name,)]
        server = f"{record.server_name or '?'} ({record.server_region or '?'})"
        table.add_row(
            match.candidate.fight_name,
            "\n".join(_format_player(player) for player in players),
            escape(server),
            report_url(record.report_code, record.fight_id),
            _format_delta_ms(match.candidate.time_diff),
            _format_delta_ms(match.candidate.duration_diff),
        )
    console.print(table)


async def search_command(
    config: ShadowTraceConfig,
    store: LocalStore,
    cache: RankingCache,
    url: str,
    *,
    all_fights: bool = False,
    refresh: bool = False,
) -> int:
    try:
        code, fight = parse_report_url(url)
    except ValueError as exc:
        _ui_error(str(exc))
        return EXIT_ERROR

    if all_fights:
        config = config.model_copy(
            update={"search": config.search.model_copy(update={"search_all_fights": True})}
        )

    token = CancellationToken()
    status = ConsoleStatusSink(show_usage_line=True)
    try:
        client = _build_client(config, store, status)
    except ValueError as exc:
        _ui_error(f"{exc} Set client_id and client_secret under \\[api] in config.toml.")
        return EXIT_ERROR

    handler_installed = _install_cancel_handler(token)
    client.start_periodic_update()
    started = time.monotonic()
    try:
        outcome = await run_search(
            client,
            cache,
            config,
            code,
            fight,
            cancel_token=token,
            status=status,
            progress_callback=_report_progress,
            refresh=refresh,
        )
        elapsed = time.monotonic() - started
        if not outcome.matches:
            logger.info(
                f"No verified match after {outcome.fights_searched} fight(s) and "
                f"{outcome.candidates_found} candidate(s) ({elapsed:.1f}s)"
            )
            if cache_predates_report(cache, outcome):
                _ui_warn("The cached rankings are older than this report. Re-run with --refresh to fetch fresh pages.")
            return EXIT_OK
        await _render_matches(client, cache, outcome, token)
        logger.info(f"Search finished in {elapsed:.1f}s")
        return EXIT_OK
    except SearchCancelledError:
        _ui_warn("Search cancelled. Pages cached during this search were rolled back.")
        return EXIT_CANCELLED
    except (ShadowTraceError, ValueError) as exc:
        _ui_error(str(exc))
        return EXIT_ERROR
    finally:
        if handler_installed:
            _remove_cancel_handler()
        await client.close()


async def usage_command(config: ShadowTraceConfig, store: LocalStore) -> int:
    status = ConsoleStatusSink()
    try:
        client = _build_client(config, store, status)
    except ValueError as exc:
        _ui_error(str(exc))
        return EXIT_ERROR
    try:
        await client.refresh_usage()
        usage = client.usage_snapshot()
    finally:
        await client.close()

    table = Table(title="FFLogs API usage")
    table.add_column("Budget", style="cyan")
    table.add_column("Usage")
    table.add_row(
        f"Requests / {client.tracker.window_seconds:.0f}s",
        f"{usage.recent_requests}/{usage.max_requests} ({usage.available_slots} free)",
    )
    if usage.limit_per_hour is not None:
        table.add_row("Points / hour", f"{usage.points_spent or 0:.1f}/{usage.limit_per_hour:.0f}")
        table.add_row("Points left", f"{usage.available_points or 0:.1f}")
    if usage.reset_in_seconds is not None:
        table.add_row("Resets in", f"{int(usage.reset_in_seconds) // 60}m")
    console.print(table)
    logger.debug(format_usage(usage))
    return EXIT_OK


def cache_info_command(cache: RankingCache) -> int:
    infos = cache.get_cache_info_by_encounter()
    if not infos:
        _ui_info("The cache is empty.")
        return EXIT_OK

    table = Table(title="Cached ranking pages")
    table.add_column("Encounter", style="cyan")
    table.add_column("ID", justify="right")
    table.add_column("Region")
    table.add_column("Partition")
    table.add_column("Pages", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Updated")
    for info in sorted(infos, key=lambda i: (i.encounter_name, i.region, i.partition)):
        partition = info.partition
        if info.partition_name:
            partition = f"{partition} - {info.partition_name}"
        table.add_row(
            info.encounter_name,
            str(info.encounter_id or "?"),
            info.region or "all",
            partition,
            str(info.count),
            info.size_formatted,
            _format_timestamp(info.latest),
        )
    console.print(table)
    return EXIT_OK


def cache_clear_command(cache: RankingCache, args: argparse.Namespace) -> int:
    confirm = _confirm_sink(args.yes)
    if args.encounter is not None:
        clear_encounter_cache(cache, confirm, args.encounter, args.region, args.partition)
    elif not clear_all_cache(cache, confirm):
        _ui_info("Nothing was deleted.")
    return EXIT_OK


def cache_export_command(cache: RankingCache, path: Optional[str]) -> int:
    target = Path(path).expanduser() if path else default_export_path(Path.cwd())
    try:
        summary = export_cache_to_file(cache, target)
    except ValueError as exc:
        _ui_warn(str(exc))
        return EXIT_ERROR
    if summary.written_bytes != summary.raw_bytes:
        _ui_info(
            f"{summary.entry_count} entries, {summary.raw_bytes} bytes compressed to "
            f"{summary.written_bytes} bytes ({summary.compression_ratio:.0%} smaller)"
        )
    return EXIT_OK


def cache_import_command(cache: RankingCache, path: str) -> int:
    source = Path(path).expanduser()
    if not source.exists():
        _ui_error(f"File not found: {source}")
        return EXIT_ERROR
    try:
        result = import_cache_from_file(cache, source)
    except ValueError as exc:
        _ui_error(str(exc))
        return EXIT_ERROR
    for label in result.imported:
        _ui_info(f"Imported: {label}")
    for label in result.skipped:
        _ui_info(f"Skipped: {label}")
    return EXIT_OK


def _add_output_options(parser: argparse.ArgumentParser, default=None) -> None:
    # Sub-command copies use SUPPRESS so they do not reset values given before the sub-command.
    parser.add_argument("-c", "--config", metavar="PATH", default=default, help="Path to config.toml (file or directory)")
    parser.add_argument(
        "-d", "--debug", action="store_true", default=default if default is not None else False,
        help="Debug mode with API calls, JSON responses, timestamps",
    )
    parser.add_argument("--log", metavar="PATH", default=default, help="Also write output to this log file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadowtrace",
        description=f"ShadowTrace v{pkg.__version__} - find the public report behind an anonymized FFLogs report",
    )
    _add_output_options(parser)

    commands = parser.add_subparsers(dest="command", required=True)

    search = commands.add_parser("search", help="Search for the public log of an anonymized report")
    search.add_argument("url", help="Anonymized report URL (https://www.fflogs.com/reports/a:XXXX#fight=N)")
    search.add_argument("--all-fights", action="store_true", help="Search every boss fight of the report")
    search.add_argument("--refresh", action="store_true", help="Drop cached pages of the searched fights first")
    _add_output_options(search, argparse.SUPPRESS)

    commands.add_parser("usage", help="Show current API rate-limit usage")

    cache = commands.add_parser("cache", help="Manage the ranking cache")
    cache_commands = cache.add_subparsers(dest="cache_command", required=True)
    cache_commands.add_parser("info", help="List cached encounters")
    clear = cache_commands.add_parser("clear", help="Delete cached pages")
    clear.add_argument("--encounter", type=int, help="Only this encounter id")
    clear.add_argument("--region", help="Only this server region (with --encounter)")
    clear.add_argument("--partition", type=int, help="Only this partition (with --encounter)")
    clear.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    export = cache_commands.add_parser("export", help="Export the cache to a .json or .json.gz file")
    export.add_argument("path", nargs="?", help="Output file (default: shadowtrace-cache-<timestamp>.json.gz)")
    import_parser = cache_commands.add_parser("import", help="Merge a cache export into the cache")
    import_parser.add_argument("path", help="File written by 'cache export'")
    return parser


def run_command(args: argparse.Namespace, config: ShadowTraceConfig) -> int:
    store = LocalStore(config.cache.resolved_path())
    try:
        cache = RankingCache(store, cleanup_threshold_seconds=config.cache.cleanup_threshold_seconds)
        if args.command == "search":
            return asyncio.run(
                search_command(config, store, cache, args.url, all_fights=args.all_fights, refresh=args.refresh)
            )
        if args.command == "usage":
            return asyncio.run(usage_command(config, store))

        cache.init()
        if args.cache_command == "info":
            return cache_info_command(cache)
        if args.cache_command == "clear":
            return cache_clear_command(cache, args)
        if args.cache_command == "export":
            return cache_export_command(cache, args.path)
        return cache_import_command(cache, args.path)
    finally:
        store.close()


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    log_file = Path(args.log).expanduser() if args.log else None

    with logger.ShadowTraceLogger(log_file=log_file, debug=args.debug) as log:
        logger.set_logger(log)
        try:
            config = load_config(resolve_config_path(args.config))
            code = run_command(args, config)
        except KeyboardInterrupt:
            _ui_warn("Interrupted.")
            code = EXIT_CANCELLED
        except Exception as e:
            _ui_error(f"Fatal error: {e}")
            code = EXIT_ERROR
    sys.exit(code)


if __name__ == "__main__":
    main()
