#!/usr/bin/env python3
"""Command-line interface for tunelink.

This CLI is primarily for debugging and development.
For production use, run the tunelink_api service or import tunelink as a
library.
"""

import json
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from tunelink.config import APIConfig
from tunelink.exceptions import TunelinkError
from tunelink.lib.matching import Matcher
from tunelink.models.app import DeveloperApp, PlatformCredentials
from tunelink.models.enums import EntityKind, Platform
from tunelink.models.link import LinkInfo
from tunelink.models.results import MatchResult, TrackConversion
from tunelink.models.track import CandidateTrack
from tunelink.platforms.base import AdapterRegistry
from tunelink.services import TrackConverter
from tunelink.utils.url import LinkParser

logger = logging.getLogger("tunelink")

PROGRESS_COLUMNS = (
    SpinnerColumn(),
    TextColumn("[progress.description]{task.description}"),
    BarColumn(),
    TaskProgressColumn(),
    TimeElapsedColumn(),
)

PLATFORM_CHOICE = click.Choice([p.value for p in Platform])


def setup_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Configure logging with Rich handler.

    Clears existing handlers first so it can be called again with the
    console a Progress bar renders to.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise WARNING.
        console: Optional Console instance to use for RichHandler.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        console=console,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)


def build_app(
    spotify_client_id: str | None,
    spotify_client_secret: str | None,
    tidal_client_id: str | None,
    tidal_client_secret: str | None,
    applemusic_token: str | None,
) -> DeveloperApp:
    """Build a local app from the credentials given on the command line."""
    credentials = {
        Platform.SPOTIFY: PlatformCredentials(
            client_id=spotify_client_id, client_secret=spotify_client_secret
        ),
        Platform.TIDAL: PlatformCredentials(
            client_id=tidal_client_id, client_secret=tidal_client_secret
        ),
        Platform.APPLE_MUSIC: PlatformCredentials(access_token=applemusic_token),
    }
    return DeveloperApp(id="cli", name="tunelink CLI", credentials=credentials)


def print_track_card(console: Console, track: CandidateTrack, title: str) -> None:
    table = Table(
        show_header=False,
        padding=(0, 1),
        title=f"[bold yellow]{title}[/bold yellow]",
        title_justify="left",
    )
    table.add_column("Field", style="bold cyan", width=10)
    table.add_column("Value", overflow="fold")

    table.add_row("Title", track.title)
    table.add_row("Artist", track.artist)
    if track.album:
        table.add_row("Album", track.album)
    if track.duration:
        table.add_row("Duration", track.duration)
    table.add_row("URL", track.url)

    console.print()
    console.print(table)


def format_match(match: MatchResult | None) -> tuple[str, str, str]:
    """Render a match as (status, track, score) cells."""
    if match is None:
        return "[red]error[/red]", "", ""
    if match.chosen is None:
        return "[yellow]omitted[/yellow]", "", f"{match.score:.2f}"
    return (
        "[green]matched[/green]",
        f"{match.chosen.artist} - {match.chosen.title}\n[dim]{match.chosen.url}[/dim]",
        f"{match.score:.2f}",
    )


def print_conversion(console: Console, conversion: TrackConversion) -> None:
    print_track_card(
        console, conversion.source, f"Source ({conversion.source_platform.label})"
    )

    table = Table(title="Matches", title_justify="left")
    table.add_column("Platform", style="bold cyan")
    table.add_column("Status")
    table.add_column("Track", overflow="fold")
    table.add_column("Score", justify="right")
    for platform, match in conversion.platforms.items():
        table.add_row(platform.label, *format_match(match))

    console.print()
    console.print(table)
    console.print(
        f"\nMatched on {conversion.matched_count} of "
        f"{len(conversion.platforms)} platform(s)"
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Convert music links between streaming platforms."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose=verbose)


@main.command(name="parse")
@click.argument("url", metavar="URL")
def parse_cmd(url: str) -> None:
    """Show the platform, entity, and canonical link of a URL.

    \b
    Examples:
      tunelink parse "https://open.spotify.com/track/2I3dW2dCBZAJGj5X21E53k"
      tunelink parse "https://deezer.page.link/abcdef"
    """
    parser = LinkParser()
    try:
        link = parser.parse(url)
    except TunelinkError as e:
        raise click.ClickException(e.message) from e
    finally:
        parser.close()

    json.dump(link.model_dump(mode="json"), sys.stdout, indent=2)
    sys.stdout.write("\n")


@main.command(name="convert")
@click.argument("url", metavar="URL")
@click.option(
    "--to",
    "targets",
    type=PLATFORM_CHOICE,
    multiple=True,
    help="Target platform (repeatable). Default: every configured platform.",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--spotify-client-id", envvar="TUNELINK_SPOTIFY_CLIENT_ID")
@click.option("--spotify-client-secret", envvar="TUNELINK_SPOTIFY_CLIENT_SECRET")
@click.option("--tidal-client-id", envvar="TUNELINK_TIDAL_CLIENT_ID")
@click.option("--tidal-client-secret", envvar="TUNELINK_TIDAL_CLIENT_SECRET")
@click.option("--applemusic-token", envvar="TUNELINK_APPLEMUSIC_TOKEN")
@click.pass_context
def convert_cmd(
    ctx: click.Context,
    url: str,
    targets: tuple[str, ...],
    as_json: bool,
    spotify_client_id: str | None,
    spotify_client_secret: str | None,
    tidal_client_id: str | None,
    tidal_client_secret: str | None,
    applemusic_token: str | None,
) -> None:
    """Convert a track or playlist link to other platforms.

    Deezer and YouTube Music need no credentials. Spotify, TIDAL, and Apple
    Music are used when their credentials are given as options or through
    TUNELINK_* environment variables.

    \b
    Examples:
      tunelink convert "https://www.deezer.com/track/3135556"
      tunelink convert "https://open.spotify.com/track/ID" --to deezer --to ytmusic
    """
    console = Console()
    setup_logging(verbose=ctx.obj.get("verbose", False), console=console)

    app = build_app(
        spotify_client_id,
        spotify_client_secret,
        tidal_client_id,
        tidal_client_secret,
        applemusic_token,
    )
    registry = AdapterRegistry.for_app(app, APIConfig())
    converter = TrackConverter(registry, Matcher())
    target_platforms = [Platform(t) for t in targets] or None
    parser = LinkParser()

    try:
        link = parser.parse(url, app=app.id)
        if link.entity == EntityKind.PLAYLIST:
            convert_playlist(console, converter, link, target_platforms, as_json)
            return

        with console.status("Converting track"):
            conversion = converter.convert(link, target_platforms)
        if as_json:
            json.dump(conversion.model_dump(mode="json"), sys.stdout, indent=2)
            sys.stdout.write("\n")
        else:
            print_conversion(console, conversion)

    except TunelinkError as e:
        logger.error(e.message)
        raise click.ClickException(e.message) from e
    except Exception as e:
        logger.exception("Unexpected error")
        raise click.ClickException(f"Unexpected error: {e}") from e
    finally:
        parser.close()
        registry.close()


def convert_playlist(
    console: Console,
    converter: TrackConverter,
    link: LinkInfo,
    targets: list[Platform] | None,
    as_json: bool,
) -> None:
    """Match every playlist track and print per-platform totals."""
    platforms = converter.resolve_targets(link.platform, targets)
    with console.status("Fetching playlist"):
        meta, tracks = converter.fetch_playlist(link)

    matched = dict.fromkeys(platforms, 0)
    rows: list[dict] = []
    with Progress(*PROGRESS_COLUMNS, console=console) as progress:
        task = progress.add_task(f"Matching {meta.title}", total=len(tracks))
        for index, track in enumerate(tracks, 1):
            results = converter.match_all(track, platforms)
            for platform, match in results.items():
                if match and match.chosen:
                    matched[platform] += 1
            rows.append(
                {
                    "index": index,
                    "source": track.model_dump(mode="json"),
                    "platforms": {
                        str(p): m.model_dump(mode="json") if m else None
                        for p, m in results.items()
                    },
                }
            )
            progress.advance(task)

    if as_json:
        payload = {"meta": meta.model_dump(mode="json"), "tracks": rows}
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return

    table = Table(title=f"{meta.title} ({len(tracks)} tracks)", title_justify="left")
    table.add_column("Platform", style="bold cyan")
    table.add_column("Matched", justify="right")
    table.add_column("Omitted", justify="right")
    for platform, count in matched.items():
        table.add_row(platform.label, str(count), str(len(tracks) - count))
    console.print()
    console.print(table)


if __name__ == "__main__":
    main()
