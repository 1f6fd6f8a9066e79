"""CLI entry point for the call recording relay.

Commands:
    callrelay watch   — watch a directory tree and upload recording/transcript pairs
    callrelay parse   — show the metadata a filename would be uploaded with
    callrelay history — show what happened to a pair, or which pairs last failed
"""

import asyncio
import logging
import sys

import click

from callrelay.config import (
    INGEST_API_KEY,
    INGEST_URL,
    INGEST_VERIFY_TLS,
    MONITORED_DIRECTORY,
    RELAY_AUDIT_LOG_PATH,
    ConfigError,
    Settings,
    load_settings,
)

logger = logging.getLogger("callrelay")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Callrelay — forward recorder audio and transcripts to an ingest endpoint."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# callrelay watch
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--dir",
    "monitored_directory",
    default=MONITORED_DIRECTORY,
    show_default=True,
    help="Directory tree to watch (or set MONITORED_DIRECTORY).",
)
@click.option("--url", default=INGEST_URL, show_default=True, help="Ingest endpoint URL.")
@click.option(
    "--api-key",
    default=INGEST_API_KEY,
    help="Value sent in the X-API-Key header (or set INGEST_API_KEY).",
)
@click.option(
    "--insecure",
    is_flag=True,
    help="Skip TLS certificate verification (test environments only).",
)
@click.option(
    "--dedup-window",
    type=float,
    default=None,
    help="Seconds a relayed pair ignores repeat events (or set RELAY_DEDUP_WINDOW).",
)
@click.option("--concurrent", is_flag=True, help="Upload pairs in parallel instead of one at a time.")
@click.option("--once", is_flag=True, help="Relay pairs already on disk and exit (no continuous watch).")
def watch(
    monitored_directory: str,
    url: str,
    api_key: str,
    insecure: bool,
    dedup_window: float | None,
    concurrent: bool,
    once: bool,
) -> None:
    """Watch a directory tree and upload each recording/transcript pair once."""
    try:
        settings = load_settings(
            monitored_directory=monitored_directory,
            ingest_url=url,
            api_key=api_key,
            verify_tls=INGEST_VERIFY_TLS and not insecure,
            dedup_window=dedup_window,
        )
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    from callrelay.relay.watcher import WatchSetupError

    try:
        asyncio.run(_watch_async(settings, concurrent=concurrent, once=once))
    except WatchSetupError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


async def _watch_async(settings: Settings, *, concurrent: bool, once: bool) -> None:
    from callrelay.integrations.ingest import IngestClient
    from callrelay.relay.audit import RelayAuditLog
    from callrelay.relay.dedup import RecentUploads
    from callrelay.relay.pipeline import RelayPipeline
    from callrelay.relay.watcher import scan_existing, watch_directory

    root = settings.monitored_directory
    logger.debug("Settings: %s", settings.model_dump(exclude={"api_key"}))
    audit_log = None
    if settings.audit_log_path:
        audit_log = RelayAuditLog(settings.audit_log_path, max_bytes=settings.audit_max_bytes)

    async with IngestClient(
        settings.ingest_url,
        settings.api_key,
        verify_tls=settings.verify_tls,
        timeout=settings.timeout,
    ) as client:
        pipeline = RelayPipeline(
            root,
            client,
            recent=RecentUploads(settings.dedup_window),
            audit_log=audit_log,
            concurrent=concurrent,
        )

        if once:
            click.echo(f"Scanning {root} (once mode)…")
            await scan_existing(root, pipeline)
            stats = pipeline.stats
            click.echo(
                f"Done. Uploaded: {stats['uploaded']}, Duplicates: {stats['duplicate']}, "
                f"Skipped: {stats['skipped']}, Errors: {stats['error']}"
            )
        else:
            click.echo(f"Watching {root} for recordings (Ctrl+C to stop)…")
            click.echo(f"  Endpoint: {settings.ingest_url}")
            if not settings.verify_tls:
                click.echo("  TLS verification: DISABLED")
            await watch_directory(root, pipeline)


# ------------------------------------------------------------------
# callrelay parse
# ------------------------------------------------------------------


@cli.command()
@click.argument("filenames", nargs=-1, required=True)
def parse(filenames: tuple[str, ...]) -> None:
    """Show the metadata each FILENAME would be uploaded with."""
    from callrelay.relay.filename import parse_filename

    unmatched = 0
    for name in filenames:
        metadata = parse_filename(name)
        if metadata is None:
            unmatched += 1
            click.echo(f"{name}: no match")
            continue
        click.echo(
            f"{name}: timestamp={metadata.timestamp} "
            f"talkgroupId={metadata.talkgroup_id} radioId={metadata.radio_id}"
        )

    if unmatched:
        sys.exit(1)


# ------------------------------------------------------------------
# callrelay history
# ------------------------------------------------------------------


@cli.command()
@click.argument("paths", nargs=-1)
@click.option(
    "--audit-log",
    default=RELAY_AUDIT_LOG_PATH,
    show_default=True,
    help="Relay audit log to read (or set RELAY_AUDIT_LOG_PATH).",
)
@click.option("--failed", is_flag=True, help="List pairs whose latest upload attempt failed.")
def history(paths: tuple[str, ...], audit_log: str, failed: bool) -> None:
    """Show recorded outcomes for the pairs that PATHS belong to.

    Either half of a pair (or its stem with the directory) identifies it.
    """
    from callrelay.relay.audit import RelayAuditLog
    from callrelay.relay.pairing import pair_key

    if not audit_log:
        click.echo("Error: --audit-log is required (or set RELAY_AUDIT_LOG_PATH).", err=True)
        sys.exit(1)
    if not paths and not failed:
        click.echo("Error: give one or more PATHS, or --failed.", err=True)
        sys.exit(1)

    journal = RelayAuditLog(audit_log)

    if failed:
        failures = journal.failed_pairs()
        for event in failures:
            click.echo(f"{event.pair_key}: {event.timestamp:%Y-%m-%d %H:%M:%S} {event.error_message}")
        click.echo(f"Failed pairs: {len(failures)}")

    unknown = 0
    for path in paths:
        key = pair_key(path)
        events = journal.history(key)
        if not events:
            unknown += 1
            click.echo(f"{key}: never seen")
            continue
        click.echo(f"{key}:")
        for event in events:
            detail = event.error_message or (f"HTTP {event.http_status}" if event.http_status else "")
            click.echo(f"  {event.timestamp:%Y-%m-%d %H:%M:%S} {event.status.value:<9} {detail}".rstrip())

    if unknown:
        sys.exit(1)
