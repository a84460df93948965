"""
Command-Line Interface for EmitterHub.

Provides commands for running the router, monitoring Art-Net traffic,
checking a mapping layout and sending test eHuB updates.
"""

from __future__ import annotations

import logging
import socket
import sys
import time
from pathlib import Path
from typing import Optional

import click
import structlog

from emitterhub import __version__
from emitterhub.core.config import Settings
from emitterhub.core.exceptions import ConfigError, EmitterHubError

logger = structlog.get_logger()


def _load_settings(ctx: click.Context) -> Settings:
    if ctx.obj.get("config_path"):
        settings = Settings.from_yaml(ctx.obj["config_path"])
    else:
        settings = Settings()
    settings.debug = ctx.obj.get("debug", False)
    return settings


def _validate_startup_config(settings: Settings) -> None:
    """Fail before opening sockets when configured files are missing."""
    mapping = settings.mapping
    if mapping.mapping_csv is None:
        raise ConfigError("No mapping CSV configured (use --mapping or mapping.mapping_csv)")
    if not mapping.mapping_csv.is_file():
        raise ConfigError(f"Mapping CSV not found: {mapping.mapping_csv}")
    if mapping.patch_csv is not None and not mapping.patch_csv.is_file():
        raise ConfigError(f"Patch CSV not found: {mapping.patch_csv}")
    if settings.router.tick_timeout_s <= 0:
        raise ConfigError("router.tick_timeout_s must be positive")


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config: Optional[str]) -> None:
    """
    EmitterHub - eHuB to Art-Net router

    Receives eHuB entity updates, maps them onto DMX universes and
    streams Art-Net frames to LED controllers.
    """
    ctx.ensure_object(dict)

    # Configure logging
    log_level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.option("--mapping", "mapping_csv", type=click.Path(exists=True), help="Mapping CSV")
@click.option("--patch", "patch_csv", type=click.Path(exists=True), help="Patch CSV")
@click.option("--port", type=int, help="eHuB listen port")
@click.option("--universe", type=int, help="eHuB universe to route")
@click.option("--fps", type=float, help="Tick rate in Hz")
@click.option("--stats-every", default=1.0, help="Seconds between stats lines")
@click.pass_context
def run(
    ctx: click.Context,
    mapping_csv: Optional[str],
    patch_csv: Optional[str],
    port: Optional[int],
    universe: Optional[int],
    fps: Optional[float],
    stats_every: float,
) -> None:
    """Run the eHuB → Art-Net router."""
    from emitterhub.routing import Router

    settings = _load_settings(ctx)
    if mapping_csv:
        settings.mapping.mapping_csv = Path(mapping_csv)
    if patch_csv:
        settings.mapping.patch_csv = Path(patch_csv)
    if port is not None:
        settings.receiver.listen_port = port
    if universe is not None:
        settings.receiver.target_universe = universe
    if fps is not None:
        settings.router.tick_rate_hz = fps

    click.echo(f"EmitterHub v{__version__}")
    click.echo("=" * 50)

    try:
        _validate_startup_config(settings)
        router = Router(settings)
        report = router.load_mapping_csv(settings.mapping.mapping_csv)
        if settings.mapping.patch_csv is not None:
            router.load_patch_csv(settings.mapping.patch_csv)
    except EmitterHubError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Mapping: {report.loaded} rows, {report.entities} entities, {report.skipped} skipped")
    click.echo(f"Universes: {len(router.get_configured_universes())}")
    click.echo(f"Listening: {settings.receiver.listen_ip}:{settings.receiver.listen_port}")
    click.echo(f"Tick rate: {settings.router.tick_rate_hz} Hz")
    click.echo()

    try:
        router.start()
        click.echo("Press Ctrl+C to stop.")
        while True:
            time.sleep(stats_every)
            snap = router.snapshot()
            click.echo(
                f"eHuB msgs: {snap.messages_received} | "
                f"entities: {snap.active_entities} | "
                f"sent: {snap.packets_sent} | "
                f"dropped: {snap.dropped} | "
                f"active frames: {snap.mapping.active_frames}"
                + (" | CONGESTED" if snap.congested else "")
            )
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        if ctx.obj["debug"]:
            raise
        sys.exit(1)
    finally:
        router.stop()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Address to listen on")
@click.option("--port", default=6454, help="Art-Net port")
@click.option("--channels", "-n", default=12, help="Channels to preview")
@click.option("--universe", "only_universe", type=int, help="Only show this universe")
@click.pass_context
def monitor(
    ctx: click.Context,
    host: str,
    port: int,
    channels: int,
    only_universe: Optional[int],
) -> None:
    """Print incoming ArtDMX packets."""
    import queue

    from emitterhub.dmx.artnet import ArtNetListener

    listener = ArtNetListener(host, port)
    try:
        listener.start()
    except OSError as e:
        click.echo(f"Error: cannot listen on {host}:{port}: {e}", err=True)
        sys.exit(1)

    click.echo(f"Listening for Art-Net on {host}:{port}. Press Ctrl+C to stop.")
    try:
        while True:
            try:
                row = listener.frames.get(timeout=0.5)
            except queue.Empty:
                continue
            if only_universe is not None and row.universe != only_universe:
                continue
            n = max(1, min(channels, len(row.data)))
            preview = " ".join(f"{v:3d}" for v in row.data[:n])
            click.echo(
                f"u{row.universe:03d} from {row.source_ip} len={row.length} "
                f"active={row.active_channels:3d}  ch1..{n}: {preview}"
            )
    except KeyboardInterrupt:
        pass
    finally:
        listener.stop()
        click.echo()


@cli.command()
@click.argument("mapping_csv", type=click.Path(exists=True))
@click.option("--limit", default=20, help="Entities to print (0 = all)")
@click.pass_context
def layout(ctx: click.Context, mapping_csv: str, limit: int) -> None:
    """Show the entity → DMX layout a mapping CSV produces."""
    from emitterhub.dmx.mapper import DmxMapper
    from emitterhub.loaders import load_mapping_csv

    mapper = DmxMapper()
    report = load_mapping_csv(mapping_csv, mapper)

    for error in report.errors:
        click.echo(f"  skipped {error}", err=True)

    stats = mapper.get_stats()
    click.echo(f"{stats.total_entities} entities on {stats.total_universes} universes")
    click.echo("-" * 60)
    for i, mapping in enumerate(mapper.iter_mappings()):
        if limit and i >= limit:
            click.echo(f"  ... ({stats.total_entities - limit} more)")
            break
        click.echo(
            f"  entity {mapping.entity_id:5d} -> {mapping.target_ip} "
            f"U{mapping.universe:<3d} ch {mapping.start_channel:3d}"
            f"..{mapping.start_channel + mapping.width - 1}"
        )


@cli.command("send-test")
@click.option("--host", default="127.0.0.1", help="Router address")
@click.option("--port", default=8765, help="Router eHuB port")
@click.option("--universe", default=0, help="eHuB universe")
@click.option("--start", "entity_start", default=100, help="First entity id")
@click.option("--count", default=10, help="Number of entities")
@click.option("--color", default="255,0,0", help="R,G,B[,W]")
@click.pass_context
def send_test(
    ctx: click.Context,
    host: str,
    port: int,
    universe: int,
    entity_start: int,
    count: int,
    color: str,
) -> None:
    """Send one eHuB update coloring a range of entities."""
    from emitterhub.ehub.protocol import EntityState, build_update_datagram

    try:
        components = [int(c) for c in color.split(",")]
    except ValueError:
        click.echo("Error: color must be R,G,B[,W]", err=True)
        sys.exit(1)
    if len(components) not in (3, 4) or not all(0 <= c <= 255 for c in components):
        click.echo("Error: color must be R,G,B[,W] with values 0-255", err=True)
        sys.exit(1)

    entities = [EntityState(entity_start + i, *components) for i in range(count)]
    datagram = build_update_datagram(universe, entities)

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.sendto(datagram, (host, port))
    click.echo(f"Sent {count} entities ({len(datagram)} bytes) to {host}:{port}")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
