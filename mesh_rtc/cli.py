"""Unified CLI for mesh-rtc using Click."""

import asyncio
import logging
import sys

import click
from loguru import logger

from mesh_rtc.client.events import (
    EVENT_DATA_MESSAGE,
    EVENT_MEMBERSHIP_CHANGED,
    EVENT_PEER_CLOSED,
    EVENT_PEER_CONNECTED,
    EVENT_RELAY_ERROR,
    EVENT_ROOM_FULL,
    EVENT_STREAM_ARRIVED,
    MeshEvent,
)
from mesh_rtc.config import get_config


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose):
    level = "DEBUG" if verbose else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    logging.basicConfig(level=getattr(logging, level))


# =============================================================================
# Relay
# =============================================================================


@cli.command()
@click.option("--host", type=str, default=None, help="Address to listen on.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on.")
@click.option(
    "--origin",
    type=str,
    default=None,
    help="Allowed browser origin(s), comma separated. Use '*' to allow any.",
)
@click.option(
    "--max-participants",
    "-m",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum members per room.",
)
def serve(host, port, origin, max_participants):
    """Run the signaling relay.

    Options override MESH_RTC_* environment variables and the config file.

    Example:
        mesh-rtc serve --port 3001 --max-participants 4
    """
    from mesh_rtc.server.app import main

    config = get_config()
    if host:
        config.host = host
    if port:
        config.port = port
    if origin:
        config.origin = origin
    if max_participants:
        config.max_participants = max_participants

    try:
        asyncio.run(
            main(
                config.host,
                config.port,
                config.max_participants,
                origins=config.get_allowed_origins(),
            )
        )
    except KeyboardInterrupt:
        logger.info("Server stopped")


# =============================================================================
# Participant
# =============================================================================


def format_event(event: MeshEvent) -> str:
    """One-line description of a mesh event for terminal output."""
    who = f"{event.name} ({event.remote_id})" if event.remote_id else ""
    if event.kind == EVENT_MEMBERSHIP_CHANGED:
        names = ", ".join(event.data.values()) if event.data else "nobody else"
        return f"Members: {names}"
    if event.kind == EVENT_PEER_CONNECTED:
        return f"Connected to {who}"
    if event.kind == EVENT_STREAM_ARRIVED:
        return f"Receiving {getattr(event.data, 'kind', 'media')} from {who}"
    if event.kind == EVENT_PEER_CLOSED:
        return f"Connection to {who} closed: {event.data}"
    if event.kind == EVENT_DATA_MESSAGE:
        return f"{event.name}: {event.data}"
    if event.kind == EVENT_ROOM_FULL:
        return f"Room {event.data['room_key']} is full (max {event.data['max']})."
    if event.kind == EVENT_RELAY_ERROR:
        return f"Error: {event.data}"
    return event.kind


@cli.command()
@click.option("--room", "-r", type=str, required=True, help="Room to join.")
@click.option("--name", "-n", type=str, default="", help="Display name.")
@click.option(
    "--server",
    "-s",
    type=str,
    default=None,
    envvar="MESH_RTC_SIGNALING_URL",
    help="Signaling server URL. Can also use MESH_RTC_SIGNALING_URL env var.",
)
@click.option(
    "--media",
    type=str,
    default=None,
    help="Media file or capture device to send to every peer.",
)
@click.option(
    "--media-format",
    type=str,
    default=None,
    help="ffmpeg input format for --media (e.g. v4l2, avfoundation).",
)
def join(room, name, server, media, media_format):
    """Join a room as a headless participant and print mesh events.

    Example:
        mesh-rtc join --room r1 --name alice --server ws://localhost:3001
    """
    from mesh_rtc.client.participant import run_participant

    config = get_config()
    signaling_url = server or config.signaling_url

    logger.info(f"Joining room {room} via {signaling_url}")
    try:
        asyncio.run(
            run_participant(
                signaling_url,
                room,
                display_name=name,
                media_source=media,
                media_format=media_format,
                ice_servers=config.ice_servers,
                on_event=lambda event: click.echo(format_event(event)),
            )
        )
    except KeyboardInterrupt:
        logger.info("Left the room")
    except OSError as e:
        logger.error(f"Could not reach signaling server {signaling_url}: {e}")
        sys.exit(1)


# =============================================================================
# Config
# =============================================================================


@cli.command(name="config")
def show_config():
    """Show the effective configuration."""
    config = get_config()
    click.echo(f"Environment:      {config.environment}")
    click.echo(f"Listen address:   {config.host}:{config.port}")
    click.echo(f"Allowed origin:   {config.origin}")
    click.echo(f"Max participants: {config.max_participants}")
    click.echo(f"Signaling URL:    {config.signaling_url}")
    for server in config.ice_servers:
        click.echo(f"ICE server:       {', '.join(server.urls)}")


if __name__ == "__main__":
    cli()
