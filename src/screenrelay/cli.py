"""Command-line interface for screenrelay.

Provides the main entry point for running the relay server and a few
commands for driving a running relay over HTTP.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="screenrelay",
        description="Real-time relay between screen producers and viewers",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/screenrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--url", type=str, default=None,
        help="Base URL of a running relay (default: derived from server config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the relay server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    subparsers.add_parser("status", help="Show connection counts and producers")

    update_parser = subparsers.add_parser("update", help="Send overlay text to producers")
    update_parser.add_argument("text", type=str)
    update_parser.add_argument("--client-id", type=str, default=None,
                               help="Target producer (default: all)")

    overlay_parser = subparsers.add_parser("overlay", help="Show or hide the overlay")
    overlay_parser.add_argument("state", choices=["show", "hide"])
    overlay_parser.add_argument("--client-id", type=str, default=None,
                                help="Target producer (default: all)")

    snapshot_parser = subparsers.add_parser("snapshot", help="Save a producer's latest capture")
    snapshot_parser.add_argument("--client-id", type=str, required=True)
    snapshot_parser.add_argument("-o", "--output", type=Path, default=None,
                                 help="Output file (default: <client-id>.<ext>)")

    return parser.parse_args(argv)


def _base_url(settings, args) -> str:
    if args.url:
        return args.url
    host = settings.server.host
    if host in ("0.0.0.0", "::"):
        host = "localhost"
    return f"http://{host}:{settings.server.port}"


async def _status(base_url: str) -> None:
    from screenrelay.client import RelayHttpClient

    async with RelayHttpClient(base_url) as relay:
        info = await relay.ping()
        pcs = await relay.connected_pcs()

    print(f"Relay:     {base_url} ({info['status']}, {info['environment']})")
    print(f"Producers: {info['windowsClients']}")
    print(f"Viewers:   {info['webClients']}")
    for pc in pcs:
        shot = "yes" if pc["hasScreenshot"] else "no"
        print(f"  - {pc['clientId']} ({pc['hostname']}) snapshot={shot}")


async def _update(base_url: str, text: str, client_id: str | None) -> None:
    from screenrelay.client import RelayHttpClient

    async with RelayHttpClient(base_url) as relay:
        notified = await relay.update_text(text, client_id=client_id)
    print(f"Overlay text sent to {notified} producer(s)")


async def _overlay(base_url: str, visible: bool, client_id: str | None) -> None:
    from screenrelay.client import RelayHttpClient

    async with RelayHttpClient(base_url) as relay:
        notified = await relay.toggle_overlay(visible, client_id=client_id)
    print(f"Overlay {'shown' if visible else 'hidden'} on {notified} producer(s)")


async def _snapshot(base_url: str, client_id: str, output: Path | None) -> None:
    from screenrelay.client import RelayHttpClient

    async with RelayHttpClient(base_url) as relay:
        shot = await relay.latest_screenshot(client_id)

    data, ext = decode_image(shot["image"])
    outfile = output or Path(f"{client_id}.{ext}")
    outfile.write_bytes(data)
    print(f"Saved snapshot from {client_id} (t={shot['timestamp']}) to {outfile}")


def decode_image(image: str) -> tuple[bytes, str]:
    """Decode a ``data:image/...;base64,`` URL into bytes and a file extension.

    Anything that is not a base64 data URL is returned as raw text.
    """
    header, sep, body = image.partition(",")
    if sep and header.startswith("data:") and header.endswith(";base64"):
        mime = header[len("data:"):-len(";base64")]
        ext = mime.split("/")[-1] or "bin"
        return base64.b64decode(body), ext
    return image.encode("utf-8"), "txt"


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the screenrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from screenrelay.client import RelayClientError
    from screenrelay.config.settings import load_settings
    from screenrelay.relay.errors import UnknownProducer
    from screenrelay.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        from screenrelay.server import run_server

        if args.host:
            settings.server.host = args.host
        if args.port:
            settings.server.port = args.port
        logger.info("Starting relay on %s:%d", settings.server.host, settings.server.port)
        run_server(settings)
        return

    base_url = _base_url(settings, args)
    try:
        if args.command == "status":
            asyncio.run(_status(base_url))
        elif args.command == "update":
            asyncio.run(_update(base_url, args.text, args.client_id))
        elif args.command == "overlay":
            asyncio.run(_overlay(base_url, args.state == "show", args.client_id))
        elif args.command == "snapshot":
            asyncio.run(_snapshot(base_url, args.client_id, args.output))
    except UnknownProducer as e:
        print(f"No screenshot available: {e}", file=sys.stderr)
        sys.exit(1)
    except RelayClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
