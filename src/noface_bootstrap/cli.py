"""CLI entry point for launching a bootstrap server.

Usage:
    noface-bootstrap
    noface-bootstrap --port 3000
    noface-bootstrap --config bootstrap.json --log-level DEBUG

Environment variables:
    PORT:                            Listening port
    BOOTSTRAP_HOST:                  Listening address
    BOOTSTRAP_ACTIVE_WINDOW:         Seconds a peer counts as active
    BOOTSTRAP_INACTIVITY_THRESHOLD:  Seconds before an idle peer is removed
    BOOTSTRAP_SWEEP_INTERVAL:        Seconds between cleanup sweeps
    BOOTSTRAP_MAX_PAGE_SIZE:         Upper bound for ?limit= on /peers
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Mapping

from noface_bootstrap.server import BootstrapConfig, BootstrapServer, summarize

# env var -> (config field, type)
ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "PORT": ("port", int),
    "BOOTSTRAP_HOST": ("host", str),
    "BOOTSTRAP_ACTIVE_WINDOW": ("active_window", float),
    "BOOTSTRAP_INACTIVITY_THRESHOLD": ("inactivity_threshold", float),
    "BOOTSTRAP_SWEEP_INTERVAL": ("sweep_interval", float),
    "BOOTSTRAP_MAX_PAGE_SIZE": ("max_page_size", int),
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Launch the NoFace bootstrap server (peer discovery + signaling)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to JSON config file",
    )
    parser.add_argument(
        "--host",
        help="Override listening address",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Override listening port",
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def load_config(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> BootstrapConfig:
    """Build the config: defaults < JSON file < environment < CLI overrides.

    Raises:
        FileNotFoundError: if *config_path* doesn't exist.
        ValueError: for unknown keys, unparsable env values or inconsistent settings.
    """
    raw: dict[str, Any] = {}
    if config_path:
        path = Path(config_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"config file not found: {path}")
        with open(path) as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"config file must hold a JSON object: {path}")

    env = os.environ if environ is None else environ
    for var, (key, cast) in ENV_OVERRIDES.items():
        if env.get(var):
            try:
                raw[key] = cast(env[var])
            except ValueError:
                raise ValueError(f"invalid value for {var}: {env[var]!r}") from None

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    known = {f.name for f in dataclasses.fields(BootstrapConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(unknown)}")

    config = BootstrapConfig(**raw)
    config.validate()
    return config


async def run_server(server: BootstrapServer) -> None:
    """Start the server and run until interrupted."""
    await server.start()

    # Handle graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()
    await server.stop()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(args.config, {"host": args.host, "port": args.port})
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    server = BootstrapServer(config)

    print("=" * 60)
    print("  NoFace Bootstrap Server")
    print("=" * 60)
    for label, value in summarize(server).items():
        print(f"  {label}: {value}")
    print("=" * 60 + "\n")

    asyncio.run(run_server(server))


if __name__ == "__main__":
    main()
