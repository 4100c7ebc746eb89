"""CLI entry point for notestream.

Runs one feed view headless and logs what a renderer would draw. The feed
can run in one-shot mode (``--once``: load, enrich, print, exit) or
continuously, polling for new records with a Prometheus metrics server.

Examples:
    ```bash
    python -m notestream --once
    python -m notestream --mode profile --author npub1...
    python -m notestream --mode follows --author <hex> --author <hex> --log-level DEBUG
    python -m notestream --config config/feed.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from notestream.core import start_metrics_server
from notestream.core.events import (
    BadgeUpdated,
    EmbedsResolved,
    FailureReported,
    FeedEmpty,
    PipelineEvent,
    ProfilePatched,
    RecordAdmitted,
    StateChanged,
    ViewRendered,
)
from notestream.core.exceptions import ConfigurationError
from notestream.core.logger import Logger, StructuredFormatter
from notestream.core.yaml import load_yaml
from notestream.models.constants import BadgeState, FeedMode
from notestream.models.reference import ReferenceType
from notestream.services.embeds import to_text
from notestream.services.ingestion import FeedTarget, IngestionConfig, IngestionController
from notestream.services.nostr import NostrUpstream
from notestream.utils.protocol import decode_entity


CONFIG_PATH = Path("config") / "feed.yaml"
PREVIEW_LENGTH = 80

logger = Logger("cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the feed runner."""
    parser = argparse.ArgumentParser(
        prog="notestream",
        description="notestream feed runner",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help=f"Feed config path (default: {CONFIG_PATH})",
    )

    parser.add_argument(
        "--mode",
        choices=[m.value for m in FeedMode],
        default=FeedMode.GLOBAL.value,
        help="Feed mode (default: global)",
    )

    parser.add_argument(
        "--author",
        action="append",
        default=[],
        help="Author id (hex or npub); repeat for follow feeds",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Load once, print the feed and exit (default: keep polling)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on the root handler so that all
    log output, from both ``Logger`` and plain ``logging.getLogger()``
    calls in models/utils, is unified as ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def resolve_author(value: str) -> str:
    """Return the hex id of an author given as hex or ``npub``/``nprofile``.

    Raises:
        ValueError: If *value* is neither.
    """
    if value.lower().startswith((ReferenceType.PUBKEY, ReferenceType.PROFILE)):
        decoded = decode_entity(value)
        if decoded.author_id is None:
            raise ValueError(f"not an author reference: {value}")
        return decoded.author_id
    return value.lower()


def build_target(mode: str, authors: list[str]) -> FeedTarget:
    """Build the [FeedTarget][notestream.services.ingestion.FeedTarget] for the CLI arguments."""
    hex_authors = tuple(resolve_author(a) for a in authors)
    return FeedTarget(FeedMode(mode), authors=hex_authors)


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= PREVIEW_LENGTH else flat[: PREVIEW_LENGTH - 3] + "..."


def make_printer(controller: IngestionController) -> Any:
    """Return a listener that logs each pipeline event as a renderer would draw it."""
    feed_logger = Logger("feed")

    def author_name(author_id: str) -> str:
        return controller.profiles.display_name(author_id) or author_id[:8]

    def on_event(event: PipelineEvent) -> None:
        if isinstance(event, RecordAdmitted):
            feed_logger.info(
                "record",
                index=event.index,
                author=author_name(event.record.author_id),
                content=_preview(event.record.content),
            )
        elif isinstance(event, ViewRendered):
            feed_logger.info("view", records=len(event.records))
        elif isinstance(event, BadgeUpdated):
            if event.state == BadgeState.FAILED:
                feed_logger.warning(
                    "badge_failed", id=event.record_id[:16], subject=event.subject, reason=event.reason
                )
        elif isinstance(event, ProfilePatched):
            feed_logger.debug("profile", author=event.author_id[:8], name=event.profile.display_name)
        elif isinstance(event, EmbedsResolved):
            feed_logger.debug("embeds", id=event.record_id[:16], text=_preview(to_text(event.segments)))
        elif isinstance(event, StateChanged):
            feed_logger.debug("state", previous=event.previous, current=event.current)
        elif isinstance(event, FeedEmpty):
            feed_logger.info("feed_empty")
        elif isinstance(event, FailureReported):
            feed_logger.warning("failure", kind=event.kind, message=event.message)

    return on_event


def print_feed(controller: IngestionController) -> None:
    """Log the visible records, newest first."""
    for index, record in enumerate(controller.visible_records()):
        name = controller.profiles.display_name(record.author_id) or record.author_id[:8]
        logger.info("feed_entry", index=index, author=name, content=_preview(record.content))


async def run_feed(controller: IngestionController, *, once: bool) -> int:
    """Run the feed in one-shot or continuous mode.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    controller.events.subscribe(make_printer(controller))

    if once:
        async with controller:
            await controller.activate()
            await controller.drain()
            if not controller.is_loaded:
                logger.error("feed_failed", state=controller.state)
                return 1
            print_feed(controller)
        logger.info("feed_completed")
        return 0

    metrics_config = controller.config.metrics
    metrics_server = await start_metrics_server(metrics_config)

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        controller.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with controller:
            # Headless: nobody is looking, so every feed mode polls
            await controller.activate(focused=False)
            # A follow feed with no follows never polls; it stays up until shutdown
            while controller.is_polling or (controller.is_loaded and not controller.target.polls):
                if await controller.wait(controller.config.interval):
                    return 0
            logger.error("feed_stopped", state=controller.state)
            return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def _load_config(path: Path) -> IngestionConfig:
    """Load the feed config, falling back to defaults if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return IngestionConfig()
    return IngestionConfig(**load_yaml(path))


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, build the controller, and run the feed."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = _load_config(args.config)
        target = build_target(args.mode, args.author)
    except (ConfigurationError, ValueError) as e:
        logger.error("invalid_arguments", error=str(e))
        return 2

    upstream = NostrUpstream(timeout=config.sources.request_timeout)
    controller = IngestionController(upstream, config, target=target)

    try:
        return await run_feed(controller, once=args.once)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
