"""Command-line entry point for Feishu Morning Brief."""

import argparse
import json
import os
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

from .app import Application, build_application, health_handler, trigger_handler
from .config import Config
from .errors import ConfigurationError, DeliveryError
from .logging_config import create_execution_logger, setup_structured_logging
from .models import Destination, DestinationKind, FeedSource


def run_service(app: Application, stop_event: threading.Event | None = None) -> None:
    """Start the scheduled digest job and block until SIGINT/SIGTERM."""
    logger = create_execution_logger("main")
    stop_event = stop_event or threading.Event()

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping scheduled jobs")
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    if app.client.test_connection():
        logger.info("Feishu connection OK")
    else:
        logger.warning("Feishu connection test failed, check FEISHU_APP_ID and FEISHU_APP_SECRET")

    schedule_config = app.config.get_schedule_config()
    app.scheduler.start_morning_brief(schedule_config)
    logger.info(
        f"Morning brief scheduled: {schedule_config.schedule}",
        schedule=schedule_config.schedule,
        timezone=schedule_config.timezone or "local",
    )

    try:
        while not stop_event.wait(timeout=60):
            logger.debug("Scheduler heartbeat", tasks=app.scheduler.status())
    finally:
        app.close()
        logger.info("Scheduler stopped")


def import_config(app: Application, path: Path) -> tuple[int, int]:
    """Load ``{"rss_sources": [...], "target_chats": [...]}`` into the content store."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    sources = [FeedSource.from_dict(item) for item in data.get("rss_sources", [])]
    destinations = [Destination.from_dict(item) for item in data.get("target_chats", [])]
    if sources:
        app.config_provider.save_feed_sources(sources)
    if destinations:
        app.config_provider.save_destinations(destinations)
    return len(sources), len(destinations)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="morning-brief",
        description="Feishu Morning Brief - scheduled RSS digests for Feishu chats",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  morning-brief run                              # Start the scheduler
  morning-brief trigger                          # Send a digest now
  morning-brief send-text oc_123 "hello"         # Plain-text test message
  morning-brief import-config config.json        # Store sources and chats
        """,
    )
    parser.add_argument("--env-file", default=".env", help="Path to a .env file (default: .env)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--version", action="version", version="Feishu Morning Brief v1.0.0")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Start the scheduled digest job")
    sub.add_parser("trigger", help="Run one digest cycle now")
    sub.add_parser("health", help="Print job status")
    sub.add_parser("test-connection", help="Check Feishu credentials")

    send_text = sub.add_parser("send-text", help="Send a plain-text message")
    send_text.add_argument("chat_id")
    send_text.add_argument("text")
    send_text.add_argument("--type", choices=[k.value for k in DestinationKind], default="group")

    import_cmd = sub.add_parser("import-config", help="Import sources and chats from JSON")
    import_cmd.add_argument("path", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(args.env_file)

    setup_structured_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))
    logger = create_execution_logger("main")

    try:
        app = build_application(Config())
    except ConfigurationError as e:
        logger.error(f"Startup failed: {e}", error=str(e))
        return 1

    if args.command == "run":
        run_service(app)
        return 0

    try:
        if args.command == "trigger":
            response = trigger_handler(app)
            print(json.dumps(response["body"], ensure_ascii=False))
            return 0 if response["statusCode"] == 200 else 1

        if args.command == "health":
            print(json.dumps(health_handler(app)["body"], ensure_ascii=False))
            return 0

        if args.command == "test-connection":
            connected = app.client.test_connection()
            print("Feishu connection OK" if connected else "Feishu connection failed")
            return 0 if connected else 1

        if args.command == "send-text":
            destination = Destination(
                id=args.chat_id, name=args.chat_id, kind=DestinationKind(args.type)
            )
            app.delivery.send_text(destination, args.text)
            return 0

        if args.command == "import-config":
            sources, destinations = import_config(app, args.path)
            print(f"Imported {sources} RSS sources and {destinations} target chats")
            return 0
    except (ConfigurationError, DeliveryError) as e:
        logger.error(f"{args.command} failed: {e}", error=str(e))
        return 1
    finally:
        app.close()

    return 1


if __name__ == "__main__":
    sys.exit(main())
