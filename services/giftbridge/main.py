"""
Command-line interface for GiftBridge.

Examples:
    python -m services.giftbridge init
    python -m services.giftbridge auth-url
    python -m services.giftbridge auth-exchange --code <code>
    python -m services.giftbridge sync --dry-run --since 2025-01-01T00:00:00Z
"""

import argparse
import os
import secrets
import signal
import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as SettingsValidationError

from . import __version__
from .blackbaud import BlackbaudClient
from .client import HTTPClient
from .errors import GiftBridgeError
from .fundraiseup import FundraiseUpClient
from .log_config import configure_logging, get_logger
from .mapper import GiftMapper
from .models import SyncResult, parse_timestamp
from .oauth import TokenCache, authorization_url, exchange_code
from .runner import BatchRunner
from .settings import GiftBridgeSettings, settings
from .storage import FileCredentialStore, NoopCheckpointStore, SqlStateStore, get_engine

logger = get_logger(__name__)

ENV_TEMPLATE = """\
# GiftBridge configuration
# Values can also be given as environment variables of the same name.

# From Blackbaud Developer Portal -> My Applications.
BLACKBAUD_CLIENT_ID=
BLACKBAUD_CLIENT_SECRET=
# From Blackbaud Developer Portal -> My Subscriptions.
BLACKBAUD_SUBSCRIPTION_KEY=
BLACKBAUD_REDIRECT_URI=http://localhost:8080/callback

# From FundraiseUp Dashboard -> Settings -> API keys.
FUNDRAISEUP_API_KEY=

# Required: Raiser's Edge fund ID.
GIFT_FUND_ID=
# Optional: campaign and appeal IDs.
GIFT_CAMPAIGN_ID=
GIFT_APPEAL_ID=
# Gift type for one-off donations (default: Donation).
GIFT_TYPE=Donation

# SQLAlchemy URL of the state store. Leave empty to run without a
# checkpoint; the refresh token is then kept in TOKEN_FILE.
DATABASE_URL=
TOKEN_FILE=~/.giftbridge/token

LOG_LEVEL=INFO
LOG_FORMAT=json
"""


def parse_since(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp (or a YYYY-MM-DD date).

    Raises:
        ValueError: If the value is not a timestamp
    """
    try:
        parsed = parse_timestamp(value)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp '{value}'. Expected RFC 3339, e.g. 2025-01-01T00:00:00Z") from e
    if parsed is None:
        raise ValueError("Timestamp cannot be empty")
    return parsed


def format_summary(result: SyncResult) -> str:
    """Human-readable run summary."""
    lines = []
    if result.dry_run:
        lines.append("DRY RUN: no changes were written")
    if result.resumed:
        lines.append("Resumed an interrupted batch")
    lines.extend([
        f"Donations processed:     {result.donations_processed}",
        f"Constituents created:    {result.constituents_created}",
        f"Constituents existing:   {result.constituents_existing}",
        f"Gifts created:           {result.gifts_created}",
        f"Gifts updated:           {result.gifts_updated}",
        f"Gifts skipped (exist):   {result.gifts_skipped_existing}",
        f"Errors:                  {len(result.errors)}",
    ])
    lines.extend(f"  - {error}" for error in result.errors)
    if result.cancelled:
        lines.append("Cancelled before the batch finished; the rest stays pending")
    return "\n".join(lines)


def open_state(config: GiftBridgeSettings) -> Optional[SqlStateStore]:
    """State store for the configured database, None when none is set."""
    if not config.database_url:
        return None
    store = SqlStateStore(get_engine(config.database_url), prefix=config.state_key_prefix)
    store.create_schema()
    return store


def credential_store(config: GiftBridgeSettings, state: Optional[SqlStateStore]):
    if state is not None:
        return state.credentials()
    return FileCredentialStore(config.token_path)


def run_sync(
    config: GiftBridgeSettings,
    since: Optional[datetime] = None,
    dry_run: bool = False,
    cancel: Optional[threading.Event] = None,
) -> SyncResult:
    """Wire the clients and stores from settings and run one batch."""
    state = open_state(config)
    checkpoint = state if state is not None else NoopCheckpointStore(since)

    with HTTPClient(max_retries=config.http_max_retries, timeout=config.http_timeout) as http:
        tokens = TokenCache(
            http,
            token_url=config.blackbaud_token_url,
            client_id=config.blackbaud_client_id,
            client_secret=config.blackbaud_client_secret,
            credentials=credential_store(config, state),
        )
        runner = BatchRunner(
            source=FundraiseUpClient(config.fundraiseup_api_key, config.fundraiseup_base_url, http=http),
            sink=BlackbaudClient(tokens, config.blackbaud_subscription_key, config.blackbaud_api_base_url, http=http),
            checkpoint=checkpoint,
            mapper=GiftMapper.from_settings(config),
            max_batch_size=config.max_batch_size,
            default_lookback=timedelta(days=config.default_lookback_days),
            dry_run=dry_run,
            cancel=cancel,
        )
        return runner.run(since)


def cmd_sync(args: argparse.Namespace, config: GiftBridgeSettings) -> int:
    missing = config.missing_sync_fields()
    if missing:
        logger.error("Missing required configuration", fields=missing)
        print(f"Missing required configuration: {', '.join(missing)}", file=sys.stderr)
        return 1

    cancel = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())

    logger.info(
        "Service starting",
        service_name=config.service_name,
        version=__version__,
        environment=config.environment,
        dry_run=args.dry_run
    )

    result = run_sync(config, since=args.since, dry_run=args.dry_run, cancel=cancel)
    print(format_summary(result))

    if result.failed or result.cancelled:
        logger.error("Sync completed with errors", errors=len(result.errors), cancelled=result.cancelled)
        return 1
    logger.info("Sync completed successfully")
    return 0


def cmd_init(args: argparse.Namespace, config: GiftBridgeSettings) -> int:
    path = Path(args.path).expanduser()
    if path.exists():
        print(f"Config file already exists: {path}", file=sys.stderr)
        return 1

    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(ENV_TEMPLATE)

    print(f"Created config file: {path}")
    print()
    print("Next steps:")
    print("  1. Edit the config file with your credentials")
    print("  2. Run 'giftbridge auth-url' and authorize with Blackbaud")
    print("  3. Run 'giftbridge auth-exchange --code <code>' with the returned code")
    print("  4. Run 'giftbridge sync --dry-run --since 2025-01-01T00:00:00Z' to test")
    return 0


def cmd_auth_url(args: argparse.Namespace, config: GiftBridgeSettings) -> int:
    if not config.blackbaud_client_id:
        print("Missing required configuration: blackbaud_client_id", file=sys.stderr)
        return 1
    url = authorization_url(
        config.blackbaud_authorize_url,
        config.blackbaud_client_id,
        config.blackbaud_redirect_uri,
        state=secrets.token_urlsafe(16),
    )
    print("Open this URL in a browser and authorize the application:")
    print()
    print(url)
    print()
    print("Then run 'giftbridge auth-exchange --code <code>' with the code from the redirect.")
    return 0


def cmd_auth_exchange(args: argparse.Namespace, config: GiftBridgeSettings) -> int:
    missing = [
        name for name in ("blackbaud_client_id", "blackbaud_client_secret")
        if not getattr(config, name)
    ]
    if missing:
        print(f"Missing required configuration: {', '.join(missing)}", file=sys.stderr)
        return 1

    with HTTPClient(max_retries=config.http_max_retries, timeout=config.http_timeout) as http:
        tokens = exchange_code(
            http,
            token_url=config.blackbaud_token_url,
            client_id=config.blackbaud_client_id,
            client_secret=config.blackbaud_client_secret,
            redirect_uri=config.blackbaud_redirect_uri,
            code=args.code,
        )

    credential_store(config, open_state(config)).save(tokens.refresh_token)
    logger.info("Refresh token saved")
    print("Authorization complete; refresh token saved.")
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "init": cmd_init,
    "auth-url": cmd_auth_url,
    "auth-exchange": cmd_auth_exchange,
}


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="giftbridge",
        description="Sync FundraiseUp donations into Blackbaud Raiser's Edge NXT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  giftbridge init
  giftbridge auth-url
  giftbridge auth-exchange --code abc123
  giftbridge sync --dry-run --since 2025-01-01T00:00:00Z
  giftbridge sync --log-level DEBUG --log-format text
        """
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration"
    )

    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        help="Override log format from configuration"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"GiftBridge {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Sync donations into Raiser's Edge")
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Log intended writes without changing Blackbaud or the checkpoint"
    )
    sync.add_argument(
        "--since",
        type=parse_since,
        help="Fetch donations created at or after this RFC 3339 timestamp"
    )

    init = subparsers.add_parser("init", help="Write a sample .env configuration file")
    init.add_argument("--path", default=".env", help="Where to write the file (default: .env)")

    subparsers.add_parser("auth-url", help="Print the Blackbaud authorization URL")

    exchange = subparsers.add_parser("auth-exchange", help="Exchange an authorization code for tokens")
    exchange.add_argument("--code", required=True, help="Code from the authorization redirect")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = settings()
        configure_logging(args.log_level, args.log_format)
    except SettingsValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        logger.warning("Service interrupted by user")
        return 1
    except GiftBridgeError as e:
        logger.error(
            "Service failed",
            command=args.command,
            error=str(e),
            error_type=type(e).__name__
        )
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cli_main():
    """Synchronous entry point for setuptools console scripts."""
    return main()


if __name__ == "__main__":
    sys.exit(main())
