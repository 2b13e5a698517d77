"""Entry point for the room booking sync engine."""
import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

from client.booking_api import BookingApiClient
from processor.errors import AuthExpiredError, TransportError
from sync.session import BookingSession


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = ('correlation_id', 'event_id', 'room_id', 'error_type', 'duration_seconds')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class BookingConfig:
    """Runtime settings read from the environment."""
    api_url: str = BookingApiClient.DEFAULT_BASE_URL
    user_email: Optional[str] = None
    log_level: str = 'INFO'
    room_poll_seconds: float = 30
    user_poll_seconds: float = 30
    timeout_seconds: int = 30
    freebusy_ttl_seconds: float = 300

    @classmethod
    def from_env(cls) -> 'BookingConfig':
        return cls(
            api_url=os.environ.get('BOOKING_API_URL', BookingApiClient.DEFAULT_BASE_URL),
            user_email=os.environ.get('BOOKING_USER_EMAIL') or None,
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            room_poll_seconds=float(os.environ.get('ROOM_POLL_SECONDS', '30')),
            user_poll_seconds=float(os.environ.get('USER_POLL_SECONDS', '30')),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            freebusy_ttl_seconds=float(os.environ.get('FREEBUSY_TTL_SECONDS', '300'))
        )


def build_session(config: BookingConfig, on_reauth_required=None) -> BookingSession:
    """Create a session and its API client from the configuration."""
    client = BookingApiClient(base_url=config.api_url, timeout=config.timeout_seconds)
    return BookingSession(
        client=client,
        user_email=config.user_email,
        room_interval=config.room_poll_seconds,
        user_interval=config.user_poll_seconds,
        freebusy_ttl=config.freebusy_ttl_seconds,
        on_reauth_required=on_reauth_required
    )


async def run(config: BookingConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    """
    Prefetch rooms and users, then poll until stopped.

    Args:
        config: Runtime settings
        stop_event: Set to end polling; runs until cancelled when omitted

    Returns:
        Process exit code
    """
    logger = logging.getLogger(__name__)
    stop_event = stop_event or asyncio.Event()

    def on_reauth_required(redirect_url: str) -> None:
        logger.error(f"Organizer re-authentication required, see {redirect_url}")
        stop_event.set()

    session = build_session(config, on_reauth_required)
    start_time = time.time()
    logger.info(f"Booking sync starting against {config.api_url}")

    try:
        try:
            rooms = await session.load_rooms()
            await session.refresh_users()
        except AuthExpiredError:
            return 2
        except TransportError as e:
            logger.error(
                f"Failed to load initial data: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return 1

        logger.info(
            f"Prefetched {len(rooms)} rooms and {len(session.users)} users",
            extra={'duration_seconds': round(time.time() - start_time, 2)}
        )

        session.start_polling()
        await stop_event.wait()
        return 2 if session.guard.required else 0
    finally:
        await session.close()
        logger.info(
            "Booking sync stopped",
            extra={'duration_seconds': round(time.time() - start_time, 2)}
        )


def main() -> int:
    config = BookingConfig.from_env()
    setup_logging(config.log_level)
    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        return 0


if __name__ == '__main__':
    raise SystemExit(main())
