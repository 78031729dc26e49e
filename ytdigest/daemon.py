"""ytdigest main daemon."""

from __future__ import annotations

import asyncio
import signal
import socket
import sys
import time
from typing import Optional

from structlog import get_logger

from ytdigest_events.processor import EntryHandler
from ytdigest_events.stream import EventStream

from ytdigest.adapters.telegram_adapter import TelegramAdapter
from ytdigest.config import Settings, load_config
from ytdigest.core.db import RequestStore
from ytdigest.core.orchestrator import Orchestrator
from ytdigest.logging_config import setup_logging

# Startup retry configuration
STARTUP_MAX_RETRIES = 3
STARTUP_RETRY_DELAYS = [10, 20, 40]  # Exponential backoff in seconds

logger = get_logger(__name__)


def _is_retryable_startup_error(error: Exception) -> bool:
    """Check if startup error is transient and worth retrying.

    Retryable errors include network issues like DNS failures, connection
    timeouts, and refused connections. Configuration errors are not.
    """
    retryable_types = ("NetworkError", "ConnectionError", "TimeoutError", "OSError")
    retryable_messages = ("name resolution", "connection refused", "timed out", "temporary failure")

    error_type = type(error).__name__
    error_msg = str(error).lower()

    if error_type in retryable_types:
        return True
    if any(msg in error_msg for msg in retryable_messages):
        return True
    return False


class ConsumerSupervisor:
    """Keeps one named consumer running, restarting it with backoff after a failure.

    The restarted consumer keeps its name, so it first re-reads the entries it
    had received but not acknowledged before failing.
    """

    def __init__(
        self,
        stream: EventStream,
        stream_key: str,
        group: str,
        consumer_name: str,
        handler: EntryHandler,
        shutdown_event: asyncio.Event,
        initial_backoff_s: float = 1.0,
        max_backoff_s: float = 60.0,
    ) -> None:
        self._stream = stream
        self._stream_key = stream_key
        self._group = group
        self._consumer_name = consumer_name
        self._handler = handler
        self._shutdown_event = shutdown_event
        self._initial_backoff_s = initial_backoff_s
        self._max_backoff_s = max_backoff_s
        self.restarts = 0

    async def run(self) -> None:
        backoff = self._initial_backoff_s
        while not self._shutdown_event.is_set():
            started_at = time.monotonic()
            handle = self._stream.consume(self._stream_key, self._group, self._consumer_name, self._handler)
            loop_done = asyncio.ensure_future(handle.wait())
            shutdown_requested = asyncio.ensure_future(self._shutdown_event.wait())
            done, _ = await asyncio.wait({loop_done, shutdown_requested}, return_when=asyncio.FIRST_COMPLETED)

            if loop_done not in done:
                await self._stream.stop(handle)
                await asyncio.wait({loop_done})
                loop_done.exception()
                break

            shutdown_requested.cancel()
            await self._stream.stop(handle)
            error = loop_done.exception()
            if error is None:
                break

            if time.monotonic() - started_at > self._max_backoff_s:
                backoff = self._initial_backoff_s
            self.restarts += 1
            logger.error(
                "Consumer %s on %s failed: %s. Restarting in %.1fs",
                self._consumer_name,
                self._stream_key,
                error,
                backoff,
            )
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self._max_backoff_s)

        logger.info("Consumer supervisor stopped", stream=self._stream_key, consumer=self._consumer_name)


class YtDigestDaemon:
    """Main ytdigest daemon that wires store, stream, orchestrator and transport."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.shutdown_event = asyncio.Event()
        self.store = RequestStore(settings.database.path, busy_timeout_ms=settings.database.busy_timeout_ms)
        self.stream = EventStream.from_url(
            settings.redis.url,
            maxlen=settings.redis.maxlen,
            block_ms=settings.redis.block_ms,
            claim_min_idle_ms=settings.redis.claim_min_idle_ms,
            claim_interval_s=settings.redis.claim_interval_s,
        )
        self.orchestrator = Orchestrator(
            self.store,
            self.stream,
            messages=settings.messages,
            work_stream=settings.streams.work_stream,
        )
        self.adapter: Optional[TelegramAdapter] = None
        self._supervisor_tasks: list[asyncio.Task[None]] = []

    @property
    def consumer_name(self) -> str:
        # Stable across restarts on one host so stranded pending entries are re-read
        return self.settings.streams.consumer_name or f"{self.settings.streams.group}-{socket.gethostname()}"

    async def start(self) -> None:
        streams = self.settings.streams
        await self.store.initialize()

        stream_keys = (streams.result_stream, streams.failure_stream)
        for stream_key in stream_keys:
            await self.stream.ensure_group(stream_key, streams.group)

        if not self._supervisor_tasks:
            self._start_supervisors(stream_keys)

        telegram = self.settings.telegram
        if telegram.bot_token:
            self.adapter = TelegramAdapter(telegram.bot_token, self.orchestrator, telegram.allowed_chat_ids)
            self.orchestrator.set_transport(self.adapter)
            await self.adapter.start()
        else:
            logger.warning("No Telegram bot token configured; inbound transport disabled")

        logger.info("ytdigest daemon started", consumer=self.consumer_name, group=streams.group)

    def _start_supervisors(self, stream_keys: tuple[str, ...]) -> None:
        for stream_key in stream_keys:
            supervisor = ConsumerSupervisor(
                self.stream,
                stream_key,
                self.settings.streams.group,
                self.consumer_name,
                self.orchestrator.on_stream_entry,
                self.shutdown_event,
                initial_backoff_s=self.settings.supervisor.initial_backoff_s,
                max_backoff_s=self.settings.supervisor.max_backoff_s,
            )
            self._supervisor_tasks.append(asyncio.create_task(supervisor.run(), name=f"supervisor:{stream_key}"))

    async def stop(self) -> None:
        self.shutdown_event.set()
        if self._supervisor_tasks:
            await asyncio.gather(*self._supervisor_tasks, return_exceptions=True)
            self._supervisor_tasks.clear()
        if self.adapter is not None:
            await self.adapter.stop()
        await self.stream.close()
        await self.store.close()
        logger.info("ytdigest daemon stopped")


async def run() -> None:
    """Main entry point."""
    setup_logging()
    settings = load_config()
    daemon = YtDigestDaemon(settings)

    def signal_handler(signum: int, _frame: object) -> None:
        """Handle termination signals."""
        sig_name = signal.Signals(signum).name
        logger.info("Received %s signal...", sig_name)
        daemon.shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        for attempt in range(STARTUP_MAX_RETRIES):
            try:
                await daemon.start()
                break
            except Exception as e:
                if not _is_retryable_startup_error(e):
                    logger.error("Daemon startup failed (non-retryable): %s", e, exc_info=True)
                    sys.exit(1)

                if attempt == STARTUP_MAX_RETRIES - 1:
                    logger.error("Daemon startup failed after %d attempts: %s", STARTUP_MAX_RETRIES, e, exc_info=True)
                    sys.exit(1)

                delay = STARTUP_RETRY_DELAYS[attempt]
                logger.warning(
                    "Startup failed (attempt %d/%d): %s. Retrying in %ds...",
                    attempt + 1,
                    STARTUP_MAX_RETRIES,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

        await daemon.shutdown_event.wait()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal...")
    finally:
        try:
            await daemon.stop()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error during daemon stop: %s", e)


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
