"""Job scheduling and the digest cycle for Feishu Morning Brief."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import ConfigProvider, ScheduleConfig
from .crawler import FeedCrawler
from .delivery import DeliveryManager
from .errors import ConfigurationError, DeliveryError, InvalidScheduleError
from .logging_config import create_execution_logger
from .metrics import send_cloudwatch_metrics
from .models import CycleResult, Destination

MORNING_BRIEF_JOB = "morning-brief"


def parse_schedule(schedule: str, timezone: str | None = None) -> CronTrigger:
    """Parse a 5-field cron expression.

    Raises:
        InvalidScheduleError: If the expression is malformed
    """
    if not isinstance(schedule, str) or len(schedule.split()) != 5:
        raise InvalidScheduleError(f"Invalid cron expression: {schedule!r} (expected 5 fields)")
    try:
        return CronTrigger.from_crontab(schedule, timezone=timezone)
    except (ValueError, TypeError, LookupError) as e:
        raise InvalidScheduleError(f"Invalid cron expression: {schedule!r} ({e})") from e


@dataclass
class Job:
    """A named recurring job owned by the scheduler."""

    name: str
    schedule: str
    handler: Callable[[], Any]
    running: bool = False


class Scheduler:
    """Owns named cron jobs and runs the fetch, dedup, persist, deliver cycle."""

    def __init__(
        self,
        crawler: FeedCrawler,
        delivery: DeliveryManager,
        config_provider: ConfigProvider,
        notify_when_empty: bool = False,
        metrics_region: str | None = None,
        background: BackgroundScheduler | None = None,
    ):
        """Initialize the scheduler.

        Args:
            crawler: Fetches and deduplicates articles
            delivery: Sends digests to destinations
            config_provider: Source of feed and destination lists
            notify_when_empty: Send the no-new-content card when nothing is new
            metrics_region: AWS region for CloudWatch metrics, None disables them
            background: APScheduler instance, created when omitted
        """
        self.crawler = crawler
        self.delivery = delivery
        self.config_provider = config_provider
        self.notify_when_empty = notify_when_empty
        self.metrics_region = metrics_region
        self.logger = create_execution_logger("scheduler")
        self._background = background or BackgroundScheduler()
        self._jobs: dict[str, Job] = {}
        self._jobs_lock = threading.RLock()
        self._pipeline_lock = threading.Lock()

    # Job management

    def add_job(
        self,
        name: str,
        schedule: str,
        handler: Callable[[], Any],
        timezone: str | None = None,
    ) -> None:
        """Register a recurring job, replacing any job with the same name.

        Raises:
            InvalidScheduleError: If ``schedule`` is not a valid cron expression
        """
        trigger = parse_schedule(schedule, timezone)

        with self._jobs_lock:
            self.stop_job(name)
            self._background.add_job(
                self._run_job,
                trigger,
                args=[name, handler],
                id=name,
                name=name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._jobs[name] = Job(name=name, schedule=schedule, handler=handler, running=True)
            if not self._background.running:
                self._background.start()

        self.logger.info(f"Job added: {name} - {schedule}", job_name=name, schedule=schedule)

    def _run_job(self, name: str, handler: Callable[[], Any]) -> None:
        self.logger.info(f"Running job: {name}", job_name=name)
        start = time.monotonic()
        try:
            handler()
        except Exception:
            self.logger.exception(f"Job failed: {name}", job_name=name)
            return
        self.logger.info(
            f"Job finished: {name}",
            job_name=name,
            duration_seconds=round(time.monotonic() - start, 3),
        )

    def stop_job(self, name: str) -> None:
        """Stop and forget a job. No-op when it is not registered."""
        with self._jobs_lock:
            job = self._jobs.pop(name, None)
            if job is None:
                return
            job.running = False
            if self._background.get_job(name) is not None:
                self._background.remove_job(name)
        self.logger.info(f"Job stopped: {name}", job_name=name)

    def stop_all(self) -> None:
        """Stop every job and shut the background scheduler down."""
        with self._jobs_lock:
            for name in list(self._jobs):
                self.stop_job(name)
            if self._background.running:
                self._background.shutdown(wait=False)

    def status(self) -> list[dict[str, Any]]:
        """Name and running flag for every registered job."""
        with self._jobs_lock:
            return [
                {
                    "name": job.name,
                    "running": job.running
                    and self._background.running
                    and self._background.get_job(job.name) is not None,
                }
                for job in self._jobs.values()
            ]

    def start_morning_brief(self, config: ScheduleConfig | None = None) -> None:
        """Register the daily digest job."""
        config = config or ScheduleConfig()
        if not config.enabled:
            self.logger.info("Morning brief job disabled")
            return
        self.add_job(
            MORNING_BRIEF_JOB,
            config.schedule,
            self._scheduled_cycle,
            timezone=config.timezone,
        )

    def _scheduled_cycle(self) -> None:
        self.execute_digest_cycle(blocking=False)

    # Digest cycle

    def trigger_now(self) -> dict[str, int]:
        """Run one digest cycle immediately.

        Returns:
            Counts of sources, destinations and new articles

        Raises:
            ConfigurationError: If no sources or no destinations are configured
        """
        self.logger.info("Manual trigger requested")
        sources = self.config_provider.enabled_feed_sources()
        destinations = self.config_provider.enabled_destinations()

        if not sources:
            raise ConfigurationError("No RSS sources configured")
        if not destinations:
            raise ConfigurationError("No target chats configured")

        result = self.execute_digest_cycle()
        return {
            "sources_count": len(sources),
            "destinations_count": len(destinations),
            "articles_count": result.saved if result else 0,
        }

    def execute_digest_cycle(self, blocking: bool = True) -> CycleResult | None:
        """Fetch, deduplicate, persist and deliver once.

        Only one cycle runs at a time. With ``blocking=False`` a cycle that
        finds another one in flight is skipped and None is returned.

        Raises:
            PersistenceError: If new articles could not be saved; nothing is delivered
            ConfigurationError: If the stored configuration is malformed
        """
        if not self._pipeline_lock.acquire(blocking=blocking):
            self.logger.warning("Digest cycle already running, skipping this run")
            return None

        execution_id = f"cycle_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
        cycle_logger = create_execution_logger("scheduler", execution_id)
        cycle_logger.log_execution_start()
        result = CycleResult()
        success = False
        try:
            self._run_cycle(result, cycle_logger)
            success = True
        except Exception as e:
            result.errors.append(str(e))
            raise
        finally:
            self._pipeline_lock.release()
            cycle_logger.log_metrics(result.as_metrics())
            cycle_logger.log_execution_end(success=success)
            if self.metrics_region:
                send_cloudwatch_metrics(result.as_metrics(), self.metrics_region, execution_id)
        return result

    def _run_cycle(self, result: CycleResult, logger) -> None:
        sources = self.config_provider.enabled_feed_sources()
        result.sources = len(sources)
        if not sources:
            logger.info("No RSS sources configured")
            return

        logger.info(f"Fetching articles from {len(sources)} RSS sources")
        articles = self.crawler.fetch_all(sources)
        result.fetched = len(articles)
        if not articles:
            logger.info("No articles fetched")
            return

        new_articles = self.crawler.filter_new(articles)
        result.new = len(new_articles)
        if new_articles:
            logger.info(f"Found {len(new_articles)} new articles", fetched=len(articles))
            # Only stored articles can carry delivery records
            stored = self.crawler.persist(new_articles)
            result.saved = len(stored)
        else:
            stored = []

        if not stored:
            logger.info("No new articles to send", fetched=len(articles))
            if self.notify_when_empty:
                self._deliver(self.config_provider.enabled_destinations(), [], result, logger)
            return

        destinations = self.config_provider.enabled_destinations()
        if not destinations:
            logger.info("No target chats configured")
            return

        self._deliver(destinations, stored, result, logger)
        logger.info(
            f"Morning brief sent: {len(stored)} articles, {len(destinations)} targets",
            delivered=result.delivered,
            failed=result.failed,
        )

    def _deliver(self, destinations: list[Destination], articles, result: CycleResult, logger) -> None:
        result.destinations = len(destinations)
        for destination in destinations:
            try:
                result.articles_sent += self.delivery.send_digest(destination, articles)
                result.delivered += 1
            except DeliveryError as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.error(
                    f"Delivery failed ({destination.name}): {e}",
                    destination_id=destination.id,
                )
            except Exception as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.exception(
                    f"Unexpected error delivering to {destination.name}",
                    destination_id=destination.id,
                )
