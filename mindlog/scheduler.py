from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from .activity_grouper import ActivityGrouper
from .ai_client import AICell, AIClient
from .capture_analyzer import CaptureAnalyzer
from .chunker import Chunker
from .config import AppSettings
from .embeddings import EmbeddingClient
from .errors import NoActivityError
from .habit_detector import HabitDetector
from .hybrid_search import HybridSearch
from .index_manager import IndexManager
from .logging_utils import child_logger
from .markdown_writer import MarkdownWriter
from .models import BatchStats, DetectionStats, LinkStats, Summary, SyncStats
from .project_extractor import ProjectExtractor
from .queries import MemoryQueries
from .storage import MemoryRepository
from .summary_generator import SummaryGenerator
from .utils import utc_now

# Upper bound on how long the loop sleeps, so stop() is noticed promptly.
MAX_WAIT_SECONDS = 1.0


@dataclass
class Job:
    name: str
    interval_seconds: float
    handler: Callable[[], Any]
    next_due: float = 0.0
    running: bool = False
    runs: int = 0
    failures: int = 0
    last_result: Any = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class SchedulerHandle:
    """Returned by ``PipelineScheduler.start``; stopping ends scheduling of new ticks."""

    def __init__(self, stop_event: threading.Event, thread: threading.Thread, executor: ThreadPoolExecutor):
        self._stop_event = stop_event
        self._thread = thread
        self._executor = executor

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if wait:
            self._thread.join(timeout)
        # In-flight jobs finish on their own; nothing is cancelled mid-call.
        self._executor.shutdown(wait=wait)

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)


class PipelineScheduler:
    """Owns the pipeline components and runs each stage on its own interval.

    Jobs never overlap with themselves but may run concurrently with each other.
    The AI capability lives in a swappable cell; until one is connected the analysis
    job does nothing and the other jobs keep running in template mode.
    """

    def __init__(
        self,
        settings: AppSettings,
        repository: MemoryRepository,
        log,
        ai_client: Optional[AIClient] = None,
        embedder: Optional[EmbeddingClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings
        self._repo = repository
        self._logger = log
        self._clock = clock
        self.ai_cell = AICell(ai_client)
        self._embedder = embedder
        self._last_summary_date: Optional[str] = None

        root = settings.storage.memory_root
        tz = settings.timezone
        self.writer = MarkdownWriter(
            root, self.ai_cell, tz, child_logger(log, "markdown"), enable_ai=settings.summary.enable_ai
        )
        self.grouper = ActivityGrouper(settings.grouping, tz, child_logger(log, "grouper"), repository)
        self.projects = ProjectExtractor(repository, root, settings.projects, child_logger(log, "projects"))
        self.index = IndexManager(
            repository, root, Chunker(settings.chunking), child_logger(log, "index"), embedder=embedder
        )
        self.search = HybridSearch(repository, settings.search, child_logger(log, "search"), embedder=embedder)
        self.habits = HabitDetector(repository, root, settings.habits, tz, child_logger(log, "habits"))
        self.summaries = SummaryGenerator(
            repository, root, self.ai_cell, tz, child_logger(log, "summary"), enable_ai=settings.summary.enable_ai
        )
        self.queries = MemoryQueries(repository, self.search, self.summaries, settings.timezone)

        intervals = settings.scheduler
        self.jobs: List[Job] = [
            Job("analysis", intervals.analysis_interval_seconds, self.run_analysis),
            Job("grouping", intervals.grouping_interval_seconds, self.run_grouping),
            Job("index", intervals.index_interval_seconds, self.run_index_sync),
            Job("habits", intervals.habit_interval_seconds, self.run_habit_detection),
            Job("summary", intervals.summary_check_interval_seconds, self.run_summary_check),
        ]

    # AI capability ------------------------------------------------------------

    def connect_ai(self, client: AIClient) -> None:
        previous = self.ai_cell.get()
        self.ai_cell.set(client)
        if previous is None:
            self._logger.info("AI connected (%s)", client.provider_name)
        else:
            self._logger.info("AI replaced (%s -> %s)", previous.provider_name, client.provider_name)

    def is_ai_connected(self) -> bool:
        return self.ai_cell.is_connected()

    # job handlers -------------------------------------------------------------

    def run_analysis(self) -> Optional[BatchStats]:
        client = self.ai_cell.get()
        if client is None:
            self._logger.debug("AI not connected; capture analysis skipped")
            return None
        analyzer = CaptureAnalyzer(client, self._repo, self._settings.analyzer, child_logger(self._logger, "analyzer"))
        stats = analyzer.run_batch()
        if stats.analyzed or stats.failed or stats.skipped:
            self._logger.info(
                "Analysis tick: analyzed=%s skipped=%s failed=%s", stats.analyzed, stats.skipped, stats.failed
            )
        return stats

    def run_grouping(self) -> LinkStats:
        sessions = self.grouper.group_pending(self.writer)
        if sessions:
            self._logger.info("Grouping tick: %s new activities", len(sessions))
        return self.projects.process_unlinked()

    def run_index_sync(self) -> SyncStats:
        return self.index.sync()

    def run_habit_detection(self) -> DetectionStats:
        return self.habits.detect_all(now=self._clock())

    def run_summary_check(self) -> Optional[Summary]:
        local_now = self._clock().astimezone(self._settings.timezone)
        today = local_now.strftime("%Y-%m-%d")
        if local_now.hour < self._settings.summary.daily_hour or self._last_summary_date == today:
            return None
        try:
            summary = self.summaries.generate_daily(today)
        except NoActivityError:
            self._logger.info("No activities today (%s); daily summary postponed", today)
            return None
        # Kept in memory only: a restart after the summary hour regenerates today's summary.
        self._last_summary_date = today
        return summary

    @property
    def last_summary_date(self) -> Optional[str]:
        return self._last_summary_date

    # loop ---------------------------------------------------------------------

    def start(self) -> SchedulerHandle:
        stop_event = threading.Event()
        executor = ThreadPoolExecutor(max_workers=len(self.jobs), thread_name_prefix="mindlog-job")
        thread = threading.Thread(
            target=self._loop, args=(stop_event, executor), name="mindlog-scheduler", daemon=True
        )
        now = time.monotonic()
        for job in self.jobs:
            job.next_due = now
        thread.start()
        self._logger.info(
            "Scheduler started: %s",
            ", ".join(f"{job.name}={job.interval_seconds:g}s" for job in self.jobs),
        )
        return SchedulerHandle(stop_event, thread, executor)

    def _loop(self, stop_event: threading.Event, executor: ThreadPoolExecutor) -> None:
        while not stop_event.is_set():
            now = time.monotonic()
            for job in self.jobs:
                if now < job.next_due:
                    continue
                with job.lock:
                    if job.running:
                        continue
                    job.running = True
                job.next_due = now + job.interval_seconds
                executor.submit(self.run_job, job)

            wait = min(job.next_due for job in self.jobs) - time.monotonic()
            stop_event.wait(max(0.05, min(wait, MAX_WAIT_SECONDS)))
        self._logger.info("Scheduler stopped")

    def run_job(self, job: Job) -> Any:
        """Run one tick of ``job``; failures are logged and left for the next tick."""
        started = time.monotonic()
        try:
            job.last_result = job.handler()
            return job.last_result
        except Exception as exc:
            job.failures += 1
            self._logger.exception("Job %s failed: %s", job.name, exc)
            return None
        finally:
            job.runs += 1
            with job.lock:
                job.running = False
            self._logger.debug("Job %s finished in %.2fs", job.name, time.monotonic() - started)
