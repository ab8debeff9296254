"""
Resumable batch runner.

A run either resumes the donations left pending by an interrupted run or
fetches a fresh batch. The pending list is written before a fresh batch is
processed and each donation is removed from it as soon as it is done, so an
interrupted run leaves exactly the unprocessed remainder behind.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from .dryrun import DryRunSink
from .errors import DependencyError, ReconciliationError
from .log_config import donation_context, get_logger, log_sync_result
from .mapper import GiftMapper
from .models import DonationOutcome, SyncResult, format_timestamp
from .reconcile import GiftCache, ReconciliationEngine
from .settings import MAX_PENDING_IDS

logger = get_logger(__name__)

STAGE_FETCH = "fetch"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchRunner:
    """
    Drives one sync run over a donation source and a Blackbaud sink.

    Args:
        source: Donation source (donations_since, donation)
        sink: Blackbaud sink; wrapped in DryRunSink when dry_run is set
        checkpoint: Checkpoint store
        mapper: Gift mapper
        max_batch_size: Most donations handled by one fresh run
        default_lookback: Window fetched on the very first run
        dry_run: Log writes instead of performing them and leave the
            checkpoint untouched
        cancel: Event checked between donations
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        source,
        sink,
        checkpoint,
        mapper: GiftMapper,
        max_batch_size: int = MAX_PENDING_IDS,
        default_lookback: timedelta = timedelta(days=30),
        dry_run: bool = False,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not 1 <= max_batch_size <= MAX_PENDING_IDS:
            raise ValueError(f"max_batch_size must be between 1 and {MAX_PENDING_IDS}")
        self.source = source
        self.sink = DryRunSink(sink) if dry_run else sink
        self.checkpoint = checkpoint
        self.mapper = mapper
        self.max_batch_size = max_batch_size
        self.default_lookback = default_lookback
        self.dry_run = dry_run
        self.cancel = cancel or threading.Event()
        self.clock = clock

    def run(self, since: Optional[datetime] = None) -> SyncResult:
        """
        Execute one batch.

        Per-donation failures are collected on the returned result.

        Raises:
            AuthError: When Blackbaud credentials cannot be refreshed
            CheckpointError: When progress cannot be read or persisted
            DependencyError: When a fresh batch cannot be fetched
        """
        result = SyncResult(started_at=self.clock(), dry_run=self.dry_run)
        # One cache per run so no gift list outlives the batch.
        engine = ReconciliationEngine(self.sink, self.mapper, GiftCache(self.sink))

        pending = self.checkpoint.pending_ids()
        if pending:
            result.resumed = True
            logger.info("Resuming interrupted batch", pending=len(pending), dry_run=self.dry_run)
            self._resume(engine, pending, result)
        else:
            self._fresh(engine, since, result)

        result.finished_at = self.clock()
        log_sync_result(logger, result, run_id=f"sync_{result.started_at:%Y%m%dT%H%M%S}")
        return result

    def _since(self, override: Optional[datetime]) -> Tuple[datetime, str]:
        """Start of the listing and the id to continue after ("" = from the start)."""
        if override is not None:
            return override, ""
        last_sync = self.checkpoint.last_sync_time()
        if last_sync is not None:
            return last_sync, self.checkpoint.sync_cursor()
        since = self.clock() - self.default_lookback
        logger.info("No previous sync found, using default lookback", since=format_timestamp(since))
        return since, ""

    def _fresh(self, engine: ReconciliationEngine, since_override: Optional[datetime], result: SyncResult) -> None:
        since, cursor = self._since(since_override)
        logger.info("Starting sync", since=format_timestamp(since), starting_after=cursor or None, dry_run=self.dry_run)

        donations = self.source.donations_since(since, starting_after=cursor)
        truncated = len(donations) > self.max_batch_size
        if truncated:
            logger.warning(
                "Batch exceeds maximum size, processing oldest donations first",
                fetched=len(donations),
                max_batch_size=self.max_batch_size
            )
            donations = donations[:self.max_batch_size]

        if donations and not self.dry_run:
            self.checkpoint.set_pending_ids([donation.id for donation in donations])

        for donation in donations:
            if self._cancelled(result):
                return
            with donation_context(donation.id):
                self._complete(donation.id, engine.process(donation), result)

        if self.dry_run:
            return
        if truncated:
            # Same listing next run, continuing after the last donation handled.
            self.checkpoint.set_last_sync_time(since, cursor=donations[-1].id)
        else:
            self.checkpoint.set_last_sync_time(self.clock())

    def _resume(self, engine: ReconciliationEngine, pending: List[str], result: SyncResult) -> None:
        for donation_id in pending:
            if self._cancelled(result):
                return
            with donation_context(donation_id, resumed=True):
                self._resume_one(engine, donation_id, result)

    def _resume_one(self, engine: ReconciliationEngine, donation_id: str, result: SyncResult) -> None:
        try:
            donation = self.source.donation(donation_id)
        except DependencyError as exc:
            outcome = DonationOutcome(
                donation_id=donation_id,
                error=ReconciliationError(STAGE_FETCH, donation_id, exc),
            )
            logger.error("Failed to fetch pending donation", error=str(exc))
        else:
            outcome = engine.process(donation)
        self._complete(donation_id, outcome, result)

    def _complete(self, donation_id: str, outcome: DonationOutcome, result: SyncResult) -> None:
        """Record an outcome and drop the donation from the pending list."""
        error = outcome.error
        if isinstance(error, ReconciliationError) and error.is_run_level:
            logger.error(
                "Aborting batch",
                donation_id=donation_id,
                stage=error.stage,
                error=str(error.cause)
            )
            raise error.cause

        result.record(outcome)
        if not self.dry_run:
            self.checkpoint.remove_pending_id(donation_id)

    def _cancelled(self, result: SyncResult) -> bool:
        if self.cancel.is_set():
            result.cancelled = True
            logger.warning("Sync cancelled, remaining donations stay pending")
            return True
        return False
