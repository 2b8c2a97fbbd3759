"""Sync orchestration: channel fetch, reconciliation and post-sync grouping."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..channel.client import ChannelClient, FetchReport
from ..channel.errors import ChannelAuthError, ChannelError, ChannelPermissionError, ChannelTransientError
from ..channel.normalizer import NormalizationError, NormalizedBooking, normalize, parse_booking
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import NotFoundError, SyncAbortedError, SyncInProgressError, ValidationError
from ..core.observability import metrics_collector
from ..models.sync_log import SyncLog, SyncStatus, SyncTrigger, SyncType
from ..schemas.sync import ConnectionTestResponse, SyncError, SyncInfo, SyncLogResponse, SyncSummary
from .grouping_service import GroupingService
from .reconciler import ReconcileOutcome, Reconciler, ReconciliationConflict

logger = logging.getLogger(__name__)


class SyncLock:
    """
    Per-tenant sync lock with cooperative cancellation flags.

    One instance lives on the application state and is shared by every
    request and worker, so only one sync run per tenant touches the tours
    table at a time.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._cancel_requested: set[str] = set()

    def _lock(self, tenant: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant, asyncio.Lock())

    def is_running(self, tenant: str) -> bool:
        return self._lock(tenant).locked()

    def request_cancel(self, tenant: str) -> bool:
        """Ask the running sync to stop before its next page. Returns whether one is running."""
        if not self.is_running(tenant):
            return False
        self._cancel_requested.add(tenant)
        return True

    def cancel_requested(self, tenant: str) -> bool:
        return tenant in self._cancel_requested

    @asynccontextmanager
    async def hold(self, tenant: str, timeout: float) -> AsyncIterator[None]:
        """
        Hold the tenant lock for the duration of the block.

        Raises:
            SyncInProgressError: If the lock is not free within timeout seconds
        """
        lock = self._lock(tenant)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Sync lock busy", extra={"tenant": tenant, "waited_seconds": timeout})
            raise SyncInProgressError(tenant=tenant, waited_seconds=timeout)

        self._cancel_requested.discard(tenant)
        metrics_collector.set_sync_in_progress(True)
        try:
            yield
        finally:
            self._cancel_requested.discard(tenant)
            lock.release()
            metrics_collector.set_sync_in_progress(False)


@dataclass
class _RunState:
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[SyncError] = field(default_factory=list)
    affected_groups: set[int] = field(default_factory=set)
    rescheduled: list[int] = field(default_factory=list)
    synced_dates: set[date] = field(default_factory=set)
    grouping_error: Optional[str] = None

    @property
    def synced(self) -> int:
        return self.created + self.updated + self.unchanged

    @property
    def failed(self) -> int:
        return len(self.errors)


def _abort_code(error: ChannelError) -> str:
    if isinstance(error, ChannelAuthError):
        return "CHANNEL_AUTH"
    if isinstance(error, ChannelPermissionError):
        return "CHANNEL_PERMISSION"
    if isinstance(error, ChannelTransientError):
        return "CHANNEL_UNAVAILABLE"
    return "CHANNEL_ERROR"


def _final_status(state: _RunState, cancelled: bool, truncated: bool = False) -> SyncStatus:
    if cancelled:
        return SyncStatus.CANCELLED
    if state.failed == 0:
        return SyncStatus.PARTIAL if truncated else SyncStatus.COMPLETED
    if state.synced == 0:
        return SyncStatus.FAILED
    return SyncStatus.PARTIAL


class SyncService:
    """Runs channel syncs for one tenant."""

    def __init__(
        self,
        db: AsyncSession,
        client: ChannelClient,
        lock: SyncLock,
        settings: Settings = default_settings,
        today: Optional[Callable[[], date]] = None,
    ):
        self.db = db
        self.client = client
        self.lock = lock
        self.settings = settings
        self.tenant = settings.tenant_key
        self.tz = ZoneInfo(settings.channel_timezone)
        self.reconciler = Reconciler(db)
        self.grouping = GroupingService(db, max_pax=settings.group_max_pax)
        self._today = today or (lambda: datetime.now(self.tz).date())

    async def sync_now(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        sync_type: SyncType = SyncType.INCREMENTAL,
        triggered_by: Optional[str] = None,
    ) -> SyncSummary:
        """
        Pull bookings for a tour-date range and reconcile them into tours.

        Args:
            start_date: First tour date, defaults to today
            end_date: Last tour date, defaults to start + incremental window
            trigger: What started the run
            sync_type: Window kind recorded in the sync log
            triggered_by: Who started the run

        Returns:
            Run summary; synced_count + failed_count == total_bookings

        Raises:
            ValidationError: If start_date is after end_date
            SyncInProgressError: If another run holds the lock too long
            SyncAbortedError: If the channel fails at run level
        """
        start_date = start_date or self._today()
        end_date = end_date or start_date + timedelta(days=self.settings.sync_incremental_days)
        if start_date > end_date:
            raise ValidationError(detail="start_date must not be after end_date")

        async with self.lock.hold(self.tenant, self.settings.sync_lock_timeout_seconds):
            return await self._run(start_date, end_date, trigger, sync_type, triggered_by)

    async def full_sync(
        self,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        triggered_by: Optional[str] = None,
    ) -> SyncSummary:
        """Sync the full window: past buffer through the full look-ahead."""
        today = self._today()
        return await self.sync_now(
            start_date=today - timedelta(days=self.settings.sync_past_days_buffer),
            end_date=today + timedelta(days=self.settings.sync_full_days),
            trigger=trigger,
            sync_type=SyncType.FULL,
            triggered_by=triggered_by,
        )

    async def sync_booking(
        self,
        booking_id: str,
        trigger: SyncTrigger = SyncTrigger.WEBHOOK,
        triggered_by: Optional[str] = None,
    ) -> SyncSummary:
        """
        Fetch and reconcile a single booking, e.g. after a channel webhook.

        Raises:
            SyncInProgressError: If another run holds the lock too long
            SyncAbortedError: If the booking cannot be fetched
        """
        async with self.lock.hold(self.tenant, self.settings.sync_lock_timeout_seconds):
            started = time.perf_counter()
            log_id = await self._open_log(SyncType.SINGLE, trigger, triggered_by, None, None)
            state = _RunState()

            try:
                payload = await self.client.fetch_booking_payload(booking_id)
            except ChannelError as e:
                await self._abort(log_id, state, e, SyncType.SINGLE, trigger, None, None, started)

            state.total = 1
            await self._process_item(payload, state)
            groups_created = await self._after_reconcile(state, auto_group=True)
            return await self._close(
                log_id, state, SyncType.SINGLE, trigger, None, None, started, groups_created, cancelled=False
            )

    def cancel(self) -> bool:
        """Request cooperative cancellation of the running sync."""
        requested = self.lock.request_cancel(self.tenant)
        logger.info("Sync cancellation requested", extra={"tenant": self.tenant, "running": requested})
        return requested

    async def history(self, limit: int = 20) -> list[SyncLog]:
        """Most recent sync runs, newest first."""
        result = await self.db.execute(
            select(SyncLog)
            .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def sync_info(self) -> SyncInfo:
        """Configured windows, lock state and the last run."""
        last = await self.history(limit=1)
        return SyncInfo(
            incremental_days=self.settings.sync_incremental_days,
            full_days=self.settings.sync_full_days,
            past_days_buffer=self.settings.sync_past_days_buffer,
            auto_sync_enabled=self.settings.auto_sync_enabled,
            auto_sync_interval_seconds=self.settings.auto_sync_interval_seconds,
            auto_group_after_sync=self.settings.auto_group_after_sync,
            running=self.lock.is_running(self.tenant),
            last_sync=SyncLogResponse.model_validate(last[0]) if last else None,
        )

    async def test_connection(self) -> ConnectionTestResponse:
        """Check that the channel accepts our credentials."""
        try:
            result = await self.client.test_connection()
        except ChannelError as e:
            logger.warning("Channel connection test failed", extra={"error": e.message, "status_code": e.status_code})
            return ConnectionTestResponse(success=False, message=e.message, base_url=self.client.base_url)
        return ConnectionTestResponse(message="Connection successful", **result)

    # Run pipeline

    async def _run(
        self,
        start_date: date,
        end_date: date,
        trigger: SyncTrigger,
        sync_type: SyncType,
        triggered_by: Optional[str],
    ) -> SyncSummary:
        started = time.perf_counter()
        log_id = await self._open_log(sync_type, trigger, triggered_by, start_date, end_date)
        state = _RunState()

        logger.info(
            "Sync started",
            extra={
                "sync_log_id": log_id,
                "tenant": self.tenant,
                "sync_type": sync_type.value,
                "trigger": trigger.value,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            }
        )

        report = FetchReport()
        try:
            pages = self.client.fetch_pages(
                start_date, end_date, should_stop=lambda: self.lock.cancel_requested(self.tenant), report=report
            )
            async for page in pages:
                for item in page.items:
                    state.total += 1
                    await self._process_item(item, state)
        except ChannelError as e:
            await self._abort(log_id, state, e, sync_type, trigger, start_date, end_date, started)

        cancelled = report.stopped_early
        groups_created = await self._after_reconcile(
            state, auto_group=not cancelled, start_date=start_date, end_date=end_date
        )
        return await self._close(
            log_id, state, sync_type, trigger, start_date, end_date, started, groups_created, cancelled,
            truncation=report.truncation_message(),
        )

    async def _process_item(self, item: dict[str, Any], state: _RunState) -> Optional[NormalizedBooking]:
        """Normalize and reconcile one booking; failures land in state.errors."""
        external_id = str(item["id"]) if item.get("id") is not None else None
        confirmation_code = item.get("confirmationCode")

        try:
            booking = normalize(
                parse_booking(item),
                tz=self.tz,
                default_channel=self.settings.channel_name,
            )
            result = await asyncio.wait_for(
                self.reconciler.reconcile(booking),
                timeout=self.settings.sync_reconcile_timeout_seconds,
            )
        except NormalizationError as e:
            reason = f"normalization failed: {e}"
        except ReconciliationConflict as e:
            reason = f"conflict: {e.message}"
        except asyncio.TimeoutError:
            await self.db.rollback()
            reason = f"reconcile timed out after {self.settings.sync_reconcile_timeout_seconds:g}s"
        except SQLAlchemyError as e:
            await self.db.rollback()
            reason = f"database error: {e.__class__.__name__}"
        else:
            if result.outcome == ReconcileOutcome.INSERTED:
                state.created += 1
            elif result.outcome == ReconcileOutcome.UPDATED:
                state.updated += 1
            else:
                state.unchanged += 1
            if result.group_id is not None:
                state.affected_groups.add(result.group_id)
            if result.rescheduled:
                state.rescheduled.append(result.tour_id)
            state.synced_dates.add(booking.date)
            return booking

        metrics_collector.record_reconcile("failed")
        state.errors.append(
            SyncError(external_id=external_id, confirmation_code=confirmation_code, reason=reason)
        )
        logger.warning(
            "Booking skipped",
            extra={"external_id": external_id, "confirmation_code": confirmation_code, "reason": reason}
        )
        return None

    async def _after_reconcile(
        self,
        state: _RunState,
        auto_group: bool,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> int:
        """
        Group maintenance once every booking of the run is reconciled.

        Returns the number of groups created. A database failure here is
        recorded on the run instead of discarding its reconciled bookings.
        """
        try:
            await self.grouping.release_rescheduled(state.rescheduled)

            for group_id in sorted(state.affected_groups):
                try:
                    await self.grouping.recalculate_group_pax(group_id)
                except NotFoundError:
                    continue

            if not auto_group or not self.settings.auto_group_after_sync or state.synced == 0:
                return 0

            if start_date is None or end_date is None:
                start_date, end_date = min(state.synced_dates), max(state.synced_dates)
            created = await self.grouping.auto_group(start_date, end_date)
            return len(created)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("Post-sync grouping failed", extra={"error": str(e)})
            state.grouping_error = f"post-sync grouping failed: {e.__class__.__name__}"
            return 0

    # Sync log bookkeeping

    async def _open_log(
        self,
        sync_type: SyncType,
        trigger: SyncTrigger,
        triggered_by: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> int:
        log = SyncLog(
            sync_type=sync_type.value,
            trigger_type=trigger.value,
            triggered_by=triggered_by,
            start_date=start_date,
            end_date=end_date,
            status=SyncStatus.STARTED.value,
        )
        self.db.add(log)
        await self.db.commit()
        return log.id

    def _summary(
        self,
        log_id: int,
        state: _RunState,
        sync_type: SyncType,
        trigger: SyncTrigger,
        start_date: Optional[date],
        end_date: Optional[date],
        status: SyncStatus,
        started: float,
        groups_created: int = 0,
        message: Optional[str] = None,
    ) -> SyncSummary:
        return SyncSummary(
            sync_log_id=log_id,
            sync_type=sync_type,
            trigger=trigger,
            status=status,
            start_date=start_date,
            end_date=end_date,
            total_bookings=state.total,
            synced_count=state.synced,
            created_count=state.created,
            updated_count=state.updated,
            unchanged_count=state.unchanged,
            failed_count=state.failed,
            groups_created=groups_created,
            errors=state.errors,
            duration_seconds=round(time.perf_counter() - started, 3),
            message=message,
        )

    async def _write_log(self, summary: SyncSummary) -> None:
        await self.db.execute(
            update(SyncLog)
            .where(SyncLog.id == summary.sync_log_id)
            .values(
                status=summary.status.value,
                bookings_found=summary.total_bookings,
                bookings_synced=summary.synced_count,
                bookings_created=summary.created_count,
                bookings_updated=summary.updated_count,
                bookings_unchanged=summary.unchanged_count,
                bookings_failed=summary.failed_count,
                groups_created=summary.groups_created,
                error_message=summary.message,
                errors=[error.model_dump() for error in summary.errors] or None,
                completed_at=datetime.now(timezone.utc),
                duration_seconds=summary.duration_seconds,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        metrics_collector.record_sync_run(
            summary.trigger.value, summary.status.value, summary.sync_type.value, summary.duration_seconds
        )

    async def _close(
        self,
        log_id: int,
        state: _RunState,
        sync_type: SyncType,
        trigger: SyncTrigger,
        start_date: Optional[date],
        end_date: Optional[date],
        started: float,
        groups_created: int,
        cancelled: bool,
        truncation: Optional[str] = None,
    ) -> SyncSummary:
        status = _final_status(state, cancelled, truncated=truncation is not None)
        if cancelled:
            message = "Cancelled before all pages were fetched"
        else:
            message = "; ".join(part for part in (truncation, state.grouping_error) if part) or None
        summary = self._summary(
            log_id, state, sync_type, trigger, start_date, end_date, status, started, groups_created,
            message=message,
        )
        await self._write_log(summary)

        logger.info(
            "Sync finished",
            extra={
                "sync_log_id": log_id,
                "status": status.value,
                "total_bookings": summary.total_bookings,
                "synced": summary.synced_count,
                "created": summary.created_count,
                "updated": summary.updated_count,
                "unchanged": summary.unchanged_count,
                "failed": summary.failed_count,
                "groups_created": groups_created,
                "duration_seconds": summary.duration_seconds,
            }
        )
        return summary

    async def _abort(
        self,
        log_id: int,
        state: _RunState,
        error: ChannelError,
        sync_type: SyncType,
        trigger: SyncTrigger,
        start_date: Optional[date],
        end_date: Optional[date],
        started: float,
    ) -> None:
        """
        Close the log as failed and raise SyncAbortedError with counts so far.

        Groups touched by the bookings reconciled before the failure are
        still recomputed; auto-grouping is skipped.
        """
        await self.db.rollback()
        await self._after_reconcile(state, auto_group=False)
        code = _abort_code(error)
        summary = self._summary(
            log_id, state, sync_type, trigger, start_date, end_date, SyncStatus.FAILED, started,
            message=error.message,
        )
        await self._write_log(summary)

        logger.error(
            "Sync aborted by channel error",
            extra={
                "sync_log_id": log_id,
                "code": code,
                "error": error.message,
                "status_code": error.status_code,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
                "processed": state.total,
            }
        )
        raise SyncAbortedError(code=code, reason=error.message, summary=summary.model_dump(mode="json")) from error
