"""
Reconciliation state machine for one Assessment.

Phases: Pending -> Running -> Completed | Failed.

Each `reconcile(name)` call reads the persisted Assessment, decides what to do and
returns a ReconcileResult telling the work queue when to look at it again. The same
Assessment may be reconciled concurrently; every status write is a version-checked
read-modify-write retried on conflict.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from croniter import CroniterBadDateError, croniter

from core.assessment.cancellation import CancellationToken, CancelledError, background
from core.assessment.cluster import ClusterReader, collect_cluster_info
from core.assessment.metrics import MetricsSink, NullMetricsSink
from core.assessment.models import (
    PHASE_COMPLETED,
    PHASE_FAILED,
    PHASE_RUNNING,
    Assessment,
    AssessmentSummary,
    ClusterInfo,
    Condition,
    Finding,
)
from core.assessment.profiles import get_profile
from core.assessment.report import ReportAssembler, ReportStore, artifact_name
from core.assessment.scoring import calculate_summary, count_by, filter_by_severity, sort_findings
from core.assessment.store import (
    DEFAULT_RETRY_ATTEMPTS,
    AssessmentNotFoundError,
    AssessmentStore,
    ConflictError,
    update_status,
)
from core.assessment.validator import Registry, Runner, ValidatorRun

logger = logging.getLogger(__name__)


STUCK_RUN_TIMEOUT = timedelta(minutes=5)
RUNNING_RECHECK = timedelta(seconds=30)
MISSING_START_RECHECK = timedelta(seconds=10)
CONFLICT_RECHECK = timedelta(seconds=1)

CONDITION_READY = "Ready"
REASON_TIMED_OUT = "AssessmentTimedOut"


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: Optional[timedelta] = None


DONE = ReconcileResult()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Cron schedule
# -----------------------------

class InvalidScheduleError(ValueError):
    pass


class Schedule:
    """Standard 5-field cron expression (or an @daily style descriptor)."""

    def __init__(self, expr: str):
        expr = (expr or "").strip()
        if not expr:
            raise InvalidScheduleError("empty schedule")
        if not expr.startswith("@"):
            fields = expr.split()
            if len(fields) != 5:
                raise InvalidScheduleError(f"expected exactly 5 fields, found {len(fields)}: {expr!r}")
        self.expr = expr
        # expressions like "0 0 31 2 *" parse but never fire
        self.next_after(utcnow())

    def next_after(self, t: datetime) -> datetime:
        if t.tzinfo is None:
            t = t.replace(tzinfo=timezone.utc)
        try:
            return croniter(self.expr, t).get_next(datetime)
        except CroniterBadDateError as e:
            raise InvalidScheduleError(f"{self.expr!r} never fires: {e}") from e
        except (ValueError, KeyError) as e:
            raise InvalidScheduleError(f"{self.expr!r}: {e}") from e


# -----------------------------
# Reconciler
# -----------------------------

class Reconciler:
    def __init__(
        self,
        store: AssessmentStore,
        reader: ClusterReader,
        registry: Registry,
        *,
        report_assembler: Optional[ReportAssembler] = None,
        report_store: Optional[ReportStore] = None,
        metrics: Optional[MetricsSink] = None,
        clock: Callable[[], datetime] = utcnow,
        status_retries: int = DEFAULT_RETRY_ATTEMPTS,
        sort_findings: bool = True,
        retry_sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.reader = reader
        self.registry = registry
        self.report_assembler = report_assembler
        self.report_store = report_store
        self.metrics = metrics or NullMetricsSink()
        self.clock = clock
        self.status_retries = status_retries
        self.sort_findings = sort_findings
        self._retry_sleep = retry_sleep

    # -------------------------
    # Entry point
    # -------------------------

    def reconcile(self, name: str, ctx: Optional[CancellationToken] = None) -> ReconcileResult:
        ctx = ctx or background()

        try:
            assessment = self.store.get(name)
        except AssessmentNotFoundError:
            logger.info("Assessment not found, ignoring: name=%s", name)
            return DONE

        phase = assessment.status.phase

        # terminal for one-time assessments; scheduled ones go back to waiting on cron
        if phase == PHASE_COMPLETED and not assessment.scheduled:
            return DONE

        if phase == PHASE_RUNNING:
            return self._check_running(name)

        if assessment.spec.suspend:
            logger.info("Assessment is suspended: name=%s", name)
            return DONE

        if assessment.scheduled:
            return self._reconcile_scheduled(ctx, assessment)

        return self.run_assessment(ctx, assessment)

    # -------------------------
    # Running / stuck detection
    # -------------------------

    def _check_running(self, name: str) -> ReconcileResult:
        # the caller's copy may be stale if another reconcile just finished the run
        try:
            latest = self.store.get(name)
        except AssessmentNotFoundError:
            return DONE

        if latest.status.phase in (PHASE_COMPLETED, PHASE_FAILED):
            return DONE

        started = latest.status.last_run_time
        if started is None:
            logger.info("Assessment Running without a start time, checking again shortly: name=%s", name)
            return ReconcileResult(requeue_after=MISSING_START_RECHECK)

        running_for = self.clock() - started
        if running_for < STUCK_RUN_TIMEOUT:
            logger.info("Assessment already running, skipping: name=%s running_for=%s", name, running_for)
            return ReconcileResult(requeue_after=RUNNING_RECHECK)

        logger.warning("Assessment appears stuck, resetting to allow retry: name=%s stuck_for=%s", name, running_for)
        _mark_failed(latest, "Assessment timed out after 5 minutes, restarting...", REASON_TIMED_OUT, self.clock())
        try:
            # single compare-and-update: if someone else moved it on, just look again
            self.store.update_status(latest)
        except ConflictError:
            return ReconcileResult(requeue_after=CONFLICT_RECHECK)
        return ReconcileResult(requeue=True)

    # -------------------------
    # Scheduled
    # -------------------------

    def _reconcile_scheduled(self, ctx: CancellationToken, assessment: Assessment) -> ReconcileResult:
        name = assessment.name
        now = self.clock()
        last = assessment.status.last_run_time
        try:
            schedule = Schedule(assessment.spec.schedule)
            # a run reset by the stuck detector is retried now, not at the next slot
            if last is None or _ready_reason(assessment) == REASON_TIMED_OUT:
                next_run = now
            else:
                next_run = schedule.next_after(last)
        except InvalidScheduleError as e:
            logger.error("Invalid cron schedule: name=%s error=%s", name, e)
            self._set_failed(name, f"Invalid cron schedule: {e}", "InvalidSchedule")
            return DONE

        if now < next_run:
            requeue_after = next_run - now
            logger.info(
                "Scheduled assessment not due yet: name=%s next_run=%s requeue_after=%s",
                name, next_run.isoformat(), requeue_after,
            )
            if assessment.status.next_run_time != next_run:
                def set_next(latest: Assessment) -> None:
                    latest.status.next_run_time = next_run

                self._update(name, set_next)
            return ReconcileResult(requeue_after=requeue_after)

        logger.info("Running scheduled assessment: name=%s", name)
        return self.run_assessment(ctx, assessment)

    # -------------------------
    # Run
    # -------------------------

    def run_assessment(self, ctx: CancellationToken, assessment: Assessment) -> ReconcileResult:
        name = assessment.name
        started_at = self.clock()
        t0 = time.monotonic()

        def to_running(latest: Assessment) -> None:
            latest.status.phase = PHASE_RUNNING
            latest.status.message = "Assessment in progress"
            # the stuck-run detector ages the run from this timestamp
            latest.status.last_run_time = started_at

        self._update(name, to_running)

        schedule: Optional[Schedule] = None
        try:
            schedule = Schedule(assessment.spec.schedule) if assessment.scheduled else None

            profile = get_profile(assessment.spec.profile)
            logger.info("Using profile: name=%s profile=%s", name, profile.name)

            cluster_info = self._collect_cluster_info(ctx)

            runner = Runner(self.registry, self.reader)
            findings, runs = runner.run_with_stats(ctx, profile, assessment.spec.validators)

            if assessment.spec.min_severity:
                findings = filter_by_severity(findings, assessment.spec.min_severity)
                logger.info(
                    "Filtered findings by severity: name=%s min_severity=%s count=%s",
                    name, assessment.spec.min_severity, len(findings),
                )
            if self.sort_findings:
                findings = sort_findings(findings)

            summary = calculate_summary(findings, profile.name)

            finished_at = self.clock()
            next_run = schedule.next_after(finished_at) if schedule else None
        except CancelledError as e:
            logger.warning("Assessment cancelled: name=%s reason=%s", name, e)
            self._set_failed(name, f"Assessment cancelled: {e}", "AssessmentCancelled")
            raise
        except InvalidScheduleError as e:
            logger.error("Invalid cron schedule: name=%s error=%s", name, e)
            self._set_failed(name, f"Invalid cron schedule: {e}", "InvalidSchedule")
            return DONE
        except Exception as e:
            logger.exception("Assessment failed: name=%s", name)
            self._set_failed(name, f"Assessment failed: {e}", "AssessmentFailed")
            # a failed run does not cancel the schedule
            if schedule is not None:
                now = self.clock()
                return ReconcileResult(requeue_after=max(schedule.next_after(now) - now, timedelta(0)))
            return DONE

        report_name = self._store_report(assessment, cluster_info, summary, findings, finished_at)
        message = f"Assessment completed with {len(findings)} findings"

        def to_completed(latest: Assessment) -> None:
            st = latest.status
            st.phase = PHASE_COMPLETED
            st.last_run_time = finished_at
            st.next_run_time = next_run
            st.message = message
            st.cluster_info = cluster_info
            st.findings = list(findings)
            st.summary = summary
            if report_name:
                st.report_name = report_name
            st.conditions = [
                Condition(
                    type=CONDITION_READY,
                    status="True",
                    last_transition_time=finished_at,
                    reason="AssessmentCompleted",
                    message=message,
                )
            ]

        self._update(name, to_completed)

        duration = time.monotonic() - t0
        self._record_metrics(name, cluster_info, summary, findings, runs, finished_at, duration)
        logger.info("Assessment completed: name=%s findings=%s duration=%.2fs", name, len(findings), duration)

        if schedule is not None:
            now = self.clock()
            return ReconcileResult(requeue_after=max(schedule.next_after(now) - now, timedelta(0)))
        return DONE

    # -------------------------
    # Helpers
    # -------------------------

    def _update(self, name: str, mutate: Callable[[Assessment], None]) -> Assessment:
        return update_status(self.store, name, mutate, attempts=self.status_retries, sleep=self._retry_sleep)

    def _set_failed(self, name: str, message: str, reason: str) -> Assessment:
        now = self.clock()
        return self._update(name, lambda latest: _mark_failed(latest, message, reason, now))

    def _collect_cluster_info(self, ctx: CancellationToken) -> ClusterInfo:
        try:
            return collect_cluster_info(ctx, self.reader)
        except CancelledError:
            raise
        except Exception:
            logger.exception("Failed to collect cluster info (non-fatal)")
            return ClusterInfo()

    def _store_report(
        self,
        assessment: Assessment,
        cluster_info: ClusterInfo,
        summary: AssessmentSummary,
        findings: List[Finding],
        now: datetime,
    ) -> str:
        storage = assessment.spec.report_storage
        if not storage.enabled:
            return ""
        if self.report_assembler is None or self.report_store is None:
            logger.warning("Report storage requested but not configured: name=%s", assessment.name)
            return ""

        snapshot = assessment.model_copy(deep=True)
        snapshot.status.cluster_info = cluster_info
        snapshot.status.summary = summary
        snapshot.status.findings = list(findings)

        try:
            artifacts = self.report_assembler.assemble(snapshot, storage.formats, generated_at=now)
            if not artifacts:
                logger.warning("No report artifacts generated: name=%s formats=%s", assessment.name, storage.formats)
                return ""
            stored_as = artifact_name(assessment, now)
            self.report_store.save(assessment.name, stored_as, artifacts)
        except Exception:
            logger.exception("Failed to store report (non-fatal): name=%s", assessment.name)
            return ""

        logger.info("Report stored: name=%s report=%s formats=%s", assessment.name, stored_as, sorted(artifacts))
        return stored_as

    def _record_metrics(
        self,
        name: str,
        cluster_info: ClusterInfo,
        summary: AssessmentSummary,
        findings: List[Finding],
        runs: List[ValidatorRun],
        finished_at: datetime,
        duration: float,
    ) -> None:
        try:
            self.metrics.record_assessment(
                name,
                summary.profile_used,
                summary.score or 0,
                summary.pass_count,
                summary.warn_count,
                summary.fail_count,
                summary.info_count,
                finished_at.timestamp(),
                duration,
            )
            self.metrics.record_cluster_info(
                cluster_info.cluster_id,
                cluster_info.cluster_version,
                cluster_info.platform,
                cluster_info.channel,
            )
            by_validator = count_by(findings, "validator")
            # validators filtered down to nothing still report zeros
            for run in runs:
                by_validator.setdefault(run.validator, {})
            for validator, counts in by_validator.items():
                self.metrics.record_validator(name, validator, counts)
            for category, counts in count_by(findings, "category").items():
                self.metrics.record_category(name, category, counts)
        except Exception:
            logger.exception("Failed to record metrics (non-fatal): name=%s", name)


def _mark_failed(assessment: Assessment, message: str, reason: str, now: datetime) -> None:
    st = assessment.status
    st.phase = PHASE_FAILED
    st.message = message
    st.conditions = [
        Condition(
            type=CONDITION_READY,
            status="False",
            last_transition_time=now,
            reason=reason,
            message=message,
        )
    ]


def _ready_reason(assessment: Assessment) -> str:
    for c in assessment.status.conditions:
        if c.type == CONDITION_READY:
            return c.reason
    return ""
