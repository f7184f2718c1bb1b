"""Reconciliation of extracted schedules against a vendor's known schedules."""
import logging
import uuid
from collections import Counter
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from processor.models import (
    ActivityAction,
    ActivityLog,
    BatchReconcileResult,
    ConfigurationError,
    Post,
    ReconcileAction,
    ReconcileResult,
    Schedule,
    ScheduleCandidate,
    VALIDITY_THRESHOLD,
)
from processor.schedule_parser import ScheduleParser

logger = logging.getLogger(__name__)

CONFIDENCE_BUCKETS = ['0-20%', '20-40%', '40-60%', '60-80%', '80-100%']


def validate_confidence(value: float) -> float:
    """
    Raises:
        ConfigurationError: If value is outside [0, 1]
    """
    if value is None or not 0 <= value <= 1:
        raise ConfigurationError('Confidence must be between 0 and 1')
    return float(value)


class ScheduleReconciler:
    """
    Classifies schedule candidates as created, updated, rejected or duplicate.

    Every reconciliation attempt produces exactly one ActivityLog, whatever
    its outcome.
    """

    def __init__(self, min_confidence: float = 0.5, parser: Optional[ScheduleParser] = None):
        self.min_confidence = validate_confidence(min_confidence)
        self.parser = parser or ScheduleParser()

    def set_min_confidence(self, confidence: float) -> None:
        self.min_confidence = validate_confidence(confidence)

    def reconcile(
        self,
        candidate: ScheduleCandidate,
        existing: Iterable[Schedule] = (),
        today: Optional[date] = None,
    ) -> ReconcileResult:
        """
        Reconcile one candidate against the known schedules.

        Args:
            candidate: Parsed post for one vendor
            existing: Schedules already known for the vendor
            today: Reference date for relative date expressions

        Returns:
            ReconcileResult; on update the returned schedule is a new value
            carrying the candidate's confidence and source
        """
        parsed = candidate.parsed

        if not parsed.has_fragments:
            return self._reject(candidate, 'No date, time or location found in text')

        if not candidate.is_valid or parsed.confidence < self.min_confidence:
            threshold = self.min_confidence
            if not candidate.is_valid:
                threshold = max(threshold, VALIDITY_THRESHOLD)
            reason = (
                f"Confidence {round(parsed.confidence * 100)}% below threshold "
                f"{round(threshold * 100)}%"
            )
            return self._reject(candidate, reason, threshold)

        schedule = self.parser.to_schedule(candidate, today)
        if schedule is None:
            return self._reject(candidate, f"Date {parsed.date!r} could not be converted to a schedule")

        match = find_schedule(existing, schedule.identity_key)
        if match is None:
            return ReconcileResult(
                action=ReconcileAction.CREATED,
                schedule=schedule,
                activity_log=self._activity_log(candidate, ActivityAction.SCHEDULE_DETECTED, schedule),
            )

        if schedule.confidence > match.confidence:
            updated = replace(
                match,
                confidence=schedule.confidence,
                source=schedule.source,
                updated_at=datetime.now(timezone.utc),
            )
            logger.debug(
                f"Schedule {updated.schedule_id} confidence raised "
                f"{match.confidence} -> {updated.confidence}"
            )
            return ReconcileResult(
                action=ReconcileAction.UPDATED,
                schedule=updated,
                activity_log=self._activity_log(candidate, ActivityAction.SCHEDULE_UPDATED, updated),
            )

        return ReconcileResult(
            action=ReconcileAction.DUPLICATE,
            schedule=match,
            activity_log=self._activity_log(candidate, ActivityAction.SCHEDULE_DETECTED, match),
        )

    def reconcile_many(
        self,
        candidates: Iterable[ScheduleCandidate],
        existing: Iterable[Schedule] = (),
        today: Optional[date] = None,
    ) -> BatchReconcileResult:
        """
        Fold candidates through reconcile() in order.

        Schedules accepted earlier in the batch count as known for later
        candidates, so two posts announcing the same appointment produce one
        schedule. The returned schedules are unique by identity key and
        sorted by date ascending.
        """
        known: Dict[Tuple[str, str, str], Schedule] = {}
        for schedule in existing:
            known.setdefault(schedule.identity_key, schedule)

        accepted: Dict[Tuple[str, str, str], Schedule] = {}
        activity_logs: List[ActivityLog] = []
        summary = {'created': 0, 'updated': 0, 'rejected': 0, 'duplicates': 0}

        for candidate in candidates:
            result = self.reconcile(candidate, known.values(), today)
            activity_logs.append(result.activity_log)

            if result.action == ReconcileAction.DUPLICATE:
                summary['duplicates'] += 1
            else:
                summary[result.action.value] += 1

            if result.schedule is not None:
                key = result.schedule.identity_key
                known[key] = result.schedule
                accepted[key] = result.schedule

        schedules = sorted(accepted.values(), key=lambda schedule: schedule.date)
        logger.info(
            f"Reconciled {len(activity_logs)} candidates: {summary['created']} created, "
            f"{summary['updated']} updated, {summary['rejected']} rejected, "
            f"{summary['duplicates']} duplicates"
        )
        return BatchReconcileResult(schedules=schedules, activity_logs=activity_logs, summary=summary)

    def process_posts(
        self,
        posts: Iterable[Post],
        vendor_id: str,
        existing: Iterable[Schedule] = (),
        today: Optional[date] = None,
    ) -> BatchReconcileResult:
        candidates = [self.parser.parse_post(post, vendor_id) for post in posts]
        return self.reconcile_many(candidates, existing, today)

    def _reject(self, candidate: ScheduleCandidate, reason: str,
                threshold: Optional[float] = None) -> ReconcileResult:
        activity_log = self._activity_log(
            candidate,
            ActivityAction.SCHEDULE_REJECTED,
            threshold=self.min_confidence if threshold is None else threshold,
            reason=reason,
        )
        return ReconcileResult(action=ReconcileAction.REJECTED, activity_log=activity_log, reason=reason)

    def _activity_log(
        self,
        candidate: ScheduleCandidate,
        action: ActivityAction,
        schedule: Optional[Schedule] = None,
        **extra: Any,
    ) -> ActivityLog:
        parsed = candidate.parsed
        metadata: Dict[str, Any] = {
            'original_text': parsed.raw_text,
            'parsed_data': {
                'date': parsed.date,
                'time_range': parsed.time_range,
                'location': parsed.location,
            },
            'platform': candidate.platform,
            'post_id': candidate.post_id,
        }
        if schedule is not None:
            metadata['schedule_id'] = schedule.schedule_id
        metadata.update(extra)

        return ActivityLog(
            id=f"activity_{uuid.uuid4().hex}",
            vendor_id=candidate.vendor_id,
            timestamp=datetime.now(timezone.utc),
            source=candidate.source,
            confidence_score=parsed.confidence,
            action=action,
            metadata=metadata,
        )


def find_schedule(schedules: Iterable[Schedule], identity_key: Tuple[str, str, str]) -> Optional[Schedule]:
    for schedule in schedules:
        if schedule.identity_key == identity_key:
            return schedule
    return None


def schedule_analytics(activity_logs: List[ActivityLog]) -> Dict[str, Any]:
    """
    Summarize activity logs.

    Returns:
        Dict with average_confidence, confidence_distribution (five 20%
        buckets), and counts by source, action and platform
    """
    if not activity_logs:
        return {
            'average_confidence': 0,
            'confidence_distribution': {},
            'source_breakdown': {},
            'action_breakdown': {},
            'platform_breakdown': {},
        }

    distribution = {bucket: 0 for bucket in CONFIDENCE_BUCKETS}
    for log in activity_logs:
        index = min(int(log.confidence_score * 100 // 20), len(CONFIDENCE_BUCKETS) - 1)
        distribution[CONFIDENCE_BUCKETS[index]] += 1

    average = sum(log.confidence_score for log in activity_logs) / len(activity_logs)

    return {
        'average_confidence': round(average, 2),
        'confidence_distribution': distribution,
        'source_breakdown': dict(Counter(log.source for log in activity_logs)),
        'action_breakdown': dict(Counter(ActivityAction(log.action).value for log in activity_logs)),
        'platform_breakdown': dict(Counter(
            log.metadata.get('platform') or 'unknown' for log in activity_logs
        )),
    }


def filter_schedules_by_confidence(schedules: Iterable[Schedule], min_confidence: float) -> List[Schedule]:
    return [schedule for schedule in schedules if schedule.confidence >= min_confidence]


def get_schedules_for_manual_review(
    schedules: Iterable[Schedule],
    min_confidence: float = 0.3,
    max_confidence: float = 0.6,
) -> List[Schedule]:
    """Schedules confident enough to keep but not enough to trust: min <= c < max."""
    return [
        schedule for schedule in schedules
        if min_confidence <= schedule.confidence < max_confidence
    ]
