"""DynamoDB manager for schedule and activity log storage."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import (
    ActivityAction,
    ActivityLog,
    Schedule,
    ScheduleCrawlerResult,
    SyncResult,
)

logger = logging.getLogger(__name__)


def schedule_key(schedule: Schedule) -> str:
    """Sort key of a schedule item; vendor_id is the partition key."""
    return f"{schedule.date}#{schedule.location}"


def _to_dynamo(value):
    """Convert floats (including nested ones) to Decimal for boto3."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value):
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, schedules_table: str, activity_log_table: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table references.

        Args:
            schedules_table: Table keyed by vendor_id (hash) and schedule_key (range)
            activity_log_table: Table keyed by vendor_id (hash) and id (range)
            region_name: AWS region, defaults to the environment's
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.schedules = self.dynamodb.Table(schedules_table)
        self.activity_logs = self.dynamodb.Table(activity_log_table)
        logger.info(f"Initialized DynamoDBManager for tables: {schedules_table}, {activity_log_table}")

    def _query_vendor(self, table, vendor_id: str) -> List[dict]:
        response = table.query(KeyConditionExpression=Key('vendor_id').eq(vendor_id))
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = table.query(
                KeyConditionExpression=Key('vendor_id').eq(vendor_id),
                ExclusiveStartKey=response['LastEvaluatedKey'],
            )
            items.extend(response.get('Items', []))

        return items

    def get_vendor_schedules(self, vendor_id: str) -> List[Schedule]:
        """
        Retrieve every stored schedule for a vendor.

        Raises:
            ClientError: If the query fails
        """
        try:
            items = self._query_vendor(self.schedules, vendor_id)
        except ClientError as e:
            logger.error(f"Error querying schedules for vendor {vendor_id}: {e}")
            raise

        schedules = [schedule for schedule in map(self._item_to_schedule, items) if schedule]
        logger.info(f"Retrieved {len(schedules)} schedules for vendor {vendor_id}")
        return schedules

    def get_activity_logs(self, vendor_id: str) -> List[ActivityLog]:
        """Retrieve a vendor's activity logs, oldest first."""
        try:
            items = self._query_vendor(self.activity_logs, vendor_id)
        except ClientError as e:
            logger.error(f"Error querying activity logs for vendor {vendor_id}: {e}")
            raise

        logs = [log for log in map(self._item_to_activity_log, items) if log]
        return sorted(logs, key=lambda log: log.timestamp)

    def batch_write_schedules(self, schedules: List[Schedule], errors: Optional[List[str]] = None) -> int:
        """
        Write schedules in batches of 25 items.

        Args:
            schedules: Schedules to put; existing items with the same key are replaced
            errors: Optional list collecting one message per failed batch

        Returns:
            Count of successfully written schedules
        """
        return self._batch_write(self.schedules, [self._schedule_to_item(s) for s in schedules], 'schedules', errors)

    def batch_write_activity_logs(self, logs: List[ActivityLog], errors: Optional[List[str]] = None) -> int:
        return self._batch_write(self.activity_logs, [self._activity_log_to_item(log) for log in logs], 'activity logs', errors)

    def _batch_write(self, table, items: List[dict], label: str, errors: Optional[List[str]]) -> int:
        if not items:
            return 0

        logger.info(f"Writing {len(items)} {label} to DynamoDB")
        success_count = 0

        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]

            try:
                with table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                success_count += len(batch)

            except ClientError as e:
                error_msg = f"Error writing {label} batch {i // self.BATCH_SIZE + 1}: {e}"
                logger.error(error_msg)
                if errors is not None:
                    errors.append(error_msg)
                continue

        logger.info(f"Successfully wrote {success_count} {label}")
        return success_count

    def save_crawl_result(
        self,
        result: ScheduleCrawlerResult,
        existing: Iterable[Schedule] = (),
    ) -> SyncResult:
        """
        Persist a vendor crawl.

        Only schedules that are new or whose confidence or source changed
        are written; every activity log is appended.

        Args:
            result: Crawl result for one vendor
            existing: Schedules loaded before the crawl

        Returns:
            SyncResult with counts of added and updated schedules and logged entries
        """
        errors: List[str] = []
        existing_by_key: Dict[tuple, Schedule] = {s.identity_key: s for s in existing}

        to_add = [s for s in result.schedules if s.identity_key not in existing_by_key]
        to_update = [
            s for s in result.schedules
            if s.identity_key in existing_by_key and self._schedules_differ(s, existing_by_key[s.identity_key])
        ]

        logger.info(
            f"Save plan for vendor {result.vendor.vendor_id}: "
            f"{len(to_add)} to add, {len(to_update)} to update, "
            f"{len(result.activity_logs)} activity logs"
        )

        write_count = self.batch_write_schedules(to_add + to_update, errors)
        added_count = min(write_count, len(to_add))
        updated_count = write_count - added_count
        logged_count = self.batch_write_activity_logs(result.activity_logs, errors)

        return SyncResult(added=added_count, updated=updated_count, logged=logged_count, errors=errors)

    def _schedule_to_item(self, schedule: Schedule) -> dict:
        return _to_dynamo({
            'vendor_id': schedule.vendor_id,
            'schedule_key': schedule_key(schedule),
            'schedule_id': schedule.schedule_id,
            'date': schedule.date,
            'start_time': schedule.start_time,
            'end_time': schedule.end_time,
            'location': schedule.location,
            'source': schedule.source,
            'confidence': schedule.confidence,
            'created_at': schedule.created_at.isoformat(),
            'updated_at': schedule.updated_at.isoformat(),
        })

    def _item_to_schedule(self, item: dict) -> Optional[Schedule]:
        try:
            return Schedule(
                vendor_id=item['vendor_id'],
                date=item['date'],
                start_time=item['start_time'],
                end_time=item['end_time'],
                location=item['location'],
                source=item['source'],
                confidence=float(item['confidence']),
                created_at=datetime.fromisoformat(item['created_at']),
                updated_at=datetime.fromisoformat(item['updated_at']),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Schedule: {e}")
            return None

    def _activity_log_to_item(self, log: ActivityLog) -> dict:
        return _to_dynamo({
            'vendor_id': log.vendor_id,
            'id': log.id,
            'timestamp': log.timestamp.isoformat(),
            'source': log.source,
            'confidence_score': log.confidence_score,
            'action': ActivityAction(log.action).value,
            'metadata': {k: v for k, v in log.metadata.items() if v is not None},
        })

    def _item_to_activity_log(self, item: dict) -> Optional[ActivityLog]:
        try:
            return ActivityLog(
                id=item['id'],
                vendor_id=item['vendor_id'],
                timestamp=datetime.fromisoformat(item['timestamp']),
                source=item['source'],
                confidence_score=float(item['confidence_score']),
                action=ActivityAction(item['action']),
                metadata=_from_dynamo(item.get('metadata') or {}),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to ActivityLog: {e}")
            return None

    def _schedules_differ(self, schedule1: Schedule, schedule2: Schedule) -> bool:
        return (
            schedule1.confidence != schedule2.confidence or
            schedule1.source != schedule2.source or
            schedule1.start_time != schedule2.start_time or
            schedule1.end_time != schedule2.end_time
        )
