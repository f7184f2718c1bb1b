"""AWS Lambda handler for the food vendor schedule crawler."""
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, List

from processor.models import ApiCredentials, ConfigurationError, Platform, VendorQuery
from processor.reconciler import validate_confidence
from processor.schedule_crawler import ScheduleCrawlerService
from scraper.aggregator import SocialMediaAggregator
from storage.dynamodb_manager import DynamoDBManager

# LogRecord attributes that are not user-supplied extras
RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

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

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def parse_vendors(event: Dict[str, Any]) -> List[VendorQuery]:
    """
    Raises:
        ConfigurationError: If the event carries no vendors or an invalid one
    """
    vendors = event.get('vendors')
    if not vendors or not isinstance(vendors, list):
        raise ConfigurationError('Event must contain a non-empty "vendors" list')
    return [VendorQuery.from_dict(vendor) for vendor in vendors]


def parse_base_options(event: Dict[str, Any], default_min_confidence: float) -> Dict[str, Any]:
    platform = event.get('platform')
    if platform is not None:
        try:
            platform = Platform(platform)
        except ValueError:
            raise ConfigurationError(f"Platform {platform} is not supported")

    min_confidence = event.get('minConfidence')
    return {
        'platform': platform,
        'max_posts': event.get('maxPosts'),
        'min_confidence': validate_confidence(
            default_min_confidence if min_confidence is None else min_confidence
        ),
    }


def _error_response(status_code: int, message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(time.time() - start_time, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler: crawl schedules for a batch of vendors and persist them.

    Args:
        event: Payload with "vendors" and optional "platform", "maxPosts",
            "minConfidence"
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-vendor statistics
    """
    # Read configuration from environment variables
    schedules_table = os.environ.get('SCHEDULES_TABLE', 'vendor-schedules')
    activity_log_table = os.environ.get('ACTIVITY_LOG_TABLE', 'vendor-activity-logs')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = float(os.environ.get('TIMEOUT_SECONDS', '30'))
    fetch_timeout = float(os.environ.get('FETCH_TIMEOUT_SECONDS', '60'))
    min_confidence = float(os.environ.get('MIN_CONFIDENCE', '0.5'))
    vendor_delay = float(os.environ.get('VENDOR_DELAY_SECONDS', '1'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'schedules_table': schedules_table,
            'activity_log_table': activity_log_table,
            'timeout_seconds': timeout_seconds,
            'fetch_timeout_seconds': fetch_timeout
        }
    )

    try:
        vendors = parse_vendors(event)
        base = parse_base_options(event, min_confidence)
    except ConfigurationError as e:
        logger.error(f"Invalid request: {str(e)}", extra={'error_type': type(e).__name__})
        return _error_response(400, 'Invalid request', e, start_time)

    try:
        aggregator = SocialMediaAggregator(
            credentials=ApiCredentials.from_env(),
            timeout=timeout_seconds,
            fetch_timeout=fetch_timeout,
        )
        crawler = ScheduleCrawlerService(
            aggregator,
            min_confidence=base['min_confidence'],
            vendor_delay=vendor_delay,
        )
        dynamodb_manager = DynamoDBManager(schedules_table, activity_log_table)

        existing_by_vendor = {
            vendor.vendor_id: dynamodb_manager.get_vendor_schedules(vendor.vendor_id)
            for vendor in vendors
        }

        logger.info(f"Crawling schedules for {len(vendors)} vendors")
        results = asyncio.run(crawler.crawl_multiple_vendor_schedules(vendors, base, existing_by_vendor))

        vendor_stats = []
        errors = []
        for result in results:
            vendor_id = result.vendor.vendor_id
            sync_result = dynamodb_manager.save_crawl_result(result, existing_by_vendor.get(vendor_id, []))
            errors.extend(result.summary.errors)
            errors.extend(sync_result.errors)
            vendor_stats.append({
                'vendor_id': vendor_id,
                'posts_fetched': result.summary.total_posts,
                'schedules_found': result.summary.total_schedules,
                'average_confidence': result.summary.average_confidence,
                'platform_breakdown': result.summary.platform_breakdown,
                'reconcile_summary': result.reconcile_summary,
                'schedules_added': sync_result.added,
                'schedules_updated': sync_result.updated,
                'activity_logs_written': sync_result.logged
            })

        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'vendors_requested': len(vendors),
                'vendors_crawled': len(results),
                'error_count': len(errors)
            }
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Crawl completed successfully',
                'statistics': {
                    'vendors_requested': len(vendors),
                    'vendors_crawled': len(results),
                    'vendors': vendor_stats,
                    'duration_seconds': round(duration, 2)
                },
                'errors': errors
            })
        }

    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {str(e)}", extra={'error_type': type(e).__name__})
        return _error_response(400, 'Invalid configuration', e, start_time)

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response(500, 'Crawl failed', e, start_time)
