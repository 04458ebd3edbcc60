import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import DateTimeField, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from . import mirror
from .exceptions import ErrorThresholdExceeded, FetchError, InvalidJobTransition
from .models import PlatformIntegration, SyncJob
from .platform_client import RESOURCES, PageFilter, PlatformClient
from .reconciler import ReconcileResult, reconcile_kind
from .transformer import to_datetime

logger = logging.getLogger(__name__)

Status = SyncJob.Status
SYNC_TYPES = ('full', 'incremental')
ACTIVE_STATUSES = (Status.PENDING, Status.RUNNING)
LAST_SYNC_FIELDS = {
    'orders': 'last_order_sync_at',
    'products': 'last_product_sync_at',
    'customers': 'last_customer_sync_at',
}


def _enqueue(job_id):
    from .tasks import run_sync_job

    transaction.on_commit(lambda: run_sync_job.delay(str(job_id)))


# ---------------------------------------------------------------------------
# Job status API
# ---------------------------------------------------------------------------

def create_sync_job(tenant_id: str, sync_type: str, entity: str = 'orders', date_from: datetime = None,
                    date_to: datetime = None, fetch_all: bool = None, force_update: bool = False,
                    batch_size: int = None, created_by: str = None, enqueue: bool = True) -> SyncJob:
    """
    Create a pending sync job and, once the transaction commits, queue it.

    An incremental job without `date_from` starts from the tenant's last
    successful sync, moved back a little to close gaps between runs.
    """
    if sync_type not in SYNC_TYPES:
        raise ValueError(f"Unknown sync type {sync_type!r}; expected one of {SYNC_TYPES}.")
    if entity not in RESOURCES:
        raise ValueError(f"Unknown entity {entity!r}; expected one of {RESOURCES}.")

    batch_size = batch_size if batch_size is not None else settings.SHOPSYNC_DEFAULT_PAGE_SIZE
    if not 1 <= batch_size <= settings.SHOPSYNC_MAX_PAGE_SIZE:
        raise ValueError(f"Batch size must be between 1 and {settings.SHOPSYNC_MAX_PAGE_SIZE}, got {batch_size}.")
    if date_from and date_to and date_from > date_to:
        raise ValueError("date_from must not be later than date_to.")

    if sync_type == 'incremental' and date_from is None:
        integration = PlatformIntegration.objects.filter(tenant_id=tenant_id, is_active=True).first()
        last_sync = None
        if integration is not None:
            last_sync = getattr(integration, LAST_SYNC_FIELDS[entity])
        if last_sync is not None:
            date_from = last_sync - timedelta(minutes=settings.SHOPSYNC_INCREMENTAL_BUFFER_MINUTES)

    job = SyncJob.objects.create(
        tenant_id=tenant_id,
        job_type=f"{entity}_{sync_type}",
        created_by=created_by,
        config={
            'date_from': date_from.isoformat() if date_from else None,
            'date_to': date_to.isoformat() if date_to else None,
            'fetch_all': True if fetch_all is None else bool(fetch_all),
            'force_update': bool(force_update),
            'batch_size': batch_size,
        },
    )
    logger.info("Created %s job %s for tenant %s.", job.job_type, job.pk, tenant_id)
    if enqueue:
        _enqueue(job.pk)
    return job


def get_job_status(job_id) -> dict:
    job = SyncJob.objects.get(pk=job_id)
    progress = None
    if job.total_items:
        progress = min(100.0, round(job.processed_items * 100.0 / job.total_items, 1))
    return {
        'id': str(job.pk),
        'tenant_id': job.tenant_id,
        'job_type': job.job_type,
        'status': job.status,
        'is_finished': job.status in SyncJob.TERMINAL_STATUSES,
        'progress': progress,
        'total_items': job.total_items,
        'processed_items': job.processed_items,
        'success_count': job.success_count,
        'error_count': job.error_count,
        'skip_count': job.skip_count,
        'fetch_error_count': job.fetch_error_count,
        'reconcile_error_count': job.reconcile_error_count,
        'current_page': job.current_page,
        'last_error': job.last_error,
        'recent_errors': job.errors,
        'config': job.config,
        'created_at': job.created_at,
        'started_at': job.started_at,
        'last_activity_at': job.last_activity_at,
        'estimated_completion_at': job.estimated_completion_at,
        'completed_at': job.completed_at,
    }


def _transition(job_id, allowed: tuple, target: str, **changes) -> None:
    updated = SyncJob.objects.filter(pk=job_id, status__in=allowed).update(
        status=target, updated_at=timezone.now(), **changes,
    )
    if not updated:
        current = SyncJob.objects.values_list('status', flat=True).get(pk=job_id)
        raise InvalidJobTransition(job_id, current, target)
    logger.info("Job %s → %s.", job_id, target)


def cancel_job(job_id) -> None:
    _transition(
        job_id, (Status.PENDING, Status.RUNNING, Status.PAUSED), Status.CANCELLED,
        completed_at=timezone.now(), estimated_completion_at=None,
    )


def pause_job(job_id) -> None:
    _transition(job_id, (Status.RUNNING,), Status.PAUSED, estimated_completion_at=None)


def resume_job(job_id, enqueue: bool = True) -> None:
    """Send a paused or failed job back to pending; it continues from its cursor."""
    _transition(
        job_id, (Status.PAUSED, Status.FAILED), Status.PENDING,
        last_error=None, completed_at=None, fetch_error_count=0, reconcile_error_count=0,
    )
    if enqueue:
        _enqueue(job_id)


def claim_job(job_id) -> bool:
    """Atomically move a job from pending to running. Only one caller can win."""
    now = timezone.now()
    claimed = SyncJob.objects.filter(pk=job_id, status=Status.PENDING).update(
        status=Status.RUNNING,
        started_at=Coalesce('started_at', Value(now), output_field=DateTimeField()),
        last_activity_at=now,
        updated_at=now,
    )
    return claimed == 1


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def batch_delay(batch_number: int) -> float:
    short, medium, long = settings.SHOPSYNC_BATCH_DELAYS
    if batch_number <= 3:
        return short
    if batch_number <= 5:
        return medium
    return long


def estimate_completion(now: datetime, run_started: datetime, processed_in_run: int, processed_total: int,
                        total: Optional[int]) -> Optional[datetime]:
    if not total or processed_in_run <= 0:
        return None
    remaining = max(total - processed_total, 0)
    elapsed = (now - run_started).total_seconds()
    return now + timedelta(seconds=elapsed * remaining / processed_in_run)


def _current_status(job_id) -> Optional[str]:
    return SyncJob.objects.filter(pk=job_id).values_list('status', flat=True).first()


def _push_errors(job: SyncJob, kind: str, entries: list):
    now = timezone.now().isoformat()
    errors = list(job.errors or [])
    for entry in entries:
        errors.append({'timestamp': now, 'kind': kind, **entry})
    job.errors = errors[-settings.SHOPSYNC_RECENT_ERRORS_LIMIT:]
    job.last_error = entries[-1]['message']


def _record_fetch_error(job: SyncJob, exc: Exception):
    job.fetch_error_count += 1
    job.error_count += 1
    _push_errors(job, 'fetch', [{'item': None, 'message': f"{type(exc).__name__}: {exc}"}])
    job.last_activity_at = timezone.now()
    job.save(update_fields=[
        'fetch_error_count', 'error_count', 'errors', 'last_error', 'last_activity_at', 'updated_at',
    ])
    logger.warning(
        "Job %s: fetch error %d/%d on page %d: %s",
        job.pk, job.fetch_error_count, settings.SHOPSYNC_MAX_FETCH_ERRORS, job.current_page + 1, exc,
    )


def _record_batch(job: SyncJob, page, result: ReconcileResult, run_started: datetime, processed_before_run: int,
                  exhausted: bool):
    now = timezone.now()
    job.current_page += 1
    job.cursor = page.next_cursor
    job.processed_items += result.processed
    job.success_count += result.succeeded
    job.skip_count += result.skipped
    job.error_count += len(result.errors)
    job.reconcile_error_count += len(result.errors)
    if result.errors:
        _push_errors(job, 'reconcile', [error.as_dict() for error in result.errors])
    if page.has_more and (job.total_items is None or job.total_items <= job.processed_items):
        job.total_items = job.processed_items + page.limit
    job.last_activity_at = now
    job.estimated_completion_at = estimate_completion(
        now, run_started, job.processed_items - processed_before_run, job.processed_items, job.total_items,
    )
    job.metadata = {
        **(job.metadata or {}),
        'exhausted': exhausted,
        'last_batch': {
            'page': job.current_page,
            'size': len(page.records),
            'limit': page.limit,
            'created': result.created,
            'updated': result.updated,
            'skipped': result.skipped,
            'errors': len(result.errors),
        },
    }
    # Never write `status` here: a concurrent cancel or pause must survive.
    job.save(update_fields=[
        'current_page', 'cursor', 'processed_items', 'success_count', 'skip_count', 'error_count',
        'reconcile_error_count', 'errors', 'last_error', 'total_items', 'last_activity_at',
        'estimated_completion_at', 'metadata', 'updated_at',
    ])


def _complete(job: SyncJob):
    now = timezone.now()
    total = job.processed_items if job.cursor is None or job.total_items is None else job.total_items
    summary = {
        'processed': job.processed_items,
        'succeeded': job.success_count,
        'skipped': job.skip_count,
        'errors': job.error_count,
        'pages': job.current_page,
    }
    completed = SyncJob.objects.filter(pk=job.pk, status=Status.RUNNING).update(
        status=Status.COMPLETED,
        completed_at=now,
        estimated_completion_at=None,
        last_activity_at=now,
        total_items=total,
        metadata={**(job.metadata or {}), 'summary': summary},
        updated_at=now,
    )
    if not completed:
        logger.info("Job %s was stopped before it could complete.", job.pk)
        return

    PlatformIntegration.objects.filter(tenant_id=job.tenant_id, is_active=True).update(
        **{LAST_SYNC_FIELDS[job.entity]: job.started_at},
    )
    logger.info(
        "Job %s completed: processed=%d, succeeded=%d, skipped=%d, errors=%d.",
        job.pk, job.processed_items, job.success_count, job.skip_count, job.error_count,
    )


def _fail(job_id, exc: Exception):
    message = f"{type(exc).__name__}: {exc}"
    job = SyncJob.objects.get(pk=job_id)
    _push_errors(job, 'system', [{'item': None, 'message': message}])
    now = timezone.now()
    failed = SyncJob.objects.filter(pk=job_id, status=Status.RUNNING).update(
        status=Status.FAILED,
        last_error=message,
        errors=job.errors,
        completed_at=now,
        estimated_completion_at=None,
        last_activity_at=now,
        updated_at=now,
    )
    if failed:
        logger.error("Job %s failed: %s", job_id, message)


def run_job(job_id, client: PlatformClient = None, sleep=time.sleep) -> SyncJob:
    """
    Claim a pending job and run it until it finishes, stops or fails.

    Returns the job as persisted afterwards. A job that is not pending is
    returned untouched, so duplicate deliveries of the same task are harmless.
    """
    if not claim_job(job_id):
        logger.info("Job %s was not pending (%s); not running it.", job_id, _current_status(job_id))
        return SyncJob.objects.get(pk=job_id)

    logger.info("Job %s claimed.", job_id)
    try:
        _execute(SyncJob.objects.get(pk=job_id), client, sleep)
    except Exception as exc:
        logger.exception("Job %s aborted.", job_id)
        _fail(job_id, exc)
    return SyncJob.objects.get(pk=job_id)


def _execute(job: SyncJob, client: Optional[PlatformClient], sleep):
    config = job.config or {}
    entity = job.entity
    kind = mirror.MIRROR_KINDS[entity]
    page_filter = PageFilter(date_from=to_datetime(config.get('date_from')), date_to=to_datetime(config.get('date_to')))
    batch_size = config.get('batch_size') or settings.SHOPSYNC_DEFAULT_PAGE_SIZE
    fetch_all = config.get('fetch_all', True)
    force_update = config.get('force_update', False)

    # A stop that landed on the last page leaves nothing to fetch on resume.
    if (job.metadata or {}).get('exhausted'):
        logger.info("Job %s has no pages left; completing.", job.pk)
        _complete(job)
        return

    if client is None:
        client = PlatformClient.for_tenant(job.tenant_id)

    if job.current_page == 0 and job.total_items is None:
        job.total_items = client.count(entity, page_filter)
        job.save(update_fields=['total_items', 'updated_at'])

    run_started = timezone.now()
    processed_before_run = job.processed_items
    batch_number = 0

    while True:
        status = _current_status(job.pk)
        if status != Status.RUNNING:
            logger.info("Job %s is %s; stopping before page %d.", job.pk, status, job.current_page + 1)
            return

        batch_number += 1
        try:
            if job.cursor:
                page = client.fetch_page(entity, cursor=job.cursor, limit=batch_size)
            else:
                page = client.fetch_page(entity, page_filter=page_filter, limit=batch_size)
            mirror.upsert_batch(job.tenant_id, kind, page.records)
        except (FetchError, DatabaseError) as exc:
            _record_fetch_error(job, exc)
            if job.fetch_error_count > settings.SHOPSYNC_MAX_FETCH_ERRORS:
                raise ErrorThresholdExceeded(
                    f"{job.fetch_error_count} fetch errors, last: {exc}"
                ) from exc
            sleep(batch_delay(batch_number))
            continue

        rows = mirror.rows_for(job.tenant_id, kind, [record.get('id') for record in page.records])
        result = reconcile_kind(job.tenant_id, kind, rows, force_update=force_update)
        exhausted = not page.has_more or not fetch_all
        _record_batch(job, page, result, run_started, processed_before_run, exhausted)
        logger.info(
            "Job %s page %d: %d records, %d ok, %d skipped, %d errors.",
            job.pk, job.current_page, len(page.records), result.succeeded, result.skipped, len(result.errors),
        )

        if job.reconcile_error_count > settings.SHOPSYNC_MAX_RECONCILE_ERRORS:
            raise ErrorThresholdExceeded(f"{job.reconcile_error_count} reconciliation errors, last: {job.last_error}")
        if exhausted:
            break
        sleep(batch_delay(batch_number))

    _complete(job)
