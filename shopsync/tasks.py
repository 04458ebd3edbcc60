import logging

from celery import shared_task

from .jobs import ACTIVE_STATUSES, create_sync_job, run_job
from .models import PlatformIntegration, SyncJob

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='shopsync.run_sync_job')
def run_sync_job(self, job_id):
    """
    Execute one sync job.

    Safe to deliver more than once: only the delivery that claims the
    pending job runs it, every other one returns the current state.
    """
    job = run_job(job_id)
    return {
        'job_id': str(job.pk),
        'status': job.status,
        'processed': job.processed_items,
        'succeeded': job.success_count,
        'skipped': job.skip_count,
        'errors': job.error_count,
    }


@shared_task(name='shopsync.schedule_incremental_syncs')
def schedule_incremental_syncs():
    """Queue an incremental order sync for every active integration that is idle."""
    created = skipped = 0
    for integration in PlatformIntegration.objects.filter(is_active=True).order_by('tenant_id'):
        busy = SyncJob.objects.filter(
            tenant_id=integration.tenant_id,
            job_type__startswith='orders_',
            status__in=ACTIVE_STATUSES,
        ).exists()
        if busy:
            logger.debug("Tenant %s already has an order sync queued – skipping.", integration.tenant_id)
            skipped += 1
            continue
        create_sync_job(integration.tenant_id, 'incremental', entity='orders', created_by='scheduler')
        created += 1

    logger.info("Scheduled incremental syncs: created=%d, skipped=%d.", created, skipped)
    return {'created': created, 'skipped': skipped}
