import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from django.db import DatabaseError, connection

from shopsync.exceptions import AuthenticationError, FetchError, InvalidJobTransition
from shopsync.jobs import (
    batch_delay,
    cancel_job,
    claim_job,
    create_sync_job,
    estimate_completion,
    get_job_status,
    pause_job,
    resume_job,
    run_job,
)
from shopsync.models import (
    Customer,
    MirrorRecord,
    Order,
    Product,
    ProductVariant,
    SyncJob,
    Tag,
    Taggable,
    VariantMapping,
)

TENANT = 'tenant-t'

pytestmark = pytest.mark.django_db


def no_sleep(seconds):
    pass


@pytest.fixture
def job():
    return create_sync_job(TENANT, 'full', enqueue=False)


@pytest.fixture
def three_pages(make_order):
    return {
        None: ([make_order(1), make_order(2)], 'c2'),
        'c2': ([make_order(3), make_order(4)], 'c3'),
        'c3': ([make_order(5)], None),
    }


# ---------------------------------------------------------------------------
# Creating jobs
# ---------------------------------------------------------------------------

class TestCreateSyncJob:
    def test_creates_pending_job_with_config(self):
        date_from = datetime(2025, 10, 1, tzinfo=timezone.utc)
        job = create_sync_job(TENANT, 'full', date_from=date_from, batch_size=100, force_update=True, enqueue=False)
        assert job.status == 'pending'
        assert job.job_type == 'orders_full'
        assert job.config == {
            'date_from': '2025-10-01T00:00:00+00:00',
            'date_to': None,
            'fetch_all': True,
            'force_update': True,
            'batch_size': 100,
        }

    @pytest.mark.parametrize('kwargs', [
        {'sync_type': 'partial'},
        {'sync_type': 'full', 'entity': 'inventory'},
        {'sync_type': 'full', 'batch_size': 0},
        {'sync_type': 'full', 'batch_size': 251},
        {
            'sync_type': 'full',
            'date_from': datetime(2025, 10, 2, tzinfo=timezone.utc),
            'date_to': datetime(2025, 10, 1, tzinfo=timezone.utc),
        },
    ])
    def test_invalid_config_is_rejected(self, kwargs):
        with pytest.raises(ValueError):
            create_sync_job(TENANT, enqueue=False, **kwargs)
        assert SyncJob.objects.count() == 0

    def test_incremental_starts_from_last_sync_minus_buffer(self, integration):
        integration.last_order_sync_at = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)
        integration.save()
        job = create_sync_job(TENANT, 'incremental', enqueue=False)
        assert job.job_type == 'orders_incremental'
        assert job.config['date_from'] == '2025-10-01T11:58:00+00:00'

    def test_enqueues_after_commit(self, django_capture_on_commit_callbacks):
        with patch('shopsync.tasks.run_sync_job.delay') as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                job = create_sync_job(TENANT, 'full')
        mock_delay.assert_called_once_with(str(job.pk))


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestTransitions:
    def test_only_one_claim_succeeds(self, job):
        assert claim_job(job.pk) is True
        assert claim_job(job.pk) is False
        job.refresh_from_db()
        assert job.status == 'running'
        assert job.started_at is not None

    @pytest.mark.django_db(transaction=True)
    def test_concurrent_claims_have_one_winner(self):
        job = create_sync_job(TENANT, 'full', enqueue=False)
        barrier = threading.Barrier(2)
        outcomes = []

        def claim():
            barrier.wait()
            try:
                outcomes.append(claim_job(job.pk))
            except DatabaseError as exc:
                # A writer locked out by the other claim has lost as well.
                outcomes.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=claim) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(outcomes) == 2
        assert outcomes.count(True) == 1
        assert SyncJob.objects.get(pk=job.pk).status == 'running'

    def test_claim_keeps_original_start_time(self, job):
        claim_job(job.pk)
        pause_job(job.pk)
        resume_job(job.pk, enqueue=False)
        first_start = SyncJob.objects.get(pk=job.pk).started_at
        claim_job(job.pk)
        assert SyncJob.objects.get(pk=job.pk).started_at == first_start

    def test_cancel_pending_job(self, job):
        cancel_job(job.pk)
        job.refresh_from_db()
        assert job.status == 'cancelled'
        assert job.completed_at is not None
        assert get_job_status(job.pk)['is_finished'] is True

    def test_pause_requires_running(self, job):
        with pytest.raises(InvalidJobTransition):
            pause_job(job.pk)

    def test_resume_failed_job_clears_error(self, job):
        SyncJob.objects.filter(pk=job.pk).update(status='failed', last_error='boom', fetch_error_count=6)
        resume_job(job.pk, enqueue=False)
        job.refresh_from_db()
        assert job.status == 'pending'
        assert job.last_error is None
        assert job.fetch_error_count == 0

    @pytest.mark.parametrize('status', ['completed', 'cancelled', 'running', 'pending'])
    def test_resume_rejected_from_other_states(self, job, status):
        SyncJob.objects.filter(pk=job.pk).update(status=status)
        with pytest.raises(InvalidJobTransition):
            resume_job(job.pk, enqueue=False)

    def test_unknown_job(self):
        with pytest.raises(SyncJob.DoesNotExist):
            cancel_job('00000000-0000-0000-0000-000000000000')


# ---------------------------------------------------------------------------
# Running jobs
# ---------------------------------------------------------------------------

class TestRunJob:
    def test_processes_every_page(self, job, integration, fake_client, three_pages):
        client = fake_client(three_pages, total=5)

        result = run_job(job.pk, client=client, sleep=no_sleep)

        assert result.status == 'completed'
        assert (result.processed_items, result.success_count, result.current_page) == (5, 5, 3)
        assert result.cursor is None
        assert result.total_items == 5
        assert Order.objects.count() == 5
        assert MirrorRecord.objects.filter(internal_id__isnull=False).count() == 5
        integration.refresh_from_db()
        assert integration.last_order_sync_at == result.started_at

    def test_filter_only_on_first_page(self, make_order, fake_client, three_pages):
        job = create_sync_job(TENANT, 'full', date_from=datetime(2025, 10, 1, tzinfo=timezone.utc), enqueue=False)
        client = fake_client(three_pages)

        run_job(job.pk, client=client, sleep=no_sleep)

        assert client.calls[0]['cursor'] is None
        assert client.calls[0]['page_filter'].date_from == datetime(2025, 10, 1, tzinfo=timezone.utc)
        assert [(c['cursor'], c['page_filter']) for c in client.calls[1:]] == [('c2', None), ('c3', None)]

    def test_progressive_delay_between_batches(self, job, fake_client, make_order):
        pages = {None: ([make_order(1)], 'c1')}
        for n in range(1, 7):
            pages[f'c{n}'] = ([make_order(n + 1)], f'c{n + 1}' if n < 6 else None)
        sleep = Mock()

        run_job(job.pk, client=fake_client(pages), sleep=sleep)

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 0.5, 0.5, 1.0, 1.0, 2.0]

    def test_fetch_all_false_stops_after_first_page(self, fake_client, three_pages):
        job = create_sync_job(TENANT, 'full', fetch_all=False, enqueue=False)
        result = run_job(job.pk, client=fake_client(three_pages), sleep=no_sleep)
        assert result.status == 'completed'
        assert Order.objects.count() == 2

    def test_job_that_is_not_pending_is_not_run(self, job, fake_client, three_pages):
        claim_job(job.pk)
        client = fake_client(three_pages)
        result = run_job(job.pk, client=client, sleep=no_sleep)
        assert result.status == 'running'
        assert client.calls == []

    def test_progress_and_eta_are_persisted(self, job, fake_client, three_pages):
        snapshots = []

        def sleep(seconds):
            snapshots.append(get_job_status(job.pk))

        run_job(job.pk, client=fake_client(three_pages, total=5), sleep=sleep)

        assert [s['processed_items'] for s in snapshots] == [2, 4]
        assert snapshots[0]['progress'] == 40.0
        assert snapshots[0]['estimated_completion_at'] is not None
        assert get_job_status(job.pk)['estimated_completion_at'] is None

    def test_products_job(self, fake_client):
        job = create_sync_job(TENANT, 'full', entity='products', enqueue=False)
        pages = {None: ([{'id': 'P1', 'title': 'Tulips', 'variants': [{'id': 'V1', 'title': 'Bunch', 'position': 1}]}], None)}

        result = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.status == 'completed'
        assert Product.objects.get().name == 'Tulips'
        assert MirrorRecord.objects.get().kind == 'product'

    def test_customers_job(self, integration, fake_client):
        job = create_sync_job(TENANT, 'full', entity='customers', enqueue=False)
        pages = {None: ([{'id': 501, 'email': 'ada@example.com', 'first_name': 'Ada'}], None)}

        result = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.status == 'completed'
        assert result.job_type == 'customers_full'
        assert Customer.objects.get().external_id == '501'
        assert MirrorRecord.objects.get().kind == 'customer'
        integration.refresh_from_db()
        assert integration.last_customer_sync_at == result.started_at
        assert integration.last_order_sync_at is None


class TestCooperativeStop:
    def test_cancel_takes_effect_at_next_batch(self, job, fake_client, three_pages):
        client = fake_client(three_pages)

        result = run_job(job.pk, client=client, sleep=lambda s: cancel_job(job.pk))

        assert result.status == 'cancelled'
        assert result.current_page == 1
        assert len(client.calls) == 1

    def test_pause_then_resume_continues_from_cursor(self, job, fake_client, three_pages):
        paused = run_job(job.pk, client=fake_client(three_pages), sleep=lambda s: pause_job(job.pk))
        assert paused.status == 'paused'
        assert paused.cursor == 'c2'

        resume_job(job.pk, enqueue=False)
        client = fake_client(three_pages)
        result = run_job(job.pk, client=client, sleep=no_sleep)

        assert result.status == 'completed'
        assert client.calls[0]['cursor'] == 'c2'
        assert Order.objects.count() == 5

    def test_stop_during_last_page_resumes_without_refetching(self, job, fake_client, make_order):
        pages = {None: ([make_order(1)], 'c2'), 'c2': ([make_order(2)], None)}
        client = fake_client(pages)
        serve = client.fetch_page

        def fetch_then_pause(kind, cursor=None, **kwargs):
            if cursor == 'c2':
                pause_job(job.pk)
            return serve(kind, cursor=cursor, **kwargs)

        client.fetch_page = fetch_then_pause
        paused = run_job(job.pk, client=client, sleep=no_sleep)
        assert paused.status == 'paused'
        assert (paused.cursor, paused.current_page) == (None, 2)

        resume_job(job.pk, enqueue=False)
        again = fake_client(pages)
        result = run_job(job.pk, client=again, sleep=no_sleep)

        assert result.status == 'completed'
        assert again.calls == []
        assert (result.current_page, result.processed_items) == (2, 2)
        assert Order.objects.count() == 2


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_systemic_error_fails_job_and_resume_picks_up_cursor(self, job, fake_client, three_pages):
        failing = fake_client(three_pages, failures={'c2': [AuthenticationError('HTTP 401')]})

        failed = run_job(job.pk, client=failing, sleep=no_sleep)

        assert failed.status == 'failed'
        assert 'HTTP 401' in failed.last_error
        assert failed.cursor == 'c2'
        assert failed.current_page == 1

        resume_job(job.pk, enqueue=False)
        client = fake_client(three_pages)
        result = run_job(job.pk, client=client, sleep=no_sleep)

        assert result.status == 'completed'
        assert [c['cursor'] for c in client.calls] == ['c2', 'c3']
        assert Order.objects.count() == 5
        assert Order.objects.values('external_order_id').distinct().count() == 5

    def test_transient_fetch_errors_retry_same_cursor(self, job, fake_client, three_pages, settings):
        settings.SHOPSYNC_MAX_FETCH_ERRORS = 5
        client = fake_client(three_pages, failures={'c2': [FetchError('timeout'), FetchError('timeout')]})

        result = run_job(job.pk, client=client, sleep=no_sleep)

        assert result.status == 'completed'
        assert result.fetch_error_count == 2
        assert [c['cursor'] for c in client.calls] == [None, 'c2', 'c2', 'c2', 'c3']
        assert [e['kind'] for e in result.errors] == ['fetch', 'fetch']

    def test_fetch_error_threshold_aborts(self, job, fake_client, three_pages, settings):
        settings.SHOPSYNC_MAX_FETCH_ERRORS = 2
        client = fake_client(three_pages, failures={None: [FetchError('timeout')] * 3})

        result = run_job(job.pk, client=client, sleep=no_sleep)

        assert result.status == 'failed'
        assert result.fetch_error_count == 3
        assert 'fetch errors' in result.last_error

    def test_row_errors_do_not_stop_job_below_threshold(self, job, fake_client, make_order):
        pages = {None: ([make_order(1), make_order(2, created_at=None)], None)}

        result = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.status == 'completed'
        assert (result.success_count, result.error_count, result.reconcile_error_count) == (1, 1, 1)
        assert result.errors[0]['item'] == '2'
        assert result.errors[0]['kind'] == 'reconcile'

    def test_reconcile_error_threshold_aborts(self, job, fake_client, make_order, settings):
        settings.SHOPSYNC_MAX_RECONCILE_ERRORS = 1
        pages = {None: ([make_order(1, created_at=None), make_order(2, created_at=None)], 'c2')}

        result = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.status == 'failed'
        assert 'reconciliation errors' in result.last_error

    def test_threshold_on_last_page_then_resume_completes(self, job, fake_client, make_order, settings):
        settings.SHOPSYNC_MAX_RECONCILE_ERRORS = 1
        pages = {None: ([make_order(1, created_at=None), make_order(2, created_at=None)], None)}

        failed = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)
        assert failed.status == 'failed'

        resume_job(job.pk, enqueue=False)
        again = fake_client(pages)
        result = run_job(job.pk, client=again, sleep=no_sleep)

        assert result.status == 'completed'
        assert again.calls == []
        assert result.processed_items == 2

    def test_error_list_is_bounded(self, job, fake_client, make_order, settings):
        settings.SHOPSYNC_RECENT_ERRORS_LIMIT = 3
        pages = {None: ([make_order(n, created_at=None) for n in range(1, 6)], None)}

        result = run_job(job.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.error_count == 5
        assert [e['item'] for e in result.errors] == ['3', '4', '5']

    def test_missing_integration_fails_job(self, job):
        result = run_job(job.pk, sleep=no_sleep)
        assert result.status == 'failed'
        assert 'IntegrationNotFound' in result.last_error


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_eta_is_linear_extrapolation(self):
        now = datetime(2025, 10, 1, 12, 0, 10, tzinfo=timezone.utc)
        started = now - timedelta(seconds=10)
        assert estimate_completion(now, started, 10, 10, 30) == now + timedelta(seconds=20)

    def test_eta_unknown_without_total_or_progress(self):
        now = datetime(2025, 10, 1, tzinfo=timezone.utc)
        assert estimate_completion(now, now, 10, 10, None) is None
        assert estimate_completion(now, now, 0, 0, 30) is None

    @pytest.mark.parametrize('batch, delay', [(1, 0.5), (3, 0.5), (4, 1.0), (5, 1.0), (6, 2.0), (40, 2.0)])
    def test_batch_delay(self, batch, delay):
        assert batch_delay(batch) == delay


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

class TestScenario:
    def test_identical_resync_changes_nothing_canonical(self, integration, fake_client, make_order):
        product = Product.objects.create(tenant_id=TENANT, name='Rose Bouquet')
        c1 = ProductVariant.objects.create(product=product, name='Large', is_default=True)
        VariantMapping.objects.create(tenant_id=TENANT, external_variant_id='V1', variant=c1)
        e1 = make_order('E1', tags='VIP, rush')
        pages = {None: ([e1], None)}

        first = create_sync_job(TENANT, 'full', enqueue=False)
        run_job(first.pk, client=fake_client(pages), sleep=no_sleep)

        mirror_row = MirrorRecord.objects.get(external_id='E1')
        order = Order.objects.get()
        item = order.items.get()
        assert mirror_row.internal_id == order.pk
        assert (item.item_type, item.variant_id, item.quantity) == ('product', c1.pk, 2)
        assert set(Tag.objects.values_list('name', 'usage_count')) == {('vip', 1), ('rush', 1)}
        first_synced_at = mirror_row.synced_at

        second = create_sync_job(TENANT, 'full', enqueue=False)
        result = run_job(second.pk, client=fake_client(pages), sleep=no_sleep)

        assert result.status == 'completed'
        assert result.skip_count == 1
        assert MirrorRecord.objects.get(external_id='E1').synced_at > first_synced_at
        assert Order.objects.count() == 1
        assert Taggable.objects.count() == 2
        assert set(Tag.objects.values_list('name', 'usage_count')) == {('vip', 1), ('rush', 1)}
