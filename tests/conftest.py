import copy

import pytest

from shopsync.exceptions import FetchError
from shopsync.models import PlatformIntegration
from shopsync.platform_client import Page
from shopsync.rate_limit import reset_budgets

TENANT = 'tenant-t'
SHOP = 'flowers.myshopify.com'

BASE_ORDER = {
    'id': 1001,
    'name': '#1001',
    'email': 'ada@example.com',
    'phone': None,
    'created_at': '2025-10-01T10:00:00Z',
    'updated_at': '2025-10-02T08:30:00Z',
    'cancelled_at': None,
    'financial_status': 'paid',
    'fulfillment_status': None,
    'currency': 'USD',
    'subtotal_price': '20.00',
    'total_tax': '0.00',
    'total_discounts': '0.00',
    'total_price': '20.00',
    'tags': '',
    'note': None,
    'note_attributes': [],
    'customer': {'id': 501, 'email': 'ada@example.com', 'first_name': 'Ada', 'last_name': 'Lovelace'},
    'shipping_address': None,
    'shipping_lines': [],
    'line_items': [
        {
            'id': 9001,
            'product_id': 'P1',
            'variant_id': 'V1',
            'title': 'Rose Bouquet',
            'variant_title': 'Large',
            'sku': 'ROSE-L',
            'quantity': 2,
            'price': '10.00',
            'properties': [],
        },
    ],
}


@pytest.fixture(autouse=True)
def fresh_budgets():
    reset_budgets()
    yield
    reset_budgets()


@pytest.fixture
def integration(db):
    return PlatformIntegration.objects.create(tenant_id=TENANT, shop_domain=SHOP, access_token='shpat_test')


@pytest.fixture
def make_order():
    """Build a platform order payload; keyword arguments override top-level keys."""
    def _make(order_id=1001, **overrides):
        order = copy.deepcopy(BASE_ORDER)
        order['id'] = order_id
        order['name'] = f'#{order_id}'
        order.update(overrides)
        return order
    return _make


class FakeClient:
    """
    Serves pre-built pages keyed by cursor. `None` is the first page.

    `failures` maps a cursor to a list of exceptions raised, one per call,
    before the page is served.
    """

    def __init__(self, pages, total=None, failures=None):
        self.pages = pages
        self.total = total
        self.failures = failures or {}
        self.calls = []

    def count(self, kind, page_filter=None):
        return self.total

    def fetch_page(self, kind, cursor=None, page_filter=None, limit=None):
        self.calls.append({'kind': kind, 'cursor': cursor, 'page_filter': page_filter, 'limit': limit})
        pending = self.failures.get(cursor)
        if pending:
            raise pending.pop(0)
        records, next_cursor = self.pages[cursor]
        return Page(records=copy.deepcopy(records), next_cursor=next_cursor, limit=limit or 50)


@pytest.fixture
def fake_client():
    return FakeClient


@pytest.fixture
def fetch_error():
    return lambda message='connection reset': FetchError(message)
