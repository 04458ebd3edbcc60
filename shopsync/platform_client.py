import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qs, urlparse

import requests
from django.conf import settings

from .exceptions import AuthenticationError, FetchError, IntegrationNotFound, MalformedResponseError
from .models import PlatformIntegration
from .rate_limit import RateLimitBudget, budget_for

logger = logging.getLogger(__name__)

RESOURCES = ('orders', 'products', 'customers')
CALL_LIMIT_HEADER = 'X-Shopify-Shop-Api-Call-Limit'


@dataclass
class PageFilter:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def is_empty(self) -> bool:
        return self.date_from is None and self.date_to is None

    def as_params(self) -> dict:
        params = {}
        if self.date_from is not None:
            params['updated_at_min'] = self.date_from.isoformat()
        if self.date_to is not None:
            params['updated_at_max'] = self.date_to.isoformat()
        return params


@dataclass
class Page:
    records: list = field(default_factory=list)
    next_cursor: Optional[str] = None
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class PlatformClient:
    """REST client for one shop. Pages are fetched newest-updated first."""

    def __init__(self, shop_domain: str, access_token: str, budget: RateLimitBudget = None,
                 api_version: str = None, max_retries: int = None):
        version = api_version or settings.SHOPSYNC_API_VERSION
        self._base_url = f"https://{shop_domain}/admin/api/{version}"
        self._session = requests.Session()
        self._session.headers.update({
            'X-Shopify-Access-Token': access_token,
            'Accept': 'application/json',
        })
        self._max_retries = max_retries or settings.SHOPSYNC_MAX_RETRIES
        self.budget = budget if budget is not None else budget_for(shop_domain)

    @classmethod
    def for_tenant(cls, tenant_id: str) -> 'PlatformClient':
        try:
            integration = PlatformIntegration.objects.get(tenant_id=tenant_id, is_active=True)
        except PlatformIntegration.DoesNotExist:
            raise IntegrationNotFound(f"No active platform integration for tenant {tenant_id}.")
        return cls(integration.shop_domain, integration.access_token)

    def fetch_page(self, kind: str, cursor: str = None, page_filter: PageFilter = None,
                   limit: int = None) -> Page:
        """
        Fetch one page of `kind` records.

        The first page is selected by `page_filter`; every following page only
        by the opaque `cursor` from the previous page. Sending both is rejected
        because the platform does not define what a filtered cursor request means.
        """
        if kind not in RESOURCES:
            raise ValueError(f"Unknown resource {kind!r}.")
        if cursor and page_filter is not None and not page_filter.is_empty():
            raise ValueError("A page cursor cannot be combined with filter parameters.")

        requested = limit if limit is not None else settings.SHOPSYNC_DEFAULT_PAGE_SIZE
        if requested < 1:
            raise ValueError(f"Page size must be positive, got {requested}.")
        requested = min(requested, settings.SHOPSYNC_MAX_PAGE_SIZE)
        size = self.budget.page_size(requested)

        if cursor:
            params = {'limit': size, 'page_info': cursor}
        else:
            params = {'limit': size, **self._listing_params(kind, page_filter)}

        response = self._request_with_retry('GET', f"{self._base_url}/{kind}.json", params=params)
        records = self._decode(response, kind)
        next_cursor = self._parse_next_cursor(response.headers.get('Link'))
        logger.debug("Fetched %d %s (limit=%d, more=%s).", len(records), kind, size, next_cursor is not None)
        return Page(records=records, next_cursor=next_cursor, limit=size)

    def count(self, kind: str, page_filter: PageFilter = None) -> Optional[int]:
        """Best-effort record count for progress reporting; None when unavailable."""
        params = self._listing_params(kind, page_filter)
        params.pop('order', None)
        try:
            response = self._request_with_retry('GET', f"{self._base_url}/{kind}/count.json", params=params)
            return int(response.json()['count'])
        except (FetchError, MalformedResponseError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Could not count %s: %s", kind, exc)
            return None

    @staticmethod
    def _listing_params(kind: str, page_filter: Optional[PageFilter]) -> dict:
        params = {}
        if kind == 'orders':
            params['status'] = 'any'
            params['order'] = 'updated_at desc'
        if page_filter is not None:
            params.update(page_filter.as_params())
        return params

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        backoff = 1.0
        problem = None
        for attempt in range(1, self._max_retries + 1):
            self.budget.acquire()
            try:
                response = self._session.request(
                    method, url, timeout=settings.SHOPSYNC_REQUEST_TIMEOUT, **kwargs,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                problem = f"{type(exc).__name__}: {exc}"
                wait = backoff
            else:
                self._observe_call_limit(response)
                status = response.status_code
                if status in (401, 403):
                    raise AuthenticationError(f"{method} {url} rejected with HTTP {status}.")
                if status == 429 or status >= 500:
                    problem = f"HTTP {status}"
                    retry_after = self._parse_retry_after(response) if status == 429 else None
                    wait = retry_after if retry_after is not None else backoff
                elif status >= 400:
                    raise MalformedResponseError(
                        f"{method} {url} rejected with HTTP {status}: {response.text[:200]}"
                    )
                else:
                    return response

            if attempt < self._max_retries:
                logger.warning(
                    "%s (attempt %d/%d). Waiting %.1fs before retry.",
                    problem, attempt, self._max_retries, wait,
                )
                time.sleep(wait)
            backoff *= 2

        raise FetchError(f"{method} {url} failed after {self._max_retries} attempts: {problem}")

    def _observe_call_limit(self, response: requests.Response):
        header = response.headers.get(CALL_LIMIT_HEADER)
        if not header:
            return
        try:
            used, maximum = (int(part) for part in header.split('/', 1))
        except ValueError:
            logger.debug("Ignoring unparseable %s header %r.", CALL_LIMIT_HEADER, header)
            return
        self.budget.observe(used, maximum)

    @staticmethod
    def _decode(response: requests.Response, kind: str) -> list:
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Response for {kind} is not JSON.") from exc
        if not isinstance(body, dict) or not isinstance(body.get(kind), list):
            raise MalformedResponseError(f"Response for {kind} has no {kind!r} list.")
        return body[kind]

    @staticmethod
    def _parse_next_cursor(link_header: Optional[str]) -> Optional[str]:
        """Extract page_info of the rel="next" entry of a Link header."""
        if not link_header:
            return None
        for part in link_header.split(','):
            if 'rel="next"' not in part:
                continue
            start, end = part.find('<'), part.find('>')
            if start == -1 or end == -1:
                continue
            values = parse_qs(urlparse(part[start + 1:end]).query).get('page_info')
            if values:
                return values[0]
        return None

    @staticmethod
    def _parse_retry_after(response: requests.Response):
        """Return float seconds from Retry-After header, or None if absent/invalid."""
        header = response.headers.get('Retry-After')
        if header is None:
            return None
        try:
            return float(header)
        except (TypeError, ValueError):
            return None
