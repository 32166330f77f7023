"""HTTP client for the Notion API.

`NotionClient` provides the three fetch capabilities the traversal needs, each
returning a single `Page` for a given cursor:

- `search_databases(cursor)`: POST /v1/search restricted to databases.
- `query_database(database_id, cursor, query)`: POST /v1/databases/{id}/query.
- `list_block_children(block_id, cursor)`: GET /v1/blocks/{id}/children.

It centralizes the behaviors shared by every call: base URL, Notion-Version
and User-Agent headers, Bearer authentication, page size, retries and the
mapping of HTTP failures onto the exception types in `exceptions.py`.
"""

from __future__ import annotations

import logging
import typing as t
from http import HTTPStatus

import backoff
import requests
from singer_sdk.authenticators import BearerTokenAuthenticator
from singer_sdk.exceptions import FatalAPIError, RetriableAPIError
from singer_sdk.helpers.jsonpath import extract_jsonpath

from .exceptions import NotionAuthError, NotionTransportError
from .pagination import Page

logger = logging.getLogger(__name__)

DEFAULT_NOTION_VERSION = "2022-06-28"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_TRIES = 5
REQUEST_TIMEOUT = 60

# Connection level failures worth another attempt before giving up.
RETRIABLE_TRANSPORT_ERRORS = (
    ConnectionResetError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class NotionClient:
    """Thin client for the Notion endpoints used by the mirror."""

    url_base = "https://api.notion.com/v1"
    records_jsonpath = "$.results[*]"

    def __init__(
        self,
        config: t.Mapping[str, t.Any],
        session: requests.Session | None = None,
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> None:
        self.config = config
        self.max_tries = max_tries
        self.session = session or requests.Session()
        self.session.headers.update(self.http_headers)
        self.session.headers.update(self.authenticator.auth_headers)

    @property
    def authenticator(self) -> BearerTokenAuthenticator:
        """Return a new authenticator object using the Notion integration token."""
        return BearerTokenAuthenticator(token=self.config.get("auth_token", ""))

    @property
    def http_headers(self) -> dict:
        """Return the HTTP headers including Notion-Version and optional UA."""
        headers: dict[str, str] = {}
        headers["Notion-Version"] = self.config.get("notion_version") or DEFAULT_NOTION_VERSION
        user_agent = self.config.get("user_agent")
        if user_agent:
            headers["User-Agent"] = user_agent
        return headers

    @property
    def page_size(self) -> int:
        return int(self.config.get("page_size") or DEFAULT_PAGE_SIZE)

    # --- Fetch capabilities ---

    def search_databases(self, cursor: str | None) -> Page:
        """Return one page of databases shared with the integration."""
        payload: dict[str, t.Any] = {
            "filter": {"property": "object", "value": "database"},
            "page_size": self.page_size,
        }
        if cursor:
            payload["start_cursor"] = cursor

        page = self._request_page("POST", "/search", payload=payload)
        # The search filter is advisory on some API versions.
        page.results = [r for r in page.results if r.get("object", "database") == "database"]
        return page

    def query_database(
        self,
        database_id: str,
        cursor: str | None,
        query: t.Mapping[str, t.Any] | None = None,
    ) -> Page:
        """Return one page of a database's pages.

        `query` holds the database query's `filter` and `sorts` and is merged
        into the request body as given.
        """
        payload: dict[str, t.Any] = dict(query or {})
        payload["page_size"] = self.page_size
        if cursor:
            payload["start_cursor"] = cursor
        return self._request_page("POST", f"/databases/{database_id}/query", payload=payload)

    def list_block_children(self, block_id: str, cursor: str | None) -> Page:
        """Return one page of the direct children of a page or block."""
        params: dict[str, t.Any] = {"page_size": self.page_size}
        if cursor:
            params["start_cursor"] = cursor
        return self._request_page("GET", f"/blocks/{block_id}/children", params=params)

    # --- Request plumbing ---

    def _request_page(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        payload: dict | None = None,
    ) -> Page:
        response = self.request(method, path, params=params, payload=payload)
        return self.parse_response(response)

    def request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        payload: dict | None = None,
    ) -> requests.Response:
        """Send a request, retrying transient failures.

        Raises:
            NotionAuthError: The token was rejected.
            NotionTransportError: The API stayed unreachable after retries.
            RetriableAPIError: Rate limiting or server errors persisted.
            FatalAPIError: Any other error response.
        """
        decorated_request = self.request_decorator(self._send)
        try:
            return decorated_request(method, path, params, payload)
        except RETRIABLE_TRANSPORT_ERRORS as exc:
            msg = f"Could not reach the Notion API ({method} {path}): {exc}"
            raise NotionTransportError(msg) from exc

    def request_decorator(self, func: t.Callable) -> t.Callable:
        """Wrap `func` with exponential backoff on retriable failures."""
        return backoff.on_exception(
            backoff.expo,
            (RetriableAPIError, *RETRIABLE_TRANSPORT_ERRORS),
            max_tries=self.max_tries,
            factor=2,
            on_backoff=self._log_backoff,
        )(func)

    def _send(
        self,
        method: str,
        path: str,
        params: dict | None,
        payload: dict | None,
    ) -> requests.Response:
        logger.debug("%s %s params=%s", method, path, params)
        response = self.session.request(
            method,
            f"{self.url_base}{path}",
            params=params or None,
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        self.validate_response(response)
        return response

    def validate_response(self, response: requests.Response) -> None:
        """Map error responses onto retriable, fatal and auth errors."""
        status = response.status_code
        if status < 400:
            return

        msg = self.response_error_message(response)
        if status == HTTPStatus.UNAUTHORIZED:
            raise NotionAuthError(msg)
        if status == HTTPStatus.TOO_MANY_REQUESTS or status >= 500:
            raise RetriableAPIError(msg, response)
        raise FatalAPIError(msg)

    @staticmethod
    def response_error_message(response: requests.Response) -> str:
        try:
            detail = response.json().get("message", "")
        except ValueError:
            detail = response.text[:300]
        return f"{response.status_code} {response.reason} for url: {response.url}: {detail}"

    def parse_response(self, response: requests.Response) -> Page:
        """Parse a list envelope into a `Page`."""
        data = response.json()
        return Page.from_response(
            data,
            results=extract_jsonpath(self.records_jsonpath, input=data),
        )

    @staticmethod
    def _log_backoff(details: dict) -> None:
        logger.warning(
            "Backing off %.1fs after %d tries calling %s",
            details.get("wait", 0.0),
            details.get("tries", 0),
            details["target"].__name__,
        )
