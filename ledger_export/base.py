import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional, Type

from .config import Config, settings
from .errors import FetchError
from .models import AccountInfo, FundsTransfer, RawTransaction

logger = logging.getLogger(__name__)


@dataclass
class PageRequest:
    """One HTTP call against an institution API."""
    url: str
    method: str = "POST"
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class Page:
    """
    One page of a listing as parsed from the response envelope.

    Institutions signal continuation differently: a `has_next` flag with an
    opaque `next_cursor`, or a `total_matches` count with offset keys stored
    on the records themselves. Unused signals stay None.
    """
    records: List[Dict[str, Any]]
    has_next: Optional[bool] = None
    next_cursor: Optional[str] = None
    total_matches: Optional[int] = None


class InstitutionClient(ABC):
    """
    Abstract base class for institution API clients.

    Subclasses describe how to build a page request, how to read a page out of
    the response envelope, and how to find the cursor for the next page. The
    draining loop in `fetch_all` is shared by all of them:

    1.  Start without a cursor.
    2.  Request a page carrying the account, the date window, page size and cursor.
    3.  Fail with `FetchError` on a non-success status. No retries.
    4.  Append the page's records in server order.
    5.  Stop on an empty page, a false "has next page" flag, a missing cursor, or
        once the server-reported total has been reached.

    `request` is a Playwright `APIRequestContext` (usually `BrowserContext.request`,
    so the logged-in browser's cookies ride along with every call).
    """

    display_name: str = ""
    classifier_class: Type = None
    # Where the user logs in, and the URL pattern that means they are in
    login_url: str = ""
    logged_in_url: str = ""

    def __init__(self, request, config: Config = settings):
        self.request = request
        self.config = config
        self.zone = config.zone()

    @classmethod
    def from_browser(cls, context, page, config: Config = settings) -> "InstitutionClient":
        """Build a client on top of a logged-in browser context."""
        return cls(context.request, config=config)

    @abstractmethod
    def get_institution_name(self) -> str:
        """Return unique institution identifier for directory naming."""
        pass

    @abstractmethod
    def list_accounts(self) -> List[AccountInfo]:
        """Fetch every account the logged-in user can see."""
        pass

    def describe_account(self, account_id: str) -> Optional[AccountInfo]:
        """
        Look up a single account that `list_accounts` did not return.

        Institutions without an account listing override this; the default
        knows nothing beyond the listing.
        """
        return None

    def fetch_transfer(self, transfer_id: str) -> FundsTransfer:
        """Fetch both ends of a funds transfer."""
        raise FetchError(f"{self.display_name} does not expose funds transfers")

    @abstractmethod
    def build_request(self, account: AccountInfo, start: Optional[date], end: datetime,
                      cursor: Optional[str]) -> PageRequest:
        pass

    @abstractmethod
    def parse_page(self, payload: Dict[str, Any]) -> Page:
        """Read records and continuation signals out of a response payload. Raise FetchError on a bad envelope."""
        pass

    def extract_cursor(self, page: Page) -> Optional[str]:
        return page.next_cursor

    def default_start_date(self, account: AccountInfo, end: datetime) -> Optional[date]:
        """Start date used when the caller asks for all history."""
        return None

    def fetch_all(self, account: AccountInfo, start: Optional[date] = None,
                  end: Optional[datetime] = None) -> List[RawTransaction]:
        """Drain the transaction listing of one account."""
        end = end or datetime.now(self.zone)
        if start is None:
            start = self.default_start_date(account, end)

        transactions: List[RawTransaction] = []
        cursor = None
        pages = 0
        while True:
            payload = self.send(self.build_request(account, start, end, cursor))
            page = self.parse_page(payload)
            pages += 1

            # An empty page ends the listing whatever the flags claim
            if not page.records:
                break
            transactions.extend(RawTransaction(r, account.id) for r in page.records)

            if page.has_next is False:
                break
            if page.total_matches is not None and len(transactions) >= page.total_matches:
                break
            cursor = self.extract_cursor(page)
            if not cursor:
                break

        logger.info("[%s] Fetched %d transactions for %s in %d page(s)",
                    self.display_name, len(transactions), account.nickname or account.id, pages)
        return transactions

    def send(self, page_request: PageRequest) -> Dict[str, Any]:
        """
        Issue one request and decode the JSON body.

        Numbers with a fractional part are decoded as Decimal so that amounts
        never pass through binary floating point.
        """
        headers = dict(page_request.headers)
        if page_request.method.upper() == "GET":
            response = self.request.get(page_request.url, headers=headers)
        else:
            headers.setdefault("content-type", "application/json")
            response = self.request.post(page_request.url, headers=headers, data=page_request.body)

        text = response.text()
        if response.status != 200:
            raise FetchError(
                f"{self.display_name} request to {page_request.url} failed with status {response.status}",
                status_code=response.status,
                response_body=text,
            )
        try:
            payload = json.loads(text, parse_float=Decimal)
        except ValueError:
            raise FetchError(
                f"{self.display_name} returned a non-JSON response",
                status_code=response.status,
                response_body=text,
            ) from None
        if not isinstance(payload, dict):
            raise FetchError(f"{self.display_name} returned an unexpected payload", response.status, text)
        return payload


class GraphQLClient(InstitutionClient):
    """
    Base for institutions whose private API is a single GraphQL endpoint.

    Responses carrying an `errors` array, or missing the expected `data`
    path, are reported as malformed envelopes.
    """

    graphql_url: str = ""

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def graphql_request(self, operation: str, query: str, variables: Dict[str, Any]) -> PageRequest:
        return PageRequest(
            url=self.graphql_url,
            method="POST",
            body={"operationName": operation, "query": query, "variables": variables},
            headers=self.auth_headers(),
        )

    def call(self, operation: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        return self.send(self.graphql_request(operation, query, variables))

    @staticmethod
    def unwrap(payload: Dict[str, Any], path: str) -> Any:
        """Return `data.<path>` or raise FetchError for an error or incomplete envelope."""
        if payload.get("errors"):
            messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e)
                                 for e in payload["errors"])
            raise FetchError(f"GraphQL error: {messages}", 200, json.dumps(payload, default=str))
        value: Any = payload.get("data")
        for part in path.split("."):
            if not isinstance(value, dict) or value.get(part) is None:
                raise FetchError(f"GraphQL response is missing data.{path}", 200, json.dumps(payload, default=str))
            value = value[part]
        return value
