import logging
import urllib.parse
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Dict, Any, Optional

from .base import InstitutionClient, Page, PageRequest
from .classifier import Fields, StatusClass, TransactionClassifier
from .config import Config, settings
from .errors import ClassificationSkip, FetchError
from .models import AccountInfo, RawTransaction, SkipReason
from .utils import TransactionNormalizer

logger = logging.getLogger(__name__)

ACCOUNT_LIST_PATH = "product-summary-presentation-service-v3/v3/accountListSummary"
SEARCH_PATH = "transaction-presentation-service-v3-dbb/v3/search/{service}/account/{account}"


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year - years, day=28)


class RBCDescription(str, Enum):
    """
    Shapes of RBC transaction descriptions.

    RBC records carry no type field; the description lines and merchant
    fields are the only hint at what a transaction is.
    """
    MERCHANT = "MERCHANT"
    E_TRANSFER = "E_TRANSFER"
    FEE = "FEE"
    DEPOSIT_INTEREST = "DEPOSIT_INTEREST"
    TWO_LINE = "TWO_LINE"


class RBCClassifier(TransactionClassifier):
    Discriminator = RBCDescription

    def build_rules(self):
        return {
            RBCDescription.MERCHANT: self._merchant,
            RBCDescription.E_TRANSFER: self._e_transfer,
            RBCDescription.FEE: self._fee,
            RBCDescription.DEPOSIT_INTEREST: self._deposit_interest,
            RBCDescription.TWO_LINE: self._two_line,
        }

    @staticmethod
    def description_lines(raw: RawTransaction) -> List[str]:
        desc = raw.get('description') or []
        if isinstance(desc, str):
            desc = [desc]
        return [TransactionNormalizer.clean_description(d) for d in desc]

    def discriminator(self, raw: RawTransaction) -> str:
        desc = self.description_lines(raw)
        if raw.get('merchantName'):
            return RBCDescription.MERCHANT.value
        if len(desc) == 3 and desc[0].startswith("e-Transfer"):
            return RBCDescription.E_TRANSFER.value
        if desc and "fee" in desc[0].lower():
            return RBCDescription.FEE.value
        if len(desc) == 1 and desc[0].lower().endswith("deposit interest"):
            return RBCDescription.DEPOSIT_INTEREST.value
        if len(desc) == 2:
            return RBCDescription.TWO_LINE.value
        return f"UNPARSED: {' '.join(desc)}"

    def _merchant(self, raw: RawTransaction) -> Fields:
        name = TransactionNormalizer.clean_description(raw.get('merchantName'))
        city = TransactionNormalizer.clean_description(raw.get('merchantCity'))
        return Fields(payee=name, notes=city or name)

    def _e_transfer(self, raw: RawTransaction) -> Fields:
        desc = self.description_lines(raw)
        return Fields(payee=desc[1], notes=f"{desc[0]} [{desc[2]}]")

    def _fee(self, raw: RawTransaction) -> Fields:
        desc = self.description_lines(raw)
        logger.info("%s transaction includes \"fee\" in its description: \"%s\"; setting payee to RBC",
                    raw.get('bookingDate'), " ".join(desc))
        return Fields(payee="RBC", notes=desc[0])

    def _deposit_interest(self, raw: RawTransaction) -> Fields:
        return Fields(payee="RBC", notes=self.description_lines(raw)[0])

    def _two_line(self, raw: RawTransaction) -> Fields:
        desc = self.description_lines(raw)
        return Fields(payee=desc[1], notes=desc[0])

    def status_of(self, raw: RawTransaction) -> Optional[StatusClass]:
        # The search endpoints only return posted transactions
        return StatusClass.SETTLED

    def signed_amount(self, raw: RawTransaction, fields: Fields) -> Decimal:
        indicator = raw.get('creditDebitIndicator')
        if indicator not in ("CREDIT", "DEBIT"):
            raise ClassificationSkip(SkipReason.MISSING_FIELD,
                                     f"transaction has unexpected creditDebitIndicator: {indicator}")
        amount = TransactionNormalizer.to_decimal(raw.get('amount'))
        return self.apply_direction(amount, indicator == "DEBIT")

    def transaction_date(self, raw: RawTransaction) -> date:
        booking_date = raw.get('bookingDate')
        if not booking_date:
            raise ValueError("bookingDate is missing")
        return TransactionNormalizer.local_date(booking_date, self.zone)


class RBCClient(InstitutionClient):
    """
    RBC (Royal Bank of Canada) API client.

    Uses the same internal endpoints as the online banking web app:
    1.  Account Discovery: `accountListSummary` lists credit cards and deposit accounts.
    2.  Transaction Search: `search/pda` (deposit) or `search/cc/posted` (credit card),
        paged with an offset key taken from the last transaction of each page.

    Calls are authorized by the browser session cookies plus the XSRF token
    echoed in the `X-XSRF-TOKEN` header.
    """

    display_name = "RBC"
    classifier_class = RBCClassifier
    login_url = "https://www.rbcroyalbank.com/ways-to-bank/online-banking.html"
    logged_in_url = "**/olb/index-en/#/**"

    def __init__(self, request, xsrf_token: Optional[str] = None, config: Config = settings):
        super().__init__(request, config)
        self.xsrf_token = xsrf_token
        self.base_url = config.rbc.base_url.rstrip("/")

    def get_institution_name(self) -> str:
        return "rbc"

    @classmethod
    def from_browser(cls, context, page, config: Config = settings) -> "RBCClient":
        """Build a client on top of a logged-in browser context."""
        cookies = context.cookies()
        xsrf_cookie = next((c for c in cookies if c["name"] == "XSRF-TOKEN"), None)
        xsrf_token = urllib.parse.unquote(xsrf_cookie["value"]) if xsrf_cookie else None
        if not xsrf_token:
            logger.warning("XSRF-TOKEN cookie not found; transaction searches will likely be rejected.")
        return cls(context.request, xsrf_token=xsrf_token, config=config)

    def headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.xsrf_token:
            headers["X-XSRF-TOKEN"] = self.xsrf_token
        return headers

    def list_accounts(self) -> List[AccountInfo]:
        """Fetch credit cards and deposit accounts from the account summary."""
        url = f"{self.base_url}/{ACCOUNT_LIST_PATH}"
        data = self.send(PageRequest(url=url, method="GET", headers=self.headers()))

        error_state = data.get('errorState') or {}
        if error_state.get('hasError') is True:
            raise FetchError(f"Failed to fetch account list: {error_state}", 200, str(data))

        accounts = []
        for section, kind in (('creditCards', 'CREDIT'), ('depositAccounts', 'DEBIT')):
            for acc in (data.get(section) or {}).get('accounts') or []:
                if not acc:
                    continue
                product = acc.get('product') or {}
                nickname = acc.get('nickName') or product.get('productName') or acc.get('accountNumber') or ''
                accounts.append(AccountInfo(acc, acc.get('accountId'), nickname, kind))
        logger.info("[RBC] Found %d accounts.", len(accounts))
        return accounts

    def default_start_date(self, account: AccountInfo, end: datetime) -> Optional[date]:
        if account.kind == "CREDIT":
            years = self.config.rbc.credit_history_years
        else:
            years = self.config.rbc.debit_history_years
        return years_before(end.date(), years)

    def build_request(self, account: AccountInfo, start: Optional[date], end: datetime,
                      cursor: Optional[str]) -> PageRequest:
        encrypted = account.get('encryptedAccountNumber')
        if not encrypted:
            raise FetchError(f"Account {account.id} has no encrypted account number")
        service = "cc/posted" if account.kind == "CREDIT" else "pda"
        url = f"{self.base_url}/" + SEARCH_PATH.format(
            service=service, account=urllib.parse.quote(encrypted, safe=""))

        body: Dict[str, Any] = {
            "transactionFromDate": (start or years_before(end.date(), self.config.rbc.debit_history_years)).isoformat(),
            "transactionToDate": end.date().isoformat(),
            "limit": self.config.rbc.page_size,
        }
        if cursor is not None:
            body["offsetKey"] = cursor
        return PageRequest(url=url, method="POST", body=body, headers=self.headers())

    def parse_page(self, payload: Dict[str, Any]) -> Page:
        if payload.get('hasError') is True:
            raise FetchError(
                f"Failed to fetch transactions: [{payload.get('errorLevel')}] {payload.get('errorDescription')}",
                200, str(payload))
        records = payload.get('transactionList')
        if records is None:
            records = []
        elif not isinstance(records, list):
            raise FetchError("transactionList is not a list", 200, str(payload))
        total = payload.get('totalMatches')
        return Page(records=records, total_matches=int(total) if total is not None else None)

    def extract_cursor(self, page: Page) -> Optional[str]:
        return page.records[-1].get('transactionOffsetKey')
