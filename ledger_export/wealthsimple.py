import json
import logging
import re
import urllib.parse
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Dict, Any, Optional

from .base import GraphQLClient, Page, PageRequest
from .classifier import Fields, StatusClass, TransactionClassifier
from .config import Config, settings
from .errors import ClassificationSkip, FetchError
from .models import AccountInfo, BankDescriptor, FundsTransfer, RawTransaction, SkipReason
from .utils import TransactionNormalizer

logger = logging.getLogger(__name__)

ACTIVITY_FRAGMENT = """
  fragment Activity on ActivityFeedItem {
    accountId
    externalCanonicalId
    canonicalId
    amount
    amountSign
    currency
    occurredAt
    type
    subType
    status
    eTransferEmail
    eTransferName
    assetSymbol
    assetQuantity
    aftOriginatorName
    aftTransactionCategory
    aftTransactionType
    opposingAccountId
    spendMerchant
    billPayCompanyName
    billPayPayeeNickname
    p2pHandle
    p2pMessage
    institutionName
    redactedExternalAccountNumber
    counterPartyName
    fxRate
    fees
    reference
  }
"""

FETCH_ACTIVITY_LIST_QUERY = """
  query FetchActivityList(
    $first: Int!
    $cursor: Cursor
    $accountIds: [String!]
    $types: [ActivityFeedItemType!]
    $subTypes: [ActivityFeedItemSubType!]
    $endDate: Datetime
    $securityIds: [String]
    $startDate: Datetime
    $legacyStatuses: [String]
  ) {
    activities(
      first: $first
      after: $cursor
      accountIds: $accountIds
      types: $types
      subTypes: $subTypes
      endDate: $endDate
      securityIds: $securityIds
      startDate: $startDate
      legacyStatuses: $legacyStatuses
    ) {
      edges {
        node {
          ...Activity
        }
      }
      pageInfo {
        hasNextPage
        endCursor
      }
    }
  }
""" + ACTIVITY_FRAGMENT

FETCH_ACCOUNTS_QUERY = """
  query FetchAllAccountFinancials(
    $identityId: ID!
    $pageSize: Int = 25
    $cursor: String
  ) {
    identity(id: $identityId) {
      id
      accounts(filter: {}, first: $pageSize, after: $cursor) {
        pageInfo {
          hasNextPage
          endCursor
        }
        edges {
          cursor
          node {
            ...Account
          }
        }
      }
    }
  }

  fragment Account on Account {
    id
    unifiedAccountType
    nickname
  }
"""

FETCH_FUNDS_TRANSFER_QUERY = """
  query FetchFundsTransfer($id: ID!) {
    fundsTransfer: funds_transfer(id: $id, include_cancelled: true) {
      id
      status
      source {
        ...BankAccountOwner
      }
      destination {
        ...BankAccountOwner
      }
    }
  }

  fragment BankAccountOwner on BankAccountOwner {
    bankAccount: bank_account {
      id
      institutionName: institution_name
      nickname
      ...CaBankAccount
      ...UsBankAccount
    }
  }

  fragment CaBankAccount on CaBankAccount {
    accountName: account_name
    accountNumber: account_number
  }

  fragment UsBankAccount on UsBankAccount {
    accountName: account_name
    accountNumber: account_number
  }
"""

SELF_DIRECTED_RE = re.compile(r"^SELF_DIRECTED_(?P<name>.*)")
SELF_DIRECTED_NAMES = {
    "CRYPTO": "Crypto",
    "NON_REGISTERED": "Non-registered",
}


def account_nickname(node: Dict[str, Any]) -> str:
    """Nickname as shown in the app, derived from the account type when the user never set one."""
    nickname = node.get('nickname')
    if nickname:
        return nickname
    unified_type = node.get('unifiedAccountType') or ""
    if unified_type == "CASH":
        return "Cash"
    match = SELF_DIRECTED_RE.match(unified_type)
    if match:
        name = match.group("name")
        return SELF_DIRECTED_NAMES.get(name, name)
    return "Unknown"


def bank_descriptor(owner: Optional[Dict[str, Any]]) -> BankDescriptor:
    bank = (owner or {}).get('bankAccount') or {}
    return BankDescriptor(
        institution_name=bank.get('institutionName') or "",
        nickname=bank.get('nickname') or "",
        account_name=bank.get('accountName') or "",
        account_number=bank.get('accountNumber') or "",
    )


class WealthsimpleActivity(str, Enum):
    """Activity `type`, or `type/subType` when a sub-type is present."""
    INTEREST = "INTEREST"
    E_TRANSFER_IN = "DEPOSIT/E_TRANSFER"
    E_TRANSFER_OUT = "WITHDRAWAL/E_TRANSFER"
    DIVIDEND = "DIVIDEND/DIY_DIVIDEND"
    DIVIDEND_REINVESTMENT = "DIY_BUY/DIVIDEND_REINVESTMENT"
    MARKET_BUY = "DIY_BUY/MARKET_ORDER"
    AFT_IN = "DEPOSIT/AFT"
    AFT_OUT = "WITHDRAWAL/AFT"
    EFT_IN = "DEPOSIT/EFT"
    EFT_OUT = "WITHDRAWAL/EFT"
    INTERNAL_TRANSFER_OUT = "INTERNAL_TRANSFER/SOURCE"
    INTERNAL_TRANSFER_IN = "INTERNAL_TRANSFER/DESTINATION"
    PREPAID_SPEND = "SPEND/PREPAID"
    BILL_PAY = "WITHDRAWAL/BILL_PAY"


class WealthsimpleClassifier(TransactionClassifier):
    Discriminator = WealthsimpleActivity

    STATUSES = {
        # FetchActivityList omits the status on most settled items
        None: StatusClass.SETTLED,
        "completed": StatusClass.SETTLED,
        "posted": StatusClass.SETTLED,
        "settled": StatusClass.SETTLED,
        "filled": StatusClass.SETTLED,
        "succeeded": StatusClass.SETTLED,
        "pending": StatusClass.PENDING,
        "in_progress": StatusClass.PENDING,
        "submitted": StatusClass.PENDING,
        "authorized": StatusClass.PENDING,
        "cancelled": StatusClass.DECLINED,
        "canceled": StatusClass.DECLINED,
        "rejected": StatusClass.DECLINED,
        "failed": StatusClass.DECLINED,
        "expired": StatusClass.DECLINED,
        "declined": StatusClass.DECLINED,
    }

    def build_rules(self):
        return {
            WealthsimpleActivity.INTEREST: self._interest,
            WealthsimpleActivity.E_TRANSFER_IN: self._e_transfer_in,
            WealthsimpleActivity.E_TRANSFER_OUT: self._e_transfer_out,
            WealthsimpleActivity.DIVIDEND: self._dividend,
            WealthsimpleActivity.DIVIDEND_REINVESTMENT: self._dividend_reinvestment,
            WealthsimpleActivity.MARKET_BUY: self._market_buy,
            WealthsimpleActivity.AFT_IN: self._aft_in,
            WealthsimpleActivity.AFT_OUT: self._aft_out,
            WealthsimpleActivity.EFT_IN: self._eft_in,
            WealthsimpleActivity.EFT_OUT: self._eft_out,
            WealthsimpleActivity.INTERNAL_TRANSFER_OUT: self._internal_transfer_out,
            WealthsimpleActivity.INTERNAL_TRANSFER_IN: self._internal_transfer_in,
            WealthsimpleActivity.PREPAID_SPEND: self._prepaid_spend,
            WealthsimpleActivity.BILL_PAY: self._bill_pay,
        }

    def discriminator(self, raw: RawTransaction) -> str:
        kind = raw.get('type') or ""
        if raw.get('subType'):
            kind = f"{kind}/{raw.get('subType')}"
        return kind

    def _interest(self, raw):
        return Fields(payee="Wealthsimple", notes="Interest")

    def _e_transfer_in(self, raw):
        return Fields(payee=raw.get('eTransferEmail'),
                      notes=f"INTERAC e-Transfer from {raw.get('eTransferName')}")

    def _e_transfer_out(self, raw):
        return Fields(payee=raw.get('eTransferEmail'),
                      notes=f"INTERAC e-Transfer to {raw.get('eTransferName')}")

    def _dividend(self, raw):
        symbol = raw.get('assetSymbol')
        return Fields(payee=symbol, notes=f"Received dividend from {symbol}")

    def _dividend_reinvestment(self, raw):
        symbol = raw.get('assetSymbol')
        return Fields(payee=symbol, notes=f"Reinvested dividend into {raw.get('assetQuantity')} {symbol}")

    def _market_buy(self, raw):
        symbol = raw.get('assetSymbol')
        return Fields(payee=symbol, notes=f"Bought {raw.get('assetQuantity')} {symbol}")

    def _aft_in(self, raw):
        originator = raw.get('aftOriginatorName')
        return Fields(payee=originator, notes=f"Direct deposit from {originator}",
                      category=raw.get('aftTransactionCategory') or "")

    def _aft_out(self, raw):
        originator = raw.get('aftOriginatorName')
        return Fields(payee=originator, notes=f"Direct deposit to {originator}",
                      category=raw.get('aftTransactionCategory') or "")

    def _eft_in(self, raw):
        bank = self.resolver.resolve_transfer_counterpart(raw.get('externalCanonicalId'), outgoing=False)
        payee = bank.describe()
        return Fields(payee=payee, notes=f"Direct deposit from {payee}")

    def _eft_out(self, raw):
        bank = self.resolver.resolve_transfer_counterpart(raw.get('externalCanonicalId'), outgoing=True)
        payee = bank.describe()
        return Fields(payee=payee, notes=f"Direct deposit to {payee}")

    def _internal_transfer_out(self, raw):
        payee = self.resolver.resolve_account_nickname(raw.get('opposingAccountId'))
        return Fields(payee=payee, notes=f"Internal transfer to {payee}")

    def _internal_transfer_in(self, raw):
        payee = self.resolver.resolve_account_nickname(raw.get('opposingAccountId'))
        return Fields(payee=payee, notes=f"Internal transfer from {payee}")

    def _prepaid_spend(self, raw):
        payee = raw.get('spendMerchant')
        return Fields(payee=payee, notes=f"Prepaid to {payee}")

    def _bill_pay(self, raw):
        return Fields(payee=raw.get('billPayPayeeNickname'),
                      notes=f"Bill payment to {raw.get('billPayCompanyName')}",
                      category="bill")

    def status_of(self, raw: RawTransaction) -> Optional[StatusClass]:
        status = raw.get('status')
        return self.STATUSES.get(status.lower() if isinstance(status, str) else status)

    def signed_amount(self, raw: RawTransaction, fields: Fields) -> Decimal:
        sign = raw.get('amountSign')
        if sign not in ("negative", "positive"):
            raise ClassificationSkip(SkipReason.MISSING_FIELD, f"transaction has unexpected amountSign: {sign}")
        amount = TransactionNormalizer.to_decimal(raw.get('amount'))
        return self.apply_direction(amount, sign == "negative")

    def transaction_date(self, raw: RawTransaction) -> date:
        occurred_at = raw.get('occurredAt')
        if not occurred_at:
            raise ValueError("occurredAt is missing")
        return TransactionNormalizer.local_date(occurred_at, self.zone)


class WealthsimpleClient(GraphQLClient):
    """
    Wealthsimple GraphQL client.

    Workflow:
    1.  Session Hijacking: the OAuth access token and identity id are read from
        the `_oauth2_access_v2` cookie of the logged-in browser.
    2.  Account Discovery: `FetchAllAccountFinancials` lists every account with its nickname.
    3.  Activities: `FetchActivityList` drains an account's activity feed page by page.
    4.  Transfers: `FetchFundsTransfer` resolves the external bank behind EFT deposits
        and withdrawals.
    """

    display_name = "Wealthsimple"
    classifier_class = WealthsimpleClassifier
    login_url = "https://my.wealthsimple.com/app/login"
    logged_in_url = "**/app/home**"

    def __init__(self, request, access_token: Optional[str] = None, identity_id: Optional[str] = None,
                 config: Config = settings):
        super().__init__(request, config)
        self.access_token = access_token
        self.identity_id = identity_id
        self.graphql_url = config.wealthsimple.graphql_url

    def get_institution_name(self) -> str:
        return "wealthsimple"

    @classmethod
    def from_browser(cls, context, page, config: Config = settings) -> "WealthsimpleClient":
        """Extract the OAuth token from the browser's cookies."""
        cookies = context.cookies()
        oauth_cookie = next((c for c in cookies if c["name"] == "_oauth2_access_v2"), None)
        if not oauth_cookie:
            raise FetchError("Could not find '_oauth2_access_v2' cookie. Are you logged in?")

        token_info = json.loads(urllib.parse.unquote(oauth_cookie["value"]))
        return cls(
            context.request,
            access_token=token_info.get("access_token"),
            identity_id=token_info.get("identity_canonical_id"),
            config=config,
        )

    def auth_headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.access_token:
            headers["authorization"] = f"Bearer {self.access_token}"
        return headers

    def list_accounts(self) -> List[AccountInfo]:
        if not self.identity_id:
            raise FetchError("No identity id available; cannot list Wealthsimple accounts")

        accounts = []
        cursor = None
        while True:
            payload = self.call("FetchAllAccountFinancials", FETCH_ACCOUNTS_QUERY, {
                "identityId": self.identity_id,
                "pageSize": self.config.wealthsimple.accounts_page_size,
                "cursor": cursor,
            })
            listing = self.unwrap(payload, "identity.accounts")
            edges = listing.get('edges') or []
            if not edges:
                break
            for edge in edges:
                node = edge.get('node') or {}
                accounts.append(AccountInfo(node, node.get('id'), account_nickname(node),
                                            node.get('unifiedAccountType')))
            page_info = listing.get('pageInfo') or {}
            cursor = page_info.get('endCursor')
            if not page_info.get('hasNextPage') or not cursor:
                break

        logger.info("[Wealthsimple] Found %d accounts.", len(accounts))
        return accounts

    def fetch_transfer(self, transfer_id: str) -> FundsTransfer:
        payload = self.call("FetchFundsTransfer", FETCH_FUNDS_TRANSFER_QUERY, {"id": transfer_id})
        info = self.unwrap(payload, "fundsTransfer")
        return FundsTransfer(
            id=info.get('id') or transfer_id,
            status=info.get('status') or "",
            source=bank_descriptor(info.get('source')),
            destination=bank_descriptor(info.get('destination')),
        )

    def build_request(self, account: AccountInfo, start: Optional[date], end: datetime,
                      cursor: Optional[str]) -> PageRequest:
        start_at = None
        if start is not None:
            start_at = TransactionNormalizer.start_of_day(start, self.zone).astimezone(timezone.utc).isoformat()
        return self.graphql_request("FetchActivityList", FETCH_ACTIVITY_LIST_QUERY, {
            "first": self.config.wealthsimple.page_size,
            "cursor": cursor,
            "accountIds": [account.id],
            "startDate": start_at,
            "endDate": end.astimezone(timezone.utc).isoformat(),
        })

    def parse_page(self, payload: Dict[str, Any]) -> Page:
        activities = self.unwrap(payload, "activities")
        edges = activities.get('edges') or []
        page_info = activities.get('pageInfo') or {}
        return Page(
            records=[e.get('node') for e in edges if e.get('node')],
            has_next=bool(page_info.get('hasNextPage')),
            next_cursor=page_info.get('endCursor'),
        )
