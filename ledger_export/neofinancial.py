import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Dict, Any, Optional

from .base import GraphQLClient, Page, PageRequest
from .classifier import Fields, StatusClass, TransactionClassifier
from .config import Config, settings
from .errors import FetchError
from .models import AccountInfo, RawTransaction
from .utils import TransactionNormalizer

logger = logging.getLogger(__name__)

CREDIT_TRANSACTIONS_QUERY = """
    query TransactionsList($input: CursorQueryInput!, $creditAccountId: ObjectID!) {
      user {
        creditAccount(id: $creditAccountId) {
          creditTransactionList(input: $input) {
            cursor
            hasNextPage
            results {
              description
              currency
              type
              status
              category
              merchantDetails {
                description
                category
              }
              sourceInformation {
                friendlyName
              }
              amountCents
              authorizationProcessedAt
            }
          }
        }
      }
    }
"""

SAVINGS_TRANSACTIONS_QUERY = """
    fragment SavingsTransactionPurchaseFragment on SavingsTransactionPurchase {
      merchantDetails {
        description
        category
      }
    }

    fragment SavingsTransactionFundsTransferFragment on SavingsTransactionFundsTransfer {
      etransferContactName: transferContactName
    }

    fragment SavingsTransactionETransferFragment on SavingsTransactionETransfer {
      transferContactName
    }

    fragment SavingsTransactionBillPaymentFragment on SavingsTransactionBillPayment {
      billPayVendorName
    }

    fragment SavingsTransactionFeeFragment on SavingsTransactionFee {
      parentTransactionId
    }

    query FilteredSortedSavingsTransactionList($input: CursorQueryInput!, $savingsAccountId: ObjectID!) {
      user {
        savingsAccount(id: $savingsAccountId) {
          savingsTransactionList(input: $input) {
            cursor
            hasNextPage
            results {
              id
              amountCents
              authorizationProcessedAt
              category
              currency
              description
              type
              status
              completedAt
              ...SavingsTransactionPurchaseFragment
              ...SavingsTransactionFundsTransferFragment
              ...SavingsTransactionETransferFragment
              ...SavingsTransactionBillPaymentFragment
              ...SavingsTransactionFeeFragment
            }
          }
        }
      }
    }
"""

ACCOUNT_PERSONALIZATION_QUERY = """
    query SavingsAccountPersonalization($savingsAccountId: ObjectID!) {
      user {
        savingsAccount(id: $savingsAccountId) {
          accountPersonalization {
            customizedName
          }
        }
      }
    }
"""

ACCOUNT_KINDS = ("credit", "savings")


class NeoCategory(str, Enum):
    PURCHASE = "PURCHASE"
    NEO_STORE_PURCHASE = "NEO_STORE_PURCHASE"
    REWARDS_ACCOUNT_CASH_OUT = "REWARDS_ACCOUNT_CASH_OUT"
    REFUND = "REFUND"
    PAYMENT = "PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    INTEREST = "INTEREST"
    DEPOSIT = "DEPOSIT"


class NeoClassifier(TransactionClassifier):
    """
    Neo transactions are keyed by `category`.

    Amounts arrive as unsigned cents; the category decides whether money left
    the account (purchases, withdrawals) or arrived (everything else).
    """

    Discriminator = NeoCategory

    STATUSES = {
        "CONFIRMED": StatusClass.SETTLED,
        "AUTHORIZED": StatusClass.PENDING,
        "DECLINED": StatusClass.DECLINED,
    }

    def __init__(self, resolver, zone, config: Config = settings):
        super().__init__(resolver, zone, config)
        self.statuses = dict(self.STATUSES)
        if config.neo.include_authorized:
            self.statuses["AUTHORIZED"] = StatusClass.SETTLED

    def build_rules(self):
        return {
            NeoCategory.PURCHASE: self._purchase,
            NeoCategory.NEO_STORE_PURCHASE: self._neo_store_purchase,
            NeoCategory.REWARDS_ACCOUNT_CASH_OUT: self._rewards_cash_out,
            NeoCategory.REFUND: self._refund,
            NeoCategory.PAYMENT: self._payment,
            NeoCategory.WITHDRAWAL: self._withdrawal,
            NeoCategory.TRANSFER: self._transfer,
            NeoCategory.INTEREST: self._interest,
            NeoCategory.DEPOSIT: self._deposit,
        }

    def discriminator(self, raw: RawTransaction) -> str:
        return raw.get('category') or ""

    @staticmethod
    def _notes(raw: RawTransaction) -> str:
        return raw.get('description') or ""

    def _merchant_fields(self, raw: RawTransaction, outflow: bool) -> Fields:
        return Fields(
            payee=raw.get_path('merchantDetails.description'),
            notes=self._notes(raw),
            category=raw.get_path('merchantDetails.category', ""),
            outflow=outflow,
        )

    def _purchase(self, raw):
        return self._merchant_fields(raw, outflow=True)

    def _neo_store_purchase(self, raw):
        return Fields(payee="Neo Financial", notes=self._notes(raw), category="PURCHASE", outflow=True)

    def _rewards_cash_out(self, raw):
        return Fields(payee="Neo Financial", notes=self._notes(raw), category="PAYMENT", outflow=False)

    def _refund(self, raw):
        return self._merchant_fields(raw, outflow=False)

    def _payment(self, raw):
        return Fields(payee=raw.get_path('sourceInformation.friendlyName'), notes=self._notes(raw),
                      category=raw.get('category'), outflow=False)

    def _withdrawal(self, raw):
        if "Payment to Credit" in self._notes(raw):
            return Fields(payee="Neo Credit", notes=self._notes(raw), category=raw.get('category'), outflow=True)
        if raw.get('merchantDetails'):
            return self._merchant_fields(raw, outflow=True)
        return Fields(payee=raw.get('transferContactName'), notes=self._notes(raw),
                      category=raw.get('category'), outflow=True)

    def _transfer(self, raw):
        payee = raw.get('transferContactName') or raw.get('etransferContactName')
        return Fields(payee=payee, notes=self._notes(raw), category=raw.get('category'), outflow=False)

    def _interest(self, raw):
        return Fields(payee="Neo Financial", notes=self._notes(raw), category="PAYMENT", outflow=False)

    def _deposit(self, raw):
        if "Reward Cashed Out" in self._notes(raw):
            return Fields(payee="Neo Financial", notes=self._notes(raw), category="PAYMENT", outflow=False)
        return Fields(payee=None, notes=self._notes(raw), category=raw.get('category'), outflow=False)

    def status_of(self, raw: RawTransaction) -> Optional[StatusClass]:
        return self.statuses.get(raw.get('status'))

    def signed_amount(self, raw: RawTransaction, fields: Fields) -> Decimal:
        cents = raw.get('amountCents')
        magnitude = Decimal(TransactionNormalizer.minor_units_to_decimal(cents))
        return self.apply_direction(magnitude, fields.outflow)

    def transaction_date(self, raw: RawTransaction) -> date:
        processed_at = raw.get('authorizationProcessedAt')
        if not processed_at:
            raise ValueError("authorizationProcessedAt is missing")
        return TransactionNormalizer.local_date(processed_at, self.zone)


class NeoClient(GraphQLClient):
    """
    Neo Financial GraphQL client.

    Neo has no account listing in its member API, so accounts are addressed
    the way the member portal URL does: `credit/<id>` or `savings/<id>`.
    Requests are authorized by the browser session cookies alone.
    """

    display_name = "Neo"
    classifier_class = NeoClassifier
    login_url = "https://member.neofinancial.com/"
    logged_in_url = "**/accounts/**"

    def __init__(self, request, config: Config = settings):
        super().__init__(request, config)
        self.graphql_url = config.neo.graphql_url

    def get_institution_name(self) -> str:
        return "neo"

    @staticmethod
    def split_account_id(account_id: str):
        """Return (kind, object id) for a `credit/<id>` or `savings/<id>` account id."""
        kind, _, object_id = (account_id or "").partition("/")
        if kind not in ACCOUNT_KINDS or not object_id:
            return None, None
        return kind, object_id

    def list_accounts(self) -> List[AccountInfo]:
        return []

    def describe_account(self, account_id: str) -> Optional[AccountInfo]:
        kind, object_id = self.split_account_id(account_id)
        if kind is None:
            logger.warning("Neo account ids look like 'credit/<id>' or 'savings/<id>', got %r", account_id)
            return None
        if kind == "credit":
            # Credit accounts cannot be renamed
            return AccountInfo({'id': object_id}, account_id, "Credit", kind)

        payload = self.call("SavingsAccountPersonalization", ACCOUNT_PERSONALIZATION_QUERY,
                            {"savingsAccountId": object_id})
        savings = self.unwrap(payload, "user.savingsAccount")
        name = (savings.get('accountPersonalization') or {}).get('customizedName')
        return AccountInfo({'id': object_id}, account_id, name or "Savings", kind)

    def build_request(self, account: AccountInfo, start: Optional[date], end: datetime,
                      cursor: Optional[str]) -> PageRequest:
        kind, object_id = self.split_account_id(account.id)
        if kind is None:
            raise FetchError(f"Unsupported Neo account id: {account.id}")

        filters = []
        if start is not None:
            start_at = TransactionNormalizer.start_of_day(start, self.zone).astimezone(timezone.utc)
            filters.append({
                "field": "authorizationProcessedAt",
                "operator": "GTE",
                "type": "DATE",
                "value": start_at.isoformat(),
            })
        listing_input = {
            "cursor": cursor,
            "filter": filters,
            "limit": self.config.neo.page_size,
            "sort": {"direction": "DESC", "field": "authorizationProcessedAt"},
        }
        if kind == "credit":
            return self.graphql_request("TransactionsList", CREDIT_TRANSACTIONS_QUERY,
                                        {"creditAccountId": object_id, "input": listing_input})
        return self.graphql_request("FilteredSortedSavingsTransactionList", SAVINGS_TRANSACTIONS_QUERY,
                                    {"savingsAccountId": object_id, "input": listing_input})

    def parse_page(self, payload: Dict[str, Any]) -> Page:
        user = self.unwrap(payload, "user")
        if user.get('creditAccount') is not None:
            listing = self.unwrap(payload, "user.creditAccount.creditTransactionList")
        else:
            listing = self.unwrap(payload, "user.savingsAccount.savingsTransactionList")
        return Page(
            records=listing.get('results') or [],
            has_next=bool(listing.get('hasNextPage')),
            next_cursor=listing.get('cursor'),
        )
