from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, List, Optional

"""
Data Models for Ledger Export

This module defines the core data structures used throughout the application.

Key Classes:
- BaseModel: Wraps an institution's raw JSON object and gives keyed/dotted access.
- RawTransaction: A transaction record exactly as the institution returned it.
- AccountInfo: An account id and the nickname used for transfers and file names.
- CanonicalTransaction: The institution-independent ledger row.
- Skip: A record left out of the export, kept for diagnosis.
- ExportResult: Everything one export produced.
"""

CENT = Decimal("0.01")


class BaseModel:
    """
    Wraps a raw data dictionary as returned by an institution's API.

    Values are read either by key or by dotted path, so that nested
    objects (`merchantDetails.description`) read the same way as flat fields.
    """
    def __init__(self, raw_data: Dict[str, Any]):
        self.raw_data = raw_data if raw_data is not None else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw_data.get(key, default)

    def get_path(self, path: str, default: Any = None) -> Any:
        """Follow a dotted path through nested dictionaries; missing or null links yield `default`."""
        value: Any = self.raw_data
        for part in path.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(part)
            if value is None:
                return default
        return value


class RawTransaction(BaseModel):
    """
    A transaction as fetched, tagged with the account it was fetched for.

    Treated as read-only once fetched; classification never mutates it.
    """
    def __init__(self, raw_data: Dict[str, Any], account_id: str):
        super().__init__(raw_data)
        self.account_id = account_id

    def __repr__(self) -> str:
        return f"RawTransaction(account_id={self.account_id!r}, raw_data={self.raw_data!r})"


class AccountInfo(BaseModel):
    """
    An account known to an institution.

    `kind` is institution specific (RBC `CREDIT`/`DEBIT`, Neo `credit`/`savings`,
    Wealthsimple's unified account type) and selects the endpoint used to
    fetch its transactions.
    """
    def __init__(self, raw_data: Dict[str, Any], account_id: str, nickname: str, kind: Optional[str] = None):
        super().__init__(raw_data)
        self.id = account_id
        self.nickname = nickname
        self.kind = kind

    def __repr__(self) -> str:
        return f"AccountInfo(id={self.id!r}, nickname={self.nickname!r}, kind={self.kind!r})"


@dataclass(frozen=True)
class BankDescriptor:
    """External bank account on the other end of a funds transfer."""
    institution_name: str = ""
    nickname: str = ""
    account_name: str = ""
    account_number: str = ""

    def describe(self) -> str:
        parts = [self.institution_name, self.nickname or self.account_name, self.account_number]
        return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class FundsTransfer:
    id: str
    status: str
    source: BankDescriptor
    destination: BankDescriptor


@dataclass(frozen=True)
class CanonicalTransaction:
    """
    A ledger row ready for import into a budgeting tool.

    Amount follows the "negative = money leaving the account" convention and
    always carries exactly two fractional digits.
    """
    CSV_FIELDS = ['Date', 'Payee', 'Notes', 'Category', 'Amount']

    date: date
    payee: str
    notes: str
    category: str
    amount: Decimal
    account_id: str = ""

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            raise TypeError(f"amount must be a Decimal, got {type(self.amount).__name__}")
        amount = self.amount.quantize(CENT)
        if amount.is_zero():
            # No "-0.00" rows
            amount = abs(amount)
        object.__setattr__(self, 'amount', amount)
        object.__setattr__(self, 'category', self.category or "")
        object.__setattr__(self, 'notes', self.notes or "")

    def to_csv_row(self) -> List[str]:
        return [
            self.date.isoformat(),
            self.payee,
            self.notes,
            self.category,
            f"{self.amount:.2f}",
        ]


class SkipReason(str, Enum):
    UNKNOWN_TYPE = "unknown_type"
    MISSING_FIELD = "missing_field"
    NOT_SETTLED = "not_settled"
    UNKNOWN_STATUS = "unknown_status"
    RESOLVER_FAILED = "resolver_failed"


@dataclass
class Skip:
    """A record omitted from the export together with why."""
    reason: SkipReason
    message: str
    raw: RawTransaction

    @property
    def account_id(self) -> str:
        return self.raw.account_id


@dataclass
class ExportedFile:
    name: str
    data: bytes
    mime_type: str = "text/csv;charset=utf-8"


@dataclass
class ExportResult:
    """
    Output of one export run.

    `files` has one entry per selected account whose transactions were fetched;
    `failures` holds the error for every account that could not be fetched.
    """
    files: Dict[str, ExportedFile] = field(default_factory=dict)
    skips: List[Skip] = field(default_factory=list)
    failures: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures
