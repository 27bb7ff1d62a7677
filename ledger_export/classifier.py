"""
Transaction classification.

Each institution defines a closed set of discriminators (an Enum) and a rule
for every member. A rule reads the raw record and returns the payee, notes,
category and, where the type implies it, the direction of the money. The
shared `classify` method applies the policy every institution follows:

- a discriminator outside the Enum is skipped, never fatal;
- a record that never affected the balance (pending, declined) is skipped
  before its rule runs, and so is a record whose status is not recognized;
- a rule that yields no payee is skipped;
- an amount or date that cannot be read or represented is skipped;
- a failed cross-reference lookup skips only that record;
- amounts end up negative for money leaving the account.

A classifier refuses to be constructed if its rule table does not cover
every discriminator.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Optional, Type, Union

from .config import Config, settings
from .errors import ClassificationSkip, ResolverError
from .models import CanonicalTransaction, RawTransaction, Skip, SkipReason

logger = logging.getLogger(__name__)


class StatusClass(str, Enum):
    SETTLED = "settled"
    PENDING = "pending"
    DECLINED = "declined"


@dataclass
class Fields:
    """
    What a rule extracts from a record.

    `outflow` is True/False when the transaction type fixes the direction of
    the money, None when the record's own sign field decides.
    """
    payee: Optional[str]
    notes: str = ""
    category: str = ""
    outflow: Optional[bool] = None


Rule = Callable[[RawTransaction], Fields]


class TransactionClassifier(ABC):
    """Maps raw records of one institution onto canonical transactions."""

    Discriminator: Type[Enum] = None
    STATUSES: Dict[Optional[str], StatusClass] = {}

    def __init__(self, resolver, zone: tzinfo, config: Config = settings):
        self.resolver = resolver
        self.zone = zone
        self.config = config
        self.rules: Dict[Enum, Rule] = self.build_rules()

        missing = [d.value for d in self.Discriminator if d not in self.rules]
        if missing:
            raise TypeError(f"{type(self).__name__} has no rule for: {', '.join(missing)}")

    @abstractmethod
    def build_rules(self) -> Dict[Enum, Rule]:
        pass

    @abstractmethod
    def discriminator(self, raw: RawTransaction) -> str:
        pass

    @abstractmethod
    def transaction_date(self, raw: RawTransaction) -> date:
        pass

    @abstractmethod
    def signed_amount(self, raw: RawTransaction, fields: Fields) -> Decimal:
        pass

    def status_of(self, raw: RawTransaction) -> Optional[StatusClass]:
        return self.STATUSES.get(raw.get('status'))

    def classify(self, raw: RawTransaction) -> Union[CanonicalTransaction, Skip]:
        key = self.discriminator(raw)
        try:
            kind = self.Discriminator(key)
        except ValueError:
            return self._skip(raw, SkipReason.UNKNOWN_TYPE, f"transaction [{key}] has unexpected type")

        try:
            # Status first: records that never hit the balance cost no lookups
            status = self.status_of(raw)
            if status is None:
                raise ClassificationSkip(SkipReason.UNKNOWN_STATUS,
                                         f"transaction [{key}] has unexpected status: {raw.get('status')}")
            if status is not StatusClass.SETTLED:
                raise ClassificationSkip(SkipReason.NOT_SETTLED, f"transaction [{key}] is {status.value}")

            fields = self.rules[kind](raw)
            if not fields.payee:
                raise ClassificationSkip(SkipReason.MISSING_FIELD, f"transaction [{key}]: could not figure out payee")

            try:
                return CanonicalTransaction(
                    date=self.transaction_date(raw),
                    payee=fields.payee,
                    notes=fields.notes,
                    category=fields.category,
                    amount=self.signed_amount(raw, fields),
                    account_id=raw.account_id,
                )
            except (TypeError, ValueError, ArithmeticError) as e:
                raise ClassificationSkip(SkipReason.MISSING_FIELD,
                                         f"transaction [{key}] has an unreadable amount or date: {e!r}") from e
        except ResolverError as e:
            return self._skip(raw, SkipReason.RESOLVER_FAILED, f"transaction [{key}]: {e}")
        except ClassificationSkip as e:
            return self._skip(raw, e.reason, e.message)

    def _skip(self, raw: RawTransaction, reason: SkipReason, message: str) -> Skip:
        if reason is SkipReason.NOT_SETTLED:
            logger.info("%s, skipping it.", message)
        else:
            logger.warning("%s, skipping it. Object: %s", message, json.dumps(raw.raw_data, default=str))
        return Skip(reason=reason, message=message, raw=raw)

    @staticmethod
    def apply_direction(magnitude: Decimal, outflow: bool) -> Decimal:
        magnitude = abs(magnitude)
        return -magnitude if outflow else magnitude
