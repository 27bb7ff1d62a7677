import logging
import threading
from collections import Counter
from datetime import date, datetime
from typing import Callable, FrozenSet, Iterable, List, Optional, Set

from .config import Config, settings
from .encoder import CSVEncoder
from .errors import BusyError, FetchError
from .models import AccountInfo, CanonicalTransaction, ExportResult, ExportedFile, Skip
from .resolver import CrossReferenceResolver

logger = logging.getLogger(__name__)


class Exporter:
    """
    Runs one institution's export end to end.

    For each selected account: fetch every raw transaction, classify each one,
    and encode the resulting rows into one CSV file. Account metadata is
    resolved once per export. A fetch failure costs only the account it
    happened on; skipped records are collected rather than raised.

    An `Exporter` refuses to start a second export of an account set that it is
    still exporting (`BusyError`).
    """

    def __init__(self, client, config: Config = settings, encoder: Optional[CSVEncoder] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.client = client
        self.config = config
        self.encoder = encoder or CSVEncoder(escape_quotes=config.escape_quotes)
        self.clock = clock or (lambda: datetime.now(client.zone))
        self._lock = threading.Lock()
        self._in_flight: Set[FrozenSet[str]] = set()

    def export(self, account_ids: Iterable[str], start: Optional[date] = None) -> ExportResult:
        """
        Export the given accounts from `start` (None = all history the API offers) up to now.

        Returns an ExportResult keyed by account id.
        """
        ids = list(dict.fromkeys(account_ids))
        key = frozenset(ids)
        with self._lock:
            if key in self._in_flight:
                raise BusyError(key)
            self._in_flight.add(key)
        try:
            return self._export(ids, start)
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def _export(self, account_ids: List[str], start: Optional[date]) -> ExportResult:
        now = self.clock()
        resolver = CrossReferenceResolver(self.client)
        classifier = self.client.classifier_class(resolver, self.client.zone, self.config)
        result = ExportResult()

        resolver.load_accounts()

        for account_id in account_ids:
            try:
                account = resolver.account_info(account_id)
                if account is None:
                    raise FetchError(f"{self.client.display_name} has no account {account_id}")
                raw_transactions = self.client.fetch_all(account, start, now)
            except FetchError as e:
                logger.error("[%s] Export of account %s failed: %s", self.client.display_name, account_id, e)
                result.failures[account_id] = e
                continue

            records: List[CanonicalTransaction] = []
            for raw in raw_transactions:
                outcome = classifier.classify(raw)
                if isinstance(outcome, Skip):
                    result.skips.append(outcome)
                else:
                    records.append(outcome)

            result.files[account_id] = ExportedFile(
                name=self.file_name(account, start, now),
                data=self.encoder.encode(records),
            )
            logger.info("[%s] %s: %d rows exported", self.client.display_name, account.nickname, len(records))

        if result.skips:
            counts = Counter(s.reason.value for s in result.skips)
            logger.info("[%s] Skipped %d transactions: %s", self.client.display_name, len(result.skips),
                        ", ".join(f"{reason}={n}" for reason, n in sorted(counts.items())))
        return result

    def file_name(self, account: AccountInfo, start: Optional[date], now: datetime) -> str:
        time_frame = ""
        if start:
            time_frame += f"From {start.isoformat()} "
        time_frame += f"Up to {now.date().isoformat()}"
        return f"{self.client.display_name} {account.nickname} Transactions {time_frame}.csv"


RANGES = ("month", "3months", "all")


def range_start(range_name: str, today: date) -> Optional[date]:
    """
    First day covered by a named time window.

    `month` starts on the first of the current month, `3months` on the first of
    the month three months back, `all` has no start.
    """
    if range_name == "all":
        return None
    if range_name == "month":
        return today.replace(day=1)
    if range_name == "3months":
        month_index = today.year * 12 + (today.month - 1) - 3
        return date(month_index // 12, month_index % 12 + 1, 1)
    raise ValueError(f"Unknown range {range_name!r}; expected one of {', '.join(RANGES)}")
