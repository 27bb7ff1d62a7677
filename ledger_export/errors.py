"""
Exception types raised by the export pipeline.

- FetchError: an institution endpoint answered with a non-success status or
  an envelope we could not understand. Fatal for the account being fetched.
- ResolverError: a secondary lookup (transfer counterpart, account nickname)
  failed. The classifier downgrades it to a skip of the affected record.
- ClassificationSkip: raised inside a classification rule to drop one record.
- BusyError: an export for the same account set is still running.
"""

from typing import Optional


class ExportError(Exception):
    """Base exception for ledger-export errors."""
    pass


class FetchError(ExportError):
    """Institution API call failed."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ResolverError(FetchError):
    """Cross-reference lookup failed."""
    pass


class ClassificationSkip(ExportError):
    """A raw record cannot be turned into a canonical transaction."""
    def __init__(self, reason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class BusyError(ExportError):
    """Another export of the same accounts has not finished yet."""
    def __init__(self, account_ids, message: Optional[str] = None):
        super().__init__(message or f"Export already in progress for accounts: {sorted(account_ids)}")
        self.account_ids = frozenset(account_ids)
