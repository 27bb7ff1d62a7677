import logging
from typing import Dict, Optional

from .errors import FetchError, ResolverError
from .models import AccountInfo, BankDescriptor, FundsTransfer

logger = logging.getLogger(__name__)


class CrossReferenceResolver:
    """
    Lazily performs the secondary lookups a record may need.

    The account listing is fetched at most once and funds transfers at most
    once per id. A resolver lives for a single export, so nothing leaks from
    one export into the next.
    """

    def __init__(self, client):
        self.client = client
        self._accounts: Dict[str, AccountInfo] = {}
        self._listed = False
        self._transfers: Dict[str, FundsTransfer] = {}

    def load_accounts(self) -> Dict[str, AccountInfo]:
        """Fetch the account listing once."""
        if not self._listed:
            try:
                accounts = self.client.list_accounts()
            except FetchError as e:
                raise ResolverError(f"Could not list accounts: {e}", e.status_code, e.response_body) from e
            self._listed = True
            for account in accounts:
                self._accounts[account.id] = account
        return self._accounts

    def account_info(self, account_id: str) -> Optional[AccountInfo]:
        """Return the account with this id, or None if the institution does not know it."""
        accounts = self.load_accounts()
        if account_id in accounts:
            return accounts[account_id]

        try:
            account = self.client.describe_account(account_id)
        except FetchError as e:
            raise ResolverError(f"Could not look up account {account_id}: {e}", e.status_code, e.response_body) from e
        if account is not None:
            self._accounts[account_id] = account
        return account

    def resolve_account_nickname(self, account_id: str) -> str:
        """Nickname of an account, empty when the account is unknown."""
        if not account_id:
            return ""
        account = self.account_info(account_id)
        return account.nickname if account else ""

    def resolve_transfer(self, transfer_id: str) -> FundsTransfer:
        if transfer_id not in self._transfers:
            try:
                self._transfers[transfer_id] = self.client.fetch_transfer(transfer_id)
            except FetchError as e:
                raise ResolverError(f"Could not fetch transfer {transfer_id}: {e}", e.status_code, e.response_body) from e
        return self._transfers[transfer_id]

    def resolve_transfer_counterpart(self, transfer_id: str, outgoing: bool) -> BankDescriptor:
        """
        The external bank account on the other end of a transfer.

        Money leaving the account went to the transfer's destination;
        money arriving came from its source.
        """
        if not transfer_id:
            raise ResolverError("Transfer id is missing")
        transfer = self.resolve_transfer(transfer_id)
        return transfer.destination if outgoing else transfer.source
