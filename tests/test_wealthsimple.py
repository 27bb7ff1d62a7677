import json
import urllib.parse
from datetime import date
from decimal import Decimal

import pytest

from ledger_export.errors import FetchError
from ledger_export.models import BankDescriptor, CanonicalTransaction, FundsTransfer, RawTransaction, Skip, SkipReason
from ledger_export.resolver import CrossReferenceResolver
from ledger_export.wealthsimple import WealthsimpleClassifier, WealthsimpleClient, account_nickname
from tests.helpers.fake_api import FakeRequestContext, FakeResponse, StubResolver

TRANSFER = FundsTransfer(
    id="funds_transfer-1",
    status="accepted",
    source=BankDescriptor(institution_name="TD", account_name="Chequing", account_number="****1234"),
    destination=BankDescriptor(institution_name="Tangerine", nickname="Savings", account_number="****9876"),
)


@pytest.fixture
def resolver():
    return StubResolver(nicknames={"tfsa-1": "TFSA"}, transfers={"funds_transfer-1": TRANSFER})


@pytest.fixture
def classifier(resolver, zone, config):
    return WealthsimpleClassifier(resolver, zone, config)


def activity(type_, sub_type=None, **fields):
    record = {
        "accountId": "ca-cash-1",
        "type": type_,
        "subType": sub_type,
        "amount": "10.00",
        "amountSign": "positive",
        "occurredAt": "2024-03-05T15:00:00.000000+00:00",
        "status": None,
    }
    record.update(fields)
    return RawTransaction(record, "ca-cash-1")


@pytest.mark.parametrize("record, payee, notes, category, amount", [
    (activity("INTEREST"), "Wealthsimple", "Interest", "", "10.00"),
    (
        activity("DEPOSIT", "E_TRANSFER", eTransferEmail="bob@example.com", eTransferName="Bob"),
        "bob@example.com", "INTERAC e-Transfer from Bob", "", "10.00",
    ),
    (
        activity("WITHDRAWAL", "E_TRANSFER", amountSign="negative", eTransferEmail="bob@example.com",
                 eTransferName="Bob"),
        "bob@example.com", "INTERAC e-Transfer to Bob", "", "-10.00",
    ),
    (activity("DIVIDEND", "DIY_DIVIDEND", assetSymbol="VFV"), "VFV", "Received dividend from VFV", "", "10.00"),
    (
        activity("DIY_BUY", "DIVIDEND_REINVESTMENT", amountSign="negative", assetSymbol="VFV", assetQuantity="0.0712"),
        "VFV", "Reinvested dividend into 0.0712 VFV", "", "-10.00",
    ),
    (
        activity("DIY_BUY", "MARKET_ORDER", amountSign="negative", assetSymbol="XEQT", assetQuantity="2"),
        "XEQT", "Bought 2 XEQT", "", "-10.00",
    ),
    (
        activity("DEPOSIT", "AFT", aftOriginatorName="ACME PAYROLL", aftTransactionCategory="payroll"),
        "ACME PAYROLL", "Direct deposit from ACME PAYROLL", "payroll", "10.00",
    ),
    (
        activity("WITHDRAWAL", "AFT", amountSign="negative", aftOriginatorName="HYDRO ONE",
                 aftTransactionCategory="utilities"),
        "HYDRO ONE", "Direct deposit to HYDRO ONE", "utilities", "-10.00",
    ),
    (
        activity("DEPOSIT", "EFT", externalCanonicalId="funds_transfer-1"),
        "TD Chequing ****1234", "Direct deposit from TD Chequing ****1234", "", "10.00",
    ),
    (
        activity("WITHDRAWAL", "EFT", amountSign="negative", externalCanonicalId="funds_transfer-1"),
        "Tangerine Savings ****9876", "Direct deposit to Tangerine Savings ****9876", "", "-10.00",
    ),
    (
        activity("INTERNAL_TRANSFER", "SOURCE", amountSign="negative", opposingAccountId="tfsa-1"),
        "TFSA", "Internal transfer to TFSA", "", "-10.00",
    ),
    (
        activity("INTERNAL_TRANSFER", "DESTINATION", opposingAccountId="tfsa-1"),
        "TFSA", "Internal transfer from TFSA", "", "10.00",
    ),
    (
        activity("SPEND", "PREPAID", amountSign="negative", spendMerchant="Coffee Shop"),
        "Coffee Shop", "Prepaid to Coffee Shop", "", "-10.00",
    ),
    (
        activity("WITHDRAWAL", "BILL_PAY", amountSign="negative", billPayPayeeNickname="Hydro",
                 billPayCompanyName="Toronto Hydro"),
        "Hydro", "Bill payment to Toronto Hydro", "bill", "-10.00",
    ),
])
def test_classifies_every_activity_type(classifier, record, payee, notes, category, amount):
    result = classifier.classify(record)

    assert isinstance(result, CanonicalTransaction)
    assert (result.payee, result.notes, result.category) == (payee, notes, category)
    assert result.amount == Decimal(amount)
    assert result.date == date(2024, 3, 5)


def test_date_is_truncated_in_configured_zone(classifier):
    result = classifier.classify(activity("INTEREST", occurredAt="2024-03-05T03:00:00.000Z"))
    assert result.date == date(2024, 3, 4)


@pytest.mark.parametrize("status, expected", [
    ("PENDING", SkipReason.NOT_SETTLED),
    ("cancelled", SkipReason.NOT_SETTLED),
    ("something-new", SkipReason.UNKNOWN_STATUS),
])
def test_unsettled_and_unknown_statuses_are_skipped(classifier, status, expected):
    result = classifier.classify(activity("INTEREST", status=status))
    assert isinstance(result, Skip)
    assert result.reason is expected


def test_completed_status_is_exported(classifier):
    assert isinstance(classifier.classify(activity("INTEREST", status="COMPLETED")), CanonicalTransaction)


def test_unknown_activity_type_is_skipped(classifier):
    result = classifier.classify(activity("CRYPTO_BUY", "MARKET_ORDER"))
    assert result.reason is SkipReason.UNKNOWN_TYPE
    assert "CRYPTO_BUY/MARKET_ORDER" in result.message


def test_missing_payee_is_skipped(classifier):
    result = classifier.classify(activity("DEPOSIT", "E_TRANSFER", eTransferName="Bob"))
    assert result.reason is SkipReason.MISSING_FIELD


def test_missing_amount_sign_is_skipped(classifier):
    result = classifier.classify(activity("INTEREST", amountSign=None))
    assert result.reason is SkipReason.MISSING_FIELD


def test_failed_lookup_skips_only_that_record(zone, config):
    classifier = WealthsimpleClassifier(StubResolver(fail=True), zone, config)

    eft = classifier.classify(activity("DEPOSIT", "EFT", externalCanonicalId="funds_transfer-1"))
    interest = classifier.classify(activity("INTEREST"))

    assert eft.reason is SkipReason.RESOLVER_FAILED
    assert isinstance(interest, CanonicalTransaction)


@pytest.mark.parametrize("node, expected", [
    ({"nickname": "Rainy day", "unifiedAccountType": "CASH"}, "Rainy day"),
    ({"nickname": None, "unifiedAccountType": "CASH"}, "Cash"),
    ({"nickname": None, "unifiedAccountType": "SELF_DIRECTED_CRYPTO"}, "Crypto"),
    ({"nickname": None, "unifiedAccountType": "SELF_DIRECTED_NON_REGISTERED"}, "Non-registered"),
    ({"nickname": None, "unifiedAccountType": "SELF_DIRECTED_TFSA"}, "TFSA"),
    ({"nickname": None, "unifiedAccountType": "MANAGED_RRSP"}, "Unknown"),
])
def test_account_nickname(node, expected):
    assert account_nickname(node) == expected


def accounts_page(nodes, has_next, cursor):
    return FakeResponse(200, {"data": {"identity": {"id": "identity-1", "accounts": {
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
        "edges": [{"cursor": n["id"], "node": n} for n in nodes],
    }}}})


def test_list_accounts_follows_pages(config):
    pages = {
        None: accounts_page([{"id": "ca-cash-1", "unifiedAccountType": "CASH", "nickname": None}], True, "c1"),
        "c1": accounts_page([{"id": "tfsa-1", "unifiedAccountType": "SELF_DIRECTED_TFSA", "nickname": "TFSA"}],
                            False, "c2"),
    }
    request = FakeRequestContext(lambda method, url, data: pages[data["variables"]["cursor"]])
    client = WealthsimpleClient(request, access_token="secret", identity_id="identity-1", config=config)

    accounts = client.list_accounts()

    assert [(a.id, a.nickname, a.kind) for a in accounts] == [
        ("ca-cash-1", "Cash", "CASH"),
        ("tfsa-1", "TFSA", "SELF_DIRECTED_TFSA"),
    ]
    assert request.calls[0]["data"]["variables"]["identityId"] == "identity-1"
    assert len(request.calls) == 2


def test_list_accounts_requires_identity(config):
    client = WealthsimpleClient(FakeRequestContext(lambda *args: None), access_token="secret", config=config)
    with pytest.raises(FetchError):
        client.list_accounts()


def funds_transfer_response(method, url, data):
    return FakeResponse(200, {"data": {"fundsTransfer": {
        "id": data["variables"]["id"],
        "status": "accepted",
        "source": {"bankAccount": {"institutionName": "TD", "nickname": None, "accountName": "Chequing",
                                   "accountNumber": "****1234"}},
        "destination": {"bankAccount": {"institutionName": "Wealthsimple", "nickname": "Cash",
                                        "accountName": None, "accountNumber": None}},
    }}})


def test_fetch_transfer(config):
    client = WealthsimpleClient(FakeRequestContext(funds_transfer_response), access_token="secret", config=config)

    transfer = client.fetch_transfer("funds_transfer-9")

    assert transfer.id == "funds_transfer-9"
    assert transfer.source.describe() == "TD Chequing ****1234"
    assert transfer.destination.describe() == "Wealthsimple Cash"


def test_resolver_fetches_each_transfer_once(config):
    request = FakeRequestContext(funds_transfer_response)
    resolver = CrossReferenceResolver(WealthsimpleClient(request, access_token="secret", config=config))

    incoming = resolver.resolve_transfer_counterpart("funds_transfer-9", outgoing=False)
    outgoing = resolver.resolve_transfer_counterpart("funds_transfer-9", outgoing=True)

    assert incoming.institution_name == "TD"
    assert outgoing.institution_name == "Wealthsimple"
    assert len(request.calls) == 1


class FakeBrowserContext:
    def __init__(self, cookies):
        self._cookies = cookies
        self.request = FakeRequestContext(lambda *args: None)

    def cookies(self):
        return self._cookies


def test_from_browser_reads_oauth_cookie(config):
    token = {"access_token": "secret", "identity_canonical_id": "identity-1"}
    context = FakeBrowserContext([{"name": "_oauth2_access_v2", "value": urllib.parse.quote(json.dumps(token))}])

    client = WealthsimpleClient.from_browser(context, None, config)

    assert client.access_token == "secret"
    assert client.identity_id == "identity-1"
    assert client.auth_headers()["authorization"] == "Bearer secret"


def test_from_browser_without_cookie(config):
    with pytest.raises(FetchError):
        WealthsimpleClient.from_browser(FakeBrowserContext([]), None, config)


@pytest.mark.parametrize("status, expected", [
    ("pending", SkipReason.NOT_SETTLED),
    ("rejected", SkipReason.NOT_SETTLED),
    ("on_hold", SkipReason.UNKNOWN_STATUS),
])
def test_unsettled_transfer_is_skipped_without_lookup(zone, config, status, expected):
    resolver = StubResolver(fail=True)
    classifier = WealthsimpleClassifier(resolver, zone, config)

    eft = classifier.classify(activity("DEPOSIT", "EFT", status=status, externalCanonicalId="funds_transfer-1"))
    internal = classifier.classify(activity("INTERNAL_TRANSFER", "SOURCE", status=status, opposingAccountId="tfsa-1"))

    assert eft.reason is expected
    assert internal.reason is expected
    assert resolver.lookups == []
