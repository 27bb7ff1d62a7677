from datetime import date
from decimal import Decimal

import pytest

from ledger_export.config import Config
from ledger_export.models import AccountInfo, CanonicalTransaction, RawTransaction, Skip, SkipReason
from ledger_export.neofinancial import NeoClassifier, NeoClient
from tests.helpers.fake_api import FakeRequestContext, FakeResponse


@pytest.fixture
def classifier(resolver, zone, config):
    return NeoClassifier(resolver, zone, config)


def neo_record(category, **fields):
    record = {
        "category": category,
        "status": "CONFIRMED",
        "amountCents": 1234,
        "authorizationProcessedAt": "2024-03-05T17:00:00.000Z",
        "description": "desc",
    }
    record.update(fields)
    return RawTransaction(record, "credit/abc")


MERCHANT = {"description": "Corner Store", "category": "GROCERIES"}


@pytest.mark.parametrize("record, payee, category, amount", [
    (neo_record("PURCHASE", merchantDetails=MERCHANT), "Corner Store", "GROCERIES", "-12.34"),
    (neo_record("NEO_STORE_PURCHASE"), "Neo Financial", "PURCHASE", "-12.34"),
    (neo_record("REWARDS_ACCOUNT_CASH_OUT"), "Neo Financial", "PAYMENT", "12.34"),
    (neo_record("REFUND", merchantDetails=MERCHANT), "Corner Store", "GROCERIES", "12.34"),
    (
        neo_record("PAYMENT", sourceInformation={"friendlyName": "RBC Chequing"}),
        "RBC Chequing", "PAYMENT", "12.34",
    ),
    (neo_record("WITHDRAWAL", description="Payment to Credit"), "Neo Credit", "WITHDRAWAL", "-12.34"),
    (neo_record("WITHDRAWAL", merchantDetails=MERCHANT), "Corner Store", "GROCERIES", "-12.34"),
    (neo_record("WITHDRAWAL", transferContactName="Jane"), "Jane", "WITHDRAWAL", "-12.34"),
    (neo_record("TRANSFER", transferContactName="Jane"), "Jane", "TRANSFER", "12.34"),
    (neo_record("TRANSFER", etransferContactName="Sam"), "Sam", "TRANSFER", "12.34"),
    (neo_record("INTEREST"), "Neo Financial", "PAYMENT", "12.34"),
    (neo_record("DEPOSIT", description="Reward Cashed Out"), "Neo Financial", "PAYMENT", "12.34"),
])
def test_classifies_every_category(classifier, record, payee, category, amount):
    result = classifier.classify(record)

    assert isinstance(result, CanonicalTransaction)
    assert result.payee == payee
    assert result.category == category
    assert result.notes == record.get("description")
    assert result.amount == Decimal(amount)
    assert result.date == date(2024, 3, 5)


def test_plain_deposit_has_no_payee(classifier):
    result = classifier.classify(neo_record("DEPOSIT"))
    assert isinstance(result, Skip)
    assert result.reason is SkipReason.MISSING_FIELD


def test_small_amounts_keep_their_cents(classifier):
    result = classifier.classify(neo_record("INTEREST", amountCents=5))
    assert result.to_csv_row()[-1] == "0.05"


def test_missing_amount_is_skipped(classifier):
    result = classifier.classify(neo_record("INTEREST", amountCents=None))
    assert result.reason is SkipReason.MISSING_FIELD


@pytest.mark.parametrize("status, expected", [
    ("AUTHORIZED", SkipReason.NOT_SETTLED),
    ("DECLINED", SkipReason.NOT_SETTLED),
    ("REVERSED", SkipReason.UNKNOWN_STATUS),
])
def test_status_policy(classifier, status, expected):
    result = classifier.classify(neo_record("INTEREST", status=status))
    assert result.reason is expected


def test_authorized_can_be_included(resolver, zone):
    config = Config(time_zone="America/Toronto", neo={"include_authorized": True})
    classifier = NeoClassifier(resolver, zone, config)

    assert isinstance(classifier.classify(neo_record("INTEREST", status="AUTHORIZED")), CanonicalTransaction)
    assert classifier.classify(neo_record("INTEREST", status="DECLINED")).reason is SkipReason.NOT_SETTLED


@pytest.mark.parametrize("account_id, expected", [
    ("credit/abc", ("credit", "abc")),
    ("savings/xyz", ("savings", "xyz")),
    ("chequing/abc", (None, None)),
    ("credit/", (None, None)),
    ("", (None, None)),
])
def test_split_account_id(account_id, expected):
    assert NeoClient.split_account_id(account_id) == expected


def test_describe_credit_account_needs_no_call(config):
    request = FakeRequestContext(lambda *args: None)
    account = NeoClient(request, config).describe_account("credit/abc")

    assert (account.id, account.nickname, account.kind) == ("credit/abc", "Credit", "credit")
    assert request.calls == []


@pytest.mark.parametrize("personalization, nickname", [
    ({"customizedName": "Emergency fund"}, "Emergency fund"),
    ({"customizedName": None}, "Savings"),
    (None, "Savings"),
])
def test_describe_savings_account(config, personalization, nickname):
    request = FakeRequestContext(lambda method, url, data: FakeResponse(200, {"data": {"user": {
        "savingsAccount": {"accountPersonalization": personalization}}}}))

    account = NeoClient(request, config).describe_account("savings/xyz")

    assert account.nickname == nickname
    assert request.calls[0]["data"]["variables"] == {"savingsAccountId": "xyz"}


def test_describe_unknown_account_kind(config):
    assert NeoClient(FakeRequestContext(lambda *args: None), config).describe_account("chequing/1") is None


def test_savings_listing_is_parsed(config):
    def handler(method, url, data):
        return FakeResponse(200, {"data": {"user": {"savingsAccount": {"savingsTransactionList": {
            "results": [{"id": "t1"}], "hasNextPage": False, "cursor": None}}}}})

    client = NeoClient(FakeRequestContext(handler), config)

    result = client.fetch_all(AccountInfo({}, "savings/xyz", "Savings", "savings"))

    assert [r.get("id") for r in result] == ["t1"]
    call = client.request.calls[0]
    assert call["data"]["operationName"] == "FilteredSortedSavingsTransactionList"
    assert call["data"]["variables"]["savingsAccountId"] == "xyz"


def test_unrepresentable_amount_is_skipped(classifier):
    result = classifier.classify(neo_record("INTEREST", amountCents=10 ** 30))
    assert isinstance(result, Skip)
    assert result.reason is SkipReason.MISSING_FIELD
