"""
ledger_export package.

This package retrieves an account's transaction history from an institution's
private API (RBC, Wealthsimple, Neo Financial) and converts it into canonical
ledger rows (date, payee, notes, category, amount) for budgeting tools.
It includes the paginated client base `InstitutionClient`, per-institution
clients and classifiers, the CSV encoder, and the `Exporter` that ties them together.
"""
from .base import InstitutionClient
from .classifier import TransactionClassifier
from .config import settings, Config
from .encoder import CSVEncoder
from .errors import BusyError, ClassificationSkip, ExportError, FetchError, ResolverError
from .exporter import Exporter
from .models import AccountInfo, CanonicalTransaction, ExportResult, RawTransaction, Skip, SkipReason
from .neofinancial import NeoClient, NeoClassifier
from .rbc import RBCClient, RBCClassifier
from .resolver import CrossReferenceResolver
from .wealthsimple import WealthsimpleClient, WealthsimpleClassifier

__all__ = [
    "InstitutionClient",
    "TransactionClassifier",
    "settings",
    "Config",
    "CSVEncoder",
    "BusyError",
    "ClassificationSkip",
    "ExportError",
    "FetchError",
    "ResolverError",
    "Exporter",
    "AccountInfo",
    "CanonicalTransaction",
    "ExportResult",
    "RawTransaction",
    "Skip",
    "SkipReason",
    "NeoClient",
    "NeoClassifier",
    "RBCClient",
    "RBCClassifier",
    "CrossReferenceResolver",
    "WealthsimpleClient",
    "WealthsimpleClassifier",
]
