import csv
import io
from typing import Iterable

from .models import CanonicalTransaction

# Signals to spreadsheet and budgeting apps that the file is UTF-8
BOM = "\ufeff"


class CSVEncoder:
    """
    Serializes canonical transactions into the import format.

    Header `"Date","Payee","Notes","Category","Amount"`, every field quoted,
    rows terminated by a single newline, UTF-8 with a leading byte-order mark.

    With `escape_quotes=False` embedded double quotes are written as-is,
    matching older exports byte for byte (such rows do not parse back).
    """

    def __init__(self, escape_quotes: bool = True):
        self.escape_quotes = escape_quotes

    def encode(self, records: Iterable[CanonicalTransaction]) -> bytes:
        buffer = io.StringIO()
        buffer.write(BOM)
        if self.escape_quotes:
            writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow(CanonicalTransaction.CSV_FIELDS)
            for record in records:
                writer.writerow(record.to_csv_row())
        else:
            buffer.write(self._legacy_row(CanonicalTransaction.CSV_FIELDS))
            for record in records:
                buffer.write(self._legacy_row(record.to_csv_row()))
        return buffer.getvalue().encode("utf-8")

    @staticmethod
    def _legacy_row(fields) -> str:
        return ",".join(f'"{f}"' for f in fields) + "\n"
