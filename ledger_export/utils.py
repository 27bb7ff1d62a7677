import logging
import re
from datetime import date, datetime, time, tzinfo
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Union

from .models import ExportedFile

logger = logging.getLogger(__name__)


class TransactionNormalizer:
    """
    Utility class for standardizing transaction fields.

    Provides static methods to clean descriptions, convert amounts without
    going through binary floating point, and turn institution timestamps
    into calendar days in a given time zone.
    """

    @staticmethod
    def clean_description(description: Any) -> str:
        """Collapse runs of whitespace and trim."""
        if not description:
            return ""
        return re.sub(r'\s+', ' ', str(description)).strip()

    @staticmethod
    def minor_units_to_decimal(minor_units: int) -> str:
        """
        Render an integer amount in cents as a decimal string.

        The radix point is inserted into the digit string, so 5 -> "0.05"
        and -250 -> "-2.50" with no floating point involved.
        """
        if isinstance(minor_units, bool) or not isinstance(minor_units, int):
            raise TypeError(f"minor units must be an int, got {minor_units!r}")
        sign = "-" if minor_units < 0 else ""
        digits = str(abs(minor_units)).rjust(3, "0")
        return f"{sign}{digits[:-2]}.{digits[-2:]}"

    @staticmethod
    def to_decimal(value: Union[str, int, Decimal]) -> Decimal:
        """
        Parse an amount given in major units.

        Floats are refused: amounts must arrive as text, integers or Decimals
        (JSON payloads are decoded with `parse_float=Decimal`). Infinities and
        NaN are not amounts.
        """
        if isinstance(value, float):
            raise TypeError(f"refusing to convert float amount {value!r}")
        if isinstance(value, Decimal):
            amount = value
        else:
            try:
                amount = Decimal(str(value).strip().replace(",", ""))
            except InvalidOperation:
                raise ValueError(f"invalid amount: {value!r}") from None
        if not amount.is_finite():
            raise ValueError(f"invalid amount: {value!r}")
        return amount

    @staticmethod
    def local_date(value: Union[str, datetime, date], zone: tzinfo) -> date:
        """
        Truncate a timestamp to the calendar day it falls on in `zone`.

        Date-only strings ("2024-03-05") are taken as already being calendar
        days. Naive timestamps are read as wall-clock time in `zone`.
        """
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, date):
            return value
        else:
            text = str(value).strip()
            if len(text) == 10:
                return date.fromisoformat(text)
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            moment = datetime.fromisoformat(text)

        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(zone).date()

    @staticmethod
    def start_of_day(day: date, zone: tzinfo) -> datetime:
        """Local midnight of `day` in `zone`."""
        return datetime.combine(day, time.min, tzinfo=zone)


class CSVWriter:
    """
    Helper class to write exported CSV files to disk.

    Creates the output directory on first use and makes file names safe
    for the local filesystem (account nicknames may contain path separators).
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def safe_filename(name: str) -> str:
        return re.sub(r'[\\/:*?"<>|]+', '_', name).strip()

    def write(self, exported: ExportedFile) -> Path:
        """Write one exported file and return its path."""
        filepath = self.output_dir / self.safe_filename(exported.name)
        filepath.write_bytes(exported.data)
        logger.info("Saved %d bytes to %s", len(exported.data), filepath)
        return filepath
