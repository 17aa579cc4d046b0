"""
Barcode identity utilities for equipment units.

Every unit carries a human-readable physical code of the form

    TYPE-YY-NNNNN[-SSSS]

- TYPE: two-letter code looked up from the category name (default ``MS``)
- YY: last two digits of the acquisition year (``00`` when unknown)
- NNNNN: sequence number, unique per TYPE+YY bucket among active units
- SSSS: last four characters of the serial, only for multi-unit requests

The generator can also re-derive the expected code for an existing unit after
its category or acquisition date changed, so callers can detect drift and
flag the unit for relabeling.
"""
import re
from datetime import date, datetime
from typing import Dict, Optional, Union

from utilities.database import db, Equipment
from utilities.logger import get_logger

logger = get_logger("barcodes")

# Category name (lowercase) -> type code
CATEGORY_TYPE_CODES = {
    "camera": "CA",
    "cameras": "CA",
    "lens": "LN",
    "lenses": "LN",
    "microphone": "MI",
    "microphones": "MI",
    "mic": "MI",
    "audio": "MI",
    "lighting": "LG",
    "light": "LG",
    "lights": "LG",
    "misc": "MS",
    "miscellaneous": "MS",
    "grip": "GR",
    "stand": "SD",
    "stands": "SD",
    "strobe": "SB",
    "strobes": "SB",
    "modifier": "MD",
    "modifiers": "MD",
    "drone": "DN",
    "drones": "DN",
    "battery": "BY",
    "batteries": "BY",
    "remote": "RT",
    "remotes": "RT",
    "video light": "VL",
    "video lights": "VL",
    "storage": "SR",
    "accessories": "MS",
    "computing": "MS",
    "cables": "MS",
    "furniture": "MS",
}
DEFAULT_TYPE_CODE = "MS"
DEFAULT_YEAR_CODE = "00"
SEQUENCE_WIDTH = 5
SERIAL_SUFFIX_WIDTH = 4

BARCODE_PATTERN = re.compile(r"^(?P<type>[A-Z]{2})-(?P<year>\d{2})-(?P<seq>\d{5})(?:-(?P<suffix>[A-Z0-9]{4}))?$")

DateLike = Union[date, datetime, str, None]


def get_type_code(category_name: Optional[str]) -> str:
    """Map a category name to its two-letter type code."""
    if not category_name:
        return DEFAULT_TYPE_CODE
    normalized = category_name.strip().lower()
    return CATEGORY_TYPE_CODES.get(normalized, DEFAULT_TYPE_CODE)


def year_code(acquisition_date: DateLike) -> str:
    """Two-digit acquisition year, or ``00`` when the date is unknown or unreadable."""
    if acquisition_date is None:
        return DEFAULT_YEAR_CODE
    if isinstance(acquisition_date, (date, datetime)):
        return f"{acquisition_date.year % 100:02d}"

    raw = str(acquisition_date).strip()
    if not raw:
        return DEFAULT_YEAR_CODE
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return DEFAULT_YEAR_CODE
    return f"{parsed.year % 100:02d}"


def serial_suffix(serial_number: Optional[str]) -> Optional[str]:
    """Last four alphanumerics of a serial, uppercased and zero-padded."""
    if not serial_number:
        return None
    cleaned = re.sub(r"[^A-Za-z0-9]", "", serial_number).upper()
    if not cleaned:
        return None
    return cleaned[-SERIAL_SUFFIX_WIDTH:].rjust(SERIAL_SUFFIX_WIDTH, "0")


def format_barcode(type_code: str, year: str, sequence: int, suffix: Optional[str] = None) -> str:
    code = f"{type_code}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"
    if suffix:
        code += f"-{suffix}"
    return code


def validate_barcode(barcode: Optional[str]) -> bool:
    if not barcode or not isinstance(barcode, str):
        return False
    return BARCODE_PATTERN.match(barcode) is not None


def parse_barcode(barcode: Optional[str]) -> Optional[Dict[str, object]]:
    """
    Split a barcode into its parts.

    Returns:
        dict with type_code, year, sequence and serial_suffix (may be None),
        or None when the code does not follow the convention.
    """
    if not validate_barcode(barcode):
        return None
    match = BARCODE_PATTERN.match(barcode)
    return {
        "type_code": match.group("type"),
        "year": match.group("year"),
        "sequence": int(match.group("seq")),
        "serial_suffix": match.group("suffix"),
    }


class BarcodeGenerator:
    """Allocates and re-derives barcodes against the active equipment table."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def next_sequence(self, type_code: str, year: str) -> int:
        """Next free sequence number in the TYPE+YY bucket (1 for an empty bucket)."""
        prefix = f"{type_code}-{year}-"
        rows = (
            self.session.query(Equipment.barcode)
            .filter(
                Equipment.is_active.is_(True),
                Equipment.barcode.like(f"{prefix}%"),
            )
            .all()
        )

        highest = 0
        for (code,) in rows:
            parsed = parse_barcode(code)
            if parsed and parsed["sequence"] > highest:
                highest = parsed["sequence"]
        return highest + 1

    def is_taken(self, barcode: str, exclude_id: Optional[int] = None) -> bool:
        query = self.session.query(Equipment.id).filter(
            Equipment.is_active.is_(True),
            Equipment.barcode == barcode,
        )
        if exclude_id is not None:
            query = query.filter(Equipment.id != exclude_id)
        return query.first() is not None

    def generate(
        self,
        category_name: Optional[str],
        acquisition_date: DateLike,
        sequence_index: int = 1,
        serial_number: Optional[str] = None,
        total_in_batch: int = 1,
    ) -> str:
        """
        Generate a barcode for a new unit.

        Args:
            category_name: Category of the unit (unknown/blank -> MS)
            acquisition_date: Purchase date (unknown/blank -> 00)
            sequence_index: 1-based position of the unit within its request
            serial_number: Serial of this unit, used for the suffix on multiples
            total_in_batch: Number of identical units created by the request

        Units of one request must all be generated before any of them is
        flushed, so each gets base + offset from the same starting point.
        """
        type_code = get_type_code(category_name)
        year = year_code(acquisition_date)
        sequence = self.next_sequence(type_code, year) + max(sequence_index, 1) - 1

        suffix = serial_suffix(serial_number) if total_in_batch > 1 else None
        barcode = format_barcode(type_code, year, sequence, suffix)

        logger.info(
            "Generated barcode %s (category=%s, unit %s/%s)",
            barcode, category_name or "N/A", sequence_index, total_in_batch,
        )
        return barcode

    def rederive(
        self,
        current_barcode: Optional[str],
        category_name: Optional[str],
        acquisition_date: DateLike,
        exclude_id: Optional[int] = None,
    ) -> str:
        """
        Expected barcode for an existing unit given its current category and date.

        The sequence number and serial suffix travel with the unit when they
        are free in the new bucket, so moving a unit back to its original
        category yields its original code.
        """
        type_code = get_type_code(category_name)
        year = year_code(acquisition_date)

        parsed = parse_barcode(current_barcode)
        if parsed is None:
            return self.generate(category_name, acquisition_date)

        if parsed["type_code"] == type_code and parsed["year"] == year:
            return current_barcode

        candidate = format_barcode(type_code, year, parsed["sequence"], parsed["serial_suffix"])
        if not self.is_taken(candidate, exclude_id=exclude_id):
            return candidate

        sequence = self.next_sequence(type_code, year)
        return format_barcode(type_code, year, sequence, parsed["serial_suffix"])


# Global instance
barcode_generator = BarcodeGenerator()
