"""
Conversion between product records, storage rows and NDJSON lines
"""

from typing import Any, Callable, Dict, Mapping, Optional
from datetime import datetime
import json
import logging

from core.exceptions import RowDecodeError
from models.product import PRODUCT_COLUMNS
from schemas.product import MODIFIED_FORMAT, Product

logger = logging.getLogger(__name__)


class RecordCodec:
    """
    Canonical storage representation of a product.

    Handles:
    - Freshness stamping at export time
    - Record <-> storage row mapping (camelCase column names)
    - One-line JSON encoding for the staging load stream
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock

    def stamp_freshness(self, record: Product) -> Product:
        """Copy of the record with ``modified`` set to the current time"""
        return record.model_copy(update={"modified": self.clock().strftime(MODIFIED_FORMAT)})

    @staticmethod
    def to_storage_row(record: Product) -> Dict[str, str]:
        return record.model_dump(by_alias=True)

    @staticmethod
    def from_storage_row(row: Mapping[str, Any]) -> Product:
        """
        Build a record from a warehouse row.

        Accepts plain dicts and SQLAlchemy row mappings; typed values
        (numbers, timestamps, NULL) are coerced to text.
        """
        return Product.model_validate({column: row.get(column) for column in PRODUCT_COLUMNS})

    def encode_row(self, record: Product) -> str:
        """One NDJSON line, without the trailing newline"""
        return record.model_dump_json(by_alias=True)

    def encode_for_export(self, record: Product) -> str:
        return self.encode_row(self.stamp_freshness(record))


def decode_row(line: str, line_number: Optional[int] = None) -> Dict[str, Any]:
    """Parse one NDJSON line into a row dict"""
    try:
        value = json.loads(line)
    except json.JSONDecodeError as e:
        raise RowDecodeError(
            f"Malformed JSON row: {e.msg}",
            context={"line_number": line_number},
            original_exception=e
        )

    if not isinstance(value, dict):
        raise RowDecodeError(
            f"Expected a JSON object, got {type(value).__name__}",
            context={"line_number": line_number}
        )

    return value
