"""Row encoding for ``data/<table>.json`` members.

Rows are ordered mappings of column name to a small value union:
``None | int | float | str | bytes``.  JSON has no bytes, so blobs are
tagged as ``{"$blob": "<base64>"}``.  Anything else in a data file is
rejected.
"""

import base64
import binascii
import json
from typing import Any, Union

from tenant_snapshot.errors import DataApplyError

BLOB_TAG = "$blob"

RowValue = Union[None, int, float, str, bytes]


def encode_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {BLOB_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Unsupported column value type: {type(value).__name__}")


def decode_value(value: Any, table: str, column: str) -> RowValue:
    if value is None or isinstance(value, (int, float, str)):
        return value
    if isinstance(value, dict) and set(value) == {BLOB_TAG} and isinstance(value[BLOB_TAG], str):
        try:
            return base64.b64decode(value[BLOB_TAG], validate=True)
        except binascii.Error as e:
            raise DataApplyError(f"Invalid blob in column '{column}'", table=table) from e
    raise DataApplyError(
        f"Unsupported value in column '{column}': {type(value).__name__}", table=table
    )


def encode_rows(rows: list[dict]) -> bytes:
    """Serialize rows to the JSON array stored in the archive."""
    encoded = [{col: encode_value(val) for col, val in row.items()} for row in rows]
    return json.dumps(encoded, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_rows(data: bytes, table: str) -> list[dict[str, RowValue]]:
    """Parse a data member back into rows.

    Raises:
        DataApplyError: If the member is not a JSON array of flat objects.
    """
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DataApplyError(f"Invalid data file: {e}", table=table) from e

    if not isinstance(parsed, list):
        raise DataApplyError("Invalid data file: expected a JSON array", table=table)

    rows: list[dict[str, RowValue]] = []
    for index, raw in enumerate(parsed):
        if not isinstance(raw, dict) or not raw:
            raise DataApplyError(f"Invalid row {index}: expected a non-empty object", table=table)
        rows.append({col: decode_value(val, table, col) for col, val in raw.items()})
    return rows
