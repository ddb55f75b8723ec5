"""
flushplan.persistence.normalizer

Type-aware value normalization.

Responsibilities:
- Reduce two representations of the same logical value to one comparable form.
- Convert entity values to what the SQLAlchemy column types accept, and back.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from typing import Any

from flushplan.metadata.model import UNSET, ColumnMetadata, ColumnType, EntityMetadata


class ValueNormalizer:
    def comparable(self, column: ColumnMetadata, value: Any) -> Any:
        """
        Canonical form used for change detection. Both the entity value and the stored value
        go through this, so driver-side representation drift never reads as a change.
        """

        if value is None or value is UNSET:
            return value
        match column.type:
            case ColumnType.date:
                return self.date_string(value)
            case ColumnType.time:
                return self.time_string(value)
            case ColumnType.datetime:
                return self.utc_datetime_string(value)
            case ColumnType.json:
                return self.json_string(value)
            case ColumnType.simple_array:
                return self.simple_array_string(value)
            case ColumnType.boolean:
                return bool(value)
            case ColumnType.uuid:
                return str(value).lower()
            case ColumnType.integer:
                return int(value)
            case ColumnType.float:
                return float(value)
        return value

    def equal(self, column: ColumnMetadata, left: Any, right: Any) -> bool:
        return self.comparable(column, left) == self.comparable(column, right)

    def ids_equal(
        self,
        target: EntityMetadata,
        left: Mapping[str, Any] | None,
        right: Mapping[str, Any] | None,
    ) -> bool:
        """
        Field-by-field comparison of two primary-key maps of `target`.
        """

        if left is None or right is None:
            return left is None and right is None
        if set(left) != set(right):
            return False
        for path, value in left.items():
            column = target.find_column(path)
            if column is None:
                if value != right[path]:
                    return False
            elif not self.equal(column, value, right[path]):
                return False
        return True

    def to_database(self, column: ColumnMetadata, value: Any) -> Any:
        if value is None:
            return None
        match column.type:
            case ColumnType.date:
                return _as_date(value)
            case ColumnType.time:
                return value if isinstance(value, time) else time.fromisoformat(str(value))
            case ColumnType.datetime:
                dt = _as_datetime(value)
                # Columns are timezone-naive and hold UTC.
                if dt.tzinfo is not None:
                    dt = dt.astimezone(UTC).replace(tzinfo=None)
                return dt
            case ColumnType.simple_array:
                return self.simple_array_string(value)
            case ColumnType.uuid:
                return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return value

    def from_database(self, column: ColumnMetadata, value: Any) -> Any:
        if value is None:
            return None
        if column.type == ColumnType.simple_array:
            if isinstance(value, str):
                return value.split(",") if value else []
            return list(value)
        return value

    # -- canonical string forms -------------------------------------------------

    @staticmethod
    def date_string(value: Any) -> str:
        return _as_date(value).isoformat()

    @staticmethod
    def time_string(value: Any) -> str:
        if isinstance(value, datetime):
            value = value.time()
        if isinstance(value, time):
            return value.replace(tzinfo=None).isoformat()
        return time.fromisoformat(str(value)).isoformat()

    @staticmethod
    def utc_datetime_string(value: Any) -> str:
        dt = _as_datetime(value)
        if dt.tzinfo is None:
            # Naive values are stored and read back as UTC.
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC).replace(tzinfo=None).isoformat(sep=" ")

    @staticmethod
    def json_string(value: Any) -> str:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    @staticmethod
    def simple_array_string(value: Any) -> str:
        if isinstance(value, str):
            return value
        return ",".join(str(v) for v in value)


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if len(text) > 10:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, tz=UTC)
    return datetime.fromisoformat(str(value))


# --- Module Notes -----------------------------------------------------------
# Datetimes are normalized on both sides: SQLite hands back naive values while aware
# values may come from the application, and the two must still compare equal.
