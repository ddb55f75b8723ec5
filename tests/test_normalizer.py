from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time, timedelta, timezone

from flushplan.metadata.model import ColumnMetadata, ColumnType
from flushplan.persistence.normalizer import ValueNormalizer

norm = ValueNormalizer()


def col(type: ColumnType) -> ColumnMetadata:
    return ColumnMetadata("value", type, nullable=True)


def test_date_string_and_date_object_compare_equal() -> None:
    assert norm.equal(col(ColumnType.date), date(2020, 1, 2), "2020-01-02")
    assert norm.equal(col(ColumnType.date), datetime(2020, 1, 2, 13, 0), date(2020, 1, 2))
    assert not norm.equal(col(ColumnType.date), date(2020, 1, 2), "2020-01-03")


def test_time_ignores_representation() -> None:
    assert norm.equal(col(ColumnType.time), time(10, 30), "10:30:00")


def test_naive_datetime_is_treated_as_utc() -> None:
    column = col(ColumnType.datetime)
    aware = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert norm.equal(column, aware, datetime(2024, 5, 1, 12, 0))
    assert norm.equal(column, "2024-05-01T12:00:00+00:00", datetime(2024, 5, 1, 12, 0))
    assert not norm.equal(column, aware, datetime(2024, 5, 1, 14, 0))


def test_json_key_order_does_not_matter() -> None:
    assert norm.equal(col(ColumnType.json), {"b": 1, "a": [1, 2]}, {"a": [1, 2], "b": 1})
    assert not norm.equal(col(ColumnType.json), {"a": 1}, {"a": 2})


def test_simple_array_round_trip() -> None:
    column = col(ColumnType.simple_array)
    assert norm.to_database(column, ["a", "b"]) == "a,b"
    assert norm.from_database(column, "a,b") == ["a", "b"]
    assert norm.from_database(column, "") == []
    assert norm.equal(column, ["a", "b"], "a,b")


def test_scalar_coercions() -> None:
    assert norm.equal(col(ColumnType.boolean), 1, True)
    assert norm.equal(col(ColumnType.integer), "7", 7)
    assert norm.equal(col(ColumnType.float), 1, 1.0)
    value = uuid.uuid4()
    assert norm.equal(col(ColumnType.uuid), value, str(value).upper())


def test_none_is_only_equal_to_none() -> None:
    assert norm.equal(col(ColumnType.string), None, None)
    assert not norm.equal(col(ColumnType.string), None, "")


def test_to_database_writes_naive_utc() -> None:
    aware = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert norm.to_database(col(ColumnType.datetime), aware) == datetime(2024, 5, 1, 12, 0)
    assert norm.to_database(col(ColumnType.date), "2020-01-02") == date(2020, 1, 2)
    assert isinstance(norm.to_database(col(ColumnType.uuid), str(uuid.uuid4())), uuid.UUID)


def test_utc_datetime_string_from_timestamp() -> None:
    assert ValueNormalizer.utc_datetime_string(0) == "1970-01-01 00:00:00"
    assert ValueNormalizer.utc_datetime_string(datetime(2024, 1, 1, tzinfo=UTC)) == (
        "2024-01-01 00:00:00"
    )
