"""Tests for RowBatch accumulation, ordering, atomicity and hand-off."""
from __future__ import annotations

from dataclasses import dataclass

import pytest

from bq_stream.core.batch import MAX_ROWS_PER_REQUEST, RowBatch, RowEntry
from bq_stream.errors import BatchFinalizedError, BatchFullError, SerializationError
from bq_stream.pipeline import demo_rows


@dataclass
class Simple:
    n: int


class TestAppend:
    def test_length_and_order_follow_appends(self) -> None:
        batch = RowBatch()
        for i in range(7):
            batch.append({"n": i})

        assert len(batch) == 7
        entries = batch.finalize()
        assert [e.json["n"] for e in entries] == list(range(7))

    def test_insert_id_is_kept_with_its_row(self) -> None:
        batch = RowBatch()
        batch.append({"n": 1}, insert_id="row-1")
        batch.append({"n": 2})

        first, second = batch.finalize()
        assert first == RowEntry(insert_id="row-1", json={"n": 1})
        assert second.insert_id is None
        assert first.to_api() == {"json": {"n": 1}, "insertId": "row-1"}
        assert "insertId" not in second.to_api()

    def test_non_string_insert_id_is_rejected(self) -> None:
        batch = RowBatch()
        with pytest.raises(SerializationError, match="insert_id must be a string"):
            batch.append({"n": 1}, insert_id=42)  # type: ignore[arg-type]
        assert batch.is_empty()

    def test_failed_append_leaves_batch_unchanged(self) -> None:
        batch = RowBatch()
        batch.append(Simple(1), insert_id="a")
        batch.append(Simple(2), insert_id="b")

        with pytest.raises(SerializationError):
            batch.append({"n": 3, "nested": {"bad": object()}}, insert_id="c")

        assert len(batch) == 2
        entries = batch.finalize()
        assert [(e.insert_id, e.json) for e in entries] == [("a", {"n": 1}), ("b", {"n": 2})]

    def test_source_mutation_after_append_does_not_leak(self) -> None:
        row = {"n": 1, "inner": {"m": 2}}
        batch = RowBatch()
        batch.append(row)
        row["n"] = 99
        row["inner"]["m"] = 99

        (entry,) = batch.finalize()
        assert entry.json == {"n": 1, "inner": {"m": 2}}

    def test_top_level_scalar_is_rejected(self) -> None:
        batch = RowBatch()
        with pytest.raises(SerializationError):
            batch.append(5)
        assert len(batch) == 0

    def test_row_too_deep_for_the_wire_is_rejected_on_append(self) -> None:
        row: dict = {"v": 0}
        for i in range(1, 300):
            row = {"v": i, "child": row}
        batch = RowBatch()
        batch.append({"n": 1})

        with pytest.raises(SerializationError, match="cannot be encoded"):
            batch.append(row)
        with pytest.raises(SerializationError):
            batch.extend([{"n": 2}, row])

        assert len(batch) == 1
        assert batch.to_body()["rows"] == [{"json": {"n": 1}}]

    @pytest.mark.parametrize("row", [{"n": 2 ** 64}, {"s": "\ud800"}])
    def test_rows_the_api_cannot_read_never_enter_the_batch(self, row) -> None:
        batch = RowBatch()
        with pytest.raises(SerializationError):
            batch.append(row)
        assert batch.is_empty()

    def test_insert_id_with_lone_surrogate_is_rejected(self) -> None:
        batch = RowBatch()
        with pytest.raises(SerializationError):
            batch.append({"n": 1}, insert_id="id-\udfff")
        assert batch.is_empty()


class TestBounds:
    def test_full_batch_rejects_append(self) -> None:
        batch = RowBatch(max_rows=2)
        batch.append({"n": 1})
        batch.append({"n": 2})

        with pytest.raises(BatchFullError) as exc:
            batch.append({"n": 3})
        assert exc.value.max_rows == 2
        assert len(batch) == 2

    def test_default_bound_is_request_cap(self) -> None:
        assert RowBatch().max_rows == MAX_ROWS_PER_REQUEST

    def test_max_rows_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RowBatch(max_rows=0)


class TestExtend:
    def test_extend_accepts_rows_and_pairs(self) -> None:
        batch = RowBatch()
        batch.extend([{"n": 1}, ("id-2", {"n": 2}), (None, Simple(3))])

        entries = batch.finalize()
        assert [(e.insert_id, e.json["n"]) for e in entries] == [(None, 1), ("id-2", 2), (None, 3)]

    def test_extend_is_all_or_nothing(self) -> None:
        batch = RowBatch()
        batch.append({"n": 0})

        with pytest.raises(SerializationError):
            batch.extend([{"n": 1}, {"n": {2}}])
        assert len(batch) == 1

    def test_extend_past_bound_is_rejected_whole(self) -> None:
        batch = RowBatch(max_rows=3)
        batch.append({"n": 0})

        with pytest.raises(BatchFullError):
            batch.extend([{"n": 1}, {"n": 2}, {"n": 3}])
        assert len(batch) == 1


class TestLifecycle:
    def test_append_after_finalize_is_refused(self) -> None:
        batch = RowBatch()
        batch.append({"n": 1})
        batch.finalize()

        assert batch.finalized
        with pytest.raises(BatchFinalizedError):
            batch.append({"n": 2})
        with pytest.raises(BatchFinalizedError):
            batch.extend([{"n": 2}])
        assert len(batch) == 1

    def test_finalize_only_once(self) -> None:
        batch = RowBatch()
        batch.finalize()
        with pytest.raises(BatchFinalizedError):
            batch.finalize()

    def test_to_body_after_finalize_sends_once(self) -> None:
        batch = RowBatch()
        batch.append({"n": 1})
        batch.finalize()

        assert batch.to_body()["rows"] == [{"json": {"n": 1}}]
        with pytest.raises(BatchFinalizedError):
            batch.to_body()
        assert "sent" in repr(batch)

    def test_to_body_finalizes_and_emits_only_set_options(self) -> None:
        batch = RowBatch()
        batch.append({"n": 1}, insert_id="x")

        body = batch.to_body()
        assert batch.finalized
        assert body == {
            "kind": "bigquery#tableDataInsertAllRequest",
            "rows": [{"json": {"n": 1}, "insertId": "x"}],
        }
        assert batch.sent
        with pytest.raises(BatchFinalizedError, match="already sent"):
            batch.to_body()

    def test_to_body_request_options(self) -> None:
        batch = RowBatch(skip_invalid_rows=True, ignore_unknown_values=True, template_suffix="_2024")
        batch.append({"n": 1})

        body = batch.to_body()
        assert body["skipInvalidRows"] is True
        assert body["ignoreUnknownValues"] is True
        assert body["templateSuffix"] == "_2024"

    def test_insert_id_lookup_by_index(self) -> None:
        batch = RowBatch()
        batch.append({"n": 1})
        batch.append({"n": 2}, insert_id="second")
        batch.finalize()
        assert batch.insert_id_at(0) is None
        assert batch.insert_id_at(1) == "second"


def test_four_doubly_nested_rows_are_preserved() -> None:
    batch = RowBatch()
    for row in demo_rows():
        batch.append(row)

    entries = batch.finalize()

    assert len(entries) == 4
    assert all(e.insert_id is None for e in entries)
    assert entries[0].json == {
        "int_value": 1,
        "float_value": 1.0,
        "bool_value": False,
        "string_value": "first",
        "record_value": {
            "int_value": 10,
            "string_value": "sub_level_1.1",
            "record_value": {"int_value": 20, "string_value": "leaf"},
        },
    }
    assert [e.json["string_value"] for e in entries] == ["first", "second", "third", "fourth"]
    assert [e.json["bool_value"] for e in entries] == [False, True, False, True]
    assert [e.json["record_value"]["record_value"]["int_value"] for e in entries] == [20, 21, 22, 23]
    assert [e.json["record_value"]["string_value"] for e in entries] == [
        "sub_level_1.1", "sub_level_1.2", "sub_level_1.3", "sub_level_1.4",
    ]
