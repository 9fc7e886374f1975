"""
Tests for CSV export.
"""

import csv
import io
from datetime import datetime, timezone

from message_store.export import csv_filename, quote_cell, render_csv, render_value
from message_store.types import Record, StorageMode, Topic


RECEIVED = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def _topic(**fields):
    return Topic(name="sensor/temp", fields=fields or {"value": "number"}, storage_mode=StorageMode.DEDICATED)


class TestRenderValue:
    """Tests for single-cell rendering."""

    def test_none_is_empty(self):
        assert render_value(None) == ""

    def test_booleans_lowercase(self):
        assert render_value(True) == "true"
        assert render_value(False) == "false"

    def test_integral_float_without_fraction(self):
        assert render_value(25.0) == "25"
        assert render_value(25.5) == "25.5"

    def test_datetime_iso(self):
        assert render_value(RECEIVED) == "2024-03-01T12:30:00+00:00"

    def test_structured_compact_json(self):
        assert render_value({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_quoting(self):
        assert quote_cell("plain") == "plain"
        assert quote_cell("a,b") == '"a,b"'
        assert quote_cell('say "hi"') == '"say ""hi"""'
        assert quote_cell("two\nlines") == '"two\nlines"'
        assert quote_cell("carriage\rreturn") == '"carriage\rreturn"'


class TestRenderCsv:
    """Tests for whole-document rendering."""

    def test_no_records_is_empty(self):
        assert render_csv([], _topic()) == ""

    def test_header_and_rows(self):
        topic = _topic(value="number", unit="string")
        records = [
            Record(id=1, topic=topic.name, fields={"value": 21.0, "unit": "C"}, received_at=RECEIVED),
            Record(id=2, topic=topic.name, fields={"value": None, "unit": "F"}, received_at=RECEIVED),
        ]

        assert render_csv(records, topic) == (
            "id,received_at,value,unit\n"
            "1,2024-03-01T12:30:00+00:00,21,C\n"
            "2,2024-03-01T12:30:00+00:00,,F\n"
        )

    def test_awkward_values_parse_back(self):
        topic = _topic(note="string", meta="object")
        note = 'comma, "quote"\nand newline'
        records = [
            Record(id=7, topic=topic.name, fields={"note": note, "meta": {"k": "v,w"}}, received_at=RECEIVED),
        ]

        rows = list(csv.reader(io.StringIO(render_csv(records, topic), newline="")))

        assert rows[0] == ["id", "received_at", "note", "meta"]
        assert rows[1] == ["7", "2024-03-01T12:30:00+00:00", note, '{"k":"v,w"}']

    def test_header_names_quoted_like_cells(self):
        topic = _topic(**{"temp,c": "number", 'say "hi"': "string"})
        records = [
            Record(id=1, topic=topic.name, fields={"temp,c": 3.5, 'say "hi"': "x"}, received_at=RECEIVED),
        ]

        header = render_csv(records, topic).splitlines()[0]

        assert header == 'id,received_at,"temp,c","say ""hi"""'

    def test_missing_field_is_empty_cell(self):
        topic = _topic(a="string", b="string")
        records = [Record(id=1, topic=topic.name, fields={"a": "x"}, received_at=RECEIVED)]

        assert render_csv(records, topic).splitlines()[1] == "1,2024-03-01T12:30:00+00:00,x,"

    def test_filename(self):
        assert csv_filename("sensor/temp") == "sensor_temp_messages.csv"
