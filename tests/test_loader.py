"""Tests for input parsing."""

import logging

from harvester.resolver.loader import load_records, parse_line
from harvester.resolver.types import InputRecord


class TestParseLine:
    def test_json_object(self):
        record = parse_line('{"id": "rec-1", "url": " https://repo.example.org/record/1 "}', 3)
        assert record == InputRecord("https://repo.example.org/record/1", "rec-1", 3)

    def test_tab_separated(self):
        assert parse_line("rec-2\thttps://repo.example.org/record/2\n") == InputRecord(
            "https://repo.example.org/record/2", "rec-2"
        )

    def test_bare_url(self):
        assert parse_line("https://repo.example.org/record/3") == InputRecord(
            "https://repo.example.org/record/3"
        )

    def test_numeric_and_empty_ids(self):
        assert parse_line('{"id": 7, "url": "https://repo.example.org/r"}').id == "7"
        assert parse_line('{"id": " ", "url": "https://repo.example.org/r"}').id is None

    def test_blank_and_comment_lines(self):
        assert parse_line("   ") is None
        assert parse_line("# header") is None

    def test_malformed_lines_are_skipped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="harvester.resolver.loader"):
            assert parse_line("{broken", 1) is None
            assert parse_line('{"id": "x"}', 2) is None
            assert parse_line('{"id": "y", "url": "  "}', 3) is None

        assert len(caplog.records) == 3


class TestLoadRecords:
    def test_mixed_file(self, tmp_path):
        path = tmp_path / "input.txt"
        path.write_text(
            "# id\turl\n"
            '{"id": "a", "url": "https://repo.example.org/record/a"}\n'
            "\n"
            "b\thttps://repo.example.org/record/b\n"
            "https://repo.example.org/record/c\n",
            encoding="utf-8",
        )

        records = list(load_records(path))

        assert [record.id for record in records] == ["a", "b", None]
        assert [record.line_number for record in records] == [2, 4, 5]
