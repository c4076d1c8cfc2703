"""Tests for catalog_ingest.utils.tabular module."""

from catalog_ingest.utils.tabular import parse_records, split_fields


class TestSplitFields:
    """Tests for split_fields."""

    def test_plain(self):
        assert split_fields("a,b,c") == ["a", "b", "c"]

    def test_quoted_separator_is_literal(self):
        assert split_fields('"Hello, World",ISRC1') == ["Hello, World", "ISRC1"]

    def test_cells_are_trimmed(self):
        assert split_fields("  a , b ,c  ") == ["a", "b", "c"]

    def test_trailing_separator_gives_empty_cell(self):
        assert split_fields("a,") == ["a", ""]


class TestParseRecords:
    """Tests for parse_records."""

    def test_header_and_rows(self):
        text = "Original Title,ISRC\nSong A,AAA1\nSong B,AAA2\n"
        assert parse_records(text) == [
            {"Original Title": "Song A", "ISRC": "AAA1"},
            {"Original Title": "Song B", "ISRC": "AAA2"},
        ]

    def test_quoted_comma_in_value(self):
        records = parse_records('Original Title,ISRC\n"Hello, World",X1\n')
        assert records == [{"Original Title": "Hello, World", "ISRC": "X1"}]

    def test_quoted_headers_are_unwrapped(self):
        records = parse_records('"Catalog No.", "ISRC"\nCAT1,X1\n')
        assert records == [{"Catalog No.": "CAT1", "ISRC": "X1"}]

    def test_short_row_is_padded(self):
        assert parse_records("a,b,c\n1\n") == [{"a": "1", "b": "", "c": ""}]

    def test_extra_values_are_dropped(self):
        assert parse_records("a\n1,2,3\n") == [{"a": "1"}]

    def test_fewer_than_two_lines_is_empty(self):
        assert parse_records("") == []
        assert parse_records("only,a,header\n") == []
        assert parse_records("\n\n  \n") == []

    def test_blank_inner_line_is_all_empty_row(self):
        records = parse_records("a,b\n1,2\n\n3,4")
        assert records[1] == {"a": "", "b": ""}
        assert len(records) == 3

    def test_crlf_line_endings(self):
        records = parse_records("a,b\r\n1,2\r\n")
        assert records == [{"a": "1", "b": "2"}]
