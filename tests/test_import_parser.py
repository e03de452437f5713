"""Tests for CSV parsing and generation."""

from __future__ import annotations

import pytest

from importhub.imports.errors import ParseError
from importhub.imports.parser import escape_field, generate_csv, parse_csv


class TestParseCsv:
    """Tests for parse_csv."""

    def test_headers_and_rows(self):
        """Rows come back keyed by header."""
        table = parse_csv("companyName,industry\nAcme Corp,Tech\nBeta LLC,Retail\n")

        assert table.headers == ["companyName", "industry"]
        assert table.rows == [
            {"companyName": "Acme Corp", "industry": "Tech"},
            {"companyName": "Beta LLC", "industry": "Retail"},
        ]
        assert table.raw_row_count == 2

    def test_values_kept_verbatim(self):
        """Values are not stripped and NA-like strings stay strings."""
        table = parse_csv("name,notes\n  Acme  ,NA\nBeta,\n")

        assert table.rows[0] == {"name": "  Acme  ", "notes": "NA"}
        assert table.rows[1] == {"name": "Beta", "notes": ""}

    def test_quoted_fields(self):
        """Quoted fields may hold commas, doubled quotes and newlines."""
        text = 'name,notes\n"Acme, Inc.","He said ""hi""\nthen left"\n'
        table = parse_csv(text)

        assert table.rows == [
            {"name": "Acme, Inc.", "notes": 'He said "hi"\nthen left'},
        ]

    def test_blank_lines_skipped(self):
        """Blank lines before and between rows are ignored."""
        table = parse_csv("\nname\n\nAcme\n\nBeta\n")

        assert table.headers == ["name"]
        assert [row["name"] for row in table.rows] == ["Acme", "Beta"]

    def test_header_only(self):
        """A header with no data rows parses to zero rows."""
        table = parse_csv("name,email\n")

        assert table.headers == ["name", "email"]
        assert table.rows == []

    def test_max_rows_truncates_but_reports_full_count(self):
        """max_rows caps the returned rows; raw_row_count still has the total."""
        text = "name\n" + "\n".join(f"row{i}" for i in range(5))
        table = parse_csv(text, max_rows=3)

        assert len(table.rows) == 3
        assert table.raw_row_count == 5

    @pytest.mark.parametrize("text", ["", "   ", "\n\n"])
    def test_empty_input(self, text):
        """Empty input is a parse error."""
        with pytest.raises(ParseError):
            parse_csv(text)

    def test_duplicate_headers(self):
        """Two columns with the same header are rejected."""
        with pytest.raises(ParseError, match="Duplicate column header"):
            parse_csv("name,name\na,b\n")

    def test_short_row_padded(self):
        """Missing trailing fields read as empty strings."""
        table = parse_csv("name,email,phone\nAcme,info@acme.com\n")

        assert table.rows == [{"name": "Acme", "email": "info@acme.com", "phone": ""}]

    def test_long_row(self):
        """A row with more fields than the header is malformed."""
        with pytest.raises(ParseError, match="Malformed CSV"):
            parse_csv("name,email\nAcme,info@acme.com,extra\n")

    @pytest.mark.parametrize(
        "text",
        [
            'a,b\nfoo"bar,x\n',
            'a,b\n"abc"def,x\n',
            'a,b\nx,"unterminated\n',
            'a,b\nx, "late quote"\n',
        ],
    )
    def test_broken_quoting(self, text):
        """Quotes outside a well-formed quoted field are rejected."""
        with pytest.raises(ParseError, match="line 2"):
            parse_csv(text)


class TestGenerateCsv:
    """Tests for CSV generation."""

    def test_escape_field(self):
        """Only values with delimiters, quotes or newlines are quoted."""
        assert escape_field("plain") == "plain"
        assert escape_field(None) == ""
        assert escape_field("a,b") == '"a,b"'
        assert escape_field('say "x"') == '"say ""x"""'
        assert escape_field("two\nlines") == '"two\nlines"'

    def test_generate_from_dicts(self):
        """Dict rows are written in header order; missing keys are blank."""
        text = generate_csv(["row", "message"], [{"row": 2, "message": "Bad, value"}, {"row": 3}])

        assert text == 'row,message\n2,"Bad, value"\n3,'

    def test_generated_csv_parses_back(self):
        """Generated output is readable by parse_csv."""
        text = generate_csv(["name", "notes"], [["Acme, Inc.", 'He said "hi"']])
        table = parse_csv(text)

        assert table.rows == [{"name": "Acme, Inc.", "notes": 'He said "hi"'}]

    def test_single_column_blank_value(self):
        """An empty value in a one-column file is written quoted so it is not a blank line."""
        text = generate_csv(["a"], [["x"], [""], [None], ["y"]])

        assert text == 'a\nx\n""\n""\ny'
        assert parse_csv(text).rows == [{"a": "x"}, {"a": ""}, {"a": ""}, {"a": "y"}]

    @pytest.mark.parametrize(
        "rows",
        [
            [["Acme, Inc.", 'He said "hi"'], ["two\nlines", ""]],
            [["", ""], ["plain", "x"]],
        ],
    )
    def test_round_trip(self, rows):
        headers = ["name", "notes"]
        table = parse_csv(generate_csv(headers, rows))

        assert table.headers == headers
        assert table.rows == [dict(zip(headers, row)) for row in rows]
