"""Delimited text parsing and CSV generation using pandas."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from io import StringIO
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from importhub.imports.errors import ParseError


SPECIAL_CHARACTERS = (",", '"', "\n", "\r")

# A quoted field, a run of plain characters, a separator, or a quote that
# fits neither (unterminated, or inside a plain field)
_TOKEN = re.compile(r'"[^"]*(?:""[^"]*)*"|[^",\r\n]+|\r\n|[,\r\n]|"')
_SEPARATORS = frozenset({",", "\n", "\r", "\r\n"})


@dataclass
class ParsedTable:
    """Headers plus rows keyed by header.

    ``raw_row_count`` is the number of data rows in the input, which may be
    larger than ``len(rows)`` when the input exceeds the row cap.
    """

    headers: list[str] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    raw_row_count: int = 0


def _normalize_headers(raw_headers: Sequence[Any]) -> list[str]:
    headers: list[str] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_headers, start=1):
        name = str(raw).strip()
        if not name:
            name = f"column_{index}"
        if name in seen:
            raise ParseError(f"Duplicate column header: {name}")
        seen.add(name)
        headers.append(name)
    return headers


def _check_quoting(raw_text: str) -> None:
    """Reject quotes that pandas would otherwise read leniently.

    A quoted field must start a field and be followed by a separator or
    the end of input; any other quote is malformed.
    """
    previous = None
    for match in _TOKEN.finditer(raw_text):
        token = match.group()
        at_field_start = previous is None or previous in _SEPARATORS
        if token == '"' or (token.startswith('"') and not at_field_start):
            problem = "unexpected quote"
        elif previous is not None and previous.startswith('"') and token not in _SEPARATORS:
            problem = "text after closing quote"
        else:
            previous = token
            continue
        line = raw_text.count("\n", 0, match.start()) + 1
        raise ParseError(f"Malformed CSV: {problem} on line {line}")


def parse_csv(raw_text: str, max_rows: Optional[int] = None) -> ParsedTable:
    """
    Parse comma-delimited text into a ParsedTable.

    The first non-blank line is the header. Every value is kept as the
    exact string from the file: no NA conversion and no whitespace
    stripping. Quoted fields may contain commas, doubled quotes and line
    breaks. Rows shorter than the header are padded with empty values.

    Args:
        raw_text: Full file contents
        max_rows: Maximum number of rows to return (the full count is
            still reported in ``raw_row_count``)

    Raises:
        ParseError: Empty input, malformed quoting, rows longer than the
            header or duplicate headers
    """
    if raw_text is None or not raw_text.strip():
        raise ParseError("File is empty")

    _check_quoting(raw_text)

    try:
        frame = pd.read_csv(
            StringIO(raw_text),
            header=None,
            dtype=str,
            na_filter=False,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=False,
        )
    except pd.errors.EmptyDataError as exc:
        raise ParseError("File is empty") from exc
    except pd.errors.ParserError as exc:
        raise ParseError(f"Malformed CSV: {exc}") from exc

    if frame.empty:
        raise ParseError("File is empty")

    # Short rows are padded; missing trailing fields read as empty
    frame = frame.fillna("")

    headers = _normalize_headers(frame.iloc[0].tolist())
    body = frame.iloc[1:]
    raw_row_count = len(body)
    if max_rows is not None:
        body = body.iloc[:max_rows]

    rows = [
        {header: str(value) for header, value in zip(headers, values)}
        for values in body.itertuples(index=False, name=None)
    ]
    return ParsedTable(headers=headers, rows=rows, raw_row_count=raw_row_count)


def escape_field(value: Any) -> str:
    """Quote a value for CSV output when it contains a delimiter, quote or newline."""
    if value is None:
        return ""
    text = str(value)
    if any(ch in text for ch in SPECIAL_CHARACTERS):
        return '"' + text.replace('"', '""') + '"'
    return text


def generate_csv(headers: Sequence[str], rows: Iterable[Any]) -> str:
    """
    Render headers and rows as CSV text joined with ``\\n``.

    Rows may be dicts keyed by header or sequences in header order.
    """
    lines = [",".join(escape_field(h) for h in headers)]
    for row in rows:
        if isinstance(row, dict):
            values = [row.get(h) for h in headers]
        else:
            values = list(row)
        line = ",".join(escape_field(v) for v in values)
        # An empty line would read back as a blank line and be skipped
        lines.append(line or '""')
    return "\n".join(lines)
