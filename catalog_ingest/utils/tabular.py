"""Catalog Ingest - Manifest CSV parsing.

Deliberately small dialect, matching what the catalog exports produce:
- first line is the header, comma separated
- a double quote toggles "inside quoted field"; separators inside quotes
  are literal and the quote characters themselves are dropped
- every cell is whitespace-trimmed
- one record per line (quoted newlines are not supported)

Never raises: input with fewer than two lines yields no records.
"""

from __future__ import annotations

DELIMITER = ","
QUOTE = '"'


def split_fields(line: str, delimiter: str = DELIMITER) -> list[str]:
    """Split one line into trimmed fields, honoring quoted separators."""
    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == QUOTE:
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).strip())
    return values


def _clean_header(cell: str) -> str:
    cell = cell.strip()
    if cell.startswith(QUOTE):
        cell = cell[1:]
    if cell.endswith(QUOTE):
        cell = cell[:-1]
    return cell


def parse_records(text: str, delimiter: str = DELIMITER) -> list[dict[str, str]]:
    """Parse manifest text into one header->value mapping per data line.

    Args:
        text: Whole manifest text.
        delimiter: Field separator.

    Returns:
        Records in file order. Short rows map missing trailing columns to "".
    """
    lines = text.strip().split("\n")
    if len(lines) < 2:
        return []

    headers = [_clean_header(cell) for cell in lines[0].split(delimiter)]

    records = []
    for line in lines[1:]:
        values = split_fields(line, delimiter)
        records.append(
            {header: (values[i] if i < len(values) else "") for i, header in enumerate(headers)}
        )
    return records
