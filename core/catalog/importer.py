import re
from dataclasses import dataclass
from typing import List, Optional

# "anything, whitespace, trailing number" - the number may carry grouping commas or a point
_LINE_RE = re.compile(r"^(.*)\s+([\d,.]+)$")


@dataclass(frozen=True)
class ImportRecord:
    """One parsed line; price is the raw numeric token, sanitized later."""
    name: str
    price: Optional[str] = None


def parse_line(line: str) -> Optional[ImportRecord]:
    """Parse a single line into a record, or None if it yields nothing."""
    trimmed = line.strip()
    if not trimmed:
        return None

    match = _LINE_RE.match(trimmed)
    if match:
        name = match.group(1).strip()
        if not name:
            return None
        return ImportRecord(name=name, price=match.group(2))

    return ImportRecord(name=trimmed, price=None)


def parse_lines(text: str) -> List[ImportRecord]:
    """Turn pasted free text into import records.

    Each non-blank line maps to zero or one record. Lines that end in a
    number become (name, price); anything else becomes an unpriced item
    named after the whole line.
    """
    records = []
    for line in (text or "").splitlines():
        record = parse_line(line)
        if record is not None:
            records.append(record)
    return records


def parse_file(path: str) -> List[ImportRecord]:
    """Read a UTF-8 text file in the same line format."""
    with open(path, "r", encoding="utf-8") as f:
        return parse_lines(f.read())
