"""CSV source of payment instructions.

Rows are validated into :class:`models.Instruction`. A row that does not
validate is logged and dropped. Failing to open or read the source surfaces
to the caller as ``OSError``; a header without the type, client and tx
columns raises ``InputFormatError`` before any row is yielded.
"""
import csv
from pathlib import Path
from typing import Dict, Iterator, List, Optional, TextIO, Union
import structlog
from pydantic import ValidationError

from errors import InputFormatError
from models import Instruction

logger = structlog.get_logger()

EXPECTED_COLUMNS = ("type", "client", "tx", "amount")


def _row_to_record(header: List[str], row: List[str]) -> Dict[str, Optional[str]]:
    # Short rows are allowed, missing trailing columns become absent
    record: Dict[str, Optional[str]] = {}
    for index, name in enumerate(header):
        if name not in EXPECTED_COLUMNS:
            continue
        record[name] = row[index].strip() if index < len(row) else None
    return record


def read_instructions(stream: TextIO) -> Iterator[Instruction]:
    """Yield instructions from a CSV stream in file order."""
    reader = csv.reader(stream)
    header_row = next(reader, None)
    if header_row is None:
        logger.warning("Input is empty, no header row found")
        return

    header = [name.lstrip("\ufeff").strip().lower() for name in header_row]
    missing = [name for name in EXPECTED_COLUMNS[:3] if name not in header]
    if missing:
        logger.error("Input header is missing columns", missing=missing, header=header)
        raise InputFormatError(f"input header is missing columns: {', '.join(missing)}")

    for row in reader:
        if not any(cell.strip() for cell in row):
            continue
        record = _row_to_record(header, row)
        try:
            yield Instruction.model_validate(record)
        except ValidationError as e:
            logger.warning(
                "Dropping malformed record",
                line=reader.line_num,
                record=record,
                errors=[error["msg"] for error in e.errors()]
            )


def read_instructions_from_path(path: Union[str, Path], encoding: str = "utf-8-sig") -> Iterator[Instruction]:
    """Open ``path`` eagerly so a missing file fails before any row is read."""
    stream = open(path, newline="", encoding=encoding)
    return _closing_iter(stream)


def _closing_iter(stream: TextIO) -> Iterator[Instruction]:
    with stream:
        yield from read_instructions(stream)
