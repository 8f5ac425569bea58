"""
Raw Record Readers

Streams nested order records from newline-delimited JSON (one order per
line) or a JSON array file. Lines that are not JSON objects, or not valid
text in the file encoding, are yielded with a parse error instead of
raising, so one bad line never aborts a batch.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union
import json

import structlog

logger = structlog.get_logger(__name__)


class FileFormat(str, Enum):
    """Supported raw input formats"""
    JSON = "json"
    JSONL = "jsonl"


@dataclass(frozen=True)
class RawRecord:
    """One raw input record and its position in the source"""
    offset: int
    data: Any = None
    parse_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.parse_error is None


def _detect_format(path: Path) -> FileFormat:
    if path.suffix.lower() == ".json":
        return FileFormat.JSON
    return FileFormat.JSONL


def iter_ndjson_lines(
    lines: Iterable[Union[str, bytes]],
    encoding: str = "utf-8",
) -> Iterator[RawRecord]:
    """
    Parse NDJSON lines; blank lines are skipped but still consume an offset.

    Byte lines are decoded one at a time, so an undecodable line becomes a
    malformed record and the lines after it are still read.
    """
    for offset, line in enumerate(lines):
        if isinstance(line, bytes):
            try:
                line = line.decode(encoding)
            except UnicodeDecodeError as e:
                yield RawRecord(offset=offset, parse_error=f"invalid {encoding} text: {e.reason}")
                continue
        text = line.strip()
        if not text:
            continue
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            yield RawRecord(offset=offset, parse_error=f"invalid JSON: {e.msg}")
            continue
        if not isinstance(data, dict):
            yield RawRecord(offset=offset, parse_error=f"expected an object, got {type(data).__name__}")
            continue
        yield RawRecord(offset=offset, data=data)


def read_records(
    path: Union[str, Path],
    file_format: Optional[FileFormat] = None,
    encoding: str = "utf-8",
) -> Iterator[RawRecord]:
    """
    Stream raw records from a file.

    Args:
        path: NDJSON (.jsonl/.ndjson) or JSON array (.json) file
        file_format: Override format detection
        encoding: File encoding

    Yields:
        RawRecord per input record
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"File not found: {source}")

    fmt = file_format or _detect_format(source)
    logger.info("Reading raw records", file=str(source), format=fmt.value)

    if fmt == FileFormat.JSONL:
        with open(source, "rb") as fh:
            yield from iter_ndjson_lines(fh, encoding)
        return

    with open(source, "r", encoding=encoding) as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        payload = [payload]
    for offset, data in enumerate(payload):
        if isinstance(data, dict):
            yield RawRecord(offset=offset, data=data)
        else:
            yield RawRecord(offset=offset, parse_error=f"expected an object, got {type(data).__name__}")


def records_from(data: Iterable[Any]) -> Iterator[RawRecord]:
    """Wrap in-memory raw records (e.g. dicts) with offsets"""
    for offset, item in enumerate(data):
        if isinstance(item, RawRecord):
            yield item
        else:
            yield RawRecord(offset=offset, data=item)
