"""Streaming body transforms.

A stage turns one async byte stream into another::

    stage.pipe(source) -> AsyncIterator[bytes]

Stages are async generators, so nothing is read from ``source`` until the
consumer asks for the next chunk; a slow client therefore throttles the
read from the store. Stages only hold the bytes they need to finish the
current unit (a partial CSV record, a partial 3-byte base64 group).
"""

import base64
import codecs
import csv
import json
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from s3bridge.errors import TransformError

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^-?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^-?(0|[1-9]\d*)(\.\d+([eE][+-]?\d+)?|[eE][+-]?\d+)$")


class TransformStage(Protocol):
    """One link of a transform chain."""

    def pipe(self, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        ...


@dataclass(frozen=True)
class TransformOutcome:
    """Which transforms a response body goes through."""

    csv_to_json: bool = False
    base64: bool = False

    @property
    def changes_length(self) -> bool:
        """True if the body length differs from the stored object's."""
        return self.csv_to_json or self.base64

    @property
    def applied(self) -> tuple[str, ...]:
        names = []
        if self.csv_to_json:
            names.append("csv_to_json")
        if self.base64:
            names.append("base64")
        return tuple(names)


def coerce_value(value: str) -> Any:
    """Convert a CSV field to the JSON type it looks like.

    Integers without leading zeros, decimal/exponent floats and
    ``true``/``false`` are converted; anything else stays a string, so
    zip codes like ``"02134"`` survive.
    """
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


class _NeedMoreInput(Exception):
    """The buffered lines ran out before the csv reader finished a record."""


class CsvRecordParser:
    """Incremental CSV parser producing one dict per data row.

    The first row supplies the field names. Input is fed in arbitrary byte
    chunks and split into complete lines. The csv module decides where a
    record ends; when it asks for a line that has not arrived yet, the
    lines of the unfinished record stay buffered and are parsed again once
    more input is fed.
    """

    def __init__(self, delimiter: str = ",") -> None:
        self.delimiter = delimiter
        self.header: list[str] | None = None
        self.rows_parsed = 0
        # utf-8-sig drops a leading byte order mark.
        self._decoder = codecs.getincrementaldecoder("utf-8-sig")()
        self._partial_line = ""
        # Complete lines, starting at a record boundary.
        self._lines: list[str] = []

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Consume a chunk and return the records it completed."""
        try:
            text = self._decoder.decode(data)
        except UnicodeDecodeError as exc:
            raise TransformError(f"CSV input is not valid UTF-8: {exc}") from exc
        return self._consume(text, final=False)

    def close(self) -> list[dict[str, Any]]:
        """Flush the final record; the input may lack a trailing newline."""
        try:
            text = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise TransformError(f"CSV input is not valid UTF-8: {exc}") from exc
        records = self._consume(text, final=True)
        if self._lines:
            raise TransformError("CSV input ends inside a quoted field")
        return records

    def _consume(self, text: str, final: bool) -> list[dict[str, Any]]:
        *complete, self._partial_line = (self._partial_line + text).split("\n")
        self._lines.extend(line + "\n" for line in complete)
        if final and self._partial_line:
            self._lines.append(self._partial_line)
            self._partial_line = ""
        if not self._lines:
            return []

        def buffered_lines():
            yield from self._lines
            raise _NeedMoreInput

        reader = csv.reader(buffered_lines(), delimiter=self.delimiter)
        records = []
        consumed = 0
        try:
            for row in reader:
                consumed = reader.line_num
                record = self._to_record(row)
                if record is not None:
                    records.append(record)
        except _NeedMoreInput:
            pass
        except csv.Error as exc:
            raise TransformError(f"Malformed CSV near row {self.rows_parsed + 1}: {exc}") from exc
        del self._lines[:consumed]
        return records

    def _to_record(self, row: list[str]) -> dict[str, Any] | None:
        if not row:
            return None

        if self.header is None:
            self.header = row
            return None

        self.rows_parsed += 1
        if len(row) != len(self.header):
            raise TransformError(
                f"CSV row {self.rows_parsed} has {len(row)} fields, "
                f"header has {len(self.header)}"
            )
        return {name: coerce_value(value) for name, value in zip(self.header, row)}


class CsvToJsonStage:
    """Converts CSV rows into a JSON array of objects, one record at a time."""

    def __init__(self, delimiter: str = ",") -> None:
        self.delimiter = delimiter

    async def pipe(self, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        parser = CsvRecordParser(self.delimiter)
        started = False
        async for chunk in source:
            records = parser.feed(chunk)
            if records:
                yield self._encode(records, started)
                started = True
        records = parser.close()
        if records:
            yield self._encode(records, started)
            started = True
        yield b"]" if started else b"[]"
        logger.debug("converted %d csv records", parser.rows_parsed)

    @staticmethod
    def _encode(records: list[dict[str, Any]], started: bool) -> bytes:
        parts = []
        for record in records:
            parts.append("," if started else "[")
            started = True
            parts.append(json.dumps(record, ensure_ascii=False))
        return "".join(parts).encode("utf-8")


class Base64Stage:
    """Base64-encodes a byte stream; output equals encoding the whole input."""

    async def pipe(self, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        remainder = b""
        async for chunk in source:
            data = remainder + chunk
            cut = len(data) - len(data) % 3
            remainder = data[cut:]
            if cut:
                yield base64.b64encode(data[:cut])
        if remainder:
            yield base64.b64encode(remainder)


class TransformChain:
    """An ordered list of stages; output of stage N feeds stage N+1."""

    def __init__(self, stages: list[TransformStage] | None = None) -> None:
        self.stages = list(stages or [])

    def pipe(self, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        stream = source
        for stage in self.stages:
            stream = stage.pipe(stream)
        return stream

    @classmethod
    def for_outcome(cls, outcome: TransformOutcome) -> "TransformChain":
        """Build the chain for an outcome: content transform first, encoding last."""
        stages: list[TransformStage] = []
        if outcome.csv_to_json:
            stages.append(CsvToJsonStage())
        if outcome.base64:
            stages.append(Base64Stage())
        return cls(stages)
