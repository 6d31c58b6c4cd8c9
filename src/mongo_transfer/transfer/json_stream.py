"""
Streaming extended-JSON files.

A collection file is one top-level JSON array. The writer emits it one
document at a time and the reader pulls it back one element at a time, so
neither side holds more than a single document (plus a read buffer) in
memory, whatever the size of the collection.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Generator, Iterator, Optional, TextIO, Union

from ..core.exceptions import DocumentDecodeError
from .codec import decode_extended_json, encode_for_json

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536
_WHITESPACE = " \t\n\r"
_DELIMITERS = _WHITESPACE + ",]"


class JsonArrayWriter:
    """
    Writes documents into a JSON array file incrementally.

    Output layout:
        [
          {
            "_id": {"$oid": "..."},
            ...
          },
          {
            ...
          }
        ]

    Usable as a context manager; close() terminates the array.
    """

    def __init__(self, path: Union[str, Path], indent: int = 2):
        self.path = Path(path)
        self.indent = indent
        self.count = 0
        self._file: Optional[TextIO] = open(self.path, "w", encoding="utf-8", newline="\n")
        self._file.write("[")

    def write(self, document: Dict[str, Any]) -> None:
        """Append one document (native values, encoded here)."""
        if self._file is None:
            raise ValueError(f"Writer for {self.path} is closed")

        text = json.dumps(encode_for_json(document), indent=self.indent, ensure_ascii=False)
        pad = " " * self.indent
        body = "\n".join(pad + line for line in text.splitlines())

        self._file.write(",\n" if self.count else "\n")
        self._file.write(body)
        self.count += 1

    def close(self) -> None:
        if self._file is None:
            return
        self._file.write("\n]\n" if self.count else "]\n")
        self._file.close()
        self._file = None

    def abort(self) -> None:
        """Close without terminating the array and remove the partial file."""
        if self._file is not None:
            self._file.close()
            self._file = None
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "JsonArrayWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


def iter_json_array(
    stream: TextIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    source: Optional[str] = None,
) -> Generator[Any, None, None]:
    """
    Pull the elements of a top-level JSON array one at a time.

    Input is read in chunks only when the buffer does not yet hold a complete
    element. Each element is yielded as plain parsed JSON.

    Args:
        stream: Text stream positioned at the start of the document
        chunk_size: Characters read per refill
        source: Name used in error messages

    Raises:
        DocumentDecodeError: If the content is not a well-formed JSON array
    """
    decoder = json.JSONDecoder()
    buffer = ""
    pos = 0
    consumed = 0
    eof = False
    source = source or getattr(stream, "name", "<stream>")

    def refill() -> bool:
        nonlocal buffer, pos, consumed, eof
        if eof:
            return False
        chunk = stream.read(chunk_size)
        if not chunk:
            eof = True
            return False
        # Drop what has been consumed so the buffer stays one element wide.
        consumed += pos
        buffer = buffer[pos:] + chunk
        pos = 0
        return True

    def next_char() -> Optional[str]:
        nonlocal pos
        while True:
            while pos < len(buffer) and buffer[pos] in _WHITESPACE:
                pos += 1
            if pos < len(buffer):
                return buffer[pos]
            if not refill():
                return None

    def fail(message: str) -> DocumentDecodeError:
        offset = consumed + pos
        return DocumentDecodeError(f"{source}: {message} at offset {offset}", unit=source, position=offset)

    first = next_char()
    if first is None:
        raise fail("empty file, expected a JSON array")
    if first != "[":
        raise fail(f"expected '[' but found {first!r}")
    pos += 1

    expect_value = True
    index = 0
    while True:
        char = next_char()
        if char is None:
            raise fail("unexpected end of file inside array")

        if char == "]" and (index == 0 or not expect_value):
            pos += 1
            break

        if not expect_value:
            if char != ",":
                raise fail(f"expected ',' or ']' after element {index - 1} but found {char!r}")
            pos += 1
            expect_value = True
            continue

        while True:
            try:
                element, end = decoder.raw_decode(buffer, pos)
            except json.JSONDecodeError as e:
                if refill():
                    continue
                raise fail(f"invalid JSON in element {index}: {e.msg}") from e
            # A number cut by the buffer edge ("6." of "6.02e23") decodes
            # short; only accept it once a delimiter follows.
            if (end == len(buffer) or buffer[end] not in _DELIMITERS) and refill():
                continue
            break

        pos = end
        yield element
        index += 1
        expect_value = False

    trailing = next_char()
    if trailing is not None:
        raise fail(f"unexpected data after closing ']': {trailing!r}")


def read_json_documents(
    path: Union[str, Path],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[Dict[str, Any]]:
    """
    Lazily decode the documents of an extended-JSON collection file.

    Raises:
        DocumentDecodeError: On malformed JSON or an element that is not an object
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8-sig") as f:
        for index, element in enumerate(iter_json_array(f, chunk_size=chunk_size, source=path.name)):
            # {"$oid": ...} decodes to an ObjectId, not a document
            document = decode_extended_json(element)
            if not isinstance(document, dict):
                raise DocumentDecodeError(
                    f"{path.name}: element {index} is a {type(document).__name__}, not a document",
                    unit=path.name,
                    position=index,
                )
            yield document
