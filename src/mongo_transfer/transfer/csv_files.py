"""
CSV collection files.

The header row is the key list of the first document. Later documents are
written against that header: keys they lack become empty cells and keys the
first document lacked are dropped (logged once per file).
"""

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Union

from ..core.exceptions import DocumentDecodeError
from .codec import decode_csv_cell, encode_for_csv

logger = logging.getLogger(__name__)


def build_rows(documents: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten every document; the whole collection is held in memory."""
    return [encode_for_csv(document) for document in documents]


def write_csv_rows(path: Union[str, Path], rows: List[Dict[str, str]]) -> int:
    """
    Write flattened rows with a header taken from the first row.

    Args:
        path: Output file
        rows: Output of build_rows()

    Returns:
        Number of data rows written
    """
    path = Path(path)
    if not rows:
        raise ValueError(f"No rows to write to {path}")

    header = list(rows[0].keys())
    known = set(header)
    dropped = set()

    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=header, restval="", extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            dropped.update(key for key in row if key not in known)
            writer.writerow(row)

    if dropped:
        logger.warning(
            f"{path.name}: columns not in the first document were dropped: "
            f"{', '.join(sorted(dropped))}"
        )

    return len(rows)


def read_csv_documents(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """
    Lazily decode the rows of a CSV collection file into documents.

    Each cell is re-typed by decode_csv_cell() using its column name. Blank
    lines are ignored; cells missing at the end of a short row are left out
    of the document.

    Raises:
        DocumentDecodeError: On malformed CSV or a row wider than the header
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        try:
            header = next(reader, None)
            if not header:
                return

            for row in reader:
                if not row:
                    continue
                if len(row) > len(header):
                    raise DocumentDecodeError(
                        f"{path.name}: line {reader.line_num} has {len(row)} cells "
                        f"but the header has {len(header)}",
                        unit=path.name,
                        position=reader.line_num,
                    )
                yield {key: decode_csv_cell(key, cell) for key, cell in zip(header, row)}
        except csv.Error as e:
            raise DocumentDecodeError(
                f"{path.name}: malformed CSV at line {reader.line_num}: {e}",
                unit=path.name,
                position=reader.line_num,
            ) from e
