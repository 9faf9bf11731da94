"""Size-bounded, full-coverage chunking of OCR element streams.

Each element renders to one text unit such as ``[LINE] VIN 1FTFW1ET5DFC10312``.
Tables render their whole cell grid inline, so table structure is never
split across chunks. Units accumulate into a chunk until the next one
would push it past the character budget.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from docai.errors import ValidationError
from docai.ocr.elements import (
    CELL_TYPES,
    KEY_VALUE_SET,
    LAYOUT_PREFIX,
    PAGE,
    QUERY,
    QUERY_RESULT,
    SELECTION_ELEMENT,
    TABLE,
    OcrElement,
)
from docai.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_CHARS = 18000


@dataclass
class Chunk:
    """A rendered run of consecutive elements."""

    index: int
    text: str
    element_ids: list[str] = field(default_factory=list)


def _index_cells(
    elements: list[OcrElement],
) -> tuple[dict[str, list[OcrElement]], set[int]]:
    """Group cells under the table that owns them.

    A cell belongs to a table when its ``parent_id`` names a table in the
    stream, or when a table lists it as a child.

    Returns:
        Cells per table id, and the ``id()`` of every cell that was claimed.
    """
    tables = {e.id: e for e in elements if e.type == TABLE}
    child_owner = {cid: t.id for t in tables.values() for cid in t.child_ids}

    by_table: dict[str, list[OcrElement]] = {}
    claimed: set[int] = set()
    for element in elements:
        if element.type not in CELL_TYPES:
            continue
        owner = element.parent_id if element.parent_id in tables else None
        owner = owner or child_owner.get(element.id)
        if owner is None:
            continue
        by_table.setdefault(owner, []).append(element)
        claimed.add(id(element))
    return by_table, claimed


def render_table(table: OcrElement, cells: list[OcrElement]) -> str:
    rows: dict[int, list[OcrElement]] = {}
    for cell in cells:
        rows.setdefault(cell.row_index or 0, []).append(cell)

    lines = [f"[{table.type}] (Table detected)"]
    for row_index in sorted(rows):
        row = sorted(rows[row_index], key=lambda c: c.column_index or 0)
        parts = " | ".join((c.text or "").strip() or " " for c in row)
        lines.append(f"  Row {row_index}:  | {parts} |")
    return "\n".join(lines)


def render_element(element: OcrElement) -> str:
    """Render a non-table element to its text unit.

    Unknown element types still render with their type tag and text.
    """
    etype = element.type
    parts = [f"[{etype}]"]

    if etype == QUERY:
        parts.append(f"Query: {element.query_text or ''}")
    elif etype == QUERY_RESULT:
        parts.append(f"Answer: {element.text or ''}")
    elif element.text:
        parts.append(element.text)

    if etype == SELECTION_ELEMENT:
        parts.append(f"Selected: {element.selection_status}")
    elif etype == PAGE:
        parts.append("(Page break)")
    elif etype == KEY_VALUE_SET:
        parts.append("(Form field)")
        if element.entity_types:
            parts.append(f"EntityTypes={','.join(element.entity_types)}")
    elif etype.startswith(LAYOUT_PREFIX):
        parts.append("(Layout element)")
    elif etype in CELL_TYPES:
        parts.append(f"(Row={element.row_index}, Col={element.column_index})")

    return " ".join(p for p in parts if p).strip()


def build_chunks(
    elements: Iterable[OcrElement], max_chars: int = DEFAULT_MAX_CHARS
) -> Iterator[Chunk]:
    """Split elements into chunks of at most ``max_chars`` characters.

    Every element is covered exactly once. A single unit longer than the
    budget is emitted as its own oversized chunk.

    Args:
        elements: OCR elements in reading order.
        max_chars: Character budget per chunk.

    Returns:
        A single-pass iterator of chunks.

    Raises:
        ValidationError: If ``max_chars`` is not positive.
    """
    if max_chars <= 0:
        raise ValidationError(f"chunk budget must be positive, got {max_chars}")
    return _generate(list(elements), max_chars)


def _generate(elements: list[OcrElement], max_chars: int) -> Iterator[Chunk]:
    cells_by_table, claimed = _index_cells(elements)

    buffer: list[str] = []
    ids: list[str] = []
    size = 0
    index = 0

    for element in elements:
        if id(element) in claimed:
            continue

        if element.type == TABLE:
            cells = cells_by_table.get(element.id, [])
            unit = render_table(element, cells)
            unit_ids = [element.id, *(c.id for c in cells)]
        else:
            unit = render_element(element)
            unit_ids = [element.id]

        unit_size = len(unit) + 1
        if buffer and size + unit_size > max_chars:
            yield Chunk(index=index, text="".join(buffer), element_ids=ids)
            index += 1
            buffer, ids, size = [], [], 0

        buffer.append(unit + "\n")
        ids.extend(unit_ids)
        size += unit_size

    if buffer:
        yield Chunk(index=index, text="".join(buffer), element_ids=ids)
        index += 1
    logger.info("chunker.done chunks=%d elements=%d", index, len(elements))
