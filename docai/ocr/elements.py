"""OCR element model shared by the OCR adapters, chunking and heuristics.

Elements are persisted as a JSON document of the form
``{"Blocks": [{"BlockType": "LINE", "Id": "...", "Text": "...", ...}]}``.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from docai.utils.logger import get_logger

logger = get_logger(__name__)

LINE = "LINE"
WORD = "WORD"
PAGE = "PAGE"
TABLE = "TABLE"
CELL = "CELL"
MERGED_CELL = "MERGED_CELL"
KEY_VALUE_SET = "KEY_VALUE_SET"
SELECTION_ELEMENT = "SELECTION_ELEMENT"
QUERY = "QUERY"
QUERY_RESULT = "QUERY_RESULT"
LAYOUT_PREFIX = "LAYOUT_"

CELL_TYPES = frozenset({CELL, MERGED_CELL})


@dataclass
class OcrElement:
    """A single OCR block (line, word, cell, table, page, ...)."""

    id: str
    type: str
    text: str | None = None
    confidence: float | None = None
    page: int | None = None
    parent_id: str | None = None
    row_index: int | None = None
    column_index: int | None = None
    selection_status: str | None = None
    entity_types: list[str] | None = None
    query_text: str | None = None
    child_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, block: dict[str, Any]) -> "OcrElement":
        """Build an element from a persisted block map."""
        child_ids: list[str] = []
        for rel in block.get("Relationships") or []:
            if rel.get("Type") == "CHILD":
                child_ids.extend(str(i) for i in rel.get("Ids") or [])
        query = block.get("Query") or {}
        return cls(
            id=str(block.get("Id", "")),
            type=str(block.get("BlockType") or "UNKNOWN"),
            text=block.get("Text"),
            confidence=_to_float(block.get("Confidence")),
            page=block.get("Page"),
            parent_id=block.get("ParentId"),
            row_index=block.get("RowIndex"),
            column_index=block.get("ColumnIndex"),
            selection_status=block.get("SelectionStatus"),
            entity_types=block.get("EntityTypes"),
            query_text=block.get("QueryText") or query.get("Text"),
            child_ids=child_ids,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted block map, omitting empty attributes."""
        block: dict[str, Any] = {"BlockType": self.type, "Id": self.id}
        optional = {
            "Text": self.text,
            "Confidence": self.confidence,
            "Page": self.page,
            "ParentId": self.parent_id,
            "RowIndex": self.row_index,
            "ColumnIndex": self.column_index,
            "SelectionStatus": self.selection_status,
            "EntityTypes": self.entity_types,
            "QueryText": self.query_text,
        }
        block.update({k: v for k, v in optional.items() if v is not None})
        if self.child_ids:
            block["Relationships"] = [{"Type": "CHILD", "Ids": list(self.child_ids)}]
        return block

    def meets_confidence(self, min_confidence: float) -> bool:
        return self.confidence is not None and self.confidence >= min_confidence


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def load_elements(raw: bytes | str | list | dict) -> list[OcrElement]:
    """Parse persisted elements JSON.

    Accepts either a ``{"Blocks": [...]}`` document or a bare block list.
    Non-mapping entries are skipped.
    """
    data = json.loads(raw) if isinstance(raw, (bytes, str)) else raw
    blocks = data.get("Blocks", []) if isinstance(data, dict) else data
    elements = [OcrElement.from_dict(b) for b in blocks if isinstance(b, dict)]
    logger.debug("Loaded %d OCR elements", len(elements))
    return elements


def dump_elements(elements: list[OcrElement]) -> bytes:
    return json.dumps({"Blocks": [e.to_dict() for e in elements]}).encode("utf-8")


def filter_by_confidence(
    elements: list[OcrElement], min_confidence: float
) -> list[OcrElement]:
    """Keep elements at or above ``min_confidence``.

    Structural elements without a confidence (pages, tables without a
    score) are kept.
    """
    return [
        e for e in elements if e.confidence is None or e.confidence >= min_confidence
    ]


def confidence_stats(elements: list[OcrElement]) -> tuple[float, float, float]:
    """Return ``(avg, min, max)`` confidence over scored elements, zeros if none."""
    scores = [e.confidence for e in elements if e.confidence is not None]
    if not scores:
        return 0.0, 0.0, 0.0
    return sum(scores) / len(scores), min(scores), max(scores)
