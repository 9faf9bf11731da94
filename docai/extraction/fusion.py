"""Confidence-weighted fusion of candidate business records.

Several sources (heuristic pre-parse, per-chunk LLM partials, direct OCR
matches) each produce a nested tree whose leaves are
``{"value": ..., "confidence": 1..5}`` maps. Fusion folds them into one
tree, picking the more confident value at every leaf.
"""

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from docai.extraction.scoring import MIN_CONFIDENCE, is_blank, make_field
from docai.utils.logger import get_logger

logger = get_logger(__name__)

LEAF_KEYS = frozenset({"value", "confidence"})
LEAF_KEYS_WITH_SOURCE = frozenset({"value", "confidence", "source"})

HIGH_FIDELITY_CONFIDENCE = 5
HIGH_FIDELITY_SOURCE = "ocr"


def is_leaf(node: Any) -> bool:
    """Return whether ``node`` is a ``{value, confidence[, source]}`` field."""
    if not isinstance(node, Mapping):
        return False
    keys = frozenset(node)
    return keys == LEAF_KEYS or keys == LEAF_KEYS_WITH_SOURCE


def to_int(value: Any) -> int:
    """Coerce a confidence to an int for comparison; unparseable values are 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def pick_by_confidence(
    existing: Mapping[str, Any], incoming: Mapping[str, Any]
) -> Mapping[str, Any]:
    """Choose between two leaf fields.

    The higher confidence wins. On a tie, a non-null incoming value
    replaces a null existing one; otherwise the existing field is kept.

    Args:
        existing: Field already in the fused tree.
        incoming: Candidate field from the next source.

    Returns:
        Whichever of the two inputs wins (not a copy).
    """
    c_existing = to_int(existing.get("confidence"))
    c_incoming = to_int(incoming.get("confidence"))
    if c_incoming > c_existing:
        return incoming
    if c_existing > c_incoming:
        return existing
    if existing.get("value") is None and incoming.get("value") is not None:
        return incoming
    return existing


def merge_into(dest: dict[str, Any], src: Mapping[str, Any]) -> None:
    """Merge ``src`` into ``dest`` in place.

    Values taken from ``src`` are deep-copied so ``src`` is never shared.
    A bare scalar arriving over a leaf field is compared as a
    confidence-1 leaf.
    """
    for key, s_val in src.items():
        d_val = dest.get(key)

        if d_val is None:
            dest[key] = copy.deepcopy(s_val)
        elif isinstance(d_val, list) and isinstance(s_val, list):
            dest[key] = [*d_val, *copy.deepcopy(s_val)]
        elif isinstance(d_val, Mapping) and isinstance(s_val, Mapping):
            if is_leaf(d_val) and is_leaf(s_val):
                winner = pick_by_confidence(d_val, s_val)
                dest[key] = d_val if winner is d_val else copy.deepcopy(s_val)
            else:
                merged = dict(d_val)
                merge_into(merged, s_val)
                dest[key] = merged
        elif is_leaf(d_val) and s_val is not None and not isinstance(s_val, list):
            candidate = make_field(s_val, MIN_CONFIDENCE)
            dest[key] = pick_by_confidence(d_val, candidate)
        elif s_val is not None:
            dest[key] = copy.deepcopy(s_val)


def fuse(sources: Iterable[Mapping[str, Any] | None]) -> dict[str, Any]:
    """Fold candidate trees left to right into one business tree.

    Args:
        sources: Candidate trees in priority order. ``None`` and empty
            entries are skipped.

    Returns:
        A new tree; the inputs are not modified.
    """
    fused: dict[str, Any] = {}
    for source in sources:
        if source:
            merge_into(fused, source)
    return fused


def anchor_high_fidelity(
    tree: dict[str, Any], fields: Mapping[str, Any]
) -> dict[str, Any]:
    """Overwrite ``title_information`` leaves with direct OCR matches.

    Only keys already present in ``title_information`` are touched and
    blank OCR values are ignored. Anchored leaves get confidence 5.

    Returns:
        A new tree with the anchored values.
    """
    anchored = copy.deepcopy(tree)
    title_info = anchored.get("title_information")
    if not isinstance(title_info, dict):
        return anchored

    for key, value in fields.items():
        if key in title_info and not is_blank(value):
            title_info[key] = make_field(
                value, HIGH_FIDELITY_CONFIDENCE, HIGH_FIDELITY_SOURCE
            )
            logger.debug("fusion.anchor key=%s value=%s", key, value)
    return anchored
