"""Tests for confidence-weighted fusion of business trees."""

import copy

import pytest

from docai.extraction.fusion import (
    anchor_high_fidelity,
    fuse,
    is_leaf,
    merge_into,
    pick_by_confidence,
    to_int,
)


def leaf(value, confidence, source=None) -> dict:
    node = {"value": value, "confidence": confidence}
    if source is not None:
        node["source"] = source
    return node


class TestIsLeaf:
    """Tests for leaf detection."""

    def test_plain_leaf(self) -> None:
        assert is_leaf(leaf("x", 3))

    def test_leaf_with_source(self) -> None:
        assert is_leaf(leaf("x", 3, "ocr"))

    @pytest.mark.parametrize(
        "node",
        [{"value": 1}, {"value": 1, "confidence": 2, "extra": 3}, "x", None, []],
    )
    def test_not_leaf(self, node: object) -> None:
        assert not is_leaf(node)


class TestToInt:
    """Tests for confidence coercion."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(4, 4), (3.9, 3), ("5", 5), (" 2 ", 2), ("high", 0), (None, 0), (True, 1)],
    )
    def test_coercion(self, value: object, expected: int) -> None:
        assert to_int(value) == expected


class TestPickByConfidence:
    """Tests for the leaf tie-break rule."""

    def test_higher_incoming_wins(self) -> None:
        existing, incoming = leaf("a", 2), leaf("b", 4)
        assert pick_by_confidence(existing, incoming) is incoming

    def test_higher_existing_wins(self) -> None:
        existing, incoming = leaf("a", 5), leaf("b", 4)
        assert pick_by_confidence(existing, incoming) is existing

    def test_tie_prefers_non_null_incoming_over_null(self) -> None:
        existing, incoming = leaf(None, 3), leaf("b", 3)
        assert pick_by_confidence(existing, incoming) is incoming

    def test_tie_keeps_existing(self) -> None:
        existing, incoming = leaf("a", 3), leaf("b", 3)
        assert pick_by_confidence(existing, incoming) is existing

    def test_tie_with_null_incoming_keeps_existing(self) -> None:
        existing, incoming = leaf(None, 1), leaf(None, 1)
        assert pick_by_confidence(existing, incoming) is existing

    def test_unparseable_confidence_loses(self) -> None:
        existing, incoming = leaf("a", "n/a"), leaf("b", 1)
        assert pick_by_confidence(existing, incoming) is incoming


class TestMergeInto:
    """Tests for recursive in-place merging."""

    def test_lists_concatenate(self) -> None:
        dest = {"assignment_of_vehicle": [{"buyer": 1}]}
        merge_into(dest, {"assignment_of_vehicle": [{"buyer": 2}]})
        assert dest["assignment_of_vehicle"] == [{"buyer": 1}, {"buyer": 2}]

    def test_non_null_scalar_overwrites(self) -> None:
        dest = {"note": "old", "other": "keep"}
        merge_into(dest, {"note": "new", "other": None})
        assert dest == {"note": "new", "other": "keep"}

    def test_bare_scalar_does_not_replace_scored_leaf(self) -> None:
        dest = {"make": leaf("TOYOTA", 4)}
        merge_into(dest, {"make": "FORD"})
        assert dest["make"] == leaf("TOYOTA", 4)

        merge_into(dest, {"make": leaf("HONDA", 3)})
        assert dest["make"]["value"] == "TOYOTA"

    def test_bare_scalar_fills_null_leaf(self) -> None:
        dest = {"make": leaf(None, 1)}
        merge_into(dest, {"make": "FORD"})
        assert dest["make"] == {"value": "FORD", "confidence": 1}

    def test_missing_keys_copied(self) -> None:
        src = {"officials": {"secretary": leaf("X", 2)}}
        dest: dict = {}
        merge_into(dest, src)
        dest["officials"]["secretary"]["value"] = "changed"
        assert src["officials"]["secretary"]["value"] == "X"

    def test_nested_maps_recurse(self) -> None:
        dest = {"title_information": {"make": leaf("FORD", 2), "year": leaf(2018, 5)}}
        merge_into(dest, {"title_information": {"make": leaf("TOYOTA", 4)}})
        assert dest["title_information"]["make"]["value"] == "TOYOTA"
        assert dest["title_information"]["year"]["value"] == 2018


class TestFuse:
    """Tests for multi-source fusion."""

    def test_three_sources(self) -> None:
        heuristic = {"title_information": {"vehicle_id_number": leaf(None, 1)}}
        chunk_a = {
            "title_information": {"vehicle_id_number": leaf("1HGCM82633A004352", 5)}
        }
        chunk_b = {"title_information": {"vehicle_id_number": leaf("WRONGVIN", 2)}}
        fused = fuse([heuristic, chunk_a, chunk_b])
        assert fused["title_information"]["vehicle_id_number"] == leaf(
            "1HGCM82633A004352", 5
        )

    def test_skips_none_and_empty(self) -> None:
        assert fuse([None, {}, {"a": leaf(1, 2)}]) == {"a": leaf(1, 2)}

    def test_inputs_not_modified(self) -> None:
        sources = [
            {"x": leaf("a", 2), "items": [1]},
            {"x": leaf("b", 4), "items": [2]},
        ]
        snapshot = copy.deepcopy(sources)
        fuse(sources)
        assert sources == snapshot

    def test_deterministic(self) -> None:
        sources = [
            {"t": {"a": leaf("x", 3), "b": leaf(None, 1)}},
            {"t": {"a": leaf("y", 3), "b": leaf("z", 1)}},
        ]
        assert fuse(sources) == fuse(copy.deepcopy(sources))
        assert fuse(sources)["t"] == {"a": leaf("x", 3), "b": leaf("z", 1)}


class TestAnchorHighFidelity:
    """Tests for anchoring direct OCR matches."""

    def test_overwrites_existing_keys_only(self) -> None:
        tree = {
            "title_information": {
                "year": leaf(2017, 5),
                "make": leaf(None, 1),
            }
        }
        anchored = anchor_high_fidelity(
            tree, {"year": 2018, "make": "TOYOTA", "lien_info": "LIEN X"}
        )
        info = anchored["title_information"]
        assert info["year"] == leaf(2018, 5, "ocr")
        assert info["make"] == leaf("TOYOTA", 5, "ocr")
        assert "lien_info" not in info
        assert tree["title_information"]["year"] == leaf(2017, 5)

    def test_blank_values_ignored(self) -> None:
        tree = {"title_information": {"make": leaf("FORD", 4)}}
        anchored = anchor_high_fidelity(tree, {"make": "  "})
        assert anchored["title_information"]["make"] == leaf("FORD", 4)

    def test_tree_without_title_section(self) -> None:
        assert anchor_high_fidelity({"officials": {}}, {"year": 2018}) == {
            "officials": {}
        }
