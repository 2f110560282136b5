"""
Tests for escribano/redline/tracking.py: merging a delta as tracked changes
and resolving those changes on review.

Run: python3 test_tracking.py
From: python/
"""

from escribano.models import ChangeGroup, ReviewAction, ReviewActionType
from escribano.nodes import ADDED, DELETED, Container, change, doc, paragraph, text
from escribano.redline.engine import EditEngine
from escribano.redline.mapper import project
from escribano.redline.tracking import (
    accept_all,
    accept_change,
    accept_group,
    apply_review_actions,
    build_change_group,
    change_ids,
    collect_patches,
    merge_with_fallback,
    reject_all,
    reject_change,
    reject_group,
    toggle_group_visibility,
)
from escribano.schema import get_schema

LONG_OLD = "The Licensee shall pay the annual fee within thirty days of the invoice date."
LONG_NEW = "The Licensee shall pay the annual fee within sixty days of the invoice date."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _edited(root, *edits):
    engine = EditEngine(root)
    engine.apply_edits(edits)
    return engine.doc


def _round_trips(old, new, change_id="c1"):
    merged, used = merge_with_fallback(old, new, change_id=change_id)
    assert used == change_id
    assert get_schema().check(merged) == []
    assert accept_all(merged) == new
    assert reject_all(merged) == old
    return merged


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def test_replace_scenario_merges_as_tracked_change():
    old = doc(paragraph("Hello world"), paragraph("Hello again"))
    new = _edited(old, {"type": "replace", "findText": "Hello", "replaceText": "Hi", "contextAfter": "world"})
    merged = _round_trips(old, new)
    assert merged == doc(
        paragraph(
            change("inlineChange", DELETED, "c1", text("Hello world")),
            change("inlineChange", ADDED, "c1", text("Hi world")),
        ),
        paragraph("Hello again"),
    )
    # The merged tree reads like the edited one.
    assert project(merged).text == "Hi world\nHello again"
    print("PASS: replace scenario merge")


def test_long_text_change_is_local():
    old = doc(paragraph(LONG_OLD))
    new = doc(paragraph(LONG_NEW))
    merged = _round_trips(old, new)
    kinds = [child.attrs["changeType"] for child in merged.content[0].content if isinstance(child, Container)]
    assert kinds == [DELETED, ADDED]
    assert merged.content[0].content[0] == text("The Licensee shall pay the annual fee within ")
    print("PASS: long text change is local")


def test_deleted_and_added_blocks():
    old = doc(paragraph("Keep me"), paragraph("Drop me"))
    new = doc(paragraph("Keep me"), paragraph("Brand new"))
    merged = _round_trips(old, new)
    assert merged.content[0] == paragraph("Keep me")
    assert project(merged).text == "Keep me\nBrand new"

    old = doc(paragraph("Keep me"), paragraph("Drop me"))
    merged = _round_trips(old, doc(paragraph("Keep me")))
    assert merged.content[1] == change("blockChange", DELETED, "c1", paragraph("Drop me"))
    print("PASS: deleted and added blocks")


def test_added_list_items_are_annotated_per_item():
    old = doc(paragraph("x"))
    new = _edited(old, {"type": "add_block", "content": "one\ntwo", "blockType": "bulletList"})
    merged = _round_trips(old, new)
    items = merged.content[1].content
    assert [item.type for item in items] == ["listItem", "listItem"]
    assert items[0].content[0] == change("blockChange", ADDED, "c1", paragraph("one"))
    print("PASS: list items annotated")


def test_deleting_a_pending_insertion_keeps_it_inside_the_deletion():
    old = doc(paragraph("Keep ", change("inlineChange", ADDED, "a1", text("suggested")), " end"))
    new = doc(paragraph("Keep  end"))
    merged, change_id = merge_with_fallback(old, new, change_id="c2")
    assert change_id == "c2"
    assert project(merged).text == "Keep  end"
    assert set(change_ids(merged)) == {"a1", "c2"}
    assert accept_all(merged) == new
    print("PASS: deleting a pending insertion")


def test_patches_record_positions():
    old = doc(paragraph("Hello world"), paragraph("Hello again"))
    new = doc(paragraph("Hi world"), paragraph("Hello again"))
    merged, change_id = merge_with_fallback(old, new, change_id="c1")
    patches = collect_patches(merged, change_id)
    assert [(p.change_type, p.from_pos, p.to_pos, p.text) for p in patches] == [
        ("deleted", 1, 14, "Hello world"),
        ("added", 14, 24, "Hi world"),
    ]
    group = build_change_group(merged, change_id, label="Counsel")
    assert group.id == "c1"
    assert group.label == "Counsel"
    assert group.visible
    assert len(group.patches) == 2
    print("PASS: patches record positions")


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

def _two_changes():
    return doc(
        paragraph(
            "A ",
            change("inlineChange", ADDED, "g1", text("new ")),
            change("inlineChange", DELETED, "g2", text("old ")),
            "end",
        )
    )


def test_accept_and_reject_by_id():
    tree = _two_changes()
    assert change_ids(tree) == ["g1", "g2"]
    assert accept_change(tree, "g1") == doc(
        paragraph("A new ", change("inlineChange", DELETED, "g2", text("old ")), "end")
    )
    assert reject_change(tree, "g2") == doc(
        paragraph("A ", change("inlineChange", ADDED, "g1", text("new ")), "old end")
    )
    assert accept_all(tree) == doc(paragraph("A new end"))
    assert reject_all(tree) == doc(paragraph("A old end"))
    print("PASS: accept and reject by id")


def test_review_actions():
    actions = [
        ReviewAction(action=ReviewActionType.ACCEPT, target_id="Chg:g1"),
        ReviewAction(action="REJECT", target_id="g2"),
        ReviewAction(action=ReviewActionType.ACCEPT, target_id="missing"),
    ]
    tree, applied, skipped = apply_review_actions(_two_changes(), actions)
    assert (applied, skipped) == (2, 1)
    assert tree == doc(paragraph("A new old end"))
    print("PASS: review actions")


def test_group_review_and_visibility():
    groups = [ChangeGroup(id="g1", label="first"), ChangeGroup(id="g2", label="second")]
    tree, remaining = accept_group(_two_changes(), groups, "g1")
    assert [g.id for g in remaining] == ["g2"]
    assert change_ids(tree) == ["g2"]

    tree, remaining = reject_group(_two_changes(), groups, "g2")
    assert [g.id for g in remaining] == ["g1"]
    assert change_ids(tree) == ["g1"]

    toggled = toggle_group_visibility(groups, "g2")
    assert [g.visible for g in toggled] == [True, False]
    assert [g.visible for g in toggle_group_visibility(toggled, "g2")] == [True, True]
    print("PASS: group review and visibility")


def test_rejecting_added_list_prunes_empty_containers():
    tree = doc(
        paragraph("x"),
        Container(
            "bulletList",
            {},
            (Container("listItem", {}, (change("blockChange", ADDED, "c1", paragraph("one")),)),),
        ),
    )
    assert reject_all(tree) == doc(paragraph("x"))
    print("PASS: rejecting prunes empty containers")


if __name__ == "__main__":
    tests = [
        test_replace_scenario_merges_as_tracked_change,
        test_long_text_change_is_local,
        test_deleted_and_added_blocks,
        test_added_list_items_are_annotated_per_item,
        test_deleting_a_pending_insertion_keeps_it_inside_the_deletion,
        test_patches_record_positions,
        test_accept_and_reject_by_id,
        test_review_actions,
        test_group_review_and_visibility,
        test_rejecting_added_list_prunes_empty_containers,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
