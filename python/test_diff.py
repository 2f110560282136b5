"""
Tests for escribano/diff.py: structural diff with content-derived node identity.

Run: python3 test_diff.py
From: python/
"""

from escribano.diff import Delete, Insert, Keep, Modify, Move, TextDiff, diff, is_empty, stable_hash, summarize
from escribano.nodes import AtomNode, Container, change, doc, heading, paragraph, text
from escribano.redline.tracking import merge, merge_with_fallback

OLD_SENTENCE = "The Licensee shall pay the annual fee within thirty days of the invoice date."
NEW_SENTENCE = "The Licensee shall pay the annual fee within sixty days of the invoice date."


def _sample():
    return doc(
        heading(1, "Agreement"),
        paragraph("The ", text("Licensee", "bold"), " shall pay", AtomNode("hardBreak"), "the fee."),
        Container("bulletList", {}, (Container("listItem", {}, (paragraph("one"),)),)),
        paragraph("Kept ", change("inlineChange", "added", "c1", text("new")), " text"),
    )


def test_diff_of_identical_trees_is_empty():
    tree = _sample()
    assert diff(tree, tree) is None
    assert is_empty(diff(tree, _sample()))
    print("PASS: identical trees")


def test_merge_with_empty_delta_returns_input():
    tree = _sample()
    assert merge(tree, tree, None, "c9") == tree
    assert merge(tree, tree, [], "c9") == tree
    assert merge_with_fallback(tree, tree) == (tree, None)
    print("PASS: merge with empty delta")


def test_hash_ignores_position_and_transient_attrs():
    assert stable_hash(paragraph("Hello  World again")) == stable_hash(paragraph("hello world later"))
    assert stable_hash(Container("paragraph", {"tempId": "x"}, (text("a"),))) == stable_hash(paragraph("a"))
    assert stable_hash(Container("paragraph", {"align": None}, (text("a"),))) == stable_hash(paragraph("a"))
    assert stable_hash(heading(1, "Title")) != stable_hash(heading(2, "Title"))
    assert stable_hash(text("a", "bold")) != stable_hash(text("a"))
    print("PASS: hash identity")


def test_short_text_replaced_wholesale():
    old = doc(paragraph("Hello world"), paragraph("Hello again"))
    new = doc(paragraph("Hi world"), paragraph("Hello again"))
    delta = diff(old, new)
    assert isinstance(delta[0], Modify)
    assert [type(op) for op in delta[0].delta] == [Delete, Insert]
    assert isinstance(delta[1], Keep)
    print("PASS: short text wholesale")


def test_long_text_gets_character_diff():
    old = doc(paragraph(OLD_SENTENCE))
    new = doc(paragraph(NEW_SENTENCE))
    delta = diff(old, new)
    assert isinstance(delta[0], Modify)
    assert len(delta[0].delta) == 1
    text_diff = delta[0].delta[0]
    assert isinstance(text_diff, TextDiff)
    kept = "".join(t for op, t in text_diff.segments if op == 0)
    assert kept.startswith("The Licensee shall pay the annual fee within ")
    assert kept.endswith(" days of the invoice date.")
    print("PASS: long text character diff")


def test_inserted_and_deleted_blocks():
    old = doc(paragraph("A one"), paragraph("C three"))
    new = doc(paragraph("A one"), paragraph("B two"), paragraph("C three"))
    delta = diff(old, new)
    assert [type(op) for op in delta] == [Keep, Insert, Keep]
    assert summarize(delta) == [{"path": "/1", "op": "insert", "text": "B two"}]

    delta = diff(new, old)
    assert [type(op) for op in delta] == [Keep, Delete, Keep]
    assert summarize(delta) == [{"path": "/1", "op": "delete", "text": "B two"}]
    print("PASS: inserted and deleted blocks")


def test_moved_paragraph_detected():
    """A paragraph that only changed place is a move, not a delete/insert pair."""
    old = doc(paragraph("Alpha one"), paragraph("Beta two"), paragraph("Gamma three"))
    new = doc(paragraph("Gamma three"), paragraph("Alpha one"), paragraph("Beta two"))
    delta = diff(old, new)
    moves = [op for op in delta if isinstance(op, Move)]
    assert sorted(op.arriving for op in moves) == [False, True]
    assert not any(isinstance(op, (Insert, Delete)) for op in delta)
    assert [c["op"] for c in summarize(delta)] == ["move"]

    merged, change_id = merge_with_fallback(old, new)
    assert merged == new
    print("PASS: moved paragraph")


def test_nested_changes_stay_nested():
    old = doc(Container("blockquote", {}, (paragraph("Quoted text"), paragraph("Stays"))))
    new = doc(Container("blockquote", {}, (paragraph("Quoted words"), paragraph("Stays"))))
    delta = diff(old, new)
    assert isinstance(delta[0], Modify)
    assert delta[0].new.type == "blockquote"
    assert isinstance(delta[0].delta[0], Modify)
    assert isinstance(delta[0].delta[1], Keep)
    print("PASS: nested changes")


if __name__ == "__main__":
    tests = [
        test_diff_of_identical_trees_is_empty,
        test_merge_with_empty_delta_returns_input,
        test_hash_ignores_position_and_transient_attrs,
        test_short_text_replaced_wholesale,
        test_long_text_gets_character_diff,
        test_inserted_and_deleted_blocks,
        test_moved_paragraph_detected,
        test_nested_changes_stay_nested,
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
