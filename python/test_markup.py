"""
Tests for escribano/markup.py: Markdown + CriticMarkup read views.

Run: python3 test_markup.py
From: python/
"""

from escribano.nodes import ADDED, DELETED, AtomNode, Container, Mark, TextNode, change, doc, heading, paragraph, text
from escribano.markup import render_markup


def test_blocks_and_marks():
    tree = doc(
        heading(2, "Terms"),
        paragraph("Pay ", text("now", "bold"), " or ", TextNode("here", (Mark("link", {"href": "http://e"}), Mark("bold")))),
        Container("bulletList", {}, (Container("listItem", {}, (paragraph("one"),)), Container("listItem", {}, (paragraph("two"),)))),
        Container("orderedList", {"start": 3}, (Container("listItem", {}, (paragraph("three"),)),)),
        Container("blockquote", {}, (paragraph("q1"), paragraph("q2"))),
        Container("codeBlock", {}, (TextNode("x = 1"),)),
        AtomNode("horizontalRule"),
        paragraph("line", AtomNode("hardBreak"), "break"),
    )
    assert render_markup(tree) == (
        "## Terms\n\n"
        "Pay **now** or [**here**](http://e)\n\n"
        "- one\n- two\n\n"
        "3. three\n\n"
        "> q1\n> \n> q2\n\n"
        "```\nx = 1\n```\n\n"
        "---\n\n"
        "line\nbreak"
    )
    print("PASS: blocks and marks")


def test_pending_changes():
    tree = doc(
        paragraph(
            change("inlineChange", DELETED, "c1", text("Hello world")),
            change("inlineChange", ADDED, "c1", text("Hi world")),
        ),
        paragraph("Hello again"),
        change("blockChange", DELETED, "c2", paragraph("Gone")),
    )
    assert render_markup(tree) == (
        "{--Hello world--}{>>[Chg:c1]<<}{++Hi world++}{>>[Chg:c1]<<}\n\n"
        "Hello again\n\n"
        "{--Gone--}{>>[Chg:c2]<<}"
    )
    assert render_markup(tree, include_ids=False).startswith("{--Hello world--}{++Hi world++}")
    assert render_markup(tree, clean_view=True) == "Hi world\n\nHello again"
    print("PASS: pending changes")


if __name__ == "__main__":
    tests = [
        test_blocks_and_marks,
        test_pending_changes,
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
