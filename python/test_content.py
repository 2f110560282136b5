"""
Tests for escribano/redline/content.py: building nodes from styled text.

Run: python3 test_content.py
From: python/
"""

from escribano.nodes import AtomNode, Container, Mark, TextNode, doc, heading, paragraph, text
from escribano.redline.content import build_blocks, canonical_block_type, parse_styled_text, text_to_document


def test_style_tags_nest():
    nodes = parse_styled_text("a [b]bold [i]both[/i][/b]\nend")
    assert nodes == [
        text("a "),
        text("bold ", "bold"),
        text("both", "bold", "italic"),
        AtomNode("hardBreak"),
        text("end"),
    ]
    print("PASS: style tags nest")


def test_unmatched_closer_and_base_marks():
    assert parse_styled_text("[/u]x") == [text("x")]
    assert parse_styled_text("x[u]y", base_marks=(Mark("bold"),)) == [text("x", "bold"), text("y", "bold", "underline")]
    assert parse_styled_text("a\nb", literal_newlines=True) == [TextNode("a\nb")]
    assert parse_styled_text("") == []
    print("PASS: unmatched closer and base marks")


def test_build_blocks():
    assert build_blocks("First\n\nSecond", "paragraph") == [paragraph("First"), paragraph("Second")]
    assert build_blocks("", "paragraph") == [paragraph()]
    assert build_blocks("Title", "heading", 2) == [heading(2, "Title")]
    assert build_blocks("x = [b]1[/b]", "code") == [Container("codeBlock", {}, (TextNode("x = 1"),))]
    assert build_blocks("A\n\nB", "quote") == [Container("blockquote", {}, (paragraph("A"), paragraph("B")))]

    (bullets,) = build_blocks("- one\n2. two\n\n", "list")
    assert bullets.type == "bulletList"
    assert bullets.content == (
        Container("listItem", {}, (paragraph("one"),)),
        Container("listItem", {}, (paragraph("two"),)),
    )
    (ordered,) = build_blocks("one", "ordered_list")
    assert ordered.attrs == {"start": 1}
    assert canonical_block_type("p") == "paragraph"
    assert canonical_block_type("heading") == "heading"
    print("PASS: build blocks")


def test_text_to_document():
    assert text_to_document("First\nline\n\n\nSecond\n") == doc(
        paragraph("First", AtomNode("hardBreak"), "line"),
        paragraph("Second"),
    )
    assert text_to_document("  ") == doc(paragraph())
    print("PASS: text to document")


if __name__ == "__main__":
    tests = [
        test_style_tags_nest,
        test_unmatched_closer_and_base_marks,
        test_build_blocks,
        test_text_to_document,
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
