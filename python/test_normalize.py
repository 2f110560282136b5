"""
Tests for escribano/normalize.py: text normalization with index back-mapping.

Run: python3 test_normalize.py
From: python/
"""

from escribano.normalize import (
    DEFAULT_OPTIONS,
    NormalizeOptions,
    is_whole_word,
    normalize,
    normalize_text,
)


def test_quotes_dashes_and_nbsp():
    """Curly quotes, en/em dashes and non-breaking spaces fold to ASCII."""
    assert normalize_text("\u201cFee\u201d\u00a0\u2014 due") == '"Fee" - due'
    assert normalize_text("the Buyer\u2019s \u2018notice\u2019") == "the Buyer's 'notice'"
    assert normalize_text("2019\u20132020") == "2019-2020"
    print("PASS: quotes, dashes and nbsp")


def test_invisible_characters_removed():
    """Soft hyphens and zero-width characters vanish; the map skips them."""
    result = normalize("pay\u00adment\u200b due")
    assert result.text == "payment due"
    assert result.index_map == [0, 1, 2, 4, 5, 6, 7, 9, 10, 11, 12]
    assert normalize_text("\ufeffStart") == "Start"
    print("PASS: invisible characters removed")


def test_whitespace_collapse_keeps_first_index():
    """A run of spaces, tabs and newlines becomes one space mapped to the run start."""
    result = normalize("a \n\t b")
    assert result.text == "a b"
    assert result.index_map == [0, 1, 5]
    print("PASS: whitespace collapse")


def test_without_collapse_keeps_newlines():
    result = normalize("a\n\nb", DEFAULT_OPTIONS.without_collapse())
    assert result.text == "a\n\nb"
    assert result.index_map == [0, 1, 2, 3]
    print("PASS: collapse can be disabled")


def test_case_folding_expansion():
    """Case folding can expand a character; every piece maps to the same input index."""
    options = NormalizeOptions(case_insensitive=True)
    result = normalize("Stra\u00dfe", options)
    assert result.text == "strasse"
    assert result.index_map == [0, 1, 2, 3, 4, 4, 5]
    # Case is significant by default.
    assert normalize_text("Fee") == "Fee"
    print("PASS: case folding")


def test_nfc_composition_maps_to_base():
    """A base character plus combining accent composes to one character at the base index."""
    result = normalize("cafe\u0301 bar")
    assert result.text == "caf\u00e9 bar"
    assert result.index_map == [0, 1, 2, 3, 5, 6, 7, 8]
    # The composed character spans the base letter and its accent.
    assert result.end_map == [1, 2, 3, 5, 6, 7, 8, 9]
    raw = normalize("cafe\u0301", NormalizeOptions(unicode_form=None))
    assert raw.text == "cafe\u0301"
    print("PASS: NFC composition")


def test_options_toggle_independently():
    options = NormalizeOptions(normalize_quotes_and_dashes=False, unify_nbsp=False, collapse_whitespace=False)
    assert normalize_text("\u201cA\u201d\u00a0B", options) == "\u201cA\u201d\u00a0B"
    options = NormalizeOptions(remove_soft_hyphen=False)
    assert normalize_text("co\u00adop", options) == "co\u00adop"
    print("PASS: options toggle independently")


def test_whole_word_boundaries():
    assert is_whole_word("Fee Feedback", 0, 3)
    assert not is_whole_word("Fee Feedback", 4, 7)
    assert is_whole_word("(Fee)", 1, 4)
    print("PASS: whole word boundaries")


if __name__ == "__main__":
    tests = [
        test_quotes_dashes_and_nbsp,
        test_invisible_characters_removed,
        test_whitespace_collapse_keeps_first_index,
        test_without_collapse_keeps_newlines,
        test_case_folding_expansion,
        test_nfc_composition_maps_to_base,
        test_options_toggle_independently,
        test_whole_word_boundaries,
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
