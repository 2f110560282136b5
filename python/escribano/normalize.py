import re
import unicodedata
from dataclasses import dataclass, replace
from typing import List, Optional

ZERO_WIDTH_RE = re.compile("[\u200b-\u200f\u202a-\u202e\u2060\ufeff]")
SOFT_HYPHEN = "\u00ad"
NBSP = "\u00a0"
COLLAPSIBLE = (" ", "\n", "\t")

PUNCTUATION_MAP = {
    "\u2018": "'",
    "\u2019": "'",
    "\u2032": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2033": '"',
    "\u2013": "-",
    "\u2014": "-",
}


@dataclass(frozen=True)
class NormalizeOptions:
    case_insensitive: bool = False
    collapse_whitespace: bool = True
    unify_nbsp: bool = True
    remove_soft_hyphen: bool = True
    remove_zero_width: bool = True
    normalize_quotes_and_dashes: bool = True
    unicode_form: Optional[str] = "NFC"

    def without_collapse(self) -> "NormalizeOptions":
        return replace(self, collapse_whitespace=False)


DEFAULT_OPTIONS = NormalizeOptions()


@dataclass
class NormalizedText:
    text: str
    # index_map[i] is the index in the input that produced text[i]
    index_map: List[int]
    # end_map[i] is the input index right after the cluster that produced text[i]
    end_map: List[int]


def _clusters(text: str):
    """Yields (start_index, cluster) where a cluster is a base char plus trailing combining marks."""
    start = 0
    for i in range(1, len(text) + 1):
        if i == len(text) or not unicodedata.combining(text[i]):
            yield start, text[start:i]
            start = i


def normalize(text: str, options: NormalizeOptions = DEFAULT_OPTIONS) -> NormalizedText:
    """
    Normalizes `text` while keeping a back-mapping from every output
    character to the input index it came from and to the input index right
    after the cluster it came from.

    Unicode normalization is applied per grapheme cluster, so a composed
    character maps to the index of its base character and ends after its
    last combining mark. Characters that expand (case folding of "ß", for
    example) map every output character to the same input span.
    """
    out: List[str] = []
    index_map: List[int] = []
    end_map: List[int] = []

    for start, cluster in _clusters(text):
        end = start + len(cluster)
        if options.unicode_form:
            cluster = unicodedata.normalize(options.unicode_form, cluster)
        for ch in cluster:
            if options.unify_nbsp and ch == NBSP:
                ch = " "
            if options.remove_soft_hyphen and ch == SOFT_HYPHEN:
                continue
            if options.remove_zero_width and ZERO_WIDTH_RE.match(ch):
                continue
            if options.normalize_quotes_and_dashes:
                ch = PUNCTUATION_MAP.get(ch, ch)
            if options.case_insensitive:
                ch = ch.casefold()
            for piece in ch:
                out.append(piece)
                index_map.append(start)
                end_map.append(end)

    if options.collapse_whitespace:
        return collapse_whitespace(NormalizedText("".join(out), index_map, end_map))
    return NormalizedText("".join(out), index_map, end_map)


def collapse_whitespace(normalized: NormalizedText) -> NormalizedText:
    """Collapses runs of space, tab and newline into one space, keeping the first index of each run."""
    out: List[str] = []
    index_map: List[int] = []
    end_map: List[int] = []
    last_was_space = False
    for ch, origin, end in zip(normalized.text, normalized.index_map, normalized.end_map):
        if ch in COLLAPSIBLE:
            if not last_was_space:
                out.append(" ")
                index_map.append(origin)
                end_map.append(end)
            last_was_space = True
        else:
            out.append(ch)
            index_map.append(origin)
            end_map.append(end)
            last_was_space = False
    return NormalizedText("".join(out), index_map, end_map)


def normalize_text(text: str, options: NormalizeOptions = DEFAULT_OPTIONS) -> str:
    return normalize(text, options).text


def is_word_char(ch: str) -> bool:
    return ch.isalnum()


def is_whole_word(text: str, start: int, end: int) -> bool:
    """True unless the span [start, end) cuts through a word at either edge."""
    if start >= end:
        return False
    before_ok = start <= 0 or not (is_word_char(text[start - 1]) and is_word_char(text[start]))
    after_ok = end >= len(text) or not (is_word_char(text[end - 1]) and is_word_char(text[end]))
    return before_ok and after_ok
