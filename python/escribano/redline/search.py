"""
Normalized text search over a projected document.

The index has two layers. The first is the projected text after Unicode,
punctuation and invisible-character normalization, with one tree position
per character. The second collapses whitespace runs so anchors match
across paragraph breaks regardless of how they were typed; every match
found in the second layer is mapped back through the first to exact tree
positions.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

import structlog

from escribano.config import get_settings
from escribano.nodes import Container
from escribano.normalize import (
    DEFAULT_OPTIONS,
    NormalizedText,
    NormalizeOptions,
    collapse_whitespace,
    is_whole_word,
    normalize,
)
from escribano.redline.mapper import project

logger = structlog.get_logger(__name__)

CLAUSE_PUNCTUATION_RE = re.compile(r"[.,;:!?()\[\]{}\"'/\\-]")


@dataclass
class NormalizedIndex:
    normalized_text: str
    norm_to_position: List[int]
    # Position right after the source cluster of each normalized character.
    norm_end_positions: List[int]
    options: NormalizeOptions
    search_layer: NormalizedText  # index_map points into normalized_text

    @property
    def is_empty(self) -> bool:
        return not self.search_layer.text

    def match_from_layer(self, start: int, end: int) -> "Match":
        """Maps a [start, end) span of the search layer to a Match."""
        norm_start = self.search_layer.index_map[start]
        norm_end = self.search_layer.index_map[end - 1] + 1
        return Match(
            norm_start=norm_start,
            norm_end=norm_end,
            from_pos=self.norm_to_position[norm_start],
            to_pos=self.norm_end_positions[norm_end - 1],
        )


@dataclass(frozen=True)
class Match:
    norm_start: int
    norm_end: int
    from_pos: int
    to_pos: int  # exclusive


@dataclass
class SearchOptions:
    whole_word: Optional[bool] = None  # None picks per query
    context_before: Optional[str] = None
    context_after: Optional[str] = None
    context_window: Optional[int] = None


def build_index(root: Container, options: NormalizeOptions = DEFAULT_OPTIONS) -> NormalizedIndex:
    projection = project(root)
    first = normalize(projection.text, options.without_collapse())
    positions = [projection.char_positions[i] for i in first.index_map]
    end_positions = [projection.char_positions[end - 1] + 1 for end in first.end_map]
    layer = collapse_whitespace(first) if options.collapse_whitespace else first
    return NormalizedIndex(first.text, positions, end_positions, options, layer)


def _prepare(index: NormalizedIndex, value: str) -> str:
    return normalize(value, index.options).text


def is_whole_word_likely(query: str) -> bool:
    """
    Short single tokens without clause punctuation are searched as whole
    words ("Fee" must not match "Feedback"). Anything longer is matched
    literally since word boundaries inside phrases cause false negatives.
    """
    stripped = query.strip()
    if not stripped or re.search(r"\s", stripped):
        return False
    if len(stripped) > get_settings().whole_word_max_length:
        return False
    return not CLAUSE_PUNCTUATION_RE.search(stripped)


def find_matches(index: NormalizedIndex, query: str, options: Optional[SearchOptions] = None) -> List[Match]:
    options = options or SearchOptions()
    q = _prepare(index, query)
    if not q or index.is_empty:
        return []

    text = index.search_layer.text
    window = options.context_window if options.context_window is not None else get_settings().context_window
    whole_word = options.whole_word if options.whole_word is not None else is_whole_word_likely(query)
    before = _prepare(index, options.context_before) if options.context_before else ""
    after = _prepare(index, options.context_after) if options.context_after else ""

    matches: List[Match] = []
    start = 0
    while start <= len(text) - len(q):
        idx = text.find(q, start)
        if idx == -1:
            break
        # Advance by one so overlapping candidates are still visited.
        start = idx + 1
        end = idx + len(q)

        if whole_word and not is_whole_word(text, idx, end):
            continue
        if before and before not in text[max(0, idx - window):idx]:
            continue
        if after and after not in text[end:end + window]:
            continue
        matches.append(index.match_from_layer(idx, end))

    logger.debug("find_matches", query=q[:60], count=len(matches))
    return matches


def find_large_block_matches(index: NormalizedIndex, query: str, options: Optional[SearchOptions] = None) -> List[Match]:
    """
    Head/tail matching for long blocks whose interior drifted.

    The first and last characters of the query are searched independently
    and every head/tail pair whose span is within the configured tolerance
    of the query length is returned.
    """
    settings = get_settings()
    options = options or SearchOptions()
    if len(query) < settings.fuzzy_min_query_length:
        return []

    q = _prepare(index, query)
    n = settings.head_tail_length
    if len(q) < n * 2:
        return []

    head, tail = q[:n], q[-n:]
    heads = find_matches(
        index,
        head,
        SearchOptions(whole_word=False, context_before=options.context_before, context_window=options.context_window),
    )
    if not heads:
        return []
    tails = find_matches(
        index,
        tail,
        SearchOptions(whole_word=False, context_after=options.context_after, context_window=options.context_window),
    )

    expected = len(q)
    results: List[Match] = []
    for h in heads:
        for t in tails:
            if t.norm_start <= h.norm_start:
                continue
            span = t.norm_end - h.norm_start
            if abs(span - expected) < expected * settings.fuzzy_tolerance:
                results.append(Match(h.norm_start, t.norm_end, h.from_pos, t.to_pos))
    logger.info("Fuzzy block search", heads=len(heads), tails=len(tails), accepted=len(results))
    return results


def find_with_fallback(index: NormalizedIndex, query: str, options: Optional[SearchOptions] = None) -> List[Match]:
    """Exact search first; long queries fall back to head/tail matching."""
    matches = find_matches(index, query, options)
    if matches:
        return matches
    return find_large_block_matches(index, query, options)


def select_by_occurrence(
    matches: List[Match],
    occurrence_index: Optional[int] = None,
    max_occurrences: Optional[int] = None,
    replace_all: bool = False,
) -> List[Match]:
    """
    Picks the matches an operation acts on. Priority: a 1-based
    occurrence index, then the first N, then all, then the first match.
    """
    if not matches:
        return []
    if occurrence_index is not None:
        if 1 <= occurrence_index <= len(matches):
            return [matches[occurrence_index - 1]]
        return []
    if max_occurrences is not None and max_occurrences > 0:
        return matches[:max_occurrences]
    if replace_all:
        return list(matches)
    return [matches[0]]


def find_anchor_position(
    index: NormalizedIndex,
    after_text: Optional[str] = None,
    before_text: Optional[str] = None,
    occurrence_index: Optional[int] = None,
    options: Optional[SearchOptions] = None,
) -> Optional[int]:
    """Position right after `after_text` or right before `before_text`; None when neither is found."""
    options = options or SearchOptions()
    if after_text:
        found = select_by_occurrence(find_matches(index, after_text, options), occurrence_index)
        if found:
            return found[0].to_pos
    if before_text:
        found = select_by_occurrence(find_matches(index, before_text, options), occurrence_index)
        if found:
            return found[0].from_pos
    return None
