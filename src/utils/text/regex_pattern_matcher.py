import functools
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Pattern, Tuple

logger = logging.getLogger("compliance.matching")


@dataclass(frozen=True)
class TextMatch:
    start: int
    end: int
    text: str


def compile_pattern(pattern: str) -> Optional[Pattern]:
    """
    Compile a rule pattern case-insensitively.

    Returns None, after logging, when the source does not compile.
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.error(
            f"Failed to compile regex pattern '{pattern}': {str(e)}"
        )
        return None


def pattern_error(pattern: str) -> Optional[str]:
    """Return the compile error message for a pattern, or None if it is valid."""
    try:
        re.compile(pattern)
    except re.error as e:
        return str(e)
    return None


class RegexPatternMatcher:
    """
    Matches text against a set of compiled regex patterns.
    Patterns that fail to compile are logged and skipped.
    """
    def __init__(self, patterns: Iterable[str]):
        self.patterns: List[Tuple[str, Pattern]] = []

        for source in patterns:
            compiled = compile_pattern(source)
            if compiled is not None:
                self.patterns.append((source, compiled))

    def iter_matches(self, text: str) -> Iterator[Tuple[str, TextMatch]]:
        """
        Yield every non-overlapping match of every pattern.

        Args:
            text: Input text to scan

        Returns:
            Iterator of (pattern source, match) in pattern order, then text order
        """
        if not text:
            return
        for source, compiled in self.patterns:
            for match in compiled.finditer(text):
                if match.end() == match.start():
                    continue
                yield source, TextMatch(match.start(), match.end(), match.group(0))


def find_phrase(text: str, phrase: str, start: int = 0) -> int:
    """Case-insensitive offset of phrase in text, -1 when absent."""
    match = re.compile(re.escape(phrase), re.IGNORECASE).search(text, start)
    return match.start() if match else -1


def find_all_phrases(text: str, phrase: str) -> List[TextMatch]:
    """Every non-overlapping case-insensitive occurrence of phrase."""
    if not phrase:
        return []
    return [
        TextMatch(m.start(), m.end(), m.group(0))
        for m in re.finditer(re.escape(phrase), text, re.IGNORECASE)
    ]


def context_window(text: str, start: int, end: int, radius: int) -> str:
    """
    Lower-cased slice text[start - radius:end + radius], clipped to the text.

    The window covers radius characters on each side of the span itself.
    """
    return text[max(0, start - radius):min(len(text), end + radius)].lower()


@functools.lru_cache(maxsize=1024)
def _term_regex(term: str) -> Pattern:
    # anchored at a word start only: "process" matches "processing" but not "reprocess"
    return re.compile(r"(?<!\w)" + re.escape(term), re.IGNORECASE)


def contains_term(text: str, term: str) -> bool:
    """Whether term occurs in text starting at a word boundary."""
    return _term_regex(term).search(text) is not None


def matching_terms(text: str, terms: Iterable[str]) -> List[str]:
    """The terms found in text, in the order given."""
    return [term for term in terms if contains_term(text, term)]


def contains_any(text: str, terms: Iterable[str]) -> bool:
    return any(contains_term(text, term) for term in terms)
