"""Repair of generator-written recommendation summaries.

The generator sometimes writes a card name followed immediately by another
copy of itself (``**Name****Name** - ...``, ``Name [Name](url)``,
``Capital One VentureCapital One Venture``). ``repair_summary`` collapses
those repetitions into one linked occurrence, and ``finalize_summary``
rebuilds the summary deterministically when it no longer lists every
recommended card.

Both functions are idempotent: every pass only removes text or turns a
repeated name into a single link, and the passes are iterated to a fixed
point.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from card_advisor.models.card_models import Recommendation
from card_advisor.services.card_resolver import strip_trademarks

ASTERISK_RUN = re.compile(r"\*{3,}")

# Link targets and bare URLs are never rewritten by the generic pass
PROTECTED_SPANS = re.compile(r"(\]\([^)\s]*\)|https?://[^\s)\]]+)")

# A word-initial span of 3-50 characters immediately followed by itself.
# Spans without a letter (numbers, prices) are left alone.
REPEATED_SPAN = re.compile(r"\b(\w[^\n]{2,49}?)(?:[ \t]*\1)+(?!\w)")

LIST_MARKUP = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]+", re.MULTILINE)

SENTENCE = re.compile(r"^(.+?[.!?])(?:\s|$)", re.DOTALL)

DEFAULT_OPENING = (
    "Based on your needs, here are some credit cards that could be a great fit for you."
)

MAX_REPAIR_PASSES = 10


def card_link(name: str, url: str) -> str:
    return f"[{name}]({url})" if url else name


def _name_pattern(name: str) -> str:
    """Regex for a card name tolerant of glyph and whitespace differences."""
    words = strip_trademarks(name).split()
    glyphs = r"[®™©]*"
    return (r"\s+").join(re.escape(word) + glyphs for word in words)


def _repeated_name_regex(name: str) -> re.Pattern[str] | None:
    name_pattern = _name_pattern(name)
    if not name_pattern:
        return None
    unit = (
        r"(?:\*\*)?"
        rf"(?:\[{name_pattern}\]\([^)\s]*\)|{name_pattern}(?!\w))"
        r"(?:\*\*)?"
    )
    return re.compile(rf"(?<!\w){unit}(?:\s*{unit})+", re.IGNORECASE)


def collapse_asterisk_runs(text: str) -> str:
    """Replace runs of three or more asterisks with a single space."""
    return ASTERISK_RUN.sub(" ", text)


def collapse_repeated_name(text: str, name: str, url: str) -> str:
    """Collapse immediate repetitions of one card name into a single link.

    Bold markers on the outer edges of the repetition are kept. The number
    of ``**`` removed is always even, so bold spans opened or closed outside
    the repetition stay balanced.

    Example:
        >>> collapse_repeated_name("**Venture** **Venture** - miles", "Venture", "u")
        '**[Venture](u)** - miles'
    """
    pattern = _repeated_name_regex(name)
    if pattern is None:
        return text

    link = card_link(name, url)

    def replace(match: re.Match[str]) -> str:
        matched = match.group(0)
        leading = matched.startswith("**")
        trailing = matched.endswith("**")
        if (leading + trailing) % 2 != matched.count("**") % 2:
            if leading and trailing:
                trailing = False
            elif leading or trailing:
                leading = trailing = True
            else:
                trailing = True
        return f"{'**' if leading else ''}{link}{'**' if trailing else ''}"

    return pattern.sub(replace, text)


def _collapse_span(match: re.Match[str]) -> str:
    span = match.group(1)
    return span if any(ch.isalpha() for ch in span) else match.group(0)


def collapse_repeated_spans(text: str) -> str:
    """Collapse any 3-50 character span that immediately repeats itself.

    Spans must contain a letter, so glued numbers such as ``100100`` are
    kept. Markdown link targets and bare URLs are left untouched.

    Example:
        >>> collapse_repeated_spans("Try the Capital One VentureCapital One Venture card")
        'Try the Capital One Venture card'
    """
    parts = PROTECTED_SPANS.split(text)
    for index in range(0, len(parts), 2):
        parts[index] = REPEATED_SPAN.sub(_collapse_span, parts[index])
    return "".join(parts)


def _repair_pass(text: str, recommendations: Sequence[Recommendation]) -> str:
    text = collapse_asterisk_runs(text)
    # Longest names first so a shorter name never splits a longer one
    for rec in sorted(recommendations, key=lambda r: len(r.credit_card_name), reverse=True):
        text = collapse_repeated_name(text, rec.credit_card_name, rec.apply_url)
    return collapse_repeated_spans(text)


def repair_summary(summary: str, recommendations: Sequence[Recommendation]) -> str:
    """Remove duplicated card names and repeated text from a summary.

    Args:
        summary: Generator-written markdown summary.
        recommendations: Final recommendations whose names get canonical
            ``[Name](url)`` links when repeated.

    Returns:
        The repaired summary. Applying this function to its own output
        returns the same text.
    """
    text = summary
    for _ in range(MAX_REPAIR_PASSES):
        repaired = _repair_pass(text, recommendations)
        if repaired == text:
            break
        text = repaired
    return text


def has_list_markup(text: str) -> bool:
    return LIST_MARKUP.search(text) is not None


def count_covered_names(text: str, recommendations: Sequence[Recommendation]) -> int:
    """Count recommendations whose name appears in text (case-insensitive)."""
    haystack = strip_trademarks(text).lower()
    return sum(
        1
        for rec in recommendations
        if strip_trademarks(rec.credit_card_name).lower().strip() in haystack
    )


def opening_sentence(summary: str) -> str:
    """First sentence of the prose before any list, or a generic opening."""
    prose_lines = []
    for line in summary.splitlines():
        if LIST_MARKUP.match(line):
            break
        prose_lines.append(line.strip())
    prose = " ".join(line for line in prose_lines if line)
    prose = prose.replace("**", "").replace("__", "").lstrip("# ").strip()

    if not prose:
        return DEFAULT_OPENING

    match = SENTENCE.match(prose)
    sentence = match.group(1).strip() if match else prose.rstrip(":;,- ") + "."
    if len(sentence) < 2 or len(sentence) > 300:
        return DEFAULT_OPENING
    return sentence


def build_summary(summary: str, recommendations: Sequence[Recommendation]) -> str:
    """Deterministically build a summary listing every recommendation.

    Example:
        >>> build_summary("Great question! More text.", [rec])  # doctest: +SKIP
        'Great question!\\n\\n- **[Name](url)** - reason'
    """
    lines = []
    for rec in recommendations:
        line = f"- **{card_link(rec.credit_card_name, rec.apply_url)}**"
        reason = rec.reason.strip()
        lines.append(f"{line} - {reason}" if reason else line)
    return f"{opening_sentence(summary)}\n\n" + "\n".join(lines)


def finalize_summary(
    summary: str,
    recommendations: Sequence[Recommendation],
    required_names: int = 3,
) -> str:
    """Repair a summary and rebuild it if it no longer covers the cards.

    The summary is rebuilt when fewer than ``min(required_names,
    len(recommendations))`` recommendation names appear in it, or when it
    has no list markup.

    Args:
        summary: Generator-written markdown summary.
        recommendations: Final recommendations.
        required_names: Number of names that must be present.

    Returns:
        Summary text safe to render next to the recommendations.
    """
    repaired = repair_summary(summary, recommendations)
    if not recommendations:
        return repaired

    required = min(required_names, len(recommendations))
    covered = count_covered_names(repaired, recommendations)
    if covered >= required and has_list_markup(repaired):
        return repaired

    return repair_summary(build_summary(repaired, recommendations), recommendations)
