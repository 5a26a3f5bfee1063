#!/usr/bin/env python3
"""Criterion evaluators - deterministic checks over artifact text.

Every evaluator takes ``(artifact, request_context)`` and returns a bool or a
sub-score in [0, 1]. Evaluators never read the clock or use randomness; the
request year for citation plausibility comes from ``request_context``.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from .models import Evaluator

# ═══════════════════════════════════════════════════════════════════════════
# PATTERNS
# ═══════════════════════════════════════════════════════════════════════════

# Line prefix the enhancer writes into sections it had to insert
PLACEHOLDER_MARKER: Final[str] = "_Pending:"

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_LABEL_LINE = re.compile(r"^\s*(?:\*\*)?([A-Za-z][A-Za-z ;/&'-]{1,40}?)(?:\*\*)?\s*:\s*(\S.*)?$")

CANONICAL_CITATION: Final[re.Pattern[str]] = re.compile(r"\[(\d{1,3})\]")
ANY_NUMERIC_CITATION: Final[re.Pattern[str]] = re.compile(
    r"\[\s*(?:(?:ref(?:erence)?|source|cite)\.?\s*)?(\d{1,3})\s*\]", re.IGNORECASE
)
AUTHOR_YEAR_CITATION: Final[re.Pattern[str]] = re.compile(
    r"\(([A-Z][A-Za-z'\-]+(?: et al\.?)?(?: (?:and|&) [A-Z][A-Za-z'\-]+)?),?\s+(\d{4})[a-z]?\)"
)
URL: Final[re.Pattern[str]] = re.compile(r"https?://[^\s)>\]]+")
ARXIV_ID: Final[re.Pattern[str]] = re.compile(
    r"(?:arxiv\.org/(?:abs|pdf)/|arXiv:\s*)(\d{2})(\d{2})\.(\d{4,5})", re.IGNORECASE
)
DOI: Final[re.Pattern[str]] = re.compile(r"(?:\bdoi:\s*|doi\.org/)(\S+)", re.IGNORECASE)
_VALID_DOI = re.compile(r"^10\.\d{4,9}/\S+$")
_REFERENCE_ENTRY = re.compile(r"^\s*(?:\[(\d{1,3})\]|(\d{1,3})[.)])\s+\S")
# A standalone year: not part of an identifier, DOI, URL path or decimal
_YEAR = re.compile(r"(?<![\w./:])((?:19|20)\d{2})(?![\d/]|\.\d)")
_PAGES = re.compile(r"\b(?:pp?|pages?)\.?\s*\d+(?:\s*[-\u2013]\s*\d+)?", re.IGNORECASE)

PLACEHOLDER_PATTERNS: Final[list[str]] = [
    r"\bTODO\b",
    r"\bTBD\b",
    r"\bFIXME\b",
    r"\bXXX\b",
    r"lorem ipsum",
    r"\[insert [^\]]*\]",
    r"<placeholder>",
]
_PLACEHOLDERS = [re.compile(p, re.IGNORECASE) for p in PLACEHOLDER_PATTERNS]

ERROR_MARKER_PATTERNS: Final[list[str]] = [
    r"^\s*(?:error|exception|fatal)\s*:",
    r"traceback \(most recent call last\)",
    r"\bI (?:cannot|can't|am unable to) (?:help|complete|do|provide)\b",
    r"\bas an AI language model\b",
]
_ERROR_MARKERS = [re.compile(p, re.IGNORECASE | re.MULTILINE) for p in ERROR_MARKER_PATTERNS]

UNSAFE_FIX_PATTERNS: Final[list[str]] = [
    r"\brm\s+-(?:rf|fr)\s+(?:/|~|\$HOME|\*)(?:\s|$)",
    r"\bsudo\s+rm\b",
    r"\bdrop\s+(?:table|database|schema)\b",
    r"\btruncate\s+table\b",
    r"\bdelete\s+from\s+\w+\s*;",
    r"\bchmod\s+(?:-R\s+)?777\b",
    r"\bgit\s+push\s+(?:--force|-f)\b",
    r"\bgit\s+reset\s+--hard\s+origin\b",
    r"\bverify\s*=\s*False\b",
    r"--no-verify\b",
    r"\bdisabl\w*\s+(?:ssl|tls|certificate|authentication|the firewall)\b",
    r"\bexcept\s*:\s*pass\b",
]
_UNSAFE_FIX = [re.compile(p, re.IGNORECASE) for p in UNSAFE_FIX_PATTERNS]

_STUB_LINE = re.compile(r"^\s*(?:pass|\.\.\.)\s*$|raise NotImplementedError|(?:#|//)\s*(?:TODO|FIXME)")
_PYTHON_HINT = re.compile(r"^\s*(?:def |class |import |from \S+ import |async def )", re.MULTILINE)
_ERROR_IDENTIFIER = re.compile(r"\b([A-Z][A-Za-z]*(?:Error|Exception))\b")
_REASONING = re.compile(
    r"\b(?:because|caused by|due to|root cause|the reason|this happens|which means|results? in)\b",
    re.IGNORECASE,
)
_SENTENCE_END = re.compile(r"[.!?]+(?:\s|$)")
_STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "the", "and", "for", "from", "with", "this", "that", "what", "when",
        "which", "about", "into", "your", "have", "will", "should", "would",
        "could", "please", "write", "make", "give", "them", "they", "their",
        "there", "these", "those", "some", "more", "most", "than", "then",
    }
)


# ═══════════════════════════════════════════════════════════════════════════
# TEXT STRUCTURE
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block."""

    language: str
    body: str
    closed: bool


@dataclass(frozen=True)
class Heading:
    """A markdown heading outside code fences."""

    line_index: int
    level: int
    title: str


def _scan(text: str) -> list[tuple[str, bool]]:
    """Pair every line with whether it sits inside (or on) a code fence."""
    lines: list[tuple[str, bool]] = []
    in_fence = False
    for line in text.splitlines():
        if line.strip().startswith("```"):
            lines.append((line, True))
            in_fence = not in_fence
            continue
        lines.append((line, in_fence))
    return lines


def prose_lines(text: str) -> list[str]:
    return [line for line, in_code in _scan(text) if not in_code]


def prose_text(text: str) -> str:
    return "\n".join(prose_lines(text))


def code_blocks(text: str) -> list[CodeBlock]:
    blocks: list[CodeBlock] = []
    in_block = False
    language = ""
    buffer: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("```"):
            if not in_block:
                in_block = True
                language = stripped[3:].strip().lower()
                buffer = []
            else:
                blocks.append(CodeBlock(language, "\n".join(buffer), True))
                in_block = False
            continue
        if in_block:
            buffer.append(line)
    if in_block:
        blocks.append(CodeBlock(language, "\n".join(buffer), False))
    return blocks


def headings(text: str) -> list[Heading]:
    found: list[Heading] = []
    for index, (line, in_code) in enumerate(_scan(text)):
        if in_code:
            continue
        match = _HEADING.match(line)
        if match:
            found.append(Heading(index, len(match.group(1)), match.group(2).strip()))
    return found


def word_count(text: str) -> int:
    return len(re.findall(r"\b\w+\b", prose_text(text)))


def _title_matches(title: str, aliases: tuple[str, ...]) -> bool:
    lowered = re.sub(r"[*_`:]", "", title).strip().lower()
    lowered = re.sub(r"^\d+(?:\.\d+)*\.?\s+", "", lowered)
    return any(lowered == alias or lowered.startswith(alias + " ") for alias in aliases)


def find_section(text: str, aliases: tuple[str, ...]) -> tuple[Heading, list[str]] | None:
    """Locate a heading whose title matches an alias and return its body lines."""
    lines = text.splitlines()
    found = headings(text)
    for position, heading in enumerate(found):
        if not _title_matches(heading.title, aliases):
            continue
        end = len(lines)
        for later in found[position + 1 :]:
            if later.level <= heading.level:
                end = later.line_index
                break
        return heading, lines[heading.line_index + 1 : end]
    return None


def section_score(text: str, aliases: tuple[str, ...]) -> float:
    """1.0 for a section with content, 0.6 for a header-only/placeholder section, else 0."""
    located = find_section(text, aliases)
    if located is not None:
        _, body = located
        meaningful = [
            line for line in body
            if line.strip() and not line.strip().startswith(PLACEHOLDER_MARKER)
        ]
        return 1.0 if meaningful else 0.6

    # "Summary: ..." label lines count as an inline section
    for line in prose_lines(text):
        match = _LABEL_LINE.match(line)
        if match and match.group(2) and _title_matches(match.group(1), aliases):
            return 1.0
    return 0.0


# ═══════════════════════════════════════════════════════════════════════════
# SECTIONS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SectionSpec:
    """A required section: canonical title plus accepted aliases."""

    title: str
    aliases: tuple[str, ...]


SECTION_SPECS: Final[dict[str, SectionSpec]] = {
    "has_summary": SectionSpec(
        "Summary", ("summary", "abstract", "overview", "tl;dr", "executive summary", "key takeaways")
    ),
    "has_references": SectionSpec(
        "References", ("references", "sources", "bibliography", "works cited", "citations")
    ),
    "has_findings": SectionSpec("Findings", ("findings", "results", "key findings", "analysis")),
    "has_recommendations": SectionSpec(
        "Recommendations", ("recommendations", "next steps", "conclusion", "conclusions", "action items")
    ),
    "has_root_cause": SectionSpec(
        "Root Cause", ("root cause", "cause", "diagnosis", "root-cause analysis", "analysis")
    ),
    "has_fix": SectionSpec("Fix", ("fix", "solution", "resolution", "proposed fix", "patch")),
    "has_verification": SectionSpec(
        "Verification", ("verification", "testing", "how to verify", "validation", "tests")
    ),
    "has_usage_example": SectionSpec(
        "Usage", ("usage", "example", "examples", "quick start", "quickstart", "how to use")
    ),
}


def has_section(criterion_name: str) -> Evaluator:
    spec = SECTION_SPECS[criterion_name]

    def evaluate(artifact: str, context: Mapping[str, Any]) -> float:
        return section_score(artifact, spec.aliases)

    evaluate.__name__ = criterion_name
    return evaluate


def has_usage_example(artifact: str, context: Mapping[str, Any]) -> float:
    if any("__name__" in block.body and "__main__" in block.body for block in code_blocks(artifact)):
        return 1.0
    return section_score(artifact, SECTION_SPECS["has_usage_example"].aliases)


# ═══════════════════════════════════════════════════════════════════════════
# CITATIONS
# ═══════════════════════════════════════════════════════════════════════════


def _split_references(text: str) -> tuple[str, list[str]]:
    """Split text into (body before the references section, reference lines)."""
    located = find_section(text, SECTION_SPECS["has_references"].aliases)
    if located is None:
        return text, []
    heading, body = located
    lines = text.splitlines()
    before = "\n".join(lines[: heading.line_index])
    after_start = heading.line_index + 1 + len(body)
    remainder = "\n".join(lines[after_start:])
    return before + "\n" + remainder, body


def count_citations(text: str) -> int:
    body, _ = _split_references(prose_text(text))
    return (
        len(ANY_NUMERIC_CITATION.findall(body))
        + len(AUTHOR_YEAR_CITATION.findall(body))
        + len(URL.findall(body))
        + len(ARXIV_ID.findall(body))
    )


def citations_present(artifact: str, context: Mapping[str, Any]) -> float:
    return min(1.0, count_citations(artifact) / 3.0)


def citation_format(artifact: str, context: Mapping[str, Any]) -> float:
    """Fraction of numeric citations written in canonical ``[n]`` form."""
    body, _ = _split_references(prose_text(artifact))
    total = len(ANY_NUMERIC_CITATION.findall(body))
    if total == 0:
        return 1.0
    return len(CANONICAL_CITATION.findall(body)) / total


def reference_years(line: str) -> list[int]:
    """Publication years on a reference line.

    Page ranges are dropped first; arXiv identifiers, DOIs and URL paths are
    never read as years.
    """
    return [int(year) for year in _YEAR.findall(_PAGES.sub(" ", line))]


def implausible_citations(artifact: str, context: Mapping[str, Any]) -> list[str]:
    """Reasons the artifact's citations look fabricated (empty when plausible)."""
    problems: list[str] = []
    prose = prose_text(artifact)
    body, references = _split_references(prose)
    as_of_year = context.get("as_of_year")

    if isinstance(as_of_year, int):
        for _, year in AUTHOR_YEAR_CITATION.findall(prose):
            if int(year) > as_of_year:
                problems.append(f"citation year {year} is after {as_of_year}")
        for line in references:
            for year in reference_years(line):
                if year > as_of_year:
                    problems.append(f"reference year {year} is after {as_of_year}")

    for yy, mm, _ in ARXIV_ID.findall(prose):
        month = int(mm)
        if not 1 <= month <= 12:
            problems.append(f"arXiv identifier {yy}{mm} has invalid month")
        elif isinstance(as_of_year, int) and 2000 + int(yy) > as_of_year:
            problems.append(f"arXiv identifier {yy}{mm} is after {as_of_year}")

    for doi in DOI.findall(prose):
        if not _VALID_DOI.match(doi.rstrip(".,;")):
            problems.append(f"malformed DOI {doi}")

    listed = set()
    for line in references:
        match = _REFERENCE_ENTRY.match(line)
        if match:
            listed.add(int(match.group(1) or match.group(2)))
    if listed:
        cited = {int(n) for n in ANY_NUMERIC_CITATION.findall(body)}
        for number in sorted(cited - listed):
            problems.append(f"citation [{number}] has no reference entry")

    return problems


def no_fabricated_citations(artifact: str, context: Mapping[str, Any]) -> bool:
    return not implausible_citations(artifact, context)


def paragraph_citation_coverage(artifact: str, context: Mapping[str, Any]) -> float:
    """Fraction of substantial body paragraphs carrying at least one citation."""
    body, _ = _split_references(prose_text(artifact))
    paragraphs = [
        p for p in re.split(r"\n\s*\n", body)
        if len(p.split()) >= 40 and not _HEADING.match(p.strip())
    ]
    if not paragraphs:
        return 1.0
    cited = sum(
        1 for p in paragraphs
        if ANY_NUMERIC_CITATION.search(p) or AUTHOR_YEAR_CITATION.search(p)
        or URL.search(p) or ARXIV_ID.search(p)
    )
    return cited / len(paragraphs)


# ═══════════════════════════════════════════════════════════════════════════
# CODE
# ═══════════════════════════════════════════════════════════════════════════


def looks_like_python(source: str) -> bool:
    return bool(_PYTHON_HINT.search(source))


def is_python_block(block: CodeBlock) -> bool:
    if block.language in ("python", "py", "python3"):
        return True
    return block.language == "" and looks_like_python(block.body)


def python_parses(source: str) -> bool:
    try:
        ast.parse(source)
    except (SyntaxError, ValueError):
        return False
    return True


def has_code_block(artifact: str, context: Mapping[str, Any]) -> bool:
    return any(block.body.strip() for block in code_blocks(artifact))


def python_syntax_valid(artifact: str, context: Mapping[str, Any]) -> bool:
    return all(python_parses(b.body) for b in code_blocks(artifact) if is_python_block(b))


def no_stub_bodies(artifact: str, context: Mapping[str, Any]) -> float:
    stubs = sum(
        1
        for block in code_blocks(artifact)
        for line in block.body.splitlines()
        if _STUB_LINE.search(line)
    )
    if stubs == 0:
        return 1.0
    return 0.5 if stubs == 1 else 0.0


def documented_code(artifact: str, context: Mapping[str, Any]) -> float:
    blocks = [b for b in code_blocks(artifact) if b.body.strip()]
    if not blocks:
        return 0.0
    documented = sum(
        1 for b in blocks if '"""' in b.body or "'''" in b.body or re.search(r"(^|\s)(#|//)\s", b.body)
    )
    return documented / len(blocks)


def code_line_length(artifact: str, context: Mapping[str, Any]) -> float:
    lines = [line for b in code_blocks(artifact) for line in b.body.splitlines() if line.strip()]
    if not lines:
        return 1.0
    return sum(1 for line in lines if len(line) <= 100) / len(lines)


def code_language_tagged(artifact: str, context: Mapping[str, Any]) -> float:
    blocks = code_blocks(artifact)
    if not blocks:
        return 1.0
    return sum(1 for b in blocks if b.language) / len(blocks)


def fenced_blocks_closed(artifact: str, context: Mapping[str, Any]) -> bool:
    return all(block.closed for block in code_blocks(artifact))


# ═══════════════════════════════════════════════════════════════════════════
# DEBUGGING
# ═══════════════════════════════════════════════════════════════════════════


def no_unsafe_fix(artifact: str, context: Mapping[str, Any]) -> bool:
    return not any(pattern.search(artifact) for pattern in _UNSAFE_FIX)


def references_reported_error(artifact: str, context: Mapping[str, Any]) -> float:
    """Does the analysis mention the error types present in the request context?"""
    sources = [str(v) for k, v in context.items() if k == "request" or k.startswith("context:")]
    reported = set()
    for source in sources:
        reported.update(_ERROR_IDENTIFIER.findall(source))
    if not reported:
        return 1.0
    return 1.0 if any(name in artifact for name in reported) else 0.3


def explains_reasoning(artifact: str, context: Mapping[str, Any]) -> float:
    hits = len(_REASONING.findall(prose_text(artifact)))
    if hits >= 2:
        return 1.0
    return 0.6 if hits == 1 else 0.0


# ═══════════════════════════════════════════════════════════════════════════
# GENERAL PROSE
# ═══════════════════════════════════════════════════════════════════════════


def no_unresolved_placeholders(artifact: str, context: Mapping[str, Any]) -> bool:
    prose = prose_text(artifact)
    return not any(pattern.search(prose) for pattern in _PLACEHOLDERS)


def no_error_markers(artifact: str, context: Mapping[str, Any]) -> bool:
    prose = prose_text(artifact)
    return not any(pattern.search(prose) for pattern in _ERROR_MARKERS)


def min_words(minimum: int) -> Evaluator:
    def evaluate(artifact: str, context: Mapping[str, Any]) -> float:
        return min(1.0, word_count(artifact) / minimum)

    evaluate.__name__ = f"min_words_{minimum}"
    return evaluate


def section_structure(minimum: int) -> Evaluator:
    def evaluate(artifact: str, context: Mapping[str, Any]) -> float:
        return min(1.0, len(headings(artifact)) / minimum)

    evaluate.__name__ = f"section_structure_{minimum}"
    return evaluate


def readable_sentences(artifact: str, context: Mapping[str, Any]) -> float:
    """1.0 when sentences average 30 words or fewer, scaled down beyond that."""
    prose = " ".join(
        line for line in prose_lines(artifact)
        if line.strip() and not _HEADING.match(line)
    )
    sentences = [s for s in _SENTENCE_END.split(prose) if s.strip()]
    if not sentences:
        return 1.0
    average = sum(len(s.split()) for s in sentences) / len(sentences)
    return 1.0 if average <= 30 else min(1.0, 30.0 / average)


def heading_hierarchy(artifact: str, context: Mapping[str, Any]) -> bool:
    """No heading skips a level relative to the heading before it."""
    found = headings(artifact)
    return all(b.level <= a.level + 1 for a, b in zip(found, found[1:]))


def clean_whitespace(artifact: str, context: Mapping[str, Any]) -> bool:
    if re.search(r"\n\s*\n\s*\n\s*\n", artifact):
        return False
    return not any(line != line.rstrip() for line in artifact.splitlines())


def request_keywords(text: str) -> set[str]:
    words = re.findall(r"[a-z0-9]+", text.lower())
    return {w for w in words if len(w) >= 4 and w not in _STOPWORDS}


def addresses_request(artifact: str, context: Mapping[str, Any]) -> float:
    keywords = request_keywords(str(context.get("request", "")))
    if not keywords:
        return 1.0
    present = request_keywords(artifact)
    return min(1.0, 2.0 * len(keywords & present) / len(keywords))
