"""Parse rendered code-of-ordinances markdown into sections.

Headings drive the structure:
    - "Chapter N" at depth 1-2 opens a chapter
    - "Article N" / "Part N" at depth 1-2 also opens a chapter
    - "Sec. N.NN - Heading" (or "N.NN. Heading") at depth 2-4 opens a section

Everything between two section headings is the body of the first one.
Content before the first section heading is ignored.
"""

import logging
import re
from typing import List, NamedTuple, Optional, Tuple

from statute.core.models import Subsection

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER = "1"

_HEADING = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_FENCE = re.compile(r"^\s{0,3}(```|~~~)")
_LIST_ITEM = re.compile(r"^\s{0,3}(?:[-*+]|\d+[.)])\s+(.*)$")
_BLOCKQUOTE = re.compile(r"^\s{0,3}>\s?(.*)$")

_CHAPTER = re.compile(r"Chapter\s+(\d[\d.]*)", re.IGNORECASE)
_ARTICLE = re.compile(r"^(?:Article|Part)\s+([\dIVXLCDM]+)\b", re.IGNORECASE)
_SECTION = re.compile(r"(?:Sec(?:tion)?\.?\s*)?(\d[\d.-]*)[.:\s-]+\s*(.+)", re.IGNORECASE)

_SUBSECTION = re.compile(r"\(([a-z]|\d+|[ivxlcdm]+)\)\s+([^(]+?)(?=\([a-z\d]|\s*$)", re.IGNORECASE)
_LINE_SUBSECTION = re.compile(r"^\s*\(([a-z]|\d+)\)\s+(.+)$", re.IGNORECASE | re.MULTILINE)

_SECTION_COUNT = re.compile(r"^#{2,4}\s+(?:Sec(?:tion)?\.?\s*)?(\d[\d.-]*)[.:\s-]", re.IGNORECASE | re.MULTILINE)
_CHAPTER_HEADING = re.compile(r"^#{1,2}\s+Chapter\s+(\d[\d.]*)", re.IGNORECASE | re.MULTILINE)


class Block(NamedTuple):
    kind: str
    text: str
    depth: int = 0


class ParsedSection(NamedTuple):
    chapter: str
    section: str
    heading: str
    text: str
    subsections: List[Subsection]


def clean_markdown_text(text: str) -> str:
    """Normalize line endings and blank lines, and strip per-line padding."""
    text = text.replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    return text.strip()


def strip_inline_markup(text: str) -> str:
    """Drop emphasis markers and link targets from inline markdown."""
    text = re.sub(r"!?\[([^\]]*)\]\([^)]*\)", r"\1", text)
    text = re.sub(r"(\*\*|__|\*|`)", "", text)
    return text.strip()


def tokenize(markdown: str) -> List[Block]:
    """Split markdown into heading, paragraph, list, blockquote and code blocks."""
    lines = markdown.replace("\r\n", "\n").split("\n")
    blocks: List[Block] = []
    i = 0

    def starts_block(line: str) -> bool:
        return bool(_HEADING.match(line) or _FENCE.match(line) or _LIST_ITEM.match(line) or _BLOCKQUOTE.match(line))

    while i < len(lines):
        line = lines[i]

        if not line.strip():
            i += 1
            continue

        fence = _FENCE.match(line)
        if fence:
            marker = fence.group(1)
            body = []
            i += 1
            while i < len(lines) and not lines[i].strip().startswith(marker):
                body.append(lines[i])
                i += 1
            i += 1
            blocks.append(Block("code", "\n".join(body)))
            continue

        heading = _HEADING.match(line)
        if heading:
            blocks.append(Block("heading", strip_inline_markup(heading.group(2)), len(heading.group(1))))
            i += 1
            continue

        if _LIST_ITEM.match(line):
            items: List[str] = []
            while i < len(lines) and lines[i].strip() and not _HEADING.match(lines[i]):
                item = _LIST_ITEM.match(lines[i])
                if item:
                    items.append(item.group(1).strip())
                elif items:
                    items[-1] = f"{items[-1]} {lines[i].strip()}"
                i += 1
            blocks.append(Block("list", "\n".join(f"- {strip_inline_markup(item)}" for item in items)))
            continue

        if _BLOCKQUOTE.match(line):
            quoted = []
            while i < len(lines) and _BLOCKQUOTE.match(lines[i]):
                quoted.append(_BLOCKQUOTE.match(lines[i]).group(1).strip())
                i += 1
            blocks.append(Block("blockquote", "> " + strip_inline_markup("\n".join(quoted))))
            continue

        paragraph = []
        while i < len(lines) and lines[i].strip() and (not paragraph or not starts_block(lines[i])):
            paragraph.append(lines[i].strip())
            i += 1
        blocks.append(Block("paragraph", strip_inline_markup("\n".join(paragraph))))

    return blocks


def detect_subsections(text: str) -> List[Subsection]:
    """Find lettered, numbered and roman-numeral subsections such as (a), (1), (iv)."""
    subsections = [
        Subsection(id=f"({match.group(1)})", text=match.group(2).strip())
        for match in _SUBSECTION.finditer(text)
        if match.group(2).strip()
    ]
    if subsections:
        return subsections

    return [
        Subsection(id=f"({match.group(1)})", text=match.group(2).strip())
        for match in _LINE_SUBSECTION.finditer(text)
    ]


def parse_markdown_sections(markdown: str) -> List[ParsedSection]:
    """Extract sections from rendered markdown, in document order."""
    sections: List[ParsedSection] = []
    chapter = DEFAULT_CHAPTER
    current: Optional[Tuple[str, str, str]] = None
    body: List[str] = []

    def finish() -> None:
        if current is None:
            return
        text = "\n\n".join(body).strip()
        sections.append(
            ParsedSection(
                chapter=current[0],
                section=current[1],
                heading=current[2],
                text=text,
                subsections=detect_subsections(text),
            )
        )

    for block in tokenize(markdown):
        if block.kind == "heading":
            chapter_match = _CHAPTER.search(block.text)
            if chapter_match and block.depth <= 2:
                finish()
                current, body = None, []
                chapter = chapter_match.group(1).rstrip(".")
                continue

            article_match = _ARTICLE.match(block.text)
            if article_match and block.depth <= 2:
                finish()
                current, body = None, []
                chapter = article_match.group(1)
                continue

            section_match = _SECTION.search(block.text)
            if section_match and 2 <= block.depth <= 4:
                finish()
                body = []
                current = (chapter, section_match.group(1).rstrip(".-"), section_match.group(2).strip())
                continue

        if current is not None and block.text:
            body.append(block.text)

    finish()
    return sections


def validate_parsed_sections(sections: List[ParsedSection], unit_name: str) -> Tuple[List[ParsedSection], List[str]]:
    """Drop sections without an identifier or usable text, collecting warnings.

    Sections with cosmetic issues (empty heading, long identifier) are kept
    but reported.
    """
    valid: List[ParsedSection] = []
    warnings: List[str] = []

    for section in sections:
        issues = []
        if not section.section.strip():
            issues.append("Empty section identifier")
        if len(section.text.strip()) < 10:
            issues.append(f"Very short or empty text ({len(section.text)} chars)")
        if not section.heading.strip():
            issues.append("Empty heading")
        if len(section.section) > 20:
            issues.append(f"Unusually long section identifier: {section.section}")

        if issues:
            warnings.append(f"[{unit_name}] Section {section.section}: {', '.join(issues)}")
            if section.section.strip() and len(section.text.strip()) >= 10:
                valid.append(section)
        else:
            valid.append(section)

    if not sections:
        warnings.append(f"[{unit_name}] No sections parsed from markdown")
    elif not valid:
        warnings.append(f"[{unit_name}] All {len(sections)} sections failed validation")
    elif len(valid) < len(sections) * 0.5:
        warnings.append(f"[{unit_name}] Only {len(valid)}/{len(sections)} sections passed validation")

    return valid, warnings


def count_sections_in_markdown(markdown: str) -> int:
    return len(_SECTION_COUNT.findall(markdown))


def extract_chapters_from_markdown(markdown: str) -> List[str]:
    return [match.rstrip(".") for match in _CHAPTER_HEADING.findall(markdown)]
