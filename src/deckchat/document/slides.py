# src/deckchat/document/slides.py
"""
Slide document model.

A document is markdown split into slides by lines consisting of `---`.
Inside a slide, each line is either shown to the audience or kept as a
presenter note:

  * headlines (any line starting with `#`), images/embeds and everything inside a
    fenced code block are always visible;
  * lines indented by a tab or by INDENT_WIDTH spaces are visible, with
    one level of indentation removed;
  * any other non-blank line is a note;
  * blank lines join whichever channel currently holds fewer lines
    (the visible side on ties), so paragraph spacing survives in both.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

DELIMITER = "---"
UNTITLED = "Untitled Presentation"

_HEADLINE_RE = re.compile(r"^#")
_TITLE_RE = re.compile(r"^#\s+(.+)$")
_FENCE_RE = re.compile(r"^(`{3,}|~{3,})")
_EMBED_PREFIXES = ("![", "<img", "<iframe", "<video", "<audio", "<embed")


@dataclass(frozen=True)
class RenderedSlide:
    visible: str
    notes: str


def _is_delimiter(line: str) -> bool:
    return line.rstrip() == DELIMITER


def split_slides(content: str) -> List[str]:
    """Split a document into slide fragments, dropping blank ones."""
    fragments: List[str] = []
    current: List[str] = []
    for line in content.split("\n"):
        if _is_delimiter(line):
            fragments.append("\n".join(current))
            current = []
        else:
            current.append(line)
    fragments.append("\n".join(current))
    return [f for f in fragments if f.strip()]


def join_slides(fragments: List[str]) -> str:
    return f"\n{DELIMITER}\n".join(fragments)


def _dedent_once(line: str, indent_width: int) -> Optional[str]:
    """Strip one indentation level, or None if the line is not indented."""
    if line.startswith("\t"):
        return line[1:]
    pad = " " * indent_width
    if line.startswith(pad):
        return line[indent_width:]
    return None


def _is_embed(stripped: str) -> bool:
    return stripped.startswith(_EMBED_PREFIXES)


def _closes(fence: Optional[re.Match], stripped: str, opener: str) -> bool:
    return bool(fence) and stripped == fence.group(1) and fence.group(1)[0] == opener


def _classify(slide: str, indent_width: int) -> Tuple[List[str], List[str]]:
    visible: List[str] = []
    notes: List[str] = []
    in_fence: Optional[str] = None
    fence_indented = False

    for line in slide.split("\n"):
        stripped = line.strip()
        if _is_delimiter(line) and in_fence is None:
            continue

        fence = _FENCE_RE.match(stripped)
        if in_fence is not None or fence:
            dedented = _dedent_once(line, indent_width)
            if in_fence is None:
                in_fence = fence.group(1)[0]
                fence_indented = dedented is not None
            elif _closes(fence, stripped, in_fence):
                in_fence = None
            # a block keeps its inner indentation unless the fence itself was indented
            visible.append(dedented if fence_indented and dedented is not None else line)
            continue

        if _HEADLINE_RE.match(stripped) or _is_embed(stripped):
            visible.append(stripped)
            continue

        dedented = _dedent_once(line, indent_width)
        if dedented is not None and stripped:
            visible.append(dedented)
        elif stripped:
            notes.append(line)
        elif visible or notes:
            if len(notes) > len(visible):
                notes.append(line)
            else:
                visible.append(line)

    return visible, notes


def _trim_blank(lines: List[str]) -> str:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


def extract_presenter_notes(slide: str, indent_width: int = 4) -> RenderedSlide:
    visible, notes = _classify(slide, indent_width)
    return RenderedSlide(visible=_trim_blank(visible), notes=_trim_blank(notes))


def parse_document(content: str, indent_width: int = 4) -> List[RenderedSlide]:
    return [extract_presenter_notes(s, indent_width) for s in split_slides(content)]


def extract_title(content: str) -> str:
    for line in content.split("\n"):
        m = _TITLE_RE.match(line)
        if m:
            return m.group(1).strip()
    return UNTITLED


def _audience_lines(visible: str) -> List[str]:
    """Re-encode visible text so every line classifies as visible again."""
    out: List[str] = []
    in_fence: Optional[str] = None
    for line in visible.split("\n"):
        stripped = line.strip()
        fence = _FENCE_RE.match(stripped)
        if in_fence is not None or fence:
            out.append(line)
            if in_fence is None:
                in_fence = fence.group(1)[0]
            elif _closes(fence, stripped, in_fence):
                in_fence = None
        elif not stripped or _HEADLINE_RE.match(stripped) or _is_embed(stripped):
            out.append(line)
        else:
            out.append("\t" + line)
    return out


def audience_document(content: str, indent_width: int = 4) -> str:
    """The document with presenter notes removed, still in source form."""
    slides = parse_document(content, indent_width)
    return join_slides(["\n".join(_audience_lines(s.visible)) for s in slides if s.visible])
