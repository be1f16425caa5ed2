"""
Layout-aware text reconstruction for PDF-to-Word.

PDF text extraction yields positioned glyph runs with no logical grouping.
This module rebuilds visual lines from those runs (1-D clustering along y with
a font-size-adaptive tolerance, word spacing recovered from x gaps), then
merges lines into paragraphs and flags headings by relative font size.

Coordinates are bottom-up: a larger y sits higher on the page, so reading
order is descending y.
"""

import enum
import functools
import statistics
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

NO_TEXT_PLACEHOLDER = "[No extractable text on this page]"


@dataclass(frozen=True)
class LayoutConfig:
    # reading-order sort: fragments this close in y are ordered by x
    same_row_y_epsilon: float = 0.5
    # row clustering: tolerance = max(min_line_tolerance, fontSize * line_tolerance_ratio)
    min_line_tolerance: float = 2.0
    line_tolerance_ratio: float = 0.35
    # word spacing: threshold = max(prevFontSize * word_gap_ratio, min_word_gap)
    word_gap_ratio: float = 0.2
    min_word_gap: float = 1.0
    # paragraph break when y gap > prevFontSize * paragraph_gap_ratio
    paragraph_gap_ratio: float = 1.8
    # heading when fontSize >= baseFontSize * heading_size_ratio
    heading_size_ratio: float = 1.3
    max_heading_length: int = 120
    default_font_size: float = 12.0


DEFAULT_LAYOUT = LayoutConfig()


class HeadingLevel(enum.Enum):
    HEADING_1 = 1
    HEADING_2 = 2
    HEADING_3 = 3


@dataclass
class TextFragment:
    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    # 0 means unknown; build_lines substitutes config.default_font_size
    font_size: float = 0.0


@dataclass
class Line:
    fragments: List[TextFragment] = field(default_factory=list)
    y: float = 0.0
    text: str = ""
    font_size: float = 0.0


@dataclass
class TextUnit:
    text: str
    heading_level: Optional[HeadingLevel] = None
    placeholder: bool = False

    @property
    def is_heading(self) -> bool:
        return self.heading_level is not None


def _median(values, default=0.0):
    try: return statistics.median(values) if values else default
    except statistics.StatisticsError: return default


# ============ Line Builder ============

def _with_font_size(fr: TextFragment, config: LayoutConfig) -> TextFragment:
    if fr.font_size and fr.font_size > 0:
        return fr
    return replace(fr, font_size=config.default_font_size)


def _canonical_key(fr: TextFragment):
    return (-fr.y, fr.x, fr.width, fr.height, fr.font_size, fr.text)


def _reading_order(fragments: Sequence[TextFragment], config: LayoutConfig) -> List[TextFragment]:
    eps = config.same_row_y_epsilon

    def compare(a, b):
        if abs(a.y - b.y) > eps:
            return -1 if a.y > b.y else 1
        if a.x != b.x:
            return -1 if a.x < b.x else 1
        return 0

    # compare() is not transitive inside the epsilon band; pre-sort on a total key
    canonical = sorted(fragments, key=_canonical_key)
    return sorted(canonical, key=functools.cmp_to_key(compare))


def _join_fragments(fragments: Sequence[TextFragment], config: LayoutConfig) -> str:
    text = ""
    prev = None
    for fr in fragments:
        if prev is not None:
            gap = fr.x - (prev.x + prev.width)
            threshold = max(prev.font_size * config.word_gap_ratio, config.min_word_gap)
            if gap > threshold and not (text and text[-1].isspace()):
                text += " "
        text += fr.text
        prev = fr
    return text


def _finish_line(line: Line, config: LayoutConfig) -> Line:
    line.fragments.sort(key=lambda fr: fr.x)
    line.text = " ".join(_join_fragments(line.fragments, config).split())
    line.font_size = float(_median([fr.font_size for fr in line.fragments], config.default_font_size))
    return line


def build_lines(fragments: Sequence[TextFragment], config: LayoutConfig = DEFAULT_LAYOUT) -> List[Line]:
    """Cluster one page's fragments into visual lines, top to bottom."""
    usable = [_with_font_size(fr, config) for fr in fragments if fr.text and fr.text.strip()]
    lines, current = [], None
    for fr in _reading_order(usable, config):
        tolerance = max(config.min_line_tolerance, fr.font_size * config.line_tolerance_ratio)
        if current is not None and abs(fr.y - current.y) <= tolerance:
            current.fragments.append(fr)
            current.y = (current.y + fr.y) / 2.0
            continue
        if current is not None:
            lines.append(current)
        current = Line(fragments=[fr], y=fr.y)
    if current is not None:
        lines.append(current)

    finished = [_finish_line(l, config) for l in lines]
    return [l for l in finished if l.text]


# ============ Paragraph/Heading Assembler ============

def _is_heading_line(line: Line, base_font_size: float, config: LayoutConfig) -> bool:
    return (line.font_size >= base_font_size * config.heading_size_ratio
            and len(line.text) < config.max_heading_length
            and "." not in line.text)


def assemble_paragraphs(lines: Sequence[Line], detect_headings: bool = True,
                        config: LayoutConfig = DEFAULT_LAYOUT) -> List[TextUnit]:
    """
    Merge top-to-bottom lines into paragraphs.

    A paragraph is flushed on a vertical gap larger than the previous line's
    font size times ``paragraph_gap_ratio``, before a heading line, and after
    a heading line (headings are always single-line units).
    """
    base_font_size = _median([l.font_size for l in lines if l.font_size > 0], config.default_font_size)

    units: List[TextUnit] = []
    current, current_is_heading = "", False
    prev_y, prev_font_size = None, base_font_size

    def flush():
        if current.strip():
            level = HeadingLevel.HEADING_2 if current_is_heading else None
            units.append(TextUnit(text=current.strip(), heading_level=level))

    for line in lines:
        large_gap = prev_y is not None and (prev_y - line.y) > prev_font_size * config.paragraph_gap_ratio
        is_heading = detect_headings and _is_heading_line(line, base_font_size, config)

        if large_gap or is_heading or current_is_heading:
            flush()
            current, current_is_heading = "", False

        if not current:
            current, current_is_heading = line.text, is_heading
        else:
            current += " " + line.text

        prev_y = line.y
        if line.font_size > 0:
            prev_font_size = line.font_size

    flush()
    return units


def placeholder_unit() -> TextUnit:
    return TextUnit(text=NO_TEXT_PLACEHOLDER, placeholder=True)


def reconstruct_page(fragments: Sequence[TextFragment], detect_headings: bool = True,
                     config: LayoutConfig = DEFAULT_LAYOUT) -> List[TextUnit]:
    units = assemble_paragraphs(build_lines(fragments, config), detect_headings, config)
    return units or [placeholder_unit()]
