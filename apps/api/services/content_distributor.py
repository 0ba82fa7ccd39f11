"""
Sequential distribution of source content across course modules.

Two strategies, chosen per document:

- natural sections: paragraphs are assigned to modules as contiguous blocks,
  respecting the author's own structure (preferred);
- percentage: module ``i`` of ``N`` gets roughly the character range
  ``[i/N, (i+1)/N)``, with cuts pulled back to a word boundary.

Both keep document order, so module ``i`` always precedes module ``i + 1``.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

MIN_SECTION_LENGTH = 100
# A cut is moved back to a space only if that space is in the last 20% of the slice
WORD_BOUNDARY_WINDOW = 0.2
VALIDATION_PROBE_LENGTH = 50

_BLANK_LINE = re.compile(r'\n\s*\n')

NATURAL_SECTIONS = "natural_sections"
PERCENTAGE = "percentage"


@dataclass
class ModuleContentAssignment:
    """Slice of the source content assigned to one module"""
    module_index: int
    content: str
    word_count: int
    position_label: str
    start_index: int
    end_index: int
    strategy: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _paragraph_spans(content: str) -> List[Tuple[int, int]]:
    """(start, end) offsets of the non-blank paragraphs in ``content``"""
    spans = []
    position = 0
    for match in _BLANK_LINE.finditer(content):
        spans.append((position, match.start()))
        position = match.end()
    spans.append((position, len(content)))

    trimmed = []
    for start, end in spans:
        text = content[start:end]
        stripped = text.strip()
        if not stripped:
            continue
        offset = start + text.index(stripped)
        trimmed.append((offset, offset + len(stripped)))
    return trimmed


def find_natural_sections(content: str) -> List[Tuple[int, int]]:
    """
    Paragraph blocks of at least ``MIN_SECTION_LENGTH`` characters.

    Short paragraphs (headings, one-liners) are folded into the following
    section, or into the previous one when they trail the document.
    """
    sections: List[Tuple[int, int]] = []
    pending_start = None

    for start, end in _paragraph_spans(content):
        section_start = start if pending_start is None else pending_start
        if end - section_start >= MIN_SECTION_LENGTH:
            sections.append((section_start, end))
            pending_start = None
        else:
            pending_start = section_start

    if pending_start is not None and sections:
        last_start, _ = sections[-1]
        sections[-1] = (last_start, len(content.rstrip()))

    return sections


def _make_assignment(
    content: str,
    module_index: int,
    start: int,
    end: int,
    label: str,
    strategy: str
) -> ModuleContentAssignment:
    text = content[start:end].strip()
    return ModuleContentAssignment(
        module_index=module_index,
        content=text,
        word_count=len(text.split()),
        position_label=label,
        start_index=start,
        end_index=end,
        strategy=strategy,
    )


def _distribute_by_sections(
    content: str,
    sections: List[Tuple[int, int]],
    module_count: int
) -> List[ModuleContentAssignment]:
    per_module = len(sections) // module_count
    assignments = []

    for i in range(module_count):
        first = i * per_module
        # The last module absorbs any remainder sections
        last = len(sections) if i == module_count - 1 else first + per_module
        block = sections[first:last]
        start, end = block[0][0], block[-1][1]
        label = f"Sections {first + 1}-{last} of {len(sections)}"
        assignments.append(_make_assignment(content, i, start, end, label, NATURAL_SECTIONS))

    return assignments


def _distribute_by_percentage(content: str, module_count: int) -> List[ModuleContentAssignment]:
    length = len(content)
    assignments = []
    start = 0

    for i in range(module_count):
        if i == module_count - 1:
            end = length
        else:
            end = (i + 1) * length // module_count
            slice_start = i * length // module_count
            window_start = end - int((end - slice_start) * WORD_BOUNDARY_WINDOW)
            space = content.rfind(' ', max(start, window_start), end)
            if space != -1:
                end = space

        label = f"{round(i * 100 / module_count)}%-{round((i + 1) * 100 / module_count)}%"
        assignments.append(_make_assignment(content, i, start, end, label, PERCENTAGE))
        start = end

    return assignments


def distribute_content(content: str, module_count: int) -> List[ModuleContentAssignment]:
    """
    Partition ``content`` across ``module_count`` modules in document order.

    Args:
        content: Full source text
        module_count: Number of modules to fill

    Returns:
        One assignment per module, ordered by module index
    """
    if module_count < 1:
        raise ValueError("module_count must be at least 1")

    sections = find_natural_sections(content)

    if len(sections) >= module_count:
        logger.info(f"Distributing {len(sections)} natural sections across {module_count} modules")
        return _distribute_by_sections(content, sections, module_count)

    logger.info(f"Only {len(sections)} natural sections for {module_count} modules, "
                f"using percentage distribution")
    return _distribute_by_percentage(content, module_count)


def coverage_ratio(assignments: List[ModuleContentAssignment], original: str) -> float:
    """Share of the original characters present in the assignments"""
    if not original:
        return 1.0
    return sum(len(a.content) for a in assignments) / len(original)


def validate_distribution(assignments: List[ModuleContentAssignment], original: str) -> bool:
    """
    Check that assignments appear in the source in module order.

    A False result is a quality signal only; callers log it and carry on.
    """
    last_position = -1
    is_valid = True

    for assignment in assignments:
        probe = assignment.content[:VALIDATION_PROBE_LENGTH]
        if not probe:
            continue

        # Search forward from the previous module so repeated passages resolve in order
        position = original.find(probe, max(last_position, 0))
        if position == -1:
            earlier = original.find(probe)
            if earlier == -1:
                logger.warning(f"Module {assignment.module_index + 1} content not found in source")
            else:
                logger.warning(
                    f"Module {assignment.module_index + 1} starts at {earlier}, "
                    f"before the previous module at {last_position}"
                )
            is_valid = False
            continue

        last_position = position

    ratio = coverage_ratio(assignments, original)
    logger.info(f"Distribution coverage: {ratio:.1%} of {len(original)} characters "
                f"({'valid' if is_valid else 'ordering issues'})")

    return is_valid
