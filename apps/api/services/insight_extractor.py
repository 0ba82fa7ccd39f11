"""
Offline insight extraction and content-derived fallbacks.

Used when the model pipeline is unavailable or exhausted, so the rest of the
system always has something built from the source material to render.
Everything here is deterministic and makes no network calls.
"""

import logging
import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_KEY_TERMS = 10
MAX_CONCEPTS = 15
MAX_EXAMPLES = 5
MAX_SECTIONS = 8

EXAMPLE_KEYWORDS = ['example', 'for instance', 'such as', 'like', 'including']

_SENTENCE_SPLIT = re.compile(r'[.!?]+')
_NON_WORD = re.compile(r'[^\w]')
_CONCEPT = re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b')
_SECTION_LINE = re.compile(r'^(?:\d+\.|\*|-|#)\s*(.+)$', re.MULTILINE)
_SECTION_PREFIX = re.compile(r'^(?:\d+\.|\*|-|#+)\s*')


def _empty_insights() -> Dict[str, Any]:
    return {
        "keyTerms": [],
        "concepts": [],
        "examples": [],
        "sections": [],
        "wordCount": 0,
        "sentenceCount": 0,
    }


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def extract_insights(content: Any) -> Dict[str, Any]:
    """
    Heuristic text analysis of source content.

    Returns:
        Dict with keyTerms, concepts, examples, sections, wordCount and
        sentenceCount. wordCount counts the tokens longer than three
        characters, the same tokens the frequency table is built from.
    """
    if not content or not isinstance(content, str):
        return _empty_insights()

    sentences = [s for s in _SENTENCE_SPLIT.split(content) if len(s.strip()) > 10]
    words = [w for w in content.lower().split() if len(w) > 3]

    frequency = Counter(
        clean for clean in (_NON_WORD.sub('', word) for word in words)
        if len(clean) > 3
    )
    key_terms = [
        term for term, count in frequency.most_common()
        if count > 2
    ][:MAX_KEY_TERMS]

    concepts = [
        term for term in _unique(_CONCEPT.findall(content))
        if 3 < len(term) < 50
    ][:MAX_CONCEPTS]

    examples = [
        sentence for sentence in sentences
        if any(keyword in sentence.lower() for keyword in EXAMPLE_KEYWORDS)
    ][:MAX_EXAMPLES]

    sections = _unique([
        _SECTION_PREFIX.sub('', match.group(0)).strip()
        for match in _SECTION_LINE.finditer(content)
    ])[:MAX_SECTIONS]

    return {
        "keyTerms": key_terms,
        "concepts": concepts,
        "examples": examples,
        "sections": sections,
        "wordCount": len(words),
        "sentenceCount": len(sentences),
    }


def calculate_optimal_lessons(content: Optional[str], target_modules: int = 3) -> Dict[str, Any]:
    """Module and lesson counts sized to the amount of source material"""
    if not content:
        return {"modulesCount": 2, "lessonsPerModule": 2}

    word_count = len(content.split())
    complexity = len(_SENTENCE_SPLIT.split(content))

    if word_count < 500:
        modules_count = max(2, min(target_modules, 2))
        lessons_per_module = 1
    elif word_count < 1500:
        modules_count = max(2, min(target_modules, 3))
        lessons_per_module = 2
    elif word_count < 3000:
        modules_count = target_modules
        lessons_per_module = 3
    else:
        modules_count = target_modules
        lessons_per_module = min(5, math.ceil(word_count / 1000))

    if word_count < 500:
        recommendation = "compact"
    elif word_count < 1500:
        recommendation = "standard"
    else:
        recommendation = "comprehensive"

    return {
        "modulesCount": modules_count,
        "lessonsPerModule": lessons_per_module,
        "wordCount": word_count,
        "complexity": complexity,
        "recommendation": recommendation,
    }


def create_enhanced_fallback(
    content: str,
    error: Any,
    target_audience: Optional[str] = None,
    prerequisites: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Analysis built from the source itself when the model could not produce one.

    Same shape as a parsed analysis, flagged ``fallback`` and ``enhanced``.
    """
    insights = extract_insights(content)
    structure = calculate_optimal_lessons(content, 3)
    modules = structure["modulesCount"]
    lessons = structure["lessonsPerModule"]

    logger.warning(f"Building content-derived fallback analysis: {error}")

    return {
        "sourceAnalysis": {
            "keyClaims": insights["concepts"][:5] or ["Key concepts identified from source material"],
            "keyTerms": insights["keyTerms"][:8] or ["Important terminology extracted"],
            "frameworks": insights["sections"][:3] or ["Structured approach identified"],
            "examples": insights["examples"][:3] or ["Practical examples noted in source material"],
            "authorVoice": "Professional and informative based on source content",
        },
        "courseBlueprint": {
            "targetAudience": target_audience or "Learners seeking to understand the source material",
            "prerequisites": prerequisites or ["Basic understanding of the subject matter"],
            "learningOutcomes": [
                "Understand and explain the key concepts from the source material",
                "Apply the principles and methods presented in practical scenarios",
                "Analyze and evaluate the information critically",
                "Connect the learning to real-world applications",
            ],
            "syllabus": insights["sections"][:6] or [
                "Foundation concepts and terminology",
                "Core principles and methods",
                "Practical applications and examples",
                "Advanced techniques and best practices",
            ],
        },
        "contentGaps": {
            "missingConcepts": ["Additional context may enhance understanding"],
            "needsVerification": ["Source verification and fact-checking recommended"],
            "suggestedAdditions": ["Industry examples", "Current best practices", "Interactive exercises"],
        },
        "scopeOptions": {
            "lite": {
                "duration": f"{modules * lessons * 15} minutes",
                "modules": modules,
                "focus": "Essential concepts from source material",
            },
            "core": {
                "duration": f"{modules * lessons * 25} minutes",
                "modules": modules,
                "focus": "Comprehensive coverage with practical applications",
            },
        },
        "contentInsights": insights,
        "error": str(error),
        "fallback": True,
        "enhanced": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def generate_lesson_fallback(
    content: str,
    insights: Dict[str, Any],
    module_title: str,
    lesson_number: int
) -> str:
    """Markdown lesson assembled from the source excerpt and its insights"""
    concepts = insights.get("concepts", [])
    key_terms = insights.get("keyTerms", [])
    examples = insights.get("examples", [])
    sections = insights.get("sections", [])

    is_complex = insights.get("wordCount", 0) > 500
    parts = [f"# {module_title} - Lesson {lesson_number}"]

    focus = f", focusing on {', '.join(concepts[:3])}" if concepts else ""
    objectives = [
        "1. Understand the main concepts presented in the source material",
        "2. Identify key terminology and definitions",
        "3. Apply the concepts through practical exercises",
    ]
    if examples:
        objectives.append("4. Analyze real-world examples and applications")
    parts.append(
        "## Introduction\n\n"
        f"This lesson covers key concepts from the source material{focus}.\n\n"
        "**Learning Objectives:**\n" + "\n".join(objectives)
    )

    if concepts:
        listed = "\n\n".join(
            f"**{i}. {concept}**\n"
            f"   - Review this concept in the source material\n"
            f"   - Consider how it relates to your learning goals"
            for i, concept in enumerate(concepts[:8], 1)
        )
        parts.append(
            "## Key Concepts\n\n"
            "The following important concepts are covered in this lesson:\n\n" + listed
        )

    if len(sections) > 3:
        listed = "\n".join(f"{i}. {section}" for i, section in enumerate(sections, 1))
        parts.append(
            "## Content Structure\n\n"
            "The source material is organized around these main topics:\n\n"
            f"{listed}\n\n"
            "**Study Approach:** Work through each topic systematically, taking notes "
            "on key points and questions that arise."
        )

    excerpt = content[:2000 if is_complex else 1200]
    more = "\n\n*[Content continues - see full source material for complete information]*" \
        if len(content) > len(excerpt) else ""
    parts.append(
        "## Source Material Analysis\n\n"
        f"{excerpt}{more}\n\n"
        "### Analysis Questions:\n"
        "1. What are the main arguments or points presented?\n"
        "2. How does this information connect to your existing knowledge?\n"
        "3. What practical applications can you identify?\n"
        "4. What questions does this material raise for further exploration?"
    )

    if examples:
        listed = "\n\n".join(
            f"**Example {i}:** {example.strip()}" for i, example in enumerate(examples, 1)
        )
        parts.append(
            "## Examples and Applications\n\n"
            "The source material includes these relevant examples:\n\n" + listed
        )

    if key_terms:
        listed = "\n".join(
            f"- **{term}**: Review how this term is used in the source material"
            for term in key_terms[:8]
        )
        parts.append(
            "## Important Terminology\n\n"
            "Key terms to understand from this lesson:\n\n"
            f"{listed}\n\n"
            "**Activity:** Create your own definitions for these terms based on their "
            "usage in the source material."
        )

    parts.append(
        "## Learning Activities\n\n"
        "### 1. Concept Mapping\n"
        "Create a visual map connecting the main concepts from this lesson.\n\n"
        "### 2. Summary Writing\n"
        "Write a 200-word summary of the key points in your own words.\n\n"
        "### 3. Application Thinking\n"
        "Identify 2-3 ways you could apply the concepts from this lesson in your own work.\n\n"
        "### 4. Question Generation\n"
        "Develop 3 thoughtful questions about the material for further discussion."
    )

    parts.append(
        "## Knowledge Check\n\n"
        "1. **Comprehension:** Can you explain the main concepts in your own words?\n"
        "2. **Analysis:** How do the different ideas in this lesson connect to each other?\n"
        "3. **Application:** Where might you use this knowledge in real situations?\n"
        "4. **Evaluation:** What aspects of this material are most or least useful?"
    )

    parts.append(
        "## Next Steps\n\n"
        "- Review the complete source material for additional details\n"
        "- Research related topics that were mentioned but not fully explored\n"
        "- Seek out additional examples or case studies\n\n"
        "**Note:** This lesson was created directly from your source material while "
        "AI processing was unavailable."
    )

    return "\n\n".join(parts)
