"""
Response parser for free-text LLM output that should contain JSON.

Model output is frequently wrapped in markdown fences, followed by prose,
truncated, or carries raw control characters inside string values. This module
recovers structured data through an ordered ladder of repair strategies, each
more permissive (and more destructive of fidelity) than the last:

    direct_parse -> sanitize -> basic_repair -> aggressive_repair
        -> field_by_field -> fallback

Every strategy is a pure ``str -> Optional[str]`` transform whose output is fed
to ``json.loads``. ``parse_ai_response`` never raises: when every strategy fails
it returns a schema-valid fallback analysis with ``fallback: True``.
"""

import copy
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Control characters that are never valid raw inside JSON text
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')
_TRAILING_COMMA_OBJECT = re.compile(r',\s*}')
_TRAILING_COMMA_ARRAY = re.compile(r',\s*]')
_WHITESPACE = re.compile(r'\s+')
_TRAILING_PROSE = re.compile(r'}[^}]*$')

_ARRAY_FIELD = re.compile(r'"(\w+)"\s*:\s*\[(.*?)\]', re.DOTALL)
_STRING_FIELD = re.compile(r'"(\w+)"\s*:\s*"([^"]+)"')

# Raw characters that must be escaped when they appear inside a string literal
_STRING_ESCAPES = {'\n': '\\n', '\t': '\\t', '\r': '\\r'}

RAW_RESPONSE_LIMIT = 1000

DEFAULT_SCOPE_OPTIONS = {
    "lite": {"duration": "2-3 hours", "modules": 2, "focus": "Core concepts"},
    "core": {"duration": "4-6 hours", "modules": 3, "focus": "Comprehensive"},
}

# Required ParsedAnalysis sections and the empty value of each field
ANALYSIS_SECTIONS: Dict[str, Dict[str, Any]] = {
    "sourceAnalysis": {
        "keyClaims": [],
        "keyTerms": [],
        "frameworks": [],
        "examples": [],
        "authorVoice": "",
    },
    "courseBlueprint": {
        "targetAudience": "",
        "prerequisites": [],
        "learningOutcomes": [],
        "syllabus": [],
    },
    "contentGaps": {
        "missingConcepts": [],
        "needsVerification": [],
        "suggestedAdditions": [],
    },
}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _strip_code_fences(text: str) -> str:
    text = re.sub(r'```json\s*', '', text)
    return re.sub(r'```\s*', '', text)


def extract_json_candidate(response: str) -> Optional[str]:
    """Strip markdown fences and return the text from the first ``{`` onward."""
    content = _strip_code_fences(response.strip())
    start = content.find('{')
    if start == -1:
        return None
    return content[start:]


def _escape_raw_chars_in_strings(text: str) -> str:
    """Escape raw newlines, tabs and carriage returns inside string literals."""
    out = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            out.append(char)
            continue

        if char == '\\':
            escape_next = True
            out.append(char)
            continue

        if char == '"':
            in_string = not in_string
        elif in_string and char in _STRING_ESCAPES:
            out.append(_STRING_ESCAPES[char])
            continue

        out.append(char)

    return ''.join(out)


def _remove_trailing_commas(text: str) -> str:
    text = _TRAILING_COMMA_OBJECT.sub('}', text)
    return _TRAILING_COMMA_ARRAY.sub(']', text)


def sanitize_json_string(json_string: str) -> str:
    """Apply the fixed sequence of regex repairs used by the sanitize rung."""
    # Double-escaped quotes (\\" -> \")
    text = json_string.replace('\\\\"', '\\"')
    text = _escape_raw_chars_in_strings(text)
    text = _CONTROL_CHARS.sub('', text)
    text = _WHITESPACE.sub(' ', text)
    text = _remove_trailing_commas(text)
    # Drop prose after the final closing brace
    return _TRAILING_PROSE.sub('}', text)


def _match_braces(text: str, start: int, string_aware: bool) -> int:
    """Index of the brace closing the one at ``start``, or -1 when unbalanced."""
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]

        if string_aware:
            if escaped:
                escaped = False
                continue
            if char == '\\':
                escaped = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue

        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return i

    return -1


def try_basic_repair(content: str) -> Optional[str]:
    """Cut the first top-level object out by brace counting, then sanitize."""
    text = _strip_code_fences(content)
    start = text.find('{')
    if start == -1:
        return None

    end = _match_braces(text, start, string_aware=False)
    if end == -1:
        return None

    return sanitize_json_string(text[start:end + 1])


def try_aggressive_repair(content: str) -> Optional[str]:
    """
    String-aware object extraction that flattens all line breaks to spaces.

    Embedded newlines in string values (markdown lesson bodies, for instance)
    are lost here; parse success is favoured over content fidelity.
    """
    text = _strip_code_fences(content).strip()
    start = text.find('{')
    if start == -1:
        return None

    end = _match_braces(text, start, string_aware=True)
    if end == -1:
        return None

    text = text[start:end + 1]
    text = _CONTROL_CHARS.sub('', text)
    for sequence in ('\\\\n', '\\\\t', '\\n', '\\t', '\n', '\t', '\r'):
        text = text.replace(sequence, ' ')
    text = _WHITESPACE.sub(' ', text)
    text = _remove_trailing_commas(text)
    return text.replace('\\\\"', '\\"')


def _parse_array_items(array_body: str) -> List[Any]:
    try:
        items = json.loads(_remove_trailing_commas(f"[{array_body}]"))
        return [item for item in items if item not in ("", None)]
    except json.JSONDecodeError:
        pass

    items = [item.strip().strip('"').strip() for item in array_body.split(',')]
    return [item for item in items if item]


def try_field_by_field_extraction(content: str) -> Optional[str]:
    """
    Recover individual ``"name": [...]`` and ``"name": "..."`` fields.

    Works regardless of overall well-formedness. Returns a JSON document in the
    analysis shape, or None when no field could be found.
    """
    fields: Dict[str, Any] = {}

    for match in _ARRAY_FIELD.finditer(content):
        name = match.group(1)
        if name not in fields:
            fields[name] = _parse_array_items(match.group(2))

    for match in _STRING_FIELD.finditer(content):
        fields.setdefault(match.group(1), match.group(2))

    if not fields:
        return None

    logger.info(f"Recovered {len(fields)} fields by field-by-field extraction")

    def as_list(name: str) -> List[Any]:
        value = fields.get(name)
        return value if isinstance(value, list) else []

    def as_text(name: str, default: str) -> str:
        value = fields.get(name)
        return value if isinstance(value, str) else default

    return json.dumps({
        "sourceAnalysis": {
            "keyClaims": as_list("keyClaims"),
            "keyTerms": as_list("keyTerms"),
            "frameworks": as_list("frameworks"),
            "examples": as_list("examples"),
            "authorVoice": as_text("authorVoice", "Professional"),
        },
        "courseBlueprint": {
            "targetAudience": as_text("targetAudience", "General learners"),
            "prerequisites": as_list("prerequisites"),
            "learningOutcomes": as_list("learningOutcomes"),
            "syllabus": as_list("syllabus"),
        },
        "contentGaps": {
            "missingConcepts": as_list("missingConcepts"),
            "needsVerification": as_list("needsVerification"),
            "suggestedAdditions": as_list("suggestedAdditions"),
        },
        "scopeOptions": copy.deepcopy(DEFAULT_SCOPE_OPTIONS),
    })


def create_analysis_fallback(error: Exception, raw_response: Any) -> Dict[str, Any]:
    """Generic but schema-valid analysis used when nothing could be parsed."""
    return {
        "sourceAnalysis": {
            "keyClaims": ["Content analysis performed with parsing limitations"],
            "keyTerms": ["Technical terminology identified"],
            "frameworks": ["Methodological approaches detected"],
            "examples": ["Practical examples noted"],
            "authorVoice": "Professional and informative",
        },
        "courseBlueprint": {
            "targetAudience": "General learners",
            "prerequisites": ["Basic understanding of the subject matter"],
            "learningOutcomes": [
                "Understand core concepts from the source material",
                "Apply key principles in practical scenarios",
                "Demonstrate competency in the subject area",
            ],
            "syllabus": [
                "Foundation concepts and terminology",
                "Practical applications and examples",
                "Advanced techniques and best practices",
            ],
        },
        "contentGaps": {
            "missingConcepts": ["Additional context may be needed"],
            "needsVerification": ["Source verification recommended"],
            "suggestedAdditions": ["Industry examples", "Current best practices"],
        },
        "scopeOptions": {
            "lite": {
                "duration": "2-3 hours",
                "modules": 2,
                "focus": "Essential concepts only",
            },
            "core": {
                "duration": "4-6 hours",
                "modules": 3,
                "focus": "Comprehensive coverage with examples",
            },
        },
        "error": str(error),
        "rawResponse": raw_response[:RAW_RESPONSE_LIMIT] if isinstance(raw_response, str) else raw_response,
        "fallback": True,
        "timestamp": _utc_timestamp(),
    }


def _coerce_field(value: Any, default: Any) -> Any:
    """Bring one analysis field to the type of its default."""
    if isinstance(default, list):
        if isinstance(value, list):
            if all(isinstance(item, str) for item in value):
                return value
            return [item if isinstance(item, str) else json.dumps(item) for item in value if item is not None]
        if isinstance(value, str) and value.strip():
            return [value]
        return []

    if isinstance(value, str):
        return value
    if value is None:
        return default
    return str(value)


def _is_scope_option(value: Any) -> bool:
    return isinstance(value, dict) and all(key in value for key in ("duration", "modules", "focus"))


def ensure_analysis_shape(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill in missing required analysis fields and coerce wrong-typed ones.

    List fields always hold strings and scalar fields are strings; values that
    already have the right type are left alone.
    """
    for section, defaults in ANALYSIS_SECTIONS.items():
        value = data.get(section)
        if not isinstance(value, dict):
            if section in data:
                logger.warning(f"Replacing malformed '{section}' section ({type(value).__name__})")
            value = {}
            data[section] = value
        for field, default in defaults.items():
            if field not in value:
                value[field] = copy.copy(default)
                continue
            coerced = _coerce_field(value[field], default)
            if coerced is not value[field]:
                logger.warning(f"Coerced '{section}.{field}' from {type(value[field]).__name__}")
                value[field] = coerced

    scope = data.get("scopeOptions")
    if not isinstance(scope, dict):
        data["scopeOptions"] = copy.deepcopy(DEFAULT_SCOPE_OPTIONS)
    else:
        for option in ("lite", "core"):
            if not _is_scope_option(scope.get(option)):
                scope[option] = copy.deepcopy(DEFAULT_SCOPE_OPTIONS[option])

    return data


def _loads_object(text: str) -> Dict[str, Any]:
    result = json.loads(text)
    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object, got {type(result).__name__}")
    return result


class AIResponseParser:
    """Ordered JSON repair ladder for LLM responses."""

    def __init__(self):
        self.strategies: List[Tuple[str, Callable[[str], Optional[str]]]] = [
            ("direct_parse", lambda text: text),
            ("sanitize", sanitize_json_string),
            ("basic_repair", try_basic_repair),
            ("aggressive_repair", try_aggressive_repair),
        ]
        self.analysis_strategies = self.strategies + [
            ("field_by_field", try_field_by_field_extraction),
        ]

    def _run_strategies(
        self,
        content: str,
        strategies: List[Tuple[str, Callable[[str], Optional[str]]]]
    ) -> Tuple[Optional[Dict[str, Any]], Optional[Exception]]:
        last_error: Optional[Exception] = None

        for strategy_name, strategy_func in strategies:
            try:
                logger.debug(f"Trying JSON parsing strategy '{strategy_name}'")
                repaired = strategy_func(content)
                if repaired is None:
                    continue
                result = _loads_object(repaired)
                if strategy_name != "direct_parse":
                    logger.info(f"Successfully parsed JSON using strategy '{strategy_name}'")
                return result, None
            except (ValueError, RecursionError) as e:
                logger.debug(f"Strategy '{strategy_name}' failed: {e}")
                last_error = e

        return None, last_error

    def parse_object(self, response: Any) -> Optional[Dict[str, Any]]:
        """Rungs 1-4 only; None when no JSON object could be recovered."""
        if not isinstance(response, str) or not response:
            return None

        content = extract_json_candidate(response)
        if content is None:
            return None

        result, last_error = self._run_strategies(content, self.strategies)
        if result is None:
            logger.warning(f"Could not recover JSON object: {last_error}")
        return result

    def parse_analysis(self, response: Any) -> Dict[str, Any]:
        """Full ladder; always returns a ParsedAnalysis-shaped dict."""
        if not isinstance(response, str) or not response:
            logger.warning("Invalid response: expected non-empty string, using fallback")
            return create_analysis_fallback(ValueError("Invalid response"), response)

        content = extract_json_candidate(response)
        if content is None:
            logger.warning("No JSON object found in response, using fallback")
            return create_analysis_fallback(ValueError("No JSON object found"), response)

        result, last_error = self._run_strategies(content, self.analysis_strategies)
        if result is not None:
            return ensure_analysis_shape(result)

        logger.error(f"All JSON parsing strategies failed: {last_error}")
        logger.error(f"Raw response that failed parsing (first 500 chars): {response[:500]}")
        logger.error(f"Raw response that failed parsing (last 500 chars): {response[-500:]}")
        return create_analysis_fallback(
            ValueError(f"JSON parsing failed after all repair attempts: {last_error}"),
            response
        )


# Global instance
ai_response_parser = AIResponseParser()


def parse_ai_response(response: Any) -> Dict[str, Any]:
    """Parse raw model output into a ParsedAnalysis dict. Never raises."""
    return ai_response_parser.parse_analysis(response)


def parse_json_object(response: Any) -> Optional[Dict[str, Any]]:
    """Parse raw model output into any JSON object, or None."""
    return ai_response_parser.parse_object(response)
