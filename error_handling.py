"""
Error taxonomy for Semantix with detailed, source-anchored messages.

Every failure the pipeline can produce is one of three exceptions:
SemantixSyntaxError (parse stage), SemantixRuntimeError (tracer) and
ResourceExceededError (tracer limits).  Each converts to the structured
failure payload with ``to_response()``.
"""

from typing import List, Optional, Dict
from pyparsing import ParseBaseException
import re


# Runtime error kinds
UNBOUND_VARIABLE = "unbound-variable"
TYPE_MISMATCH = "type-mismatch"
DIVISION_BY_ZERO = "division-by-zero"
INDEX_OUT_OF_BOUNDS = "index-out-of-bounds"

RUNTIME_KINDS = (UNBOUND_VARIABLE, TYPE_MISMATCH, DIVISION_BY_ZERO, INDEX_OUT_OF_BOUNDS)

# Exhausted resources
STEPS = "steps"
CALL_DEPTH = "call-depth"
WALL_CLOCK = "wall-clock"
ALLOCATION = "allocation"
INTEGER_SIZE = "integer-size"


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_parse_error(
    message: str,
    location: int,
    line: int,
    column: int,
    expected: Optional[List[str]] = None,
    got: Optional[str] = None,
    context: Optional[str] = None,
    suggestions: Optional[List[str]] = None
) -> Dict:
    """Create an immutable parse error structure"""
    return {
        'message': message,
        'location': location,
        'line': line,
        'column': column,
        'expected': expected or [],
        'got': got,
        'context': context,
        'suggestions': suggestions or []
    }


def format_parse_error(error: Dict) -> str:
    """Format parse error as string"""
    error_msg = f"Syntax error at line {error['line']}, column {error['column']}:\n"
    error_msg += f"  {error['message']}\n"

    if error['expected']:
        error_msg += f"  Expected: {', '.join(error['expected'])}\n"

    if error['got']:
        error_msg += f"  Got: {error['got']}\n"

    if error['context']:
        error_msg += f"{error['context']}\n"

    if error['suggestions']:
        error_msg += "  Suggestions:\n"
        for suggestion in error['suggestions']:
            error_msg += f"    - {suggestion}\n"

    return error_msg


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def get_context_lines(source_text: str, line_num: int, col_num: int, context_lines: int = 2) -> str:
    """Get context lines around the error"""
    lines = source_text.split('\n')
    if not 1 <= line_num <= len(lines):
        return ""
    start_line = max(0, line_num - context_lines - 1)
    end_line = min(len(lines), line_num + context_lines)

    context_parts = []
    for i in range(start_line, end_line):
        line_prefix = f"{i+1:4d}: "
        context_parts.append(f"{line_prefix}{lines[i]}")
        if i == line_num - 1:
            context_parts.append(f"{'':6}{' ' * max(col_num - 1, 0)}^ Error here")

    return '\n'.join(context_parts)


def extract_expected(exc: ParseBaseException) -> List[str]:
    """Extract expected tokens from exception"""
    match = re.match(r"Expected\s+(.+?)(?:,\s+found\b.*)?$", exc.msg or "")
    if match:
        return [match.group(1)]
    return []


def extract_got(source_text: str, line_num: int, col_num: int) -> str:
    """Extract what was actually found at the error location"""
    lines = source_text.split('\n')

    if 1 <= line_num <= len(lines):
        error_line = lines[line_num - 1]
        start = max(0, col_num - 1)
        got_text = error_line[start:start + 12].strip()
        if got_text:
            return f"'{got_text}'"
        return "end of line"
    return "end of input"


def generate_suggestions(got: str, expected: List[str], language: str) -> List[str]:
    """Generate helpful suggestions based on the error"""
    suggestions = []
    wanted = " ".join(expected)

    if language == "python":
        if "{" in got or "}" in got:
            suggestions.append("Python blocks use ':' and indentation, not braces")
        if ";" in got:
            suggestions.append("Python statements do not end with ';'")
        if "':'" in wanted:
            suggestions.append("Compound statements (def, if, while, for) end with ':'")
    else:
        if "';'" in wanted:
            suggestions.append("Statements end with ';'")
        if "':'" in got or got.endswith(":'"):
            suggestions.append("Blocks are written with braces { }, not ':'")

    if "')'" in wanted:
        suggestions.append("Check that every '(' has a matching ')'")

    return suggestions


def enhance_parse_exception_dict(exc: ParseBaseException, source_text: str, language: str = "python") -> Dict:
    """Convert pyparsing exception to enhanced error dict"""
    line_num = exc.lineno
    col_num = exc.column

    context = get_context_lines(source_text, line_num, col_num)
    expected = extract_expected(exc)
    got = extract_got(source_text, line_num, col_num)
    suggestions = generate_suggestions(got, expected, language)

    return make_parse_error(
        message=exc.msg or "invalid syntax",
        location=exc.loc,
        line=line_num,
        column=col_num,
        expected=expected,
        got=got,
        context=context,
        suggestions=suggestions
    )


# ============================================================================
# EXCEPTION CLASSES
# ============================================================================

class SemantixError(Exception):
    """Base class for every failure reported by the analysis pipeline"""

    error_kind = "error"

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(message)

    def at_line(self, line: int) -> 'SemantixError':
        """Anchor an error raised by a value helper to the executing statement"""
        if self.line is None:
            self.line = line
        return self

    def to_response(self) -> Dict:
        """Structured failure payload: errorKind, line, message"""
        response = {'errorKind': self.error_kind, 'message': self.message}
        if self.line is not None:
            response['line'] = self.line
        if self.column is not None:
            response['column'] = self.column
        return response


class SemantixSyntaxError(SemantixError):
    """Source text that does not parse, with position and hints"""

    error_kind = "syntax"

    def __init__(self, message: str, line: int = 1, column: int = 1, location: int = 0,
                 expected: Optional[List[str]] = None, got: Optional[str] = None,
                 context: Optional[str] = None, suggestions: Optional[List[str]] = None):
        self.location = location
        self.expected = expected or []
        self.got = got
        self.context = context
        self.suggestions = suggestions or []
        super().__init__(message, line, column)

    def with_context(self, source_text: str) -> 'SemantixSyntaxError':
        """Attach the source lines around the error position"""
        if self.context is None:
            self.context = get_context_lines(source_text, self.line, self.column)
        return self

    def __str__(self) -> str:
        return format_parse_error(make_parse_error(
            self.message, self.location, self.line, self.column,
            self.expected, self.got, self.context, self.suggestions
        )).rstrip()


class SemantixRuntimeError(SemantixError):
    """Failure while executing the analysed program"""

    error_kind = "runtime"

    def __init__(self, message: str, kind: str = TYPE_MISMATCH, line: Optional[int] = None):
        if kind not in RUNTIME_KINDS:
            raise ValueError(f"Unknown runtime error kind: {kind}")
        self.kind = kind
        super().__init__(message, line)

    def to_response(self) -> Dict:
        response = super().to_response()
        response['kind'] = self.kind
        return response

    def __str__(self) -> str:
        where = f" at line {self.line}" if self.line is not None else ""
        return f"Runtime error ({self.kind}){where}: {self.message}"


class ResourceExceededError(SemantixError):
    """Execution stopped because a configured limit was reached"""

    error_kind = "resourceExceeded"

    def __init__(self, resource: str, limit: int, line: Optional[int] = None):
        self.resource = resource
        self.limit = limit
        messages = {
            STEPS: f"Execution exceeded the limit of {limit} steps",
            CALL_DEPTH: f"Call depth exceeded the limit of {limit} frames",
            WALL_CLOCK: f"Execution exceeded the wall-clock budget of {limit} ms",
            ALLOCATION: f"A single operation tried to build more than {limit} elements",
            INTEGER_SIZE: f"Integer result would exceed {limit} bits",
        }
        super().__init__(messages.get(resource, f"Resource '{resource}' exceeded {limit}"), line)

    def __str__(self) -> str:
        where = f" at line {self.line}" if self.line is not None else ""
        return f"Resource exceeded{where}: {self.message}"


def enhance_parse_exception(exc: ParseBaseException, source_text: str,
                            language: str = "python") -> SemantixSyntaxError:
    """Convert pyparsing exception to a SemantixSyntaxError"""
    error_dict = enhance_parse_exception_dict(exc, source_text, language)
    return SemantixSyntaxError(
        message=error_dict['message'],
        line=error_dict['line'],
        column=error_dict['column'],
        location=error_dict['location'],
        expected=error_dict['expected'],
        got=error_dict['got'],
        context=error_dict['context'],
        suggestions=error_dict['suggestions']
    )
