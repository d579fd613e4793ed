"""
Semantix Parser
Tokenizer, pyparsing grammars and block builder for the python and brace dialects
"""

from typing import List, Dict, Any, Tuple, Optional, NamedTuple, Iterator
from dataclasses import dataclass, field
import logging
import re
import threading

from pyparsing import (
    Forward, Keyword, Regex, Suppress, Opt, Empty, ZeroOrMore,
    OneOrMore, DelimitedList, StringEnd, ParserElement,
    ParseBaseException, ParseFatalException, infix_notation, OpAssoc,
    original_text_for, lineno, col
)

from error_handling import SemantixSyntaxError, enhance_parse_exception
from stdlib import LANGUAGE_RULES, LANGUAGES

# Enable packrat parsing for performance
ParserElement.enable_packrat()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceSpan:
    """Source location of a token or node"""
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    text: str = ""

    def __str__(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.start_line}:{self.start_col}-{self.end_col}"
        return f"{self.start_line}:{self.start_col}-{self.end_line}:{self.end_col}"


@dataclass(frozen=True)
class Token:
    """Lexical token with source information"""
    type: str
    value: Any
    span: SourceSpan
    offset: int = 0
    end_offset: int = 0

    def __str__(self) -> str:
        return f"{self.type}({self.value})"


@dataclass(frozen=True, eq=False)
class ASTNode:
    """
    Abstract syntax tree node

    ``value`` holds the node's fields by name; child nodes appear as values or
    inside tuples. ``calls`` is set by the semantic pass when the subtree
    contains a call to a user-defined function.
    """
    type: str
    value: Dict[str, Any] = field(default_factory=dict)
    span: Optional[SourceSpan] = None
    calls: bool = False

    @property
    def line(self) -> int:
        return self.span.start_line if self.span else 0

    @property
    def column(self) -> int:
        return self.span.start_col if self.span else 0

    def __getitem__(self, key: str) -> Any:
        return self.value[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.value.get(key, default)

    def __str__(self) -> str:
        return f"{self.type}({self.value})"


class ScanResult(NamedTuple):
    tokens: List[Token]
    cleaned: str
    continued_lines: frozenset


PYTHON_KEYWORDS = frozenset({
    'and', 'or', 'not', 'if', 'elif', 'else', 'while', 'for', 'in', 'def',
    'return', 'break', 'continue', 'pass', 'True', 'False', 'None', 'is',
    'lambda', 'class', 'import', 'from', 'global', 'nonlocal', 'del', 'with',
    'try', 'except', 'finally', 'raise', 'yield', 'assert', 'as', 'async', 'await',
})

BRACE_KEYWORDS = frozenset({
    'if', 'else', 'while', 'for', 'do', 'return', 'break', 'continue',
    'function', 'let', 'var', 'const', 'new', 'true', 'false', 'null',
    'nullptr', 'undefined', 'class', 'public', 'private', 'protected',
    'static', 'final', 'void', 'switch', 'case', 'default', 'try', 'catch',
    'throw', 'typeof', 'instanceof', 'this', 'delete',
})

TYPE_WORDS = (
    'int', 'long', 'short', 'float', 'double', 'char', 'bool', 'boolean',
    'string', 'String', 'void', 'auto', 'size_t', 'Integer', 'Long', 'Double',
    'Float', 'Boolean', 'Character',
)


class SourceTokenizer:
    """
    Hand-written scanner shared by both dialects

    Besides the token list, ``scan`` produces a cleaned copy of the source in
    which comments, preprocessor lines and line continuations are blanked out.
    The cleaned text has the same length and line structure as the source, so
    offsets reported by the grammars map straight back to source positions.
    """

    def __init__(self, language: str = "python"):
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        self.language = language
        self.python = LANGUAGE_RULES[language]['dialect'] == 'indent'
        self._setup_token_patterns()

    def _setup_token_patterns(self):
        """Setup token patterns for the dialect"""

        self.number_pattern = re.compile(
            r'0[xX][0-9a-fA-F]+|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?[lLuUfF]*'
        )
        if self.python:
            self.identifier_pattern = re.compile(r'[A-Za-z_]\w*')
            self.string_prefix = re.compile(r'(?:[rRbBuUfF]{1,2})(?=["\'])')
        else:
            self.identifier_pattern = re.compile(r'[A-Za-z_$][\w$]*(?:::[A-Za-z_]\w*)*')
            self.string_prefix = None

        self.operators = {
            '**=', '//=', '<<=', '>>=', '===', '!==', '...',
            '**', '//', '==', '!=', '<=', '>=', '&&', '||', '++', '--',
            '+=', '-=', '*=', '/=', '%=', '<<', '>>', '->', '::', '=>',
            '+', '-', '*', '/', '%', '<', '>', '=', '!', '&', '|', '^', '~',
            '?', ':', '.', ',', ';', '@',
        }
        operators_sorted = sorted(self.operators, key=len, reverse=True)
        self.operator_pattern = re.compile('|'.join(re.escape(op) for op in operators_sorted))
        self.delimiters = {'(', ')', '[', ']', '{', '}'}

    def _error(self, message: str, source: str, offset: int) -> SemantixSyntaxError:
        return SemantixSyntaxError(
            message, line=lineno(offset, source), column=col(offset, source), location=offset
        ).with_context(source)

    def scan(self, source: str) -> ScanResult:
        """Tokenize the source using a priority-based approach"""
        tokens: List[Token] = []
        cleaned = list(source)
        continued = set()
        pos = 0
        length = len(source)

        def blank(start: int, end: int):
            for i in range(start, end):
                if cleaned[i] != '\n':
                    cleaned[i] = ' '

        def at_line_start(offset: int) -> bool:
            line_start = source.rfind('\n', 0, offset) + 1
            return not source[line_start:offset].strip()

        while pos < length:
            ch = source[pos]

            if ch.isspace():
                pos += 1
                continue

            # Priority 1: comments, preprocessor lines and line continuations
            if self.python and ch == '#' or not self.python and source.startswith('//', pos):
                end = source.find('\n', pos)
                end = length if end < 0 else end
                blank(pos, end)
                pos = end
                continue
            if not self.python and source.startswith('/*', pos):
                end = source.find('*/', pos + 2)
                if end < 0:
                    raise self._error("unterminated comment", source, pos)
                blank(pos, end + 2)
                pos = end + 2
                continue
            if not self.python and ch == '#' and at_line_start(pos):
                end = source.find('\n', pos)
                end = length if end < 0 else end
                blank(pos, end)
                pos = end
                continue
            if ch == '\\' and source[pos + 1:pos + 2] in ('\n', ''):
                continued.add(lineno(pos, source))
                blank(pos, pos + 1)
                pos += 1
                continue

            # Priority 2: string literals
            token = self._match_string(source, pos)
            if token is None:
                token = self._match_token_at_position(source, pos)
            if token is None:
                raise self._error(f"invalid character '{ch}'", source, pos)
            tokens.append(token)
            pos = token.end_offset

        return ScanResult(tokens, ''.join(cleaned), frozenset(continued))

    def tokenize(self, source: str) -> List[Token]:
        return self.scan(source).tokens

    def _make_token(self, kind: str, value: Any, source: str, start: int, end: int) -> Token:
        span = SourceSpan(
            lineno(start, source), col(start, source),
            lineno(max(end - 1, start), source), col(max(end - 1, start), source) + 1,
            source[start:end]
        )
        return Token(kind, value, span, start, end)

    def _match_string(self, source: str, pos: int) -> Optional[Token]:
        start = pos
        if self.string_prefix is not None:
            prefix = self.string_prefix.match(source, pos)
            if prefix:
                pos = prefix.end()
        quote_char = source[pos]
        if quote_char not in ('"', "'") and not (quote_char == '`' and self.language == "javascript"):
            return None

        quote = quote_char
        if self.python and source.startswith(quote_char * 3, pos):
            quote = quote_char * 3
        body_start = pos + len(quote)
        i = body_start
        while i < len(source):
            if source[i] == '\\':
                i += 2
                continue
            if source.startswith(quote, i):
                end = i + len(quote)
                return self._make_token("STRING", source[body_start:i], source, start, end)
            if source[i] == '\n' and len(quote) == 1 and quote != '`':
                break
            i += 1
        raise self._error("unterminated string literal", source, start)

    def _match_token_at_position(self, source: str, pos: int) -> Optional[Token]:
        """Match a token at a specific position using priority order"""

        # Priority 3: numbers
        if source[pos].isdigit() or (source[pos] == '.' and source[pos + 1:pos + 2].isdigit()):
            num_match = self.number_pattern.match(source, pos)
            if num_match:
                return self._make_token("NUMBER", num_match.group(0), source, pos, num_match.end())

        # Priority 4: identifiers and keywords
        id_match = self.identifier_pattern.match(source, pos)
        if id_match:
            value = id_match.group(0)
            reserved = PYTHON_KEYWORDS if self.python else BRACE_KEYWORDS
            kind = "KEYWORD" if value in reserved else "IDENTIFIER"
            return self._make_token(kind, value, source, pos, id_match.end())

        # Priority 5: delimiters (single characters)
        if source[pos] in self.delimiters:
            return self._make_token("DELIMITER", source[pos], source, pos, pos + 1)

        # Priority 6: operators (longest match first)
        op_match = self.operator_pattern.match(source, pos)
        if op_match:
            return self._make_token("OPERATOR", op_match.group(0), source, pos, op_match.end())

        return None

    def check_brackets(self, tokens: List[Token], source: str) -> None:
        """
        Verify that brackets balance

        A closer with no matching opener is reported at the closer; an opener
        that is never closed is reported at the innermost unclosed opener.
        """
        pairs = {')': '(', ']': '[', '}': '{'}
        stack: List[Token] = []
        for token in tokens:
            if token.type != "DELIMITER":
                continue
            if token.value in pairs.values():
                stack.append(token)
                continue
            if not stack or stack[-1].value != pairs[token.value]:
                if stack:
                    message = (f"closing '{token.value}' does not match "
                               f"'{stack[-1].value}' on line {stack[-1].span.start_line}")
                else:
                    message = f"unmatched '{token.value}'"
                raise self._error(message, source, token.offset)
            stack.pop()
        if stack:
            opener = stack[-1]
            if opener.value == '{':
                message = "unterminated block: '{' was never closed"
            else:
                message = f"'{opener.value}' was never closed"
            raise self._error(message, source, opener.offset)

    def logical_lines(self, scan: ScanResult, source: str) -> Iterator[Tuple[int, List[Token]]]:
        """
        Group python tokens into logical lines

        Lines are joined inside brackets and after a backslash continuation.
        Yields ``(indent, tokens)`` with the indent measured after tab expansion.
        """
        current: List[Token] = []
        depth = 0
        for token in scan.tokens:
            if current and depth == 0:
                previous = current[-1]
                joined = previous.span.end_line in scan.continued_lines
                if token.span.start_line != previous.span.end_line and not joined:
                    yield self._indent_of(current[0], source), current
                    current = []
            current.append(token)
            if token.type == "DELIMITER":
                depth += 1 if token.value in '([{' else -1
        if current:
            yield self._indent_of(current[0], source), current

    @staticmethod
    def _indent_of(token: Token, source: str) -> int:
        line_start = source.rfind('\n', 0, token.offset) + 1
        return len(source[line_start:token.offset].expandtabs(8))


def process_string_escapes(s: str) -> str:
    """Process escape sequences in strings"""
    escape_map = {
        'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'", '`': '`',
        '0': '\0', 'a': '\a', 'b': '\b', 'f': '\f', 'v': '\v', '$': '$', '\n': '',
    }

    result = []
    i = 0
    while i < len(s):
        if s[i] == '\\' and i + 1 < len(s):
            next_char = s[i + 1]
            if next_char in escape_map:
                result.append(escape_map[next_char])
                i += 2
            else:
                # Unknown escape, keep as-is
                result.append(s[i])
                i += 1
        else:
            result.append(s[i])
            i += 1

    return ''.join(result)


def parse_number(text: str) -> Any:
    """Numeric literal text to int or float"""
    digits = text.rstrip('lLuU')
    if digits[:2] in ('0x', '0X'):
        return int(digits, 16)
    if digits[-1:] in ('f', 'F'):
        return float(digits[:-1])
    if any(c in digits for c in '.eE'):
        return float(digits)
    return int(digits)


def _span(s: str, loc: int) -> SourceSpan:
    line, column = lineno(loc, s), col(loc, s)
    return SourceSpan(line, column, line, column)


def _node(node_type: str, build=None):
    """Parse action factory producing an ASTNode located at the match start"""
    def action(s, loc, toks):
        return ASTNode(node_type, build(toks) if build else {}, _span(s, loc))
    return action


def _split_format_spec(inner: str) -> Tuple[str, str]:
    """Split ``expr:spec`` / ``expr!r`` inside an f-string replacement field"""
    depth = 0
    quote = None
    for i, ch in enumerate(inner):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in '\'"':
            quote = ch
        elif ch in '([{':
            depth += 1
        elif ch in ')]}':
            depth -= 1
        elif depth == 0 and ch == ':':
            return inner[:i], inner[i + 1:]
        elif depth == 0 and ch == '!' and inner[i + 1:i + 2] in ('r', 's', 'a'):
            rest = inner[i + 2:]
            return inner[:i], rest[1:] if rest.startswith(':') else ""
    return inner, ""


NUMBER_RE = r"0[xX][0-9a-fA-F]+|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?[lLuUfF]*"
PY_STRING_RE = (
    r'[rRbBuUfF]{0,2}(?:"""[\s\S]*?"""|\'\'\'[\s\S]*?\'\'\''
    r'|"(?:[^"\\\n]|\\[\s\S])*"|\'(?:[^\'\\\n]|\\[\s\S])*\')'
)
BRACE_STRING_RE = r'"(?:[^"\\\n]|\\.)*"|\'(?:[^\'\\\n]|\\.)*\''
TEMPLATE_STRING_RE = r'`(?:[^`\\]|\\[\s\S])*`'
ASSIGNABLE = ("NAME", "INDEX", "ATTRIBUTE")


class _Header(NamedTuple):
    """Compound-statement header of one python logical line"""
    kind: str
    fields: Dict[str, Any]
    line: int
    column: int
    inline: tuple = ()


class SemantixGrammar:
    """Grammar definition for one language using pyparsing"""

    def __init__(self, language: str, debug: bool = False):
        self.language = language
        self.debug = debug
        self.python = LANGUAGE_RULES[language]['dialect'] == 'indent'
        self._setup_expression()
        if self.python:
            self._setup_python_lines()
        else:
            self._setup_brace_program()
        self.expression_only = (self.expression + StringEnd()).parse_with_tabs()

    # ------------------------------------------------------------------
    # Literals
    # ------------------------------------------------------------------

    def _string_action(self, s, loc, toks):
        text = toks[0]
        prefix = re.match(r"[rRbBuUfF]*", text).group(0).lower() if self.python else ""
        rest = text[len(prefix):]
        quote = 3 if rest[:3] in ('"""', "'''") else 1
        body = rest[quote:-quote]
        body_loc = loc + len(prefix) + quote
        raw = 'r' in prefix
        if 'f' in prefix or rest.startswith('`'):
            parts = self._template_parts(body, s, body_loc, rest.startswith('`'), raw)
            return ASTNode("FSTRING", {'parts': parts}, _span(s, loc))
        value = body if raw else process_string_escapes(body)
        return ASTNode("STRING", {'value': value}, _span(s, loc))

    def _template_parts(self, body: str, s: str, body_loc: int, js: bool, raw: bool) -> tuple:
        """Split an f-string or template literal into text and (expression, spec) parts"""
        parts: List[Any] = []
        literal: List[str] = []

        def flush():
            if literal:
                text = ''.join(literal)
                parts.append(text if raw else process_string_escapes(text))
                literal.clear()

        i = 0
        while i < len(body):
            opens_field = body.startswith('${', i) if js else (
                body[i] == '{' and not body.startswith('{{', i))
            if opens_field:
                start = i + (2 if js else 1)
                depth, j = 1, start
                while j < len(body) and depth:
                    if body[j] in '{[(':
                        depth += 1
                    elif body[j] in '}])':
                        depth -= 1
                    j += 1
                if depth:
                    raise ParseFatalException(s, body_loc + i, "unterminated replacement field in string")
                inner, spec = (body[start:j - 1], "") if js else _split_format_spec(body[start:j - 1])
                flush()
                parts.append((self._parse_embedded(inner, s, body_loc + start), spec))
                i = j
                continue
            if not js and (body.startswith('{{', i) or body.startswith('}}', i)):
                literal.append(body[i])
                i += 2
                continue
            literal.append(body[i])
            i += 1
        flush()
        return tuple(parts)

    def _parse_embedded(self, text: str, s: str, loc: int) -> ASTNode:
        if not text.strip():
            raise ParseFatalException(s, loc, "empty expression in string")
        padded = "\n" * (lineno(loc, s) - 1) + " " * (col(loc, s) - 1) + text
        try:
            return self.expression.parse_string(padded, parse_all=True)[0]
        except ParseBaseException as exc:
            raise ParseFatalException(s, loc, f"invalid expression in string: {exc.msg}") from exc

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _setup_expression(self):
        """Expression grammar shared by statements, conditions and input bindings"""
        python = self.python
        reserved = PYTHON_KEYWORDS if python else BRACE_KEYWORDS

        expression = Forward()
        postfix = Forward()
        LPAR, RPAR, LBRACK, RBRACK = map(Suppress, "()[]")
        LBRACE, RBRACE = map(Suppress, "{}")

        ident = r"[A-Za-z_]\w*" if python else r"[A-Za-z_$][\w$]*(?:::[A-Za-z_]\w*)*"
        NAME = Regex(ident).add_condition(lambda t: t[0] not in reserved)
        MEMBER = Regex(r"[A-Za-z_$][\w$]*")
        EQ = Suppress(Regex(r"=(?![=>])"))

        number = Regex(NUMBER_RE).set_parse_action(
            _node("NUMBER", lambda t: {'value': parse_number(t[0])}))

        if python:
            string = Regex(PY_STRING_RE)
            constants = {'True': True, 'False': False, 'None': None}
        else:
            pattern = BRACE_STRING_RE
            if self.language == "javascript":
                pattern += "|" + TEMPLATE_STRING_RE
            string = Regex(pattern)
            constants = {'true': True, 'false': False, 'null': None, 'nullptr': None,
                         'undefined': None, 'NULL': None}
        string.set_parse_action(self._string_action)
        constant = Regex(r"(?:" + "|".join(constants) + r")\b(?![$])").set_parse_action(
            _node("CONST", lambda t: {'value': constants[t[0]]}))

        name_expr = NAME.copy().add_parse_action(_node("NAME", lambda t: {'name': t[0]}))

        items = Opt(DelimitedList(expression, allow_trailing_delim=True))
        list_literal = (LBRACK + items + RBRACK).set_parse_action(
            _node("ARRAY", lambda t: {'items': tuple(t)}))

        def make_paren(s, loc, t):
            if len(t) == 1:
                return t[0]
            return ASTNode("ARRAY", {'items': tuple(t)}, _span(s, loc))

        paren = (LPAR + DelimitedList(expression, allow_trailing_delim=True) + RPAR).set_parse_action(make_paren)

        if python:
            target_names = DelimitedList(NAME) | (LPAR + DelimitedList(NAME) + RPAR)

            def make_comprehension(s, loc, t):
                names = tuple(x for x in t if isinstance(x, str))
                nodes = [x for x in t if isinstance(x, ASTNode)]
                return ASTNode("COMPREHENSION", {
                    'element': nodes[0],
                    'targets': names,
                    'iterable': nodes[1],
                    'cond': nodes[2] if len(nodes) > 2 else None,
                }, _span(s, loc))

            comprehension = (
                LBRACK + expression + Suppress(Keyword("for")) + target_names +
                Suppress(Keyword("in")) + expression +
                Opt(Suppress(Keyword("if")) + expression) + RBRACK
            ).set_parse_action(make_comprehension)
            atom = string | number | constant | comprehension | list_literal | paren | name_expr
        else:
            brace_list = Forward()
            brace_list <<= (
                LBRACE + Opt(DelimitedList(brace_list | expression, allow_trailing_delim=True)) + RBRACE
            ).set_parse_action(_node("ARRAY", lambda t: {'items': tuple(t)}))
            self.brace_list = brace_list

            type_name = Regex(r"[A-Za-z_][\w:]*")
            generic_args = Suppress(Regex(r"<[^;(){}]*>"))
            empty_dims = ZeroOrMore(LBRACK + RBRACK)
            new_kw = Suppress(Keyword("new"))
            new_array = (new_kw + type_name + OneOrMore(LBRACK + expression + RBRACK) + empty_dims).set_parse_action(
                _node("NEW_ARRAY", lambda t: {'element_type': t[0], 'sizes': tuple(t[1:])}))
            new_init = (new_kw + type_name + OneOrMore(LBRACK + RBRACK) + brace_list).set_parse_action(
                lambda t: t[1])
            new_object = (
                new_kw + type_name + Opt(generic_args) + LPAR +
                Opt(DelimitedList(expression)) + RPAR
            ).set_parse_action(
                _node("NEW_OBJECT", lambda t: {'type_name': t[0], 'args': tuple(t[1:])}))

            cast_type = Regex(r"(?:int|long|short|float|double|char|bool|boolean|size_t)\b")
            cast = (LPAR + cast_type + RPAR + postfix).set_parse_action(
                _node("CAST", lambda t: {'type_name': t[0], 'operand': t[1]}))
            static_cast = (
                Regex(r"static_cast\s*<\s*([\w:]+)\s*>") + LPAR + expression + RPAR
            ).set_parse_action(_node("CAST", lambda t: {
                'type_name': re.search(r"<\s*([\w:]+)", t[0]).group(1), 'operand': t[1]}))

            atom = (string | number | constant | new_array | new_init | new_object |
                    static_cast | cast | list_literal | paren | name_expr)

        # Postfix trailers: calls, indexing, slicing, attribute access
        kwarg = (NAME + EQ + expression).set_parse_action(lambda t: ('kwarg', t[0], t[1]))
        argument = kwarg | expression if python else expression
        call_trailer = (
            LPAR + Opt(DelimitedList(argument, allow_trailing_delim=True)) + RPAR
        ).set_parse_action(lambda t: ('call',
                                      tuple(a for a in t if isinstance(a, ASTNode)),
                                      tuple((a[1], a[2]) for a in t if isinstance(a, tuple))))
        index_trailer = (LBRACK + expression + RBRACK).set_parse_action(lambda t: ('index', t[0]))
        attr_trailer = (Suppress(".") + MEMBER).set_parse_action(lambda t: ('attr', t[0]))

        def make_slice(t):
            segments: List[List[Any]] = [[]]
            for item in t:
                if isinstance(item, str):
                    segments.append([])
                else:
                    segments[-1].append(item)
            bounds = [seg[0] if seg else None for seg in segments] + [None]
            return ('slice', bounds[0], bounds[1], bounds[2] if len(segments) > 2 else None)

        slice_trailer = (
            LBRACK + Opt(expression) + ":" + Opt(expression) +
            Opt(":" + Opt(expression)) + RBRACK
        ).set_parse_action(make_slice)

        trailer = (slice_trailer | index_trailer | call_trailer | attr_trailer) if python else (
            index_trailer | call_trailer | attr_trailer)

        def fold_postfix(s, loc, t):
            node = t[0]
            span = _span(s, loc)
            for trailer_item in t[1:]:
                kind = trailer_item[0]
                if kind == 'call':
                    node = ASTNode("CALL", {'callee': node, 'args': trailer_item[1],
                                            'kwargs': trailer_item[2]}, span)
                elif kind == 'index':
                    node = ASTNode("INDEX", {'target': node, 'index': trailer_item[1]}, span)
                elif kind == 'slice':
                    node = ASTNode("SLICE", {'target': node, 'lower': trailer_item[1],
                                             'upper': trailer_item[2], 'step': trailer_item[3]}, span)
                else:
                    node = ASTNode("ATTRIBUTE", {'target': node, 'name': trailer_item[1]}, span)
            return node

        postfix <<= (atom + ZeroOrMore(trailer)).set_parse_action(fold_postfix)

        # Operator precedence, highest first
        def binary_left(s, loc, t):
            items = t[0]
            node = items[0]
            for i in range(1, len(items), 2):
                node = ASTNode("BINARY", {'op': items[i], 'left': node, 'right': items[i + 1]}, _span(s, loc))
            return node

        def binary_right(s, loc, t):
            items = t[0]
            node = items[-1]
            for i in range(len(items) - 2, 0, -2):
                node = ASTNode("BINARY", {'op': items[i], 'left': items[i - 1], 'right': node}, _span(s, loc))
            return node

        def unary(s, loc, t):
            op, operand = t[0][0], t[0][1]
            return ASTNode("UNARY", {'op': 'not' if op in ('!', 'not') else op, 'operand': operand},
                           _span(s, loc))

        def comparison(s, loc, t):
            items = t[0]
            ops = tuple(
                re.sub(r"\s+", " ", op).replace('===', '==').replace('!==', '!=')
                for op in items[1::2]
            )
            return ASTNode("COMPARE", {'operands': tuple(items[0::2]), 'ops': ops}, _span(s, loc))

        def logical(s, loc, t):
            items = t[0]
            op = 'and' if items[1] in ('and', '&&') else 'or'
            return ASTNode("LOGICAL", {'op': op, 'operands': tuple(items[0::2])}, _span(s, loc))

        if python:
            comp_op = Regex(r"==|!=|<=|>=|<(?![<=])|>(?![>=])|not\s+in\b|in\b|is\s+not\b|is\b")
            operators = [
                (Regex(r"\*\*(?!=)"), 2, OpAssoc.RIGHT, binary_right),
                (Regex(r"[-+](?!=)"), 1, OpAssoc.RIGHT, unary),
                (Regex(r"//(?!=)|\*(?![*=])|/(?![/=])|%(?!=)"), 2, OpAssoc.LEFT, binary_left),
                (Regex(r"[-+](?!=)"), 2, OpAssoc.LEFT, binary_left),
                (comp_op, 2, OpAssoc.LEFT, comparison),
                (Keyword("not"), 1, OpAssoc.RIGHT, unary),
                (Keyword("and"), 2, OpAssoc.LEFT, logical),
                (Keyword("or"), 2, OpAssoc.LEFT, logical),
            ]
        else:
            comp_op = Regex(r"===|!==|==|!=|<=|>=|<(?![<=])|>(?![>=])")
            operators = [
                (Regex(r"!(?!=)|[-+](?![-+=])"), 1, OpAssoc.RIGHT, unary),
                (Regex(r"\*(?!=)|/(?!=)|%(?!=)"), 2, OpAssoc.LEFT, binary_left),
                (Regex(r"[-+](?![-+=])"), 2, OpAssoc.LEFT, binary_left),
                (comp_op, 2, OpAssoc.LEFT, comparison),
                (Regex(r"&&"), 2, OpAssoc.LEFT, logical),
                (Regex(r"\|\|"), 2, OpAssoc.LEFT, logical),
            ]
        expression <<= infix_notation(postfix, operators)

        self.expression = expression
        self.postfix = postfix
        self.name = NAME
        self.eq = EQ

    def _with_text(self, expr):
        """Wrap expr so that it yields ``(node, verbatim source text)``"""
        start = Empty().set_parse_action(lambda s, loc, t: loc)
        end = Empty().set_parse_action(lambda s, loc, t: loc).leave_whitespace()
        return (start + expr + end).set_parse_action(lambda s, loc, t: (t[1], s[t[0]:t[2]].strip()))

    @staticmethod
    def _check_targets(s: str, loc: int, targets) -> None:
        for target in targets:
            if not isinstance(target, ASTNode) or target.type not in ASSIGNABLE:
                raise ParseFatalException(s, loc, "cannot assign to expression")

    def _assignment_rules(self):
        """Augmented assignment shared by both dialects"""
        aug_op = Regex(r"\*\*=|//=|[-+*/%]=") if self.python else Regex(r"[-+*/%]=")

        def make_aug(s, loc, t):
            self._check_targets(s, loc, [t[0]])
            return ASTNode("AUG_ASSIGN", {'target': t[0], 'op': t[1][:-1], 'value': t[2]}, _span(s, loc))

        return (self.postfix + aug_op + self.expression).set_parse_action(make_aug)

    # ------------------------------------------------------------------
    # Indent dialect: one logical line at a time
    # ------------------------------------------------------------------

    def _setup_python_lines(self):
        """Line grammar for the indent dialect; blocks are rebuilt by the parser"""
        expression = self.expression
        NAME, EQ = self.name, self.eq
        LPAR, RPAR, COLON = map(Suppress, "():")

        exprlist = DelimitedList(expression, allow_trailing_delim=True).add_parse_action(lambda t: tuple(t))

        def make_assign(s, loc, t):
            groups = list(t)
            for group in groups[:-1]:
                self._check_targets(s, loc, group)
            return ASTNode("ASSIGN", {'targets': tuple(groups[:-1]), 'values': groups[-1]}, _span(s, loc))

        def make_return(s, loc, t):
            value = None
            if t:
                values = t[0]
                value = values[0] if len(values) == 1 else ASTNode("ARRAY", {'items': values}, values[0].span)
            return ASTNode("RETURN", {'value': value}, _span(s, loc))

        return_stmt = (Suppress(Keyword("return")) + Opt(exprlist)).set_parse_action(make_return)
        pass_stmt = Keyword("pass").set_parse_action(_node("PASS"))
        break_stmt = Keyword("break").set_parse_action(_node("BREAK"))
        continue_stmt = Keyword("continue").set_parse_action(_node("CONTINUE"))
        import_stmt = Suppress(Regex(r"(?:import|from)\b[^;\n]*"))
        assign = (exprlist + OneOrMore(EQ + exprlist)).set_parse_action(make_assign)
        expr_stmt = expression.copy().set_parse_action(_node("EXPR", lambda t: {'expr': t[0]}))

        small_stmt = (return_stmt | pass_stmt | break_stmt | continue_stmt | import_stmt |
                      self._assignment_rules() | assign | expr_stmt)
        simple_stmts = DelimitedList(small_stmt, delim=";", allow_trailing_delim=True)

        cond = self._with_text(expression)
        target_names = DelimitedList(NAME) | (LPAR + DelimitedList(NAME) + RPAR)

        def header(kind, build):
            def action(s, loc, t):
                return _Header(kind, build(t), lineno(loc, s), col(loc, s))
            return action

        def cond_fields(t):
            return {'cond': t[0][0], 'text': t[0][1]}

        param = (NAME + Opt(Suppress(":" + expression)) + Opt(EQ + expression)).set_parse_action(
            lambda t: (t[0], None, t[1] if len(t) > 1 else None))
        def_header = (
            Suppress(Keyword("def")) - NAME + LPAR +
            Opt(DelimitedList(param, allow_trailing_delim=True)) + RPAR +
            Opt(Suppress("->" + expression)) + COLON
        ).set_parse_action(header("def", lambda t: {'name': t[0], 'params': tuple(t[1:])}))
        if_header = (Suppress(Keyword("if")) - cond + COLON).set_parse_action(header("if", cond_fields))
        elif_header = (Suppress(Keyword("elif")) - cond + COLON).set_parse_action(header("elif", cond_fields))
        else_header = (Suppress(Keyword("else")) - COLON).set_parse_action(header("else", lambda t: {}))
        while_header = (Suppress(Keyword("while")) - cond + COLON).set_parse_action(header("while", cond_fields))
        for_header = (
            Suppress(Keyword("for")) - target_names + Suppress(Keyword("in")) + expression + COLON
        ).set_parse_action(header("for", lambda t: {
            'targets': tuple(x for x in t if isinstance(x, str)), 'iterable': t[-1]}))

        compound = def_header | if_header | elif_header | else_header | while_header | for_header
        header_line = (compound + Opt(simple_stmts)).set_parse_action(
            lambda t: t[0]._replace(inline=tuple(t[1:])))

        self.python_line = ((header_line | simple_stmts) + StringEnd()).parse_with_tabs()

    # ------------------------------------------------------------------
    # Brace dialect: one grammar over the whole program
    # ------------------------------------------------------------------

    def _setup_brace_program(self):
        """Statement and declaration grammar shared by javascript, java and cpp"""
        expression, postfix = self.expression, self.postfix
        NAME, EQ = self.name, self.eq
        brace_list = self.brace_list
        LPAR, RPAR, LBRACK, RBRACK, LBRACE, RBRACE = map(Suppress, "()[]{}")
        SEMI, COLON = Suppress(";"), Suppress(":")
        # javascript statements may omit the terminating semicolon
        END = Suppress(Opt(";")) if self.language == "javascript" else SEMI

        statement = Forward()
        cond = self._with_text(expression)

        # Types, normalised to e.g. "int", "long long", "vector<int>", "int[]"
        type_core = Forward()
        base_type = Regex(r"(?:std::)?(?:(?:unsigned|signed|long)\s+)*(?:" + "|".join(TYPE_WORDS) + r")\b")
        generic_type = (
            Regex(r"(?:std::)?(?:vector|ArrayList|List|LinkedList|array|Array)\b") +
            "<" + DelimitedList(type_core) + ">"
        )
        type_core <<= generic_type | base_type

        def normalize_type(t):
            text = re.sub(r"\b(?:const|final)\s+|std::|[&*]", "", t[0])
            text = re.sub(r"\s+", " ", text).strip()
            return re.sub(r"\s*([<>,\[\]])\s*", r"\1", text)

        type_spec = original_text_for(
            Opt(Keyword("const") | Keyword("final")) + type_core +
            ZeroOrMore(Regex(r"\[\s*\]")) + Opt(Regex(r"[&*]+"))
        ).add_parse_action(normalize_type)

        modifiers = Suppress(ZeroOrMore(
            Keyword("public") | Keyword("private") | Keyword("protected") | Keyword("static") |
            Keyword("final") | Keyword("inline") | Keyword("constexpr") | Keyword("export")))

        # Declarations
        dim = (LBRACK + Opt(expression, default=None) + RBRACK).set_parse_action(lambda t: ('dim', t[0]))
        init = (EQ + (brace_list | expression)).set_parse_action(lambda t: ('init', t[0]))
        brace_init = brace_list.copy().add_parse_action(lambda t: ('init', t[0]))
        ctor = (LPAR + Opt(DelimitedList(expression)) + RPAR).set_parse_action(lambda t: ('ctor', tuple(t)))

        def make_declarator(s, loc, t):
            parts = list(t[1:])
            return ASTNode("DECLARATOR", {
                'name': t[0],
                'dims': tuple(p[1] for p in parts if p[0] == 'dim'),
                'init': next((p[1] for p in parts if p[0] == 'init'), None),
                'ctor_args': next((p[1] for p in parts if p[0] == 'ctor'), None),
            }, _span(s, loc))

        declarator = (NAME + ZeroOrMore(dim) + Opt(init | ctor | brace_init)).set_parse_action(make_declarator)
        declarators = DelimitedList(declarator)

        typed_decl_core = (modifiers + type_spec + declarators).set_parse_action(
            _node("DECLARE", lambda t: {'var_type': t[0], 'declarators': tuple(t[1:])}))
        js_decl_core = (
            Suppress(Keyword("let") | Keyword("var") | Keyword("const")) + declarators
        ).set_parse_action(_node("DECLARE", lambda t: {'var_type': "let", 'declarators': tuple(t)}))

        # Simple statements
        step_op = Regex(r"\+\+|--")

        def make_step(s, loc, t):
            target, op = (t[0], t[1]) if isinstance(t[0], ASTNode) else (t[1], t[0])
            self._check_targets(s, loc, [target])
            one = ASTNode("NUMBER", {'value': 1}, _span(s, loc))
            return ASTNode("AUG_ASSIGN", {'target': target, 'op': op[0], 'value': one}, _span(s, loc))

        def make_assign(s, loc, t):
            targets = tuple((target,) for target in t[:-1])
            for group in targets:
                self._check_targets(s, loc, group)
            return ASTNode("ASSIGN", {'targets': targets, 'values': (t[-1],)}, _span(s, loc))

        increment = ((postfix + step_op) | (step_op + postfix)).set_parse_action(make_step)
        assign = (OneOrMore(postfix + EQ) + (brace_list | expression)).set_parse_action(make_assign)
        simple_core = increment | self._assignment_rules() | assign

        # Compound statements
        def as_body(node: ASTNode) -> tuple:
            return node['body'] if node.type == "BLOCK" else (node,)

        def make_if(s, loc, t):
            branches = [{'line': lineno(loc, s), 'cond': t[0][0], 'text': t[0][1], 'body': as_body(t[1])}]
            orelse = as_body(t[2]) if len(t) > 2 else None
            # else if: merge the nested chain into this one
            if orelse is not None and len(orelse) == 1 and orelse[0].type == "IF":
                nested = orelse[0]
                branches.extend(nested['branches'])
                orelse = nested['orelse']
            return ASTNode("IF", {'branches': tuple(branches), 'orelse': orelse}, _span(s, loc))

        def make_c_for(s, loc, t):
            return ASTNode("FOR", {
                'init': t[0], 'cond': t[1][0], 'text': t[1][1], 'update': t[2], 'body': as_body(t[3]),
            }, _span(s, loc))

        as_tuple = lambda t: tuple(t)
        block = (LBRACE + ZeroOrMore(statement) + RBRACE).set_parse_action(
            _node("BLOCK", lambda t: {'body': tuple(t)}))
        if_stmt = (
            Suppress(Keyword("if")) - LPAR + cond + RPAR + statement +
            Opt(Suppress(Keyword("else")) + statement)
        ).set_parse_action(make_if)
        while_stmt = (Suppress(Keyword("while")) - LPAR + cond + RPAR + statement).set_parse_action(
            _node("WHILE", lambda t: {'cond': t[0][0], 'text': t[0][1], 'body': as_body(t[1])}))
        for_each = (
            Suppress(Keyword("for")) + LPAR +
            Suppress(Opt(type_spec | Keyword("let") | Keyword("var") | Keyword("const"))) +
            NAME + Suppress(COLON | Keyword("of")) + expression + RPAR + statement
        ).set_parse_action(_node("FOR_EACH", lambda t: {
            'targets': (t[0],), 'iterable': t[1], 'body': as_body(t[2])}))
        for_init = Opt((typed_decl_core | js_decl_core | DelimitedList(simple_core)).add_parse_action(as_tuple),
                       default=())
        for_update = Opt(DelimitedList(simple_core | expression).add_parse_action(as_tuple), default=())
        c_for = (
            Suppress(Keyword("for")) - LPAR + for_init + SEMI + Opt(cond, default=(None, "")) + SEMI +
            for_update + RPAR + statement
        ).set_parse_action(make_c_for)

        return_stmt = (Suppress(Keyword("return")) - Opt(expression) + END).set_parse_action(
            _node("RETURN", lambda t: {'value': t[0] if t else None}))
        break_stmt = (Keyword("break") - END).set_parse_action(_node("BREAK"))
        continue_stmt = (Keyword("continue") - END).set_parse_action(_node("CONTINUE"))

        endl = Regex(r"(?:std::)?endl\b").set_parse_action(_node("STRING", lambda t: {'value': "\n"}))
        cout_stmt = (
            Suppress(Regex(r"(?:std::)?cout\b")) + OneOrMore(Suppress("<<") + (endl | expression)) - SEMI
        ).set_parse_action(_node("PRINT", lambda t: {'args': tuple(t), 'sep': "", 'end': ""}))
        empty_stmt = Regex(";").set_parse_action(_node("PASS"))

        typed_decl = typed_decl_core - END
        js_decl = js_decl_core - END
        simple_stmt = simple_core - END
        expr_stmt = (expression - END).set_parse_action(_node("EXPR", lambda t: {'expr': t[0]}))

        statement <<= (block | if_stmt | while_stmt | for_each | c_for | return_stmt | break_stmt |
                       continue_stmt | cout_stmt | empty_stmt | typed_decl | js_decl | simple_stmt | expr_stmt)

        # Functions and classes
        array_suffix = Opt(Regex(r"(?:\[\s*\])+"), default="")
        typed_param = (type_spec + NAME + array_suffix).set_parse_action(
            lambda t: (t[1], t[0] + "[]" * t[2].count("["), None))

        def make_function(s, loc, t):
            return_type = t[0] if len(t) > 1 and isinstance(t[1], str) else None
            items = list(t[1:]) if return_type is not None else list(t)
            name, params, body = items[0], tuple(items[1:-1]), items[-1]
            return ASTNode("FUNCTION_DEF", {
                'name': name, 'params': params, 'return_type': return_type, 'body': body['body'],
            }, _span(s, loc))

        js_param = NAME.copy().add_parse_action(lambda t: (t[0], None, None))
        js_function = (
            Suppress(Keyword("function")) - NAME + LPAR +
            Opt(DelimitedList(js_param)) + RPAR + block
        ).set_parse_action(make_function)
        typed_function = (
            modifiers + type_spec + NAME + LPAR +
            Opt(DelimitedList(typed_param) | Suppress(Keyword("void"))) + RPAR + block
        ).set_parse_action(make_function)
        function_def = js_function | typed_function

        access_label = Suppress(Regex(r"(?:public|private|protected)\s*:"))
        member = access_label | function_def | typed_decl
        class_def = (
            Suppress(modifiers + Keyword("class")) + Suppress(NAME) +
            Suppress(Opt(Regex(r"(?:extends|implements)\b[^{]*"))) +
            LBRACE + ZeroOrMore(member) + RBRACE + Suppress(Opt(SEMI))
        ).set_parse_action(lambda t: tuple(t))

        ignored = Suppress(Regex(r"(?:using|import|package)\b[^;]*;"))
        top_item = ignored | class_def | function_def | statement

        self.statement = statement
        self.program = (ZeroOrMore(top_item) + StringEnd()).parse_with_tabs()


class _LogicalLine(NamedTuple):
    indent: int
    line: int
    column: int
    items: list


class _IfChain:
    """if/elif/else chain being assembled from consecutive python headers"""

    def __init__(self, header: _Header, block: tuple):
        self.line = header.line
        self.column = header.column
        self.branches = [dict(header.fields, line=header.line, body=block)]
        self.orelse = None

    def to_node(self) -> ASTNode:
        span = SourceSpan(self.line, self.column, self.line, self.column)
        return ASTNode("IF", {'branches': tuple(self.branches), 'orelse': self.orelse}, span)


_GRAMMARS: Dict[str, SemantixGrammar] = {}
# pyparsing's packrat cache is process wide
_PARSE_LOCK = threading.RLock()


def get_grammar(language: str, debug: bool = False) -> SemantixGrammar:
    """Grammar for a language, built once and cached"""
    if language not in LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    with _PARSE_LOCK:
        if language not in _GRAMMARS:
            _GRAMMARS[language] = SemantixGrammar(language, debug)
            logger.debug("Built grammar for %s", language)
        return _GRAMMARS[language]


class SemantixParser:
    """Main parser combining tokenizer, grammar and block builder"""

    def __init__(self, debug: bool = False):
        self.debug = debug

    def parse_file(self, filepath: str, language: str = "python") -> List[ASTNode]:
        """Parse a source file"""
        with open(filepath, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_string(content, language)

    def parse_string(self, source: str, language: str = "python") -> List[ASTNode]:
        """Parse source text into the top-level statement list"""
        tokenizer = SourceTokenizer(language)
        scan = tokenizer.scan(source)
        tokenizer.check_brackets(scan.tokens, source)
        grammar = get_grammar(language)

        with _PARSE_LOCK:
            try:
                if grammar.python:
                    nodes = self._parse_python(source, scan, tokenizer, grammar)
                else:
                    nodes = self._parse_brace(scan, grammar)
            except ParseBaseException as exc:
                raise self._syntax_error(exc, source, language) from exc
            except RecursionError as exc:
                raise SemantixSyntaxError("program is nested too deeply").with_context(source) from exc

        if self.debug:
            logger.debug("Parsed %d top-level statements from %d tokens (%s)",
                         len(nodes), len(scan.tokens), language)
        return nodes

    def parse_expression(self, text: str, language: str = "python") -> ASTNode:
        """Parse a single expression"""
        grammar = get_grammar(language)
        with _PARSE_LOCK:
            try:
                return grammar.expression_only.parse_string(text)[0]
            except ParseBaseException as exc:
                raise self._syntax_error(exc, text, language) from exc

    def tokenize(self, source: str, language: str = "python") -> List[Token]:
        """Tokenize source code"""
        return SourceTokenizer(language).tokenize(source)

    def _syntax_error(self, exc: ParseBaseException, source: str, language: str) -> SemantixSyntaxError:
        error = enhance_parse_exception(exc, source, language)
        if "end of text" in error.message:
            error.message = "invalid syntax"
            error.expected = []
        if error.expected == ["';'"]:
            # Report a missing terminator after the previous token, not at the next line
            loc = exc.loc
            while loc > 0 and exc.pstr[loc - 1].isspace():
                loc -= 1
            error.line, error.column = lineno(loc, exc.pstr), col(loc, exc.pstr)
            error.context = None
            error.with_context(source)
        return error

    def _parse_python(self, source: str, scan: ScanResult, tokenizer: SourceTokenizer,
                      grammar: SemantixGrammar) -> List[ASTNode]:
        lines: List[_LogicalLine] = []
        for indent, tokens in tokenizer.logical_lines(scan, source):
            if len(tokens) == 1 and tokens[0].type == "STRING":
                continue  # docstring
            first = tokens[0]
            text = scan.cleaned[first.offset:tokens[-1].end_offset]
            # Pad so that pyparsing reports absolute line and column numbers
            padded = "\n" * (first.span.start_line - 1) + " " * (first.span.start_col - 1) + text
            items = list(grammar.python_line.parse_string(padded))
            if items:
                lines.append(_LogicalLine(indent, first.span.start_line, first.span.start_col, items))

        body, _ = self._build_block(lines, 0, 0, source)
        return body

    def _build_block(self, lines: List[_LogicalLine], pos: int, indent: int,
                     source: str) -> Tuple[List[ASTNode], int]:
        """Rebuild one indented block starting at lines[pos]"""
        body: List[Any] = []
        while pos < len(lines):
            line = lines[pos]
            if line.indent < indent:
                break
            if line.indent > indent:
                if pos > 0 and lines[pos - 1].indent > line.indent:
                    message = "unindent does not match any outer indentation level"
                else:
                    message = "unexpected indent"
                raise self._block_error(message, line.line, line.column, source)

            header = line.items[0]
            pos += 1
            if not isinstance(header, _Header):
                body.extend(line.items)
                continue

            if header.inline:
                block = list(header.inline)
            elif pos >= len(lines) or lines[pos].indent <= indent:
                raise self._block_error(
                    f"expected an indented block after '{header.kind}' statement on line {header.line}",
                    header.line, header.column, source)
            else:
                block, pos = self._build_block(lines, pos, lines[pos].indent, source)
            self._attach(body, header, tuple(block), source)

        return [item.to_node() if isinstance(item, _IfChain) else item for item in body], pos

    def _attach(self, body: List[Any], header: _Header, block: tuple, source: str) -> None:
        span = SourceSpan(header.line, header.column, header.line, header.column)
        fields = header.fields

        if header.kind == "if":
            body.append(_IfChain(header, block))
        elif header.kind in ("elif", "else"):
            chain = body[-1] if body else None
            if not isinstance(chain, _IfChain) or chain.orelse is not None:
                raise self._block_error(
                    f"'{header.kind}' without a matching 'if'", header.line, header.column, source)
            if header.kind == "elif":
                chain.branches.append(dict(fields, line=header.line, body=block))
            else:
                chain.orelse = block
        elif header.kind == "while":
            body.append(ASTNode("WHILE", {'cond': fields['cond'], 'text': fields['text'], 'body': block}, span))
        elif header.kind == "for":
            body.append(ASTNode("FOR_EACH", {
                'targets': fields['targets'], 'iterable': fields['iterable'], 'body': block}, span))
        else:
            body.append(ASTNode("FUNCTION_DEF", {
                'name': fields['name'], 'params': fields['params'], 'return_type': None, 'body': block,
            }, span))

    @staticmethod
    def _block_error(message: str, line: int, column: int, source: str) -> SemantixSyntaxError:
        return SemantixSyntaxError(message, line=line, column=column).with_context(source)

    def _parse_brace(self, scan: ScanResult, grammar: SemantixGrammar) -> List[ASTNode]:
        nodes: List[ASTNode] = []
        for item in grammar.program.parse_string(scan.cleaned):
            # class bodies arrive as tuples of hoisted members
            if isinstance(item, tuple):
                nodes.extend(item)
            else:
                nodes.append(item)
        return nodes


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> SemantixParser:
    """Create a parser"""
    return SemantixParser(debug=debug)


# ============================================================================
# INPUT BINDINGS
# ============================================================================

_BINDING_RE = re.compile(
    r"^(?:(?:let|var|const|int|long|double|float|boolean|bool|String|string|auto)(?:\[\])?\s+)?"
    r"([A-Za-z_$][\w$]*)\s*=(?!=)\s*(.*?)\s*$",
    re.DOTALL
)


def _split_top_level(text: str, separator: str) -> List[str]:
    """Split on separator outside quotes and brackets"""
    pieces, current = [], []
    depth, quote = 0, None
    for ch in text:
        if quote:
            quote = None if ch == quote else quote
        elif ch in '"\'':
            quote = ch
        elif ch in '([{':
            depth += 1
        elif ch in ')]}':
            depth -= 1
        elif ch == separator and depth == 0:
            pieces.append(''.join(current))
            current = []
            continue
        current.append(ch)
    pieces.append(''.join(current))
    return pieces


def literal_value(node: ASTNode) -> Any:
    """Plain Python value of a literal expression; ValueError for anything else"""
    if node.type in ("NUMBER", "STRING", "CONST"):
        return node['value']
    if node.type == "ARRAY":
        return [literal_value(item) for item in node['items']]
    if node.type == "UNARY" and node['op'] in ('-', '+') and node['operand'].type == "NUMBER":
        number = node['operand']['value']
        return -number if node['op'] == '-' else number
    raise ValueError(f"{node.type} is not a literal")


def parse_bindings(input_text: str, language: str = "python") -> Dict[str, Any]:
    """
    Parse the input bindings of a request

    One ``name = literal`` per line (or ``;``-separated). A bare literal is
    bound to ``input``.

    Examples:
        parse_bindings("n = 5\\narr = [3, 1, 2]") -> {'n': 5, 'arr': [3, 1, 2]}
    """
    bindings: Dict[str, Any] = {}
    if not input_text or not input_text.strip():
        return bindings

    grammar = get_grammar(language)
    for line_number, raw_line in enumerate(input_text.split('\n'), 1):
        for piece in _split_top_level(raw_line, ';'):
            piece = piece.strip()
            if not piece:
                continue
            match = _BINDING_RE.match(piece)
            name, expr_text = (match.group(1), match.group(2)) if match else ("input", piece)
            column = raw_line.find(expr_text) + 1
            try:
                with _PARSE_LOCK:
                    node = grammar.expression_only.parse_string(expr_text)[0]
                bindings[name] = literal_value(node)
            except (ParseBaseException, ValueError) as exc:
                raise SemantixSyntaxError(
                    f"invalid input binding '{piece}': expected a literal value",
                    line=line_number, column=max(column, 1),
                    context=get_input_context(input_text, line_number),
                ) from exc
    return bindings


def get_input_context(input_text: str, line_number: int) -> str:
    lines = input_text.split('\n')
    return f"  input {line_number:2d}: {lines[line_number - 1]}"


# ============================================================================
# AST UTILITIES
# ============================================================================

def iter_children(node: ASTNode) -> Iterator[ASTNode]:
    """Direct child nodes, in field order"""
    def walk(value):
        if isinstance(value, ASTNode):
            yield value
        elif isinstance(value, (tuple, list)):
            for item in value:
                yield from walk(item)
        elif isinstance(value, dict):
            for item in value.values():
                yield from walk(item)

    for value in node.value.values():
        yield from walk(value)


def find_nodes(nodes, node_type: str) -> List[ASTNode]:
    """Find all nodes of a specific type in a node or statement list"""
    result = []

    def search(node: ASTNode):
        if node.type == node_type:
            result.append(node)
        for child in iter_children(node):
            search(child)

    for node in ([nodes] if isinstance(nodes, ASTNode) else nodes):
        search(node)
    return result


def pretty_print_ast(node: ASTNode, indent: int = 0) -> str:
    """Pretty print an AST node for debugging"""
    scalars = {k: v for k, v in node.value.items()
               if isinstance(v, (str, int, float, bool)) or v is None}
    result = "  " * indent + f"{node.type}"
    if scalars:
        result += f"({', '.join(f'{k}={v!r}' for k, v in scalars.items())})"
    result += f" @{node.line}\n"

    for child in iter_children(node):
        result += pretty_print_ast(child, indent + 1)

    return result


def ast_to_dict(node: ASTNode) -> Dict[str, Any]:
    """Convert an AST node to a JSON-friendly dictionary"""
    def convert(value):
        if isinstance(value, ASTNode):
            return ast_to_dict(value)
        if isinstance(value, (tuple, list)):
            return [convert(item) for item in value]
        if isinstance(value, dict):
            return {key: convert(item) for key, item in value.items()}
        return value

    return {
        "type": node.type,
        "line": node.line,
        "column": node.column,
        "fields": {key: convert(value) for key, value in node.value.items()},
    }
