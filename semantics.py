"""
Semantix Semantic Analysis - Pure Functional Style
Turns the parser's statement list into an immutable Program: functions are
hoisted, calls are resolved and misplaced statements are rejected
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field, replace
from types import MappingProxyType
import logging

from parsing import ASTNode, create_parser, iter_children
from error_handling import SemantixSyntaxError
from stdlib import BUILTIN_FUNCTIONS, BUILTIN_CONSTANTS, LANGUAGE_RULES, LANGUAGES

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, eq=False)
class Program:
  """
  Immutable, resolved program

  ``body`` holds the top-level statements in execution order. For java and
  cpp a ``main`` function is not callable; it is kept as ``entry`` and its
  body runs in the global frame after the top-level statements.
  ``conditions`` maps the line of every if/while/for header to the verbatim
  condition text.
  """
  language: str
  body: Tuple[ASTNode, ...]
  functions: Mapping[str, ASTNode] = field(default_factory=lambda: MappingProxyType({}))
  entry: Optional[ASTNode] = None
  source: str = ""
  conditions: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))

  def line_text(self, line: int) -> str:
    lines = self.source.split('\n')
    if 1 <= line <= len(lines):
      return lines[line - 1].strip()
    return ""

  @property
  def statements(self) -> Tuple[ASTNode, ...]:
    """Statements executed in the global frame, entry body included"""
    if self.entry is None:
      return self.body
    return self.body + tuple(self.entry['body'])


def make_context(language: str, functions: Dict[str, ASTNode], source: str,
                 conditions: Dict[int, str], function: Optional[str] = None,
                 loop_depth: int = 0, debug: bool = False) -> Dict:
  """Resolution context threaded through the statement walk"""
  return {
      'language': language,
      'functions': functions,
      'source': source,
      'conditions': conditions,
      'function': function,
      'loop_depth': loop_depth,
      'debug': debug,
  }


# Output primitives: dotted call name -> (separator, terminator)
OUTPUT_CALLS: Dict[str, Dict[str, Tuple[str, str]]] = {
    "python": {"print": (" ", "\n")},
    "javascript": {"console.log": (" ", "\n")},
    "java": {"System.out.println": ("", "\n"), "System.out.print": ("", "")},
    "cpp": {},
}


# ============================================================================
# HELPERS
# ============================================================================

def dotted_name(node: ASTNode) -> Optional[str]:
  """`Math.max` for ATTRIBUTE(NAME Math, max); None when not a plain dotted path"""
  if node.type == "NAME":
    return node['name']
  if node.type == "ATTRIBUTE":
    prefix = dotted_name(node['target'])
    return f"{prefix}.{node['name']}" if prefix is not None else None
  return None


def semantic_error(message: str, node: ASTNode, ctx: Dict) -> SemantixSyntaxError:
  return SemantixSyntaxError(message, line=node.line or 1, column=node.column or 1).with_context(ctx['source'])


def rebuild(node: ASTNode, **fields: Any) -> ASTNode:
  """Copy of node with replaced fields and a recomputed `calls` flag"""
  updated = replace(node, value={**node.value, **fields})
  calls = updated.type == "CALL_USER" or any(child.calls for child in iter_children(updated))
  return replace(updated, calls=calls)


def _resolve_all(nodes, ctx: Dict) -> tuple:
  return tuple(resolve_expression(node, ctx) for node in nodes)


# ============================================================================
# EXPRESSIONS
# ============================================================================

def resolve_expression(node: Optional[ASTNode], ctx: Dict) -> Optional[ASTNode]:
  """Resolve names and calls inside one expression"""
  if node is None:
    return None
  node_type = node.type

  if node_type in ("NUMBER", "STRING", "CONST"):
    return node
  elif node_type in ("NAME", "ATTRIBUTE"):
    constant = BUILTIN_CONSTANTS[ctx['language']].get(dotted_name(node) or "")
    if constant is not None:
      return ASTNode("NUMBER", {'value': constant['value']}, node.span)
    if node_type == "NAME":
      return node
    return rebuild(node, target=resolve_expression(node['target'], ctx))
  elif node_type == "CALL":
    return resolve_call(node, ctx)
  elif node_type == "FSTRING":
    parts = tuple(part if isinstance(part, str) else (resolve_expression(part[0], ctx), part[1])
                  for part in node['parts'])
    return rebuild(node, parts=parts)
  elif node_type == "ARRAY":
    return rebuild(node, items=_resolve_all(node['items'], ctx))
  elif node_type == "COMPREHENSION":
    return rebuild(node, element=resolve_expression(node['element'], ctx),
                   iterable=resolve_expression(node['iterable'], ctx),
                   cond=resolve_expression(node['cond'], ctx))
  elif node_type == "NEW_ARRAY":
    return rebuild(node, sizes=_resolve_all(node['sizes'], ctx))
  elif node_type == "NEW_OBJECT":
    return rebuild(node, args=_resolve_all(node['args'], ctx))
  elif node_type == "CAST":
    return rebuild(node, operand=resolve_expression(node['operand'], ctx))
  elif node_type == "INDEX":
    return rebuild(node, target=resolve_expression(node['target'], ctx),
                   index=resolve_expression(node['index'], ctx))
  elif node_type == "SLICE":
    return rebuild(node, target=resolve_expression(node['target'], ctx),
                   lower=resolve_expression(node['lower'], ctx),
                   upper=resolve_expression(node['upper'], ctx),
                   step=resolve_expression(node['step'], ctx))
  elif node_type == "UNARY":
    return rebuild(node, operand=resolve_expression(node['operand'], ctx))
  elif node_type == "BINARY":
    return rebuild(node, left=resolve_expression(node['left'], ctx),
                   right=resolve_expression(node['right'], ctx))
  elif node_type in ("COMPARE", "LOGICAL"):
    return rebuild(node, operands=_resolve_all(node['operands'], ctx))

  raise semantic_error(f"unsupported expression: {node_type.lower()}", node, ctx)


def resolve_call(node: ASTNode, ctx: Dict, statement: bool = False) -> ASTNode:
  """
  Classify a call

  Order: user function, output primitive (statement position only),
  builtin, method on a value. Anything else becomes CALL_UNKNOWN and fails
  with unbound-variable when executed.
  """
  language = ctx['language']
  callee = node['callee']
  name = dotted_name(callee)
  args = _resolve_all(node['args'], ctx)
  kwargs = tuple((key, resolve_expression(value, ctx)) for key, value in node['kwargs'])

  if callee.type == "NAME" and name in ctx['functions']:
    params = [param[0] for param in ctx['functions'][name]['params']]
    for key, _ in kwargs:
      if key not in params:
        raise semantic_error(f"{name}() got an unexpected keyword argument '{key}'", node, ctx)
    return rebuild(ASTNode("CALL_USER", {}, node.span), name=name, args=args, kwargs=kwargs)

  output = OUTPUT_CALLS[language].get(name or "")
  if output is not None:
    if not statement:
      raise semantic_error(f"{name}(...) does not produce a value", node, ctx)
    sep, end = output
    for key, value in kwargs:
      if key not in ('sep', 'end') or value.type not in ("STRING", "CONST"):
        raise semantic_error(f"unsupported argument '{key}' to {name}()", node, ctx)
      text = value['value'] if value['value'] is not None else {'sep': " ", 'end': "\n"}[key]
      sep, end = (text, end) if key == 'sep' else (sep, text)
    return rebuild(ASTNode("PRINT", {}, node.span), args=args, sep=sep, end=end)

  if kwargs:
    raise semantic_error(f"keyword arguments are not supported for {name or 'this call'}", node, ctx)
  if name is not None and name in BUILTIN_FUNCTIONS[language]:
    return rebuild(ASTNode("CALL_BUILTIN", {}, node.span), name=name, args=args)
  if callee.type == "ATTRIBUTE":
    return rebuild(ASTNode("CALL_METHOD", {}, node.span),
                   target=resolve_expression(callee['target'], ctx), method=callee['name'], args=args)
  return rebuild(ASTNode("CALL_UNKNOWN", {}, node.span), name=name or "<expression>", args=args)


# ============================================================================
# STATEMENTS
# ============================================================================

def resolve_block(nodes, ctx: Dict) -> Tuple[ASTNode, ...]:
  """Resolve a statement list; nested brace blocks are flattened"""
  body: List[ASTNode] = []
  for node in nodes:
    if node.type == "BLOCK":
      body.extend(resolve_block(node['body'], ctx))
    else:
      body.append(resolve_statement(node, ctx))
  return tuple(body)


def _resolve_target(target: ASTNode, ctx: Dict) -> ASTNode:
  if target.type == "ATTRIBUTE":
    raise semantic_error("assignment to attributes is not supported", target, ctx)
  return resolve_expression(target, ctx)


def _in_loop(ctx: Dict) -> Dict:
  return {**ctx, 'loop_depth': ctx['loop_depth'] + 1}


def resolve_statement(node: ASTNode, ctx: Dict) -> ASTNode:
  """Resolve one statement"""
  node_type = node.type

  if node_type == "EXPR":
    expr = node['expr']
    if expr.type == "CALL":
      resolved = resolve_call(expr, ctx, statement=True)
      if resolved.type == "PRINT":
        return resolved
      return rebuild(node, expr=resolved)
    return rebuild(node, expr=resolve_expression(expr, ctx))
  elif node_type == "PRINT":
    return rebuild(node, args=_resolve_all(node['args'], ctx))
  elif node_type == "ASSIGN":
    targets = tuple(tuple(_resolve_target(t, ctx) for t in group) for group in node['targets'])
    return rebuild(node, targets=targets, values=_resolve_all(node['values'], ctx))
  elif node_type == "AUG_ASSIGN":
    return rebuild(node, target=_resolve_target(node['target'], ctx),
                   value=resolve_expression(node['value'], ctx))
  elif node_type == "DECLARE":
    declarators = tuple(
        rebuild(d, dims=tuple(resolve_expression(dim, ctx) for dim in d['dims']),
                init=resolve_expression(d['init'], ctx),
                ctor_args=_resolve_all(d['ctor_args'], ctx) if d['ctor_args'] is not None else None)
        for d in node['declarators'])
    return rebuild(node, declarators=declarators)
  elif node_type == "IF":
    branches = []
    for branch in node['branches']:
      ctx['conditions'][branch['line']] = branch['text']
      branches.append({**branch, 'cond': resolve_expression(branch['cond'], ctx),
                       'body': resolve_block(branch['body'], ctx)})
    orelse = resolve_block(node['orelse'], ctx) if node['orelse'] is not None else None
    return rebuild(node, branches=tuple(branches), orelse=orelse)
  elif node_type == "WHILE":
    ctx['conditions'][node.line] = node['text']
    return rebuild(node, cond=resolve_expression(node['cond'], ctx),
                   body=resolve_block(node['body'], _in_loop(ctx)))
  elif node_type == "FOR":
    ctx['conditions'][node.line] = node['text']
    update = tuple(
        step if step.type in ("ASSIGN", "AUG_ASSIGN") else ASTNode("EXPR", {'expr': step}, step.span)
        for step in node['update'])
    return rebuild(node, init=resolve_block(node['init'], ctx),
                   cond=resolve_expression(node['cond'], ctx),
                   update=resolve_block(update, ctx),
                   body=resolve_block(node['body'], _in_loop(ctx)))
  elif node_type == "FOR_EACH":
    return rebuild(node, iterable=resolve_expression(node['iterable'], ctx),
                   body=resolve_block(node['body'], _in_loop(ctx)))
  elif node_type == "RETURN":
    if ctx['function'] is None:
      raise semantic_error("'return' outside function", node, ctx)
    return rebuild(node, value=resolve_expression(node['value'], ctx))
  elif node_type in ("BREAK", "CONTINUE"):
    if ctx['loop_depth'] == 0:
      raise semantic_error(f"'{node_type.lower()}' outside loop", node, ctx)
    return node
  elif node_type == "PASS":
    return node
  elif node_type == "FUNCTION_DEF":
    raise semantic_error(
        f"function '{node['name']}' must be defined at the top level", node, ctx)

  raise semantic_error(f"unsupported statement: {node_type.lower()}", node, ctx)


def resolve_function(node: ASTNode, ctx: Dict) -> ASTNode:
  """Check parameters and resolve the body of one function definition"""
  names = [param[0] for param in node['params']]
  for i, name in enumerate(names):
    if name in names[:i]:
      raise semantic_error(f"duplicate argument '{name}' in function definition", node, ctx)

  params = []
  for name, type_name, default in node['params']:
    default = resolve_expression(default, ctx)
    if default is not None and default.calls:
      raise semantic_error(f"default value of '{name}' must not call a function", node, ctx)
    params.append((name, type_name, default))

  fn_ctx = {**ctx, 'function': node['name'], 'loop_depth': 0}
  return rebuild(node, params=tuple(params), body=resolve_block(node['body'], fn_ctx))


# ============================================================================
# MAIN ANALYSIS FUNCTION
# ============================================================================

def analyze_program(nodes: List[ASTNode], language: str = "python", source: str = "",
                    debug: bool = False) -> Program:
  """
  Analyze a parsed statement list and return the resolved Program.
  Function definitions are collected first so that calls may precede them.
  """
  if language not in LANGUAGES:
    raise ValueError(f"Unsupported language: {language}")

  definitions: Dict[str, ASTNode] = {}
  top_level: List[ASTNode] = []
  conditions: Dict[int, str] = {}
  ctx = make_context(language, definitions, source, conditions, debug=debug)

  for node in nodes:
    if node.type != "FUNCTION_DEF":
      top_level.append(node)
      continue
    if node['name'] in definitions:
      raise semantic_error(f"function '{node['name']}' is already defined", node, ctx)
    definitions[node['name']] = node

  entry = None
  if LANGUAGE_RULES[language]['dialect'] == 'brace' and language != "javascript":
    entry = definitions.pop('main', None)

  functions = {name: resolve_function(node, ctx) for name, node in definitions.items()}
  body = resolve_block(top_level, ctx)
  if entry is not None:
    entry = resolve_function(entry, ctx)

  if debug:
    logger.debug("Resolved %d statements and %d functions%s", len(body), len(functions),
                 " with entry main" if entry is not None else "")

  return Program(
      language=language,
      body=body,
      functions=MappingProxyType(functions),
      entry=entry,
      source=source,
      conditions=MappingProxyType(dict(conditions)),
  )


def parse(source: str, language: str = "python", debug: bool = False) -> Program:
  """Parse and resolve source text; raises SemantixSyntaxError, never returns a partial program"""
  nodes = create_parser(debug).parse_string(source, language)
  return analyze_program(nodes, language, source, debug)


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================

def create_analyzer(debug: bool = False):
  """Factory function returning a semantic analyzer object"""
  def analyzer(nodes, language="python", source=""):
    return analyze_program(nodes, language, source, debug)

  return type('Analyzer', (), {
      'analyze': lambda self, nodes, language="python", source="": analyzer(nodes, language, source),
      'parse': lambda self, source, language="python": parse(source, language, debug),
      'builtins': lambda self, language="python": sorted(BUILTIN_FUNCTIONS[language]),
  })()
