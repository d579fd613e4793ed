"""
Semantix complexity estimation

A structural pass over the resolved program derives best and worst case time
and the space class from loop shapes and recursive call structure. Optional
(size, trace) samples give an empirical cross-check fitted with numpy least
squares.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from parsing import ASTNode, find_nodes, iter_children
from semantics import Program
from stdlib import GROWING_METHODS

logger = logging.getLogger(__name__)

HALVING_OPS = ("/", "//", ">>")
SCALING_OPS = ("*", "<<") + HALVING_OPS
LINEAR_BUILTINS = ("sum", "max", "min", "list", "reversed", "enumerate", "str")
LINEAR_METHODS = ("indexOf", "index", "includes", "contains", "insert", "fill")
SORTING = ("sorted", "sort", "Arrays.sort")


class ComplexityClass(Enum):
  """Order-of-growth buckets, cheapest first"""
  CONSTANT = "O(1)"
  LOGARITHMIC = "O(log n)"
  LINEAR = "O(n)"
  LINEARITHMIC = "O(n log n)"
  QUADRATIC = "O(n^2)"
  CUBIC = "O(n^3)"
  POLYNOMIAL = "O(n^k)"
  EXPONENTIAL = "O(2^n)"
  UNKNOWN = "O(unknown)"

  def __str__(self) -> str:
    return self.value


# ============================================================================
# GROWTH ARITHMETIC
# ============================================================================

@dataclass(frozen=True)
class Growth:
  """n^degree * log(n)^logs, or exponential, or unknown"""
  degree: int = 0
  logs: int = 0
  exponential: bool = False
  unknown: bool = False

  def key(self) -> Tuple:
    return (self.unknown, self.exponential, self.degree, self.logs)

  def __mul__(self, other: 'Growth') -> 'Growth':
    if self.unknown or other.unknown:
      return UNKNOWN
    if self.exponential or other.exponential:
      return EXPONENTIAL
    return Growth(self.degree + other.degree, self.logs + other.logs)

  def __or__(self, other: 'Growth') -> 'Growth':
    return self if self.key() >= other.key() else other

  def __lt__(self, other: 'Growth') -> bool:
    return self.key() < other.key()

  def classify(self) -> ComplexityClass:
    if self.unknown:
      return ComplexityClass.UNKNOWN
    if self.exponential:
      return ComplexityClass.EXPONENTIAL
    if self.degree == 0:
      return ComplexityClass.CONSTANT if self.logs == 0 else ComplexityClass.LOGARITHMIC
    if self.degree == 1:
      return ComplexityClass.LINEAR if self.logs == 0 else ComplexityClass.LINEARITHMIC
    # n^2 log n rounds up to the next bucket
    if self.degree == 2:
      return ComplexityClass.QUADRATIC if self.logs == 0 else ComplexityClass.CUBIC
    if self.degree == 3 and self.logs == 0:
      return ComplexityClass.CUBIC
    return ComplexityClass.POLYNOMIAL


CONSTANT = Growth()
LOGARITHMIC = Growth(logs=1)
LINEAR = Growth(degree=1)
LINEARITHMIC = Growth(degree=1, logs=1)
EXPONENTIAL = Growth(exponential=True)
UNKNOWN = Growth(unknown=True)


@dataclass(frozen=True)
class Cost:
  """
  Cost of a statement or block along its cheapest and dearest paths

  ``exit`` is the control transfer ending the best path (``return`` or
  ``break``); ``recurses`` marks a best path containing a self-call.
  """
  best: Growth = CONSTANT
  worst: Growth = CONSTANT
  exit: Optional[str] = None
  recurses: bool = False
  calls_best: int = 0
  calls_worst: int = 0
  exit_line: Optional[int] = None


@dataclass
class FunctionSummary:
  name: str
  best: Growth
  worst: Growth
  stack: Growth = CONSTANT
  heap: Growth = CONSTANT
  recursive: bool = False


@dataclass(frozen=True)
class ComplexityResult:
  best: ComplexityClass
  average: ComplexityClass
  worst: ComplexityClass
  space: ComplexityClass
  time_reasoning: str
  space_reasoning: str
  empirical: Optional[ComplexityClass] = None

  def time_dict(self) -> Dict[str, str]:
    return {
        'best': str(self.best),
        'average': str(self.average),
        'worst': str(self.worst),
        'reasoning': self.time_reasoning,
    }

  def space_dict(self) -> Dict[str, str]:
    return {'class': str(self.space), 'reasoning': self.space_reasoning}

  def to_dict(self) -> Dict[str, Any]:
    data = {'timeComplexity': self.time_dict(), 'spaceComplexity': self.space_dict()}
    if self.empirical is not None:
      data['empirical'] = str(self.empirical)
    return data


# ============================================================================
# STRUCTURAL HELPERS
# ============================================================================

def has_names(node: Optional[ASTNode]) -> bool:
  """True when an expression depends on a variable"""
  if node is None:
    return False
  return bool(find_nodes(node, "NAME"))


def names_in(node: Optional[ASTNode]) -> List[str]:
  if node is None:
    return []
  seen: List[str] = []
  for name_node in find_nodes(node, "NAME"):
    if name_node['name'] not in seen:
      seen.append(name_node['name'])
  return seen


def is_halving_expr(node: ASTNode) -> bool:
  return any(binary['op'] in HALVING_OPS and binary['right'].type == "NUMBER"
             for binary in find_nodes(node, "BINARY"))


def assignments(root) -> List[Tuple[str, ASTNode, Optional[str]]]:
  """(name, value, augmented op) for every assignment to a plain name"""
  found = []
  for node in find_nodes(root, "ASSIGN"):
    for group in node['targets']:
      values = node['values']
      for i, target in enumerate(group):
        if target.type == "NAME":
          value = values[i] if len(values) == len(group) else values[0]
          found.append((target['name'], value, None))
  for node in find_nodes(root, "AUG_ASSIGN"):
    if node['target'].type == "NAME":
      found.append((node['target']['name'], node['value'], node['op']))
  for node in find_nodes(root, "DECLARE"):
    for declarator in node['declarators']:
      if declarator['init'] is not None:
        found.append((declarator['name'], declarator['init'], None))
  return found


def halving_names(root) -> List[str]:
  """Variables assigned a halving expression such as (lo + hi) // 2"""
  return [name for name, value, op in assignments(root)
          if op is None and is_halving_expr(value)]


def update_kind(value: ASTNode, op: Optional[str], name: str, halving: Sequence[str]) -> str:
  """Classify how one assignment moves a loop variable"""
  if op is not None:
    if op in SCALING_OPS:
      return "scaling"
    return "additive"
  referenced = names_in(value)
  if any(h in referenced for h in halving) and name not in halving:
    return "scaling"
  for binary in find_nodes(value, "BINARY"):
    if binary['op'] in SCALING_OPS and name in names_in(binary):
      return "scaling"
  return "additive"


def is_literal_init(value: Optional[ASTNode]) -> bool:
  return value is not None and not has_names(value) and not value.calls


def note(ctx: Dict, text: str) -> None:
  if text not in ctx['notes']:
    ctx['notes'].append(text)


def space_note(ctx: Dict, text: str) -> None:
  if text not in ctx['space_notes']:
    ctx['space_notes'].append(text)


def where(ctx: Dict) -> str:
  return f"in {ctx['function']}" if ctx['function'] else "at top level"


# ============================================================================
# LOOP ITERATION COUNTS
# ============================================================================

def loop_iterations(node: ASTNode, ctx: Dict) -> Growth:
  """Number of iterations of one loop as a growth term"""
  line = node.line
  halving = ctx['halving']

  if node.type == "FOR_EACH":
    iterable = node['iterable']
    if not has_names(iterable) and not iterable.calls:
      note(ctx, f"the loop on line {line} has a literal bound, so it runs a constant number of times")
      return CONSTANT
    subject = ", ".join(names_in(iterable)) or "its iterable"
    note(ctx, f"the loop on line {line} visits each element of {subject} once")
    return LINEAR

  if node.type == "FOR":
    if node['cond'] is None:
      note(ctx, f"the loop on line {line} has no condition")
      return UNKNOWN
    counters = {name: update_kind(value, op, name, halving)
                for name, value, op in assignments(node['update'])}
    init_literal = {name for name, value, op in assignments(node['init'])
                    if is_literal_init(value)}
    others = [n for n in names_in(node['cond']) if n not in counters]
    return _counted_loop(line, counters, init_literal | ctx['literals'], others, ctx)

  # WHILE
  cond_names = names_in(node['cond'])
  changed = {}
  for name, value, op in assignments(node['body']):
    if name in cond_names:
      kind = update_kind(value, op, name, halving)
      changed[name] = "scaling" if changed.get(name) == "scaling" else kind
  for call in find_nodes(node['body'], "CALL_METHOD"):
    target = call['target']
    if target.type == "NAME" and target['name'] in cond_names:
      changed.setdefault(target['name'], "additive")
  if not changed:
    note(ctx, f"the condition of the loop on line {line} never changes inside it, "
              f"so its iteration count is unknown")
    return UNKNOWN
  others = [n for n in cond_names if n not in changed]
  return _counted_loop(line, changed, ctx['literals'], others, ctx)


def _counted_loop(line: int, counters: Dict[str, str], literal: set, others: List[str],
                  ctx: Dict) -> Growth:
  if "scaling" in counters.values():
    note(ctx, f"the loop on line {line} multiplies or halves its counter, "
              f"so it runs a logarithmic number of times")
    return LOGARITHMIC
  if not others and all(name in literal for name in counters):
    note(ctx, f"the loop on line {line} has a literal bound, so it runs a constant number of times")
    return CONSTANT
  bound = ", ".join(others) if others else ", ".join(counters)
  note(ctx, f"the loop on line {line} steps its counter additively towards {bound}, "
            f"so it runs a linear number of times")
  return LINEAR


# ============================================================================
# EXPRESSION AND STATEMENT COSTS
# ============================================================================

def expression_cost(node: Optional[ASTNode], ctx: Dict) -> Cost:
  """Cost of evaluating an expression once, calls included"""
  if node is None:
    return Cost()
  node_type = node.type
  own = CONSTANT
  calls = 0
  best = worst = CONSTANT

  if node_type == "CALL_USER":
    if node['name'] == ctx['function']:
      calls = 1
    else:
      summary = summarize_function(node['name'], ctx)
      best, worst = summary.best, summary.worst
      ctx['stack'] = ctx['stack'] | summary.stack
      ctx['heap'] = ctx['heap'] | summary.heap
  elif node_type == "CALL_BUILTIN":
    if node['name'] in SORTING:
      own = LINEARITHMIC
    elif node['name'] in LINEAR_BUILTINS and node['args'] and has_names(node['args'][0]):
      own = LINEAR
    if node['name'] in ("sorted", "list", "reversed", "enumerate") and has_names(node):
      allocate(ctx, LINEAR, node, "a copy of its argument")
  elif node_type == "CALL_METHOD":
    method = node['method']
    if method in SORTING:
      own = LINEARITHMIC
    elif method in LINEAR_METHODS:
      own = LINEAR
    if method in GROWING_METHODS and ctx['loop'] != CONSTANT:
      allocate(ctx, ctx['loop'], node, f"repeated {method} calls")
  elif node_type == "COMPARE":
    if any(op in ("in", "not in") for op in node['ops']):
      own = LINEAR
  elif node_type == "SLICE":
    own = LINEAR
    allocate(ctx, LINEAR, node, "a slice copy")
  elif node_type == "COMPREHENSION":
    if has_names(node['iterable']):
      own = LINEAR
      allocate(ctx, LINEAR, node, "a comprehension")
  elif node_type == "BINARY" and node['op'] == "*":
    sides = (node['left'], node['right'])
    if any(side.type in ("ARRAY", "COMPREHENSION") for side in sides) and any(map(has_names, sides)):
      own = LINEAR
      allocate(ctx, LINEAR, node, "a repeated list")
  elif node_type == "NEW_ARRAY":
    dims = [LINEAR if has_names(size) else CONSTANT for size in node['sizes']]
    growth = CONSTANT
    for dim in dims:
      growth = growth * dim
    if growth != CONSTANT:
      own = growth
      allocate(ctx, growth, node, "a new array")
  elif node_type == "NEW_OBJECT":
    if node['args'] and has_names(node['args'][0]):
      own = LINEAR
      allocate(ctx, LINEAR, node, f"a new {node['type_name']}")

  for child in iter_children(node):
    sub = expression_cost(child, ctx)
    best, worst = best | sub.best, worst | sub.worst
    calls += sub.calls_worst
  return Cost(best | own, worst | own, None, calls > 0, calls, calls)


def allocate(ctx: Dict, growth: Growth, node: ASTNode, what: str) -> None:
  if growth == CONSTANT:
    return
  ctx['heap'] = ctx['heap'] | growth
  space_note(ctx, f"line {node.line} allocates {what} that grows as {growth.classify()}")


def combine_all(costs: List[Cost]) -> Cost:
  best = worst = CONSTANT
  calls = 0
  for cost in costs:
    best, worst = best | cost.best, worst | cost.worst
    calls += cost.calls_worst
  return Cost(best, worst, None, calls > 0, calls, calls)


def block_cost(statements, ctx: Dict) -> Cost:
  """Sequential composition; the best path stops at its first exit"""
  saved_literals = ctx['literals']
  ctx['literals'] = set(saved_literals)
  best = worst = CONSTANT
  calls_best = calls_worst = 0
  exit_kind = exit_line = None
  recurses = False
  for statement in statements or ():
    cost = statement_cost(statement, ctx)
    worst = worst | cost.worst
    calls_worst += cost.calls_worst
    if exit_kind is None:
      best = best | cost.best
      calls_best += cost.calls_best
      recurses = recurses or cost.recurses
      exit_kind, exit_line = cost.exit, cost.exit_line
  ctx['literals'] = saved_literals
  if exit_kind == "return" and best < worst:
    note(ctx, f"an early return on line {exit_line} {where(ctx)} ends the cheapest path")
  return Cost(best, worst, exit_kind, recurses, calls_best, calls_worst, exit_line)


def statement_cost(node: ASTNode, ctx: Dict) -> Cost:
  node_type = node.type

  if node_type == "IF":
    return if_cost(node, ctx)
  if node_type in ("WHILE", "FOR", "FOR_EACH"):
    return loop_cost(node, ctx)
  if node_type == "BREAK":
    return Cost(exit="break", exit_line=node.line)
  if node_type in ("CONTINUE", "PASS"):
    return Cost()

  if node_type == "ASSIGN":
    for name, value, _ in assignments([node]):
      if is_literal_init(value):
        ctx['literals'].add(name)
      else:
        ctx['literals'].discard(name)
  elif node_type == "DECLARE":
    for declarator in node['declarators']:
      if is_literal_init(declarator['init']):
        ctx['literals'].add(declarator['name'])
      dims = [LINEAR for dim in declarator['dims'] if has_names(dim)]
      if declarator['ctor_args'] and has_names(declarator['ctor_args'][0]):
        dims.append(LINEAR)
      growth = CONSTANT
      for dim in dims:
        growth = growth * dim
      allocate(ctx, growth, node, f"{declarator['name']}")
  elif node_type == "AUG_ASSIGN" and node['target'].type == "NAME":
    ctx['literals'].discard(node['target']['name'])

  cost = combine_all([expression_cost(child, ctx) for child in iter_children(node)])
  if node_type == "RETURN":
    return replace(cost, exit="return", exit_line=node.line)
  return cost


def if_cost(node: ASTNode, ctx: Dict) -> Cost:
  """Worst takes the dearest branch, best the cheapest eligible one"""
  cond_costs = []
  options = []
  for branch in node['branches']:
    cond_costs.append(expression_cost(branch['cond'], ctx))
    options.append((branch['line'], block_cost(branch['body'], ctx)))
  if node['orelse'] is not None:
    options.append((None, block_cost(node['orelse'], ctx)))
  else:
    options.append((None, Cost()))
  conds = combine_all(cond_costs)

  eligible = options
  if ctx['recursive']:
    # a recursive function's best case still has to recurse
    eligible = [o for o in options if not (o[1].exit == "return" and not o[1].recurses)] or options
  chosen = min((o[1] for o in eligible), key=lambda c: (c.best.key(), c.exit is None))
  worst = conds.worst
  calls_worst = 0
  for _, cost in options:
    worst = worst | cost.worst
    calls_worst = max(calls_worst, cost.calls_worst)
  return Cost(conds.best | chosen.best, worst, chosen.exit, chosen.recurses or conds.recurses,
              conds.calls_worst + chosen.calls_best, conds.calls_worst + calls_worst,
              chosen.exit_line)


def loop_cost(node: ASTNode, ctx: Dict) -> Cost:
  iterations = loop_iterations(node, ctx)
  header = combine_all([expression_cost(node.get('cond'), ctx),
                        expression_cost(node.get('iterable'), ctx)]
                       + [statement_cost(s, ctx) for s in node.get('init', ())])
  saved_loop = ctx['loop']
  ctx['loop'] = saved_loop * iterations
  body = block_cost(node['body'], ctx)
  update = block_cost(node.get('update', ()), ctx)
  ctx['loop'] = saved_loop

  per_iteration_worst = body.worst | update.worst | header.worst
  worst = iterations * per_iteration_worst
  many = 2 if iterations != CONSTANT or body.calls_worst else 1
  calls_worst = body.calls_worst * many + header.calls_worst

  if body.exit in ("break", "return"):
    if body.best < worst:
      note(ctx, f"the loop on line {node.line} can exit on its first iteration")
    best = header.best | body.best
    calls_best = body.calls_best
    exit_kind = "return" if body.exit == "return" else None
    exit_line = body.exit_line if exit_kind else None
  else:
    best = iterations * (body.best | update.best | header.best)
    calls_best = body.calls_best * many
    exit_kind = exit_line = None
  return Cost(best, worst, exit_kind, body.recurses, calls_best, calls_worst, exit_line)


# ============================================================================
# FUNCTIONS AND RECURSION
# ============================================================================

def argument_reduction(function: ASTNode, halving: Sequence[str]) -> str:
  """How self-calls shrink their arguments: halving, decrement or unknown"""
  kinds = set()
  for call in find_nodes(function['body'], "CALL_USER"):
    if call['name'] != function['name']:
      continue
    for arg in call['args']:
      if any(name in halving for name in names_in(arg)) or is_halving_expr(arg):
        kinds.add("halving")
      elif arg.type == "SLICE" or any(b['op'] in ("-", "+") for b in find_nodes(arg, "BINARY")):
        kinds.add("decrement")
  if "halving" in kinds:
    return "halving"
  if "decrement" in kinds:
    return "decrement"
  return "unknown"


def is_memoized(function: ASTNode) -> bool:
  """A guard reading a container the body also stores into by index"""
  stored = set()
  for node in find_nodes(function['body'], "ASSIGN"):
    for group in node['targets']:
      for target in group:
        if target.type == "INDEX" and target['target'].type == "NAME":
          stored.add(target['target']['name'])
  if not stored:
    return False
  for node in find_nodes(function['body'], "IF"):
    for branch in node['branches']:
      cond = branch['cond']
      for compare in find_nodes(cond, "COMPARE"):
        if any(op in ("in", "not in") for op in compare['ops']) and \
            any(n in stored for n in names_in(compare['operands'][-1])):
          return True
      for index in find_nodes(cond, "INDEX"):
        if index['target'].type == "NAME" and index['target']['name'] in stored:
          return True
  return False


def solve_recurrence(calls: int, reduction: str, work: Growth, memo: bool) -> Growth:
  if calls == 0:
    return work
  if work.unknown or work.exponential:
    return work
  if memo:
    return LINEAR * work
  if reduction == "halving":
    # master theorem with b = 2
    if calls < 2 ** work.degree:
      return work
    if calls == 2 ** work.degree:
      return work * LOGARITHMIC
    return Growth(degree=math.ceil(math.log2(calls)))
  if reduction == "decrement":
    return LINEAR * work if calls == 1 else EXPONENTIAL
  return LINEAR * work if calls == 1 else UNKNOWN


def summarize_function(name: str, ctx: Dict) -> FunctionSummary:
  """Cost summary of one user function, computed once"""
  summaries = ctx['summaries']
  if name in summaries:
    return summaries[name]
  function = ctx['program'].functions.get(name)
  if function is None or name in ctx['active']:
    note(ctx, f"{name} takes part in mutual recursion, which is not classified")
    return FunctionSummary(name, UNKNOWN, UNKNOWN, UNKNOWN)

  ctx['active'].append(name)
  saved = {key: ctx[key] for key in ('function', 'recursive', 'loop', 'literals', 'stack',
                                     'heap', 'halving')}
  recursive = any(call['name'] == name for call in find_nodes(function['body'], "CALL_USER"))
  ctx.update(function=name, recursive=recursive, loop=CONSTANT, literals=set(),
             stack=CONSTANT, heap=CONSTANT, halving=halving_names(function['body']))
  body = block_cost(function['body'], ctx)
  stack, heap, halving = ctx['stack'], ctx['heap'], ctx['halving']
  for key, value in saved.items():
    ctx[key] = value
  ctx['active'].pop()

  if not recursive:
    summary = FunctionSummary(name, body.best, body.worst, stack, heap)
  else:
    reduction = argument_reduction(function, halving)
    memo = is_memoized(function)
    worst = solve_recurrence(body.calls_worst, reduction, body.worst, memo)
    best = solve_recurrence(body.calls_best, reduction, body.best, memo)
    depth = LOGARITHMIC if reduction == "halving" and not memo else LINEAR
    if reduction == "decrement" and heap != CONSTANT and not memo:
      heap = heap * LINEAR
    described = {"halving": "halves its argument", "decrement": "shrinks its argument by a constant",
                 "unknown": "changes its argument in an unrecognised way"}[reduction]
    calls = body.calls_worst
    text = (f"{name} makes {calls} recursive {'call' if calls == 1 else 'calls'} per activation "
            f"and {described}")
    if memo:
      text += "; results are memoised, so each argument is computed once"
    note(ctx, f"{text}, giving {worst.classify()}")
    space_note(ctx, f"the recursion in {name} keeps up to {depth.classify()} frames on the stack")
    summary = FunctionSummary(name, best, worst, stack | depth, heap, True)

  summaries[name] = summary
  return summary


def make_complexity_context(program: Program, debug: bool = False) -> Dict:
  return {
      'program': program,
      'debug': debug,
      'summaries': {},
      'active': [],
      'notes': [],
      'space_notes': [],
      'function': None,
      'recursive': False,
      'loop': CONSTANT,
      'literals': set(),
      'stack': CONSTANT,
      'heap': CONSTANT,
      'halving': halving_names(list(program.statements)),
  }


# ============================================================================
# EMPIRICAL CROSS-CHECK
# ============================================================================

EMPIRICAL_MODELS = (
    (ComplexityClass.CONSTANT, None),
    (ComplexityClass.LOGARITHMIC, lambda n: np.log2(n)),
    (ComplexityClass.LINEAR, lambda n: n),
    (ComplexityClass.LINEARITHMIC, lambda n: n * np.log2(n)),
    (ComplexityClass.QUADRATIC, lambda n: n ** 2),
    (ComplexityClass.CUBIC, lambda n: n ** 3),
    (ComplexityClass.EXPONENTIAL, lambda n: np.exp2(np.minimum(n, 60.0))),
)


def step_count(sample: Any) -> int:
  return sample if isinstance(sample, int) else len(sample)


def empirical_fit(samples: Sequence[Tuple[int, Any]]) -> Optional[Tuple[ComplexityClass, float]]:
  """
  Fit step counts against each candidate class with least squares

  Each sample is (size, trace) or (size, step count). Returns the class with
  the smallest relative residual, or None with fewer than three sizes.
  """
  by_size: Dict[int, int] = {}
  for size, sample in samples:
    by_size[int(size)] = max(by_size.get(int(size), 0), step_count(sample))
  if len(by_size) < 3:
    return None
  sizes = np.array(sorted(by_size), dtype=float)
  sizes = np.maximum(sizes, 2.0)
  steps = np.array([by_size[key] for key in sorted(by_size)], dtype=float)
  scale = max(float(np.linalg.norm(steps)), 1.0)

  best: Optional[Tuple[ComplexityClass, float]] = None
  for complexity, model in EMPIRICAL_MODELS:
    columns = [np.ones_like(sizes)]
    if model is not None:
      columns.append(model(sizes))
    matrix = np.column_stack(columns)
    coefficients, _, _, _ = np.linalg.lstsq(matrix, steps, rcond=None)
    if model is not None and coefficients[1] <= 0:
      continue
    residual = float(np.linalg.norm(matrix @ coefficients - steps)) / scale
    # a later, steeper model must beat the current one clearly
    if best is None or residual < best[1] - 1e-6:
      best = (complexity, residual)
  return best


# ============================================================================
# ENTRY POINT
# ============================================================================

def _sentence(parts: List[str]) -> str:
  if not parts:
    return ""
  text = "; ".join(parts)
  return text[0].upper() + text[1:] + "."


def _structural(program: Program, traces, debug: bool) -> ComplexityResult:
  ctx = make_complexity_context(program, debug)
  top = block_cost(list(program.statements), ctx)
  best, worst = top.best, top.worst
  best = best if best < worst else worst
  stack, heap = ctx['stack'], ctx['heap']

  notes = list(ctx['notes'])
  if not notes:
    notes.append("the program is straight-line code with no loops or recursion")
  worst_class = worst.classify()
  best_class = best.classify()
  empirical = None
  if traces:
    fitted = empirical_fit(traces)
    if fitted is not None:
      empirical = fitted[0]
      notes.append(f"step counts over {len(traces)} runs fit {empirical} best")
      if worst_class == ComplexityClass.UNKNOWN:
        worst_class = empirical
        if best_class == ComplexityClass.UNKNOWN:
          best_class = empirical
  if worst_class == ComplexityClass.UNKNOWN:
    notes.append("there is not enough structure to bound the running time")
  if best_class != worst_class:
    notes.append(f"the average case is reported as the worst case {worst_class}, since inputs "
                 f"that avoid the early exit dominate")
  time_reasoning = _sentence(notes)

  space = (stack | heap).classify()
  space_notes = list(ctx['space_notes'])
  if not space_notes:
    space_notes.append("only a fixed number of scalar variables is live at any time")
  if traces:
    observed = max((getattr(sample, 'max_depth', 1) for _, sample in traces), default=1)
    space_notes.append(f"the deepest observed call stack held {observed} frames")
  space_reasoning = _sentence(space_notes)

  if debug:
    logger.debug("complexity: best %s, worst %s, space %s", best_class, worst_class, space)
  return ComplexityResult(
      best=best_class,
      average=worst_class,
      worst=worst_class,
      space=space,
      time_reasoning=time_reasoning,
      space_reasoning=space_reasoning,
      empirical=empirical,
  )


def estimate_complexity(program: Program, traces: Optional[Sequence[Tuple[int, Any]]] = None,
                        max_depth: Optional[int] = None, debug: bool = False) -> ComplexityResult:
  """
  Classify best, average and worst case time and the space class

  ``traces`` is an optional list of (size, trace) samples for the empirical
  cross-check; ``max_depth`` is the deepest call stack of the analysed run.
  Falls back to O(unknown) instead of raising.
  """
  try:
    result = _structural(program, traces, debug)
  except Exception as exc:
    logger.warning("structural complexity pass failed: %s", exc)
    unknown = ComplexityClass.UNKNOWN
    reason = f"The program could not be classified ({exc})."
    return ComplexityResult(unknown, unknown, unknown, unknown, reason, reason)
  if max_depth is not None:
    reasoning = f"{result.space_reasoning} The traced run reached a call depth of {max_depth}."
    result = replace(result, space_reasoning=reasoning)
  return result
