"""
Semantix invariant inference

Conjectures loop invariants from the snapshots taken at loop-header entry and
recursion invariants from the call tree recorded in a trace. Every relation
reported here has been checked against every snapshot it speaks about; a
relation that fails on one snapshot is discarded.
"""

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional, Tuple

from parsing import ASTNode, find_nodes, iter_children
from semantics import Program
from interpreter import ExecutionTrace

logger = logging.getLogger(__name__)

MIN_FITTED_SNAPSHOTS = 3
MIN_ORDER_SNAPSHOTS = 2
SEQUENCE_OFFSETS = (0, -1, 1, -2, 2, -3, 3)
LOOP_TYPES = ("WHILE", "FOR", "FOR_EACH")


def is_number(value: Any) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_int(value: Any) -> bool:
  return isinstance(value, int) and not isinstance(value, bool)


def offset_text(name: str, offset: int) -> str:
  if offset == 0:
    return name
  return f"{name} {'+' if offset > 0 else '-'} {abs(offset)}"


# ============================================================================
# RELATIONS
# ============================================================================

@dataclass(frozen=True)
class AffineRelation:
  """target == a * source + b over exact rationals"""
  target: str
  source: str
  a: Fraction
  b: Fraction

  def holds(self, variables: Dict[str, Any]) -> bool:
    x, y = variables.get(self.source), variables.get(self.target)
    if not (is_int(x) and is_int(y)):
      return False
    return self.a * x + self.b == y

  @property
  def text(self) -> str:
    a, b = self.a, self.b
    if a == 1:
      term = self.source
    elif a == -1:
      term = f"-{self.source}"
    elif a.denominator == 1:
      term = f"{a.numerator} * {self.source}"
    elif a.numerator == 1:
      term = f"{self.source} / {a.denominator}"
    else:
      term = f"{a.numerator} * {self.source} / {a.denominator}"
    if b > 0:
      term += f" + {b}"
    elif b < 0:
      term += f" - {-b}"
    return f"{self.target} == {term}"


_FIB = [0, 1]
_FACT = [1]


def fib(k: int) -> int:
  while len(_FIB) <= k:
    _FIB.append(_FIB[-1] + _FIB[-2])
  return _FIB[k]


def factorial(k: int) -> int:
  while len(_FACT) <= k:
    _FACT.append(_FACT[-1] * len(_FACT))
  return _FACT[k]


def _paren(expr: str) -> str:
  return expr if expr.isidentifier() else f"({expr})"


SEQUENCES: Dict[str, Tuple[Callable[[int], int], Callable[[str], str], str]] = {
    'fib': (fib, lambda m: f"fib({m})", "Fibonacci number"),
    'factorial': (factorial, lambda m: f"{_paren(m)}!", "factorial"),
    'pow2': (lambda k: 2 ** k, lambda m: f"2 ** {_paren(m)}", "power of two"),
    'square': (lambda k: k * k, lambda m: f"{_paren(m)} ** 2", "square"),
    'triangular': (lambda k: k * (k + 1) // 2, lambda m: f"{_paren(m)} * ({m} + 1) / 2",
                   "triangular number"),
}


@dataclass(frozen=True)
class SequenceRelation:
  """target == f(counter + offset) for a well-known integer sequence f"""
  target: str
  counter: str
  kind: str
  offset: int

  def holds(self, variables: Dict[str, Any]) -> bool:
    i, y = variables.get(self.counter), variables.get(self.target)
    if not (is_int(i) and is_int(y)):
      return False
    k = i + self.offset
    if k < 0:
      return False
    return SEQUENCES[self.kind][0](k) == y

  @property
  def text(self) -> str:
    return f"{self.target} == {SEQUENCES[self.kind][1](offset_text(self.counter, self.offset))}"


AGGREGATES = {'sum': sum, 'max': max, 'min': min}


@dataclass(frozen=True)
class PrefixAggregate:
  """target == agg(array[0:counter + offset])"""
  target: str
  array: str
  counter: str
  aggregate: str
  offset: int

  def holds(self, variables: Dict[str, Any]) -> bool:
    i, y, items = (variables.get(self.counter), variables.get(self.target),
                   variables.get(self.array))
    if not (is_int(i) and is_number(y) and isinstance(items, list)):
      return False
    end = i + self.offset
    if not 0 <= end <= len(items):
      return False
    prefix = items[:end]
    if not all(is_number(item) for item in prefix):
      return False
    if not prefix and self.aggregate != 'sum':
      return False
    return AGGREGATES[self.aggregate](prefix) == y

  @property
  def text(self) -> str:
    end = offset_text(self.counter, self.offset)
    return f"{self.target} == {self.aggregate}({self.array}[0:{end}])"


@dataclass(frozen=True)
class Term:
  """A bound operand: a literal, a variable or the length of an array"""
  text: str
  name: Optional[str] = None
  length_of: Optional[str] = None
  literal: Optional[int] = None

  def evaluate(self, variables: Dict[str, Any]) -> Optional[int]:
    if self.literal is not None:
      return self.literal
    if self.length_of is not None:
      items = variables.get(self.length_of)
      return len(items) if isinstance(items, (list, str)) else None
    value = variables.get(self.name)
    return value if is_int(value) else None


@dataclass(frozen=True)
class BoundRelation:
  """lower <= counter (< | <=) upper"""
  counter: str
  lower: Optional[Term]
  upper: Optional[Term]
  strict_upper: bool = False

  def holds(self, variables: Dict[str, Any]) -> bool:
    i = variables.get(self.counter)
    if not is_int(i):
      return False
    if self.lower is not None:
      lo = self.lower.evaluate(variables)
      if lo is None or not lo <= i:
        return False
    if self.upper is not None:
      hi = self.upper.evaluate(variables)
      if hi is None or not (i < hi if self.strict_upper else i <= hi):
        return False
    return True

  @property
  def text(self) -> str:
    parts = []
    if self.lower is not None:
      parts.append(f"{self.lower.text} <= ")
    parts.append(self.counter)
    if self.upper is not None:
      parts.append(f" {'<' if self.strict_upper else '<='} {self.upper.text}")
    return "".join(parts)


@dataclass(frozen=True)
class OrderRelation:
  left: str
  right: str
  strict: bool = False

  def holds(self, variables: Dict[str, Any]) -> bool:
    x, y = variables.get(self.left), variables.get(self.right)
    if not (is_number(x) and is_number(y)):
      return False
    return x < y if self.strict else x <= y

  @property
  def text(self) -> str:
    return f"{self.left} {'<' if self.strict else '<='} {self.right}"


def holds_everywhere(relation, snapshots: List[Dict[str, Any]]) -> bool:
  return all(relation.holds(variables) for variables in snapshots)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class LoopInvariant:
  line: int
  relation: Any
  explanation: str
  iterations: int

  @property
  def text(self) -> str:
    return self.relation.text

  def holds(self, variables: Dict[str, Any]) -> bool:
    return self.relation.holds(variables)

  def to_dict(self) -> Dict[str, Any]:
    return {
        'line': self.line,
        'location': f"line {self.line}",
        'invariant': self.text,
        'explanation': self.explanation,
        'iterations': self.iterations,
    }


@dataclass(frozen=True)
class RecursionInvariant:
  function: str
  base_condition: Optional[str]
  base_value: Any
  relation: Optional[str]
  calls: int
  max_depth: int
  explanation: str

  @property
  def base_case(self) -> str:
    condition = self.base_condition or "no guard evaluated"
    return f"{condition} -> return {self.base_value!r}"

  def to_dict(self) -> Dict[str, Any]:
    return {
        'function': self.function,
        'baseCase': self.base_case,
        'recursiveCase': self.relation or "no relation between return values found",
        'explanation': self.explanation,
        'baseCondition': self.base_condition,
        'baseValue': self.base_value,
        'calls': self.calls,
        'maxDepth': self.max_depth,
    }


# ============================================================================
# LOOP SITES
# ============================================================================

@dataclass
class LoopSite:
  """Static facts about one loop header, taken from the resolved program"""
  line: int
  kind: str
  end_line: int
  header_names: List[str] = field(default_factory=list)
  header_literals: List[int] = field(default_factory=list)
  updated: List[str] = field(default_factory=list)


def _last_line(node: ASTNode) -> int:
  """Highest source line of any node inside a loop"""
  return max([node.line] + [_last_line(child) for child in iter_children(node)])


def _names_in(node: Optional[ASTNode]) -> List[str]:
  if node is None:
    return []
  names: List[str] = []
  for name_node in find_nodes(node, "NAME"):
    if name_node['name'] not in names:
      names.append(name_node['name'])
  return names


def _literals_in(node: Optional[ASTNode]) -> List[int]:
  if node is None:
    return []
  return [n['value'] for n in find_nodes(node, "NUMBER") if is_int(n['value'])]


def _assigned_names(statements) -> List[str]:
  names = []
  for statement in statements:
    if statement.type == "AUG_ASSIGN" and statement['target'].type == "NAME":
      names.append(statement['target']['name'])
    elif statement.type == "ASSIGN":
      for group in statement['targets']:
        names.extend(t['name'] for t in group if t.type == "NAME")
  return names


def collect_loop_sites(program: Program) -> Dict[int, LoopSite]:
  """Every loop in the program keyed by header line"""
  roots = list(program.statements) + [f for f in program.functions.values()]
  sites: Dict[int, LoopSite] = {}
  for loop_type in LOOP_TYPES:
    for node in find_nodes(roots, loop_type):
      site = LoopSite(line=node.line, kind=loop_type, end_line=_last_line(node))
      if loop_type == "FOR_EACH":
        header = node['iterable']
        site.updated = list(node['targets'])
      else:
        header = node['cond']
      site.header_names = _names_in(header)
      site.header_literals = _literals_in(header)
      if loop_type == "FOR":
        site.updated = _assigned_names(node['update'])
      sites[node.line] = site
  return sites


def loop_runs(trace: ExecutionTrace, site: LoopSite) -> List[List[Dict[str, Any]]]:
  """
  Snapshots at a loop header, split into runs

  A run ends when its frame executes a line outside the loop, so each
  execution of a nested inner loop gets its own run.
  """
  open_runs: Dict[int, List[Dict[str, Any]]] = {}
  runs: List[List[Dict[str, Any]]] = []
  for step in trace.steps:
    frame = step.frame_id
    if step.event == "loop" and step.line == site.line:
      if frame not in open_runs:
        open_runs[frame] = []
        runs.append(open_runs[frame])
      open_runs[frame].append(step.variables)
    elif frame in open_runs and not site.line <= step.line <= site.end_line:
      del open_runs[frame]
  return runs


# ============================================================================
# LOOP INVARIANT INFERENCE
# ============================================================================

def _distinct(snapshots, name) -> int:
  return len({repr(s.get(name)) for s in snapshots})


def _int_names(snapshots: List[Dict[str, Any]]) -> List[str]:
  """Variables bound to an Int in every snapshot, in binding order"""
  first = snapshots[0]
  return [name for name, value in first.items()
          if is_int(value) and all(is_int(s.get(name)) for s in snapshots)]


def _constant_step(runs, name) -> bool:
  deltas = set()
  for run in runs:
    for before, after in zip(run, run[1:]):
      deltas.add(after[name] - before[name])
  return len(deltas) == 1 and 0 not in deltas


def find_counters(site: LoopSite, runs, snapshots) -> List[str]:
  ints = _int_names(snapshots)
  if site.kind == "WHILE":
    candidates = [name for name in site.header_names if name in ints]
    return [name for name in candidates if _constant_step(runs, name)]
  return [name for name in site.updated if name in ints and _distinct(snapshots, name) > 1]


def fit_affine(target: str, source: str, snapshots) -> Optional[AffineRelation]:
  anchor = snapshots[0]
  for other in snapshots[1:]:
    if other[source] != anchor[source]:
      a = Fraction(other[target] - anchor[target], other[source] - anchor[source])
      b = anchor[target] - a * anchor[source]
      relation = AffineRelation(target, source, a, b)
      if a != 0 and holds_everywhere(relation, snapshots):
        return relation
      return None
  return None


def fit_sequence(target: str, counter: str, snapshots) -> Optional[SequenceRelation]:
  for kind in SEQUENCES:
    for offset in SEQUENCE_OFFSETS:
      relation = SequenceRelation(target, counter, kind, offset)
      if holds_everywhere(relation, snapshots):
        return relation
  return None


def fit_prefix(target: str, counter: str, arrays: List[str], snapshots) -> Optional[PrefixAggregate]:
  for array in arrays:
    for aggregate in AGGREGATES:
      for offset in (0, 1):
        relation = PrefixAggregate(target, array, counter, aggregate, offset)
        if holds_everywhere(relation, snapshots):
          return relation
  return None


def _bound_terms(site: LoopSite, counter: str, snapshots, language: str) -> List[Term]:
  terms = []
  for name in site.header_names:
    if name == counter:
      continue
    value = snapshots[0].get(name)
    if is_int(value):
      terms.append(Term(name, name=name))
    elif isinstance(value, list):
      terms.append(Term(length_text(name, language), length_of=name))
  terms.extend(Term(str(literal), literal=literal) for literal in site.header_literals)
  return terms


def length_text(name: str, language: str) -> str:
  if language == "python":
    return f"len({name})"
  if language == "cpp":
    return f"{name}.size()"
  return f"{name}.length"


def fit_bound(site: LoopSite, counter: str, runs, snapshots, language: str) -> Optional[BoundRelation]:
  terms = _bound_terms(site, counter, snapshots, language)
  starts = {run[0][counter] for run in runs}
  increasing = all(a[counter] <= b[counter] for run in runs for a, b in zip(run, run[1:]))
  start = Term(str(next(iter(starts))), literal=next(iter(starts))) if len(starts) == 1 else None

  def first_holding(candidates, make):
    for term in candidates:
      relation = make(term)
      if holds_everywhere(relation, snapshots):
        return relation
    return None

  if increasing:
    lower_terms = ([start] if start is not None else []) + terms
    upper_terms = terms
  else:
    lower_terms = terms
    upper_terms = terms + ([start] if start is not None else [])

  lower = first_holding(lower_terms, lambda t: BoundRelation(counter, t, None))
  upper = None
  for term in upper_terms:
    for strict in (True, False):
      candidate = BoundRelation(counter, None, term, strict)
      if holds_everywhere(candidate, snapshots):
        upper = candidate
        break
    if upper is not None:
      break
  if lower is None and upper is None:
    return None
  return BoundRelation(counter, lower.lower if lower else None,
                       upper.upper if upper else None,
                       upper.strict_upper if upper else False)


def _site_invariants(site: LoopSite, runs, language: str) -> List[LoopInvariant]:
  snapshots = [variables for run in runs for variables in run]
  count = len(snapshots)
  if count < MIN_ORDER_SNAPSHOTS:
    return []

  counters = find_counters(site, runs, snapshots)
  found: List[LoopInvariant] = []

  def emit(relation, explanation):
    found.append(LoopInvariant(site.line, relation, explanation, count))

  for counter in counters:
    bound = fit_bound(site, counter, runs, snapshots, language)
    if bound is not None:
      emit(bound, f"{counter} stays within {bound.text} at every entry to the loop body")

  if site.kind == "WHILE":
    names = [n for n in site.header_names if n not in counters]
    for i, left in enumerate(names):
      for right in names[i + 1:]:
        for lo, hi in ((left, right), (right, left)):
          if _distinct(snapshots, lo) + _distinct(snapshots, hi) < 3:
            continue
          relation = OrderRelation(lo, hi)
          if holds_everywhere(relation, snapshots):
            emit(relation, f"{relation.text} is preserved by every iteration")
            break

  if count < MIN_FITTED_SNAPSHOTS:
    return found

  ints = _int_names(snapshots)
  arrays = [name for name, value in snapshots[0].items()
            if isinstance(value, list) and all(isinstance(s.get(name), list) for s in snapshots)]
  targets = [name for name, value in snapshots[0].items()
             if name not in counters and is_number(value)
             and all(is_number(s.get(name)) for s in snapshots) and _distinct(snapshots, name) > 1]
  fitted_pairs = set()
  for target in targets:
    relation = None
    if target in ints:
      for source in counters + [n for n in ints if n not in counters and n != target]:
        if (source, target) in fitted_pairs or _distinct(snapshots, source) < 2:
          continue
        relation = fit_affine(target, source, snapshots)
        if relation is not None:
          fitted_pairs.add((target, source))
          emit(relation, f"At each entry to the loop on line {site.line}, "
                         f"{relation.text.replace(' == ', ' equals ', 1)}")
          break
    if relation is not None:
      continue
    for counter in counters:
      if target in ints:
        relation = fit_sequence(target, counter, snapshots)
        if relation is not None:
          name = SEQUENCES[relation.kind][2]
          emit(relation, f"At each entry to the loop on line {site.line}, {target} equals the "
                         f"{name} for {offset_text(counter, relation.offset)}")
          break
      relation = fit_prefix(target, counter, arrays, snapshots)
      if relation is not None:
        emit(relation, f"{target} accumulates the {relation.aggregate} of the elements of "
                       f"{relation.array} visited before this iteration")
        break
  return found


def infer_loop_invariants(trace: ExecutionTrace, program: Program,
                          debug: bool = False) -> List[LoopInvariant]:
  """Loop invariants for every loop whose header was entered at least twice"""
  invariants: List[LoopInvariant] = []
  for line, site in sorted(collect_loop_sites(program).items()):
    runs = loop_runs(trace, site)
    found = _site_invariants(site, runs, program.language)
    if debug:
      logger.debug("loop at line %d: %d runs, %d invariants", line, len(runs), len(found))
    invariants.extend(found)
  return invariants


# ============================================================================
# RECURSION INVARIANT INFERENCE
# ============================================================================

def build_call_tree(trace: ExecutionTrace) -> Dict[int, Dict[str, Any]]:
  """Activation records keyed by frame id, rebuilt from call/branch/return steps"""
  frames: Dict[int, Dict[str, Any]] = {}
  for step in trace.steps:
    if step.event == "call":
      frames[step.callee_frame] = {
          'id': step.callee_frame,
          'function': step.callee,
          'parent': step.frame_id,
          'args': step.arguments or {},
          'children': [],
          'guards': [],
          'returned': False,
          'return': None,
      }
      if step.frame_id in frames:
        frames[step.frame_id]['children'].append(step.callee_frame)
    elif step.event == "branch" and step.frame_id in frames:
      frames[step.frame_id]['guards'].append((step.line, step.branch))
    elif step.event == "return" and step.frame_id in frames:
      record = frames[step.frame_id]
      record['returned'] = True
      record['return'] = step.variables.get('return')
  return frames


def _self_depth(record, frames) -> int:
  depth = 1
  while record['parent'] in frames and frames[record['parent']]['function'] == record['function']:
    record = frames[record['parent']]
    depth += 1
  return depth


def guard_text(line: int, taken: bool, program: Program) -> str:
  text = program.conditions.get(line) or program.line_text(line)
  if taken:
    return text
  if program.language == "python":
    return f"not ({text})"
  return f"!({text})"


def _recursive_relations(params):
  """Candidate general relations as (text, check(return, subcall returns, arguments))"""
  candidates = [
      ("return = subcall.return", lambda r, subs, c: len(subs) == 1 and r == subs[0]),
  ]
  for param in params:
    candidates.append((f"return = {param} * subcall.return",
                       lambda r, subs, c, p=param: len(subs) == 1 and r == c[p] * subs[0]))
    candidates.append((f"return = {param} + subcall.return",
                       lambda r, subs, c, p=param: len(subs) == 1 and r == c[p] + subs[0]))
  candidates.append(("return = sum(subcall.return)",
                     lambda r, subs, c: len(subs) > 1 and r == sum(subs)))
  for param in params:
    candidates.append((f"return = {param} + sum(subcall.return)",
                       lambda r, subs, c, p=param: len(subs) > 1 and r == c[p] + sum(subs)))
  return candidates


def _fit_constant(records, frames, single: bool) -> Optional[Tuple[int, Any]]:
  """Fit c in `return = combine(c, subcalls)` from the first record, verify on all"""
  if len(records) < 2:
    return None
  r0 = records[0]
  subs0 = [frames[child]['return'] for child in r0['self_children']]
  if single != (len(subs0) == 1) or not all(is_int(v) for v in subs0 + [r0['return']]):
    return None
  for fit in ('add', 'mul'):
    if fit == 'add':
      c = r0['return'] - (subs0[0] if single else sum(subs0))
    else:
      if subs0[0] == 0 or not single:
        continue
      c = Fraction(r0['return'], subs0[0])
      if c.denominator != 1:
        continue
      c = int(c)
    if all(_combine(fit, c, rec['return'], [frames[ch]['return'] for ch in rec['self_children']])
           for rec in records):
      return fit, c
  return None


def _combine(fit, c, r, subs):
  if not all(is_int(s) for s in subs) or not subs:
    return False
  if fit == 'add':
    return r == c + (subs[0] if len(subs) == 1 else sum(subs))
  return len(subs) == 1 and r == c * subs[0]


def general_relation(records, frames) -> Optional[str]:
  if not records:
    return None
  values_ok = all(is_number(rec['return']) and
                  all(is_number(frames[ch]['return']) for ch in rec['self_children'])
                  for rec in records)
  if not values_ok:
    if all(len(rec['self_children']) == 1 and
           rec['return'] == frames[rec['self_children'][0]]['return'] for rec in records):
      return "return = subcall.return"
    return None

  params = [name for name, value in records[0]['args'].items()
            if is_number(value) and all(is_number(rec['args'].get(name)) for rec in records)]
  for text, check in _recursive_relations(params):
    if all(check(rec['return'], [frames[ch]['return'] for ch in rec['self_children']], rec['args'])
           for rec in records):
      return text

  single = all(len(rec['self_children']) == 1 for rec in records)
  many = all(len(rec['self_children']) > 1 for rec in records)
  if single or many:
    fitted = _fit_constant(records, frames, single)
    if fitted is not None:
      fit, c = fitted
      inner = "subcall.return" if single else "sum(subcall.return)"
      if fit == 'add':
        sign = '+' if c >= 0 else '-'
        return f"return = {inner} {sign} {abs(c)}"
      return f"return = {c} * {inner}"
  return None


def infer_recursion_invariants(trace: ExecutionTrace, program: Program,
                               debug: bool = False) -> List[RecursionInvariant]:
  """One invariant per function that called itself during the run"""
  frames = build_call_tree(trace)
  for record in frames.values():
    record['self_children'] = [child for child in record['children']
                               if frames[child]['function'] == record['function']
                               and frames[child]['returned']]
    record['self_depth'] = _self_depth(record, frames)

  order: List[str] = []
  for record in frames.values():
    if record['self_children'] and record['function'] not in order:
      order.append(record['function'])

  invariants = []
  for function in order:
    records = [r for r in frames.values() if r['function'] == function and r['returned']]
    recursive = [r for r in records if r['self_children']]
    leaves = [r for r in records if not r['self_children']]
    if not leaves:
      continue
    deepest = max(leaves, key=lambda r: r['self_depth'])
    base_condition = guard_text(*deepest['guards'][-1], program) if deepest['guards'] else None
    relation = general_relation(recursive, frames)
    max_depth = max(r['self_depth'] for r in records)
    branching = max(len(r['self_children']) for r in recursive)

    explanation = (f"{function} reached a nesting depth of {max_depth} across {len(records)} "
                   f"calls, with up to {branching} recursive "
                   f"{'call' if branching == 1 else 'calls'} per activation. ")
    if base_condition:
      explanation += (f"The deepest call stopped at the base case {base_condition} and "
                      f"returned {deepest['return']!r}")
    else:
      explanation += f"The deepest call returned {deepest['return']!r} without evaluating a guard"
    if relation:
      explanation += f"; every other call satisfied {relation}."
    else:
      explanation += "."

    if debug:
      logger.debug("recursion in %s: base %s, relation %s", function, base_condition, relation)
    invariants.append(RecursionInvariant(
        function=function,
        base_condition=base_condition,
        base_value=deepest['return'],
        relation=relation,
        calls=len(records),
        max_depth=max_depth,
        explanation=explanation,
    ))
  return invariants
