"""
Semantix Tracer
Executes a resolved Program one statement at a time and records a TraceStep
for every executed statement.

Statements and expressions are evaluated by generators. A call to a user
function is yielded to the driver loop as a CallRequest; the driver keeps
an explicit stack of running function generators, so recursion in the
analysed program never recurses in the host interpreter.
"""

from typing import Any, Dict, Generator, List, Optional, Tuple, NamedTuple
from dataclasses import dataclass
import logging
import time

from parsing import ASTNode
from semantics import Program, parse
from error_handling import (
  SemantixRuntimeError,
  ResourceExceededError,
  STEPS,
  CALL_DEPTH,
  WALL_CLOCK,
)
from utilities import (
  unwrap_value,
  is_value_dict,
  unbound_error,
  arity_error,
  type_mismatch_error,
  operation_error,
)
from stdlib import (
  make_value,
  make_null,
  make_array,
  from_python,
  default_for_type,
  coerce_to_declared,
  truthy,
  format_value,
  compare,
  apply_binary,
  apply_unary,
  get_index,
  set_index,
  get_slice,
  contains,
  same_object,
  cast_value,
  get_builtin_function,
  call_method,
  get_attribute,
  new_array,
  new_object,
  format_output,
  element_ceiling,
  check_elements,
)

logger = logging.getLogger(__name__)

CONTAINER_TYPES = ("vector", "ArrayList", "LinkedList", "List", "ArrayDeque", "Array")


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class Limits:
  """Hard ceilings that guarantee every analysis terminates"""
  max_steps: int = 100000
  max_call_depth: int = 1000
  wall_clock_ms: int = 5000

  def __post_init__(self):
    for name in ('max_steps', 'max_call_depth', 'wall_clock_ms'):
      value = getattr(self, name)
      if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")

  @classmethod
  def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Limits':
    """Build limits from request keys (maxSteps, maxCallDepth, wallClockMs)"""
    if not data:
      return cls()
    aliases = {
        'maxSteps': 'max_steps', 'max_steps': 'max_steps',
        'maxCallDepth': 'max_call_depth', 'max_call_depth': 'max_call_depth',
        'wallClockMs': 'wall_clock_ms', 'wall_clock_ms': 'wall_clock_ms',
    }
    unknown = sorted(set(data) - set(aliases))
    if unknown:
      raise ValueError(f"Unknown limit(s): {', '.join(unknown)}")
    return cls(**{aliases[key]: value for key, value in data.items() if value is not None})

  def to_dict(self) -> Dict[str, int]:
    return {'maxSteps': self.max_steps, 'maxCallDepth': self.max_call_depth,
            'wallClockMs': self.wall_clock_ms}


# ============================================================================
# TRACE DATA
# ============================================================================

@dataclass(frozen=True)
class TraceStep:
  """
  State of the active frame right after one statement executed

  ``event`` is ``line`` for plain statements, ``branch`` for an evaluated
  if/elif condition, ``loop`` for a loop header at iteration entry, ``call``
  at a call site just before the callee's frame is pushed and ``return`` at
  the statement that leaves a function (its variables include ``return``).
  """
  line: int
  variables: Dict[str, Any]
  call_stack: Tuple[str, ...]
  frame_ids: Tuple[int, ...]
  event: str = "line"
  output: Optional[str] = None
  branch: Optional[bool] = None
  callee: Optional[str] = None
  callee_frame: Optional[int] = None
  arguments: Optional[Dict[str, Any]] = None
  return_value: Any = None

  @property
  def frame_id(self) -> int:
    return self.frame_ids[-1]

  @property
  def depth(self) -> int:
    return len(self.call_stack)

  def to_dict(self) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'line': self.line,
        'variables': self.variables,
        'callStack': list(self.call_stack),
        'event': self.event,
    }
    if self.output is not None:
      data['output'] = self.output
    if self.branch is not None:
      data['branch'] = self.branch
    if self.event == "call":
      data['callee'] = self.callee
      data['arguments'] = self.arguments
    return data


@dataclass(frozen=True)
class ExecutionTrace:
  """Ordered, immutable record of one complete run"""
  steps: Tuple[TraceStep, ...]
  output: str = ""
  max_depth: int = 1
  language: str = "python"

  def __len__(self) -> int:
    return len(self.steps)

  def __iter__(self):
    return iter(self.steps)

  def __getitem__(self, index):
    return self.steps[index]

  @property
  def output_lines(self) -> List[str]:
    return self.output.splitlines()

  def steps_at(self, line: int, event: Optional[str] = None) -> List[TraceStep]:
    return [step for step in self.steps
            if step.line == line and (event is None or step.event == event)]

  def to_list(self) -> List[Dict[str, Any]]:
    return [step.to_dict() for step in self.steps]


class CallRequest(NamedTuple):
  """Yielded by an expression that calls a user function"""
  name: str
  args: List[Dict]
  kwargs: Dict[str, Dict]
  line: int


class Return(NamedTuple):
  value: Dict
  line: int


BREAK = "break"
CONTINUE = "continue"


# ============================================================================
# EXECUTION CONTEXT
# ============================================================================

def make_frame(function: Optional[str], label: str, frame_id: int) -> Dict:
  """Activation record; `types` remembers declared types for implicit conversions"""
  return {
      'function': function,
      'label': label,
      'id': frame_id,
      'env': {},
      'types': {},
  }


def make_trace_context(program: Program, limits: Limits, debug: bool = False) -> Dict:
  return {
      'program': program,
      'language': program.language,
      'limits': limits,
      'debug': debug,
      'steps': [],
      'output': [],
      'frames': [],
      'labels': (),
      'frame_ids': (),
      'next_frame_id': 0,
      'max_depth': 0,
      'line': 1,
      'deadline': time.monotonic() + limits.wall_clock_ms / 1000.0,
  }


def push_frame(ctx: Dict, frame: Dict) -> None:
  ctx['frames'].append(frame)
  ctx['labels'] = ctx['labels'] + (frame['label'],)
  ctx['frame_ids'] = ctx['frame_ids'] + (frame['id'],)
  ctx['max_depth'] = max(ctx['max_depth'], len(ctx['frames']))


def pop_frame(ctx: Dict) -> Dict:
  frame = ctx['frames'].pop()
  ctx['labels'] = ctx['labels'][:-1]
  ctx['frame_ids'] = ctx['frame_ids'][:-1]
  return frame


def new_frame_id(ctx: Dict) -> int:
  frame_id = ctx['next_frame_id']
  ctx['next_frame_id'] += 1
  return frame_id


def snapshot(frame: Dict) -> Dict[str, Any]:
  """Plain-data copy of the visible bindings; dunder names stay hidden"""
  return {name: unwrap_value(value) for name, value in frame['env'].items()
          if not name.startswith('__')}


def check_clock(ctx: Dict) -> None:
  if time.monotonic() > ctx['deadline']:
    raise ResourceExceededError(WALL_CLOCK, ctx['limits'].wall_clock_ms, ctx['line'])


def record_step(ctx: Dict, line: int, event: str = "line", **details: Any) -> None:
  """Append one TraceStep for the active frame, enforcing the step budget"""
  limits = ctx['limits']
  if len(ctx['steps']) >= limits.max_steps:
    raise ResourceExceededError(STEPS, limits.max_steps, line)
  check_clock(ctx)
  variables = snapshot(ctx['frames'][-1])
  if event == "return":
    variables['return'] = details['return_value']
  ctx['steps'].append(TraceStep(
      line=line,
      variables=variables,
      call_stack=ctx['labels'],
      frame_ids=ctx['frame_ids'],
      event=event,
      **details
  ))


def call_label(name: str, args: List[Dict], language: str) -> str:
  """`factorial(5)`; long argument lists are abbreviated"""
  rendered = ", ".join(format_value(arg, language, nested=True) for arg in args)
  if len(rendered) > 40:
    rendered = rendered[:37] + "..."
  return f"{name}({rendered})"


# ============================================================================
# VARIABLES
# ============================================================================

def lookup(name: str, ctx: Dict) -> Dict:
  """Lookups see only the active frame"""
  env = ctx['frames'][-1]['env']
  if name not in env:
    raise unbound_error(name)
  return env[name]


def bind(name: str, value: Dict, ctx: Dict) -> None:
  frame = ctx['frames'][-1]
  declared = frame['types'].get(name)
  if declared is not None:
    value = coerce_to_declared(value, declared)
  frame['env'][name] = value


def declare(name: str, var_type: Optional[str], value: Dict, ctx: Dict) -> None:
  frame = ctx['frames'][-1]
  if var_type and var_type not in ("let", "auto"):
    frame['types'][name] = var_type
    value = coerce_to_declared(value, var_type)
  frame['env'][name] = value


# ============================================================================
# EXPRESSIONS
# ============================================================================

def evaluate(node: ASTNode, ctx: Dict) -> Generator[CallRequest, Dict, Dict]:
  """Evaluate an expression; yields a CallRequest for every user call"""
  node_type = node.type
  language = ctx['language']

  if node_type in ("NUMBER", "CONST"):
    return from_python(node['value'])
  elif node_type == "STRING":
    return make_value(node['value'], "String")
  elif node_type == "NAME":
    return lookup(node['name'], ctx)
  elif node_type == "BINARY":
    left = yield from evaluate(node['left'], ctx)
    right = yield from evaluate(node['right'], ctx)
    return apply_binary(node['op'], left, right, language)
  elif node_type == "UNARY":
    operand = yield from evaluate(node['operand'], ctx)
    return apply_unary(node['op'], operand, language)
  elif node_type == "COMPARE":
    return (yield from eval_compare(node, ctx))
  elif node_type == "LOGICAL":
    return (yield from eval_logical(node, ctx))
  elif node_type == "INDEX":
    target = yield from evaluate(node['target'], ctx)
    index = yield from evaluate(node['index'], ctx)
    return get_index(target, index, language)
  elif node_type == "SLICE":
    target = yield from evaluate(node['target'], ctx)
    bounds = []
    for key in ('lower', 'upper', 'step'):
      bound = node[key]
      bounds.append(make_null() if bound is None else (yield from evaluate(bound, ctx)))
    return get_slice(target, *bounds)
  elif node_type == "ATTRIBUTE":
    target = yield from evaluate(node['target'], ctx)
    return get_attribute(target, node['name'], language)
  elif node_type == "ARRAY":
    items = yield from eval_all(node['items'], ctx)
    return make_array(items)
  elif node_type == "CALL_USER":
    args = yield from eval_all(node['args'], ctx)
    kwargs = {}
    for key, value_node in node['kwargs']:
      kwargs[key] = yield from evaluate(value_node, ctx)
    return (yield CallRequest(node['name'], args, kwargs, ctx['line']))
  elif node_type == "CALL_BUILTIN":
    args = yield from eval_all(node['args'], ctx)
    builtin = get_builtin_function(node['name'], language)
    return builtin['func'](args, language)
  elif node_type == "CALL_METHOD":
    target = yield from evaluate(node['target'], ctx)
    args = yield from eval_all(node['args'], ctx)
    return call_method(target, node['method'], args, language)
  elif node_type == "CALL_UNKNOWN":
    raise unbound_error(node['name'])
  elif node_type == "FSTRING":
    return (yield from eval_fstring(node, ctx))
  elif node_type == "COMPREHENSION":
    return (yield from eval_comprehension(node, ctx))
  elif node_type == "NEW_ARRAY":
    sizes = yield from eval_all(node['sizes'], ctx)
    return allocate_array(node['element_type'], sizes)
  elif node_type == "NEW_OBJECT":
    args = yield from eval_all(node['args'], ctx)
    return new_object(node['type_name'], args, language)
  elif node_type == "CAST":
    operand = yield from evaluate(node['operand'], ctx)
    return cast_value(node['type_name'], operand)

  raise operation_error(f"evaluate {node_type.lower()}", "expression")


def eval_all(nodes, ctx: Dict) -> Generator[CallRequest, Dict, List[Dict]]:
  values = []
  for node in nodes:
    values.append((yield from evaluate(node, ctx)))
  return values


def run_to_value(node: ASTNode, ctx: Dict) -> Dict:
  """Evaluate an expression that cannot contain user calls"""
  gen = evaluate(node, ctx)
  try:
    gen.send(None)
  except StopIteration as done:
    return done.value
  gen.close()
  raise operation_error("call a function in", "a default value")


def eval_compare(node: ASTNode, ctx: Dict):
  """Chained comparison: `a < b <= c` stops at the first false link"""
  left = yield from evaluate(node['operands'][0], ctx)
  for op, right_node in zip(node['ops'], node['operands'][1:]):
    right = yield from evaluate(right_node, ctx)
    if op == 'in':
      result = contains(right, left)
    elif op == 'not in':
      result = not contains(right, left)
    elif op == 'is':
      result = same_object(left, right)
    elif op == 'is not':
      result = not same_object(left, right)
    else:
      result = compare(op, left, right)['value']
    if not result:
      return make_value(False, "Bool")
    left = right
  return make_value(True, "Bool")


def eval_logical(node: ASTNode, ctx: Dict):
  """Short-circuit and/or; python and javascript yield the deciding operand"""
  language = ctx['language']
  result = None
  for operand in node['operands']:
    result = yield from evaluate(operand, ctx)
    decided = truthy(result, language)
    if decided != (node['op'] == 'and'):
      break
  if language in ("python", "javascript"):
    return result
  return make_value(truthy(result, language), "Bool")


def eval_fstring(node: ASTNode, ctx: Dict):
  language = ctx['language']
  pieces = []
  for part in node['parts']:
    if isinstance(part, str):
      pieces.append(part)
      continue
    expr, spec = part
    value = yield from evaluate(expr, ctx)
    if spec:
      try:
        pieces.append(format(unwrap_value(value), spec))
      except (ValueError, TypeError):
        raise type_mismatch_error("format", f"spec '{spec}'", "a compatible value", value)
    else:
      pieces.append(format_value(value, language))
  return make_value("".join(pieces), "String")


def iterate_values(iterable: Dict):
  """Items of an array (live, so appends during iteration are seen) or a string"""
  if iterable['type'] == "String":
    for ch in iterable['value']:
      yield make_value(ch, "String")
  elif iterable['type'] == "Array":
    items = iterable['value']
    position = 0
    while position < len(items):
      yield items[position]
      position += 1
  else:
    raise operation_error("iterate over", iterable['type'])


def bind_targets(targets: Tuple[str, ...], item: Dict, ctx: Dict) -> None:
  if len(targets) == 1:
    bind(targets[0], item, ctx)
    return
  if item['type'] != "Array" or len(item['value']) != len(targets):
    raise operation_error(f"unpack into {len(targets)} names", item['type'])
  for name, value in zip(targets, item['value']):
    bind(name, value, ctx)


def eval_comprehension(node: ASTNode, ctx: Dict):
  """List comprehension; the loop names are restored afterwards"""
  env = ctx['frames'][-1]['env']
  saved = {name: env[name] for name in node['targets'] if name in env}
  iterable = yield from evaluate(node['iterable'], ctx)
  results = []
  try:
    for item in iterate_values(iterable):
      check_clock(ctx)
      bind_targets(node['targets'], item, ctx)
      if node['cond'] is not None:
        keep = yield from evaluate(node['cond'], ctx)
        if not truthy(keep, ctx['language']):
          continue
      results.append((yield from evaluate(node['element'], ctx)))
  finally:
    for name in node['targets']:
      env.pop(name, None)
    env.update(saved)
  return make_array(results)


def allocate_array(element_type: str, sizes: List[Dict]) -> Dict:
  """`new int[n][m]`: independent rows of zero values"""
  total = 1
  for size in sizes:
    if size['type'] == "Int":
      total *= max(size['value'], 0)
  check_elements(total)
  if len(sizes) == 1:
    return new_array(element_type, sizes[0])
  rows = new_array("", sizes[0])
  return make_array([allocate_array(element_type, sizes[1:]) for _ in rows['value']])


# ============================================================================
# ASSIGNMENT
# ============================================================================

def assign(target: ASTNode, value: Dict, ctx: Dict):
  if target.type == "NAME":
    bind(target['name'], value, ctx)
    return
  container = yield from evaluate(target['target'], ctx)
  index = yield from evaluate(target['index'], ctx)
  set_index(container, index, value, ctx['language'])


def exec_assign(node: ASTNode, ctx: Dict):
  values = yield from eval_all(node['values'], ctx)
  value = values[0] if len(values) == 1 else make_array(values)
  for group in node['targets']:
    if len(group) == 1:
      yield from assign(group[0], value, ctx)
      continue
    if value['type'] != "Array" or len(value['value']) != len(group):
      raise operation_error(f"unpack into {len(group)} targets", value['type'])
    for target, item in zip(group, list(value['value'])):
      yield from assign(target, item, ctx)


def exec_aug_assign(node: ASTNode, ctx: Dict):
  language = ctx['language']
  target = node['target']
  if target.type == "NAME":
    current = lookup(target['name'], ctx)
  else:
    container = yield from evaluate(target['target'], ctx)
    index = yield from evaluate(target['index'], ctx)
    current = get_index(container, index, language)
  operand = yield from evaluate(node['value'], ctx)

  if node['op'] == '+' and language == "python" and current['type'] == "Array" == operand['type']:
    current['value'].extend(operand['value'])
    result = current
  else:
    result = apply_binary(node['op'], current, operand, language)

  if target.type == "NAME":
    bind(target['name'], result, ctx)
  else:
    set_index(container, index, result, language)


def exec_declare(node: ASTNode, ctx: Dict):
  var_type = node['var_type']
  language = ctx['language']
  base = var_type.split("<")[0]
  for declarator in node['declarators']:
    dims = declarator['dims']
    if declarator['init'] is not None:
      value = yield from evaluate(declarator['init'], ctx)
      sizes = [d for d in dims if d is not None]
      if sizes and value['type'] == "Array":
        size = yield from evaluate(sizes[0], ctx)
        padding = max(size['value'] - len(value['value']), 0) if size['type'] == "Int" else 0
        value['value'].extend(default_for_type(var_type) for _ in range(padding))
    elif dims and all(d is not None for d in dims):
      sizes = yield from eval_all(dims, ctx)
      value = allocate_array(var_type, sizes)
    elif dims:
      value = make_array([])
    elif declarator['ctor_args'] is not None:
      args = yield from eval_all(declarator['ctor_args'], ctx)
      if base in CONTAINER_TYPES:
        value = new_object(var_type, args, language)
      elif len(args) == 1:
        value = args[0]
      else:
        raise arity_error(f"initializer of '{declarator['name']}'", 1, len(args))
    else:
      value = default_for_type(var_type)
    declare(declarator['name'], None if dims else var_type, value, ctx)


# ============================================================================
# STATEMENTS
# ============================================================================

def execute_simple(node: ASTNode, ctx: Dict):
  """Effect of a simple statement, without recording a step"""
  node_type = node.type
  if node_type == "ASSIGN":
    yield from exec_assign(node, ctx)
  elif node_type == "AUG_ASSIGN":
    yield from exec_aug_assign(node, ctx)
  elif node_type == "DECLARE":
    yield from exec_declare(node, ctx)
  elif node_type == "EXPR":
    yield from evaluate(node['expr'], ctx)
  elif node_type == "PASS":
    pass
  else:
    raise operation_error(f"execute {node_type.lower()} as", "a simple statement")


def exec_print(node: ASTNode, ctx: Dict):
  args = yield from eval_all(node['args'], ctx)
  text = format_output(args, ctx['language'], node['sep']) + node['end']
  ctx['output'].append(text)
  shown = text[:-1] if text.endswith("\n") else text
  record_step(ctx, node.line, output=shown)


def exec_block(body, ctx: Dict):
  """Run statements in order; returns BREAK, CONTINUE, a Return or None"""
  for stmt in body:
    signal = yield from exec_statement(stmt, ctx)
    if signal is not None:
      return signal
  return None


def exec_statement(node: ASTNode, ctx: Dict):
  ctx['line'] = node.line
  node_type = node.type

  if node_type == "IF":
    return (yield from exec_if(node, ctx))
  elif node_type == "WHILE":
    return (yield from exec_while(node, ctx))
  elif node_type == "FOR":
    return (yield from exec_for(node, ctx))
  elif node_type == "FOR_EACH":
    return (yield from exec_for_each(node, ctx))
  elif node_type == "RETURN":
    value = make_null() if node['value'] is None else (yield from evaluate(node['value'], ctx))
    return Return(value, node.line)
  elif node_type in ("BREAK", "CONTINUE"):
    record_step(ctx, node.line)
    return BREAK if node_type == "BREAK" else CONTINUE
  elif node_type == "PRINT":
    yield from exec_print(node, ctx)
    return None

  yield from execute_simple(node, ctx)
  record_step(ctx, node.line)
  return None


def exec_if(node: ASTNode, ctx: Dict):
  for branch in node['branches']:
    ctx['line'] = branch['line']
    cond = yield from evaluate(branch['cond'], ctx)
    taken = truthy(cond, ctx['language'])
    record_step(ctx, branch['line'], event="branch", branch=taken)
    if taken:
      return (yield from exec_block(branch['body'], ctx))
  if node['orelse'] is not None:
    return (yield from exec_block(node['orelse'], ctx))
  return None


def _loop_signal(signal):
  """Map a body signal to (stop loop, value to propagate)"""
  if signal == BREAK:
    return True, None
  if isinstance(signal, Return):
    return True, signal
  return False, None


def exec_while(node: ASTNode, ctx: Dict):
  language = ctx['language']
  while True:
    ctx['line'] = node.line
    cond = yield from evaluate(node['cond'], ctx)
    if not truthy(cond, language):
      return None
    record_step(ctx, node.line, event="loop")
    stop, result = _loop_signal((yield from exec_block(node['body'], ctx)))
    if stop:
      return result


def exec_for(node: ASTNode, ctx: Dict):
  """C-style for: init and update run as part of the header line"""
  language = ctx['language']
  for init in node['init']:
    yield from execute_simple(init, ctx)
  while True:
    ctx['line'] = node.line
    if node['cond'] is not None:
      cond = yield from evaluate(node['cond'], ctx)
      if not truthy(cond, language):
        return None
    record_step(ctx, node.line, event="loop")
    stop, result = _loop_signal((yield from exec_block(node['body'], ctx)))
    if stop:
      return result
    ctx['line'] = node.line
    for update in node['update']:
      yield from execute_simple(update, ctx)


def range_values(args: List[Dict]):
  """`range(...)` in a for header is iterated without building the list"""
  if not 1 <= len(args) <= 3:
    raise arity_error("range", "1 to 3", len(args))
  for arg in args:
    if arg['type'] != "Int":
      raise type_mismatch_error("range", "each bound", "Int", arg)
  bounds = [arg['value'] for arg in args]
  if len(bounds) == 3 and bounds[2] == 0:
    raise operation_error("range with step", "zero")
  for i in range(*bounds):
    yield make_value(i, "Int")


def exec_for_each(node: ASTNode, ctx: Dict):
  iterable_node = node['iterable']
  if iterable_node.type == "CALL_BUILTIN" and iterable_node['name'] == "range":
    items = range_values((yield from eval_all(iterable_node['args'], ctx)))
  else:
    items = iterate_values((yield from evaluate(iterable_node, ctx)))
  for item in items:
    ctx['line'] = node.line
    bind_targets(node['targets'], item, ctx)
    record_step(ctx, node.line, event="loop")
    stop, result = _loop_signal((yield from exec_block(node['body'], ctx)))
    if stop:
      return result
  return None


# ============================================================================
# FUNCTIONS AND THE DRIVER
# ============================================================================

def bind_arguments(function: ASTNode, request: CallRequest, frame: Dict, ctx: Dict) -> None:
  """Bind parameters in the new frame; defaults are evaluated at call time"""
  params = function['params']
  name = function['name']
  if len(request.args) > len(params):
    raise arity_error(name, len(params), len(request.args))
  values: Dict[str, Dict] = {}
  for i, (param, type_name, default) in enumerate(params):
    if i < len(request.args):
      if param in request.kwargs:
        raise arity_error(f"{name}() with '{param}' given twice", len(params), len(request.args) + 1)
      value = request.args[i]
    elif param in request.kwargs:
      value = request.kwargs[param]
    elif default is not None:
      value = run_to_value(default, ctx)
    else:
      raise arity_error(name, len(params), len(request.args) + len(request.kwargs))
    if type_name:
      frame['types'][param] = type_name
      value = coerce_to_declared(value, type_name)
    values[param] = value
  frame['env'].update(values)


def enter_function(request: CallRequest, ctx: Dict):
  """Record the call step, push the callee's frame and return its generator"""
  limits = ctx['limits']
  if len(ctx['frames']) - 1 >= limits.max_call_depth:
    raise ResourceExceededError(CALL_DEPTH, limits.max_call_depth, request.line)
  function = ctx['program'].functions[request.name]
  frame = make_frame(request.name, call_label(request.name, request.args, ctx['language']),
                     new_frame_id(ctx))
  bind_arguments(function, request, frame, ctx)
  record_step(ctx, request.line, event="call", callee=request.name, callee_frame=frame['id'],
              arguments=snapshot(frame))
  push_frame(ctx, frame)
  if ctx['debug']:
    logger.debug("call %s at line %d (depth %d)", frame['label'], request.line, len(ctx['frames']) - 1)
  return run_function(function, ctx)


def run_function(function: ASTNode, ctx: Dict):
  """Body of one activation; falling off the end returns Null at the header line"""
  signal = yield from exec_block(function['body'], ctx)
  if isinstance(signal, Return):
    value, line = signal.value, signal.line
  else:
    value, line = make_null(), function.line
  ctx['line'] = line
  record_step(ctx, line, event="return", return_value=unwrap_value(value))
  if ctx['debug']:
    logger.debug("return from %s at line %d", ctx['frames'][-1]['label'], line)
  return value


def run_program(program: Program, ctx: Dict):
  """Top-level statements, then the body of `main` for java and cpp"""
  signal = yield from exec_block(program.body, ctx)
  if program.entry is not None and signal is None:
    signal = yield from exec_block(program.entry['body'], ctx)
  if isinstance(signal, Return):
    ctx['line'] = signal.line
    record_step(ctx, signal.line)
  return None


def drive(ctx: Dict, root) -> None:
  """Run generators until the root finishes; user calls push new generators"""
  stack = [root]
  sent: Optional[Dict] = None
  resume_lines: List[int] = []
  while stack:
    try:
      request = stack[-1].send(sent)
    except StopIteration as done:
      stack.pop()
      sent = done.value
      if stack:
        pop_frame(ctx)
        ctx['line'] = resume_lines.pop()
      continue
    except (SemantixRuntimeError, ResourceExceededError) as exc:
      raise exc.at_line(ctx['line'])
    sent = None
    try:
      stack.append(enter_function(request, ctx))
    except (SemantixRuntimeError, ResourceExceededError) as exc:
      raise exc.at_line(request.line)
    resume_lines.append(request.line)


def trace_program(program: Program, input_bindings: Optional[Dict[str, Any]] = None,
                  limits: Optional[Limits] = None, debug: bool = False) -> ExecutionTrace:
  """
  Execute a program and return its complete trace

  Raises SemantixRuntimeError or ResourceExceededError; a partial trace is
  never returned.
  """
  limits = limits or Limits()
  ctx = make_trace_context(program, limits, debug)
  global_frame = make_frame(None, "main", new_frame_id(ctx))
  if program.language == "python":
    global_frame['env']['__name__'] = make_value("__main__", "String")
  for name, value in (input_bindings or {}).items():
    global_frame['env'][name] = value if is_value_dict(value) else from_python(value)
  push_frame(ctx, global_frame)

  started = time.monotonic()
  with element_ceiling(limits.max_steps):
    drive(ctx, run_program(program, ctx))
  if debug:
    logger.debug("Traced %d steps in %.1f ms (max depth %d)", len(ctx['steps']),
                 (time.monotonic() - started) * 1000, ctx['max_depth'])

  return ExecutionTrace(
      steps=tuple(ctx['steps']),
      output="".join(ctx['output']),
      max_depth=ctx['max_depth'],
      language=program.language,
  )


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================

def create_interpreter(debug: bool = False):
  """Factory function returning a tracer object"""
  def run_source(source, input_bindings=None, language="python", limits=None):
    return trace_program(parse(source, language, debug), input_bindings, limits, debug)

  return type('Interpreter', (), {
      'trace': lambda self, program, input_bindings=None, limits=None:
          trace_program(program, input_bindings, limits, debug),
      'run': lambda self, source, input_bindings=None, language="python", limits=None:
          run_source(source, input_bindings, language, limits),
      'debug': debug,
  })()
