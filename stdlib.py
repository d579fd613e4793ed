"""
Semantix Standard Library
Runtime value model, language-aware operators and built-in functions
Pure functional style using value dictionaries
"""

from typing import Dict, Callable, Any, List, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from functools import cmp_to_key
import math
import operator
import sys
from utilities import (
  binary_comparison_op,
  binary_arithmetic_op,
  validate_function_args,
  type_mismatch_error,
  operation_error,
  arity_error,
  index_error,
  division_error,
  dispatch_by_type,
  is_numeric,
  NUMERIC_TYPES,
)
from error_handling import ResourceExceededError, ALLOCATION, INTEGER_SIZE


LANGUAGES = ("python", "javascript", "java", "cpp")

# Per-language operator and formatting rules
LANGUAGE_RULES: Dict[str, Dict[str, Any]] = {
    "python": {
        'dialect': 'indent',
        'int_division': 'true',
        'modulo': 'floor',
        'string_concat': False,
        'negative_index': True,
        'true': 'True', 'false': 'False', 'null': 'None',
        'float_style': 'python',
    },
    "javascript": {
        'dialect': 'brace',
        'int_division': 'exact',
        'modulo': 'truncate',
        'string_concat': True,
        'negative_index': False,
        'true': 'true', 'false': 'false', 'null': 'null',
        'float_style': 'javascript',
    },
    "java": {
        'dialect': 'brace',
        'int_division': 'truncate',
        'modulo': 'truncate',
        'string_concat': True,
        'negative_index': False,
        'true': 'true', 'false': 'false', 'null': 'null',
        'float_style': 'python',
    },
    "cpp": {
        'dialect': 'brace',
        'int_division': 'truncate',
        'modulo': 'truncate',
        'string_concat': False,
        'negative_index': False,
        'true': '1', 'false': '0', 'null': 'nullptr',
        'float_style': 'cpp',
    },
}

INT_TYPE_NAMES = ("int", "long", "short", "size_t", "unsigned", "Integer", "Long")
FLOAT_TYPE_NAMES = ("float", "double", "Double", "Float")
BOOL_TYPE_NAMES = ("bool", "boolean", "Boolean")
STRING_TYPE_NAMES = ("string", "String", "char")


# ============================================================================
# WORK CEILINGS
# ============================================================================

# Largest exact integer any operator may produce; keeps every Int printable
MAX_INT_BITS = 8192

# Elements one operation may build; the tracer sets it from its step budget
_element_ceiling: ContextVar[int] = ContextVar('element_ceiling', default=100000)


@contextmanager
def element_ceiling(limit: int) -> Iterator[None]:
  """Bound the size of every collection built while the block runs"""
  token = _element_ceiling.set(limit)
  try:
    yield
  finally:
    _element_ceiling.reset(token)


def check_elements(count: int) -> None:
  limit = _element_ceiling.get()
  if count > limit:
    raise ResourceExceededError(ALLOCATION, limit)


def check_int_bits(bits: int) -> None:
  if bits > MAX_INT_BITS:
    raise ResourceExceededError(INTEGER_SIZE, MAX_INT_BITS)


# ============================================================================
# VALUE CONSTRUCTORS
# ============================================================================

def make_value(value: Any, type_name: str = "Null") -> Dict:
  """Create a runtime value"""
  return {
      'value': value,
      'type': type_name
  }


def make_null() -> Dict:
  return make_value(None, "Null")


def make_array(items: List[Dict]) -> Dict:
  """Arrays hold a mutable list; every holder of the value shares it"""
  return make_value(list(items), "Array")


def copy_value(value: Dict) -> Dict:
  """Independent copy of a value; nested arrays are copied too"""
  if value['type'] == "Array":
    return make_array([copy_value(item) for item in value['value']])
  return value


def from_python(obj: Any) -> Dict:
  """Wrap plain Python data (literals, input bindings) as a runtime value"""
  if isinstance(obj, bool):
    return make_value(obj, "Bool")
  if isinstance(obj, int):
    return make_value(obj, "Int")
  if isinstance(obj, float):
    return make_value(obj, "Float")
  if isinstance(obj, str):
    return make_value(obj, "String")
  if isinstance(obj, (list, tuple)):
    return make_array([from_python(item) for item in obj])
  if obj is None:
    return make_null()
  raise TypeError(f"Cannot convert {type(obj).__name__} to a runtime value")


def base_type(type_name: str) -> str:
  """`unsigned long long` -> `long`, `std::string` -> `string`"""
  words = type_name.replace("std::", "").split()
  return words[-1] if words else ""


def default_for_type(type_name: str) -> Dict:
  """Zero value for a typed declaration without initializer"""
  base = base_type(type_name)
  if base in INT_TYPE_NAMES:
    return make_value(0, "Int")
  if base in FLOAT_TYPE_NAMES:
    return make_value(0.0, "Float")
  if base in BOOL_TYPE_NAMES:
    return make_value(False, "Bool")
  if base in STRING_TYPE_NAMES:
    return make_value("", "String")
  if base.startswith("vector") or base.endswith("[]"):
    return make_array([])
  return make_null()


def coerce_to_declared(value: Dict, type_name: str) -> Dict:
  """Apply the implicit numeric conversion of a typed declaration"""
  base = base_type(type_name)
  if base in INT_TYPE_NAMES and value['type'] == "Float":
    return make_value(int(value['value']), "Int")
  if base in FLOAT_TYPE_NAMES and value['type'] == "Int":
    return make_value(float(value['value']), "Float")
  return value


def truthy(value: Dict, language: str = "python") -> bool:
  """Truthiness of a value used as a condition"""
  kind = value['type']
  if kind == "Bool":
    return value['value']
  if kind in NUMERIC_TYPES:
    return value['value'] != 0
  if kind == "String":
    return value['value'] != ""
  if kind == "Array":
    return bool(value['value']) if language == "python" else True
  return False


# ============================================================================
# FORMATTING
# ============================================================================

def format_float(number: float, language: str) -> str:
  style = LANGUAGE_RULES[language]['float_style']
  if math.isinf(number):
    if style == 'python':
      return "inf" if number > 0 else "-inf"
    return "Infinity" if number > 0 else "-Infinity"
  if style == 'javascript':
    return str(int(number)) if number.is_integer() and abs(number) < 1e21 else repr(number)
  if style == 'cpp':
    return f"{number:g}"
  return repr(number)


def format_value(value: Dict, language: str = "python", nested: bool = False) -> str:
  """Render a value the way the language's output statement would"""
  rules = LANGUAGE_RULES[language]

  def show_string(v):
    if nested:
      return repr(v['value']) if language == "python" else f'"{v["value"]}"'
    return v['value']

  return dispatch_by_type(value, {
      "Int": lambda v: str(v['value']),
      "Float": lambda v: format_float(v['value'], language),
      "Bool": lambda v: rules['true'] if v['value'] else rules['false'],
      "String": show_string,
      "Null": lambda v: rules['null'],
      "Array": lambda v: "[" + ", ".join(
          format_value(item, language, nested=True) for item in v['value']) + "]",
  })


def format_output(args: List[Dict], language: str = "python", sep: str = " ") -> str:
  """Text produced by one output statement, without its line ending"""
  return sep.join(format_value(arg, language) for arg in args)


# ============================================================================
# EQUALITY AND COMPARISON
# ============================================================================

def values_equal(x: Dict, y: Dict) -> bool:
  """Structural equality; Int and Float compare numerically"""
  if is_numeric(x) and is_numeric(y):
    return x['value'] == y['value']
  if x['type'] != y['type']:
    return False
  if x['type'] == "Array":
    return len(x['value']) == len(y['value']) and all(
        values_equal(a, b) for a, b in zip(x['value'], y['value']))
  return x['value'] == y['value']


COMPARISONS: Dict[str, Callable] = {
    '<': binary_comparison_op(operator.lt, "compare"),
    '<=': binary_comparison_op(operator.le, "compare"),
    '>': binary_comparison_op(operator.gt, "compare"),
    '>=': binary_comparison_op(operator.ge, "compare"),
}


def compare(op: str, x: Dict, y: Dict) -> Dict:
  if op == '==':
    return make_value(values_equal(x, y), "Bool")
  if op == '!=':
    return make_value(not values_equal(x, y), "Bool")
  return COMPARISONS[op](x, y, make_value)


# ============================================================================
# ARITHMETIC
# ============================================================================

_add = binary_arithmetic_op(operator.add, "add")
_sub = binary_arithmetic_op(operator.sub, "subtract")
_mul = binary_arithmetic_op(operator.mul, "multiply")


def _check_divisor(y: Dict, op_name: str) -> None:
  if is_numeric(y) and y['value'] == 0:
    raise division_error(op_name)


def _truncated_div(a: int, b: int) -> int:
  quotient = abs(a) // abs(b)
  return quotient if (a >= 0) == (b >= 0) else -quotient


def _truncated_mod(a: int, b: int) -> int:
  return a - b * _truncated_div(a, b)


def _int_bits(*values: Dict) -> List[int]:
  return [v['value'].bit_length() for v in values if v['type'] == "Int"]


def op_add(x: Dict, y: Dict, language: str) -> Dict:
  if is_numeric(x) and is_numeric(y):
    check_int_bits(max(_int_bits(x, y), default=0) + 1)
    return _add(x, y, make_value)
  if x['type'] == "String" and y['type'] == "String":
    check_elements(len(x['value']) + len(y['value']))
    return make_value(x['value'] + y['value'], "String")
  if x['type'] == "Array" and y['type'] == "Array" and language == "python":
    check_elements(len(x['value']) + len(y['value']))
    return make_array(x['value'] + y['value'])
  if LANGUAGE_RULES[language]['string_concat'] and "String" in (x['type'], y['type']):
    text = format_value(x, language) + format_value(y, language)
    check_elements(len(text))
    return make_value(text, "String")
  raise operation_error("add", x['type'], y['type'])


def op_sub(x: Dict, y: Dict, language: str) -> Dict:
  if is_numeric(x) and is_numeric(y):
    check_int_bits(max(_int_bits(x, y), default=0) + 1)
  return _sub(x, y, make_value)


def op_mul(x: Dict, y: Dict, language: str) -> Dict:
  if is_numeric(x) and is_numeric(y):
    check_int_bits(sum(_int_bits(x, y)))
    return _mul(x, y, make_value)
  if language == "python":
    seq, count = (x, y) if y['type'] == "Int" else (y, x)
    if count['type'] == "Int" and seq['type'] in ("String", "Array"):
      times = max(count['value'], 0)
      check_elements(len(seq['value']) * times)
      if seq['type'] == "String":
        return make_value(seq['value'] * times, "String")
      return make_array(seq['value'] * times)
  raise operation_error("multiply", x['type'], y['type'])


def op_div(x: Dict, y: Dict, language: str) -> Dict:
  if not (is_numeric(x) and is_numeric(y)):
    raise operation_error("divide", x['type'], y['type'])
  _check_divisor(y, "divide")
  rule = LANGUAGE_RULES[language]['int_division']
  if x['type'] == "Int" and y['type'] == "Int":
    if rule == 'truncate':
      return make_value(_truncated_div(x['value'], y['value']), "Int")
    if rule == 'exact' and x['value'] % y['value'] == 0:
      return make_value(x['value'] // y['value'], "Int")
    try:
      return make_value(x['value'] / y['value'], "Float")
    except OverflowError:
      return make_value(float('inf'), "Float")
  return make_value(float(x['value']) / float(y['value']), "Float")


def op_floordiv(x: Dict, y: Dict, language: str) -> Dict:
  if not (is_numeric(x) and is_numeric(y)):
    raise operation_error("divide", x['type'], y['type'])
  _check_divisor(y, "divide")
  if x['type'] == "Int" and y['type'] == "Int":
    return make_value(x['value'] // y['value'], "Int")
  return make_value(float(math.floor(x['value'] / y['value'])), "Float")


def op_mod(x: Dict, y: Dict, language: str) -> Dict:
  if not (is_numeric(x) and is_numeric(y)):
    raise operation_error("take modulo of", x['type'], y['type'])
  _check_divisor(y, "take modulo")
  floor_rule = LANGUAGE_RULES[language]['modulo'] == 'floor'
  if x['type'] == "Int" and y['type'] == "Int":
    result = x['value'] % y['value'] if floor_rule else _truncated_mod(x['value'], y['value'])
    return make_value(result, "Int")
  a, b = float(x['value']), float(y['value'])
  return make_value(a % b if floor_rule else math.fmod(a, b), "Float")


def op_pow(x: Dict, y: Dict, language: str) -> Dict:
  if not (is_numeric(x) and is_numeric(y)):
    raise operation_error("exponentiate", x['type'], y['type'])
  if x['type'] == "Int" and y['type'] == "Int" and y['value'] >= 0:
    if abs(x['value']) > 1:
      check_int_bits(y['value'] * x['value'].bit_length())
    return make_value(x['value'] ** y['value'], "Int")
  if x['value'] == 0 and y['value'] < 0:
    raise division_error("raise zero to a negative power, dividing")
  try:
    result = float(x['value']) ** float(y['value'])
  except OverflowError:
    result = float('inf')
  if isinstance(result, complex):
    raise operation_error("exponentiate", x['type'], y['type'])
  return make_value(result, "Float")


BINARY_OPERATORS: Dict[str, Callable[[Dict, Dict, str], Dict]] = {
    '+': op_add,
    '-': op_sub,
    '*': op_mul,
    '/': op_div,
    '//': op_floordiv,
    '%': op_mod,
    '**': op_pow,
}


def apply_binary(op: str, x: Dict, y: Dict, language: str = "python") -> Dict:
  """Apply an arithmetic or comparison operator under the language's rules"""
  if op in BINARY_OPERATORS:
    return BINARY_OPERATORS[op](x, y, language)
  return compare(op, x, y)


def apply_unary(op: str, x: Dict, language: str = "python") -> Dict:
  if op in ('not', '!'):
    return make_value(not truthy(x, language), "Bool")
  if not is_numeric(x):
    raise operation_error("negate" if op == '-' else "apply unary plus to", x['type'])
  if op == '-':
    return make_value(-x['value'], x['type'])
  return x


# ============================================================================
# INDEXING
# ============================================================================

def _resolve_index(container: Dict, index: Dict, language: str) -> int:
  if container['type'] not in ("Array", "String"):
    raise operation_error("index", container['type'])
  if index['type'] == "Float" and language == "javascript" and index['value'].is_integer():
    index = make_value(int(index['value']), "Int")
  if index['type'] != "Int":
    raise type_mismatch_error("indexing", "the index", "Int", index)
  position = index['value']
  length = len(container['value'])
  if position < 0 and LANGUAGE_RULES[language]['negative_index'] and position >= -length:
    position += length
  if not 0 <= position < length:
    raise index_error(index['value'], length)
  return position


def get_index(container: Dict, index: Dict, language: str = "python") -> Dict:
  position = _resolve_index(container, index, language)
  if container['type'] == "String":
    return make_value(container['value'][position], "String")
  return container['value'][position]


def set_index(container: Dict, index: Dict, value: Dict, language: str = "python") -> None:
  if container['type'] == "String":
    raise operation_error("assign into", "String")
  position = _resolve_index(container, index, language)
  container['value'][position] = value


def get_slice(container: Dict, lower: Dict, upper: Dict, step: Dict) -> Dict:
  """`a[lo:hi:step]` with Python's clamping rules; missing bounds are Null"""
  if container['type'] not in ("Array", "String"):
    raise operation_error("slice", container['type'])
  bounds = []
  for name, bound in (("lower bound", lower), ("upper bound", upper), ("step", step)):
    if bound['type'] == "Null":
      bounds.append(None)
    elif bound['type'] == "Int":
      bounds.append(bound['value'])
    else:
      raise type_mismatch_error("slicing", f"the {name}", "Int", bound)
  if bounds[2] == 0:
    raise operation_error("slice with step", "zero")
  items = container['value'][slice(*bounds)]
  if container['type'] == "String":
    return make_value(items, "String")
  return make_array(items)


def contains(container: Dict, item: Dict) -> bool:
  """Membership test behind `in`, `includes` and `contains`"""
  if container['type'] == "String":
    if item['type'] != "String":
      raise type_mismatch_error("'in'", "the left operand", "String", item)
    return item['value'] in container['value']
  if container['type'] != "Array":
    raise operation_error("test membership in", container['type'])
  return any(values_equal(element, item) for element in container['value'])


def same_object(x: Dict, y: Dict) -> bool:
  """`is`: arrays compare by identity, everything else by type and value"""
  if x['type'] == "Array" or y['type'] == "Array":
    return x is y
  return x['type'] == y['type'] and x['value'] == y['value']


def cast_value(type_name: str, value: Dict) -> Dict:
  """`(int) x`, `static_cast<double>(x)`"""
  base = base_type(type_name)
  if base == "char" and value['type'] == "Int":
    return make_value(chr(value['value']), "String")
  if base in INT_TYPE_NAMES or base == "char":
    if value['type'] in ("Int", "Float", "Bool"):
      if value['type'] == "Float" and not math.isfinite(value['value']):
        raise operation_error("convert non-finite Float to", "Int")
      return make_value(int(value['value']), "Int")
    if value['type'] == "String" and len(value['value']) == 1:
      return make_value(ord(value['value']), "Int")
  if base in FLOAT_TYPE_NAMES and value['type'] in ("Int", "Float", "Bool"):
    return make_value(float(value['value']), "Float")
  if base in BOOL_TYPE_NAMES:
    return make_value(truthy(value), "Bool")
  raise type_mismatch_error(f"cast to {type_name}", "the operand", "a number", value)


# ============================================================================
# BUILT-IN FUNCTIONS
# ============================================================================

def _length(args: List[Dict], language: str) -> Dict:
  validate_function_args("len", args, [("Array", "String")])
  return make_value(len(args[0]['value']), "Int")


def _abs(args: List[Dict], language: str) -> Dict:
  validate_function_args("abs", args, [NUMERIC_TYPES])
  return make_value(abs(args[0]['value']), args[0]['type'])


def _extreme(name: str, pick: Callable) -> Callable:
  def extreme(args: List[Dict], language: str) -> Dict:
    items = args
    if len(args) == 1 and args[0]['type'] == "Array":
      items = args[0]['value']
    if not items:
      raise arity_error(name, "at least 1", 0)
    best = items[0]
    for item in items[1:]:
      ordering = compare('<', item, best) if pick is min else compare('>', item, best)
      if ordering['value']:
        best = item
    return best
  return extreme


def _sum(args: List[Dict], language: str) -> Dict:
  validate_function_args("sum", args, ["Array"])
  total = make_value(0, "Int")
  for item in args[0]['value']:
    total = op_add(total, item, language)
  return total


def _to_int(args: List[Dict], language: str) -> Dict:
  validate_function_args("int", args, [("Int", "Float", "String", "Bool")])
  value = args[0]
  if value['type'] == "String":
    try:
      result = int(value['value'].strip())
    except ValueError:
      raise type_mismatch_error("int", "argument 1", "a numeric string", value)
    check_int_bits(result.bit_length())
    return make_value(result, "Int")
  if value['type'] == "Float" and not math.isfinite(value['value']):
    raise operation_error("convert non-finite Float to", "Int")
  return make_value(int(value['value']), "Int")


def _to_float(args: List[Dict], language: str) -> Dict:
  validate_function_args("float", args, [("Int", "Float", "String")])
  try:
    return make_value(float(args[0]['value']), "Float")
  except ValueError:
    raise type_mismatch_error("float", "argument 1", "a numeric string", args[0])


def _to_str(args: List[Dict], language: str) -> Dict:
  if len(args) != 1:
    raise arity_error("str", 1, len(args))
  return make_value(format_value(args[0], language), "String")


def _range(args: List[Dict], language: str) -> Dict:
  if not 1 <= len(args) <= 3:
    raise arity_error("range", "1 to 3", len(args))
  validate_function_args("range", args, ["Int"] * len(args))
  bounds = [arg['value'] for arg in args]
  if len(bounds) == 3 and bounds[2] == 0:
    raise operation_error("range with step", "zero")
  values = range(*bounds)
  check_elements(len(values))
  return make_array([make_value(i, "Int") for i in values])


def _list(args: List[Dict], language: str) -> Dict:
  validate_function_args("list", args, [("Array", "String")])
  if args[0]['type'] == "String":
    return make_array([make_value(ch, "String") for ch in args[0]['value']])
  return make_array(args[0]['value'])


def _math(name: str, func: Callable, arity: int = 1, integral: bool = False) -> Callable:
  def apply(args: List[Dict], language: str) -> Dict:
    validate_function_args(name, args, [NUMERIC_TYPES] * arity)
    try:
      result = func(*[arg['value'] for arg in args])
    except ValueError:
      raise operation_error(f"compute {name} of", args[0]['type'])
    except OverflowError:
      result = float('inf')
    if integral and math.isfinite(result):
      return make_value(int(result), "Int")
    if integral and language == "python":
      raise operation_error(f"convert infinite result of {name} to", "Int")
    return make_value(float(result), "Float")
  return apply


def _pow(args: List[Dict], language: str) -> Dict:
  validate_function_args("pow", args, [NUMERIC_TYPES, NUMERIC_TYPES])
  result = op_pow(args[0], args[1], language)
  if language == "python":
    return result
  return make_value(float(result['value']), "Float")


def _round(args: List[Dict], language: str) -> Dict:
  validate_function_args("round", args, [NUMERIC_TYPES])
  return make_value(int(math.floor(args[0]['value'] + 0.5)), "Int")


def _enumerate(args: List[Dict], language: str) -> Dict:
  validate_function_args("enumerate", args, [("Array", "String")])
  items = _list(args, language)['value']
  return make_array([make_array([make_value(i, "Int"), item]) for i, item in enumerate(items)])


def _sorted(args: List[Dict], language: str) -> Dict:
  validate_function_args("sorted", args, ["Array"])
  def order(x: Dict, y: Dict) -> int:
    if compare('<', x, y)['value']:
      return -1
    return 1 if compare('<', y, x)['value'] else 0
  return make_array(sorted(args[0]['value'], key=cmp_to_key(order)))


def _reversed(args: List[Dict], language: str) -> Dict:
  validate_function_args("reversed", args, ["Array"])
  return make_array(list(reversed(args[0]['value'])))


def make_builtin_function(name: str, func: Callable, type_signature: str = "") -> Dict:
  """Create a built-in function value"""
  return {
      'type': 'builtin_function',
      'name': name,
      'func': func,
      'type_signature': type_signature
  }


_floor = _math("floor", math.floor, integral=True)
_ceil = _math("ceil", math.ceil, integral=True)
_sqrt = _math("sqrt", math.sqrt)
_max = _extreme("max", max)
_min = _extreme("min", min)

_COMMON_MATH = {
    "floor": make_builtin_function("floor", _floor, "Num -> Int"),
    "ceil": make_builtin_function("ceil", _ceil, "Num -> Int"),
    "sqrt": make_builtin_function("sqrt", _sqrt, "Num -> Float"),
    "pow": make_builtin_function("pow", _pow, "Num -> Num -> Num"),
    "abs": make_builtin_function("abs", _abs, "Num -> Num"),
    "max": make_builtin_function("max", _max, "a... -> a"),
    "min": make_builtin_function("min", _min, "a... -> a"),
}


def _qualified(prefix: str, names: List[str]) -> Dict[str, Dict]:
  return {f"{prefix}{name}": _COMMON_MATH[name] for name in names}


# Callable builtins per language, keyed by the (possibly dotted) call name
BUILTIN_FUNCTIONS: Dict[str, Dict[str, Dict]] = {
    "python": {
        "len": make_builtin_function("len", _length, "Array -> Int"),
        "abs": _COMMON_MATH["abs"],
        "max": _COMMON_MATH["max"],
        "min": _COMMON_MATH["min"],
        "sum": make_builtin_function("sum", _sum, "Array -> Num"),
        "int": make_builtin_function("int", _to_int, "a -> Int"),
        "float": make_builtin_function("float", _to_float, "a -> Float"),
        "str": make_builtin_function("str", _to_str, "a -> String"),
        "range": make_builtin_function("range", _range, "Int -> Array"),
        "list": make_builtin_function("list", _list, "Array -> Array"),
        "round": make_builtin_function("round", _round, "Num -> Int"),
        "enumerate": make_builtin_function("enumerate", _enumerate, "Array -> Array"),
        "sorted": make_builtin_function("sorted", _sorted, "Array -> Array"),
        "reversed": make_builtin_function("reversed", _reversed, "Array -> Array"),
        "pow": _COMMON_MATH["pow"],
        **_qualified("math.", ["floor", "ceil", "sqrt", "pow"]),
    },
    "javascript": {
        **_qualified("Math.", ["floor", "ceil", "sqrt", "pow", "abs", "max", "min"]),
        "Math.trunc": make_builtin_function("trunc", _math("trunc", math.trunc, integral=True), "Num -> Int"),
        "Math.round": make_builtin_function("round", _round, "Num -> Int"),
        "parseInt": make_builtin_function("parseInt", _to_int, "String -> Int"),
    },
    "java": {
        **_qualified("Math.", ["floor", "ceil", "sqrt", "pow", "abs", "max", "min"]),
        "Math.round": make_builtin_function("round", _round, "Num -> Int"),
        "Integer.parseInt": make_builtin_function("parseInt", _to_int, "String -> Int"),
    },
    "cpp": {
        **_COMMON_MATH,
        **_qualified("std::", ["floor", "ceil", "sqrt", "pow", "abs", "max", "min"]),
    },
}

# Java's Math.floor/ceil return doubles
for _name in ("Math.floor", "Math.ceil"):
  BUILTIN_FUNCTIONS["java"][_name] = make_builtin_function(
      _name, _math(_name[5:], getattr(math, _name[5:])), "Num -> Float")


# Named numeric constants, resolved when the program is analysed
BUILTIN_CONSTANTS: Dict[str, Dict[str, Dict]] = {
    "python": {
        "math.inf": make_value(math.inf, "Float"),
        "math.pi": make_value(math.pi, "Float"),
        "math.e": make_value(math.e, "Float"),
        "sys.maxsize": make_value(sys.maxsize, "Int"),
    },
    "javascript": {
        "Infinity": make_value(math.inf, "Float"),
        "Number.MAX_SAFE_INTEGER": make_value(2 ** 53 - 1, "Int"),
        "Number.MIN_SAFE_INTEGER": make_value(-(2 ** 53 - 1), "Int"),
        "Number.MAX_VALUE": make_value(sys.float_info.max, "Float"),
        "Math.PI": make_value(math.pi, "Float"),
    },
    "java": {
        "Integer.MAX_VALUE": make_value(2 ** 31 - 1, "Int"),
        "Integer.MIN_VALUE": make_value(-2 ** 31, "Int"),
        "Long.MAX_VALUE": make_value(2 ** 63 - 1, "Int"),
        "Long.MIN_VALUE": make_value(-2 ** 63, "Int"),
        "Double.MAX_VALUE": make_value(sys.float_info.max, "Float"),
        "Math.PI": make_value(math.pi, "Float"),
    },
    "cpp": {
        "INT_MAX": make_value(2 ** 31 - 1, "Int"),
        "INT_MIN": make_value(-2 ** 31, "Int"),
        "LLONG_MAX": make_value(2 ** 63 - 1, "Int"),
        "LLONG_MIN": make_value(-2 ** 63, "Int"),
        "M_PI": make_value(math.pi, "Float"),
    },
}


def get_builtin_function(name: str, language: str = "python") -> Dict:
  """Get a built-in function by name, or None when the language has no such builtin"""
  return BUILTIN_FUNCTIONS[language].get(name)


def list_builtin_functions(language: str = "python") -> List[str]:
  return list(BUILTIN_FUNCTIONS[language].keys())


# ============================================================================
# METHODS AND ATTRIBUTES
# ============================================================================

def _append(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 1:
    raise arity_error("append", 1, len(args))
  target['value'].append(args[0])
  if language == "javascript":
    return make_value(len(target['value']), "Int")
  return make_null()


def _pop(target: Dict, args: List[Dict], language: str) -> Dict:
  if not target['value']:
    raise index_error(-1, 0)
  if args:
    validate_function_args("pop", args, ["Int"])
    position = _resolve_index(target, args[0], language)
    return target['value'].pop(position)
  item = target['value'].pop()
  return make_null() if language == "cpp" else item


def _size(target: Dict, args: List[Dict], language: str) -> Dict:
  if args:
    raise arity_error("size", 0, len(args))
  return make_value(len(target['value']), "Int")


def _fill(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 1:
    raise arity_error("fill", 1, len(args))
  target['value'][:] = [args[0]] * len(target['value'])
  return target


def _get(target: Dict, args: List[Dict], language: str) -> Dict:
  validate_function_args("get", args, ["Int"])
  return get_index(target, args[0], language)


def _set(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 2:
    raise arity_error("set", 2, len(args))
  previous = get_index(target, args[0], language)
  set_index(target, args[0], args[1], language)
  return previous


def _back(target: Dict, args: List[Dict], language: str) -> Dict:
  if args:
    raise arity_error("back", 0, len(args))
  if not target['value']:
    raise index_error(-1, 0)
  return target['value'][-1]


def _empty(target: Dict, args: List[Dict], language: str) -> Dict:
  if args:
    raise arity_error("empty", 0, len(args))
  return make_value(not target['value'], "Bool")


def _includes(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 1:
    raise arity_error("includes", 1, len(args))
  return make_value(contains(target, args[0]), "Bool")


def _index_of(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 1:
    raise arity_error("indexOf", 1, len(args))
  if target['type'] == "String":
    if args[0]['type'] != "String":
      raise type_mismatch_error("indexOf", "argument 1", "String", args[0])
    return make_value(target['value'].find(args[0]['value']), "Int")
  for position, item in enumerate(target['value']):
    if values_equal(item, args[0]):
      return make_value(position, "Int")
  return make_value(-1, "Int")


def _insert(target: Dict, args: List[Dict], language: str) -> Dict:
  if len(args) != 2 or args[0]['type'] != "Int":
    raise arity_error("insert", "an Int position and a value as", len(args))
  target['value'].insert(args[0]['value'], args[1])
  return make_null()


def _clear(target: Dict, args: List[Dict], language: str) -> Dict:
  target['value'].clear()
  return make_null()


def _char_at(target: Dict, args: List[Dict], language: str) -> Dict:
  validate_function_args("charAt", args, ["Int"])
  return get_index(target, args[0], language)


def _substring(target: Dict, args: List[Dict], language: str) -> Dict:
  if not 1 <= len(args) <= 2:
    raise arity_error("substring", "1 or 2", len(args))
  validate_function_args("substring", args, ["Int"] * len(args))
  length = len(target['value'])
  start = args[0]['value']
  end = args[1]['value'] if len(args) > 1 else length
  if not 0 <= start <= end <= length:
    raise index_error(start if not 0 <= start <= length else end, length)
  return make_value(target['value'][start:end], "String")


def _case(convert: Callable) -> Callable:
  def change_case(target: Dict, args: List[Dict], language: str) -> Dict:
    if args:
      raise arity_error("case conversion", 0, len(args))
    return make_value(convert(target['value']), "String")
  return change_case


# Methods mutate their receiver in place; the names listed in GROWING_METHODS add elements
ARRAY_METHODS: Dict[str, Callable] = {
    'append': _append,
    'push': _append,
    'push_back': _append,
    'add': _append,
    'pop': _pop,
    'pop_back': _pop,
    'size': _size,
    'fill': _fill,
    'get': _get,
    'set': _set,
    'back': _back,
    'empty': _empty,
    'isEmpty': _empty,
    'includes': _includes,
    'contains': _includes,
    'indexOf': _index_of,
    'index': _index_of,
    'insert': _insert,
    'clear': _clear,
    'length': _size,
}
STRING_METHODS: Dict[str, Callable] = {
    'size': _size,
    'length': _size,
    'charAt': _char_at,
    'substring': _substring,
    'includes': _includes,
    'contains': _includes,
    'indexOf': _index_of,
    'upper': _case(str.upper),
    'lower': _case(str.lower),
    'toUpperCase': _case(str.upper),
    'toLowerCase': _case(str.lower),
}
GROWING_METHODS = frozenset({'append', 'push', 'push_back', 'add', 'insert'})


def call_method(target: Dict, name: str, args: List[Dict], language: str = "python") -> Dict:
  """Invoke a method on an array or string receiver"""
  table = ARRAY_METHODS if target['type'] == "Array" else STRING_METHODS
  if target['type'] not in ("Array", "String") or name not in table:
    raise operation_error(f"call method '{name}' on", target['type'])
  return table[name](target, args, language)


def get_attribute(target: Dict, name: str, language: str = "python") -> Dict:
  """Property access; only `length` exists"""
  if name == "length" and target['type'] in ("Array", "String"):
    return make_value(len(target['value']), "Int")
  raise operation_error(f"read attribute '{name}' of", target['type'])


def new_array(element_type: str, size: Dict) -> Dict:
  """`new T[n]` / `int a[n]`: n zero values"""
  if size['type'] != "Int":
    raise type_mismatch_error("array allocation", "the size", "Int", size)
  if size['value'] < 0:
    raise index_error(size['value'], 0)
  check_elements(size['value'])
  return make_array([default_for_type(element_type) for _ in range(size['value'])])


def filled_array(size: Dict, fill: Dict) -> Dict:
  """`vector<T> v(n, fill)`"""
  if size['type'] != "Int":
    raise type_mismatch_error("vector", "the size", "Int", size)
  if size['value'] < 0:
    raise index_error(size['value'], 0)
  check_elements(size['value'])
  return make_array([copy_value(fill) for _ in range(size['value'])])



def new_object(type_name: str, args: List[Dict], language: str = "python") -> Dict:
  """`new Array(n)`, `new ArrayList<>()` and sized `vector<T>(n[, fill])` constructors"""
  base = type_name.split("<")[0].replace("std::", "")
  if base == "Array":
    if len(args) == 1 and args[0]['type'] == "Int":
      return filled_array(args[0], make_value(None, "Null"))
    return make_array(args)
  if base in ("ArrayList", "LinkedList", "List", "vector", "ArrayDeque"):
    if not args or (base != "vector" and args[0]['type'] == "Int"):
      return make_array([])
    if args[0]['type'] == "Array":
      return make_array(args[0]['value'])
    element = type_name[type_name.find("<") + 1:type_name.rfind(">")] if "<" in type_name else ""
    fill = args[1] if len(args) > 1 else default_for_type(element)
    return filled_array(args[0], fill)
  raise operation_error(f"construct '{type_name}' with", f"{len(args)} arguments")
