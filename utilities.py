"""
Utilities module for the Semantix interpreter
Contains common helper functions shared by the value model and the tracer
"""

from typing import Any, Dict, List, Optional, Callable, Sequence, Union

from error_handling import (
  SemantixRuntimeError,
  TYPE_MISMATCH,
  UNBOUND_VARIABLE,
  INDEX_OUT_OF_BOUNDS,
  DIVISION_BY_ZERO,
)


NUMERIC_TYPES = ("Int", "Float")


# ==================== VALUE EXTRACTION UTILITIES ====================

def unwrap_value(val: Any) -> Any:
  """
  Recursively convert a runtime value into plain Python data

  Arrays are copied, so the result never aliases interpreter state.

  Examples:
    unwrap_value({"type": "Int", "value": 3}) -> 3
    unwrap_value({"type": "Array", "value": [{"type": "Int", "value": 1}]}) -> [1]
  """
  if not is_value_dict(val):
    return val
  if val['type'] == "Array":
    return [unwrap_value(item) for item in val['value']]
  return val['value']


# ==================== TYPE CHECKING UTILITIES ====================

def is_value_dict(val: Any) -> bool:
  """True if val is a wrapped value dict with 'type' and 'value' keys"""
  return isinstance(val, dict) and 'type' in val and 'value' in val


def is_numeric(val: Dict) -> bool:
  return val['type'] in NUMERIC_TYPES


# ==================== ERROR MESSAGE BUILDERS ====================

def type_mismatch_error(
  func_name: str,
  param_name: str,
  expected: str,
  actual: Dict
) -> SemantixRuntimeError:
  """
  Generate type mismatch error

  Args:
    func_name: Function name
    param_name: Parameter name
    expected: Expected type
    actual: Actual value dict

  Returns:
    SemantixRuntimeError with formatted message
  """
  actual_type = actual.get('type', 'Unknown')
  return SemantixRuntimeError(
    f"{func_name} requires {expected} for {param_name}, got {actual_type}",
    TYPE_MISMATCH
  )


def arity_error(func_name: str, expected: Union[int, str], got: int) -> SemantixRuntimeError:
  """Generate arity mismatch error"""
  return SemantixRuntimeError(
    f"{func_name} requires {expected} arguments, got {got}",
    TYPE_MISMATCH
  )


def operation_error(
  op: str,
  left_type: str,
  right_type: Optional[str] = None
) -> SemantixRuntimeError:
  """
  Generate operation error

  Args:
    op: Operation name
    left_type: Left operand type
    right_type: Right operand type (None for unary operations)
  """
  if right_type is None:
    return SemantixRuntimeError(f"Cannot {op} {left_type}", TYPE_MISMATCH)
  return SemantixRuntimeError(
    f"Cannot {op} {left_type} and {right_type}",
    TYPE_MISMATCH
  )


def unbound_error(name: str) -> SemantixRuntimeError:
  return SemantixRuntimeError(f"Name '{name}' is not defined", UNBOUND_VARIABLE)


def index_error(index: int, length: int) -> SemantixRuntimeError:
  return SemantixRuntimeError(
    f"Index {index} is out of bounds for length {length}",
    INDEX_OUT_OF_BOUNDS
  )


def division_error(op_name: str = "divide") -> SemantixRuntimeError:
  return SemantixRuntimeError(f"Cannot {op_name} by zero", DIVISION_BY_ZERO)


# ==================== VALIDATION UTILITIES ====================

def validate_function_args(
  func_name: str,
  args: List[Dict],
  expected_types: Sequence[Union[str, Sequence[str]]]
) -> None:
  """
  Validate function arguments match expected types

  Args:
    func_name: Function name for error messages
    args: List of argument values
    expected_types: Expected type name per argument, or a tuple of allowed names

  Raises:
    SemantixRuntimeError if validation fails
  """
  if len(args) != len(expected_types):
    raise arity_error(func_name, len(expected_types), len(args))

  for i, (arg, expected) in enumerate(zip(args, expected_types)):
    allowed = (expected,) if isinstance(expected, str) else tuple(expected)
    if arg.get('type', 'Unknown') not in allowed:
      raise type_mismatch_error(
        func_name,
        f"argument {i+1}",
        " or ".join(allowed),
        arg
      )


def dispatch_by_type(
  value: Dict,
  handlers: Dict[str, Callable],
  default_handler: Optional[Callable] = None
) -> Any:
  """
  Generic type-based dispatch

  Examples:
    dispatch_by_type(
      {"type": "Int", "value": 42},
      {"Int": lambda v: v['value'] * 2}
    ) -> 84
  """
  value_type = value.get('type', 'Unknown')
  handler = handlers.get(value_type, default_handler)
  if handler is None:
    raise ValueError(f"No handler for type: {value_type}")
  return handler(value)


# ==================== BINARY OPERATION FACTORIES ====================

def binary_comparison_op(
  op: Callable[[Any, Any], bool],
  op_name: str,
  allowed_types: Optional[List[str]] = None
) -> Callable[[Dict, Dict, Callable], Dict]:
  """
  Factory for ordering comparisons

  Numbers compare with numbers (Int and Float mix freely), strings with strings.

  Examples:
    less_than = binary_comparison_op(operator.lt, "compare")
    less_than({"type": "Int", "value": 1}, {"type": "Float", "value": 2.5}, make_value)
  """
  if allowed_types is None:
    allowed_types = ["Int", "Float", "String"]

  def comparison(x: Dict, y: Dict, make_value: Callable) -> Dict:
    if x['type'] not in allowed_types or y['type'] not in allowed_types:
      raise operation_error(op_name, x['type'], y['type'])
    if is_numeric(x) != is_numeric(y):
      raise operation_error(op_name, x['type'], y['type'])
    return make_value(op(x['value'], y['value']), "Bool")

  return comparison


def binary_arithmetic_op(
  op: Callable[[Any, Any], Any],
  op_name: str,
  allowed_types: Optional[List[str]] = None
) -> Callable[[Dict, Dict, Callable], Dict]:
  """
  Factory for numeric arithmetic

  Two Int operands give an Int, anything involving a Float gives a Float.

  Examples:
    add = binary_arithmetic_op(operator.add, "add")
    add({"type": "Int", "value": 1}, {"type": "Int", "value": 2}, make_value)
  """
  if allowed_types is None:
    allowed_types = list(NUMERIC_TYPES)

  def arithmetic(x: Dict, y: Dict, make_value: Callable) -> Dict:
    if x['type'] not in allowed_types or y['type'] not in allowed_types:
      raise operation_error(op_name, x['type'], y['type'])
    if x['type'] == "Int" and y['type'] == "Int":
      return make_value(op(x['value'], y['value']), "Int")
    try:
      return make_value(float(op(float(x['value']), float(y['value']))), "Float")
    except OverflowError:
      return make_value(float('inf'), "Float")

  return arithmetic
