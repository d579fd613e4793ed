"""
Tracer tests: steps, frames, output and failures
"""

import pytest
from interpreter import Limits, trace_program
from semantics import parse
from error_handling import (
  SemantixRuntimeError,
  ResourceExceededError,
  DIVISION_BY_ZERO,
  INDEX_OUT_OF_BOUNDS,
  UNBOUND_VARIABLE,
  STEPS,
  CALL_DEPTH,
  WALL_CLOCK,
  ALLOCATION,
  INTEGER_SIZE,
  TYPE_MISMATCH,
)
from stdlib import MAX_INT_BITS, format_output, make_value


def run(code, language="python", bindings=None, limits=None):
  return trace_program(parse(code, language), bindings, limits)


class TestStraightLine:
  """Test plain statements in the global frame"""

  def test_one_step_per_statement(self):
    trace = run("x = 1\ny = x + 2\nprint(y)\n")
    assert len(trace) == 3
    assert [step.line for step in trace] == [1, 2, 3]
    assert trace[1].variables == {'x': 1, 'y': 3}

  def test_print_output(self):
    trace = run("x = 1\ny = x + 2\nprint(y)\n")
    assert trace.output == "3\n"
    assert trace[-1].output == "3"
    assert trace[-1].call_stack == ("main",)

  def test_input_bindings_seed_global_frame(self):
    trace = run("print(n * 2)\n", bindings={'n': 21})
    assert trace.output == "42\n"
    assert trace[0].variables == {'n': 21}

  def test_to_list_uses_response_keys(self):
    step = run("x = 4\n").to_list()[0]
    assert step == {'line': 1, 'variables': {'x': 4}, 'callStack': ["main"], 'event': "line"}

  def test_steps_are_snapshots(self):
    trace = run("arr = [1]\narr.append(2)\n")
    assert trace[0].variables['arr'] == [1]
    assert trace[1].variables['arr'] == [1, 2]


class TestControlFlow:
  """Test branch and loop events"""

  def test_branch_events(self):
    code = "x = 3\nif x > 5:\n    y = 1\nelse:\n    y = 2\n"
    trace = run(code)
    branches = trace.steps_at(2, "branch")
    assert len(branches) == 1
    assert branches[0].branch is False
    assert trace[-1].variables['y'] == 2

  def test_loop_event_per_iteration(self):
    trace = run("total = 0\nfor i in range(4):\n    total += i\n")
    loop_steps = trace.steps_at(2, "loop")
    assert [step.variables['i'] for step in loop_steps] == [0, 1, 2, 3]
    assert trace[-1].variables['total'] == 6

  def test_while_with_break(self):
    code = "i = 0\nwhile True:\n    i += 1\n    if i == 3:\n        break\nprint(i)\n"
    assert run(code).output == "3\n"

  def test_c_style_for(self):
    code = """
let total = 0;
for (let i = 0; i < 5; i++) {
  total += i;
}
console.log(total);
"""
    trace = run(code, "javascript")
    assert trace.output == "10\n"
    assert len(trace.steps_at(3, "loop")) == 5


class TestFunctions:
  """Test frames, call and return steps"""

  def test_call_and_return_steps(self, factorial_source):
    trace = run(factorial_source)
    calls = [step for step in trace if step.event == "call"]
    assert len(calls) == 5
    assert calls[0].callee == "factorial"
    assert calls[0].arguments == {'n': 5}
    returns = [step for step in trace if step.event == "return"]
    assert returns[0].variables == {'n': 1, 'return': 1}
    assert returns[-1].variables['return'] == 120

  def test_call_stack_depth(self, factorial_source):
    trace = run(factorial_source)
    assert trace.max_depth == 6
    deepest = max(trace, key=lambda step: step.depth)
    assert deepest.call_stack == ("main", "factorial(5)", "factorial(4)", "factorial(3)",
                                  "factorial(2)", "factorial(1)")
    assert trace.output == "120\n"

  def test_frame_ids_are_unique(self, factorial_source):
    trace = run(factorial_source)
    callee_frames = [step.callee_frame for step in trace if step.event == "call"]
    assert len(set(callee_frames)) == len(callee_frames)

  def test_frames_do_not_share_locals(self):
    code = "def f(a):\n    b = a + 1\n    return b\n\nb = 10\nprint(f(1), b)\n"
    assert run(code).output == "2 10\n"

  def test_arrays_alias_across_calls(self):
    code = (
        "def fill(a):\n"
        "    a.append(4)\n"
        "    a[0] = 9\n"
        "\n"
        "arr = [1, 2, 3]\n"
        "alias = arr\n"
        "fill(alias)\n"
        "print(arr)\n"
    )
    trace = run(code)
    assert trace.output == "[9, 2, 3, 4]\n"
    assert trace.steps[-1].variables['alias'] == [9, 2, 3, 4]

  def test_iterative_fib(self, fib_source):
    assert run(fib_source).output == "8\n"


class TestLanguageSemantics:
  """Test the per-language differences in arithmetic and output"""

  def test_output_formatting_per_language(self):
    args = [make_value(True, "Bool"), make_value(None, "Null"), make_value(2.0, "Float")]
    assert format_output(args) == "True None 2.0"
    assert format_output(args, "javascript") == "true null 2"
    assert format_output(args, "cpp", sep="") == "1nullptr2"

  def test_python_division(self):
    assert run("print(7 / 2, 7 // 2)\n").output == "3.5 3\n"

  def test_javascript_division(self):
    assert run("console.log(7 / 2);\n", "javascript").output == "3.5\n"

  def test_java_integer_division(self):
    code = """
public class Main {
    public static void main(String[] args) {
        int x = 7 / 2;
        System.out.println(x);
    }
}
"""
    assert run(code, "java").output == "3\n"

  def test_cpp_truncating_division(self):
    code = """
#include <iostream>
using namespace std;

int main() {
    int x = -7 / 2;
    cout << x << endl;
    return 0;
}
"""
    assert run(code, "cpp").output == "-3\n"


class TestRuntimeErrors:
  """Failures abort the run with a kind and a line"""

  def test_index_out_of_bounds(self):
    with pytest.raises(SemantixRuntimeError) as exc_info:
      run("arr = [1, 2, 3]\nx = arr[5]\n")
    assert exc_info.value.kind == INDEX_OUT_OF_BOUNDS
    assert exc_info.value.line == 2

  def test_unbound_variable(self):
    with pytest.raises(SemantixRuntimeError) as exc_info:
      run("x = 1\nprint(y)\n")
    assert exc_info.value.kind == UNBOUND_VARIABLE
    assert exc_info.value.line == 2

  def test_division_by_zero(self):
    with pytest.raises(SemantixRuntimeError) as exc_info:
      run("x = 1 / 0\n")
    assert exc_info.value.kind == DIVISION_BY_ZERO
    assert exc_info.value.to_response()['errorKind'] == "runtime"

  def test_type_mismatch(self):
    with pytest.raises(SemantixRuntimeError) as exc_info:
      run("x = 1\ny = [x] + x\n")
    assert exc_info.value.kind == TYPE_MISMATCH
    assert exc_info.value.line == 2

  def test_error_inside_callee_reports_callee_line(self):
    code = "def f(a):\n    return a[3]\n\nprint(f([1]))\n"
    with pytest.raises(SemantixRuntimeError) as exc_info:
      run(code)
    assert exc_info.value.line == 2


class TestLimits:
  """Resource ceilings"""

  def test_step_limit(self):
    code = "i = 0\nwhile i >= 0:\n    i += 1\n"
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code, limits=Limits(max_steps=100))
    assert exc_info.value.resource == STEPS
    assert exc_info.value.to_response()['errorKind'] == "resourceExceeded"

  def test_call_depth_limit(self):
    code = "def f(n):\n    return f(n + 1)\n\nf(0)\n"
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code, limits=Limits(max_call_depth=50))
    assert exc_info.value.resource == CALL_DEPTH
    assert "Call depth" in exc_info.value.message

  def test_wall_clock_limit(self):
    code = "i = 0\nwhile i >= 0:\n    i += 1\n"
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code, limits=Limits(max_steps=10 ** 9, wall_clock_ms=1))
    assert exc_info.value.resource == WALL_CLOCK
    assert "wall-clock" in exc_info.value.message

  def test_huge_power_is_refused(self):
    with pytest.raises(ResourceExceededError) as exc_info:
      run("x = 3 ** 30000000\nprint(x % 7)\n")
    assert exc_info.value.resource == INTEGER_SIZE
    assert exc_info.value.limit == MAX_INT_BITS
    assert exc_info.value.line == 1

  def test_repeated_squaring_is_refused(self):
    code = "x = 3\nfor i in range(40):\n    x = x * x\n"
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code)
    assert exc_info.value.resource == INTEGER_SIZE
    assert exc_info.value.line == 3

  def test_large_range_is_refused(self):
    with pytest.raises(ResourceExceededError) as exc_info:
      run("n = 1\ns = sum(range(30000000))\n")
    assert exc_info.value.resource == ALLOCATION
    assert exc_info.value.line == 2

  def test_list_repeat_is_refused(self):
    with pytest.raises(ResourceExceededError) as exc_info:
      run("arr = [0] * n\n", bindings={'n': 10 ** 9})
    assert exc_info.value.resource == ALLOCATION

  def test_sized_array_is_refused(self):
    code = """
public class Main {
    public static void main(String[] args) {
        int[] big = new int[500000000];
        System.out.println(big.length);
    }
}
"""
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code, "java")
    assert exc_info.value.resource == ALLOCATION
    assert exc_info.value.line == 4

  def test_nested_allocation_counts_every_cell(self):
    code = """
public class Main {
    public static void main(String[] args) {
        int[][] grid = new int[2000][2000];
        System.out.println(grid.length);
    }
}
"""
    with pytest.raises(ResourceExceededError) as exc_info:
      run(code, "java")
    assert exc_info.value.resource == ALLOCATION
    assert exc_info.value.limit == Limits.max_steps

  def test_element_ceiling_follows_step_budget(self):
    with pytest.raises(ResourceExceededError) as exc_info:
      run("x = list(range(50))\n", limits=Limits(max_steps=20))
    assert exc_info.value.limit == 20
    assert run("x = list(range(50))\nprint(len(x))\n").output == "50\n"

  def test_small_powers_still_work(self):
    assert run("print(2 ** 100)\n").output == f"{2 ** 100}\n"

  def test_limits_from_request_keys(self):
    limits = Limits.from_dict({'maxSteps': 10, 'wallClockMs': 200})
    assert limits == Limits(max_steps=10, max_call_depth=1000, wall_clock_ms=200)
    assert limits.to_dict()['maxSteps'] == 10

  @pytest.mark.parametrize("data", [{'maxSteps': 0}, {'maxCallDepth': -1}, {'steps': 5}])
  def test_invalid_limits(self, data):
    with pytest.raises(ValueError):
      Limits.from_dict(data)


class TestDeterminism:

  def test_same_trace_twice(self, factorial_source, interpreter):
    first = interpreter.run(factorial_source)
    second = interpreter.run(factorial_source)
    assert first.to_list() == second.to_list()
    assert first.output == second.output
