"""
Complexity estimation tests
"""

import pytest
from semantics import parse
from interpreter import trace_program
from complexity import (
  ComplexityClass,
  Growth,
  CONSTANT,
  LOGARITHMIC,
  LINEAR,
  LINEARITHMIC,
  EXPONENTIAL,
  UNKNOWN,
  empirical_fit,
  estimate_complexity,
  solve_recurrence,
)


MERGE_SORT = """\
def merge_sort(arr):
    if len(arr) <= 1:
        return arr
    mid = len(arr) // 2
    left = merge_sort(arr[:mid])
    right = merge_sort(arr[mid:])
    result = []
    i = 0
    j = 0
    while i < len(left) and j < len(right):
        if left[i] <= right[j]:
            result.append(left[i])
            i += 1
        else:
            result.append(right[j])
            j += 1
    while i < len(left):
        result.append(left[i])
        i += 1
    while j < len(right):
        result.append(right[j])
        j += 1
    return result

print(merge_sort([5, 2, 4, 1, 3]))
"""

BINARY_SEARCH = """\
def search(arr, target):
    lo = 0
    hi = len(arr) - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        if arr[mid] == target:
            return mid
        elif arr[mid] < target:
            lo = mid + 1
        else:
            hi = mid - 1
    return -1

print(search([1, 3, 5, 7, 9], 7))
"""

NESTED_LOOPS = """\
def pairs(n):
    count = 0
    for i in range(n):
        for j in range(i, n):
            count += 1
    return count

print(pairs(4))
"""

RECURSIVE_FIB = """\
def fib(n):
    if n <= 1:
        return n
    return fib(n - 1) + fib(n - 2)

print(fib(5))
"""


def classes(code, language="python"):
  result = estimate_complexity(parse(code, language))
  return result.best, result.worst, result.space


class TestGrowth:
  """Test growth arithmetic and bucketing"""

  def test_multiplication(self):
    assert (LINEAR * LINEAR).classify() == ComplexityClass.QUADRATIC
    assert (LINEAR * LOGARITHMIC) == LINEARITHMIC
    assert (LINEAR * EXPONENTIAL) == EXPONENTIAL
    assert (EXPONENTIAL * UNKNOWN) == UNKNOWN

  def test_max(self):
    assert (LINEAR | LOGARITHMIC) == LINEAR
    assert (CONSTANT | LINEARITHMIC) == LINEARITHMIC
    assert LOGARITHMIC < LINEAR < LINEARITHMIC < EXPONENTIAL < UNKNOWN

  @pytest.mark.parametrize("growth,expected", [
      (Growth(), "O(1)"),
      (Growth(logs=1), "O(log n)"),
      (Growth(degree=1, logs=1), "O(n log n)"),
      (Growth(degree=3), "O(n^3)"),
      (Growth(degree=4), "O(n^k)"),
      (Growth(exponential=True), "O(2^n)"),
  ])
  def test_classify(self, growth, expected):
    assert str(growth.classify()) == expected


class TestRecurrences:

  def test_halving_with_linear_work(self):
    assert solve_recurrence(2, "halving", LINEAR, False) == LINEARITHMIC

  def test_halving_with_constant_work(self):
    assert solve_recurrence(1, "halving", CONSTANT, False) == LOGARITHMIC
    assert solve_recurrence(2, "halving", CONSTANT, False) == LINEAR

  def test_decrement(self):
    assert solve_recurrence(1, "decrement", CONSTANT, False) == LINEAR
    assert solve_recurrence(2, "decrement", CONSTANT, False) == EXPONENTIAL

  def test_memoized_calls_are_linear(self):
    assert solve_recurrence(2, "decrement", CONSTANT, True) == LINEAR


class TestStructural:
  """Test classification of whole programs"""

  def test_iterative_fib(self, fib_source):
    best, worst, space = classes(fib_source)
    assert best == ComplexityClass.CONSTANT
    assert worst == ComplexityClass.LINEAR
    assert space == ComplexityClass.CONSTANT

  def test_factorial(self, factorial_source):
    assert classes(factorial_source) == (ComplexityClass.LINEAR,) * 3

  def test_tree_recursion(self):
    best, worst, _ = classes(RECURSIVE_FIB)
    assert best == worst == ComplexityClass.EXPONENTIAL

  def test_merge_sort(self):
    best, worst, space = classes(MERGE_SORT)
    assert worst == ComplexityClass.LINEARITHMIC
    assert best == ComplexityClass.LINEARITHMIC
    assert space == ComplexityClass.LINEAR

  def test_binary_search(self):
    best, worst, _ = classes(BINARY_SEARCH)
    assert best == ComplexityClass.CONSTANT
    assert worst == ComplexityClass.LOGARITHMIC

  def test_nested_loops(self):
    best, worst, _ = classes(NESTED_LOOPS)
    assert best == worst == ComplexityClass.QUADRATIC

  def test_literal_bound(self):
    assert classes("total = 0\nfor i in range(10):\n    total += i\n")[1] == ComplexityClass.CONSTANT

  def test_straight_line(self):
    result = estimate_complexity(parse("x = 1\nprint(x)\n"))
    assert result.worst == ComplexityClass.CONSTANT
    assert "straight-line" in result.time_reasoning

  def test_unchanged_condition_is_unknown(self):
    code = "def spin(flag):\n    x = 0\n    while flag:\n        x += 1\n    return x\n\nprint(spin(False))\n"
    assert classes(code)[1] == ComplexityClass.UNKNOWN

  def test_javascript_counted_loop(self):
    code = """
function total(n) {
  let acc = 0;
  for (let i = 0; i < n; i++) {
    acc += i;
  }
  return acc;
}

console.log(total(5));
"""
    assert classes(code, "javascript")[1] == ComplexityClass.LINEAR

  def test_average_matches_worst(self):
    result = estimate_complexity(parse(BINARY_SEARCH))
    assert result.average == result.worst
    data = result.to_dict()
    assert data['timeComplexity']['average'] == "O(log n)"
    assert data['spaceComplexity']['class'] == str(result.space)

  def test_reasoning_mentions_loop_line(self, fib_source):
    result = estimate_complexity(parse(fib_source))
    assert "line 5" in result.time_reasoning
    assert "early return on line 3" in result.time_reasoning


class TestEmpirical:
  """Test the least-squares cross-check"""

  def test_linear_counts(self):
    fitted = empirical_fit([(10, 25), (20, 45), (40, 85), (80, 165)])
    assert fitted[0] == ComplexityClass.LINEAR

  def test_quadratic_counts(self):
    fitted = empirical_fit([(n, n * n + 3) for n in (4, 8, 16, 32)])
    assert fitted[0] == ComplexityClass.QUADRATIC

  def test_constant_counts(self):
    fitted = empirical_fit([(n, 12) for n in (4, 8, 16)])
    assert fitted[0] == ComplexityClass.CONSTANT

  def test_too_few_sizes(self):
    assert empirical_fit([(10, 25), (20, 45)]) is None

  def test_traces_as_samples(self):
    code = "total = 0\nfor i in range(n):\n    total += i\n"
    program = parse(code)
    samples = [(n, trace_program(program, {'n': n})) for n in (5, 10, 20, 40)]
    result = estimate_complexity(program, samples)
    assert result.empirical == ComplexityClass.LINEAR
    assert result.to_dict()['empirical'] == "O(n)"
