"""
Loop and recursion invariant inference tests
"""

import pytest
from fractions import Fraction
from semantics import parse
from interpreter import trace_program
from invariants import (
  AffineRelation,
  BoundRelation,
  PrefixAggregate,
  SequenceRelation,
  Term,
  collect_loop_sites,
  infer_loop_invariants,
  infer_recursion_invariants,
  loop_runs,
)


SUM_ARRAY_JS = """
function sumArray(arr) {
  let total = 0;
  for (let i = 0; i < arr.length; i++) {
    total += arr[i];
  }
  return total;
}

console.log(sumArray([3, 1, 4, 1, 5]));
"""

RECURSIVE_FIB = """\
def fib(n):
    if n <= 1:
        return n
    return fib(n - 1) + fib(n - 2)

print(fib(4))
"""


def traced(code, language="python"):
  program = parse(code, language)
  return program, trace_program(program)


def loop_texts(code, language="python"):
  program, trace = traced(code, language)
  return [inv.text for inv in infer_loop_invariants(trace, program)]


class TestRelations:
  """Test relation rendering and checking"""

  def test_affine_text(self):
    relation = AffineRelation("x", "i", Fraction(2), Fraction(1))
    assert relation.text == "x == 2 * i + 1"
    assert relation.holds({'x': 7, 'i': 3})
    assert not relation.holds({'x': 8, 'i': 3})

  def test_affine_rejects_non_integers(self):
    relation = AffineRelation("x", "i", Fraction(1), Fraction(0))
    assert not relation.holds({'x': 1.0, 'i': 1})
    assert not relation.holds({'x': True, 'i': 1})

  def test_sequence_text(self):
    assert SequenceRelation("b", "i", "fib", -1).text == "b == fib(i - 1)"
    assert SequenceRelation("f", "i", "factorial", -1).text == "f == (i - 1)!"

  def test_sequence_holds(self):
    relation = SequenceRelation("b", "i", "fib", -1)
    assert relation.holds({'b': 5, 'i': 6})
    assert not relation.holds({'b': 5, 'i': 0})

  def test_prefix_aggregate(self):
    relation = PrefixAggregate("total", "arr", "i", "sum", 0)
    assert relation.text == "total == sum(arr[0:i])"
    assert relation.holds({'total': 4, 'arr': [3, 1, 2], 'i': 2})
    assert not relation.holds({'total': 4, 'arr': [3, 1, 2], 'i': 5})

  def test_bound_text(self):
    relation = BoundRelation("i", Term("0", literal=0), Term("len(arr)", length_of="arr"), True)
    assert relation.text == "0 <= i < len(arr)"
    assert relation.holds({'i': 2, 'arr': [1, 2, 3]})
    assert not relation.holds({'i': 3, 'arr': [1, 2, 3]})


class TestLoopSites:

  def test_sites_keyed_by_header_line(self, fib_source):
    program = parse(fib_source)
    sites = collect_loop_sites(program)
    assert list(sites) == [5]
    assert sites[5].kind == "FOR_EACH"
    assert sites[5].updated == ["i"]
    assert sites[5].end_line == 6

  def test_nested_loop_runs_are_split(self):
    code = (
        "count = 0\n"
        "for i in range(3):\n"
        "    for j in range(2):\n"
        "        count += 1\n"
        "    count += 0\n"
    )
    program, trace = traced(code)
    inner = collect_loop_sites(program)[3]
    runs = loop_runs(trace, inner)
    assert len(runs) == 3
    assert all(len(run) == 2 for run in runs)


class TestLoopInvariants:
  """Test conjectured loop invariants"""

  def test_iterative_fib(self, fib_source):
    assert loop_texts(fib_source) == ["2 <= i <= n", "a == fib(i - 2)", "b == fib(i - 1)"]

  def test_prefix_sum_in_javascript(self):
    texts = loop_texts(SUM_ARRAY_JS, "javascript")
    assert "0 <= i < arr.length" in texts
    assert "total == sum(arr[0:i])" in texts

  def test_while_counter_and_affine_accumulator(self):
    code = "i = 0\ntotal = 0\nwhile i < 5:\n    total += 2\n    i += 1\n"
    texts = loop_texts(code)
    assert texts == ["0 <= i < 5", "total == 2 * i"]

  def test_invariants_hold_on_every_header_entry(self, fib_source):
    program, trace = traced(fib_source)
    invariants = infer_loop_invariants(trace, program)
    assert invariants
    for invariant in invariants:
      snapshots = trace.steps_at(invariant.line, "loop")
      assert all(invariant.holds(step.variables) for step in snapshots)
      assert invariant.iterations == len(snapshots)

  def test_single_iteration_yields_nothing(self):
    assert loop_texts("for i in range(1):\n    x = i\n") == []

  def test_to_dict_shape(self, fib_source):
    program, trace = traced(fib_source)
    data = infer_loop_invariants(trace, program)[0].to_dict()
    assert data['location'] == "line 5"
    assert data['invariant'] == "2 <= i <= n"
    assert data['iterations'] == 5
    assert data['explanation']


class TestRecursionInvariants:
  """Test base case and recursive case inference"""

  def test_factorial(self, factorial_source):
    program, trace = traced(factorial_source)
    invariants = infer_recursion_invariants(trace, program)
    assert len(invariants) == 1
    invariant = invariants[0]
    assert invariant.function == "factorial"
    assert invariant.base_condition == "n <= 1"
    assert invariant.base_value == 1
    assert invariant.relation == "return = n * subcall.return"
    assert invariant.calls == 5
    assert invariant.max_depth == 5
    assert invariant.base_case == "n <= 1 -> return 1"

  def test_tree_recursion(self):
    program, trace = traced(RECURSIVE_FIB)
    invariant = infer_recursion_invariants(trace, program)[0]
    assert invariant.base_condition == "n <= 1"
    assert invariant.relation == "return = sum(subcall.return)"
    assert invariant.max_depth == 4

  def test_negated_guard_in_brace_language(self):
    code = """
function countdown(n) {
  if (n > 0) {
    return countdown(n - 1);
  }
  return 0;
}

console.log(countdown(3));
"""
    program, trace = traced(code, "javascript")
    invariant = infer_recursion_invariants(trace, program)[0]
    assert invariant.base_condition == "!(n > 0)"
    assert invariant.base_value == 0
    assert invariant.relation == "return = subcall.return"

  def test_no_recursion(self, fib_source):
    program, trace = traced(fib_source)
    assert infer_recursion_invariants(trace, program) == []

  def test_to_dict_keys(self, factorial_source):
    program, trace = traced(factorial_source)
    data = infer_recursion_invariants(trace, program)[0].to_dict()
    assert data['baseCase'] == "n <= 1 -> return 1"
    assert data['recursiveCase'] == "return = n * subcall.return"
    assert set(data) >= {'function', 'baseCase', 'recursiveCase', 'explanation'}
