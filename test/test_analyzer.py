"""
End-to-end analysis tests: pipeline, request boundary, actor pool and CLI
"""

import json
import sys
import pytest
from analyzer import (
  AnalysisWorkerPool,
  analyze,
  analyze_request,
  analyze_scaling,
)
from interpreter import Limits
import main as cli


LINEAR_SUM = "total = 0\nfor i in range(n):\n    total += i\nprint(total)\n"


class TestAnalyze:
  """Test the success and failure objects"""

  def test_success_keys(self, fib_source):
    result = analyze(fib_source)
    assert result.ok
    data = result.to_dict()
    assert set(data) == {'trace', 'output', 'loopInvariants', 'recursionInvariants',
                         'timeComplexity', 'spaceComplexity'}
    assert data['output'] == "8\n"
    assert set(data['timeComplexity']) == {'best', 'average', 'worst', 'reasoning'}
    assert set(data['spaceComplexity']) == {'class', 'reasoning'}

  def test_fib_report(self, fib_source):
    data = analyze(fib_source).to_dict()
    invariants = [inv['invariant'] for inv in data['loopInvariants']]
    assert invariants == ["2 <= i <= n", "a == fib(i - 2)", "b == fib(i - 1)"]
    assert data['timeComplexity']['best'] == "O(1)"
    assert data['timeComplexity']['worst'] == "O(n)"
    assert data['spaceComplexity']['class'] == "O(1)"
    assert data['recursionInvariants'] == []

  def test_factorial_report(self, factorial_source):
    data = analyze(factorial_source).to_dict()
    assert data['output'] == "120\n"
    recursion = data['recursionInvariants'][0]
    assert recursion['baseCase'] == "n <= 1 -> return 1"
    assert recursion['recursiveCase'] == "return = n * subcall.return"
    assert data['timeComplexity']['worst'] == "O(n)"
    assert data['spaceComplexity']['class'] == "O(n)"
    assert "call depth of 6" in data['spaceComplexity']['reasoning']

  def test_input_bindings(self):
    result = analyze(LINEAR_SUM, "n = 4")
    assert result.output == "6\n"

  def test_syntax_failure(self):
    outcome = analyze("def f(n)\n    return n\n")
    assert not outcome.ok
    data = outcome.to_dict()
    assert data['errorKind'] == "syntax"
    assert data['line'] == 1

  def test_runtime_failure(self):
    data = analyze("arr = [1, 2, 3]\nx = arr[5]\n").to_dict()
    assert data['errorKind'] == "runtime"
    assert data['kind'] == "index-out-of-bounds"
    assert data['line'] == 2

  def test_resource_failure(self):
    outcome = analyze("i = 0\nwhile i >= 0:\n    i += 1\n", limits={'maxSteps': 50})
    assert outcome.error_kind == "resourceExceeded"

  def test_single_expensive_line_stops_quickly(self):
    data = analyze("x = 3 ** 30000000\ny = x % 7\nprint(y)\n",
                   limits={'wallClockMs': 100}).to_dict()
    assert data['errorKind'] == "resourceExceeded"
    assert data['line'] == 1
    data = analyze("s = sum(range(30000000))\n").to_dict()
    assert data['errorKind'] == "resourceExceeded"
    assert "elements" in data['message']

  def test_bad_input_is_syntax_failure(self):
    outcome = analyze(LINEAR_SUM, "n = ")
    assert outcome.error_kind == "syntax"

  def test_unsupported_language(self):
    with pytest.raises(ValueError):
      analyze("x = 1", language="ruby")

  def test_deterministic(self, factorial_source):
    assert analyze(factorial_source).to_dict() == analyze(factorial_source).to_dict()

  def test_response_is_json_serialisable(self, factorial_source):
    text = json.dumps(analyze(factorial_source).to_dict())
    assert json.loads(text)['output'] == "120\n"


class TestRequests:
  """Test the JSON request boundary"""

  def test_request_round_trip(self):
    response = analyze_request({'code': LINEAR_SUM, 'input': "n = 3",
                                'limits': {'maxSteps': 1000}})
    assert response['output'] == "3\n"

  def test_language_key(self):
    response = analyze_request({'code': "console.log(1 + 1);", 'language': "javascript"})
    assert response['output'] == "2\n"

  def test_unknown_key_is_a_failure_object(self):
    response = analyze_request({'code': "x = 1", 'lang': "python"})
    assert response['errorKind'] == "syntax"
    assert "lang" in response['message']
    assert 'line' not in response

  def test_missing_code(self):
    response = analyze_request({'input': "n = 1"})
    assert response['errorKind'] == "syntax"

  @pytest.mark.parametrize("request_data", [
      {'code': "x = 1", 'language': "ruby"},
      {'code': "x = 1", 'limits': {'maxSteps': 0}},
      {'code': "x = 1", 'limits': [100]},
      {'code': "x = 1", 'input': 5},
  ])
  def test_malformed_request(self, request_data):
    response = analyze_request(request_data)
    assert response['errorKind'] == "syntax"
    assert response['message'].startswith("Invalid request")
    json.dumps(response)


class TestWorkerPool:
  """Test concurrent analyses on the actor pool"""

  def test_results_keep_request_order(self):
    requests = [{'code': LINEAR_SUM, 'input': f"n = {n}"} for n in (1, 2, 3, 4, 5)]
    with AnalysisWorkerPool(size=2) as pool:
      outcomes = pool.map(requests, timeout=30)
    assert [outcome.output for outcome in outcomes] == ["0\n", "1\n", "3\n", "6\n", "10\n"]

  def test_failures_are_results(self):
    requests = [{'code': "x = 1 / 0\n"}, {'code': "print(2)\n"}]
    with AnalysisWorkerPool(size=2) as pool:
      first, second = pool.map(requests, timeout=30)
    assert first.error_kind == "runtime"
    assert second.output == "2\n"

  def test_invalid_size(self):
    with pytest.raises(ValueError):
      AnalysisWorkerPool(size=0)


class TestScaling:
  """Test the multi-size empirical cross-check"""

  def test_linear_program(self):
    inputs = [(n, f"n = {n}") for n in (5, 10, 20, 40)]
    result = analyze_scaling(LINEAR_SUM, inputs)
    assert result.ok
    assert result.output == "10\n"
    assert str(result.complexity.empirical) == "O(n)"
    assert "step counts over 4 runs" in result.to_dict()['timeComplexity']['reasoning']

  def test_first_failure_is_returned(self):
    code = "arr = [1, 2, 3]\nprint(arr[n])\n"
    outcome = analyze_scaling(code, [(1, "n = 1"), (5, "n = 5"), (2, "n = 2")],
                              limits=Limits(max_steps=100))
    assert not outcome.ok
    assert outcome.to_dict()['kind'] == "index-out-of-bounds"

  def test_needs_inputs(self):
    with pytest.raises(ValueError):
      analyze_scaling(LINEAR_SUM, [])


class TestCommandLine:
  """Test the argument parser and the main entry point"""

  def test_parser_defaults(self):
    args = cli.create_arg_parser().parse_args(["prog.py"])
    assert args.script == "prog.py"
    assert args.max_steps == Limits.max_steps
    assert not args.json

  def test_language_from_extension(self):
    assert cli.infer_language("Main.java", None) == "java"
    assert cli.infer_language("solution.cc", None) == "cpp"
    assert cli.infer_language("script.txt", "python") == "python"

  def test_json_report(self, tmp_path, monkeypatch, capsys, factorial_source):
    script = tmp_path / "factorial.py"
    script.write_text(factorial_source, encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["semantix", str(script), "--json"])
    cli.main()
    data = json.loads(capsys.readouterr().out)
    assert data['output'] == "120\n"
    assert data['recursionInvariants'][0]['function'] == "factorial"

  def test_failure_exits_with_status_one(self, tmp_path, monkeypatch, capsys):
    script = tmp_path / "broken.js"
    script.write_text("let arr = [1];\nconsole.log(arr[3]);\n", encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["semantix", str(script)])
    with pytest.raises(SystemExit) as exc_info:
      cli.main()
    assert exc_info.value.code == 1
    assert "Runtime Error" in capsys.readouterr().out

  def test_text_report(self, tmp_path, monkeypatch, capsys, fib_source):
    script = tmp_path / "fib.py"
    script.write_text(fib_source, encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["semantix", str(script)])
    cli.main()
    out = capsys.readouterr().out
    assert "b == fib(i - 1)" in out
    assert "worst O(n)" in out
