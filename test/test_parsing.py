"""
Parsing and resolution tests for the python and brace dialects
"""

import pytest
from parsing import parse_bindings, find_nodes
from semantics import parse
from error_handling import SemantixSyntaxError


class TestPythonParsing:
  """Test parsing of the python dialect"""

  def test_function_definition(self, parser):
    """A def becomes a FUNCTION_DEF with its parameters"""
    nodes = parser.parse_string("def add(a, b=2):\n    return a + b\n")
    assert len(nodes) == 1
    assert nodes[0].type == "FUNCTION_DEF"
    assert nodes[0]['name'] == "add"
    assert [param[0] for param in nodes[0]['params']] == ["a", "b"]

  def test_if_chain_collects_branches(self, parser):
    code = (
        "x = 3\n"
        "if x < 1:\n"
        "    y = 1\n"
        "elif x < 5:\n"
        "    y = 2\n"
        "else:\n"
        "    y = 3\n"
    )
    nodes = parser.parse_string(code)
    chain = nodes[1]
    assert chain.type == "IF"
    assert [branch['line'] for branch in chain['branches']] == [2, 4]
    assert chain['orelse'] is not None

  def test_for_over_range(self, parser):
    nodes = parser.parse_string("for i in range(3):\n    print(i)\n")
    assert nodes[0].type == "FOR_EACH"
    assert nodes[0]['targets'] == ("i",)

  def test_condition_text_is_verbatim(self, fib_source):
    program = parse(fib_source)
    assert program.conditions[2] == "n <= 1"

  def test_functions_are_hoisted(self, fib_source):
    program = parse(fib_source)
    assert list(program.functions) == ["fib"]
    assert all(node.type != "FUNCTION_DEF" for node in program.body)


class TestBraceParsing:
  """Test parsing of javascript, java and cpp"""

  def test_java_main_is_entry(self):
    code = """
public class Main {
    static int square(int x) {
        return x * x;
    }

    public static void main(String[] args) {
        System.out.println(square(4));
    }
}
"""
    program = parse(code, "java")
    assert program.entry is not None
    assert "main" not in program.functions
    assert "square" in program.functions

  def test_c_style_for(self):
    code = """
function total(n) {
  let acc = 0;
  for (let i = 0; i < n; i++) {
    acc += i;
  }
  return acc;
}
"""
    program = parse(code, "javascript")
    loops = find_nodes(list(program.functions.values()), "FOR")
    assert len(loops) == 1
    assert program.conditions[loops[0].line] == "i < n"
    assert loops[0]['update'][0].type == "AUG_ASSIGN"

  def test_cout_becomes_print(self):
    code = """
#include <iostream>
using namespace std;

int main() {
    int x = 7;
    cout << x << endl;
    return 0;
}
"""
    program = parse(code, "cpp")
    prints = find_nodes(list(program.statements), "PRINT")
    assert len(prints) == 1


class TestSyntaxErrors:
  """Malformed source is reported with a line"""

  def test_python_missing_block(self):
    with pytest.raises(SemantixSyntaxError) as exc_info:
      parse("def f(n):\n")
    assert exc_info.value.line == 1
    assert "indented block" in exc_info.value.message

  def test_unterminated_brace_block(self):
    code = "function f(n) {\n  return n;\n\nconsole.log(f(1));\n"
    with pytest.raises(SemantixSyntaxError) as exc_info:
      parse(code, "javascript")
    assert exc_info.value.line == 1
    assert exc_info.value.to_response()['errorKind'] == "syntax"

  def test_break_outside_loop(self):
    with pytest.raises(SemantixSyntaxError) as exc_info:
      parse("x = 1\nbreak\n")
    assert exc_info.value.line == 2

  def test_nested_function_rejected(self):
    code = "def outer():\n    def inner():\n        return 1\n    return inner()\n"
    with pytest.raises(SemantixSyntaxError):
      parse(code)

  def test_unsupported_language(self):
    with pytest.raises(ValueError):
      parse("x = 1", "ruby")


class TestInputBindings:
  """Test the name = literal input format"""

  def test_lines_and_semicolons(self):
    bindings = parse_bindings("n = 5; arr = [3, 1, 2]\nname = 'ab'")
    assert bindings == {'n': 5, 'arr': [3, 1, 2], 'name': "ab"}

  def test_negative_literal(self):
    assert parse_bindings("x = -4") == {'x': -4}

  def test_empty_input(self):
    assert parse_bindings("") == {}

  def test_non_literal_is_syntax_error(self):
    with pytest.raises(SemantixSyntaxError) as exc_info:
      parse_bindings("n = 5\nm = n + 1")
    assert exc_info.value.line == 2


class TestResolution:
  """Test the resolution pass on parsed statements"""

  def test_analyzer_resolves_parsed_nodes(self, parser, semantic_analyzer):
    source = "def double(x):\n    return 2 * x\n\nprint(double(len([1, 2])))\n"
    program = semantic_analyzer.analyze(parser.parse_string(source), "python", source)
    assert list(program.functions) == ["double"]
    assert find_nodes(program.body, "CALL_USER")[0]['name'] == "double"
    assert find_nodes(program.body, "CALL_BUILTIN")[0]['name'] == "len"
    assert semantic_analyzer.parse(source).functions.keys() == program.functions.keys()

  def test_builtins_listing(self, semantic_analyzer):
    assert "len" in semantic_analyzer.builtins("python")
    assert semantic_analyzer.builtins() == sorted(semantic_analyzer.builtins())
