"""
Semantix - Main Entry Point
Traces a program, infers its loop and recursion invariants and classifies
its time and space complexity
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional, Dict, Any, List

from error_handling import SemantixError, SemantixSyntaxError
from parsing import parse_bindings, pretty_print_ast
from semantics import parse
from interpreter import Limits, create_interpreter
from analyzer import analyze, analyze_scaling, AnalysisResult, AnalysisError
from stdlib import LANGUAGES, list_builtin_functions


EXTENSIONS = {
    '.py': "python",
    '.js': "javascript",
    '.mjs': "javascript",
    '.java': "java",
    '.cpp': "cpp",
    '.cc': "cpp",
    '.cxx': "cpp",
}


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='Semantix - execution tracer, invariant and complexity analyzer',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s fib.py --input "n = 6"             # Trace and analyze a program
  %(prog)s Main.java --input-file input.txt   # Input bindings from a file
  %(prog)s fib.py --json                      # Print the response object
  %(prog)s fib.py --parse                     # Show the resolved AST
  %(prog)s fib.py --trace-only                # Print the trace only
  %(prog)s fib.py --input "n = {n}" --scale 8,16,32
                                              # Cross-check complexity empirically
  %(prog)s fib.py --max-steps 5000 --debug    # Tighter limits, debug logging
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='Source file to analyze'
  )

  parser.add_argument(
      '-l', '--language',
      choices=LANGUAGES,
      help='Source language (inferred from the file extension by default)'
  )

  parser.add_argument(
      '--input',
      default="",
      help='Input bindings, "name = literal" separated by ";" or newlines'
  )

  parser.add_argument(
      '--input-file',
      help='Read input bindings from a file'
  )

  parser.add_argument(
      '--json',
      action='store_true',
      help='Print the success or failure object as JSON'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse and resolve the file, show the AST'
  )

  parser.add_argument(
      '--trace-only',
      action='store_true',
      help='Execute and print the trace without inference'
  )

  parser.add_argument(
      '--scale',
      help='Comma separated sizes substituted for {n} in the input'
  )

  parser.add_argument(
      '--max-steps',
      type=int,
      default=Limits.max_steps,
      help='Maximum number of trace steps (default: %(default)s)'
  )

  parser.add_argument(
      '--max-call-depth',
      type=int,
      default=Limits.max_call_depth,
      help='Maximum number of nested calls (default: %(default)s)'
  )

  parser.add_argument(
      '--wall-clock-ms',
      type=int,
      default=Limits.wall_clock_ms,
      help='Wall-clock budget in milliseconds (default: %(default)s)'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Enable debug logging for all stages'
  )

  parser.add_argument(
      '--version',
      action='version',
      version='Semantix v0.3.0'
  )

  return parser


def infer_language(script_path: str, language: Optional[str]) -> str:
  if language:
    return language
  suffix = Path(script_path).suffix.lower()
  if suffix not in EXTENSIONS:
    print(f"Error: Cannot infer the language of '{script_path}'")
    print(f"  Hint: Pass --language ({', '.join(LANGUAGES)})")
    sys.exit(1)
  return EXTENSIONS[suffix]


def read_text(path: str, what: str) -> str:
  """Read a UTF-8 file, exiting with a hint on failure"""
  try:
    return Path(path).read_text(encoding='utf-8')
  except FileNotFoundError:
    print(f"Error: {what} '{path}' not found")
    print(f"  Hint: Check the file path and make sure the file exists")
    sys.exit(1)
  except PermissionError:
    print(f"Error: Permission denied reading '{path}'")
    print(f"  Hint: Make sure you have read permissions for this file")
    sys.exit(1)
  except UnicodeDecodeError as e:
    print(f"Error: Cannot decode file '{path}': {e}")
    print(f"  Hint: Make sure the file is a text file with UTF-8 encoding")
    sys.exit(1)


# ============================================================================
# REPORTS
# ============================================================================

def print_error(error: SemantixError, script_path: str) -> None:
  """Banner report for a failed analysis"""
  titles = {
      'syntax': "Syntax Error",
      'runtime': "Runtime Error",
      'resourceExceeded': "Resource Limit Exceeded",
  }
  print(f"\n{'='*70}")
  print(f"{titles.get(error.error_kind, 'Error')} in '{script_path}'")
  print(f"{'='*70}")
  if isinstance(error, SemantixSyntaxError):
    print(f"\n{error}")
  else:
    print(f"\nError: {error.message}")
    if error.line is not None:
      print(f"\nLocation: line {error.line}")
    kind = getattr(error, 'kind', None)
    if kind:
      print(f"Kind: {kind}")
  print(f"\n{'='*70}\n")


def format_variables(variables: Dict[str, Any], width: int = 60) -> str:
  text = ", ".join(f"{name}={value!r}" for name, value in variables.items())
  if len(text) > width:
    text = text[:width - 3] + "..."
  return text


def print_trace(steps: List[Dict[str, Any]]) -> None:
  print(f"Trace ({len(steps)} steps):")
  for i, step in enumerate(steps, 1):
    frame = step['callStack'][-1]
    event = step['event']
    detail = ""
    if event == "call":
      detail = f" -> {step['callee']}"
    elif event == "branch":
      detail = f" [{'taken' if step['branch'] else 'skipped'}]"
    print(f"  {i:>4}  line {step['line']:<4} {event:<7}{detail:<12} {frame:<20} "
          f"{format_variables(step['variables'])}")
    if 'output' in step:
      print(f"        output: {step['output']}")


def print_report(result: AnalysisResult, show_trace: bool = True) -> None:
  """Human-readable report of a successful analysis"""
  response = result.to_dict()
  if show_trace:
    print_trace(response['trace'])
    print()

  print("Output:")
  for line in result.trace.output_lines or ["(none)"]:
    print(f"  {line}")

  print("\nLoop invariants:")
  if not response['loopInvariants']:
    print("  (none found)")
  for invariant in response['loopInvariants']:
    print(f"  {invariant['location']}: {invariant['invariant']}")
    print(f"    {invariant['explanation']}")

  print("\nRecursion invariants:")
  if not response['recursionInvariants']:
    print("  (none found)")
  for invariant in response['recursionInvariants']:
    print(f"  {invariant['function']}:")
    print(f"    base case:      {invariant['baseCase']}")
    print(f"    recursive case: {invariant['recursiveCase']}")
    print(f"    {invariant['explanation']}")

  time = response['timeComplexity']
  space = response['spaceComplexity']
  print("\nTime complexity:")
  print(f"  best {time['best']}, average {time['average']}, worst {time['worst']}")
  print(f"  {time['reasoning']}")
  print("\nSpace complexity:")
  print(f"  {space['class']}")
  print(f"  {space['reasoning']}")


# ============================================================================
# COMMANDS
# ============================================================================

def parse_file(script_path: str, language: str, debug: bool = False) -> None:
  """Parse and resolve a source file and show its AST"""
  source = read_text(script_path, "Script file")
  try:
    program = parse(source, language, debug)
  except SemantixError as e:
    print_error(e, script_path)
    sys.exit(1)

  print(f"Parsed {script_path} ({language}):")
  print("=" * 50)
  for name, function in program.functions.items():
    print(f"\nFunction {name}:")
    print(pretty_print_ast(function))
  if program.entry is not None:
    print("\nEntry point main:")
    print(pretty_print_ast(program.entry))
  print(f"\nTop level ({len(program.body)} statements):")
  for node in program.body:
    print(pretty_print_ast(node))


def trace_file(script_path: str, language: str, input_text: str, limits: Limits,
               as_json: bool = False, debug: bool = False) -> None:
  """Execute a source file and print its trace"""
  source = read_text(script_path, "Script file")
  interpreter = create_interpreter(debug)
  try:
    trace = interpreter.run(source, parse_bindings(input_text, language), language, limits)
  except SemantixError as e:
    if as_json:
      print(json.dumps(e.to_response(), indent=2))
    else:
      print_error(e, script_path)
    sys.exit(1)

  if as_json:
    print(json.dumps({'trace': trace.to_list(), 'output': trace.output}, indent=2))
    return
  print_trace(trace.to_list())
  print("\nOutput:")
  for line in trace.output_lines or ["(none)"]:
    print(f"  {line}")


def analyze_file(script_path: str, language: str, input_text: str, limits: Limits,
                 scale: Optional[str] = None, as_json: bool = False,
                 debug: bool = False) -> None:
  """Run the full analysis of a source file"""
  source = read_text(script_path, "Script file")
  if scale:
    try:
      sizes = [int(size) for size in scale.split(',') if size.strip()]
    except ValueError:
      print(f"Error: --scale expects comma separated integers, got '{scale}'")
      sys.exit(1)
    if '{n}' not in input_text:
      print("Error: --scale needs an input containing {n}")
      print('  Hint: --input "n = {n}" --scale 8,16,32')
      sys.exit(1)
    inputs = [(size, input_text.replace('{n}', str(size))) for size in sizes]
    outcome = analyze_scaling(source, inputs, language, limits, debug=debug)
  else:
    outcome = analyze(source, input_text, language, limits, debug=debug)

  if as_json:
    print(json.dumps(outcome.to_dict(), indent=2))
  elif isinstance(outcome, AnalysisError):
    print_error(outcome.error, script_path)
  else:
    print_report(outcome)
  if isinstance(outcome, AnalysisError):
    sys.exit(1)


def show_language_info() -> None:
  """Show supported languages and their builtins"""
  print("Semantix")
  print("=" * 50)
  print("Deterministic tracing with inferred invariants and complexity for:")
  for language in LANGUAGES:
    builtins = list_builtin_functions(language)
    print(f"• {language} ({len(builtins)} builtins)")
  print()


def main() -> None:
  """Main entry point for Semantix"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args()

  if args.debug:
    logging.basicConfig(level=logging.DEBUG,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

  if not args.script:
    arg_parser.print_help()
    print()
    show_language_info()
    return

  if not Path(args.script).exists():
    print(f"Error: Script file '{args.script}' does not exist")
    sys.exit(1)

  language = infer_language(args.script, args.language)
  input_text = args.input
  if args.input_file:
    input_text = read_text(args.input_file, "Input file")

  try:
    limits = Limits(args.max_steps, args.max_call_depth, args.wall_clock_ms)
  except ValueError as e:
    print(f"Error: {e}")
    sys.exit(1)

  if args.parse:
    parse_file(args.script, language, debug=args.debug)
  elif args.trace_only:
    trace_file(args.script, language, input_text, limits, as_json=args.json, debug=args.debug)
  else:
    analyze_file(args.script, language, input_text, limits, scale=args.scale,
                 as_json=args.json, debug=args.debug)


if __name__ == "__main__":
  main()
