"""
Semantix analysis pipeline

source + input -> Program -> ExecutionTrace -> invariants and complexity.
``analyze`` returns exactly one AnalysisResult or AnalysisError per request;
no stage runs on a partial trace.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pykka

from error_handling import SemantixError, SemantixSyntaxError
from parsing import parse_bindings
from semantics import Program, parse
from interpreter import ExecutionTrace, Limits, trace_program
from invariants import (
  LoopInvariant,
  RecursionInvariant,
  infer_loop_invariants,
  infer_recursion_invariants,
)
from complexity import ComplexityResult, estimate_complexity
from stdlib import LANGUAGES

logger = logging.getLogger(__name__)

__all__ = [
  'AnalysisResult', 'AnalysisError', 'Limits', 'analyze', 'analyze_request',
  'AnalysisActor', 'AnalysisWorkerPool', 'analyze_scaling',
]


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class AnalysisResult:
  program: Program
  trace: ExecutionTrace
  loop_invariants: Tuple[LoopInvariant, ...]
  recursion_invariants: Tuple[RecursionInvariant, ...]
  complexity: ComplexityResult
  ok = True

  @property
  def output(self) -> str:
    return self.trace.output

  def to_dict(self) -> Dict[str, Any]:
    return {
        'trace': self.trace.to_list(),
        'output': self.trace.output,
        'loopInvariants': [inv.to_dict() for inv in self.loop_invariants],
        'recursionInvariants': [inv.to_dict() for inv in self.recursion_invariants],
        'timeComplexity': self.complexity.time_dict(),
        'spaceComplexity': self.complexity.space_dict(),
    }


@dataclass(frozen=True)
class AnalysisError:
  error: SemantixError
  ok = False

  @property
  def error_kind(self) -> str:
    return self.error.error_kind

  @property
  def message(self) -> str:
    return self.error.message

  @property
  def line(self) -> Optional[int]:
    return self.error.line

  def to_dict(self) -> Dict[str, Any]:
    return self.error.to_response()


Outcome = Union[AnalysisResult, AnalysisError]


# ============================================================================
# PIPELINE
# ============================================================================

def analyze(code: str, input: str = "", language: str = "python",
            limits: Union[Limits, Dict[str, Any], None] = None,
            samples: Optional[Sequence[Tuple[int, Any]]] = None,
            debug: bool = False) -> Outcome:
  """
  Run one analysis request

  Args:
    code: Source text of the program
    input: Input bindings, one ``name = literal`` per line
    language: python, javascript, java or cpp
    limits: Limits or a dict with maxSteps, maxCallDepth, wallClockMs
    samples: Optional (size, trace) pairs for the empirical complexity fit

  Returns:
    AnalysisResult, or AnalysisError for syntax, runtime and resource failures

  Raises:
    ValueError for an unsupported language or malformed limits
  """
  if language not in LANGUAGES:
    raise ValueError(f"Unsupported language: {language}")
  if not isinstance(limits, Limits):
    limits = Limits.from_dict(limits)

  try:
    program = parse(code, language, debug)
    bindings = parse_bindings(input, language)
    trace = trace_program(program, bindings, limits, debug)
  except SemantixError as exc:
    if debug:
      logger.debug("analysis failed: %s", exc)
    return AnalysisError(exc)

  loop_invariants = infer_loop_invariants(trace, program, debug)
  recursion_invariants = infer_recursion_invariants(trace, program, debug)
  complexity = estimate_complexity(program, samples, trace.max_depth, debug)
  if debug:
    logger.debug("analysis finished: %d steps, %d loop and %d recursion invariants",
                 len(trace), len(loop_invariants), len(recursion_invariants))
  return AnalysisResult(
      program=program,
      trace=trace,
      loop_invariants=tuple(loop_invariants),
      recursion_invariants=tuple(recursion_invariants),
      complexity=complexity,
  )


def _request_args(request: Dict[str, Any]) -> Dict[str, Any]:
  if not isinstance(request, dict):
    raise ValueError("request must be a JSON object")
  if not isinstance(request.get('code'), str):
    raise ValueError("request requires a 'code' string")
  unknown = set(request) - {'code', 'input', 'language', 'limits'}
  if unknown:
    raise ValueError(f"Unknown request keys: {', '.join(sorted(unknown))}")
  if not isinstance(request.get('input') or "", str):
    raise ValueError("'input' must be a string")
  if request.get('limits') is not None and not isinstance(request['limits'], dict):
    raise ValueError("'limits' must be an object")
  return {
      'code': request['code'],
      'input': request.get('input') or "",
      'language': request.get('language', "python"),
      'limits': request.get('limits'),
  }


def analyze_request(request: Dict[str, Any], debug: bool = False) -> Dict[str, Any]:
  """
  JSON boundary: request object in, success or failure object out

  A request that cannot be run at all (missing code, unknown keys, an
  unsupported language, malformed limits) is answered with a syntax failure
  that carries no position.
  """
  try:
    args = _request_args(request)
    if args['language'] not in LANGUAGES:
      raise ValueError(f"Unsupported language: {args['language']}")
    args['limits'] = Limits.from_dict(args['limits'])
  except ValueError as exc:
    if debug:
      logger.debug("rejected request: %s", exc)
    return SemantixSyntaxError(f"Invalid request: {exc}", line=None, column=None).to_response()
  return analyze(debug=debug, **args).to_dict()


# ============================================================================
# CONCURRENT ANALYSES (Using Pykka)
# ============================================================================

class AnalysisActor(pykka.ThreadingActor):
  """Actor that runs one analysis per message"""

  def __init__(self, debug: bool = False):
    super().__init__()
    self.debug = debug

  def on_receive(self, message):
    """Message is a request dict, optionally carrying 'samples'"""
    args = _request_args({k: v for k, v in message.items() if k != 'samples'})
    return analyze(samples=message.get('samples'), debug=self.debug, **args)


class AnalysisWorkerPool:
  """Fixed set of analysis actors fed round-robin"""

  def __init__(self, size: int = 4, debug: bool = False):
    if size < 1:
      raise ValueError("pool size must be at least 1")
    self.size = size
    self.debug = debug
    self.actors: List[pykka.ActorRef] = []

  def start(self) -> 'AnalysisWorkerPool':
    if not self.actors:
      self.actors = [AnalysisActor.start(self.debug) for _ in range(self.size)]
    return self

  def stop(self) -> None:
    for actor_ref in self.actors:
      actor_ref.stop()
    self.actors = []

  def __enter__(self) -> 'AnalysisWorkerPool':
    return self.start()

  def __exit__(self, exc_type, exc, tb) -> None:
    self.stop()

  def map(self, requests: Sequence[Dict[str, Any]],
          timeout: Optional[float] = None) -> List[Outcome]:
    """Analyse requests concurrently; results keep the request order"""
    self.start()
    futures = [self.actors[i % len(self.actors)].ask(request, block=False)
               for i, request in enumerate(requests)]
    return pykka.get_all(futures, timeout=timeout)


def analyze_scaling(code: str, inputs: Sequence[Tuple[int, str]], language: str = "python",
                    limits: Union[Limits, Dict[str, Any], None] = None,
                    pool: Optional[AnalysisWorkerPool] = None,
                    debug: bool = False) -> Outcome:
  """
  Analyse the same program at several input sizes

  ``inputs`` holds (size, input text) pairs. Every run is traced on the
  pool; the result for the first input is returned with its complexity
  cross-checked against the step counts of all runs. The first failure is
  returned as is.
  """
  if not inputs:
    raise ValueError("analyze_scaling needs at least one input")
  if isinstance(limits, Limits):
    limits = limits.to_dict()
  requests = [{'code': code, 'input': text, 'language': language, 'limits': limits}
              for _, text in inputs]

  owned = pool is None
  pool = pool or AnalysisWorkerPool(min(len(requests), 4), debug)
  try:
    outcomes = pool.map(requests)
  finally:
    if owned:
      pool.stop()

  for outcome in outcomes:
    if not outcome.ok:
      return outcome
  samples = [(size, outcome.trace) for (size, _), outcome in zip(inputs, outcomes)]
  first = outcomes[0]
  complexity = estimate_complexity(first.program, samples, first.trace.max_depth, debug)
  if debug:
    logger.debug("scaling fit over %d sizes: %s", len(samples), complexity.empirical)
  return replace(first, complexity=complexity)
