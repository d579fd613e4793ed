"""
Test configuration for Semantix tests
"""

import pytest
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from parsing import create_parser
from interpreter import create_interpreter
from semantics import create_analyzer


FIB_SOURCE = """\
def fib(n):
    if n <= 1:
        return n
    a, b = 0, 1
    for i in range(2, n + 1):
        a, b = b, a + b
    return b

print(fib(6))
"""

FACTORIAL_SOURCE = """\
def factorial(n):
    if n <= 1:
        return 1
    return n * factorial(n - 1)

print(factorial(5))
"""


@pytest.fixture
def parser():
  """Fresh parser for each test"""
  return create_parser()


@pytest.fixture
def interpreter():
  """Fresh tracer for each test"""
  return create_interpreter()


@pytest.fixture
def fib_source():
  return FIB_SOURCE


@pytest.fixture
def factorial_source():
  return FACTORIAL_SOURCE


@pytest.fixture
def semantic_analyzer():
  """Fresh resolution pass for each test"""
  return create_analyzer()
