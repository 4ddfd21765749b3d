"""Root conftest.py for the labio monorepo.

Puts every package's ``src`` directory on the import path, registers the
custom markers, and marks tests that replace hardware with mocks or stubs.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


PROJECT_ROOT = Path(__file__).parent
for pkg_dir in sorted(PROJECT_ROOT.glob("labio-*/src")):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line(
        "markers",
        "uses_mock: Test uses mocks or stub transports (auto-detected or manually marked)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration test requiring a real instrument",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


class MockDetector(ast.NodeVisitor):
    """AST visitor that spots mock or stub usage in a test function."""

    STAND_IN_WORDS = ("mock", "stub", "fake", "simulated")

    MOCK_PATTERNS = frozenset(
        {
            "MagicMock",
            "Mock",
            "patch",
            "create_autospec",
            "PropertyMock",
            "mocker",
        }
    )

    def __init__(self) -> None:
        self.uses_mock = False

    def visit_Call(self, node: ast.Call) -> None:
        """Flag calls to mock factories and stub classes."""
        name = None
        if isinstance(node.func, ast.Name):
            name = node.func.id
        elif isinstance(node.func, ast.Attribute):
            name = node.func.attr
        if name is not None:
            lowered = name.lower()
            if name in self.MOCK_PATTERNS or any(w in lowered for w in self.STAND_IN_WORDS):
                self.uses_mock = True
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        """Flag mock fixtures in the parameter list."""
        for arg in node.args.args:
            if "mock" in arg.arg.lower() or arg.arg == "mocker":
                self.uses_mock = True
        self.generic_visit(node)


def _check_test_uses_mock(item: Item) -> bool:
    """Return True if a test function uses mocking.

    Args:
        item: pytest test item.
    """
    if item.get_closest_marker("uses_mock"):
        return True

    name_lower = item.name.lower()
    if any(w in name_lower for w in MockDetector.STAND_IN_WORDS):
        return True

    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        return False
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return False
    detector = MockDetector()
    detector.visit(tree)
    return detector.uses_mock


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Auto-detect and mark tests that use mocking.

    Args:
        config: pytest configuration object.
        items: List of collected test items.
    """
    uses_mock_marker = pytest.mark.uses_mock
    for item in items:
        if item.get_closest_marker("uses_mock"):
            continue
        if _check_test_uses_mock(item):
            item.add_marker(uses_mock_marker)


def pytest_report_header(config: Config) -> list[str]:
    """Add a header line naming the suite.

    Args:
        config: pytest configuration object.

    Returns:
        List of header lines.
    """
    return ["labio monorepo test suite"]
