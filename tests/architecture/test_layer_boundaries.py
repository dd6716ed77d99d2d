"""
Import-boundary enforcement for the procurement layers.

1. Kernel isolation   -- procurement_kernel/** may not import
                         procurement_config or procurement_services.
2. Domain purity      -- procurement_kernel/domain/** may not import the ORM,
                         models, services or selectors (db.types is pure and
                         allowed).
3. Clock discipline   -- only domain/clock.py reads the wall clock.
4. Commit ownership   -- only the facade and db.engine.session_scope call
                         ``commit()``.

All scanning is done via AST -- these tests are read-only.
"""

import ast
import glob
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    """Return all .py files under *package*, sorted for deterministic order."""
    return sorted(glob.glob(f"{ROOT / package}/**/*.py", recursive=True))


def _tree(filepath: str) -> ast.AST:
    return ast.parse(Path(filepath).read_text(), filename=filepath)


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    results: list[tuple[int, str]] = []
    for node in ast.walk(_tree(filepath)):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    """True if *module* equals or is a child of any prefix."""
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _attribute_calls(filepath: str, names: set[str]) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for calls whose attr is in *names*."""
    results: list[tuple[int, str]] = []
    for node in ast.walk(_tree(filepath)):
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Attribute)
            and node.func.attr in names
        ):
            receiver = node.func.value
            label = receiver.id if isinstance(receiver, ast.Name) else type(receiver).__name__
            results.append((node.lineno, f"{label}.{node.func.attr}"))
    return results


def _relative(filepath: str) -> str:
    return str(Path(filepath).relative_to(ROOT))


class TestKernelIsolation:
    """The kernel knows nothing about configuration files or the facade."""

    def test_kernel_does_not_import_outer_layers(self):
        violations = [
            f"{_relative(f)}:{line} imports {module}"
            for f in _python_files("procurement_kernel")
            for line, module in _extract_imports(f)
            if _matches_any(module, ("procurement_config", "procurement_services"))
        ]

        assert violations == []


class TestDomainPurity:
    """Domain modules are pure values and functions."""

    FORBIDDEN = (
        "sqlalchemy",
        "procurement_kernel.db.base",
        "procurement_kernel.db.engine",
        "procurement_kernel.db.immutability",
        "procurement_kernel.models",
        "procurement_kernel.services",
        "procurement_kernel.selectors",
    )

    def test_domain_has_no_persistence_imports(self):
        violations = [
            f"{_relative(f)}:{line} imports {module}"
            for f in _python_files("procurement_kernel/domain")
            for line, module in _extract_imports(f)
            if _matches_any(module, self.FORBIDDEN)
        ]

        assert violations == []


class TestClockDiscipline:
    """Time comes from the injected Clock."""

    def test_wall_clock_read_only_in_clock_module(self):
        offenders = []
        for package in ("procurement_kernel", "procurement_services", "procurement_config"):
            for f in _python_files(package):
                if f.endswith("domain/clock.py"):
                    continue
                for line, call in _attribute_calls(f, {"now", "utcnow", "today"}):
                    if call.split(".")[0] in ("datetime", "date"):
                        offenders.append(f"{_relative(f)}:{line} {call}")

        assert offenders == []


class TestCommitOwnership:
    """Services flush; only the transaction boundary commits."""

    ALLOWED = {
        "procurement_services/procurement_service.py",
        "procurement_kernel/db/engine.py",
    }

    def test_only_boundary_commits(self):
        offenders = [
            f"{_relative(f)}:{line}"
            for package in ("procurement_kernel", "procurement_services", "procurement_config")
            for f in _python_files(package)
            if _relative(f) not in self.ALLOWED
            for line, _ in _attribute_calls(f, {"commit"})
        ]

        assert offenders == []
