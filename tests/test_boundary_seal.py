"""Boundary seal tests — verify architectural contracts are enforced.

These tests fail if internal module boundaries are violated, ensuring the
engine stays independent of git and of the command line:

- retcon/services/ talks to storage only through the HistoryStore protocol.
- The planner never touches storage at all.
- Nothing below retcon/cli/ imports typer.
"""

from __future__ import annotations

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
PACKAGE = ROOT / "retcon"


def _imported_modules(py_file: Path) -> list[str]:
    tree = ast.parse(py_file.read_text(), filename=str(py_file))
    modules: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and node.module:
            modules.append(node.module)
        elif isinstance(node, ast.Import):
            modules.extend(alias.name for alias in node.names)
    return modules


def _violations(files: list[Path], forbidden: set[str]) -> list[str]:
    found: list[str] = []
    for py_file in files:
        for module in _imported_modules(py_file):
            for fb in forbidden:
                if module == fb or module.startswith(f"{fb}."):
                    found.append(f"{py_file.relative_to(ROOT)}: {module}")
    return found


# ── Engine services are storage-agnostic ──


class TestServicesBoundary:
    def test_services_do_not_import_git_or_cli(self):
        """retcon/services/ must not import GitPython, typer or the concrete store."""
        files = sorted((PACKAGE / "services").rglob("*.py"))
        assert files, "services package not found"
        forbidden = {"git", "typer", "retcon.git_store", "retcon.cli", "subprocess"}
        violations = _violations(files, forbidden)
        assert violations == [], f"Forbidden imports found: {violations}"

    def test_planner_is_pure(self):
        """The planner computes from the snapshot and pending changes only."""
        planner = PACKAGE / "services" / "rewrite_planner.py"
        forbidden = {"retcon.storage", "retcon.services.transactional_apply", "retcon.services.commit_rewriter"}
        violations = _violations([planner], forbidden)
        assert violations == [], f"Planner imports storage: {violations}"

    def test_core_types_do_not_import_services(self):
        """models, storage, validation and errors sit below the services layer."""
        files = [PACKAGE / name for name in ("models.py", "storage.py", "validation.py", "errors.py")]
        violations = _violations(files, {"retcon.services", "retcon.git_store", "git", "typer"})
        assert violations == [], f"Core modules reach upward: {violations}"


# ── typer is confined to the CLI ──


class TestCliBoundary:
    def test_typer_only_under_cli(self):
        files = [
            p for p in sorted(PACKAGE.rglob("*.py"))
            if "cli" not in p.relative_to(PACKAGE).parts
        ]
        violations = _violations(files, {"typer"})
        assert violations == [], f"typer imported outside retcon/cli: {violations}"

    def test_git_store_is_the_only_gitpython_user(self):
        files = [
            p for p in sorted(PACKAGE.rglob("*.py"))
            if p.name != "git_store.py"
        ]
        violations = _violations(files, {"git"})
        assert violations == [], f"GitPython imported outside git_store: {violations}"
