"""
Import-boundary enforcement for the trust ledger packages.

1. Kernel isolation   -- trust_kernel/** never imports trust_config or
                         trust_services.
2. Domain purity      -- trust_kernel/domain/** never imports SQLAlchemy,
                         the db layer, services or selectors.
3. Selector read-only -- trust_kernel/selectors/** never imports services
                         or the db layer.
4. Config centralised -- outside trust_config, nothing imports its internal
                         loader; runtime code goes through get_active_config().
5. Service direction  -- trust_services/** never imports trust_config.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
RUNTIME_PACKAGES = ("trust_kernel", "trust_services", "trust_config")


def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = ast.parse(filepath.read_text(encoding="utf-8"), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if _matches_any(module, forbidden):
                found.append(f"{path.relative_to(REPO_ROOT)}:{lineno} imports {module}")
    return found


class TestKernelIsolation:
    def test_packages_exist(self):
        for package in RUNTIME_PACKAGES:
            assert _python_files(package), f"{package} has no modules"

    def test_kernel_does_not_import_outer_layers(self):
        assert _violations("trust_kernel", ("trust_config", "trust_services")) == []

    def test_domain_is_pure(self):
        violations = _violations(
            "trust_kernel/domain",
            (
                "sqlalchemy",
                "trust_kernel.db",
                "trust_kernel.services",
                "trust_kernel.selectors",
            ),
        )
        assert violations == []

    def test_selectors_are_read_only(self):
        violations = _violations(
            "trust_kernel/selectors",
            ("sqlalchemy", "trust_kernel.db", "trust_kernel.services", "trust_kernel.models"),
        )
        assert violations == []


class TestConfigCentralisation:
    def test_loader_only_used_inside_trust_config(self):
        violations = []
        for package in ("trust_kernel", "trust_services"):
            violations += _violations(package, ("trust_config.loader",))
        assert violations == []

    def test_services_do_not_read_config(self):
        assert _violations("trust_services", ("trust_config",)) == []

    def test_no_direct_yaml_outside_loader(self):
        offenders = []
        for package in RUNTIME_PACKAGES:
            for path in _python_files(package):
                if path.name == "loader.py" and path.parent.name == "trust_config":
                    continue
                if any(_matches_any(m, ("yaml",)) for _, m in _extract_imports(path)):
                    offenders.append(str(path.relative_to(REPO_ROOT)))
        assert offenders == []
