"""Nox sessions orchestrating the itinera-auth unit suites."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import nox


PYTHON_VERSIONS = ["3.11"]
PROJECT_ROOT = Path(__file__).parent

nox.options.sessions = [
    "tests(unit_api)",
    "tests(unit_auth)",
    "tests(unit_logging)",
]


def _install_test_requirements(session: nox.Session) -> None:
    """Install the project and the testing toolchain inside the session."""

    session.install("-e", ".[test]")


def _normalize_pythonpath(existing: str | None) -> str:
    parts = [str(PROJECT_ROOT)]
    if existing:
        parts.append(existing)
    return ":".join(part for part in parts if part)


def _run_suite(session: nox.Session, suite: str, targets: Iterable[str]) -> None:
    _install_test_requirements(session)

    env = dict(session.env)
    env["PYTHONPATH"] = _normalize_pythonpath(env.get("PYTHONPATH"))
    env["COVERAGE_FILE"] = str(PROJECT_ROOT / f".coverage.{suite}")

    session.log("Running %s suite: %s", suite, " ".join(targets))
    session.run("coverage", "run", "-m", "pytest", *targets, *session.posargs, env=env)
    session.run("coverage", "report", "-m", env=env)


@nox.session(python=PYTHON_VERSIONS, reuse_venv=True, name="tests(unit_api)")
def tests_unit_api(session: nox.Session) -> None:
    """Execute HTTP surface suites: routes, middleware, error mapping."""

    _run_suite(session, "api", ["tests/unit/api"])


@nox.session(python=PYTHON_VERSIONS, reuse_venv=True, name="tests(unit_auth)")
def tests_unit_auth(session: nox.Session) -> None:
    """Execute identity, session, MFA and storage suites."""

    _run_suite(session, "auth", ["tests/unit/auth"])


@nox.session(python=PYTHON_VERSIONS, reuse_venv=True, name="tests(unit_logging)")
def tests_unit_logging(session: nox.Session) -> None:
    """Execute logging library unit suites."""

    _run_suite(session, "logging", ["tests/unit/logging"])
