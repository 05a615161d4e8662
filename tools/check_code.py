#!/usr/bin/env python3
"""
Black + MyPy code quality checker for sdk-resilience.

Runs each step through poetry and stops at the first failure, returning
that step's exit code.

Usage:
    poetry run python -m tools.check_code
"""

from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass


@dataclass(frozen=True)
class CheckStep:
    name: str
    command: tuple[str, ...]


STEPS: tuple[CheckStep, ...] = (
    CheckStep("Black formatter", ("black", "--check", "src/sdk_resilience/", "tools/", "tests/")),
    # Paths match pyproject.toml [tool.mypy] files configuration
    CheckStep("MyPy type checker", ("mypy", "src/sdk_resilience", "tests")),
)


def run_step(step: CheckStep) -> int:
    print(f"🔍 Running {step.name}...")
    result = subprocess.run(["poetry", "run", *step.command], check=False)
    if result.returncode != 0:
        print(f"❌ {step.name} failed with exit code {result.returncode}")
    else:
        print(f"✅ {step.name} passed!\n")
    return result.returncode


def main() -> int:
    """Run every check step with fail-fast."""
    for step in STEPS:
        returncode = run_step(step)
        if returncode != 0:
            return returncode

    print("🎉 All code quality checks passed!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
