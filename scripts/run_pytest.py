"""Run the passkit test suite with a Python 3.11+ guard.

Extra arguments are passed through to pytest, e.g.::

    python scripts/run_pytest.py -k verify
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def main(argv: list[str]) -> int:
    if sys.version_info < (3, 11):
        print("passkit tests require Python 3.11+; skipping.")
        return 0

    return subprocess.call(
        [sys.executable, "-m", "pytest", "tests/", "--tb=short", "--strict-markers", *argv],
        cwd=ROOT,
    )


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
