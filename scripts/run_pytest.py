"""Run the classreplay test suite with a Python 3.11+ guard.

Extra arguments are passed through to pytest:

    python scripts/run_pytest.py -k substitute
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def main(argv: list[str]) -> int:
    """Run pytest only when Python 3.11+ is available."""
    if sys.version_info < (3, 11):
        print("classreplay tests require Python 3.11+; skipping.")
        return 0

    return subprocess.call(
        [sys.executable, "-m", "pytest", "tests/", "--tb=short", "--strict-markers", *argv],
        cwd=ROOT,
    )


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
