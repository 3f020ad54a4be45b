"""Guard against GUI toolkit imports in the engine modules.

The binning and vertex modules run on worker threads and must stay usable
without a display. Run this script in CI or locally.
"""

from __future__ import annotations

from pathlib import Path
import sys
from typing import List, Optional

ROOT = Path(__file__).resolve().parent.parent

CORE_MODULES = [
    "src/distview/discretize.py",
    "src/distview/binset.py",
    "src/distview/binning.py",
    "src/distview/compute.py",
    "src/distview/context.py",
    "src/distview/parallel.py",
    "src/distview/redraw.py",
    "src/distview/shared.py",
    "src/distview/stale_result_guard.py",
]

FORBIDDEN = ("PyQt", "PySide", "QtCore", "QtWidgets", "QtOpenGL", "pyplot")


def find_violations(root: Path = ROOT, modules: Optional[List[str]] = None) -> List[str]:
    """Return one message per module that mentions a forbidden token."""
    bad = []
    for rel in modules or CORE_MODULES:
        path = root / rel
        if not path.exists():
            bad.append(f"{rel} is missing")
            continue
        text = path.read_text(encoding="utf-8", errors="ignore")
        for token in FORBIDDEN:
            if token in text:
                bad.append(f"{rel} contains '{token}'")
                break
    return bad


def main() -> int:
    bad = find_violations()
    if bad:
        sys.stderr.write("GUI import guard failed:\n")
        sys.stderr.write("\n".join(bad))
        sys.stderr.write("\n")
        return 2
    print("GUI import guard passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
