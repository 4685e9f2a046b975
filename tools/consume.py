"""Check generated Formula wire fixtures against the current code.

`python tools/consume.py --fill` first regenerates `fixtures/` by running
`pytest --output fixtures`, then checks the result.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import subprocess
import sys

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from cryptoformulas.errors import SpecError  # noqa: E402
from tools.fixtures_io import check_vector  # noqa: E402

FIXTURES = ROOT / "fixtures"


def _fill() -> int:
    env = dict(os.environ, PYTHONPATH=os.pathsep.join([str(ROOT / "src"), str(ROOT)]))
    return subprocess.call(
        [sys.executable, "-m", "pytest", str(ROOT / "tests"), "-q", "--output", str(FIXTURES)],
        env=env,
        cwd=str(ROOT),
    )


def _check_wire_vectors(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())
    for vec in data.get("vectors", []):
        try:
            mismatches = check_vector(vec)
        except SpecError as e:
            failures.append(f"{vec['name']}: {e.code.name}")
            continue
        failures.extend(f"{vec['name']}: {field}_mismatch" for field in mismatches)
    return failures


def main(argv: list[str]) -> None:
    if "--fill" in argv and _fill() != 0:
        raise SystemExit("pytest failed while filling fixtures")

    failures: list[str] = []

    wire = FIXTURES / "formula_wire_format.json"
    if wire.exists():
        failures.extend(_check_wire_vectors(wire))

    if failures:
        for f in failures:
            print("FAIL", f)
        raise SystemExit(1)

    print("All fixtures passed")


if __name__ == "__main__":
    main(sys.argv[1:])
