import os
import subprocess
import sys
from pathlib import Path

import pytest

torch = pytest.importorskip("torch")

REPO_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = REPO_ROOT / "src"


def _env_with_src() -> dict[str, str]:
    env = os.environ.copy()
    env["PYTHONPATH"] = str(SRC_PATH)
    return env


def test_profile_script_reports_both_variants() -> None:
    cmd = [
        sys.executable,
        "scripts/profile_solver.py",
        "--runs",
        "1",
        "--dimension",
        "16",
        "--history",
        "3",
        "--max-iter",
        "100",
    ]
    result = subprocess.run(
        cmd,
        cwd=REPO_ROOT,
        env=_env_with_src(),
        capture_output=True,
        text=True,
        check=True,
    )
    lines = [line for line in result.stdout.splitlines() if "time_ms=" in line]
    assert len(lines) == 2
    assert "plain" in lines[0]
    assert "anderson(K=3" in lines[1]
    assert all("converged=True" in line for line in lines)
