from __future__ import annotations

import hashlib
import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "register_module.py"


def _run_script(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=check,
        capture_output=True,
        text=True,
    )


def test_register_script_stores_only_key_hash() -> None:
    output = _run_script("--module-id", "local-worker", "--api-key", "worker-secret-key").stdout
    expected_hash = hashlib.sha256(b"worker-secret-key").hexdigest()

    assert f"'{expected_hash}'" in output
    assert "array['jobs:read', 'jobs:write']::text[]" in output
    assert "select id, 'worker', " in output


def test_register_script_uses_kind_default_scopes() -> None:
    output = _run_script("--module-id", "site-fetcher", "--kind", "fetcher", "--api-key", "fetch-key").stdout

    assert "array['snapshots:write']::text[]" in output
    assert "values ('site-fetcher', 'site-fetcher', " in output


def test_register_script_rejects_unknown_scope() -> None:
    completed = _run_script("--module-id", "m", "--scope", "everything", "--api-key", "k", check=False)

    assert completed.returncode != 0
    assert "unknown scopes: everything" in completed.stderr


def test_register_script_generates_key_when_missing() -> None:
    output = _run_script("--module-id", "directory-sync", "--kind", "directory").stdout

    assert "-- api key (store it now; only its hash is kept): " in output
    assert "array['members:write']::text[]" in output
