#!/usr/bin/env python3
"""Emit SQL that registers a machine module (fetcher or worker) and its API key.

Only the SHA-256 of the key is written; the plaintext key is printed once as a
comment so it can be handed to the module's RR_WORKER_API_KEY.
"""

from __future__ import annotations

import argparse
import hashlib
import secrets

DEFAULT_SCOPES = {
    "worker": ["jobs:read", "jobs:write"],
    "fetcher": ["snapshots:write"],
    "directory": ["members:write"],
}
KNOWN_SCOPES = {"jobs:read", "jobs:write", "snapshots:write", "members:write"}


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def render_sql(*, module_id: str, name: str, scopes: list[str], api_key: str, key_hint: str) -> str:
    unknown = sorted(set(scopes) - KNOWN_SCOPES)
    if unknown:
        raise ValueError(f"unknown scopes: {', '.join(unknown)}")
    scope_array = "array[" + ", ".join(_quote_sql(scope) for scope in sorted(set(scopes))) + "]::text[]"
    module_value = _quote_sql(module_id)

    return f"""-- resource-relay module registration
-- api key (store it now; only its hash is kept): {api_key}

insert into modules (module_id, name, scopes)
values ({module_value}, {_quote_sql(name)}, {scope_array})
on conflict (module_id) do update set name = excluded.name, scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hint, key_hash)
select id, {_quote_sql(key_hint)}, {_quote_sql(hash_api_key(api_key))}
from modules
where module_id = {module_value}
on conflict (module_id, key_hint) do update set key_hash = excluded.key_hash, is_active = true, revoked_at = null;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register a machine module credential.")
    parser.add_argument("--module-id", required=True, help="Value the module sends as X-Module-Id")
    parser.add_argument("--name", help="Display name; defaults to the module id")
    parser.add_argument("--kind", choices=sorted(DEFAULT_SCOPES), default="worker")
    parser.add_argument("--scope", action="append", dest="scopes", help="Override scopes (repeatable)")
    parser.add_argument("--api-key", help="Use this key instead of generating one")
    args = parser.parse_args()

    api_key = args.api_key or secrets.token_urlsafe(32)
    print(
        render_sql(
            module_id=args.module_id,
            name=args.name or args.module_id,
            scopes=args.scopes or DEFAULT_SCOPES[args.kind],
            api_key=api_key,
            key_hint=api_key[:6],
        )
    )


if __name__ == "__main__":
    main()
