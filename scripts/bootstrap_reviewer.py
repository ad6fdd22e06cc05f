#!/usr/bin/env python3
"""Emit SQL that grants a Supabase user a resource-relay review role."""

from __future__ import annotations

import argparse

ROLES = ("user", "reviewer", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, actor: str) -> str:
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
        target_key, target_value = "user_id", user_id
    elif email:
        target_where = f"email = {_quote_sql(email)}"
        target_key, target_value = "email", email
    else:
        raise ValueError("either user_id or email is required")

    return f"""-- resource-relay review role grant
-- Run in the Supabase SQL editor or another privileged Postgres session.

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};

insert into provenance_events (entity_type, event_type, actor_type, actor_id, payload)
values (
  'human_role',
  'role_granted',
  'system',
  {_quote_sql(actor)},
  jsonb_build_object({_quote_sql(target_key)}, {_quote_sql(target_value)}, 'role', {role_value})
);
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL that assigns a reviewer or admin role.")
    parser.add_argument("--role", choices=ROLES, default="reviewer", help="Value for raw_app_meta_data.role")
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument("--actor", default="cli", help="Recorded as provenance actor_id")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email, actor=args.actor))


if __name__ == "__main__":
    main()
