#!/usr/bin/env python3
"""Emit deterministic SQL converting a legacy text `ads.status` column to integer ordinals."""

from __future__ import annotations

import argparse

STATUS_ORDINALS: tuple[tuple[str, int], ...] = (
    ("draft", 0),
    ("pending", 1),
    ("from_parser", 2),
    ("active", 3),
    ("completed", 4),
    ("rejected", 5),
    ("approved", 6),
    ("unknown", 7),
    ("duplicate", 8),
)


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _quote_ident(value: str) -> str:
    escaped = value.replace('"', '""')
    return f'"{escaped}"'


def render_sql(*, table: str, fallback_status: str, with_property_tables: bool) -> str:
    ordinals = dict(STATUS_ORDINALS)
    if fallback_status not in ordinals:
        raise ValueError(f"unknown fallback status: {fallback_status}")

    table_ident = _quote_ident(table)
    cases = "\n".join(f"    when {_quote_sql(label)} then {ordinal}" for label, ordinal in STATUS_ORDINALS)
    statements = [
        f"""-- Legacy status migration for {table}
-- Run once in a privileged Postgres session; the statements are wrapped in a transaction.

begin;

alter table {table_ident} add column status_new integer;

update {table_ident}
set status_new = case lower(status)
{cases}
    else {ordinals[fallback_status]}
  end;

alter table {table_ident}
  drop column status,
  alter column status_new set not null,
  alter column status_new set default 0;

alter table {table_ident} rename column status_new to status;

create index if not exists idx_ads_status on {table_ident} (status);
"""
    ]

    if with_property_tables:
        statements.append(
            """create table if not exists properties (
  id serial primary key,
  name varchar(255) not null,
  type varchar(50) not null,
  value_type varchar(50) not null,
  is_searchable boolean not null default false,
  created_at timestamp with time zone default current_timestamp,
  updated_at timestamp with time zone default current_timestamp
);

create table if not exists property_values (
  id serial primary key,
  property_id integer not null references properties(id),
  value text not null,
  created_at timestamp with time zone default current_timestamp,
  updated_at timestamp with time zone default current_timestamp
);

create index if not exists idx_property_values_property_id on property_values (property_id);
create index if not exists idx_properties_type on properties (type);
create index if not exists idx_properties_searchable on properties (is_searchable) where is_searchable = true;
"""
        )

    statements.append("commit;\n")
    return "\n".join(statements)


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to convert legacy text ad statuses to integer ordinals.")
    parser.add_argument("--table", default="ads", help="Table holding the legacy status column")
    parser.add_argument(
        "--fallback-status",
        choices=[label for label, _ in STATUS_ORDINALS],
        default="draft",
        help="Status assigned to rows whose legacy label is not recognized",
    )
    parser.add_argument(
        "--with-property-tables",
        action="store_true",
        help="Also create the properties/property_values reference tables",
    )
    args = parser.parse_args()

    print(
        render_sql(
            table=args.table,
            fallback_status=args.fallback_status,
            with_property_tables=args.with_property_tables,
        )
    )


if __name__ == "__main__":
    main()
