#!/usr/bin/env python3
"""Sample data generator for reconciliation runs.

Writes a workbook of synthetic contacts (header on the first row) and,
optionally, a JSON store snapshot that already holds part of those contacts
with slightly different values. Importing the workbook into the snapshot then
exercises insertions, updates, unchanged rows and keyless rows.

The snapshot contains the target table, a Companies table referenced by the
Company column and a RULES_CONFIG table keyed on Email.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

COMPANIES = ["Acme", "Globex", "Initech", "Umbrella", "Hooli", "Stark"]
CITIES = ["Paris", "Lyon", "Montréal", "Genève", "Bruxelles", "Nantes"]
TAGS = ["vip", "lead", "partner", "newsletter"]


def generate_contacts(rows: int, seed: int = 42, keyless_ratio: float = 0.02) -> pd.DataFrame:
    """Synthetic contact rows.

    Args:
        rows: Number of data rows
        seed: Random seed for reproducible data
        keyless_ratio: Share of rows whose Email is left blank

    Returns:
        DataFrame with the spreadsheet column labels (accents and spaces included)
    """
    rng = np.random.default_rng(seed)
    emails = [f"contact{i:06d}@example.org" for i in range(rows)]
    blank = rng.random(rows) < keyless_ratio
    emails = ["" if b else e for e, b in zip(emails, blank)]

    start = pd.Timestamp("2023-01-01")
    offsets = rng.integers(0, 730, rows)
    return pd.DataFrame({
        "E-mail": emails,
        "Nom complet": [f"Person {i}" for i in range(rows)],
        "Société": rng.choice(COMPANIES, rows).tolist(),
        "Ville": rng.choice(CITIES, rows).tolist(),
        "Dernier contact": [(start + pd.Timedelta(days=int(d))).date() for d in offsets],
        "Tags": rng.choice(TAGS, rows).tolist(),
        "Score": np.round(rng.uniform(0, 100, rows), 1).tolist(),
    })


def build_snapshot(df: pd.DataFrame, overlap: float, seed: int = 42) -> dict[str, Any]:
    """Store snapshot holding ``overlap`` of the keyed rows, some of them stale."""
    rng = np.random.default_rng(seed + 1)
    keyed = df[df["E-mail"] != ""]
    existing = keyed.sample(frac=overlap, random_state=seed) if len(keyed) else keyed

    companies = {name: i + 1 for i, name in enumerate(COMPANIES)}
    records = []
    for row_id, (_, row) in enumerate(existing.iterrows(), start=1):
        stale = rng.random() < 0.5
        records.append({
            "id": row_id,
            "Email": row["E-mail"],
            "Nom_complet": row["Nom complet"],
            "Societe": companies[row["Société"]],
            "Ville": "" if stale else row["Ville"],
            "Dernier_contact": (row["Dernier contact"] - pd.Timedelta(days=30)).isoformat()
            if stale else row["Dernier contact"].isoformat(),
            "Tags": "lead" if stale else row["Tags"],
            "Score": row["Score"],
        })

    return {"tables": {
        "Contacts": {
            "columns": {
                "Email": "Text",
                "Nom_complet": "Text",
                "Societe": "Ref:Companies",
                "Ville": "Text",
                "Dernier_contact": "Date",
                "Tags": "Text",
                "Score": "Numeric",
                "Score_pct": {"type": "Numeric", "formula": "$Score / 100"},
            },
            "records": records,
        },
        "Companies": {
            "columns": {"Name": "Text"},
            "records": [{"id": i, "Name": name} for name, i in companies.items()],
        },
        "RULES_CONFIG": {
            "columns": {
                "col_name": "Text", "is_key": "Bool", "rule": "Text",
                "key_priority": "Int", "key_mode": "Text",
            },
            "records": [
                {"id": 1, "col_name": "Email", "is_key": True, "rule": "ignore", "key_priority": 1},
                {"id": 2, "col_name": "Nom complet", "is_key": False, "rule": "overwrite"},
                {"id": 3, "col_name": "Société", "is_key": False, "rule": "overwrite"},
                {"id": 4, "col_name": "Ville", "is_key": False, "rule": "fill_if_empty"},
                {"id": 5, "col_name": "Dernier contact", "is_key": False, "rule": "update_if_newer"},
                {"id": 6, "col_name": "Tags", "is_key": False, "rule": "append_if_different"},
                {"id": 7, "col_name": "Score", "is_key": False, "rule": "overwrite"},
            ],
        },
    }}


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a sample workbook (and store snapshot) for reconciliation runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/contacts.xlsx
  %(prog)s data/contacts.xlsx --rows 5000 --store data/store.json --overlap 0.6
        """,
    )
    parser.add_argument("output", type=Path, help="Output workbook path (.xlsx)")
    parser.add_argument("--rows", type=int, default=1000, help="Data rows (default: 1000)")
    parser.add_argument("--sheet", default="Contacts", help="Sheet name (default: Contacts)")
    parser.add_argument("--store", type=Path, help="Also write a JSON store snapshot here")
    parser.add_argument("--overlap", type=float, default=0.5, help="Share of rows already in the store")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0 <= args.overlap <= 1:
        print("Error: --overlap must be between 0 and 1", file=sys.stderr)
        return 1

    df = generate_contacts(args.rows, args.seed)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(args.output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=args.sheet, index=False)
    print(f"Created workbook: {args.output} ({len(df)} rows, sheet {args.sheet})")

    if args.store is not None:
        snapshot = build_snapshot(df, args.overlap, args.seed)
        args.store.parent.mkdir(parents=True, exist_ok=True)
        args.store.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
        existing = len(snapshot["tables"]["Contacts"]["records"])
        print(f"Created store snapshot: {args.store} ({existing} existing contacts)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
