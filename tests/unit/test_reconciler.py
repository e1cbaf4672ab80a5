from __future__ import annotations

from typing import Any

import pytest

from sheet_reconcile.models.mutation import Mutation, MutationKind
from sheet_reconcile.models.rules import Policy, RuleSet
from sheet_reconcile.services.coercion import ValueCoercer
from sheet_reconcile.services.matcher import match_columns
from sheet_reconcile.services.reconciler import (
    KEY_SEPARATOR,
    POLICY_HANDLERS,
    PreconditionError,
    ReconcileOutcome,
    ReconciliationEngine,
)
from sheet_reconcile.services.rules import RuleStore, rule_set_from_mapping
from sheet_reconcile.services.schema import SchemaIntrospector
from sheet_reconcile.store.memory import MemoryStore

"""Reconciliation engine: key resolution, policies and counting."""

HEADER = ["Email", "Name", "City", "Tags", "Last contact", "Company", "Score"]
ALICE = "alice@example.org"
BOB = "bob@example.org"


def _engine(store: MemoryStore, rules: RuleSet | None = None, table: str = "Contacts") -> ReconciliationEngine:
    types = SchemaIntrospector(store).column_types(table)
    rules = rules or RuleStore(store).load_rules()
    return ReconciliationEngine(table, store.fetch_table(table), types, rules, ValueCoercer(store))


def _run(
    store: MemoryStore,
    rows: list[list[Any]],
    rules: RuleSet | None = None,
    header: list[str] = HEADER,
    table: str = "Contacts",
) -> ReconcileOutcome:
    engine = _engine(store, rules, table)
    mapping = match_columns(header, SchemaIntrospector(store).column_types(table))
    return engine.reconcile(header, rows, mapping)


def _row_lines(outcome: ReconcileOutcome) -> list[str]:
    return [line for line in outcome.resume if line.startswith("Row ")]


def _only(outcome: ReconcileOutcome):
    assert len(outcome.mutations) == 1
    return outcome.mutations[0]


def test_every_policy_has_a_handler():
    assert set(POLICY_HANDLERS) == set(Policy)


def test_add_update_unchanged(contacts_store: MemoryStore):
    outcome = _run(contacts_store, [
        [ALICE, "Alice", "Paris", "vip", "2024-01-10", "Acme", 10],
        [BOB, "Bob", "Paris", "", "", "", 20],
        ["carol@example.org", "Carol", "Nice", "new", "2024-02-01", "Globex", 5],
    ])
    assert (outcome.stats.added, outcome.stats.updated, outcome.stats.skipped) == (1, 1, 1)
    assert outcome.resume == [
        f"Row 1: UPDATE [{ALICE}]",
        f"Row 2: IGNORE [{BOB}]",
        "Row 3: ADD [carol@example.org]",
    ]

    update, add = outcome.mutations
    assert update.kind is MutationKind.UPDATE
    assert update.row_id == 1
    assert update.fields == {"City": "Paris"}
    assert update.previous == {"City": ""}
    assert update.row_number == 1

    assert add.kind is MutationKind.ADD
    assert add.fields == {
        "Email": "carol@example.org",
        "Name": "Carol",
        "City": "Nice",
        "Tags": "new",
        "Last_contact": "2024-02-01",
        "Company": 2,
        "Score": 5,
    }


def test_existing_snapshot_is_not_modified(contacts_store: MemoryStore):
    before = contacts_store.records("Contacts")
    _run(contacts_store, [[ALICE, "Alicia", "Paris", "x", "2025-01-01", "Globex", 1]])
    assert contacts_store.records("Contacts") == before


def test_overwrite(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"Name": "overwrite"}, ["Email"])
    header = ["Email", "Name"]
    assert _run(contacts_store, [[ALICE, "Alice"]], rules, header).mutations == []
    assert _run(contacts_store, [[ALICE, "  "]], rules, header).mutations == []

    mutation = _only(_run(contacts_store, [[ALICE, "Alicia"]], rules, header))
    assert mutation.fields == {"Name": "Alicia"}
    assert mutation.previous == {"Name": "Alice"}


def test_append_if_different(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"Tags": "append_if_different"}, ["Email"])
    header = ["Email", "Tags"]

    outcome = _run(contacts_store, [[BOB, "tag1"], [ALICE, "tag2"], [ALICE, "vip"]], rules, header)
    bob, alice = outcome.mutations
    assert bob.fields == {"Tags": "tag1"}
    assert alice.fields == {"Tags": "vip | tag2"}
    assert outcome.stats.unchanged == 1


def test_update_if_newer(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"Last contact": "update_if_newer"}, ["Email"])
    header = ["Email", "Last contact"]

    assert _run(contacts_store, [[ALICE, "2024-01-09"]], rules, header).mutations == []
    assert _run(contacts_store, [[ALICE, "2024-01-10"]], rules, header).mutations == []
    assert _run(contacts_store, [[ALICE, "not a date"]], rules, header).mutations == []

    newer = _only(_run(contacts_store, [[ALICE, "15/01/2024"]], rules, header))
    assert newer.fields == {"Last_contact": "2024-01-15"}

    serial = _only(_run(contacts_store, [[ALICE, 45306]], rules, header))
    assert serial.fields == {"Last_contact": "2024-01-15"}

    # No stored date: any valid incoming date wins
    empty = _only(_run(contacts_store, [[BOB, "2023-06-01"]], rules, header))
    assert empty.fields == {"Last_contact": "2023-06-01"}
    assert empty.previous == {"Last_contact": None}


@pytest.mark.parametrize("policy", ["fill_if_empty", "preserve_if_not_empty"])
def test_fill_and_preserve_behave_the_same(contacts_store: MemoryStore, policy: str):
    rules = rule_set_from_mapping({"City": policy}, ["Email"])
    header = ["Email", "City"]
    outcome = _run(contacts_store, [[ALICE, "Paris"], [BOB, "Paris"]], rules, header)
    assert _only(outcome).fields == {"City": "Paris"}
    assert outcome.stats.unchanged == 1


# Documented quirk: a numeric cell equal to the stored number on the same
# calendar day (serial reading) counts as unchanged.
def test_overwrite_numbers_compare_as_days(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"Score": "overwrite"}, ["Email"])
    header = ["Email", "Score"]
    assert _run(contacts_store, [[ALICE, 10.5]], rules, header).mutations == []

    changed = _only(_run(contacts_store, [[ALICE, 11]], rules, header))
    assert changed.fields == {"Score": 11}
    assert changed.previous == {"Score": 10}


def test_reference_column_resolved_and_empty_reference_is_blank(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"Company": "overwrite"}, ["Email"])
    header = ["Email", "Company"]

    changed = _only(_run(contacts_store, [[ALICE, "globex"]], rules, header))
    assert changed.fields == {"Company": 2}
    assert changed.previous == {"Company": 1}

    # Unknown name resolves to the empty reference: nothing to write
    assert _run(contacts_store, [[ALICE, "Unknown Ltd"]], rules, header).mutations == []

    filled = rule_set_from_mapping({"Company": "fill_if_empty"}, ["Email"])
    assert _only(_run(contacts_store, [[BOB, "Acme"]], filled, header)).fields == {"Company": 1}


def test_formula_columns_are_never_written(contacts_store: MemoryStore):
    header = HEADER + ["Score label"]
    outcome = _run(contacts_store, [
        [ALICE, "Alicia", "", "", "", "", 10, "forced"],
        ["dan@example.org", "Dan", "", "", "", "", 3, "forced"],
    ], header=header)
    for mutation in outcome.mutations:
        assert "Score_label" not in mutation.fields
    assert outcome.mutations[0].fields == {"Name": "Alicia"}


def test_unmapped_store_columns_warning(contacts_store: MemoryStore):
    outcome = _run(contacts_store, [[ALICE, "Alice"]], header=["Email", "Name"])
    assert outcome.unmapped_store_columns == ["City", "Tags", "Last_contact", "Company", "Score"]
    assert any("store column(s) without a spreadsheet match" in w for w in outcome.warnings)
    assert outcome.resume[0].startswith("WARNING: 5 store column(s)")


def test_empty_rows_and_keyless_rows_are_counted_apart(contacts_store: MemoryStore):
    outcome = _run(contacts_store, [
        ["", "", "", "", "", "", ""],
        ["", "Nobody", "", "", "", "", ""],
        [ALICE, "Alice", "", "vip", "2024-01-10", "Acme", 10],
        ["   ", None, "", "", "", "", ""],
    ])
    stats = outcome.stats
    assert stats.empty_rows == 2
    assert stats.keyless == 1
    assert stats.unchanged == 1
    assert stats.skipped == 2
    assert "2 empty row(s) excluded" in outcome.resume
    assert any('key "Email" missing' in w for w in outcome.warnings)


def test_short_rows_are_padded(contacts_store: MemoryStore):
    outcome = _run(contacts_store, [["erin@example.org", "Erin"]])
    add = _only(outcome)
    assert add.fields["Email"] == "erin@example.org"
    assert add.fields["City"] == ""


def test_composite_key(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"City": "overwrite"}, ["Email", "Name"])
    header = ["Email", "Name", "City"]
    outcome = _run(contacts_store, [
        [ALICE, "Alice", "Paris"],
        [ALICE, "Alice B.", "Paris"],
        ["", "", "Paris"],
    ], rules, header)

    assert outcome.stats.updated == 1
    assert outcome.stats.added == 1
    assert outcome.stats.keyless == 1
    assert _row_lines(outcome) == [
        f"Row 1: UPDATE [{ALICE} | Alice]",
        f"Row 2: ADD [{ALICE} | Alice B.]",
    ]
    assert any('"Email + Name"' in w for w in outcome.warnings)


def test_fallback_key(contacts_store: MemoryStore):
    rules = rule_set_from_mapping({"City": "overwrite"}, ["Email", "Name"], "fallback")
    header = ["Email", "Name", "City"]
    outcome = _run(contacts_store, [
        ["", "Bob", "Paris"],
        ["alice.new@example.org", "Alice", "Nice"],
        ["zed@example.org", "Zed", "Oslo"],
    ], rules, header)

    bob, alice, zed = outcome.mutations
    assert (bob.kind, bob.row_id, bob.fields) == (MutationKind.UPDATE, 2, {"City": "Paris"})
    assert (alice.kind, alice.row_id, alice.fields) == (MutationKind.UPDATE, 1, {"City": "Nice"})
    assert zed.kind is MutationKind.ADD
    assert _row_lines(outcome) == [
        "Row 1: UPDATE [Name=Bob]",
        "Row 2: UPDATE [Name=Alice]",
        "Row 3: ADD [zed@example.org | Zed]",
    ]


def test_numeric_keys_match_across_int_and_float():
    store = MemoryStore()
    store.add_table("Items", {"Code": "Numeric", "Label": "Text"}, [{"id": 1, "Code": 12, "Label": "a"}])
    rules = rule_set_from_mapping({"Label": "overwrite"}, ["Code"])
    outcome = _run(store, [[12.0, "b"]], rules, ["Code", "Label"], table="Items")
    assert _only(outcome).row_id == 1


def test_duplicate_store_keys_first_row_wins(contacts_store: MemoryStore):
    contacts_store.apply_mutations([Mutation.add("Contacts", {"Email": ALICE, "Name": "Alice twin"})])
    rules = rule_set_from_mapping({"Name": "overwrite"}, ["Email"])
    outcome = _run(contacts_store, [[ALICE, "Alicia"]], rules, ["Email", "Name"])
    assert _only(outcome).row_id == 1
    assert any("duplicate key" in w for w in outcome.warnings)


def test_progress_callback(contacts_store: MemoryStore):
    engine = _engine(contacts_store)
    calls: list[tuple[int, int]] = []
    mapping = match_columns(HEADER, SchemaIntrospector(contacts_store).column_types("Contacts"))
    engine.reconcile(HEADER, [[ALICE], [BOB], [""]], mapping, on_progress=lambda c, t: calls.append((c, t)))
    assert calls == [(1, 3), (2, 3), (3, 3)]


def test_no_key_configured(contacts_store: MemoryStore):
    with pytest.raises(PreconditionError):
        _engine(contacts_store, rule_set_from_mapping({"Name": "overwrite"}))


def test_key_column_missing_from_table(contacts_store: MemoryStore):
    with pytest.raises(PreconditionError, match="phone"):
        _engine(contacts_store, rule_set_from_mapping({}, ["Phone"]))


def test_key_separator_is_not_typeable():
    assert KEY_SEPARATOR == "\x1f"
