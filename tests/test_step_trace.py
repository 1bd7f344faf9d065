"""Tests for created-entity extraction and the upload plan."""

import pytest

from ledger_agents.step_trace import (
    FILE_UPLOADED, OPERATION_COMPLETE, CreatedEntity, CreationRule, ExecutionStep,
    ToolCall, ToolResult, build_upload_plan, completed_operations,
    extract_created_entities, uploads_performed,
)


def step(index, *results):
    """An execution step from (tool name, result) pairs."""
    return ExecutionStep(
        index=index,
        tool_calls=[ToolCall(id=f"c{index}_{i}", name=name) for i, (name, _) in enumerate(results)],
        tool_results=[ToolResult(id=f"c{index}_{i}", name=name, result=res) for i, (name, res) in enumerate(results)],
    )


def purchase_created(purchase_id):
    return ("create_purchase", {"success": True, OPERATION_COMPLETE: True, "purchase": {"purchaseId": purchase_id}})


def search(count=0):
    return ("search_contacts", {"success": True, "count": count})


def upload(purchase_id):
    return ("upload_attachment_to_purchase", {"success": True, FILE_UPLOADED: True, "purchaseId": purchase_id})


class TestExtractCreatedEntities:

    def test_four_receipts_map_to_four_files(self):
        steps = [step(i, purchase_created(100 + i)) for i in range(4)]

        entities = extract_created_entities(steps)
        plan = build_upload_plan(entities, file_count=4)

        assert [(a.entity.entity_id, a.file_index) for a in plan] == [(100, 1), (101, 2), (102, 3), (103, 4)]

    @pytest.mark.parametrize("layout", [
        "CQCQCQ",
        "QQQCCC",
        "CCCQQQ",
        "QCUQCUC",
        "C",
        "QQQ",
    ])
    def test_order_is_dense_regardless_of_interleaving(self, layout):
        steps = []
        next_id = 500
        for index, kind in enumerate(layout):
            if kind == "C":
                steps.append(step(index, purchase_created(next_id)))
                next_id += 1
            elif kind == "U":
                steps.append(step(index, upload(next_id - 1)))
            else:
                steps.append(step(index, search()))

        entities = extract_created_entities(steps)

        creations = layout.count("C")
        assert len(entities) == creations
        assert [e.order for e in entities] == list(range(creations))
        assert [e.entity_id for e in entities] == list(range(500, 500 + creations))

    def test_steps_are_ordered_by_index(self):
        steps = [step(2, purchase_created(3)), step(0, purchase_created(1)), step(1, purchase_created(2))]
        assert [e.entity_id for e in extract_created_entities(steps)] == [1, 2, 3]

    def test_several_creations_in_one_step(self):
        steps = [step(0, purchase_created(7), search(), purchase_created(8))]
        entities = extract_created_entities(steps)
        assert [(e.entity_id, e.order) for e in entities] == [(7, 0), (8, 1)]

    def test_requires_completion_marker(self):
        not_complete = ("create_purchase", {"success": True, "purchase": {"purchaseId": 9}})
        duplicate = ("create_purchase", {"success": False, "duplicateFound": True})
        steps = [step(0, not_complete), step(1, duplicate), step(2, purchase_created(10))]

        entities = extract_created_entities(steps)

        assert [(e.entity_id, e.order) for e in entities] == [(10, 0)]

    def test_zero_is_a_valid_id(self):
        assert extract_created_entities([step(0, purchase_created(0))])[0].entity_id == 0

    def test_missing_id_is_skipped(self):
        broken = ("create_purchase", {"success": True, OPERATION_COMPLETE: True, "purchase": {}})
        assert extract_created_entities([step(0, broken)]) == []

    def test_mixed_entity_types(self):
        sale = ("create_sale", {OPERATION_COMPLETE: True, "sale": {"saleId": 11}})
        invoice = ("create_invoice", {OPERATION_COMPLETE: True, "invoice": {"invoiceId": 12}})
        entities = extract_created_entities([step(0, sale), step(1, invoice)])
        assert [(e.entity_type, e.entity_id, e.tool_name) for e in entities] == [
            ("sale", 11, "create_sale"),
            ("invoice", 12, "create_invoice"),
        ]

    def test_custom_rules(self):
        rules = {"create_journal_entry": CreationRule("journal_entry", ("journalEntry", "journalEntryId"))}
        entry = ("create_journal_entry", {OPERATION_COMPLETE: True, "journalEntry": {"journalEntryId": 42}})
        entities = extract_created_entities([step(0, entry), step(1, purchase_created(1))], rules)
        assert [(e.entity_type, e.entity_id) for e in entities] == [("journal_entry", 42)]


class TestUploadPlan:

    @pytest.mark.parametrize("entities,files", [(0, 3), (3, 0), (2, 5), (5, 2), (4, 4)])
    def test_plan_size_is_min_of_entities_and_files(self, entities, files):
        created = [CreatedEntity(entity_id=i, entity_type="purchase", order=i) for i in range(entities)]

        plan = build_upload_plan(created, files)

        assert len(plan) == min(entities, files)
        assert all(a.file_index == a.entity.order + 1 for a in plan)


class TestTraceSignals:

    def test_completed_operations_in_order(self):
        steps = [step(0, search(), purchase_created(1)), step(1, upload(1)), step(2, purchase_created(2))]
        assert completed_operations(steps) == ["create_purchase", "create_purchase"]

    def test_uploads_performed(self):
        assert uploads_performed([step(0, purchase_created(1)), step(1, upload(1))])
        assert not uploads_performed([step(0, purchase_created(1))])
