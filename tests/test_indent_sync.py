from unittest.mock import MagicMock

from pymongo.errors import ConnectionFailure

from database import INDENT
from indent_sync import keys_from_items, reconcile_indents
from quantities import IndentKey


def _stored(mongo, indent_number="IN001", item_code="IC001"):
    return mongo[INDENT].find_one({"indentNumber": indent_number, "itemCode": item_code})


class TestReconcileIndents:
    def test_rfq_and_po_quantities_reduce_balance(self, mongo, add_indent, add_rfq, add_po):
        add_indent(indent_qty=100)
        add_rfq(items=[{"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 40}])
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": 30}])

        result = reconcile_indents(mongo, indents=[IndentKey("IN001", "IC001")], should_update=True)

        assert "error" not in result
        stored = _stored(mongo)
        assert stored["preRFQQty"] == 40
        assert stored["prePOQty"] == 30
        assert stored["balanceQty"] == 30

    def test_over_commitment_clamps_balance_at_zero(self, mongo, add_indent, add_rfq, add_po):
        add_indent(indent_qty=100)
        add_rfq(items=[{"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 40}])
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": 30}])
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": 90}])

        reconcile_indents(mongo, should_update=True)

        stored = _stored(mongo)
        assert stored["prePOQty"] == 120
        assert stored["balanceQty"] == 0

    def test_balance_formula_holds_for_every_record(self, mongo, add_indent, add_rfq, add_po):
        add_indent("IN001", "IC001", 50)
        add_indent("IN001", "IC002", 10)
        add_indent("IN002", "IC001", 7)
        add_rfq(
            items=[
                {"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 20},
                {"indentNumber": "IN001", "itemCode": "IC002", "rfqQty": 15},
            ]
        )
        add_po(items=[{"indentNumber": "IN002", "itemCode": "IC001", "qty": 2}])

        result = reconcile_indents(mongo)

        assert len(result["data"]) == 3
        for record in result["data"]:
            expected = max(0, record["indentQty"] - record["preRFQQty"] - record["prePOQty"])
            assert record["balanceQty"] == expected
            assert record["balanceQty"] >= 0

    def test_only_purchase_order_references_count(self, mongo, add_indent, add_po):
        add_indent(indent_qty=100)
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": 30}], ref_document_type="contract")

        result = reconcile_indents(mongo, indents=[{"indentNumber": "IN001", "itemCode": "IC001"}])

        assert result["data"][0]["prePOQty"] == 0
        assert result["data"][0]["balanceQty"] == 100

    def test_non_numeric_quantities_count_as_zero(self, mongo, add_indent, add_rfq, add_po):
        add_indent(indent_qty="100")
        add_rfq(
            items=[
                {"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": "40"},
                {"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": "n/a"},
                {"indentNumber": "IN001", "itemCode": "IC001"},
            ]
        )
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": None}])

        record = reconcile_indents(mongo)["data"][0]

        assert record["indentQty"] == 100
        assert record["preRFQQty"] == 40
        assert record["prePOQty"] == 0
        assert record["balanceQty"] == 60

    def test_items_for_other_indents_do_not_leak(self, mongo, add_indent, add_rfq):
        add_indent("IN001", "IC001", 10)
        add_rfq(
            items=[
                {"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 4},
                {"indentNumber": "IN009", "itemCode": "IC001", "rfqQty": 99},
            ]
        )

        record = reconcile_indents(mongo)["data"][0]

        assert record["preRFQQty"] == 4
        assert record["balanceQty"] == 6

    def test_repeated_runs_give_identical_results(self, mongo, add_indent, add_rfq, add_po):
        add_indent(indent_qty=100)
        add_rfq(items=[{"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 40}])
        add_po(items=[{"indentNumber": "IN001", "itemCode": "IC001", "qty": 30}])

        first = reconcile_indents(mongo, should_update=True)["data"]
        second = reconcile_indents(mongo, should_update=True)["data"]

        assert first == second

    def test_preview_does_not_write(self, mongo, add_indent, add_rfq):
        add_indent(indent_qty=100, balanceQty=100)
        add_rfq(items=[{"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 40}])

        result = reconcile_indents(mongo)

        assert result["data"][0]["balanceQty"] == 60
        assert _stored(mongo)["balanceQty"] == 100

    def test_supplied_records_are_updated_in_place(self, mongo, add_rfq):
        add_rfq(items=[{"indentNumber": "IN001", "itemCode": "IC001", "rfqQty": 25}])
        records = [{"indentNumber": "IN001", "itemCode": "IC001", "indentQty": 30}]

        result = reconcile_indents(mongo, data=records)

        assert result["data"] is records
        assert records[0]["balanceQty"] == 5
        assert mongo[INDENT].count_documents({}) == 0

    def test_explicit_empty_selection_is_empty_working_set(self, mongo, add_indent):
        add_indent()

        assert reconcile_indents(mongo, indents=[], should_update=True) == {"data": []}

    def test_store_failure_is_returned_not_raised(self):
        db = MagicMock()
        db.__getitem__.return_value.find.side_effect = ConnectionFailure("store down")

        result = reconcile_indents(db, should_update=True)

        assert isinstance(result["error"], ConnectionFailure)
        db.__getitem__.return_value.update_one.assert_not_called()


def test_keys_from_items_merges_and_dedupes():
    before = [{"indentNumber": "IN001", "itemCode": "A"}, {"indentNumber": "IN001", "itemCode": "B"}]
    after = [{"indentNumber": "IN001", "itemCode": "B"}, {"indentNumber": "IN002", "itemCode": "A"}]

    keys = keys_from_items(before, None, after)

    assert keys == [IndentKey("IN001", "A"), IndentKey("IN001", "B"), IndentKey("IN002", "A")]
