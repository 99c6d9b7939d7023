from datetime import date, datetime, timezone

import pytest

from pmpulse.models.expense import Expense
from pmpulse.models.property import Property
from pmpulse.models.unit import Unit
from pmpulse.models.utility_account import UtilityAccount
from pmpulse.models.work_order import WorkOrder
from pmpulse.services.expense_processor import ExpenseProcessor, extract_gl_account_number
from pmpulse.services.resource_processor import (
    PropertyProcessor,
    UnitProcessor,
    VendorProcessor,
    WorkOrderProcessor,
    map_unit_status,
    map_work_order_priority,
    map_work_order_status,
    parse_amount,
    parse_bool,
    parse_date,
    parse_datetime,
)

PROPERTIES = [
    {"property_id": 1001, "property_name": "Maple Court", "property_city": "Portland", "units": "12",
     "updated_at": "2026-03-01T10:00:00Z"},
    {"property_id": 1002, "property_name": "Oak Plaza", "property_city": "Salem",
     "updated_at": "2026-03-02T10:00:00Z"},
]


def seed_properties(db_session, make_tracker):
    PropertyProcessor(db_session).process_page(PROPERTIES, make_tracker("properties"))


class TestValueParsers:

    def test_parse_amount(self):
        assert parse_amount("$1,234.50") == 1234.50
        assert parse_amount(12) == 12.0
        assert parse_amount("") is None
        assert parse_amount("n/a") is None

    def test_parse_bool(self):
        assert parse_bool("Yes") is True
        assert parse_bool("no") is False
        assert parse_bool(True) is True

    def test_parse_datetime_formats_are_utc(self):
        assert parse_datetime("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)
        assert parse_datetime("03/01/2026") == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert parse_datetime("not a date") is None
        assert parse_date("2026-03-01") == date(2026, 3, 1)

    def test_status_mappings(self):
        assert map_unit_status("Rented") == "occupied"
        assert map_unit_status(None) == "vacant"
        assert map_work_order_status("Done") == "completed"
        assert map_work_order_status("Assigned") == "in_progress"
        assert map_work_order_status("something new") == "open"
        assert map_work_order_priority("Urgent") == "high"
        assert map_work_order_priority(None) == "normal"

    def test_extract_gl_account_number(self):
        assert extract_gl_account_number("6210 - Water") == "6210"
        assert extract_gl_account_number("6300") == "6300"
        assert extract_gl_account_number(None) is None


class TestPropertyProcessor:

    def test_first_sync_creates_records(self, db_session, make_tracker):
        tracker = make_tracker("properties")

        newest = PropertyProcessor(db_session).process_page(PROPERTIES, tracker)

        assert tracker.metrics()["created"] == 2
        assert tracker.metrics()["updated"] == 0
        assert newest == datetime(2026, 3, 2, 10, tzinfo=timezone.utc)
        maple = db_session.query(Property).filter_by(external_id="1001").one()
        assert maple.name == "Maple Court"
        assert maple.unit_count == 12
        assert len(maple.id) == 36

    def test_resync_is_idempotent(self, db_session, make_tracker):
        seed_properties(db_session, make_tracker)
        ids_before = {p.external_id: p.id for p in db_session.query(Property).all()}

        tracker = make_tracker("properties")
        PropertyProcessor(db_session).process_page(PROPERTIES, tracker)

        assert tracker.metrics()["created"] == 0
        assert tracker.metrics()["updated"] == 2
        assert db_session.query(Property).count() == 2
        assert {p.external_id: p.id for p in db_session.query(Property).all()} == ids_before

    def test_local_only_fields_survive_resync(self, db_session, make_tracker):
        seed_properties(db_session, make_tracker)
        maple = db_session.query(Property).filter_by(external_id="1001").one()
        maple.notes = "Roof replaced 2025"
        maple.latitude = "45.52"
        db_session.commit()

        renamed = [dict(PROPERTIES[0], property_name="Maple Court Apartments")]
        PropertyProcessor(db_session).process_page(renamed, make_tracker("properties"))

        db_session.refresh(maple)
        assert maple.name == "Maple Court Apartments"
        assert maple.notes == "Roof replaced 2025"
        assert maple.latitude == "45.52"

    def test_bad_records_are_skipped_not_fatal(self, db_session, make_tracker):
        tracker = make_tracker("properties")
        records = [
            {"property_name": "No id"},
            {"property_id": 2001},
            "not an object",
            {"property_id": 2002, "property_name": "Good"},
        ]

        PropertyProcessor(db_session).process_page(records, tracker)
        tracker.record_page(len(records))

        metrics = tracker.metrics()
        assert metrics["created"] == 1
        assert metrics["skipped"] == 3
        assert metrics["created"] + metrics["updated"] + metrics["skipped"] == metrics["received"]
        assert db_session.query(Property).count() == 1


class TestUnitProcessor:

    def test_unit_links_to_parent_property(self, db_session, make_tracker):
        seed_properties(db_session, make_tracker)
        tracker = make_tracker("units")

        UnitProcessor(db_session).process_page(
            [{"unit_id": 501, "property_id": 1001, "unit_name": "1A", "unit_status": "Occupied",
              "market_rent": "$1,450.00", "bedrooms": "2"}],
            tracker,
        )

        unit = db_session.query(Unit).filter_by(external_id="501").one()
        maple = db_session.query(Property).filter_by(external_id="1001").one()
        assert unit.property_id == maple.id
        assert unit.status == "occupied"
        assert unit.market_rent == 1450.0
        assert tracker.metrics()["created"] == 1

    def test_unit_with_unknown_property_is_skipped(self, db_session, make_tracker):
        tracker = make_tracker("units")

        UnitProcessor(db_session).process_page([{"unit_id": 502, "property_id": 9999}], tracker)

        assert tracker.metrics()["skipped"] == 1
        assert db_session.query(Unit).count() == 0
        assert "unknown property 9999" in tracker.resource.error_messages[0]


class TestWorkOrderProcessor:

    def test_work_order_references_are_resolved(self, db_session, make_tracker):
        seed_properties(db_session, make_tracker)
        VendorProcessor(db_session).process_page(
            [{"vendor_id": 77, "company_name": "Rapid Plumbing"}], make_tracker("vendors")
        )

        tracker = make_tracker("work_orders")
        WorkOrderProcessor(db_session).process_page(
            [
                {"work_order_id": 9001, "property_id": 1002, "vendor_id": 77, "status": "Completed",
                 "priority": "Emergency", "created_at": "2026-02-01", "completed_on": "2026-02-03"},
                {"work_order_id": 9002, "status": "New"},
                {"work_order_id": 9003, "property_id": 4242},
            ],
            tracker,
        )

        order = db_session.query(WorkOrder).filter_by(external_id="9001").one()
        assert order.property_id == db_session.query(Property).filter_by(external_id="1002").one().id
        assert order.vendor_id is not None
        assert order.status == "completed"
        assert order.priority == "emergency"
        assert db_session.query(WorkOrder).filter_by(external_id="9002").one().property_id is None
        assert tracker.metrics()["created"] == 2
        assert tracker.metrics()["skipped"] == 1


class TestExpenseProcessor:

    @pytest.fixture
    def utility_accounts(self, db_session):
        db_session.add_all([
            UtilityAccount(gl_account_number="6210", gl_account_name="Water", utility_type="water"),
            UtilityAccount(gl_account_number="6220", gl_account_name="Electric", utility_type="electric",
                           is_active=False),
        ])
        db_session.commit()

    def test_expenses_are_categorized_by_gl_account(self, db_session, make_tracker, utility_accounts):
        seed_properties(db_session, make_tracker)
        tracker = make_tracker("expenses")

        ExpenseProcessor(db_session).process_page(
            [
                {"txn_id": "E1", "property_id": 1001, "account": "6210 - Water", "amount": "$310.20",
                 "bill_date": "2026-02-15"},
                {"txn_id": "E2", "property_id": 1001, "account": "6220 - Electric", "amount": "88"},
                {"txn_id": "E3", "property_id": 1002, "account": "7000 - Landscaping", "amount": "150"},
            ],
            tracker,
        )

        by_id = {e.external_id: e for e in db_session.query(Expense).all()}
        assert by_id["E1"].utility_type == "water"
        assert by_id["E1"].gl_account_number == "6210"
        assert by_id["E1"].amount == 310.20
        assert by_id["E1"].bill_date == date(2026, 2, 15)
        # Inactive mappings are ignored
        assert by_id["E2"].utility_type is None
        assert by_id["E3"].utility_type is None
        assert tracker.metrics()["created"] == 3

    def test_manual_adjustments_survive_resync(self, db_session, make_tracker, utility_accounts):
        seed_properties(db_session, make_tracker)
        record = {"txn_id": "E1", "property_id": 1001, "account": "6210 - Water", "amount": "310.20"}
        ExpenseProcessor(db_session).process_page([record], make_tracker("expenses"))

        expense = db_session.query(Expense).filter_by(external_id="E1").one()
        expense.adjusted_amount = 155.10
        expense.adjustment_reason = "Split with neighbouring building"
        db_session.commit()

        tracker = make_tracker("expenses")
        ExpenseProcessor(db_session).process_page([dict(record, amount="320.00")], tracker)

        db_session.refresh(expense)
        assert tracker.metrics()["updated"] == 1
        assert expense.amount == 320.0
        assert expense.adjusted_amount == 155.10

    def test_expense_without_property_is_skipped(self, db_session, make_tracker):
        tracker = make_tracker("expenses")

        ExpenseProcessor(db_session).process_page([{"txn_id": "E9", "account": "6210"}], tracker)

        assert tracker.metrics()["skipped"] == 1
        assert db_session.query(Expense).count() == 0
