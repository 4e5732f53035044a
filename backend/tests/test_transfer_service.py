# Overview: Pytest coverage for inter-outlet dispatch, admission, cancellation and reconciliation.

"""
Transfer Engine Tests

Verifies:
1. Dispatch -> admission round trip moves a unit to the destination
2. Dispatch is all-or-nothing (3 available, 5 requested -> nothing written)
3. A unit can never be in two in-transit dispatches
4. Cancellation returns the unit to the source outlet
5. Reconciliation reports, and never repairs, disagreements
"""

import pytest

from retailops.errors import ValidationError, NotFoundError, InsufficientStockError, InconsistentStateError
from retailops.models import DispatchRecord, InventoryUnit
from retailops.services import transfer_service, inventory_service
from retailops.services.transfer_service import DISPATCH_STATUS_IN_TRANSIT, DISPATCH_STATUS_COMPLETED

from conftest import stock


def _dispatch_count(db_session) -> int:
    return db_session.query(DispatchRecord).count()


# =============================================================================
# DISPATCH
# =============================================================================


class TestDispatch:

    def test_scanned_barcode_goes_in_transit(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        records = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[unit.barcode],
        )
        db_session.commit()

        assert len(records) == 1
        record = records[0]
        assert record.status == DISPATCH_STATUS_IN_TRANSIT
        assert record.barcode == unit.barcode
        assert record.from_store == main_store.name
        assert record.to_store == branch_store.name
        assert record.to_location == branch_store.location
        assert record.inventory_id == unit.id

        assert unit.status == "in-transit"
        assert unit.location == "In Transit to Branch Outlet"
        assert inventory_service.count_available(unit.product_id, main_store.name) == 4

    def test_product_selection_takes_lowest_ids(self, db_session, main_units, main_store, branch_store, product):
        records = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            products=[{"productId": product.id, "quantity": 2}],
        )
        assert [r.inventory_id for r in records] == [main_units[0].id, main_units[1].id]

    def test_scanned_and_selected_never_overlap(self, db_session, main_units, main_store, branch_store, product):
        records = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[main_units[0].barcode],
            products=[{"productId": product.id, "quantity": 2}],
        )
        assert sorted(r.inventory_id for r in records) == sorted(u.id for u in main_units[:3])

    def test_all_or_nothing(self, db_session, main_store, branch_store, product):
        units = stock(main_store, product, 3)

        with pytest.raises(InsufficientStockError) as exc:
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=branch_store.id,
                products=[{"productId": product.id, "quantity": 5}],
            )
        db_session.rollback()

        assert "Available: 3, Requested: 5" in exc.value.message
        assert _dispatch_count(db_session) == 0
        for unit in db_session.query(InventoryUnit).filter(InventoryUnit.id.in_([u.id for u in units])):
            assert unit.status == "available"
            assert unit.location == main_store.name

    def test_one_bad_barcode_rejects_all(self, db_session, main_units, main_store, branch_store):
        with pytest.raises(NotFoundError) as exc:
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=branch_store.id,
                barcodes=[main_units[0].barcode, "NOPE-1"],
            )
        db_session.rollback()
        assert "NOPE-1" in exc.value.message
        assert _dispatch_count(db_session) == 0
        assert main_units[0].status == "available"

    def test_no_double_dispatch(self, db_session, main_units, main_store, branch_store):
        code = main_units[0].barcode
        transfer_service.dispatch_units(from_store_id=main_store.id, to_store_id=branch_store.id, barcodes=[code])
        db_session.commit()

        with pytest.raises(InsufficientStockError) as exc:
            transfer_service.dispatch_units(from_store_id=main_store.id, to_store_id=branch_store.id, barcodes=[code])
        db_session.rollback()

        assert code in exc.value.message
        open_records = db_session.query(DispatchRecord).filter_by(barcode=code, status=DISPATCH_STATUS_IN_TRANSIT).count()
        assert open_records == 1

    def test_same_outlet_rejected(self, db_session, main_units, main_store):
        with pytest.raises(ValidationError) as exc:
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=main_store.id,
                barcodes=[main_units[0].barcode],
            )
        assert exc.value.message == "Cannot transfer to the same outlet"

    def test_destination_required(self, db_session, main_units, main_store):
        with pytest.raises(ValidationError) as exc:
            transfer_service.dispatch_units(from_store_id=main_store.id, to_store_id=None, barcodes=["X"])
        assert exc.value.message == "Please select a destination outlet"

    def test_empty_request_rejected(self, db_session, main_store, branch_store):
        with pytest.raises(ValidationError):
            transfer_service.dispatch_units(from_store_id=main_store.id, to_store_id=branch_store.id)

    def test_duplicate_scan_rejected(self, db_session, main_units, main_store, branch_store):
        code = main_units[0].barcode
        with pytest.raises(ValidationError) as exc:
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=branch_store.id,
                barcodes=[code, code],
            )
        assert code in exc.value.message

    @pytest.mark.parametrize("field", ["barcodes", "products"])
    def test_non_list_selection_rejected(self, db_session, main_units, main_store, branch_store, field):
        value = main_units[0].barcode if field == "barcodes" else {"productId": main_units[0].product_id, "quantity": 1}
        with pytest.raises(ValidationError) as exc:
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=branch_store.id,
                **{field: value},
            )
        assert exc.value.details == {"field": field}
        assert inventory_service.get_unit(main_units[0].id).status == "available"

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity_rejected(self, db_session, main_units, main_store, branch_store, product, quantity):
        with pytest.raises(ValidationError):
            transfer_service.dispatch_units(
                from_store_id=main_store.id,
                to_store_id=branch_store.id,
                products=[{"productId": product.id, "quantity": quantity}],
            )


# =============================================================================
# ADMISSION
# =============================================================================


class TestAdmission:

    def _in_transit(self, db_session, unit, source, destination):
        record = transfer_service.dispatch_units(
            from_store_id=source.id,
            to_store_id=destination.id,
            barcodes=[unit.barcode],
        )[0]
        db_session.commit()
        return record

    def test_round_trip(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        self._in_transit(db_session, unit, main_store, branch_store)

        record = transfer_service.admit_unit(store_id=branch_store.id, barcode=unit.barcode)
        db_session.commit()

        assert record.status == DISPATCH_STATUS_COMPLETED
        assert record.received_at is not None
        assert unit.status == "available"
        assert unit.location == branch_store.name
        assert unit.admitted_at is not None
        assert inventory_service.count_available(unit.product_id, branch_store.name) == 1

    def test_readmission_not_found(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        self._in_transit(db_session, unit, main_store, branch_store)
        transfer_service.admit_unit(store_id=branch_store.id, barcode=unit.barcode)
        db_session.commit()

        with pytest.raises(NotFoundError) as exc:
            transfer_service.admit_unit(store_id=branch_store.id, barcode=unit.barcode)
        assert unit.barcode in exc.value.message

    def test_admission_at_wrong_store(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        self._in_transit(db_session, unit, main_store, branch_store)
        with pytest.raises(NotFoundError):
            transfer_service.admit_unit(store_id=main_store.id, barcode=unit.barcode)
        assert unit.status == "in-transit"

    def test_admit_by_dispatch_id(self, db_session, main_units, main_store, branch_store):
        record = self._in_transit(db_session, main_units[0], main_store, branch_store)
        admitted = transfer_service.admit_unit(store_id=branch_store.id, dispatch_id=record.id)
        assert admitted.id == record.id
        assert admitted.status == DISPATCH_STATUS_COMPLETED

    def test_barcode_required(self, db_session, branch_store):
        with pytest.raises(ValidationError):
            transfer_service.admit_unit(store_id=branch_store.id, barcode="  ")

    def test_upcoming_lists_only_destination(self, db_session, main_units, main_store, branch_store):
        self._in_transit(db_session, main_units[0], main_store, branch_store)
        assert [r.barcode for r in transfer_service.list_upcoming(branch_store.id)] == [main_units[0].barcode]
        assert transfer_service.list_upcoming(main_store.id) == []

    def test_unit_moved_behind_our_back(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        self._in_transit(db_session, unit, main_store, branch_store)
        unit.status = "sold"
        db_session.commit()

        with pytest.raises(InconsistentStateError):
            transfer_service.admit_unit(store_id=branch_store.id, barcode=unit.barcode)


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancellation:

    def test_cancel_returns_unit_to_source(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        record = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[unit.barcode],
        )[0]
        db_session.commit()
        record_id = record.id

        transfer_service.cancel_dispatch(record_id)
        db_session.commit()

        assert db_session.get(DispatchRecord, record_id) is None
        assert unit.status == "available"
        assert unit.location == main_store.name

    def test_completed_dispatch_cannot_be_cancelled(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        record = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[unit.barcode],
        )[0]
        transfer_service.admit_unit(store_id=branch_store.id, barcode=unit.barcode)
        db_session.commit()

        with pytest.raises(ValidationError):
            transfer_service.cancel_dispatch(record.id)

    def test_unknown_dispatch(self, db_session):
        with pytest.raises(NotFoundError):
            transfer_service.cancel_dispatch(424242)


# =============================================================================
# RECONCILIATION
# =============================================================================


class TestReconciliation:

    def test_clean_state_has_no_issues(self, db_session, main_units, main_store, branch_store):
        transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[main_units[0].barcode],
        )
        db_session.commit()
        assert transfer_service.find_inconsistencies() == []

    def test_reports_without_repairing(self, db_session, main_units, main_store, branch_store, caplog):
        moved, orphan = main_units[0], main_units[1]
        transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[moved.barcode],
        )
        moved.status = "available"
        orphan.status = "in-transit"
        orphan.location = "In Transit to Branch Outlet"
        db_session.commit()

        with caplog.at_level("ERROR", logger="retailops"):
            issues = transfer_service.find_inconsistencies()

        types = {issue["type"]: issue for issue in issues}
        assert types["unit-not-in-transit"]["barcode"] == moved.barcode
        assert types["orphan-in-transit-unit"]["barcode"] == orphan.barcode
        assert "inventory reconciliation" in caplog.text

        # nothing repaired
        assert moved.status == "available"
        assert orphan.status == "in-transit"

    def test_duplicate_open_records(self, db_session, main_units, main_store, branch_store):
        unit = main_units[0]
        first = transfer_service.dispatch_units(
            from_store_id=main_store.id,
            to_store_id=branch_store.id,
            barcodes=[unit.barcode],
        )[0]
        db_session.add(DispatchRecord(
            inventory_id=unit.id,
            product_id=unit.product_id,
            barcode=unit.barcode,
            from_store=main_store.name,
            from_store_id=main_store.id,
            to_store=branch_store.name,
            to_store_id=branch_store.id,
            status=DISPATCH_STATUS_IN_TRANSIT,
            dispatched_at=first.dispatched_at,
        ))
        db_session.commit()

        issues = transfer_service.find_inconsistencies()
        assert [i["type"] for i in issues] == ["duplicate-dispatch"]
        assert len(issues[0]["dispatchIds"]) == 2
