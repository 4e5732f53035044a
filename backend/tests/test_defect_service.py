# Overview: Pytest coverage for outlet defects, customer returns and defect lifecycle.

import pytest

from retailops.auth_context import AuthContext
from retailops.errors import ValidationError, NotFoundError, ConfirmationRequiredError
from retailops.models import DefectItem, FinancialTransaction, SocialOrder
from retailops.services import defect_service, sales_service, inventory_service
from retailops.time_utils import utcnow


MANAGER = AuthContext(role="manager", store_id=None, user_name="mina")


def _sell(store, product, units, *, customer=None, kind="sale", price=1200):
    payload = {
        "storeId": store.id,
        "customer": customer or {},
        "items": [{
            "id": "L1",
            "productId": product.id,
            "productName": product.name,
            "qty": len(units),
            "price": price,
            "discount": 0,
            "barcodes": [u.barcode for u in units],
        }],
        "amounts": {"vatRate": 0},
    }
    if kind == "sale":
        return sales_service.complete_sale(payload)
    return sales_service.complete_order(payload)


class TestOutletDefects:

    def test_defect_pulls_unit_from_stock(self, db_session, main_units, main_store, product):
        unit = main_units[0]
        defect = defect_service.create_outlet_defect(
            barcode=unit.barcode,
            store_ref=main_store.name,
            return_reason="Broken button",
            ctx=MANAGER,
            image="button.jpg",
        )
        db_session.commit()

        assert defect.status == "pending"
        assert defect.store == main_store.name
        assert defect.added_by == "mina"
        assert defect.selling_price == 1200
        assert defect.cost_price == 800
        assert defect.image == "button.jpg"
        assert defect.original_order_id is None

        assert unit.status == "defective"
        assert inventory_service.count_available(product.id, main_store.name) == 4

    def test_outlet_defect_emits_no_transaction(self, db_session, main_units, main_store):
        defect_service.create_outlet_defect(
            barcode=main_units[0].barcode, store_ref=main_store.id, return_reason="Hole",
        )
        assert db_session.query(FinancialTransaction).filter_by(type="return").count() == 0

    def test_unit_must_be_at_outlet(self, db_session, main_units, branch_store):
        with pytest.raises(ValidationError) as exc:
            defect_service.create_outlet_defect(
                barcode=main_units[0].barcode, store_ref=branch_store.id, return_reason="Hole",
            )
        assert main_units[0].barcode in exc.value.message

    def test_reason_required(self, db_session, main_units, main_store):
        with pytest.raises(ValidationError) as exc:
            defect_service.create_outlet_defect(barcode=main_units[0].barcode, store_ref=main_store.id, return_reason=" ")
        assert exc.value.details["field"] == "returnReason"

    def test_unknown_barcode(self, db_session, main_store):
        with pytest.raises(NotFoundError):
            defect_service.create_outlet_defect(barcode="GHOST-1", store_ref=main_store.id, return_reason="Hole")


class TestCustomerOrderLookup:

    def test_lookup_by_phone_spans_orders_and_sales(self, db_session, main_units, main_store, product):
        _sell(main_store, product, main_units[:1], customer={"name": "Rahim", "mobile": "0170"})
        _sell(main_store, product, main_units[1:2], customer={"name": "Rahim", "phone": "0170"}, kind="order")
        db_session.commit()

        results = defect_service.find_customer_orders(phone="0170")
        assert [r["source"] for r in results] == ["order", "sale"]
        assert results[0]["customerName"] == "Rahim"
        assert results[1]["products"][0]["barcodes"] == [main_units[0].barcode]

    def test_lookup_needs_criteria(self, db_session):
        with pytest.raises(ValidationError):
            defect_service.find_customer_orders()


class TestCustomerReturns:

    def test_return_flips_sold_unit_and_records_refund(self, db_session, main_units, main_store, branch_store, product):
        sold = main_units[:2]
        order = _sell(main_store, product, sold, customer={"phone": "0181"}, kind="order", price=1500)
        db_session.commit()

        defects = defect_service.create_customer_return(
            order_id=order.id,
            barcodes=[sold[1].barcode],
            return_reason="Wrong size",
            store_ref=branch_store.id,
            ctx=MANAGER,
        )
        db_session.commit()

        defect = defects[0]
        assert defect.original_order_id == order.id
        assert defect.original_source == "order"
        assert defect.customer_phone == "0181"
        assert defect.original_selling_price == 1500
        assert defect.store == branch_store.name

        assert sold[1].status == "defective"
        assert sold[1].location == branch_store.name
        assert sold[0].status == "sold"

        txn = db_session.query(FinancialTransaction).filter_by(type="return", source_id=defect.id).one()
        assert txn.amount == 1500

    def test_barcode_must_belong_to_order(self, db_session, main_units, main_store, product):
        sale = _sell(main_store, product, main_units[:1])
        with pytest.raises(ValidationError) as exc:
            defect_service.create_customer_return(
                order_id=sale.id,
                barcodes=[main_units[3].barcode],
                return_reason="Changed mind",
                source="sale",
            )
        assert main_units[3].barcode in exc.value.message

    def test_open_defect_blocks_second_return(self, db_session, main_units, main_store, product):
        sale = _sell(main_store, product, main_units[:1])
        args = dict(order_id=sale.id, barcodes=[main_units[0].barcode], return_reason="Stain", source="sale")
        defect_service.create_customer_return(**args)
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            defect_service.create_customer_return(**args)
        assert "open defect" in exc.value.message

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            defect_service.create_customer_return(order_id=777, barcodes=["X"], return_reason="Stain")

    def test_ambiguous_id_needs_source(self, db_session, main_units, main_store, product):
        sale = _sell(main_store, product, main_units[:1])
        db_session.add(SocialOrder(
            id=sale.id,
            date=utcnow(),
            customer={},
            delivery_address={},
            items=[],
            amounts={},
            payments={},
            exchange_history=[],
        ))
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            defect_service.create_customer_return(order_id=sale.id, barcodes=[main_units[0].barcode], return_reason="x")
        assert exc.value.details["field"] == "source"

        defects = defect_service.create_customer_return(
            order_id=sale.id, barcodes=[main_units[0].barcode], return_reason="x", source="sale",
        )
        assert defects[0].original_source == "sale"


class TestLifecycle:

    def _defect(self, db_session, unit, store):
        defect = defect_service.create_outlet_defect(barcode=unit.barcode, store_ref=store.id, return_reason="Hole")
        db_session.commit()
        return defect

    def test_approve(self, db_session, main_units, main_store):
        defect = self._defect(db_session, main_units[0], main_store)
        assert defect_service.approve_defect(defect.id).status == "approved"
        with pytest.raises(ValidationError):
            defect_service.approve_defect(defect.id)

    def test_remove_requires_confirmation(self, db_session, main_units, main_store):
        defect = self._defect(db_session, main_units[0], main_store)
        with pytest.raises(ConfirmationRequiredError):
            defect_service.remove_defect(defect.id)
        assert db_session.get(DefectItem, defect.id) is not None

    def test_remove_restores_unit(self, db_session, main_units, main_store, product):
        unit = main_units[0]
        defect = self._defect(db_session, unit, main_store)
        defect_id = defect.id

        defect_service.remove_defect(defect_id, confirm=True)
        db_session.commit()

        assert db_session.get(DefectItem, defect_id) is None
        assert unit.status == "available"
        assert unit.location == main_store.name
        assert inventory_service.count_available(product.id, main_store.name) == 5

    def test_list_filters(self, db_session, main_units, main_store, branch_store):
        first = self._defect(db_session, main_units[0], main_store)
        self._defect(db_session, main_units[1], main_store)
        defect_service.approve_defect(first.id)

        assert len(defect_service.list_defects(store=main_store.name)) == 2
        assert [d.id for d in defect_service.list_defects(status="approved")] == [first.id]
        assert defect_service.list_defects(store=branch_store.name) == []
