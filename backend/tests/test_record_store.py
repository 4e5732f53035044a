"""
Record store contract tests.

Verifies:
- list_all returns records in id order
- get_by_id / delete raise NotFoundError for unknown ids
- put assigns an id on flush
"""

import pytest

from retailops.errors import NotFoundError
from retailops.models import Sale
from retailops.services import record_store
from retailops.time_utils import utcnow

from conftest import stock


def _sale(store, total):
    return Sale(
        date=utcnow(),
        store_id=store.id,
        outlet=store.name,
        sales_by="alice",
        customer={},
        items=[],
        amounts={"total": total},
        payments={},
        exchange_history=[],
    )


def test_put_assigns_id(db_session, main_store):
    sale = record_store.sales.put(_sale(main_store, 100))
    assert sale.id is not None
    assert record_store.sales.get_by_id(sale.id) is sale


def test_list_all_in_id_order(db_session, main_store):
    first = record_store.sales.put(_sale(main_store, 100))
    second = record_store.sales.put(_sale(main_store, 200))
    assert [s.id for s in record_store.sales.list_all()] == [first.id, second.id]


def test_unknown_id(db_session):
    with pytest.raises(NotFoundError) as exc:
        record_store.sales.get_by_id(9999)
    assert exc.value.details == {"id": 9999}
    assert record_store.sales.find(9999) is None

    with pytest.raises(NotFoundError):
        record_store.orders.delete(9999)


def test_delete(db_session, main_store, product):
    units = stock(main_store, product, 2)
    record_store.inventory_units.delete(units[0].id)
    assert [u.id for u in record_store.inventory_units.list_all()] == [units[1].id]
