# Overview: Append-only normalized financial transactions emitted by the sale, batch and return processors.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import FinancialTransaction
from ..time_utils import utcnow
"""
Financial Transaction Invariants (authoritative)

- Append-only audit record of every financial event.
- No domain/business logic here; callers compute amounts.
- Written inside the same DB transaction as the event it records.
- occurred_at is business time; created_at is system time (DB default).
"""

TRANSACTION_TYPES = ("sale", "order", "batch", "return", "exchange")


def append_transaction(
    *,
    type: str,
    source_id: int,
    amount: float,
    occurred_at: Optional[datetime] = None,
    description: Optional[str] = None,
    payload: Optional[dict] = None,
) -> FinancialTransaction:
    """
    Append-only transaction record.

    - No updates/deletes of existing records.
    """
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type {type!r}")

    txn = FinancialTransaction(
        type=type,
        source_id=source_id,
        amount=round(float(amount or 0), 2),
        occurred_at=occurred_at or utcnow(),
        description=description,
        payload=payload,
    )
    db.session.add(txn)
    db.session.flush()  # ensures txn.id is assigned without committing
    return txn


def list_transactions(*, type: str | None = None, source_id: int | None = None) -> list[FinancialTransaction]:
    query = db.session.query(FinancialTransaction)
    if type:
        query = query.filter(FinancialTransaction.type == type)
    if source_id is not None:
        query = query.filter(FinancialTransaction.source_id == source_id)
    return query.order_by(FinancialTransaction.occurred_at.asc(), FinancialTransaction.id.asc()).all()
