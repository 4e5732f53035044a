# backend/retailops/services/accounting_service.py
"""
Ledger derivation: journal, per-account ledgers and income statement,
regenerated from all source documents on every run.

WHY: The accounting view is a projection, never a primary store. Rebuilding
from scratch avoids incremental-update drift; the price is a full scan,
which is acceptable for on-demand reporting.

RULES:
- derive_ledger() is pure over a TransactionSnapshot: no DB access, no
  clock, no writes. Same snapshot in, identical report out.
- Money is folded in integer cents.
- Every JournalEntry balances (sum debit == sum credit). A document that
  cannot produce a balanced entry is skipped and reported, never fatal.
- Entries are ordered by (timestamp, entry id).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..time_utils import parse_iso_datetime, to_utc_z
from . import record_store


logger = logging.getLogger(__name__)

# Account names
CASH = "Cash"
ACCOUNTS_RECEIVABLE = "Accounts Receivable"
INVENTORY = "Inventory"
SALES_TAX_PAYABLE = "Sales Tax Payable"
ACCOUNTS_PAYABLE = "Accounts Payable"
REFUNDS_PAYABLE = "Refunds Payable"
SALES_REVENUE = "Sales Revenue"
DELIVERY_REVENUE = "Delivery Revenue"
SALES_RETURNS = "Sales Returns"
COST_OF_GOODS_SOLD = "Cost of Goods Sold"
TRANSACTION_FEES = "Transaction Fees"

# Chart of accounts: name -> type (order is the report order)
CHART_OF_ACCOUNTS = {
    CASH: "asset",
    ACCOUNTS_RECEIVABLE: "asset",
    INVENTORY: "asset",
    SALES_TAX_PAYABLE: "liability",
    ACCOUNTS_PAYABLE: "liability",
    REFUNDS_PAYABLE: "liability",
    SALES_REVENUE: "revenue",
    DELIVERY_REVENUE: "revenue",
    SALES_RETURNS: "contra-revenue",
    COST_OF_GOODS_SOLD: "expense",
    TRANSACTION_FEES: "expense",
}

DEBIT_NORMAL_TYPES = frozenset({"asset", "expense", "contra-revenue"})


class MalformedTransaction(ValueError):
    """A source document that cannot be turned into a balanced entry."""


def to_cents(value, field_name: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise MalformedTransaction(f"missing {field_name}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedTransaction(f"{field_name} is not a number: {value!r}")
    if not amount.is_finite():
        raise MalformedTransaction(f"{field_name} is not finite")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def optional_cents(value, field_name: str) -> int:
    return 0 if value in (None, "") else to_cents(value, field_name)


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)


# =============================================================================
# REPORT TYPES
# =============================================================================

@dataclass(frozen=True)
class AccountLine:
    account: str
    debit: int = 0
    credit: int = 0

    def to_dict(self) -> dict:
        return {"account": self.account, "debit": from_cents(self.debit), "credit": from_cents(self.credit)}


@dataclass(frozen=True)
class JournalEntry:
    id: str
    date: str
    ref: str
    description: str
    source_type: str
    source_id: object
    lines: tuple[AccountLine, ...]

    @property
    def total_debit(self) -> int:
        return sum(line.debit for line in self.lines)

    @property
    def total_credit(self) -> int:
        return sum(line.credit for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "ref": self.ref,
            "description": self.description,
            "sourceType": self.source_type,
            "sourceId": self.source_id,
            "lines": [line.to_dict() for line in self.lines],
            "totalDebit": from_cents(self.total_debit),
            "totalCredit": from_cents(self.total_credit),
        }


@dataclass(frozen=True)
class LedgerEntry:
    date: str
    ref: str
    description: str
    debit: int
    credit: int
    balance: int

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "ref": self.ref,
            "description": self.description,
            "debit": from_cents(self.debit),
            "credit": from_cents(self.credit),
            "balance": from_cents(self.balance),
        }


@dataclass
class LedgerAccount:
    name: str
    type: str
    entries: list[LedgerEntry] = field(default_factory=list)
    total_debit: int = 0
    total_credit: int = 0
    balance: int = 0

    @property
    def debit_normal(self) -> bool:
        return self.type in DEBIT_NORMAL_TYPES

    def post(self, entry: JournalEntry, line: AccountLine) -> None:
        self.total_debit += line.debit
        self.total_credit += line.credit
        if self.debit_normal:
            self.balance += line.debit - line.credit
        else:
            self.balance += line.credit - line.debit
        self.entries.append(
            LedgerEntry(
                date=entry.date,
                ref=entry.ref,
                description=entry.description,
                debit=line.debit,
                credit=line.credit,
                balance=self.balance,
            )
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "normalBalance": "debit" if self.debit_normal else "credit",
            "entries": [e.to_dict() for e in self.entries],
            "totalDebit": from_cents(self.total_debit),
            "totalCredit": from_cents(self.total_credit),
            "balance": from_cents(self.balance),
        }


@dataclass(frozen=True)
class IncomeStatement:
    revenue: int
    cogs: int
    gross_profit: int
    operating_expenses: int
    net_income: int

    def to_dict(self) -> dict:
        return {
            "revenue": from_cents(self.revenue),
            "cogs": from_cents(self.cogs),
            "grossProfit": from_cents(self.gross_profit),
            "operatingExpenses": from_cents(self.operating_expenses),
            "netIncome": from_cents(self.net_income),
        }


@dataclass(frozen=True)
class LedgerReport:
    journal_entries: tuple[JournalEntry, ...]
    ledger_accounts: dict
    income_statement: IncomeStatement
    skipped: tuple[dict, ...]

    def to_dict(self) -> dict:
        return {
            "journalEntries": [e.to_dict() for e in self.journal_entries],
            "ledgerAccounts": {name: acct.to_dict() for name, acct in self.ledger_accounts.items()},
            "incomeStatement": self.income_statement.to_dict(),
            "skipped": list(self.skipped),
        }


@dataclass(frozen=True)
class TransactionSnapshot:
    """
    Plain-data view of every source collection the ledger reads.

    sales / orders / batches / returns are serialized records (to_dict shape);
    unit_costs maps barcode -> effective cost price.
    """
    sales: tuple = ()
    orders: tuple = ()
    batches: tuple = ()
    returns: tuple = ()
    unit_costs: dict = field(default_factory=dict)


def load_snapshot() -> TransactionSnapshot:
    """Read the store once; everything after this is pure."""
    units = record_store.inventory_units.list_all()
    return TransactionSnapshot(
        sales=tuple(s.to_dict() for s in record_store.sales.list_all()),
        orders=tuple(o.to_dict() for o in record_store.orders.list_all()),
        batches=tuple(b.to_dict() for b in record_store.batches.list_all()),
        returns=tuple(
            d.to_dict() for d in record_store.defects.list_all() if d.original_order_id is not None
        ),
        unit_costs={
            u.barcode: u.effective_cost_price
            for u in units
            if u.effective_cost_price is not None
        },
    )


# =============================================================================
# ENTRY SYNTHESIS
# =============================================================================

def _line(account: str, cents: int, *, debit: bool) -> AccountLine | None:
    """Zero lines are dropped; a negative amount posts to the opposite side."""
    if cents == 0:
        return None
    if cents < 0:
        debit = not debit
        cents = -cents
    return AccountLine(account, debit=cents) if debit else AccountLine(account, credit=cents)


def _entry(entry_id, date, ref, description, source_type, source_id, lines) -> JournalEntry:
    if not date:
        raise MalformedTransaction("missing date")
    parsed = parse_iso_datetime(date)
    kept = tuple(line for line in lines if line is not None)
    if not kept:
        raise MalformedTransaction("no non-zero amounts")
    entry = JournalEntry(
        id=entry_id,
        date=to_utc_z(parsed),
        ref=ref,
        description=description,
        source_type=source_type,
        source_id=source_id,
        lines=kept,
    )
    if not entry.is_balanced:
        raise MalformedTransaction(
            f"unbalanced: debits {from_cents(entry.total_debit):.2f} != credits {from_cents(entry.total_credit):.2f}"
        )
    return entry


def _document_entry(document: dict, source_type: str, prefix: str, with_fee: bool) -> JournalEntry:
    amounts = document.get("amounts") or {}
    payments = document.get("payments") or {}

    total = to_cents(amounts.get("total"), "amounts.total")
    vat = optional_cents(amounts.get("vat"), "amounts.vat")
    transport = optional_cents(amounts.get("transportCost"), "amounts.transportCost")
    paid = optional_cents(payments.get("totalPaid"), "payments.totalPaid")
    due = to_cents(payments.get("due"), "payments.due")
    fee = optional_cents(payments.get("transactionFee"), "payments.transactionFee") if with_fee else 0

    label = "Sale" if source_type == "sale" else "Order"
    return _entry(
        f"{prefix}-{document.get('id')}",
        document.get("date"),
        f"{prefix}-{document.get('id')}",
        f"{label} #{document.get('id')}" + (f" ({document['outlet']})" if document.get("outlet") else ""),
        source_type,
        document.get("id"),
        [
            _line(CASH, paid, debit=True),
            _line(TRANSACTION_FEES, fee, debit=True),
            _line(ACCOUNTS_RECEIVABLE, due, debit=True),
            _line(SALES_REVENUE, total - vat - transport, debit=False),
            _line(SALES_TAX_PAYABLE, vat, debit=False),
            _line(DELIVERY_REVENUE, transport, debit=False),
        ],
    )


def _cogs_entry(document: dict, source_type: str, prefix: str, unit_costs: dict) -> JournalEntry | None:
    cost = 0
    for item in document.get("items") or []:
        codes = [item["barcode"]] if item.get("isDefective") and item.get("barcode") else item.get("barcodes") or []
        for code in codes:
            if unit_costs.get(code) is not None:
                cost += to_cents(unit_costs[code], f"cost of {code}")
    if cost == 0:
        return None
    ref = f"{prefix}-{document.get('id')}"
    return _entry(
        f"{ref}-COGS",
        document.get("date"),
        ref,
        f"Cost of goods for {ref}",
        source_type,
        document.get("id"),
        [_line(COST_OF_GOODS_SOLD, cost, debit=True), _line(INVENTORY, cost, debit=False)],
    )


def _batch_entry(batch: dict) -> JournalEntry:
    cost = to_cents(batch.get("costPrice"), "costPrice")
    quantity = batch.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
        raise MalformedTransaction(f"quantity is not a count: {quantity!r}")
    amount = cost * quantity
    paid = batch.get("paid", True) is not False
    ref = batch.get("baseCode") or f"BATCH{batch.get('id')}"
    return _entry(
        f"BATCH-{batch.get('id')}",
        batch.get("createdAt"),
        ref,
        f"Purchase {ref}: {quantity} x {from_cents(cost):.2f}",
        "batch",
        batch.get("id"),
        [
            _line(INVENTORY, amount, debit=True),
            _line(CASH if paid else ACCOUNTS_PAYABLE, amount, debit=False),
        ],
    )


def _return_entry(defect: dict) -> JournalEntry:
    price = defect.get("originalSellingPrice")
    if price in (None, ""):
        price = defect.get("sellingPrice")
    amount = to_cents(price, "originalSellingPrice")
    return _entry(
        f"RET-{defect.get('id')}",
        defect.get("addedAt"),
        f"RET-{defect.get('id')}",
        f"Return of {defect.get('barcode')} from order #{defect.get('originalOrderId')}",
        "return",
        defect.get("id"),
        [_line(SALES_RETURNS, amount, debit=True), _line(REFUNDS_PAYABLE, amount, debit=False)],
    )


def _exchange_entry(document: dict, source_type: str, history_entry: dict) -> JournalEntry | None:
    difference = to_cents(history_entry.get("difference"), "difference")
    if difference == 0:
        return None
    if difference > 0:
        lines = [_line(ACCOUNTS_RECEIVABLE, difference, debit=True), _line(SALES_REVENUE, difference, debit=False)]
    else:
        lines = [_line(SALES_RETURNS, -difference, debit=True), _line(REFUNDS_PAYABLE, -difference, debit=False)]
    entry_id = history_entry.get("id") or "?"
    return _entry(
        f"EXCH-{source_type}-{entry_id}",
        history_entry.get("date"),
        str(entry_id),
        f"Exchange on {source_type} #{document.get('id')}",
        "exchange",
        document.get("id"),
        lines,
    )


def _synthesize(snapshot: TransactionSnapshot) -> tuple[list[JournalEntry], list[dict]]:
    entries: list[JournalEntry] = []
    skipped: list[dict] = []

    def _attempt(source_type, source_id, build):
        try:
            result = build()
        except MalformedTransaction as exc:
            skipped.append({"sourceType": source_type, "sourceId": source_id, "reason": str(exc)})
            logger.warning("ledger: skipped %s %s: %s", source_type, source_id, exc)
            return
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            skipped.append({"sourceType": source_type, "sourceId": source_id, "reason": f"malformed record: {exc}"})
            logger.warning("ledger: skipped %s %s: malformed record: %s", source_type, source_id, exc)
            return
        if result is not None:
            entries.append(result)

    for kind, documents, prefix, with_fee in (
        ("sale", snapshot.sales, "SALE", True),
        ("order", snapshot.orders, "ORDER", False),
    ):
        for document in documents:
            source_id = document.get("id")
            _attempt(kind, source_id, lambda: _document_entry(document, kind, prefix, with_fee))
            _attempt(kind, source_id, lambda: _cogs_entry(document, kind, prefix, snapshot.unit_costs))
            for history_entry in document.get("exchangeHistory") or []:
                _attempt(
                    "exchange",
                    history_entry.get("id") if isinstance(history_entry, dict) else None,
                    lambda: _exchange_entry(document, kind, history_entry),
                )

    for batch in snapshot.batches:
        _attempt("batch", batch.get("id"), lambda: _batch_entry(batch))

    for defect in snapshot.returns:
        _attempt("return", defect.get("id"), lambda: _return_entry(defect))

    return entries, skipped


# =============================================================================
# DERIVATION
# =============================================================================

def build_ledger_accounts(entries) -> dict[str, LedgerAccount]:
    accounts = {name: LedgerAccount(name=name, type=kind) for name, kind in CHART_OF_ACCOUNTS.items()}
    for entry in entries:
        for line in entry.lines:
            accounts[line.account].post(entry, line)
    return accounts


def build_income_statement(accounts: dict[str, LedgerAccount]) -> IncomeStatement:
    revenue = accounts[SALES_REVENUE].total_credit - accounts[SALES_RETURNS].total_debit
    cogs = accounts[COST_OF_GOODS_SOLD].total_debit
    gross_profit = revenue - cogs
    # No operating-expense accounts exist yet
    operating_expenses = 0
    return IncomeStatement(
        revenue=revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        operating_expenses=operating_expenses,
        net_income=gross_profit - operating_expenses,
    )


def derive_ledger(snapshot: TransactionSnapshot) -> LedgerReport:
    """
    Regenerate journal, ledgers and income statement from a snapshot.

    Idempotent and side-effect free; malformed documents are listed in
    `skipped` instead of aborting the run.
    """
    entries, skipped = _synthesize(snapshot)
    entries.sort(key=lambda e: (parse_iso_datetime(e.date), e.id))
    accounts = build_ledger_accounts(entries)
    return LedgerReport(
        journal_entries=tuple(entries),
        ledger_accounts=accounts,
        income_statement=build_income_statement(accounts),
        skipped=tuple(skipped),
    )


def rebuild() -> LedgerReport:
    """Full regenerate from the live store."""
    report = derive_ledger(load_snapshot())
    logger.info(
        "ledger rebuilt: %s entries, %s skipped",
        len(report.journal_entries), len(report.skipped),
    )
    return report
