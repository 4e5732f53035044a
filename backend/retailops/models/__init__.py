from .catalog import Store, Product, Batch
from .inventory import InventoryUnit, DispatchRecord
from .documents import Sale, SocialOrder, DefectItem, FinancialTransaction

__all__ = [
    'Store', 'Product', 'Batch',
    'InventoryUnit', 'DispatchRecord',
    'Sale', 'SocialOrder', 'DefectItem', 'FinancialTransaction',
]
