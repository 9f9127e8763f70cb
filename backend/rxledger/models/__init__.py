from .catalog import Location, Product, Party
from .inventory import StockBatch, StockMovement, AllocationLine
from .assignments import ConsignmentPeriod, AssignmentLine, AssignmentHolding, AssignmentHistory
from .sales import TransactionSequence, SaleTransaction, SaleLineItem, Payment, PaymentEvent

__all__ = [
    'Location', 'Product', 'Party',
    'StockBatch', 'StockMovement', 'AllocationLine',
    'ConsignmentPeriod', 'AssignmentLine', 'AssignmentHolding', 'AssignmentHistory',
    'TransactionSequence', 'SaleTransaction', 'SaleLineItem', 'Payment', 'PaymentEvent',
]
