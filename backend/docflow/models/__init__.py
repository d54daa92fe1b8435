from .tenancy import Organization, DocumentSequence
from .auth import User, SessionToken
from .quotations import Quotation, QuotationLine
from .invoices import Invoice, InvoiceLine, Payment
from .work_orders import WorkOrder, WorkOrderLine

__all__ = [
    'Organization', 'DocumentSequence',
    'User', 'SessionToken',
    'Quotation', 'QuotationLine',
    'Invoice', 'InvoiceLine', 'Payment',
    'WorkOrder', 'WorkOrderLine',
]
