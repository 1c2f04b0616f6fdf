from .tenancy import Tenant, TenantSequence
from .auth import User, SessionToken
from .catalog import (
    BATCH_STATUS_QUARANTINE,
    BATCH_STATUS_REJECTED,
    BATCH_STATUS_RELEASED,
    BATCH_STATUSES,
    Batch,
    Product,
    ProductPresentation,
)
from .warehouse import MOVEMENT_TYPES, InventoryBalance, Location, StockMovement, Warehouse
from .sales import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_FULFILLED,
    QUOTE_STATUS_CREATED,
    QUOTE_STATUS_PROCESSED,
    Customer,
    Quote,
    QuoteLine,
    SalesOrder,
    SalesOrderLine,
    SalesOrderReservation,
)
from .requests import (
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_FULFILLED,
    REQUEST_STATUS_OPEN,
    StockMovementRequest,
    StockMovementRequestItem,
)
from .audit import AuditEvent

__all__ = [
    'Tenant', 'TenantSequence',
    'User', 'SessionToken',
    'Product', 'ProductPresentation', 'Batch',
    'BATCH_STATUS_RELEASED', 'BATCH_STATUS_QUARANTINE', 'BATCH_STATUS_REJECTED', 'BATCH_STATUSES',
    'Warehouse', 'Location', 'InventoryBalance', 'StockMovement', 'MOVEMENT_TYPES',
    'Customer', 'Quote', 'QuoteLine', 'SalesOrder', 'SalesOrderLine', 'SalesOrderReservation',
    'QUOTE_STATUS_CREATED', 'QUOTE_STATUS_PROCESSED',
    'ORDER_STATUS_DRAFT', 'ORDER_STATUS_CONFIRMED', 'ORDER_STATUS_FULFILLED', 'ORDER_STATUS_CANCELLED',
    'StockMovementRequest', 'StockMovementRequestItem',
    'REQUEST_STATUS_OPEN', 'REQUEST_STATUS_FULFILLED', 'REQUEST_STATUS_CANCELLED',
    'AuditEvent',
]
