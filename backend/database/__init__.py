from .connection import get_db, engine, AsyncSessionLocal, init_db, Base

# Import reconciliation models to ensure they are registered with Base
from .reconciliation_models import (
    AccountingItemDB, OrderForecastDB, GLEntryDB, ReconciliationRunDB,
    OrderStatus, GLStatus, DebitCredit
)

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'Base',
    # Reconciliation models
    'AccountingItemDB', 'OrderForecastDB', 'GLEntryDB', 'ReconciliationRunDB',
    'OrderStatus', 'GLStatus', 'DebitCredit',
]
