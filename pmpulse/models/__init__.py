# Database models
from .appfolio_connection import AppfolioConnection
from .sync_run import SyncRun, SyncRunResource
from .sync_state import SyncState
from .raw_event import RawEvent
from .property import Property
from .unit import Unit
from .vendor import Vendor
from .work_order import WorkOrder
from .expense import Expense
from .utility_account import UtilityAccount
from .sync_failure_alert import SyncFailureAlert

__all__ = [
    "AppfolioConnection", "SyncRun", "SyncRunResource", "SyncState", "RawEvent",
    "Property", "Unit", "Vendor", "WorkOrder", "Expense", "UtilityAccount", "SyncFailureAlert",
]
