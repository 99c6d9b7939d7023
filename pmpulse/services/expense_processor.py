import logging
import re
from typing import Any, Dict, Optional

from pmpulse.core.error_handler import RecordProcessingError
from pmpulse.models.expense import Expense
from pmpulse.models.property import Property
from pmpulse.models.utility_account import UtilityAccount
from pmpulse.models.vendor import Vendor
from pmpulse.services.resource_processor import (
    ResourceProcessor,
    first_value,
    parse_amount,
    parse_date,
)

logger = logging.getLogger(__name__)

_GL_NUMBER = re.compile(r"^\s*(\d+)")


def extract_gl_account_number(value: Any) -> Optional[str]:
    """'6210 - Water' -> '6210'; non-numeric accounts are returned as-is"""
    if value is None or value == "":
        return None
    match = _GL_NUMBER.match(str(value))
    if match:
        return match.group(1)
    return str(value).strip()


class ExpenseProcessor(ResourceProcessor):
    """Expense register rows, auto-categorized by GL account"""

    model = Expense
    resource_type = "expenses"
    external_id_fields = ("txn_id", "payable_invoice_detail_id", "id")
    timestamp_fields = ("txn_updated_at", "updated_at", "txn_created_at")

    def __init__(self, db):
        super().__init__(db)
        self._utility_map: Optional[Dict[str, str]] = None

    @property
    def utility_map(self) -> Dict[str, str]:
        """Active GL account number -> utility type, loaded once per processor"""
        if self._utility_map is None:
            rows = (
                self.db.query(UtilityAccount.gl_account_number, UtilityAccount.utility_type)
                .filter(UtilityAccount.is_active.is_(True))
                .all()
            )
            self._utility_map = {number: utility_type for number, utility_type in rows}
            logger.debug(f"Loaded {len(self._utility_map)} utility account mappings")
        return self._utility_map

    def resolve_utility_type(self, gl_account_number: Optional[str]) -> Optional[str]:
        if not gl_account_number:
            return None
        return self.utility_map.get(gl_account_number)

    def prefetch(self, records):
        rows = [r for r in records if isinstance(r, dict)]
        self.cache_ids(Property, (r.get("property_id") for r in rows))
        self.cache_ids(Vendor, (r.get("vendor_id") for r in rows))

    def map_record(self, item):
        external_id = self.external_id(item)
        property_external_id = item.get("property_id")
        property_id = self.lookup_id(Property, str(property_external_id) if property_external_id else None)
        if property_id is None:
            raise RecordProcessingError(
                f"Expense {external_id} references unknown property {property_external_id}",
                external_id=external_id,
            )

        gl_account = first_value(item, "account", "gl_account", "account_number", "gl_account_number")
        gl_account_number = extract_gl_account_number(
            first_value(item, "account_number", "gl_account_number", "account", "gl_account")
        )
        vendor_external_id = item.get("vendor_id")

        return {
            "property_id": property_id,
            "vendor_id": self.lookup_id(Vendor, str(vendor_external_id) if vendor_external_id else None),
            "payee_name": item.get("payee_name"),
            "bill_date": parse_date(first_value(item, "bill_date", "date")),
            "due_date": parse_date(item.get("due_date")),
            "period_start": parse_date(item.get("service_from")),
            "period_end": parse_date(item.get("service_to")),
            "amount": parse_amount(first_value(item, "amount", "total_amount")),
            "paid": parse_amount(item.get("paid")),
            "unpaid": parse_amount(item.get("unpaid")),
            "description": item.get("description"),
            "gl_account": str(gl_account) if gl_account is not None else None,
            "gl_account_number": gl_account_number,
            "utility_type": self.resolve_utility_type(gl_account_number),
            "reference_number": item.get("reference_number"),
        }
