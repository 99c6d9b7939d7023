"""
Resource processors: map AppFolio report rows onto local entities.

Every processor upserts by external_id. Only mapped columns are written, so local-only
columns (notes, manual adjustments, geocodes) survive re-syncs.
"""
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pmpulse.core.error_handler import RecordProcessingError
from pmpulse.models.property import Property
from pmpulse.models.unit import Unit
from pmpulse.models.vendor import Vendor
from pmpulse.models.work_order import WorkOrder

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


# Value parsers

def parse_amount(value: Any) -> Optional[float]:
    """Parse '$1,234.50'-style amounts; None for empty or unparseable values"""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1", "y")
    return bool(value)


def parse_int(value: Any) -> Optional[int]:
    amount = parse_amount(value)
    return int(amount) if amount is not None else None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse AppFolio timestamps and dates; naive values are treated as UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            logger.warning(f"Failed to parse date value: {text}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def map_unit_status(status: Optional[str]) -> str:
    value = (status or "").strip().lower()
    if value in ("occupied", "rented", "leased"):
        return "occupied"
    if value in ("not ready", "not_ready", "maintenance"):
        return "not_ready"
    return "vacant"


def map_work_order_status(status: Optional[str]) -> str:
    value = (status or "").strip().lower()
    if value in ("in_progress", "in progress", "assigned", "working", "scheduled"):
        return "in_progress"
    if value in ("completed", "done", "closed", "resolved"):
        return "completed"
    if value in ("cancelled", "canceled", "rejected"):
        return "cancelled"
    return "open"


def map_work_order_priority(priority: Optional[str]) -> str:
    value = (priority or "").strip().lower()
    if value in ("low", "minor"):
        return "low"
    if value in ("high", "urgent", "important"):
        return "high"
    if value in ("emergency", "critical", "immediate"):
        return "emergency"
    return "normal"


def first_value(item: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-empty value among AppFolio's alternative column names"""
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return default


class ResourceProcessor:
    """
    Base processor for one AppFolio resource type.

    Subclasses set model, resource_type and external_id_fields and implement map_record().
    """

    model: Type = None
    resource_type: str = None
    external_id_fields: tuple = ("id",)
    timestamp_fields: tuple = ("updated_at", "last_updated", "modified_at")

    def __init__(self, db: Session):
        self.db = db
        self._id_cache: Dict[Type, Dict[str, str]] = {}

    # Hooks

    def map_record(self, item: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def prefetch(self, records: List[Dict[str, Any]]) -> None:
        """Warm parent caches for a page"""

    # Shared behaviour

    def external_id(self, item: Dict[str, Any]) -> Optional[str]:
        value = first_value(item, *self.external_id_fields)
        if value is None:
            return None
        return str(value).strip() or None

    def record_timestamp(self, item: Dict[str, Any]) -> Optional[datetime]:
        return parse_datetime(first_value(item, *self.timestamp_fields))

    def lookup_id(self, model: Type, external_id: Optional[str]) -> Optional[str]:
        """Local id for an external id, via the per-page cache"""
        if not external_id:
            return None
        cache = self._id_cache.setdefault(model, {})
        if external_id not in cache:
            row = self.db.query(model.id).filter(model.external_id == external_id).first()
            if row is None:
                return None
            cache[external_id] = row[0]
        return cache[external_id]

    def cache_ids(self, model: Type, external_ids: Iterable[Optional[str]]) -> None:
        wanted = {str(e) for e in external_ids if e not in (None, "")}
        if not wanted:
            return
        cache = self._id_cache.setdefault(model, {})
        rows = self.db.query(model.id, model.external_id).filter(model.external_id.in_(wanted)).all()
        for local_id, external_id in rows:
            cache[external_id] = local_id

    def upsert(self, item: Dict[str, Any]) -> str:
        """Create or update one record, returns CREATED or UPDATED"""
        external_id = self.external_id(item)
        if not external_id:
            raise RecordProcessingError(f"{self.resource_type} record has no external id")

        data = self.map_record(item)
        data["source_updated_at"] = self.record_timestamp(item)

        instance = self.db.query(self.model).filter(self.model.external_id == external_id).first()
        if instance is None:
            instance = self.model(external_id=external_id, **data)
            self.db.add(instance)
            outcome = CREATED
        else:
            for key, value in data.items():
                setattr(instance, key, value)
            outcome = UPDATED

        self.db.flush()
        self._id_cache.setdefault(self.model, {})[external_id] = instance.id
        return outcome

    def process_page(self, records: List[Dict[str, Any]], tracker) -> Optional[datetime]:
        """
        Upsert a page of records, reporting each outcome to the tracker.

        Each record runs in its own savepoint so one bad record never rolls back
        its neighbours. Returns the newest record timestamp seen on the page.
        """
        self.prefetch(records)
        newest: Optional[datetime] = None

        for item in records:
            external_id = self.external_id(item) if isinstance(item, dict) else None
            try:
                if not isinstance(item, dict):
                    raise RecordProcessingError(f"{self.resource_type} record is not an object")
                with self.db.begin_nested():
                    outcome = self.upsert(item)
            except RecordProcessingError as e:
                tracker.record_skipped(str(e), external_id=external_id or e.external_id)
                continue
            except (SQLAlchemyError, ValueError, TypeError, KeyError) as e:
                tracker.record_error(
                    f"Failed to store {self.resource_type} {external_id or 'unknown'}: {str(e)}",
                    external_id=external_id,
                )
                continue

            if outcome == CREATED:
                tracker.record_created()
            else:
                tracker.record_updated()

            stamp = self.record_timestamp(item)
            if stamp and (newest is None or stamp > newest):
                newest = stamp

        self.db.commit()
        return newest


class PropertyProcessor(ResourceProcessor):
    model = Property
    resource_type = "properties"
    external_id_fields = ("property_id", "id")

    def map_record(self, item):
        name = first_value(item, "property_name", "property_address", "property", "property_street")
        if not name:
            raise RecordProcessingError("Property record has no name", external_id=self.external_id(item))
        return {
            "name": str(name),
            "address_line1": first_value(item, "property_street", "address"),
            "address_line2": first_value(item, "property_street2", "address2"),
            "city": first_value(item, "property_city", "city"),
            "state": first_value(item, "property_state", "state"),
            "zip": first_value(item, "property_zip", "zip"),
            "county": first_value(item, "property_county", "county"),
            "property_type": first_value(item, "property_type", "type", default="residential"),
            "unit_count": parse_int(first_value(item, "units", "number_of_units", "unit_count")),
            "year_built": parse_int(item.get("year_built")),
            "total_sqft": parse_int(item.get("sqft")),
            "portfolio": item.get("portfolio"),
            "is_active": (item.get("visibility") or "Active") == "Active",
        }


class UnitProcessor(ResourceProcessor):
    model = Unit
    resource_type = "units"
    external_id_fields = ("unit_id", "id")

    def prefetch(self, records):
        self.cache_ids(Property, (r.get("property_id") for r in records if isinstance(r, dict)))

    def map_record(self, item):
        property_external_id = first_value(item, "property_id")
        property_id = self.lookup_id(Property, str(property_external_id) if property_external_id else None)
        if property_id is None:
            raise RecordProcessingError(
                f"Unit {self.external_id(item)} references unknown property {property_external_id}",
                external_id=self.external_id(item),
            )
        return {
            "property_id": property_id,
            "unit_number": str(first_value(item, "unit_name", "unit_number", "name", default="Unknown")),
            "unit_type": first_value(item, "unit_type", "billed_as"),
            "sqft": parse_int(item.get("sqft")),
            "bedrooms": parse_int(item.get("bedrooms")),
            "bathrooms": parse_amount(item.get("bathrooms")),
            "status": map_unit_status(first_value(item, "unit_status", "status")),
            "market_rent": parse_amount(item.get("market_rent")),
            "advertised_rent": parse_amount(item.get("advertised_rent")),
            "rentable": parse_bool(first_value(item, "rentable", default="Yes")),
            "is_active": (item.get("visibility") or "Active") == "Active",
        }


class VendorProcessor(ResourceProcessor):
    model = Vendor
    resource_type = "vendors"
    external_id_fields = ("vendor_id", "id")

    def map_record(self, item):
        return {
            "company_name": str(first_value(item, "company_name", "name", default="Unknown Vendor")),
            "contact_name": first_value(item, "name", "contact_name"),
            "email": first_value(item, "email", "primary_email"),
            "phone": first_value(item, "phone", "primary_phone"),
            "address_street": first_value(item, "address", "street"),
            "address_city": item.get("city"),
            "address_state": item.get("state"),
            "address_zip": first_value(item, "zip", "postal_code"),
            "vendor_type": item.get("vendor_type"),
            "vendor_trades": item.get("vendor_trades"),
            "workers_comp_expires": parse_date(item.get("workers_comp_expires")),
            "liability_ins_expires": parse_date(item.get("liability_ins_expires")),
            "auto_ins_expires": parse_date(item.get("auto_ins_expires")),
            "state_lic_expires": parse_date(item.get("state_lic_expires")),
            "do_not_use": parse_bool(first_value(item, "do_not_use_for_work_order", "do_not_use", default=False)),
            "is_active": (item.get("visibility") or "Active") == "Active",
        }


class WorkOrderProcessor(ResourceProcessor):
    model = WorkOrder
    resource_type = "work_orders"
    external_id_fields = ("work_order_id", "id")
    timestamp_fields = ("updated_at", "last_updated", "completed_on", "created_at")

    def prefetch(self, records):
        rows = [r for r in records if isinstance(r, dict)]
        self.cache_ids(Property, (r.get("property_id") for r in rows))
        self.cache_ids(Unit, (r.get("unit_id") for r in rows))
        self.cache_ids(Vendor, (r.get("vendor_id") for r in rows))

    def map_record(self, item):
        def ref(key):
            value = item.get(key)
            return str(value) if value not in (None, "") else None

        property_id = self.lookup_id(Property, ref("property_id"))
        if ref("property_id") and property_id is None:
            raise RecordProcessingError(
                f"Work order {self.external_id(item)} references unknown property {ref('property_id')}",
                external_id=self.external_id(item),
            )
        return {
            "property_id": property_id,
            "unit_id": self.lookup_id(Unit, ref("unit_id")),
            "vendor_id": self.lookup_id(Vendor, ref("vendor_id")),
            "vendor_name": first_value(item, "vendor_name", "vendor"),
            "opened_at": parse_datetime(item.get("created_at")),
            "closed_at": parse_datetime(first_value(item, "completed_on", "work_completed_on")),
            "status": map_work_order_status(item.get("status")),
            "priority": map_work_order_priority(item.get("priority")),
            "category": first_value(item, "work_order_type", "work_order_issue"),
            "description": first_value(item, "job_description", "service_request_description", "instructions"),
            "amount": parse_amount(item.get("amount")),
            "vendor_bill_amount": parse_amount(item.get("vendor_bill_amount")),
            "estimate_amount": parse_amount(first_value(item, "estimate_amount", "estimate")),
            "vendor_trade": item.get("vendor_trade"),
        }
