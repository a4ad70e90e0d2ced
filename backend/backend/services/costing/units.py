"""Cost categories, units and the enumerations cost records are validated against."""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


class CostCategory(str, Enum):
    MATERIALS = "materials"
    MANUFACTURING_LABOUR = "manufacturing_labour"
    INSTALL_LABOUR = "install_labour"
    SUPPLIER_FEES = "supplier_fees"
    THIRD_PARTY = "third_party"


class Unit(str, Enum):
    HOURS = "hours"
    COUNT = "count"
    LENGTH = "length"  # metres


# Which units a component's quantity may be expressed in, per category.
# Only HOURS quantities feed the labour-minute totals.
CATEGORY_UNITS: dict[CostCategory, tuple[Unit, ...]] = {
    CostCategory.MATERIALS: (Unit.COUNT, Unit.LENGTH),
    CostCategory.MANUFACTURING_LABOUR: (Unit.HOURS,),
    CostCategory.INSTALL_LABOUR: (Unit.HOURS,),
    CostCategory.SUPPLIER_FEES: (Unit.COUNT,),
    CostCategory.THIRD_PARTY: (Unit.COUNT,),
}


def unit_allowed(category: str, unit: str) -> bool:
    try:
        return Unit(unit) in CATEGORY_UNITS[CostCategory(category)]
    except ValueError:
        return False


class RateType(str, Enum):
    MANUFACTURING = "manufacturing"
    INSTALLATION = "installation"
    ADMIN = "admin"
    TRAVEL = "travel"


LABOUR_RATE_TYPES = {
    CostCategory.MANUFACTURING_LABOUR: RateType.MANUFACTURING,
    CostCategory.INSTALL_LABOUR: RateType.INSTALLATION,
}


class RecordType(str, Enum):
    COST_COMPONENT = "cost_component"
    TRIP = "trip"
    ADMIN_TIME = "admin_time"
    GROUND_CONDITION = "ground_condition"


class TripType(str, Enum):
    SITE_QUOTE = "site_quote"
    POST_INSTALL = "post_install"
    PANEL_INSTALL = "panel_install"
    GATE_INSTALL = "gate_install"
    WELDER_DROPOFF = "welder_dropoff"
    WELDER_PICKUP = "welder_pickup"
    POWDER_COAT_DROPOFF = "powder_coat_dropoff"
    POWDER_COAT_PICKUP = "powder_coat_pickup"
    SUPPLIER_DELIVERY = "supplier_delivery"
    FOLLOW_UP = "follow_up"
    WARRANTY = "warranty"


class TravelStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AdminActivity(str, Enum):
    QUOTE_CREATION = "quote_creation"
    CLIENT_MESSAGING = "client_messaging"
    CLIENT_CALL = "client_call"
    SPEC_GATHERING = "spec_gathering"
    SCHEDULING = "scheduling"
    INVOICING = "invoicing"
    FOLLOW_UP = "follow_up"
    GENERAL_ADMIN = "general_admin"


class GroundConditionKind(str, Enum):
    STANDARD = "standard"
    ROCKY = "rocky"
    CONCRETE = "concrete"
    EXISTING_FENCE = "existing_fence"
    EXISTING_FOOTINGS = "existing_footings"
    SLOPED = "sloped"
    SANDY = "sandy"
    CLAY = "clay"


class MaterialSource(str, Enum):
    MANUFACTURED = "manufactured"
    GLASS_SUPPLIER = "glass_supplier"
    COLORBOND_SUPPLIER = "colorbond_supplier"
    HARDWARE_SUPPLIER = "hardware_supplier"
    OTHER = "other"


# ---- Money ----
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def minutes_from_hours(hours: Decimal) -> int:
    return int((hours * 60).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
