# Register the P&L refresh handler with the event bus
from services.costing import subscribers  # noqa: F401
