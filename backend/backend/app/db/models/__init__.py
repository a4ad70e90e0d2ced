from .common import *  # noqa
from .auth import *  # noqa
from .quoting import *  # noqa
from .costing import *  # noqa
from .pl_summary import *  # noqa
from .security_audit import *  # noqa

# Platform event-bus tables (transactional outbox + webhook subscriptions)
from app.events.outbox import *  # noqa
from app.events.subscriptions import *  # noqa
