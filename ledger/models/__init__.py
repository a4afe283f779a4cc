# Models package — import all models here so Alembic can discover them.

from ledger.models.order import Order, OrderStatus  # noqa: F401
from ledger.models.webhook_event import WebhookEvent  # noqa: F401
