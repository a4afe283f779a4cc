"""Order repository — durable store for orders and webhook events.

Every cross-request invariant lives in the database, not in Python:

- ``orders.idempotency_key`` is unique, so concurrent checkouts with one key
  collapse into a single insert (the loser re-reads the winner's row).
- ``orders.provider_session_id`` is unique once set.
- ``webhook_events.id`` is the primary key, so an event can be recorded once.
- Status changes are conditional UPDATEs (``WHERE status IN (...)``), so a
  terminal order can never be moved, whatever raced with it.

Multi-step work goes through ``OrderRepository.transaction(work)``: ``work``
receives an ``OrderTransaction`` bound to the session and everything it does
commits or rolls back together.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ledger.models.order import Order, OrderStatus
from ledger.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class DuplicateEventError(Exception):
    """A webhook event row with this ID was committed by someone else first."""

    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} already recorded")


class OrderTransaction:
    """Reads and writes scoped to one open transaction.

    Only handed out by ``OrderRepository.transaction()``; it never commits
    or rolls back by itself.
    """

    def __init__(self, session):
        self._session = session

    def event_exists(self, event_id):
        return self._session.get(WebhookEvent, event_id) is not None

    def find_order_by_session_id_for_update(self, provider_session_id):
        """Load the order for a provider session, row-locked until commit.

        The lock is a no-op on SQLite; the conditional UPDATEs below keep
        transitions safe there too.
        """
        stmt = (
            select(Order)
            .where(Order.provider_session_id == provider_session_id)
            .with_for_update()
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def mark_paid(self, order_id, provider_payment_id=None, customer_email=None):
        """PENDING/PROCESSING -> PAID. Returns True if this call moved the order."""
        return self._transition(
            order_id,
            status=OrderStatus.PAID,
            provider_payment_id=provider_payment_id,
            customer_email=customer_email,
            paid_at=datetime.now(timezone.utc),
        )

    def mark_failed(self, order_id):
        """PENDING/PROCESSING -> FAILED. Returns True if this call moved the order."""
        return self._transition(order_id, status=OrderStatus.FAILED)

    def record_event(self, event_id, event_type, order_id=None):
        """Append the dedup row for a webhook event.

        Raises DuplicateEventError if the ID is already taken. The session
        is unusable afterwards; ``OrderRepository.transaction`` rolls it back.
        """
        self._session.add(WebhookEvent(
            id=event_id,
            event_type=event_type,
            order_id=order_id,
        ))
        try:
            self._session.flush()
        except IntegrityError as e:
            raise DuplicateEventError(event_id) from e

    def _transition(self, order_id, **values):
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status.in_(OrderStatus.OPEN))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1


class OrderRepository:
    """Owns order/webhook persistence on an explicitly passed ``db`` handle."""

    def __init__(self, db):
        self._db = db

    @property
    def session(self):
        return self._db.session

    # ──────────────────────────────────────────────
    # Transactions
    # ──────────────────────────────────────────────

    def transaction(self, work):
        """Run ``work(tx)`` as one atomic unit and return its result.

        Commits if ``work`` returns, rolls back and re-raises if it (or the
        commit) raises. A unique violation on ``webhook_events`` at commit
        time surfaces as DuplicateEventError.
        """
        session = self.session
        try:
            result = work(OrderTransaction(session))
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if _is_webhook_event_conflict(e):
                raise DuplicateEventError(None) from e
            raise
        except Exception:
            session.rollback()
            raise
        return result

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def get(self, order_id):
        return self.session.get(Order, order_id)

    def find_by_idempotency_key(self, idempotency_key):
        return self.session.execute(
            select(Order).where(Order.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def find_by_session_id(self, provider_session_id):
        return self.session.execute(
            select(Order).where(Order.provider_session_id == provider_session_id)
        ).scalar_one_or_none()

    def insert_pending(self, idempotency_key, items, amount, currency):
        """Insert a PENDING order keyed on ``idempotency_key``.

        Returns ``(order, created)``. If another request already holds the
        key, the insert fails on the unique index and the existing row is
        returned with ``created=False``; its items and amount win over the
        ones passed here.
        """
        order = Order(
            status=OrderStatus.PENDING,
            amount=amount,
            currency=currency,
            items=items,
            idempotency_key=idempotency_key,
        )
        self.session.add(order)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.find_by_idempotency_key(idempotency_key)
            if existing is None:
                # The conflict was on something other than the key
                raise
            logger.info(
                f"Order insert for idempotency key {idempotency_key} lost a race, "
                f"using existing order {existing.id}"
            )
            return existing, False

        logger.info(f"Created order {order.id} for idempotency key {idempotency_key}")
        return order, True

    def attach_session(self, order_id, provider_session_id):
        """Record the provider session and move the order to PROCESSING.

        Applies only while the order is PENDING or PROCESSING (a replacement
        session overwrites a stale one). Returns the refreshed order.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status.in_(OrderStatus.OPEN))
            .values(
                status=OrderStatus.PROCESSING,
                provider_session_id=provider_session_id,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if result.rowcount != 1:
            logger.warning(
                f"Order {order_id} left PENDING/PROCESSING before session "
                f"{provider_session_id} could be attached"
            )

        return self.get(order_id)

    # ──────────────────────────────────────────────
    # Webhook events
    # ──────────────────────────────────────────────

    def get_event(self, event_id):
        return self.session.get(WebhookEvent, event_id)

    def count_events(self, event_id=None):
        stmt = select(func.count()).select_from(WebhookEvent)
        if event_id is not None:
            stmt = stmt.where(WebhookEvent.id == event_id)
        return self.session.execute(stmt).scalar_one()

    def recent_events(self, limit=20):
        stmt = (
            select(WebhookEvent)
            .order_by(WebhookEvent.processed_at.desc())
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()


def _is_webhook_event_conflict(error):
    """True if an IntegrityError came from the webhook_events primary key."""
    text = str(getattr(error, "orig", error)).lower()
    return "webhook_events" in text
