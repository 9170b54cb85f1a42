from sqlalchemy import Column, DateTime, Integer, String

from bizcard_svc.models.base import Base


class SubscriptionRecord(Base):
    """
    One row per user mirroring their Stripe subscription.

    Rows are written only by the webhook reconciler, always as an upsert on
    ``user_id``. Cancellation is a status change, rows are never deleted.
    """
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, unique=True, nullable=False)
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True)
    status = Column(String, nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SubscriptionRecord(user_id={self.user_id}, "
            f"subscription={self.stripe_subscription_id}, status={self.status})>"
        )
