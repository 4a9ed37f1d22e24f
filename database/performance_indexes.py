"""
Composite indexes for the reconciliation and listing queries
"""

from sqlalchemy import Index

from database import connection
from database.models import Call, Payment, PaymentCall, ServiceForm
from utils.logger import db_logger as logger

PERFORMANCE_INDEXES = [
    # closed calls per technician and window
    Index("idx_calls_status_tech_created", Call.status, Call.tech_id, Call.created_at),
    Index("idx_calls_tech_closed", Call.tech_id, Call.closed_at),
    # payments per technician and window, duplicate guard
    Index("idx_payments_tech_created", Payment.tech_id, Payment.created_at),
    Index("idx_payment_calls_payment_call", PaymentCall.payment_id, PaymentCall.call_id),
    Index("idx_forms_tech_created", ServiceForm.tech_username, ServiceForm.created_at),
]


def create_performance_indexes() -> int:
    """Create the missing indexes; returns how many were checked"""
    if connection.engine is None:
        connection.configure_engine()
    for index in PERFORMANCE_INDEXES:
        try:
            index.create(bind=connection.engine, checkfirst=True)
        except Exception as e:
            logger.warning(f"index {index.name} not created: {e}")
    return len(PERFORMANCE_INDEXES)
