"""Display numbering for payments."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_engine.models import Company, Payment
from settlement_engine.settlement.config import NumberingConfig

logger = logging.getLogger(__name__)


class PaymentNumbering:
    """Assigns sequential per-company numbers to payments.

    Numbering is cosmetic: a failure is logged and the payment keeps a NULL
    number, it never fails the settlement.
    """

    def __init__(self, db: Session, config: NumberingConfig | None = None):
        self.db = db
        self.config = config or NumberingConfig()

    def apply_number(self, payment: Payment) -> Payment:
        """Give the payment a number if it does not have one yet."""
        if payment.number:
            return payment

        try:
            with self.db.begin_nested():
                company = self.db.scalars(
                    select(Company)
                    .where(Company.company_id == payment.company_id)
                    .with_for_update()
                ).one()
                counter = str(company.payment_number_counter).zfill(self.config.padding)
                payment.number = self.config.pattern.format(counter=counter)
                company.payment_number_counter += 1
                self.db.flush()
        except SQLAlchemyError:
            logger.exception("Failed to number payment %s", payment.payment_id)
            payment.number = None

        return payment
