"""
Retry and rollback tests for the unit-of-work wrapper.
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from storeledger.extensions import db
from storeledger.models import Customer
from storeledger.services.concurrency import ResourceContention, run_with_retry


def locked():
    return OperationalError("UPDATE customers ...", {}, Exception("database is locked"))


class TestRunWithRetry:

    def test_returns_result(self, app):
        assert run_with_retry(lambda: 42) == 42

    def test_retries_then_succeeds(self, app):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise locked()
            return "done"

        assert run_with_retry(_op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_exhausted_retries_raise_contention(self, app):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(ResourceContention) as exc:
            run_with_retry(_op, attempts=2, backoff_base=0)
        assert exc.value.attempts == 2
        assert isinstance(exc.value.__cause__, StaleDataError)

    def test_other_errors_propagate_without_retry(self, app):
        calls = []

        def _op():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_failure_rolls_back_partial_work(self, db_session):
        def _op():
            db.session.add(Customer(name="Half written", balance_cents=0))
            db.session.flush()
            raise ValueError("validation failed late")

        with pytest.raises(ValueError):
            run_with_retry(_op)
        assert db.session.query(Customer).filter_by(name="Half written").count() == 0

    def test_defaults_come_from_config(self, app):
        calls = []

        def _op():
            calls.append(1)
            raise locked()

        with pytest.raises(ResourceContention):
            run_with_retry(_op)
        assert len(calls) == app.config["RECON_RETRY_ATTEMPTS"]


class TestVersionedRows:

    def test_lost_update_is_detected(self, db_session, customer):
        """A write based on a stale version_id is refused, not silently applied."""
        row = db.session.get(Customer, customer.id)
        version = row.version_id
        db.session.execute(
            Customer.__table__.update()
            .where(Customer.__table__.c.id == customer.id)
            .values(version_id=version + 1)
        )
        row.balance_cents = 999

        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()
