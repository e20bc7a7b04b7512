from datetime import date
from decimal import Decimal

import pytest

from recon_calc.service import ReconciliationService
from recon_calc_web.schedule_store import ScheduleStore


@pytest.fixture
def store(tmp_path):
    return ScheduleStore(f"sqlite:///{tmp_path / 'recon.sqlite3'}?check_same_thread=false")


@pytest.fixture
def service(store):
    return ReconciliationService(store)


@pytest.fixture
def item_args():
    """The nine-thousand pound, four month prepayment used across the tests."""
    return {
        "client_id": "client-1",
        "account_code": "1100",
        "role": "expense",
        "counterparty": "Acme Insurance",
        "description": "Annual cover",
        "start_date": date(2026, 1, 9),
        "end_date": date(2026, 4, 8),
        "total_amount": Decimal("9000.00"),
    }
