from datetime import datetime, timedelta, timezone

from siteqa.core.nonconformance.schemas import NcrCreate, NcrRead
from siteqa.core.nonconformance.severity import Severity


def test_ncr_create_defaults_to_minor():
    data = NcrCreate(description="Kerb out of line", category="workmanship")
    assert data.severity is Severity.MINOR
    assert data.lot_ids == []


def test_read_model_from_record(make_ncr):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    read = NcrRead.model_validate(make_ncr(due_date=past))
    assert read.ncr_number == "NCR-0001"
    assert read.is_overdue is True
    assert read.model_dump()["is_overdue"] is True


def test_closed_ncr_is_never_overdue(make_ncr):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    assert NcrRead.model_validate(make_ncr(due_date=past, status="closed")).is_overdue is False


def test_no_due_date_is_not_overdue(make_ncr):
    assert NcrRead.model_validate(make_ncr()).is_overdue is False
