import pytest

from siteqa.core.nonconformance.severity import Severity, requires_qm_approval


@pytest.mark.parametrize("severity,expected", [
    ("major", True),
    ("minor", False),
    (Severity.MAJOR, True),
    (Severity.MINOR, False),
])
def test_requires_qm_approval(severity, expected):
    assert requires_qm_approval(severity) is expected


def test_unknown_severity_is_rejected():
    with pytest.raises(ValueError):
        requires_qm_approval("critical")
