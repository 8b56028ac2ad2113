from siteqa.core.nonconformance.service import format_ncr_number


def test_ncr_number_is_zero_padded():
    assert format_ncr_number(1) == "NCR-0001"
    assert format_ncr_number(42) == "NCR-0042"


def test_ncr_number_grows_past_padding():
    assert format_ncr_number(10000) == "NCR-10000"


def test_ncr_number_custom_prefix():
    assert format_ncr_number(7, prefix="QA") == "QA-0007"
