import enum


class Severity(str, enum.Enum):
    MINOR = "minor"
    MAJOR = "major"


def requires_qm_approval(severity: Severity | str) -> bool:
    """True iff closing an NCR of this severity needs a prior QM approval."""
    return Severity(severity) is Severity.MAJOR
