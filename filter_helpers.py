from typing import Optional

VALID_LOAN_STATUSES = {"OPEN", "CLOSED"}


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value == "":
        return None
    return value


def normalize_loan_status(status: Optional[str]) -> Optional[str]:
    status = (status or "").upper()
    if status in VALID_LOAN_STATUSES:
        return status
    return None
