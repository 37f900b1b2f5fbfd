"""
Field validators applied to extracted and AI-returned records.
"""

import re
from dataclasses import replace
from typing import Optional

from .utils import ParsedContactRecord


EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^[\d\s\-+()#]{8,25}$")
MOBILE_RE = re.compile(r"^[\d\s\-+()]{8,20}$")
WEBSITE_RE = re.compile(
    r"^(https?://)?(www\.)?[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}(/\S*)?$",
    re.I
)
MAX_NAME_LENGTH = 50


def validate_email(value: Optional[str]) -> bool:
    return bool(value) and EMAIL_RE.match(value.strip()) is not None


def validate_phone(value: Optional[str]) -> bool:
    return bool(value) and PHONE_RE.match(value.strip()) is not None


def validate_mobile(value: Optional[str]) -> bool:
    return bool(value) and MOBILE_RE.match(value.strip()) is not None


def validate_website(value: Optional[str]) -> bool:
    return bool(value) and WEBSITE_RE.match(value.strip()) is not None


def validate_name(value: Optional[str]) -> bool:
    return bool(value) and 0 < len(value.strip()) <= MAX_NAME_LENGTH


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_and_clean(record: ParsedContactRecord) -> ParsedContactRecord:
    """Trim every field and drop values that fail their validator."""
    cleaned = replace(
        record,
        name=_blank_to_none(record.name),
        job_title=_blank_to_none(record.job_title),
        company=_blank_to_none(record.company),
        department=_blank_to_none(record.department),
        email=_blank_to_none(record.email),
        phone=_blank_to_none(record.phone),
        mobile=_blank_to_none(record.mobile),
        fax=_blank_to_none(record.fax),
        address=_blank_to_none(record.address),
        website=_blank_to_none(record.website),
    )

    if cleaned.name and not validate_name(cleaned.name):
        cleaned.name = None
    if cleaned.email and not validate_email(cleaned.email):
        cleaned.email = None
    if cleaned.phone and not validate_phone(cleaned.phone):
        cleaned.phone = None
    if cleaned.fax and not validate_phone(cleaned.fax):
        cleaned.fax = None
    if cleaned.mobile and not validate_mobile(cleaned.mobile):
        cleaned.mobile = None
    if cleaned.website and not validate_website(cleaned.website):
        cleaned.website = None
    return cleaned
