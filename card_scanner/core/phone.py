"""
Phone number classification, extension splitting, and formatting.

Numbers follow the Taiwan numbering plan:
- mobile: 09 + 8 digits, or +886 9 + 8 digits
- landline: area code 02-08 (some with 3-4 digit codes) + subscriber
  number, optionally followed by an extension

Every candidate is classified into exactly one category (or none) by
classify(), and the extraction rules for each category only accept
candidates of that category. A number can therefore never be reported
as both landline and mobile.
"""

import re
from typing import Dict, List, Optional, Tuple

from .rules import Rule, apply_rules


MOBILE = "mobile"
LANDLINE = "landline"

COUNTRY_CODE = "886"

# Total domestic length (leading 0 included) per area code, as (min, max).
# Digits beyond max are treated as an extension when no delimiter is present.
AREA_CODE_LENGTHS: Dict[str, Tuple[int, int]] = {
    "02": (10, 10),    # Taipei
    "03": (9, 10),     # Taoyuan, Hsinchu, Yilan, Hualien
    "037": (9, 9),     # Miaoli
    "04": (9, 10),     # Taichung, Changhua
    "049": (9, 10),    # Nantou
    "05": (9, 9),      # Chiayi, Yunlin
    "06": (9, 9),      # Tainan, Penghu
    "07": (9, 9),      # Kaohsiung
    "08": (9, 9),      # Pingtung
    "082": (9, 9),     # Kinmen
    "0826": (9, 9),    # Wuqiu
    "0836": (9, 9),    # Matsu
    "089": (9, 9),     # Taitung
    "0800": (10, 10),  # toll-free
    "0809": (10, 10),  # toll-free
}

TOLL_FREE_CODES = ("0800", "0809")

MOBILE_LENGTH = 10
MAX_EXTENSION_DIGITS = 5

EXT_DELIMITER = r"(?:#|ext\.?|x|分機|轉)"
EXPLICIT_EXTENSION = re.compile(rf"\s*{EXT_DELIMITER}\s*[:：.]?\s*(\d{{1,6}})\s*$", re.I)


# =============================================================================
# Normalization helpers
# =============================================================================

def clean_digits(raw: str) -> str:
    """Digits only, keeping a leading '+'."""
    raw = raw.strip()
    digits = re.sub(r"\D", "", raw)
    return "+" + digits if raw.startswith("+") else digits


def to_domestic(digits: str) -> Tuple[str, bool]:
    """
    Convert to the domestic form with a leading 0.

    Returns:
        (domestic_digits, was_international)
    """
    bare = digits.lstrip("+")
    if bare.startswith(COUNTRY_CODE) and len(bare) > 6:
        rest = bare[len(COUNTRY_CODE):]
        # +886 (0)2 ... trunk prefix written in by mistake
        if rest.startswith("0"):
            rest = rest[1:]
        return "0" + rest, True
    return bare, False


def area_code(domestic: str) -> Optional[str]:
    """Longest tabulated area code prefixing the number."""
    for length in (4, 3, 2):
        code = domestic[:length]
        if code in AREA_CODE_LENGTHS:
            return code
    return None


def join_extension(main: str, ext: Optional[str]) -> str:
    return f"{main}#{ext}" if ext else main


# =============================================================================
# Extension splitting and classification
# =============================================================================

def split_extension(raw: str) -> Tuple[str, Optional[str]]:
    """
    Separate a possible extension from a phone number.

    An explicit delimiter (#, ext, x, 分機, 轉) always splits. Without one,
    a landline whose digit run exceeds the maximum length for its area
    code is split at that length. Splitting is idempotent:
    split_extension(join_extension(*split_extension(s))) == split_extension(s).

    Returns:
        (main_digits, extension or None)
    """
    match = EXPLICIT_EXTENSION.search(raw)
    if match and re.search(r"\d", raw[:match.start()]):
        return clean_digits(raw[:match.start()]), match.group(1)

    digits = clean_digits(raw)
    domestic, international = to_domestic(digits)
    if not re.match(r"0[2-8]", domestic):
        return digits, None

    code = area_code(domestic)
    if code is None:
        return digits, None

    max_len = AREA_CODE_LENGTHS[code][1]
    extra = domestic[max_len:]
    if not extra or len(extra) > MAX_EXTENSION_DIGITS:
        return digits, None

    main = domestic[:max_len]
    if international:
        main = f"+{COUNTRY_CODE}{main[1:]}"
    return main, extra


def classify(raw: str) -> Optional[str]:
    """
    Exclusive category of a candidate: MOBILE, LANDLINE, or None.
    """
    main, _ = split_extension(raw)
    domestic, _ = to_domestic(main)

    if domestic.startswith("09"):
        return MOBILE if len(domestic) == MOBILE_LENGTH else None

    code = area_code(domestic)
    if code is not None:
        min_len, max_len = AREA_CODE_LENGTHS[code]
        if min_len <= len(domestic) <= max_len:
            return LANDLINE
    return None


def digits_key(raw: str) -> str:
    """Domestic main-number digits, for comparing two formatted numbers."""
    main, _ = split_extension(raw)
    return to_domestic(main)[0]


# =============================================================================
# Formatting
# =============================================================================

def _group_subscriber(sub: str) -> str:
    if len(sub) >= 7:
        return f"{sub[:-4]}-{sub[-4:]}"
    if len(sub) == 6:
        return f"{sub[:3]}-{sub[3:]}"
    return sub


def format_phone(raw: str) -> str:
    """
    Canonical display form.

    mobile:          0912-345-678 / +886-912-345-678
    landline:        03-6123-4567 / +886-3-6123-4567
    toll-free:       0800-123-456 / +886-800-123-456
    with extension:  03-6123-4567 #12
    Unclassifiable numbers are returned as cleaned digits.
    """
    main, ext = split_extension(raw)
    category = classify(main)
    domestic, international = to_domestic(main)

    if category == MOBILE:
        body = f"{domestic[1:4]}-{domestic[4:7]}-{domestic[7:]}"
        formatted = f"+{COUNTRY_CODE}-{body}" if international else f"0{body}"
    elif category == LANDLINE:
        code = area_code(domestic)
        if code in TOLL_FREE_CODES:
            sub = f"{domestic[4:7]}-{domestic[7:]}"
        else:
            sub = _group_subscriber(domestic[len(code):])
        if international:
            formatted = f"+{COUNTRY_CODE}-{code[1:]}-{sub}"
        else:
            formatted = f"{code}-{sub}"
    else:
        formatted = main

    return f"{formatted} #{ext}" if ext else formatted


# =============================================================================
# Extraction rules
# =============================================================================

SEP = r"[.\- \t]?"
EXT_SUFFIX = rf"(?:[ \t]*{EXT_DELIMITER}[ \t]*[:：.]?[ \t]*\d{{1,6}})?"
NUMBER_TAIL = (
    rf"\.?\s*[:：﹕︰]?\s*"
    rf"(\+?[\d(][\d\-() \t.+]{{5,20}}\d{EXT_SUFFIX})"
)

LANDLINE_LABELS = r"(?:\bTel\b|\bPhone\b|\bOffice\b|電話|市話)"
MOBILE_LABELS = r"(?:\bMobile\b|\bCell\b|\bMob\b|手機|行動)"
FAX_LABELS = r"(?:\bFax\b|傳真)"


def _accept(category: str):
    def _post(raw: str) -> Optional[str]:
        raw = raw.strip()
        return format_phone(raw) if classify(raw) == category else None
    return _post


def _accept_labeled_landline(raw: str) -> Optional[str]:
    """Labeled numbers may omit the area code (e.g. "Tel: 2345-6789")."""
    category = classify(raw)
    if category == LANDLINE:
        return format_phone(raw)
    if category is None:
        main, ext = split_extension(raw)
        if re.fullmatch(r"[1-8]\d{6,7}", main):
            return _group_subscriber(main) + (f" #{ext}" if ext else "")
    return None


def _accept_labeled_mobile(raw: str) -> Optional[str]:
    """Labeled mobiles sometimes lose the leading 0 in OCR."""
    if classify(raw) == MOBILE:
        return format_phone(raw)
    main, _ = split_extension(raw)
    if re.fullmatch(r"9\d{8}", main):
        return format_phone("0" + main)
    return None


MOBILE_RULES: List[Rule] = [
    Rule.compile("mobile_international",
                 rf"(?<![\d+])\+?{COUNTRY_CODE}{SEP}\(?0?\)?{SEP}9\d{{2}}{SEP}\d{{3}}{SEP}\d{{3}}(?!\d)",
                 _accept(MOBILE)),
    Rule.compile("mobile_domestic",
                 rf"(?<![\d+])09\d{{2}}{SEP}\d{{3}}{SEP}\d{{3}}(?!\d)",
                 _accept(MOBILE)),
    Rule.compile("mobile_spaced",
                 r"(?<![\d+])0 ?9(?: ?\d){8}(?!\d)",
                 _accept(MOBILE)),
]

LANDLINE_RULES: List[Rule] = [
    Rule.compile("landline_international",
                 rf"(?<![\d+])\+?{COUNTRY_CODE}{SEP}\(?0?\)?{SEP}[2-8]\d{{0,3}}{SEP}\d{{3,4}}{SEP}\d{{3,4}}{EXT_SUFFIX}(?!\d)",
                 _accept(LANDLINE), flags=re.I),
    Rule.compile("landline_domestic",
                 rf"(?<![\d+])\(?0[2-8]\d{{0,2}}\)?{SEP}\d{{3,4}}{SEP}\d{{3,4}}{EXT_SUFFIX}(?!\d)",
                 _accept(LANDLINE), flags=re.I),
    # Unseparated runs, possibly with an extension glued on
    Rule.compile("landline_international_run",
                 rf"(?<![\d+])\+?{COUNTRY_CODE}[2-8]\d{{7,12}}(?!\d)",
                 _accept(LANDLINE)),
    Rule.compile("landline_run",
                 r"(?<![\d+])0[2-8]\d{7,12}(?!\d)",
                 _accept(LANDLINE)),
]

# Any digit run; the category filter decides
GENERIC_RUN = rf"(?<![\d+])\+?\d[\d \t\-().]{{6,20}}\d{EXT_SUFFIX}(?!\d)"

MOBILE_FALLBACK_RULES: List[Rule] = [
    Rule.compile("mobile_generic", GENERIC_RUN, _accept(MOBILE), flags=re.I),
    Rule.compile("mobile_keyword", MOBILE_LABELS + NUMBER_TAIL, _accept_labeled_mobile,
                 group=1, flags=re.I),
]

LANDLINE_FALLBACK_RULES: List[Rule] = [
    Rule.compile("landline_generic", GENERIC_RUN, _accept(LANDLINE), flags=re.I),
    Rule.compile("landline_keyword", LANDLINE_LABELS + NUMBER_TAIL, _accept_labeled_landline,
                 group=1, flags=re.I),
]

FAX_PATTERN = re.compile(FAX_LABELS + NUMBER_TAIL, re.I)


def extract_fax(text: str) -> Tuple[Optional[str], str]:
    """
    Find a fax-labeled number and blank it out of the text.

    Returns:
        (formatted fax or None, text with fax numbers masked)
    """
    fax = None
    masked = text
    for match in FAX_PATTERN.finditer(text):
        raw = match.group(1)
        if fax is None and classify(raw) == LANDLINE:
            fax = format_phone(raw)
        start, end = match.span(1)
        masked = masked[:start] + " " * (end - start) + masked[end:]
    return fax, masked


def extract_mobile(text: str) -> Optional[str]:
    return apply_rules(MOBILE_RULES, text) or apply_rules(MOBILE_FALLBACK_RULES, text)


def extract_landline(text: str, exclude: Optional[str] = None) -> Optional[str]:
    """First landline whose digits differ from `exclude` (usually the mobile)."""
    excluded_key = digits_key(exclude) if exclude else None
    for rules in (LANDLINE_RULES, LANDLINE_FALLBACK_RULES):
        for rule in rules:
            for value in rule.matches(text):
                if excluded_key is None or digits_key(value) != excluded_key:
                    return value
    return None


def extract_phone_fields(text: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Returns:
        (landline, mobile, fax), each formatted or None
    """
    fax, masked = extract_fax(text)
    mobile = extract_mobile(masked)
    phone = extract_landline(masked, exclude=mobile)
    return phone, mobile, fax
