"""
Unit tests for the heuristic field extractor.

This module tests:
- Whole-card extraction (English and traditional Chinese cards)
- Individual field rules (email, website, address, name, title, company)
- Spatial band preference for name and title
- Post-extraction validation

Usage:
    pytest card_scanner/tests/test_extraction.py -v
    pytest card_scanner/tests/test_extraction.py::TestWholeCard -v
"""

import sys
from pathlib import Path
import pytest

# Add repository root for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from card_scanner.core.extraction import (  # noqa: E402
    FieldExtractor, WEBSITE_RULES, clean_address, has_contact_marker,
)
from card_scanner.core.rules import apply_rules  # noqa: E402
from card_scanner.core.utils import NormalizedBox, ParsedContactRecord, RecognizedTextBlock  # noqa: E402
from card_scanner.core.validation import validate_and_clean  # noqa: E402

from conftest import CJK_CARD_LINES, KEVIN_SU_LINES, make_blocks  # noqa: E402


@pytest.fixture
def extractor():
    return FieldExtractor()


def block(text: str, y: float, x: float = 0.1) -> RecognizedTextBlock:
    return RecognizedTextBlock(text, 0.9, NormalizedBox(x, y, 0.5, 0.06), [text])


# =============================================================================
# Whole Card Tests
# =============================================================================

class TestWholeCard:
    """End-to-end extraction on complete card texts."""

    def test_kevin_su_card(self, extractor):
        record = extractor.extract("\n".join(KEVIN_SU_LINES))

        assert record.name == "Kevin Su"
        assert "ABC Technology Co., Ltd." in record.company
        assert record.job_title == "Manager"
        assert record.mobile == "0912-345-678"
        assert record.phone is None
        assert record.email == "kevin@abc.com"
        assert record.website is None
        assert record.source == "heuristic"

    def test_kevin_su_card_with_blocks(self, extractor):
        """Same card with positions: spatial candidates agree with text mode."""
        record = extractor.extract("\n".join(KEVIN_SU_LINES), make_blocks(KEVIN_SU_LINES))

        assert record.name == "Kevin Su"
        assert record.company == "ABC Technology Co., Ltd."
        assert record.job_title == "Manager"
        assert record.mobile == "0912-345-678"
        assert record.phone is None

    def test_chinese_card(self, extractor):
        record = extractor.extract("\n".join(CJK_CARD_LINES))

        assert record.name == "王小明"
        assert record.job_title == "產品經理"
        assert record.company == "科技股份有限公司"
        assert record.phone == "02-2720-1234 #123"
        assert record.mobile == "0912-345-678"
        assert record.fax == "02-2720-5678"
        assert record.address == "台北市信義區信義路五段7號12樓"
        assert record.email == "ming@tech.com.tw"
        assert record.website == "www.tech.com.tw"

    def test_empty_text(self, extractor):
        record = extractor.extract("")
        assert record.filled_fields() == []

    def test_partial_card(self, extractor):
        """Missing fields stay None; nothing is invented."""
        record = extractor.extract("Jane Doe\njane@example.org")
        assert record.name == "Jane Doe"
        assert record.email == "jane@example.org"
        assert record.company is None
        assert record.phone is None
        assert record.mobile is None


# =============================================================================
# Field Rule Tests
# =============================================================================

class TestFieldRules:
    """Each rule family on its own."""

    def test_email(self, extractor):
        assert extractor.extract_email("Email: kevin.su@sunrise.com.tw") == "kevin.su@sunrise.com.tw"

    @pytest.mark.parametrize("text,expected", [
        ("https://www.abc.com/contact", "https://www.abc.com/contact"),
        ("WWW.ABC.COM.TW", "www.abc.com.tw"),
        ("abc-tech.io", "https://abc-tech.io"),
    ])
    def test_website(self, text, expected):
        assert apply_rules(WEBSITE_RULES, text) == expected

    def test_website_ignores_email_domain(self, extractor):
        assert extractor.extract_website("kevin@abc.com") is None

    def test_labeled_address(self, extractor):
        lines = ["地址: 110台北市信義區松仁路100號"]
        assert extractor.extract_address(lines) == "台北市信義區松仁路100號"

    def test_scored_address_english(self, extractor):
        lines = ["Kevin Su", "No. 100, Songren Rd., Xinyi District, Taipei City"]
        assert extractor.extract_address(lines) == lines[1]

    def test_address_rejects_phone_line(self, extractor):
        assert extractor.extract_address(["Tel 02-2720-1234 Rd Sec"]) is None

    @pytest.mark.parametrize("text", [
        "Kevin Su\nkevin@add.com.tw",
        "Kevin Su\nwww.add.com.tw",
        "Kevin Su\nadd.com.tw",
    ])
    def test_address_label_not_read_from_domain(self, extractor, text):
        assert extractor.extract(text).address is None

    @pytest.mark.parametrize("line", [
        "Add: 5F, No. 100, Songren Rd., Taipei",
        "Addr. 5F, No. 100, Songren Rd., Taipei",
        "ADDRESS 5F, No. 100, Songren Rd., Taipei",
    ])
    def test_english_address_labels(self, extractor, line):
        assert extractor.extract_address([line]) == "5F, No. 100, Songren Rd., Taipei"

    def test_cjk_label_after_prefix(self, extractor):
        assert extractor.extract_address(["公司地址：台北市信義區松仁路100號"]) == "台北市信義區松仁路100號"

    @pytest.mark.parametrize("raw,expected", [
        ("1. 台北市信義區松仁路100號", "台北市信義區松仁路100號"),
        ("110 台北市信義區", "台北市信義區"),
        ("100 Songren Rd.", "100 Songren Rd."),
    ])
    def test_clean_address(self, raw, expected):
        assert clean_address(raw) == expected

    def test_fuzzy_title(self, extractor):
        """One OCR slip in a long title word still reads as a title."""
        assert extractor.extract_job_title(["Kevin Su", "Senior Enginer"], []) == "Senior Enginer"

    def test_suffix_title(self, extractor):
        assert extractor.extract_job_title(["行銷企劃員"], []) == "行銷企劃員"

    def test_department(self, extractor):
        lines = ["王小明", "研發部", "經理"]
        assert extractor.extract_department(lines, claimed={"王小明", "經理"}) == "研發部"

    def test_company_prefers_longest_keyword_line(self, extractor):
        lines = ["Sunrise Labs", "Sunrise Labs Technology Co., Ltd."]
        assert extractor.extract_company(lines, []) == "Sunrise Labs Technology Co., Ltd."

    def test_company_ignores_website_line(self, extractor):
        lines = ["科技股份有限公司", "www.tech.com.tw"]
        assert extractor.extract_company(lines, []) == "科技股份有限公司"

    def test_contact_markers(self):
        assert has_contact_marker("kevin@abc.com")
        assert has_contact_marker("www.abc.com")
        assert has_contact_marker("abc.com.tw")
        assert has_contact_marker("02-2720-1234")
        assert not has_contact_marker("ABC Technology Co., Ltd.")


# =============================================================================
# Spatial Tests
# =============================================================================

class TestSpatial:
    """Band-restricted candidates."""

    def test_name_from_top_band(self, extractor):
        # Text order puts a slogan first; the top band holds the name
        blocks = [
            block("Kevin Su", 0.05),
            block("Think Different", 0.85),
        ]
        lines = ["Think Different", "Kevin Su"]
        assert extractor.extract_name(lines, blocks) == "Kevin Su"

    def test_title_from_middle_band(self, extractor):
        blocks = [
            block("Kevin Su", 0.05),
            block("Product Manager", 0.45),
            block("Manager of the Year 2019", 0.9),
        ]
        lines = ["Manager of the Year 2019", "Kevin Su", "Product Manager"]
        assert extractor.extract_job_title(lines, blocks, claimed={"Kevin Su"}) == "Product Manager"

    def test_address_longest_of_text_and_band(self, extractor):
        # The block reading carries the floor the text line lost
        blocks = [
            block("Kevin Su", 0.05),
            block("台北市信義區松仁路100號5樓", 0.85),
        ]
        lines = ["Kevin Su", "台北市信義區松仁路"]
        assert extractor.extract_address(lines, blocks) == "台北市信義區松仁路100號5樓"

    def test_address_text_value_kept_without_band_hit(self, extractor):
        blocks = [block("Kevin Su", 0.05)]
        lines = ["Kevin Su", "台北市信義區松仁路100號"]
        assert extractor.extract_address(lines, blocks) == "台北市信義區松仁路100號"


# =============================================================================
# Validation Tests
# =============================================================================

class TestValidation:
    """validate_and_clean drops malformed values."""

    def test_invalid_values_dropped(self):
        record = ParsedContactRecord(
            name="  ",
            email="not-an-email",
            phone="12",
            mobile="0912-345-678",
            website="not a site",
        )
        cleaned = validate_and_clean(record)
        assert cleaned.name is None
        assert cleaned.email is None
        assert cleaned.phone is None
        assert cleaned.mobile == "0912-345-678"
        assert cleaned.website is None

    def test_overlong_name_dropped(self):
        cleaned = validate_and_clean(ParsedContactRecord(name="x" * 51))
        assert cleaned.name is None

    def test_values_trimmed(self):
        cleaned = validate_and_clean(ParsedContactRecord(name=" Kevin Su ", email=" kevin@abc.com "))
        assert cleaned.name == "Kevin Su"
        assert cleaned.email == "kevin@abc.com"
