"""
Heuristic field extraction for business cards.

Two modes are combined:
- text mode scans the normalized text line by line with ordered rules
- spatial mode looks only at blocks in the band of the card where a
  field usually sits (name and company near the top, title in the middle)

Spatial candidates are preferred for name and job title. For company the
longest keyword-bearing candidate from either mode wins.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence, Set

from rapidfuzz import fuzz

from .config import ExtractionConfig
from .phone import extract_phone_fields
from .rules import Rule, apply_rules
from .utils import ParsedContactRecord, RecognizedTextBlock
from .validation import validate_and_clean


logger = logging.getLogger(__name__)


# =============================================================================
# Keyword Tables
# =============================================================================

ORG_KEYWORDS_ZH = [
    "公司", "企業", "集團", "有限", "股份", "科技", "實業", "貿易",
    "工業", "建設", "開發", "投資", "事務所", "工作室", "銀行", "協會",
]

ORG_KEYWORDS_EN = [
    "Ltd", "Limited", "Inc", "Incorporated", "Corp", "Corporation", "Co",
    "Company", "Enterprise", "Enterprises", "Group", "Technology",
    "Technologies", "Tech", "Solutions", "Systems", "Services", "Consulting",
    "Studio", "LLC", "Holdings", "Industries", "Bank", "Association",
]

TITLE_KEYWORDS_ZH = [
    # Executive
    "董事長", "副董事長", "執行長", "總經理", "副總經理", "總裁", "副總裁",
    "副總", "董事", "負責人", "創辦人", "合夥人", "特助",
    # Managerial
    "總監", "副總監", "經理", "副經理", "協理", "副理", "處長", "副處長",
    "主任", "副主任", "組長", "課長", "主管", "店長",
    # Professional
    "工程師", "設計師", "分析師", "會計師", "律師", "建築師", "研究員",
    "顧問", "專員", "助理", "秘書", "業務代表",
]

TITLE_KEYWORDS_EN = [
    # Executive
    "CEO", "CTO", "CFO", "COO", "CIO", "CMO", "VP", "SVP", "EVP",
    "President", "Chairman", "Founder", "Co-Founder", "Partner", "Owner",
    "Chief", "Officer", "Executive",
    # Managerial
    "Director", "Manager", "Supervisor", "Coordinator", "Head", "Lead",
    # Professional
    "Engineer", "Developer", "Designer", "Analyst", "Consultant",
    "Specialist", "Architect", "Administrator", "Accountant", "Attorney",
    "Lawyer", "Assistant", "Associate", "Representative", "Secretary",
    "Scientist", "Researcher",
]

DEPARTMENT_KEYWORDS_EN = ["Department", "Dept", "Division", "Div"]

ADDRESS_INDICATORS_ZH = [
    # Administrative divisions
    "市", "區", "縣", "鄉", "鎮", "村", "里",
    # Street types
    "路", "街", "大道", "段", "巷", "弄", "衖",
    # Buildings
    "號", "樓", "室", "棟", "大樓", "大廈", "廣場", "園區", "工業區",
]

ADDRESS_INDICATORS_EN = [
    "Street", "St", "Road", "Rd", "Avenue", "Ave", "Boulevard", "Blvd",
    "Lane", "Ln", "Alley", "Drive", "Dr", "Sec", "Section", "No",
    "Floor", "Fl", "Room", "Rm", "Suite", "Building", "Bldg", "Tower",
    "District", "Dist", "City", "County", "Taiwan",
]

TLDS = r"(?:com|org|net|edu|gov|biz|info|io|co|tw|cn|jp|kr|hk)"
DOMAIN_RE = re.compile(rf"\w\.{TLDS}\b", re.I)


def _word_pattern(words: Sequence[str]) -> "re.Pattern":
    alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"(?<![A-Za-z-])(?:{alternatives})(?![A-Za-z-])", re.I)


ORG_EN_RE = _word_pattern(ORG_KEYWORDS_EN)
TITLE_EN_RE = _word_pattern(TITLE_KEYWORDS_EN)
DEPARTMENT_EN_RE = _word_pattern(DEPARTMENT_KEYWORDS_EN)
ADDRESS_EN_RE = _word_pattern(ADDRESS_INDICATORS_EN)

# Long English title words checked with a one-slip fuzzy match
FUZZY_TITLE_WORDS = [w for w in TITLE_KEYWORDS_EN if len(w) >= 6]

CJK = r"\u3400-\u9fff\uf900-\ufaff"
CJK_NAME_RE = re.compile(rf"^[{CJK}]{{2,4}}$")
LATIN_NAME_RE = re.compile(r"^[A-Z][A-Za-z'\-]*(?:\s+[A-Z][A-Za-z'\-]*){1,2}$")
PHONE_SHAPE_RE = re.compile(r"\d[\d\s\-()]{6,}\d")
DIGIT_RE = re.compile(r"\d")

TITLE_SUFFIX_ZH_RE = re.compile(rf"^[{CJK}]{{1,9}}[長師員理監]$")
TITLE_SUFFIX_EN_RE = re.compile(r"^(?:[A-Z][A-Za-z]*\s+){0,3}[A-Z][a-z]*(?:ist|eer|ician|ager|ector|tant)$")
DEPARTMENT_ZH_RE = re.compile(rf"^[{CJK}A-Za-z]{{1,12}}(?:部|處|課|組|中心)$")


# =============================================================================
# Rules: email, website, address label
# =============================================================================

EMAIL_PATTERN = r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
URL_CHARS = r"[\w\-._~:/?#\[\]@!$&'()*+,;=%]"


def _clean_email(raw: str) -> Optional[str]:
    return raw.strip().rstrip(".")


def _clean_website(raw: str) -> Optional[str]:
    cleaned = raw.strip().rstrip(".,;:)").lower()
    if not cleaned:
        return None
    if not cleaned.startswith("http") and not cleaned.startswith("www"):
        cleaned = "https://" + cleaned
    return cleaned


def clean_address(address: str) -> str:
    """Strip a leading sequence number (1. / 2) / 3、) and a leading postal code."""
    cleaned = address.strip()
    cleaned = re.sub(r"^\d{1,2}[.)）、]\s*", "", cleaned)
    cleaned = re.sub(rf"^\d{{3,6}}\s*(?=[{CJK}])", "", cleaned)
    return cleaned.strip(" ,，:：")


def _labeled_address(raw: str) -> Optional[str]:
    cleaned = clean_address(raw)
    return cleaned if len(cleaned) >= 4 else None


EMAIL_RULES: List[Rule] = [
    Rule.compile("email", EMAIL_PATTERN, _clean_email),
]

WEBSITE_RULES: List[Rule] = [
    Rule.compile("url_scheme", rf"https?://{URL_CHARS}+", _clean_website, flags=re.I),
    Rule.compile("url_www", rf"(?<![\w.])www\.{URL_CHARS}+", _clean_website, flags=re.I),
    Rule.compile("url_bare",
                 rf"(?<![@\w.])[A-Za-z0-9][\w\-]*(?:\.[\w\-]+)*\.{TLDS}(?:\.(?:tw|cn|jp|kr|hk|uk))?(?![\w])(?:/\S*)?",
                 _clean_website, flags=re.I),
]

ADDRESS_LABEL_RULES: List[Rule] = [
    Rule.compile("address_label",
                 r"(?:地址|住址|^\s*(?:Address|Addr|Add)(?![A-Za-z]|\.[A-Za-z]))\s*[.:：﹕︰]?\s*(.+)",
                 _labeled_address, group=1, flags=re.I),
]


# =============================================================================
# Line Predicates
# =============================================================================

def has_org_keyword(line: str) -> bool:
    return any(k in line for k in ORG_KEYWORDS_ZH) or ORG_EN_RE.search(line) is not None


def has_title_keyword(line: str) -> bool:
    return any(k in line for k in TITLE_KEYWORDS_ZH) or TITLE_EN_RE.search(line) is not None


def has_contact_marker(line: str) -> bool:
    lowered = line.lower()
    return (
        "@" in line
        or "www" in lowered
        or "http" in lowered
        or PHONE_SHAPE_RE.search(line) is not None
        or DOMAIN_RE.search(line) is not None
    )


def address_indicators(line: str) -> Set[str]:
    found = {k for k in ADDRESS_INDICATORS_ZH if k in line}
    found.update(m.group(0).lower() for m in ADDRESS_EN_RE.finditer(line))
    return found


class FieldExtractor:
    """Rule-based contact field extraction from normalized card text."""

    def __init__(self, config: ExtractionConfig = None):
        self.config = config or ExtractionConfig()

    def extract(
        self,
        text: str,
        blocks: Optional[List[RecognizedTextBlock]] = None
    ) -> ParsedContactRecord:
        """
        Extract every field. Absent fields stay None.

        Args:
            text: Normalized text, one recognized line per row
            blocks: Optional normalized blocks with positions

        Returns:
            Validated record with source "heuristic" and confidence 0;
            scoring is done separately
        """
        lines = [line.strip() for line in (text or "").split("\n") if line.strip()]
        text = "\n".join(lines)
        blocks = blocks or []

        email = self.extract_email(text)
        website = self.extract_website(text)
        phone, mobile, fax = extract_phone_fields(text)

        name = self.extract_name(lines, blocks)
        company = self.extract_company(lines, blocks, name=name)
        claimed = {v for v in (name, company) if v}
        job_title = self.extract_job_title(lines, blocks, claimed=claimed)
        if job_title:
            claimed.add(job_title)
        address = self.extract_address(lines, blocks)
        if address:
            claimed.add(address)
        department = self.extract_department(lines, claimed=claimed)

        record = ParsedContactRecord(
            name=name,
            job_title=job_title,
            company=company,
            department=department,
            email=email,
            phone=phone,
            mobile=mobile,
            fax=fax,
            address=address,
            website=website,
            source="heuristic",
        )
        record = validate_and_clean(record)
        logger.debug("[Extract] Fields found: %s", ", ".join(record.filled_fields()) or "none")
        return record

    # ------------------------------------------------------------------
    # Regex fields
    # ------------------------------------------------------------------

    def extract_email(self, text: str) -> Optional[str]:
        return apply_rules(EMAIL_RULES, text)

    def extract_website(self, text: str) -> Optional[str]:
        # Email domains would otherwise match the bare-domain rule
        masked = re.sub(EMAIL_PATTERN, " ", text)
        return apply_rules(WEBSITE_RULES, masked)

    # ------------------------------------------------------------------
    # Name
    # ------------------------------------------------------------------

    def _name_excluded(self, line: str) -> bool:
        return has_org_keyword(line) or has_title_keyword(line) or has_contact_marker(line)

    def _strict_name(self, candidates: Iterable[str]) -> Optional[str]:
        for line in candidates:
            if self._name_excluded(line):
                continue
            if LATIN_NAME_RE.match(line) or CJK_NAME_RE.match(line):
                return line
        return None

    def _relaxed_name(self, candidates: Iterable[str]) -> Optional[str]:
        for line in candidates:
            if not 2 <= len(line) <= 15:
                continue
            if DIGIT_RE.search(line) or self._name_excluded(line):
                continue
            if address_indicators(line) and len(line) > 4:
                continue
            return line
        return None

    def extract_name(self, lines: List[str], blocks: List[RecognizedTextBlock]) -> Optional[str]:
        top_lines = lines[:self.config.name_scan_lines]
        spatial = self._texts_in_band(blocks, self.config.name_region)

        return (
            self._strict_name(spatial)
            or self._strict_name(top_lines)
            or self._relaxed_name(spatial)
            or self._relaxed_name(top_lines)
        )

    # ------------------------------------------------------------------
    # Company
    # ------------------------------------------------------------------

    def extract_company(
        self,
        lines: List[str],
        blocks: List[RecognizedTextBlock],
        name: Optional[str] = None
    ) -> Optional[str]:
        spatial = self._texts_in_band(blocks, self.config.company_region)

        keyword_hits = [
            line for line in list(spatial) + lines
            if line != name and has_org_keyword(line) and not has_contact_marker(line)
        ]
        if keyword_hits:
            return self.select_best_value(keyword_hits)

        # No entity keyword anywhere: longest upper candidate that isn't the name
        upper = spatial if blocks else lines[:max(1, (len(lines) + 1) // 2)]
        fallback = [
            line for line in upper
            if line != name
            and len(line) > 4
            and not CJK_NAME_RE.match(line)
            and not has_contact_marker(line)
            and not has_title_keyword(line)
            and len(address_indicators(line)) < self.config.min_address_indicators
        ]
        return self.select_best_value(fallback)

    @staticmethod
    def select_best_value(candidates: Iterable[Optional[str]]) -> Optional[str]:
        """Longest non-empty candidate; earliest wins ties."""
        best = None
        for value in candidates:
            if value and value.strip() and (best is None or len(value) > len(best)):
                best = value.strip()
        return best

    # ------------------------------------------------------------------
    # Job title
    # ------------------------------------------------------------------

    def _is_title(self, line: str) -> bool:
        if has_title_keyword(line):
            return True
        for token in re.findall(r"[A-Za-z]{6,}", line):
            for word in FUZZY_TITLE_WORDS:
                if fuzz.ratio(token.lower(), word.lower()) >= self.config.title_fuzzy_threshold:
                    return True
        return False

    def _title_candidates(self, candidates: Iterable[str], claimed: Set[str]) -> List[str]:
        return [
            line for line in candidates
            if line not in claimed and not has_contact_marker(line) and len(line) <= 40
        ]

    def extract_job_title(
        self,
        lines: List[str],
        blocks: List[RecognizedTextBlock],
        claimed: Optional[Set[str]] = None
    ) -> Optional[str]:
        claimed = claimed or set()
        spatial = self._title_candidates(self._texts_in_band(blocks, self.config.title_region), claimed)
        textual = self._title_candidates(lines, claimed)

        for candidates in (spatial, textual):
            for line in candidates:
                if self._is_title(line):
                    return line

        # Suffix shape: CJK words ending in 長/師/員/理/監, English role nouns
        for line in textual:
            if 2 <= len(line) <= 10 and TITLE_SUFFIX_ZH_RE.match(line):
                return line
            if TITLE_SUFFIX_EN_RE.match(line) and not has_org_keyword(line):
                return line
        return None

    # ------------------------------------------------------------------
    # Department
    # ------------------------------------------------------------------

    def extract_department(self, lines: List[str], claimed: Optional[Set[str]] = None) -> Optional[str]:
        claimed = claimed or set()
        for line in lines:
            if line in claimed or has_contact_marker(line) or DIGIT_RE.search(line):
                continue
            if DEPARTMENT_ZH_RE.match(line) or DEPARTMENT_EN_RE.search(line):
                return line
        return None

    # ------------------------------------------------------------------
    # Address
    # ------------------------------------------------------------------

    def _address_score(self, line: str) -> float:
        indicators = address_indicators(line)
        if len(indicators) < self.config.min_address_indicators:
            return 0.0
        if len(line) < self.config.min_address_length:
            return 0.0
        if "@" in line or re.search(r"\d{3,4}-\d{3,4}|\d{8,}", line):
            return 0.0

        score = float(len(indicators))
        if DIGIT_RE.search(line):
            score += 0.5
        return score + min(len(line), 60) / 100.0

    def _scan_address(self, lines: List[str]) -> Optional[str]:
        for line in lines:
            labeled = apply_rules(ADDRESS_LABEL_RULES, line)
            if labeled:
                return labeled

        best_line, best_score = None, 0.0
        for line in lines:
            score = self._address_score(line)
            if score > best_score:
                best_line, best_score = line, score

        return clean_address(best_line) if best_line else None

    def extract_address(
        self,
        lines: List[str],
        blocks: Optional[List[RecognizedTextBlock]] = None
    ) -> Optional[str]:
        """Longest of the whole-text scan and the lower-band block scan."""
        text_value = self._scan_address(lines)
        spatial_value = None
        if blocks:
            spatial_value = self._scan_address(self._texts_in_band(blocks, self.config.address_region))
        return self.select_best_value([text_value, spatial_value])

    # ------------------------------------------------------------------
    # Spatial helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _texts_in_band(blocks: List[RecognizedTextBlock], band) -> List[str]:
        y_min, y_max = band
        hits = [b for b in blocks if b.bbox.intersects_band(y_min, y_max)]
        hits.sort(key=lambda b: (b.bbox.y, b.bbox.x))
        return [b.text.strip() for b in hits if b.text.strip()]
