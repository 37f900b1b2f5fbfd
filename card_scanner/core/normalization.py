"""
Text cleanup for recognized card text.

Lexical, best-effort fixes only. Each substitution is scoped to the
context where it is safe: letter/digit confusions only inside
phone-shaped runs, rn/m confusions only inside email domains.
"""

import re
from dataclasses import replace
from typing import Dict, List

from .utils import RecognizedTextBlock


# Full-width forms that show up in CJK-locale OCR output
FULLWIDTH_MAP = {ord(c): ord(c) - 0xFEE0 for c in "０１２３４５６７８９＋＃－（）"}

# Artifact glyphs seen in traditional Chinese output
CJK_CORRECTIONS: Dict[str, str] = {
    "囗": "口",
    "丿": "",
    "乀": "",
}

# Letter -> digit, applied only inside phone-shaped runs
PHONE_CONFUSIONS = str.maketrans({
    "O": "0", "o": "0",
    "I": "1", "l": "1",
    "S": "5",
    "B": "8",
})

CJK = r"[\u3400-\u9fff\uf900-\ufaff]"
CJK_SPACE = re.compile(rf"(?<={CJK})[ \t]+(?={CJK})")

PHONE_SHAPED = re.compile(
    r"(?<![A-Za-z])\+?[\dOoIlSB][\dOoIlSB \-().#]{6,22}[\dOoIlSB](?![A-Za-z])"
)

EMAIL_SPACED = re.compile(
    r"([A-Za-z0-9._%+-]+)\s?@\s?"
    r"([A-Za-z0-9-]+(?:\s?\.\s?[a-z0-9-]+|\.[A-Za-z0-9-]+)+)"
)


class TextNormalizer:
    """Cleans recognized text before field extraction."""

    def __init__(self, min_phone_digits: int = 6):
        self.min_phone_digits = min_phone_digits

    def normalize(self, text: str) -> str:
        """Full cleanup: whitespace, full-width forms, artifact fixes."""
        if not text:
            return ""

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = text.translate(FULLWIDTH_MAP)

        lines = []
        for line in text.split("\n"):
            line = self.normalize_line(line)
            if line:
                lines.append(line)
        return "\n".join(lines)

    def normalize_line(self, line: str) -> str:
        line = line.translate(FULLWIDTH_MAP)
        line = re.sub(r"[ \t　]+", " ", line).strip()
        if not line:
            return ""
        line = self.fix_cjk_artifacts(line)
        line = self.fix_phone_confusions(line)
        line = self.fix_email_artifacts(line)
        return line

    def normalize_blocks(self, blocks: List[RecognizedTextBlock]) -> List[RecognizedTextBlock]:
        """Normalized copies of blocks; blocks that clean to nothing are dropped."""
        cleaned = []
        for block in blocks:
            text = self.normalize_line(block.text)
            if text:
                cleaned.append(replace(block, text=text))
        return cleaned

    def fix_cjk_artifacts(self, line: str) -> str:
        for wrong, correct in CJK_CORRECTIONS.items():
            line = line.replace(wrong, correct)
        return CJK_SPACE.sub("", line)

    def fix_phone_confusions(self, line: str) -> str:
        """Map O/I/l/S/B to digits inside runs that are mostly digits already."""
        def _fix(match):
            run = match.group(0)
            digits = sum(ch.isdigit() for ch in run)
            if digits < self.min_phone_digits or digits == len(re.sub(r"[ \-().#+]", "", run)):
                return run
            return run.translate(PHONE_CONFUSIONS)

        return PHONE_SHAPED.sub(_fix, line)

    def fix_email_artifacts(self, line: str) -> str:
        """Join spaced-out emails and fix rn->m confusions in the domain."""
        def _fix(match):
            local = match.group(1)
            domain = re.sub(r"\s", "", match.group(2))
            domain = re.sub(r"rnail(?=\.)", "mail", domain)
            domain = re.sub(r"\.corn(?=$|\.)", ".com", domain)
            return f"{local}@{domain}"

        return EMAIL_SPACED.sub(_fix, line)
