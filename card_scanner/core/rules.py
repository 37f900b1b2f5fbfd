"""
Ordered regex rules for field extraction.

A field is described as a list of Rule entries tried in order. Each rule
pairs a compiled pattern with an optional post-process step that may
reject a match by returning None, so every rule can be tested on its own.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional


PostProcess = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: "re.Pattern"
    postprocess: Optional[PostProcess] = None
    group: int = 0

    @classmethod
    def compile(cls, name: str, pattern: str, postprocess: PostProcess = None,
                group: int = 0, flags: int = 0) -> "Rule":
        return cls(name, re.compile(pattern, flags), postprocess, group)

    def matches(self, text: str) -> Iterator[str]:
        """Post-processed values for every match, in text order."""
        for match in self.pattern.finditer(text):
            raw = match.group(self.group)
            if raw is None:
                continue
            value = self.postprocess(raw) if self.postprocess else raw.strip()
            if value:
                yield value

    def first(self, text: str) -> Optional[str]:
        return next(self.matches(text), None)


def apply_rules(rules: List[Rule], text: str) -> Optional[str]:
    """First accepted value from the first rule that yields one."""
    for rule in rules:
        value = rule.first(text)
        if value:
            return value
    return None
