"""Regex filter rules applied to a completed response before review."""

import re
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel

from quickedit.models.config import FilterRuleConfig


logger = structlog.get_logger()

# Quantified group that is itself quantified, e.g. (a+)+ or (\w*)*: exponential backtracking
_NESTED_QUANTIFIER = re.compile(r"\((?:[^()\\]|\\.)*[+*}](?:[^()\\]|\\.)*\)[+*{]")

_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\d{1,2})")

_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class FilterResult(BaseModel):
    """Outcome of running the filter rules."""

    filtered_text: str
    changed: bool
    applied_rules_count: int
    original_length: int
    filtered_length: int


def validate_pattern(pattern: str, flags: str = "g") -> Optional[str]:
    """
    Check that a rule's pattern is safe and compiles.

    Returns:
        None if valid, otherwise a human-readable error
    """
    if _NESTED_QUANTIFIER.search(pattern):
        return "Pattern contains nested quantifiers (catastrophic backtracking risk); simplify it"
    unknown = set(flags) - set(_FLAG_MAP) - {"g"}
    if unknown:
        return f"Unsupported flags: {''.join(sorted(unknown))}"
    try:
        re.compile(pattern, _compile_flags(flags))
    except re.error as e:
        return f"Invalid regular expression: {e}"
    return None


def _compile_flags(flags: str) -> int:
    value = 0
    for flag in flags:
        value |= _FLAG_MAP.get(flag, 0)
    return value


def _expand(replacement: str, match: "re.Match[str]") -> str:
    """Expand ``$1``, ``$&`` and ``$$`` references in a rule's replacement text."""

    def token(m: "re.Match[str]") -> str:
        ref = m.group(1)
        if ref == "$":
            return "$"
        if ref == "&":
            return match.group(0)
        index = int(ref)
        if index <= (match.re.groups or 0):
            return match.group(index) or ""
        return m.group(0)

    return _REPLACEMENT_TOKEN.sub(token, replacement)


class ResponseFilter:
    """
    Apply enabled filter rules in order.

    A rule that fails validation or raises is skipped and logged; the
    remaining rules still run.

    Example:
        >>> rules = [FilterRuleConfig(pattern=r"^Here is.*?:\\s*", flags="i")]
        >>> ResponseFilter().apply("Here is the rewrite: Hello", rules).filtered_text
        'Hello'
    """

    def __init__(self) -> None:
        self._cache: dict[tuple[str, str], re.Pattern] = {}

    def _compile(self, pattern: str, flags: str) -> re.Pattern:
        key = (pattern, flags)
        if key not in self._cache:
            self._cache[key] = re.compile(pattern, _compile_flags(flags))
        return self._cache[key]

    def apply_rule(self, text: str, rule: FilterRuleConfig) -> str:
        """Apply one rule, returning the text unchanged if the rule is unsafe."""
        error = validate_pattern(rule.pattern, rule.flags)
        if error:
            logger.warning("filter_rule_skipped", rule=rule.description or rule.pattern, error=error)
            return text
        regex = self._compile(rule.pattern, rule.flags)
        count = 0 if "g" in rule.flags else 1
        return regex.sub(lambda m: _expand(rule.replacement, m), text, count=count)

    def apply(self, text: str, rules: Optional[Sequence[FilterRuleConfig]] = None) -> FilterResult:
        """Run every enabled rule over ``text``."""
        current = text
        applied = 0
        for rule in rules or []:
            if not rule.enabled:
                continue
            before = current
            try:
                current = self.apply_rule(current, rule)
            except (re.error, IndexError) as e:
                logger.error("filter_rule_failed", rule=rule.description or rule.pattern, error=str(e))
                continue
            if current != before:
                applied += 1

        if applied:
            logger.info(
                "response_filtered",
                applied_rules=applied,
                original_length=len(text),
                filtered_length=len(current),
            )

        return FilterResult(
            filtered_text=current,
            changed=current != text,
            applied_rules_count=applied,
            original_length=len(text),
            filtered_length=len(current),
        )
