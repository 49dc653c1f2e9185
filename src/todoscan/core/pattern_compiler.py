"""
Pattern compiler for marker keywords.

Turns a ScanConfig's keyword rules and pattern template into a reusable
CompiledMatcher (regex + severity lookup). Compilation never raises:
malformed templates produce a matcher that cannot match and carries the
configuration error so it can be reported once.
"""

import logging
import re
from dataclasses import dataclass, field

from todoscan.core.models import ScanConfig, Severity

logger = logging.getLogger(__name__)

KEYWORDS_PLACEHOLDER = "{keywords}"

NEVER_MATCH = re.compile(r"(?!)")


class PatternConfigError(ValueError):
    """Raised internally when a pattern template cannot be used."""


@dataclass(frozen=True)
class CompiledMatcher:
    """
    Compiled, reusable matcher for one configuration version.

    Attributes:
        regex: Compiled pattern (never matches when rules are empty or invalid)
        severity_by_key: Normalized keyword -> severity
        case_sensitive: Whether keys are stored with original casing
        source_label: Label for produced diagnostics
        error: Configuration error message, None when the template is valid
    """

    regex: re.Pattern[str]
    severity_by_key: dict[str, Severity] = field(default_factory=dict)
    case_sensitive: bool = True
    source_label: str = "todoscan"
    error: str | None = None

    def normalize(self, keyword: str) -> str:
        """Normalize a keyword the way severity_by_key keys are normalized."""
        return keyword if self.case_sensitive else keyword.upper()

    def severity_for(self, keyword: str) -> Severity:
        return self.severity_by_key.get(self.normalize(keyword), Severity.WARNING)

    @property
    def can_match(self) -> bool:
        return self.regex is not NEVER_MATCH


def _build_regex(template: str, keywords: list[str], case_sensitive: bool) -> re.Pattern[str]:
    """
    Substitute the escaped keyword alternation into the template and compile it.

    Raises:
        PatternConfigError: If the template lacks the placeholder, fails to
            compile, or does not have exactly two capture groups
    """
    if KEYWORDS_PLACEHOLDER not in template:
        raise PatternConfigError(
            f"Pattern template is missing the {KEYWORDS_PLACEHOLDER} placeholder"
        )

    alternation = "|".join(re.escape(keyword) for keyword in keywords)
    # Plain replacement: templates may legitimately contain regex braces like {2,}
    source = template.replace(KEYWORDS_PLACEHOLDER, alternation)
    flags = 0 if case_sensitive else re.IGNORECASE

    try:
        regex = re.compile(source, flags)
    except re.error as e:
        raise PatternConfigError(f"Pattern template does not compile: {e}") from e

    if regex.groups != 2:
        raise PatternConfigError(
            f"Pattern template needs exactly two capture groups (keyword, trailing text), "
            f"found {regex.groups}"
        )
    return regex


def compile_matcher(config: ScanConfig) -> CompiledMatcher:
    """
    Compile a ScanConfig into a CompiledMatcher.

    Args:
        config: Scanning configuration

    Returns:
        CompiledMatcher; a never-matching one when there are no rules or the
        template is rejected
    """
    severity_by_key: dict[str, Severity] = {}
    keywords: list[str] = []
    for rule in config.rules:
        if not rule.keyword:
            logger.warning("Skipping keyword rule with an empty keyword")
            continue
        keywords.append(rule.keyword)
        key = rule.keyword if config.case_sensitive else rule.keyword.upper()
        # Later rules win for duplicate keys
        severity_by_key[key] = Severity.parse(rule.severity)

    if not keywords:
        return CompiledMatcher(
            regex=NEVER_MATCH,
            severity_by_key=severity_by_key,
            case_sensitive=config.case_sensitive,
            source_label=config.source_label,
        )

    try:
        regex = _build_regex(config.pattern_template, keywords, config.case_sensitive)
    except PatternConfigError as e:
        logger.error(
            f"Invalid marker pattern, scanning disabled until corrected: {e}",
            extra={"pattern_template": config.pattern_template},
        )
        return CompiledMatcher(
            regex=NEVER_MATCH,
            severity_by_key=severity_by_key,
            case_sensitive=config.case_sensitive,
            source_label=config.source_label,
            error=str(e),
        )

    return CompiledMatcher(
        regex=regex,
        severity_by_key=severity_by_key,
        case_sensitive=config.case_sensitive,
        source_label=config.source_label,
    )


class MatcherCache:
    """
    Holds the matcher for the current configuration version.

    The matcher is rebuilt lazily on the first use after a configuration
    change, so a rejected template is logged once per version rather than
    once per scanned file.
    """

    def __init__(self) -> None:
        self._config: ScanConfig | None = None
        self._matcher: CompiledMatcher | None = None

    def get(self, config: ScanConfig) -> CompiledMatcher:
        if self._matcher is None or self._config != config:
            self._matcher = compile_matcher(config)
            self._config = config
        return self._matcher

    def invalidate(self) -> None:
        self._config = None
        self._matcher = None
