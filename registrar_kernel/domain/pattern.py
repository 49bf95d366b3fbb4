"""
PatternFormatter -- Pure rendering of document numbers from pattern templates.

Responsibility:
    Renders a formatted document number from a template such as
    ``{SITE}-PO-{YYYY}-{#####}`` and a set of resolved values, appends
    modifier segments, and validates templates against the numbering
    configuration that owns them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    NumberingService (render), by the DocumentType save hook (validate), and
    by preview/bulk operations.

Token language:
    {SITE}          site code (required value when present)
    {CODE}          document type code
    {DOCTYPE}       alias of {CODE}
    {YYYY}          4-digit year
    {YY}            2-digit year
    {MM}            2-digit month
    {DD}            2-digit day
    {#...#}         sequence; every run of '#' maps to the same sequence
                    value zero-padded to the configured width

Invariants enforced:
    - Formatting is pure: identical inputs always give identical output.
    - Unknown tokens fail closed (UnknownPatternTokenError); a literal token
      never leaks into an issued number.
    - Every sequence token's '#' count equals the configured number_length
      (checked at configuration time by ``validate``, not at render time).
    - Modifier closing bracket is ``)`` only when the separator is ``(``.

Failure modes:
    - UnknownPatternTokenError: token outside the language above.
    - MissingPatternValueError: {SITE} present but no site value resolved.
    - PatternConfigurationError: template disagrees with its configuration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from registrar_kernel.domain.values import ResetCycle
from registrar_kernel.exceptions import (
    InvalidModifierError,
    MissingPatternValueError,
    PatternConfigurationError,
    UnknownPatternTokenError,
)

TOKEN_RE = re.compile(r"\{([^{}]*)\}")
SEQUENCE_TOKEN_RE = re.compile(r"^#+$")

SITE = "SITE"
CODE = "CODE"
DOCTYPE = "DOCTYPE"
YEAR = "YYYY"
SHORT_YEAR = "YY"
MONTH = "MM"
DAY = "DD"

KNOWN_TOKENS = frozenset({SITE, CODE, DOCTYPE, YEAR, SHORT_YEAR, MONTH, DAY})

DEFAULT_MODIFIER_SEPARATOR = "("


@dataclass(frozen=True, slots=True)
class PatternValues:
    """Resolved component values for one rendering."""

    code: str
    year: int
    month: int
    sequence: int
    day: int = 1
    site: str | None = None


@dataclass(frozen=True, slots=True)
class PatternAnalysis:
    """Tokens found in a pattern."""

    tokens: tuple[str, ...]
    sequence_widths: tuple[int, ...]

    @property
    def has_site(self) -> bool:
        return SITE in self.tokens

    @property
    def has_year(self) -> bool:
        return YEAR in self.tokens or SHORT_YEAR in self.tokens

    @property
    def has_month(self) -> bool:
        return MONTH in self.tokens

    @property
    def has_sequence(self) -> bool:
        return bool(self.sequence_widths)


def analyze(pattern: str) -> PatternAnalysis:
    """Split a pattern into its tokens.  Raises on unknown tokens."""
    tokens: list[str] = []
    widths: list[int] = []
    for match in TOKEN_RE.finditer(pattern):
        token = match.group(1)
        if SEQUENCE_TOKEN_RE.match(token):
            widths.append(len(token))
        elif token not in KNOWN_TOKENS:
            raise UnknownPatternTokenError(pattern, token)
        tokens.append(token)
    return PatternAnalysis(tokens=tuple(tokens), sequence_widths=tuple(widths))


class PatternFormatter:
    """
    Stateless renderer for numbering patterns.

    Contract:
        ``format`` substitutes tokens; ``render`` additionally wraps the
        result in the counter row's prefix and suffix; ``append_modifiers``
        adds modifier segments to an already-rendered number.

    Guarantees:
        - No hidden state; instances may be shared freely across threads.
    """

    def format(self, pattern: str, values: PatternValues, pad_width: int) -> str:
        def substitute(match: re.Match[str]) -> str:
            token = match.group(1)
            if SEQUENCE_TOKEN_RE.match(token):
                return str(values.sequence).zfill(pad_width)
            if token in (CODE, DOCTYPE):
                return values.code
            if token == SITE:
                if not values.site:
                    raise MissingPatternValueError(pattern, token)
                return values.site
            if token == YEAR:
                return f"{values.year:04d}"
            if token == SHORT_YEAR:
                return f"{values.year % 100:02d}"
            if token == MONTH:
                return f"{values.month:02d}"
            if token == DAY:
                return f"{values.day:02d}"
            raise UnknownPatternTokenError(pattern, token)

        return TOKEN_RE.sub(substitute, pattern)

    def render(
        self,
        pattern: str,
        values: PatternValues,
        pad_width: int,
        prefix: str | None = None,
        suffix: str | None = None,
    ) -> str:
        core = self.format(pattern, values, pad_width)
        return f"{prefix or ''}{core}{suffix or ''}"

    def append_modifiers(
        self,
        number: str,
        modifiers: Iterable[str],
        separator: str | None = None,
    ) -> str:
        separator = separator or DEFAULT_MODIFIER_SEPARATOR
        # Only "(" gets a matching close; other separators stay open.
        closing = ")" if separator == "(" else ""
        return number + "".join(f"{separator}{mod}{closing}" for mod in modifiers)

    def validate(
        self,
        pattern: str,
        number_length: int,
        *,
        reset_cycle: ResetCycle | str | None = None,
        requires_site_code: bool | None = None,
        type_code: str | None = None,
    ) -> PatternAnalysis:
        """
        Check a template against the configuration that will render it.

        Raises:
            UnknownPatternTokenError: template uses an unknown token.
            PatternConfigurationError: any other disagreement.
        """
        if not pattern or not pattern.strip():
            raise PatternConfigurationError(pattern, "pattern is empty", type_code)
        if number_length < 1:
            raise PatternConfigurationError(
                pattern, f"number_length must be positive (got {number_length})", type_code
            )

        analysis = analyze(pattern)

        if not analysis.has_sequence:
            raise PatternConfigurationError(
                pattern, "pattern has no sequence token such as {#####}", type_code
            )
        for width in analysis.sequence_widths:
            if width != number_length:
                raise PatternConfigurationError(
                    pattern,
                    f"sequence token has {width} '#' but number_length is {number_length}",
                    type_code,
                )

        if reset_cycle is not None:
            cycle = ResetCycle(reset_cycle)
            if cycle in (ResetCycle.YEARLY, ResetCycle.MONTHLY) and not analysis.has_year:
                raise PatternConfigurationError(
                    pattern, f"{cycle.value} reset requires a {{YYYY}} or {{YY}} token", type_code
                )
            if cycle is ResetCycle.MONTHLY and not analysis.has_month:
                raise PatternConfigurationError(
                    pattern, "monthly reset requires a {MM} token", type_code
                )

        if requires_site_code is not None and requires_site_code != analysis.has_site:
            if requires_site_code:
                reason = "requires_site_code is set but pattern has no {SITE} token"
            else:
                reason = "pattern has a {SITE} token but requires_site_code is not set"
            raise PatternConfigurationError(pattern, reason, type_code)

        return analysis


def normalize_modifiers(
    type_code: str,
    modifiers: Iterable[str] | str | None,
    *,
    supports_modifiers: bool,
    allowed: Iterable[str],
) -> tuple[str, ...]:
    """
    Validate requested modifiers against the type's allow-list.

    Returns the modifiers in request order with duplicates removed.

    Raises:
        InvalidModifierError: the type does not support modifiers, or a
            modifier is not in its allow-list.
    """
    if modifiers is None:
        return ()
    if isinstance(modifiers, str):
        modifiers = [modifiers]
    requested = [m.strip() for m in modifiers if m and m.strip()]
    if not requested:
        return ()

    allowed_set = set(allowed)
    if not supports_modifiers or not allowed_set:
        raise InvalidModifierError(type_code, requested[0])

    result: list[str] = []
    for modifier in requested:
        if modifier not in allowed_set:
            raise InvalidModifierError(type_code, modifier, list(allowed_set))
        if modifier not in result:
            result.append(modifier)
    return tuple(result)


def join_modifiers(modifiers: Iterable[str]) -> str | None:
    """Storage form of a modifier list (comma-joined, None when empty)."""
    joined = ",".join(modifiers)
    return joined or None


def split_modifiers(stored: str | None) -> tuple[str, ...]:
    if not stored:
        return ()
    return tuple(m for m in stored.split(",") if m)
