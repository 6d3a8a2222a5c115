from __future__ import annotations

import enum
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol, Union

from .token import Token

PredicateOutcome = Union[bool, tuple[bool, str]]


class ViolationKind(str, enum.Enum):
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    ISSUED_IN_FUTURE = "issued_in_future"
    ISSUER_MISMATCH = "issuer_mismatch"
    SUBJECT_MISMATCH = "subject_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    message: str
    claim: str | None = None
    rule: str | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationResult:
    violations: tuple[Violation, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.violations

    def __bool__(self) -> bool:
        return self.ok

    @property
    def kinds(self) -> list[ViolationKind]:
        return [violation.kind for violation in self.violations]


class Rule(Protocol):
    name: str

    def check(self, token: Token, now: float) -> Violation | None: ...


def _seconds(leeway: float | timedelta) -> float:
    value = leeway.total_seconds() if isinstance(leeway, timedelta) else float(leeway)
    if value < 0:
        raise ValueError("leeway must be non-negative")
    return value


@dataclass(frozen=True)
class ExpirationRule:
    leeway: float = 0
    name: str = "exp"

    def check(self, token: Token, now: float) -> Violation | None:
        exp = token.expires_at
        if exp is None or now - self.leeway < exp:
            return None
        return Violation(ViolationKind.EXPIRED, "token is expired", claim="exp", rule=self.name)


@dataclass(frozen=True)
class NotBeforeRule:
    leeway: float = 0
    name: str = "nbf"

    def check(self, token: Token, now: float) -> Violation | None:
        nbf = token.not_before
        if nbf is None or now + self.leeway >= nbf:
            return None
        return Violation(
            ViolationKind.NOT_YET_VALID,
            "token is not valid yet (nbf in the future)",
            claim="nbf",
            rule=self.name,
        )


@dataclass(frozen=True)
class IssuedAtRule:
    leeway: float = 0
    name: str = "iat"

    def check(self, token: Token, now: float) -> Violation | None:
        iat = token.issued_at
        if iat is None or now + self.leeway >= iat:
            return None
        return Violation(
            ViolationKind.ISSUED_IN_FUTURE, "iat is in the future", claim="iat", rule=self.name
        )


@dataclass(frozen=True)
class IssuerRule:
    expected: str
    name: str = "iss"

    def check(self, token: Token, now: float) -> Violation | None:
        if token.issuer == self.expected:
            return None
        return Violation(
            ViolationKind.ISSUER_MISMATCH,
            f"iss claim mismatch (expected: {self.expected})",
            claim="iss",
            rule=self.name,
        )


@dataclass(frozen=True)
class SubjectRule:
    expected: str
    name: str = "sub"

    def check(self, token: Token, now: float) -> Violation | None:
        if token.subject == self.expected:
            return None
        return Violation(
            ViolationKind.SUBJECT_MISMATCH,
            f"sub claim mismatch (expected: {self.expected})",
            claim="sub",
            rule=self.name,
        )


@dataclass(frozen=True)
class AudienceRule:
    expected: str
    name: str = "aud"

    def check(self, token: Token, now: float) -> Violation | None:
        if self.expected in (token.audience or ()):
            return None
        return Violation(
            ViolationKind.AUDIENCE_MISMATCH,
            f"aud claim mismatch (expected: {self.expected})",
            claim="aud",
            rule=self.name,
        )


@dataclass(frozen=True)
class PredicateRule:
    """Application-specific check.

    ``func`` gets the token and returns ``True``/``False`` or ``(passed, reason)``.
    """

    name: str
    func: Callable[[Token], PredicateOutcome]

    def check(self, token: Token, now: float) -> Violation | None:
        outcome = self.func(token)
        if isinstance(outcome, tuple):
            passed, reason = outcome
        else:
            passed, reason = outcome, f"{self.name} check failed"
        if passed:
            return None
        return Violation(ViolationKind.CUSTOM, reason, rule=self.name)


def predicate(name: str, func: Callable[[Token], PredicateOutcome]) -> PredicateRule:
    return PredicateRule(name, func)


class Validator:
    """Checks a token's claims against a fixed, ordered list of rules.

    Order: ``exp``, ``nbf``, ``iat`` (only with ``check_issued_at``), ``iss``,
    ``sub``, ``aud``, then ``rules`` as given. Time rules are on unless
    ``check_time=False``; identity rules only run when an expected value is
    supplied. With ``fail_fast`` the first violation ends the run, otherwise
    every rule is evaluated.
    """

    def __init__(
        self,
        rules: Iterable[Rule] = (),
        *,
        issuer: str | None = None,
        subject: str | None = None,
        audience: str | None = None,
        leeway: float | timedelta = 0,
        check_time: bool = True,
        check_issued_at: bool = False,
        fail_fast: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        seconds = _seconds(leeway)
        ordered: list[Rule] = []
        if check_time:
            ordered.append(ExpirationRule(seconds))
            ordered.append(NotBeforeRule(seconds))
            if check_issued_at:
                ordered.append(IssuedAtRule(seconds))
        if issuer is not None:
            ordered.append(IssuerRule(issuer))
        if subject is not None:
            ordered.append(SubjectRule(subject))
        if audience is not None:
            ordered.append(AudienceRule(audience))
        ordered.extend(rules)
        self.rules: tuple[Rule, ...] = tuple(ordered)
        self.fail_fast = fail_fast
        self._clock = clock

    def validate(self, token: Token, *, now: float | None = None) -> ValidationResult:
        current = self._clock() if now is None else float(now)
        violations: list[Violation] = []
        for rule in self.rules:
            violation = rule.check(token, current)
            if violation is None:
                continue
            violations.append(violation)
            if self.fail_fast:
                break
        return ValidationResult(tuple(violations))


def validate(
    token: Token,
    rules: Iterable[Rule] = (),
    *,
    now: float | None = None,
    **options: object,
) -> ValidationResult:
    """One-shot ``Validator(rules, **options).validate(token, now=now)``."""
    return Validator(rules, **options).validate(token, now=now)  # type: ignore[arg-type]
