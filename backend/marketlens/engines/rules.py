"""
MarketLens — Rule Books

Additive scoring as data. A ``RuleBook`` is an ordered list of
``Rule(label, when, weight)`` entries evaluated in a loop against a context
object; every rule whose predicate holds adds its weight to the running
score and its label(s) to the outcome.

Rules are evaluated lazily and in order, so a rule's ``then`` hook can set
state on the context that later predicates read (and that later rules may
overwrite, e.g. a Power-of-3 phase).

Usage:
    book = RuleBook([
        Rule("SHORT-TERM VOL SURGE", lambda c: c.vol_short > c.vol_med * 2.2, 28),
        Rule("STRONG 3-BAR MOMENTUM", lambda c: c.momentum3 > 0.4, 18),
    ])
    outcome = book.evaluate(ctx)
    outcome.score, outcome.labels
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

Label = Union[None, str, Callable[[Any], Union[None, str, list[str]]]]
Weight = Union[float, Callable[[Any], float]]


@dataclass(frozen=True)
class Rule:
    """One (predicate, weight, label) entry.

    ``label`` and ``weight`` may be callables of the context when they depend
    on measured values. ``secondary`` feeds a second accumulator for engines
    that score two quantities at once (severity and footprint).
    """
    label: Label
    when: Callable[[Any], bool]
    weight: Weight = 0.0
    secondary: Weight = 0.0
    then: Optional[Callable[[Any], None]] = None

    def labels_for(self, ctx: Any) -> list[str]:
        value = self.label(ctx) if callable(self.label) else self.label
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @staticmethod
    def _resolve(weight: Weight, ctx: Any) -> float:
        return float(weight(ctx)) if callable(weight) else float(weight)


@dataclass
class RuleOutcome:
    score: float = 0.0
    secondary: float = 0.0
    labels: list[str] = field(default_factory=list)
    fired: int = 0


class RuleBook:
    """Ordered rule list.

    With ``first_match=True`` evaluation stops at the first rule that fires
    (an if/elif chain).
    """

    def __init__(self, rules: Iterable[Rule], first_match: bool = False):
        self.rules: tuple[Rule, ...] = tuple(rules)
        self.first_match = first_match

    def __len__(self) -> int:
        return len(self.rules)

    def evaluate(self, ctx: Any) -> RuleOutcome:
        outcome = RuleOutcome()
        for rule in self.rules:
            if not rule.when(ctx):
                continue
            outcome.fired += 1
            outcome.score += Rule._resolve(rule.weight, ctx)
            outcome.secondary += Rule._resolve(rule.secondary, ctx)
            outcome.labels.extend(rule.labels_for(ctx))
            if rule.then is not None:
                rule.then(ctx)
            if self.first_match:
                break
        return outcome
