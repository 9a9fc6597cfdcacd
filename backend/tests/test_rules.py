"""
MarketLens — Rule Book Tests
"""

from dataclasses import dataclass, field

from marketlens.engines.rules import Rule, RuleBook


@dataclass
class _Ctx:
    value: float
    phase: str = "NONE"
    seen: list = field(default_factory=list)


class TestRuleBook:

    def test_accumulates_score_and_labels_in_order(self):
        book = RuleBook([
            Rule("BIG", lambda c: c.value > 10, 5),
            Rule("POSITIVE", lambda c: c.value > 0, 2),
            Rule("NEGATIVE", lambda c: c.value < 0, -2),
        ])
        outcome = book.evaluate(_Ctx(value=20))
        assert outcome.score == 7
        assert outcome.labels == ["BIG", "POSITIVE"]
        assert outcome.fired == 2

    def test_nothing_fires(self):
        outcome = RuleBook([Rule("X", lambda c: False, 3)]).evaluate(_Ctx(value=0))
        assert outcome.score == 0
        assert outcome.labels == []
        assert outcome.fired == 0

    def test_first_match_stops(self):
        book = RuleBook([
            Rule("EXTREME", lambda c: c.value > 6, 5),
            Rule("CRITICAL", lambda c: c.value > 4, 4),
            Rule("HIGH", lambda c: c.value > 3, 3),
        ], first_match=True)
        outcome = book.evaluate(_Ctx(value=5))
        assert outcome.labels == ["CRITICAL"]
        assert outcome.score == 4

    def test_callable_label_and_weight(self):
        book = RuleBook([
            Rule(lambda c: f"VALUE {c.value:.0f}", lambda c: True, lambda c: c.value * 2),
            Rule(lambda c: ["A", "B"], lambda c: True),
            Rule(None, lambda c: True, 1),
        ])
        outcome = book.evaluate(_Ctx(value=3))
        assert outcome.labels == ["VALUE 3", "A", "B"]
        assert outcome.score == 7

    def test_secondary_accumulator(self):
        book = RuleBook([
            Rule("A", lambda c: True, 1, 10),
            Rule("B", lambda c: True, 2, lambda c: 5),
        ])
        outcome = book.evaluate(_Ctx(value=0))
        assert outcome.score == 3
        assert outcome.secondary == 15

    def test_later_rules_override_state(self):
        def set_phase(phase):
            def apply(ctx):
                ctx.phase = phase
            return apply

        book = RuleBook([
            Rule("ACCUMULATION", lambda c: True, then=set_phase("ACCUMULATION")),
            Rule("DISTRIBUTION", lambda c: c.phase == "ACCUMULATION", then=set_phase("DISTRIBUTION")),
        ])
        ctx = _Ctx(value=0)
        outcome = book.evaluate(ctx)
        assert ctx.phase == "DISTRIBUTION"
        assert outcome.labels == ["ACCUMULATION", "DISTRIBUTION"]

    def test_predicates_are_lazy(self):
        calls = []

        def spy(c):
            calls.append(c.value)
            return True

        RuleBook([Rule("A", spy), Rule("B", spy)], first_match=True).evaluate(_Ctx(value=1))
        assert calls == [1]

    def test_len(self):
        assert len(RuleBook([Rule("A", lambda c: True)] * 3)) == 3
