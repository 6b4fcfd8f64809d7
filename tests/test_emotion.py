"""Tests for frustration detection and encouragement."""

import random
from datetime import datetime, timedelta

from feynman.session.emotion import (
    ALTERNATIVE_APPROACHES,
    BehaviorEvent,
    BehaviorTracker,
    BehaviorType,
    FrustrationLevel,
    FrustrationSignal,
    choose_encouragement,
    detect_frustration,
    should_encourage,
)
from feynman.session.models import FieldName


def signal(score: int) -> FrustrationSignal:
    return FrustrationSignal(
        frustrated=score >= 3, score=score, level=FrustrationLevel.NONE, indicators={}
    )


class TestBehaviorTracker:
    """Tests for the bounded event buffer."""

    def test_records_typed_events(self):
        tracker = BehaviorTracker()
        tracker.record_typing(5)
        tracker.record_deletion(3)
        tracker.record_pause(40.0)
        tracker.record_clear()
        tracker.record_submit("hello")

        assert [e.type for e in tracker.events] == [
            BehaviorType.TYPING,
            BehaviorType.DELETION,
            BehaviorType.PAUSE,
            BehaviorType.CLEAR,
            BehaviorType.SUBMIT,
        ]
        assert tracker.events[-1].length == 5
        assert tracker.events[2].duration == 40.0

    def test_bounded(self):
        tracker = BehaviorTracker(max_events=5)
        for i in range(12):
            tracker.record_typing(i)
        assert len(tracker.events) == 5
        assert tracker.events[0].length == 7

    def test_idle_gap_becomes_pause(self):
        start = datetime(2026, 1, 1, 12, 0, 0)
        tracker = BehaviorTracker()
        tracker.record(BehaviorEvent(BehaviorType.TYPING, timestamp=start, length=3))
        tracker.record(BehaviorEvent(BehaviorType.TYPING, timestamp=start + timedelta(seconds=5)))
        tracker.record(BehaviorEvent(BehaviorType.DELETION, timestamp=start + timedelta(seconds=50)))

        types = [e.type for e in tracker.events]
        assert types == [
            BehaviorType.TYPING,
            BehaviorType.TYPING,
            BehaviorType.PAUSE,
            BehaviorType.DELETION,
        ]
        assert tracker.events[2].duration == 45.0

    def test_idle_gaps_feed_long_pause_indicator(self):
        start = datetime(2026, 1, 1, 12, 0, 0)
        tracker = BehaviorTracker()
        for minutes in range(3):
            tracker.record(
                BehaviorEvent(BehaviorType.TYPING, timestamp=start + timedelta(minutes=minutes))
            )
        assert detect_frustration(tracker.events, "x", []).indicators["long_pauses"]

    def test_clear(self):
        tracker = BehaviorTracker()
        tracker.record_clear()
        tracker.clear()
        assert tracker.events == []


class TestDetectFrustration:
    """Tests for the five indicators and the score."""

    def test_calm_learner(self):
        result = detect_frustration([BehaviorEvent(BehaviorType.TYPING, length=40)], "first try", [])
        assert not result.frustrated
        assert result.score == 0
        assert result.level == FrustrationLevel.NONE
        assert result.active_indicators == []

    def test_many_deletions(self):
        events = [BehaviorEvent(BehaviorType.DELETION, length=4)] * 2 + [
            BehaviorEvent(BehaviorType.CLEAR)
        ]
        result = detect_frustration(events, "x", [])
        assert result.indicators["multiple_deletions"]

    def test_old_deletions_ignored(self):
        events = [BehaviorEvent(BehaviorType.DELETION)] * 3 + [
            BehaviorEvent(BehaviorType.TYPING)
        ] * 10
        assert not detect_frustration(events, "x", []).indicators["multiple_deletions"]

    def test_shrinking_attempts(self):
        result = detect_frustration([], "ab", ["abcdef", "abcd"])
        assert result.indicators["decreasing_length"]
        assert not detect_frustration([], "abcdefg", ["abcdef", "abcd"]).indicators[
            "decreasing_length"
        ]

    def test_long_pauses(self):
        events = [BehaviorEvent(BehaviorType.PAUSE, duration=45.0)] * 2
        assert detect_frustration(events, "x", []).indicators["long_pauses"]

        short = [BehaviorEvent(BehaviorType.PAUSE, duration=10.0)] * 4
        assert not detect_frustration(short, "x", []).indicators["long_pauses"]

    def test_repeated_revisions(self):
        result = detect_frustration([], "x", ["a", "b", "c", "d"])
        assert result.indicators["repeated_revisions"]

    def test_similar_attempts(self):
        previous = ["the sun feeds plants", "the sun feeds the plants"]
        assert detect_frustration([], "x", previous).indicators["similar_attempts"]

        different = ["the sun feeds plants", "chlorophyll absorbs red light"]
        assert not detect_frustration([], "x", different).indicators["similar_attempts"]

    def test_three_indicators_frustrated(self):
        """Repeated, similar and shrinking attempts together cross the line."""
        previous = [
            "plants use the sun to make food from air",
            "plants use the sun to make food",
            "plants use the sun to make",
            "plants use the sun to",
        ]
        result = detect_frustration([], "plants use", previous)

        assert result.frustrated
        assert result.score >= 3
        assert result.level in (FrustrationLevel.MODERATE, FrustrationLevel.HIGH)

    def test_levels(self):
        events = [BehaviorEvent(BehaviorType.DELETION)] * 3 + [
            BehaviorEvent(BehaviorType.PAUSE, duration=60.0)
        ] * 2
        previous = ["a b c d e f", "a b c d e", "a b c d", "a b c"]
        result = detect_frustration(events, "a b", previous)
        assert result.score == 5
        assert result.level == FrustrationLevel.HIGH


class TestShouldEncourage:
    """Tests for the encouragement rate limit."""

    def test_not_frustrated(self):
        assert not should_encourage(signal(1), None)

    def test_first_time(self):
        assert should_encourage(signal(3), None)

    def test_rate_limited(self):
        now = datetime(2026, 1, 1, 12, 0, 0)
        assert not should_encourage(signal(3), now - timedelta(seconds=30), now)
        assert should_encourage(signal(3), now - timedelta(seconds=60), now)


class TestChooseEncouragement:
    """Tests for encouragement wording."""

    def test_high_may_suggest_alternative(self):
        rng = random.Random(0)
        messages = {
            choose_encouragement(FrustrationLevel.HIGH, FieldName.ANALOGY, 5, rng)
            for _ in range(50)
        }
        assert any(ALTERNATIVE_APPROACHES[FieldName.ANALOGY] in m for m in messages)
        assert any("5 attempts" in m for m in messages)

    def test_every_level_has_messages(self):
        for level in FrustrationLevel:
            assert choose_encouragement(level, FieldName.DEFINITION, 1, random.Random(1))

    def test_every_field_has_alternative(self):
        assert set(ALTERNATIVE_APPROACHES) == set(FieldName)
