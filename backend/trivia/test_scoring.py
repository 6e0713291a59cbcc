from __future__ import annotations

from unittest import TestCase

from .models import Answer
from .scoring import (
    ScoringConfig,
    base_score,
    dynamic_cap,
    elevation_delta,
    fold_elevations,
    max_per_question,
    minority_bonus,
    score_reveal,
    summit_places,
)


def make_answer(player_id: str, question_index: int, delta: int, option: int = 0, at: float = 0.0) -> Answer:
    return Answer(
        session_id="s",
        question_id=f"q{question_index}",
        question_index=question_index,
        player_id=player_id,
        option_index=option,
        answered_at=at,
        is_correct=delta > 0,
        elevation_delta=delta,
    )


class ElevationDeltaTests(TestCase):
    def setUp(self) -> None:
        self.speed = ScoringConfig()

    def test_wrong_answers_earn_nothing(self):
        self.assertEqual(elevation_delta(False, 0.0, self.speed), 0)

    def test_speed_curve_decays_linearly(self):
        self.assertEqual(elevation_delta(True, 0.0, self.speed), 100)
        self.assertEqual(elevation_delta(True, 5.0, self.speed), 75)
        self.assertEqual(elevation_delta(True, 10.0, self.speed), 50)
        self.assertEqual(elevation_delta(True, 25.0, self.speed), 50)

    def test_negative_elapsed_is_clamped(self):
        self.assertEqual(elevation_delta(True, -3.0, self.speed), 100)

    def test_flat_curve(self):
        flat = ScoringConfig(curve="flat", correct_elevation=60)
        self.assertEqual(elevation_delta(True, 0.0, flat), 60)
        self.assertEqual(elevation_delta(True, 9.0, flat), 60)


class FoldElevationsTests(TestCase):
    def test_only_revealed_questions_count(self):
        answers = [
            make_answer("alice", 0, 100),
            make_answer("alice", 1, 80),
            make_answer("bob", 0, 0),
            make_answer("bob", 2, 90),
        ]

        self.assertEqual(fold_elevations(answers, -1), {})
        self.assertEqual(fold_elevations(answers, 0), {"alice": 100, "bob": 0})
        self.assertEqual(fold_elevations(answers, 2), {"alice": 180, "bob": 90})

    def test_fold_is_order_independent(self):
        answers = [make_answer("alice", i, 10 * (i + 1)) for i in range(4)]

        self.assertEqual(fold_elevations(answers, 3), fold_elevations(list(reversed(answers)), 3))


class OriginalCurveTests(TestCase):
    def setUp(self) -> None:
        self.original = ScoringConfig(curve="original")

    def test_answers_are_not_priced_at_submission(self):
        self.assertTrue(self.original.priced_at_reveal)
        self.assertEqual(elevation_delta(True, 0.0, self.original), 0)

    def test_base_score_falls_over_ten_seconds(self):
        self.assertEqual(base_score(0), 125)
        self.assertEqual(base_score(1), 113)
        self.assertEqual(base_score(5), 63)
        self.assertEqual(base_score(10), 0)
        self.assertEqual(base_score(12), 0)
        self.assertEqual(base_score(-1), 125)

    def test_minority_bonus(self):
        self.assertEqual(minority_bonus(1, 10), 45)
        self.assertEqual(minority_bonus(5, 10), 25)
        self.assertEqual(minority_bonus(3, 9), 33)
        self.assertEqual(minority_bonus(1, 1), 0)
        self.assertEqual(minority_bonus(0, 0), 0)

    def test_scaled_maximum_per_question(self):
        self.assertAlmostEqual(max_per_question(10), 181.818, places=2)
        self.assertEqual(base_score(0, total_questions=10), 130)
        self.assertEqual(minority_bonus(1, 10, total_questions=10), 47)

    def test_dynamic_cap(self):
        self.assertEqual(dynamic_cap(900, 3), 175)
        self.assertEqual(dynamic_cap(500, 2), 455)
        self.assertEqual(dynamic_cap(1000, 3), 175)
        self.assertEqual(dynamic_cap(0, 0), 175)

    def test_fast_minority_answer(self):
        answers = [make_answer("p0", 0, 0, option=0, at=100.0), make_answer("p1", 0, 0, option=0, at=104.0)]
        answers += [make_answer(f"p{i}", 0, 0, option=1, at=101.0) for i in range(2, 10)]

        scores = score_reveal(answers, 0, {}, questions_remaining=4, total_questions=5, config=self.original)

        first, second = scores[answers[0].id], scores[answers[1].id]
        self.assertEqual(first, (True, 125, 40, 165))
        self.assertEqual(second.elevation_delta, 75 + 40)
        self.assertFalse(scores[answers[2].id].is_correct)
        self.assertEqual(scores[answers[2].id].elevation_delta, 0)

    def test_cap_applies_below_the_summit_only(self):
        config = ScoringConfig(curve="original", scale_to_question_count=True)
        answers = [
            make_answer("climber", 0, 0, option=0),
            make_answer("summiter", 0, 0, option=0),
            make_answer("wrong", 0, 0, option=1),
        ]
        elevations = {"climber": 800, "summiter": 1000, "wrong": 0}

        scores = score_reveal(answers, 0, elevations, questions_remaining=2, total_questions=3, config=config)

        self.assertEqual(scores[answers[1].id], (True, 433, 58, 491))
        self.assertEqual(scores[answers[0].id].elevation_delta, 182)


class SummitPlacesTests(TestCase):
    def test_crossers_are_dense_ranked_after_existing_places(self):
        before = {"a": 900, "b": 950, "c": 990, "d": 1000, "e": 100}
        after = {"a": 1100, "b": 1050, "c": 1050, "d": 1200, "e": 200}

        self.assertEqual(summit_places(before, after, [1]), {"a": 2, "b": 3, "c": 3})

    def test_no_crossers(self):
        self.assertEqual(summit_places({"a": 10}, {"a": 20}, []), {})
