"""Tests for irt.py: 3PL probability, information and ability updates."""

from __future__ import annotations

import itertools

import pytest

from teps_coach.irt import (
    MAX_LEARNING_RATE,
    THETA_MAX,
    THETA_MIN,
    ability_to_difficulty,
    ability_to_score,
    fisher_information,
    information_value,
    prob_correct,
    score_level,
    update_ability,
)
from teps_coach.models import Question, QuestionStats


def _question(difficulty: float = 0.0, discrimination: float = 1.0, guessing: float = 0.25) -> Question:
    return Question(
        id=1,
        question_type="grammar_blank_filling",
        section="grammar",
        difficulty_level=3,
        question_text="She ___ here since 2010.",
        options={"A": "lives", "B": "has lived", "C": "lived", "D": "is living"},
        correct_answer="B",
        stats=QuestionStats(difficulty=difficulty, discrimination=discrimination, guessing=guessing),
    )


class TestProbCorrect:
    def test_at_difficulty_is_midway_above_guessing(self):
        assert prob_correct(0.0, a=1.0, b=0.0, c=0.25) == pytest.approx(0.625)

    def test_never_below_guessing(self):
        assert prob_correct(-50.0, a=2.0, b=3.0, c=0.2) >= 0.2

    def test_bounded_by_one(self):
        assert prob_correct(50.0, a=2.0, b=-3.0, c=0.2) <= 1.0

    def test_increases_with_ability(self):
        low = prob_correct(-1.0, a=1.2, b=0.0, c=0.25)
        high = prob_correct(1.0, a=1.2, b=0.0, c=0.25)
        assert high > low


class TestInformation:
    def test_information_peaks_near_difficulty(self):
        near = information_value(0.0, a=1.0, b=0.0, c=0.0)
        far = information_value(2.5, a=1.0, b=0.0, c=0.0)
        assert near > far

    def test_information_is_positive_at_extremes(self):
        assert information_value(3.0, a=1.0, b=-3.0, c=0.25) > 0

    def test_fisher_information_zero_without_signal(self):
        assert fisher_information(0.0, a=1.0, b=0.0, c=1.0) == 0.0

    def test_higher_discrimination_gives_more_information(self):
        assert information_value(0.0, a=2.0, b=0.0, c=0.2) > information_value(0.0, a=1.0, b=0.0, c=0.2)


class TestUpdateAbility:
    def test_correct_answer_raises_theta(self):
        assert update_ability(0.0, _question(), True) > 0.0

    def test_wrong_answer_lowers_theta(self):
        assert update_ability(0.0, _question(), False) < 0.0

    def test_step_is_bounded_by_learning_rate(self):
        question = _question(discrimination=1.0)
        theta = update_ability(0.0, question, True)
        assert theta <= MAX_LEARNING_RATE

    def test_theta_stays_clamped(self):
        theta = THETA_MAX
        for _ in range(20):
            theta = update_ability(theta, _question(difficulty=-3.0, discrimination=0.2), True)
        assert theta == THETA_MAX

        theta = THETA_MIN
        for _ in range(20):
            theta = update_ability(theta, _question(difficulty=3.0, discrimination=0.2), False)
        assert theta == THETA_MIN

    def test_update_is_deterministic(self):
        question = _question(difficulty=0.4, discrimination=1.3, guessing=0.2)
        assert update_ability(-0.2, question, True) == update_ability(-0.2, question, True)
        assert update_ability(1.1, question, False) == update_ability(1.1, question, False)

    def test_zero_discrimination_leaves_theta(self):
        assert update_ability(0.7, _question(discrimination=0.0), True) == 0.7


class TestScoreMapping:
    def test_center_is_300(self):
        assert ability_to_score(0.0) == 300

    def test_score_is_clamped(self):
        assert ability_to_score(5.0) == 600
        assert ability_to_score(-5.0) == 0

    @pytest.mark.parametrize(
        "theta, level",
        [(-2.0, 1), (-1.0, 2), (0.0, 3), (1.0, 4), (2.0, 5)],
    )
    def test_difficulty_tiers(self, theta, level):
        assert ability_to_difficulty(theta) == level

    def test_score_levels(self):
        assert score_level(150) == "0-200"
        assert score_level(250) == "201-300"
        assert score_level(600) == "501-600"
        assert score_level(650) == "601+"


class TestParameterGrid:
    THETAS = (-3.0, -1.5, 0.0, 1.5, 3.0)
    DISCRIMINATIONS = (0.1, 1.0, 2.0)
    DIFFICULTIES = (-3.0, 0.0, 3.0)
    GUESSING = (0.0, 0.2, 0.25)

    def _grid(self):
        return itertools.product(self.THETAS, self.DISCRIMINATIONS, self.DIFFICULTIES, self.GUESSING)

    def test_probability_within_guessing_and_one(self):
        for theta, a, b, c in self._grid():
            p = prob_correct(theta, a=a, b=b, c=c)
            assert c <= p <= 1.0, (theta, a, b, c)

    def test_information_is_non_negative(self):
        for theta, a, b, c in self._grid():
            assert information_value(theta, a=a, b=b, c=c) >= 0.0
            assert fisher_information(theta, a=a, b=b, c=c) >= 0.0

    def test_updated_theta_stays_in_range(self):
        for theta, a, b, c in self._grid():
            question = _question(difficulty=b, discrimination=a, guessing=c)
            for is_correct in (True, False):
                updated = update_ability(theta, question, is_correct)
                assert THETA_MIN <= updated <= THETA_MAX, (theta, a, b, c, is_correct)
