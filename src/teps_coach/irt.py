"""Three-parameter logistic (3PL) IRT model and per-answer ability updates."""

from __future__ import annotations

import math

from .models import Question

THETA_MIN = -3.0
THETA_MAX = 3.0
P_FLOOR = 0.01   # keeps P·(1-P) away from zero
P_CEIL = 0.99
MAX_LEARNING_RATE = 0.5

SCORE_CENTER = 300
SCORE_PER_THETA = 100
SCORE_MAX = 600

SCORE_LEVELS: tuple[tuple[int, str], ...] = (
    (200, "0-200"),
    (300, "201-300"),
    (400, "301-400"),
    (500, "401-500"),
    (600, "501-600"),
)


def clamp_theta(theta: float) -> float:
    return max(THETA_MIN, min(THETA_MAX, theta))


def _sigmoid(x: float) -> float:
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


def prob_correct(theta: float, *, a: float, b: float, c: float) -> float:
    """P(θ) = c + (1 - c) / (1 + e^(-a(θ - b))). Always within [c, 1]."""
    return c + (1.0 - c) * _sigmoid(a * (theta - b))


def _bounded_prob(theta: float, a: float, b: float, c: float) -> float:
    return max(P_FLOOR, min(P_CEIL, prob_correct(theta, a=a, b=b, c=c)))


def information_value(theta: float, *, a: float, b: float, c: float) -> float:
    """Selection weight I(θ) = a²·P·(1-P), with P bounded to [0.01, 0.99]."""
    p = _bounded_prob(theta, a, b, c)
    return a * a * p * (1.0 - p)


def fisher_information(theta: float, *, a: float, b: float, c: float) -> float:
    """3PL Fisher information a²·(Q/P)·((P-c)/(1-c))²."""
    if c >= 1.0:
        return 0.0
    p = _bounded_prob(theta, a, b, c)
    return a * a * ((1.0 - p) / p) * ((p - c) / (1.0 - c)) ** 2


def item_parameters(question: Question) -> tuple[float, float, float]:
    stats = question.stats
    return stats.discrimination, stats.difficulty, stats.guessing


def update_ability(theta: float, question: Question, is_correct: bool) -> float:
    """Move θ toward the observed outcome and clamp to [-3, 3].

    rate = min(0.5, 1 / sqrt(I(θ) + 1));  θ' = θ + rate · (outcome - P(θ)) / a
    """
    a, b, c = item_parameters(question)
    if a <= 0:
        return clamp_theta(theta)

    p = prob_correct(theta, a=a, b=b, c=c)
    info = fisher_information(theta, a=a, b=b, c=c)
    rate = min(MAX_LEARNING_RATE, 1.0 / math.sqrt(info + 1.0))
    outcome = 1.0 if is_correct else 0.0
    return clamp_theta(theta + rate * (outcome - p) / a)


def ability_to_score(theta: float) -> int:
    """Map θ onto the 0-600 exam scale."""
    score = round(SCORE_CENTER + SCORE_PER_THETA * theta)
    return max(0, min(SCORE_MAX, score))


def ability_to_difficulty(theta: float) -> int:
    """Pick the 1-5 difficulty tier that matches θ."""
    if theta < -1.5:
        return 1
    if theta < -0.5:
        return 2
    if theta < 0.5:
        return 3
    if theta < 1.5:
        return 4
    return 5


def score_level(score: float) -> str:
    for ceiling, label in SCORE_LEVELS:
        if score <= ceiling:
            return label
    return "601+"


__all__ = [
    "MAX_LEARNING_RATE",
    "P_CEIL",
    "P_FLOOR",
    "SCORE_LEVELS",
    "THETA_MAX",
    "THETA_MIN",
    "ability_to_difficulty",
    "ability_to_score",
    "clamp_theta",
    "fisher_information",
    "information_value",
    "item_parameters",
    "prob_correct",
    "score_level",
    "update_ability",
]
