"""Game rules vocabulary shared by the server reconciliation engine and the
client session context.

Everything here is pure: no Flask, no database, no clock. Both sides clamp
and classify values through these helpers so a corrected server snapshot and
a locally reconciled client state agree on what a legal value is.
"""

import math

MAX_HEALTH = 3
INITIAL_HEALTH = 3
BASE_SPEED = 200
CAP_SPEED = 600
SPEED_INCREMENT = 20
SPEED_INCREMENT_INTERVAL_SEC = 30
SESSION_TIME_LIMIT_SEC = 2 * 60 * 60
TIME_TOLERANCE_SEC = 60
SCORE_INCREASE_CEILING = 500
# Largest value an INTEGER column holds on every supported backend
MAX_STORED_INT = 2 ** 31 - 1

EASY = 'EASY'
MEDIUM = 'MEDIUM'
HARD = 'HARD'
DIFFICULTIES = (EASY, MEDIUM, HARD)

# Question time limit (seconds) per tier
QUESTION_TIME_LIMITS = {EASY: 10, MEDIUM: 20, HARD: 30}

SCORING = {
    'correct': 100,
    'fast_solve_bonus': 50,
    'wrong': -50,
    'timeout': -75,
    'distance_per_second': 1,
}

# Client-reported action tags
ANSWER_CORRECT = 'answer_correct'
ANSWER_INCORRECT = 'answer_incorrect'
HEALTH_LOSS = 'health_loss'
DEMOGORGON_HIT = 'demogorgon_hit'
PORTAL_CLEARED = 'portal_cleared'
BONUS_COLLECTED = 'bonus_collected'
GAME_OVER = 'game_over'
TIME_OVER = 'time_over'

ACTIONS = frozenset([
    ANSWER_CORRECT, ANSWER_INCORRECT, HEALTH_LOSS, DEMOGORGON_HIT,
    PORTAL_CLEARED, BONUS_COLLECTED, GAME_OVER, TIME_OVER,
])
# Actions that may legitimately lower the score
PENALTY_ACTIONS = frozenset([ANSWER_INCORRECT, HEALTH_LOSS, DEMOGORGON_HIT])
# The only action allowed to raise health
HEAL_ACTIONS = frozenset([BONUS_COLLECTED])

# Server-generated event tags
SESSION_START = 'session_start'
SESSION_COMPLETE = 'session_complete'

COUNTER_FIELDS = ('portals_cleared', 'bonuses_cleared', 'obstacles_hit')


def is_number(value) -> bool:
    """True for finite ints/floats. Booleans and numeric strings are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp(value, low, high=None):
    if value < low:
        return low
    if high is not None and value > high:
        return high
    return value


def clamp_int(value, low, high=None) -> int:
    return int(clamp(math.floor(value), low, high))


def clamp_health(value) -> int:
    return clamp_int(value, 0, MAX_HEALTH)


def clamp_score(value) -> int:
    return clamp_int(value, 0, MAX_STORED_INT)


def clamp_counter(value) -> int:
    return clamp_int(value, 0, MAX_STORED_INT)


def clamp_speed(value, base=BASE_SPEED, cap=CAP_SPEED) -> float:
    return float(clamp(value, base, cap))


def clamp_time(value, limit=SESSION_TIME_LIMIT_SEC) -> float:
    return float(clamp(value, 0, limit))


def normalize_difficulty(value) -> str:
    """Unknown tiers fall back to EASY."""
    if isinstance(value, str) and value.upper() in DIFFICULTIES:
        return value.upper()
    return EASY


def difficulty_for_portals(portals_cleared) -> str:
    """Difficulty tier as a pure function of portals cleared: 0-3 EASY, 4-6 MEDIUM, 7+ HARD."""
    if portals_cleared >= 7:
        return HARD
    if portals_cleared >= 4:
        return MEDIUM
    return EASY


def normalize_action(value):
    """Return the action tag if recognized, else None."""
    if isinstance(value, str) and value in ACTIONS:
        return value
    return None


def expected_time_remaining(limit, elapsed_seconds) -> float:
    return max(0.0, float(limit) - float(elapsed_seconds))
