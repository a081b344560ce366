"""
Fraud risk scoring.

``score_risk`` is a pure function of a ``RiskHistory`` snapshot and a policy
dict. Each signal adds its own points when it fires; the total maps to a
level through the policy's cut points. Nothing here touches the database.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

LOW = 'LOW'
MEDIUM = 'MEDIUM'
HIGH = 'HIGH'
CRITICAL = 'CRITICAL'

RISK_LEVELS = (LOW, MEDIUM, HIGH, CRITICAL)

DEFAULT_POLICY = {
    'new_account_age': timedelta(hours=24),
    'new_account_points': 30,

    'failed_login_threshold': 3,
    'failed_login_points': 20,

    'project_velocity_threshold': 10,
    'project_velocity_points': 25,

    'transaction_velocity_threshold': 10,
    'transaction_velocity_points': 20,

    'large_amount_multiplier': 5,
    'large_amount_points': 25,

    'rapid_payment_threshold': 3,
    'rapid_payment_points': 20,

    'quick_dispute_minutes': 10,
    'quick_dispute_points': 30,

    'generic_reason_min_words': 4,
    'generic_reason_phrases': [
        'not good', 'bad', 'bad work', 'poor quality', 'not satisfied',
        'not happy', 'unhappy', 'did not like', "don't like", 'no',
    ],
    'generic_reason_points': 15,

    'dispute_frequency_threshold': 3,
    'dispute_frequency_points': 20,

    'level_cut_points': {MEDIUM: 20, HIGH: 50, CRITICAL: 75},
    # Assessments at or above this level are flagged for secondary review.
    'secondary_review_level': HIGH,
}


@dataclass
class RiskHistory:
    """Counts and timings gathered for one requester at decision time."""
    account_age: Optional[timedelta] = None
    failed_login_count: int = 0
    projects_last_7_days: int = 0
    transactions_last_24_hours: int = 0
    similar_transactions_last_hour: int = 0
    amount: Optional[int] = None
    historical_average_amount: Optional[float] = None
    minutes_since_submission: Optional[float] = None
    dispute_reason: Optional[str] = None
    disputes_last_30_days: int = 0


@dataclass
class RiskAssessment:
    risk_score: int
    risk_level: str
    risk_factors: list = field(default_factory=list)

    def at_least(self, level):
        return RISK_LEVELS.index(self.risk_level) >= RISK_LEVELS.index(level)

    def as_dict(self):
        return {
            'risk_score': self.risk_score,
            'risk_level': self.risk_level,
            'risk_factors': list(self.risk_factors),
        }


def build_policy(overrides=None):
    policy = dict(DEFAULT_POLICY)
    policy['level_cut_points'] = dict(DEFAULT_POLICY['level_cut_points'])
    for key, value in (overrides or {}).items():
        if key == 'level_cut_points':
            policy['level_cut_points'].update(value)
        else:
            policy[key] = value
    return policy


def risk_level_for(score, policy=None):
    cut_points = (policy or DEFAULT_POLICY)['level_cut_points']
    level = LOW
    for candidate in (MEDIUM, HIGH, CRITICAL):
        if score >= cut_points[candidate]:
            level = candidate
    return level


def is_generic_reason(reason, policy=None):
    policy = policy or DEFAULT_POLICY
    text = ' '.join((reason or '').lower().split()).strip(' .!')
    if not text:
        return True
    if text in policy['generic_reason_phrases']:
        return True
    return len(text.split()) < policy['generic_reason_min_words']


def score_risk(history: RiskHistory, policy=None) -> RiskAssessment:
    policy = policy or DEFAULT_POLICY
    score = 0
    factors = []

    def add(points, factor):
        nonlocal score
        score += points
        factors.append(factor)

    if history.account_age is not None and history.account_age < policy['new_account_age']:
        add(policy['new_account_points'], 'account created very recently')

    if history.failed_login_count >= policy['failed_login_threshold']:
        add(policy['failed_login_points'], 'multiple failed login attempts')

    if history.projects_last_7_days > policy['project_velocity_threshold']:
        add(policy['project_velocity_points'], 'high project creation velocity')

    if history.transactions_last_24_hours > policy['transaction_velocity_threshold']:
        add(policy['transaction_velocity_points'], 'high transaction velocity')

    if (history.amount is not None and history.historical_average_amount
            and history.amount > history.historical_average_amount * policy['large_amount_multiplier']):
        add(policy['large_amount_points'], 'transaction significantly larger than average')

    if history.similar_transactions_last_hour >= policy['rapid_payment_threshold']:
        add(policy['rapid_payment_points'], 'multiple similar transactions in short time')

    if (history.minutes_since_submission is not None
            and history.minutes_since_submission <= policy['quick_dispute_minutes']):
        add(policy['quick_dispute_points'], 'dispute filed within minutes of submission')

    if history.dispute_reason is not None and is_generic_reason(history.dispute_reason, policy):
        add(policy['generic_reason_points'], 'generic dispute reason')

    if history.disputes_last_30_days > policy['dispute_frequency_threshold']:
        add(policy['dispute_frequency_points'], 'high dispute frequency')

    return RiskAssessment(
        risk_score=score,
        risk_level=risk_level_for(score, policy),
        risk_factors=factors,
    )
