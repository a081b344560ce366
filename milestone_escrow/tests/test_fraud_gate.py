from datetime import timedelta

from django.contrib.auth import authenticate
from django.test import SimpleTestCase, override_settings

from fraud.scoring import (
    CRITICAL, HIGH, LOW, MEDIUM, RiskHistory, build_policy, is_generic_reason, risk_level_for, score_risk,
)
from fraud.services import RiskGate
from payments.models import Transaction

from .helpers import EscrowTestCase, make_user


class ScoreRiskTests(SimpleTestCase):

    def test_clean_history_is_low(self):
        assessment = score_risk(RiskHistory(account_age=timedelta(days=400)))
        self.assertEqual((assessment.risk_score, assessment.risk_level, assessment.risk_factors), (0, LOW, []))

    def test_twenty_transactions_in_a_day_is_at_least_medium(self):
        assessment = score_risk(RiskHistory(account_age=timedelta(days=400), transactions_last_24_hours=20))
        self.assertIn('high transaction velocity', assessment.risk_factors)
        self.assertGreaterEqual(assessment.risk_score, 20)
        self.assertTrue(assessment.at_least(MEDIUM))

    def test_signals_add_up(self):
        history = RiskHistory(
            account_age=timedelta(hours=2),
            failed_login_count=5,
            projects_last_7_days=11,
        )
        assessment = score_risk(history)
        self.assertEqual(assessment.risk_score, 30 + 20 + 25)
        self.assertEqual(assessment.risk_level, CRITICAL)
        self.assertEqual(assessment.risk_factors, [
            'account created very recently',
            'multiple failed login attempts',
            'high project creation velocity',
        ])

    def test_large_amount_against_history(self):
        history = RiskHistory(amount=60000, historical_average_amount=10000.0)
        self.assertIn('transaction significantly larger than average', score_risk(history).risk_factors)

        history = RiskHistory(amount=60000, historical_average_amount=None)
        self.assertEqual(score_risk(history).risk_factors, [])

    def test_rapid_similar_payments(self):
        assessment = score_risk(RiskHistory(similar_transactions_last_hour=3))
        self.assertEqual(assessment.risk_factors, ['multiple similar transactions in short time'])

    def test_dispute_signals(self):
        history = RiskHistory(
            minutes_since_submission=4,
            dispute_reason='Not good.',
            disputes_last_30_days=4,
        )
        assessment = score_risk(history)
        self.assertEqual(assessment.risk_score, 30 + 15 + 20)
        self.assertEqual(assessment.risk_level, HIGH)

    def test_generic_reason_detection(self):
        self.assertTrue(is_generic_reason(''))
        self.assertTrue(is_generic_reason('Bad work!'))
        self.assertTrue(is_generic_reason('too slow'))
        self.assertFalse(is_generic_reason('The API integration fails on every login attempt'))

    def test_cut_points(self):
        self.assertEqual(
            [risk_level_for(score) for score in (0, 19, 20, 49, 50, 74, 75, 200)],
            [LOW, LOW, MEDIUM, MEDIUM, HIGH, HIGH, CRITICAL, CRITICAL],
        )

    def test_policy_overrides_merge_cut_points(self):
        policy = build_policy({'transaction_velocity_points': 60, 'level_cut_points': {CRITICAL: 90}})
        self.assertEqual(policy['level_cut_points'], {MEDIUM: 20, HIGH: 50, CRITICAL: 90})

        assessment = score_risk(RiskHistory(transactions_last_24_hours=11), policy)
        self.assertEqual((assessment.risk_score, assessment.risk_level), (60, HIGH))


class RiskGateTests(EscrowTestCase):

    def test_transaction_velocity_from_database(self):
        project = self.make_project(budget=100000, fund=0)
        for _ in range(20):
            self.escrow_service.fund_project(user=self.client_user, project_id=project.id, amount=100)

        assessment = self.risk_gate.assess_user(self.client_user)

        self.assertIn('high transaction velocity', assessment.risk_factors)
        self.assertTrue(assessment.at_least(MEDIUM))

    def test_new_account_flagged(self):
        newcomer = make_user('new@example.com', 'client', date_joined=self.risk_gate.clock())
        self.assertIn('account created very recently', self.risk_gate.assess_user(newcomer).risk_factors)

    @override_settings(FRAUD_RISK_POLICY={'secondary_review_level': MEDIUM})
    def test_settings_policy_controls_flagging(self):
        gate = RiskGate()
        newcomer = make_user('new@example.com', 'client', date_joined=gate.clock())
        self.assertTrue(gate.is_flagged(gate.assess_user(newcomer)))

    def test_release_compares_against_previous_releases(self):
        project = self.make_project(budget=100000)
        small = self.make_milestone(project, amount=1000, title='Small')
        self.submit(project, small)
        self.milestones.approve_milestone(actor=self.client_user, project_id=project.id, milestone_id=small.id)
        big = self.make_milestone(project, amount=90000, title='Big')

        assessment = self.risk_gate.assess_release(self.client_user, big)

        self.assertIn('transaction significantly larger than average', assessment.risk_factors)
        self.assertEqual(
            Transaction.objects.filter(type=Transaction.Type.MILESTONE_RELEASE).count(), 1,
        )

    def test_failed_logins_are_counted_and_reset(self):
        for _ in range(3):
            self.assertIsNone(authenticate(email=self.client_user.email, password='wrong-password'))
        self.client_user.refresh_from_db()
        self.assertEqual(self.client_user.failed_login_count, 3)
        self.assertIn('multiple failed login attempts', self.risk_gate.assess_user(self.client_user).risk_factors)

        self.assertTrue(self.client.login(email=self.client_user.email, password='testpass123'))
        self.client_user.refresh_from_db()
        self.assertEqual(self.client_user.failed_login_count, 0)
