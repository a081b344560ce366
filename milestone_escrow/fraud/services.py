from datetime import timedelta
from django.conf import settings
from django.db.models import Avg, Q
from django.utils import timezone
from .scoring import RiskHistory, build_policy, score_risk
import logging

logger = logging.getLogger(__name__)


class RiskGate:
    """
    Gathers a requester's recent history and scores it. The gate only
    reports; callers decide what a flagged assessment means for them.
    """

    def __init__(self, policy=None, clock=None):
        overrides = dict(getattr(settings, 'FRAUD_RISK_POLICY', {}))
        overrides.update(policy or {})
        self.policy = build_policy(overrides)
        self.clock = clock or timezone.now

    def _user_history(self, user, now):
        from payments.models import Transaction
        from projects.models import Project

        involved = Q(from_user=user) | Q(to_user=user) | Q(project__client=user)
        return RiskHistory(
            account_age=now - user.date_joined if user.date_joined else None,
            failed_login_count=getattr(user, 'failed_login_count', 0),
            projects_last_7_days=Project.objects.filter(
                client=user, created_at__gte=now - timedelta(days=7),
            ).count(),
            transactions_last_24_hours=Transaction.objects.filter(
                involved, created_at__gte=now - timedelta(hours=24),
            ).distinct().count(),
        )

    def is_flagged(self, assessment):
        return assessment.at_least(self.policy['secondary_review_level'])

    def _finish(self, subject, user, assessment):
        if self.is_flagged(assessment):
            logger.warning(
                f"High fraud risk on {subject} for user {user.pk}: "
                f"score={assessment.risk_score} level={assessment.risk_level} factors={assessment.risk_factors}"
            )
        else:
            logger.info(f"Fraud risk on {subject} for user {user.pk}: {assessment.risk_level} ({assessment.risk_score})")
        return assessment

    def assess_user(self, user):
        now = self.clock()
        return self._finish('account', user, score_risk(self._user_history(user, now), self.policy))

    def assess_release(self, user, milestone):
        """Score a milestone payment release requested (or triggered) on behalf of ``user``."""
        from payments.models import Transaction

        now = self.clock()
        history = self._user_history(user, now)
        history.amount = milestone.amount

        previous = Transaction.objects.filter(
            project__client=user,
            type=Transaction.Type.MILESTONE_RELEASE,
            status=Transaction.Status.COMPLETED,
        )
        history.historical_average_amount = previous.aggregate(
            average=Avg('amount') + Avg('platform_fee'),
        )['average']
        history.similar_transactions_last_hour = previous.filter(
            created_at__gte=now - timedelta(hours=1),
        ).count()

        return self._finish(f"release of milestone {milestone.pk}", user, score_risk(history, self.policy))

    def assess_dispute(self, user, milestone, reason):
        """Score a dispute filing by ``user`` against ``milestone``."""
        from disputes.models import Dispute

        now = self.clock()
        history = self._user_history(user, now)
        history.dispute_reason = reason
        if milestone.submitted_at is not None:
            history.minutes_since_submission = (now - milestone.submitted_at).total_seconds() / 60
        history.disputes_last_30_days = Dispute.objects.filter(
            raised_by=user, created_at__gte=now - timedelta(days=30),
        ).count()

        return self._finish(f"dispute on milestone {milestone.pk}", user, score_risk(history, self.policy))
