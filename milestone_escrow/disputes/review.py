"""
Automated first-pass review of a dispute.

A reviewer returns a ``ReviewResult``; the dispute service decides what to do
with it. The default heuristic weighs the milestone record and the evidence
each side supplied; anything smarter plugs in through ``settings.DISPUTE_REVIEWER``.
"""
import logging

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class ReviewError(Exception):
    """The reviewer could not produce a result for this dispute."""


class ReviewResult:
    """Container for an automated dispute review"""
    def __init__(self, confidence_score: int, key_issues: list, recommended_resolution: dict, reasoning: str):
        self.confidence_score = confidence_score
        self.key_issues = key_issues
        self.recommended_resolution = recommended_resolution
        self.reasoning = reasoning

    def __repr__(self):
        return (
            f"ReviewResult(confidence_score={self.confidence_score}, "
            f"recommended_resolution={self.recommended_resolution})"
        )


class BaseDisputeReviewer:
    def analyze(self, dispute) -> ReviewResult:
        raise NotImplementedError


class HeuristicDisputeReviewer(BaseDisputeReviewer):
    """
    Scores how strongly the record favours one side. Positive lean favours the
    freelancer, negative the client. Confidence grows with the size of the lean;
    a balanced record recommends an even split at low confidence.
    """
    NON_DELIVERY_TERMS = ('not delivered', 'never delivered', 'missing', 'incomplete', 'nothing was', 'no work')
    NON_PAYMENT_TERMS = ('not paid', 'unpaid', 'refuses to pay', 'already approved', 'out of scope', 'scope creep')

    BASE_CONFIDENCE = 50
    CONFIDENCE_PER_POINT = 15
    MAX_CONFIDENCE = 95
    MAX_EVIDENCE_WEIGHT = 2

    def analyze(self, dispute):
        milestone = dispute.milestone
        project = dispute.project
        reason = (dispute.reason or '').lower()
        lean = 0
        issues = []

        if milestone.deliverables:
            lean += 1
            issues.append(f"{len(milestone.deliverables)} deliverable(s) were submitted")
        elif dispute.milestone_status_before != 'SUBMITTED':
            lean -= 2
            issues.append("work was never submitted for review")

        if len(milestone.revision_history) >= 3:
            lean += 1
            issues.append(f"{len(milestone.revision_history)} revisions were already requested")

        freelancer_evidence = sum(1 for item in dispute.evidence if item.get('submitted_by') == project.freelancer_id)
        client_evidence = sum(1 for item in dispute.evidence if item.get('submitted_by') == project.client_id)
        evidence_lean = max(-self.MAX_EVIDENCE_WEIGHT, min(self.MAX_EVIDENCE_WEIGHT, freelancer_evidence - client_evidence))
        if evidence_lean:
            lean += evidence_lean
            issues.append(f"evidence favours the {'freelancer' if evidence_lean > 0 else 'client'}")

        if any(term in reason for term in self.NON_DELIVERY_TERMS):
            lean -= 1
            issues.append("reason alleges missing or incomplete delivery")
        if any(term in reason for term in self.NON_PAYMENT_TERMS):
            lean += 1
            issues.append("reason alleges withheld payment or scope changes")

        amount = dispute.amount_in_dispute
        if lean > 0:
            recommendation = {'amount_to_freelancer': amount, 'amount_to_client': 0}
        elif lean < 0:
            recommendation = {'amount_to_freelancer': 0, 'amount_to_client': amount}
        else:
            half = amount // 2
            recommendation = {'amount_to_freelancer': half, 'amount_to_client': amount - half}

        confidence = min(self.MAX_CONFIDENCE, self.BASE_CONFIDENCE + self.CONFIDENCE_PER_POINT * abs(lean))
        reasoning = "; ".join(issues) or "the record does not favour either party"
        logger.info(f"Heuristic review of dispute {dispute.id}: lean={lean} confidence={confidence}")
        return ReviewResult(
            confidence_score=confidence,
            key_issues=issues,
            recommended_resolution=recommendation,
            reasoning=reasoning,
        )


def get_dispute_reviewer():
    return import_string(settings.DISPUTE_REVIEWER)()
