"""
Text moderation consulted before milestones and disputes are created.

The active moderator is loaded from ``settings.CONTENT_MODERATOR``; services
accept an explicit instance so tests can inject their own.
"""
import logging
import re

from django.conf import settings
from django.utils.module_loading import import_string

from milestone_escrow.exceptions import ContentRejected

logger = logging.getLogger(__name__)


class ContentModerationResult:
    """Container for content moderation results"""
    def __init__(self, is_flagged: bool, reasons: list, confidence: float = 1.0):
        self.is_flagged = is_flagged
        self.reasons = reasons
        self.confidence = confidence

    def __repr__(self):
        return f"ContentModerationResult(is_flagged={self.is_flagged}, reasons={self.reasons})"


class BaseContentModerator:
    def review_text(self, content: str, context: dict = None) -> ContentModerationResult:
        raise NotImplementedError


class WordListModerator(BaseContentModerator):
    """Flags text containing configured terms or exceeding the configured length."""

    def __init__(self, flagged_terms=None, max_length=None):
        if flagged_terms is None:
            flagged_terms = settings.CONTENT_MODERATION_FLAGGED_TERMS
        self.flagged_terms = [term.lower() for term in flagged_terms]
        self.max_length = max_length or settings.CONTENT_MODERATION_MAX_LENGTH

    def review_text(self, content, context=None):
        reasons = []
        text = content or ''
        if len(text) > self.max_length:
            reasons.append(f"content exceeds {self.max_length} characters")

        words = set(re.findall(r"[a-z']+", text.lower()))
        for term in self.flagged_terms:
            if term in words:
                reasons.append(f"contains flagged term '{term}'")

        return ContentModerationResult(is_flagged=bool(reasons), reasons=reasons)


def get_content_moderator():
    return import_string(settings.CONTENT_MODERATOR)()


def ensure_acceptable(moderator, fields: dict, context: dict = None):
    """
    Run every non-empty text field through the moderator and raise
    ContentRejected with the collected reasons when any is flagged.
    """
    reasons = []
    for name, value in fields.items():
        if not value:
            continue
        result = moderator.review_text(value, context or {})
        if result.is_flagged:
            reasons.extend(f"{name}: {reason}" for reason in result.reasons)

    if reasons:
        logger.warning(f"Content rejected by moderation: {reasons} context={context}")
        raise ContentRejected("The submitted content was rejected by moderation.", reasons=reasons)
