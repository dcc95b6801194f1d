"""Default civic trigger catalog and the routes that report into it."""

from __future__ import annotations

from civicreward.triggers.rules import RuleConditions, Tier, TriggerRule

MUNICIPAL_PARTICIPATION = "MUNICIPAL_PARTICIPATION"
REFERRAL_NEW_USER = "REFERRAL_NEW_USER"
DECK10_FEEDBACK = "DECK10_FEEDBACK"
COMMAND_STREAK = "COMMAND_STREAK"
TRUTH_MEDIA_UPLOAD = "TRUTH_MEDIA_UPLOAD"

# route -> rule id
DEFAULT_ROUTES: dict[str, str] = {
    "/municipal/pilot": MUNICIPAL_PARTICIPATION,
    "/referral": REFERRAL_NEW_USER,
    "/deck/10": DECK10_FEEDBACK,
    "/streak": COMMAND_STREAK,
    "/press/replay": TRUTH_MEDIA_UPLOAD,
}


def default_rules() -> list[TriggerRule]:
    """Fresh copies of the seeded civic trigger rules."""
    return [
        TriggerRule(
            rule_id=MUNICIPAL_PARTICIPATION,
            action_type="pilot",
            category="municipal",
            reward=250,
            conditions=RuleConditions(
                min_tier=Tier.CITIZEN,
                identity_required=True,
                criteria="Complete municipal onboarding flow",
            ),
            description="Participate in municipal pilot program",
        ),
        TriggerRule(
            rule_id=REFERRAL_NEW_USER,
            action_type="referral",
            category="social",
            reward=150,
            conditions=RuleConditions(
                min_tier=Tier.CITIZEN,
                identity_required=True,
                criteria="Referred user completes civic verification",
            ),
            description="Successfully refer a new citizen to the platform",
        ),
        TriggerRule(
            rule_id=DECK10_FEEDBACK,
            action_type="feedback",
            category="governance",
            reward=75,
            conditions=RuleConditions(
                min_tier=Tier.CITIZEN,
                identity_required=True,
                token_required=True,
                criteria="Submit verified feedback on governance proposals",
            ),
            description="Provide substantive feedback on Deck #10 governance proposals",
        ),
        TriggerRule(
            rule_id=COMMAND_STREAK,
            action_type="streak",
            category="engagement",
            reward=100,
            conditions=RuleConditions(
                min_tier=Tier.CONTRIBUTOR,
                identity_required=True,
                criteria="7+ consecutive days of civic engagement",
            ),
            description="Maintain 7-day civic engagement streak",
        ),
        TriggerRule(
            rule_id=TRUTH_MEDIA_UPLOAD,
            action_type="media",
            category="content",
            reward=200,
            conditions=RuleConditions(
                min_tier=Tier.CONTRIBUTOR,
                identity_required=True,
                token_required=True,
                criteria="Upload verified civic content with community approval",
            ),
            description="Upload and verify truth-based civic media content",
        ),
    ]
