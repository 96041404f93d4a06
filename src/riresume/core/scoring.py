from __future__ import annotations

import math

from pydantic import BaseModel

from riresume.types import GapAnalysis, MatchAnalysis, RecommendedAction, SkillMatch

SKILL_WEIGHT = 0.5
KEYWORD_WEIGHT = 0.2
EXPERIENCE_WEIGHT = 0.2

READY_SCORE_THRESHOLD = 40
MAX_CRITICAL_GAPS_FOR_READY = 5


class Recommendation(BaseModel):
    action: RecommendedAction
    confidence: float
    reasoning: str


def _important(skills: list[SkillMatch]) -> int:
    return sum(1 for skill in skills if skill.importance in ("critical", "high"))


def calculate_ats_score(match: MatchAnalysis) -> int:
    matched = _important(match.matched_skills)
    partial = _important(match.partial_matches)
    missing = _important(match.missing_skills)
    total = matched + partial + missing

    skill_score = ((matched + 0.5 * partial) / total) * 100 if total > 0 else 0.0
    score = (
        skill_score * SKILL_WEIGHT
        + match.keyword_density * KEYWORD_WEIGHT
        + match.experience_match.match * EXPERIENCE_WEIGHT
    )
    # Half-up rounding, not banker's rounding.
    return int(math.floor(min(100.0, max(0.0, score)) + 0.5))


def determine_readiness(score: int, gaps: GapAnalysis) -> bool:
    return score > READY_SCORE_THRESHOLD or len(gaps.critical_gaps) <= MAX_CRITICAL_GAPS_FOR_READY


def recommend_action(score: int, gaps: GapAnalysis) -> Recommendation:
    if determine_readiness(score, gaps):
        if score >= 70:
            reasoning = f"Strong match with an ATS score of {score}%. Optimize the resume to surface the right keywords."
        else:
            reasoning = f"Potential match (ATS {score}%) with some missing keywords. A rewrite can close the gap."
        return Recommendation(action="optimize", confidence=float(score), reasoning=reasoning)

    gap_score = gaps.total_gap_score
    critical = len(gaps.critical_gaps)
    if gap_score <= 40:
        action: RecommendedAction = "upskill"
        reasoning = f"ATS {score}% with {critical} critical skill gap(s). Focused learning puts this role within reach."
    elif gap_score <= 70:
        action = "apply_junior"
        reasoning = f"ATS {score}%. Junior or mid-level roles are a stronger fit for now."
    else:
        action = "not_suitable"
        reasoning = f"ATS {score}%. This role needs significantly more experience than the resume shows."
    return Recommendation(action=action, confidence=max(0.0, 100.0 - gap_score), reasoning=reasoning)
