"""Mental-health self-assessments and the support resource directory.

Screenings are short frequency questionnaires: every question is answered
on the same 0-3 scale and the total picks a level.  They are self-help
signposts, not diagnoses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.services import facility_directory
from afyalink.services.errors import NotFoundError, ValidationError
from afyalink.services.facility_search import FacilityQuery, FacilityType, search

logger = logging.getLogger(__name__)

ANSWER_OPTIONS: tuple[tuple[int, str], ...] = (
    (0, "Not at all"),
    (1, "Several days"),
    (2, "More than half the days"),
    (3, "Nearly every day"),
)
MIN_ANSWER = 0
MAX_ANSWER = 3

SEVERE_THRESHOLD = 10
MODERATE_THRESHOLD = 5


@dataclass(frozen=True)
class Question:
    id: int
    text: str


@dataclass(frozen=True)
class Assessment:
    id: str
    title: str
    description: str
    questions: tuple[Question, ...]

    @property
    def max_score(self) -> int:
        return MAX_ANSWER * len(self.questions)


@dataclass(frozen=True)
class AssessmentResult:
    assessment_id: str
    score: int
    max_score: int
    level: str
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class Resource:
    id: str
    name: str
    type: str
    phone: str | None
    address: str
    services: tuple[str, ...]
    is_24_hours: bool


ASSESSMENTS: dict[str, Assessment] = {
    a.id: a
    for a in (
        Assessment(
            id="depression",
            title="Depression Screening",
            description="A brief assessment to help identify symptoms of depression",
            questions=(
                Question(1, "How often have you felt down, depressed, or hopeless in the past 2 weeks?"),
                Question(2, "How often have you had little interest or pleasure in doing things?"),
            ),
        ),
        Assessment(
            id="anxiety",
            title="Anxiety Screening",
            description="A brief assessment to help identify symptoms of anxiety",
            questions=(
                Question(1, "How often have you felt nervous, anxious, or on edge?"),
            ),
        ),
    )
}

RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "severe": (
        "Consider seeking professional help immediately",
        "Contact a mental health professional",
        "Reach out to trusted friends or family",
    ),
    "moderate": (
        "Consider speaking with a healthcare provider",
        "Practice stress management techniques",
        "Maintain regular sleep and exercise",
    ),
    "low": (
        "Continue current self-care practices",
        "Maintain healthy lifestyle habits",
    ),
}

CRISIS_LINES: tuple[Resource, ...] = (
    Resource(
        id="crisis-1",
        name="National Suicide Prevention Hotline",
        type="crisis",
        phone="+254700000001",
        address="N/A",
        services=("Crisis Intervention", "Suicide Prevention"),
        is_24_hours=True,
    ),
)


def list_assessments() -> list[Assessment]:
    return list(ASSESSMENTS.values())


def get_assessment(assessment_id: str) -> Assessment:
    try:
        return ASSESSMENTS[assessment_id]
    except KeyError:
        raise NotFoundError("Assessment not found") from None


def level_for(score: int) -> str:
    if score >= SEVERE_THRESHOLD:
        return "severe"
    if score >= MODERATE_THRESHOLD:
        return "moderate"
    return "low"


def score_answers(assessment_id: str, answers: Iterable[tuple[int, int]]) -> AssessmentResult:
    """Total ``(question_id, value)`` pairs and map the score to a level.

    Every question must be answered exactly once; a partial screening would
    understate the score.
    """
    assessment = get_assessment(assessment_id)
    known = {q.id for q in assessment.questions}

    values: dict[int, int] = {}
    for question_id, value in answers:
        if question_id not in known:
            raise ValidationError(f"Unknown question id {question_id}", field="answers")
        if question_id in values:
            raise ValidationError(f"Question {question_id} answered twice", field="answers")
        if not MIN_ANSWER <= value <= MAX_ANSWER:
            raise ValidationError(
                f"Answer values must be between {MIN_ANSWER} and {MAX_ANSWER}", field="answers"
            )
        values[question_id] = value

    missing = sorted(known - values.keys())
    if missing:
        raise ValidationError(
            "Answer every question; missing " + ", ".join(str(q) for q in missing),
            field="answers",
        )

    score = sum(values.values())
    level = level_for(score)
    logger.info("Scored %s assessment: level=%s", assessment_id, level)
    return AssessmentResult(
        assessment_id=assessment_id,
        score=score,
        max_score=assessment.max_score,
        level=level,
        recommendations=RECOMMENDATIONS[level],
    )


async def list_resources(session: AsyncSession) -> list[Resource]:
    """Crisis lines first, then active mental-health facilities by rating."""
    candidates = await facility_directory.find_active_facilities(
        session, facility_type=FacilityType.MENTAL_HEALTH
    )
    ranked = search(FacilityQuery(type=FacilityType.MENTAL_HEALTH), candidates)
    facilities = [
        Resource(
            id=item.facility.id,
            name=item.facility.name,
            type=item.facility.type.value,
            phone=item.facility.phone,
            address=item.facility.address,
            services=item.facility.services,
            is_24_hours=item.facility.is_24_hours,
        )
        for item in ranked
    ]
    return [*CRISIS_LINES, *facilities]
