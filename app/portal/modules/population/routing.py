"""
Population routing: classify discovery-intake facts into a Population and look
up which assessment modules that Population requires.

Everything here is pure configuration lookup. Callers validate population tags
before calling in.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.portal.constants import AssessmentType, Population

A = AssessmentType


@dataclass(frozen=True)
class Requirements:
    required: frozenset[AssessmentType]
    optional: frozenset[AssessmentType]
    description: str = ""


def _row(required: list[AssessmentType], optional: list[AssessmentType], description: str) -> Requirements:
    return Requirements(required=frozenset(required), optional=frozenset(optional), description=description)


POPULATION_ASSESSMENT_MODULES: dict[Population, Requirements] = {
    Population.GENERAL: _row(
        [A.NUTRITION, A.LIFESTYLE],
        [A.TRAINING, A.RECOVERY],
        "General wellness and health optimization",
    ),
    Population.ATHLETE: _row(
        [A.NUTRITION, A.TRAINING, A.PERFORMANCE, A.RECOVERY],
        [A.LIFESTYLE],
        "Athletic performance and training optimization",
    ),
    Population.YOUTH: _row(
        [A.YOUTH, A.NUTRITION, A.LIFESTYLE],
        [A.TRAINING, A.PERFORMANCE],
        "Age-appropriate wellness for young athletes",
    ),
    Population.RECOVERY: _row(
        [A.RECOVERY, A.NUTRITION, A.LIFESTYLE],
        [A.TRAINING],
        "Injury recovery and rehabilitation",
    ),
    Population.PREGNANCY: _row(
        [A.NUTRITION, A.LIFESTYLE, A.RECOVERY],
        [A.TRAINING],
        "Prenatal wellness and fitness",
    ),
    Population.POSTPARTUM: _row(
        [A.NUTRITION, A.LIFESTYLE, A.RECOVERY],
        [A.TRAINING],
        "Postpartum recovery and wellness",
    ),
    Population.OLDER_ADULT: _row(
        [A.NUTRITION, A.LIFESTYLE, A.RECOVERY],
        [A.TRAINING],
        "Age-appropriate wellness for older adults",
    ),
    Population.CHRONIC_CONDITION: _row(
        [A.NUTRITION, A.LIFESTYLE, A.RECOVERY],
        [A.TRAINING],
        "Wellness management for chronic conditions",
    ),
}

POPULATION_NAMES: dict[Population, str] = {
    Population.GENERAL: "General Wellness",
    Population.ATHLETE: "Athlete",
    Population.YOUTH: "Youth",
    Population.RECOVERY: "Recovery",
    Population.PREGNANCY: "Pregnancy",
    Population.POSTPARTUM: "Postpartum",
    Population.OLDER_ADULT: "Older Adult",
    Population.CHRONIC_CONDITION: "Chronic Condition",
}


def requirements_for(population: Population) -> Requirements:
    return POPULATION_ASSESSMENT_MODULES[population]


def all_types_for(population: Population) -> frozenset[AssessmentType]:
    row = POPULATION_ASSESSMENT_MODULES[population]
    return row.required | row.optional


def is_available(population: Population, assessment_type: AssessmentType) -> bool:
    return assessment_type in all_types_for(population)


def is_required(population: Population, assessment_type: AssessmentType) -> bool:
    return assessment_type in POPULATION_ASSESSMENT_MODULES[population].required


def parse_population(raw: str | None) -> Population | None:
    """Upstream tag validation: returns None for anything that is not a Population."""
    if raw is None:
        return None
    try:
        return Population((raw or "").strip().upper())
    except ValueError:
        return None


# --- Classification ---


@dataclass(frozen=True)
class IntakeFacts:
    is_pregnant: bool = False
    is_postpartum: bool = False
    is_youth: bool = False
    has_injury: bool = False
    is_athlete: bool = False
    has_chronic_condition: bool = False
    age: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "IntakeFacts":
        """Build from a loose discovery-form payload; unknown or malformed values fall back to defaults."""
        return cls(
            is_pregnant=_flag(data.get("is_pregnant")),
            is_postpartum=_flag(data.get("is_postpartum")),
            is_youth=_flag(data.get("is_youth")),
            has_injury=_flag(data.get("has_injury")),
            is_athlete=_flag(data.get("is_athlete")),
            has_chronic_condition=_flag(data.get("has_chronic_condition")),
            age=_number(data.get("age")),
        )


def _flag(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on", "y")
    return bool(v)


def _number(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    try:
        return float(str(v).strip())
    except ValueError:
        return None


def classify_population(facts: IntakeFacts) -> Population:
    """
    Strict priority order, first match wins. Life-stage and injury outrank
    athletic status, so a 70-year-old athlete is OLDER_ADULT.
    """
    age = facts.age
    if facts.is_pregnant:
        return Population.PREGNANCY
    if facts.is_postpartum:
        return Population.POSTPARTUM
    if facts.is_youth or (age is not None and age < 18):
        return Population.YOUTH
    if age is not None and age >= 65:
        return Population.OLDER_ADULT
    if facts.has_chronic_condition:
        return Population.CHRONIC_CONDITION
    if facts.has_injury:
        return Population.RECOVERY
    if facts.is_athlete:
        return Population.ATHLETE
    return Population.GENERAL


# --- Display helpers ---


def format_population_name(population: Population) -> str:
    return POPULATION_NAMES[population]


def population_info(population: Population) -> dict[str, Any]:
    row = POPULATION_ASSESSMENT_MODULES[population]
    return {
        "value": population.value,
        "name": format_population_name(population),
        "description": row.description,
        "required": sorted(t.value for t in row.required),
        "optional": sorted(t.value for t in row.optional),
        "required_assessments": len(row.required),
        "optional_assessments": len(row.optional),
        "total_assessments": len(row.required) + len(row.optional),
    }


def all_populations() -> list[dict[str, Any]]:
    return [population_info(p) for p in Population]
