import itertools

import pytest

from app.portal.constants import AssessmentType, Population
from app.portal.modules.population.routing import (
    IntakeFacts,
    all_populations,
    all_types_for,
    classify_population,
    format_population_name,
    is_available,
    is_required,
    parse_population,
    population_info,
    requirements_for,
)

A = AssessmentType


def test_priority_pregnancy_beats_age():
    assert classify_population(IntakeFacts(is_pregnant=True, age=70)) == Population.PREGNANCY


def test_priority_order_first_match_wins():
    assert classify_population(IntakeFacts(is_postpartum=True, is_youth=True)) == Population.POSTPARTUM
    assert classify_population(IntakeFacts(is_youth=True, has_chronic_condition=True)) == Population.YOUTH
    assert classify_population(IntakeFacts(age=16, is_athlete=True)) == Population.YOUTH
    assert classify_population(IntakeFacts(age=70, is_athlete=True)) == Population.OLDER_ADULT
    assert classify_population(IntakeFacts(has_chronic_condition=True, has_injury=True)) == Population.CHRONIC_CONDITION
    assert classify_population(IntakeFacts(has_injury=True, is_athlete=True)) == Population.RECOVERY
    assert classify_population(IntakeFacts(is_athlete=True, age=30)) == Population.ATHLETE
    assert classify_population(IntakeFacts()) == Population.GENERAL


def test_age_boundaries():
    assert classify_population(IntakeFacts(age=17)) == Population.YOUTH
    assert classify_population(IntakeFacts(age=18)) == Population.GENERAL
    assert classify_population(IntakeFacts(age=64)) == Population.GENERAL
    assert classify_population(IntakeFacts(age=65)) == Population.OLDER_ADULT
    # zero is a real age, not "unknown"
    assert classify_population(IntakeFacts(age=0)) == Population.YOUTH


def test_classifier_is_total_over_flag_combinations():
    flags = ("is_pregnant", "is_postpartum", "is_youth", "has_injury", "is_athlete", "has_chronic_condition")
    for values in itertools.product((False, True), repeat=len(flags)):
        for age in (None, 10, 30, 80):
            facts = IntakeFacts(**dict(zip(flags, values)), age=age)
            first = classify_population(facts)
            assert first in set(Population)
            assert classify_population(facts) == first


def test_intake_facts_from_loose_mapping():
    facts = IntakeFacts.from_mapping({"is_athlete": "yes", "age": "42", "has_injury": "", "extra": 1})
    assert facts.is_athlete is True
    assert facts.has_injury is False
    assert facts.age == 42.0
    assert IntakeFacts.from_mapping({"age": "unknown"}).age is None


@pytest.mark.parametrize("population", list(Population))
def test_requirements_non_empty_and_disjoint(population):
    req = requirements_for(population)
    assert req.required
    assert not (req.required & req.optional)
    assert all_types_for(population) == req.required | req.optional


def test_required_implies_available():
    for p in Population:
        for t in AssessmentType:
            if is_required(p, t):
                assert is_available(p, t)


def test_is_required_false_for_unavailable_type():
    assert not is_available(Population.ATHLETE, A.YOUTH)
    assert is_required(Population.ATHLETE, A.YOUTH) is False


def test_athlete_requirements():
    req = requirements_for(Population.ATHLETE)
    assert req.required == {A.NUTRITION, A.TRAINING, A.PERFORMANCE, A.RECOVERY}
    assert req.optional == {A.LIFESTYLE}


def test_parse_population():
    assert parse_population("athlete") == Population.ATHLETE
    assert parse_population(" OLDER_ADULT ") == Population.OLDER_ADULT
    assert parse_population("astronaut") is None
    assert parse_population(None) is None


def test_population_info_and_listing():
    info = population_info(Population.ATHLETE)
    assert info["value"] == "ATHLETE"
    assert info["name"] == format_population_name(Population.ATHLETE)
    assert info["required_assessments"] == 4
    assert info["optional_assessments"] == 1
    assert info["total_assessments"] == 5
    assert [row["value"] for row in all_populations()] == [p.value for p in Population]
