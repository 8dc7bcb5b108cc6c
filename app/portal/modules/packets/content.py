"""
Packet content shapes.

Content is a closed union keyed by ``packet_type``. Each variant validates its
own fields; edit helpers below dispatch on the variant explicitly and raise
ContentShapeMismatch when an edit does not fit the packet's shape (for example
an exercise edit on a nutrition-only packet).
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.portal.constants import PacketType
from app.portal.errors import ContentShapeMismatch


class ContentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class ExerciseData(ContentModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    sets: int | None = Field(default=None, ge=0)
    reps: str | None = None
    duration: str | None = None
    intensity: str | None = None
    notes: str | None = None
    video_url: str | None = None
    image_url: str | None = None
    modifications: list[str] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list)


class Macros(ContentModel):
    protein: float | None = Field(default=None, ge=0)
    carbs: float | None = Field(default=None, ge=0)
    fats: float | None = Field(default=None, ge=0)


class NutritionData(ContentModel):
    id: str = Field(..., min_length=1)
    meal_type: str = Field(..., min_length=1)
    foods: list[str] = Field(default_factory=list)
    portions: list[str] = Field(default_factory=list)
    calories: int | None = Field(default=None, ge=0)
    macros: Macros | None = None
    notes: str | None = None
    alternatives: list[str] = Field(default_factory=list)


class Lifestyle(ContentModel):
    sleep: str | None = None
    hydration: str | None = None
    stress: str | None = None


class TrainingPhase(ContentModel):
    phase: str = Field(..., min_length=1)
    duration: str = ""
    frequency: str = ""
    exercises: list[ExerciseData] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Content variants
# ---------------------------------------------------------------------------


class _ContentBase(ContentModel):
    coach_notes: str | None = None


class GeneralPacketContent(_ContentBase):
    packet_type: Literal["GENERAL"] = "GENERAL"
    introduction: str = ""
    goals: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    nutrition: list[NutritionData] = Field(default_factory=list)
    lifestyle: Lifestyle | None = None


class NutritionPacketContent(_ContentBase):
    packet_type: Literal["NUTRITION"] = "NUTRITION"
    nutrition_goals: list[str] = Field(default_factory=list)
    meal_plan: list[NutritionData] = Field(default_factory=list)
    guidelines: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    supplements: list[str] = Field(default_factory=list)


class TrainingPacketContent(_ContentBase):
    packet_type: Literal["TRAINING"] = "TRAINING"
    training_goals: list[str] = Field(default_factory=list)
    program: list[TrainingPhase] = Field(default_factory=list)
    progression_plan: list[str] = Field(default_factory=list)
    safety_notes: list[str] = Field(default_factory=list)


class AthletePacketContent(_ContentBase):
    packet_type: Literal["ATHLETE_PERFORMANCE"] = "ATHLETE_PERFORMANCE"
    sport: str = Field(..., min_length=1)
    position: str | None = None
    performance_goals: list[str] = Field(default_factory=list)
    strength_program: list[ExerciseData] = Field(default_factory=list)
    conditioning_program: list[ExerciseData] = Field(default_factory=list)
    recovery_protocol: list[str] = Field(default_factory=list)
    nutrition_strategy: list[NutritionData] = Field(default_factory=list)


class YouthPacketContent(_ContentBase):
    packet_type: Literal["YOUTH"] = "YOUTH"
    age: int = Field(..., ge=0, le=21)
    development_stage: str = ""
    goals: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    nutrition: list[NutritionData] = Field(default_factory=list)
    parent_guidance: list[str] = Field(default_factory=list)
    safety_guidelines: list[str] = Field(default_factory=list)


class RecoveryPacketContent(_ContentBase):
    packet_type: Literal["RECOVERY"] = "RECOVERY"
    injury_type: str = Field(..., min_length=1)
    recovery_stage: str = ""
    goals: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list)
    progression_criteria: list[str] = Field(default_factory=list)
    return_to_activity_plan: list[str] = Field(default_factory=list)


class PregnancyPacketContent(_ContentBase):
    packet_type: Literal["PREGNANCY"] = "PREGNANCY"
    trimester: int = Field(..., ge=1, le=3)
    goals: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    nutrition: list[NutritionData] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list)
    warning_signs: list[str] = Field(default_factory=list)
    trimester_guidance: list[str] = Field(default_factory=list)


class PostpartumPacketContent(_ContentBase):
    packet_type: Literal["POSTPARTUM"] = "POSTPARTUM"
    weeks_postpartum: int = Field(..., ge=0)
    delivery_type: str = ""
    goals: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    nutrition: list[NutritionData] = Field(default_factory=list)
    core_rehab: list[str] = Field(default_factory=list)
    pelvic_floor_guidance: list[str] = Field(default_factory=list)
    return_to_exercise: list[str] = Field(default_factory=list)


class OlderAdultPacketContent(_ContentBase):
    packet_type: Literal["OLDER_ADULT"] = "OLDER_ADULT"
    functional_goals: list[str] = Field(default_factory=list)
    exercises: list[ExerciseData] = Field(default_factory=list)
    nutrition: list[NutritionData] = Field(default_factory=list)
    fall_prevention: list[str] = Field(default_factory=list)
    mobility_work: list[str] = Field(default_factory=list)
    balance_training: list[str] = Field(default_factory=list)
    safety_considerations: list[str] = Field(default_factory=list)


PacketContent = Annotated[
    Union[
        GeneralPacketContent,
        NutritionPacketContent,
        TrainingPacketContent,
        AthletePacketContent,
        YouthPacketContent,
        RecoveryPacketContent,
        PregnancyPacketContent,
        PostpartumPacketContent,
        OlderAdultPacketContent,
    ],
    Field(discriminator="packet_type"),
]

_content_adapter: TypeAdapter[PacketContent] = TypeAdapter(PacketContent)

# Fields an exercise-parameter edit may touch; identity fields go through swap_exercise.
EXERCISE_PARAMETER_FIELDS = frozenset({"sets", "reps", "duration", "intensity", "notes"})
NUTRITION_EDITABLE_FIELDS = frozenset(set(NutritionData.model_fields) - {"id"})


def _summarize(e: ValidationError) -> list[str]:
    out = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


def parse_content(packet_type: PacketType | str, data: Mapping[str, Any]) -> PacketContent:
    declared = str(packet_type)
    given = data.get("packet_type")
    if given is not None and given != declared:
        raise ContentShapeMismatch(
            f"Content is tagged {given!r} but the packet is {declared!r}.",
            packet_type=declared,
        )
    try:
        return _content_adapter.validate_python({**dict(data), "packet_type": declared})
    except ValidationError as e:
        raise ContentShapeMismatch(
            f"Content does not match the {declared} packet shape.",
            packet_type=declared,
            errors=_summarize(e),
        ) from e


def dump_content(content: PacketContent) -> dict[str, Any]:
    return content.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Edit helpers. Each returns a new, re-validated content object.
# ---------------------------------------------------------------------------


def _exercise_path(content: PacketContent, phase_index: int | None) -> tuple[Any, ...]:
    if isinstance(content, TrainingPacketContent):
        idx = phase_index or 0
        if idx < 0 or idx >= len(content.program):
            raise ContentShapeMismatch("Invalid training phase index.", phase_index=idx)
        return ("program", idx, "exercises")
    if phase_index is not None:
        raise ContentShapeMismatch(f"{content.packet_type} packets have no training phases.")
    if isinstance(content, AthletePacketContent):
        return ("strength_program",)
    if isinstance(
        content,
        (
            GeneralPacketContent,
            YouthPacketContent,
            RecoveryPacketContent,
            PregnancyPacketContent,
            PostpartumPacketContent,
            OlderAdultPacketContent,
        ),
    ):
        return ("exercises",)
    if isinstance(content, NutritionPacketContent):
        raise ContentShapeMismatch("NUTRITION packets do not carry exercises.", packet_type=content.packet_type)
    raise TypeError(f"Unhandled content variant: {type(content).__name__}")


def _nutrition_path(content: PacketContent) -> tuple[Any, ...]:
    if isinstance(content, NutritionPacketContent):
        return ("meal_plan",)
    if isinstance(content, AthletePacketContent):
        return ("nutrition_strategy",)
    if isinstance(
        content,
        (
            GeneralPacketContent,
            YouthPacketContent,
            PregnancyPacketContent,
            PostpartumPacketContent,
            OlderAdultPacketContent,
        ),
    ):
        return ("nutrition",)
    if isinstance(content, (TrainingPacketContent, RecoveryPacketContent)):
        raise ContentShapeMismatch(
            f"{content.packet_type} packets do not carry nutrition items.",
            packet_type=content.packet_type,
        )
    raise TypeError(f"Unhandled content variant: {type(content).__name__}")


def _resolve(data: dict[str, Any], path: tuple[Any, ...]) -> list[dict[str, Any]]:
    node: Any = data
    for step in path:
        node = node[step]
    return node


def _item_at(items: list[dict[str, Any]], index: int, label: str) -> dict[str, Any]:
    if index < 0 or index >= len(items):
        raise ContentShapeMismatch(f"Invalid {label} index.", index=index, count=len(items))
    return items[index]


def _reparse(content: PacketContent, data: dict[str, Any]) -> PacketContent:
    return parse_content(content.packet_type, data)


def list_exercises(content: PacketContent, *, phase_index: int | None = None) -> list[ExerciseData]:
    path = _exercise_path(content, phase_index)
    node: Any = content
    for step in path:
        node = node[step] if isinstance(step, int) else getattr(node, step)
    return list(node)


def apply_content_update(content: PacketContent, updates: Mapping[str, Any]) -> PacketContent:
    """Shallow merge of top-level fields; the packet type itself can never change."""
    if not updates:
        raise ContentShapeMismatch("No content changes supplied.")
    data = dump_content(content)
    data.update(dict(updates))
    return _reparse(content, data)


def apply_exercise_update(
    content: PacketContent,
    exercise_index: int,
    updates: Mapping[str, Any],
    *,
    phase_index: int | None = None,
) -> PacketContent:
    unknown = set(updates) - EXERCISE_PARAMETER_FIELDS
    if not updates or unknown:
        raise ContentShapeMismatch(
            "Exercise edits may only change sets, reps, duration, intensity or notes.",
            unknown_fields=sorted(unknown),
        )
    data = dump_content(content)
    items = _resolve(data, _exercise_path(content, phase_index))
    _item_at(items, exercise_index, "exercise").update(dict(updates))
    return _reparse(content, data)


def apply_exercise_swap(
    content: PacketContent,
    exercise_index: int,
    replacement: Mapping[str, Any],
    *,
    phase_index: int | None = None,
) -> PacketContent:
    """Replace an exercise with a library entry, keeping the prescribed sets and reps."""
    data = dump_content(content)
    items = _resolve(data, _exercise_path(content, phase_index))
    old = _item_at(items, exercise_index, "exercise")
    new = dict(replacement)
    new["sets"] = old.get("sets")
    new["reps"] = old.get("reps")
    items[exercise_index] = new
    return _reparse(content, data)


def apply_nutrition_update(content: PacketContent, item_index: int, updates: Mapping[str, Any]) -> PacketContent:
    unknown = set(updates) - NUTRITION_EDITABLE_FIELDS
    if not updates or unknown:
        raise ContentShapeMismatch("Unsupported nutrition item fields.", unknown_fields=sorted(unknown))
    data = dump_content(content)
    items = _resolve(data, _nutrition_path(content))
    _item_at(items, item_index, "nutrition item").update(dict(updates))
    return _reparse(content, data)


def apply_coach_notes(content: PacketContent, notes: str) -> PacketContent:
    return content.model_copy(update={"coach_notes": (notes or "").strip() or None})
