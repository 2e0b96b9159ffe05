"""
Task records for the Priority Engine.

This module defines the plain data structures the engine consumes and
produces. Nothing here is persisted: tasks arrive from an external producer
(parser, form, API request) and the engine only ever writes
``Task.priority_score``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class TaskType(str, Enum):
    """Task categories known to the calibration tables."""
    PONTUAL = "pontual"    # One-off task
    ESTUDO = "estudo"      # Study
    TREINO = "treino"      # Workout
    SONO = "sono"          # Sleep
    LEITURA = "leitura"    # Reading
    OUTRO = "outro"        # Anything else

    @classmethod
    def coerce(cls, value: Union["TaskType", str, None]) -> "TaskType":
        """Map a raw category to a member, falling back to ``OUTRO``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OUTRO


@dataclass(frozen=True)
class PillarBenefits:
    """How much a task advances each pillar, on a 0-10 scale."""
    bd: float  # Development
    bf: float  # Physical
    bm: float  # Mental

    def to_dict(self) -> Dict:
        return {'bd': self.bd, 'bf': self.bf, 'bm': self.bm}


@dataclass(frozen=True)
class PillarWeights:
    """
    User's relative valuation of the three pillars.

    The three values are expected to sum to ~1. Normalization is the
    producer's job; the engine uses the weights as given.
    """
    wd: float
    wf: float
    wm: float

    def weighted(self, benefits: PillarBenefits) -> float:
        """Return ``wd*bd + wf*bf + wm*bm``."""
        return self.wd * benefits.bd + self.wf * benefits.bf + self.wm * benefits.bm

    def to_dict(self) -> Dict:
        return {'wd': self.wd, 'wf': self.wf, 'wm': self.wm}


@dataclass(frozen=True)
class ContinuousMeta:
    """Saturation curve parameters for a continuous activity (hours)."""
    h_min: float
    h_max: float
    b0: float
    k: float


@dataclass(frozen=True)
class CostInput:
    ct: float        # Cost per hour
    ce: float        # Cost per effort unit
    c_money: float   # Monetary multiplier
    k_setup: float   # Fixed setup cost
    hours: float
    effort: float
    money: float


@dataclass(frozen=True)
class GUT:
    """
    Gravity / Urgency classification.

    Both values are integers 1-5 where 3 is neutral. Missing betas are
    resolved against the active calibration.
    """
    gravity: int
    urgency: int
    beta_g: Optional[float] = None
    beta_u: Optional[float] = None


@dataclass(frozen=True)
class Decay:
    delta_days: float
    lambda0: float
    rigidity: int  # 1 = flexible, 5 = inflexible


@dataclass(frozen=True)
class Deadline:
    """
    Per-task deadline configuration.

    ``due`` is kept as given (datetime, date or ISO string) and parsed during
    scoring, so a malformed value only zeroes the task that carries it.
    """
    rigidity: int
    due: Optional[Union[datetime, date, str]] = None


@dataclass(frozen=True)
class WindowCheck:
    w_win: int        # 1 = window available, 0 = elapsed
    deps_done: bool


@dataclass
class Task:
    """
    A personal task as seen by the engine.

    Attributes:
        id: Stable identity, never changed by the engine
        type: Category; unknown values score with the ``outro`` calibration
        benefits: Per-pillar benefits (category defaults when omitted)
        duration_min: Duration in minutes (60 assumed when missing)
        effort: Effort 1-10 (3 assumed when missing)
        money: Monetary cost (0 assumed when missing)
        deps: IDs of tasks that must be completed first
        priority_score: Written by the engine, ignored on input
    """
    id: str
    title: str
    type: Union[TaskType, str] = TaskType.OUTRO
    benefits: Optional[PillarBenefits] = None
    description: Optional[str] = None
    start: Optional[Union[datetime, str]] = None
    end: Optional[Union[datetime, str]] = None
    duration_min: Optional[float] = None
    effort: Optional[float] = None
    money: Optional[float] = None
    gut: Optional[GUT] = None
    decay: Optional[Deadline] = None
    deps: List[str] = field(default_factory=list)
    pillar_hint: Optional[str] = None  # 'd' | 'f' | 'm'
    completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    color: Optional[str] = None
    priority_score: Optional[float] = None

    @property
    def task_type(self) -> TaskType:
        return TaskType.coerce(self.type)


@dataclass
class UserPreferences:
    """
    User settings. Only ``weights`` matters to the engine; the rest is
    carried for the UI layer.
    """
    weights: PillarWeights
    time_format: str = '24h'
    language: str = 'pt'
    onboarding_complete: bool = False
    voice_enabled: bool = True
    auto_suggestions: bool = True
    data_retention_days: int = 0  # 0 = keep forever


@dataclass
class ScoreStep:
    """One named intermediate value of the scoring pipeline."""
    step: str
    input: Dict[str, Any]
    output: float

    def to_dict(self) -> Dict:
        return {'step': self.step, 'input': self.input, 'output': self.output}


@dataclass
class ScoreTrace:
    """Ordered record of the pipeline stages that produced a score."""
    task_id: str
    timestamp: str
    weights: PillarWeights
    steps: List[ScoreStep] = field(default_factory=list)
    final_score: float = 0.0

    def add(self, step: str, output: float, **inputs) -> None:
        self.steps.append(ScoreStep(step=step, input=inputs, output=output))

    def to_dict(self) -> Dict:
        return {
            'task_id': self.task_id,
            'timestamp': self.timestamp,
            'weights': self.weights.to_dict(),
            'steps': [s.to_dict() for s in self.steps],
            'final_score': self.final_score
        }
