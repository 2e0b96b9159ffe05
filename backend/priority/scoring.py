"""
Priority Scoring Engine.

This module turns a task's attributes into a single comparable score and
ranks collections of tasks by it. The per-stage math lives in
``formulas.py``; this module orchestrates it:

    1. completed tasks score 0
    2. duration / effort outside the category range score 0
    3. S0 (continuous saturation curve or linear pointed benefit)
    4. cost K (time, effort, money, category setup)
    5. GUT gravity adjustment (when the task carries GUT data)
    6. temporal decay (when the task has a due date)
    7. base = max(0, S0D - K)
    8. practical gate: elapsed window or unfinished dependency scores 0

Scoring is fail-soft: an unexpected error while scoring one task is logged
and that task scores 0, the rest of a batch is unaffected.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timezone as dt_timezone
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .calibration import Calibration, get_calibration
from .constraints import validate_duration, validate_effort
from .formulas import (
    apply_decay,
    apply_gut,
    apply_practical_constraints,
    calc_cost,
    calc_priority_base,
    calc_s0_base,
    calc_s0_continuous,
)
from .records import (
    CostInput,
    Decay,
    PillarBenefits,
    PillarWeights,
    ScoreTrace,
    Task,
    UserPreferences,
    WindowCheck,
)


logger = logging.getLogger(__name__)


# ==================== Error Codes ====================

class ErrorCode(Enum):
    """Error codes for API responses."""
    SUCCESS = "SUCCESS"
    ERR_INVALID_INPUT = "ERR_INVALID_INPUT"
    ERR_EMPTY_TASKS = "ERR_EMPTY_TASKS"
    ERR_DUPLICATE_ID = "ERR_DUPLICATE_ID"
    ERR_SELF_DEPENDENCY = "ERR_SELF_DEPENDENCY"


@dataclass
class ValidationError:
    """Structured validation error with code and details."""
    code: ErrorCode
    message: str
    field: Optional[str] = None
    task_id: Optional[str] = None

    def to_dict(self) -> Dict:
        result = {
            'error_code': self.code.value,
            'message': self.message
        }
        if self.field:
            result['field'] = self.field
        if self.task_id is not None:
            result['task_id'] = self.task_id
        return result


@dataclass
class ScoreResult:
    """A task score together with the trace of how it was reached."""
    score: float
    trace: ScoreTrace


def as_datetime(value: Union[datetime, date, str], reference: datetime) -> datetime:
    """
    Coerce ``value`` into a datetime comparable with ``reference``.

    Strings are parsed as ISO-8601 datetimes or dates. Naive values are
    taken as UTC when ``reference`` is aware, and vice versa.

    Raises:
        ValueError: if a string cannot be parsed.
    """
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            parsed_date = parse_date(value)
            if parsed_date is None:
                raise ValueError(f"Invalid ISO date/datetime: {value!r}")
            parsed = datetime.combine(parsed_date, time.min)
        value = parsed
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    elif not isinstance(value, datetime):
        raise ValueError(f"Expected a date, datetime or ISO string, got {type(value).__name__}")

    if timezone.is_aware(reference) and timezone.is_naive(value):
        return value.replace(tzinfo=dt_timezone.utc)
    if timezone.is_naive(reference) and timezone.is_aware(value):
        return value.astimezone(dt_timezone.utc).replace(tzinfo=None)
    return value


class TaskPriorityScorer:
    """
    Scores and ranks personal tasks.

    The scorer holds no state besides its calibration, so one instance can
    be shared between callers. Pass an explicit ``calibration`` to score
    against tables other than the configured ones.
    """

    DEFAULT_DURATION_MIN = 60
    DEFAULT_EFFORT = 3
    DEFAULT_MONEY = 0
    SECONDS_PER_DAY = 60 * 60 * 24

    def __init__(
        self,
        calibration: Optional[Calibration] = None,
        debug: Optional[bool] = None
    ):
        """
        Args:
            calibration: Tables to score with (configured ones if None)
            debug: Log the full trace of every score (defaults to the
                   ``PRIORITY_ENGINE['DEBUG_TRACE']`` setting)
        """
        self.calibration = calibration or get_calibration()
        if debug is None:
            debug = bool(getattr(settings, 'PRIORITY_ENGINE', {}).get('DEBUG_TRACE', False))
        self.debug = debug

    # ---------- constraint checks ----------

    def check_duration(self, task: Task) -> bool:
        if task.duration_min is None:
            return True
        return validate_duration(task.task_type, task.duration_min, self.calibration)

    def check_effort(self, task: Task) -> bool:
        if task.effort is None:
            return True
        return validate_effort(task.task_type, task.effort, self.calibration)

    def check_time_window(self, task: Task, now: datetime) -> int:
        """
        Return 1 if the task's explicit window has not fully elapsed.

        Tasks without both a start and an end are always available.
        """
        if task.start is None or task.end is None:
            return 1

        start = as_datetime(task.start, now)
        end = as_datetime(task.end, now)
        if start > now:
            return 1
        if end < now:
            return 0
        return 1

    @staticmethod
    def index_tasks(tasks: Iterable[Task]) -> Dict[str, Task]:
        """Index tasks by id; the first task wins on duplicate ids."""
        index: Dict[str, Task] = {}
        for task in tasks:
            index.setdefault(task.id, task)
        return index

    def check_dependencies(
        self,
        task: Task,
        all_tasks: Union[Mapping[str, Task], Iterable[Task]] = ()
    ) -> bool:
        """True when every dependency resolves to a completed task."""
        if not task.deps:
            return True
        if not isinstance(all_tasks, Mapping):
            all_tasks = self.index_tasks(all_tasks)

        for dep_id in task.deps:
            dep = all_tasks.get(dep_id)
            if dep is None or dep.completed is not True:
                return False
        return True

    # ---------- pipeline stages ----------

    def benefits_for(self, task: Task) -> PillarBenefits:
        if task.benefits is not None:
            return task.benefits
        return self.calibration.category(task.task_type).benefits

    def calculate_benefit(self, task: Task, weights: PillarWeights, hours: float) -> float:
        """S0 using the continuous curve when the category registers one."""
        category = self.calibration.category(task.task_type)
        benefits = self.benefits_for(task)
        if category.continuous is not None:
            return calc_s0_continuous(
                hours,
                weights,
                benefits,
                self.calibration.scale,
                category.continuous.b0,
                category.continuous.k
            )
        return calc_s0_base(weights, benefits, self.calibration.scale)

    def calculate_cost(self, task: Task, hours: float) -> float:
        category = self.calibration.category(task.task_type)
        coefficients = self.calibration.cost
        return calc_cost(CostInput(
            ct=coefficients.ct,
            ce=coefficients.ce,
            c_money=coefficients.c_money,
            k_setup=category.k_setup,
            hours=hours,
            effort=self.DEFAULT_EFFORT if task.effort is None else task.effort,
            money=self.DEFAULT_MONEY if task.money is None else task.money
        ))

    def days_until(self, due: Union[datetime, date, str], now: datetime) -> float:
        """Days from ``now`` until ``due``, floored at 0 once overdue."""
        due_at = as_datetime(due, now)
        return max(0.0, (due_at - now).total_seconds() / self.SECONDS_PER_DAY)

    # ---------- scoring ----------

    def score_with_trace(
        self,
        task: Task,
        now: datetime,
        prefs: UserPreferences,
        all_tasks: Union[Mapping[str, Task], Iterable[Task]] = ()
    ) -> ScoreResult:
        """
        Score ``task`` and return the score with its stage-by-stage trace.

        Args:
            task: Task to score
            now: Reference time (never read from the clock here)
            prefs: User preferences supplying pillar weights
            all_tasks: Tasks (or an id index) used to resolve dependencies
        """
        weights = prefs.weights
        trace = ScoreTrace(task_id=task.id, timestamp=now.isoformat(), weights=weights)

        try:
            score = self._run_pipeline(task, now, weights, all_tasks, trace)
        except Exception:
            logger.exception("Failed to score task %r (%s); scoring it 0", task.id, task.title)
            score = 0.0

        trace.final_score = score
        if self.debug:
            logger.debug("Score trace for %r: %s", task.id, trace.to_dict())
        return ScoreResult(score=score, trace=trace)

    def _run_pipeline(
        self,
        task: Task,
        now: datetime,
        weights: PillarWeights,
        all_tasks: Union[Mapping[str, Task], Iterable[Task]],
        trace: ScoreTrace
    ) -> float:
        if task.completed:
            logger.debug("Task %r completed, score = 0", task.id)
            trace.add('completed', 0.0)
            return 0.0

        if not self.check_duration(task):
            logger.debug("Task %r duration %s outside %s range, score = 0",
                         task.id, task.duration_min, task.task_type.value)
            trace.add('duration_constraint', 0.0, duration_min=task.duration_min)
            return 0.0

        if not self.check_effort(task):
            logger.debug("Task %r effort %s outside %s range, score = 0",
                         task.id, task.effort, task.task_type.value)
            trace.add('effort_constraint', 0.0, effort=task.effort)
            return 0.0

        duration_min = self.DEFAULT_DURATION_MIN if task.duration_min is None else task.duration_min
        hours = duration_min / 60

        # 1. Benefit
        s0 = self.calculate_benefit(task, weights, hours)
        trace.add('S0_calculation', s0, hours=hours, type=task.task_type.value)

        # 2. Cost
        cost = self.calculate_cost(task, hours)
        trace.add('cost_calculation', cost, hours=hours, effort=task.effort, money=task.money)

        # 3. GUT
        s0g = s0
        if task.gut is not None:
            s0g = apply_gut(s0, task.gut, self.calibration).s0g
            trace.add('gut_application', s0g, G=task.gut.gravity, U=task.gut.urgency)

        # 4. Temporal decay
        s0d = s0g
        if task.decay is not None and task.decay.due:
            delta_days = self.days_until(task.decay.due, now)
            s0d = apply_decay(s0g, Decay(
                delta_days=delta_days,
                lambda0=self.calibration.lambda0,
                rigidity=task.decay.rigidity
            ))
            trace.add('decay_application', s0d, delta_days=delta_days, Rd=task.decay.rigidity)

        # 5. Base priority
        priority_base = calc_priority_base(s0d, cost)
        trace.add('priority_base', priority_base, S0D=s0d, cost=cost)

        # 6. Practical gate
        check = WindowCheck(
            w_win=self.check_time_window(task, now),
            deps_done=self.check_dependencies(task, all_tasks)
        )
        final_score = apply_practical_constraints(priority_base, check)
        trace.add('practical_constraints', final_score, Wwin=check.w_win, deps_done=check.deps_done)

        logger.debug("Final score for %r (%s): %s", task.id, task.title, final_score)
        return final_score

    def score(
        self,
        task: Task,
        now: datetime,
        prefs: UserPreferences,
        all_tasks: Union[Mapping[str, Task], Iterable[Task]] = ()
    ) -> float:
        return self.score_with_trace(task, now, prefs, all_tasks).score

    def rank(
        self,
        tasks: Iterable[Task],
        now: datetime,
        prefs: UserPreferences
    ) -> List[Task]:
        """
        Score every task and return copies sorted by descending score.

        Equal scores are ordered by task id, then by input order. The input
        tasks are left untouched.
        """
        tasks = list(tasks)
        index = self.index_tasks(tasks)

        ranked = [
            replace(task, priority_score=self.score(task, now, prefs, index))
            for task in tasks
        ]
        ranked.sort(key=lambda t: (-t.priority_score, str(t.id)))

        logger.debug(
            "Ranked %d task(s): %s",
            len(ranked),
            [(t.id, round(t.priority_score, 3)) for t in ranked]
        )
        return ranked


def default_preferences(calibration: Optional[Calibration] = None) -> UserPreferences:
    """Preferences carrying the calibration's default pillar weights."""
    calibration = calibration or get_calibration()
    return UserPreferences(weights=calibration.default_weights)


def score_task(
    task: Task,
    now: datetime,
    prefs: UserPreferences,
    all_tasks: Iterable[Task] = (),
    debug: Optional[bool] = None,
    calibration: Optional[Calibration] = None
) -> float:
    """Score a single task. See ``TaskPriorityScorer.score``."""
    return TaskPriorityScorer(calibration, debug=debug).score(task, now, prefs, all_tasks)


def sort_tasks_by_priority(
    tasks: Iterable[Task],
    now: datetime,
    prefs: UserPreferences,
    debug: Optional[bool] = None,
    calibration: Optional[Calibration] = None
) -> List[Task]:
    """Score every task and return them ordered by descending priority."""
    return TaskPriorityScorer(calibration, debug=debug).rank(tasks, now, prefs)


def recalculate_all_priorities(
    tasks: Iterable[Task],
    prefs: UserPreferences,
    debug: Optional[bool] = None,
    calibration: Optional[Calibration] = None
) -> List[Task]:
    """Re-rank ``tasks`` against the current time."""
    return sort_tasks_by_priority(tasks, timezone.now(), prefs, debug, calibration)


def validate_tasks(tasks: List[Task]) -> List[ValidationError]:
    """
    Check a task collection for structural problems.

    Category range violations are not reported here; they are scoring gates
    and simply produce a score of 0.
    """
    errors = []

    if not tasks:
        errors.append(ValidationError(
            code=ErrorCode.ERR_EMPTY_TASKS,
            message="At least one task is required"
        ))
        return errors

    seen_ids = set()

    for task in tasks:
        if task.id in task.deps:
            errors.append(ValidationError(
                code=ErrorCode.ERR_SELF_DEPENDENCY,
                message="A task cannot depend on itself",
                field='deps',
                task_id=task.id
            ))

        if task.id in seen_ids:
            errors.append(ValidationError(
                code=ErrorCode.ERR_DUPLICATE_ID,
                message=f"Duplicate task ID: {task.id}",
                field='id',
                task_id=task.id
            ))
        seen_ids.add(task.id)

    return errors
