"""
Category constraint checks.

Pure predicates over the calibration tables. A category without a
registered range accepts any value.
"""

from typing import Dict, Optional, Union

from .calibration import Calibration, get_calibration
from .records import TaskType


DEFAULT_DURATION_RECOMMENDATION = {'min': 30, 'max': 120, 'suggested': 60}
DEFAULT_EFFORT_RECOMMENDATION = {'min': 1, 'max': 5, 'suggested': 3}


def validate_duration(
    task_type: Union[TaskType, str],
    minutes: float,
    calibration: Optional[Calibration] = None
) -> bool:
    """Return True if ``minutes`` lies inside the category's duration range."""
    constraint = (calibration or get_calibration()).category(task_type).duration
    if constraint is None:
        return True
    return minutes in constraint


def validate_effort(
    task_type: Union[TaskType, str],
    effort: float,
    calibration: Optional[Calibration] = None
) -> bool:
    """Return True if ``effort`` lies inside the category's effort range."""
    constraint = (calibration or get_calibration()).category(task_type).effort
    if constraint is None:
        return True
    return effort in constraint


def get_recommended_duration(
    task_type: Union[TaskType, str],
    calibration: Optional[Calibration] = None
) -> Dict:
    """
    Recommended duration (minutes) for a category.

    The suggestion is the midpoint of the allowed range, rounded half up.
    """
    constraint = (calibration or get_calibration()).category(task_type).duration
    if constraint is None:
        return dict(DEFAULT_DURATION_RECOMMENDATION)
    return {**constraint.to_dict(), 'suggested': constraint.suggested}


def get_recommended_effort(
    task_type: Union[TaskType, str],
    calibration: Optional[Calibration] = None
) -> Dict:
    constraint = (calibration or get_calibration()).category(task_type).effort
    if constraint is None:
        return dict(DEFAULT_EFFORT_RECOMMENDATION)
    return {**constraint.to_dict(), 'suggested': constraint.suggested}


def is_recommended_hour(
    task_type: Union[TaskType, str],
    hour: int,
    calibration: Optional[Calibration] = None
) -> bool:
    """Advisory check against the category's preferred hours of the day."""
    windows = (calibration or get_calibration()).category(task_type).time_windows
    if not windows:
        return True
    return hour in windows
