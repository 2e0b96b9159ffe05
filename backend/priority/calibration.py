"""
Calibration Store for the Priority Engine.

Every tunable number of the scoring pipeline lives here: the global scale,
cost coefficients, GUT and decay defaults, default pillar weights, and one
entry per task category (default benefits, setup cost, allowed duration and
effort ranges, recommended hours and continuous-activity parameters).

The values are read from a YAML document so a deployment or a test can swap
them without touching code. The active file is chosen by the
``PRIORITY_ENGINE['CALIBRATION_FILE']`` setting; the packaged
``calibration.yaml`` is used otherwise.
"""

import math
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union

import yaml
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .records import ContinuousMeta, PillarBenefits, PillarWeights, TaskType


DEFAULT_CALIBRATION_FILE = Path(__file__).resolve().parent / 'calibration.yaml'


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (``round`` is banker's)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ValueRange:
    """Inclusive ``[min, max]`` range."""
    min: float
    max: float

    def __contains__(self, value: float) -> bool:
        return self.min <= value <= self.max

    @property
    def suggested(self) -> int:
        return round_half_up((self.min + self.max) / 2)

    def to_dict(self) -> Dict:
        return {'min': self.min, 'max': self.max}


@dataclass(frozen=True)
class CostCoefficients:
    ct: float = 8
    ce: float = 6
    c_money: float = 2


@dataclass(frozen=True)
class CategoryCalibration:
    """Calibration entry for a single task category."""
    benefits: PillarBenefits
    k_setup: float
    duration: Optional[ValueRange] = None
    effort: Optional[ValueRange] = None
    time_windows: Tuple[int, ...] = ()
    continuous: Optional[ContinuousMeta] = None

    @property
    def is_continuous(self) -> bool:
        return self.continuous is not None


@dataclass(frozen=True)
class Calibration:
    """
    Immutable calibration tables.

    ``categories`` holds one entry per registered ``TaskType``; lookups for
    anything else resolve to the ``outro`` entry, which must be present.
    """
    categories: Mapping[TaskType, CategoryCalibration]
    scale: float = 10
    cost: CostCoefficients = field(default_factory=CostCoefficients)
    beta_g: float = 0.2
    beta_u: float = 0.35
    lambda0: float = 0.25
    default_weights: PillarWeights = PillarWeights(wd=0.4, wf=0.3, wm=0.3)

    def __post_init__(self):
        if TaskType.OUTRO not in self.categories:
            raise ImproperlyConfigured(
                "Calibration must define an 'outro' category used as fallback"
            )
        object.__setattr__(self, 'categories', MappingProxyType(dict(self.categories)))

    def category(self, task_type: Union[TaskType, str, None]) -> CategoryCalibration:
        """Return the entry for ``task_type``, or the ``outro`` entry."""
        entry = self.categories.get(TaskType.coerce(task_type))
        if entry is None:
            return self.categories[TaskType.OUTRO]
        return entry

    @classmethod
    def from_dict(cls, data: Mapping) -> 'Calibration':
        """
        Build a calibration from its YAML/JSON representation.

        Raises:
            ImproperlyConfigured: if a required key is missing or a value
                is out of range.
        """
        try:
            categories = {}
            for name, raw in (data.get('categories') or {}).items():
                task_type = TaskType(name)
                categories[task_type] = _parse_category(name, raw)

            cost = data.get('cost') or {}
            gut = data.get('gut') or {}
            decay = data.get('decay') or {}
            weights = data.get('default_weights') or {}

            return cls(
                categories=categories,
                scale=float(data.get('scale', 10)),
                cost=CostCoefficients(
                    ct=float(cost.get('ct', 8)),
                    ce=float(cost.get('ce', 6)),
                    c_money=float(cost.get('c_money', 2)),
                ),
                beta_g=float(gut.get('beta_g', 0.2)),
                beta_u=float(gut.get('beta_u', 0.35)),
                lambda0=float(decay.get('lambda0', 0.25)),
                default_weights=PillarWeights(
                    wd=float(weights.get('wd', 0.4)),
                    wf=float(weights.get('wf', 0.3)),
                    wm=float(weights.get('wm', 0.3)),
                ),
            )
        except ImproperlyConfigured:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ImproperlyConfigured(f"Invalid priority calibration: {exc}") from exc

    def to_dict(self) -> Dict:
        """Return the calibration in the same shape ``from_dict`` accepts."""
        categories = {}
        for task_type, entry in self.categories.items():
            item = {
                'benefits': entry.benefits.to_dict(),
                'k_setup': entry.k_setup,
                'duration': entry.duration.to_dict() if entry.duration else None,
                'effort': entry.effort.to_dict() if entry.effort else None,
                'time_windows': list(entry.time_windows),
            }
            if entry.continuous:
                item['continuous'] = {
                    'h_min': entry.continuous.h_min,
                    'h_max': entry.continuous.h_max,
                    'b0': entry.continuous.b0,
                    'k': entry.continuous.k,
                }
            categories[task_type.value] = item

        return {
            'scale': self.scale,
            'cost': {
                'ct': self.cost.ct,
                'ce': self.cost.ce,
                'c_money': self.cost.c_money,
            },
            'gut': {'beta_g': self.beta_g, 'beta_u': self.beta_u},
            'decay': {'lambda0': self.lambda0},
            'default_weights': self.default_weights.to_dict(),
            'categories': categories,
        }


def _parse_range(name: str, key: str, raw: Optional[Mapping]) -> Optional[ValueRange]:
    if raw is None:
        return None
    value_range = ValueRange(min=float(raw['min']), max=float(raw['max']))
    if value_range.min > value_range.max:
        raise ImproperlyConfigured(
            f"Calibration '{name}.{key}': min ({value_range.min}) exceeds max ({value_range.max})"
        )
    return value_range


def _parse_category(name: str, raw: Mapping) -> CategoryCalibration:
    benefits = raw['benefits']
    continuous = None
    if raw.get('continuous'):
        meta = raw['continuous']
        continuous = ContinuousMeta(
            h_min=float(meta['h_min']),
            h_max=float(meta['h_max']),
            b0=float(meta['b0']),
            k=float(meta['k']),
        )
        if continuous.k <= 0:
            raise ImproperlyConfigured(
                f"Calibration '{name}.continuous.k' must be positive"
            )

    hours = tuple(int(h) for h in (raw.get('time_windows') or []))
    if any(h < 0 or h > 23 for h in hours):
        raise ImproperlyConfigured(
            f"Calibration '{name}.time_windows' must contain hours between 0 and 23"
        )

    return CategoryCalibration(
        benefits=PillarBenefits(
            bd=float(benefits['bd']),
            bf=float(benefits['bf']),
            bm=float(benefits['bm']),
        ),
        k_setup=float(raw['k_setup']),
        duration=_parse_range(name, 'duration', raw.get('duration')),
        effort=_parse_range(name, 'effort', raw.get('effort')),
        time_windows=hours,
        continuous=continuous,
    )


@lru_cache(maxsize=8)
def load_calibration(path: Union[str, Path] = DEFAULT_CALIBRATION_FILE) -> Calibration:
    """Load and cache a calibration file."""
    path = Path(path)
    if not path.exists():
        raise ImproperlyConfigured(f"Calibration file not found: {path}")
    with path.open('r', encoding='utf-8') as handle:
        data = yaml.safe_load(handle) or {}
    return Calibration.from_dict(data)


def get_calibration() -> Calibration:
    """Return the calibration selected by the active Django settings."""
    path = DEFAULT_CALIBRATION_FILE
    if settings.configured:
        path = getattr(settings, 'PRIORITY_ENGINE', {}).get('CALIBRATION_FILE') or path
    return load_calibration(Path(path))
