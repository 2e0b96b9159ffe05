"""
Scoring formulas for the Priority Engine.

Each stage of the pipeline is a pure function so it can be tested and
reasoned about on its own:

    S0   = SCALE * (wd*bd + wf*bf + wm*bm)                 pointed tasks
    S0   = SCALE * B(H) * (wd*bd + wf*bf + wm*bm)          continuous tasks
    B(H) = (b0/k) * (1 - exp(-k*H))
    K    = max(0, ct*hours + ce*effort + c$*money + kSetup)
    S0G  = S0 * (1 + betaG*(G - 3))
    S0D  = S0G * exp(-lambda0*(Rd - 1)*deltaDays)
    base = max(0, S0D - K)
    final = base if Wwin == 1 and depsDone else 0
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from .calibration import Calibration, get_calibration
from .records import CostInput, Decay, GUT, PillarBenefits, PillarWeights, WindowCheck


logger = logging.getLogger(__name__)

NEUTRAL_GUT = 3


def calc_s0_base(
    weights: PillarWeights,
    benefits: PillarBenefits,
    scale: float = 10
) -> float:
    """Raw benefit of a pointed (one-shot) task."""
    result = scale * weights.weighted(benefits)
    logger.debug("S0 base: weights=%s benefits=%s scale=%s -> %s", weights, benefits, scale, result)
    return result


def continuous_benefit(hours: float, b0: float, k: float) -> float:
    """
    Saturating benefit factor for ``hours`` of a continuous activity.

    Zero for non-positive durations; strictly increasing and bounded by
    ``b0 / k``.
    """
    if hours <= 0:
        return 0.0
    return (b0 / k) * (1 - math.exp(-k * hours))


def calc_s0_continuous(
    hours: float,
    weights: PillarWeights,
    benefits: PillarBenefits,
    scale: float = 10,
    b0: float = 1,
    k: float = 0.5
) -> float:
    """Raw benefit of a continuous activity lasting ``hours``."""
    factor = continuous_benefit(hours, b0, k)
    result = scale * factor * weights.weighted(benefits)
    logger.debug(
        "S0 continuous: hours=%s b0=%s k=%s factor=%.4f -> %s",
        hours, b0, k, factor, result
    )
    return result


def calc_cost(cost: CostInput) -> float:
    """Linear resource cost, floored at zero."""
    result = (
        cost.ct * cost.hours +
        cost.ce * cost.effort +
        cost.c_money * cost.money +
        cost.k_setup
    )
    logger.debug("Cost: %s -> %s", cost, result)
    return max(0.0, result)


@dataclass(frozen=True)
class GUTResult:
    """
    Output of the GUT stage.

    ``t_adj`` shifts an hour estimate by urgency; it is not part of the
    score and is exposed for scheduling consumers.
    """
    s0g: float
    t_adj: Callable[[float], float]


def apply_gut(
    s0: float,
    gut: GUT,
    calibration: Optional[Calibration] = None
) -> GUTResult:
    """Scale ``s0`` by gravity around the neutral value 3."""
    beta_g = gut.beta_g
    beta_u = gut.beta_u
    if beta_g is None or beta_u is None:
        calibration = calibration or get_calibration()
        beta_g = calibration.beta_g if beta_g is None else beta_g
        beta_u = calibration.beta_u if beta_u is None else beta_u

    s0g = s0 * (1 + beta_g * (gut.gravity - NEUTRAL_GUT))
    urgency_shift = beta_u * (gut.urgency - NEUTRAL_GUT)

    def t_adj(hours: float) -> float:
        return hours + urgency_shift

    logger.debug("GUT: G=%s U=%s betaG=%s betaU=%s -> %s", gut.gravity, gut.urgency, beta_g, beta_u, s0g)
    return GUTResult(s0g=s0g, t_adj=t_adj)


def apply_decay(s0g: float, decay: Decay) -> float:
    """
    Exponential decay by days remaining until the deadline.

    The value shrinks as ``delta_days`` grows: a distant rigid deadline is
    worth less now than an imminent one. Rigidity 1 disables decay.
    """
    rate = decay.lambda0 * (decay.rigidity - 1)
    result = s0g * math.exp(-rate * decay.delta_days)
    logger.debug("Decay: days=%.3f Rd=%s lambda=%s -> %s", decay.delta_days, decay.rigidity, rate, result)
    return result


def calc_priority_base(s0d: float, cost: float) -> float:
    return max(0.0, s0d - cost)


def apply_practical_constraints(priority_base: float, check: WindowCheck) -> float:
    """Zero the score unless the window is open and dependencies are done."""
    if check.w_win == 1 and check.deps_done:
        return priority_base
    return 0.0
