"""
Unit Tests for the Priority Engine.

This module covers the calibration store, constraint checks, each scoring
formula, the task scorer pipeline and its gates, the batch ranker, and the
REST endpoints.
"""

import json
import math
import os
import tempfile
from datetime import date, datetime, timedelta, timezone as dt_timezone
from unittest import mock

import yaml
from django.core.cache import cache
from django.core.exceptions import ImproperlyConfigured
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from .calibration import (
    Calibration,
    get_calibration,
    load_calibration,
    round_half_up,
)
from .constraints import (
    get_recommended_duration,
    get_recommended_effort,
    is_recommended_hour,
    validate_duration,
    validate_effort,
)
from .formulas import (
    apply_decay,
    apply_gut,
    apply_practical_constraints,
    calc_cost,
    calc_priority_base,
    calc_s0_base,
    calc_s0_continuous,
    continuous_benefit,
)
from .records import (
    CostInput,
    Deadline,
    Decay,
    GUT,
    PillarBenefits,
    PillarWeights,
    Task,
    TaskType,
    UserPreferences,
    WindowCheck,
)
from .scoring import (
    ErrorCode,
    TaskPriorityScorer,
    as_datetime,
    recalculate_all_priorities,
    score_task,
    sort_tasks_by_priority,
    validate_tasks,
)
from .serializers import TaskInputSerializer, build_preferences, build_task
from priority_service.settings import env_bool


NOW = datetime(2025, 1, 6, 9, 0, tzinfo=dt_timezone.utc)
WEIGHTS = PillarWeights(wd=0.4, wf=0.3, wm=0.3)
PREFS = UserPreferences(weights=WEIGHTS)


def make_task(**overrides) -> Task:
    """
    A one-off task that scores 20 with the default calibration:
    S0 = 10 * (0.4*5 + 0.3*3 + 0.3*4) = 41, K = 8*0.5 + 6*2 + 5 = 21.
    """
    fields = {
        'id': 't1',
        'title': 'Pay electricity bill',
        'type': TaskType.PONTUAL,
        'benefits': PillarBenefits(bd=5, bf=3, bm=4),
        'duration_min': 30,
        'effort': 2,
        'money': 0,
    }
    fields.update(overrides)
    return Task(**fields)


def calibration_with(**changes) -> Calibration:
    """Default calibration with top-level keys replaced."""
    data = load_calibration().to_dict()
    data.update(changes)
    return Calibration.from_dict(data)


class CalibrationTests(TestCase):
    """Tests for the calibration store."""

    def setUp(self):
        self.calibration = get_calibration()

    def test_default_values(self):
        """Packaged calibration should carry the default constants."""
        self.assertEqual(self.calibration.scale, 10)
        self.assertEqual(self.calibration.cost.ct, 8)
        self.assertEqual(self.calibration.cost.ce, 6)
        self.assertEqual(self.calibration.cost.c_money, 2)
        self.assertEqual(self.calibration.beta_g, 0.2)
        self.assertEqual(self.calibration.beta_u, 0.35)
        self.assertEqual(self.calibration.lambda0, 0.25)
        self.assertEqual(self.calibration.default_weights, PillarWeights(wd=0.4, wf=0.3, wm=0.3))

    def test_every_task_type_registered(self):
        """Each category should have its own entry."""
        for task_type in TaskType:
            self.assertIn(task_type, self.calibration.categories)

    def test_continuous_categories(self):
        """Only study, workout, sleep and reading are continuous."""
        continuous = {t for t, entry in self.calibration.categories.items() if entry.is_continuous}
        self.assertEqual(
            continuous,
            {TaskType.ESTUDO, TaskType.TREINO, TaskType.SONO, TaskType.LEITURA}
        )
        sono = self.calibration.category(TaskType.SONO).continuous
        self.assertEqual((sono.h_min, sono.h_max, sono.b0, sono.k), (7, 9, 1, 0.4))

    def test_unknown_category_falls_back_to_outro(self):
        """Unknown categories should resolve to the 'outro' entry."""
        outro = self.calibration.category(TaskType.OUTRO)
        self.assertIs(self.calibration.category('meditacao'), outro)
        self.assertIs(self.calibration.category(None), outro)

    def test_lookup_accepts_strings(self):
        """String categories should resolve like enum members."""
        self.assertIs(
            self.calibration.category('estudo'),
            self.calibration.category(TaskType.ESTUDO)
        )

    def test_categories_are_read_only(self):
        """The category table should not be mutable in place."""
        with self.assertRaises(TypeError):
            self.calibration.categories[TaskType.OUTRO] = None

    def test_round_trip_through_dict(self):
        """to_dict output should rebuild an equivalent calibration."""
        rebuilt = Calibration.from_dict(self.calibration.to_dict())
        self.assertEqual(rebuilt.to_dict(), self.calibration.to_dict())

    def test_missing_outro_rejected(self):
        """A calibration without the fallback entry is a configuration error."""
        data = self.calibration.to_dict()
        del data['categories']['outro']
        with self.assertRaises(ImproperlyConfigured):
            Calibration.from_dict(data)

    def test_inverted_range_rejected(self):
        """min above max should be rejected at load time."""
        data = self.calibration.to_dict()
        data['categories']['estudo']['duration'] = {'min': 120, 'max': 45}
        with self.assertRaises(ImproperlyConfigured):
            Calibration.from_dict(data)

    def test_non_positive_saturation_rejected(self):
        """k must be positive."""
        data = self.calibration.to_dict()
        data['categories']['sono']['continuous']['k'] = 0
        with self.assertRaises(ImproperlyConfigured):
            Calibration.from_dict(data)

    def test_unknown_category_name_rejected(self):
        """Calibration files may only name known categories."""
        data = self.calibration.to_dict()
        data['categories']['meditacao'] = data['categories']['outro']
        with self.assertRaises(ImproperlyConfigured):
            Calibration.from_dict(data)

    def test_missing_file_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            load_calibration('/nonexistent/calibration.yaml')

    def test_settings_select_calibration_file(self):
        """The CALIBRATION_FILE setting should swap the active tables."""
        data = self.calibration.to_dict()
        data['scale'] = 20

        handle, path = tempfile.mkstemp(suffix='.yaml')
        self.addCleanup(os.remove, path)
        with os.fdopen(handle, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f)

        with override_settings(PRIORITY_ENGINE={'CALIBRATION_FILE': path}):
            self.assertEqual(get_calibration().scale, 20)
            self.assertAlmostEqual(score_task(make_task(), NOW, PREFS), 61, places=6)

        self.assertEqual(get_calibration().scale, 10)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(82.5), 83)
        self.assertEqual(round_half_up(6.5), 7)
        self.assertEqual(round_half_up(6.4), 6)


class ConstraintTests(TestCase):
    """Tests for the category constraint validator."""

    def test_duration_inside_range(self):
        self.assertTrue(validate_duration(TaskType.ESTUDO, 45))
        self.assertTrue(validate_duration(TaskType.ESTUDO, 120))
        self.assertTrue(validate_duration('sono', 480))

    def test_duration_outside_range(self):
        self.assertFalse(validate_duration(TaskType.ESTUDO, 30))
        self.assertFalse(validate_duration(TaskType.ESTUDO, 121))
        self.assertFalse(validate_duration(TaskType.SONO, 360))

    def test_effort_range(self):
        self.assertTrue(validate_effort(TaskType.TREINO, 6))
        self.assertFalse(validate_effort(TaskType.TREINO, 5))
        self.assertFalse(validate_effort(TaskType.SONO, 4))
        self.assertTrue(validate_effort(TaskType.OUTRO, 10))

    def test_unknown_category_uses_outro_range(self):
        self.assertTrue(validate_duration('meditacao', 5))
        self.assertFalse(validate_duration('meditacao', 481))

    def test_unregistered_range_is_permissive(self):
        """Categories without a registered range accept any value."""
        data = load_calibration().to_dict()
        data['categories']['outro']['duration'] = None
        data['categories']['outro']['effort'] = None
        calibration = Calibration.from_dict(data)

        self.assertTrue(validate_duration(TaskType.OUTRO, 10000, calibration))
        self.assertTrue(validate_effort(TaskType.OUTRO, 42, calibration))

    def test_recommended_duration(self):
        """Suggested duration is the rounded midpoint of the range."""
        self.assertEqual(
            get_recommended_duration(TaskType.ESTUDO),
            {'min': 45, 'max': 120, 'suggested': 83}
        )
        self.assertEqual(get_recommended_duration(TaskType.SONO)['suggested'], 480)

    def test_recommended_effort(self):
        self.assertEqual(
            get_recommended_effort(TaskType.ESTUDO),
            {'min': 4, 'max': 9, 'suggested': 7}
        )

    def test_recommendation_fallbacks(self):
        """Categories without ranges get generic recommendations."""
        data = load_calibration().to_dict()
        data['categories']['outro']['duration'] = None
        data['categories']['outro']['effort'] = None
        calibration = Calibration.from_dict(data)

        self.assertEqual(
            get_recommended_duration(TaskType.OUTRO, calibration),
            {'min': 30, 'max': 120, 'suggested': 60}
        )
        self.assertEqual(
            get_recommended_effort(TaskType.OUTRO, calibration),
            {'min': 1, 'max': 5, 'suggested': 3}
        )

    def test_recommended_hours(self):
        self.assertTrue(is_recommended_hour(TaskType.TREINO, 7))
        self.assertFalse(is_recommended_hour(TaskType.TREINO, 12))
        self.assertTrue(is_recommended_hour(TaskType.SONO, 0))
        # No listed hours means any hour
        self.assertTrue(is_recommended_hour(TaskType.PONTUAL, 3))


class BenefitFormulaTests(TestCase):
    """Tests for the benefit formulas."""

    def test_base_benefit(self):
        """S0 = SCALE * (wd*bd + wf*bf + wm*bm)."""
        result = calc_s0_base(WEIGHTS, PillarBenefits(bd=8, bf=2, bm=7), scale=10)
        self.assertAlmostEqual(result, 59, places=9)

    def test_base_benefit_uses_weights_as_given(self):
        """Weights are not re-normalized."""
        doubled = PillarWeights(wd=0.8, wf=0.6, wm=0.6)
        result = calc_s0_base(doubled, PillarBenefits(bd=8, bf=2, bm=7))
        self.assertAlmostEqual(result, 118, places=9)

    def test_continuous_benefit_zero_for_non_positive_hours(self):
        for hours in (0, -1, -0.5):
            self.assertEqual(continuous_benefit(hours, 1, 0.7), 0)

    def test_continuous_benefit_increasing_and_bounded(self):
        """B(H) grows with H and never exceeds b0/k."""
        b0, k = 1, 0.5
        values = [continuous_benefit(h, b0, k) for h in (0.25, 0.5, 1, 2, 4, 8, 16)]
        for lower, higher in zip(values, values[1:]):
            self.assertLess(lower, higher)
        self.assertLess(values[-1], b0 / k)
        self.assertAlmostEqual(continuous_benefit(100, b0, k), b0 / k, places=6)

    def test_continuous_benefit_value(self):
        expected = (1 / 0.7) * (1 - math.exp(-0.7))
        self.assertAlmostEqual(continuous_benefit(1, 1, 0.7), expected, places=12)

    def test_continuous_s0(self):
        """S0 = SCALE * B(H) * weighted benefit."""
        benefits = PillarBenefits(bd=8, bf=2, bm=7)
        result = calc_s0_continuous(2, WEIGHTS, benefits, scale=10, b0=1, k=0.7)
        expected = 10 * continuous_benefit(2, 1, 0.7) * 5.9
        self.assertAlmostEqual(result, expected, places=9)


class CostFormulaTests(TestCase):
    """Tests for the cost formula."""

    def cost(self, **overrides):
        fields = dict(ct=8, ce=6, c_money=2, k_setup=5, hours=1, effort=3, money=10)
        fields.update(overrides)
        return calc_cost(CostInput(**fields))

    def test_linear_cost(self):
        """K = ct*hours + ce*effort + c$*money + kSetup."""
        self.assertEqual(self.cost(), 8 + 18 + 20 + 5)

    def test_monotonic_in_each_input(self):
        for name in ('hours', 'effort', 'money'):
            previous = None
            for value in (0, 1, 2, 5, 10):
                current = self.cost(**{name: value})
                if previous is not None:
                    self.assertGreaterEqual(current, previous)
                previous = current

    def test_never_negative(self):
        """Deliberately negative inputs floor at zero."""
        self.assertEqual(self.cost(hours=-10, effort=-10, money=-10, k_setup=-5), 0)


class AdjustmentFormulaTests(TestCase):
    """Tests for the GUT and decay adjustments."""

    def test_high_gravity_increases_benefit(self):
        result = apply_gut(100, GUT(gravity=5, urgency=4))
        self.assertGreater(result.s0g, 100)
        self.assertAlmostEqual(result.s0g, 140, places=9)

    def test_neutral_gravity_is_identity(self):
        for urgency in range(1, 6):
            self.assertEqual(apply_gut(100, GUT(gravity=3, urgency=urgency)).s0g, 100)

    def test_low_gravity_decreases_benefit(self):
        self.assertAlmostEqual(apply_gut(100, GUT(gravity=1, urgency=3)).s0g, 60, places=9)

    def test_explicit_betas_override_calibration(self):
        result = apply_gut(100, GUT(gravity=4, urgency=3, beta_g=0.5, beta_u=0.35))
        self.assertAlmostEqual(result.s0g, 150, places=9)

    def test_urgency_adjusted_hours(self):
        """t_adj shifts hours by betaU per urgency step."""
        t_adj = apply_gut(100, GUT(gravity=3, urgency=5)).t_adj
        self.assertAlmostEqual(t_adj(1), 1.7, places=9)
        self.assertAlmostEqual(apply_gut(100, GUT(gravity=3, urgency=1)).t_adj(2), 1.3, places=9)

    def test_no_elapsed_days_no_decay(self):
        self.assertEqual(apply_decay(100, Decay(delta_days=0, lambda0=0.25, rigidity=5)), 100)

    def test_decay_reduces_score(self):
        result = apply_decay(100, Decay(delta_days=1, lambda0=0.25, rigidity=5))
        self.assertLess(result, 100)
        self.assertAlmostEqual(result, 100 * math.exp(-1), places=9)

    def test_decay_shrinks_as_deadline_moves_away(self):
        """More days until the deadline means a smaller value."""
        values = [
            apply_decay(100, Decay(delta_days=days, lambda0=0.25, rigidity=3))
            for days in (0, 1, 2, 5, 10)
        ]
        for nearer, further in zip(values, values[1:]):
            self.assertGreater(nearer, further)

    def test_flexible_deadline_never_decays(self):
        self.assertEqual(apply_decay(100, Decay(delta_days=30, lambda0=0.25, rigidity=1)), 100)

    def test_priority_base_floor(self):
        self.assertEqual(calc_priority_base(10, 25), 0)
        self.assertEqual(calc_priority_base(30, 25), 5)

    def test_practical_constraints(self):
        self.assertEqual(apply_practical_constraints(10, WindowCheck(w_win=1, deps_done=True)), 10)
        self.assertEqual(apply_practical_constraints(10, WindowCheck(w_win=0, deps_done=True)), 0)
        self.assertEqual(apply_practical_constraints(10, WindowCheck(w_win=1, deps_done=False)), 0)


class TaskScorerTests(TestCase):
    """Tests for the task scoring pipeline."""

    def setUp(self):
        self.scorer = TaskPriorityScorer()

    def test_pointed_task_score(self):
        """41 benefit minus 21 cost."""
        self.assertAlmostEqual(self.scorer.score(make_task(), NOW, PREFS), 20, places=6)

    def test_completed_task_scores_zero(self):
        task = make_task(
            completed=True,
            gut=GUT(gravity=5, urgency=5),
            benefits=PillarBenefits(bd=10, bf=10, bm=10)
        )
        self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_duration_outside_category_scores_zero(self):
        """A 30 minute study session is below the 45 minute minimum."""
        task = make_task(
            type=TaskType.ESTUDO,
            duration_min=30,
            effort=5,
            benefits=PillarBenefits(bd=8, bf=2, bm=7)
        )
        self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_effort_outside_category_scores_zero(self):
        task = make_task(type=TaskType.TREINO, duration_min=60, effort=3)
        self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_zero_duration_is_range_checked(self):
        """An explicit 0 is a value, not a missing duration."""
        self.assertEqual(self.scorer.score(make_task(duration_min=0), NOW, PREFS), 0)
        self.assertAlmostEqual(self.scorer.score(make_task(duration_min=None), NOW, PREFS), 16, places=6)

    def test_zero_effort_is_range_checked(self):
        self.assertEqual(self.scorer.score(make_task(effort=0), NOW, PREFS), 0)

    def test_missing_duration_defaults_to_an_hour(self):
        """K = 8*1 + 6*2 + 5 = 25, so 41 - 25."""
        task = make_task(duration_min=None)
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 16, places=6)

    def test_missing_effort_and_money_use_defaults(self):
        """K = 8*0.5 + 6*3 + 5 = 27, so 41 - 27."""
        task = make_task(effort=None, money=None)
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 14, places=6)

    def test_money_adds_cost(self):
        task = make_task(money=5)
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 10, places=6)

    def test_missing_benefits_use_category_defaults(self):
        """pontual defaults are (5, 3, 4), same as make_task."""
        task = make_task(benefits=None)
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 20, places=6)

    def test_unknown_category_scores_as_outro(self):
        unknown = make_task(type='meditacao', benefits=None)
        outro = make_task(type=TaskType.OUTRO, benefits=None)
        self.assertAlmostEqual(
            self.scorer.score(unknown, NOW, PREFS),
            self.scorer.score(outro, NOW, PREFS),
            places=9
        )
        self.assertAlmostEqual(self.scorer.score(unknown, NOW, PREFS), 19, places=6)

    def test_continuous_task_uses_saturation_curve(self):
        benefits = PillarBenefits(bd=10, bf=10, bm=10)
        task = make_task(type=TaskType.LEITURA, duration_min=120, effort=2, benefits=benefits)
        s0 = 10 * continuous_benefit(2, 1, 0.5) * 10
        cost = 8 * 2 + 6 * 2 + 3
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), max(0, s0 - cost), places=6)

    def test_continuous_trace_records_hours(self):
        task = make_task(type=TaskType.LEITURA, duration_min=90, effort=2)
        trace = self.scorer.score_with_trace(task, NOW, PREFS).trace
        self.assertEqual(trace.steps[0].step, 'S0_calculation')
        self.assertEqual(trace.steps[0].input['hours'], 1.5)

    def test_gravity_raises_score(self):
        """S0G = 41 * 1.4 = 57.4, minus 21."""
        task = make_task(gut=GUT(gravity=5, urgency=3))
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 36.4, places=6)

    def test_deadline_decay(self):
        benefits = PillarBenefits(bd=10, bf=10, bm=10)
        task = make_task(
            benefits=benefits,
            decay=Deadline(rigidity=3, due=NOW + timedelta(days=2))
        )
        expected = 100 * math.exp(-0.5 * 2) - 21
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), expected, places=6)

    def test_distant_deadline_scores_lower(self):
        benefits = PillarBenefits(bd=10, bf=10, bm=10)
        near = make_task(benefits=benefits, decay=Deadline(rigidity=4, due=NOW + timedelta(days=1)))
        far = make_task(benefits=benefits, decay=Deadline(rigidity=4, due=NOW + timedelta(days=3)))
        self.assertGreater(
            self.scorer.score(near, NOW, PREFS),
            self.scorer.score(far, NOW, PREFS)
        )

    def test_overdue_deadline_does_not_decay(self):
        """Overdue deadlines count as zero days left."""
        overdue = make_task(decay=Deadline(rigidity=5, due=NOW - timedelta(days=4)))
        self.assertAlmostEqual(self.scorer.score(overdue, NOW, PREFS), 20, places=6)

    def test_deadline_without_due_date_is_ignored(self):
        task = make_task(decay=Deadline(rigidity=5, due=None))
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS), 20, places=6)

    def test_deadline_as_iso_string(self):
        due = (NOW + timedelta(days=2)).isoformat()
        as_string = make_task(decay=Deadline(rigidity=2, due=due))
        as_datetime_ = make_task(decay=Deadline(rigidity=2, due=NOW + timedelta(days=2)))
        self.assertAlmostEqual(
            self.scorer.score(as_string, NOW, PREFS),
            self.scorer.score(as_datetime_, NOW, PREFS),
            places=9
        )

    def test_malformed_deadline_scores_zero(self):
        """Unparsable dates are caught and score 0."""
        task = make_task(decay=Deadline(rigidity=3, due='next tuesday-ish'))
        with self.assertLogs('priority.scoring', level='ERROR'):
            self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_elapsed_window_scores_zero(self):
        task = make_task(start=NOW - timedelta(hours=3), end=NOW - timedelta(hours=2))
        self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_future_and_current_windows_pass(self):
        future = make_task(start=NOW + timedelta(hours=1), end=NOW + timedelta(hours=2))
        current = make_task(start=NOW - timedelta(minutes=10), end=NOW + timedelta(minutes=20))
        self.assertEqual(self.scorer.check_time_window(future, NOW), 1)
        self.assertEqual(self.scorer.check_time_window(current, NOW), 1)
        self.assertGreater(self.scorer.score(future, NOW, PREFS), 0)

    def test_partial_window_is_always_available(self):
        task = make_task(start=NOW - timedelta(days=3))
        self.assertEqual(self.scorer.check_time_window(task, NOW), 1)

    def test_unresolved_dependency_scores_zero(self):
        blocker = make_task(id='a', title='Book appointment')
        task = make_task(id='b', deps=['a'])
        self.assertEqual(self.scorer.score(task, NOW, PREFS, [blocker, task]), 0)

        blocker.completed = True
        self.assertAlmostEqual(self.scorer.score(task, NOW, PREFS, [blocker, task]), 20, places=6)

    def test_missing_dependency_scores_zero(self):
        task = make_task(deps=['ghost'])
        self.assertEqual(self.scorer.score(task, NOW, PREFS, [task]), 0)
        self.assertEqual(self.scorer.score(task, NOW, PREFS), 0)

    def test_no_dependencies_pass_without_collection(self):
        self.assertTrue(self.scorer.check_dependencies(make_task(deps=[])))

    def test_injected_calibration(self):
        """Scorer should use the calibration it is given."""
        scorer = TaskPriorityScorer(calibration=calibration_with(scale=20))
        self.assertAlmostEqual(scorer.score(make_task(), NOW, PREFS), 61, places=6)

    def test_naive_and_aware_datetimes_mix(self):
        naive_due = (NOW + timedelta(days=2)).replace(tzinfo=None)
        task = make_task(decay=Deadline(rigidity=2, due=naive_due))
        aware = make_task(decay=Deadline(rigidity=2, due=NOW + timedelta(days=2)))
        self.assertAlmostEqual(
            self.scorer.score(task, NOW, PREFS),
            self.scorer.score(aware, NOW, PREFS),
            places=9
        )

    def test_trace_steps_in_order(self):
        task = make_task(
            gut=GUT(gravity=4, urgency=2),
            decay=Deadline(rigidity=2, due=NOW + timedelta(days=1))
        )
        result = self.scorer.score_with_trace(task, NOW, PREFS)
        self.assertEqual(
            [s.step for s in result.trace.steps],
            ['S0_calculation', 'cost_calculation', 'gut_application',
             'decay_application', 'priority_base', 'practical_constraints']
        )
        self.assertEqual(result.trace.final_score, result.score)
        self.assertEqual(result.trace.task_id, 't1')

    def test_gated_trace_stops_early(self):
        result = self.scorer.score_with_trace(make_task(completed=True), NOW, PREFS)
        self.assertEqual([s.step for s in result.trace.steps], ['completed'])

    def test_debug_logs_trace(self):
        scorer = TaskPriorityScorer(debug=True)
        with self.assertLogs('priority.scoring', level='DEBUG') as logs:
            scorer.score(make_task(), NOW, PREFS)
        self.assertTrue(any('Score trace' in line for line in logs.output))

    def test_as_datetime_parses_dates(self):
        self.assertEqual(
            as_datetime('2025-01-08', NOW),
            datetime(2025, 1, 8, tzinfo=dt_timezone.utc)
        )
        self.assertEqual(
            as_datetime(date(2025, 1, 8), NOW),
            datetime(2025, 1, 8, tzinfo=dt_timezone.utc)
        )
        with self.assertRaises(ValueError):
            as_datetime('soon', NOW)


class BatchRankerTests(TestCase):
    """Tests for ranking task collections."""

    def setUp(self):
        self.tasks = [
            make_task(id='low', title='Low value', benefits=PillarBenefits(bd=4, bf=3, bm=4)),
            make_task(id='high', title='High value', benefits=PillarBenefits(bd=9, bf=8, bm=9)),
            make_task(id='done', title='Already done', completed=True),
            make_task(id='blocked', title='Blocked', deps=['low']),
            make_task(id='mid', title='Mid value'),
        ]

    def test_sorted_by_descending_score(self):
        ranked = sort_tasks_by_priority(self.tasks, NOW, PREFS)
        scores = [t.priority_score for t in ranked]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(ranked[0].id, 'high')

    def test_same_tasks_returned(self):
        ranked = sort_tasks_by_priority(self.tasks, NOW, PREFS)
        self.assertEqual(sorted(t.id for t in ranked), sorted(t.id for t in self.tasks))
        for task in ranked:
            self.assertIsNotNone(task.priority_score)

    def test_inputs_not_mutated(self):
        sort_tasks_by_priority(self.tasks, NOW, PREFS)
        for task in self.tasks:
            self.assertIsNone(task.priority_score)

    def test_ties_ordered_by_id(self):
        """Zero-score tasks (and other ties) are ordered by id."""
        ranked = sort_tasks_by_priority(self.tasks, NOW, PREFS)
        zeros = [t.id for t in ranked if t.priority_score == 0]
        self.assertEqual(zeros, ['blocked', 'done'])

        twins = [make_task(id='b'), make_task(id='c'), make_task(id='a')]
        self.assertEqual([t.id for t in sort_tasks_by_priority(twins, NOW, PREFS)], ['a', 'b', 'c'])

    def test_dependency_resolved_within_batch(self):
        self.tasks[0].completed = True  # 'low'
        ranked = {t.id: t for t in sort_tasks_by_priority(self.tasks, NOW, PREFS)}
        self.assertGreater(ranked['blocked'].priority_score, 0)
        self.assertEqual(ranked['low'].priority_score, 0)

    def test_idempotent(self):
        first = sort_tasks_by_priority(self.tasks, NOW, PREFS)
        second = sort_tasks_by_priority(self.tasks, NOW, PREFS)
        self.assertEqual(
            [(t.id, t.priority_score) for t in first],
            [(t.id, t.priority_score) for t in second]
        )

    def test_bad_task_does_not_abort_batch(self):
        broken = make_task(id='broken', decay=Deadline(rigidity=3, due='31/31/2025'))
        with self.assertLogs('priority.scoring', level='ERROR'):
            ranked = sort_tasks_by_priority(self.tasks + [broken], NOW, PREFS)
        by_id = {t.id: t for t in ranked}
        self.assertEqual(by_id['broken'].priority_score, 0)
        self.assertGreater(by_id['high'].priority_score, 0)

    def test_empty_collection(self):
        self.assertEqual(sort_tasks_by_priority([], NOW, PREFS), [])

    def test_recalculate_uses_current_time(self):
        ranked = recalculate_all_priorities(self.tasks, PREFS)
        self.assertEqual(ranked[0].id, 'high')

    def test_validate_tasks(self):
        self.assertEqual(validate_tasks([])[0].code, ErrorCode.ERR_EMPTY_TASKS)
        self.assertEqual(
            validate_tasks([make_task(id='x', deps=['x'])])[0].code,
            ErrorCode.ERR_SELF_DEPENDENCY
        )
        self.assertEqual(
            validate_tasks([make_task(id='x'), make_task(id='x')])[0].code,
            ErrorCode.ERR_DUPLICATE_ID
        )
        self.assertEqual(validate_tasks(self.tasks), [])


class SerializerTests(TestCase):
    """Tests for payload conversion into engine records."""

    def test_validated_task_builds_record(self):
        serializer = TaskInputSerializer(data={
            'id': 'a',
            'title': '  Read chapter 3 ',
            'type': 'leitura',
            'gut': {'gravity': 4, 'urgency': 2},
            'decay': {'rigidity': 3, 'due': '2025-01-08T09:00:00Z'}
        })
        self.assertTrue(serializer.is_valid(), serializer.errors)

        task = build_task(serializer.validated_data)
        self.assertEqual(task.title, 'Read chapter 3')
        self.assertEqual(task.task_type, TaskType.LEITURA)
        self.assertEqual(task.gut, GUT(gravity=4, urgency=2))
        self.assertIsNone(task.duration_min)
        self.assertEqual(task.deps, [])

    def test_missing_preferences_use_calibration_weights(self):
        prefs = build_preferences(None)
        self.assertEqual(prefs.weights, get_calibration().default_weights)


class SettingsTests(TestCase):
    """Tests for environment-driven settings."""

    def test_debug_flags_default_off(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertFalse(env_bool('DJANGO_DEBUG'))
            self.assertFalse(env_bool('PRIORITY_DEBUG_TRACE'))

    def test_debug_flag_enabled_explicitly(self):
        with mock.patch.dict(os.environ, {'DJANGO_DEBUG': 'true'}):
            self.assertTrue(env_bool('DJANGO_DEBUG'))
        with mock.patch.dict(os.environ, {'DJANGO_DEBUG': '0'}):
            self.assertFalse(env_bool('DJANGO_DEBUG', True))


class APIEndpointTests(APITestCase):
    """Tests for the API endpoints."""

    def setUp(self):
        cache.clear()
        self.task = {
            'id': 't1',
            'title': 'Pay electricity bill',
            'type': 'pontual',
            'benefits': {'bd': 5, 'bf': 3, 'bm': 4},
            'duration_min': 30,
            'effort': 2,
            'money': 0
        }

    def post(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def test_score_endpoint_success(self):
        """POST /api/tasks/score/ should return the task's score."""
        response = self.post('/api/tasks/score/', {
            'task': self.task,
            'preferences': {'weights': {'wd': 0.4, 'wf': 0.3, 'wm': 0.3}},
            'now': NOW.isoformat()
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['task_id'], 't1')
        self.assertAlmostEqual(response.data['score'], 20, places=6)
        self.assertNotIn('trace', response.data)

    def test_score_endpoint_default_preferences(self):
        response = self.post('/api/tasks/score/', {'task': self.task})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertAlmostEqual(response.data['score'], 20, places=6)

    def test_score_endpoint_debug_trace(self):
        response = self.post('/api/tasks/score/', {'task': self.task, 'debug': True})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        steps = [s['step'] for s in response.data['trace']['steps']]
        self.assertEqual(steps[-1], 'practical_constraints')

    def test_score_endpoint_resolves_dependencies(self):
        task = dict(self.task, deps=['a'])
        blocker = dict(self.task, id='a', completed=True)
        response = self.post('/api/tasks/score/', {'task': task, 'tasks': [blocker]})
        self.assertGreater(response.data['score'], 0)

        blocker['completed'] = False
        response = self.post('/api/tasks/score/', {'task': task, 'tasks': [blocker]})
        self.assertEqual(response.data['score'], 0)

    def test_score_endpoint_out_of_range_category_scores_zero(self):
        """Category ranges are scoring gates, not input errors."""
        task = dict(self.task, type='estudo', duration_min=30, effort=5)
        response = self.post('/api/tasks/score/', {'task': task})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['score'], 0)

    def test_score_endpoint_invalid_task(self):
        task = dict(self.task, effort=15, title='  ')
        response = self.post('/api/tasks/score/', {'task': task})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_INPUT.value)

    def test_score_endpoint_self_dependency(self):
        task = dict(self.task, deps=['t1'])
        response = self.post('/api/tasks/score/', {'task': task})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_SELF_DEPENDENCY.value)

    def test_rank_endpoint_success(self):
        """POST /api/tasks/rank/ should return tasks sorted by score."""
        data = {
            'tasks': [
                dict(self.task, id='a', benefits={'bd': 4, 'bf': 3, 'bm': 4}),
                dict(self.task, id='b', benefits={'bd': 9, 'bf': 8, 'bm': 9}),
                dict(self.task, id='c', completed=True),
            ],
            'now': NOW.isoformat()
        }

        response = self.post('/api/tasks/rank/', data)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual([t['id'] for t in response.data['tasks']], ['b', 'a', 'c'])
        self.assertEqual(response.data['summary']['total_tasks'], 3)
        self.assertEqual(response.data['summary']['gated_count'], 1)
        self.assertEqual(response.data['summary']['top_task_id'], 'b')
        self.assertEqual(response.data['tasks'][2]['priority_score'], 0)

    def test_rank_endpoint_list_body(self):
        """A bare JSON array is invalid input, not a server error."""
        response = self.post('/api/tasks/rank/', [self.task])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_INPUT.value)

    def test_rank_endpoint_empty_tasks(self):
        response = self.post('/api/tasks/rank/', {'tasks': []})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_EMPTY_TASKS.value)

    def test_rank_endpoint_duplicate_ids(self):
        response = self.post('/api/tasks/rank/', {'tasks': [self.task, self.task]})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_DUPLICATE_ID.value)

    def test_rank_endpoint_unknown_type_accepted(self):
        task = dict(self.task, type='meditacao')
        response = self.post('/api/tasks/rank/', {'tasks': [task]})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['tasks'][0]['type'], 'outro')

    def test_calibration_endpoint(self):
        response = self.client.get('/api/calibration/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['calibration']['scale'], 10)
        self.assertIn('estudo', response.data['calibration']['categories'])

    def test_category_recommendations(self):
        response = self.client.get('/api/calibration/estudo/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['duration']['suggested'], 83)
        self.assertEqual(response.data['effort']['suggested'], 7)
        self.assertTrue(response.data['is_continuous'])

    def test_unknown_category_recommendations(self):
        response = self.client.get('/api/calibration/meditacao/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['task_type'], 'outro')
        self.assertFalse(response.data['is_continuous'])

    def test_api_info_endpoint(self):
        """GET /api/ should return API information."""
        response = self.client.get('/api/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('name', response.data)
        self.assertIn('endpoints', response.data)
        self.assertIn('pontual', response.data['task_types'])
