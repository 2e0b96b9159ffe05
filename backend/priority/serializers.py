"""
Serializers for the Priority Engine API.

This module validates incoming task payloads and converts them into the
engine's records. Category ranges (duration, effort) are deliberately not
enforced here: a task outside its range is valid input that scores 0.
"""

from typing import Dict, Optional

from rest_framework import serializers

from .calibration import Calibration
from .records import (
    Deadline,
    GUT,
    PillarBenefits,
    PillarWeights,
    Task,
    UserPreferences,
)
from .scoring import default_preferences


class PillarBenefitsSerializer(serializers.Serializer):
    bd = serializers.FloatField(min_value=0, max_value=10)
    bf = serializers.FloatField(min_value=0, max_value=10)
    bm = serializers.FloatField(min_value=0, max_value=10)


class PillarWeightsSerializer(serializers.Serializer):
    wd = serializers.FloatField(min_value=0, max_value=1)
    wf = serializers.FloatField(min_value=0, max_value=1)
    wm = serializers.FloatField(min_value=0, max_value=1)


class GUTSerializer(serializers.Serializer):
    gravity = serializers.IntegerField(min_value=1, max_value=5)
    urgency = serializers.IntegerField(min_value=1, max_value=5)
    beta_g = serializers.FloatField(required=False, allow_null=True)
    beta_u = serializers.FloatField(required=False, allow_null=True)


class DeadlineSerializer(serializers.Serializer):
    due = serializers.DateTimeField(required=False, allow_null=True)
    rigidity = serializers.IntegerField(min_value=1, max_value=5)


class TaskInputSerializer(serializers.Serializer):
    """
    Serializer for validating incoming task data.

    Unknown categories are accepted and scored with the ``outro``
    calibration.
    """

    id = serializers.CharField(max_length=64)
    title = serializers.CharField(max_length=255)
    type = serializers.CharField(max_length=32, required=False, default='outro')
    benefits = PillarBenefitsSerializer(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    start = serializers.DateTimeField(required=False, allow_null=True)
    end = serializers.DateTimeField(required=False, allow_null=True)
    duration_min = serializers.FloatField(required=False, allow_null=True, min_value=0)
    effort = serializers.FloatField(required=False, allow_null=True, min_value=1, max_value=10)
    money = serializers.FloatField(required=False, allow_null=True, min_value=0)
    gut = GUTSerializer(required=False, allow_null=True)
    decay = DeadlineSerializer(required=False, allow_null=True)
    deps = serializers.ListField(
        child=serializers.CharField(max_length=64),
        required=False,
        default=list
    )
    pillar_hint = serializers.ChoiceField(
        choices=['d', 'f', 'm'],
        required=False,
        allow_null=True
    )
    completed = serializers.BooleanField(required=False, default=False)
    tags = serializers.ListField(
        child=serializers.CharField(max_length=64),
        required=False,
        default=list
    )
    color = serializers.CharField(max_length=32, required=False, allow_null=True)

    def validate_title(self, value):
        """Ensure title is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Title cannot be empty")
        return value.strip()

    def validate(self, attrs):
        start, end = attrs.get('start'), attrs.get('end')
        if start and end and start > end:
            raise serializers.ValidationError({'end': "End must not be before start"})
        return attrs


class UserPreferencesSerializer(serializers.Serializer):
    weights = PillarWeightsSerializer()
    time_format = serializers.ChoiceField(choices=['12h', '24h'], required=False, default='24h')
    language = serializers.ChoiceField(choices=['pt', 'en'], required=False, default='pt')
    onboarding_complete = serializers.BooleanField(required=False, default=False)
    voice_enabled = serializers.BooleanField(required=False, default=True)
    auto_suggestions = serializers.BooleanField(required=False, default=True)
    data_retention_days = serializers.IntegerField(required=False, default=0, min_value=0)


class ScoreRequestSerializer(serializers.Serializer):
    """
    Request body for scoring one task.

    ``tasks`` is only needed to resolve the task's dependencies.
    """

    task = TaskInputSerializer()
    tasks = serializers.ListField(child=TaskInputSerializer(), required=False, default=list)
    preferences = UserPreferencesSerializer(required=False, allow_null=True)
    now = serializers.DateTimeField(required=False, allow_null=True)
    debug = serializers.BooleanField(required=False, default=False)


class RankRequestSerializer(serializers.Serializer):
    """
    Serializer for bulk ranking requests.
    """

    tasks = serializers.ListField(
        child=TaskInputSerializer(),
        min_length=1,
        error_messages={
            'min_length': 'At least one task is required for ranking'
        }
    )
    preferences = UserPreferencesSerializer(required=False, allow_null=True)
    now = serializers.DateTimeField(required=False, allow_null=True)


class TaskOutputSerializer(serializers.Serializer):
    """
    Serializer for a task with its priority score.
    """

    id = serializers.CharField()
    title = serializers.CharField()
    type = serializers.CharField(source='task_type.value')
    benefits = PillarBenefitsSerializer(allow_null=True)
    duration_min = serializers.FloatField(allow_null=True)
    effort = serializers.FloatField(allow_null=True)
    money = serializers.FloatField(allow_null=True)
    deps = serializers.ListField(child=serializers.CharField())
    completed = serializers.BooleanField()
    priority_score = serializers.FloatField(allow_null=True)


def build_task(data: Dict) -> Task:
    """Convert validated task data into a ``Task``."""
    benefits = data.get('benefits')
    gut = data.get('gut')
    decay = data.get('decay')

    return Task(
        id=data['id'],
        title=data['title'],
        type=data.get('type') or 'outro',
        benefits=PillarBenefits(**benefits) if benefits else None,
        description=data.get('description'),
        start=data.get('start'),
        end=data.get('end'),
        duration_min=data.get('duration_min'),
        effort=data.get('effort'),
        money=data.get('money'),
        gut=GUT(**gut) if gut else None,
        decay=Deadline(**decay) if decay else None,
        deps=list(data.get('deps') or []),
        pillar_hint=data.get('pillar_hint'),
        completed=data.get('completed', False),
        tags=list(data.get('tags') or []),
        color=data.get('color'),
    )


def build_preferences(data: Optional[Dict], calibration: Optional[Calibration] = None) -> UserPreferences:
    """
    Convert validated preferences into ``UserPreferences``.

    Missing preferences fall back to the calibration's default weights.
    """
    if not data:
        return default_preferences(calibration)

    options = {k: v for k, v in data.items() if k != 'weights'}
    return UserPreferences(weights=PillarWeights(**data['weights']), **options)
