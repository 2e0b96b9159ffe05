"""
API Views for the Priority Engine.

This module exposes the scoring engine over REST: score a single task,
rank a collection, and inspect the active calibration. The views only
validate and translate payloads; every number comes from ``scoring.py``.
"""

import logging

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.response import Response
from rest_framework.request import Request
from rest_framework.throttling import AnonRateThrottle
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from .calibration import get_calibration
from .constraints import get_recommended_duration, get_recommended_effort
from .records import TaskType
from .serializers import (
    RankRequestSerializer,
    ScoreRequestSerializer,
    TaskOutputSerializer,
    build_preferences,
    build_task,
)
from .scoring import (
    ErrorCode,
    TaskPriorityScorer,
    validate_tasks,
)


logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITING CLASSES
# ============================================

class ScoreRateThrottle(AnonRateThrottle):
    """Rate limit for scoring endpoints - 60 requests per minute."""
    rate = '60/min'


class CalibrationRateThrottle(AnonRateThrottle):
    """Rate limit for calibration endpoints - 30 requests per minute."""
    rate = '30/min'


def invalid_input_response(errors, message: str) -> Response:
    return Response(
        {
            'success': False,
            'error_code': ErrorCode.ERR_INVALID_INPUT.value,
            'errors': errors,
            'message': message
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def structural_error_response(errors) -> Response:
    return Response(
        {
            'success': False,
            'error_code': errors[0].code.value,
            'errors': [e.to_dict() for e in errors],
            'message': errors[0].message
        },
        status=status.HTTP_400_BAD_REQUEST
    )


# ============================================
# API ENDPOINTS
# ============================================

@extend_schema(
    summary="Score a single task",
    description="""
    Compute the priority score of one task.

    Completed tasks, tasks outside their category's duration/effort range,
    tasks whose window has elapsed and tasks with unfinished dependencies
    score 0. Pass `tasks` so dependencies can be resolved.
    """,
    request=ScoreRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Scoring']
)
@api_view(['POST'])
@throttle_classes([ScoreRateThrottle])
def score_task_view(request: Request) -> Response:
    """
    Score a single task.

    POST /api/tasks/score/

    Request Body:
    {
        "task": {...},
        "tasks": [...],                // Optional, for dependency resolution
        "preferences": {"weights": {"wd": 0.4, "wf": 0.3, "wm": 0.3}},
        "now": "2025-01-01T09:00:00Z", // Optional (default: server time)
        "debug": false                 // Optional: include the score trace
    }
    """
    serializer = ScoreRequestSerializer(data=request.data)

    if not serializer.is_valid():
        return invalid_input_response(
            serializer.errors,
            'Invalid input data. Please check your task format.'
        )

    validated_data = serializer.validated_data
    task = build_task(validated_data['task'])
    others = [build_task(t) for t in validated_data.get('tasks', [])]
    prefs = build_preferences(validated_data.get('preferences'))
    now = validated_data.get('now') or timezone.now()

    errors = validate_tasks([task])
    if errors:
        return structural_error_response(errors)

    scorer = TaskPriorityScorer()
    result = scorer.score_with_trace(task, now, prefs, [task] + others)

    response_data = {
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'task_id': task.id,
        'score': result.score,
        'now': now.isoformat(),
    }
    if validated_data.get('debug'):
        response_data['trace'] = result.trace.to_dict()

    return Response(response_data)


@extend_schema(
    summary="Rank tasks by priority",
    description="""
    Score every task and return them sorted by descending priority score.

    Equal scores are ordered by task id. Each task in the response carries
    its `priority_score`.
    """,
    request=RankRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Scoring']
)
@api_view(['POST'])
@throttle_classes([ScoreRateThrottle])
def rank_tasks(request: Request) -> Response:
    """
    Rank a list of tasks by priority score.

    POST /api/tasks/rank/

    Request Body:
    {
        "tasks": [...],
        "preferences": {...},          // Optional (default weights)
        "now": "2025-01-01T09:00:00Z"  // Optional (default: server time)
    }
    """
    serializer = RankRequestSerializer(data=request.data)

    if not serializer.is_valid():
        errors = serializer.errors
        error_code = ErrorCode.ERR_INVALID_INPUT
        if isinstance(request.data, dict) and not request.data.get('tasks'):
            error_code = ErrorCode.ERR_EMPTY_TASKS
        return Response(
            {
                'success': False,
                'error_code': error_code.value,
                'errors': errors,
                'message': 'Invalid input data. Please check your tasks format.'
            },
            status=status.HTTP_400_BAD_REQUEST
        )

    validated_data = serializer.validated_data
    tasks = [build_task(t) for t in validated_data['tasks']]

    errors = validate_tasks(tasks)
    if errors:
        return structural_error_response(errors)

    prefs = build_preferences(validated_data.get('preferences'))
    now = validated_data.get('now') or timezone.now()

    scorer = TaskPriorityScorer()
    ranked = scorer.rank(tasks, now, prefs)

    gated_count = sum(1 for t in ranked if t.priority_score == 0)
    logger.info("Ranked %d task(s), %d scored 0", len(ranked), gated_count)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'count': len(ranked),
        'now': now.isoformat(),
        'weights_used': prefs.weights.to_dict(),
        'tasks': TaskOutputSerializer(ranked, many=True).data,
        'summary': {
            'total_tasks': len(ranked),
            'gated_count': gated_count,
            'top_task_id': ranked[0].id if ranked[0].priority_score > 0 else None
        }
    })


@extend_schema(
    summary="Active calibration",
    description="Return the calibration tables the engine is scoring with.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Calibration']
)
@api_view(['GET'])
@throttle_classes([CalibrationRateThrottle])
def get_calibration_view(request: Request) -> Response:
    """
    Return the active calibration.

    GET /api/calibration/
    """
    return Response({
        'success': True,
        'calibration': get_calibration().to_dict()
    })


@extend_schema(
    summary="Category recommendations",
    description="Recommended duration, effort and hours of day for a task category.",
    parameters=[
        OpenApiParameter('task_type', OpenApiTypes.STR, OpenApiParameter.PATH,
                         enum=[t.value for t in TaskType])
    ],
    responses={200: OpenApiTypes.OBJECT},
    tags=['Calibration']
)
@api_view(['GET'])
@throttle_classes([CalibrationRateThrottle])
def get_category_recommendations(request: Request, task_type: str) -> Response:
    """
    Return recommendations for one category.

    GET /api/calibration/<task_type>/

    Unknown categories report the ``outro`` recommendations, matching how
    they are scored.
    """
    calibration = get_calibration()
    resolved = TaskType.coerce(task_type)
    entry = calibration.category(resolved)

    return Response({
        'success': True,
        'requested_type': task_type,
        'task_type': resolved.value,
        'duration': get_recommended_duration(resolved, calibration),
        'effort': get_recommended_effort(resolved, calibration),
        'recommended_hours': list(entry.time_windows),
        'is_continuous': entry.is_continuous,
        'default_benefits': entry.benefits.to_dict()
    })


@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    return Response({
        'name': 'Priority Engine API',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'features': [
            'Weighted pillar benefit scoring',
            'Saturating benefit for continuous activities',
            'Time, effort, money and setup cost model',
            'Gravity/Urgency (GUT) adjustment',
            'Deadline rigidity decay',
            'Scheduling window and dependency gating',
            'Swappable YAML calibration'
        ],
        'endpoints': {
            'POST /api/tasks/score/': 'Score a single task',
            'POST /api/tasks/rank/': 'Rank tasks by priority score',
            'GET /api/calibration/': 'Active calibration tables',
            'GET /api/calibration/<task_type>/': 'Recommendations for a category',
            'GET /api/docs/': 'Interactive API documentation',
            'GET /api/schema/': 'OpenAPI schema',
            'GET /api/': 'This info endpoint'
        },
        'task_types': [t.value for t in TaskType],
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })
