"""
URL configuration for priority_service project.
"""

from django.urls import path, include
from django.http import JsonResponse
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView, SpectacularSwaggerView


def home_view(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Welcome to the Priority Engine API',
        'version': '1.0.0',
        'endpoints': {
            'API Root': '/api/',
            'Score Task': 'POST /api/tasks/score/',
            'Rank Tasks': 'POST /api/tasks/rank/',
            'Calibration': 'GET /api/calibration/',
            'API Documentation': '/api/docs/',
            'OpenAPI Schema': '/api/schema/',
        }
    })


urlpatterns = [
    path('', home_view, name='home'),
    path('api/', include('priority.urls')),
    # OpenAPI/Swagger Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
