"""
URL configuration for the priority app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    path('tasks/score/', views.score_task_view, name='score-task'),
    path('tasks/rank/', views.rank_tasks, name='rank-tasks'),
    path('calibration/', views.get_calibration_view, name='calibration'),
    path('calibration/<str:task_type>/', views.get_category_recommendations, name='category-recommendations'),
]
