"""
URL configuration for integrations app.
"""

from django.urls import path
from . import views

app_name = 'integrations'

urlpatterns = [
    path('api/sync-costs/', views.sync_costs, name='sync_costs'),
    path('api/sync-history/', views.sync_history, name='sync_history'),
]
