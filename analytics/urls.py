"""
URL configuration for analytics app.
"""

from django.urls import path
from . import views

app_name = 'analytics'

urlpatterns = [
    path('api/snapshot/', views.snapshot_api, name='snapshot_api'),
    path('api/compare/', views.compare_api, name='compare_api'),
    path('api/acquisition-costs/', views.acquisition_costs_api, name='acquisition_costs_api'),
    path('api/acquisition-costs/<int:pk>/', views.acquisition_cost_delete, name='acquisition_cost_delete'),
]
