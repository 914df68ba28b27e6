"""
URL configuration for core app.
"""

from django.urls import path
from . import views

app_name = 'core'

urlpatterns = [
    path('api/', views.location_list, name='location_list'),
    path('api/<int:pk>/deactivate/', views.location_deactivate, name='location_deactivate'),
]
