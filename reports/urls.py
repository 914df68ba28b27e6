"""
URL configuration for reports app.
"""

from django.urls import path
from . import views

app_name = 'reports'

urlpatterns = [
    path('api/', views.report_list, name='report_list'),
    path('api/<int:pk>/', views.report_detail, name='report_detail'),
    path('api/<int:pk>/pdf/', views.report_pdf, name='report_pdf'),
    path('api/summary/', views.summary_api, name='summary_api'),
    path('api/pdf/', views.pdf_api, name='pdf_api'),
    path('api/sessions/', views.session_save, name='session_save'),
]
