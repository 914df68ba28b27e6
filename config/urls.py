"""
URL configuration for Ortho Insight.
"""

from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),

    # App URLs
    path('locations/', include('core.urls')),
    path('analytics/', include('analytics.urls')),
    path('integrations/', include('integrations.urls')),
    path('reports/', include('reports.urls')),
]
