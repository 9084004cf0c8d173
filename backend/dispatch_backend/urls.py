from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Authentication endpoints (at /api/auth/)
    path('api/auth/', include('accounts.urls')),  # JWT obtain/refresh

    # Driver APIs (profile, status, location, current offer)
    path('api/driver/', include('drivers.urls')),

    # Jobs, assignments, matching ops and reassignment queue (at /api/)
    path('api/', include('jobs.urls')),
]
