"""Example Django application with Prometheus metrics.

Run with:
    uvicorn examples.django_example:application --reload

Then visit:
    http://localhost:8000/users/1   - Instrumented route
    http://localhost:8000/metrics   - Prometheus text format
"""

import django
from django.conf import settings

# Configure Django settings
if not settings.configured:
    settings.configure(
        DEBUG=True,
        ROOT_URLCONF=__name__,
        ALLOWED_HOSTS=["*"],
        SECRET_KEY="example-secret-key-not-for-production",
        MIDDLEWARE=[f"{__name__}.MetricsMiddleware"],
    )
    django.setup()

from django.core.asgi import get_asgi_application
from django.http import HttpRequest, JsonResponse
from django.urls import path

from observametrics import MetricsContext, MetricsOptions
from observametrics.adapters.frameworks.django import (
    create_metrics_middleware,
    create_metrics_urlpatterns,
)

context = MetricsContext(MetricsOptions(default_labels={"service": "example"}))
MetricsMiddleware = create_metrics_middleware(context)


def get_user(request: HttpRequest, user_id: int) -> JsonResponse:
    """Return a user, recorded as route /users/<int:user_id>."""
    return JsonResponse({"id": user_id})


urlpatterns = [
    path("users/<int:user_id>", get_user),
    *create_metrics_urlpatterns(context),
]

application = get_asgi_application()
