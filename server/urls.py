"""Main URL mapping configuration file."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('files/', include('server.apps.files.urls')),
    path('admin/', admin.site.urls),
]
