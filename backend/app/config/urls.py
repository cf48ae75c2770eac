# app/config/urls.py
from django.urls import path, include


urlpatterns = [
    path("api/auth/", include("app.authentication.urls")),
    path("api/users/", include("app.users.urls")),
    path("api/presence/", include("app.presence.urls")),
    path("api/match/", include("app.matches.urls")),
]
