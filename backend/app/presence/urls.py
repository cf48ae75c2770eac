# app/presence/urls.py
from django.urls import path
from .views import PresencePingView, OnlineCountView, PresenceLookupView

urlpatterns = [
    path("", PresenceLookupView.as_view()),  # GET /api/presence?userIds=
    path("ping", PresencePingView.as_view()),  # POST /api/presence/ping
    path("ping/", PresencePingView.as_view()),
    path("online-count", OnlineCountView.as_view()),
    path("online-count/", OnlineCountView.as_view()),
]
