# app/matches/urls.py
from django.urls import path
from .views import (
    MatchRequestView,
    MatchCancelView,
    MatchEndView,
    CurrentMatchView,
    RtcConfigView,
)

urlpatterns = [
    path("request", MatchRequestView.as_view()),
    path("request/", MatchRequestView.as_view()),
    path("cancel", MatchCancelView.as_view()),
    path("cancel/", MatchCancelView.as_view()),
    path("end", MatchEndView.as_view()),
    path("end/", MatchEndView.as_view()),
    path("current", CurrentMatchView.as_view()),
    path("current/", CurrentMatchView.as_view()),
    path("rtc-config", RtcConfigView.as_view()),
    path("rtc-config/", RtcConfigView.as_view()),
]
