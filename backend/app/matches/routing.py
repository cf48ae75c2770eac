# app/matches/routing.py
from django.urls import re_path
from .consumers import LobbyConsumer, SignalingConsumer

websocket_urlpatterns = [
    re_path(r"^ws/lobby/?$", LobbyConsumer.as_asgi()),
    re_path(r"^ws/signaling/(?P<session_id>[^/]+)/?$", SignalingConsumer.as_asgi()),
]
