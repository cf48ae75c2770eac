# app/config/routing.py
import app.chat.routing
import app.matches.routing

websocket_urlpatterns = [
    *app.matches.routing.websocket_urlpatterns,
    *app.chat.routing.websocket_urlpatterns,
]
