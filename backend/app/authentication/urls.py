from django.urls import path
from .views import RegisterView, LoginView

urlpatterns = [
    path("register/", RegisterView.as_view()),
    path("login/", LoginView.as_view()),
    # (슬래시 없는 버전 유지)
    path("register", RegisterView.as_view()),
    path("login", LoginView.as_view()),
]
