from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from app.common.responses import ok
from .serializers import UserMeSerializer


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        serializer = UserMeSerializer(request.user)
        return ok(serializer.data)
