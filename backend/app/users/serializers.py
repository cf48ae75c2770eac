# app/users/serializers.py
from rest_framework import serializers
from .models import User


class UserMeSerializer(serializers.ModelSerializer):
    userId = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source="date_joined", read_only=True)

    class Meta:
        model = User
        fields = ["userId", "email", "createdAt"]

    def get_userId(self, obj: User):
        # 세션 id 가 문자열 조합이라 userId 도 문자열로 통일
        return str(obj.id)
