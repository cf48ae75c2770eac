# app/matches/models.py
from django.db import models
from django.utils import timezone

MODE_VIDEO = "VIDEO"
MODE_TEXT = "TEXT"
MODE_CHOICES = (
    (MODE_VIDEO, "VIDEO"),
    (MODE_TEXT, "TEXT"),
)


class MatchPool(models.Model):
    # mode 당 한 줄. 이 row 를 select_for_update 로 잠가서 같은 pool 의 매칭을 한 줄로 세움
    mode = models.CharField(max_length=10, choices=MODE_CHOICES, unique=True)


class AvailabilityEntry(models.Model):
    user = models.OneToOneField(
        "users.User", related_name="availability", on_delete=models.CASCADE
    )
    mode = models.CharField(max_length=10, choices=MODE_CHOICES, default=MODE_VIDEO)
    enqueued_at = models.DateTimeField(default=timezone.now, db_index=True)
    matched = models.BooleanField(default=False)
    # 매칭 후에는 "내 현재 세션" 포인터 역할
    session_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)

    def __str__(self):
        return f"{self.user_id} {self.mode} matched={self.matched}"


class MatchSession(models.Model):
    # 정렬된 두 user id 를 "_" 로 이은 값. 같은 쌍이면 항상 같은 id
    session_id = models.CharField(max_length=128, unique=True)
    mode = models.CharField(max_length=10, choices=MODE_CHOICES, default=MODE_VIDEO)

    # user_a: 매칭을 성사시킨 쪽(initiator, offer 생성), user_b: responder
    user_a = models.ForeignKey(
        "users.User", related_name="match_a", on_delete=models.CASCADE
    )
    user_b = models.ForeignKey(
        "users.User", related_name="match_b", on_delete=models.CASCADE
    )

    created_at = models.DateTimeField(auto_now_add=True)

    offer = models.JSONField(null=True, blank=True)
    answer = models.JSONField(null=True, blank=True)

    @property
    def participants(self):
        return [str(self.user_a_id), str(self.user_b_id)]

    def has_participant(self, user_id) -> bool:
        return str(user_id) in self.participants

    def peer_of(self, user_id):
        if str(user_id) == str(self.user_a_id):
            return self.user_b_id
        if str(user_id) == str(self.user_b_id):
            return self.user_a_id
        return None

    def role_of(self, user_id) -> str:
        return "initiator" if str(user_id) == str(self.user_a_id) else "responder"

    def __str__(self):
        return self.session_id


class IceCandidate(models.Model):
    session = models.ForeignKey(
        MatchSession, related_name="candidates", on_delete=models.CASCADE
    )
    participant = models.ForeignKey("users.User", on_delete=models.CASCADE)
    candidate = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
