# app/chat/models.py
from django.db import models


class ChatMessage(models.Model):
    session = models.ForeignKey(
        "matches.MatchSession", related_name="messages", on_delete=models.CASCADE
    )
    sender = models.ForeignKey("users.User", on_delete=models.CASCADE)
    text = models.TextField()
    # epoch ms (브라우저 Date.now() 와 같은 단위)
    timestamp = models.BigIntegerField(db_index=True)

    class Meta:
        ordering = ["timestamp", "id"]

    def to_dict(self):
        return {
            "id": self.id,
            "senderId": str(self.sender_id),
            "text": self.text,
            "timestamp": self.timestamp,
        }
