# app/common/management/commands/sweep_matchmaking.py
from django.core.management.base import BaseCommand

from app.matches.services import (
    end_session,
    expire_stale_entries,
    reconcile_sessions,
    sessions_without_presence,
)
from app.presence.services import is_online


class Command(BaseCommand):
    help = "Expire stale searches, end sessions nobody is present for, fix double-bound users"

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than",
            type=float,
            default=None,
            help="seconds a waiting entry may live (default: MATCH_SEARCH_TIMEOUT_SEC)",
        )

    def handle(self, *args, **options):
        # 1) timeout 지난 대기 entry
        expired = expire_stale_entries(options["older_than"])

        # 2) 두 사람 모두 presence lease 가 끊긴 세션
        abandoned = sessions_without_presence(is_online)
        for session_id in abandoned:
            end_session(session_id)

        # 3) 한 유저에 세션이 둘 이상 묶인 경우
        conflicts = reconcile_sessions()

        self.stdout.write(
            self.style.SUCCESS(
                f"expired={expired} abandoned={len(abandoned)} conflicts={len(conflicts)}"
            )
        )
