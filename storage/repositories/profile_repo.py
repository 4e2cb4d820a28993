"""User profile repository (read-only for the dispatch engine)."""

import asyncpg
from config.constants import Segment
from storage.models import UserProfile
from utils.time_utils import to_ms


class ProfileRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_profile(self, user_id: str) -> UserProfile | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, segment, last_activity, notification_preferences
                FROM user_profiles WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        segment = row["segment"]
        return UserProfile(
            id=str(row["user_id"]),
            segment=Segment(segment) if segment in Segment._value2member_map_ else None,
            last_activity=to_ms(row["last_activity"]),
            preferences=row["notification_preferences"] or {},
        )

    async def find_user_ids(self, segment: Segment | None = None) -> list[str]:
        async with self._pool.acquire() as conn:
            if segment is None:
                rows = await conn.fetch(
                    "SELECT user_id FROM user_profiles WHERE notifications_enabled = TRUE"
                )
            else:
                rows = await conn.fetch(
                    """
                    SELECT user_id FROM user_profiles
                    WHERE notifications_enabled = TRUE AND segment = $1
                    """,
                    segment.value,
                )
        return [str(r["user_id"]) for r in rows]
