"""Price alert rule repository."""

import asyncpg
from typing import Any
from storage.models import AlertRule
from utils.time_utils import from_ms, to_ms


def _row_to_rule(row: Any) -> AlertRule:
    data = dict(row)
    data["last_triggered_at"] = to_ms(data.get("last_triggered_at"))
    data["expires_at"] = to_ms(data.get("expires_at"))
    return AlertRule.from_record(data)


class AlertRuleRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def find_active_alerts(self) -> list[AlertRule]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM price_alerts
                WHERE status = 'active' AND enabled = TRUE
                  AND (expires_at IS NULL OR expires_at > NOW())
                """
            )
        return [_row_to_rule(r) for r in rows]

    async def find_alert_user_ids(self) -> list[str]:
        """Users owning at least one active rule."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT DISTINCT user_id FROM price_alerts
                WHERE status = 'active' AND enabled = TRUE
                ORDER BY user_id
                """
            )
        return [r["user_id"] for r in rows]

    async def record_trigger(self, rule: AlertRule) -> None:
        """Persist trigger bookkeeping and append the latest history record."""
        last = rule.history[-1] if rule.history else None
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE price_alerts
                    SET trigger_count = $2, last_triggered_at = $3,
                        status = $4, enabled = $5, updated_at = NOW()
                    WHERE id = $1
                    """,
                    rule.id,
                    rule.trigger_count,
                    from_ms(rule.last_triggered_at),
                    rule.status.value,
                    rule.enabled,
                )
                if last is not None:
                    await conn.execute(
                        """
                        INSERT INTO price_alert_triggers
                            (alert_id, triggered_at, price, price_change_percent, volume)
                        VALUES ($1, $2, $3, $4, $5)
                        """,
                        rule.id,
                        from_ms(last.triggered_at),
                        last.price,
                        last.price_change_percent,
                        last.volume,
                    )
