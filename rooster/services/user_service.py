from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from rooster.db.models import User


class UserService:
    """Read-only access to the user population for the event pipeline."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def find_users_by_timezone(self, timezone: str) -> List[User]:
        result = self.db.execute(select(User).where(User.timezone == timezone))
        return list(result.scalars().all())

    def list_timezones(self) -> List[str]:
        """Distinct timezones currently in use."""
        result = self.db.execute(select(User.timezone).distinct())
        return [tz for tz in result.scalars().all() if tz]

    def get_stats(self) -> Dict[str, Any]:
        total = self.db.scalar(select(func.count()).select_from(User)) or 0
        rows = self.db.execute(
            select(User.timezone, func.count().label("count")).group_by(User.timezone)
        ).all()

        return {
            "total": total,
            "by_timezone": [
                {"timezone": timezone, "count": count} for timezone, count in rows
            ],
        }
