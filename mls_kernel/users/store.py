"""
User Store — users and their query budgets.

Read by: Query Pipeline + API
Updated by: Query Pipeline (budget decrement) + lazy budget reset on read
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog

from mls_kernel.models.access import User
from mls_kernel.models.engine import EngineConfig

logger = structlog.get_logger()


def apply_budget_reset(user: User, current_time: datetime, config: EngineConfig) -> bool:
    """
    Replenish the budget once the reset instant has passed.

    Sets the budget to the clearance maximum and moves the reset instant one
    interval past `current_time`. Returns True when a reset happened.
    """
    reset_at = user.budget_reset_at
    if reset_at.tzinfo is None:
        reset_at = reset_at.replace(tzinfo=timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)
    if current_time < reset_at:
        return False

    user.query_budget = config.max_budget(user.clearance_level)
    user.budget_reset_at = current_time + timedelta(
        seconds=config.budget_reset_interval_seconds
    )
    return True


class UserStore:
    """
    In-memory user store. Reads hand out copies; the stored record only
    changes through the budget methods.
    """

    def __init__(self, config: Optional[EngineConfig] = None, users: Optional[List[User]] = None):
        self.config = config or EngineConfig()
        self._users: Dict[str, User] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: User) -> None:
        with self._registry_lock:
            self._users[user.id] = user.model_copy(deep=True)

    def list_users(self) -> List[User]:
        with self._registry_lock:
            users = list(self._users.values())
        return [u.model_copy(deep=True) for u in users]

    def budget_lock(self, user_id: str) -> threading.RLock:
        """
        Per-user lock serialising budget read-check-modify. Re-entrant, so a
        caller holding it may still look the user up.
        """
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    def find_by_id(
        self, user_id: str, current_time: Optional[datetime] = None
    ) -> Optional[User]:
        user = self._users.get(user_id)
        if user is None:
            return None
        return self._read(user, current_time)

    def find_by_username(
        self, username: str, current_time: Optional[datetime] = None
    ) -> Optional[User]:
        wanted = username.lower()
        user = next(
            (u for u in self._users.values() if u.username.lower() == wanted), None
        )
        if user is None:
            return None
        return self._read(user, current_time)

    def _read(self, user: User, current_time: Optional[datetime]) -> User:
        if current_time is None:
            current_time = datetime.now(timezone.utc)
        with self.budget_lock(user.id):
            if apply_budget_reset(user, current_time, self.config):
                logger.info(
                    "budget_reset",
                    user_id=user.id,
                    query_budget=user.query_budget,
                    budget_reset_at=user.budget_reset_at.isoformat(),
                )
            return user.model_copy(deep=True)

    def update_budget(
        self, user_id: str, budget: int, reset_at: datetime
    ) -> Optional[User]:
        """Set budget and reset instant together."""
        user = self._users.get(user_id)
        if user is None:
            return None
        with self.budget_lock(user_id):
            user.query_budget = max(0, budget)
            user.budget_reset_at = reset_at
            return user.model_copy(deep=True)

    def decrement_budget(
        self, user_id: str, current_time: Optional[datetime] = None
    ) -> Optional[User]:
        """Reset if due, then spend one unit; never goes below zero."""
        with self.budget_lock(user_id):
            user = self.find_by_id(user_id, current_time)
            if user is None:
                return None
            return self.update_budget(
                user_id, user.query_budget - 1, user.budget_reset_at
            )
