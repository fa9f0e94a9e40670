"""API routers."""
from rewards_backend.routers import events, health, reward_questions

__all__ = ["events", "health", "reward_questions"]
