"""Database models."""
from rewards_backend.models.user import UserAccount
from rewards_backend.models.reward_question import RewardQuestion
from rewards_backend.models.attempt import RewardQuestionAttempt
from rewards_backend.models.winner import InstantRewardWinner
from rewards_backend.models.points_transaction import PointsTransaction
from rewards_backend.models.reward_event import RewardEvent

__all__ = [
    "UserAccount",
    "RewardQuestion",
    "RewardQuestionAttempt",
    "InstantRewardWinner",
    "PointsTransaction",
    "RewardEvent",
]
