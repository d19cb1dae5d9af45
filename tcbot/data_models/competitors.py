"""
Read-only references to the hardware, teams and users taking part in the Team Competition.

These are snapshots of the catalog rows. The stats engine never mutates them; catalog
changes are handled through the reconciliation calls in the stats calculator.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

SECRET_KEY_LENGTH_NOT_TO_MASK = 8
SECRET_KEY_MASK = "*" * 24


class Category(Enum):
    """User categories, each with its own leaderboard."""
    AMD_GPU = "amd_gpu"
    NVIDIA_GPU = "nvidia_gpu"
    WILDCARD = "wildcard"

    @classmethod
    def get(cls, value: str) -> Optional["Category"]:
        for category in cls:
            if category.name.lower() == value.lower() or category.value == value.lower():
                return category
        return None


class Role(Enum):
    CAPTAIN = "captain"
    MEMBER = "member"


@dataclass(frozen=True)
class HardwareRef:
    id: int
    name: str
    multiplier: float = 1.0
    average_score: int = 0
    display_name: Optional[str] = None

    def __post_init__(self):
        if self.multiplier < 0:
            raise ValueError(f"Hardware multiplier cannot be negative: {self.multiplier}")


@dataclass(frozen=True)
class TeamRef:
    id: int
    name: str
    description: Optional[str] = None
    forum_link: Optional[str] = None


@dataclass(frozen=True)
class UserRef:
    id: int
    account_name: str
    display_name: str
    secret_key: str
    category: Category
    hardware: HardwareRef
    team: TeamRef
    role: Role = Role.MEMBER
    is_active: bool = True

    @property
    def is_captain(self) -> bool:
        return self.role == Role.CAPTAIN

    def is_secret_key_masked(self) -> bool:
        """A blank or masked secret key cannot authenticate against the stats API."""
        return not self.secret_key or not self.secret_key.strip() or SECRET_KEY_MASK in self.secret_key

    def masked(self) -> "UserRef":
        """Copy of this user with all but the first few characters of the secret key hidden."""
        if self.is_secret_key_masked():
            return self
        visible = self.secret_key[:SECRET_KEY_LENGTH_NOT_TO_MASK]
        return replace(self, secret_key=visible + SECRET_KEY_MASK)

    def __repr__(self):
        return (
            f"<UserRef(id={self.id}, display_name='{self.display_name}', account_name='{self.account_name}', "
            f"hardware='{self.hardware.name}', team='{self.team.name}')>"
        )
