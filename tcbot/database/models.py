from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Float, BigInteger, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from tcbot.data_models.competitors import Category, HardwareRef, Role, TeamRef, UserRef

Base = declarative_base()


class Hardware(Base):
    __tablename__ = 'hardware'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)
    display_name = Column(String(200))
    multiplier = Column(Float, nullable=False, default=1.0)
    average_score = Column(BigInteger, nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('multiplier >= 0', name='ck_hardware_multiplier_non_negative'),
    )

    def to_ref(self) -> HardwareRef:
        return HardwareRef(
            id=self.id,
            name=self.name,
            multiplier=self.multiplier,
            average_score=self.average_score or 0,
            display_name=self.display_name,
        )

    def __repr__(self):
        return f"<Hardware(name='{self.name}', multiplier={self.multiplier})>"


class Team(Base):
    __tablename__ = 'teams'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)
    forum_link = Column(String(500))

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    users = relationship("User", back_populates="team")

    def to_ref(self) -> TeamRef:
        return TeamRef(
            id=self.id,
            name=self.name,
            description=self.description,
            forum_link=self.forum_link,
        )

    def __repr__(self):
        return f"<Team(name='{self.name}')>"


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    account_name = Column(String(150), nullable=False)
    display_name = Column(String(150), nullable=False)
    secret_key = Column(String(100), nullable=False)
    category = Column(SQLEnum(Category), nullable=False)
    role = Column(SQLEnum(Role), nullable=False, default=Role.MEMBER)
    hardware_id = Column(Integer, ForeignKey('hardware.id'), nullable=False)
    team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    is_active = Column(Boolean, default=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    hardware = relationship("Hardware")
    team = relationship("Team", back_populates="users")

    # An account and secret key can only be registered once
    __table_args__ = (UniqueConstraint('account_name', 'secret_key'),)

    def to_ref(self) -> UserRef:
        """Requires hardware and team to be loaded."""
        return UserRef(
            id=self.id,
            account_name=self.account_name,
            display_name=self.display_name,
            secret_key=self.secret_key,
            category=self.category,
            hardware=self.hardware.to_ref(),
            team=self.team.to_ref(),
            role=self.role,
            is_active=bool(self.is_active),
        )

    def __repr__(self):
        return f"<User(display_name='{self.display_name}', account_name='{self.account_name}')>"


class UserInitialStats(Base):
    """Lifetime stats at the start of the competition (or the last state change)."""
    __tablename__ = 'user_initial_stats'

    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    points = Column(BigInteger, nullable=False, default=0)
    units = Column(Integer, nullable=False, default=0)


class UserTotalStats(Base):
    """Most recent lifetime stats retrieved from the stats API."""
    __tablename__ = 'user_total_stats'

    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    points = Column(BigInteger, nullable=False, default=0)
    units = Column(Integer, nullable=False, default=0)


class UserOffsetStats(Base):
    """Signed correction applied to a user's TC stats. Null points sides were not provided."""
    __tablename__ = 'user_offset_stats'

    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    points_offset = Column(BigInteger, nullable=True)
    multiplied_points_offset = Column(BigInteger, nullable=True)
    units_offset = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class UserTcStatsHourly(Base):
    """Latest TC stats for a user, replaced on every stats pass."""
    __tablename__ = 'user_tc_stats_hourly'

    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    points = Column(BigInteger, nullable=False, default=0)
    multiplied_points = Column(BigInteger, nullable=False, default=0)
    units = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint('points >= 0', name='ck_tc_points_non_negative'),
        CheckConstraint('multiplied_points >= 0', name='ck_tc_multiplied_points_non_negative'),
        CheckConstraint('units >= 0', name='ck_tc_units_non_negative'),
    )


class RetiredUserStats(Base):
    """TC stats of a user who left a team, still counted for that team until the next reset."""
    __tablename__ = 'retired_user_stats'

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    display_name = Column(String(150), nullable=False)
    points = Column(BigInteger, nullable=False, default=0)
    multiplied_points = Column(BigInteger, nullable=False, default=0)
    units = Column(Integer, nullable=False, default=0)
    retired_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<RetiredUserStats(team_id={self.team_id}, display_name='{self.display_name}')>"


class MonthlyResultRecord(Base):
    """Leaderboards stored at the end of a competition month."""
    __tablename__ = 'monthly_results'

    id = Column(Integer, primary_key=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    result = Column(Text, nullable=False)  # JSON of MonthlyResult.to_dict()
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('year', 'month', name='uq_monthly_result_year_month'),
        CheckConstraint('month >= 1 AND month <= 12', name='ck_monthly_result_month'),
    )

    def __repr__(self):
        return f"<MonthlyResultRecord(year={self.year}, month={self.month})>"
