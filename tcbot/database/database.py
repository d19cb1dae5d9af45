from typing import Optional, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select, update, func
from contextlib import asynccontextmanager

from tcbot.config import Config
from tcbot.data_models.competitors import Category, HardwareRef, Role, TeamRef, UserRef
from tcbot.database.models import Base, Hardware, Team, User
from tcbot.utils.exceptions import NotFoundError
from tcbot.utils.logger import setup_logger


class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.session_factory = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Hardware operations
    async def create_hardware(self, name: str, multiplier: float = 1.0,
                              display_name: str = None, average_score: int = 0) -> HardwareRef:
        """Create a new hardware entry"""
        async with self.get_session() as session:
            hardware = Hardware(
                name=name,
                display_name=display_name or name,
                multiplier=multiplier,
                average_score=average_score
            )
            session.add(hardware)
            await session.commit()
            await session.refresh(hardware)
            return hardware.to_ref()

    async def get_hardware(self, hardware_id: int) -> Optional[HardwareRef]:
        """Get hardware by ID"""
        async with self.get_session() as session:
            hardware = await session.get(Hardware, hardware_id)
            return hardware.to_ref() if hardware else None

    async def get_hardware_by_name(self, name: str) -> Optional[HardwareRef]:
        """Get hardware by name (case insensitive)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Hardware).where(func.lower(Hardware.name) == func.lower(name))
            )
            hardware = result.scalar_one_or_none()
            return hardware.to_ref() if hardware else None

    async def update_hardware(self, hardware_id: int, **kwargs) -> HardwareRef:
        """Update hardware fields and return the updated hardware"""
        async with self.get_session() as session:
            await session.execute(
                update(Hardware)
                .where(Hardware.id == hardware_id)
                .values(**kwargs)
            )
            await session.commit()

        hardware = await self.get_hardware(hardware_id)
        if not hardware:
            raise NotFoundError("Hardware", hardware_id)
        return hardware

    # Team operations
    async def create_team(self, name: str, description: str = None, forum_link: str = None) -> TeamRef:
        """Create a new team"""
        async with self.get_session() as session:
            team = Team(name=name, description=description, forum_link=forum_link)
            session.add(team)
            await session.commit()
            await session.refresh(team)
            return team.to_ref()

    async def get_all_teams(self) -> List[TeamRef]:
        """Get all teams ordered by name"""
        async with self.get_session() as session:
            result = await session.execute(select(Team).order_by(Team.name))
            return [team.to_ref() for team in result.scalars().all()]

    async def get_team_by_name(self, name: str) -> Optional[TeamRef]:
        """Get a team by name (case insensitive)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Team).where(func.lower(Team.name) == func.lower(name))
            )
            team = result.scalar_one_or_none()
            return team.to_ref() if team else None

    # User operations
    async def create_user(self, account_name: str, display_name: str, secret_key: str,
                          category: Category, hardware_id: int, team_id: int,
                          role: Role = Role.MEMBER) -> UserRef:
        """Create a new user"""
        async with self.get_session() as session:
            user = User(
                account_name=account_name,
                display_name=display_name,
                secret_key=secret_key,
                category=category,
                hardware_id=hardware_id,
                team_id=team_id,
                role=role
            )
            session.add(user)
            await session.commit()
            user_id = user.id

        return await self.get_user(user_id)

    async def get_user(self, user_id: int) -> Optional[UserRef]:
        """Get a user by ID with hardware and team loaded"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.hardware), selectinload(User.team))
                .where(User.id == user_id)
            )
            user = result.scalar_one_or_none()
            return user.to_ref() if user else None

    async def get_user_by_display_name(self, display_name: str) -> Optional[UserRef]:
        """Get a user by display name (case insensitive), whether active or not"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.hardware), selectinload(User.team))
                .where(func.lower(User.display_name) == func.lower(display_name))
                .order_by(User.id)
            )
            user = result.scalars().first()
            return user.to_ref() if user else None

    async def get_active_users(self) -> List[UserRef]:
        """Get all active users across every team"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.hardware), selectinload(User.team))
                .where(User.is_active == True)
                .order_by(User.id)
            )
            return [user.to_ref() for user in result.scalars().all()]

    async def get_users_on_team(self, team_id: int) -> List[UserRef]:
        """Get the active users on a team"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.hardware), selectinload(User.team))
                .where((User.team_id == team_id) & (User.is_active == True))
                .order_by(User.id)
            )
            return [user.to_ref() for user in result.scalars().all()]

    async def get_users_with_hardware(self, hardware_id: int) -> List[UserRef]:
        """Get the active users running a given piece of hardware"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.hardware), selectinload(User.team))
                .where((User.hardware_id == hardware_id) & (User.is_active == True))
                .order_by(User.id)
            )
            return [user.to_ref() for user in result.scalars().all()]

    async def update_user(self, user_id: int, **kwargs) -> UserRef:
        """Update user fields and return the updated user"""
        async with self.get_session() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(**kwargs)
            )
            await session.commit()

        user = await self.get_user(user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return user
