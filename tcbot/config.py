import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///team_competition.db')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Logging settings
    LOG_DIRECTORY = os.getenv('LOG_DIRECTORY', 'logs')
    LOG_RETENTION_DAYS = int(os.getenv('LOG_RETENTION_DAYS', 14))

    # External stats API settings
    STATS_API_URL = os.getenv('STATS_API_URL', 'https://api2.foldingathome.org')
    STATS_REQUEST_TIMEOUT_SECONDS = float(os.getenv('STATS_REQUEST_TIMEOUT_SECONDS', 10))
    MAXIMUM_HTTP_REQUEST_ATTEMPTS = int(os.getenv('MAXIMUM_HTTP_REQUEST_ATTEMPTS', 2))
    SECONDS_BETWEEN_HTTP_REQUEST_ATTEMPTS = float(os.getenv('SECONDS_BETWEEN_HTTP_REQUEST_ATTEMPTS', 20))

    # Team Competition schedule
    STATS_PARSING_INTERVAL_MINUTES = int(os.getenv('STATS_PARSING_INTERVAL_MINUTES', 60))
    ENABLE_STATS_MONTHLY_RESET = os.getenv('ENABLE_STATS_MONTHLY_RESET', 'False').lower() == 'true'
    ENABLE_MONTHLY_RESULT_STORAGE = os.getenv('ENABLE_MONTHLY_RESULT_STORAGE', 'False').lower() == 'true'
    STATS_RESET_DAY_OF_MONTH = int(os.getenv('STATS_RESET_DAY_OF_MONTH', 3))  # TC starts on the 3rd of the month
    STATS_RESET_TIMEZONE = os.getenv('STATS_RESET_TIMEZONE', 'UTC')

    # Summary cache
    SUMMARY_CACHE_TTL_SECONDS = int(os.getenv('SUMMARY_CACHE_TTL_SECONDS', 3600))

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            # Multi-guild support: comma-separated IDs
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            # Single guild support
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.DISCORD_GUILD_ID and not cls.DISCORD_GUILD_IDS:
            raise ValueError("Either DISCORD_GUILD_ID or DISCORD_GUILD_IDS is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if not 1 <= cls.STATS_RESET_DAY_OF_MONTH <= 28:
            raise ValueError("STATS_RESET_DAY_OF_MONTH must be between 1 and 28")
        if cls.STATS_PARSING_INTERVAL_MINUTES < 1:
            raise ValueError("STATS_PARSING_INTERVAL_MINUTES must be at least 1")
