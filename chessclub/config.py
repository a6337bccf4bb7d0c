import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Chess club engine configuration settings"""
    
    # Discord settings (admin bot)
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///chessclub.db')
    BACKING_STORE_TIMEOUT_SECONDS = float(os.getenv('BACKING_STORE_TIMEOUT_SECONDS', 10))
    
    # Cache settings
    REDIS_URL = os.getenv('REDIS_URL')  # Optional, in-process cache when unset
    CACHE_MAX_ENTRIES = int(os.getenv('CACHE_MAX_ENTRIES', 500))
    CACHE_STALE_RETENTION_SECONDS = int(os.getenv('CACHE_STALE_RETENTION_SECONDS', 86400))
    CACHE_TTL_RANKINGS = 3600   # 1 hour
    CACHE_TTL_GAMES = 1800      # 30 minutes
    CACHE_TTL_MEMBERS = 14400   # 4 hours
    CACHE_TTL_LADDER = 600      # 10 minutes
    
    # Quota circuit breaker
    QUOTA_COOLDOWN_SECONDS = int(os.getenv('QUOTA_COOLDOWN_SECONDS', 300))  # 5 minutes
    
    # API settings
    ADMIN_SECRET = os.getenv('ADMIN_SECRET')
    
    # General
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    
    # Rating settings
    DEFAULT_RATING = 1000
    K_FACTOR = 32
    
    @classmethod
    def async_database_url(cls, database_url: str = None) -> str:
        """Convert a sync sqlite URL to its aiosqlite form"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return url
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present for the admin bot"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.QUOTA_COOLDOWN_SECONDS <= 0:
            raise ValueError("QUOTA_COOLDOWN_SECONDS must be positive")
        if cls.BACKING_STORE_TIMEOUT_SECONDS <= 0:
            raise ValueError("BACKING_STORE_TIMEOUT_SECONDS must be positive")
