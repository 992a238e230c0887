import os

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class MatrixConfig(BaseModel):
    homeserver: str
    user: str
    password: str
    feed_room_id: str = ""  # Room that carries the insert-event feed


class DatabaseConfig(BaseModel):
    """Database configuration supporting both PostgreSQL and SQLite."""

    type: str = "postgresql"  # Either 'postgresql' or 'sqlite'
    database: str  # Database name for PostgreSQL or file path for SQLite
    host: str = ""  # Only used for PostgreSQL
    port: int = 5432  # Only used for PostgreSQL
    user: str = ""  # Only used for PostgreSQL
    password: str = ""  # Only used for PostgreSQL

    @property
    def url(self) -> str:
        """Get the database connection URL."""
        if self.type == "sqlite":
            return f"sqlite:///{self.database}"
        elif self.type == "postgresql":
            return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
        else:
            raise ValueError(f"Unsupported database type: {self.type}")


class StorageConfig(BaseModel):
    """MinIO/S3 storage for chat attachments."""

    endpoint_url: str = "http://localhost:9000"
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    region: str = "us-east-1"
    bucket_name: str = "coach-feed"
    prefix: str = "chat-photos"
    public_url: str = "http://localhost:9000/coach-feed"


class FeedConfig(BaseModel):
    user_id: str = ""
    scope: str = "global"  # 'global', 'direct:<peer id>' or 'plan:<plan id>'
    fetch_limit: int = 50
    fallback_email: str = "unknown@user.invalid"
    auto_mark_read: bool = True


class LogConfig(BaseModel):
    file_path: str = "logs/coach_feed.log"
    max_size_mb: int = 10
    backup_count: int = 5
    level: str = "INFO"


class Settings(BaseSettings):
    matrix: MatrixConfig
    database: DatabaseConfig
    storage: StorageConfig = StorageConfig()
    feed: FeedConfig = FeedConfig()
    logging: LogConfig = LogConfig()

    class Config:
        env_nested_delimiter = "__"
        env_file = ".env"

    def __init__(self, **kwargs):
        matrix_config = MatrixConfig(
            homeserver=os.environ.get("MATRIX_HOMESERVER", ""),
            user=os.environ.get("MATRIX_USER", ""),
            password=os.environ.get("MATRIX_PASSWORD", ""),
            feed_room_id=os.environ.get("MATRIX_FEED_ROOM_ID", ""),
        )

        db_type = os.environ.get("DATABASE_TYPE", "postgresql")
        if db_type == "postgresql":
            database_config = DatabaseConfig(
                type="postgresql",
                host=os.environ.get("POSTGRES_HOST", "localhost"),
                port=int(os.environ.get("POSTGRES_PORT", "5432")),
                database=os.environ.get("POSTGRES_DB", ""),
                user=os.environ.get("POSTGRES_USER", ""),
                password=os.environ.get("POSTGRES_PASSWORD", ""),
            )
        elif db_type == "sqlite":
            database_config = DatabaseConfig(
                type="sqlite",
                database=os.environ.get("SQLITE_DB", "coach_feed.db"),
            )
        else:
            raise ValueError(f"Unsupported database type: {db_type}")

        # Keyword arguments win over the environment
        defaults = StorageConfig()
        storage_config = StorageConfig(
            endpoint_url=os.environ.get("STORAGE_ENDPOINT_URL", defaults.endpoint_url),
            access_key=os.environ.get("STORAGE_ACCESS_KEY", defaults.access_key),
            secret_key=os.environ.get("STORAGE_SECRET_KEY", defaults.secret_key),
            region=os.environ.get("STORAGE_REGION", defaults.region),
            bucket_name=os.environ.get("STORAGE_BUCKET_NAME", defaults.bucket_name),
            prefix=os.environ.get("STORAGE_PREFIX", defaults.prefix),
            public_url=os.environ.get("STORAGE_PUBLIC_URL", defaults.public_url),
        )

        feed_defaults = FeedConfig()
        feed_config = FeedConfig(
            user_id=os.environ.get("FEED_USER_ID", feed_defaults.user_id),
            scope=os.environ.get("FEED_SCOPE", feed_defaults.scope),
            fetch_limit=int(os.environ.get("FEED_FETCH_LIMIT", feed_defaults.fetch_limit)),
            fallback_email=os.environ.get("FEED_FALLBACK_EMAIL", feed_defaults.fallback_email),
            auto_mark_read=os.environ.get("FEED_AUTO_MARK_READ", "true").lower() == "true",
        )

        kwargs.setdefault("storage", storage_config)
        kwargs.setdefault("feed", feed_config)
        super().__init__(matrix=matrix_config, database=database_config, **kwargs)
