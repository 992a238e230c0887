import asyncio
from typing import Optional, Sequence

from nio import AsyncClient, LoginResponse
from sqlalchemy import create_engine

from .config import Settings
from .feed import MatrixEventFeed
from .gateway import SqlMessageGateway
from .logger import get_logger, setup_logging
from .models import AuthorSnapshot, Message, Role, Scope
from .schema import Base
from .storage import S3BlobStorage
from .synchronizer import Synchronizer

logger = get_logger(__name__)


class FeedApp:
    """Wires the gateway, blob storage and Matrix feed together from settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings: Settings = settings
        self.matrix_client: AsyncClient = AsyncClient(
            settings.matrix.homeserver, settings.matrix.user
        )
        self.engine = create_engine(settings.database.url)
        Base.metadata.create_all(self.engine)

        self.feed = MatrixEventFeed(self.matrix_client, settings.matrix.feed_room_id)
        self.gateway = SqlMessageGateway(self.engine, on_insert=self.feed.publish)
        self.storage = S3BlobStorage(settings.storage)
        self._seen: set[str] = set()

    async def connect_to_matrix(self) -> None:
        """Log in to the Matrix server that carries the feed"""
        logger.info(f"Logging in to Matrix as {self.settings.matrix.user}...")
        response = await self.matrix_client.login(password=self.settings.matrix.password)
        if not isinstance(response, LoginResponse):
            logger.error(f"Failed to log in: {response}")
            raise Exception(f"Failed to log in: {response}")
        logger.info("Successfully logged in")

    def synchronizer(self, user_id: str) -> Synchronizer:
        feed_settings = self.settings.feed
        return Synchronizer(
            gateway=self.gateway,
            storage=self.storage,
            feed=self.feed,
            current_user_id=user_id,
            fetch_limit=feed_settings.fetch_limit,
            fallback_author=AuthorSnapshot(email=feed_settings.fallback_email, role=Role.TRAINEE),
            auto_mark_read=feed_settings.auto_mark_read,
        )

    def log_new_messages(self, snapshot: Sequence[Message]) -> None:
        for message in snapshot:
            if message.id in self._seen:
                continue
            self._seen.add(message.id)
            if message.author is not None:
                author = message.author.display_name or message.author.email
            else:
                author = message.author_id
            attachment = f" [{message.attachment_url}]" if message.attachment_url else ""
            logger.info(f"{message.created_at.isoformat()} {author}: {message.body or ''}{attachment}")

    async def run(self, user_id: Optional[str] = None, scope: Optional[Scope] = None) -> None:
        """Follow one scope and log its messages until cancelled"""
        user_id = user_id or self.settings.feed.user_id
        if not user_id:
            raise ValueError("FEED_USER_ID is required")
        scope = scope or Scope.parse(self.settings.feed.scope, user_id)

        await self.connect_to_matrix()
        # Skip the backlog so the first sync only delivers new events
        await self.matrix_client.sync(timeout=0, full_state=True)

        sync = self.synchronizer(user_id)
        sync.add_listener(self.log_new_messages)
        result = await sync.activate(scope)
        if not result.ok:
            raise result.error

        logger.info(f"Following {scope} as {user_id}; starting sync loop...")
        try:
            await self.matrix_client.sync_forever(timeout=30000)
        finally:
            await sync.deactivate()

    async def close(self) -> None:
        await self.matrix_client.close()
        await self.storage.close()
        self.engine.dispose()


async def main() -> None:
    settings: Settings = Settings()

    setup_logging(settings)
    logger.info("Starting coach feed")

    app: FeedApp = FeedApp(settings)
    try:
        await app.run()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        await app.close()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
