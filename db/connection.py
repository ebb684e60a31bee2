# db/connection.py
import asyncio
import logging
from typing import Callable, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorClient

from errors import ConnectionFailed

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Owns the single MongoDB client shared by every request.

    The first caller of `get_database()` starts the connection and every
    caller arriving while it is in flight awaits the same task. A failed
    attempt is forgotten so the next call starts over.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        unique_email_collections: Iterable[str] = (),
        client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient,
        server_selection_timeout_ms: int = 5000,
    ):
        self.uri = uri
        self.db_name = db_name
        self.unique_email_collections = list(unique_email_collections)
        self.client_factory = client_factory
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client = None
        self._db = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def get_database(self):
        if self._db is not None:
            return self._db

        # No await between the check and the assignment, so concurrent
        # callers on the event loop always see the same pending task.
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._connect())
        return await asyncio.shield(self._pending)

    async def _connect(self):
        client = None
        try:
            client = self.client_factory(
                self.uri,
                tz_aware=True,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
            await client.admin.command("ping")
            db = client[self.db_name]
            for collection in self.unique_email_collections:
                await db[collection].create_index("email", unique=True)
                logger.info(f"Ensured unique email index on {collection}")
        except asyncio.CancelledError:
            if client is not None:
                client.close()
            raise
        except Exception as e:
            logger.error(f"MongoDB connection failed: {e!r}")
            if client is not None:
                client.close()
            raise ConnectionFailed() from e
        finally:
            # close() may already have replaced the marker with a newer attempt
            if self._pending is asyncio.current_task():
                self._pending = None

        self._client = client
        self._db = db
        logger.info(f"MongoDB connected successfully (database: {self.db_name})")
        return db

    async def close(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._client is not None:
            self._client.close()
            logger.info("MongoDB connection closed")
        self._client = None
        self._db = None
