"""One read-model projector per signed-in chat."""

from database.store import DocumentStore
from services.identity import Identity, IdentityProvider
from services.projector import ReadModelProjector
from utils.logger import logger


class SessionRegistry:
    """Opens a projector on sign-in, follows identity changes and closes it on sign-out."""

    def __init__(self, store: DocumentStore, app_id: str, identity_provider: IdentityProvider):
        self.store = store
        self.app_id = app_id
        self._projectors: dict[int, ReadModelProjector] = {}
        self._unsubscribe = identity_provider.on_auth_state_changed(self._on_auth_state_changed)

    def get(self, session_key: int) -> ReadModelProjector | None:
        return self._projectors.get(session_key)

    def __len__(self) -> int:
        return len(self._projectors)

    async def ensure(self, session_key: int, identity: Identity) -> ReadModelProjector:
        """
        Make sure the session has live read models for `identity`.

        Sign-in only notifies on a change of identity, so a session whose
        projector failed to open is repaired here on the next /start.

        Raises:
            StoreError: the store could not deliver the initial snapshots
        """
        projector = self._projectors.get(session_key)
        if projector is None or not projector.ready or projector.identity != identity:
            await self._open(session_key, identity)
        return self._projectors[session_key]

    async def _on_auth_state_changed(self, session_key: int, identity: Identity | None) -> None:
        if identity is None:
            projector = self._projectors.pop(session_key, None)
            if projector is not None:
                await projector.set_identity(None)
                await projector.close()
                logger.info(f"Closed read models for session {session_key}")
            return

        await self._open(session_key, identity)

    async def _open(self, session_key: int, identity: Identity) -> None:
        projector = self._projectors.get(session_key)
        if projector is None:
            projector = ReadModelProjector(self.store, self.app_id)
            projector.add_listener(self._view_logger(session_key))
            await projector.start()
            self._projectors[session_key] = projector
            logger.info(f"Opened read models for session {session_key}")

        await projector.set_identity(identity)

    @staticmethod
    def _view_logger(session_key: int):
        async def log_refresh(view: str) -> None:
            logger.debug(f"Session {session_key}: {view} view refreshed")

        return log_refresh

    async def close_all(self) -> None:
        self._unsubscribe()
        for projector in self._projectors.values():
            await projector.close()
        self._projectors.clear()
        logger.info("All read models closed")
