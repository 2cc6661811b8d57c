from __future__ import annotations

from domain.errors import BrowserConnectionError
from domain.models import AcquireMode, ConnectionState, Session
from domain.ports import BrowserDriverPort, IdGeneratorPort, LoggerPort


class SessionManager:
    """
    Owns the lifecycle of the one browser connection.

    A session survives across turns: finishing a task never closes it.
    Only an explicit close from the operator or orchestrator does.
    """

    def __init__(
        self,
        *,
        driver: BrowserDriverPort,
        id_generator: IdGeneratorPort,
        logger: LoggerPort,
        endpoint: str | None = None,
    ) -> None:
        self._driver = driver
        self._id_generator = id_generator
        self._logger = logger
        self._endpoint = endpoint
        self._session = Session(session_id=id_generator.new_correlation_id())
        self._lost = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def driver(self) -> BrowserDriverPort:
        return self._driver

    def require(self) -> Session:
        if not self._session.is_live:
            raise BrowserConnectionError(
                f"No live browser session (state={self._session.state.value}).",
            )
        return self._session

    async def acquire(self, mode: AcquireMode = AcquireMode.AUTO) -> Session:
        if self._session.is_live:
            return self._session
        if self._session.state is ConnectionState.CLOSED:
            self._session = Session(session_id=self._id_generator.new_correlation_id())

        session = self._session
        session.state = ConnectionState.CONNECTING
        errors: list[str] = []

        if mode in (AcquireMode.AUTO, AcquireMode.ATTACH) and self._endpoint:
            try:
                await self._driver.connect(self._endpoint)
            except Exception as exc:
                errors.append(f"attach {self._endpoint}: {exc}")
                self._logger.warning(
                    "session_attach_failed",
                    endpoint=self._endpoint,
                    error=str(exc),
                )
            else:
                return self._started(session, ConnectionState.ATTACHED, self._endpoint)
        elif mode is AcquireMode.ATTACH:
            errors.append("attach: no remote endpoint configured")

        if mode in (AcquireMode.AUTO, AcquireMode.LAUNCH):
            try:
                await self._driver.launch()
            except Exception as exc:
                errors.append(f"launch: {exc}")
                self._logger.error("session_launch_failed", error=str(exc))
            else:
                return self._started(session, ConnectionState.LAUNCHED, None)

        session.state = ConnectionState.DISCONNECTED
        raise BrowserConnectionError("; ".join(errors) or "No connection route available.")

    async def release(self, *, explicit: bool = False) -> None:
        """Close only when the operator or orchestrator explicitly asked."""
        if not explicit:
            return
        self._session.close_requested = True
        await self.close()

    async def close(self) -> None:
        if self._session.state is ConnectionState.CLOSED:
            return
        if self._session.is_live:
            await self._driver.close()
        self._session.state = ConnectionState.CLOSED
        self._lost = False
        self._logger.info("session_closed", session_id=self._session.session_id)

    async def replace(self, mode: AcquireMode = AcquireMode.AUTO) -> Session:
        """Swap in a fresh session; the only path that resets the DOM version."""
        await self.close()
        return await self.acquire(mode)

    async def recover(self, mode: AcquireMode = AcquireMode.AUTO) -> Session | None:
        """Reconnect a session that dropped; a session that was never live stays as it is."""
        if not self._lost:
            return None
        return await self.acquire(mode)

    def mark_lost(self) -> None:
        if self._session.is_live:
            self._lost = True
            self._session.state = ConnectionState.DISCONNECTED
            self._logger.warning("session_lost", session_id=self._session.session_id)

    def _started(
        self,
        session: Session,
        state: ConnectionState,
        endpoint: str | None,
    ) -> Session:
        session.state = state
        session.endpoint = endpoint
        # A reconnect after a lost connection keeps counting forward.
        session.dom_version = session.dom_version + 1 if session.dom_version else 1
        session.close_requested = False
        self._lost = False
        self._logger.info(
            "session_acquired",
            session_id=session.session_id,
            state=state.value,
            endpoint=endpoint or "-",
        )
        return session
