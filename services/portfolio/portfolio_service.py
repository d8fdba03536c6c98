# services/portfolio/portfolio_service.py
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from schemas.etf import ErrorKind, EtfProfile
from schemas.portfolio import Position
from services.alphavantage.etf_profile_service import EtfProfileService, ProfileFetchError
from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)


class PortfolioService:
    """
    In-memory position collection.

    add_position returns the pending position right away and resolves its
    profile in a background task. Results are applied by id, so a position
    removed while its fetch is in flight just drops the late result.
    """

    def __init__(self, profiles: EtfProfileService):
        self.profiles = profiles
        self._positions: Dict[str, Position] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    def list_positions(self) -> List[Position]:
        return list(self._positions.values())

    def get_position(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def __len__(self) -> int:
        return len(self._positions)

    async def add_position(self, ticker: str, equity: float, api_key: str) -> Position:
        position = Position(id=uuid.uuid4().hex, ticker=normalize_ticker(ticker), equity=float(equity))
        self._positions[position.id] = position

        task = asyncio.ensure_future(self._resolve(position.id, position.ticker, api_key))
        self._tasks[position.id] = task
        task.add_done_callback(lambda _t, pid=position.id: self._tasks.pop(pid, None))
        return position

    def remove_position(self, position_id: str) -> bool:
        return self._positions.pop(position_id, None) is not None

    async def wait_idle(self) -> None:
        """Wait for every fetch started so far (and any started meanwhile)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def wait_for(self, position_id: str) -> Optional[Position]:
        task = self._tasks.get(position_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_position(position_id)

    async def _resolve(self, position_id: str, ticker: str, api_key: str) -> None:
        try:
            profile = await self.profiles.fetch(ticker, api_key)
        except ProfileFetchError as e:
            self._apply(position_id, error=e.kind, message=e.message)
        except Exception as e:
            logger.exception("unexpected failure fetching %s", ticker)
            self._apply(position_id, error=ErrorKind.TRANSPORT, message=str(e) or "Failed to fetch")
        else:
            self._apply(position_id, profile=profile)

    def _apply(
        self,
        position_id: str,
        *,
        profile: Optional[EtfProfile] = None,
        error: Optional[ErrorKind] = None,
        message: Optional[str] = None,
    ) -> None:
        current = self._positions.get(position_id)
        if current is None:
            logger.debug("dropping fetch result for removed position %s", position_id)
            return
        self._positions[position_id] = current.model_copy(
            update={"profile": profile, "error": error, "error_message": message}
        )
