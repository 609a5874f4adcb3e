"""Backtest service: builds DB, market data and replay sessions from Settings."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from backtest_replay.db.engine import create_db_engine, create_schema, create_session_factory
from backtest_replay.db.repository import StrategyRepository, TradeRepository
from backtest_replay.engine.replay_engine import ReplayEngine
from backtest_replay.engine.session import BacktestSession
from backtest_replay.journal.trade_log import TradeLog
from backtest_replay.market_data.binance_rest import BinanceRestClient
from backtest_replay.market_data.candle_store import CandleStore
from backtest_replay.market_data.ws_live import BinanceLiveFeed

if TYPE_CHECKING:
    from backtest_replay.config import Settings
    from backtest_replay.models.effects import ChartEffect
    from backtest_replay.models.strategy import BacktestStrategy

logger = structlog.get_logger()


class BacktestService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.trade_repo: TradeRepository | None = None
        self.strategy_repo: StrategyRepository | None = None
        self.rest = BinanceRestClient(
            base_url=settings.BINANCE_REST_URL,
            page_limit=settings.CANDLE_PAGE_LIMIT,
            max_pages=settings.CANDLE_MAX_PAGES,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        self.live = BinanceLiveFeed(url=settings.BINANCE_WS_URL)
        self._engine = None
        self._sessions: list[BacktestSession] = []

    async def start(self) -> None:
        """Connect to the database and create missing tables."""
        # Repositories may be injected before start() (tests)
        if self.trade_repo is None or self.strategy_repo is None:
            self._engine = create_db_engine(
                self.settings.DATABASE_URL,
                pool_size=self.settings.DB_POOL_SIZE,
                max_overflow=self.settings.DB_MAX_OVERFLOW,
                pool_recycle=self.settings.DB_POOL_RECYCLE,
                pool_timeout=self.settings.DB_POOL_TIMEOUT,
            )
            await create_schema(self._engine)
            session_factory = create_session_factory(self._engine)
            self.trade_repo = TradeRepository(session_factory)
            self.strategy_repo = StrategyRepository(session_factory)
        logger.info("backtest_service_started")

    async def stop(self) -> None:
        for session in self._sessions:
            if session.candle_store is not None:
                session.candle_store.close()
        self._sessions.clear()
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        logger.info("backtest_service_stopped")

    async def open_session(
        self,
        symbol: str,
        interval: str,
        strategy_id: str,
        user_id: str,
        on_effects: Callable[[list[ChartEffect]], None] | None = None,
    ) -> BacktestSession:
        """Build a replay session and load its trades and candle history."""
        if interval not in self.settings.INTERVALS:
            raise ValueError(f"Unsupported interval: {interval}")
        if self.trade_repo is None:
            raise RuntimeError("BacktestService not started")
        engine = ReplayEngine(
            symbol=symbol,
            interval=interval,
            strategy_id=strategy_id,
            user_id=user_id,
            default_size=self.settings.DEFAULT_POSITION_SIZE,
            epsilon=self.settings.BREAKEVEN_EPSILON,
        )
        session = BacktestSession(
            engine=engine,
            trade_log=TradeLog(self.trade_repo, strategy_id=strategy_id, owner_id=user_id),
            candle_store=CandleStore(self.rest, self.live),
            on_effects=on_effects,
        )
        await session.load()
        self._sessions.append(session)
        logger.info(
            "backtest_session_opened",
            symbol=symbol,
            interval=interval,
            strategy_id=strategy_id,
        )
        return session

    async def close_session(self, session: BacktestSession) -> None:
        """Stop replay (persisting a force-closed trade) and drop the live feed."""
        await session.stop()
        if session.candle_store is not None:
            session.candle_store.close()
        if session in self._sessions:
            self._sessions.remove(session)

    # --- Strategies ---

    async def create_strategy(self, user_id: str, data: dict) -> BacktestStrategy:
        if not data.get("currency"):
            data = {**data, "currency": self.settings.DEFAULT_CURRENCY}
        return await self.strategy_repo.create(user_id, data)

    async def list_strategies(self, user_id: str) -> list[BacktestStrategy]:
        return await self.strategy_repo.list_with_stats(user_id, self.trade_repo)

    async def update_strategy(self, strategy_id: str, data: dict) -> None:
        await self.strategy_repo.update(strategy_id, data)

    async def delete_strategy(self, strategy_id: str) -> None:
        await self.strategy_repo.delete(strategy_id)
