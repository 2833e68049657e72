"""Database storage for orders, trades, holdings and copy-trading data."""
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import structlog
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Numeric, String, Text, UniqueConstraint, select
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from tradedesk.core.config import database_config
from tradedesk.core.models import (
    Agent, AssetType, BlockchainTransaction, ChangeEventType,
    CopyTradingSetting, Holding, Notification, Order, OrderSide,
    OrderSource, OrderStatus, OrderType, PortfolioTransaction, TimeInForce,
    Trade, TransactionType
)
from tradedesk.realtime.changes import ChangeEvent, ChangeFeed

logger = structlog.get_logger(__name__)

Base = declarative_base()


class Money(TypeDecorator):
    """Exact decimal column.

    SQLite has no decimal type, so values are kept as text there and as
    NUMERIC(36, 18) everywhere else.
    """
    impl = Numeric(36, 18)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(36, 18))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


class AgentModel(Base):
    """SQLAlchemy model for tradeable agents."""
    __tablename__ = 'agents'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    symbol = Column(String, nullable=False)
    price = Column(Money, nullable=False)
    exchange_symbol = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow)


class OrderModel(Base):
    """SQLAlchemy model for orders."""
    __tablename__ = 'orders'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=False)
    order_type = Column(String, nullable=False)
    side = Column(String, nullable=False)
    amount = Column(Money, nullable=False)
    price = Column(Money, nullable=True)
    trigger_price = Column(Money, nullable=True)
    status = Column(String, nullable=False, index=True)
    filled_amount = Column(Money, default=Decimal("0"))
    average_fill_price = Column(Money, nullable=True)
    fees = Column(Money, default=Decimal("0"))
    stop_loss_price = Column(Money, nullable=True)
    take_profit_price = Column(Money, nullable=True)
    time_in_force = Column(String, nullable=False, default="GTC")
    order_source = Column(String, nullable=False, default="manual")
    parent_order_id = Column(String, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)


class TradeModel(Base):
    """SQLAlchemy model for executions."""
    __tablename__ = 'trades'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    order_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=False)
    side = Column(String, nullable=False)
    quantity = Column(Money, nullable=False)
    price = Column(Money, nullable=False)
    total_amount = Column(Money, nullable=False)
    fees = Column(Money, default=Decimal("0"))
    pnl = Column(Money, nullable=True)
    exchange = Column(String, nullable=True)
    executed_at = Column(DateTime, default=datetime.utcnow)


class HoldingModel(Base):
    """SQLAlchemy model for portfolio holdings."""
    __tablename__ = 'portfolio_holdings'
    __table_args__ = (
        UniqueConstraint('user_id', 'asset_id', 'asset_type', name='uq_holding_user_asset'),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    asset_id = Column(String, nullable=False)
    asset_type = Column(String, nullable=False)
    asset_name = Column(String, default="")
    asset_symbol = Column(String, default="")
    quantity = Column(Money, nullable=False)
    average_buy_price = Column(Money, nullable=False)
    total_invested = Column(Money, nullable=False)
    current_value = Column(Money, default=Decimal("0"))
    realized_pnl = Column(Money, default=Decimal("0"))
    unrealized_pnl = Column(Money, default=Decimal("0"))
    last_updated = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)


class TransactionModel(Base):
    """SQLAlchemy model for the portfolio transaction ledger."""
    __tablename__ = 'portfolio_transactions'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    holding_id = Column(String, nullable=True)
    transaction_type = Column(String, nullable=False)
    asset_id = Column(String, nullable=False)
    asset_name = Column(String, default="")
    asset_symbol = Column(String, default="")
    quantity = Column(Money, nullable=False)
    price = Column(Money, nullable=False)
    total_amount = Column(Money, nullable=False)
    fees = Column(Money, default=Decimal("0"))
    exchange = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    transaction_date = Column(DateTime, default=datetime.utcnow)


class CopyTradingSettingModel(Base):
    """SQLAlchemy model for copy-trading relations."""
    __tablename__ = 'copy_trading_settings'

    id = Column(String, primary_key=True)
    trader_id = Column(String, nullable=False, index=True)
    follower_id = Column(String, nullable=False, index=True)
    copy_percentage = Column(Money, nullable=False)
    max_amount_per_trade = Column(Money, nullable=True)
    copy_types = Column(JSON, default=list)
    agents_to_copy = Column(JSON, default=list)
    agents_to_exclude = Column(JSON, default=list)
    stop_loss_percentage = Column(Money, nullable=True)
    take_profit_percentage = Column(Money, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)


class NotificationModel(Base):
    """SQLAlchemy model for notifications."""
    __tablename__ = 'notifications'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    category = Column(String, default="trading")
    priority = Column(String, default="medium")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String, nullable=True)
    data_json = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class BlockchainTransactionModel(Base):
    """SQLAlchemy model for on-chain settlement records."""
    __tablename__ = 'blockchain_transactions'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    tx_hash = Column(String, nullable=False)
    chain = Column(String, nullable=False)
    status = Column(String, nullable=False)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class _UnitOfWork:
    """Session and held-back change events of an open transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.pending: List[ChangeEvent] = []


class Database:
    """Async database interface.

    Every write publishes a ChangeEvent on ``self.changes``.
    """

    def __init__(self, database_url: Optional[str] = None,
                 change_feed: Optional[ChangeFeed] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_kwargs = {"echo": database_config.database_echo}
        if ":memory:" in db_url:
            # One shared connection, otherwise every session sees an empty db
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        elif db_url.startswith('sqlite+aiosqlite:///'):
            Path(db_url[len('sqlite+aiosqlite:///'):]).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_size"] = database_config.database_pool_size
            engine_kwargs["max_overflow"] = database_config.database_max_overflow

        self.database_url = db_url
        self.engine_kwargs = engine_kwargs
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.changes = change_feed or ChangeFeed()
        self._unit: ContextVar[Optional[_UnitOfWork]] = ContextVar(
            f"tradedesk_unit_of_work_{id(self)}", default=None
        )

    async def initialize(self):
        """Create tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.initialized", url=self.database_url)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    @asynccontextmanager
    async def unit_of_work(self):
        """Run every read and write in the block in one transaction.

        The transaction commits when the block exits and rolls back if it
        raises. Change events are held back until the commit succeeds.
        Nested calls join the outer unit.

        Example:
            async with database.unit_of_work():
                await database.save_order(order)
                await database.save_trade(trade)
        """
        if self._unit.get() is not None:
            yield
            return

        unit = None
        async with self.session_maker() as session:
            async with session.begin():
                unit = _UnitOfWork(session)
                token = self._unit.set(unit)
                try:
                    yield
                finally:
                    self._unit.reset(token)

        for change in unit.pending:
            self.changes.publish(change)

    @asynccontextmanager
    async def _session(self):
        """Session of the active unit of work, or a new one."""
        unit = self._unit.get()
        if unit is not None:
            yield unit.session
            return
        async with self.session_maker() as session:
            yield session

    async def _commit(self, session: AsyncSession):
        if self._unit.get() is not None:
            await session.flush()
        else:
            await session.commit()

    def _publish(self, table: str, event: ChangeEventType, record: dict):
        change = ChangeEvent(table=table, event=event, record=record)
        unit = self._unit.get()
        if unit is not None:
            unit.pending.append(change)
        else:
            self.changes.publish(change)

    # Agent operations
    async def save_agent(self, agent: Agent) -> Agent:
        """Save or update an agent."""
        async with self._session() as session:
            db_agent = await session.get(AgentModel, agent.id)
            event = ChangeEventType.UPDATE
            if db_agent is None:
                db_agent = AgentModel(id=agent.id)
                session.add(db_agent)
                event = ChangeEventType.INSERT
            db_agent.name = agent.name
            db_agent.symbol = agent.symbol
            db_agent.price = agent.price
            db_agent.exchange_symbol = agent.exchange_symbol
            db_agent.updated_at = datetime.utcnow()
            await self._commit(session)

        self._publish("agents", event, agent.model_dump())
        return agent

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        async with self._session() as session:
            db_agent = await session.get(AgentModel, agent_id)
            if db_agent is None:
                return None
            return self._agent_from_model(db_agent)

    async def get_agents(self) -> List[Agent]:
        async with self._session() as session:
            result = await session.execute(select(AgentModel).order_by(AgentModel.symbol))
            return [self._agent_from_model(a) for a in result.scalars().all()]

    async def update_agent_price(self, agent_id: str, price: Decimal) -> Optional[Agent]:
        """Set the quoted price of an agent."""
        agent = await self.get_agent(agent_id)
        if agent is None:
            return None
        agent.price = price
        return await self.save_agent(agent)

    # Order operations
    async def save_order(self, order: Order) -> Order:
        """Save or update an order."""
        async with self._session() as session:
            db_order = await session.get(OrderModel, order.id)

            if db_order is None:
                db_order = OrderModel(
                    id=order.id,
                    user_id=order.user_id,
                    agent_id=order.agent_id,
                    order_type=order.order_type.value,
                    side=order.side.value,
                    amount=order.amount,
                    price=order.price,
                    trigger_price=order.trigger_price,
                    status=order.status.value,
                    filled_amount=order.filled_amount,
                    average_fill_price=order.average_fill_price,
                    fees=order.fees,
                    stop_loss_price=order.stop_loss_price,
                    take_profit_price=order.take_profit_price,
                    time_in_force=order.time_in_force.value,
                    order_source=order.order_source.value,
                    parent_order_id=order.parent_order_id,
                    notes=order.notes,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                )
                session.add(db_order)
                event = ChangeEventType.INSERT
            else:
                db_order.status = order.status.value
                db_order.filled_amount = order.filled_amount
                db_order.average_fill_price = order.average_fill_price
                db_order.updated_at = order.updated_at
                event = ChangeEventType.UPDATE

            await self._commit(session)

        self._publish("orders", event, order.model_dump())
        return order

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        """Get an order by ID, optionally scoped to its owner."""
        async with self._session() as session:
            db_order = await session.get(OrderModel, order_id)

            if db_order is None:
                return None
            if user_id is not None and db_order.user_id != user_id:
                return None

            return self._order_from_model(db_order)

    async def get_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        parent_order_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Order]:
        """Get orders with optional filters, newest first."""
        async with self._session() as session:
            query = select(OrderModel).order_by(OrderModel.created_at.desc()).limit(limit)

            if user_id:
                query = query.where(OrderModel.user_id == user_id)
            if status:
                query = query.where(OrderModel.status == OrderStatus(status).value)
            if parent_order_id:
                query = query.where(OrderModel.parent_order_id == parent_order_id)

            result = await session.execute(query)
            return [self._order_from_model(o) for o in result.scalars().all()]

    async def get_pending_orders_before(self, cutoff: datetime) -> List[Order]:
        """Get pending orders created before the cutoff."""
        async with self._session() as session:
            result = await session.execute(
                select(OrderModel)
                .where(OrderModel.status == OrderStatus.PENDING.value)
                .where(OrderModel.created_at < cutoff)
                .order_by(OrderModel.created_at)
            )
            return [self._order_from_model(o) for o in result.scalars().all()]

    # Trade operations
    async def save_trade(self, trade: Trade) -> Trade:
        """Insert a trade. Trades are never updated."""
        async with self._session() as session:
            session.add(TradeModel(
                id=trade.id,
                user_id=trade.user_id,
                order_id=trade.order_id,
                agent_id=trade.agent_id,
                side=trade.side.value,
                quantity=trade.quantity,
                price=trade.price,
                total_amount=trade.total_amount,
                fees=trade.fees,
                pnl=trade.pnl,
                exchange=trade.exchange,
                executed_at=trade.executed_at,
            ))
            await self._commit(session)

        self._publish("trades", ChangeEventType.INSERT, trade.model_dump())
        return trade

    async def get_trades(self, user_id: str, limit: int = 50) -> List[Trade]:
        async with self._session() as session:
            result = await session.execute(
                select(TradeModel)
                .where(TradeModel.user_id == user_id)
                .order_by(TradeModel.executed_at.desc())
                .limit(limit)
            )
            return [self._trade_from_model(t) for t in result.scalars().all()]

    async def get_trade_for_order(self, order_id: str) -> Optional[Trade]:
        """Latest trade recorded for an order."""
        async with self._session() as session:
            result = await session.execute(
                select(TradeModel)
                .where(TradeModel.order_id == order_id)
                .order_by(TradeModel.executed_at.desc())
                .limit(1)
            )
            db_trade = result.scalar_one_or_none()
            return self._trade_from_model(db_trade) if db_trade else None

    # Holding operations
    async def save_holding(self, holding: Holding) -> Holding:
        """Save or update a holding."""
        async with self._session() as session:
            db_holding = await session.get(HoldingModel, holding.id)
            event = ChangeEventType.UPDATE
            if db_holding is None:
                db_holding = HoldingModel(
                    id=holding.id,
                    user_id=holding.user_id,
                    asset_id=holding.asset_id,
                    asset_type=holding.asset_type.value,
                    asset_name=holding.asset_name,
                    asset_symbol=holding.asset_symbol,
                    created_at=holding.created_at,
                )
                session.add(db_holding)
                event = ChangeEventType.INSERT

            db_holding.quantity = holding.quantity
            db_holding.average_buy_price = holding.average_buy_price
            db_holding.total_invested = holding.total_invested
            db_holding.current_value = holding.current_value
            db_holding.realized_pnl = holding.realized_pnl
            db_holding.unrealized_pnl = holding.unrealized_pnl
            db_holding.last_updated = holding.last_updated

            await self._commit(session)

        self._publish("portfolio_holdings", event, holding.model_dump())
        return holding

    async def delete_holding(self, holding: Holding):
        """Delete a holding."""
        async with self._session() as session:
            db_holding = await session.get(HoldingModel, holding.id)
            if db_holding is None:
                return
            await session.delete(db_holding)
            await self._commit(session)

        self._publish("portfolio_holdings", ChangeEventType.DELETE, holding.model_dump())

    async def get_holding(
        self, user_id: str, asset_id: str, asset_type: AssetType = AssetType.AGENT
    ) -> Optional[Holding]:
        """Get the holding for one (user, asset)."""
        async with self._session() as session:
            result = await session.execute(
                select(HoldingModel)
                .where(HoldingModel.user_id == user_id)
                .where(HoldingModel.asset_id == asset_id)
                .where(HoldingModel.asset_type == AssetType(asset_type).value)
            )
            db_holding = result.scalar_one_or_none()
            return self._holding_from_model(db_holding) if db_holding else None

    async def get_holdings(self, user_id: str) -> List[Holding]:
        """All holdings of a user, largest current value first."""
        async with self._session() as session:
            result = await session.execute(
                select(HoldingModel).where(HoldingModel.user_id == user_id)
            )
            holdings = [self._holding_from_model(h) for h in result.scalars().all()]
            # Money is text on SQLite, so sort in Python
            holdings.sort(key=lambda h: h.current_value, reverse=True)
            return holdings

    # Transaction ledger
    async def save_transaction(self, transaction: PortfolioTransaction) -> PortfolioTransaction:
        async with self._session() as session:
            session.add(TransactionModel(
                id=transaction.id,
                user_id=transaction.user_id,
                holding_id=transaction.holding_id,
                transaction_type=transaction.transaction_type.value,
                asset_id=transaction.asset_id,
                asset_name=transaction.asset_name,
                asset_symbol=transaction.asset_symbol,
                quantity=transaction.quantity,
                price=transaction.price,
                total_amount=transaction.total_amount,
                fees=transaction.fees,
                exchange=transaction.exchange,
                notes=transaction.notes,
                transaction_date=transaction.transaction_date,
            ))
            await self._commit(session)

        self._publish(
            "portfolio_transactions", ChangeEventType.INSERT, transaction.model_dump()
        )
        return transaction

    async def get_transactions(self, user_id: str, limit: int = 50) -> List[PortfolioTransaction]:
        async with self._session() as session:
            result = await session.execute(
                select(TransactionModel)
                .where(TransactionModel.user_id == user_id)
                .order_by(TransactionModel.transaction_date.desc())
                .limit(limit)
            )
            return [self._transaction_from_model(t) for t in result.scalars().all()]

    # Copy trading settings
    async def save_copy_setting(self, setting: CopyTradingSetting) -> CopyTradingSetting:
        """Save or update a copy-trading setting."""
        async with self._session() as session:
            db_setting = await session.get(CopyTradingSettingModel, setting.id)
            event = ChangeEventType.UPDATE
            if db_setting is None:
                db_setting = CopyTradingSettingModel(
                    id=setting.id,
                    trader_id=setting.trader_id,
                    follower_id=setting.follower_id,
                    created_at=setting.created_at,
                )
                session.add(db_setting)
                event = ChangeEventType.INSERT

            db_setting.copy_percentage = setting.copy_percentage
            db_setting.max_amount_per_trade = setting.max_amount_per_trade
            db_setting.copy_types = [s.value for s in setting.copy_types]
            db_setting.agents_to_copy = list(setting.agents_to_copy)
            db_setting.agents_to_exclude = list(setting.agents_to_exclude)
            db_setting.stop_loss_percentage = setting.stop_loss_percentage
            db_setting.take_profit_percentage = setting.take_profit_percentage
            db_setting.is_active = setting.is_active
            db_setting.updated_at = setting.updated_at

            await self._commit(session)

        self._publish("copy_trading_settings", event, setting.model_dump())
        return setting

    async def get_copy_setting(self, setting_id: str) -> Optional[CopyTradingSetting]:
        async with self._session() as session:
            db_setting = await session.get(CopyTradingSettingModel, setting_id)
            return self._setting_from_model(db_setting) if db_setting else None

    async def get_active_copy_settings(self, trader_id: str) -> List[CopyTradingSetting]:
        """Active settings of everyone copying a trader."""
        async with self._session() as session:
            result = await session.execute(
                select(CopyTradingSettingModel)
                .where(CopyTradingSettingModel.trader_id == trader_id)
                .where(CopyTradingSettingModel.is_active.is_(True))
                .order_by(CopyTradingSettingModel.created_at)
            )
            return [self._setting_from_model(s) for s in result.scalars().all()]

    async def get_copy_settings(self, follower_id: str) -> List[CopyTradingSetting]:
        """All settings a follower has created."""
        async with self._session() as session:
            result = await session.execute(
                select(CopyTradingSettingModel)
                .where(CopyTradingSettingModel.follower_id == follower_id)
                .order_by(CopyTradingSettingModel.created_at.desc())
            )
            return [self._setting_from_model(s) for s in result.scalars().all()]

    # Notifications & settlement
    async def save_notification(self, notification: Notification) -> Notification:
        async with self._session() as session:
            session.add(NotificationModel(
                id=notification.id,
                user_id=notification.user_id,
                type=notification.type,
                category=notification.category,
                priority=notification.priority,
                title=notification.title,
                message=notification.message,
                action_url=notification.action_url,
                data_json=notification.data,
                is_read=notification.is_read,
                created_at=notification.created_at,
            ))
            await self._commit(session)

        self._publish("notifications", ChangeEventType.INSERT, notification.model_dump())
        return notification

    async def get_notifications(self, user_id: str, limit: int = 50) -> List[Notification]:
        async with self._session() as session:
            result = await session.execute(
                select(NotificationModel)
                .where(NotificationModel.user_id == user_id)
                .order_by(NotificationModel.created_at.desc())
                .limit(limit)
            )
            return [
                Notification(
                    id=n.id,
                    user_id=n.user_id,
                    type=n.type,
                    category=n.category,
                    priority=n.priority,
                    title=n.title,
                    message=n.message,
                    action_url=n.action_url,
                    data=n.data_json or {},
                    is_read=n.is_read,
                    created_at=n.created_at,
                )
                for n in result.scalars().all()
            ]

    async def save_blockchain_transaction(self, tx: BlockchainTransaction) -> BlockchainTransaction:
        async with self._session() as session:
            session.add(BlockchainTransactionModel(
                id=tx.id,
                user_id=tx.user_id,
                tx_hash=tx.tx_hash,
                chain=tx.chain,
                status=tx.status,
                metadata_json=tx.metadata,
                created_at=tx.created_at,
            ))
            await self._commit(session)

        self._publish("blockchain_transactions", ChangeEventType.INSERT, tx.model_dump())
        return tx

    async def get_blockchain_transactions(self, user_id: str) -> List[BlockchainTransaction]:
        async with self._session() as session:
            result = await session.execute(
                select(BlockchainTransactionModel)
                .where(BlockchainTransactionModel.user_id == user_id)
                .order_by(BlockchainTransactionModel.created_at.desc())
            )
            return [
                BlockchainTransaction(
                    id=t.id,
                    user_id=t.user_id,
                    tx_hash=t.tx_hash,
                    chain=t.chain,
                    status=t.status,
                    metadata=t.metadata_json or {},
                    created_at=t.created_at,
                )
                for t in result.scalars().all()
            ]

    # Helpers
    def _agent_from_model(self, model: AgentModel) -> Agent:
        return Agent(
            id=model.id,
            name=model.name,
            symbol=model.symbol,
            price=model.price,
            exchange_symbol=model.exchange_symbol,
        )

    def _order_from_model(self, model: OrderModel) -> Order:
        """Convert DB model to Order object."""
        return Order(
            id=model.id,
            user_id=model.user_id,
            agent_id=model.agent_id,
            order_type=OrderType(model.order_type),
            side=OrderSide(model.side),
            amount=model.amount,
            price=model.price,
            trigger_price=model.trigger_price,
            status=OrderStatus(model.status),
            filled_amount=model.filled_amount or Decimal("0"),
            average_fill_price=model.average_fill_price,
            fees=model.fees or Decimal("0"),
            stop_loss_price=model.stop_loss_price,
            take_profit_price=model.take_profit_price,
            time_in_force=TimeInForce(model.time_in_force),
            order_source=OrderSource(model.order_source),
            parent_order_id=model.parent_order_id,
            notes=model.notes,
            created_at=model.created_at,
            updated_at=model.updated_at or model.created_at,
        )

    def _trade_from_model(self, model: TradeModel) -> Trade:
        return Trade(
            id=model.id,
            user_id=model.user_id,
            order_id=model.order_id,
            agent_id=model.agent_id,
            side=OrderSide(model.side),
            quantity=model.quantity,
            price=model.price,
            fees=model.fees or Decimal("0"),
            pnl=model.pnl,
            exchange=model.exchange,
            executed_at=model.executed_at,
        )

    def _holding_from_model(self, model: HoldingModel) -> Holding:
        return Holding(
            id=model.id,
            user_id=model.user_id,
            asset_id=model.asset_id,
            asset_type=AssetType(model.asset_type),
            asset_name=model.asset_name or "",
            asset_symbol=model.asset_symbol or "",
            quantity=model.quantity,
            average_buy_price=model.average_buy_price,
            total_invested=model.total_invested,
            current_value=model.current_value or Decimal("0"),
            realized_pnl=model.realized_pnl or Decimal("0"),
            unrealized_pnl=model.unrealized_pnl or Decimal("0"),
            last_updated=model.last_updated,
            created_at=model.created_at,
        )

    def _transaction_from_model(self, model: TransactionModel) -> PortfolioTransaction:
        return PortfolioTransaction(
            id=model.id,
            user_id=model.user_id,
            holding_id=model.holding_id,
            transaction_type=TransactionType(model.transaction_type),
            asset_id=model.asset_id,
            asset_name=model.asset_name or "",
            asset_symbol=model.asset_symbol or "",
            quantity=model.quantity,
            price=model.price,
            fees=model.fees or Decimal("0"),
            exchange=model.exchange,
            notes=model.notes,
            transaction_date=model.transaction_date,
        )

    def _setting_from_model(self, model: CopyTradingSettingModel) -> CopyTradingSetting:
        return CopyTradingSetting(
            id=model.id,
            trader_id=model.trader_id,
            follower_id=model.follower_id,
            copy_percentage=model.copy_percentage,
            max_amount_per_trade=model.max_amount_per_trade,
            copy_types=[OrderSide(s) for s in (model.copy_types or [])],
            agents_to_copy=list(model.agents_to_copy or []),
            agents_to_exclude=list(model.agents_to_exclude or []),
            stop_loss_percentage=model.stop_loss_percentage,
            take_profit_percentage=model.take_profit_percentage,
            is_active=bool(model.is_active),
            created_at=model.created_at,
            updated_at=model.updated_at or model.created_at,
        )
