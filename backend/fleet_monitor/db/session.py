"""Async SQLAlchemy engines for the mapping store and the trail store."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fleet_monitor.config import settings

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session = async_sessionmaker(engine, expire_on_commit=False)

history_engine = create_async_engine(settings.history_database_url, pool_pre_ping=True)
history_session = async_sessionmaker(history_engine, expire_on_commit=False)
