"""
PracticeOps Database Session Management

Async SQLAlchemy engine and session factory.

Row-level security reads ``app.current_practice_id`` through
``set_config(..., true)``, which only lasts for the current transaction.
Sessions carrying a practice id in ``session.info`` re-issue the setting at
the start of every transaction, so work after a commit stays scoped.
"""

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Session
from core.config import get_settings

settings = get_settings()

TENANT_SETTING = "app.current_practice_id"
TENANT_INFO_KEY = "practice_id"

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


@event.listens_for(Session, "after_begin")
def apply_tenant_setting(session, transaction, connection):
    """Set the RLS practice id on the connection for a newly begun transaction."""
    practice_id = session.info.get(TENANT_INFO_KEY)
    if practice_id is None:
        return
    connection.execute(
        text("SELECT set_config(:name, :practice_id, true)"),
        {"name": TENANT_SETTING, "practice_id": practice_id},
    )
