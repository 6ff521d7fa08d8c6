from contextlib import asynccontextmanager
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from .config import settings
from .exceptions import ConflictError, TransientError
from .logger import logger

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session

@asynccontextmanager
async def atomic(db: AsyncSession, action: str):
    """
    Commit everything issued inside the block as one transaction.

    Any exception rolls the whole unit back. Driver-level failures are
    reported as TransientError (safe to retry the whole action), integrity
    violations as ConflictError.
    """
    try:
        yield
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Integrity violation during {action}", extra={"action": action, "error": str(e.orig)})
        raise ConflictError(f"Conflicting change during {action}") from e
    except DBAPIError as e:
        await db.rollback()
        logger.error(f"Database failure during {action}", extra={"action": action, "error": str(e)})
        raise TransientError() from e
    except BaseException:
        await db.rollback()
        raise
