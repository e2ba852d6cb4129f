from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.DATABASE_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def _import_models():
    # register every table on Base.metadata
    import carenet.modules.profiles.models  # noqa: F401
    import carenet.modules.relationships.models  # noqa: F401
    import carenet.modules.consent.models  # noqa: F401
    import carenet.modules.geofence.models  # noqa: F401
    import carenet.modules.alerts.models  # noqa: F401

async def init_models():
    ## In dev-only "create_all" mode, build the schema; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        _import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
