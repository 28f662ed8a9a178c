from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from forecastcore.core.config import get_settings


settings = get_settings()

engine_options: dict = {"future": True, "pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    # Keep the pool small; forecasts are computed in-process, not in the database.
    engine_options.update(pool_size=5, max_overflow=5, pool_recycle=300)

engine = create_engine(settings.database_url, **engine_options)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
