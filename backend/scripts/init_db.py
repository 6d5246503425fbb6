"""Create the transcode_jobs table in the configured database."""

import asyncio

from dotenv import load_dotenv

load_dotenv()

from transcoder.core.config import settings  # noqa: E402
from transcoder.core.database import create_engine  # noqa: E402
from transcoder.modules.transcoding.repository import init_models  # noqa: E402


async def init_db():
    print("=" * 50)
    print("Initializing job store schema")
    print("=" * 50)
    print()
    print(f"  Database: {settings.DATABASE_URL.split('@')[-1]}")
    print()

    engine = create_engine(settings.DATABASE_URL)
    try:
        await init_models(engine)
        print("✓ Tables created (existing tables left untouched).")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
