import asyncio

from core.config import settings
from core.logger import setup_logging, logger
from db.session import engine, init_models
from models.identity import SessionFilter
from services.session_store import SessionStore


async def main():
    # Setup structured logging
    setup_logging()

    await init_models(engine)
    logger.info("Session store ready", database_url=settings.DATABASE_URL, env=settings.ENV)

    open_sessions = await SessionStore().list_sessions(SessionFilter(is_completed=False))
    for row in open_sessions:
        logger.info(
            "Resumable exam session",
            session_id=row.id,
            test_kind=row.test_kind,
            pass_number=row.pass_number,
            question=row.current_question_number,
            time_remaining=row.time_remaining,
        )

    await engine.dispose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
