import logging

from dualcast.db.session import engine, Base

logger = logging.getLogger(__name__)

def init_db(bind=None):
    """Initialize database tables"""
    # Import all models to ensure they are registered with SQLAlchemy
    from dualcast.models.publish_job import PublishJob, PublishJobPlatform, PublishJobStep
    from dualcast.models.platform_account import PlatformAccount

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully")

if __name__ == "__main__":
    init_db()
