from loguru import logger
from app.core.db import engine, Base

# Import all models so SQLAlchemy registers them
from app.models.location_share import LocationShare
from app.models.production import Production, UserProduction
from app.models.profile import Profile


def init_db(bind=None):
    logger.info("Creating database tables")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
