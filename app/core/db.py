import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings

logger = logging.getLogger(__name__)

# Create the 'instance' directory if it doesn't exist and using SQLite in instance/
if "sqlite://" in settings.DATABASE_URL and "/instance/" in settings.DATABASE_URL:
    # Assuming this db.py file is in app/core/
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    instance_path = os.path.join(project_root, "instance")
    os.makedirs(instance_path, exist_ok=True)

    # Relative SQLite paths are resolved against the project root so workers
    # started from other directories share the same file.
    if settings.DATABASE_URL.startswith("sqlite:///./"):
        db_file_path = settings.DATABASE_URL.replace("sqlite:///./", "")
        SQLALCHEMY_DATABASE_URL = f"sqlite:///{os.path.join(project_root, db_file_path)}"
    else:
        SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL
else:
    SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

engine_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}

engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative models
Base = declarative_base()


def create_db_tables(bind=None):
    """Creates all tables defined by models inheriting from Base."""
    # Models must be imported so they are registered with Base.metadata
    from app.models.image import Image
    from app.models.tag import Tag, ImageTag
    from app.models.embedding_configuration import EmbeddingConfiguration
    from app.models.image_embedding import ImageEmbedding
    from app.models.ai_request import AiRequest
    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Database tables created (if not exist) for URL: {SQLALCHEMY_DATABASE_URL}")
