"""Pytest fixtures and configuration for the test suite

This module provides:
1. An in-memory SQLite session per test
2. Factory functions for images and embedding configurations
3. Fixtures wrapping the in-memory collaborators from tests.mocks

Factory Functions:
    - make_image(db_session, **overrides) -> Image
    - make_config(db_session, **overrides) -> EmbeddingConfiguration
    - make_png_bytes(width, height) -> bytes
"""
import io
import os

# Keep app.core.db from touching the instance/ directory during collection
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from PIL import Image as PILImage
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.db import Base, create_db_tables
from app.core.exceptions import ProviderError
from app.models.embedding_configuration import EmbeddingConfiguration, ConfigurationScopeEnum
from app.models.image import Image, ProcessingStatusEnum, ImageTypeEnum
from tests.mocks.providers import (
    FakeDispatcher,
    FakeEmbeddingProvider,
    FakeVisionProvider,
    InMemoryBlobStore,
)


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_png_bytes(width: int = 64, height: int = 48, color=(200, 30, 30)) -> bytes:
    output = io.BytesIO()
    PILImage.new("RGB", (width, height), color).save(output, format="PNG")
    return output.getvalue()


def make_image(
    db_session=None,
    path: str = None,
    processing_status: ProcessingStatusEnum = ProcessingStatusEnum.PENDING,
    blob_store=None,
    image_bytes: bytes = None,
    **overrides
) -> Image:
    """
    Factory function to create Image rows for testing.

    When blob_store is given, the image bytes (a small PNG by default) are
    written to it under the image's path.
    """
    image = Image(
        path=path or f"images/{os.urandom(8).hex()}.png",
        filename=overrides.pop("filename", "test.png"),
        mime_type=overrides.pop("mime_type", "image/png"),
        processing_status=processing_status,
        type=overrides.pop("type", ImageTypeEnum.ORIGINAL),
        **overrides
    )
    if blob_store is not None:
        blob_store.put(image.path, image_bytes if image_bytes is not None else make_png_bytes(), "image/png")

    if db_session:
        db_session.add(image)
        db_session.commit()

    return image


def make_config(
    db_session=None,
    name: str = "Test Config",
    tag_keys=None,
    scope: ConfigurationScopeEnum = ConfigurationScopeEnum.SYSTEM_DEFAULT,
    is_default: bool = True,
    is_active: bool = True,
    **overrides
) -> EmbeddingConfiguration:
    config = EmbeddingConfiguration(
        name=name,
        tag_keys=tag_keys if tag_keys is not None else ["title", "format", "category", "color"],
        scope=scope,
        is_default=is_default,
        is_active=is_active,
        **overrides
    )
    if db_session:
        db_session.add(config)
        db_session.commit()
    return config


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    # StaticPool keeps every session on the one in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_tables(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def vision_provider():
    return FakeVisionProvider()


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def provider_error():
    return ProviderError("Vision API Call (fake): HTTP 503 - upstream overloaded", status_code=503)
