"""Tests for canonical tag text and embedding generation"""
import pytest

from app.core.exceptions import EmptyInputError
from app.models.ai_request import AiRequest
from app.models.image_embedding import ImageEmbedding, EmbeddingTypeEnum
from app.services.embedding_config_service import (
    SYSTEM_DEFAULT_TAG_KEYS,
    get_active_configurations,
    get_default_configuration,
    seed_system_default_config,
)
from app.services.embedding_service import EmbeddingService, format_tags_as_text
from app.services.tag_service import TagService
from app.models.embedding_configuration import ConfigurationScopeEnum
from tests.conftest import make_config, make_image
from tests.mocks import FakeEmbeddingProvider


class TestFormatTagsAsText:

    def test_keys_sorted_regardless_of_input_order(self):
        assert format_tags_as_text({"b": "2", "a": "1"}) == "a: 1, b: 2"
        assert format_tags_as_text({"a": "1", "b": "2"}) == "a: 1, b: 2"

    def test_empty(self):
        assert format_tags_as_text({}) == ""


class TestBuildTextFromTags:

    def test_only_configured_keys_and_missing_keys_omitted(self, db_session, embedding_provider):
        image = make_image(db_session)
        config = make_config(db_session, tag_keys=["Titles", "format", "color", "brand"])
        TagService(db_session).attach_many(image, {"title": "Toy Story", "format": "DVD", "mood": "happy"})

        text = EmbeddingService(db_session, embedding_provider).build_text_from_tags(image, config)

        assert text == "format: dvd, title: toy story"
        assert "na" not in text.split(", ")

    def test_no_matching_tags_gives_empty_text(self, db_session, embedding_provider):
        image = make_image(db_session)
        config = make_config(db_session, tag_keys=["brand"])
        TagService(db_session).attach_many(image, {"color": "red"})

        assert EmbeddingService(db_session, embedding_provider).build_text_from_tags(image, config) == ""


class TestGenerateEmbedding:

    def test_stores_vector_and_logs(self, db_session, embedding_provider):
        image = make_image(db_session)
        config = make_config(db_session)
        TagService(db_session).attach_many(image, {"color": "red", "category": "toy"})
        service = EmbeddingService(db_session, embedding_provider)

        embedding = service.generate_embedding(image, config)

        assert embedding.source_text == "category: toy, color: red"
        assert embedding.embedding_type == EmbeddingTypeEnum.SEMANTIC
        assert len(embedding.vector) == embedding_provider.dimension
        assert embedding_provider.calls == [(["category: toy, color: red"], "document")]
        log = db_session.query(AiRequest).one()
        assert log.action == "generate_embedding"
        assert float(log.cost_estimate) == 0.0

    def test_regeneration_updates_in_place(self, db_session, embedding_provider):
        image = make_image(db_session)
        config = make_config(db_session)
        tag_service = TagService(db_session)
        tag_service.attach_many(image, {"color": "red"})
        service = EmbeddingService(db_session, embedding_provider)
        service.generate_embedding(image, config)

        tag_service.attach_many(image, {"category": "toy"})
        service.generate_embedding(image, config)

        rows = db_session.query(ImageEmbedding).all()
        assert len(rows) == 1
        assert rows[0].source_text == "category: toy, color: red"

    def test_no_tags_raises_empty_input(self, db_session, embedding_provider):
        image = make_image(db_session)
        config = make_config(db_session)

        with pytest.raises(EmptyInputError):
            EmbeddingService(db_session, embedding_provider).generate_embedding(image, config)
        assert embedding_provider.calls == []


class TestGenerateEmbeddingsForBatch:

    def test_one_provider_call_per_active_configuration(self, db_session, embedding_provider):
        images = [make_image(db_session) for _ in range(3)]
        make_config(db_session, name="A", tag_keys=["color"])
        make_config(db_session, name="B", tag_keys=["category"], scope=ConfigurationScopeEnum.APP_LEVEL, is_default=False)
        make_config(db_session, name="Inactive", tag_keys=["color"], is_active=False, is_default=False)
        tag_service = TagService(db_session)
        tag_service.attach_many(images[0], {"color": "red", "category": "toy"})
        tag_service.attach_many(images[1], {"color": "blue"})
        # images[2] has no tags at all

        results = EmbeddingService(db_session, embedding_provider).generate_embeddings_for_batch(images)

        assert len(embedding_provider.calls) == 2
        assert embedding_provider.calls[0] == (["color: red", "color: blue"], "document")
        assert embedding_provider.calls[1] == (["category: toy"], "document")
        assert len(results[images[0].id]) == 2
        assert len(results[images[1].id]) == 1
        assert images[2].id not in results
        assert db_session.query(AiRequest).filter(AiRequest.action == "generate_embeddings_batch").count() == 2

    def test_empty_input(self, db_session, embedding_provider):
        assert EmbeddingService(db_session, embedding_provider).generate_embeddings_for_batch([]) == {}
        assert embedding_provider.calls == []


class TestQueryEmbedding:

    def test_uses_query_purpose(self, db_session):
        provider = FakeEmbeddingProvider(vectors={"color: red": [0.0, 1.0, 0.0, 0.0]})
        vector = EmbeddingService(db_session, provider).generate_query_embedding("color: red")

        assert vector == [0.0, 1.0, 0.0, 0.0]
        assert provider.calls == [(["color: red"], "query")]


class TestEmbeddingConfigurations:

    def test_seed_is_idempotent(self, db_session):
        first = seed_system_default_config(db_session)
        second = seed_system_default_config(db_session)

        assert first.id == second.id
        assert first.tag_keys == SYSTEM_DEFAULT_TAG_KEYS
        assert first.scope == ConfigurationScopeEnum.SYSTEM_DEFAULT
        assert len(get_active_configurations(db_session)) == 1

    def test_default_configuration_lookup(self, db_session):
        assert get_default_configuration(db_session) is None
        make_config(db_session, name="Custom", scope=ConfigurationScopeEnum.APP_LEVEL, is_default=True)
        assert get_default_configuration(db_session).name == "Custom"
        seeded = seed_system_default_config(db_session)
        assert get_default_configuration(db_session).id == seeded.id
