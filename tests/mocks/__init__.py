from tests.mocks.providers import (
    FakeDispatcher,
    FakeEmbeddingProvider,
    FakeVisionProvider,
    InMemoryBlobStore,
    usage,
)
