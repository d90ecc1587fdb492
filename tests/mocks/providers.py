"""In-memory stand-ins for the blob store, model providers and queue dispatcher."""
from app.schemas.tag_schema import (
    BatchVisionResult,
    EmbeddingResult,
    ProviderUsage,
    TagCandidate,
    VisionResult,
)


class InMemoryBlobStore:
    def __init__(self):
        self.objects = {}

    def exists(self, path):
        return path in self.objects

    def get(self, path):
        return self.objects[path]

    def put(self, path, data, content_type="application/octet-stream"):
        self.objects[path] = data

    def delete(self, path):
        self.objects.pop(path, None)


def usage(model="fake-model", prompt_tokens=100, completion_tokens=20, total_tokens=None, cached_tokens=None):
    return ProviderUsage(
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens if total_tokens is not None else prompt_tokens + completion_tokens,
        cached_tokens=cached_tokens,
    )


class FakeVisionProvider:
    """
    Records calls and answers from canned data.

    batch_tags maps image id -> list of (key, value, confidence); ids not in the
    map are left out of the batch response. Set error to make every call raise.
    """

    def __init__(self, batch_tags=None, single_tags=None, text_tags=None, error=None, extra_ids=None):
        self.batch_tags = batch_tags
        self.single_tags = single_tags or []
        self.text_tags = text_tags or []
        self.error = error
        self.extra_ids = extra_ids or {}
        self.batch_calls = []
        self.single_calls = []
        self.text_calls = []

    def _raise_if_configured(self):
        if self.error is not None:
            raise self.error

    def analyze_batch(self, items, prompt=None):
        self.batch_calls.append([item.id for item in items])
        self._raise_if_configured()
        if self.batch_tags is None:
            answers = {item.id: [("category", "thing", 0.9)] for item in items}
        else:
            answers = {item.id: self.batch_tags[item.id] for item in items if item.id in self.batch_tags}
        answers.update(self.extra_ids)
        results = {
            image_id: [TagCandidate(key=k, value=v, confidence=c) for k, v, c in tags]
            for image_id, tags in answers.items()
        }
        return BatchVisionResult(results=results, usage=usage(model="fake-vision"))

    def analyze_single(self, image_bytes, prompt, mime_type=None):
        self.single_calls.append(prompt)
        self._raise_if_configured()
        return VisionResult(
            tags=[TagCandidate(key=k, value=v, confidence=c) for k, v, c in self.single_tags],
            usage=usage(model="fake-vision"),
        )

    def generate_text(self, prompt):
        self.text_calls.append(prompt)
        self._raise_if_configured()
        return VisionResult(
            tags=[TagCandidate(key=k, value=v, confidence=c) for k, v, c in self.text_tags],
            usage=usage(model="fake-vision", prompt_tokens=45, completion_tokens=12, cached_tokens=10),
        )


class FakeEmbeddingProvider:
    """
    Deterministic embeddings: vectors[text] when given, otherwise a unit vector
    derived from the text's hash. Records every call.
    """

    def __init__(self, vectors=None, dimension=4, error=None):
        self.vectors = vectors or {}
        self.dimension = dimension
        self.error = error
        self.calls = []

    def _vector_for(self, text):
        if text in self.vectors:
            return list(self.vectors[text])
        vector = [0.0] * self.dimension
        vector[sum(text.encode()) % self.dimension] = 1.0
        return vector

    def embed(self, texts, purpose="document"):
        texts = [texts] if isinstance(texts, str) else list(texts)
        self.calls.append((texts, purpose))
        if self.error is not None:
            raise self.error
        return EmbeddingResult(
            vectors=[self._vector_for(t) for t in texts],
            usage=usage(model="fake-embed", prompt_tokens=len(texts) * 5, completion_tokens=0),
        )


class FakeDispatcher:
    def __init__(self, depth=0, depth_error=None, enqueue_error=None):
        self.depth = depth
        self.depth_error = depth_error
        self.enqueue_error = enqueue_error
        self.enqueued = 0

    def queue_depth(self):
        if self.depth_error is not None:
            raise self.depth_error
        return self.depth

    def enqueue(self):
        if self.enqueue_error is not None:
            raise self.enqueue_error
        self.enqueued += 1
        return f"fake-task-{self.enqueued}"

