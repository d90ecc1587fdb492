from pydantic import BaseModel, ConfigDict
from typing import Any

class SimilarityResult(BaseModel):
    """One ranked hit: similarity = 1 - distance / 2, distance is cosine distance in [0, 2]."""
    image_id: int
    similarity: float
    distance: float

class HydratedResult(BaseModel):
    """A ranked hit with its Image row attached."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    image: Any # app.models.image.Image
    similarity: float
    distance: float
