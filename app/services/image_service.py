import hashlib # For SHA256 hashing
import io
import logging
import posixpath
import uuid
from typing import Any, List, Optional

from PIL import Image as PILImage, ImageOps
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.models.image import Image, ProcessingStatusEnum, ImageTypeEnum
from app.models.image_embedding import ImageEmbedding
from app.models.tag import ImageTag

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class ImageService:
    """
    Blob-side bookkeeping for images: registration, metadata extraction,
    thumbnails and deletion. blob_store is any object with exists/get/put/delete.
    """

    def __init__(self, db: Session, blob_store: Any):
        self.db = db
        self.blob_store = blob_store

    @staticmethod
    def _is_allowed_file(filename: str) -> bool:
        return '.' in filename and \
               filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS

    def register_upload(
        self,
        filename: str,
        image_bytes: bytes,
        content_type: Optional[str] = None,
        owner_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Image:
        """
        Store the original under images/<uuid>.<ext> and create a pending row.
        Dispatching the batch engine is left to the caller.
        """
        if not filename or not self._is_allowed_file(filename):
            raise ValidationError(f"File type not allowed: {filename!r}")
        if not image_bytes:
            raise ValidationError("Uploaded file is empty")

        file_extension = filename.rsplit('.', 1)[1].lower()
        object_path = f"{settings.UPLOAD_PREFIX}/{uuid.uuid4().hex}.{file_extension}"
        content_type = content_type or f"image/{'jpeg' if file_extension == 'jpg' else file_extension}"

        self.blob_store.put(object_path, image_bytes, content_type)
        image = Image(
            owner_id=owner_id,
            filename=filename,
            path=object_path,
            mime_type=content_type,
            size=len(image_bytes),
            processing_status=ProcessingStatusEnum.PENDING,
            type=ImageTypeEnum.ORIGINAL,
            description=description,
        )
        self.db.add(image)
        self.db.commit()
        self.db.refresh(image)
        logger.info(f"[ImageService] Registered upload '{filename}' as image {image.id} at {object_path}")
        return image

    def process_image(self, image: Image, image_bytes: Optional[bytes] = None) -> Image:
        """
        Fill in size, dimensions and content hash, and write a JPEG thumbnail.
        Reads the blob unless image_bytes is given. Raises NotFoundError when the
        blob is missing; Pillow errors propagate.
        """
        if image_bytes is None:
            if not self.blob_store.exists(image.path):
                raise NotFoundError(f"Image file not found in blob store: {image.path}")
            image_bytes = self.blob_store.get(image.path)

        with PILImage.open(io.BytesIO(image_bytes)) as pil_image:
            pil_image.load()
            width, height = pil_image.size
            thumbnail_bytes = self._make_thumbnail(pil_image)

        thumbnail_path = self.thumbnail_path_for(image.path)
        self.blob_store.put(thumbnail_path, thumbnail_bytes, "image/jpeg")

        image.width = width
        image.height = height
        image.size = len(image_bytes)
        image.hash = hashlib.sha256(image_bytes).hexdigest()
        image.thumbnail_path = thumbnail_path
        self.db.flush()
        logger.debug(f"[ImageService] Image {image.id}: {width}x{height}, thumbnail at {thumbnail_path}")
        return image

    @staticmethod
    def thumbnail_path_for(path: str) -> str:
        name = posixpath.splitext(posixpath.basename(path))[0]
        return f"{settings.THUMBNAIL_PREFIX}/{name}.jpg"

    @staticmethod
    def _make_thumbnail(pil_image: PILImage.Image) -> bytes:
        thumbnail = ImageOps.exif_transpose(pil_image)
        if thumbnail.mode not in ("RGB", "L"):
            thumbnail = thumbnail.convert("RGB")
        else:
            thumbnail = thumbnail.copy()
        thumbnail.thumbnail((settings.THUMBNAIL_MAX_EDGE, settings.THUMBNAIL_MAX_EDGE))
        output = io.BytesIO()
        thumbnail.save(output, format="JPEG", quality=85)
        return output.getvalue()

    def delete_image(self, image: Image) -> None:
        """Remove the blobs, then the row with its tag associations and embeddings."""
        image_id, image_path = image.id, image.path
        for path in (image.path, image.thumbnail_path):
            if path and self.blob_store.exists(path):
                self.blob_store.delete(path)
        self.db.query(ImageTag).filter(ImageTag.image_id == image_id).delete(synchronize_session=False)
        self.db.query(ImageEmbedding).filter(ImageEmbedding.image_id == image_id).delete(synchronize_session=False)
        self.db.delete(image)
        self.db.commit()
        logger.info(f"[ImageService] Deleted image {image_id} ({image_path})")

    def find_duplicates(self, content_hash: str, owner_id: Optional[int] = None) -> List[Image]:
        query = self.db.query(Image).filter(Image.hash == content_hash)
        if owner_id is not None:
            query = query.filter(Image.owner_id == owner_id)
        return query.order_by(Image.id).all()
