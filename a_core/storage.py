# a_core/storage.py
import io
import logging
from typing import Optional
from uuid import uuid4
from urllib.parse import quote

from PIL import Image

logger = logging.getLogger(__name__)


class ObjectStore:
    """
    Upload-by-path on top of a Firebase Storage bucket.
    Every upload returns a download URL clients can fetch without signing.
    """

    def __init__(self, bucket=None):
        self._bucket = bucket

    @property
    def bucket(self):
        if self._bucket is None:
            from a_core.firebase_admin_client import get_bucket
            self._bucket = get_bucket()
        return self._bucket

    def upload_bytes(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        blob = self.bucket.blob(path)
        blob.upload_from_string(data, content_type=content_type)

        # Set download token for Firebase Storage URL generation
        md = blob.metadata or {}
        if not md.get("firebaseStorageDownloadTokens"):
            md["firebaseStorageDownloadTokens"] = str(uuid4())
            blob.metadata = md
            blob.patch()

        url = self.download_url(blob)
        logger.info("Uploaded %s", path)
        return url

    def upload_image(self, path: str, file_obj) -> str:
        """
        Normalize an image to RGB JPEG and upload it to `path`.
        """
        image = Image.open(file_obj)
        image = image.convert("RGB")

        buf = io.BytesIO()
        image.save(buf, format="JPEG", quality=90, optimize=True)
        return self.upload_bytes(path, buf.getvalue(), content_type="image/jpeg")

    def download_url(self, blob) -> Optional[str]:
        token = (blob.metadata or {}).get("firebaseStorageDownloadTokens")
        if token:
            encoded = quote(blob.name, safe="")
            return f"https://firebasestorage.googleapis.com/v0/b/{self.bucket.name}/o/{encoded}?alt=media&token={token}"
        # Last resort: signed URL
        return blob.generate_signed_url(version="v4", expiration=3600 * 24 * 30)
