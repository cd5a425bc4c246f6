"""Image asset store: loads item images from DATA_DIR for provider requests."""

import asyncio
import base64
from pathlib import Path

from wardrobe.models.wardrobe import ItemImage
from wardrobe.services.exceptions import HandlerInputError
from wardrobe.services.provider.base import EncodedImage


class ImageAssetStore:
    """Resolve ItemImage.file_path (relative to the data directory) to encoded bytes."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir).resolve()

    def resolve(self, file_path: str) -> Path:
        """Absolute path of a stored image.

        Raises:
            HandlerInputError: If the path escapes the data directory
        """
        path = (self.data_dir / file_path).resolve()
        if not path.is_relative_to(self.data_dir):
            raise HandlerInputError(f"Image path outside data directory: {file_path}")
        return path

    async def load(self, image: ItemImage) -> EncodedImage:
        """Read an image file and base64-encode it.

        Raises:
            HandlerInputError: If the file is missing or unreadable
        """
        path = self.resolve(image.file_path)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise HandlerInputError(f"Image file not readable for image {image.id}: {e}") from e

        return EncodedImage(
            base64=base64.b64encode(data).decode("ascii"),
            mime_type=image.mime_type or "image/jpeg",
        )
