"""Uploaded image models."""

import base64

from pydantic import BaseModel, ConfigDict

from .generation import ImageInput


class EncodedImage(BaseModel):
    """An upload after validation, HEIC conversion and recompression."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    content_type: str = "image/jpeg"
    filename: str
    width: int | None = None
    height: int | None = None

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    def to_input(self) -> ImageInput:
        return ImageInput(data=self.data, content_type=self.content_type, filename=self.filename)


class UploadEntry(BaseModel):
    """One item of an upload set: the uploaded file name and its encoded image."""

    model_config = ConfigDict(frozen=True)

    original_filename: str
    image: EncodedImage

    @property
    def preview(self) -> str:
        return self.image.data_url

    def to_input(self) -> ImageInput:
        return self.image.to_input()


class UploadSet:
    """Ordered model or product uploads.

    Each mutation swaps in a new tuple so readers never see a partial update.
    Removal shifts later indices; jobs are unaffected because they copy the
    encoded image when they are created.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._entries: tuple[UploadEntry, ...] = ()

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> UploadEntry:
        return self._entries[index]

    def __iter__(self):
        return iter(self._entries)

    def add(self, entry: UploadEntry) -> int:
        """Append an entry and return its index."""
        self._entries = self._entries + (entry,)
        return len(self._entries) - 1

    def remove(self, index: int) -> UploadEntry:
        if not 0 <= index < len(self._entries):
            raise IndexError(f"No {self.kind} image at index {index}")
        removed = self._entries[index]
        self._entries = self._entries[:index] + self._entries[index + 1:]
        return removed

    def clear(self) -> None:
        self._entries = ()

    def snapshot(self) -> tuple[UploadEntry, ...]:
        return self._entries
