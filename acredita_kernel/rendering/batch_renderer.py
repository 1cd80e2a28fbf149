"""Multi-page print document for a batch: one credential image per page."""

from __future__ import annotations

from io import BytesIO
from typing import Protocol, Sequence, runtime_checkable

from PIL import Image


@runtime_checkable
class BatchDocumentRenderer(Protocol):
    def render(self, pages: Sequence[bytes]) -> bytes: ...


class PillowBatchRenderer:
    """Stacks PNG credential images into a PDF with Pillow's ``save_all``."""

    def __init__(self, resolution: float = 150.0):
        self._resolution = resolution

    def render(self, pages: Sequence[bytes]) -> bytes:
        if not pages:
            raise ValueError("A print document needs at least one page")
        images = [Image.open(BytesIO(data)).convert("RGB") for data in pages]
        out = BytesIO()
        images[0].save(
            out,
            format="PDF",
            save_all=True,
            append_images=images[1:],
            resolution=self._resolution,
        )
        return out.getvalue()
