from acredita_kernel.rendering.batch_renderer import (
    BatchDocumentRenderer,
    PillowBatchRenderer,
)
from acredita_kernel.rendering.credential_renderer import (
    CredentialRenderer,
    PillowCredentialRenderer,
    RenderedCredential,
    build_qr_image,
)

__all__ = [
    "BatchDocumentRenderer",
    "CredentialRenderer",
    "PillowBatchRenderer",
    "PillowCredentialRenderer",
    "RenderedCredential",
    "build_qr_image",
]
