"""ORM models for the accreditation kernel."""

from acredita_kernel.models.reference import (
    Area,
    Employee,
    Event,
    Provider,
    Template,
    Zone,
    event_zones,
)
from acredita_kernel.models.accreditation import (
    AccreditationRequest,
    RequestTransition,
    request_zones,
)
from acredita_kernel.models.print_batch import PrintBatch
from acredita_kernel.models.credential import Credential

__all__ = [
    "AccreditationRequest",
    "Area",
    "Credential",
    "Employee",
    "Event",
    "PrintBatch",
    "Provider",
    "RequestTransition",
    "Template",
    "Zone",
    "event_zones",
    "request_zones",
    "import_all_models",
]


def import_all_models() -> None:
    """Ensure every kernel model is registered on ``Base.metadata``."""
    # Importing this package already registers them; kept as an explicit hook
    # for create_tables and test fixtures.
    return None
