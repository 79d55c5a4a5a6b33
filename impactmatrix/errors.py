"""Error taxonomy shared by the store, the export generator and the HTTP layer."""

from __future__ import annotations


class ImpactMatrixError(Exception):
    """Base class for errors the API maps onto a client-facing response."""

    status = "500 Internal Server Error"
    code = "server_error"


class ValidationError(ImpactMatrixError):
    """Malformed input rejected before anything is written."""

    status = "400 Bad Request"
    code = "validation_error"


class FilterStateError(ValidationError):
    """A filter payload (or stored preset) does not match the FilterState schema."""

    code = "invalid_filters"


class NotFoundError(ImpactMatrixError):
    status = "404 Not Found"
    code = "not_found"

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id
