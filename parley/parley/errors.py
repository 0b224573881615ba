"""Exception hierarchy for Parley.

    ParleyError
    +-- ValidationError        bad input (unsupported file type, blank message)
    +-- NotFoundError          missing thread/document/user/channel
    +-- ConflictError          write to a blob that already holds bytes
    +-- AuthenticationError    no verified identity on the request
    +-- StorageError           blob or record write failure
    +-- EmbeddingError         embedding call or document extraction failed
    +-- CompletionError        model call failed or timed out
    |   +-- EmptyCompletionError   model returned no content
    +-- ConsistencyError       a cascading delete left orphaned children

Each class carries the HTTP status the API layer answers with.
"""


class ParleyError(Exception):
    """Base exception for all Parley errors."""

    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(message)


class ValidationError(ParleyError):
    status_code = 400


class NotFoundError(ParleyError):
    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(ParleyError):
    status_code = 409


class AuthenticationError(ParleyError):
    status_code = 401


class StorageError(ParleyError):
    status_code = 502


class EmbeddingError(ParleyError):
    status_code = 502


class CompletionError(ParleyError):
    status_code = 502


class EmptyCompletionError(CompletionError):
    def __init__(self, message: str = "No content in completion response"):
        super().__init__(message)


class ConsistencyError(ParleyError):
    status_code = 500
