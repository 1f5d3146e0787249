"""Exception taxonomy shared by the store, the lease manager and the pipeline."""


class ScenegenError(Exception):
    """Base class for all scenegen errors."""

    pass


class LeaseLost(ScenegenError):
    """The caller's lease token no longer owns the key."""

    def __init__(self, key: str):
        super().__init__(f"Lease lost: {key}")
        self.key = key


class GenerationError(ScenegenError):
    """A generation service call failed."""

    pass


class TransientGenerationError(GenerationError):
    """Timeout, network failure or server-side error; safe to retry."""

    pass


class PermanentGenerationError(GenerationError):
    """Input the generation service rejects outright."""

    pass


class CommitConflict(ScenegenError):
    """The document's status changed underneath the committing worker."""

    def __init__(self, document_id: str, expected: str, actual: str | None):
        super().__init__(
            f"Commit conflict on document {document_id}: expected {expected}, found {actual}"
        )
        self.document_id = document_id
        self.expected = expected
        self.actual = actual


class PersistenceError(ScenegenError):
    """The document store failed to read or write."""

    pass


class IllegalTransition(ScenegenError):
    """A status change that the document state machine does not allow."""

    pass


class DocumentNotFound(ScenegenError):
    """No document with the given id."""

    def __init__(self, document_id: str):
        super().__init__(f"No such document: {document_id}")
        self.document_id = document_id


class ChapterNotFound(ScenegenError):
    """No chapter with the given id in the given document."""

    def __init__(self, document_id: str, chapter_id: str):
        super().__init__(f"No such chapter in document {document_id}: {chapter_id}")
        self.document_id = document_id
        self.chapter_id = chapter_id


class DuplicateDocument(ScenegenError):
    """A document with the same name already exists."""

    pass


class InvalidDocument(ScenegenError):
    """Rejected input on the document creation path."""

    pass


class SplitError(InvalidDocument):
    """The uploaded text could not be split into chapters."""

    pass
