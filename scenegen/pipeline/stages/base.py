"""Common interface of the stage processors."""

from abc import ABC, abstractmethod

from scenegen.llm.generation import GenerationClient
from scenegen.models import Document, DocumentStatus, StageResult
from scenegen.store.repository import DocumentStore


class StageProcessor(ABC):
    """Turns a document in ``pre_status`` into one committable unit of work.

    ``execute`` reads committed state only and never writes; the controller
    commits the returned result. Calling it again from the same committed
    state produces an equivalent result.
    """

    name: str
    pre_status: DocumentStatus
    post_status: DocumentStatus

    def __init__(self, store: DocumentStore, client: GenerationClient):
        self.store = store
        self.client = client

    def applicable(self, document: Document) -> bool:
        return document.status == self.pre_status

    @abstractmethod
    async def execute(self, document: Document) -> StageResult:
        """Run the next unit of work for ``document``.

        Raises:
            GenerationError: If a generation call fails.
            PersistenceError: If committed state cannot be read.
        """

    def _result(self, output, remaining: int) -> StageResult:
        """Stay in ``pre_status`` while units remain after this one."""
        next_status = self.post_status if remaining <= 1 else self.pre_status
        return StageResult(output=output, next_status=next_status)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.pre_status.value} -> {self.post_status.value})"
