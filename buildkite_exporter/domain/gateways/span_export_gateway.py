from abc import ABC, abstractmethod

from buildkite_exporter.domain.entities import SpanSpec


class SpanExportGateway(ABC):
    """
    Base class for sending span trees to a tracing backend.
    """

    @abstractmethod
    def export(self, span: SpanSpec) -> None:
        """
        Records a span and all of its children with their historical timestamps.
        Delivery to the backend may happen later, in batches.

        Args:
            span: The root of the span tree.
        """
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """
        Flushes pending spans and releases the exporter.
        """
        pass
