# src/tidecopy/capabilities.py
"""
Static table of the operations each backend supports.

The table is data rather than code: enforcement in the planner and the
published feature matrix are both derived from `CAPABILITY_TABLE` and
`IF_EXISTS_TABLE`, so the two can never disagree.
"""

from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Tuple

from rich.table import Table

from tidecopy.exceptions import UnsupportedOperation
from tidecopy.locator import Backend
from tidecopy.models import IfExists


class OperationKind(Enum):
    """Operations a backend may or may not support."""

    LIST_OBJECTS = "list-objects"
    READ_OBJECT = "read-object"
    WRITE_SINGLE_OBJECT = "write-single-object"
    WRITE_PREFIX = "write-prefix"
    DELETE_OBJECT = "delete-object"
    REMOTE_COPY = "remote-copy"

    @property
    def label(self) -> str:
        """A human-readable name for the feature matrix."""
        return _LABELS[self]


_LABELS: Mapping[OperationKind, str] = MappingProxyType(
    {
        OperationKind.LIST_OBJECTS: "list objects under a prefix",
        OperationKind.READ_OBJECT: "read objects (source)",
        OperationKind.WRITE_SINGLE_OBJECT: "single-file destination",
        OperationKind.WRITE_PREFIX: "prefix (directory) destination",
        OperationKind.DELETE_OBJECT: "delete objects",
        OperationKind.REMOTE_COPY: "server-side copy (same endpoint)",
    }
)

CAPABILITY_TABLE: Mapping[Backend, FrozenSet[OperationKind]] = MappingProxyType(
    {
        Backend.LOCAL: frozenset(
            {
                OperationKind.LIST_OBJECTS,
                OperationKind.READ_OBJECT,
                OperationKind.WRITE_SINGLE_OBJECT,
                OperationKind.WRITE_PREFIX,
                OperationKind.DELETE_OBJECT,
            }
        ),
        # Writing a single named object to a bucket is not implemented yet.
        Backend.S3: frozenset(
            {
                OperationKind.LIST_OBJECTS,
                OperationKind.READ_OBJECT,
                OperationKind.WRITE_PREFIX,
                OperationKind.DELETE_OBJECT,
                OperationKind.REMOTE_COPY,
            }
        ),
    }
)

IF_EXISTS_TABLE: Mapping[Backend, FrozenSet[IfExists]] = MappingProxyType(
    {
        Backend.LOCAL: frozenset(IfExists),
        # S3 has no create-if-absent write, so existing objects are replaced.
        Backend.S3: frozenset({IfExists.OVERWRITE}),
    }
)


class CapabilityRegistry:
    """Read-only view over a capability table."""

    def __init__(
        self,
        table: Optional[Mapping[Backend, FrozenSet[OperationKind]]] = None,
        if_exists_table: Optional[Mapping[Backend, FrozenSet[IfExists]]] = None,
    ) -> None:
        """
        Args:
            table (Mapping, optional): The capability rows to serve. Defaults
                to `CAPABILITY_TABLE`.
            if_exists_table (Mapping, optional): Destination policies each
                backend honors. Defaults to `IF_EXISTS_TABLE`.
        """
        source: Mapping[Backend, FrozenSet[OperationKind]] = (
            CAPABILITY_TABLE if table is None else table
        )
        modes: Mapping[Backend, FrozenSet[IfExists]] = (
            IF_EXISTS_TABLE if if_exists_table is None else if_exists_table
        )
        self._table: Mapping[Backend, FrozenSet[OperationKind]] = MappingProxyType(
            {backend: frozenset(ops) for backend, ops in source.items()}
        )
        self._if_exists: Mapping[Backend, FrozenSet[IfExists]] = MappingProxyType(
            {backend: frozenset(m) for backend, m in modes.items()}
        )

    @property
    def backends(self) -> Tuple[Backend, ...]:
        return tuple(self._table)

    def supports(self, backend: Backend, operation: OperationKind) -> bool:
        """
        Checks whether a backend supports an operation.

        Args:
            backend (Backend): The backend to check.
            operation (OperationKind): The operation to check.

        Returns:
            bool: True if the backend's row contains the operation.
        """
        return operation in self._table.get(backend, frozenset())

    def require_support(self, backend: Backend, operation: OperationKind) -> None:
        """
        Raises unless a backend supports an operation.

        Raises:
            UnsupportedOperation: If the operation is missing from the row.
        """
        if not self.supports(backend, operation):
            raise UnsupportedOperation(backend, operation)

    def supports_if_exists(self, backend: Backend, mode: IfExists) -> bool:
        return mode in self._if_exists.get(backend, frozenset())

    def require_if_exists(self, backend: Backend, mode: IfExists) -> None:
        """
        Raises unless a destination backend honors an if-exists policy.

        Raises:
            UnsupportedOperation: If the policy is missing from the row.
        """
        if not self.supports_if_exists(backend, mode):
            raise UnsupportedOperation(backend, mode)

    def feature_rows(self) -> List[Tuple[Backend, OperationKind, bool]]:
        """
        Flattens the table into (backend, operation, supported) rows.

        Returns:
            List[Tuple[Backend, OperationKind, bool]]: One row per pair, in
                backend then operation declaration order.
        """
        return [
            (backend, operation, self.supports(backend, operation))
            for backend in self._table
            for operation in OperationKind
        ]

    def render_feature_matrix(self) -> Table:
        """
        Builds the human-readable feature matrix.

        Returns:
            Table: A rich table with one column per backend, listing the
                operations followed by the destination if-exists policies.
        """
        table: Table = Table(title="Supported operations by backend")
        table.add_column("Operation")
        for backend in self._table:
            table.add_column(backend.value, justify="center")
        for operation in OperationKind:
            cells: List[str] = [
                "yes" if self.supports(backend, operation) else "no"
                for backend in self._table
            ]
            table.add_row(operation.label, *cells)
        for mode in IfExists:
            cells = [
                "yes" if self.supports_if_exists(backend, mode) else "no"
                for backend in self._table
            ]
            table.add_row(f"destination {mode.label}", *cells)
        return table


DEFAULT_REGISTRY: CapabilityRegistry = CapabilityRegistry()
