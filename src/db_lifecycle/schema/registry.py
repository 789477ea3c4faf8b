"""Model registry: validated, name-indexed model descriptors.

Pure in-memory lookup -- no I/O.  The registry is built once at startup from
descriptors supplied by the caller and never changes afterwards.

Usage:
    from db_lifecycle.schema.registry import ModelRegistry

    registry = ModelRegistry().register(descriptors)
    users = registry.lookup("User")
    for model in registry.all():
        print(model.table)
"""

from collections.abc import Iterable

from db_lifecycle.errors import (
    DuplicateModelError,
    InvalidDescriptorError,
    ModelNotFoundError,
)
from db_lifecycle.schema.models import ModelDescriptor


def _validate(descriptor: ModelDescriptor) -> None:
    if not descriptor.name.strip():
        raise InvalidDescriptorError("Model descriptor has an empty name")
    if not descriptor.table.strip():
        raise InvalidDescriptorError(f"Model '{descriptor.name}' has an empty table name")
    if not descriptor.fields:
        raise InvalidDescriptorError(f"Model '{descriptor.name}' has no fields")

    seen: set[str] = set()
    for f in descriptor.fields:
        if not f.name.strip():
            raise InvalidDescriptorError(
                f"Model '{descriptor.name}' has a field with an empty name"
            )
        if f.name in seen:
            raise InvalidDescriptorError(
                f"Model '{descriptor.name}' declares field '{f.name}' more than once"
            )
        seen.add(f.name)

    index_names: set[str] = set()
    for idx in descriptor.indexes:
        if not idx.fields:
            raise InvalidDescriptorError(
                f"Index '{idx.name}' on model '{descriptor.name}' has no fields"
            )
        unknown = [name for name in idx.fields if name not in seen]
        if unknown:
            raise InvalidDescriptorError(
                f"Index '{idx.name}' on model '{descriptor.name}' "
                f"references undeclared fields: {', '.join(unknown)}"
            )
        if idx.name in index_names:
            raise InvalidDescriptorError(
                f"Model '{descriptor.name}' declares index '{idx.name}' more than once"
            )
        index_names.add(idx.name)

    for fk in descriptor.foreign_keys:
        if fk.field not in seen:
            raise InvalidDescriptorError(
                f"Foreign key on model '{descriptor.name}' references "
                f"undeclared field '{fk.field}'"
            )


class ModelRegistry:
    """Ordered, validated collection of ``ModelDescriptor``.

    Example:
        >>> from db_lifecycle.schema.models import FieldSpec
        >>> registry = ModelRegistry().register([
        ...     ModelDescriptor(name="User", table="users",
        ...                     fields=[FieldSpec(name="id")]),
        ... ])
        >>> registry.lookup("User").table
        'users'
    """

    def __init__(self) -> None:
        self._models: dict[str, ModelDescriptor] = {}
        self._by_table: dict[str, ModelDescriptor] = {}

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[ModelDescriptor]) -> "ModelRegistry":
        return cls().register(descriptors)

    def register(self, descriptors: Iterable[ModelDescriptor]) -> "ModelRegistry":
        """Validate and add descriptors.

        All descriptors are validated before any is added, so a failed
        registration leaves the registry unchanged.

        Args:
            descriptors: Model descriptors in the order they should be
                reported.

        Returns:
            The registry itself (the handle callers pass around).

        Raises:
            DuplicateModelError: Two descriptors (or a descriptor and an
                already-registered model) share a name.
            InvalidDescriptorError: Empty table name, empty field list,
                field-name collision, an index / foreign key naming an
                undeclared field, or a table already owned by another model.
        """
        pending: dict[str, ModelDescriptor] = {}
        pending_tables: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            _validate(descriptor)
            if descriptor.name in self._models or descriptor.name in pending:
                raise DuplicateModelError(
                    f"Model '{descriptor.name}' is already registered"
                )
            owner = self._by_table.get(descriptor.table) or pending_tables.get(descriptor.table)
            if owner is not None:
                raise InvalidDescriptorError(
                    f"Model '{descriptor.name}' maps to table '{descriptor.table}', "
                    f"already owned by model '{owner.name}'"
                )
            pending[descriptor.name] = descriptor
            pending_tables[descriptor.table] = descriptor

        for name, descriptor in pending.items():
            self._models[name] = descriptor
            self._by_table[descriptor.table] = descriptor
        return self

    def lookup(self, name: str) -> ModelDescriptor:
        """Return the model registered under ``name``.

        Raises:
            ModelNotFoundError: If no such model exists.
        """
        try:
            return self._models[name]
        except KeyError:
            raise ModelNotFoundError(f"Model '{name}' is not registered") from None

    def by_table(self, table: str) -> ModelDescriptor | None:
        return self._by_table.get(table)

    def all(self) -> list[ModelDescriptor]:
        """All models in insertion order."""
        return list(self._models.values())

    def tables(self) -> list[str]:
        """Distinct table names in insertion order."""
        return list(self._by_table.keys())

    def declared_index_names(self, table: str) -> set[str]:
        model = self._by_table.get(table)
        if model is None:
            return set()
        return {idx.name for idx in model.indexes}

    def dependencies(self) -> dict[str, set[str]]:
        """Foreign key graph: table -> set of tables it references.

        Self-references are omitted.
        """
        deps: dict[str, set[str]] = {}
        for model in self._models.values():
            refs = deps.setdefault(model.table, set())
            for fk in model.foreign_keys:
                if fk.references_table != model.table:
                    refs.add(fk.references_table)
        return deps

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._models
