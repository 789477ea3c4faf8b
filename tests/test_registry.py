"""Tests for the model registry: registration, validation, and lookup."""

import pytest

from db_lifecycle.errors import (
    DuplicateModelError,
    InvalidDescriptorError,
    LifecycleError,
    ModelNotFoundError,
)
from db_lifecycle.schema.models import FieldSpec, ForeignKeySpec, IndexSpec, ModelDescriptor
from db_lifecycle.schema.registry import ModelRegistry

from conftest import make_model


class TestRegister:
    """register() validates every descriptor before adding any."""

    def test_register_returns_registry_handle(self) -> None:
        """register() returns the registry itself for chaining."""
        registry = ModelRegistry()
        assert registry.register([make_model("User", "users")]) is registry

    def test_all_preserves_insertion_order(self) -> None:
        """all() lists models in the order they were registered."""
        registry = ModelRegistry().register(
            [make_model("Zeta", "zetas"), make_model("Alpha", "alphas"), make_model("Mid", "mids")]
        )
        assert [m.name for m in registry.all()] == ["Zeta", "Alpha", "Mid"]

    def test_duplicate_name_in_batch_rejected(self) -> None:
        """Two descriptors with the same name raise DuplicateModelError."""
        with pytest.raises(DuplicateModelError):
            ModelRegistry().register([make_model("User", "users"), make_model("User", "people")])

    def test_duplicate_against_existing_rejected(self) -> None:
        """A name already registered is rejected on a later call."""
        registry = ModelRegistry().register([make_model("User", "users")])
        with pytest.raises(DuplicateModelError):
            registry.register([make_model("User", "users_v2")])

    def test_failed_registration_leaves_registry_unchanged(self) -> None:
        """A bad descriptor anywhere in the batch adds nothing."""
        registry = ModelRegistry()
        bad = ModelDescriptor(name="Broken", table="", fields=[FieldSpec(name="id")])
        with pytest.raises(InvalidDescriptorError):
            registry.register([make_model("User", "users"), bad])
        assert len(registry) == 0
        assert "User" not in registry

    def test_empty_table_rejected(self) -> None:
        """An empty table name is invalid."""
        with pytest.raises(InvalidDescriptorError, match="empty table"):
            ModelRegistry().register(
                [ModelDescriptor(name="User", table="  ", fields=[FieldSpec(name="id")])]
            )

    def test_empty_field_list_rejected(self) -> None:
        """A model without fields is invalid."""
        with pytest.raises(InvalidDescriptorError, match="no fields"):
            ModelRegistry().register([ModelDescriptor(name="User", table="users")])

    def test_field_name_collision_rejected(self) -> None:
        """The same field declared twice is invalid."""
        descriptor = ModelDescriptor(
            name="User",
            table="users",
            fields=[FieldSpec(name="email"), FieldSpec(name="email", type="VARCHAR(255)")],
        )
        with pytest.raises(InvalidDescriptorError, match="more than once"):
            ModelRegistry().register([descriptor])

    def test_index_on_undeclared_field_rejected(self) -> None:
        """An index naming a field the model does not declare is invalid."""
        descriptor = ModelDescriptor(
            name="User",
            table="users",
            fields=[FieldSpec(name="id")],
            indexes=[IndexSpec(name="idx_users_email", fields=("email",))],
        )
        with pytest.raises(InvalidDescriptorError, match="email"):
            ModelRegistry().register([descriptor])

    def test_foreign_key_on_undeclared_field_rejected(self) -> None:
        """A foreign key naming an undeclared field is invalid."""
        descriptor = ModelDescriptor(
            name="Post",
            table="posts",
            fields=[FieldSpec(name="id")],
            foreign_keys=[ForeignKeySpec(field="author_id", references_table="users")],
        )
        with pytest.raises(InvalidDescriptorError, match="author_id"):
            ModelRegistry().register([descriptor])

    def test_errors_share_lifecycle_base(self) -> None:
        """Registry errors are part of the lifecycle taxonomy."""
        assert issubclass(DuplicateModelError, LifecycleError)
        assert issubclass(InvalidDescriptorError, LifecycleError)


class TestLookup:
    """lookup(), by_table(), and the derived views."""

    def test_lookup_known_model(self) -> None:
        """lookup() returns the registered descriptor."""
        registry = ModelRegistry().register([make_model("User", "users", fields=["email"])])
        assert registry.lookup("User").table == "users"
        assert registry.lookup("User").field_names == ("id", "email")

    def test_lookup_unknown_model(self) -> None:
        """lookup() of an unknown name raises ModelNotFoundError."""
        registry = ModelRegistry().register([make_model("User", "users")])
        with pytest.raises(ModelNotFoundError) as exc_info:
            registry.lookup("Ghost")
        assert str(exc_info.value) == "Model 'Ghost' is not registered"

    def test_model_not_found_is_key_error(self) -> None:
        """ModelNotFoundError can be caught as KeyError."""
        registry = ModelRegistry()
        with pytest.raises(KeyError):
            registry.lookup("Ghost")

    def test_by_table(self) -> None:
        """by_table() finds the model registered for a table."""
        registry = ModelRegistry().register([make_model("User", "users")])
        assert registry.by_table("users").name == "User"
        assert registry.by_table("orders") is None

    def test_shared_table_rejected(self) -> None:
        """A second model mapped to an owned table is rejected, not hidden."""
        registry = ModelRegistry()
        with pytest.raises(InvalidDescriptorError, match="already owned by model 'A'"):
            registry.register(
                [
                    make_model("A", "t", fields=["x"], indexes=[("ia", ("x",), False)]),
                    make_model("B", "t", fields=["y"], indexes=[("ib", ("y",), False)]),
                ]
            )
        assert len(registry) == 0

    def test_shared_table_rejected_across_batches(self) -> None:
        registry = ModelRegistry().register([make_model("User", "users")])
        with pytest.raises(InvalidDescriptorError):
            registry.register([make_model("Admin", "users")])
        assert registry.by_table("users").name == "User"

    def test_declared_index_names(self) -> None:
        """declared_index_names() lists the model's declared indexes."""
        registry = ModelRegistry().register(
            [make_model("User", "users", fields=["email"], indexes=[("idx_email", ("email",), True)])]
        )
        assert registry.declared_index_names("users") == {"idx_email"}
        assert registry.declared_index_names("unknown") == set()

    def test_dependencies_skip_self_references(self) -> None:
        """dependencies() maps each table to the tables it references."""
        registry = ModelRegistry().register(
            [
                make_model("User", "users"),
                make_model(
                    "Comment",
                    "comments",
                    foreign_keys=[("user_id", "users"), ("parent_id", "comments")],
                ),
            ]
        )
        assert registry.dependencies() == {"users": set(), "comments": {"users"}}

    def test_from_descriptors(self) -> None:
        """from_descriptors() is register() on a fresh registry."""
        registry = ModelRegistry.from_descriptors([make_model("User", "users")])
        assert "User" in registry
        assert len(registry) == 1
