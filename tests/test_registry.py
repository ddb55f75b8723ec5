"""
tests.test_registry

Startup validation of the descriptor model.
"""

from __future__ import annotations

import pytest

from flushplan.metadata.model import (
    ColumnMetadata,
    EntityMetadata,
    JoinColumn,
    RelationKind,
    RelationMetadata,
    relation_id_map,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.errors import CycleError, MetadataError

from conftest import Address, Author, Customer, Post


class A:
    pass


class B:
    pass


def _entity(target: type, *relations: RelationMetadata, table: str | None = None) -> EntityMetadata:
    return EntityMetadata(
        target=target,
        table_name=table or target.__name__.lower(),
        columns=(ColumnMetadata("id", primary=True), ColumnMetadata("b_id", nullable=True)),
        relations=relations,
    )


def test_lookup_walks_subclasses(registry: MetadataRegistry) -> None:
    class GuestAuthor(Author):
        pass

    assert registry.get(GuestAuthor).target is Author
    assert registry.is_entity(GuestAuthor())
    assert not registry.is_entity({"id": 1})


def test_unknown_entity_raises(registry: MetadataRegistry) -> None:
    with pytest.raises(MetadataError):
        registry.get(A)


def test_missing_primary_key_is_rejected() -> None:
    with pytest.raises(MetadataError, match="no primary column"):
        MetadataRegistry([EntityMetadata(target=A, table_name="a", columns=(ColumnMetadata("x"),))])


def test_relation_to_unregistered_target_is_rejected() -> None:
    rel = RelationMetadata("b", RelationKind.many_to_one, B, join_columns=(JoinColumn("b_id"),))
    with pytest.raises(MetadataError, match="unregistered"):
        MetadataRegistry([_entity(A, rel)])


def test_many_to_one_needs_join_columns() -> None:
    rel = RelationMetadata("b", RelationKind.many_to_one, B)
    with pytest.raises(MetadataError, match="need join columns"):
        MetadataRegistry([_entity(A, rel), _entity(B)])


def test_non_nullable_cycle_is_rejected() -> None:
    a_to_b = RelationMetadata(
        "b", RelationKind.many_to_one, B, join_columns=(JoinColumn("b_id"),), nullable=False
    )
    b_to_a = RelationMetadata(
        "a", RelationKind.many_to_one, A, join_columns=(JoinColumn("a_id"),), nullable=False
    )
    with pytest.raises(CycleError) as exc:
        MetadataRegistry([_entity(A, a_to_b), _entity(B, b_to_a)])
    assert set(exc.value.members) == {"A", "B"}


def test_nullable_cycle_is_accepted() -> None:
    a_to_b = RelationMetadata(
        "b", RelationKind.many_to_one, B, join_columns=(JoinColumn("b_id"),), nullable=True
    )
    b_to_a = RelationMetadata(
        "a", RelationKind.many_to_one, A, join_columns=(JoinColumn("a_id"),), nullable=False
    )
    assert len(MetadataRegistry([_entity(A, a_to_b), _entity(B, b_to_a)])) == 2


def test_non_nullable_self_reference_is_rejected() -> None:
    rel = RelationMetadata(
        "parent", RelationKind.many_to_one, A, join_columns=(JoinColumn("b_id"),), nullable=False
    )
    with pytest.raises(CycleError, match="self reference"):
        MetadataRegistry([_entity(A, rel)])


def test_embedded_values_are_read_and_written_by_path(registry: MetadataRegistry) -> None:
    metadata = registry.get(Customer)
    city = metadata.find_column("address.city")
    assert city is not None and city.db_name == "address_city"

    customer = Customer(name="c")
    metadata.set_value(customer, city, "Oslo")
    assert isinstance(customer.address, Address)
    assert metadata.get_value(customer, city) == "Oslo"


def test_relation_id_map_accepts_entity_mapping_and_scalar(registry: MetadataRegistry) -> None:
    post = registry.get(Post)
    relation = post.find_relation("author")
    target = registry.get(Author)
    assert relation is not None

    assert relation_id_map(relation, Author(id=3), target) == {"id": 3}
    assert relation_id_map(relation, {"id": 3}, target) == {"id": 3}
    assert relation_id_map(relation, 3, target) == {"id": 3}
    assert relation_id_map(relation, Author(name="new"), target) is None
    assert relation_id_map(relation, None, target) is None
