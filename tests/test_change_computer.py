"""
tests.test_change_computer

Column, relation and junction diffs against snapshots.
"""

from __future__ import annotations

from datetime import date

from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.changes import ChangeComputer
from flushplan.persistence.subject import (
    ColumnChange,
    Intent,
    RelationChange,
    SubjectArena,
    SubjectRef,
)

from conftest import Author, Category, Post


def _changed(subject) -> dict[str, object]:
    out: dict[str, object] = {}
    for change in subject.changes:
        if isinstance(change, ColumnChange):
            out[change.column.property_path] = change.value
        else:
            out[change.relation.property_name] = change.value
    return out


def test_insert_records_every_provided_column(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    author = Author(name="Ann", email=None)
    subject = arena.add(metadata=registry.get(Author), entity=author, intent=Intent.insert)

    ChangeComputer(registry).compute(arena)

    # email=None is explicit, tags/settings were never assigned.
    assert _changed(subject) == {"name": "Ann", "email": None}


def test_update_with_equivalent_values_has_no_changes(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    author = Author(
        id=1, name="Ann", birthday="2020-01-02", tags=["a", "b"], settings={"y": 1, "x": 2}
    )
    subject = arena.add(metadata=registry.get(Author), entity=author, intent=Intent.update)
    subject.snapshot = {
        "id": 1,
        "name": "Ann",
        "birthday": date(2020, 1, 2),
        "tags": ["a", "b"],
        "settings": {"x": 2, "y": 1},
        "version": 4,
    }

    ChangeComputer(registry).compute(arena)

    assert subject.changes == []
    assert not subject.has_changes


def test_update_records_only_differences(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    author = Author(id=1, name="Bob", email=None)
    subject = arena.add(metadata=registry.get(Author), entity=author, intent=Intent.update)
    subject.snapshot = {"id": 1, "name": "Ann", "email": "ann@example.com"}

    ChangeComputer(registry).compute(arena)

    assert _changed(subject) == {"name": "Bob", "email": None}
    assert [c.property_path for c in subject.diff_columns] == ["name", "email"]


def test_pending_sibling_becomes_subject_ref(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    author = Author(name="Ann")
    post = Post(title="t", author=author)
    a = arena.add(metadata=registry.get(Author), entity=author, intent=Intent.insert)
    p = arena.add(metadata=registry.get(Post), entity=post, intent=Intent.insert)

    ChangeComputer(registry).compute(arena)

    change = p.find_change(registry.get(Post).find_relation("author"))
    assert isinstance(change, RelationChange)
    assert change.value == SubjectRef(a.handle)


def test_relation_id_shortcut_matches_stored_reference(registry: MetadataRegistry) -> None:
    post_meta = registry.get(Post)
    for value in (7, {"id": 7}, Author(id=7)):
        arena = SubjectArena()
        subject = arena.add(
            metadata=post_meta, entity=Post(id=1, title="t", author=value), intent=Intent.update
        )
        subject.snapshot = {"id": 1, "title": "t", "author": {"id": 7}}

        ChangeComputer(registry).compute(arena)

        assert subject.changes == [], value


def test_changed_reference_is_recorded(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    subject = arena.add(
        metadata=registry.get(Post), entity=Post(id=1, title="t", author=8), intent=Intent.update
    )
    subject.snapshot = {"id": 1, "title": "t", "author": {"id": 7}}

    ChangeComputer(registry).compute(arena)

    assert _changed(subject) == {"author": 8}
    assert [r.property_name for r in subject.diff_relations] == ["author"]


def test_implied_owner_is_used_when_attribute_is_unset(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    author = Author(id=3, name="Ann")
    subject = arena.add(metadata=registry.get(Post), entity=Post(title="t"), intent=Intent.insert)
    subject.implied["author"] = author

    ChangeComputer(registry).compute(arena)

    assert _changed(subject) == {"title": "t", "author": author}


def test_junction_diff(registry: MetadataRegistry) -> None:
    arena = SubjectArena()
    kept = Category(id="11111111-1111-1111-1111-111111111111", name="kept")
    fresh = Category(name="fresh")
    post = Post(id=1, title="t", author=1, categories=[kept, fresh])
    subject = arena.add(metadata=registry.get(Post), entity=post, intent=Intent.update)
    sibling = arena.add(metadata=registry.get(Category), entity=fresh, intent=Intent.insert)
    subject.snapshot = {
        "id": 1,
        "title": "t",
        "author": {"id": 1},
        "categories": [
            {"id": "11111111-1111-1111-1111-111111111111"},
            {"id": "22222222-2222-2222-2222-222222222222"},
        ],
    }

    ChangeComputer(registry).compute(arena)

    assert [c.value for c in subject.junction_inserts] == [SubjectRef(sibling.handle)]
    assert [c.value for c in subject.junction_removes] == [
        {"id": "22222222-2222-2222-2222-222222222222"}
    ]
    assert subject.has_changes
