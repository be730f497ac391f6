import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from catalog_sync.db.tables import value_mappings
from catalog_sync.errors import MappingNotFoundError, ValidationError
from catalog_sync.mapping.resolver import (
    DEFAULT_DEFER_NOTE,
    MappingStatus,
    ValueMappingResolver,
    check_mapping_invariant,
)


@pytest.fixture()
def resolver(engine, clock, category_ids):
    return ValueMappingResolver(engine, clock=clock)


def _assert_invariant(engine):
    with engine.connect() as conn:
        for row in conn.execute(select(value_mappings)):
            assert (row.status == "mapped") == (row.category_id is not None)


def test_observe_creates_unmapped_then_only_refreshes(resolver, clock, category_ids):
    created = resolver.observe("Spring25", 2)
    assert created.status is MappingStatus.UNMAPPED
    assert created.sku_count == 2
    first_seen = created.first_seen_at

    resolver.resolve("Spring25", category_ids[1])
    clock.advance(60)
    refreshed = resolver.observe("Spring25", 5)
    assert refreshed.status is MappingStatus.MAPPED
    assert refreshed.category_id == category_ids[1]
    assert refreshed.sku_count == 5
    assert refreshed.first_seen_at == first_seen
    assert refreshed.last_seen_at > first_seen


def test_observe_many_reports_new_values(resolver):
    assert resolver.observe_many({"Spring25": 2, "Core": 1}) == ["Spring25", "Core"]
    assert resolver.observe_many({"Spring25": 3, "Holiday": 4}) == ["Holiday"]


def test_resolve_rejects_unknown_category(resolver, engine):
    resolver.observe("Spring25", 2)
    with pytest.raises(ValidationError):
        resolver.resolve("Spring25", 999)
    assert resolver.get("Spring25").status is MappingStatus.UNMAPPED
    _assert_invariant(engine)


def test_status_transitions_keep_invariant(resolver, engine, category_ids):
    resolver.observe("Spring25", 2)

    mapped = resolver.resolve("Spring25", category_ids[0])
    assert mapped.is_mapped
    _assert_invariant(engine)

    deferred = resolver.defer("Spring25")
    assert deferred.status is MappingStatus.DEFERRED
    assert deferred.category_id is None
    assert deferred.note == DEFAULT_DEFER_NOTE
    _assert_invariant(engine)

    unmapped = resolver.unmap("Spring25")
    assert unmapped.status is MappingStatus.UNMAPPED
    assert unmapped.category_id is None
    assert unmapped.note == DEFAULT_DEFER_NOTE
    _assert_invariant(engine)

    remapped = resolver.resolve("Spring25", category_ids[0])
    assert remapped.note is None


def test_defer_with_note(resolver):
    resolver.observe("GROUP items", 12)
    assert resolver.defer("GROUP items", "Bundles, ask merchandising").note == "Bundles, ask merchandising"


def test_unknown_values_raise_not_found(resolver, category_ids):
    with pytest.raises(MappingNotFoundError):
        resolver.resolve("Nope", category_ids[0])
    with pytest.raises(MappingNotFoundError):
        resolver.get_by_id(12345)
    with pytest.raises(LookupError):
        resolver.unmap("Nope")


def test_bulk_resolve_is_all_or_nothing(resolver, category_ids):
    resolver.observe_many({"Spring25": 2, "Core": 1})
    mapped = resolver.bulk_resolve(["Spring25", "Core", "Spring25"], category_ids[0])
    assert [item.raw_value for item in mapped] == ["Spring25", "Core"]

    resolver.unmap("Core")
    with pytest.raises(MappingNotFoundError):
        resolver.bulk_resolve(["Core", "Missing"], category_ids[1])
    assert resolver.get("Core").status is MappingStatus.UNMAPPED


def test_list_by_status_orders_by_impact(resolver, category_ids):
    resolver.observe_many({"B": 3, "A": 3, "C": 10, "D": 1})
    resolver.resolve("D", category_ids[0])
    assert [item.raw_value for item in resolver.list_by_status()] == ["C", "A", "B", "D"]
    assert [item.raw_value for item in resolver.list_by_status("unmapped")] == ["C", "A", "B"]
    with pytest.raises(ValidationError):
        resolver.list_by_status("bogus")


def test_stats(resolver, category_ids):
    resolver.observe_many({"A": 3, "B": 4, "C": 5})
    resolver.resolve("A", category_ids[0])
    resolver.defer("B")
    stats = resolver.stats()
    assert (stats.total, stats.mapped, stats.unmapped, stats.deferred) == (3, 1, 1, 1)
    assert stats.unmapped_sku_count == 5


def test_check_mapping_invariant():
    check_mapping_invariant(MappingStatus.MAPPED, 1)
    check_mapping_invariant(MappingStatus.DEFERRED, None)
    with pytest.raises(ValidationError):
        check_mapping_invariant(MappingStatus.MAPPED, None)
    with pytest.raises(ValidationError):
        check_mapping_invariant(MappingStatus.UNMAPPED, 1)


def test_database_rejects_mapped_without_target(engine, clock):
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                value_mappings.insert().values(
                    raw_value="Broken",
                    status="mapped",
                    category_id=None,
                    sku_count=0,
                    first_seen_at=clock(),
                    last_seen_at=clock(),
                )
            )
