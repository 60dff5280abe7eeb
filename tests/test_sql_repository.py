from datetime import datetime
from decimal import Decimal
from typing import get_type_hints

import pytest
from sqlalchemy.orm import Mapped

from app.canonical.listing import ListingCandidate
from app.models.base import AuditMixin
from app.models.listing import Listing
from app.repositories.base import DuplicateListing, ListingQuery
from app.services.reconcile import Reconciler
from app.services.search import search


def _candidate(source="a", external_id="1", **fields) -> ListingCandidate:
    return ListingCandidate(source=source, external_id=external_id, raw_data={"id": external_id}, **fields)


@pytest.mark.asyncio
async def test_create_and_get(sql_repo, clock):
    created = await sql_repo.create(
        _candidate(address="1 Elm", price=500000, bathrooms="2.5", images=["https://img.test/1.jpg"]),
        now=clock(),
    )

    row = await sql_repo.get(created.id)

    assert row is not None
    assert row.source == "a"
    assert row.external_id == "1"
    assert row.price == Decimal("500000")
    assert row.bathrooms == Decimal("2.5")
    assert row.bedrooms is None
    assert row.images == ["https://img.test/1.jpg"]
    assert row.raw_data == {"id": "1"}
    assert row.active is True


@pytest.mark.asyncio
async def test_audit_columns_are_datetimes(sql_repo, session_factory, clock):
    created = await sql_repo.create(_candidate(), now=clock())

    async with session_factory() as session:
        orm_row = await session.get(Listing, created.id)

    assert isinstance(orm_row.created_at, datetime)
    assert isinstance(orm_row.updated_at, datetime)
    hints = get_type_hints(AuditMixin)
    assert hints["created_at"] == Mapped[datetime]
    assert hints["updated_at"] == Mapped[datetime]


@pytest.mark.asyncio
async def test_duplicate_identity_is_rejected(sql_repo, clock):
    await sql_repo.create(_candidate(), now=clock())
    with pytest.raises(DuplicateListing):
        await sql_repo.create(_candidate(), now=clock())
    assert await sql_repo.count() == 1


@pytest.mark.asyncio
async def test_update_keeps_identity_and_created_at(sql_repo, clock):
    created = await sql_repo.create(_candidate(price=100), now=clock())

    updated = await sql_repo.update(
        created.id,
        {"price": Decimal("90"), "source": "other", "external_id": "x", "description": "cut"},
        now=clock(),
    )

    assert updated.id == created.id
    assert updated.source == "a"
    assert updated.external_id == "1"
    assert updated.price == Decimal("90")
    assert updated.description == "cut"
    assert updated.created_at == (await sql_repo.get(created.id)).created_at
    assert updated.updated_at > updated.created_at


@pytest.mark.asyncio
async def test_update_of_missing_record_raises(sql_repo, clock):
    with pytest.raises(KeyError):
        await sql_repo.update("lst_missing", {"price": 1}, now=clock())


@pytest.mark.asyncio
async def test_query_translation_matches_memory_semantics(sql_repo, clock):
    await sql_repo.create(_candidate(external_id="1", city="Los Angeles", state="CA", price=900000, bedrooms=3, bathrooms=2), now=clock())
    await sql_repo.create(_candidate(external_id="2", city="West Los Angeles", state="ca", bedrooms=4), now=clock())
    await sql_repo.create(_candidate(external_id="3", city="Austin", state="TX", price=300000, bedrooms=2), now=clock())

    rows = await search(sql_repo, {"city": "los angeles"})
    assert [r.external_id for r in rows] == ["2", "1"]

    rows = await search(sql_repo, {"state": "CA", "max_price": "1000000"})
    assert [r.external_id for r in rows] == ["1"]

    rows = await search(sql_repo, {"min_bedrooms": "2", "max_bedrooms": "3"})
    assert sorted(r.external_id for r in rows) == ["1", "3"]


@pytest.mark.asyncio
async def test_city_filter_treats_wildcards_literally(sql_repo, clock):
    await sql_repo.create(_candidate(external_id="1", city="Austin"), now=clock())
    assert await search(sql_repo, {"city": "%"}) == []


@pytest.mark.asyncio
async def test_reconciler_over_sql_is_idempotent(sql_repo, clock):
    reconciler = Reconciler(sql_repo, clock=clock)

    first = await reconciler.reconcile([_candidate(price=100), _candidate(external_id="2")])
    second = await reconciler.reconcile([_candidate(price=200), _candidate(external_id="2")])

    assert first.as_dict() == {"created": 2, "updated": 0, "failed": 0}
    assert second.as_dict() == {"created": 0, "updated": 2, "failed": 0}
    assert await sql_repo.count() == 2
    rows = await sql_repo.find_by(ListingQuery(source="a", external_id="1"))
    assert rows[0].price == Decimal("200")


@pytest.mark.asyncio
async def test_stats_and_purge(sql_repo, clock):
    await sql_repo.create(_candidate(source="a", external_id="1"), now=clock())
    await sql_repo.create(_candidate(source="a", external_id="2"), now=clock())
    await sql_repo.create(_candidate(source="b", external_id="1"), now=clock())

    assert await sql_repo.count_by_source() == {"a": 2, "b": 1}

    assert await sql_repo.purge_source("a") == 2
    assert await sql_repo.count_by_source() == {"b": 1}
    assert await sql_repo.purge_source("nobody") == 0
