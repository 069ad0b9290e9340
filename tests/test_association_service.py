import pytest

from infrastructure.cache import InMemoryTTLCache, association_cache_key
from infrastructure.database.database import (
    call_after_commit,
    commit_session,
    discard_after_commit,
)
from schemas.associations import (
    AssociationQuery,
    AssociationStrength,
    EntityType,
    ExplicitAssociationRef,
)
from schemas.requests.association import CreateAssociationRequest
from services.associations import AssociationService


@pytest.fixture
def cache():
    return InMemoryTTLCache()


@pytest.fixture
def service(session, scope, repository, cache):
    return AssociationService(session, scope, repository=repository, cache=cache)


@pytest.mark.anyio
async def test_query_results_are_cached_until_a_mutation(service, cache, seed):
    await seed(EntityType.COMPANY, "C1")
    await seed(EntityType.CONTACT, "P1")
    await seed(EntityType.CONTACT, "P2")
    query = AssociationQuery(entity_type=EntityType.COMPANY, entity_id="C1")

    await service.create_association(EntityType.COMPANY, "C1", EntityType.CONTACT, "P1")
    first = await service.query_associations(query)
    second = await service.query_associations(query)

    assert second is first
    assert len(cache) == 1

    await service.create_association(EntityType.COMPANY, "C1", EntityType.CONTACT, "P2")
    assert len(cache) == 0

    third = await service.query_associations(query)
    assert third.summary.total_associations == 2


@pytest.mark.anyio
async def test_cache_keys_include_query_parameters(service, cache, seed):
    await seed(EntityType.COMPANY, "C1", salesOwnerId="S1")
    await seed(EntityType.SALESPERSON, "S1")

    everything = await service.query_associations(
        AssociationQuery(entity_type=EntityType.COMPANY, entity_id="C1")
    )
    contacts_only = await service.query_associations(
        AssociationQuery(
            entity_type=EntityType.COMPANY,
            entity_id="C1",
            target_types=[EntityType.CONTACT],
        )
    )

    assert everything.summary.total_associations == 1
    assert contacts_only.summary.total_associations == 0
    assert len(cache) == 2


@pytest.mark.anyio
async def test_update_and_delete_clear_the_cache(service, cache, seed):
    await seed(EntityType.DEAL, "D1")
    await seed(EntityType.COMPANY, "C1")
    created = await service.create_association(EntityType.DEAL, "D1", EntityType.COMPANY, "C1")
    query = AssociationQuery(entity_type=EntityType.DEAL, entity_id="D1")

    await service.query_associations(query)
    await service.update_association(created.association_id, strength=AssociationStrength.STRONG)
    assert len(cache) == 0

    updated = await service.query_associations(query)
    assert updated.associations[0].strength == AssociationStrength.STRONG

    await service.delete_association(ExplicitAssociationRef(id=created.association_id))
    assert len(cache) == 0
    assert await service.find_association(EntityType.DEAL, "D1", EntityType.COMPANY, "C1") is None


@pytest.mark.anyio
async def test_bulk_create_through_the_service(service, seed):
    await seed(EntityType.DEAL, "D1")
    await seed(EntityType.CONTACT, "P1")
    await seed(EntityType.CONTACT, "P2")
    requests = [
        CreateAssociationRequest(
            source_entity_type=EntityType.DEAL,
            source_entity_id="D1",
            target_entity_type=EntityType.CONTACT,
            target_entity_id=contact_id,
        )
        for contact_id in ("P1", "P2", "P1")
    ]

    results = await service.bulk_create_associations(requests)

    assert [result.created for result in results] == [True, True, False]
    assert results[0].association_id == results[2].association_id


@pytest.mark.anyio
async def test_cache_is_cleared_again_once_the_write_commits(service, cache, session, seed):
    await seed(EntityType.COMPANY, "C1")
    await seed(EntityType.CONTACT, "P1")
    key = association_cache_key("T1", "company", "C1")

    await service.create_association(EntityType.COMPANY, "C1", EntityType.CONTACT, "P1")
    # Another request read the rows committed before this write and cached them.
    await cache.set(key, "pre-commit result")
    await commit_session(session)

    assert key not in cache


class _InvalidatedDuringQuery:
    def __init__(self, inner, cache):
        self.inner = inner
        self.cache = cache

    async def query(self, query):
        result = await self.inner.query(query)
        await self.cache.clear()
        return result


@pytest.mark.anyio
async def test_result_invalidated_mid_query_is_not_cached(service, cache, seed):
    await seed(EntityType.COMPANY, "C1")
    service.query_engine = _InvalidatedDuringQuery(service.query_engine, cache)

    result = await service.query_associations(
        AssociationQuery(entity_type=EntityType.COMPANY, entity_id="C1")
    )

    assert result.summary.total_associations == 0
    assert len(cache) == 0


@pytest.mark.anyio
async def test_after_commit_callbacks_run_once(session):
    calls = []

    async def _record():
        calls.append("cleared")

    call_after_commit(session, _record)
    call_after_commit(session, _record)
    await commit_session(session)
    await commit_session(session)

    assert calls == ["cleared"]


@pytest.mark.anyio
async def test_after_commit_callbacks_are_dropped_on_rollback(session):
    calls = []

    async def _record():
        calls.append("cleared")

    call_after_commit(session, _record)
    discard_after_commit(session)
    await commit_session(session)

    assert calls == []
