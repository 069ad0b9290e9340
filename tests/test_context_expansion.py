import pytest

from schemas.associations import ContextDepth, EntityType
from services.associations.context_expansion import ContextExpansionService
from services.associations.implicit import ImplicitAssociationDeriver
from services.associations.query_engine import AssociationQueryEngine
from services.associations.record_store import AssociationRecordStore, PairLocks


@pytest.fixture
def store(repository):
    return AssociationRecordStore(repository, pair_locks=PairLocks())


@pytest.fixture
def expansion(repository, store):
    engine = AssociationQueryEngine(repository, store, ImplicitAssociationDeriver(repository))
    return ContextExpansionService(engine)


@pytest.fixture
async def graph(store, seed):
    # D1 -> C1 (explicit), C1 -> S1 (salesOwnerId), P1 -> C1 (companyId), P1 -> D2 (explicit)
    await seed(EntityType.DEAL, "D1")
    await seed(EntityType.DEAL, "D2")
    await seed(EntityType.COMPANY, "C1", salesOwnerId="S1")
    await seed(EntityType.SALESPERSON, "S1")
    await seed(EntityType.CONTACT, "P1", companyId="C1")
    await store.create(EntityType.DEAL, "D1", EntityType.COMPANY, "C1")
    await store.create(EntityType.CONTACT, "P1", EntityType.DEAL, "D2")


@pytest.mark.anyio
@pytest.mark.parametrize("depth", [ContextDepth.SHALLOW, ContextDepth.MEDIUM])
async def test_shallow_and_medium_have_no_indirect(expansion, graph, depth):
    context = await expansion.get_ai_context(EntityType.DEAL, "D1", depth)

    assert len(context.direct.associations) == 1
    assert context.indirect.associations == []
    assert context.summary == (
        "Direct associations: 1\n"
        "Indirect associations: 0\n"
        "Direct association types: deal→company\n"
        "Indirect association types: \n"
    )


@pytest.mark.anyio
async def test_deep_expansion_excludes_origin_and_deduplicates(expansion, graph):
    context = await expansion.get_ai_context(EntityType.DEAL, "D1", ContextDepth.DEEP)

    indirect_ids = sorted(association.id for association in context.indirect.associations)
    assert indirect_ids == ["implicit_C1_salesperson_S1"]
    assert all(not a.involves(EntityType.DEAL, "D1") for a in context.indirect.associations)
    assert context.indirect.entity_ids("salespeople") == {"S1"}
    assert context.indirect.entity_ids("companies") == {"C1"}
    assert context.indirect.entity_ids("deals") == set()
    assert "Indirect associations: 1\n" in context.summary
    assert "Indirect association types: company→salesperson\n" in context.summary


@pytest.mark.anyio
async def test_deep_expansion_across_several_neighbours(expansion, graph):
    context = await expansion.get_ai_context(EntityType.COMPANY, "C1", ContextDepth.DEEP)

    direct_counterparts = {
        a.counterpart(EntityType.COMPANY, "C1") for a in context.direct.associations
    }
    assert direct_counterparts == {
        (EntityType.DEAL, "D1"),
        (EntityType.SALESPERSON, "S1"),
    }
    assert context.indirect.associations == []


@pytest.mark.anyio
async def test_deep_expansion_from_contact(expansion, graph):
    context = await expansion.get_ai_context(EntityType.CONTACT, "P1", ContextDepth.DEEP)

    indirect = {a.type_key for a in context.indirect.associations}
    assert indirect == {"deal→company", "company→salesperson"}
    ids = [a.id for a in context.indirect.associations]
    assert len(ids) == len(set(ids))
    assert context.indirect.entity_ids("contacts") == set()
    assert context.indirect.summary.total_associations == 2
