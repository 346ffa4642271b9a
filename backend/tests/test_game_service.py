from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import RecordingProvider, build_chain
from storyforge import config
from storyforge.errors import NotFoundError, ValidationError
from storyforge.game.spells import list_spells
from storyforge.logic import game_service
from storyforge.logic.game_service import GameService, build_provider
from storyforge.llm.topone_gateway import ToponeGateway
from storyforge.services.llm_engine import LLMEngine, LocalCraftingEngine


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def service(store, provider):
    svc = GameService(store, provider)
    svc.initialize()
    return svc


@pytest.fixture
def seeds(service):
    with service.store.begin(read_only=True) as tx:
        return {spell.name: spell.spell_id for spell in list_spells(tx)}


def test_initialize_is_idempotent(service):
    first = service.initialize()
    second = service.initialize()
    assert first == second


def test_register_user_starts_at_default_root(service):
    root_id = service.initialize()
    user = service.register_user("u1", "ada")

    assert user.in_node == root_id
    current = service.current_node("u1").node
    assert current.node_id == root_id
    assert current.is_root
    assert current.content.paragraphs[0].text == "This is the beginning of your story."


def test_register_user_twice_rejected(service):
    service.register_user("u1", "ada")
    with pytest.raises(ValidationError):
        service.register_user("u1", "ada again")


def test_current_node_for_unknown_user(service):
    with pytest.raises(NotFoundError):
        service.current_node("ghost")


def test_nodes_defaults_to_two_nodes(service):
    root_id = service.initialize()
    chain = build_chain(service.store, root_id, [1, 1, 1])

    response = service.nodes(chain[-1])

    assert [node.node_id for node in response.nodes] == [chain[2], chain[1]]


def test_nodes_clamps_large_limits(service):
    root_id = service.initialize()
    chain = build_chain(service.store, root_id, [1] * 8)

    response = service.nodes(chain[-1], limit_nodes=50, limit_paragraphs=10_000)

    assert len(response.nodes) == config.LIMIT_NODES_MAX


def test_nodes_paragraph_limit_is_clamped(service):
    root_id = service.initialize()
    chain = build_chain(service.store, root_id, [60, 60, 60])

    response = service.nodes(chain[-1], limit_nodes=5, limit_paragraphs=500)

    assert [node.node_id for node in response.nodes] == [chain[2], chain[1]]


@pytest.mark.parametrize(
    "limits",
    [{"limit_nodes": 0}, {"limit_paragraphs": 0}, {"limit_nodes": -3}],
)
def test_nodes_rejects_limits_below_one(service, limits):
    root_id = service.initialize()
    with pytest.raises(ValidationError):
        service.nodes(root_id, **limits)


def test_nodes_from_current_position(service):
    root_id = service.initialize()
    service.register_user("u1", "ada")
    node = service.extend_story("u1", root_id, "Ada steps forward.")

    response = service.nodes(user_id="u1", limit_nodes=5)

    assert [n.node_id for n in response.nodes] == [node.node_id, root_id]


def test_nodes_current_requires_user(service):
    with pytest.raises(ValidationError):
        service.nodes()


def test_nodes_unknown_start(service):
    with pytest.raises(NotFoundError):
        service.nodes("missing")


def test_get_node(service):
    root_id = service.initialize()
    assert service.get_node(root_id).node.node_id == root_id
    with pytest.raises(NotFoundError):
        service.get_node("missing")


@pytest.mark.asyncio
async def test_craft_reports_first_discovery_once(service, seeds, provider):
    ids = [seeds["water"], seeds["fire"]]

    first = await service.craft("u1", ids)
    again = await service.craft("u2", list(reversed(ids)))

    assert first.first_discovery is True
    assert again.first_discovery is False
    assert again.product.spell_id == first.product.spell_id
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_craft_rejects_non_list(service):
    with pytest.raises(ValidationError):
        await service.craft("u1", "water")


@pytest.mark.asyncio
async def test_deduplicating_service(store, root_id, seed_spells):
    svc = GameService(store, RecordingProvider(), deduplicate_ingredients=True)
    water = seed_spells["water"]

    first = await svc.craft("u1", [water])
    second = await svc.craft("u1", [water, water])

    assert second.first_discovery is False
    assert second.product.spell_id == first.product.spell_id


@pytest.mark.asyncio
async def test_grant_and_inventory(service, seeds):
    crafted = await service.craft("u1", [seeds["earth"], seeds["water"]])

    assert service.inventory("u1").entries == []
    service.grant("u1", crafted.product.spell_id)
    granted = service.grant("u1", crafted.product.spell_id, 2)
    service.grant("u1", seeds["air"], 1)

    assert granted.amount == 3
    assert granted.spell.spell_id == crafted.product.spell_id
    amounts = {e.spell.spell_id: e.amount for e in service.inventory("u1").entries}
    assert amounts == {crafted.product.spell_id: 3, seeds["air"]: 1}


def test_grant_rejects_negative(service, seeds):
    with pytest.raises(ValidationError):
        service.grant("u1", seeds["air"], -1)
    assert service.inventory("u1").entries == []


def test_extend_story_natural_then_conflict(service):
    root_id = service.initialize()
    service.register_user("u1", "ada")

    node = service.extend_story("u1", root_id, "First line.\nSecond line.")

    assert node.parent.node_id == root_id
    assert node.parent.fork is None
    assert node.paragraph_count == 2
    assert node.created_by.identifier() == "u1"
    assert node.created_by.name == "ada"
    assert service.current_node("u1").node.node_id == node.node_id
    assert service.get_node(root_id).node.natural_child == node.node_id

    with pytest.raises(ValidationError):
        service.extend_story("u1", root_id, "Another natural continuation.")
    assert service.current_node("u1").node.node_id == node.node_id


def test_extend_story_forks_take_next_position(service, seeds):
    root_id = service.initialize()
    service.register_user("u1", "ada")

    first = service.extend_story("u1", root_id, "Fire rises.", fork_spell_id=seeds["fire"])
    second = service.extend_story("u1", root_id, "Water falls.", fork_spell_id=seeds["water"])
    explicit = service.extend_story(
        "u1", root_id, "Wind turns.", fork_spell_id=seeds["air"], fork_position=7
    )

    assert first.parent.fork.position == 0
    assert second.parent.fork.position == 1
    assert explicit.parent.fork.position == 7
    root = service.get_node(root_id).node
    assert [child.fork.position for child in root.fork_children] == [0, 1, 7]
    assert root.natural_child is None

    with pytest.raises(ValidationError):
        service.extend_story(
            "u1", root_id, "Taken.", fork_spell_id=seeds["earth"], fork_position=1
        )


def test_extend_story_validation(service, seeds):
    root_id = service.initialize()
    service.register_user("u1", "ada")

    with pytest.raises(ValidationError):
        service.extend_story("u1", root_id, "   \n  ")
    with pytest.raises(ValidationError):
        service.extend_story("u1", root_id, "No spell.", fork_position=2)
    with pytest.raises(NotFoundError):
        service.extend_story("ghost", root_id, "Who am I?")
    with pytest.raises(NotFoundError):
        service.extend_story("u1", "missing", "Nowhere.")
    with pytest.raises(NotFoundError):
        service.extend_story("u1", root_id, "Bad spell.", fork_spell_id="missing")


def test_build_provider_modes():
    assert isinstance(build_provider("local"), LocalCraftingEngine)
    assert isinstance(build_provider("llm"), LLMEngine)
    assert isinstance(build_provider("gemini"), ToponeGateway)
    with pytest.raises(RuntimeError):
        build_provider("oracle")


def test_get_game_service_uses_configuration(tmp_path, monkeypatch):
    monkeypatch.setenv("STORYFORGE_PROVIDER", "local")
    monkeypatch.setenv("STORYFORGE_DEDUPLICATE_INGREDIENTS", "yes")
    game_service.get_game_service.cache_clear()
    try:
        svc = game_service.get_game_service(tmp_path / "service.db")
        assert isinstance(svc.resolver.provider, LocalCraftingEngine)
        assert svc.resolver.deduplicate_ingredients is True
        assert game_service.get_game_service(tmp_path / "service.db") is svc
        svc.register_user("u1", "ada")
        assert svc.current_node("u1").node.is_root
        svc.store.close()
    finally:
        game_service.get_game_service.cache_clear()


def test_concurrent_grants_accumulate(service, seeds):
    workers, rounds = 8, 20

    def grant_many(_):
        for _ in range(rounds):
            service.grant("u1", seeds["air"], 1)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        list(executor.map(grant_many, range(workers)))

    [entry] = service.inventory("u1").entries
    assert entry.amount == workers * rounds
