from concurrent.futures import ThreadPoolExecutor

import pytest

from storyforge.errors import NotFoundError, ValidationError
from storyforge.game.inventory import InventoryLedger


def test_add_creates_then_accumulates(store, seed_spells):
    water = seed_spells["water"]
    with store.begin() as tx:
        ledger = InventoryLedger(tx)
        assert ledger.amount("u1", water) == 0
        assert ledger.add("u1", water, 3) == 3
    with store.begin() as tx:
        ledger = InventoryLedger(tx)
        assert ledger.add("u1", water, 2) == 5
        assert ledger.add("u1", water, 0) == 5

    with store.begin(read_only=True) as tx:
        assert InventoryLedger(tx).amount("u1", water) == 5


def test_repeated_adds_sum(store, seed_spells):
    fire = seed_spells["fire"]
    for _ in range(2):
        with store.begin() as tx:
            InventoryLedger(tx).add("u1", fire, 2)

    with store.begin(read_only=True) as tx:
        assert InventoryLedger(tx).amount("u1", fire) == 4


@pytest.mark.parametrize("amount", [-1, True, 1.5, "2"])
def test_invalid_amounts_rejected(store, seed_spells, amount):
    with store.begin() as tx:
        with pytest.raises(ValidationError):
            InventoryLedger(tx).add("u1", seed_spells["air"], amount)


def test_unknown_spell_rejected(store, root_id):
    with store.begin() as tx:
        with pytest.raises(NotFoundError):
            InventoryLedger(tx).add("u1", "no-such-spell", 1)


def test_fetch_returns_one_entry_per_spell(store, seed_spells):
    with store.begin() as tx:
        ledger = InventoryLedger(tx)
        ledger.add("u1", seed_spells["water"], 1)
        ledger.add("u1", seed_spells["water"], 1)
        ledger.add("u1", seed_spells["earth"], 7)
        ledger.add("u2", seed_spells["earth"], 1)

    with store.begin(read_only=True) as tx:
        entries = InventoryLedger(tx).fetch("u1")
        assert InventoryLedger(tx).fetch("nobody") == []

    amounts = {entry.spell.name: entry.amount for entry in entries}
    assert amounts == {"water": 2, "earth": 7}


def test_failed_transaction_leaves_inventory_unchanged(store, seed_spells):
    with pytest.raises(RuntimeError):
        with store.begin() as tx:
            InventoryLedger(tx).add("u1", seed_spells["water"], 5)
            raise RuntimeError("abort")

    with store.begin(read_only=True) as tx:
        assert InventoryLedger(tx).fetch("u1") == []


def test_concurrent_adds_are_not_lost(store, seed_spells):
    air = seed_spells["air"]
    workers, rounds = 8, 20

    def add_many(_):
        for _ in range(rounds):
            with store.begin() as tx:
                InventoryLedger(tx).add("u1", air, 1)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        list(executor.map(add_many, range(workers)))

    with store.begin(read_only=True) as tx:
        assert InventoryLedger(tx).amount("u1", air) == workers * rounds
        assert len(InventoryLedger(tx).fetch("u1")) == 1
