from mamebridge.bridge.registry import NameRegistry
from mamebridge.bridge.subscribers import SubscriberDirectory


def test_resolve_assigns_ids_in_first_seen_order():
    registry = NameRegistry()
    assert [registry.resolve(n) for n in ("lamp0", "lamp1", "led0")] == [1, 2, 3]
    assert registry.names() == ["lamp0", "lamp1", "led0"]


def test_resolve_is_idempotent():
    registry = NameRegistry()
    first = registry.resolve("lamp0")
    registry.resolve("lamp1")
    assert registry.resolve("lamp0") == first
    assert len(registry) == 2


def test_lookup_both_directions():
    registry = NameRegistry()
    output_id = registry.resolve("lamp0")
    assert registry.lookup(output_id) == "lamp0"
    assert registry.lookup(99) is None
    assert "lamp0" in registry
    assert "lamp9" not in registry


def test_id_zero_never_assigned():
    registry = NameRegistry()
    ids = {registry.resolve(f"out{i}") for i in range(50)}
    assert 0 not in ids
    assert registry.lookup(0) is None


def test_clear_restarts_ids():
    registry = NameRegistry()
    registry.resolve("lamp0")
    registry.resolve("lamp1")
    registry.clear()
    assert len(registry) == 0
    assert registry.lookup(1) is None
    # previously id 2, now the first name seen
    assert registry.resolve("lamp1") == 1


def test_new_ids_logged_only_below_limit(caplog):
    registry = NameRegistry()
    registry._next_id = 999
    with caplog.at_level("INFO", logger="mamebridge.bridge.registry"):
        registry.resolve("a")
        registry.resolve("b")
    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["New output 'a' -> id 999"]


def test_directory_register_is_not_duplicated():
    directory = SubscriberDirectory()
    assert directory.register(0x10) is True
    assert directory.register(0x10) is False
    assert len(directory) == 1
    assert 0x10 in directory


def test_directory_unregister():
    directory = SubscriberDirectory()
    directory.register(1)
    assert directory.unregister(1) is True
    assert directory.unregister(1) is False
    assert len(directory) == 0


def test_for_each_iterates_snapshot():
    directory = SubscriberDirectory()
    for handle in (1, 2, 3):
        directory.register(handle)

    seen = []

    def visit(handle):
        seen.append(handle)
        # changes made during iteration are not observed by it
        directory.unregister(handle)
        directory.register(handle + 100)

    directory.for_each(visit)
    assert sorted(seen) == [1, 2, 3]
    assert sorted(directory.snapshot()) == [101, 102, 103]
