import threading

from backend.replyrag.core.resources import ResourceRegistry


def _get_in_thread(registry, name, timeout=5.0):
    out = {}
    worker = threading.Thread(target=lambda: out.setdefault("value", registry.get(name)), daemon=True)
    worker.start()
    worker.join(timeout)
    assert not worker.is_alive(), f"registry.get({name!r}) did not return"
    return out["value"]


def test_factory_can_resolve_another_resource():
    registry = ResourceRegistry()
    registry.register("client", lambda: {"kind": "client"})
    registry.register("store", lambda: {"kind": "store", "client": registry.get("client")})

    store = _get_in_thread(registry, "store")

    assert store["client"] is registry.get("client")
    assert registry.is_loaded("client")
    assert registry.is_loaded("store")


def test_factory_can_register_while_building():
    registry = ResourceRegistry()

    def _build_store():
        registry.register("client", object)
        return {"client": registry.get("client")}

    registry.register("store", _build_store)

    assert _get_in_thread(registry, "store")["client"] is registry.get("client")


def test_get_builds_once_and_free_runs_finalizer():
    registry = ResourceRegistry()
    built, closed = [], []
    registry.register("encoder", lambda: built.append(1) or object(), finalizer=closed.append)

    first = registry.get("encoder")
    assert registry.get("encoder") is first
    assert built == [1]

    registry.reset()
    assert closed == [first]
    assert not registry.is_loaded("encoder")


def test_override_wins_over_factory():
    registry = ResourceRegistry()
    registry.register("llm_client", lambda: "real")
    registry.override("llm_client", "fake")
    assert registry.get("llm_client") == "fake"
