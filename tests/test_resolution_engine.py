import logging

import pytest

from propbind.bindings.store import BindingExpressionStore
from propbind.core.contracts import ResolvedValue, ValueSource
from propbind.core.data_graph import InMemoryDataGraph
from propbind.core.exceptions import CoercionError, FallbackPolicy, UnknownInstance, UnknownProperty, UnresolvedPath
from propbind.engine.dispatcher import PathMatchPolicy, ReactivityDispatcher
from propbind.engine.resolution import PropertyState, ResolutionEngine
from propbind.models.component_schema import ComponentSchema
from propbind.schema.registry import SchemaRegistry


def _engine(config, data=None, policy=PathMatchPolicy.OVERLAP, fallback_policy=FallbackPolicy.WARN):
    registry = SchemaRegistry()
    registry.register_schema(ComponentSchema.from_editor_config("donut", config))
    store = BindingExpressionStore(registry)
    graph = InMemoryDataGraph(data)
    engine = ResolutionEngine(
        registry, store, graph, ReactivityDispatcher(policy=policy), fallback_policy=fallback_policy
    )
    store.create_instance("x", "donut")
    return registry, store, graph, engine


def test_donut_scenario(donut_config):
    _, store, graph, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")

    color = engine.resolve("x", "donutColor")
    assert (color.value, color.source) == ("#00AAFF", ValueSource.BINDING)

    graph.set("/theme/accent", "not-a-color")

    color = engine.resolve("x", "donutColor")
    assert (color.value, color.source) == ("#FF6600", ValueSource.DEFAULT)

    url = engine.resolve("x", "fileUrl")
    assert (url.value, url.source) == ("", ValueSource.LITERAL)


def test_literal_value_is_coerced(donut_config):
    _, store, _, engine = _engine(donut_config)
    store.set_literal("x", "donutColor", "#abcdef")

    assert engine.resolve("x", "donutColor") == ResolvedValue(
        property_name="donutColor",
        value="#ABCDEF",
        source=ValueSource.LITERAL,
        valid_as_of=engine.resolve("x", "donutColor").valid_as_of,
    )


def test_bad_literal_falls_back_to_default(donut_config):
    _, store, _, engine = _engine(donut_config)
    store.set_literal("x", "donutColor", "orange")

    rv = engine.resolve("x", "donutColor")

    assert (rv.value, rv.source) == ("#FF6600", ValueSource.DEFAULT)
    assert isinstance(engine.last_issue("x", "donutColor"), CoercionError)


def test_unresolved_path_falls_back_to_default(donut_config):
    _, store, _, engine = _engine(donut_config, {"theme": {}})
    store.set_binding("x", "fileUrl", "/uploads/0/url")

    rv = engine.resolve("x", "fileUrl")

    assert (rv.value, rv.source) == ("", ValueSource.DEFAULT)
    assert isinstance(engine.last_issue("x", "fileUrl"), UnresolvedPath)


def test_fallback_is_logged_as_warning(donut_config, caplog):
    _, store, _, engine = _engine(donut_config)
    store.set_binding("x", "donutColor", "/missing")

    with caplog.at_level(logging.WARNING, logger="propbind"):
        engine.resolve("x", "donutColor")

    assert any("Falling back to default for x.donutColor" in r.getMessage() for r in caplog.records)


def test_allow_policy_falls_back_silently(donut_config, caplog):
    _, store, _, engine = _engine(donut_config, fallback_policy=FallbackPolicy.ALLOW)
    store.set_binding("x", "donutColor", "/missing")

    with caplog.at_level(logging.WARNING, logger="propbind"):
        rv = engine.resolve("x", "donutColor")

    assert rv.source == ValueSource.DEFAULT
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert engine.last_issue("x", "donutColor") is not None


def test_resolve_is_idempotent(donut_config):
    _, store, _, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")

    first = engine.resolve("x", "donutColor")
    second = engine.resolve("x", "donutColor")

    assert first == second
    assert engine.resolution_count("x", "donutColor") == 1


def test_state_machine_uncomputed_resolved_uncomputed(donut_config):
    _, store, _, engine = _engine(donut_config)

    assert engine.state("x", "donutColor") == PropertyState.UNCOMPUTED
    engine.resolve("x", "donutColor")
    assert engine.state("x", "donutColor") == PropertyState.RESOLVED

    store.set_literal("x", "donutColor", "#000000")
    assert engine.state("x", "donutColor") == PropertyState.UNCOMPUTED


def test_valid_as_of_never_decreases(donut_config):
    _, store, graph, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")
    seen = [engine.resolve("x", "donutColor").valid_as_of]

    for value in ("#111111", "bad", "#222222"):
        graph.set("/theme/accent", value)
        engine.resolve("x", "fileUrl")
        seen.append(engine.resolve("x", "donutColor").valid_as_of)

    assert seen == sorted(seen)
    assert len(set(seen)) == len(seen)


def test_data_change_re_resolves_exactly_once_and_leaves_others_alone(donut_config):
    _, store, graph, engine = _engine(donut_config, {"a": {"b": "#00AAFF", "c": "#111111"}})
    store.create_instance("y", "donut")
    store.set_binding("x", "donutColor", "/a/b")
    store.set_binding("y", "donutColor", "/a/c")

    x_values, y_values = [], []
    engine.subscribe("x", "donutColor", x_values.append, emit_current=False)
    engine.subscribe("y", "donutColor", y_values.append, emit_current=False)
    x_before = engine.resolution_count("x", "donutColor")
    y_before = engine.resolution_count("y", "donutColor")

    graph.set("/a/b", "#222222")

    assert [v.value for v in x_values] == ["#222222"]
    assert y_values == []
    assert engine.resolution_count("x", "donutColor") == x_before + 1
    assert engine.resolution_count("y", "donutColor") == y_before


def test_ancestor_binding_is_notified_under_ancestors_policy():
    config = {"properties": {"meta": {"type": "Text", "defaultValue": "", "bindable": True}}}
    _, store, graph, engine = _engine(config, {"a": {"b": "x"}}, policy=PathMatchPolicy.ANCESTORS)
    store.set_binding("x", "meta", "/a")
    values = []
    engine.subscribe("x", "meta", values.append, emit_current=False)

    graph.set("/a/b", "y")

    # /a now holds a dict, which is not Text
    assert [(v.value, v.source) for v in values] == [("", ValueSource.DEFAULT)]


def test_rebinding_to_literal_leaves_no_dangling_subscription(donut_config):
    _, store, graph, engine = _engine(donut_config, {"a": {"b": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/a/b")
    values = []
    engine.subscribe("x", "donutColor", values.append, emit_current=False)

    store.set_literal("x", "donutColor", "#123456")
    count = engine.resolution_count("x", "donutColor")
    del values[:]

    graph.set("/a/b", "#654321")

    assert values == []
    assert engine.resolution_count("x", "donutColor") == count
    assert engine.dispatcher.tracked_path("x", "donutColor") is None
    assert engine.resolve("x", "donutColor").value == "#123456"


def test_rebinding_moves_tracking_to_the_new_path(donut_config):
    _, store, graph, engine = _engine(donut_config, {"a": "#000001", "b": "#000002"})
    store.set_binding("x", "donutColor", "/a")
    values = []
    engine.subscribe("x", "donutColor", values.append)

    store.set_binding("x", "donutColor", "/b")
    graph.set("/a", "#0000AA")
    graph.set("/b", "#0000BB")

    assert [v.value for v in values] == ["#000001", "#000002", "#0000BB"]


def test_subscription_close_stops_delivery(donut_config):
    _, store, _, engine = _engine(donut_config)
    values = []

    with engine.subscribe("x", "donutColor", values.append) as sub:
        store.set_literal("x", "donutColor", "#101010")

    store.set_literal("x", "donutColor", "#202020")

    assert [v.value for v in values] == ["#FF6600", "#101010"]
    assert not sub.active
    assert engine.subscriptions("x", "donutColor") == ()


def test_failing_subscriber_does_not_break_others(donut_config):
    _, store, _, engine = _engine(donut_config)
    values = []

    def broken(_value):
        raise RuntimeError("renderer crashed")

    engine.subscribe("x", "donutColor", broken)
    engine.subscribe("x", "donutColor", values.append)
    store.set_literal("x", "donutColor", "#303030")

    assert [v.value for v in values] == ["#FF6600", "#303030"]


def test_emissions_follow_trigger_order(donut_config):
    _, store, graph, engine = _engine(donut_config, {"a": "#000000"})
    store.set_binding("x", "donutColor", "/a")
    values = []
    engine.subscribe("x", "donutColor", values.append, emit_current=False)

    for i in range(1, 6):
        graph.set("/a", f"#00000{i}")

    assert [v.value for v in values] == [f"#00000{i}" for i in range(1, 6)]
    assert [v.valid_as_of for v in values] == sorted(v.valid_as_of for v in values)


def test_schema_reregistration_invalidates_instances(donut_config):
    registry, store, _, engine = _engine(donut_config)
    values = []
    engine.subscribe("x", "donutColor", values.append, emit_current=False)
    engine.resolve("x", "fileUrl")

    donut_config["properties"]["donutColor"]["defaultValue"] = "#0000FF"
    registry.register_schema(ComponentSchema.from_editor_config("donut", donut_config), overwrite=True)

    # The stored literal is the old default, still a valid Color
    assert [v.value for v in values] == ["#FF6600"]
    assert engine.resolution_count("x", "fileUrl") == 1
    assert engine.state("x", "fileUrl") == PropertyState.UNCOMPUTED


def test_reregistration_resets_binding_on_now_non_bindable_property(donut_config):
    registry, store, graph, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")
    assert engine.resolve("x", "donutColor").source == ValueSource.BINDING

    donut_config["properties"]["donutColor"]["bindable"] = False
    registry.register_schema(ComponentSchema.from_editor_config("donut", donut_config), overwrite=True)

    rv = engine.resolve("x", "donutColor")
    assert (rv.value, rv.source) == ("#FF6600", ValueSource.LITERAL)
    assert engine.dispatcher.tracked_path("x", "donutColor") is None


def test_type_change_mid_session_falls_back_to_default(donut_config):
    _, store, graph, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")
    engine.resolve("x", "donutColor")

    graph.set("/theme/accent", 0x00AAFF)

    rv = engine.resolve("x", "donutColor")
    assert (rv.value, rv.source) == ("#FF6600", ValueSource.DEFAULT)


def test_unknown_property_propagates_to_caller(donut_config):
    _, _, _, engine = _engine(donut_config)

    with pytest.raises(UnknownProperty):
        engine.resolve("x", "borderWidth")


def test_forget_instance_drops_state_and_subscriptions(donut_config):
    _, store, _, engine = _engine(donut_config, {"a": "#000000"})
    store.set_binding("x", "donutColor", "/a")
    sub = engine.subscribe("x", "donutColor", lambda v: None)

    engine.forget_instance("x")

    assert not sub.active
    assert engine.state("x", "donutColor") == PropertyState.UNCOMPUTED
    assert engine.dispatcher.tracked_path("x", "donutColor") is None


def test_deleting_an_earlier_list_element_re_resolves_later_index_bindings(donut_config):
    _, store, graph, engine = _engine(donut_config, {"files": ["a.glb", "b.glb", "c.glb"]})
    store.set_binding("x", "fileUrl", "/files/2")
    seen = []
    engine.subscribe("x", "fileUrl", seen.append, emit_current=False)

    assert engine.resolve("x", "fileUrl").value == "c.glb"

    graph.delete("/files/0")

    url = engine.resolve("x", "fileUrl")
    assert (url.value, url.source) == ("", ValueSource.DEFAULT)
    assert isinstance(engine.last_issue("x", "fileUrl"), UnresolvedPath)
    assert [v.source for v in seen] == [ValueSource.DEFAULT]


def test_destroying_in_the_store_clears_engine_state(donut_config):
    _, store, _, engine = _engine(donut_config, {"theme": {"accent": "#00AAFF"}})
    store.set_binding("x", "donutColor", "/theme/accent")
    sub = engine.subscribe("x", "donutColor", lambda v: None)
    assert engine.resolve("x", "donutColor").source == ValueSource.BINDING

    store.destroy_instance("x")

    assert not sub.active
    assert engine.dispatcher.tracked_path("x", "donutColor") is None

    store.create_instance("x", "donut")
    color = engine.resolve("x", "donutColor")
    assert (color.value, color.source) == ("#FF6600", ValueSource.LITERAL)


def test_unknown_keys_leave_no_lock_behind(donut_config):
    _, store, _, engine = _engine(donut_config)

    with pytest.raises(UnknownProperty):
        engine.resolve("x", "nope")
    with pytest.raises(UnknownProperty):
        engine.subscribe("x", "nope", lambda v: None)
    with pytest.raises(UnknownInstance):
        engine.resolve("ghost", "donutColor")
    with pytest.raises(UnknownInstance):
        engine.invalidate("ghost", "donutColor")

    assert store._locks == {}


def test_binding_through_a_numeric_string_key_follows_writes(donut_config):
    _, store, graph, engine = _engine(donut_config, {"users": {"42": {"color": "#000000"}}})
    store.set_binding("x", "donutColor", "/users/42/color")
    assert engine.resolve("x", "donutColor").value == "#000000"

    graph.set("/users/42/color", "#123456")

    assert engine.resolve("x", "donutColor").value == "#123456"
    assert graph.snapshot() == {"users": {"42": {"color": "#123456"}}}
