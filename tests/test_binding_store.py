import pytest

from propbind.bindings.store import BindingExpressionStore
from propbind.core.contracts import Literal, PathRef, PropertyKey
from propbind.core.exceptions import InvalidPath, NotBindable, UnknownInstance, UnknownProperty
from propbind.models.component_schema import PropertyDescriptor
from propbind.schema.registry import SchemaRegistry


def _registry():
    registry = SchemaRegistry()
    registry.register(
        "donut",
        [
            PropertyDescriptor(name="donutColor", declared_type="Color", default_value="#FF6600", bindable=True),
            PropertyDescriptor(name="fileUrl", declared_type="Text", default_value="", bindable=True),
            PropertyDescriptor(name="title", declared_type="Text", default_value="Donut", bindable=False),
        ],
    )
    return registry


def _store():
    registry = _registry()
    store = BindingExpressionStore(registry)
    store.create_instance("x", "donut")
    return registry, store


def test_new_instance_starts_with_default_literals_at_version_zero():
    _, store = _store()

    assert store.get("x", "donutColor") == Literal("#FF6600")
    assert store.get("x", "fileUrl") == Literal("")
    assert store.version("x", "donutColor") == 0
    assert store.component_type_of("x") == "donut"
    assert store.instances_of("donut") == ("x",)


def test_set_literal_and_set_binding_bump_versions():
    _, store = _store()

    assert store.set_literal("x", "donutColor", "#123456") == 1
    assert store.set_binding("x", "donutColor", "/theme/accent") == 2

    assert store.get("x", "donutColor") == PathRef(("theme", "accent"))
    assert store.version("x", "donutColor") == 2
    assert store.version("x", "fileUrl") == 0


def test_set_binding_accepts_segment_sequences():
    _, store = _store()
    store.set_binding("x", "fileUrl", ["uploads", 0, "url"])

    assert store.get("x", "fileUrl") == PathRef(("uploads", 0, "url"))


def test_set_binding_on_non_bindable_raises_and_does_not_mutate():
    _, store = _store()
    seen = []
    store.add_listener(lambda key, expr, version: seen.append(key))

    with pytest.raises(NotBindable, match="not bindable"):
        store.set_binding("x", "title", "/page/title")

    assert store.get("x", "title") == Literal("Donut")
    assert store.version("x", "title") == 0
    assert seen == []


def test_literal_on_non_bindable_is_allowed():
    _, store = _store()
    store.set_literal("x", "title", "Revenue")

    assert store.get("x", "title") == Literal("Revenue")


def test_unknown_property_is_rejected_for_both_actions():
    _, store = _store()

    with pytest.raises(UnknownProperty):
        store.set_literal("x", "borderWidth", 2)
    with pytest.raises(UnknownProperty):
        store.set_binding("x", "borderWidth", "/a")
    with pytest.raises(UnknownProperty):
        store.get("x", "borderWidth")


def test_unknown_instance_is_rejected():
    _, store = _store()

    with pytest.raises(UnknownInstance):
        store.set_literal("y", "donutColor", "#000000")
    with pytest.raises(UnknownInstance):
        store.destroy_instance("y")


def test_invalid_path_is_rejected_without_mutation():
    _, store = _store()

    with pytest.raises(InvalidPath):
        store.set_binding("x", "fileUrl", "uploads/url")

    assert store.version("x", "fileUrl") == 0


def test_listeners_receive_key_expression_and_version():
    _, store = _store()
    seen = []
    store.add_listener(lambda key, expr, version: seen.append((key, expr, version)))

    store.set_binding("x", "donutColor", "/theme/accent")

    assert seen == [(PropertyKey("x", "donutColor"), PathRef(("theme", "accent")), 1)]


def test_duplicate_instance_and_destroy():
    _, store = _store()

    with pytest.raises(ValueError, match="already exists"):
        store.create_instance("x", "donut")

    store.destroy_instance("x")
    assert not store.has_instance("x")
    with pytest.raises(UnknownInstance):
        store.get("x", "donutColor")


def test_reconcile_after_reregistration():
    registry, store = _store()
    store.set_binding("x", "fileUrl", "/uploads/url")
    store.set_binding("x", "donutColor", "/theme/accent")
    seen = []
    store.add_listener(lambda key, expr, version: seen.append((key.property_name, expr)))

    registry.register(
        "donut",
        [
            PropertyDescriptor(name="donutColor", declared_type="Color", default_value="#FF6600", bindable=True),
            PropertyDescriptor(name="fileUrl", declared_type="Text", default_value="none.glb", bindable=False),
            PropertyDescriptor(name="opacity", declared_type="Number", default_value=1, bindable=True),
        ],
        overwrite=True,
    )
    store.reconcile("donut")

    assert store.property_names("x") == ("donutColor", "fileUrl", "opacity")
    assert store.get("x", "donutColor") == PathRef(("theme", "accent"))
    assert store.get("x", "fileUrl") == Literal("none.glb")
    assert store.get("x", "opacity") == Literal(1)
    assert ("title", None) in seen
    assert ("fileUrl", Literal("none.glb")) in seen


def test_destroy_tells_listeners_every_property_is_gone():
    _, store = _store()
    store.set_binding("x", "donutColor", "/theme/accent")
    seen = []
    store.add_listener(lambda key, expr, version: seen.append((key, expr, version)))

    store.destroy_instance("x")

    assert sorted(seen, key=lambda s: s[0].property_name) == [
        (PropertyKey("x", "donutColor"), None, 2),
        (PropertyKey("x", "fileUrl"), None, 1),
        (PropertyKey("x", "title"), None, 1),
    ]
    assert store._locks == {}
