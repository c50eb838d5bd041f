"""Tests for the dataspace and closure-function registries and the session."""

import pytest

from knowstore import session as ks_session
from knowstore.closures import CallKind, ClosureFunction, ClosureRegistry, apply_closure
from knowstore.config import TRANSIENT_DATASPACE
from knowstore.dataspace import DataspaceRegistry
from knowstore.errors import ConfigurationError, InvariantError, PayloadError, RegistryError
from knowstore.items import Item
from knowstore.session import Session
from knowstore.values import make_int, make_string


class TestDataspaceRegistry:
    def test_get_creates_once(self):
        reg = DataspaceRegistry()
        assert reg.get("s") is reg.get("s")
        assert "s" in reg

    def test_transient_is_builtin(self):
        reg = DataspaceRegistry()
        assert reg.transient.transient
        assert reg.get(TRANSIENT_DATASPACE) is reg.transient
        assert not reg.get("s").transient

    def test_invalid_name(self):
        with pytest.raises(ConfigurationError):
            DataspaceRegistry().get("../etc")

    def test_names_sorted(self):
        reg = DataspaceRegistry()
        reg.get("zeta")
        reg.get("alpha")
        assert reg.names() == ["alpha", TRANSIENT_DATASPACE, "zeta"]


class TestClosureRegistry:
    def test_register_and_find(self):
        reg = ClosureRegistry()
        desc = ClosureFunction("greet", 2, CallKind.TWO_VALUES, fn=print)
        reg.register(desc)
        assert reg.find("greet") is desc
        assert reg.find("missing") is None
        assert reg.find(None) is None
        assert reg.names() == ["greet"]

    def test_same_descriptor_twice(self):
        reg = ClosureRegistry()
        desc = ClosureFunction("greet", 2, CallKind.TWO_VALUES, fn=print)
        reg.register(desc)
        reg.register(desc)
        assert len(reg) == 1

    def test_conflicting_registration(self):
        reg = ClosureRegistry()
        reg.register(ClosureFunction("greet", 2, CallKind.TWO_VALUES, fn=print))
        with pytest.raises(RegistryError):
            reg.register(ClosureFunction("greet", 3, CallKind.TWO_VALUES, fn=print))

    def test_negative_arity(self):
        with pytest.raises(RegistryError):
            ClosureFunction("bad", -1, CallKind.ONE_VALUE, fn=print)


class TestApplyClosure:
    def test_two_values(self, session, space):
        calls = []

        def join(a, b, clo):
            calls.append((a, b, clo))
            return clo.closure_nth(0)

        item = session.make_item(space)
        item.make_closure(ClosureFunction("join", 1, CallKind.TWO_VALUES, join), [make_string("r")])
        assert apply_closure(item, make_int(1), make_int(2)) == make_string("r")
        assert calls == [(make_int(1), make_int(2), item)]

    def test_gobject_do_result_ignored(self, session, space):
        item = session.make_item(space)
        item.make_closure(ClosureFunction("act", 0, CallKind.GOBJECT_DO, lambda obj, clo: "ignored"))
        assert apply_closure(item, object()) is None

    def test_wrong_argument_count(self, session, space):
        item = session.make_item(space)
        item.make_closure(ClosureFunction("one", 0, CallKind.ONE_VALUE, lambda v, clo: v))
        with pytest.raises(PayloadError):
            apply_closure(item, make_int(1), make_int(2))

    def test_not_a_closure(self, session, space):
        with pytest.raises(PayloadError):
            apply_closure(session.make_item(space), make_int(1))


class TestSession:
    def test_reset_gives_fresh_state(self, session, space):
        session.make_item(space)
        fresh = ks_session.reset()
        assert fresh is ks_session.current()
        assert fresh is not session
        assert fresh.last_ident == 0
        assert fresh.top_item is None

    def test_advance_ident(self, session, space):
        session.advance_ident(41)
        assert session.make_item(space).ident == 42
        session.advance_ident(10)
        assert session.make_item(space).ident == 43

    def test_find_item(self, session, space):
        item = session.make_item(space)
        assert session.find_item(item.ident) is item
        assert session.find_item(item.ident + 100) is None

    def test_adopt_collision(self, session, space):
        item = session.make_item(space)
        with pytest.raises(InvariantError):
            session.adopt_item(Item(item.ident))

    def test_module_level_helpers(self):
        space = ks_session.dataspace("s")
        assert ks_session.make_item(space).dataspace is space

    def test_forget_item(self, session, space):
        item = session.make_item(space)
        session.forget_item(Item(item.ident))
        assert session.find_item(item.ident) is item
        session.forget_item(item)
        assert session.find_item(item.ident) is None
        session.adopt_item(Item(item.ident))

    def test_activated_restores_previous(self, session):
        other = Session()
        with ks_session.activated(other):
            assert ks_session.current() is other
        assert ks_session.current() is session
        with pytest.raises(RuntimeError):
            with ks_session.activated(other):
                raise RuntimeError("boom")
        assert ks_session.current() is session
