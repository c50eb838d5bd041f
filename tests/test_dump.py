"""Tests for knowstore.dump - reachability scan, pruning and emission."""

import json
from unittest.mock import patch

import pytest

from knowstore.config import FORMAT_VERSION, MANIFEST_NAME
from knowstore.closures import CallKind, ClosureFunction
from knowstore.dump import Dumper, dump, manifest_text
from knowstore.errors import DumpError
from knowstore.items import Item
from knowstore.values import make_int, make_node, make_set, make_string


def _read(directory, name):
    return json.loads((directory / f"{name}.json").read_text())


class TestQueuing:
    def test_skips_non_items_and_transient(self, session, space):
        dumper = Dumper(session)
        assert dumper.enqueue(None) is True
        assert dumper.enqueue(make_int(3)) is True
        assert dumper.enqueue(session.make_item(session.transient)) is True
        assert dumper.enqueue(Item(500)) is True

    def test_queues_once(self, session, space):
        dumper = Dumper(session)
        item = session.make_item(space)
        assert dumper.enqueue(item) is False
        assert dumper.enqueue(item) is False
        assert dumper.scan(item) == [item]


class TestScan:
    def test_breadth_first_order(self, session, space):
        root, a, b, c = (session.make_item(space) for _ in range(4))
        root.put_attr(a, b)
        a.content = c
        assert Dumper(session).scan(root) == [root, a, b, c]

    def test_reaches_through_values_and_payloads(self, session, space):
        root = session.make_item(space)
        conn, son, member, vec_elem, que_elem, dict_val, capture = (
            session.make_item(space) for _ in range(7)
        )
        root.content = make_node(conn, [make_node(conn, [son])])
        root.put_attr(conn, make_set([member]))
        vec = session.make_item(space)
        vec.vector_append(vec_elem)
        que = session.make_item(space)
        que.queue_append(que_elem)
        dic = session.make_item(space)
        dic.dict_put("k", dict_val)
        clo = session.make_item(space)
        clo.make_closure(ClosureFunction("f", 1, CallKind.ONE_VALUE, print), [capture])
        root.vector_append(make_set([vec, que, dic, clo]))
        found = set(Dumper(session).scan(root))
        for expected in (conn, son, member, vec_elem, que_elem, dict_val, capture):
            assert expected in found

    def test_transient_connective_skips_sons(self, session, space):
        root = session.make_item(space)
        hidden_conn = session.make_item(session.transient)
        son = session.make_item(space)
        root.content = make_node(hidden_conn, [son])
        assert Dumper(session).scan(root) == [root]

    def test_transient_key_hides_value(self, session, space):
        root = session.make_item(space)
        hidden_key = session.make_item(session.transient)
        val = session.make_item(space)
        root.put_attr(hidden_key, val)
        assert Dumper(session).scan(root) == [root]

    def test_cycle_terminates(self, session, space):
        a, b, k = (session.make_item(space) for _ in range(3))
        a.put_attr(k, b)
        b.put_attr(k, a)
        assert Dumper(session).scan(a) == [a, k, b]

    def test_deep_node_chain(self, session, space):
        conn = session.make_item(space)
        leaf = session.make_item(space)
        value = leaf
        for _ in range(5000):
            value = make_node(conn, [value])
        root = session.make_item(space)
        root.content = value
        assert leaf in Dumper(session).scan(root)

    def test_transient_root(self, session):
        with pytest.raises(DumpError):
            Dumper(session).scan(session.make_item(session.transient))


class TestEncoding:
    def _scanned(self, session, root):
        dumper = Dumper(session)
        dumper.scan(root)
        return dumper

    def test_scalars(self, session, space):
        dumper = self._scanned(session, session.make_item(space))
        assert dumper.encode_value(None) is None
        assert dumper.encode_value(make_int(-4)) == {"kd": "intv", "int": -4}
        assert dumper.encode_value(make_string("hé")) == {"kd": "strv", "str": "hé"}

    def test_node_with_transient_connective_is_null(self, session, space):
        root = session.make_item(space)
        node = make_node(session.make_item(session.transient), [make_int(1)])
        root.content = node
        dumper = self._scanned(session, root)
        assert dumper.encode_value(node) is None
        assert dumper.encode_item(root)["itemcontent"] is None

    def test_node(self, session, space):
        root = session.make_item(space)
        conn = session.make_item(space)
        node = make_node(conn, [make_int(1), None])
        root.content = node
        dumper = self._scanned(session, root)
        assert dumper.encode_value(node) == {
            "kd": "nodv",
            "conid": conn.ident,
            "sons": [{"kd": "intv", "int": 1}, None],
        }

    def test_set_drops_transient_members(self, session, space):
        root = session.make_item(space)
        keep = [session.make_item(space) for _ in range(2)]
        hidden = session.make_item(session.transient)
        members = make_set([keep[1], hidden, keep[0]])
        root.content = members
        encoded = self._scanned(session, root).encode_value(members)
        assert encoded == {"kd": "setv", "elemids": [keep[0].ident, keep[1].ident]}

    def test_set_ids_strictly_ascending(self, session, space):
        root = session.make_item(space)
        members = [Item(n, space) for n in (5, 3, 5, 9, 3)]
        root.content = make_set(members)
        encoded = self._scanned(session, root).encode_value(root.content)
        assert encoded["elemids"] == [3, 5, 9]

    def test_attributes_sorted_and_pruned(self, session, space):
        root = session.make_item(space)
        k1, k2 = session.make_item(space), session.make_item(space)
        hidden = session.make_item(session.transient)
        root.put_attr(k2, make_int(2))
        root.put_attr(k1, make_int(1))
        root.put_attr(hidden, make_int(3))
        k1.put_attr(k2, hidden)
        dumper = self._scanned(session, root)
        assert dumper.encode_item(root)["itemattrs"] == [
            {"atid": k1.ident, "val": {"kd": "intv", "int": 1}},
            {"atid": k2.ident, "val": {"kd": "intv", "int": 2}},
        ]
        assert dumper.encode_item(k1)["itemattrs"] == []

    def test_buffer_lines(self, session, space):
        root = session.make_item(space)
        root.buffer_append("a\nbb\n")
        assert self._scanned(session, root).encode_payload(root) == {
            "payloadkind": "buffer",
            "payloadbuflen": 5,
            "payloadbuffer": ["a", "bb", ""],
        }

    def test_payloads(self, session, space):
        root = session.make_item(space)
        dumper = self._scanned(session, root)
        assert dumper.encode_payload(root) is None
        root.make_vector()
        assert dumper.encode_payload(root) == {"payloadkind": "vector", "payloadvector": []}
        root.make_queue()
        root.queue_append(make_int(1))
        assert dumper.encode_payload(root) == {
            "payloadkind": "queue",
            "payloadqueue": [{"kd": "intv", "int": 1}],
        }
        root.make_dictionary()
        root.dict_put("b", make_int(2))
        root.dict_put("a", root)
        assert dumper.encode_payload(root) == {
            "payloadkind": "dictionnary",
            "payloaddictlen": 2,
            "payloaddictionnary": {
                "a": {"kd": "itrv", "id": root.ident},
                "b": {"kd": "intv", "int": 2},
            },
        }
        root.make_closure(ClosureFunction("greet", 2, CallKind.TWO_VALUES, print), [make_int(1)])
        assert dumper.encode_payload(root) == {
            "payloadkind": "closure",
            "payloadclofun": "greet",
            "payloadcloval": [{"kd": "intv", "int": 1}, None],
        }


class TestDumpFiles:
    def test_minimal_graph(self, session, tmp_path):
        item = Item(42, session.dataspace("s"))
        session.adopt_item(item)
        session.top_item = item
        report = dump(tmp_path / "state")
        data = _read(tmp_path / "state", "s")
        assert data["version"] == FORMAT_VERSION
        assert data["itemcont"] == [
            {"item": 42, "itemattrs": [], "itemcontent": None, "itempayload": None}
        ]
        manifest = (tmp_path / "state" / MANIFEST_NAME).read_text().splitlines()
        assert "DATA s" in manifest
        assert "TOPDICT 42" in manifest
        assert report.items_per_dataspace == {"s": 1}
        assert report.item_count == 1

    def test_one_file_per_dataspace(self, session, tmp_path):
        root = session.make_item(session.dataspace("alpha"))
        other = session.make_item(session.dataspace("beta"))
        root.put_attr(other, other)
        session.make_item(session.dataspace("gamma"))
        dump(tmp_path, root=root)
        assert (tmp_path / "alpha.json").exists()
        assert (tmp_path / "beta.json").exists()
        assert not (tmp_path / "gamma.json").exists()
        assert not (tmp_path / "transient.json").exists()
        assert [r["item"] for r in _read(tmp_path, "beta")["itemcont"]] == [other.ident]

    def test_no_duplicate_ids(self, session, space, tmp_path):
        items = [session.make_item(space) for _ in range(6)]
        for a in items:
            for b in items:
                a.put_attr(b, make_set(items))
        dump(tmp_path, root=items[0])
        ids = [r["item"] for r in _read(tmp_path, "s")["itemcont"]]
        assert len(ids) == len(set(ids)) == 6

    def test_creates_owner_only_directory(self, session, space, tmp_path):
        target = tmp_path / "deep" / "state"
        dump(target, root=session.make_item(space))
        assert target.is_dir()
        assert target.stat().st_mode & 0o077 == 0

    def test_no_top_item(self, session, tmp_path):
        with pytest.raises(DumpError):
            dump(tmp_path)

    def test_no_leftover_temp_files(self, session, space, tmp_path):
        dump(tmp_path, root=session.make_item(space))
        assert sorted(p.name for p in tmp_path.iterdir()) == [MANIFEST_NAME, "s.json"]

    def test_manifest_text(self):
        text = manifest_text(["m1", "m2"], ["a", "b"], 7)
        directives = [line for line in text.splitlines() if line and not line.startswith("#")]
        assert directives == ["MODULE m1", "MODULE m2", "DATA a", "DATA b", "TOPDICT 7"]

    def test_default_state_dir(self, session, space, tmp_path):
        session.top_item = session.make_item(space)
        with patch("knowstore.dump.DEFAULT_STATE_DIR", tmp_path / "default"):
            report = dump()
        assert report.directory == tmp_path / "default"
        assert (tmp_path / "default" / MANIFEST_NAME).is_file()

    def test_write_failure(self, session, space, tmp_path):
        root = session.make_item(space)
        with patch("knowstore.dump._write_atomic", side_effect=OSError("disk full")):
            with pytest.raises(DumpError, match="disk full"):
                dump(tmp_path, root=root)
