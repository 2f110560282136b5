"""
Tests for escribano/store.py: versioned storage with compare-and-swap.

Run: python3 test_store.py
From: python/
"""

import json
import os
import tempfile
from dataclasses import replace

import pytest

from escribano.errors import DocumentNotFound, StoreError, VersionConflict
from escribano.models import ChangeGroup
from escribano.nodes import Container, TextNode, doc, node_to_json, paragraph
from escribano.store import InMemoryDocumentStore, JsonFileStore, StoredDocument


def test_put_and_get():
    store = InMemoryDocumentStore()
    stored = store.put("brief", doc(paragraph("v1")))
    assert stored.version == 0
    assert store.get_snapshot("brief").content == doc(paragraph("v1"))

    stored = store.put("brief", doc(paragraph("v2")))
    assert stored.version == 1
    assert store.exists("brief")
    with pytest.raises(DocumentNotFound):
        store.get_snapshot("other")
    print("PASS: put and get")


def test_transform_retries_on_concurrent_write():
    """A write that lands between read and commit makes the transform re-run on the newer snapshot."""
    store = InMemoryDocumentStore()
    store.put("brief", doc(paragraph("original")))
    seen = []

    def transform(snapshot):
        seen.append(snapshot.version)
        if len(seen) == 1:
            store.put("brief", doc(paragraph("concurrent")))
        return replace(snapshot, content=doc(paragraph("mine")))

    result = store.transform("brief", transform)
    assert seen == [0, 1]
    assert result.version == 2
    assert result.content == doc(paragraph("mine"))
    print("PASS: transform retries")


def test_transform_gives_up():
    store = InMemoryDocumentStore(max_retries=3)
    store.put("brief", doc(paragraph("original")))
    calls = []

    def always_conflicting(snapshot):
        calls.append(snapshot.version)
        store.put("brief", doc(paragraph(f"write {len(calls)}")))
        return snapshot

    with pytest.raises(VersionConflict):
        store.transform("brief", always_conflicting)
    assert len(calls) == 3
    print("PASS: transform gives up")


def test_json_file_store_round_trip():
    with tempfile.TemporaryDirectory() as tmp:
        store = JsonFileStore(tmp)
        groups = [ChangeGroup(id="c1", label="Counsel")]
        store.put("brief", doc(paragraph("Hello")), change_groups=groups)
        assert os.path.exists(os.path.join(tmp, "brief.json"))

        stored = store.get_snapshot("brief")
        assert stored.version == 0
        assert stored.content == doc(paragraph("Hello"))
        assert [g.label for g in stored.change_groups] == ["Counsel"]

        updated = store.transform_tree("brief", lambda tree: doc(paragraph("Bye")))
        assert updated.version == 1
        assert JsonFileStore(tmp).get_snapshot("brief").content == doc(paragraph("Bye"))
        assert not [name for name in os.listdir(tmp) if name.endswith(".tmp")]
    print("PASS: json file store round trip")


def test_bare_document_file_is_version_zero():
    with tempfile.TemporaryDirectory() as tmp:
        with open(os.path.join(tmp, "bare.json"), "w", encoding="utf-8") as f:
            json.dump(node_to_json(doc(paragraph("Imported"))), f)
        store = JsonFileStore(tmp)
        stored = store.get_snapshot("bare")
        assert stored.version == 0
        assert stored.change_groups == []
        assert store.transform("bare", lambda snap: snap).version == 1
    print("PASS: bare document is version zero")


def test_failed_write_leaves_no_temp_file():
    with tempfile.TemporaryDirectory() as tmp:
        store = JsonFileStore(tmp)
        store.put("brief", doc(paragraph("Hello")))
        unserializable = doc(Container("paragraph", {"owner": object()}, (TextNode("x"),)))
        with pytest.raises(TypeError):
            store.put("brief", unserializable)
        assert not [name for name in os.listdir(tmp) if name.endswith(".tmp")]
        assert store.get_snapshot("brief").content == doc(paragraph("Hello"))
    print("PASS: failed write leaves no temp file")


def test_invalid_document_id():
    with tempfile.TemporaryDirectory() as tmp:
        store = JsonFileStore(tmp)
        with pytest.raises(StoreError):
            store.get_snapshot("../escape")
        with pytest.raises(DocumentNotFound):
            store.get_snapshot("missing")
    print("PASS: invalid document id")


def test_stored_document_json():
    stored = StoredDocument("brief", 4, doc(paragraph("x")), [ChangeGroup(id="c1")])
    data = stored.to_json()
    assert data["version"] == 4
    assert data["content"] == {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "x"}]}]}
    assert StoredDocument.from_json("ignored", data) == stored
    print("PASS: stored document json")


if __name__ == "__main__":
    tests = [
        test_put_and_get,
        test_transform_retries_on_concurrent_write,
        test_transform_gives_up,
        test_json_file_store_round_trip,
        test_bare_document_file_is_version_zero,
        test_failed_write_leaves_no_temp_file,
        test_invalid_document_id,
        test_stored_document_json,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
