"""Tests for the IndexManager: build, hydrate, incremental update, clear."""
import pytest

from strata.cancellation import CancellationToken
from strata.config import Config
from strata.indexer import IndexBuildError, IndexingCancelled, IndexManager, IndexStatus
from strata.persistence import IndexPersistence
from strata.workspace import Workspace

from conftest import HashingEmbedder


def _files(state):
    return sorted({c.file_path for c in state.chunks})


class TestBuild:
    def test_full_build(self, manager, tmp_workspace):
        state = manager.build_or_get_index()
        expected = sorted(str(tmp_workspace / n) for n in ("auth.py", "db.py", "notes.md"))
        assert _files(state) == expected
        assert sorted(state.file_metadata) == expected
        assert state.workspace_key == manager.workspace.key
        assert manager.status == IndexStatus.READY

    def test_chunk_line_ranges(self, manager, tmp_workspace):
        state = manager.build_or_get_index()
        auth = [c for c in state.chunks if c.file_path == str(tmp_workspace / "auth.py")]
        assert [(c.start_line0, c.end_line0) for c in auth] == [(0, 1)]

    def test_writes_cache(self, manager, tmp_workspace):
        manager.build_or_get_index()
        loaded = IndexPersistence(tmp_workspace).load()
        assert loaded is not None
        assert len(loaded.documents) == 3

    def test_second_call_reuses_index(self, manager, embedder):
        first = manager.build_or_get_index()
        calls = embedder.calls
        assert manager.build_or_get_index() is first
        assert embedder.calls == calls

    def test_force_rebuilds(self, manager):
        first = manager.build_or_get_index()
        second = manager.build_or_get_index(force=True)
        assert second is not first
        assert [c.key for c in second.chunks] == [c.key for c in first.chunks]

    def test_empty_workspace(self, tmp_path, embedder):
        root = tmp_path / "empty"
        root.mkdir()
        mgr = IndexManager(Config(), Workspace(roots=[root]), embedding_fn=embedder)
        state = mgr.build_or_get_index()
        assert state.chunks == []
        assert state.file_metadata == {}

    def test_oversized_file_skipped(self, workspace, embedder, tmp_workspace):
        (tmp_workspace / "huge.py").write_text("x" * 500)
        mgr = IndexManager(Config(max_file_chars=200), workspace, embedding_fn=embedder)
        state = mgr.build_or_get_index()
        assert str(tmp_workspace / "huge.py") not in state.file_metadata
        assert str(tmp_workspace / "auth.py") in state.file_metadata

    def test_undecodable_file_skipped(self, manager, tmp_workspace):
        (tmp_workspace / "blob.dat").write_bytes(b"\xff\xfe\x00\x81")
        state = manager.build_or_get_index()
        assert str(tmp_workspace / "blob.dat") not in state.file_metadata
        assert len(state.file_metadata) == 3

    def test_max_chunks_cap(self, workspace, embedder):
        mgr = IndexManager(Config(max_chunks=2), workspace, embedding_fn=embedder)
        state = mgr.build_or_get_index()
        assert len(state.chunks) == 2
        assert len(state.file_metadata) == 2

    def test_exclude_globs(self, config, tmp_workspace, embedder):
        ws = Workspace(roots=[tmp_workspace], exclude_globs=["*.md"])
        state = IndexManager(config, ws, embedding_fn=embedder).build_or_get_index()
        assert str(tmp_workspace / "notes.md") not in state.file_metadata


class TestHydrate:
    def test_loads_from_cache(self, manager, config, workspace, monkeypatch):
        built = manager.build_or_get_index()

        fresh = IndexManager(config, workspace, embedding_fn=HashingEmbedder())

        def no_rebuild(*args, **kwargs):
            raise AssertionError("full rebuild not expected")

        monkeypatch.setattr(fresh, "_full_rebuild", no_rebuild)
        hydrated = fresh.build_or_get_index()
        assert [c.key for c in hydrated.chunks] == [c.key for c in built.chunks]
        assert hydrated.file_metadata == built.file_metadata
        assert fresh.status == IndexStatus.READY

    def test_corrupt_cache_triggers_rebuild(self, manager, config, workspace, tmp_workspace):
        manager.build_or_get_index()
        IndexPersistence(tmp_workspace).index_path.write_text("{broken")
        fresh = IndexManager(config, workspace, embedding_fn=HashingEmbedder())
        state = fresh.build_or_get_index()
        assert len(state.file_metadata) == 3
        assert IndexPersistence(tmp_workspace).load() is not None

    def test_hydrate_failure_falls_back_to_rebuild(self, manager, config, workspace):
        manager.build_or_get_index()
        embedder = HashingEmbedder()
        fresh = IndexManager(config, workspace, embedding_fn=embedder)

        original = fresh._hydrate

        def failing_hydrate(key):
            embedder.fail_with = ValueError("provider down")
            try:
                return original(key)
            finally:
                embedder.fail_with = None

        fresh._hydrate = failing_hydrate
        state = fresh.build_or_get_index()
        assert len(state.chunks) == 3


class TestFailures:
    def test_failed_rebuild_keeps_previous_index(self, manager, embedder):
        before = manager.build_or_get_index()
        embedder.fail_with = ValueError("401 unauthorized")
        with pytest.raises(IndexBuildError, match="Failed to create embeddings"):
            manager.build_or_get_index(force=True)
        assert manager.state is before
        assert manager.status == IndexStatus.READY

    def test_failed_first_build_leaves_empty(self, manager, embedder):
        embedder.fail_with = ValueError("bad model")
        with pytest.raises(IndexBuildError):
            manager.build_or_get_index()
        assert manager.state is None
        assert manager.status == IndexStatus.EMPTY

    def test_cancelled_build(self, manager):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(IndexingCancelled):
            manager.build_or_get_index(cancellation=token)
        assert manager.state is None
        assert manager.status == IndexStatus.EMPTY

    def test_save_failure_is_not_fatal(self, manager, monkeypatch):
        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(manager.persistence, "save", boom)
        state = manager.build_or_get_index()
        assert len(state.chunks) == 3


class TestIncrementalReindex:
    def test_without_index_is_noop(self, manager, tmp_workspace):
        assert manager.incremental_reindex([str(tmp_workspace / "auth.py")]) is None
        assert manager.state is None

    def test_ignores_non_indexable_paths(self, manager, tmp_workspace, tmp_path):
        manager.build_or_get_index()
        result = manager.incremental_reindex([
            str(tmp_workspace / "node_modules" / "lib.js"),
            str(tmp_workspace / ".strata" / "index.json"),
            str(tmp_path / "outside.py"),
        ])
        assert result is None

    def test_directory_is_ignored(self, manager, embedder, tmp_workspace):
        manager.build_or_get_index()
        embedded = embedder.texts_embedded
        (tmp_workspace / "newpkg").mkdir()

        assert manager.incremental_reindex([str(tmp_workspace / "newpkg")]) is None
        assert embedder.texts_embedded == embedded

    def test_unchanged_content_does_not_reembed(self, manager, embedder, tmp_workspace):
        state = manager.build_or_get_index()
        embedded = embedder.texts_embedded
        path = tmp_workspace / "db.py"
        path.write_text(path.read_text())

        manager.incremental_reindex([str(path)])

        assert embedder.texts_embedded == embedded
        assert manager.state.store is state.store
        assert manager.find_stale_files() == []

    def test_update_swaps_in_consistent_state(self, manager, tmp_workspace):
        before = manager.build_or_get_index()
        before_keys = [c.key for c in before.chunks]
        (tmp_workspace / "extra.py").write_text("def extra():\n    pass")

        manager.incremental_reindex([str(tmp_workspace / "extra.py")])

        after = manager.state
        assert after is not before
        assert [c.key for c in before.chunks] == before_keys
        assert len(before.chunks) == len(before.documents)
        assert len(after.chunks) == len(after.documents) == 4

    def test_modified_file(self, manager, tmp_workspace):
        manager.build_or_get_index()
        path = tmp_workspace / "auth.py"
        path.write_text("def logout(session):\n    session.close()")

        result = manager.incremental_reindex([str(path)])

        assert result == {"files": 1, "chunks_removed": 1, "chunks_total": 3}
        state = manager.state
        texts = [c.text for c in state.chunks if c.file_path == str(path)]
        assert texts == ["def logout(session):\n    session.close()"]
        assert manager.status == IndexStatus.READY

    def test_modified_file_persisted(self, manager, tmp_workspace):
        manager.build_or_get_index()
        path = tmp_workspace / "auth.py"
        path.write_text("def logout(session):\n    session.close()")
        manager.incremental_reindex([str(path)])

        loaded = IndexPersistence(tmp_workspace).load()
        assert loaded.file_metadata[str(path)] == manager.state.file_metadata[str(path)]
        assert any("logout" in d.page_content for d in loaded.documents)

    def test_deleted_file(self, manager, tmp_workspace):
        manager.build_or_get_index()
        path = tmp_workspace / "db.py"
        path.unlink()

        result = manager.incremental_reindex([str(path)])

        assert result["chunks_total"] == 2
        assert str(path) not in _files(manager.state)
        assert str(path) not in manager.state.file_metadata

    def test_new_file(self, manager, tmp_workspace):
        manager.build_or_get_index()
        path = tmp_workspace / "billing.py"
        path.write_text("def charge(card, amount):\n    return gateway.charge(card, amount)")

        manager.incremental_reindex([str(path)])

        assert str(path) in _files(manager.state)
        assert str(path) in manager.state.file_metadata

    def test_file_grown_past_limit_dropped(self, workspace, embedder, tmp_workspace):
        mgr = IndexManager(Config(max_file_chars=200), workspace, embedding_fn=embedder)
        mgr.build_or_get_index()
        path = tmp_workspace / "auth.py"
        path.write_text("y" * 500)

        mgr.incremental_reindex([str(path)])

        assert str(path) not in _files(mgr.state)
        assert str(path) not in mgr.state.file_metadata
        assert str(path) in mgr.state.skipped_files
        assert mgr.find_stale_files() == []

    def test_cancelled_keeps_state(self, manager, tmp_workspace):
        before = manager.build_or_get_index()
        chunks_before = list(before.chunks)
        (tmp_workspace / "auth.py").write_text("changed")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IndexingCancelled):
            manager.incremental_reindex([str(tmp_workspace / "auth.py")], cancellation=token)

        assert manager.state.chunks == chunks_before
        assert manager.status == IndexStatus.READY

    def test_search_sees_update(self, manager, tmp_workspace):
        manager.build_or_get_index()
        path = tmp_workspace / "billing.py"
        path.write_text("def refund invoice payment")
        manager.incremental_reindex([str(path)])

        results = manager.state.store.similarity_search("refund invoice payment", 1)
        assert results[0].page_content == "def refund invoice payment"


class TestStaleFiles:
    def test_fresh_index_has_no_stale_files(self, manager):
        manager.build_or_get_index()
        assert manager.find_stale_files() == []

    def test_files_over_chunk_cap_are_not_stale(self, workspace, embedder, tmp_workspace):
        mgr = IndexManager(Config(max_chunks=2), workspace, embedding_fn=embedder)
        mgr.build_or_get_index()
        assert str(tmp_workspace / "notes.md") in mgr.state.skipped_files
        assert mgr.find_stale_files() == []

        (tmp_workspace / "notes.md").write_text("Rewritten release notes")
        assert mgr.find_stale_files() == [str(tmp_workspace / "notes.md")]

    def test_oversized_files_are_not_stale(self, workspace, embedder, tmp_workspace):
        (tmp_workspace / "huge.py").write_text("x" * 500)
        mgr = IndexManager(Config(max_file_chars=200), workspace, embedding_fn=embedder)
        mgr.build_or_get_index()
        assert str(tmp_workspace / "huge.py") in mgr.state.skipped_files
        assert mgr.find_stale_files() == []

    def test_skipped_files_survive_restart(self, workspace, tmp_workspace):
        cfg = Config(max_chunks=2)
        IndexManager(cfg, workspace, embedding_fn=HashingEmbedder()).build_or_get_index()

        fresh = IndexManager(cfg, workspace, embedding_fn=HashingEmbedder())
        fresh.build_or_get_index()
        assert str(tmp_workspace / "notes.md") in fresh.state.skipped_files
        assert fresh.find_stale_files() == []

    def test_deleted_skipped_file_is_stale(self, workspace, embedder, tmp_workspace):
        mgr = IndexManager(Config(max_chunks=2), workspace, embedding_fn=embedder)
        mgr.build_or_get_index()
        (tmp_workspace / "notes.md").unlink()
        assert mgr.find_stale_files() == [str(tmp_workspace / "notes.md")]
        mgr.incremental_reindex(mgr.find_stale_files())
        assert mgr.state.skipped_files == {}

    def test_no_index(self, manager):
        assert manager.find_stale_files() == []

    def test_detects_modified_new_and_deleted(self, manager, tmp_workspace):
        manager.build_or_get_index()
        (tmp_workspace / "auth.py").write_text("changed content")
        (tmp_workspace / "new.py").write_text("brand new")
        (tmp_workspace / "db.py").unlink()

        stale = set(manager.find_stale_files())

        assert stale == {
            str(tmp_workspace / "auth.py"),
            str(tmp_workspace / "new.py"),
            str(tmp_workspace / "db.py"),
        }


class TestWorkspaceAndClear:
    def test_workspace_change_rebuilds(self, manager, config, tmp_path, embedder):
        first = manager.build_or_get_index()
        other = (tmp_path / "other").resolve()
        other.mkdir()
        (other / "main.go").write_text("package main\nfunc main() {}")

        manager.workspace = Workspace(roots=[other])
        state = manager.build_or_get_index()

        assert state is not first
        assert state.workspace_key == other.as_uri()
        assert _files(state) == [str(other / "main.go")]
        assert manager.persistence.index_path == other / ".strata" / "index.json"

    def test_no_roots_has_no_cache(self, config, embedder):
        mgr = IndexManager(config, Workspace(), embedding_fn=embedder)
        assert mgr.persistence is None
        state = mgr.build_or_get_index()
        assert state.chunks == []
        assert mgr.stats["workspace_key"] == "no-workspace"

    def test_clear_index(self, manager, tmp_workspace):
        manager.build_or_get_index()
        manager.clear_index()
        assert manager.state is None
        assert manager.status == IndexStatus.EMPTY
        assert not IndexPersistence(tmp_workspace).exists()

    def test_clear_then_build(self, manager, embedder):
        manager.build_or_get_index()
        manager.clear_index()
        calls = embedder.calls
        state = manager.build_or_get_index()
        assert len(state.chunks) == 3
        assert embedder.calls > calls

    def test_stats(self, manager):
        assert manager.stats["status"] == "empty"
        assert manager.stats["total_chunks"] == 0
        manager.build_or_get_index()
        stats = manager.stats
        assert stats["status"] == "ready"
        assert stats["total_chunks"] == 3
        assert stats["files_indexed"] == 3
        assert stats["chunk_lines"] == 20
        assert stats["chunk_overlap_lines"] == 5


class TestChunkCap:
    @pytest.fixture
    def capped(self, workspace, embedder):
        cfg = Config(max_chunks=3, chunk_lines=20, chunk_overlap_lines=0)
        return IndexManager(cfg, workspace, embedding_fn=embedder)

    def test_build_keeps_whole_files(self, workspace, embedder, tmp_workspace):
        (tmp_workspace / "auth.py").write_text("\n".join(f"a{i} = {i}" for i in range(45)))
        cfg = Config(max_chunks=2, chunk_lines=20, chunk_overlap_lines=0)
        state = IndexManager(cfg, workspace, embedding_fn=embedder).build_or_get_index()
        auth = str(tmp_workspace / "auth.py")
        assert auth not in _files(state)
        assert auth in state.skipped_files
        assert _files(state) == [str(tmp_workspace / "db.py"), str(tmp_workspace / "notes.md")]

    def test_grown_file_is_never_partially_indexed(self, capped, tmp_workspace):
        capped.build_or_get_index()
        db = tmp_workspace / "db.py"
        db.write_text("\n".join(f"row_{i} = fetch({i})" for i in range(45)))

        capped.incremental_reindex([str(db)])

        state = capped.state
        assert [c for c in state.chunks if c.file_path == str(db)] == []
        assert str(db) not in state.file_metadata
        assert str(db) in state.skipped_files
        assert len(state.chunks) == 2
        assert capped.find_stale_files() == []

    def test_shrunk_file_comes_back(self, capped, tmp_workspace):
        capped.build_or_get_index()
        db = tmp_workspace / "db.py"
        db.write_text("\n".join(f"row_{i} = fetch({i})" for i in range(45)))
        capped.incremental_reindex([str(db)])

        db.write_text("def connect(url):\n    return url")
        capped.incremental_reindex(capped.find_stale_files())

        assert str(db) in _files(capped.state)
        assert str(db) not in capped.state.skipped_files
