"""Tests for TreeWriter creation, reconciliation and buffering."""

import os
import stat

import pytest

from treestream import (
    AddAfterEnd,
    AddToNonDirectory,
    CannotCreateType,
    ClobberRefused,
    FailFastPolicy,
    FileType,
    MissingLinkTarget,
    MissingPath,
    PipeFromWritable,
    PropertyError,
    SizeMismatch,
    TreeEntry,
    TreeWriter,
    WriteAfterEnd,
    WriterConfig,
    WriterState,
    attach_policy,
    fs,
)


def collect_errors(writer):
    errors = []
    writer.on("error", lambda e, target: errors.append(e))
    return errors


class TestFileTargets:
    """Creating and rewriting regular files."""

    @pytest.mark.asyncio
    async def test_create_file(self, tmp_path):
        path = tmp_path / "nested" / "out.txt"
        writer = TreeWriter.open(str(path))
        await writer.write(b"hello ")
        await writer.end(b"world")
        await writer.wait()

        assert path.read_bytes() == b"hello world"
        assert writer.type is FileType.FILE
        assert writer.bytes_written == 11
        assert writer.state is WriterState.ENDED

    @pytest.mark.asyncio
    async def test_writes_before_ready_are_replayed_in_order(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path))

        assert not writer.ready
        results = [await writer.write(part) for part in (b"one,", "two,", b"three")]
        await writer.end()
        assert results == [False, False, False]

        await writer.wait()
        assert path.read_bytes() == b"one,two,three"

    @pytest.mark.asyncio
    async def test_queued_content_past_the_limit_waits_for_ready(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), config=WriterConfig(max_buffered_bytes=4))

        assert await writer.write(b"abc") is False
        assert not writer.ready
        assert await writer.write(b"defghij") is False
        assert writer.ready

        await writer.end()
        await writer.wait()
        assert path.read_bytes() == b"abcdefghij"

    def test_buffer_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            WriterConfig(max_buffered_bytes=0)

    @pytest.mark.asyncio
    async def test_writes_after_ready_apply_immediately(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.txt"))
        assert await writer.wait_ready()

        assert await writer.write(b"now") is True
        await writer.end()
        await writer.wait()
        assert (tmp_path / "out.txt").read_bytes() == b"now"

    @pytest.mark.asyncio
    async def test_existing_file_is_rewritten(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_bytes(b"a much longer previous content")
        writer = TreeWriter.open(str(path))
        await writer.end(b"short")
        await writer.wait()

        assert path.read_bytes() == b"short"

    @pytest.mark.asyncio
    async def test_size_mismatch(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.bin"), size=10)
        errors = collect_errors(writer)
        await writer.end(b"1234567")
        await writer.wait()

        assert len(errors) == 1
        assert isinstance(errors[0], SizeMismatch)
        assert (errors[0].expected, errors[0].actual) == (10, 7)

    @pytest.mark.asyncio
    async def test_exact_size_is_fine(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.bin"), size=10)
        errors = collect_errors(writer)
        await writer.write(b"12345")
        await writer.end(b"67890")
        await writer.wait()

        assert errors == []

    @pytest.mark.asyncio
    async def test_unheard_size_mismatch_raises_from_wait(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.bin"), size=3)
        await writer.end(b"x")
        with pytest.raises(SizeMismatch):
            await writer.wait()

    @pytest.mark.asyncio
    async def test_write_after_end(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.txt"))
        errors = collect_errors(writer)
        await writer.end(b"done")

        assert await writer.write(b"late") is False
        await writer.wait()

        assert [type(e) for e in errors] == [WriteAfterEnd]
        assert (tmp_path / "out.txt").read_bytes() == b"done"

    @pytest.mark.asyncio
    async def test_rejects_non_bytes(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "out.txt"))
        with pytest.raises(TypeError):
            await writer.write(42)
        await writer.end()
        await writer.wait()


class TestProperties:
    """Mode, ownership and timestamp reconciliation."""

    @pytest.mark.asyncio
    async def test_mode(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), mode=0o600)
        await writer.end(b"secret")
        await writer.wait()

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_octal_string_mode(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), mode="0640")
        await writer.end()
        await writer.wait()

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o640

    @pytest.mark.asyncio
    async def test_default_mode_uses_configured_umask(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), config=WriterConfig(umask=0o077))
        await writer.end()
        await writer.wait()

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_times_survive_content_writes(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), atime=1_000_000_000, mtime=1_200_000_000.5)
        await writer.write(b"content written after reconciliation")
        await writer.end()
        await writer.wait()

        st = os.stat(path)
        assert st.st_mtime == pytest.approx(1_200_000_000.5, abs=1e-3)
        assert st.st_atime == pytest.approx(1_000_000_000, abs=1e-3)

    @pytest.mark.asyncio
    async def test_existing_directory_reconciled_in_place(self, tmp_path):
        target = tmp_path / "dir"
        target.mkdir()
        (target / "keep.txt").write_text("kept")
        os.chmod(target, 0o700)

        writer = TreeWriter.open(str(target), type=FileType.DIRECTORY, mode=0o755,
                                 mtime=1_000_000_000)
        await writer.end()
        await writer.wait()

        assert stat.S_IMODE(os.stat(target).st_mode) == 0o755
        assert os.stat(target).st_mtime == pytest.approx(1_000_000_000, abs=1e-3)
        assert (target / "keep.txt").read_text() == "kept"

    @pytest.mark.asyncio
    async def test_directory_times_applied_after_children(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        target = tmp_path / "dst"
        writer = TreeWriter.open(str(target), type=FileType.DIRECTORY,
                                 atime=1_000_000_000, mtime=1_000_000_000)

        child = await writer.add(TreeEntry(str(tmp_path / "src" / "new.txt"),
                                           parent=source_root, type=FileType.FILE))
        await child.end(b"created late")
        await writer.end()
        await writer.wait()

        assert (target / "new.txt").read_bytes() == b"created late"
        assert os.stat(target).st_mtime == pytest.approx(1_000_000_000, abs=1e-3)

    @pytest.mark.asyncio
    async def test_read_only_directory_mode_applied_after_children(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        target = tmp_path / "dst"
        writer = TreeWriter.open(str(target), type=FileType.DIRECTORY, mode=0o555)
        errors = collect_errors(writer)

        child = await writer.add(TreeEntry(str(tmp_path / "src" / "inside.txt"),
                                           parent=source_root, type=FileType.FILE))
        await child.end(b"inside")
        await writer.end()
        try:
            await writer.wait()

            assert errors == []
            assert stat.S_IMODE(os.stat(target).st_mode) == 0o555
            assert (target / "inside.txt").read_bytes() == b"inside"
        finally:
            os.chmod(target, 0o755)

    @pytest.mark.asyncio
    async def test_failed_chmod_is_a_property_error(self, tmp_path, monkeypatch):
        async def chmod(path, mode, fd=None):
            raise PermissionError(1, "Operation not permitted", path)

        monkeypatch.setattr(fs, "chmod", chmod)
        path = tmp_path / "out.txt"
        path.write_text("old")
        os.chmod(path, 0o644)

        writer = TreeWriter.open(str(path), mode=0o600)
        errors = collect_errors(writer)
        await writer.end(b"new")
        await writer.wait()

        assert [type(e) for e in errors] == [PropertyError]
        assert errors[0].operation == "chmod"
        assert writer.state is WriterState.FAILED

    @pytest.mark.asyncio
    async def test_matching_ownership_is_left_alone(self, tmp_path):
        path = tmp_path / "out.txt"
        writer = TreeWriter.open(str(path), uid=os.getuid(), gid=os.getgid())
        errors = collect_errors(writer)
        await writer.end()
        await writer.wait()

        assert errors == []


class TestTypes:
    """Creating each creatable type, and refusing the rest."""

    @pytest.mark.asyncio
    async def test_directory(self, tmp_path):
        path = tmp_path / "a" / "b"
        writer = TreeWriter.open(str(path), type="Directory", mode=0o750)
        await writer.wait()

        assert path.is_dir()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o750

    @pytest.mark.asyncio
    async def test_directory_ignores_content(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "d"), type=FileType.DIRECTORY)
        await writer.wait_ready()

        assert await writer.write(b"inert metadata") is True
        await writer.end()
        await writer.wait()

    @pytest.mark.asyncio
    async def test_symlink(self, tmp_path):
        path = tmp_path / "link"
        writer = TreeWriter.open(str(path), type=FileType.SYMBOLIC_LINK,
                                 link_target="somewhere/else")
        await writer.wait()

        assert os.readlink(path) == "somewhere/else"

    @pytest.mark.asyncio
    async def test_symlink_with_other_target_is_recreated(self, tmp_path):
        path = tmp_path / "link"
        os.symlink("old", path)
        writer = TreeWriter.open(str(path), type=FileType.SYMBOLIC_LINK, link_target="new")
        await writer.wait()

        assert os.readlink(path) == "new"

    @pytest.mark.asyncio
    async def test_hard_link(self, tmp_path):
        original = tmp_path / "original.txt"
        original.write_text("shared")
        path = tmp_path / "hard"
        writer = TreeWriter.open(str(path), type="Link", link_target=str(original))
        await writer.wait()

        assert os.stat(path).st_ino == os.stat(original).st_ino

    @pytest.mark.asyncio
    async def test_link_without_target(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "link"), type=FileType.SYMBOLIC_LINK)
        errors = collect_errors(writer)
        await writer.wait()

        assert [type(e) for e in errors] == [MissingLinkTarget]
        assert writer.state is WriterState.FAILED
        assert not os.path.lexists(tmp_path / "link")

    @pytest.mark.asyncio
    async def test_cannot_create_fifo(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "pipe"), type=FileType.FIFO)
        errors = collect_errors(writer)
        await writer.wait()

        assert [type(e) for e in errors] == [CannotCreateType]
        assert not await writer.wait_ready()

    @pytest.mark.asyncio
    async def test_clobber_replaces_directory_with_file(self, tmp_path):
        path = tmp_path / "thing"
        (path / "inner").mkdir(parents=True)
        (path / "inner" / "x.txt").write_text("x")

        writer = TreeWriter.open(str(path), type=FileType.FILE)
        await writer.end(b"now a file")
        await writer.wait()

        assert path.is_file()
        assert path.read_bytes() == b"now a file"

    @pytest.mark.asyncio
    async def test_clobber_off_refuses_type_change(self, tmp_path):
        path = tmp_path / "thing"
        path.mkdir()
        (path / "x.txt").write_text("x")

        writer = TreeWriter.open(str(path), type=FileType.FILE, clobber=False)
        errors = collect_errors(writer)
        await writer.end(b"data")
        await writer.wait()

        assert [type(e) for e in errors] == [ClobberRefused]
        assert errors[0].existing is FileType.DIRECTORY
        assert (path / "x.txt").read_text() == "x"

    @pytest.mark.asyncio
    async def test_clobber_off_keeps_matching_type(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_text("old")
        writer = TreeWriter.open(str(path), clobber=False)
        await writer.end(b"new")
        await writer.wait()

        assert path.read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_type_defaults_to_existing(self, tmp_path):
        (tmp_path / "d").mkdir()
        writer = TreeWriter.open(str(tmp_path / "d"))
        await writer.wait()

        assert writer.type is FileType.DIRECTORY


class TestChildren:
    """add(): placement, cycle guard, ordering and errors."""

    @pytest.mark.asyncio
    async def test_add_places_entry_relative_to_source_root(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        sub = TreeEntry(str(tmp_path / "src" / "a"), parent=source_root,
                        type=FileType.DIRECTORY)
        leaf = TreeEntry(str(tmp_path / "src" / "a" / "f.txt"), parent=sub,
                         type=FileType.FILE)

        writer = TreeWriter.open(str(tmp_path / "dst"), type=FileType.DIRECTORY)
        seen = []
        writer.on("entry", lambda target: seen.append(target.path))

        first = await writer.add(sub)
        second = await writer.add(leaf)
        await second.end(b"composed")
        await writer.end()
        await writer.wait()

        assert first.path == str(tmp_path / "dst" / "a")
        assert (tmp_path / "dst" / "a").is_dir()
        assert (tmp_path / "dst" / "a" / "f.txt").read_bytes() == b"composed"
        assert seen == [first.path, second.path]

    @pytest.mark.asyncio
    async def test_adds_before_ready_replay_in_order(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        names = ["zeta", "alpha", "mid"]
        writer = TreeWriter.open(str(tmp_path / "dst"), type=FileType.DIRECTORY)

        assert not writer.ready
        for name in names:
            await writer.add(TreeEntry(str(tmp_path / "src" / name), parent=source_root,
                                       type=FileType.DIRECTORY))
        await writer.end()
        await writer.wait()

        assert [os.path.basename(c.path) for c in writer.children] == names
        assert all((tmp_path / "dst" / n).is_dir() for n in names)

    @pytest.mark.asyncio
    async def test_cycle_guard_drops_self(self, tmp_path):
        dst = tmp_path / "dst"
        writer = TreeWriter.open(str(dst), type=FileType.DIRECTORY)
        errors = collect_errors(writer)
        await writer.wait_ready()

        assert await writer.add(TreeEntry(str(dst), type=FileType.DIRECTORY)) is None
        await writer.end()
        await writer.wait()

        assert errors == []
        assert writer.children == []
        assert os.listdir(dst) == []

    @pytest.mark.asyncio
    async def test_cycle_guard_drops_descendants_of_self(self, tmp_path):
        dst = tmp_path / "dst"
        writer = TreeWriter.open(str(dst), type=FileType.DIRECTORY)
        errors = collect_errors(writer)
        await writer.wait_ready()

        inside = TreeEntry(str(dst), type=FileType.DIRECTORY)
        nested = TreeEntry(str(dst / "copy"), parent=inside, type=FileType.DIRECTORY)
        assert await writer.add(nested) is None
        await writer.end()
        await writer.wait()

        assert errors == []
        assert not (dst / "copy").exists()

    @pytest.mark.asyncio
    async def test_add_to_file_is_an_error(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "f.txt"))
        errors = collect_errors(writer)
        await writer.wait_ready()

        assert await writer.add(TreeEntry(str(tmp_path / "x"), type=FileType.FILE)) is None
        await writer.end()
        await writer.wait()

        assert [type(e) for e in errors] == [AddToNonDirectory]

    @pytest.mark.asyncio
    async def test_add_after_end(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "d"), type=FileType.DIRECTORY)
        errors = collect_errors(writer)
        await writer.end()

        assert await writer.add(TreeEntry(str(tmp_path / "x"), type=FileType.FILE)) is None
        await writer.wait()

        assert [type(e) for e in errors] == [AddAfterEnd]

    @pytest.mark.asyncio
    async def test_child_errors_bubble(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        fifo = TreeEntry(str(tmp_path / "src" / "pipe"), parent=source_root,
                         type=FileType.FIFO)
        writer = TreeWriter.open(str(tmp_path / "dst"), type=FileType.DIRECTORY)
        origins = []
        writer.on("error", lambda e, target: origins.append((type(e), target.path)))

        await writer.add(fifo)
        await writer.end()
        await writer.wait()

        assert origins == [(CannotCreateType, str(tmp_path / "dst" / "pipe"))]

    @pytest.mark.asyncio
    async def test_fail_fast_child_failure_raises_from_add(self, tmp_path):
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        writer = TreeWriter.open(str(tmp_path / "dst"), type=FileType.DIRECTORY)
        attach_policy(writer, FailFastPolicy())
        await writer.wait_ready()

        with pytest.raises(CannotCreateType):
            await writer.add(TreeEntry(str(tmp_path / "src" / "pipe"), parent=source_root,
                                       type=FileType.FIFO))
        await writer.abort()

        assert [c.state for c in writer.children] == [WriterState.FAILED]

    @pytest.mark.asyncio
    async def test_queued_children_of_a_failed_target_are_settled(self, tmp_path):
        (tmp_path / "dst").write_text("a file in the way")
        source_root = TreeEntry(str(tmp_path / "src"), type=FileType.DIRECTORY)
        writer = TreeWriter.open(str(tmp_path / "dst"), type=FileType.DIRECTORY,
                                 clobber=False)
        errors = collect_errors(writer)

        child = await writer.add(TreeEntry(str(tmp_path / "src" / "x.txt"),
                                           parent=source_root, type=FileType.FILE))
        await writer.wait()

        assert [type(e) for e in errors] == [ClobberRefused]
        assert not await child.wait_ready()
        assert child.state is WriterState.FAILED


class TestContract:
    """Misuse of the writer API."""

    def test_missing_path(self):
        with pytest.raises(MissingPath):
            TreeWriter("")

    @pytest.mark.asyncio
    async def test_pipe_from_writable(self, tmp_path):
        writer = TreeWriter(str(tmp_path / "x"))
        with pytest.raises(PipeFromWritable):
            writer.pipe(None)

    @pytest.mark.asyncio
    async def test_wait_requires_start(self, tmp_path):
        writer = TreeWriter(str(tmp_path / "x"))
        with pytest.raises(RuntimeError):
            await writer.wait()

    @pytest.mark.asyncio
    async def test_abort_closes_open_content(self, tmp_path):
        writer = TreeWriter.open(str(tmp_path / "partial.bin"), size=100)
        errors = collect_errors(writer)
        await writer.wait_ready()
        await writer.write(b"only part")
        await writer.abort()
        await writer.wait()

        assert errors == []
        assert writer.ended
        assert (tmp_path / "partial.bin").read_bytes() == b"only part"
