"""Tests for the staging area manager.

Tests cover:
- Unique directory per run, including concurrent runs of the same event
- Ordinal filename prefixes and basename sanitization
- Manifest quoting and escaping of awkward paths
- Bounded-concurrency downloads that keep submission order
- Cleanup on success, on failure and after partial downloads
"""

import asyncio

import pytest

from gregaplay.exceptions import DownloadError
from gregaplay.services.staging import (
    MANIFEST_FILENAME,
    OUTPUT_FILENAME,
    StagedClip,
    StagingArea,
    escape_manifest_path,
    staged_filename,
)
from tests.support.factories import create_clip_record
from tests.support.fakes import FakeGateway, parse_manifest


class TestStagedFilename:
    def test_prefixes_ordinal_index(self):
        clip = create_clip_record("videos/E1/u1_1700000000.mp4")

        assert staged_filename(0, clip) == "0000_u1_1700000000.mp4"
        assert staged_filename(12, clip) == "0012_u1_1700000000.mp4"

    def test_same_basename_different_index(self):
        first = create_clip_record("videos/E1/a/clip.mp4")
        second = create_clip_record("videos/E1/b/clip.mp4")

        assert staged_filename(0, first) != staged_filename(1, second)

    def test_sanitizes_unsafe_characters(self):
        clip = create_clip_record("videos/E1/mom's clip (final).mov")

        name = staged_filename(3, clip)

        assert name.startswith("0003_")
        assert "'" not in name
        assert " " not in name
        assert name.endswith(".mov")

    def test_falls_back_when_basename_is_empty(self):
        clip = create_clip_record("videos/E1/...")

        assert staged_filename(0, clip) == "0000_clip"


class TestEscapeManifestPath:
    def test_plain_path_is_single_quoted(self, tmp_path):
        path = tmp_path / "0000_a.mp4"

        assert escape_manifest_path(path) == f"'{path}'"

    def test_single_quote_is_escaped(self, tmp_path):
        path = tmp_path / "it's.mp4"

        escaped = escape_manifest_path(path)

        assert escaped.endswith("it'\\''s.mp4'")
        assert parse_manifest(f"file {escaped}") == [path]


class TestStagingAreaLifecycle:
    def test_create_makes_unique_directory_under_root(self, staging_root):
        first = StagingArea("E1", staging_root)
        second = StagingArea("E1", staging_root)

        first_path = first.create()
        second_path = second.create()

        assert first_path != second_path
        assert first_path.parent == staging_root.resolve()
        assert first_path.name.startswith("event_E1_")
        first.release()
        second.release()

    def test_unsafe_event_id_is_sanitized_in_directory_name(self, staging_root):
        area = StagingArea("../../etc", staging_root)

        path = area.create()

        assert path.parent == staging_root.resolve()
        area.release()

    def test_release_removes_everything(self, staging_root):
        area = StagingArea("E1", staging_root)
        path = area.create()
        (path / "0000_a.mp4").write_bytes(b"data")

        area.release()

        assert not path.exists()
        assert area.path is None

    def test_release_is_idempotent(self, staging_root):
        area = StagingArea("E1", staging_root)
        area.create()

        area.release()
        area.release()

    def test_paths_require_active_area(self, staging_root):
        area = StagingArea("E1", staging_root)

        with pytest.raises(RuntimeError, match="not active"):
            _ = area.manifest_path

    @pytest.mark.asyncio
    async def test_context_manager_cleans_up_on_error(self, staging_root):
        with pytest.raises(ValueError):
            async with StagingArea("E1", staging_root) as area:
                (area.path / "partial.mp4").write_bytes(b"x")
                raise ValueError("boom")

        assert list(staging_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_context_manager_exposes_output_and_manifest(self, staging_root):
        async with StagingArea("E1", staging_root) as area:
            assert area.output_path.name == OUTPUT_FILENAME
            assert area.manifest_path.name == MANIFEST_FILENAME
            assert area.output_path.parent == area.path

        assert list(staging_root.iterdir()) == []


class TestStageClips:
    @pytest.fixture
    def clips(self):
        return [
            create_clip_record("videos/E1/a.mp4", offset_seconds=1),
            create_clip_record("videos/E1/b.mp4", offset_seconds=2),
            create_clip_record("videos/E1/c.mp4", offset_seconds=3),
        ]

    @pytest.fixture
    def source(self, clips):
        fake = FakeGateway()
        for clip, data in zip(clips, (b"A", b"BB", b"CCC")):
            fake.add_clip(clip, data)
        return fake

    @pytest.mark.asyncio
    async def test_stages_every_clip_in_order(self, staging_root, clips, source):
        async with StagingArea("E1", staging_root) as area:
            staged = await area.stage_clips(source, clips, concurrency=2)

            assert [item.index for item in staged] == [0, 1, 2]
            assert [item.local_path.read_bytes() for item in staged] == [b"A", b"BB", b"CCC"]
            assert [item.size_bytes for item in staged] == [1, 2, 3]
            assert all(item.local_path.parent == area.path for item in staged)

    @pytest.mark.asyncio
    async def test_order_kept_when_downloads_finish_out_of_order(
        self, staging_root, clips, source, mocker
    ):
        delays = {"videos/E1/a.mp4": 0.05, "videos/E1/b.mp4": 0.0, "videos/E1/c.mp4": 0.02}
        original = source.download_clip

        async def delayed(locator):
            await asyncio.sleep(delays[locator])
            return await original(locator)

        mocker.patch.object(source, "download_clip", side_effect=delayed)

        async with StagingArea("E1", staging_root) as area:
            staged = await area.stage_clips(source, clips, concurrency=3)

        assert [item.clip.storage_path for item in staged] == [clip.storage_path for clip in clips]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, staging_root, clips, source, mocker):
        active = 0
        peak = 0
        original = source.download_clip

        async def tracked(locator):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await original(locator)

        mocker.patch.object(source, "download_clip", side_effect=tracked)

        async with StagingArea("E1", staging_root) as area:
            await area.stage_clips(source, clips, concurrency=1)

        assert peak == 1

    @pytest.mark.asyncio
    async def test_failure_propagates_and_area_is_cleaned(self, staging_root, clips, source):
        source.failing_downloads.add("videos/E1/c.mp4")

        with pytest.raises(DownloadError):
            async with StagingArea("E1", staging_root) as area:
                await area.stage_clips(source, clips, concurrency=3)

        assert list(staging_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_object_is_a_download_error(self, staging_root, clips, source):
        source.objects["videos/E1/b.mp4"] = b""

        async with StagingArea("E1", staging_root) as area:
            with pytest.raises(DownloadError, match="empty object"):
                await area.stage_clips(source, clips)


class TestWriteManifest:
    @pytest.mark.asyncio
    async def test_manifest_has_one_line_per_clip_in_index_order(self, staging_root):
        async with StagingArea("E1", staging_root) as area:
            staged = [
                StagedClip(
                    index=index,
                    clip=create_clip_record(f"videos/E1/{name}"),
                    local_path=area.path / f"{index:04d}_{name}",
                    size_bytes=1,
                )
                for index, name in ((1, "b.mp4"), (0, "a.mp4"))
            ]

            manifest = area.write_manifest(staged)
            text = manifest.read_text(encoding="utf-8")

        lines = text.splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("file '") and lines[0].endswith("0000_a.mp4'")
        assert lines[1].endswith("0001_b.mp4'")
        assert all(path.is_absolute() for path in parse_manifest(text))

    @pytest.mark.asyncio
    async def test_manifest_survives_quote_in_staging_root(self, tmp_path):
        root = tmp_path / "o'brien"
        async with StagingArea("E1", root) as area:
            local = area.path / "0000_a.mp4"
            staged = [StagedClip(0, create_clip_record("videos/E1/a.mp4"), local, 1)]

            text = area.write_manifest(staged).read_text(encoding="utf-8")

            assert parse_manifest(text) == [local.resolve()]
