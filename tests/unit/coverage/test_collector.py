"""
pushgate — unit tests for the coverage collector

File: tests/unit/coverage/test_collector.py
Last updated: 2026-10-19

Purpose
- Validate stale-dump cleanup, raw-dump discovery, archive packaging and the merge step.

What this test file should cover
- Zero raw dumps is a ``CollectionFailure``, never an empty report.
- Merge tool failures (spawn, exit status, missing/invalid/empty output) are failures.
- The merge command receives the archive and repository paths.

Functional requirements
- The merge tool is faked; no grcov binary is required.
"""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from pushgate.coverage.collector import CollectionFailure, CoverageCollector, CoverageSettings
from pushgate.pipeline.executor import CommandResult, CommandSpec, OutputSink

LCOV = "SF:src/lib.rs\nDA:1,3\nDA:2,0\nend_of_record\n"


class FakeMergeTool:
    def __init__(
        self,
        *,
        lcov: str | None = LCOV,
        exit_code: int = 0,
        error: str | None = None,
    ) -> None:
        self.lcov = lcov
        self.exit_code = exit_code
        self.error = error
        self.specs: list[CommandSpec] = []

    async def run(self, spec: CommandSpec, *, on_output: OutputSink | None = None) -> CommandResult:
        self.specs.append(spec)
        if self.error is not None:
            return CommandResult(
                argv=spec.argv, exit_code=None, output="", duration_ms=0, error=self.error
            )
        if self.lcov is not None:
            output = Path(spec.argv[spec.argv.index("-o") + 1])
            output.write_text(self.lcov, encoding="utf-8")
        if on_output is not None:
            on_output("merging 2 files\n")
        return CommandResult(
            argv=spec.argv, exit_code=self.exit_code, output="merging 2 files\n", duration_ms=3
        )


class _QuietLogger:
    def info(self, event: str, **fields: object) -> None:
        return None


def _raw_tree(root: Path) -> dict[str, Path]:
    deps = root / "target" / "debug" / "deps"
    deps.mkdir(parents=True)
    files = {
        "gcda": deps / "demo_app-3f2a.gcda",
        "gcno": deps / "demo_app-3f2a.gcno",
        "foreign": deps / "serde-91ab.gcda",
    }
    for path in files.values():
        path.write_bytes(b"\x00raw")
    return files


def _collector(root: Path, tool: FakeMergeTool, **settings: object) -> CoverageCollector:
    return CoverageCollector(
        CoverageSettings(project="demo-app", repo_root=root, **settings),  # type: ignore[arg-type]
        executor=tool,
        output_dir=root / ".pushgate" / "runs" / "tests-nightly",
        logger=_QuietLogger(),
    )


def test_remove_stale_deletes_only_matching_dumps(tmp_path: Path) -> None:
    files = _raw_tree(tmp_path)
    collector = _collector(tmp_path, FakeMergeTool())

    removed = collector.remove_stale()

    assert set(removed) == {files["gcda"], files["foreign"]}
    assert not files["gcda"].exists()
    assert files["gcno"].exists()


def test_discover_uses_the_project_prefixed_glob(tmp_path: Path) -> None:
    files = _raw_tree(tmp_path)
    collector = _collector(tmp_path, FakeMergeTool())

    found = collector.discover()

    assert found == tuple(sorted({files["gcda"].resolve(), files["gcno"].resolve()}))
    assert collector.settings.raw_glob() == "demo_app*.gc*"


async def test_collect_without_raw_dumps_fails(tmp_path: Path) -> None:
    tool = FakeMergeTool()
    collector = _collector(tmp_path, tool)

    with pytest.raises(CollectionFailure, match="no raw coverage files"):
        await collector.collect()
    assert tool.specs == []


async def test_collect_packages_merges_and_parses(tmp_path: Path) -> None:
    _raw_tree(tmp_path)
    tool = FakeMergeTool()
    collector = _collector(tmp_path, tool)
    streamed: list[str] = []

    report = await collector.collect(env={"CARGO_INCREMENTAL": "0"}, on_output=streamed.append)

    assert report.summary() == "1 files, 1/2 lines (50.00%)"
    assert streamed == ["merging 2 files\n"]

    archive = collector.archive_path
    with zipfile.ZipFile(archive) as bundle:
        names = sorted(bundle.namelist())
        assert all(info.compress_type == zipfile.ZIP_STORED for info in bundle.infolist())
    assert names == [
        "target/debug/deps/demo_app-3f2a.gcda",
        "target/debug/deps/demo_app-3f2a.gcno",
    ]

    spec = tool.specs[0]
    assert spec.argv[:2] == ("grcov", str(archive))
    assert spec.argv[spec.argv.index("-s") + 1] == str(tmp_path)
    assert "/*" in spec.argv
    assert spec.cwd == str(tmp_path)
    assert spec.env == {"CARGO_INCREMENTAL": "0"}


@pytest.mark.parametrize(
    ("tool", "message"),
    [
        (FakeMergeTool(error="grcov: No such file or directory"), "could not be started"),
        (FakeMergeTool(exit_code=1), "exited with status 1"),
        (FakeMergeTool(lcov=None), "did not produce"),
        (FakeMergeTool(lcov="DA:1,1\n"), "not valid lcov"),
        (FakeMergeTool(lcov=""), "empty"),
    ],
)
async def test_merge_problems_are_collection_failures(
    tmp_path: Path, tool: FakeMergeTool, message: str
) -> None:
    _raw_tree(tmp_path)
    collector = _collector(tmp_path, tool)

    with pytest.raises(CollectionFailure, match=message):
        await collector.collect()


async def test_previous_report_is_not_reused(tmp_path: Path) -> None:
    _raw_tree(tmp_path)
    collector = _collector(tmp_path, FakeMergeTool(lcov=None))
    collector.output_path.parent.mkdir(parents=True)
    collector.output_path.write_text(LCOV, encoding="utf-8")

    with pytest.raises(CollectionFailure, match="did not produce"):
        await collector.collect()


def test_merge_argv_rejects_unknown_placeholders(tmp_path: Path) -> None:
    collector = _collector(tmp_path, FakeMergeTool(), merge_command="grcov {archive} -o {nope}")

    with pytest.raises(CollectionFailure, match="unknown placeholder"):
        collector.merge_argv(tmp_path / "ccov.zip")


def test_settings_reject_paths_as_file_names(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        CoverageSettings(project="demo", repo_root=tmp_path, archive_name="../ccov.zip")
    with pytest.raises(ValueError):
        CoverageSettings(project=" ", repo_root=tmp_path)


def test_settings_from_config_section(tmp_path: Path) -> None:
    settings = CoverageSettings.from_config(
        {"raw_pattern": "{project}*.profraw", "output_name": "coverage.lcov"},
        project="demo-app",
        repo_root=tmp_path,
    )

    assert settings.raw_glob() == "demo-app*.profraw"
    assert settings.output_name == "coverage.lcov"
    assert settings.archive_name == "ccov.zip"
