"""Tests for diff result codes, backends and the external-process watchdog."""

from __future__ import annotations

import logging
import sys

import pytest

from meshpatch.binary import (
    Bsdiff4DiffTool,
    DiffProcess,
    DiffResultCode,
    HDiffPatchCliTool,
    PatchResultCode,
    create_diff_tool,
    diff_category,
    patch_category,
    raise_for_diff_code,
    raise_for_patch_code,
    wait_for_process,
)
from meshpatch.config import ConfigLoader
from meshpatch.error_handling import DiffFailureCategory, DiffToolError, ErrorCategory


@pytest.mark.unit
class TestResultCodes:

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (DiffResultCode.OPTIONS_ERROR, DiffFailureCategory.OPTIONS),
            (DiffResultCode.OPENREAD_ERROR, DiffFailureCategory.OPEN_READ),
            (DiffResultCode.MEM_ERROR, DiffFailureCategory.MEMORY),
            (DiffResultCode.DIFF_ERROR, DiffFailureCategory.DIFF_INTERNAL),
            (DiffResultCode.PATHTYPE_ERROR, DiffFailureCategory.PATH_TYPE),
            (99, DiffFailureCategory.UNKNOWN),
        ],
    )
    def test_diff_category(self, code, expected):
        assert diff_category(code) == expected

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (PatchResultCode.FILEDATA_ERROR, DiffFailureCategory.CORRUPT_ARTIFACT),
            (PatchResultCode.MEM_ERROR, DiffFailureCategory.MEMORY),
            (PatchResultCode.HPATCH_ERROR, DiffFailureCategory.PATCH_INTERNAL),
            (PatchResultCode.DECOMPRESSER_DECOMPRESS_ERROR, DiffFailureCategory.CORRUPT_ARTIFACT),
            (PatchResultCode.FILEWRITE_NO_SPACE_ERROR, DiffFailureCategory.FILE_WRITE),
            (19, DiffFailureCategory.UNKNOWN),
        ],
    )
    def test_patch_category(self, code, expected):
        assert patch_category(code) == expected

    def test_every_failure_code_is_mapped(self):
        for code in DiffResultCode:
            if code is not DiffResultCode.SUCCESS:
                assert diff_category(code) != DiffFailureCategory.UNKNOWN
        for code in PatchResultCode:
            if code is not PatchResultCode.SUCCESS:
                assert patch_category(code) != DiffFailureCategory.UNKNOWN

    def test_success_does_not_raise(self):
        raise_for_diff_code(DiffResultCode.SUCCESS)
        raise_for_patch_code(0)

    def test_failure_raises_diff_tool_error(self):
        with pytest.raises(DiffToolError) as exc_info:
            raise_for_patch_code(PatchResultCode.FILEDATA_ERROR)
        error = exc_info.value
        assert error.category == ErrorCategory.DIFF_TOOL
        assert error.diff_category == DiffFailureCategory.CORRUPT_ARTIFACT
        assert error.code == 6
        assert error.operation == "patch"
        assert "FILEDATA_ERROR" in error.message
        assert not error.retryable

    def test_unknown_code_message(self):
        with pytest.raises(DiffToolError, match="UNKNOWN\\(42\\)"):
            raise_for_diff_code(42)


@pytest.mark.unit
class TestBsdiff4DiffTool:

    def test_missing_input_reports_openread(self, tmp_path):
        tool = Bsdiff4DiffTool()
        code = tool.create_diff(tmp_path / "a", tmp_path / "b", tmp_path / "out")
        assert code == DiffResultCode.OPENREAD_ERROR
        code = tool.apply_patch(tmp_path / "a", tmp_path / "b", tmp_path / "out")
        assert code == PatchResultCode.OPENREAD_ERROR

    def test_diff_and_patch(self, tmp_path):
        base = tmp_path / "base"
        modified = tmp_path / "modified"
        base.write_bytes(b"abcdef" * 100)
        modified.write_bytes(b"abcxef" * 100)
        tool = Bsdiff4DiffTool()

        assert tool.create_diff(base, modified, tmp_path / "patch") == DiffResultCode.SUCCESS
        assert tool.apply_patch(base, tmp_path / "patch", tmp_path / "out") == PatchResultCode.SUCCESS
        assert (tmp_path / "out").read_bytes() == modified.read_bytes()


@pytest.mark.unit
class TestCreateDiffTool:

    def test_backends(self):
        assert isinstance(create_diff_tool("bsdiff4"), Bsdiff4DiffTool)
        assert isinstance(create_diff_tool("hdiffpatch"), HDiffPatchCliTool)

    def test_hdiffpatch_uses_config(self):
        config = ConfigLoader.load(
            overrides={"hdiffz_path": "/opt/hdiffz", "diff_options": "-m-4", "process_timeout_s": 30},
            env={},
        )
        tool = create_diff_tool("hdiffpatch", config)
        assert tool.timeout_s == 30.0
        assert tool.diff_command("a", "b", "c") == ["/opt/hdiffz", "-m-4", "a", "b", "c"]

    def test_unknown_backend(self):
        with pytest.raises(DiffToolError) as exc_info:
            create_diff_tool("xdelta")
        assert exc_info.value.diff_category == DiffFailureCategory.TOOL_UNAVAILABLE


@pytest.mark.unit
class TestHDiffPatchCliTool:

    def test_commands(self):
        tool = HDiffPatchCliTool()
        assert tool.diff_command("base", "mod", "out") == [
            "hdiffz", "-m-6", "-SD", "-c-zstd-21-24", "-d", "base", "mod", "out",
        ]
        assert tool.patch_command("base", "art", "out") == ["hpatchz", "base", "art", "out"]

    def test_exit_code_becomes_result_code(self, tmp_path):
        tool = HDiffPatchCliTool(
            hdiffz_path=sys.executable,
            options="-c 'import sys; sys.exit(5)'",
            poll_interval_s=0.01,
        )
        code = tool.create_diff(tmp_path / "a", tmp_path / "b", tmp_path / "c")
        assert code == DiffResultCode.MEM_ERROR

    def test_unrecognized_exit_code(self, tmp_path):
        tool = HDiffPatchCliTool(
            hdiffz_path=sys.executable,
            options="-c 'import sys; sys.exit(77)'",
            poll_interval_s=0.01,
        )
        with pytest.raises(DiffToolError) as exc_info:
            tool.create_diff(tmp_path / "a", tmp_path / "b", tmp_path / "c")
        assert exc_info.value.diff_category == DiffFailureCategory.UNKNOWN
        assert exc_info.value.code == 77

    def test_missing_executable(self, tmp_path):
        tool = HDiffPatchCliTool(hpatchz_path=str(tmp_path / "no-such-hpatchz"))
        with pytest.raises(DiffToolError) as exc_info:
            tool.apply_patch(tmp_path / "a", tmp_path / "b", tmp_path / "c")
        assert exc_info.value.diff_category == DiffFailureCategory.TOOL_UNAVAILABLE
        assert exc_info.value.operation == "patch"


class FakeProcess:
    """Finishes after ``polls_until_done`` polls, or never when ``None``."""

    operation = "diff"

    def __init__(self, polls_until_done=None, returncode=0):
        self.polls_until_done = polls_until_done
        self._returncode = returncode
        self.polls = 0
        self.terminated = False

    def is_done(self):
        self.polls += 1
        if self.terminated:
            return True
        return self.polls_until_done is not None and self.polls > self.polls_until_done

    def terminate(self):
        self.terminated = True

    @property
    def returncode(self):
        return -9 if self.terminated else self._returncode


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.mark.unit
class TestWaitForProcess:

    def test_returns_exit_code(self):
        clock = FakeClock()
        process = FakeProcess(polls_until_done=3, returncode=2)
        code = wait_for_process(process, timeout_s=10, poll_interval_s=1, clock=clock, sleep=clock.sleep)
        assert code == 2
        assert not process.terminated

    def test_timeout_kills_process(self):
        clock = FakeClock()
        process = FakeProcess(polls_until_done=None)
        with pytest.raises(DiffToolError) as exc_info:
            wait_for_process(process, timeout_s=5, poll_interval_s=1, clock=clock, sleep=clock.sleep)

        assert process.terminated
        error = exc_info.value
        assert error.diff_category == DiffFailureCategory.TIMEOUT
        assert error.retryable
        assert error.code is None

    def test_logs_progress(self, caplog):
        clock = FakeClock()
        process = FakeProcess(polls_until_done=12)
        with caplog.at_level(logging.INFO, logger="meshpatch.binary.process"):
            wait_for_process(
                process,
                timeout_s=100,
                poll_interval_s=1,
                progress_interval_s=5,
                label="hdiffz",
                clock=clock,
                sleep=clock.sleep,
            )
        progress = [r for r in caplog.records if "still running" in r.getMessage()]
        assert len(progress) == 2


@pytest.mark.integration
class TestDiffProcess:

    def test_real_process_exit_code(self):
        with DiffProcess([sys.executable, "-c", "print('working'); import sys; sys.exit(3)"]) as process:
            code = wait_for_process(process, timeout_s=30, poll_interval_s=0.01)
            assert code == 3
            assert "working" in process.output_tail()

    def test_real_process_timeout(self):
        with DiffProcess([sys.executable, "-c", "import time; time.sleep(30)"]) as process:
            with pytest.raises(DiffToolError) as exc_info:
                wait_for_process(process, timeout_s=0.2, poll_interval_s=0.05)
            assert exc_info.value.diff_category == DiffFailureCategory.TIMEOUT
            assert process.is_done()
