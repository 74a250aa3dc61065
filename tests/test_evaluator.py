"""Tests for sandboxed APKBUILD evaluation."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from apkmeta.core.config import EvaluatorConfig
from apkmeta.core.errors import EvaluationFailed, EvaluationTimeout, InterpreterUnavailable
from apkmeta.plugins.apkbuild.evaluator import (
    END_MARKER,
    build_environment,
    build_wrapper,
    evaluate_descriptor,
    resolve_shell,
)
from apkmeta.plugins.apkbuild.parser import decode_records
from conftest import requires_sh


def evaluate(path: Path, **config) -> dict:
    output = evaluate_descriptor(path, EvaluatorConfig(**config))
    return decode_records(output.stdout)


def is_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    # Killed children may linger as zombies when init does not reap them
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return True
    return stat.rsplit(")", 1)[-1].split()[0] != "Z"


class TestBuildWrapper:
    """Test the generated wrapper script."""

    def test_sources_apkbuild_and_unsets_phases(self) -> None:
        """The APKBUILD is sourced and the build functions are removed."""
        script = build_wrapper()

        assert script.startswith('. ./"$APKBUILD" >/dev/null\n')
        assert "unset -f prepare build check package" in script
        assert "set -f" in script
        assert script.rstrip().endswith("printf 'E\\000'")

    def test_selected_variables(self) -> None:
        """Test a wrapper for a custom variable selection."""
        script = build_wrapper(scalars=["pkgname"], lists=["depends"])

        assert "__apkmeta_scalar pkgname\n" in script
        assert "__apkmeta_list depends\n" in script
        assert "__apkmeta_scalar pkgver" not in script

    def test_rejects_invalid_names(self) -> None:
        """Variable names are interpolated into the script and must be identifiers."""
        with pytest.raises(ValueError, match="Invalid variable name"):
            build_wrapper(scalars=["pkgname; rm -rf /"])


class TestBuildEnvironment:
    """Test the environment of the evaluation shell."""

    def test_scrubbed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The caller's environment is not passed by default."""
        monkeypatch.setenv("APKMETA_TEST_SECRET", "secret")
        env = build_environment(EvaluatorConfig(env={"CARCH": "x86_64"}), "APKBUILD", "/tmp/work")

        assert env == {
            "PATH": "/usr/bin:/bin",
            "HOME": "/tmp/work",
            "TMPDIR": "/tmp/work",
            "CARCH": "x86_64",
            "APKBUILD": "APKBUILD",
        }

    def test_inherited(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test inherit_env with explicit variables taking precedence."""
        monkeypatch.setenv("APKMETA_TEST_SECRET", "secret")
        monkeypatch.setenv("CARCH", "aarch64")
        env = build_environment(
            EvaluatorConfig(inherit_env=True, env={"CARCH": "x86_64"}), "APKBUILD", "/tmp/work"
        )

        assert env["APKMETA_TEST_SECRET"] == "secret"
        assert env["CARCH"] == "x86_64"


@requires_sh
class TestEvaluateDescriptor:
    """Test evaluating APKBUILDs with a real shell."""

    def test_sample(self, sample_apkbuild: Path) -> None:
        """Test the records of the sample aport."""
        records = evaluate(sample_apkbuild)

        assert records["pkgname"] == "sample"
        assert records["pkgver"] == "1.2.3"
        assert records["pkgrel"] == "2"
        assert records["provides"] == ["sample2=1.2.3-r2"]
        assert records["makedepends"] == ["openssl-dev>3", "zlib-dev"]
        assert records["source"] == [
            "https://example.org/sample/sample-1.2.3.tar.gz",
            "sample.initd",
            "sample.confd",
        ]
        assert records["pcprefix"] is None
        assert records["pkgusers"] is None

    def test_output_framing(self, sample_apkbuild: Path) -> None:
        """Test that the output ends with the end marker."""
        output = evaluate_descriptor(sample_apkbuild)

        assert output.stdout.endswith(b"\0" + END_MARKER)
        assert output.returncode == 0
        assert output.duration >= 0

    def test_idempotent(self, sample_apkbuild: Path) -> None:
        """Evaluating twice yields identical output."""
        first = evaluate_descriptor(sample_apkbuild)
        second = evaluate_descriptor(sample_apkbuild)

        assert first.stdout == second.stdout

    def test_build_functions_not_run(self, write_apkbuild) -> None:
        """Phase functions and top-level stdout do not reach the records."""
        path = write_apkbuild(
            'pkgname=quiet\necho "noise on stdout"\nbuild() { touch "$PWD/built"; }\n'
        )
        records = evaluate(path)

        assert records["pkgname"] == "quiet"
        assert not (path.parent / "built").exists()

    def test_globs_not_expanded(self, write_apkbuild) -> None:
        """List items are split on whitespace without pathname expansion."""
        path = write_apkbuild('pkgname=glob\ntriggers="glob.trigger=/usr/lib/*"\nsource="*"\n')
        records = evaluate(path)

        assert records["triggers"] == ["glob.trigger=/usr/lib/*"]
        assert records["source"] == ["*"]

    def test_values_with_special_characters(self, write_apkbuild) -> None:
        """Scalars are printed verbatim, including newlines and percent signs."""
        path = write_apkbuild("pkgname=special\npkgdesc='100% \"quoted\"\nsecond line'\n")
        records = evaluate(path)

        assert records["pkgdesc"] == '100% "quoted"\nsecond line'

    def test_shadowing_printf(self, write_apkbuild) -> None:
        """An APKBUILD redefining printf does not corrupt the output."""
        path = write_apkbuild("pkgname=shadow\nprintf() { echo hijacked; }\n")
        records = evaluate(path)

        assert records["pkgname"] == "shadow"

    def test_environment_scrubbed(self, write_apkbuild, monkeypatch: pytest.MonkeyPatch) -> None:
        """Caller variables are invisible, configured ones are visible."""
        monkeypatch.setenv("APKMETA_TEST_SECRET", "secret")
        path = write_apkbuild('pkgname=env\npkgdesc="$APKMETA_TEST_SECRET"\nurl="$CARCH"\n')
        records = evaluate(path, env={"CARCH": "x86_64"})

        assert records["pkgdesc"] == ""
        assert records["url"] == "x86_64"

    def test_working_directory(self, write_apkbuild) -> None:
        """The APKBUILD is sourced from its own directory."""
        path = write_apkbuild('pkgname=cwd\npkgdesc="$(pwd)"\n')
        records = evaluate(path)

        assert Path(records["pkgdesc"]).resolve() == path.parent.resolve()

    def test_exit_status(self, write_apkbuild) -> None:
        """A failing APKBUILD raises EvaluationFailed with its stderr."""
        path = write_apkbuild('pkgname=fail\necho "broken" >&2\nexit 3\n')

        with pytest.raises(EvaluationFailed) as excinfo:
            evaluate_descriptor(path)
        assert excinfo.value.returncode == 3
        assert "broken" in excinfo.value.stderr

    def test_exit_zero(self, write_apkbuild) -> None:
        """An APKBUILD that exits early produces no end marker."""
        path = write_apkbuild("pkgname=early\nexit 0\n")

        with pytest.raises(EvaluationFailed, match="no end marker"):
            evaluate_descriptor(path)

    def test_timeout(self, write_apkbuild) -> None:
        """An endless loop is killed after the timeout."""
        path = write_apkbuild("pkgname=loop\nwhile :; do :; done\n")

        started = time.monotonic()
        with pytest.raises(EvaluationTimeout) as excinfo:
            evaluate_descriptor(path, EvaluatorConfig(timeout=0.5))

        assert excinfo.value.timeout == 0.5
        assert time.monotonic() - started < 5

    def test_no_leftover_processes(self, write_apkbuild, tmp_path: Path) -> None:
        """Background jobs are killed with the process group."""
        pid_file = tmp_path / "pid"
        path = write_apkbuild(
            f"pkgname=bg\nsleep 60 >/dev/null 2>&1 &\necho $! > '{pid_file}'\nwhile :; do :; done\n"
        )

        with pytest.raises(EvaluationTimeout):
            evaluate_descriptor(path, EvaluatorConfig(timeout=0.5))

        pid = int(pid_file.read_text())
        deadline = time.monotonic() + 5
        while is_running(pid):
            assert time.monotonic() < deadline, "background job survived"
            time.sleep(0.05)

    def test_missing_shell(self, sample_apkbuild: Path) -> None:
        """Test a shell that does not exist."""
        with pytest.raises(InterpreterUnavailable, match="/nonexistent/sh"):
            evaluate_descriptor(sample_apkbuild, EvaluatorConfig(shell="/nonexistent/sh"))

    def test_missing_apkbuild(self, tmp_path: Path) -> None:
        """Test a path that does not exist."""
        with pytest.raises(FileNotFoundError):
            evaluate_descriptor(tmp_path / "APKBUILD")


def test_missing_shell_in_path() -> None:
    """Test a shell name that is not found in PATH."""
    with pytest.raises(InterpreterUnavailable, match="not found in PATH"):
        resolve_shell("apkmeta-no-such-shell", "/nonexistent")
