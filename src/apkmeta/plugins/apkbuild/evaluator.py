"""
Sandboxed APKBUILD evaluation.

An APKBUILD is a shell script; the only reliable way to learn the values of
its variables is to let a shell source it. The generated wrapper sources the
APKBUILD with its stdout discarded, removes the build phase functions
without calling them and prints the variables as NUL-framed records:

    S\\0<name>\\0<value>\\0             scalar, value verbatim
    L\\0<name>\\0<count>\\0<w1>\\0...    list, split by the shell (default IFS)
    A\\0<name>\\0<count>\\0<e1>\\0...    bash array
    U\\0<name>\\0                      unset
    E\\0                               end of output

Shell strings cannot contain NUL, so the framing needs no escaping.

The shell runs in its own session with a scrubbed environment, inside a
private temporary directory (HOME, TMPDIR) and with the APKBUILD's
directory as working directory. On timeout the whole process group is
killed and reaped; no partial output is returned.
"""

import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from apkmeta.core.config import EvaluatorConfig
from apkmeta.core.errors import EvaluationFailed, EvaluationTimeout, InterpreterUnavailable

logger = logging.getLogger(__name__)

# Variables printed verbatim
SCALAR_VARIABLES = [
    "pkgname",
    "pkgver",
    "pkgrel",
    "pkgdesc",
    "url",
    "license",
    "provider_priority",
    "replaces_priority",
    "pcprefix",
    "sonameprefix",
    "sha512sums",
    "sha256sums",
]

# Variables word-split by the shell
LIST_VARIABLES = [
    "arch",
    "depends",
    "makedepends",
    "makedepends_build",
    "makedepends_host",
    "checkdepends",
    "install_if",
    "provides",
    "replaces",
    "pkgusers",
    "pkggroups",
    "install",
    "triggers",
    "subpackages",
    "source",
    "options",
]

# Build phase functions that must never run
PHASE_FUNCTIONS = ["prepare", "build", "check", "package"]

END_MARKER = b"E\0"

WRAPPER_NAME = "evaluate.sh"

_WRAPPER_FUNCTIONS = r"""
__apkmeta_is_array() {
    case "$(declare -p "$1" 2>/dev/null)" in
        "declare -a"*) return 0 ;;
    esac
    return 1
}

__apkmeta_scalar() {
    if eval "[ -n \"\${$1+x}\" ]"; then
        eval "__apkmeta_value=\${$1}"
        printf 'S\000%s\000%s\000' "$1" "$__apkmeta_value"
    else
        printf 'U\000%s\000' "$1"
    fi
}

__apkmeta_list() {
    __apkmeta_name=$1
    if [ -n "${BASH_VERSION:-}" ] && __apkmeta_is_array "$__apkmeta_name"; then
        eval "set -- \"\${$__apkmeta_name[@]}\""
        printf 'A\000%s\000%s\000' "$__apkmeta_name" "$#"
    elif eval "[ -n \"\${$__apkmeta_name+x}\" ]"; then
        eval "set -- \${$__apkmeta_name}"
        printf 'L\000%s\000%s\000' "$__apkmeta_name" "$#"
    else
        printf 'U\000%s\000' "$__apkmeta_name"
        return 0
    fi
    [ "$#" -eq 0 ] || printf '%s\000' "$@"
}
"""


@dataclass
class EvaluationOutput:
    """Raw result of a successful evaluation."""

    stdout: bytes  # NUL-framed records, ending with END_MARKER
    stderr: str
    returncode: int
    duration: float  # seconds


def build_wrapper(
    scalars: Optional[List[str]] = None,
    lists: Optional[List[str]] = None,
) -> str:
    """Generate the evaluation wrapper script.

    Args:
        scalars: Scalar variable names (default: SCALAR_VARIABLES)
        lists: List variable names (default: LIST_VARIABLES)

    Returns:
        POSIX sh script text
    """
    scalars = SCALAR_VARIABLES if scalars is None else scalars
    lists = LIST_VARIABLES if lists is None else lists
    for name in [*scalars, *lists]:
        if not name.isidentifier() or not name.isascii():
            raise ValueError(f"Invalid variable name: {name!r}")

    lines = [
        '. ./"$APKBUILD" >/dev/null',
        "unalias -a 2>/dev/null",
        f"unset -f {' '.join(PHASE_FUNCTIONS)} printf test 2>/dev/null",
        "set -f",
        # Unset IFS splits on space, tab and newline
        "unset IFS",
        _WRAPPER_FUNCTIONS,
    ]
    lines.extend(f"__apkmeta_scalar {name}" for name in scalars)
    lines.extend(f"__apkmeta_list {name}" for name in lists)
    lines.append(r"printf 'E\000'")
    return "\n".join(lines) + "\n"


def resolve_shell(shell: str, search_path: str) -> str:
    """Locate the shell executable.

    Raises:
        InterpreterUnavailable: If it cannot be found or is not executable
    """
    if os.sep in shell:
        if os.path.isfile(shell) and os.access(shell, os.X_OK):
            return shell
        raise InterpreterUnavailable(shell, "not found or not executable")

    found = shutil.which(shell, path=search_path) or shutil.which(shell)
    if found is None:
        raise InterpreterUnavailable(shell, "not found in PATH")
    return found


def build_environment(config: EvaluatorConfig, apkbuild_name: str, workdir: str) -> Dict[str, str]:
    """Assemble the environment of the evaluation shell."""
    env = dict(os.environ) if config.inherit_env else {}
    env["PATH"] = config.path
    env["HOME"] = workdir
    env["TMPDIR"] = workdir
    env.update(config.env)
    env["APKBUILD"] = apkbuild_name
    return env


def evaluate_descriptor(
    path: Union[str, Path],
    config: Optional[EvaluatorConfig] = None,
) -> EvaluationOutput:
    """Evaluate an APKBUILD in a sandboxed shell.

    Args:
        path: Path of the APKBUILD
        config: Evaluator configuration (defaults if None)

    Returns:
        EvaluationOutput with the NUL-framed records

    Raises:
        FileNotFoundError: If the APKBUILD does not exist
        InterpreterUnavailable: If the shell cannot be found or started
        EvaluationTimeout: If the shell did not finish in time
        EvaluationFailed: On non-zero exit or output without end marker
    """
    config = config or EvaluatorConfig()
    path = Path(path).absolute()
    if not path.is_file():
        raise FileNotFoundError(f"APKBUILD not found: {path}")

    shell = resolve_shell(config.shell, config.path)

    with tempfile.TemporaryDirectory(prefix="apkmeta-") as workdir:
        wrapper = Path(workdir) / WRAPPER_NAME
        wrapper.write_text(build_wrapper())

        env = build_environment(config, path.name, workdir)
        timeout = config.timeout or None

        logger.debug(f"Evaluating {path} with {shell} (timeout: {timeout} s)")
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                [shell, str(wrapper)],
                cwd=path.parent,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise InterpreterUnavailable(config.shell, e.strerror or str(e)) from e

        try:
            stdout, stderr_bytes = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            proc.wait()
            proc.stdout.close()
            proc.stderr.close()
            logger.warning(f"Evaluation of {path} exceeded {config.timeout:g} s, process group killed")
            raise EvaluationTimeout(config.timeout)
        finally:
            # Background jobs the APKBUILD left behind
            _kill_group(proc)

        duration = time.monotonic() - started

    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise EvaluationFailed(
            f"shell exited with status {proc.returncode}",
            returncode=proc.returncode,
            stderr=stderr,
        )
    if not (stdout == END_MARKER or stdout.endswith(b"\0" + END_MARKER)):
        raise EvaluationFailed(
            "evaluation output has no end marker (did the APKBUILD call exit?)",
            returncode=proc.returncode,
            stderr=stderr,
        )

    logger.debug(f"Evaluated {path} in {duration:.3f} s ({len(stdout)} bytes)")
    return EvaluationOutput(stdout=stdout, stderr=stderr, returncode=proc.returncode, duration=duration)


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        # The group leader is gone and its pid was reused by another user's process
        logger.debug(f"Not permitted to signal process group {proc.pid}")
