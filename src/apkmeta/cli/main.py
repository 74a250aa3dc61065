"""
Main CLI entry point for apkmeta.

This module provides the Click-based command-line interface for apkmeta.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from apkmeta import __version__
from apkmeta.core.config import GlobalConfig, create_example_config, load_config
from apkmeta.core.errors import ApkmetaError
from apkmeta.core.output import OutputLevel, ResultOutputter
from apkmeta.plugins.apk import ApkReader
from apkmeta.plugins.apk.models import PackageContainer
from apkmeta.plugins.apkbuild import ApkbuildReader
from apkmeta.plugins.apkbuild.models import BuildDescriptorMetadata

# Click context settings to enable -h as alias for --help
CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file (default: /etc/apkmeta/config.yaml, or $APKMETA_CONFIG)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (debug logging to stderr)")
@click.option("--quiet", "-q", is_flag=True, help="Do not print validation warnings")
@click.option("--pretty", "-p", is_flag=True, help="Indent and highlight the JSON output")
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, quiet: bool, pretty: bool) -> None:
    """apkmeta - Alpine package metadata extraction.

    Reads APKv2 package files and APKBUILD build descriptors and prints
    their metadata as JSON.
    """
    ctx.ensure_object(dict)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if quiet:
        level = OutputLevel.QUIET
    elif verbose:
        level = OutputLevel.VERBOSE
    else:
        level = OutputLevel.NORMAL
    outputter = ResultOutputter(level, pretty=pretty)
    ctx.obj["output"] = outputter

    try:
        ctx.obj["config"] = load_config(config)
    except FileNotFoundError as e:
        outputter.error(str(e))
        ctx.exit(1)
    except ValueError as e:
        # YAML syntax error or validation error
        outputter.error(str(e))
        ctx.exit(1)


@cli.command("apk")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--no-files", is_flag=True, help="Stop after the control segment (no file inventory)")
@click.option(
    "--strict",
    is_flag=True,
    help="Fail on unsupported tar entry types instead of skipping them",
)
@click.pass_context
def apk_command(ctx: click.Context, file: Path, no_files: bool, strict: bool) -> None:
    """Print the metadata of an APKv2 package file as JSON."""
    config: GlobalConfig = ctx.obj["config"]
    output: ResultOutputter = ctx.obj["output"]

    update = {"keep_content": False}
    if no_files:
        update["read_files"] = False
    if strict:
        update["unsupported_entry_policy"] = "error"
    container_config = config.container.model_copy(update=update)
    output.verbose(f"Reading {file}")

    try:
        container = ApkReader(container_config).read(file)
    except (ApkmetaError, OSError) as e:
        output.error(f"{file}: {e}")
        ctx.exit(1)

    output.document(container.model_dump(mode="json"))
    output.warnings(container.warnings)
    output.summary(
        package=f"{container.info.name}-{container.info.full_version}",
        segments=len(container.segments),
        files=len(container.files),
        warnings=len(container.warnings),
    )


def _parse_env(ctx: click.Context, param: click.Parameter, value: Tuple[str, ...]) -> dict:
    env = {}
    for item in value:
        name, sep, val = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected VAR=VALUE, got '{item}'", ctx=ctx, param=param)
        env[name] = val
    return env


@cli.command("apkbuild")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--env",
    "-e",
    "env",
    multiple=True,
    callback=_parse_env,
    metavar="VAR=VALUE",
    help="Set environment variable for the evaluation (repeatable)",
)
@click.option("--keep-env", "-k", is_flag=True, help="Inherit the caller's environment")
@click.option("--shell", "-s", default=None, help="Shell used to evaluate the APKBUILD (default: /bin/sh)")
@click.option(
    "--timeout",
    "-T",
    type=click.FloatRange(min=0),
    default=None,
    help="Evaluation time limit in seconds, 0 disables (default: 5)",
)
@click.pass_context
def apkbuild_command(
    ctx: click.Context,
    file: Path,
    env: dict,
    keep_env: bool,
    shell: Optional[str],
    timeout: Optional[float],
) -> None:
    """Print the metadata of an APKBUILD as JSON.

    The APKBUILD is sourced by a shell in a scrubbed environment; its build
    functions are never run.
    """
    config: GlobalConfig = ctx.obj["config"]
    output: ResultOutputter = ctx.obj["output"]

    evaluator = config.evaluator
    try:
        evaluator = type(evaluator)(
            **{
                **evaluator.model_dump(),
                "env": {**evaluator.env, **env},
                "inherit_env": evaluator.inherit_env or keep_env,
                "shell": shell or evaluator.shell,
                "timeout": evaluator.timeout if timeout is None else timeout,
            }
        )
    except ValueError as e:
        raise click.BadParameter(str(e), ctx=ctx)

    output.verbose(f"Evaluating {file} with {evaluator.shell} (timeout: {evaluator.timeout:g} s)")
    try:
        metadata = ApkbuildReader(evaluator).read(file)
    except (ApkmetaError, OSError) as e:
        output.error(f"{file}: {e}")
        ctx.exit(1)

    output.document(metadata.model_dump(mode="json"))
    output.warnings(metadata.warnings)
    output.summary(
        package=f"{metadata.name}-{metadata.full_version}",
        sources=len(metadata.sources),
        subpackages=len(metadata.subpackages),
        warnings=len(metadata.warnings),
    )


# Result models of the document printing commands
SCHEMA_MODELS = {
    "apk": PackageContainer,
    "apkbuild": BuildDescriptorMetadata,
}


@cli.command("schema")
@click.argument("document", type=click.Choice(list(SCHEMA_MODELS)))
@click.pass_context
def schema_command(ctx: click.Context, document: str) -> None:
    """Print the JSON Schema of the apk or apkbuild JSON document."""
    model = SCHEMA_MODELS[document]
    ctx.obj["output"].document(model.model_json_schema(mode="serialization"))


@cli.command("init-config")
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def init_config(ctx: click.Context, output_path: Path, force: bool) -> None:
    """Write an example configuration file."""
    if output_path.exists() and not force:
        ctx.obj["output"].error(f"{output_path} already exists (use --force to overwrite)")
        ctx.exit(1)

    create_example_config(output_path)
    click.echo(f"Wrote example configuration to {output_path}")


def main() -> None:
    """Entry point for the apkmeta console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
