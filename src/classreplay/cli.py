"""classreplay CLI: capture and substitute class files outside a live runtime."""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
import traceback
from pathlib import Path

import click

from classreplay import __version__
from classreplay.capture import CapturePipeline
from classreplay.classfile import ClassFile
from classreplay.classifier import NameClassifier
from classreplay.config import USER_CONFIG_PATH, ReplayConfig, write_default_config
from classreplay.errors import ConfigurationError, ReplayError
from classreplay.session import SessionState
from classreplay.store import ArtifactStore, RestrictedLookup
from classreplay.substitute import SubstitutionPipeline


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def configure_logging(verbose: bool, debug: bool) -> None:
    """Configure root logging for CLI runs."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def collect_class_files(paths: tuple[Path, ...]) -> list[Path]:
    """Expand arguments into class files; directories are walked in sorted order.

    The resulting order is treated as load order.
    """
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*.class") if p.is_file()))
        else:
            files.append(path)
    return files


def load_config(config_path: Path | None) -> ReplayConfig:
    """Load configuration for a CLI run; defaults apply when no file exists."""
    if config_path is not None:
        return ReplayConfig.load(config_path)
    try:
        return ReplayConfig.load(create_user_file=False)
    except ConfigurationError:
        return ReplayConfig().with_env()


@click.group()
@click.version_option(version=__version__, prog_name="classreplay")
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, path_type=Path),
              help='Configuration file (default: ./classreplay.yaml or ~/.classreplay/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Per-class diagnostics and info logging')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool, debug: bool):
    """classreplay - capture and replay class files with stable names for generated classes."""
    ctx.ensure_object(dict)
    configure_logging(verbose, debug)
    ctx.obj['debug'] = debug
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        handle_error(e, debug)
    if verbose and not config.verbose:
        config = dataclasses.replace(config, verbose=True)
    ctx.obj['config'] = config


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option('--json', 'as_json', is_flag=True, help='Emit JSON instead of text')
@click.pass_context
def inspect(ctx: click.Context, files: tuple[Path, ...], as_json: bool):
    """Show declared names, generated references and resolved identifiers.

    Files are resolved in the order given, as if loaded in that order.

    Examples:
      classreplay inspect Helper3.class Proxy7.class
    """
    config: ReplayConfig = ctx.obj['config']
    debug = ctx.obj.get('debug', False)
    session = SessionState(NameClassifier(config.generated_patterns), config.canonicalize)

    rows = []
    try:
        for path in collect_class_files(files):
            data = path.read_bytes()
            classfile = ClassFile.parse(data)
            name = classfile.name
            generated = session.classifier.is_generated(name)
            row = {
                "file": str(path),
                "name": name,
                "major_version": classfile.major_version,
                "generated": generated,
                "references": session.namer.referenced_names(classfile),
                "identifier": None,
                "error": None,
            }
            if generated:
                session.retain(name, data)
                try:
                    row["identifier"] = session.resolve(name).identifier
                except ReplayError as e:
                    row["error"] = str(e)
            rows.append(row)
    except (OSError, ReplayError) as e:
        handle_error(e, debug)

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    for row in rows:
        click.echo(f"{row['name']} (v{row['major_version']})")
        click.echo(f"  file:       {row['file']}")
        click.echo(f"  generated:  {row['generated']}")
        if row['references']:
            click.echo(f"  references: {', '.join(row['references'])}")
        if row['identifier']:
            click.echo(f"  identifier: {row['identifier']}")
        if row['error']:
            click.echo(f"  error:      {row['error']}")


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Output directory (default: config out_dir)')
@click.option('--dry-run', is_flag=True, help='Resolve names but write nothing')
@click.option('--json', 'as_json', is_flag=True, help='Emit the dump report as JSON')
@click.pass_context
def capture(ctx: click.Context, files: tuple[Path, ...], out: Path | None, dry_run: bool, as_json: bool):
    """Capture class files, naming generated classes by content.

    Files are observed in the order given, then dumped.

    Examples:
      classreplay capture build/App.class build/App$Proxy7.class --out ./captured
    """
    config: ReplayConfig = ctx.obj['config']
    debug = ctx.obj.get('debug', False)
    overrides = {}
    if out is not None:
        overrides['out_dir'] = str(out)
    if dry_run:
        overrides['dry_run'] = True
    config = dataclasses.replace(config, **overrides)

    try:
        pipeline = CapturePipeline(config, ArtifactStore(config.out_dir))
        for path in collect_class_files(files):
            pipeline.transform(None, path.read_bytes())
        report = pipeline.finish()
    except (OSError, ReplayError) as e:
        handle_error(e, debug)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    click.echo(f"Captured {len(pipeline.session.retained)} classes into {config.out_dir}")
    click.echo(f"  new: {report.fresh}  overwritten: {report.overwritten}  "
               f"renamed: {report.resolved}  skipped: {report.skipped}  failed: {report.io_failures}")
    for error in report.errors:
        click.echo(f"  ! {error}", err=True)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option('--corpus', multiple=True, type=click.Path(exists=True, path_type=Path),
              help='Captured artifact location (repeatable; default: config corpus)')
@click.option('--out', '-o', required=True, type=click.Path(path_type=Path), help='Output directory')
@click.pass_context
def substitute(ctx: click.Context, files: tuple[Path, ...], corpus: tuple[Path, ...], out: Path):
    """Substitute captured artifacts for class files.

    Every input is written to --out under its declared name: the captured
    artifact when one matches, the input itself otherwise.

    Examples:
      classreplay substitute run2/App.class run2/App$Proxy2.class --corpus ./captured --out ./replayed
    """
    config: ReplayConfig = ctx.obj['config']
    debug = ctx.obj.get('debug', False)

    try:
        lookup = RestrictedLookup(corpus) if corpus else RestrictedLookup(config.require_corpus())
        pipeline = SubstitutionPipeline(config, lookup)
        store = ArtifactStore(out)
        for path in collect_class_files(files):
            data = path.read_bytes()
            replacement = pipeline.transform(None, data)
            store.put(ClassFile.parse(data).name, replacement if replacement is not None else data)
    except (OSError, ReplayError) as e:
        handle_error(e, debug)

    if not config.quiet:
        click.echo(pipeline.stats.summary())


@cli.command('init-config')
@click.option('--path', type=click.Path(path_type=Path), default=None,
              help='Where to write (default: ~/.classreplay/config.yaml)')
@click.option('--force', is_flag=True, help='Overwrite an existing file')
def init_config(path: Path | None, force: bool):
    """Write the default configuration file."""
    target = path or USER_CONFIG_PATH.expanduser()
    if write_default_config(target, overwrite=force):
        click.echo(f"Wrote {target}")
    else:
        click.echo(f"{target} already exists (use --force to overwrite)")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
