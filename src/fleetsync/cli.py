"""Command-line interface for fleetsync."""

import asyncio
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import click

from fleetsync import __version__
from fleetsync.conditional import ConditionalOperator
from fleetsync.descriptor import dump_specs, parse
from fleetsync.exceptions import FleetError
from fleetsync.executor import CancelToken
from fleetsync.facts import FactGatherer, SSHConfig
from fleetsync.logging import configure_logging, get_level_from_name, get_level_from_verbosity, get_logger
from fleetsync.predicate import parse_predicate
from fleetsync.profiles import DEFAULT_PARALLEL, MAX_PARALLEL, ProfileStore, RunProfile
from fleetsync.progress import create_progress_reporter
from fleetsync.providers import EC2Provider, MemoryProvider, Provider
from fleetsync.reconciler import Reconciler
from fleetsync.report import PassReport
from fleetsync.retry import RetryConfig
from fleetsync.snapshot import Snapshot
from fleetsync.types import Operation

logger = get_logger("fleetsync.cli")


@dataclass
class PassOptions:
    """Provider and execution options shared by the pass commands."""

    provider: str = "ec2"
    state_file: str | None = None
    region: str | None = None
    aws_profile: str | None = None
    filters: dict[str, str] = field(default_factory=dict)
    gather_facts: str = "none"
    ssh_user: str | None = None
    ssh_key: str | None = None
    parallel: int = DEFAULT_PARALLEL
    retry: int = 0
    retry_delay: float = 2.0

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(max_attempts=self.retry, initial_delay=self.retry_delay)


def parse_filters(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``--filter key=value`` options."""
    filters: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise click.ClickException(f"Invalid filter format: {value}. Expected key=value")
        key, _, val = value.partition("=")
        filters[key.strip()] = val.strip()
    return filters


def provider_options(f: Callable) -> Callable:
    """Options selecting the provider and how live state is read."""
    options = [
        click.option("--provider", type=click.Choice(["ec2", "memory"]), default=None,
                     help="Infrastructure provider (default: ec2)"),
        click.option("--state-file", type=click.Path(), default=None,
                     help="YAML state file for the memory provider"),
        click.option("--region", default=None, help="Provider region"),
        click.option("--aws-profile", default=None, help="AWS credentials profile"),
        click.option("--filter", "filters", multiple=True,
                     help="Provider-side filter key=value (repeatable, e.g. tag:env=dev)"),
        click.option("--gather-facts", type=click.Choice(["none", "ssh"]), default=None,
                     help="Gather OS facts over SSH (default: none)"),
        click.option("--ssh-user", default=None, help="SSH user for fact gathering"),
        click.option("--ssh-key", type=click.Path(), default=None,
                     help="SSH private key for fact gathering"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def retry_options(f: Callable) -> Callable:
    """Options controlling concurrency and retries."""
    options = [
        click.option("--parallel", "-p", type=int, default=None,
                     help=f"Concurrent provider calls (default: {DEFAULT_PARALLEL}, max: {MAX_PARALLEL})"),
        click.option("--retry", type=int, default=None,
                     help="Retries for throttled provider calls (default: 0)"),
        click.option("--retry-delay", type=float, default=None,
                     help="Initial delay between retries in seconds (default: 2)"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def output_options(f: Callable) -> Callable:
    """Output and logging options."""
    options = [
        click.option("--format", "output_format", type=click.Choice(["text", "json"]),
                     default="text", help="Output format (default: text)"),
        click.option("--verbose", "-v", count=True,
                     help="Increase verbosity (-v info, -vv debug, -vvv trace)"),
        click.option("--log-level", type=click.Choice(["trace", "debug", "info", "warning", "error"],
                                                      case_sensitive=False),
                     default=None, help="Set log level explicitly"),
        click.option("--log-file", type=click.Path(), default=None, help="Also write logs to file"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def setup_logging(output_format: str, verbose: int, log_level: Optional[str], log_file: Optional[str]) -> None:
    """Configure logging from CLI options."""
    if log_level:
        level = get_level_from_name(log_level)
    else:
        level = get_level_from_verbosity(verbose)

    # stdout carries the JSON document; --log-file still gets everything
    console_level = logging.CRITICAL if output_format == "json" else level

    configure_logging(
        level=console_level,
        log_file=log_file,
        file_level=level if log_file else None,
        debug=(level <= logging.DEBUG),
    )


def build_options(
    provider: Optional[str] = None,
    state_file: Optional[str] = None,
    region: Optional[str] = None,
    aws_profile: Optional[str] = None,
    filters: tuple[str, ...] = (),
    gather_facts: Optional[str] = None,
    ssh_user: Optional[str] = None,
    ssh_key: Optional[str] = None,
    parallel: Optional[int] = None,
    retry: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> PassOptions:
    """Resolve CLI option values into PassOptions, applying defaults."""
    options = PassOptions(
        provider=provider or "ec2",
        state_file=state_file,
        region=region,
        aws_profile=aws_profile,
        filters=parse_filters(filters),
        gather_facts=gather_facts or "none",
        ssh_user=ssh_user,
        ssh_key=ssh_key,
        parallel=parallel if parallel is not None else DEFAULT_PARALLEL,
        retry=retry if retry is not None else 0,
        retry_delay=retry_delay if retry_delay is not None else 2.0,
    )

    if options.parallel < 1:
        raise click.ClickException("--parallel must be at least 1")
    if options.parallel > MAX_PARALLEL:
        raise click.ClickException(
            f"--parallel cannot exceed {MAX_PARALLEL} (requested: {options.parallel})\n"
            f"High parallelism can trip provider rate limits."
        )
    if options.retry < 0:
        raise click.ClickException("--retry cannot be negative")
    return options


def build_provider(options: PassOptions) -> Provider:
    """Create the provider selected by the options."""
    if options.provider == "memory":
        if options.gather_facts == "ssh":
            logger.warning("--gather-facts ssh is ignored by the memory provider")
        if options.state_file and Path(options.state_file).exists():
            return MemoryProvider.from_file(options.state_file)
        return MemoryProvider()

    gatherer = None
    if options.gather_facts == "ssh":
        ssh_config = SSHConfig(
            username=options.ssh_user,
            client_keys=[options.ssh_key] if options.ssh_key else None,
        )
        gatherer = FactGatherer(ssh_config, concurrency=options.parallel)
    return EC2Provider(region=options.region, aws_profile=options.aws_profile, fact_gatherer=gatherer)


def save_state(provider: Provider, options: PassOptions) -> None:
    """Persist memory provider state so consecutive runs see their effects."""
    if isinstance(provider, MemoryProvider) and options.state_file:
        provider.save(options.state_file)


def fail(error: FleetError, output_format: str) -> None:
    """Report a pass-level error and exit with status 1."""
    if output_format == "json":
        click.echo(json.dumps({"success": False, "error": error.context.to_dict()}, indent=2))
        raise SystemExit(1)
    raise click.ClickException(error.context.format_text())


@asynccontextmanager
async def interrupt_cancels(cancel: CancelToken) -> AsyncIterator[None]:
    """Turn Ctrl-C into cooperative cancellation while provider calls run.

    Only the mutating phase is covered; outside it Ctrl-C raises
    KeyboardInterrupt as usual, so confirmation prompts can be aborted.
    """
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def run_pass(coro_fn: Callable[[CancelToken], Any], cancellable: bool = False) -> Any:
    """Run one pass with a fresh cancellation token.

    With ``cancellable``, Ctrl-C cancels the token instead of interrupting.
    """
    cancel = CancelToken()

    async def run_async() -> Any:
        if not cancellable:
            return await coro_fn(cancel)
        async with interrupt_cancels(cancel):
            return await coro_fn(cancel)

    return asyncio.run(run_async())


def emit_report(report: PassReport, output_format: str) -> None:
    """Print a pass report and exit 1 if any resource failed."""
    if output_format == "json":
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.format_text())

    if not report.is_success:
        if output_format == "json":
            raise SystemExit(1)
        raise click.ClickException(f"{report.failed} resource(s) failed")


def fleet_command(f: Callable) -> Callable:
    """Convert FleetError raised by a command into CLI errors."""

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return f(*args, **kwargs)
        except FleetError as e:
            fail(e, kwargs.get("output_format", "text"))

    return wrapper


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """fleetsync - idempotent, conditional fleet operations."""
    if version:
        click.echo(f"fleetsync {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("validate")
@click.option("--fleet-file", "-f", required=True, type=click.Path(exists=True),
              help="Fleet file (YAML format)")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format (default: text)")
@fleet_command
def validate(fleet_file: str, output_format: str) -> None:
    """Validate a fleet file without contacting a provider.

    Examples:
        fleetsync validate -f fleet.yml

        fleetsync validate -f fleet.yml --format json
    """
    specs = parse(fleet_file)

    if output_format == "json":
        click.echo(json.dumps({"valid": True, **dump_specs(specs)}, indent=2))
        return

    click.echo(f"\nFleet file: {fleet_file}")
    click.echo(f"Loaded {len(specs)} resource(s)\n")
    for spec in specs:
        tags = " ".join(f"{k}={v}" for k, v in spec.tags.items())
        click.echo(f"  {spec.name}: {spec.instance_type} {spec.image} in {spec.region}" + (f" [{tags}]" if tags else ""))
    click.echo("\n✓ Fleet file is valid")


@cli.command("plan")
@click.option("--fleet-file", "-f", required=True, type=click.Path(exists=True),
              help="Fleet file (YAML format)")
@click.option("--purge-tags", is_flag=True, help="Also remove live tags not in the fleet file")
@provider_options
@retry_options
@output_options
@fleet_command
def plan_command(
    fleet_file: str,
    purge_tags: bool,
    output_format: str,
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    **kwargs: Any,
) -> None:
    """Show the actions that would converge the fleet. Nothing is changed.

    Examples:
        fleetsync plan -f fleet.yml --region us-east-1

        fleetsync plan -f fleet.yml --provider memory --state-file state.yml --format json
    """
    setup_logging(output_format, verbose, log_level, log_file)
    specs = parse(fleet_file)
    options = build_options(**kwargs)

    async def run(cancel: CancelToken):
        async with build_provider(options) as provider:
            reconciler = Reconciler(provider, concurrency=options.parallel, purge_tags=purge_tags)
            return await reconciler.plan(specs, options.filters)

    plan = run_pass(run)

    if output_format == "json":
        click.echo(json.dumps(plan.to_dict(), indent=2))
    else:
        click.echo(plan.format_text())


@cli.command("apply")
@click.option("--fleet-file", "-f", required=True, type=click.Path(exists=True),
              help="Fleet file (YAML format)")
@click.option("--purge-tags", is_flag=True, help="Also remove live tags not in the fleet file")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--progress", is_flag=True, help="Show real-time progress on stderr")
@provider_options
@retry_options
@output_options
@fleet_command
def apply_command(
    fleet_file: str,
    purge_tags: bool,
    yes: bool,
    progress: bool,
    output_format: str,
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    **kwargs: Any,
) -> None:
    """Converge the fleet to the fleet file.

    Creates missing resources and updates drifted tags and instance types.
    Resources whose image or region changed are reported, never replaced.
    Applying a converged fleet changes nothing.

    Examples:
        fleetsync apply -f fleet.yml

        fleetsync apply -f fleet.yml --yes --parallel 20 --retry 3

        fleetsync apply -f fleet.yml --provider memory --state-file state.yml --yes
    """
    if output_format == "json" and not yes:
        raise click.ClickException("--yes is required with --format json")
    setup_logging(output_format, verbose, log_level, log_file)
    specs = parse(fleet_file)
    options = build_options(**kwargs)
    reporter = create_progress_reporter(
        progress, json_format=(output_format == "json"), rich=sys.stderr.isatty()
    )

    provider = build_provider(options)
    reconciler = Reconciler(
        provider,
        concurrency=options.parallel,
        retry_config=options.retry_config,
        reporter=reporter,
        purge_tags=purge_tags,
    )

    async def plan_pass(cancel: CancelToken):
        return await reconciler.plan(specs, options.filters)

    async def apply_pass(cancel: CancelToken):
        async with provider:
            report = await reconciler.apply(plan, cancel=cancel)
        save_state(provider, options)
        logger.info(
            "Pass complete", command="apply", provider=options.provider,
            applied=report.applied, skipped=report.skipped, failed=report.failed,
        )
        return report

    plan = run_pass(plan_pass)
    if output_format == "text":
        click.echo(plan.format_text())
    if plan.is_converged:
        if output_format == "json":
            click.echo(json.dumps({"plan": plan.to_dict(), "report": None}, indent=2))
        else:
            click.echo("Fleet is converged; nothing to do.")
        return

    # Prompted outside any event loop, with the default SIGINT handler
    if not yes:
        click.confirm("Apply these changes?", abort=True)
    emit_report(run_pass(apply_pass, cancellable=True), output_format)


@cli.command("facts")
@click.option("--where", "where", default=None, help="Only show resources matching a predicate")
@provider_options
@output_options
@fleet_command
def facts_command(
    where: Optional[str],
    output_format: str,
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    **kwargs: Any,
) -> None:
    """List live resources and their facts.

    Examples:
        fleetsync facts --region us-east-1

        fleetsync facts --gather-facts ssh --ssh-user ubuntu --where 'os_family == "Debian"'
    """
    setup_logging(output_format, verbose, log_level, log_file)
    predicate = parse_predicate(where) if where else None
    options = build_options(**kwargs)

    async def run(cancel: CancelToken) -> Snapshot:
        async with build_provider(options) as provider:
            return await Snapshot.capture(provider, options.filters)

    snapshot = run_pass(run)
    resources = [r for r in snapshot if predicate is None or predicate.matches(r.facts)]

    if output_format == "json":
        click.echo(json.dumps({"resources": [r.to_dict() for r in resources]}, indent=2))
        return

    if not resources:
        click.echo("No resources found.")
        return

    click.echo(f"{'NAME':<20} {'ID':<20} {'STATE':<14} {'OS FAMILY':<10} {'DISTRIBUTION':<14} {'VERSION':<8}")
    for r in resources:
        facts = r.facts
        click.echo(
            f"{r.name:<20} {r.resource_id:<20} {r.state.value:<14} {facts.os_family or '-':<10} "
            f"{facts.distribution or '-':<14} {facts.distribution_version or '-':<8}"
        )
    click.echo(f"\nTotal: {len(resources)} resource(s)")


@cli.command("operate")
@click.option("--op", "op", required=True,
              help="Operation: start, stop (shutdown), reboot, terminate")
@click.option("--where", "where", required=True,
              help="Predicate selecting resources, e.g. 'os_family == \"Debian\"'")
@click.option("--dry-run", is_flag=True, help="Show which resources would be affected")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--progress", is_flag=True, help="Show real-time progress on stderr")
@provider_options
@retry_options
@output_options
@fleet_command
def operate_command(
    op: str,
    where: str,
    dry_run: bool,
    yes: bool,
    progress: bool,
    output_format: str,
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    **kwargs: Any,
) -> None:
    """Apply an operation to the resources a predicate selects.

    Resources whose facts do not match, or are missing the facts the
    predicate needs, are skipped without contacting the provider.

    Examples:
        fleetsync operate --op shutdown --where 'os_family == "Debian"'

        fleetsync operate --op stop --where 'distribution =~ "Ubuntu*"' --dry-run

        fleetsync operate --op reboot --where 'os_family in ["RedHat", "Suse"]' --filter tag:env=dev --yes
    """
    if output_format == "json" and not (yes or dry_run):
        raise click.ClickException("--yes is required with --format json")
    setup_logging(output_format, verbose, log_level, log_file)
    try:
        operation = Operation.parse(op)
    except ValueError as e:
        raise click.ClickException(str(e))
    if operation.name == "update":
        raise click.ClickException("update is applied through 'fleetsync apply', not operate")
    predicate = parse_predicate(where)
    options = build_options(**kwargs)
    reporter = create_progress_reporter(
        progress, json_format=(output_format == "json"), rich=sys.stderr.isatty()
    )

    provider = build_provider(options)
    operator = ConditionalOperator(
        provider,
        concurrency=options.parallel,
        retry_config=options.retry_config,
        reporter=reporter,
    )

    async def snapshot_pass(cancel: CancelToken) -> Snapshot:
        return await Snapshot.capture(provider, options.filters)

    async def apply_pass(cancel: CancelToken):
        async with provider:
            report = await operator.apply(snapshot, predicate, operation, cancel=cancel)
        save_state(provider, options)
        logger.info(
            "Pass complete", command="operate", provider=options.provider,
            operation=operation.name, applied=report.applied, failed=report.failed,
        )
        return report

    snapshot = run_pass(snapshot_pass)
    selected = operator.select(snapshot, predicate)
    pending = [r for r in selected if not operation.is_satisfied_by(r.state)]

    if dry_run:
        if output_format == "json":
            click.echo(json.dumps({
                "dry_run": True,
                "operation": operation.name,
                "predicate": str(predicate),
                "selected": [r.to_dict() for r in selected],
                "would_change": [r.name for r in pending],
            }, indent=2))
        else:
            click.echo(f"\nDry run: {operation} where {predicate}")
            click.echo(f"Selected {len(selected)} resource(s), {len(pending)} would change:\n")
            for resource in selected:
                marker = "*" if resource in pending else " "
                click.echo(f"  {marker} {resource.name} ({resource.resource_id}) {resource.state.value}")
        return

    if pending and operation.is_destructive and not yes:
        click.echo(f"{operation} will be applied to {len(pending)} resource(s):")
        for resource in pending:
            click.echo(f"  {resource.name} ({resource.resource_id})")
        click.confirm("Continue?", abort=True)

    emit_report(run_pass(apply_pass, cancellable=True), output_format)


# Profile subcommand group
@cli.group()
def profile() -> None:
    """Saved run profiles.

    Save and rerun common apply or operate passes.
    """
    pass


@profile.command("save")
@click.argument("name")
@click.option("--command", "command", type=click.Choice(["apply", "operate"]), required=True,
              help="Command the profile runs")
@click.option("--fleet-file", "-f", default=None, help="Fleet file (apply)")
@click.option("--op", "op", default=None, help="Operation (operate)")
@click.option("--where", "where", default=None, help="Predicate expression (operate)")
@click.option("--description", "-d", default=None, help="Profile description")
@click.option("--purge-tags", is_flag=True, default=None, help="Remove live tags not in the fleet file")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default=None,
              help="Output format")
@provider_options
@retry_options
@fleet_command
def profile_save(
    name: str,
    command: str,
    fleet_file: Optional[str],
    op: Optional[str],
    where: Optional[str],
    description: Optional[str],
    purge_tags: Optional[bool],
    output_format: Optional[str],
    filters: tuple[str, ...],
    **kwargs: Any,
) -> None:
    """Save a run profile.

    Examples:
        fleetsync profile save web --command apply -f fleet.yml --region us-east-1

        fleetsync profile save stop-debian --command operate --op shutdown --where 'os_family == "Debian"'
    """
    if op:
        try:
            op = Operation.parse(op).name
        except ValueError as e:
            raise click.ClickException(str(e))
    if where:
        parse_predicate(where)

    saved = RunProfile(
        name=name,
        command=command,
        fleet_file=fleet_file,
        predicate=where,
        operation=op,
        description=description or "",
        filters=parse_filters(filters),
        purge_tags=purge_tags if purge_tags else None,
        format=output_format,
        **kwargs,
    )
    path = ProfileStore().save(saved)
    click.echo(f"Profile '{name}' saved to {path}")


@profile.command("list")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format")
def profile_list(output_format: str) -> None:
    """List all saved run profiles."""
    store = ProfileStore()
    profiles = store.names()

    if output_format == "json":
        click.echo(json.dumps({"profiles": profiles}, indent=2))
        return

    if not profiles:
        click.echo("No profiles found.")
        return

    click.echo("Saved profiles:")
    for name in profiles:
        saved = store.load(name)
        if saved:
            desc = f" - {saved.description}" if saved.description else ""
            click.echo(f"  {name} ({saved.command}){desc}")
    click.echo(f"\nTotal: {len(profiles)} profile(s)")


@profile.command("show")
@click.argument("name")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format")
@fleet_command
def profile_show(name: str, output_format: str) -> None:
    """Show details of a run profile."""
    saved = ProfileStore().load(name)

    if saved is None:
        raise click.ClickException(f"Profile not found: {name}")

    if output_format == "json":
        click.echo(json.dumps(saved.to_dict(), indent=2))
    else:
        click.echo(saved.format_text())


@profile.command("delete")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@fleet_command
def profile_delete(name: str, yes: bool) -> None:
    """Delete a run profile."""
    store = ProfileStore()
    if store.load(name) is None:
        raise click.ClickException(f"Profile not found: {name}")

    if not yes:
        click.confirm(f"Delete profile '{name}'?", abort=True)

    if store.delete(name):
        click.echo(f"Profile '{name}' deleted")
    else:
        raise click.ClickException(f"Failed to delete profile: {name}")


@profile.command("run")
@click.argument("name")
@click.option("--dry-run", is_flag=True, help="Preview an operate profile without changing anything")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              help="Override output format")
@fleet_command
def profile_run(name: str, dry_run: bool, output_format: Optional[str]) -> None:
    """Run a saved profile.

    Examples:
        fleetsync profile run stop-debian

        fleetsync profile run stop-debian --dry-run
    """
    saved = ProfileStore().load(name)

    if saved is None:
        raise click.ClickException(f"Profile not found: {name}")

    args = saved.to_cli_args()
    if output_format:
        if "--format" in args:
            index = args.index("--format")
            args[index + 1] = output_format
        else:
            args.extend(["--format", output_format])
    if dry_run:
        if saved.command != "operate":
            raise click.ClickException("--dry-run only applies to operate profiles; use 'fleetsync plan'")
        args.append("--dry-run")

    if (output_format or saved.format) != "json":
        click.echo(f"Running profile '{name}' ({saved.command})")
    cli.main(args=args, prog_name="fleetsync", standalone_mode=False)


def main() -> None:
    """Package entry point for the fleetsync command-line interface."""
    cli()


if __name__ == "__main__":
    cli()
