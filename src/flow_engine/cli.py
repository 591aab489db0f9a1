"""
Flow Automation Engine CLI
"""
import click
import asyncio
import json
import logging

from dotenv import load_dotenv

from .config import EngineSettings
from .core.engine import ExecutionEngine
from .core.parser import WorkflowParser
from .core.registry import default_registry
from .exceptions import FlowEngineError, WorkflowValidationError, UnknownNodeTypeError
from .models.execution import ExecutionStatus


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _load_definition(workflow_file: str):
    try:
        return WorkflowParser().load_file(workflow_file)
    except WorkflowValidationError as e:
        click.echo(f"Invalid workflow: {e}", err=True)
        for detail in e.details:
            click.echo(f"  - {detail}", err=True)
        raise SystemExit(1)


@click.group()
@click.option('--log-level', default=None, help='Logging level (defaults to LOG_LEVEL)')
@click.pass_context
def cli(ctx, log_level):
    """Flow Automation Engine CLI"""
    load_dotenv()
    settings = EngineSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, (log_level or settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT
    )
    ctx.obj = settings


@cli.command()
@click.option('--host', default=None, help='Host to bind to (defaults to API_HOST)')
@click.option('--port', default=None, type=int, help='Port to bind to (defaults to API_PORT)')
@click.option('--reload', is_flag=True, default=None, help='Enable auto-reload')
@click.pass_obj
def serve(settings, host, port, reload):
    """Start the API server"""
    import uvicorn

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "flow_engine.api.app:app",
        host=host,
        port=port,
        reload=settings.api_reload if reload is None else reload,
        log_level=settings.log_level.lower()
    )


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
def validate(workflow_file):
    """Validate a workflow file (YAML or JSON)"""
    definition = _load_definition(workflow_file)
    engine = ExecutionEngine(default_registry())
    try:
        engine.validate(definition)
    except (WorkflowValidationError, UnknownNodeTypeError) as e:
        click.echo(f"Invalid workflow: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Workflow '{definition.name or definition.id}' is valid "
               f"({len(definition.nodes)} nodes, {len(definition.connections)} connections)")
    for warning in definition.warnings:
        click.echo(f"  warning [{warning.code}]: {warning.message}")


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
def plan(workflow_file):
    """Print the execution plan of a workflow file"""
    definition = _load_definition(workflow_file)
    execution_plan = ExecutionEngine(default_registry()).plan(definition)
    for index, level in enumerate(execution_plan.levels):
        click.echo(f"level {index}: {', '.join(level)}")
    if execution_plan.unreachable:
        click.echo(f"unreachable: {', '.join(execution_plan.unreachable)}")


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--payload', default=None, help='Trigger payload as a JSON string')
@click.option('--timeout', default=None, type=float, help='Seconds to wait for the run')
@click.pass_obj
def run(settings, workflow_file, payload, timeout):
    """Run a workflow file once and print the execution"""
    definition = _load_definition(workflow_file)
    trigger_payload = None
    if payload is not None:
        try:
            trigger_payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint='--payload')

    async def _run():
        engine = ExecutionEngine(default_registry(), settings=settings)
        await engine.start()
        try:
            return await engine.run(definition, trigger_payload, mode="cli", timeout=timeout)
        finally:
            await engine.stop()

    try:
        execution = asyncio.run(_run())
    except asyncio.TimeoutError:
        click.echo(f"Execution did not finish within {timeout}s", err=True)
        raise SystemExit(2)
    except FlowEngineError as e:
        click.echo(f"Execution failed to start: {e}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(execution.to_dict(), indent=2, default=str))
    if execution.status != ExecutionStatus.SUCCESS:
        raise SystemExit(1)


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
