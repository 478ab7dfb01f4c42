"""Command line interface for running triage workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from triageflow import WorkflowCommand, WorkflowEngine, WorkflowWorker, get_repository, get_transport
from triageflow.agents import AgentInvoker, PydanticAIInvoker
from triageflow.config import TriageFlowConfig, load_config
from triageflow.contracts import COMMAND_TOPIC
from triageflow.errors import TriageFlowError

app = typer.Typer(help="CLI for triageflow incident workflows")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for triageflow"),
) -> None:
    """triageflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_invoker(config: TriageFlowConfig) -> AgentInvoker:
    return PydanticAIInvoker.from_model(
        config.agents.model, history_window=config.agents.history_window
    )


def _build_engine(config: Optional[TriageFlowConfig] = None) -> WorkflowEngine:
    config = config or load_config()
    return WorkflowEngine(
        _build_invoker(config),
        repository=get_repository(),
        settings=config.engine,
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command("start")
def start(
    workflow_id: str,
    incident: str,
    detach: bool = typer.Option(
        False, help="Publish a start command for a worker instead of running here"
    ),
    timeout: Optional[float] = typer.Option(
        None, help="Seconds to wait for the pipeline when running in-process"
    ),
) -> None:
    """
    Start a triage workflow for an incident.

    Without --detach the pipeline runs in this process and the final status is
    printed. With --detach a start command is published on the configured
    transport and a running worker picks it up.

    Example:
        triageflow start wf-1 "Checkout 5xx spike after deploy"
        triageflow start wf-2 "DB outage" --detach
    """
    config = load_config()
    if detach:
        async def _publish() -> None:
            async with get_transport(config=config) as transport:
                await transport.publish(COMMAND_TOPIC, WorkflowCommand.start(workflow_id, incident))

        asyncio.run(_publish())
        typer.echo(f"Queued workflow {workflow_id}")
        typer.echo("Run 'triageflow worker' to process it")
        return

    async def _run():
        engine = _build_engine(config)
        await engine.start(workflow_id, incident)
        return await engine.wait(workflow_id, timeout=timeout)

    try:
        view = asyncio.run(_run())
    except TriageFlowError as e:
        _fail(str(e))
    except asyncio.TimeoutError:
        _fail(f"Workflow {workflow_id} did not finish within {timeout}s")
    typer.echo(f"Workflow {workflow_id}: {view.status}")


@app.command("state")
def state(workflow_id: str) -> None:
    """Print the latest persisted state of a workflow as JSON."""
    view = asyncio.run(_build_engine().get_state(workflow_id))
    typer.echo(view.model_dump_json(indent=2))


@app.command("conversations")
def conversations(workflow_id: str) -> None:
    """Print the conversation of a workflow, oldest entry first."""
    entries = asyncio.run(_build_engine().get_conversations(workflow_id))
    if not entries:
        typer.echo("No conversation found")
        return
    for entry in entries:
        typer.echo(f"{entry.role}: {entry.content}")


@app.command("list")
def list_workflows() -> None:
    """
    List all workflows with their current status.

    Example:
        triageflow list
        # Output: wf-1    COMPLETED    -
        #         wf-2    TRIAGED      query_knowledge_base
    """
    views = asyncio.run(_build_engine().list_workflows())
    if not views:
        typer.echo("No workflows found")
        return
    for view in views:
        typer.echo(f"{view.workflow_id}\t{view.status}\t{view.current_step or '-'}")


@app.command("repeat")
def repeat(
    workflow_id: str,
    message: str,
    times: int = typer.Option(1, help="Number of demo notes to append (max 50)"),
) -> None:
    """Append demo notes to a workflow conversation and pause it."""
    try:
        outcome = asyncio.run(_build_engine().repeat(workflow_id, message, times))
    except TriageFlowError as e:
        _fail(str(e))
    if outcome == "no-state":
        _fail("Workflow not found")
    typer.echo(outcome)


@app.command("resume")
def resume(
    workflow_id: Optional[str] = typer.Argument(None),
    timeout: Optional[float] = typer.Option(None, help="Seconds to wait for completion"),
) -> None:
    """Resume one workflow (un-pausing it), or every unpaused unfinished one."""

    async def _run() -> list[str]:
        engine = _build_engine()
        if workflow_id is not None:
            ids = [workflow_id] if await engine.resume(workflow_id) else []
        else:
            ids = await engine.resume_all()
        for wid in ids:
            view = await engine.wait(wid, timeout=timeout)
            typer.echo(f"Workflow {wid}: {view.status}")
        return ids

    try:
        ids = asyncio.run(_run())
    except TriageFlowError as e:
        _fail(str(e))
    if not ids:
        typer.echo("Nothing to resume")


@app.command("worker")
def worker(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run a worker that processes start/resume/repeat commands.

    Unfinished workflows found in the repository are resumed on startup.

    Example:
        triageflow worker --lifespan 300
    """
    config = load_config()

    async def _run() -> None:
        engine = _build_engine(config)
        try:
            async with get_transport(config=config) as transport:
                await WorkflowWorker(engine, transport).start(lifespan=lifespan)
        finally:
            await engine.shutdown()

    typer.echo("Starting triageflow worker")
    asyncio.run(_run())


if __name__ == "__main__":
    app()
