"""Command-line interface for the cloud broker simulator."""

import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from .core.simulator import BrokerSimulation
from .scheduling.binding import BindingStrategy
from .scheduling.placement import PlacementStrategy
from .utils.config import Config, DatacenterConfig, load_config, save_config, save_results
from .utils.log import setup_logging

app = typer.Typer(name="cloud-broker", help="Cloud broker negotiation and binding simulator")
console = Console()


@app.command()
def simulate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    placement: str = typer.Option("worst_fit", "--placement", "-p", help="VM placement strategy"),
    binding: str = typer.Option("round_robin", "--binding", "-b", help="Job binding strategy"),
    datacenters: int = typer.Option(1, "--datacenters", "-d", help="Number of datacenters"),
    vms: int = typer.Option(5, "--vms", help="Number of VMs to request"),
    jobs: int = typer.Option(20, "--jobs", "-j", help="Number of jobs to run"),
    seed: int = typer.Option(42, "--seed", help="Random seed"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run one broker scenario."""

    setup_logging("DEBUG" if verbose else "WARNING",
                  log_file=Path("logs/simulation_{time}.log") if verbose else None)

    console.print("Starting cloud broker simulation", style="bold blue")

    if config:
        sim_config = load_config(config)
        console.print(f"Loaded configuration from {config}")
    else:
        sim_config = build_config(placement, binding, datacenters, vms, jobs, seed)
        console.print("Using command-line configuration")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Setting up datacenters...", total=None)
        simulation = BrokerSimulation(sim_config)
        progress.update(task, description="Simulating...")
        simulation.run()
        progress.update(task, description="Simulation completed")

    analysis = simulation.results()
    display_results_summary(analysis)
    display_vm_table(analysis)

    if output:
        output_dir = Path(output)
        save_results(analysis, output_dir)
        save_config(sim_config, output_dir / "config.yaml")
        console.print(f"Results saved to {output_dir}")

    if analysis['summary']['final_state'] == "done":
        console.print("Simulation completed successfully!", style="bold green")
    else:
        console.print(f"Simulation ended in state {analysis['summary']['final_state']}", style="bold red")
        raise typer.Exit(code=1)


@app.command()
def strategies() -> None:
    """List the available placement and binding strategies."""

    table = Table(title="Strategies")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="green")

    for strategy in PlacementStrategy:
        table.add_row("placement", strategy.value)
    for strategy in BindingStrategy:
        table.add_row("binding", strategy.value)

    console.print(table)


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("configs/default.yaml"), help="Where to write the configuration"),
) -> None:
    """Write a default configuration file."""
    save_config(Config(), path)
    console.print(f"Default configuration written to {path}")


def build_config(placement: str, binding: str, datacenters: int, vms: int, jobs: int, seed: int) -> Config:
    """Configuration from command-line flags; unknown strategy names raise ``ValueError``."""
    try:
        placement_strategy = PlacementStrategy(placement)
        binding_strategy = BindingStrategy(binding)
    except ValueError as e:
        logger.error(f"Invalid strategy: {e}")
        raise

    config = Config(
        datacenters=[
            DatacenterConfig(name=f"Datacenter_{i}", placement=placement_strategy)
            for i in range(datacenters)
        ],
    )
    config.binding.strategy = binding_strategy
    config.binding.seed = seed
    config.workload.seed = seed
    config.workload.num_vms = vms
    config.workload.num_jobs = jobs
    return config


def display_results_summary(analysis: dict) -> None:
    """Display run summary."""

    table = Table(title="Simulation Results Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Unit", style="yellow")

    summary = analysis.get('summary', {})
    job_metrics = analysis.get('job_metrics', {})
    binding = analysis.get('binding_metrics', {})

    metrics = [
        ("Final State", f"{summary.get('final_state', '-')}", "state"),
        ("Jobs Received", f"{summary.get('jobs_received', 0)}/{summary.get('total_jobs', 0)}", "count"),
        ("Jobs Postponed", f"{summary.get('jobs_postponed', 0)}", "count"),
        ("Recovery Rounds", f"{summary.get('recovery_rounds', 0)}", "count"),
        ("Makespan", f"{job_metrics.get('makespan', 0):.2f}", "seconds"),
        ("Average Execution Time", f"{job_metrics.get('avg_execution_time', 0):.2f}", "seconds"),
        ("P95 Execution Time", f"{job_metrics.get('p95_execution_time', 0):.2f}", "seconds"),
        ("Transition Cost", f"{binding.get('transition_cost', 0)}", "count"),
        ("Load Imbalance", f"{binding.get('load_imbalance', 0):.3f}", "cv"),
    ]

    for metric, value, unit in metrics:
        table.add_row(metric, value, unit)

    console.print(table)


def display_vm_table(analysis: dict) -> None:
    """Display per-VM job counts and busy time."""

    vm_metrics = analysis.get('vm_metrics', {})
    if not vm_metrics:
        return

    table = Table(title="Per-VM Load")
    table.add_column("VM", style="cyan")
    table.add_column("Jobs", style="green")
    table.add_column("Busy Time", style="yellow")
    table.add_column("Last Finish", style="yellow")

    for vm_id, row in sorted(vm_metrics.items()):
        table.add_row(f"#{vm_id}", f"{row['jobs']}", f"{row['busy_time']:.2f}", f"{row['last_finish']:.2f}")

    console.print(table)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
