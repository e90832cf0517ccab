"""Rich-powered console output for Taxonomist."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from taxonomist import __version__
from taxonomist.budget.planner import BudgetPlan, CategoryBudget
from taxonomist.pipeline.models import Category, Store


class Console:
    """Terminal output for Taxonomist using Rich."""

    def __init__(self, console: RichConsole | None = None) -> None:
        self.console = console or RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]Taxonomist[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Budget-aware LLM categorization of text records[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def pass_status(self, name: str, message: str) -> None:
        """One status line per pass event."""
        self.console.print(f"  [bold magenta]{name:<11}[/bold magenta] [dim]{message}[/dim]")

    def show_store(self, store: Store, categories: list[Category] | None = None) -> None:
        """Display the categories of a store with their sizes."""
        table = Table(title="Categories", border_style="cyan")
        table.add_column("Slug", style="bold")
        table.add_column("Title")
        table.add_column("Records", justify="right", style="cyan")

        for category in categories if categories is not None else store.categories:
            table.add_row(category.slug, category.title, str(len(category.entries)))

        if store.orphans:
            table.add_section()
            table.add_row("[red](dropped)[/red]", "Deleted without reassignment", str(len(store.orphans)))

        self.console.print(table)

    def show_budget(self, record_count: int, budget: CategoryBudget, plan: BudgetPlan | None = None) -> None:
        """Display the category-count window (and request ceilings, when given)."""
        table = Table(title=f"Budget for {record_count:,} records", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="cyan")

        table.add_row("Min categories", str(budget.min))
        table.add_row("Max categories", str(budget.max))
        table.add_row("Max new categories", str(budget.max_new))
        table.add_row("Split threshold", str(budget.split_threshold))

        if plan is not None:
            table.add_section()
            table.add_row("Max input tokens", f"{plan.max_input_tokens:,}")
            table.add_row("Max output tokens", f"{plan.max_output_tokens:,}")
            table.add_row("Reserved output tokens", f"{plan.reserve_output_tokens:,}")

        self.console.print(table)
