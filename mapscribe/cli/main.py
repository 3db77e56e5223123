"""CLI entrypoint for AI map generation."""
import asyncio
import json
import logging
import os
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ..generator.repair_orchestrator import generate as generate_map, create_client
from ..shared.errors import AuthError
from ..shared.schema import SchemaRegistry
from ..shared.utils import SecretsFileKeyStore, load_settings, render_grid, render_legend


console = Console()

# provider -> (environment variable, key store entry)
CREDENTIAL_SOURCES = {
    "anthropic": ("ANTHROPIC_API_KEY", "anthropic_api_key"),
    "ollama": ("OLLAMA_API_KEY", "ollama_api_key"),
}


def resolve_credential(api_key, key_store: SecretsFileKeyStore, provider: str = "anthropic"):
    """
    --api-key first, then the provider's environment variable, then the key store.

    Only the chosen provider's sources are consulted, so one provider's key is never
    sent to another provider's endpoint.
    """
    if api_key:
        return api_key
    env_var, key_name = CREDENTIAL_SOURCES[provider]
    env_key = os.getenv(env_var)
    if env_key:
        return env_key
    return key_store.get(key_name)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging, including raw model responses")
def main(verbose):
    """AI-assisted tile map generation"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@main.command()
@click.argument("description", required=False)
@click.option("--width", "-w", type=int, help="Grid width in tiles")
@click.option("--height", "-h", type=int, help="Grid height in tiles")
@click.option("--archetype", "-a", type=click.Choice(SchemaRegistry().archetype_names()), help="Archetype hint")
@click.option("--example", "example_name", help="Use a built-in example prompt by name (see 'examples')")
@click.option("--provider", type=click.Choice(["anthropic", "ollama"]), help="Override the configured provider")
@click.option("--api-key", help="API key for the completion service")
@click.option("--save-key", is_flag=True, help="Store the API key in config/secrets.json for later runs")
@click.option("--max-attempts", type=int, help="Total attempts including the first")
@click.option("--output", "-o", type=click.Path(), help="Write the result as JSON to this file")
@click.option("--visualize", is_flag=True, help="Print an ASCII preview of the map")
def generate(description, width, height, archetype, example_name, provider, api_key, save_key,
             max_attempts, output, visualize):
    """Generate a tile map from a text description."""
    registry = SchemaRegistry()

    if example_name:
        matches = [e for e in registry.examples() if e.name.lower() == example_name.lower()]
        if not matches:
            raise click.BadParameter(f"Unknown example '{example_name}'", param_hint="--example")
        description = description or matches[0].prompt
        archetype = archetype or matches[0].archetype

    if not description:
        raise click.UsageError("Provide a DESCRIPTION or --example")

    settings = load_settings()
    if provider:
        settings = settings.model_copy(update={"provider": provider})

    try:
        client = create_client(settings)
    except ValueError as e:
        raise click.ClickException(str(e))

    key_store = SecretsFileKeyStore()
    credential = resolve_credential(api_key, key_store, settings.provider)
    if save_key and api_key:
        key_store.set(CREDENTIAL_SOURCES[settings.provider][1], api_key)
        console.print(f"[green]API key saved to {key_store.path}[/green]")

    console.print(f"[green]Generating map using {settings.provider} (model: {getattr(client, 'model', '?')})...[/green]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task("Starting generation...", total=None)
        try:
            result = asyncio.run(generate_map(
                description,
                credential=credential,
                width=width,
                height=height,
                archetype_hint=archetype,
                on_progress=lambda status: progress.update(task, description=status),
                client=client,
                max_attempts=max_attempts,
                settings=settings,
            ))
        except AuthError as e:
            raise click.ClickException(f"{e}. Pass --api-key or set {CREDENTIAL_SOURCES[settings.provider][0]}.")
        except ValueError as e:
            raise click.ClickException(str(e))
        progress.update(task, completed=True)

    if result.fallback:
        console.print(f"[yellow]{result.metadata.interpretation}; showing fallback grid[/yellow]")
    else:
        console.print(f"\n[green]Map generated in {result.attempts} attempt(s)[/green]")
        console.print(f"Interpretation: {result.metadata.interpretation}")
        if result.metadata.archetype:
            console.print(f"Archetype: {result.metadata.archetype}")
        if result.metadata.features:
            console.print(f"Features: {', '.join(result.metadata.features)}")

    if visualize:
        console.print(f"\n[bold]{result.width}x{result.height}[/bold]")
        console.print(render_grid(result.grid), markup=False)
        console.print(render_legend(), markup=False)

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump({
                "grid": result.to_lists(),
                "metadata": result.metadata.model_dump(),
                "attempts": result.attempts,
                "fallback": result.fallback,
            }, f, indent=2)
        console.print(f"Result saved to: {output_path}")


@main.command()
def archetypes():
    """List the location archetypes the model knows."""
    table = Table(title="Archetypes")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Common features", style="magenta")
    table.add_column("START/END", style="green")
    table.add_column("Enclosed", style="green")

    for archetype in SchemaRegistry().vocabulary().archetypes:
        table.add_row(
            archetype.name,
            archetype.description,
            ", ".join(archetype.common_features),
            "✓" if archetype.requires_path else "",
            "✓" if archetype.enclosed else "",
        )
    console.print(table)


@main.command()
def examples():
    """List the built-in example prompts."""
    table = Table(title="Example prompts")
    table.add_column("Name", style="cyan")
    table.add_column("Archetype", style="magenta")
    table.add_column("Prompt")

    for example in SchemaRegistry().examples():
        table.add_row(example.name, example.archetype, example.prompt)
    console.print(table)


if __name__ == "__main__":
    main()
