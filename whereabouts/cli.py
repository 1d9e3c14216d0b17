"""Admin CLI for a whereabouts peer."""

from __future__ import annotations

import asyncio
import json

import click


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


@click.group()
def cli():
    """Whereabouts peer administration CLI."""
    pass


@cli.command("init-db")
def init_db():
    """Create the location tables."""
    from whereabouts.database import create_schema

    run_async(create_schema())
    click.echo("Schema created.")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int):
    """Run the peer service."""
    import uvicorn

    uvicorn.run("whereabouts.main:app", host=host, port=port)


@cli.command()
@click.argument("longitude", type=float)
@click.argument("latitude", type=float)
@click.option("--catalog", default=None, help="Path to a cities JSON file.")
def nearest(longitude: float, latitude: float, catalog: str | None):
    """Show the catalog city a coordinate would snap to."""
    from whereabouts.catalog import load_reference_points
    from whereabouts.granularity import GranularityIndex

    index = GranularityIndex.build(load_reference_points(catalog))
    city = index.nearest(longitude, latitude)
    if city is None:
        raise click.ClickException("Catalog is empty.")
    click.echo(json.dumps({
        "name": city.name,
        "country": city.country,
        "latitude": city.latitude,
        "longitude": city.longitude,
    }))


if __name__ == "__main__":
    cli()
