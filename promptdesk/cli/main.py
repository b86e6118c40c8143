#!/usr/bin/env python3
"""
Command line interface for promptdesk.

Usage:
    promptdesk serve                   - Start the server
    promptdesk status                  - Check server status
    promptdesk projects                - List projects
    promptdesk files PROJECT [FILTER]  - Ranked file suggestions
    promptdesk proxies                 - List relay proxy configs
"""

import asyncio
from typing import List, Optional, Tuple

import click
import httpx
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..server.ranking import render_highlight

console = Console()

DEFAULT_SERVER_URL = "http://localhost:5010"


def highlight_markup(path: str, ranges: List[Tuple[int, int]]) -> str:
    """Rich markup for a path with its matched spans emphasized."""
    return render_highlight(path, ranges, "[bold yellow]", "[/bold yellow]", escape=escape)


def _connection_hint():
    console.print("[red]Cannot connect to promptdesk. Is it running?[/red]")
    console.print("Start with: [cyan]promptdesk serve[/cyan]")


@click.group()
@click.option("--url", default=DEFAULT_SERVER_URL, envvar="PROMPTDESK_URL",
              show_default=True, help="Server base URL")
@click.pass_context
def cli(ctx, url: str):
    """promptdesk - prompt workbench with file mentions and an API relay."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url.rstrip("/")


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--port", "-p", type=int, help="Override the listening port")
def serve(config: Optional[str], port: Optional[int]):
    """Start the promptdesk server."""
    console.print("[cyan]Starting promptdesk...[/cyan]")

    from ..server.main import main as server_main

    try:
        asyncio.run(server_main(config, port))
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Server error:[/red] {e}")
        logger.exception("Server crashed")


@cli.command()
@click.pass_context
def status(ctx):
    """Check server status."""
    asyncio.run(check_status(ctx.obj["url"]))


async def check_status(url: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/api/status", timeout=2.0)

        if response.status_code != 200:
            console.print(f"[red]Server error:[/red] {response.text}")
            return

        data = response.json()
        stats = data.get("stats", {})
        cache = stats.get("file_cache", {})
        console.print(f"[green]✓ promptdesk {data.get('version')} is running[/green]")
        console.print(f"\nUptime: {data.get('uptime', 'unknown')}")
        console.print(f"Projects: {stats.get('projects', 0)}")
        console.print(f"Proxies: {stats.get('proxies', 0)}")
        console.print(f"Cached files: {cache.get('files', 0)} in {cache.get('projects', 0)} projects")
        console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")

    except httpx.ConnectError:
        _connection_hint()
    except Exception as e:
        console.print(f"[red]Error checking status:[/red] {e}")


@cli.command()
@click.pass_context
def projects(ctx):
    """List projects."""
    asyncio.run(list_projects(ctx.obj["url"]))


async def list_projects(url: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/api/projects", timeout=5.0)

        if response.status_code != 200:
            console.print(f"[red]Failed to list projects:[/red] {response.text}")
            return

        items = response.json()
        if not items:
            console.print("[yellow]No projects yet[/yellow]")
            return

        table = Table(title="Projects")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Path")
        for project in items:
            table.add_row(project["id"], project["name"], project["path"])
        console.print(table)

    except httpx.ConnectError:
        _connection_hint()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.command()
@click.argument("project_id")
@click.argument("filter", required=False, default="")
@click.option("--limit", "-l", default=20, help="Max results")
@click.pass_context
def files(ctx, project_id: str, filter: str, limit: int):
    """Show ranked file suggestions for a project."""
    asyncio.run(show_files(ctx.obj["url"], project_id, filter, limit))


async def show_files(url: str, project_id: str, query: str, limit: int):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{url}/api/projects/{project_id}/files",
                params={"filter": query, "highlight": "1"},
                timeout=30.0
            )

        if response.status_code != 200:
            console.print(f"[red]Lookup failed:[/red] {response.text}")
            return

        matches = response.json()[:limit]
        if not matches:
            console.print("[yellow]No matching files[/yellow]")
            return

        for i, match in enumerate(matches, 1):
            ranges = [tuple(span) for span in match.get("ranges", [])]
            console.print(f"{i:>3}. {highlight_markup(match['path'], ranges)}")

    except httpx.ConnectError:
        _connection_hint()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.command()
@click.pass_context
def proxies(ctx):
    """List relay proxy configs."""
    asyncio.run(list_proxies(ctx.obj["url"]))


async def list_proxies(url: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/api/claude-proxies", timeout=5.0)

        if response.status_code != 200:
            console.print(f"[red]Failed to list proxies:[/red] {response.text}")
            return

        data = response.json()
        items = data.get("proxies", [])
        if not items:
            console.print("[yellow]No proxies configured[/yellow]")
            return

        active_id = data.get("activeProxyId")
        table = Table(title="Proxies")
        table.add_column("", width=1)
        table.add_column("Name", style="cyan")
        table.add_column("Base URL")
        table.add_column("ID", style="dim")
        for proxy in items:
            marker = "[green]●[/green]" if proxy["id"] == active_id else ""
            table.add_row(marker, proxy["name"], proxy["baseUrl"], proxy["id"])
        console.print(table)

    except httpx.ConnectError:
        _connection_hint()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
