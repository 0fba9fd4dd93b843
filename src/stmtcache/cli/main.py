import random
import sqlite3
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger

from stmtcache.core.cache import QuickLRU
from stmtcache.core.errors import ConfigurationError, DatabaseError
from stmtcache.core.logging import configure_logging
from stmtcache.core.settings import settings
from stmtcache.db.driver import SqliteDriver
from stmtcache.db.statement_cache import CacheStats, EnhancedStatementCache

app = typer.Typer(help="stmtcache - SQLite statement cache tools")

_EDGE_CHARS = " \t\r\n;"


def split_statements(script: str) -> List[str]:
    """
    Split a SQL script into single statements.

    Semicolons inside string literals or comments don't end a statement;
    sqlite3.complete_statement decides where each one stops.
    """
    statements: List[str] = []
    buffer = ""
    for piece in script.split(";"):
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip(_EDGE_CHARS)
            if statement:
                statements.append(statement)
            buffer = ""
    tail = buffer.strip(_EDGE_CHARS)
    if tail:
        statements.append(tail)
    return statements


def _print_stats(stats: CacheStats, max_size: int) -> None:
    typer.secho("📊 Statement cache", fg=typer.colors.CYAN, bold=True)
    typer.echo(f"  Queries:   {stats.total_queries}")
    typer.echo(f"  Hits:      {stats.hits}")
    typer.echo(f"  Misses:    {stats.misses}")
    typer.echo(f"  Evictions: {stats.evictions}")
    typer.echo(f"  Cached:    {stats.size}/{max_size}")
    typer.echo(f"  Hit rate:  {stats.hit_rate:.1%}")


@app.command()
def run(
    script: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="SQL script to execute"),
    database: Optional[str] = typer.Option(None, "--database", "-d", help="SQLite database file (defaults to DB_PATH)"),
    repeat: int = typer.Option(1, min=1, help="How many times to run the whole script"),
    max_size: Optional[int] = typer.Option(None, help="Statement cache size (defaults to STMT_CACHE_MAX_SIZE)"),
    max_age: Optional[float] = typer.Option(None, help="Statement TTL in seconds"),
) -> None:
    """
    Run a SQL script through the cached driver and report cache statistics.
    """
    configure_logging()
    statements = split_statements(script.read_text(encoding="utf-8"))
    logger.info(f"Loaded {len(statements)} statements from {script}")

    try:
        cache = EnhancedStatementCache(
            max_size=max_size if max_size is not None else settings.cache.max_size,
            max_age=max_age if max_age is not None else settings.cache.max_age_seconds,
        )
    except ConfigurationError as e:
        typer.secho(f"❌ Invalid cache configuration: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    driver = SqliteDriver(database or settings.db.path, cache_option=cache, timeout=settings.db.timeout_seconds)
    try:
        for _ in range(repeat):
            for statement in statements:
                driver.execute(statement)
        stats = cache.get_stats()
    except DatabaseError as e:
        logger.error(f"Statement failed: {e} ({e.sql})")
        typer.secho(f"❌ {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    finally:
        driver.destroy()

    typer.secho(f"✅ Executed {len(statements) * repeat} statements", fg=typer.colors.GREEN)
    _print_stats(stats, cache.cache.max_size)


@app.command()
def bench(
    keys: int = typer.Option(500, min=1, help="Distinct query texts in the workload"),
    lookups: int = typer.Option(10_000, min=1, help="Number of lookups to simulate"),
    max_size: int = typer.Option(100, min=1, help="Cache size"),
    skew: float = typer.Option(1.2, min=0.0, help="Zipf-like skew; 0 means uniform access"),
    seed: int = typer.Option(42, help="Random seed"),
) -> None:
    """
    Simulate a skewed query workload against the cache and report the hit rate.
    """
    rng = random.Random(seed)
    weights = [1.0 / (rank ** skew) for rank in range(1, keys + 1)]
    workload = rng.choices([f"SELECT * FROM t WHERE id = {i}" for i in range(keys)], weights=weights, k=lookups)

    stats = CacheStats()

    def _count_eviction(sql: str, statement: object) -> None:
        stats.evictions += 1

    cache: QuickLRU[str, str] = QuickLRU(max_size, on_eviction=_count_eviction)
    for sql in workload:
        stats.total_queries += 1
        if cache.get(sql) is None:
            stats.misses += 1
            cache.set(sql, sql)
        else:
            stats.hits += 1
    stats.size = cache.size

    _print_stats(stats, max_size)


if __name__ == "__main__":
    app()
