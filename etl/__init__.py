"""
Pipeline orchestration engine for sharded relational ETL.

Modules:
    base: Record model and the Extractor / Transformer / Loader contracts
    streams: Bounded hand-off streams between stages
    context: Cancellable context shared by the tasks of one attempt
    orchestrator: Attempt supervision and retry with backoff
    retry: Backoff schedule
    config_parser: YAML configuration loading with ${VAR} substitution
    factory: Components selected by configuration type tags
    scaffold: Generator for new pipeline skeletons
    cli: Command line interface (run, validate, generate)

Subpackages:
    extractors: Sharded SQL extractor (fan-out/fan-in)
    transformers: Column-level transformations
    loaders: PostgreSQL upsert loader and a no-op loader

Architecture:
    The extractor starts one task per (shard x table) and merges their rows
    into one bounded stream. The transformer consumes that stream lazily and
    the loader persists its output. The orchestrator waits for the first
    error from any stage, the loader's completion, a stop request or the
    timeout, then cancels what is left and closes every component.

Usage:
    from etl.config_parser import load_config
    from etl.factory import build_orchestrator

Example:
    config = load_config("pipelines/login_analytics/config.yaml")
    result = await build_orchestrator(config).execute()

    print(f"Loaded {result.records_loaded} records")
"""

__version__ = "0.1.0"

__all__ = [
    "Record",
    "Extractor",
    "Transformer",
    "Loader",
    "Orchestrator",
    "ShardedSQLExtractor",
    "ColumnTransformer",
    "PostgresUpsertLoader",
]
