"""Entrypoint for mirroring a Notion workspace to local JSON documents.

This module defines the NotionMirror class, which:

- Declares the configuration schema (settings users can provide).
- Loads configuration from JSON files and `NOTION_*` environment variables.
- Wires the Notion client, the traversal layers and the mirror writer
  together, and runs them.
- Exposes the `notion-mirror` command line interface.

Start here to see what configuration is supported. See `traversal.py` for
how databases, pages and blocks are walked.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import typing as t
from pathlib import Path

import click
from jsonschema import Draft7Validator
from singer_sdk import typing as th  # JSON schema typing helpers

from .client import NotionClient
from .exceptions import FATAL_ERRORS, ConfigValidationError
from .report import TraversalReport
from .traversal import BlockTreeMaterializer, ListingWalker, TraversalDriver
from .writer import MirrorWriter

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "notion_config.json"
ENV_PREFIX = "NOTION_"
# Takes precedence over every other source of the token.
TOKEN_ENV_VAR = "NOTION_API_TOKEN"

EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


class NotionMirror:
    """Mirror of every database and page shared with a Notion integration.

    Configuration is defined in `config_jsonschema` and includes:
    - auth_token (required): Notion integration token used for Bearer auth.
    - output_dir: Root directory of the mirror.
    - notion_version, page_size, user_agent: Header/behavior tweaks.
    - database_queries, default_query: Filter and sorts forwarded to the
      database query endpoint.
    - max_workers: Pages expanded concurrently within a database.
    """

    name = "notion-mirror"

    config_jsonschema = th.PropertiesList(
        th.Property(
            "auth_token",
            th.StringType(nullable=False),
            required=True,
            secret=True,  # Integration token from Notion
            title="Auth Token",
            description="The Notion integration token (starts with 'secret_' or 'ntn_').",
        ),
        th.Property(
            "output_dir",
            th.StringType(nullable=False),
            default="output",
            description="Directory the mirror is written to.",
        ),
        th.Property(
            "notion_version",
            th.StringType(nullable=True),
            title="Notion API Version",
            description="Override the Notion-Version header (default '2022-06-28').",
        ),
        th.Property(
            "page_size",
            th.IntegerType(nullable=True),
            description="Items per page for list/search endpoints (max 100).",
        ),
        th.Property(
            "user_agent",
            th.StringType(nullable=True),
            description="A custom User-Agent header to send with each request.",
        ),
        th.Property(
            "database_queries",
            th.ObjectType(additional_properties=True),
            description=(
                "Map of database id to a query object ({'filter': ..., 'sorts': [...]}) "
                "sent as-is to the database query endpoint."
            ),
        ),
        th.Property(
            "default_query",
            th.ObjectType(additional_properties=True),
            description="Query object used for databases without an entry in database_queries.",
        ),
        th.Property(
            "max_workers",
            th.IntegerType(nullable=True),
            default=1,
            description="Number of pages expanded and written concurrently per database.",
        ),
    ).to_dict()

    def __init__(
        self,
        config: t.Mapping[str, t.Any],
        validate_config: bool = True,
        client: NotionClient | None = None,
    ) -> None:
        self.config = self._apply_defaults(config)
        if validate_config:
            self.validate_config(self.config)
        self._client = client
        self.driver: TraversalDriver | None = None

    @classmethod
    def _apply_defaults(cls, config: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        merged = dict(config)
        for name, prop in cls.config_jsonschema["properties"].items():
            if "default" in prop and merged.get(name) is None:
                merged[name] = prop["default"]
        return merged

    @classmethod
    def validate_config(cls, config: t.Mapping[str, t.Any]) -> None:
        """Validate `config` against the schema.

        Raises:
            ConfigValidationError: One or more settings are missing or invalid.
        """
        validator = Draft7Validator(cls.config_jsonschema)
        errors = [
            f"{'.'.join(str(p) for p in error.path) or 'config'}: {error.message}"
            for error in sorted(validator.iter_errors(dict(config)), key=str)
        ]
        page_size = config.get("page_size")
        if isinstance(page_size, int) and not 1 <= page_size <= 100:
            errors.append("page_size: must be between 1 and 100")
        max_workers = config.get("max_workers")
        if isinstance(max_workers, int) and max_workers < 1:
            errors.append("max_workers: must be at least 1")
        if errors:
            raise ConfigValidationError(errors)

    @classmethod
    def load_config(
        cls,
        config_files: t.Sequence[str | os.PathLike] = (),
        environ: t.Mapping[str, str] | None = None,
    ) -> dict[str, t.Any]:
        """Merge configuration from files and the environment.

        Later files override earlier ones, `NOTION_<SETTING>` environment
        variables override files, and `NOTION_API_TOKEN` overrides everything
        for the token. Without explicit files, `notion_config.json` in the
        working directory is read when present.
        """
        if environ is None:
            environ = os.environ

        if not config_files and Path(DEFAULT_CONFIG_FILE).is_file():
            config_files = [DEFAULT_CONFIG_FILE]

        config: dict[str, t.Any] = {}
        for config_file in config_files:
            with open(config_file, encoding="utf-8") as f:
                values = json.load(f)
            if not isinstance(values, dict):
                raise ValueError(f"{config_file}: top-level JSON must be an object")
            config.update(values)

        properties = cls.config_jsonschema["properties"]
        for name, prop in properties.items():
            value = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                config[name] = cls._parse_env_value(value, prop)

        if environ.get(TOKEN_ENV_VAR):
            config["auth_token"] = environ[TOKEN_ENV_VAR]
        return config

    @staticmethod
    def _parse_env_value(value: str, prop: dict) -> t.Any:
        types = prop.get("type", [])
        if isinstance(types, str):
            types = [types]
        if "integer" in types:
            try:
                return int(value)
            except ValueError:
                return value
        if "object" in types:
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    @property
    def client(self) -> NotionClient:
        if self._client is None:
            self._client = NotionClient(self.config)
        return self._client

    def build_driver(self) -> TraversalDriver:
        """Wire the traversal layers to the client and a writer."""
        writer = MirrorWriter(self.config["output_dir"])
        materializer = BlockTreeMaterializer(self.client.list_block_children)
        walker = ListingWalker(
            self.client.query_database,
            materializer,
            writer,
            max_workers=self.config.get("max_workers") or 1,
        )
        return TraversalDriver(
            self.client.search_databases,
            walker,
            writer,
            queries=self.config.get("database_queries"),
            default_query=self.config.get("default_query"),
        )

    def run(self) -> TraversalReport:
        """Mirror the workspace.

        The driver is kept on `self.driver`, so the partial report of an
        aborted run stays available through `self.report`.
        """
        self.driver = self.build_driver()
        logger.info("Mirroring Notion workspace into %s", self.config["output_dir"])
        return self.driver.run()

    @property
    def report(self) -> TraversalReport:
        if self.driver is None:
            return TraversalReport()
        return self.driver.report

    @classmethod
    def cli(cls) -> None:
        main()


def _write_report(report: TraversalReport, path: str) -> None:
    Path(path).write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")


@click.command(name=NotionMirror.name)
@click.option(
    "--config",
    "config_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON configuration file. May be given more than once.",
)
@click.option("--output-dir", type=click.Path(file_okay=False), help="Override output_dir.")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False),
    help="Also write the run report to this JSON file.",
)
def main(
    config_files: tuple[str, ...],
    output_dir: str | None,
    log_level: str,
    report_path: str | None,
) -> None:
    """Mirror every Notion database and page shared with the integration."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = NotionMirror.load_config(config_files)
    except (OSError, ValueError) as exc:
        click.echo(f"Error: could not read configuration: {exc}", err=True)
        sys.exit(EXIT_FATAL)
    if output_dir:
        config["output_dir"] = output_dir
    try:
        mirror = NotionMirror(config)
    except ConfigValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_FATAL)

    exit_code = 0
    try:
        report = mirror.run()
    except FATAL_ERRORS:
        report = mirror.report
    except KeyboardInterrupt:
        logger.error("Interrupted; documents written so far are complete")
        report = mirror.report
        exit_code = EXIT_INTERRUPTED

    for line in report.summary_lines():
        click.echo(line)
    if report_path:
        _write_report(report, report_path)
    sys.exit(exit_code or report.exit_code)


if __name__ == "__main__":
    NotionMirror.cli()
