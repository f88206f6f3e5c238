#!/usr/bin/env python3
"""
Site Exporter CLI

Operator entry point for the site export engine.

Usage:
    site-exporter export
    site-exporter run-jobs
    site-exporter download site_export_sse_<token>_<site>_<timestamp>.zip --output backup.zip
    site-exporter delete site_export_sse_<token>_<site>_<timestamp>.zip
    site-exporter logs
"""

import argparse
import datetime
import logging
import os
import sys
from typing import Optional

from .app import Exporter, build_exporter
from .colored_logger import get_colored_logger, resolve_level, setup_colored_logging
from .export.access import DELETE_ACTION, DOWNLOAD_ACTION, EXPORT_ACTION
from .export.lifecycle import ArtifactRequest
from .settings import Settings, SettingsError

logger = get_colored_logger(__name__)


class ExporterCLI:
    """Command-line interface for site exports."""

    def __init__(self, exporter_factory=build_exporter):
        self.parser = self._create_parser()
        self._exporter_factory = exporter_factory

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="site-exporter",
            description="Export a site's database and files into a downloadable archive",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Create an export archive
  site-exporter --config site-exporter.yml export

  # Fire due auto-deletion jobs (run from cron every minute)
  site-exporter run-jobs

  # Copy an archive out through the authenticated download path
  site-exporter download site_export_sse_1a2b3c4_blog_2024-01-01_00-00-00.zip -o backup.zip
            """,
        )
        parser.add_argument("--config", "-c", help="Path to the settings file")
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable debug logging"
        )

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        subparsers.add_parser("export", help="Dump the database and archive the site")
        subparsers.add_parser("run-jobs", help="Run scheduled jobs that are due")

        download_parser = subparsers.add_parser(
            "download", help="Download an export archive"
        )
        download_parser.add_argument("filename", help="Archive filename")
        download_parser.add_argument(
            "--output", "-o", required=True, help="Where to write the archive"
        )

        delete_parser = subparsers.add_parser("delete", help="Delete an export archive")
        delete_parser.add_argument("filename", help="Archive filename")

        subparsers.add_parser("logs", help="Show recent error and security events")

        return parser

    def run(self, args: Optional[list] = None) -> int:
        """Run the CLI with the given arguments."""
        parsed_args = self.parser.parse_args(args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        exporter = None
        try:
            settings = Settings(parsed_args.config)
            level = logging.DEBUG if parsed_args.verbose else resolve_level(settings.log_level)
            logging.getLogger().setLevel(level)

            exporter = self._exporter_factory(settings)
            handler = {
                "export": self._handle_export,
                "run-jobs": self._handle_run_jobs,
                "download": self._handle_download,
                "delete": self._handle_delete,
                "logs": self._handle_logs,
            }[parsed_args.command]
            return handler(exporter, parsed_args)

        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130
        except SettingsError as e:
            logger.error("Configuration error: %s", e)
            return 1
        except Exception as e:
            logger.error("Error: %s", e)
            logger.debug("Full error details:", exc_info=True)
            return 1
        finally:
            if exporter is not None:
                exporter.close()

    def _handle_export(self, exporter: Exporter, args) -> int:
        operator = exporter.operator()
        token = exporter.tokens.issue(EXPORT_ACTION, operator.user_id)
        outcome = exporter.orchestrator.handle_request(operator, token)

        if not outcome.ok:
            logger.error("%s", outcome.notice.message)
            return 1

        logger.success("%s", outcome.notice.message)
        print(outcome.artifact.filepath)
        if exporter.settings.admin_url:
            logger.info("Download: %s", outcome.download_url)
            logger.info("Delete: %s", outcome.delete_url)
        return 0

    def _handle_run_jobs(self, exporter: Exporter, args) -> int:
        runs = exporter.jobs.run_due()
        failed = [run for run in runs if not run.succeeded]

        logger.info("Ran %d scheduled job(s), %d failed", len(runs), len(failed))
        for run in failed:
            logger.warning("  %s: %s", run.job.hook, run.error)
        return 1 if failed else 0

    def _handle_download(self, exporter: Exporter, args) -> int:
        operator = exporter.operator()
        request = ArtifactRequest(
            filename=args.filename,
            token=exporter.tokens.issue(DOWNLOAD_ACTION, operator.user_id),
            requester=operator,
        )
        response = exporter.lifecycle.download(request)
        if response.status != 200:
            logger.error("Download refused (%d): %s", response.status, response.message)
            return 1

        output_path = os.path.abspath(args.output)
        written = 0
        try:
            with open(output_path, "wb") as f:
                for chunk in response.body:
                    f.write(chunk)
                    written += len(chunk)
        finally:
            response.close()

        logger.success("Saved %s (%.2f MB)", output_path, written / (1024 * 1024))
        return 0

    def _handle_delete(self, exporter: Exporter, args) -> int:
        operator = exporter.operator()
        request = ArtifactRequest(
            filename=args.filename,
            token=exporter.tokens.issue(DELETE_ACTION, operator.user_id),
            requester=operator,
        )
        response = exporter.lifecycle.delete(request)
        notice = response.notice

        if notice is None or notice.level != "success":
            logger.error("Delete failed: %s", notice.message if notice else response.status)
            return 1

        logger.success("%s", notice.message)
        return 0

    def _handle_logs(self, exporter: Exporter, args) -> int:
        entries = exporter.activity_log.entries()
        if not entries:
            logger.info("No logged events.")
            return 0

        for entry in entries:
            stamp = datetime.datetime.fromtimestamp(
                entry.time, tz=datetime.timezone.utc
            ).strftime("%Y-%m-%d %H:%M:%S")
            print(f"[{stamp}] {entry.level.upper()} user={entry.user_id} ip={entry.ip} {entry.message}")
        return 0


def main():
    """Main entry point for the CLI."""
    setup_colored_logging(level=logging.INFO)

    cli = ExporterCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
