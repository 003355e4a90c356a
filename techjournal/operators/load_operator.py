"""Airflow operator that loads technology journals into ClickHouse."""

import logging

from airflow.models import BaseOperator

log = logging.getLogger(__name__)


class TechJournalLoadOperator(BaseOperator):
    """Discover journal files under ``paths`` and load them into ClickHouse.

    Runs one discovery and load cycle. Every file found is loaded; files
    already loaded are resumed after their last stored record.

    Args:
        paths: Directories or files to scan (templated).
        config_path: Optional YAML configuration file. Environment
            variables override its values as usual.
    """

    template_fields = ("paths",)

    def __init__(self, paths, config_path: str = None, **kwargs):
        super().__init__(**kwargs)
        self.paths = paths
        self.config_path = config_path

    def execute(self, context):
        from techjournal.cli import build_discovery, run_once
        from techjournal.config.loader_config import get_config

        paths = [self.paths] if isinstance(self.paths, str) else list(self.paths)
        config = get_config(self.config_path)
        summary = run_once(config, paths, build_discovery(config))

        log.info(
            "Loaded %d records from %d journal files under %s",
            summary.records,
            summary.files,
            ", ".join(paths),
        )

        context["ti"].xcom_push(key="records", value=summary.records)
        context["ti"].xcom_push(key="files", value=summary.files)
        return summary.records
