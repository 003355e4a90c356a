"""Technology Journal Ingestion DAG.

Every 30 minutes:
1. Scans the journal directory for new or grown journal files
2. Loads their records into the hourly ClickHouse tables, resuming each
   file after its last loaded record
3. Logs a summary of the run
"""

import os
from datetime import datetime, timedelta

from airflow import DAG
from airflow.operators.python import PythonOperator

from techjournal.operators.load_operator import TechJournalLoadOperator

default_args = {
    "owner": "data-platform",
    "retries": 2,
    "retry_delay": timedelta(minutes=5),
    "retry_exponential_backoff": True,
    "max_retry_delay": timedelta(minutes=30),
}

JOURNAL_DIR = os.environ.get("TJ_JOURNAL_DIR", "/opt/airflow/data/techjournal")


def _on_failure_callback(context):
    """Log failure details for alerting."""
    dag_id = context["dag"].dag_id
    task_id = context["task_instance"].task_id
    execution_date = context.get("logical_date")
    print(f"ALERT: Task {task_id} in DAG {dag_id} failed at {execution_date}")


def _log_summary(**context):
    """Print the load statistics pushed by the load task."""
    ti = context["ti"]
    files = ti.xcom_pull(task_ids="load_techjournal", key="files") or 0
    records = ti.xcom_pull(task_ids="load_techjournal", key="records") or 0

    summary = (
        "========================================\n"
        " Technology Journal Load Summary\n"
        "========================================\n"
        f" Logical Date:     {context['ds']}\n"
        f" Files Loaded:     {files}\n"
        f" Records Loaded:   {records}\n"
        "========================================\n"
    )
    print(summary)


with DAG(
    dag_id="techjournal_ingestion",
    default_args=default_args,
    description="Load technology journal files into ClickHouse",
    schedule=timedelta(minutes=30),
    start_date=datetime(2024, 1, 1),
    catchup=False,
    max_active_runs=1,
    tags=["ingestion", "techjournal", "clickhouse"],
    on_failure_callback=_on_failure_callback,
) as dag:

    load_techjournal = TechJournalLoadOperator(
        task_id="load_techjournal",
        paths=[JOURNAL_DIR],
    )

    log_summary = PythonOperator(
        task_id="log_summary",
        python_callable=_log_summary,
    )

    load_techjournal >> log_summary
