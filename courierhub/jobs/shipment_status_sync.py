# courierhub/jobs/shipment_status_sync.py
from __future__ import annotations

from courierhub.jobs.shipment_status_sync_runner import main, run_cli, run_once

__all__ = ["run_once", "main", "run_cli"]


if __name__ == "__main__":
    run_cli()
