from __future__ import annotations

import argparse
from datetime import datetime, timezone

from dealerhub.core.config import get_settings
from dealerhub.persistence.store import JsonStore
from dealerhub.services.retention import prune_audit_log


def main() -> None:
    parser = argparse.ArgumentParser(description="Move aged audit log lines into the archive")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args()

    settings = get_settings()
    store = JsonStore(settings.data_path)
    retention = args.retention_days or settings.audit_retention_days
    count, archive_path = prune_audit_log(
        store.audit_log_path, store.archive_dir, retention, now=datetime.now(timezone.utc)
    )
    print(f"pruned_audit_events={count}")
    if archive_path is not None:
        print(f"archive={archive_path}")


if __name__ == "__main__":
    main()
