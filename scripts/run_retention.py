from __future__ import annotations

import argparse
import json

from dealerhub.core.config import get_settings
from dealerhub.core.logging import configure_logging
from dealerhub.services.container import ServiceContainer


def main() -> None:
    # One-off sweep for cron-driven deployments that do not run the scheduler.
    parser = argparse.ArgumentParser(description="Archive records past their retention window")
    parser.add_argument("--data-dir", default=None, help="Override DATA_DIR")
    args = parser.parse_args()

    settings = get_settings()
    if args.data_dir:
        settings = settings.model_copy(update={"data_dir": args.data_dir})
    configure_logging(settings.log_level)
    report = ServiceContainer(settings).run_retention()
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
