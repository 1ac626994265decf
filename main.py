#!/usr/bin/env python
import sys
import os
import logging
import faulthandler
import argparse
from pathlib import Path

import yaml

from core.errors import SNRAnalysisError
from core.pipeline import run_pipeline
from utils.config import APP_VERSION, load_config
from utils.logger import setup_logging, level_from_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Measure how SNR improves with integration depth"
    )
    parser.add_argument("--project", help="Project folder (config.yaml, subframes, ROIs)", type=str, default=".")
    parser.add_argument("--config", help="Config YAML overriding <project>/config.yaml", type=str)
    parser.add_argument("--interactive", action="store_true", help="Confirm or request ROIs with dialogs")
    parser.add_argument("--log-file", help="Also write the log to this file", type=str)
    parser.add_argument("--no-faulthandler", action="store_true", help="Do not enable faulthandler")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    project = Path(args.project)
    setup_logging(Path(args.log_file) if args.log_file else None)

    if not (args.no_faulthandler or os.environ.get("NO_FAULTHANDLER")):
        try:
            faulthandler.enable()
        except Exception as exc:  # pragma: no cover - fail safe
            logging.debug("Failed to enable faulthandler: %s", exc)

    try:
        cfg = load_config(args.config if args.config else project)
    except (OSError, yaml.YAMLError) as exc:
        logging.error("Failed to load config: %s", exc)
        return 1
    if args.interactive:
        cfg.setdefault("roi", {})["interactive"] = True
    logging.getLogger().setLevel(level_from_config(cfg))

    logging.info("SNR depth analysis v%s started", APP_VERSION)
    try:
        sweeps = run_pipeline(project, cfg)
    except SNRAnalysisError as exc:
        logging.error("%s: %s", exc.kind.value, exc)
        return 1
    except Exception as exc:
        logging.exception("Analysis failed: %s", exc)
        return 1
    for group, sweep in sweeps.items():
        if sweep.failures:
            logging.warning(
                "%s%d depth(s) failed: %s",
                f"{group}: " if group else "",
                len(sweep.failures),
                ", ".join(f.label for f in sweep.failures),
            )
    return 0


if __name__ == "__main__":
    sys.exit(main())
