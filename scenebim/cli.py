"""CLI for scene materialization runs."""

import argparse
import json
import sys
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from scenebim.exceptions import SceneBimError
from scenebim.export.materializer import RecordingMaterializer
from scenebim.logging_config import setup_logging
from scenebim.pipeline import run
from scenebim.scene.schema import load_scene
from scenebim.settings import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scenebim", description="Materialize a scene graph JSON into CAD elements")
    commands = parser.add_subparsers(dest="command", required=True)

    run_parser = commands.add_parser("run", help="Run the geometry kernel on a scene file")
    run_parser.add_argument("scene", type=Path, help="Scene graph JSON")
    run_parser.add_argument("--output-dir", type=Path, default=Path("out"), help="Output directory")
    run_parser.add_argument("--config", type=Path, help="YAML configuration (default: SCENEBIM_CONFIG or config/default.yaml)")
    run_parser.add_argument("--log-level", help="Override the configured log level")
    run_parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    run_parser.add_argument("--build-gap-walls", action="store_true", help="Also build synthesized gap walls")
    return parser


def _load_settings(path: Path | None) -> Settings:
    try:
        return Settings.load(path)
    except FileNotFoundError:
        if path is not None:
            raise
        return Settings()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = _load_settings(args.config)
    setup_logging(settings.logging, level=args.log_level, json_format=args.json_logs or None)

    kernel = settings.kernel
    if args.build_gap_walls:
        kernel = kernel.model_copy(update={"build_gap_walls": True})

    args.output_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Loading scene {args.scene}...")
    try:
        scene = load_scene(args.scene)
        materializer = RecordingMaterializer()
        result = run(scene, materializer, kernel)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.error(f"Cannot read scene {args.scene}: {exc}")
        return 1
    except SceneBimError as exc:
        logger.error(f"Run aborted: {exc.message}")
        return 1

    document_path = args.output_dir / "materialized.json"
    document_path.write_text(materializer.to_json(), encoding="utf-8")
    logger.info(f"Saved materialized document to {document_path}")

    log_path = args.output_dir / "run_log.json"
    log_path.write_text(json.dumps(result.to_dict(), indent=2, default=str), encoding="utf-8")
    logger.info(f"Saved run log to {log_path}")

    print(result.format_log())
    return 0


if __name__ == "__main__":
    sys.exit(main())
