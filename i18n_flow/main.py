"""Command-line entrypoint: translate one JSON key/text file."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from typing import Dict, List, Optional

from i18n_flow.pipelines.runner import PipelineRunner
from i18n_flow.registry.profile_store import ProfileStore
from i18n_flow.utils.log_protocol import emit_error


def _load_texts(path: str) -> Dict[str, str]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Input must be a JSON object of key -> text: {path}")
    return {str(key): str(value) for key, value in data.items()}


def _resolve_output_path(input_path: str, target: str, output: Optional[str]) -> str:
    if output:
        return output
    stem, _ = os.path.splitext(input_path)
    return f"{stem}.{target}.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="i18n-flow translation pipeline")
    parser.add_argument("--file", required=True, help="Input JSON file (key -> text)")
    parser.add_argument("--source", required=True, help="Source locale (e.g. en)")
    parser.add_argument("--target", required=True, help="Target locale (e.g. ko)")
    parser.add_argument("--pipeline", required=True, help="Pipeline profile id or path")
    parser.add_argument("--profiles-dir", required=True, help="Base directory for profiles")
    parser.add_argument("--output", help="Output JSON path")
    parser.add_argument("--domain", help="Content domain for diff snapshots")
    parser.add_argument("--state-dir", help="Directory for diff snapshots")
    parser.add_argument("--tenant", help="Tenant id for plugin enablement")
    parser.add_argument("--json-log", action="store_true", help="Emit JSON progress lines")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not os.path.exists(args.file):
        print(f"[Error] Input file not found: {args.file}", file=sys.stderr)
        return 1

    try:
        store = ProfileStore(args.profiles_dir)
        pipeline_profile = store.load_profile("pipeline", args.pipeline)
        texts = _load_texts(args.file)

        print(f"[i18n-flow] Provider: {pipeline_profile.get('provider')}", file=sys.stderr)
        print(f"[i18n-flow] {args.source} -> {args.target}, {len(texts)} key(s)", file=sys.stderr)

        runner = PipelineRunner(
            store,
            pipeline_profile,
            state_dir=args.state_dir,
            json_log=bool(args.json_log),
        )
        result = runner.run(
            texts,
            args.source,
            args.target,
            domain=args.domain,
            tenant=args.tenant,
        )
        output_path = _resolve_output_path(args.file, args.target, args.output)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result.translations, f, ensure_ascii=False, indent=2)
    except Exception as e:
        error_msg = f"{str(e)}\n\n{traceback.format_exc()}"
        emit_error(error_msg, title="Translation Pipeline Fatal Error")
        print(f"[i18n-flow] Fatal error: {e}", file=sys.stderr)
        return 1

    for warning in result.snapshot.get("warnings", []):
        print(f"[i18n-flow] Warning: {warning}", file=sys.stderr)
    print(
        f"[i18n-flow] Output saved: {output_path} "
        f"({len(result.translations)} translated, {result.cached_count} from cache)",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
