"""Command line entry point for Trace Stat.

Subcommands:
    process  <timers> <events> [-stats=NAME] [-r]
    compare  <stats|timers events> <stats|timers events> [-d] [-s=N]
    analyze  <timers> <events> [-stats=NAME] [-f=INDEX | -ts=T -te=T] [-d] [-s=N]
    stat     <stats|timers events> <timer> [<parent timer>]

Every subcommand also accepts -thread=ID and -frame=NAME to pick the captured
thread and the frame boundary timer.
"""

import argparse
import logging
import sys
from collections.abc import Iterator, Sequence

from .config import AnalysisConfig
from .exceptions import InputNotFoundError, InvalidParameterError, TraceStatError
from .telemetry import log_tool_call, setup_telemetry
from .tools.frame_analyzer import analyze_frames
from .tools.frames_tree import FrameNode, FramesTree
from .tools.reporting import ResultStream, report_comparisons, report_exceptions
from .tools.snapshot_store import (
    generate_stats_filename,
    is_stats_file,
    load_registry,
    load_stats,
    normalize_stats_path,
    save_registry,
    save_stats,
)
from .tools.statistics import StatisticsSnapshot, compare
from .tools.trace_loader import (
    find_timer_id,
    generate_id_mapping,
    load_spans,
    load_timers,
    translate_spans,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

DEFAULT_SHOW = 10

STAT_USAGE = "Params required: <stats filename|timers filename timing events filename> <timer name> (<parent timer name>)"


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that prints usage and exits with EXIT_USAGE on bad input."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-thread", type=int, dest="thread_id", help="Captured thread id")
    parser.add_argument("-frame", dest="frame_timer", help="Frame boundary timer name")


def _add_report_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-d", action="store_true", dest="dump", help="Dump all results to the results file")
    parser.add_argument(
        "-s", type=int, dest="show", default=DEFAULT_SHOW, help="Number of results printed to the console"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="trace-stat", description=__doc__, allow_abbrev=False,
                     formatter_class=argparse.RawDescriptionHelpFormatter)
    subparsers = parser.add_subparsers(dest="command", required=True, parser_class=_Parser)

    process_parser = subparsers.add_parser("process", help="Accumulate a trace into a stats snapshot", allow_abbrev=False)
    process_parser.add_argument("timers", help="Timer descriptor table (CSV)")
    process_parser.add_argument("events", help="Span log (CSV)")
    process_parser.add_argument("-stats", dest="stats", help="Snapshot to extend or create")
    process_parser.add_argument("-r", action="store_true", dest="reset", help="Ignore the existing snapshot")
    _add_common_options(process_parser)

    compare_parser = subparsers.add_parser("compare", help="Diff two stats snapshots", allow_abbrev=False)
    compare_parser.add_argument("operands", nargs="+", help="Two snapshots, each a .stats file or <timers> <events>")
    _add_report_options(compare_parser)
    _add_common_options(compare_parser)

    analyze_parser = subparsers.add_parser("analyze", help="Find anomalous call sites in a trace", allow_abbrev=False)
    analyze_parser.add_argument("timers", help="Timer descriptor table (CSV)")
    analyze_parser.add_argument("events", help="Span log (CSV)")
    analyze_parser.add_argument("-stats", dest="stats", help="Baseline snapshot")
    analyze_parser.add_argument("-f", type=int, dest="frame_index", help="Analyze only this frame")
    analyze_parser.add_argument("-ts", type=float, dest="time_start", help="Skip frames starting before this time")
    analyze_parser.add_argument("-te", type=float, dest="time_end", help="Skip frames ending after this time")
    _add_report_options(analyze_parser)
    _add_common_options(analyze_parser)

    stat_parser = subparsers.add_parser("stat", help="Print the statistics of one timer", allow_abbrev=False)
    stat_parser.add_argument("operands", nargs="+", help="<stats|timers events> <timer> [<parent timer>]")
    _add_common_options(stat_parser)

    return parser


def load_frames_tree(timers_path: str, events_path: str, config: AnalysisConfig) -> FramesTree:
    """Loads one trace, translating its timer ids through the persisted registry."""
    log_tool_call(logger, "load_frames_tree", timers=timers_path, events=events_path)

    registry = load_registry(config.registry_path)
    timers = load_timers(timers_path)
    spans = load_spans(events_path, config.thread_id)

    id_mapping = generate_id_mapping(timers, registry)
    frame_local_id = find_timer_id(timers, config.frame_timer)
    frame_timer_id = id_mapping[frame_local_id] if frame_local_id is not None else None

    frames_tree = FramesTree.build(
        translate_spans(spans, id_mapping), frame_timer_id, num_timers=registry.size
    )
    save_registry(registry, config.registry_path)
    return frames_tree


def process(
    timers_path: str,
    events_path: str,
    config: AnalysisConfig,
    stats_path: str | None = None,
    reset: bool = False,
) -> StatisticsSnapshot:
    """Accumulates one trace into a snapshot file and returns the snapshot."""
    frames_tree = load_frames_tree(timers_path, events_path, config)
    stats_path = stats_path or generate_stats_filename()

    stats = None
    if not reset:
        stats = load_stats(normalize_stats_path(stats_path))
    stats = stats or StatisticsSnapshot()

    stats.derive_from_frames(frames_tree)
    save_stats(stats, stats_path)
    return stats


def _take_snapshot(operands: list[str], config: AnalysisConfig) -> StatisticsSnapshot:
    """Consumes a .stats operand, or a <timers> <events> pair that is processed on the fly."""
    if not operands:
        raise InvalidParameterError("Params required: <stats filename|timers filename> [<timing events filename>]")

    first = operands.pop(0)
    stats = load_stats(first)
    if stats is not None:
        return stats

    if not operands:
        raise InvalidParameterError(f"{first} is not a stats file and no timing events file follows it")
    return process(first, operands.pop(0), config)


def select_frames(
    frames_tree: FramesTree,
    frame_index: int | None = None,
    time_start: float | None = None,
    time_end: float | None = None,
) -> Iterator[tuple[int, FrameNode]]:
    """Picks frames by index, or by a [time_start, time_end] window."""
    for index, frame in enumerate(frames_tree.frames):
        if frame_index is not None:
            if index == frame_index:
                yield index, frame
                return
            continue
        if time_start is not None and frame.start_time < time_start:
            continue
        if time_end is not None and frame.end_time > time_end:
            continue
        yield index, frame


def run_process(args: argparse.Namespace, config: AnalysisConfig) -> int:
    process(args.timers, args.events, config, stats_path=args.stats, reset=args.reset)
    return EXIT_OK


def run_compare(args: argparse.Namespace, config: AnalysisConfig) -> int:
    operands = list(args.operands)
    stable = _take_snapshot(operands, config)
    tested = _take_snapshot(operands, config)
    if operands:
        raise InvalidParameterError(f"Unexpected arguments: {' '.join(operands)}")

    registry = load_registry(config.registry_path)
    with ResultStream(args.dump, args.show, config.results_path) as results:
        report_comparisons(compare(stable, tested), registry, results)
    return EXIT_OK


def run_analyze(args: argparse.Namespace, config: AnalysisConfig) -> int:
    frames_tree = load_frames_tree(args.timers, args.events, config)

    if args.stats is None:
        stats = StatisticsSnapshot()
        stats.derive_from_frames(frames_tree)
        save_stats(stats, generate_stats_filename())
    else:
        stats_path = normalize_stats_path(args.stats)
        stats = load_stats(stats_path)
        if stats is None:
            raise InputNotFoundError(str(stats_path))

    frames = select_frames(frames_tree, args.frame_index, args.time_start, args.time_end)
    exceptions, _ = analyze_frames(frames, stats, config=config)

    registry = load_registry(config.registry_path)
    with ResultStream(args.dump, args.show, config.results_path) as results:
        report_exceptions(exceptions, registry, results)
    return EXIT_OK


def run_stat(args: argparse.Namespace, config: AnalysisConfig) -> int:
    operands = list(args.operands)
    if not is_stats_file(operands[0]) and len(operands) < 3:
        raise InvalidParameterError(STAT_USAGE)
    stats = _take_snapshot(operands, config)
    if not operands or len(operands) > 2:
        raise InvalidParameterError(STAT_USAGE)

    registry = load_registry(config.registry_path)
    timer_id = registry.try_get_id(operands[0])
    if timer_id is None:
        print("Timer not found", file=sys.stderr)
        return EXIT_FAILURE

    if len(operands) == 1:
        view = stats.get(timer_id)
    else:
        parent_id = registry.try_get_id(operands[1])
        if parent_id is None:
            print("Parent timer not found", file=sys.stderr)
            return EXIT_FAILURE
        view = stats.get_branch(timer_id, parent_id)

    if view is None:
        print("Stat not found", file=sys.stderr)
        return EXIT_FAILURE

    print(f"\n{view}")
    return EXIT_OK


COMMANDS = {
    "process": run_process,
    "compare": run_compare,
    "analyze": run_analyze,
    "stat": run_stat,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_telemetry()

    try:
        config = AnalysisConfig.from_env().with_overrides(args.thread_id, args.frame_timer)
        return COMMANDS[args.command](args, config)
    except InvalidParameterError as e:
        parser.print_usage(sys.stderr)
        print(f"trace-stat: error: {e.message}", file=sys.stderr)
        return EXIT_USAGE
    except TraceStatError as e:
        logger.error(e.message)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
