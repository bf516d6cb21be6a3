"""
cast_tidy/checker.py
════════════════════

Checker framework and the cast-call checker, plus the cppcheck addon
entry point.

    ┌─────────────────────────────────────────────────────────┐
    │                    CheckerRunner                        │
    │   per configuration:                                    │
    │     ClassHierarchy ◄── cfg.scopes / cfg.tokenlist       │
    │           │                                             │
    │     iter_member_calls ──► PatternCatalog.match          │
    │                                  │                      │
    │                       call_source ──► rewrite_call      │
    │                                           │             │
    │                          Diagnostic + FixIt             │
    └─────────────────────────────────────────────────────────┘

Each Checker follows a four-phase lifecycle:

  1. **configure()**: read options, build per-configuration state
  2. **collect_evidence()**: find matching call sites
  3. **diagnose()**: rewrite each site into a diagnostic
  4. **report()**: hand the diagnostics back

Usage from the command line or as a cppcheck addon::

    cppcheck --dump file.cpp && python -m cast_tidy file.cpp.dump
    cppcheck --addon=addons/CastTidy.py src/
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    List,
    Optional,
    Sequence,
    Set,
    TextIO,
    Tuple,
    Type,
)

from cast_tidy import __version__
from cast_tidy.catalog import CatalogEntry, PatternCatalog, default_catalog
from cast_tidy.diagnostics import (
    Diagnostic,
    DiagnosticSeverity,
    FixIt,
    SourceLocation,
)
from cast_tidy.errors import InternalMatchError
from cast_tidy.host import (
    ClassHierarchy,
    SourceCache,
    call_source,
    iter_member_calls,
    tok_location,
)
from cast_tidy.rewrite import CallSite, RewriteOptions, rewrite_call

logger = logging.getLogger(__name__)

EXIT_OK: int = 0
EXIT_FINDINGS: int = 1
EXIT_INFRA: int = 2

_LOG_HANDLER_NAME = "cast-tidy-stderr"

DEPRECATION_URL = "https://mlir.llvm.org/deprecation/"


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: CHECKER BASE CLASS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerContext:
    """
    Shared context passed to every checker during execution.

    Attributes
    ----------
    cfg      : cppcheckdata.Configuration
    catalog  : PatternCatalog deciding which calls qualify
    sources  : SourceCache for slicing original call text
    options  : user-provided options dict
    stats    : mutable dict for timing / counting statistics
    """
    cfg: Any  # cppcheckdata.Configuration
    catalog: PatternCatalog = field(default_factory=default_catalog)
    sources: SourceCache = field(default_factory=SourceCache)
    options: Dict[str, Any] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


class Checker(ABC):
    """
    Abstract base class for all checkers.

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``error_ids``
      - Implement ``collect_evidence()`` and ``diagnose()``
      - Optionally override ``configure()`` for custom setup
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    error_ids: ClassVar[FrozenSet[str]] = frozenset()
    default_severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.STYLE

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def configure(self, ctx: CheckerContext) -> None:
        """Called before evidence collection. Default does nothing."""
        pass

    @abstractmethod
    def collect_evidence(self, ctx: CheckerContext) -> None:
        ...

    @abstractmethod
    def diagnose(self, ctx: CheckerContext) -> None:
        ...

    def report(self, ctx: CheckerContext) -> List[Diagnostic]:
        """Return final diagnostics. Normally not overridden."""
        return list(self._diagnostics)

    def _emit(
        self,
        error_id: str,
        message: str,
        location: SourceLocation,
        severity: Optional[DiagnosticSeverity] = None,
        extra: str = "",
        fixits: Tuple[FixIt, ...] = (),
        evidence: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Helper to create and store a diagnostic."""
        self._diagnostics.append(Diagnostic(
            error_id=error_id,
            message=message,
            severity=severity or self.default_severity,
            location=location,
            checker_name=self.name,
            extra=extra,
            fixits=fixits,
            evidence=evidence or {},
        ))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: THE CAST-CALL CHECKER
# ═════════════════════════════════════════════════════════════════════════

class CastCallChecker(Checker):
    """
    Suggests ``cast<T>(obj)`` for ``obj.cast<T>()`` and friends.

    Covers ``cast``, ``dyn_cast``, ``dyn_cast_or_null`` and ``isa`` on every
    type family in the catalog.  Not a refactoring: the fix is rebuilt from
    the call's text and should be reviewed.
    """

    name = "cast-method-call"
    description = "Method-style casts that should use the free functions"
    error_ids = frozenset({"castMethodCall", "castTidyInternalError"})
    default_severity = DiagnosticSeverity.STYLE
    message = (
        "Casting call is using methods instead of functions "
        + DEPRECATION_URL
    )

    def __init__(self) -> None:
        super().__init__()
        self._options = RewriteOptions()
        self._hierarchy = ClassHierarchy()
        self._sites: List[Tuple[CatalogEntry, CallSite]] = []

    def configure(self, ctx: CheckerContext) -> None:
        self._options = RewriteOptions.from_options(ctx.options)
        self._hierarchy = ClassHierarchy.from_configuration(ctx.cfg)
        self._sites = []

    def collect_evidence(self, ctx: CheckerContext) -> None:
        catalog = ctx.catalog
        for call in iter_member_calls(ctx.cfg, catalog.member_names):
            entry = catalog.match(call, self._hierarchy)
            if entry is None:
                continue
            try:
                text, source_range = call_source(call.token, ctx.sources)
            except InternalMatchError as exc:
                self._report_internal_error(exc, entry)
                continue
            self._sites.append((entry, CallSite(
                text=text,
                member=call.member,
                is_arrow=call.is_arrow,
                family=entry.family,
                range=source_range,
            )))
        ctx.stats["cast_call_sites"] = (
            ctx.stats.get("cast_call_sites", 0) + len(self._sites)
        )

    def diagnose(self, ctx: CheckerContext) -> None:
        for entry, site in self._sites:
            rewrite = rewrite_call(site, self._options)
            logger.info("%s: %s -> %s", site.range.begin if site.range else "?",
                        site.text, rewrite.text)
            fixits = (FixIt(site.range, rewrite.text),) if site.range else ()
            self._emit(
                error_id="castMethodCall",
                message=self.message,
                location=site.range.begin if site.range else SourceLocation(),
                extra=str(entry),
                fixits=fixits,
                evidence={
                    "family": entry.family.name,
                    "operation": entry.operation.value,
                    "original": site.text,
                    "replacement": rewrite.text,
                },
            )

    def _report_internal_error(self, exc: InternalMatchError,
                               entry: CatalogEntry) -> None:
        location = tok_location(exc.token) if exc.token is not None \
            else SourceLocation()
        logger.error("Internal error at %s (%s): %s", location, entry,
                     exc.message)
        self._emit(
            error_id="castTidyInternalError",
            message=f"Cannot rewrite matched {entry} call: {exc.message}",
            location=location,
            severity=DiagnosticSeverity.INFORMATION,
            extra=str(entry),
        )


# ═════════════════════════════════════════════════════════════════════════
#  PART 3: CHECKER RUNNER
# ═════════════════════════════════════════════════════════════════════════

DEFAULT_CHECKERS: Tuple[Type[Checker], ...] = (CastCallChecker,)


@dataclass
class CheckerRunResults:
    """
    Aggregate results from running a suite of checkers.

    Attributes
    ----------
    diagnostics            : All diagnostics from all checkers
    diagnostics_by_checker : Diagnostics grouped by checker name
    stats                  : Timing and counting statistics
    checker_names          : Names of checkers that were run
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    diagnostics_by_checker: Dict[str, List[Diagnostic]] = field(
        default_factory=lambda: defaultdict(list)
    )
    stats: Dict[str, Any] = field(default_factory=dict)
    checker_names: List[str] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    @property
    def internal_error_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.error_id == "castTidyInternalError"
        )

    @property
    def fixits(self) -> List[FixIt]:
        return [f for d in self.diagnostics for f in d.fixits]

    def by_file(self, file: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.location.file == file]

    def to_json_lines(self) -> str:
        """Format all diagnostics as cppcheck JSON addon output."""
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self, with_fixits: bool = True) -> str:
        """GCC-style lines, each followed by its parseable fix-its."""
        lines: List[str] = []
        for diag in self.diagnostics:
            lines.append(diag.to_gcc_format())
            if with_fixits:
                lines.extend(f.to_parseable() for f in diag.fixits)
        return "\n".join(lines)

    def to_replacements(self) -> Dict[str, Any]:
        """Exported fixes, one entry per diagnostic, for a patch applier."""
        entries = []
        for diag in self.diagnostics:
            if not diag.fixits:
                continue
            entries.append({
                "DiagnosticName": diag.error_id,
                "Message": diag.message,
                "FilePath": diag.location.file,
                "Line": diag.location.line,
                "Column": diag.location.column,
                "Replacements": [
                    {
                        "FilePath": f.range.file,
                        "Offset": f.range.offset,
                        "Length": f.range.length,
                        "ReplacementText": f.replacement,
                    }
                    for f in diag.fixits
                ],
            })
        return {"Diagnostics": entries}

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Checker run complete: {self.total_count} diagnostics "
            f"({self.internal_error_count} internal errors)",
        ]
        for name in self.checker_names:
            count = len(self.diagnostics_by_checker.get(name, []))
            elapsed = self.stats.get(f"{name}_elapsed_ms", 0)
            lines.append(f"  {name}: {count} findings ({elapsed:.1f}ms)")
        return "\n".join(lines)

    def merge(self, partial: "CheckerRunResults") -> None:
        """Fold in one configuration's results, dropping repeated findings."""
        seen: Set[Tuple[Any, ...]] = {d.key for d in self.diagnostics}
        for name, diags in partial.diagnostics_by_checker.items():
            for diag in diags:
                if diag.key in seen:
                    continue
                seen.add(diag.key)
                self.diagnostics.append(diag)
                self.diagnostics_by_checker[name].append(diag)
        for key, val in partial.stats.items():
            if isinstance(val, (int, float)) and key in self.stats:
                self.stats[key] += val
            else:
                self.stats[key] = val
        for name in partial.checker_names:
            if name not in self.checker_names:
                self.checker_names.append(name)


class CheckerRunner:
    """
    Runs a suite of checkers against cppcheck configurations.

    Usage
    -----
    >>> runner = CheckerRunner(options={"qualify_all": True})
    >>> results = runner.run(cfg)
    >>> print(results.summary())
    """

    def __init__(
        self,
        checkers: Sequence[Type[Checker]] = DEFAULT_CHECKERS,
        catalog: Optional[PatternCatalog] = None,
        sources: Optional[SourceCache] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.checkers = list(checkers)
        self.catalog = catalog or default_catalog()
        self.sources = sources or SourceCache()
        self.options = options or {}

    def run(self, cfg: Any) -> CheckerRunResults:
        """Run every checker against a single Configuration."""
        results = CheckerRunResults()
        ctx = CheckerContext(
            cfg=cfg,
            catalog=self.catalog,
            sources=self.sources,
            options=self.options,
            stats=results.stats,
        )
        for cls in self.checkers:
            checker = cls()
            checker_name = cls.name
            results.checker_names.append(checker_name)

            t0 = time.monotonic()
            try:
                checker.configure(ctx)
                checker.collect_evidence(ctx)
                checker.diagnose(ctx)
                diags = checker.report(ctx)
            except Exception as exc:
                logger.exception("Checker '%s' failed", checker_name)
                diags = [Diagnostic(
                    error_id="checkerInternalError",
                    message=f"Checker '{checker_name}' failed: {exc}",
                    severity=DiagnosticSeverity.INFORMATION,
                    location=SourceLocation(),
                    checker_name=checker_name,
                )]
            elapsed_ms = (time.monotonic() - t0) * 1000.0

            results.diagnostics.extend(diags)
            results.diagnostics_by_checker[checker_name] = diags
            results.stats[f"{checker_name}_elapsed_ms"] = elapsed_ms
        return results

    def run_all_configurations(self, data: Any) -> CheckerRunResults:
        """Run checkers across all configurations in a CppcheckData dump."""
        combined = CheckerRunResults()
        # newer cppcheckdata parses configurations lazily
        iterconfigurations = getattr(data, "iterconfigurations", None)
        if callable(iterconfigurations):
            configurations = iterconfigurations()
        else:
            configurations = getattr(data, "configurations", None) or []
        for cfg in configurations:
            logger.info("Configuration: %s", getattr(cfg, "name", "") or "<default>")
            combined.merge(self.run(cfg))
        return combined


# ═════════════════════════════════════════════════════════════════════════
#  PART 4: ADDON ENTRY POINT
# ═════════════════════════════════════════════════════════════════════════

def _configure_logging(verbosity: int) -> None:
    """0 → WARNING, 1 → INFO, 2+ → DEBUG on the ``cast_tidy`` logger."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("cast_tidy")
    root.setLevel(level)
    # one stderr handler per process, however often main() runs
    if any(h.get_name() == _LOG_HANDLER_NAME for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_LOG_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)


def _write_results(results: CheckerRunResults, output: str,
                   stream: TextIO) -> None:
    if output == "json":
        for diag in results.diagnostics:
            stream.write(diag.to_json_str() + "\n")
    elif output == "gcc":
        text = results.to_gcc_format()
        if text:
            stream.write(text + "\n")
    else:
        stream.write(results.summary() + "\n")
    stream.flush()


def run_addon(
    dump_files: Sequence[str],
    output: str = "json",
    options: Optional[Dict[str, Any]] = None,
    export_fixes: Optional[str] = None,
    source_roots: Sequence[str] = (),
    stream: Optional[TextIO] = None,
) -> int:
    """
    Run the cast-call checker as a cppcheck addon.

    Returns
    -------
    EXIT_OK when nothing was found, EXIT_FINDINGS when diagnostics were
    reported, EXIT_INFRA when any dump could not be read.  An unreadable
    dump does not stop the others; whatever they found is still written.
    """
    try:
        from cppcheckdata import parsedump  # type: ignore[import-untyped]
    except ImportError:
        sys.stderr.write("ERROR: cppcheckdata module not found\n")
        return EXIT_INFRA

    stream = stream or sys.stdout
    combined = CheckerRunResults()
    failed = 0
    for dump_file in dump_files:
        logger.info("Checking %s", dump_file)
        try:
            data = parsedump(dump_file)
        except (OSError, ValueError, ET.ParseError) as exc:
            logger.error("Failed to parse dump file %s: %s", dump_file, exc)
            failed += 1
            continue
        roots = [str(Path(dump_file).resolve().parent), *source_roots]
        runner = CheckerRunner(sources=SourceCache(roots), options=options)
        combined.merge(runner.run_all_configurations(data))

    _write_results(combined, output, stream)

    if export_fixes:
        Path(export_fixes).write_text(
            json.dumps(combined.to_replacements(), indent=2) + "\n",
            encoding="utf-8",
        )
        logger.info("Wrote %d fixes to %s", len(combined.fixits), export_fixes)

    if failed:
        return EXIT_INFRA
    return EXIT_FINDINGS if combined.total_count else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cast-tidy",
        description=(
            "Rewrite method-style casts (x.cast<T>()) into the free "
            "functions (cast<T>(x))."
        ),
    )
    parser.add_argument("dumpfile", nargs="*", help="cppcheck .dump file(s)")
    parser.add_argument(
        "--output", choices=["json", "gcc", "summary"], default="gcc",
        help="Output format (default: gcc)",
    )
    parser.add_argument(
        "--cli", action="store_true",
        help="cppcheck addon protocol; same as --output json",
    )
    parser.add_argument(
        "--qualify-all", action="store_true",
        help="Prefix every rewritten name with the qualifier",
    )
    parser.add_argument(
        "--qualifier", default=RewriteOptions.qualifier,
        help="Namespace prefix for qualified names (default: %(default)s)",
    )
    parser.add_argument(
        "--export-fixes", metavar="PATH",
        help="Write the proposed replacements to a JSON file",
    )
    parser.add_argument(
        "--source-root", action="append", default=[], metavar="DIR",
        help="Directory to resolve relative source paths against",
    )
    parser.add_argument(
        "--list-families", action="store_true",
        help="List the type families and operations, then exit",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("-q", "--quiet", action="store_true")
    parser.add_argument("--version", action="version", version=__version__)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for ``cast-tidy`` / ``python -m cast_tidy``."""
    args = build_parser().parse_args(argv)
    _configure_logging(0 if args.quiet else args.verbose)

    if args.list_families:
        catalog = default_catalog()
        for family in catalog.families:
            ops = ", ".join(
                e.operation.value for e in catalog if e.family == family
            )
            suffix = "  [permissive]" if family.permissive else ""
            print(f"  {family.name:15s} {', '.join(family.bases)}{suffix}")
            print(f"  {'':15s} {ops}")
        return EXIT_OK

    if not args.dumpfile:
        if not args.quiet:
            print("cast-tidy: no input files.", file=sys.stderr)
        return EXIT_OK

    options = {"qualify_all": args.qualify_all, "qualifier": args.qualifier}
    return run_addon(
        args.dumpfile,
        output="json" if args.cli else args.output,
        options=options,
        export_fixes=args.export_fixes,
        source_roots=args.source_root,
    )


__all__ = [
    "CheckerContext",
    "Checker",
    "CastCallChecker",
    "DEFAULT_CHECKERS",
    "CheckerRunResults",
    "CheckerRunner",
    "run_addon",
    "build_parser",
    "main",
]
