from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .cohort import SampleInput, parse_sample_sheet, run_cohort
from .config import EDIT_OPERATIONS, QCConfig, load_config
from .engine import QCEngine, pass_plan, resolve_facets
from .facets import FacetKind
from .features import GenomicFeatureIndex, build_feature_index
from .reference import FastaReferenceProvider
from .report import render_cohort_html, render_report_html, write_cohort_json, write_report_json
from .source import BamRecordSource
from .toy_data import make_toy_data
from .utils import ensure_outdir


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _csv(text: str) -> List[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_run_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--outdir", required=True, help="Output directory.")
    p.add_argument("--config", type=_path_exists, default=None, help="YAML file with run parameters.")
    p.add_argument(
        "--reference-fasta",
        type=_path_exists,
        default=None,
        help="Reference FASTA (enables the edits facet; also used to decode CRAM).",
    )
    p.add_argument(
        "--features-gff",
        type=_path_exists,
        default=None,
        help="GFF3 annotation (.gff3/.gff3.gz; enables the genomic_features facet).",
    )
    p.add_argument(
        "--facets",
        type=_csv,
        default=None,
        help=f"Comma-separated facets to run (default: all applicable). Choices: {', '.join(k.value for k in FacetKind)}",
    )
    p.add_argument("--coverage-bin-width", type=int, default=None, help="Coverage bin width in bp (default 1000).")
    p.add_argument(
        "--coverage-max-depth",
        type=int,
        default=None,
        help="Largest bin depth with its own bin in the coverage distribution (default 1000).",
    )
    p.add_argument(
        "--template-length-max",
        type=int,
        default=None,
        help="Largest template length with its own histogram bin (default 1024).",
    )
    p.add_argument("--gc-resolution", type=int, default=None, help="Number of GC buckets (default 100).")
    p.add_argument(
        "--mate-window",
        type=int,
        default=None,
        help="Reads held while waiting for their mate in the mate checks (default 100000).",
    )
    p.add_argument(
        "--edit-operations",
        type=_csv,
        default=None,
        help=f"Edit kinds feeding the per-position histogram. Choices: {', '.join(EDIT_OPERATIONS)}",
    )
    p.add_argument("--max-records", type=int, default=None, help="Stop each pass after this many records.")
    p.add_argument(
        "--max-skipped-fraction",
        type=float,
        default=None,
        help="Fail when a facet skips more than this fraction of malformed records.",
    )
    p.add_argument("--decode-threads", type=int, default=None, help="htslib decompression threads per file.")
    p.add_argument(
        "--contig-style",
        choices=["ucsc", "ensembl", "auto"],
        default="auto",
        help="Contig naming style to reconcile BAM/GFF headers.",
    )
    # GFF feature type names
    p.add_argument("--five-prime-utr-name", default=None, help="GFF type for 5' UTRs (default five_prime_UTR).")
    p.add_argument("--three-prime-utr-name", default=None, help="GFF type for 3' UTRs (default three_prime_UTR).")
    p.add_argument("--cds-name", default=None, help="GFF type for coding sequence (default CDS).")
    p.add_argument("--exon-name", default=None, help="GFF type for exons (default exon).")
    p.add_argument("--gene-name", default=None, help="GFF type for genes (default gene).")
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print the planned passes.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ngsqc",
        description=(
            "ngsqc: multi-facet quality control for aligned sequencing reads (SAM/BAM/CRAM). "
            "Streams each file once per pass and writes a JSON report plus an HTML summary."
        ),
    )
    p.add_argument("--version", action="version", version=f"ngsqc {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # qc
    # -----------------
    q = sub.add_parser("qc", help="Run QC facets over one alignment file.")
    q.add_argument(
        "--bam",
        required=True,
        help="Alignment file (SAM/BAM/CRAM), or '-' for standard input (single-pass facets only).",
    )
    q.add_argument("--sample", default=None, help="Sample name (default: file name stem).")
    _add_run_arguments(q)

    # -----------------
    # cohort
    # -----------------
    c = sub.add_parser("cohort", help="Run QC over several alignment files and merge the reports.")
    group = c.add_mutually_exclusive_group(required=True)
    group.add_argument("--bams", nargs="+", type=_path_exists, help="Alignment files (sample = file name stem).")
    group.add_argument("--samples", type=_path_exists, help="TSV sample sheet: sample<TAB>path per line.")
    c.add_argument("--workers", type=int, default=None, help="Samples processed concurrently (default 1).")
    _add_run_arguments(c)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM, and GFF3 for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    return p


def _build_config(args: argparse.Namespace) -> QCConfig:
    config = load_config(args.config) if args.config else QCConfig()
    names = {
        "five_prime_utr": args.five_prime_utr_name,
        "three_prime_utr": args.three_prime_utr_name,
        "coding_sequence": args.cds_name,
        "exon": args.exon_name,
        "gene": args.gene_name,
    }
    names = {k: v for k, v in names.items() if v is not None}
    feature_names = None
    if names:
        feature_names = dataclasses.replace(config.feature_names, **names)
    return config.with_overrides(
        facets=args.facets,
        coverage_bin_width=args.coverage_bin_width,
        coverage_max_depth=args.coverage_max_depth,
        max_template_length=args.template_length_max,
        gc_resolution=args.gc_resolution,
        mate_window=args.mate_window,
        edit_operations=args.edit_operations,
        max_records=args.max_records,
        max_skipped_fraction=args.max_skipped_fraction,
        max_workers=getattr(args, "workers", None),
        decode_threads=args.decode_threads,
        feature_names=feature_names,
    )


def _load_feature_index(
    args: argparse.Namespace, config: QCConfig, header_contigs: Sequence[str]
) -> Optional[GenomicFeatureIndex]:
    if not args.features_gff:
        return None
    return build_feature_index(
        args.features_gff,
        config.feature_names,
        header_contigs=header_contigs,
        contig_style=args.contig_style,
    )


def _print_plan(config: QCConfig, *, has_features: bool, has_reference: bool, replayable: bool) -> None:
    kinds = resolve_facets(config.facets, with_features=has_features, with_reference=has_reference)
    plan = pass_plan(kinds)
    print("Dry-run: inputs look OK.")
    for p in plan:
        names = [k.value for k in kinds if p in k.passes]
        print(f"  pass {p}: {', '.join(names)}")
    if len(plan) > 1 and not replayable:
        print("  WARNING: the input cannot be replayed; multi-pass facets will fail.")


def cmd_qc(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "qc.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("ngsqc")
    logger.info("ngsqc %s", __version__)

    reference = None
    try:
        config = _build_config(args)
        source = BamRecordSource(args.bam, reference_fasta=args.reference_fasta, threads=config.decode_threads)
        header_contigs = [r.name for r in source.references]
        feature_index = _load_feature_index(args, config, header_contigs)

        if args.dry_run:
            _print_plan(
                config,
                has_features=feature_index is not None,
                has_reference=args.reference_fasta is not None,
                replayable=source.replayable,
            )
            print("Planned outputs:")
            print(f"  qc.json -> {outdir / 'qc.json'}")
            print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.reference_fasta:
            reference = FastaReferenceProvider(args.reference_fasta)

        engine = QCEngine(
            source,
            config,
            sample=args.sample,
            feature_index=feature_index,
            reference=reference,
            progress=not args.no_progress,
        )
        report = engine.run()

        json_path = write_report_json(report, outdir / "qc.json")
        report_path = render_report_html(report, outdir / "report.html")
        logger.info("Report written: %s", report_path)
        print(str(json_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)
    finally:
        if reference is not None:
            reference.close()


def _cohort_inputs(args: argparse.Namespace) -> List[SampleInput]:
    if args.samples:
        return parse_sample_sheet(args.samples)
    return [SampleInput.from_path(p) for p in args.bams]


def cmd_cohort(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "cohort.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("ngsqc")
    logger.info("ngsqc %s", __version__)

    reference = None
    try:
        config = _build_config(args)
        samples = _cohort_inputs(args)
        if not samples:
            raise ValueError("No samples given")
        first = BamRecordSource(samples[0].path, reference_fasta=args.reference_fasta)
        feature_index = _load_feature_index(args, config, [r.name for r in first.references])

        if args.dry_run:
            _print_plan(
                config,
                has_features=feature_index is not None,
                has_reference=args.reference_fasta is not None,
                replayable=first.replayable,
            )
            print(f"Samples ({len(samples)}):")
            for s in samples:
                print(f"  {s.sample}\t{s.path}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.reference_fasta:
            reference = FastaReferenceProvider(args.reference_fasta)

        cohort = run_cohort(
            samples,
            config,
            feature_index=feature_index,
            reference=reference,
            reference_fasta=args.reference_fasta,
        )

        for report in cohort:
            write_report_json(report, outdir / "samples" / f"{report.sample}.qc.json")
        json_path = write_cohort_json(cohort, outdir / "cohort.qc.json")
        report_path = render_cohort_html(cohort, outdir / "cohort.report.html", version=__version__)
        logger.info("Report written: %s", report_path)
        print(str(json_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)
    finally:
        if reference is not None:
            reference.close()


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "qc":
        return cmd_qc(args)
    if args.cmd == "cohort":
        return cmd_cohort(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
