#!/usr/bin/env python3
"""
Count the number of samples mutated for each gene in a MAF file.

Reads a MAF, keeps coding mutations that pass VAF / depth thresholds and
writes one row per gene with:
  - mutated_samples : samples with at least one qualifying mutation
  - total_muts      : qualifying mutations summed over all samples

Usage
-----
  python count_gene_mutations.py \
    --maf mutations.maf.tsv.gz \
    --outfile gene_counts.tsv \
    --vaf 0.05 --min_depth 10 --include_syn
"""
import argparse
import gzip
import io
import os
import sys
from dataclasses import dataclass

import numpy as np
import pandas as pd

# -----------------------
# constants
# -----------------------
SAMPLE_COL = "Tumor_Sample_Barcode"
GENE_COL = "Hugo_Symbol"
CLASS_COL = "Variant_Classification"
REF_COL = "t_ref_count"
ALT_COL = "t_alt_count"

# column -> kind; "count" columns must hold non-negative integers
MAF_SCHEMA = {
    SAMPLE_COL: "str",
    GENE_COL: "str",
    "Entrez_Gene_Id": "str",
    CLASS_COL: "str",
    "Variant_Type": "str",
    "t_depth": "count",
    REF_COL: "count",
    ALT_COL: "count",
}

# Variant_Classification groups, after http://asia.ensembl.org/Help/Glossary?id=535
SYNONYMOUS = (
    "Silent",
    "Start_Codon_Ins",
    "Start_Codon_SNP",
    "Stop_Codon_Del",
    "De_novo_Start_InFrame",
    "De_novo_Start_OutOfFrame",
)
NON_SYNONYMOUS = (
    "Missense_Mutation",
    "Frame_Shift_Del",
    "In_Frame_Ins",
    "Frame_Shift_Ins",
    "Splice_Site",
    "Nonsense_Mutation",
    "In_Frame_Del",
    "Nonstop_Mutation",
    "Translation_Start_Site",
)

SUMMARY_COLUMNS = [GENE_COL, "mutated_samples", "total_muts"]
REPORT_COLUMNS = ["step", "column", "before", "removed", "kept"]


# -----------------------
# errors
# -----------------------
class CountError(Exception):
    """Base class for errors that abort a counting run."""


class InputError(CountError):
    """MAF missing, unreadable, or lacking required columns."""


class ValidationError(CountError):
    """Malformed values in the MAF or invalid option values."""


class OutputError(CountError):
    """Output table could not be written."""


# -----------------------
# config
# -----------------------
@dataclass
class CountConfig:
    """Options for one counting run.

    Attributes:
        maf: MAF path, plain or .gz
        outfile: gene count table to write (overwritten)
        vaf: minimum variant allele fraction
        min_depth: minimum t_ref_count + t_alt_count
        include_syn: also count synonymous classifications
        report: optional filter step report TSV
    """

    maf: str
    outfile: str = "gene_counts.tsv"
    vaf: float = 0.05
    min_depth: int = 0
    include_syn: bool = False
    report: str | None = None

    def validate(self) -> None:
        if not os.path.isfile(self.maf):
            raise InputError(f"The specified MAF file does not exist: {self.maf}")
        if not 0.0 <= self.vaf <= 1.0:
            raise ValidationError(f"--vaf must be between 0 and 1 (got {self.vaf})")
        if self.min_depth < 0:
            raise ValidationError(f"--min_depth must be >= 0 (got {self.min_depth})")
        for path in (self.outfile, self.report):
            if path is None:
                continue
            out_dir = os.path.dirname(os.path.abspath(path))
            if not os.path.isdir(out_dir):
                raise OutputError(f"Output directory does not exist: {out_dir}")


# -----------------------
# load
# -----------------------
def _open_maybe_gzip(path):
    """Binary handle on `path`, decompressed into memory first when it ends in .gz."""
    if path.endswith(".gz"):
        with gzip.open(path, "rb") as fh:
            return io.BytesIO(fh.read())
    return open(path, "rb")


def load_maf(path: str) -> pd.DataFrame:
    """
    Read a (possibly gzipped) MAF with every cell as a string and keep only
    the columns in MAF_SCHEMA.
    """
    try:
        with _open_maybe_gzip(path) as fh:
            df = pd.read_csv(fh, sep="\t", comment="#", dtype=str, na_filter=False)
    except FileNotFoundError:
        raise InputError(f"The specified MAF file does not exist: {path}")
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise InputError(f"Could not read MAF {path}: {e}")

    df.columns = [c.strip() for c in df.columns]
    missing = [c for c in MAF_SCHEMA if c not in df.columns]
    if missing:
        raise InputError(f"MAF {path} is missing required column(s): {', '.join(missing)}")
    return df[list(MAF_SCHEMA)].copy()


def coerce_counts(df: pd.DataFrame) -> pd.DataFrame:
    """Convert the count columns to int64, rejecting anything that is not a non-negative integer."""
    df = df.copy()
    for col, kind in MAF_SCHEMA.items():
        if kind != "count":
            continue
        raw = df[col].astype(str).str.strip()
        vals = pd.to_numeric(raw, errors="coerce")
        # int64 tops out just below 2**63
        too_big = vals.astype(float) >= 2.0 ** 63
        bad = vals.isna() | (vals < 0) | (vals % 1 != 0) | too_big
        if bad.any():
            rows = [str(i + 1) for i in np.flatnonzero(bad.to_numpy())[:5]]
            example = raw[bad].iloc[0]
            raise ValidationError(
                f"Column '{col}' must hold non-negative integers; "
                f"bad value {example!r} in data row(s) {', '.join(rows)}"
            )
        df[col] = vals.astype("int64")
    return df


# -----------------------
# filter
# -----------------------
def include_classes(include_syn: bool) -> set:
    classes = set(NON_SYNONYMOUS)
    if include_syn:
        classes |= set(SYNONYMOUS)
    return classes


def compute_vaf(df: pd.DataFrame) -> pd.Series:
    """alt / (ref + alt); NaN where both counts are zero."""
    denom = (df[REF_COL] + df[ALT_COL]).to_numpy(dtype=float)
    alt = df[ALT_COL].to_numpy(dtype=float)
    vaf = np.divide(alt, denom, out=np.full(len(df), np.nan), where=denom > 0)
    return pd.Series(vaf, index=df.index, name="vaf")


def _filter_masks(df, vaf, min_depth, include_class):
    vals = compute_vaf(df)
    return [
        ("min_vaf", "vaf", vals.notna() & (vals >= vaf)),
        ("min_depth", f"{REF_COL}+{ALT_COL}", (df[REF_COL] + df[ALT_COL]) >= min_depth),
        ("variant_classification", CLASS_COL, df[CLASS_COL].isin(include_class)),
    ]


def filter_mutations(df: pd.DataFrame, vaf: float, min_depth: int, include_class) -> pd.DataFrame:
    """Keep rows passing VAF, depth and classification; adds a `vaf` column."""
    keep = pd.Series(True, index=df.index)
    for _, _, mask in _filter_masks(df, vaf, min_depth, include_class):
        keep &= mask
    out = df.assign(vaf=compute_vaf(df))
    return out[keep].reset_index(drop=True)


def filter_report(df: pd.DataFrame, vaf: float, min_depth: int, include_class) -> pd.DataFrame:
    """Rows removed by each filter when applied one after another."""
    rows = [{"step": "initial", "column": "", "before": len(df), "removed": 0, "kept": len(df)}]
    keep = pd.Series(True, index=df.index)
    for name, colname, mask in _filter_masks(df, vaf, min_depth, include_class):
        before = int(keep.sum())
        keep &= mask
        after = int(keep.sum())
        rows.append({"step": name, "column": colname, "before": before,
                     "removed": before - after, "kept": after})
    final = int(keep.sum())
    rows.append({"step": "final", "column": "", "before": len(df),
                 "removed": len(df) - final, "kept": final})
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


# -----------------------
# aggregate
# -----------------------
def count_sample_genes(muts: pd.DataFrame) -> pd.DataFrame:
    """One row per (sample, gene) with the number of qualifying mutations."""
    counts = (
        muts.groupby([SAMPLE_COL, GENE_COL], sort=True)
        .size()
        .reset_index(name="mut_count")
    )
    return counts.astype({"mut_count": "int64"})


def summarise_genes(sample_gene: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse sample x gene counts to one row per gene, sorted by
    mutated_samples then total_muts (both descending), gene name ascending.
    """
    genes = (
        sample_gene.groupby(GENE_COL, sort=True)
        .agg(mutated_samples=(SAMPLE_COL, "size"), total_muts=("mut_count", "sum"))
        .reset_index()
    )
    genes = genes.astype({"mutated_samples": "int64", "total_muts": "int64"})
    genes = genes.sort_values(
        ["mutated_samples", "total_muts", GENE_COL],
        ascending=[False, False, True],
        kind="mergesort",
    )
    return genes[SUMMARY_COLUMNS].reset_index(drop=True)


# -----------------------
# write
# -----------------------
def write_table(df: pd.DataFrame, path: str) -> None:
    try:
        df.to_csv(path, sep="\t", index=False)
    except OSError as e:
        raise OutputError(f"Could not write {path}: {e}")


def write_outputs(tables) -> None:
    """
    Write (frame, path) pairs all-or-nothing: each goes to `<path>.tmp`
    first and is moved into place only once every table was written. On any
    failure the temporaries and already-moved outputs are removed.
    """
    staged, placed = [], []
    try:
        for df, path in tables:
            tmp = f"{path}.tmp"
            staged.append(tmp)
            write_table(df, tmp)
        for tmp, (_, path) in zip(staged, tables):
            try:
                os.replace(tmp, path)
            except OSError as e:
                raise OutputError(f"Could not write {path}: {e}")
            placed.append(path)
    except OutputError:
        for p in staged + placed:
            if os.path.isfile(p):
                os.remove(p)
        raise


def write_gene_counts(genes: pd.DataFrame, path: str, report: pd.DataFrame | None = None, report_path: str | None = None) -> None:
    tables = [(genes[SUMMARY_COLUMNS], path)]
    if report is not None:
        tables.append((report, report_path))
    write_outputs(tables)


# -----------------------
# pipeline
# -----------------------
def count_gene_mutations(config: CountConfig) -> pd.DataFrame:
    config.validate()
    include_class = include_classes(config.include_syn)

    maf = coerce_counts(load_maf(config.maf))
    muts = filter_mutations(maf, config.vaf, config.min_depth, include_class)
    genes = summarise_genes(count_sample_genes(muts))

    report = None
    if config.report:
        report = filter_report(maf, config.vaf, config.min_depth, include_class)
    write_gene_counts(genes, config.outfile, report, config.report)

    print(f"Input:  {config.maf}  rows={len(maf)}")
    print(f"Kept mutations: {len(muts)}")
    print(f"Output: {config.outfile}  genes={len(genes)}")
    if config.report:
        print(f"Report: {config.report}")
    return genes


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Count mutated samples and mutations per gene in a MAF file.")
    ap.add_argument("--maf", "-m", required=True,
                    help="File path of MAF file to be analyzed. Can be .gz compressed.")
    ap.add_argument("--outfile", "-o", default="gene_counts.tsv",
                    help="File path where output table will be placed (default: %(default)s)")
    ap.add_argument("--vaf", "-v", type=float, default=0.05,
                    help="Minimum variant allele fraction to include (default: %(default)s)")
    ap.add_argument("--min_depth", "-d", type=int, default=0,
                    help="Minimum sequencing depth to include (default: %(default)s)")
    ap.add_argument("--include_syn", action="store_true",
                    help="Include synonymous coding mutations")
    ap.add_argument("--report", "-r", default=None,
                    help="Optional filter report TSV with per-step counts")
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = CountConfig(
        maf=args.maf,
        outfile=args.outfile,
        vaf=args.vaf,
        min_depth=args.min_depth,
        include_syn=args.include_syn,
        report=args.report,
    )
    try:
        count_gene_mutations(config)
    except CountError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
