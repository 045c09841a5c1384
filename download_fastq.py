#!/usr/bin/env python3
"""
Download a paired-end run from ENA, report read file sizes and trim with fastp.

Usage
-----
  python download_fastq.py --study SRP255885 --run SRR11518889

Requires `curl` and `fastp` on PATH. Files already downloaded are reused.
"""
import argparse
import gzip
import os
import re
import shutil
import subprocess
import sys

ENA_FASTQ_ROOT = "ftp://ftp.sra.ebi.ac.uk/vol1/fastq"
RUN_PAT = re.compile(r"^([A-Z]{3})(\d{6,})$")


class DownloadError(Exception):
    """A download or trimming step failed."""


def ena_fastq_url(run: str, mate: int) -> str:
    """
    ENA FTP location of one mate of a run, e.g.
      SRR11518889, 1 -> .../SRR115/089/SRR11518889/SRR11518889_1.fastq.gz
    """
    m = RUN_PAT.match(run)
    if not m:
        raise DownloadError(f"Not a run accession: {run!r}")
    digits = m.group(2)
    parts = [ENA_FASTQ_ROOT, run[:6]]
    # runs with more than six digits get an extra 3-char, zero-padded directory
    if len(digits) > 6:
        parts.append(digits[6:].zfill(3))
    parts += [run, f"{run}_{mate}.fastq.gz"]
    return "/".join(parts)


def require_tool(name: str) -> str:
    path = shutil.which(name)
    if not path:
        raise DownloadError(f"{name} not found in PATH")
    return path


def run_tool(cmd):
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        raise DownloadError(f"Command failed with exit code {e.returncode}: {' '.join(cmd)}")


def download(url: str, dest: str) -> bool:
    """Fetch `url` into `dest` unless it already exists. Returns True if downloaded."""
    if os.path.exists(dest):
        return False
    print(f"Downloading {os.path.basename(dest)}")
    # dest only appears once the transfer finished
    part = dest + ".part"
    try:
        run_tool([require_tool("curl"), "--fail", "--output", part, "--url", url])
    except DownloadError:
        if os.path.exists(part):
            os.remove(part)
        raise
    os.replace(part, dest)
    return True


def count_lines(path: str) -> int:
    n = 0
    try:
        with gzip.open(path, "rb") as fh:
            for _ in fh:
                n += 1
    except OSError as e:
        raise DownloadError(f"Could not read {path}: {e}")
    return n


def run_fastp(in1, in2, out1, out2, html):
    run_tool([
        require_tool("fastp"),
        "--in1", in1,
        "--in2", in2,
        "--out1", out1,
        "--out2", out2,
        "--html", html,
    ])


def main(argv=None):
    ap = argparse.ArgumentParser(description="Download paired-end FASTQ files from ENA and trim them with fastp.")
    ap.add_argument("--study", default="SRP255885", help="Study accession, used for directory names (default: %(default)s)")
    ap.add_argument("--run", default="SRR11518889", help="Run accession to download (default: %(default)s)")
    ap.add_argument("--data-dir", default=None, help="Raw FASTQ directory (default: data/raw/fastq/<study>)")
    ap.add_argument("--trimmed-dir", default=None, help="Trimmed FASTQ directory (default: data/trimmed/<study>)")
    ap.add_argument("--reports-dir", default=os.path.join("reports", "fastp"), help="fastp HTML report directory (default: %(default)s)")
    args = ap.parse_args(argv)

    data_dir = args.data_dir or os.path.join("data", "raw", "fastq", args.study)
    trimmed_dir = args.trimmed_dir or os.path.join("data", "trimmed", args.study)
    for d in (data_dir, trimmed_dir, args.reports_dir):
        os.makedirs(d, exist_ok=True)

    try:
        raw, trimmed = [], []
        for mate in (1, 2):
            url = ena_fastq_url(args.run, mate)
            name = url.rsplit("/", 1)[-1]
            dest = os.path.join(data_dir, name)
            download(url, dest)
            raw.append(dest)
            trimmed.append(os.path.join(trimmed_dir, name))

        for path in raw:
            print(f"The number of lines in {os.path.basename(path)} is: {count_lines(path)}")

        html = os.path.join(args.reports_dir, f"{args.study}_report.html")
        run_fastp(raw[0], raw[1], trimmed[0], trimmed[1], html)
    except DownloadError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"Trimmed: {trimmed[0]}, {trimmed[1]}")
    print(f"Report:  {html}")


if __name__ == "__main__":
    main()
