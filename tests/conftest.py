"""Pytest fixtures for the MAF counting tests."""

import gzip
from pathlib import Path

import pytest

MAF_HEADER = [
    "Hugo_Symbol",
    "Entrez_Gene_Id",
    "Variant_Classification",
    "Variant_Type",
    "Tumor_Sample_Barcode",
    "t_depth",
    "t_ref_count",
    "t_alt_count",
    "HGVSp_Short",
]


def maf_text(rows, header=MAF_HEADER, version_line=True) -> str:
    lines = ["#version 2.4"] if version_line else []
    lines.append("\t".join(header))
    for row in rows:
        lines.append("\t".join(str(row.get(c, "")) for c in header))
    return "\n".join(lines) + "\n"


def mut(sample, gene, cls="Missense_Mutation", ref=70, alt=30, depth=None, **extra):
    row = {
        "Hugo_Symbol": gene,
        "Entrez_Gene_Id": 7157 if gene == "TP53" else 1,
        "Variant_Classification": cls,
        "Variant_Type": "SNP",
        "Tumor_Sample_Barcode": sample,
        "t_depth": ref + alt if depth is None else depth,
        "t_ref_count": ref,
        "t_alt_count": alt,
        "HGVSp_Short": "p.X1X",
    }
    row.update(extra)
    return row


@pytest.fixture
def write_maf(tmp_path: Path):
    """Write rows to a MAF in tmp_path; gzip when the name ends in .gz."""

    def _write(rows, name="test.maf", **kwargs) -> Path:
        path = tmp_path / name
        text = maf_text(rows, **kwargs)
        if name.endswith(".gz"):
            with gzip.open(path, "wt") as f:
                f.write(text)
        else:
            path.write_text(text)
        return path

    return _write


@pytest.fixture
def tp53_rows():
    """S1 missense (VAF 0.3, depth 50) and S2 silent (VAF 0.2, depth 40) in TP53."""
    return [
        mut("S1", "TP53", "Missense_Mutation", ref=35, alt=15),
        mut("S2", "TP53", "Silent", ref=32, alt=8),
    ]
