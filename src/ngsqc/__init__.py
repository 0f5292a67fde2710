"""ngsqc: multi-facet quality control for SAM/BAM/CRAM alignment files.

Public API is intentionally small; most users should use the CLI:

    ngsqc qc --bam sample.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
