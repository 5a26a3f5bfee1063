"""Shared fixtures: anyio backend and sample artifacts."""

from __future__ import annotations

import pytest

from samples import GENERIC_ANSWER, paragraph


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def research_artifact() -> str:
    """Well-formed research answer; scores 1.0 for category research."""
    return "\n".join(
        [
            "# Retrieval Survey",
            "",
            "## Summary",
            "",
            paragraph("Recent work confirms this [1] and extends it [2]."),
            "",
            "## Dense Retrievers",
            "",
            paragraph("Later studies agree [3]."),
            "",
            "## Evaluation",
            "",
            paragraph("Benchmarks support the trend [4]."),
            "",
            "## References",
            "",
            "[1] Karpukhin et al. Dense passage retrieval for open-domain question answering.",
            "[2] Izacard and Grave. Leveraging passage retrieval with generative models.",
            "[3] Khattab and Zaharia. ColBERT: efficient passage search.",
            "[4] Thakur et al. BEIR: a heterogeneous benchmark for retrieval.",
            "",
        ]
    )


@pytest.fixture
def enhanceable_research_artifact() -> str:
    """
    Research answer with no References section, non-canonical citations and a
    skipped heading level. Scores 0.79: completeness 0.6, correctness 1.0,
    quality 1.0, format 0.4.
    """
    return "\n".join(
        [
            "# Retrieval Survey",
            "",
            "## Summary",
            "",
            paragraph("Recent work confirms this [ref 1] and extends it [ 2 ]."),
            "",
            "#### Dense Retrievers",
            "",
            paragraph("Later studies agree [source 3]."),
            "",
            "## Evaluation",
            "",
            paragraph("Benchmarks support the trend [4]."),
            "",
        ]
    )


@pytest.fixture
def generic_answer() -> str:
    return GENERIC_ANSWER
