from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from pathlib import Path

import pytest

from pipeline.scoring import (
    DEFAULT_AUTHORITY,
    AuthorityTable,
    clamp_score,
    importance_score,
    recency_boost,
    relevance_score,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_relevance_exact_title_at_rank_one_beats_unrelated_tail_result() -> None:
    best = relevance_score(1, "Acme Corp", "Acme Corp")
    worst = relevance_score(50, "unrelated", "Acme Corp")
    assert best == 100
    assert worst == 30
    assert best >= worst


def test_relevance_decays_with_rank() -> None:
    scores = [relevance_score(rank, "Quarterly update", "Acme Corp") for rank in (1, 2, 5, 10, 40)]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == 85


def test_relevance_keyword_boost_counts_words_longer_than_two_chars() -> None:
    # "of" is ignored, "bank" and "america" both match
    assert relevance_score(1, "America's bank posts record", "Bank of America") == 100
    assert relevance_score(1, "Acme widget recall", "Acme Widget Corp") == 95


@pytest.mark.parametrize("rank", [0, -3, "x", None, 10_000])
def test_relevance_is_bounded_for_odd_input(rank) -> None:
    score = relevance_score(rank, None, "")
    assert 0 <= score <= 100


def test_recency_boost_steps() -> None:
    assert recency_boost(NOW - timedelta(hours=2), NOW) == 10
    assert recency_boost(NOW - timedelta(hours=8), NOW) == 7
    assert recency_boost(NOW - timedelta(hours=20), NOW) == 4
    assert recency_boost(NOW - timedelta(days=3), NOW) == 0
    assert recency_boost(None, NOW) == 0
    # publication dates in the future count as fresh
    assert recency_boost(NOW + timedelta(hours=5), NOW) == 10


def test_importance_combines_authority_and_recency() -> None:
    assert importance_score("https://www.npr.org/story", NOW - timedelta(hours=1), now=NOW) == 98
    assert importance_score("https://www.nytimes.com/story", NOW - timedelta(hours=1), now=NOW) == 100
    assert importance_score("https://tiny-blog.example/post", None, now=NOW) == DEFAULT_AUTHORITY
    assert importance_score("not a url", NOW, now=NOW) == DEFAULT_AUTHORITY + 10


def test_authority_table_is_injectable_and_read_only(tmp_path: Path) -> None:
    table = AuthorityTable({"www.Trade-Journal.com": 77}, default=40)
    assert table.lookup("trade-journal.com") == 77
    assert table.lookup("unknown.org") == 40
    assert importance_score("https://trade-journal.com/a", None, authority=table, now=NOW) == 77
    with pytest.raises(TypeError):
        table.scores["other.com"] = 1  # type: ignore[index]

    override = tmp_path / "authority.json"
    override.write_text(json.dumps({"trade-journal.com": 81, "nytimes.com": 99}), encoding="utf-8")
    loaded = AuthorityTable.from_file(override)
    assert loaded.lookup("trade-journal.com") == 81
    assert loaded.lookup("nytimes.com") == 99
    assert loaded.lookup("reuters.com") == AuthorityTable.default().lookup("reuters.com")


def test_clamp_score() -> None:
    assert clamp_score(120) == 100
    assert clamp_score(-4) == 0
    assert clamp_score("87.6") == 88
    assert clamp_score(None) == 0
    assert clamp_score(float("nan")) == 0
