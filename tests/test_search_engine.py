import pytest

from indexer.fuzzy import FuzzyIndex, token_similarity, tokenize
from indexer.search_engine import FALLBACK_SCORE, SearchEngine, SearchQuery
from pipelines.catalog_parser import parse_catalog
from pipelines.errors import IndexNotReadyError


def names(results):
    return [result.record.name for result in results]


class TestFuzzyMatching:
    """Token-level similarity used by the index."""

    def test_tokenize(self):
        assert tokenize("Managed PostgreSQL, 500 MB!") == ["managed", "postgresql", "500", "mb"]
        assert tokenize(None) == []

    def test_exact_and_typo(self):
        assert token_similarity("database", "database") == 1.0
        assert token_similarity("databse", "database") >= 0.75

    def test_prefix(self):
        assert token_similarity("postg", "postgres") == pytest.approx(0.8)
        # Too short to count as a prefix
        assert token_similarity("po", "postgres") == 0.0

    def test_unrelated(self):
        assert token_similarity("email", "hosting") == 0.0

    def test_index_excludes_records_without_matches(self, snapshot):
        index = FuzzyIndex(snapshot.services)
        matches = index.search("serverless")
        assert [snapshot.services[m.position].name for m in matches] == ["Vercel"]
        assert 0.0 <= matches[0].distance < 1.0


class TestSearchEngine:
    """Test suite for filter, rank and fallback behaviour."""

    def test_not_ready(self):
        engine = SearchEngine()
        assert not engine.is_ready
        with pytest.raises(IndexNotReadyError):
            engine.search(SearchQuery(query="database"))
        with pytest.raises(IndexNotReadyError):
            engine.similar(None)

    def test_typo_tolerant_search(self, engine):
        results = engine.search(SearchQuery(query="databse"))
        # RedisLab only matches through its category name, so it ranks last
        assert names(results) == ["Postgres Cloud", "CockroachDB", "RedisLab"]
        assert results[0].score == results[1].score < results[2].score
        assert all(0.0 <= r.score < 1.0 for r in results)
        assert all(r.score != FALLBACK_SCORE for r in results)

    def test_partial_token_search(self, engine):
        results = engine.search(SearchQuery(query="postg"))
        assert names(results)[0] == "Postgres Cloud"
        assert results[0].matches

    def test_results_sorted_by_score(self, engine):
        results = engine.search(SearchQuery(query="free storage"))
        scores = [r.score for r in results]
        assert scores == sorted(scores)

    def test_substring_fallback(self, engine):
        """Mid-word fragments miss the fuzzy pass and use the literal fallback."""
        results = engine.search(SearchQuery(query="gres"))
        assert names(results) == ["Postgres Cloud"]
        assert results[0].score == FALLBACK_SCORE
        assert results[0].matches is None

    def test_no_match(self, engine):
        assert engine.search(SearchQuery(query="zzzzqqq")) == []

    def test_category_only(self, engine):
        results = engine.search(SearchQuery(category="Hosting"))
        assert names(results) == ["Netlify", "Vercel"]
        assert all(r.score == 0.0 for r in results)

    def test_category_substring_case_insensitive(self, engine):
        assert names(engine.search(SearchQuery(category="host"))) == ["Netlify", "Vercel"]
        assert names(engine.search(SearchQuery(category="EMAIL"))) == ["Mailer"]

    def test_tags_match_any(self, engine):
        results = engine.search(SearchQuery(tags=("serverless", "EMAIL")))
        assert names(results) == ["Vercel", "Mailer"]

    def test_filters_apply_before_ranking(self, engine):
        results = engine.search(SearchQuery(query="storage", tags=("database",)))
        assert set(names(results)) == {"Postgres Cloud", "CockroachDB"}

    def test_limit_applies_last(self, engine):
        everything = engine.search(SearchQuery(limit=50))
        assert len(everything) == 6
        assert names(engine.search(SearchQuery(limit=2))) == names(everything)[:2]

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            SearchQuery(limit=0)

    def test_tag_order_does_not_change_cache_key(self):
        assert SearchQuery(tags=["a", "b"]).cache_key == SearchQuery(tags=["b", "a"]).cache_key
        assert SearchQuery(limit=1).cache_key != SearchQuery(limit=2).cache_key

    def test_results_are_memoized(self, engine):
        first = engine.search(SearchQuery(query="hosting"))
        assert engine.stats()["cache_entries"] == 1
        second = engine.search(SearchQuery(query="hosting"))
        assert first == second
        assert engine.stats()["cache_entries"] == 1

    def test_rebuild_invalidates_cache(self, engine, snapshot):
        engine.search(SearchQuery(query="hosting"))
        engine.build_index(snapshot.services[:1])
        assert engine.stats() == {"record_count": 1, "cache_entries": 0, "cache_capacity": 100}
        assert names(engine.search(SearchQuery())) == ["Postgres Cloud"]

    def test_invalidate_cache(self, engine):
        engine.search(SearchQuery(query="hosting"))
        engine.invalidate_cache()
        assert engine.stats()["cache_entries"] == 0

    def test_result_to_dict(self, engine):
        result = engine.search(SearchQuery(query="postg"))[0]
        data = result.to_dict()
        assert data["service"]["name"] == "Postgres Cloud"
        assert data["score"] == result.score
        assert {m["field"] for m in data["matches"]} >= {"name"}


class TestSimilar:
    """Relatedness by category and shared tags."""

    def test_ranked_by_shared_tags_and_category(self, engine, services_by_name):
        similar = engine.similar(services_by_name["Postgres Cloud"])
        assert [s.name for s in similar] == ["CockroachDB", "RedisLab", "Vercel", "Mailer"]

    def test_limit(self, engine, services_by_name):
        assert [s.name for s in engine.similar(services_by_name["Postgres Cloud"], limit=1)] == ["CockroachDB"]

    def test_untagged_record_uses_category(self, engine, services_by_name):
        assert [s.name for s in engine.similar(services_by_name["Netlify"])] == ["Vercel"]

    def test_excludes_source_record(self, engine, services_by_name):
        similar = engine.similar(services_by_name["Mailer"])
        assert "Mailer" not in [s.name for s in similar]

    def test_excludes_other_records_sharing_the_name(self):
        snapshot = parse_catalog(
            "## Tools\n"
            "* [X](https://1) — api thing\n"
            "* [Y](https://3) — api other\n"
            "## More\n"
            "* [X](https://2) — api duplicate\n"
        )
        engine = SearchEngine()
        engine.build_index(snapshot.services)

        similar = engine.similar(snapshot.services[0])
        assert [s.url for s in similar] == ["https://3"]
