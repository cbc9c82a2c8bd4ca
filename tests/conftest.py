"""Shared fixtures for the free-tier catalog test suite."""

import pytest

from indexer.search_engine import SearchEngine
from pipelines.catalog_parser import CatalogParser
from pipelines.errors import FetchError
from server.caching import CacheManager, SnapshotStore
from server.catalog_service import CatalogService

SAMPLE_README = """# free-for-dev

Developers and Open Source authors now have a massive amount of services
offering free tiers.

* [Preamble Link](https://preamble.example.com) — Not inside any section

## Table of Contents

- [Database](#database)
- [Hosting](#hosting)
- [Email](#email)

## Database

- [Postgres Cloud](https://postgres.example.com) — Managed PostgreSQL database hosting, free tier up to 500 MB storage
 * [RedisLab](https://redis.example.com) — In-memory data store. 30 MB free forever
* not a link entry
* [](https://empty.example.com) — missing name

### Relational

* [CockroachDB](https://cockroach.example.com) — Distributed SQL database, 5 GB storage free

## Hosting

* [Netlify](https://netlify.com/) — Builds, deploys and hosts your static site or app, 100 GB bandwidth/month
* [Vercel](https://vercel.com) — Serverless hosting platform for frontend frameworks — 100 deployments/day

## Email

* [Mailer](https://mailer.example.com) — Transactional email API, 10,000 requests/month free

## Empty Category

Some prose and no services at all.

## Contributing

* [Guide](https://guide.example.com) — How to contribute

## License

* [CC0](https://cc0.example.com) — Public domain
"""

UPDATED_README = """## Monitoring

* [Pinger](https://pinger.example.com) — Uptime monitoring for 5 sites
"""


class FakeFetcher:
    """Stands in for ReadmeFetcher; serves queued documents or errors."""

    def __init__(self, *documents):
        self.documents = list(documents) or [SAMPLE_README]
        self.calls = 0
        self.closed = False

    async def fetch_raw(self) -> str:
        self.calls += 1
        document = self.documents[0] if len(self.documents) == 1 else self.documents.pop(0)
        if isinstance(document, Exception):
            raise document
        return document

    async def close(self):
        self.closed = True


@pytest.fixture
def sample_readme():
    return SAMPLE_README


@pytest.fixture
def snapshot():
    return CatalogParser().parse(SAMPLE_README)


@pytest.fixture
def engine(snapshot):
    search_engine = SearchEngine()
    search_engine.build_index(snapshot.services)
    return search_engine


@pytest.fixture
def services_by_name(snapshot):
    return {service.name: service for service in snapshot.services}


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "cache")


@pytest.fixture
def cache_manager(store):
    return CacheManager(store)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def service(fetcher, cache_manager):
    return CatalogService(fetcher, cache_manager)


@pytest.fixture
def failing_fetcher():
    return FakeFetcher(FetchError("Failed to fetch content: HTTP 503", status_code=503))


@pytest.fixture
def make_fetcher():
    """Factory for fetchers serving the given documents in order."""
    return FakeFetcher


@pytest.fixture
def make_service(tmp_path):
    """Factory for services with their own cache directory."""
    def factory(fetcher, **kwargs):
        store = SnapshotStore(tmp_path / "service-cache")
        return CatalogService(fetcher, CacheManager(store), **kwargs)
    return factory


@pytest.fixture
def updated_readme():
    return UPDATED_README
