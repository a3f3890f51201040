"""
Integration tests for retrieval with the in-memory registry.

Tests cover:
- Retrieving a version with its references
- Writing the retrieved tree to disk
- Publish -> retrieve -> re-publish round trips
- Fetch de-duplication and the concurrency bound
- Reference cycles and missing versions
"""

import pytest

from ksrt.errors import CyclicReferenceError, NotFoundError
from ksrt.publish import PublishStatus, publish_schema
from ksrt.registry.base import RegisteredSchema
from ksrt.registry.memory import InMemoryRegistryClient
from ksrt.registry.retry import RetryPolicy
from ksrt.retrieve import RegistryRetriever, materialize
from ksrt.schema.types import ReferenceDescriptor, SchemaType

FAST = RetryPolicy(max_retries=3, retry_delay_ms=0, timeout_seconds=5.0)
PROTO = SchemaType.PROTOBUF

B_CONTENT = "package acme;\nmessage B {\n}\n"
A_CONTENT = 'import "acme/b.proto";\nmessage A {\n  acme.B b = 1;\n}\n'


class StaticRegistry:
    """Read-only registry serving a fixed set of versions."""

    def __init__(self, *schemas):
        self.schemas = {s.identity: s for s in schemas}

    async def get_latest_version(self, subject):
        versions = [s for (subj, _), s in self.schemas.items() if subj == subject]
        if not versions:
            raise NotFoundError(f"Subject '{subject}' not found", "subject", subject)
        return max(versions, key=lambda s: s.version)

    async def get_by_version(self, subject, version):
        try:
            return self.schemas[(subject, version)]
        except KeyError:
            raise NotFoundError(f"{subject} version {version} not found", "version", f"{subject}@{version}")

    async def register(self, subject, content, schema_type, references=()):
        raise NotImplementedError

    async def close(self):
        pass


def _schema(subject, version, *refs):
    return RegisteredSchema(
        subject=subject,
        version=version,
        schema_id=hash((subject, version)) & 0xFFFF,
        schema_type=PROTO,
        content="".join(f'import "{r.name}";\n' for r in refs) + f"message M{version} {{}}\n",
        references=tuple(refs),
    )


async def _registry_with_a_v3():
    """orders-value v3 references acme.B v1."""
    registry = InMemoryRegistryClient()
    await registry.register("acme.B", B_CONTENT, PROTO)
    await registry.register("orders-value", "message A {\n}\n", PROTO)
    await registry.register("orders-value", "message A {\n  int32 x = 1;\n}\n", PROTO)
    await registry.register(
        "orders-value", A_CONTENT, PROTO, [ReferenceDescriptor("acme/b.proto", "acme.B", 1)]
    )
    return registry


class TestRegistryRetriever:
    """Tests for RegistryRetriever."""

    def test_concurrency_must_be_positive(self):
        """max_concurrency below one is rejected."""
        with pytest.raises(ValueError):
            RegistryRetriever(InMemoryRegistryClient(), max_concurrency=0)

    @pytest.mark.asyncio
    async def test_version_with_reference(self):
        """Retrieving A v3 returns A v3 and B v1, linked by reference name."""
        registry = await _registry_with_a_v3()

        result = await RegistryRetriever(registry, FAST).retrieve("orders-value", 3)

        assert set(result.nodes) == {("orders-value", 3), ("acme.B", 1)}
        assert result.root.identity == ("orders-value", 3)
        assert result.root.children["acme/b.proto"].identity == ("acme.B", 1)
        assert result.fetches == 2

    @pytest.mark.asyncio
    async def test_latest_by_default(self):
        """Without a version the latest is retrieved."""
        registry = await _registry_with_a_v3()

        result = await RegistryRetriever(registry, FAST).retrieve("orders-value")

        assert result.root.version == 3
        assert registry.calls[("get_latest_version", "orders-value", None)] == 1

    @pytest.mark.asyncio
    async def test_older_version_without_references(self):
        """An older version with no references is a single node."""
        registry = await _registry_with_a_v3()

        result = await RegistryRetriever(registry, FAST).retrieve("orders-value", 1)

        assert list(result.nodes) == [("orders-value", 1)]
        assert result.root.children == {}

    @pytest.mark.asyncio
    async def test_materialized_files(self, tmp_path):
        """A v3 -> B v1 produces two files with A's import pointing at B."""
        registry = await _registry_with_a_v3()
        result = await RegistryRetriever(registry, FAST).retrieve("orders-value", 3)

        written = materialize(result, tmp_path, root_filename="order.proto")

        assert written == [tmp_path / "order.proto", tmp_path / "acme" / "b.proto"]
        assert 'import "acme/b.proto";' in (tmp_path / "order.proto").read_text()
        assert (tmp_path / "acme" / "b.proto").read_text() == B_CONTENT

    @pytest.mark.asyncio
    async def test_shared_reference_fetched_once(self):
        """A diamond fetches the shared version once."""
        d = _schema("d", 1)
        b = _schema("b", 1, ReferenceDescriptor("d.proto", "d", 1))
        c = _schema("c", 1, ReferenceDescriptor("d.proto", "d", 1))
        a = _schema("a", 1, ReferenceDescriptor("b.proto", "b", 1), ReferenceDescriptor("c.proto", "c", 1))

        calls = []
        registry = StaticRegistry(a, b, c, d)
        real_get_by_version = registry.get_by_version

        async def counting(subject, version):
            calls.append((subject, version))
            return await real_get_by_version(subject, version)

        registry.get_by_version = counting

        result = await RegistryRetriever(registry, FAST).retrieve("a", 1)

        assert sorted(calls) == [("a", 1), ("b", 1), ("c", 1), ("d", 1)]
        assert result.fetches == 4
        assert result.nodes[("b", 1)].children["d.proto"] is result.nodes[("c", 1)].children["d.proto"]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """No more than max_concurrency fetches are in flight."""

        class TrackingRegistry(InMemoryRegistryClient):
            in_flight = 0
            peak = 0

            async def get_by_version(self, subject, version):
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                try:
                    return await super().get_by_version(subject, version)
                finally:
                    self.in_flight -= 1

        registry = TrackingRegistry(latency_seconds=0.01)
        refs = []
        for i in range(6):
            await registry.register(f"dep{i}", f"message D{i} {{}}", PROTO)
            refs.append(ReferenceDescriptor(f"dep{i}.proto", f"dep{i}", 1))
        await registry.register("root", "message R {}", PROTO, refs)

        result = await RegistryRetriever(registry, FAST, max_concurrency=2).retrieve("root", 1)

        assert len(result.nodes) == 7
        assert registry.peak == 2

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self):
        """Transient failures during retrieval are retried."""
        registry = await _registry_with_a_v3()
        registry.fail_next(2)

        result = await RegistryRetriever(registry, FAST).retrieve("orders-value", 3)

        assert len(result.nodes) == 2

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        """Unknown subjects raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await RegistryRetriever(InMemoryRegistryClient(), FAST).retrieve("nope")

    @pytest.mark.asyncio
    async def test_missing_referenced_version(self):
        """A dangling reference raises NotFoundError."""
        a = _schema("a", 1, ReferenceDescriptor("b.proto", "b", 9))

        with pytest.raises(NotFoundError) as exc_info:
            await RegistryRetriever(StaticRegistry(a), FAST).retrieve("a", 1)

        assert exc_info.value.resource_id == "b@9"

    @pytest.mark.asyncio
    async def test_reference_cycle(self):
        """Reference cycles are reported with their members."""
        a = _schema("a", 1, ReferenceDescriptor("b.proto", "b", 1))
        b = _schema("b", 1, ReferenceDescriptor("c.proto", "c", 1))
        c = _schema("c", 1, ReferenceDescriptor("a.proto", "a", 1))

        with pytest.raises(CyclicReferenceError) as exc_info:
            await RegistryRetriever(StaticRegistry(a, b, c), FAST).retrieve("a", 1)

        assert exc_info.value.cycle == [("a", 1), ("b", 1), ("c", 1), ("a", 1)]


class TestRoundTrip:
    """Publish -> retrieve -> materialize -> re-publish."""

    @pytest.mark.asyncio
    async def test_republish_retrieved_tree(self, tmp_path):
        """A retrieved tree re-publishes with identical fingerprints."""
        src = tmp_path / "src"
        (src / "acme").mkdir(parents=True)
        (src / "order.proto").write_text(
            'syntax = "proto3";\n// Orders.\nimport "acme/money.proto";\n'
            "message Order { acme.Money total = 1; }\n"
        )
        (src / "acme" / "money.proto").write_text(
            'syntax = "proto3";\npackage acme;\nmessage Money { int64 units = 1; }\n'
        )
        registry = InMemoryRegistryClient()

        published = await publish_schema(registry, src / "order.proto", "orders-value", retry_policy=FAST)
        retrieved = await RegistryRetriever(registry, FAST).retrieve("orders-value")
        out = tmp_path / "out"
        materialize(retrieved, out, root_filename="order.proto")

        republished = await publish_schema(registry, out / "order.proto", "orders-value", retry_policy=FAST)

        assert republished.order == published.order
        assert set(republished.statuses.values()) == {PublishStatus.REUSED}
        for path in published.order:
            assert republished.records[path].fingerprint == published.records[path].fingerprint
            assert republished.records[path].version == published.records[path].version
