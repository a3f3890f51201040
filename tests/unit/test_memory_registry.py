"""
Unit tests for the in-memory registry.

Tests cover:
- Version numbering and id assignment
- Idempotent registration
- Reference validation
- Fault injection and call accounting
"""

import pytest

from ksrt.errors import NotFoundError, RegistrationRejectedError, RegistryTransientError
from ksrt.registry.base import RegistryClient
from ksrt.registry.memory import InMemoryRegistryClient
from ksrt.schema.types import ReferenceDescriptor, SchemaType

PROTO = SchemaType.PROTOBUF


class TestInMemoryRegistryClient:
    """Tests for InMemoryRegistryClient."""

    @pytest.fixture
    def registry(self):
        return InMemoryRegistryClient()

    def test_implements_protocol(self, registry):
        """The in-memory registry satisfies RegistryClient."""
        assert isinstance(registry, RegistryClient)

    @pytest.mark.asyncio
    async def test_versions_start_at_one(self, registry):
        """Each subject numbers its versions from 1."""
        assert await registry.register("a", "message A {}", PROTO) == (1, 1)
        assert await registry.register("a", "message A { int32 x = 1; }", PROTO) == (2, 2)
        assert await registry.register("b", "message B {}", PROTO) == (1, 3)

    @pytest.mark.asyncio
    async def test_identical_registration_is_idempotent(self, registry):
        """Re-registering the same schema returns the existing version."""
        first = await registry.register("a", "message A {}", PROTO)
        second = await registry.register("a", "message A {}", PROTO)

        assert first == second
        assert len(registry.versions("a")) == 1

    @pytest.mark.asyncio
    async def test_same_schema_shares_id_across_subjects(self, registry):
        """Identical content under two subjects shares a schema id."""
        _, id_a = await registry.register("a", "message X {}", PROTO)
        _, id_b = await registry.register("b", "message X {}", PROTO)
        assert id_a == id_b

    @pytest.mark.asyncio
    async def test_get_latest_and_by_version(self, registry):
        """Versions can be read back individually."""
        await registry.register("a", "message A {}", PROTO)
        await registry.register("a", "message A { int32 x = 1; }", PROTO)

        latest = await registry.get_latest_version("a")
        first = await registry.get_by_version("a", 1)

        assert latest.version == 2
        assert first.content == "message A {}"
        assert first.identity == ("a", 1)

    @pytest.mark.asyncio
    async def test_missing_subject(self, registry):
        """Unknown subjects raise NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            await registry.get_latest_version("nope")
        assert exc_info.value.resource_type == "subject"

    @pytest.mark.asyncio
    async def test_missing_version(self, registry):
        """Unknown versions raise NotFoundError."""
        await registry.register("a", "message A {}", PROTO)
        with pytest.raises(NotFoundError) as exc_info:
            await registry.get_by_version("a", 2)
        assert exc_info.value.resource_id == "a@2"

    @pytest.mark.asyncio
    async def test_references_stored(self, registry):
        """References are stored with the version."""
        await registry.register("b", "message B {}", PROTO)
        ref = ReferenceDescriptor("b.proto", "b", 1)
        await registry.register("a", 'import "b.proto";', PROTO, [ref])

        assert (await registry.get_latest_version("a")).references == (ref,)

    @pytest.mark.asyncio
    async def test_reference_to_missing_version_rejected(self, registry):
        """References must point to existing versions."""
        with pytest.raises(RegistrationRejectedError) as exc_info:
            await registry.register(
                "a", 'import "b.proto";', PROTO, [ReferenceDescriptor("b.proto", "b", 1)]
            )
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_reference_name_rejected(self, registry):
        """Reference names are unique within a schema."""
        await registry.register("b", "message B {}", PROTO)
        ref = ReferenceDescriptor("b.proto", "b", 1)
        with pytest.raises(RegistrationRejectedError, match="duplicate"):
            await registry.register("a", "x", PROTO, [ref, ref])

    @pytest.mark.asyncio
    async def test_reject(self, registry):
        """reject() makes a subject refuse registrations."""
        registry.reject("a", "incompatible with version 1")
        with pytest.raises(RegistrationRejectedError, match="incompatible") as exc_info:
            await registry.register("a", "message A {}", PROTO)
        assert exc_info.value.status_code == 409
        assert registry.subjects == []

    @pytest.mark.asyncio
    async def test_fail_next(self, registry):
        """fail_next() injects transient failures for the next calls only."""
        registry.fail_next(2)
        for _ in range(2):
            with pytest.raises(RegistryTransientError):
                await registry.register("a", "message A {}", PROTO)
        assert await registry.register("a", "message A {}", PROTO) == (1, 1)

    @pytest.mark.asyncio
    async def test_call_accounting(self, registry):
        """Calls are counted per operation and subject."""
        await registry.register("a", "message A {}", PROTO)
        await registry.register("a", "message A {}", PROTO)
        await registry.get_by_version("a", 1)

        assert registry.registration_count() == 2
        assert registry.registration_count("a") == 2
        assert registry.registration_count("b") == 0
        assert registry.calls[("get_by_version", "a", 1)] == 1
