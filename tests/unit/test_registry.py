"""
Unit tests for the DocType registry.

Tests cover:
- Registration, update and unregistration
- Validation at the registry boundary
- Module lookups
- Change listeners
- Fingerprints
- Serialized concurrent mutations
"""

import asyncio

import pytest

from doctype_engine.errors import AlreadyExistsError, NotFoundError, ValidationFailedError
from doctype_engine.schema.registry import DocTypeRegistry
from doctype_engine.schema.types import DocType, field


def make_user(**kwargs):
    options = {
        "name": "User",
        "module": "Core",
        "fields": (field("email", required=True, unique=True), field("full_name")),
    }
    options.update(kwargs)
    return DocType(**options)


class TestRegistration:
    """Tests for register / update / unregister."""

    @pytest.mark.asyncio
    async def test_register_and_get(self):
        """A registered DocType is returned by get."""
        registry = DocTypeRegistry()
        stored = await registry.register(make_user())
        assert registry.get("User") is stored
        assert "User" in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_register_raw_record(self):
        """Raw dictionary records are converted."""
        registry = DocTypeRegistry()
        stored = await registry.register(
            {
                "name": "Note",
                "module": "Desk",
                "fields": [{"fieldname": "title", "label": "Title", "fieldtype": "Data"}],
                "permissions": [],
            }
        )
        assert isinstance(stored, DocType)
        assert stored.get_field("title") is not None

    @pytest.mark.asyncio
    async def test_duplicate_registration(self):
        """Registering the same name twice fails."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        with pytest.raises(AlreadyExistsError, match="already registered"):
            await registry.register(make_user())

    @pytest.mark.asyncio
    async def test_invalid_definition_rejected(self):
        """Definitions with error findings are not stored."""
        registry = DocTypeRegistry()
        with pytest.raises(ValidationFailedError) as exc_info:
            await registry.register(make_user(module=""))
        assert exc_info.value.errors[0].field == "module"
        assert registry.get("User") is None

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self):
        """A DocType without a fields list fails validation instead of raising TypeError."""
        registry = DocTypeRegistry()
        with pytest.raises(ValidationFailedError) as exc_info:
            await registry.register(DocType(name="X", module="M", fields=None))
        assert exc_info.value.errors[0].field == "fields"
        assert "X" not in registry

    @pytest.mark.asyncio
    async def test_stored_copy_is_detached(self):
        """Lists passed in are copied to tuples, so later caller edits do not leak."""
        registry = DocTypeRegistry()
        fields = [field("email", required=True)]
        stored = await registry.register(make_user(fields=fields))
        fields.append(field("phone"))

        assert isinstance(stored.fields, tuple)
        assert isinstance(stored.permissions, tuple)
        assert registry.get("User").get_fieldnames() == ["email"]

    @pytest.mark.asyncio
    async def test_update_replaces_definition(self):
        """update swaps in the new definition."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        updated = make_user(fields=(field("email"), field("phone")))
        await registry.update(updated)
        assert registry.get("User").get_fieldnames() == ["email", "phone"]

    @pytest.mark.asyncio
    async def test_update_unknown(self):
        """Updating an unregistered DocType fails."""
        registry = DocTypeRegistry()
        with pytest.raises(NotFoundError):
            await registry.update(make_user())

    @pytest.mark.asyncio
    async def test_unregister(self):
        """unregister removes the DocType and its module entry."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        removed = await registry.unregister("User")
        assert removed.name == "User"
        assert registry.get("User") is None
        assert registry.get_modules() == []
        with pytest.raises(NotFoundError):
            await registry.unregister("User")


class TestLookups:
    """Tests for module lookups and counts."""

    @pytest.mark.asyncio
    async def test_by_module(self):
        """DocTypes are grouped by module in registration order."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        await registry.register(make_user(name="Role"))
        await registry.register(make_user(name="Task", module="Projects"))

        assert [d.name for d in registry.get_by_module("Core")] == ["User", "Role"]
        assert registry.count_by_module("Projects") == 1
        assert registry.get_modules() == ["Core", "Projects"]
        assert registry.count() == 3

    @pytest.mark.asyncio
    async def test_update_moves_module(self):
        """Changing module on update moves the DocType."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        await registry.update(make_user(module="Auth"))
        assert registry.count_by_module("Core") == 0
        assert registry.count_by_module("Auth") == 1


class TestListeners:
    """Tests for change notification."""

    @pytest.mark.asyncio
    async def test_every_mutation_notifies(self):
        """Listeners receive the DocType name for each mutation."""
        registry = DocTypeRegistry()
        seen = []
        registry.add_listener(seen.append)

        await registry.register(make_user())
        await registry.update(make_user(fields=(field("email"),)))
        await registry.unregister("User")
        assert seen == ["User", "User", "User"]

    @pytest.mark.asyncio
    async def test_failed_mutation_does_not_notify(self):
        """Rejected mutations do not notify."""
        registry = DocTypeRegistry()
        seen = []
        registry.add_listener(seen.append)
        with pytest.raises(ValidationFailedError):
            await registry.register(make_user(name=""))
        assert seen == []

    @pytest.mark.asyncio
    async def test_remove_listener(self):
        """Removed listeners stop receiving names."""
        registry = DocTypeRegistry()
        seen = []
        registry.add_listener(seen.append)
        registry.remove_listener(seen.append)
        await registry.register(make_user())
        assert seen == []


class TestFingerprint:
    """Tests for fingerprint."""

    @pytest.mark.asyncio
    async def test_fingerprint_tracks_changes(self):
        """Fingerprints are stable and change with the definition."""
        registry = DocTypeRegistry()
        await registry.register(make_user())
        first = registry.fingerprint("User")
        assert first.startswith("sha256:")
        assert registry.fingerprint("User") == first

        await registry.update(make_user(fields=(field("email"),)))
        assert registry.fingerprint("User") != first

    @pytest.mark.asyncio
    async def test_registry_fingerprint_is_order_independent(self):
        """The whole-registry fingerprint ignores registration order."""
        a = DocTypeRegistry()
        await a.register(make_user())
        await a.register(make_user(name="Role"))
        b = DocTypeRegistry()
        await b.register(make_user(name="Role"))
        await b.register(make_user())
        assert a.fingerprint() == b.fingerprint()

    def test_fingerprint_unknown(self):
        """Fingerprinting an unknown DocType fails."""
        with pytest.raises(NotFoundError):
            DocTypeRegistry().fingerprint("Ghost")


class TestConcurrency:
    """Tests for serialized mutations."""

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_registration(self):
        """Exactly one of two concurrent registrations wins."""
        registry = DocTypeRegistry()
        results = await asyncio.gather(
            registry.register(make_user()),
            registry.register(make_user()),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, AlreadyExistsError)]
        assert len(errors) == 1
        assert registry.count() == 1
