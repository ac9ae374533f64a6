"""Tests for strongbox.records.store — in-memory DAL, real cipher and policy."""

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from strongbox.context import Caller
from strongbox.encryption import EncryptionService, LocalCipher
from strongbox.errors import Forbidden, InvalidInput, NotFound
from strongbox.history.engine import VersioningEngine
from strongbox.history.models import ChangeKind
from strongbox.policy.engine import PolicyEngine
from strongbox.records.models import (
    ApiKeyPayload,
    PasswordPayload,
    SecretChanges,
    SecretDraft,
    SecretKind,
)
from strongbox.records.store import SecretRecordStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

OWNER = Caller("olga", "sec_mgr")
DEV = Caller("dave", "dev")
BOT = Caller("robo", "bot")


@pytest.fixture
def encryption():
    return EncryptionService(LocalCipher(os.urandom(32)))


@pytest.fixture
def grants():
    g = MagicMock()
    g.check_access.return_value = None
    g.record_access.return_value = set()
    g.valid_record_ids.return_value = set()
    return g


@pytest.fixture
def store(memory_store, fake_db, encryption, grants):
    factory, _, _ = fake_db
    policy = PolicyEngine()
    policy.load()
    versions = VersioningEngine(
        policy, encryption, grants=grants, clock=lambda: T0, connection_factory=factory
    )
    return SecretRecordStore(
        encryption,
        policy,
        grants,
        versions,
        auditor=MagicMock(),
        clock=lambda: T0,
        connection_factory=factory,
    )


def _draft(**kw) -> SecretDraft:
    base = dict(
        name="prod-db",
        kind=SecretKind.PASSWORD,
        tags=["db", " prod ", "db"],
        payload=PasswordPayload(username="app", password="hunter2"),
    )
    base.update(kw)
    return SecretDraft(**base)


class TestCreate:
    def test_create_seals_payload(self, store, memory_store):
        view = store.create(OWNER, _draft())
        assert view.version == 1
        assert view.has_access
        assert view.payload.password == "hunter2"
        assert view.tags == ["db", "prod"]
        stored = memory_store.records[view.id]
        assert stored.sealed_payload.startswith("aes:")
        assert "hunter2" not in stored.sealed_payload

    def test_create_snapshots_v1(self, store, memory_store):
        view = store.create(OWNER, _draft())
        [snap] = memory_store.versions[view.id]
        assert snap.version == 1
        assert snap.change_kind == ChangeKind.CREATED
        assert snap.actor == "olga"

    def test_dev_cannot_create(self, store):
        with pytest.raises(Forbidden):
            store.create(DEV, _draft())

    def test_audited(self, store):
        view = store.create(OWNER, _draft())
        store._auditor.log.assert_called_once_with("olga", "secret.create", "secret", view.id)


class TestUpdate:
    def test_bumps_version_and_snapshots(self, store, memory_store):
        view = store.create(OWNER, _draft())
        updated = store.update(
            OWNER, view.id, SecretChanges(description="rotated", reason="quarterly")
        )
        assert updated.version == 2
        assert updated.description == "rotated"
        snaps = memory_store.versions[view.id]
        assert [s.version for s in snaps] == [1, 2]
        assert snaps[-1].change_kind == ChangeKind.UPDATED
        assert snaps[-1].change_reason == "quarterly"

    def test_payload_reseals(self, store, memory_store):
        view = store.create(OWNER, _draft())
        before = memory_store.records[view.id].sealed_payload
        updated = store.update(
            OWNER, view.id, SecretChanges(payload=PasswordPayload(password="correct-horse"))
        )
        assert updated.payload.password == "correct-horse"
        assert memory_store.records[view.id].sealed_payload != before

    def test_clear_expiry(self, store):
        view = store.create(OWNER, _draft(expires_at=T0 + timedelta(days=30)))
        updated = store.update(OWNER, view.id, SecretChanges(expires_at=None))
        assert updated.expires_at is None

    def test_nothing_to_update(self, store):
        view = store.create(OWNER, _draft())
        with pytest.raises(InvalidInput):
            store.update(OWNER, view.id, SecretChanges(reason="just because"))

    def test_kind_mismatch(self, store, memory_store):
        view = store.create(OWNER, _draft())
        with pytest.raises(InvalidInput):
            store.update(OWNER, view.id, SecretChanges(payload=ApiKeyPayload(api_key="k")))
        assert memory_store.records[view.id].version == 1

    @pytest.mark.parametrize("editor", [Caller("sam", "sec_mgr"), Caller("root", "super_admin")])
    def test_colleague_may_update(self, store, memory_store, editor):
        view = store.create(OWNER, _draft())
        updated = store.update(editor, view.id, SecretChanges(description="rotated"))
        assert updated.version == 2
        assert updated.updated_by == editor.subject_id
        assert memory_store.versions[view.id][-1].actor == editor.subject_id

    def test_role_without_update_forbidden(self, store, memory_store):
        view = store.create(OWNER, _draft())
        with pytest.raises(Forbidden):
            store.update(DEV, view.id, SecretChanges(description="mine now"))
        assert len(memory_store.versions[view.id]) == 1

    def test_missing(self, store):
        with pytest.raises(NotFound):
            store.update(OWNER, "nope", SecretChanges(description="x"))


class TestDelete:
    def test_soft_delete(self, store, memory_store):
        view = store.create(OWNER, _draft())
        store.delete(OWNER, view.id, "retired")
        rec = memory_store.records[view.id]
        assert rec.deleted_at == T0
        assert rec.version == 2
        assert memory_store.versions[view.id][-1].change_kind == ChangeKind.DELETED
        with pytest.raises(NotFound):
            store.get(OWNER, view.id)

    def test_super_admin_deletes_any(self, store, memory_store):
        view = store.create(OWNER, _draft())
        store.delete(Caller("root", "super_admin"), view.id)
        assert memory_store.records[view.id].deleted_at == T0

    def test_dev_cannot_delete(self, store, memory_store):
        view = store.create(OWNER, _draft())
        with pytest.raises(Forbidden):
            store.delete(DEV, view.id)
        assert memory_store.records[view.id].deleted_at is None


class TestGet:
    def test_owner_reads_payload(self, store, grants):
        view = store.create(OWNER, _draft())
        got = store.get(OWNER, view.id)
        assert got.payload.password == "hunter2"
        grants.check_access.assert_not_called()

    def test_grantee_reads_payload(self, store, grants):
        view = store.create(OWNER, _draft())
        grants.check_access.return_value = MagicMock()
        got = store.get(DEV, view.id)
        assert got.has_access
        assert got.payload.password == "hunter2"
        grants.check_access.assert_called_once_with(view.id, "dave")

    def test_no_grant_forbidden(self, store):
        view = store.create(OWNER, _draft())
        with pytest.raises(Forbidden) as exc:
            store.get(DEV, view.id)
        assert "hunter2" not in str(exc.value)

    def test_role_without_read(self, store):
        view = store.create(OWNER, _draft())
        with pytest.raises(Forbidden):
            store.get(BOT, view.id)


class TestList:
    def test_payload_only_where_allowed(self, store, grants):
        mine = store.create(OWNER, _draft(name="a"))
        granted = store.create(OWNER, _draft(name="b"))
        store.create(OWNER, _draft(name="c"))
        grants.record_access.return_value = {granted.id}

        page = store.list(DEV)
        assert page.total == 3
        by_name = {v.name: v for v in page.items}
        assert by_name["b"].has_access
        assert by_name["b"].payload is not None
        assert not by_name["a"].has_access
        assert by_name["a"].payload is None
        assert not by_name["c"].has_access
        assert mine.id in grants.record_access.call_args.args[1]

    def test_owner_sees_all_payloads(self, store, grants):
        store.create(OWNER, _draft(name="a"))
        page = store.list(OWNER)
        assert all(v.has_access for v in page.items)
        grants.record_access.assert_not_called()

    def test_list_accessible_metadata_only(self, store, grants):
        a = store.create(OWNER, _draft(name="a"))
        store.create(OWNER, _draft(name="b"))
        grants.valid_record_ids.return_value = {a.id}
        page = store.list_accessible(DEV)
        assert [v.name for v in page.items] == ["a"]
        assert page.items[0].payload is None

    def test_list_accessible_empty(self, store):
        page = store.list_accessible(DEV)
        assert page.items == []
        assert page.total == 0
        store._auditor.log.assert_called_once_with("dave", "secret.list_accessible", "secret", None)
