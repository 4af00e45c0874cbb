"""Tests for daemon payload parsing and records"""

import dataclasses

import pytest

from snapman.core.errors import (ChangeFailedError, DaemonError, NOT_FOUND_KIND,
                                 OperationInProgressError, PackageNotFoundError,
                                 PreconditionError)
from snapman.core.models import (AsyncValue, CatalogInfo, ChangeRecord,
                                 Confinement, LocalInfo, Lookup, LookupStatus,
                                 PackageRecord, ValueStatus)


class TestParsing:
    """Tests for building models from snapd JSON."""

    def test_change_from_dict(self):
        change = ChangeRecord.from_dict({
            'id': 42, 'kind': 'install-snap', 'summary': 'Install "foo" snap',
            'status': 'Doing', 'ready': False,
            'tasks': [
                {'progress': {'label': '', 'done': 1, 'total': 1}},
                {'progress': {'label': '', 'done': 0, 'total': 1}},
            ],
        })
        assert change.id == '42'
        assert change.kind == 'install-snap'
        assert not change.ready
        assert change.error is None
        assert change.progress == 0.5

    def test_change_error(self):
        change = ChangeRecord.from_dict({'id': '7', 'ready': True, 'err': 'boom'})
        assert change.ready
        assert change.error == 'boom'
        assert change.tasks == ()

    def test_local_info_falls_back_to_channel(self):
        info = LocalInfo.from_dict({'name': 'foo', 'channel': 'stable'})
        assert info.tracking_channel == 'stable'
        assert info.confinement is Confinement.STRICT

    def test_unknown_confinement(self):
        assert Confinement.parse('weird') is Confinement.STRICT
        assert Confinement.parse(None) is Confinement.STRICT

    def test_catalog_without_default_track(self):
        catalog = CatalogInfo.from_dict({'name': 'foo', 'channels': {
            'latest/stable': {'confinement': 'classic', 'revision': 3},
        }})
        assert catalog.default_channel == 'latest/stable'
        assert catalog.channels['latest/stable'].revision == '3'

    def test_catalog_default_missing(self):
        catalog = CatalogInfo.from_dict({'name': 'foo', 'channels': {
            'latest/edge': {},
        }})
        assert catalog.default_channel is None


class TestRecords:
    """Tests for lookup results and package records."""

    def test_lookup_variants(self):
        assert Lookup.found(1).is_found
        assert Lookup.not_found().status is LookupStatus.NOT_FOUND
        failed = Lookup.failed(DaemonError("x"))
        assert failed.is_error
        assert failed.value is None

    def test_record_is_immutable(self):
        record = PackageRecord('foo')
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.selected_channel = 'latest/edge'

        changed = record.copy_with(active_change_id='3')
        assert changed.active_change_id == '3'
        assert record.active_change_id is None

    def test_selected_channel_info(self):
        catalog = CatalogInfo.from_dict({'name': 'foo', 'channels': {
            'latest/stable': {'confinement': 'strict'},
        }})
        record = PackageRecord('foo', catalog_info=catalog,
                               selected_channel='latest/stable')
        assert record.selected_channel_info.confinement is Confinement.STRICT
        assert record.copy_with(selected_channel='x').selected_channel_info is None

    def test_async_value(self):
        assert AsyncValue.loading().is_loading
        value = AsyncValue.data(PackageRecord('foo'))
        assert value.has_value
        assert AsyncValue.failure(PackageNotFoundError('foo')).status is ValueStatus.ERROR


class TestErrors:
    """Tests for error messages and attributes."""

    def test_not_found_kind(self):
        assert DaemonError("gone", kind=NOT_FOUND_KIND).is_not_found
        assert not DaemonError("denied", kind="login-required").is_not_found

    def test_change_failed_message(self):
        err = ChangeFailedError('7', 'boom')
        assert str(err) == 'boom'
        assert err.change_id == '7'

    def test_precondition_message(self):
        err = PreconditionError('install', 'foo', 'not loaded')
        assert str(err) == 'Cannot install foo: not loaded'

    def test_in_progress_is_precondition(self):
        err = OperationInProgressError('refresh', 'foo', '42')
        assert isinstance(err, PreconditionError)
        assert '42' in str(err)
