from __future__ import annotations

import datetime as _dt
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from taskgen.errors import HistoryFetchError, HistoryNotFoundError, HistoryTimeoutError
from taskgen.history import (
    EvergreenHistoryProvider,
    FileHistoryProvider,
    MalformedRecord,
    parse_record,
    parse_timestamp,
)
from taskgen.models import HistoryRecord

_NOW = _dt.datetime(2024, 5, 15, 12, 0, tzinfo=_dt.timezone.utc)


class ParseRecordTests(unittest.TestCase):
    def test_parses_plain_shape(self) -> None:
        record = parse_record({"test_id": "a.js", "duration": "2.5", "timestamp": "2024-05-01T10:00:00Z", "status": "fail"})
        self.assertEqual(record.test_id, "a.js")
        self.assertEqual(record.duration_secs, 2.5)
        self.assertEqual(record.timestamp, _dt.datetime(2024, 5, 1, 10, tzinfo=_dt.timezone.utc))
        self.assertFalse(record.succeeded)

    def test_parses_test_stats_shape_and_hooks(self) -> None:
        record = parse_record({"test_file": "a.js:ValidateCollections", "avg_duration_pass": 3, "date": "2024-05-01"})
        self.assertEqual(record.test_id, "a.js")
        self.assertEqual(record.hook, "ValidateCollections")
        self.assertTrue(record.succeeded)

    def test_rejects_bad_values(self) -> None:
        for raw in (
            {"test_id": "a.js", "duration": -1, "timestamp": "2024-05-01"},
            {"test_id": "a.js", "duration": "slow", "timestamp": "2024-05-01"},
            {"test_id": "a.js", "duration": True, "timestamp": "2024-05-01"},
            {"test_id": "a.js", "duration": 1, "timestamp": "not-a-date"},
            {"test_id": "a.js", "duration": float("nan"), "timestamp": "2024-05-01"},
        ):
            with self.assertRaises(MalformedRecord, msg=repr(raw)):
                parse_record(raw)

    def test_normalizes_record_instances(self) -> None:
        naive = HistoryRecord("a.js", 1.0, _dt.datetime(2024, 5, 1))
        self.assertEqual(parse_record(naive).timestamp.tzinfo, _dt.timezone.utc)

    def test_epoch_timestamps(self) -> None:
        self.assertEqual(parse_timestamp(0), _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc))


class EvergreenHistoryProviderTests(unittest.TestCase):
    def _provider(self, session: mock.Mock) -> EvergreenHistoryProvider:
        return EvergreenHistoryProvider(
            "https://evergreen.example.com/",
            api_user="alice",
            api_key="secret",
            session=session,
            clock=lambda: _NOW,
        )

    def _session(self, response: mock.Mock) -> mock.Mock:
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        session.get.return_value = response
        return session

    def test_builds_query_and_maps_rows(self) -> None:
        response = mock.Mock(status_code=200)
        response.json.return_value = [
            {"test_file": "jstests/core/a.js", "avg_duration_pass": 12.5, "date": "2024-05-10"},
        ]
        session = self._session(response)
        records = self._provider(session).fetch("mongo", "linux", "core", _dt.timedelta(days=14), timeout=5.0)

        self.assertEqual(session.headers["Api-User"], "alice")
        self.assertEqual(session.headers["Api-Key"], "secret")
        url = session.get.call_args.args[0]
        kwargs = session.get.call_args.kwargs
        self.assertEqual(url, "https://evergreen.example.com/rest/v2/projects/mongo/test_stats")
        self.assertEqual(kwargs["timeout"], 5.0)
        self.assertEqual(
            kwargs["params"],
            {
                "after_date": "2024-05-01",
                "before_date": "2024-05-15",
                "group_num_days": 14,
                "variants": "linux",
                "tasks": "core",
            },
        )
        self.assertEqual(records[0]["test_id"], "jstests/core/a.js")
        self.assertEqual(parse_record(records[0]).duration_secs, 12.5)

    def test_not_found(self) -> None:
        session = self._session(mock.Mock(status_code=404))
        with self.assertRaises(HistoryNotFoundError) as ctx:
            self._provider(session).fetch("mongo", "linux", "core", _dt.timedelta(days=1))
        self.assertEqual(ctx.exception.suite, "core")

    def test_timeout(self) -> None:
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        session.get.side_effect = requests.Timeout("slow")
        with self.assertRaises(HistoryTimeoutError):
            self._provider(session).fetch("mongo", "linux", "core", _dt.timedelta(days=1))

    def test_server_error(self) -> None:
        response = mock.Mock(status_code=500)
        response.raise_for_status.side_effect = requests.HTTPError("boom")
        with self.assertRaises(HistoryFetchError):
            self._provider(self._session(response)).fetch("mongo", "linux", "core", _dt.timedelta(days=1))


class FileHistoryProviderTests(unittest.TestCase):
    def test_reads_suite_records(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "history.json"
            path.write_text(json.dumps({"core": [{"test_id": "a.js", "duration": 1, "timestamp": "2024-05-01"}]}))
            provider = FileHistoryProvider(path)
            records = provider.fetch("mongo", "linux", "core", _dt.timedelta(days=14))
            self.assertEqual(len(records), 1)
            with self.assertRaises(HistoryNotFoundError):
                provider.fetch("mongo", "linux", "other", _dt.timedelta(days=14))

    def test_unreadable_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            provider = FileHistoryProvider(Path(tmp) / "missing.json")
            with self.assertRaises(HistoryFetchError):
                provider.fetch("mongo", "linux", "core", _dt.timedelta(days=14))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
