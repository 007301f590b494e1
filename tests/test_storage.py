"""Tests for the startup stores."""
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from psycopg import errors as pg_errors
from psycopg.types.json import Jsonb

from app.backend.constants import STATUS_ANALYZED, STATUS_PENDING, SUBMISSION_KEY_ALPHABET
from app.backend.schema import profile_columns, validate_profile
from app.backend.storage import (
    STARTUP_COLUMNS,
    InMemoryStartupStore,
    PostgresStartupStore,
    SubmissionKeyCollision,
    build_startup_store,
    generate_submission_key,
    normalize_database_url,
)


class TestSubmissionKeys:

    def test_key_length_and_alphabet(self):
        key = generate_submission_key()

        assert len(key) == 21
        assert set(key) <= set(SUBMISSION_KEY_ALPHABET)

    def test_alphabet_has_64_symbols(self):
        assert len(set(SUBMISSION_KEY_ALPHABET)) == 64

    def test_repeated_creation_gives_distinct_keys(self):
        store = InMemoryStartupStore()

        keys = [store.create_submission() for _ in range(200)]

        assert len(set(keys)) == 200

    def test_stubbed_generator_gives_distinct_keys(self):
        counter = iter(range(1000))
        store = InMemoryStartupStore(key_factory=lambda: f'key-{next(counter)}')

        keys = [store.create_submission() for _ in range(5)]

        assert keys == ['key-0', 'key-1', 'key-2', 'key-3', 'key-4']

    def test_collision_is_retried_once(self):
        keys = iter(['dup', 'dup', 'fresh'])
        store = InMemoryStartupStore(key_factory=lambda: next(keys))

        assert store.create_submission() == 'dup'
        assert store.create_submission() == 'fresh'

    def test_second_collision_raises(self):
        store = InMemoryStartupStore(key_factory=lambda: 'dup')
        store.create_submission()

        with pytest.raises(SubmissionKeyCollision):
            store.create_submission()
        assert len(store.list_startups()) == 1


class TestInMemoryStartupStore:

    def test_create_submission_starts_pending_and_empty(self, startup_store):
        key = startup_store.create_submission()

        record = startup_store.get_by_key(key)
        assert record.status == STATUS_PENDING
        assert record.submission_key == key
        assert record.organization_name is None
        assert record.ai_analysis is None
        assert record.analysis_error is None

    def test_get_unknown_key_returns_none(self, startup_store):
        assert startup_store.get_by_key('does-not-exist') is None

    def test_update_merges_fields(self, startup_store):
        key = startup_store.create_submission()
        startup_store.update_startup(key, profile={'organization_name': 'Acme', 'location': 'Lisbon'})

        record = startup_store.update_startup(key, profile={'location': 'Porto'})

        assert record.organization_name == 'Acme'
        assert record.location == 'Porto'

    def test_update_status_and_analysis(self, startup_store, mock_evaluation):
        key = startup_store.create_submission()

        record = startup_store.update_startup(key, ai_analysis=mock_evaluation, status=STATUS_ANALYZED)

        assert record.status == STATUS_ANALYZED
        assert record.ai_analysis == mock_evaluation

    def test_update_unknown_key_raises(self, startup_store):
        with pytest.raises(KeyError):
            startup_store.update_startup('missing', profile={'organization_name': 'Acme'})

    def test_update_rejects_unknown_columns(self, startup_store):
        key = startup_store.create_submission()

        with pytest.raises(ValueError):
            startup_store.update_startup(key, profile={'submission_key': 'hijack'})

    def test_returned_records_are_copies(self, startup_store):
        key = startup_store.create_submission()
        record = startup_store.get_by_key(key)
        record.status = 'tampered'

        assert startup_store.get_by_key(key).status == STATUS_PENDING

    def test_round_trip_matches_validated_input(self, startup_store, mock_profile_payload):
        """validate -> update -> get returns the validated values."""
        key = startup_store.create_submission()
        validation = validate_profile(mock_profile_payload)
        columns = profile_columns(validation.profile)

        startup_store.update_startup(key, profile=columns)
        record = startup_store.get_by_key(key)

        for column, value in columns.items():
            assert getattr(record, column) == value

    def test_list_returns_every_row_in_creation_order(self, startup_store):
        keys = [startup_store.create_submission() for _ in range(3)]

        records = startup_store.list_startups()

        assert [record.submission_key for record in records] == keys

    def test_persistence_layer_accepts_long_investor_lists(self, startup_store):
        key = startup_store.create_submission()
        investors = [f'Fund {i}' for i in range(8)]

        record = startup_store.update_startup(key, profile={'top_investors': investors})

        assert len(record.top_investors) == 8

    def test_users(self, startup_store):
        user = startup_store.create_user('user-1', 'owner@example.com')

        assert startup_store.get_user('user-1') == user
        assert startup_store.get_user_by_username('owner@example.com') == user
        assert startup_store.get_user_by_username('nobody@example.com') is None

    def test_duplicate_username_raises(self, startup_store):
        startup_store.create_user('user-1', 'owner@example.com')

        with pytest.raises(ValueError):
            startup_store.create_user('user-2', 'owner@example.com')


def _mock_connection(mock_connect):
    conn = MagicMock()
    cursor = MagicMock()
    mock_connect.return_value.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cursor
    return cursor


def _row(**overrides):
    values = {column: None for column in STARTUP_COLUMNS}
    values.update({
        'id': 1,
        'submission_key': 'abc',
        'status': STATUS_PENDING,
        'created_at': datetime(2025, 1, 1, tzinfo=timezone.utc),
    })
    values.update(overrides)
    return tuple(values[column] for column in STARTUP_COLUMNS)


class TestPostgresStartupStore:
    """Tests for PostgresStartupStore against a mocked psycopg connection."""

    def test_normalize_database_url(self):
        assert normalize_database_url('postgres://u:p@host/db') == 'postgresql://u:p@host/db'
        assert normalize_database_url('postgresql://u:p@host/db') == 'postgresql://u:p@host/db'

    def test_schema_is_created_on_init(self):
        with patch('app.backend.storage.psycopg.connect') as mock_connect:
            cursor = _mock_connection(mock_connect)

            PostgresStartupStore('postgres://u:p@host/db')

            statements = ' '.join(call.args[0] for call in cursor.execute.call_args_list)
            assert 'CREATE TABLE IF NOT EXISTS users' in statements
            assert 'CREATE TABLE IF NOT EXISTS startups' in statements
            assert 'submission_key TEXT NOT NULL UNIQUE' in statements
            mock_connect.assert_called_with('postgresql://u:p@host/db', autocommit=True)

    def test_create_submission_retries_once_on_unique_violation(self):
        keys = iter(['dup', 'fresh'])
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.execute.side_effect = [pg_errors.UniqueViolation('duplicate key'), None]

                store = PostgresStartupStore('postgresql://db', key_factory=lambda: next(keys))
                key = store.create_submission()

                assert key == 'fresh'
                assert cursor.execute.call_count == 2
                assert cursor.execute.call_args.args[1] == ('fresh', STATUS_PENDING)

    def test_create_submission_raises_after_second_collision(self):
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.execute.side_effect = pg_errors.UniqueViolation('duplicate key')

                store = PostgresStartupStore('postgresql://db', key_factory=lambda: 'dup')

                with pytest.raises(SubmissionKeyCollision):
                    store.create_submission()

    def test_get_unknown_key_returns_none(self):
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.fetchone.return_value = None

                store = PostgresStartupStore('postgresql://db')

                assert store.get_by_key('missing') is None

    def test_update_wraps_json_columns(self, mock_evaluation):
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.fetchone.return_value = _row(
                    organization_name='Acme',
                    industries=['fintech'],
                    status=STATUS_ANALYZED,
                    ai_analysis=mock_evaluation,
                )

                store = PostgresStartupStore('postgresql://db')
                record = store.update_startup(
                    'abc',
                    profile={'organization_name': 'Acme', 'industries': ['fintech']},
                    status=STATUS_ANALYZED,
                    ai_analysis=mock_evaluation,
                )

                query, values = cursor.execute.call_args.args
                assert query.startswith('UPDATE startups SET organization_name = %s, industries = %s')
                assert 'RETURNING' in query
                assert values[0] == 'Acme'
                assert isinstance(values[1], Jsonb)
                assert values[2] == STATUS_ANALYZED
                assert isinstance(values[3], Jsonb)
                assert values[-1] == 'abc'
                assert record.organization_name == 'Acme'
                assert record.ai_analysis == mock_evaluation

    def test_update_unknown_key_raises(self):
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.fetchone.return_value = None

                store = PostgresStartupStore('postgresql://db')

                with pytest.raises(KeyError):
                    store.update_startup('missing', analysis_error='boom')

    def test_json_text_columns_are_decoded(self):
        with patch.object(PostgresStartupStore, '_ensure_schema'):
            with patch('app.backend.storage.psycopg.connect') as mock_connect:
                cursor = _mock_connection(mock_connect)
                cursor.fetchone.return_value = _row(top_investors='["Seedcamp"]')

                store = PostgresStartupStore('postgresql://db')

                assert store.get_by_key('abc').top_investors == ['Seedcamp']


class TestBuildStartupStore:

    def test_memory_store_without_database_url(self, monkeypatch):
        monkeypatch.delenv('DATABASE_URL', raising=False)

        assert build_startup_store().storage_name == 'memory'

    def test_postgres_store_with_database_url(self, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', 'postgres://u:p@host/db')

        with patch.object(PostgresStartupStore, '_ensure_schema'):
            store = build_startup_store()

        assert store.storage_name == 'postgres'
