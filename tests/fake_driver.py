# Copyright The OpenTelemetry Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# pylint: disable=unused-argument, no-self-use


class MockDatabaseError(Exception):
    pass


class MockIntegrityError(MockDatabaseError):
    pass


class MockAbort(BaseException):
    pass


class MockConnection:
    def __init__(
        self, database=None, server_port=None, server_host=None, user=None
    ):
        self.database = database
        self.server_port = server_port
        self.server_host = server_host
        self.user = user
        self.closed = False
        self.commits = 0
        self.rollbacks = 0
        self.fail_with = None

    def _roundtrip(self):
        if self.fail_with is not None:
            raise self.fail_with

    def cursor(self, prepared=False):
        if prepared:
            return MockPreparedCursor(self)
        return MockCursor(self)

    def commit(self):
        self._roundtrip()
        self.commits += 1

    def rollback(self):
        self._roundtrip()
        self.rollbacks += 1

    def close(self):
        self._roundtrip()
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


class MockShortcutConnection(MockConnection):
    """Connection with the execute shortcut and cancel of sqlite3/psycopg."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cancelled = False

    def execute(self, sql, parameters=None):
        cursor = self.cursor()
        cursor.execute(sql, parameters)
        return cursor

    def cancel(self):
        self._roundtrip()
        self.cancelled = True


def mock_connect(*args, **kwargs):
    return MockConnection(
        kwargs.get("database"),
        kwargs.get("server_port"),
        kwargs.get("server_host"),
        kwargs.get("user"),
    )


class MockCursor:
    def __init__(self, connection=None):
        self.connection = connection
        self.arraysize = 1
        self.rowcount = -1
        self.description = None
        self.query = None
        self.params = None
        self.rows = []
        self.closed = False
        self.fail_with = None
        # Value handed back by execute; None like psycopg2 and mysqlclient
        self.execute_result = None
        self.input_sizes = None

    def _roundtrip(self):
        if self.fail_with is not None:
            raise self.fail_with

    def execute(self, query, params=None):
        self._roundtrip()
        self.query = query
        self.params = params
        return self.execute_result

    def executemany(self, query, seq_of_params=()):
        self._roundtrip()
        self.query = query
        self.params = list(seq_of_params)
        self.rowcount = len(self.params)

    def callproc(self, procname, params=()):
        self._roundtrip()
        self.query = procname
        return params

    def fetchone(self):
        self._roundtrip()
        if not self.rows:
            return None
        return self.rows.pop(0)

    def fetchmany(self, size=None):
        self._roundtrip()
        size = self.arraysize if size is None else size
        rows, self.rows = self.rows[:size], self.rows[size:]
        return rows

    def fetchall(self):
        self._roundtrip()
        rows, self.rows = self.rows, []
        return rows

    def nextset(self):
        self._roundtrip()
        return None

    def setinputsizes(self, sizes):
        self.input_sizes = sizes

    def close(self):
        self._roundtrip()
        self.closed = True

    def __iter__(self):
        return self

    def __next__(self):
        self._roundtrip()
        if not self.rows:
            raise StopIteration
        return self.rows.pop(0)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class MockScriptCursor(MockCursor):
    """Cursor with the sqlite3 executescript and a cancel extension."""

    def __init__(self, connection=None):
        super().__init__(connection)
        self.cancelled = False

    def executescript(self, script):
        self._roundtrip()
        self.query = script
        return self

    def cancel(self):
        self._roundtrip()
        self.cancelled = True


class MockPreparedCursor(MockCursor):
    def __init__(self, connection=None):
        super().__init__(connection)
        self.prepared = None

    def prepare(self, statement):
        self._roundtrip()
        self.prepared = statement

    def execute(self, query=None, params=None):
        return super().execute(
            self.prepared if query is None else query, params
        )


class MockBufferedCursor(MockCursor):
    """Cursor iterating over a separate row iterator like pymssql."""

    def __iter__(self):
        return iter(self.rows)
