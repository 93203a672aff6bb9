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

"""
Roundtrip instrumentation for the standard library `sqlite3`_ driver, enabled
with ``SQLite3RoundtripInstrumentor``.

.. _sqlite3: https://docs.python.org/3/library/sqlite3.html

Usage
-----

.. code:: python

    import sqlite3
    from opentelemetry.instrumentation.dbapi_roundtrip import TraceOption
    from opentelemetry.instrumentation.dbapi_roundtrip.sqlite import (
        SQLite3RoundtripInstrumentor,
    )

    # Call instrument() to wrap all database connections
    SQLite3RoundtripInstrumentor().instrument(
        options={TraceOption.ANNOTATE_TRACES_WITH_SQL}
    )

    cnx = sqlite3.connect(":memory:")
    cursor = cnx.cursor()
    cursor.execute("CREATE TABLE IF NOT EXISTS test (testField INTEGER)")
    cursor.execute("INSERT INTO test (testField) VALUES (123)")
    cursor.close()
    cnx.close()

.. code:: python

    import sqlite3
    from opentelemetry.instrumentation.dbapi_roundtrip.sqlite import (
        SQLite3RoundtripInstrumentor,
    )

    # Alternatively, use instrument_connection for an individual connection
    conn = sqlite3.connect(":memory:")
    instrumented_connection = (
        SQLite3RoundtripInstrumentor.instrument_connection(conn)
    )
    rows = instrumented_connection.execute("SELECT 1").fetchall()
    instrumented_connection.close()

API
---
"""

from __future__ import annotations

import sqlite3
from sqlite3 import dbapi2
from typing import Any, Collection, TypeVar, Union

from opentelemetry.instrumentation import dbapi_roundtrip
from opentelemetry.instrumentation.dbapi_roundtrip.package import _instruments
from opentelemetry.instrumentation.dbapi_roundtrip.version import __version__
from opentelemetry.instrumentation.instrumentor import BaseInstrumentor
from opentelemetry.metrics import MeterProvider
from opentelemetry.trace import TracerProvider

# No useful attributes of sqlite3 connection object
_CONNECTION_ATTRIBUTES = {}

_DATABASE_SYSTEM = "sqlite"

SQLite3Connection = TypeVar(  # pylint: disable=invalid-name
    "SQLite3Connection", bound=Union[sqlite3.Connection, None]
)


class SQLite3RoundtripInstrumentor(BaseInstrumentor):
    _TO_WRAP = [sqlite3, dbapi2]

    def instrumentation_dependencies(self) -> Collection[str]:
        return _instruments

    def _instrument(self, **kwargs: Any) -> None:
        """Integrate with SQLite3 Python library.
        https://docs.python.org/3/library/sqlite3.html
        """
        for module in self._TO_WRAP:
            dbapi_roundtrip.wrap_connect(
                __name__,
                module,
                "connect",
                _DATABASE_SYSTEM,
                _CONNECTION_ATTRIBUTES,
                version=__version__,
                tracer_provider=kwargs.get("tracer_provider"),
                meter_provider=kwargs.get("meter_provider"),
                options=kwargs.get("options"),
            )

    def _uninstrument(self, **kwargs: Any) -> None:
        """ "Disable SQLite3 instrumentation"""
        for module in self._TO_WRAP:
            dbapi_roundtrip.unwrap_connect(module, "connect")

    @staticmethod
    def instrument_connection(
        connection: SQLite3Connection,
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
        options: dbapi_roundtrip.Options = None,
    ) -> SQLite3Connection:
        """Enable instrumentation in a SQLite connection.

        Args:
            connection: The connection to instrument.
            tracer_provider: The optional tracer provider to use. If omitted
                the current globally configured one is used.
            meter_provider: The optional meter provider to use. If omitted
                the current globally configured one is used.
            options: The trace options to enable. If omitted they are read
                from the environment.

        Returns:
            An instrumented SQLite connection that supports
            telemetry for tracing database operations.

        """
        return dbapi_roundtrip.instrument_connection(
            __name__,
            connection,
            _DATABASE_SYSTEM,
            _CONNECTION_ATTRIBUTES,
            version=__version__,
            tracer_provider=tracer_provider,
            meter_provider=meter_provider,
            options=options,
        )

    @staticmethod
    def uninstrument_connection(
        connection: SQLite3Connection,
    ) -> SQLite3Connection:
        """Disable instrumentation in a SQLite connection.

        Args:
            connection: The connection to uninstrument.

        Returns:
            An uninstrumented connection.
        """
        return dbapi_roundtrip.uninstrument_connection(connection)
