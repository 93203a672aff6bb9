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
Roundtrip tracing and metrics for libraries that follow the Python Database
API Specification v2.0.
`<https://www.python.org/dev/peps/pep-0249/>`_

Every call that makes the driver do real work (executing statements,
committing, closing cursors and connections, cancelling, and optionally
fetching rows) produces one ``CLIENT`` span named after the DB-API member,
e.g. ``Statement.execute`` or ``Connection.commit``, and one measurement of
the ``db.client.roundtrip.duration`` histogram and ``db.client.roundtrip.calls``
counter. Driver return values and exceptions reach the caller unchanged.

Usage
-----

.. code-block:: python

    import mysql.connector

    from opentelemetry.instrumentation.dbapi_roundtrip import (
        TraceOption,
        instrument_connection,
        wrap_connect,
    )

    # Wrap every connection returned by mysql.connector.connect
    wrap_connect(
        __name__,
        mysql.connector,
        "connect",
        "mysql",
        options={TraceOption.ANNOTATE_TRACES_WITH_SQL},
    )

    # Or instrument a single connection
    cnx = instrument_connection(
        __name__, mysql.connector.connect(database="test"), "mysql"
    )
    cursor = cnx.cursor()
    cursor.execute("SELECT 1")
    cursor.fetchall()
    cursor.close()
    cnx.close()

Configuration
-------------

Trace options are fixed for a connection when it is instrumented and are
inherited by every cursor created from it:

* ``TraceOption.ANNOTATE_TRACES_WITH_SQL`` sets the ``db.statement`` span
  attribute of query-bearing calls to the query text.
* ``TraceOption.TRACK_RESULT_SET_FETCH`` traces ``fetchone``, ``fetchmany``,
  ``fetchall``, ``scroll`` and row iteration as roundtrips.

When no ``options`` are passed they are read from the
``OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS`` environment variable, e.g.
``OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS=annotate_traces_with_sql``.

API
---
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Union

import wrapt
from wrapt import wrap_function_wrapper

from opentelemetry.instrumentation.dbapi_roundtrip.observability import (
    Observability,
    TrackingOperation,
)
from opentelemetry.instrumentation.dbapi_roundtrip.options import TraceOption
from opentelemetry.instrumentation.dbapi_roundtrip.proxy import (
    ConnectionT,
    TracedConnection,
    TracedPreparedStatement,
    TracedResultSet,
    TracedStatement,
    wrap_connection,
)
from opentelemetry.instrumentation.dbapi_roundtrip.version import __version__
from opentelemetry.instrumentation.utils import unwrap
from opentelemetry.metrics import MeterProvider
from opentelemetry.trace import TracerProvider

_logger = logging.getLogger(__name__)

Options = Union[str, Iterable[Union[TraceOption, str]], None]


def wrap_connect(
    name: str,
    connect_module: Callable[..., Any],
    connect_method_name: str,
    database_system: str,
    connection_attributes: dict[str, str] | None = None,
    version: str = "",
    tracer_provider: TracerProvider | None = None,
    meter_provider: MeterProvider | None = None,
    options: Options = None,
):
    """Integrate with DB API library.
    https://www.python.org/dev/peps/pep-0249/

    Args:
        name: The instrumentation module name.
        connect_module: Module name where connect method is available.
        connect_method_name: The connect method name.
        database_system: An identifier for the database management system (DBMS)
            product being used.
        connection_attributes: Attribute names for database, port, host and
            user in Connection object.
        tracer_provider: The :class:`opentelemetry.trace.TracerProvider` to
            use. If omitted the current configured one is used.
        meter_provider: The :class:`opentelemetry.metrics.MeterProvider` to
            use. If omitted the current configured one is used.
        options: The :class:`TraceOption` members to enable. If omitted they
            are read from ``OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS``.
    """

    # pylint: disable=unused-argument
    def wrap_connect_(
        wrapped: Callable[..., Any],
        instance: Any,
        args: tuple[Any, ...],
        kwargs: dict[Any, Any],
    ):
        observability = Observability(
            name,
            database_system,
            connection_attributes=connection_attributes,
            version=version,
            tracer_provider=tracer_provider,
            meter_provider=meter_provider,
            options=options,
        )
        connection = wrapped(*args, **kwargs)
        observability.get_connection_attributes(connection)
        return wrap_connection(connection, observability)

    try:
        wrap_function_wrapper(
            connect_module, connect_method_name, wrap_connect_
        )
    except Exception as ex:  # pylint: disable=broad-except
        _logger.warning("Failed to integrate with DB API. %s", str(ex))


def unwrap_connect(
    connect_module: Callable[..., Any], connect_method_name: str
):
    """Disable integration with DB API library.
    https://www.python.org/dev/peps/pep-0249/

    Args:
        connect_module: Module name where the connect method is available.
        connect_method_name: The connect method name.
    """
    unwrap(connect_module, connect_method_name)


def instrument_connection(
    name: str,
    connection: ConnectionT | TracedConnection[ConnectionT],
    database_system: str,
    connection_attributes: dict[str, str] | None = None,
    version: str = "",
    tracer_provider: TracerProvider | None = None,
    meter_provider: MeterProvider | None = None,
    options: Options = None,
) -> TracedConnection[ConnectionT]:
    """Enable instrumentation in a database connection.

    Args:
        name: The instrumentation module name.
        connection: The connection to instrument.
        database_system: An identifier for the database management system (DBMS)
            product being used.
        connection_attributes: Attribute names for database, port, host and
            user in a connection object.
        tracer_provider: The :class:`opentelemetry.trace.TracerProvider` to
            use. If omitted the current configured one is used.
        meter_provider: The :class:`opentelemetry.metrics.MeterProvider` to
            use. If omitted the current configured one is used.
        options: The :class:`TraceOption` members to enable. If omitted they
            are read from ``OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS``.

    Returns:
        An instrumented connection.
    """
    if isinstance(connection, wrapt.ObjectProxy):
        _logger.warning("Connection already instrumented")
        return connection

    observability = Observability(
        name,
        database_system,
        connection_attributes=connection_attributes,
        version=version,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        options=options,
    )
    observability.get_connection_attributes(connection)
    return wrap_connection(connection, observability)


def uninstrument_connection(
    connection: ConnectionT | TracedConnection[ConnectionT],
) -> ConnectionT:
    """Disable instrumentation in a database connection.

    Args:
        connection: The connection to uninstrument.

    Returns:
        An uninstrumented connection.
    """
    if isinstance(connection, wrapt.ObjectProxy):
        return connection.__wrapped__

    _logger.warning("Connection is not instrumented")
    return connection


__all__ = [
    "Observability",
    "TraceOption",
    "TracedConnection",
    "TracedPreparedStatement",
    "TracedResultSet",
    "TracedStatement",
    "TrackingOperation",
    "__version__",
    "instrument_connection",
    "uninstrument_connection",
    "unwrap_connect",
    "wrap_connect",
]
