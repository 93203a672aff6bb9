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
Proxies for DB-API connection and cursor objects.

Every proxy wraps exactly one driver object. Members the proxy does not
override are forwarded to the driver object untouched. Roundtrip members run
inside a :class:`~opentelemetry.instrumentation.dbapi_roundtrip.observability.TrackingOperation`,
and driver objects they return are wrapped again so that the whole
connection -> cursor -> rows chain stays instrumented.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Generic, TypeVar

import wrapt

from opentelemetry.instrumentation.dbapi_roundtrip.observability import (
    Observability,
)
from opentelemetry.instrumentation.utils import is_instrumentation_enabled

ConnectionT = TypeVar("ConnectionT")
CursorT = TypeVar("CursorT")

_STATEMENT_KEYWORDS = ("operation", "query", "sql", "statement", "procname")

_VALUE_TYPES = (str, bytes, bytearray, int, float, bool, tuple, list, dict)

_EXHAUSTED = object()


def get_statement_arg(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
    if args:
        return args[0]
    for keyword in _STATEMENT_KEYWORDS:
        if keyword in kwargs:
            return kwargs[keyword]
    return None


def _is_cursor(value: Any) -> bool:
    if value is None or isinstance(value, _VALUE_TYPES):
        return False
    return callable(getattr(value, "fetchone", None))


class _TracedProxy(wrapt.ObjectProxy):
    # Name prefix of the operations created by this proxy
    _kind = ""
    # Driver extension methods traced when the driver has them, mapped to
    # whether their first argument is query text
    _traced_extensions: dict[str, bool] = {}

    def __init__(self, wrapped: Any, observability: Observability):
        wrapt.ObjectProxy.__init__(self, wrapped)
        self._self_observability = observability
        self._self_extensions: dict[str, Callable[..., Any]] = {}

    def __getattr__(self, name: str):
        value = super().__getattr__(name)
        if name not in self._traced_extensions or not callable(value):
            return value
        traced = self._self_extensions.get(name)
        if traced is None:

            @functools.wraps(value)
            def traced_extension(*args: Any, **kwargs: Any):
                return self._traced_extension(name, value, args, kwargs)

            traced = self._self_extensions[name] = traced_extension
        return traced

    def _traced_extension(
        self,
        name: str,
        method: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ):
        statement = None
        if self._traced_extensions[name]:
            statement = get_statement_arg(args, kwargs)
        return self._wrap_result(
            self._traced_call(name, method, args, kwargs, statement)
        )

    def _traced_call(
        self,
        method: str,
        query_method: Callable[..., Any],
        args: tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
        statement: Any = None,
    ):
        kwargs = kwargs or {}
        if not is_instrumentation_enabled():
            return query_method(*args, **kwargs)

        observability = self._self_observability
        operation = observability.create_tracking_operation(
            f"{self._kind}.{method}",
            observability.annotate_spans_with_sql,
            statement,
        )
        try:
            with operation.activate():
                try:
                    return query_method(*args, **kwargs)
                except Exception as exc:
                    operation.record_exception(exc)
                    raise
        finally:
            operation.close()

    def _wrap_result(self, result: Any):
        return wrap_result(result, self)

    def __enter__(self):
        self.__wrapped__.__enter__()
        return self


# pylint: disable=abstract-method
class TracedConnection(_TracedProxy, Generic[ConnectionT]):
    _kind = "Connection"
    _traced_extensions = {
        "cancel": False,
        "execute": True,
        "executemany": True,
        "executescript": True,
    }

    def cursor(self, *args: Any, **kwargs: Any):
        cursor = self.__wrapped__.cursor(*args, **kwargs)
        if kwargs.get("prepared"):
            return wrap_prepared_statement(
                cursor, self._self_observability, connection=self
            )
        return wrap_statement(
            cursor, self._self_observability, connection=self
        )

    def commit(self, *args: Any, **kwargs: Any):
        return self._traced_call(
            "commit", self.__wrapped__.commit, args, kwargs
        )

    def rollback(self, *args: Any, **kwargs: Any):
        return self._traced_call(
            "rollback", self.__wrapped__.rollback, args, kwargs
        )

    def close(self, *args: Any, **kwargs: Any):
        return self._traced_call("close", self.__wrapped__.close, args, kwargs)

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any):
        # The driver ends the transaction on exit
        method = "commit" if exc_type is None else "rollback"
        return self._traced_call(
            method,
            self.__wrapped__.__exit__,
            (exc_type, exc_value, traceback),
        )

    def _wrap_result(self, result: Any):
        # Connection level shortcuts hand out fresh cursors
        if _is_cursor(result):
            return wrap_statement(
                result, self._self_observability, connection=self
            )
        return result


# pylint: disable=abstract-method
class TracedResultSet(_TracedProxy, Generic[CursorT]):
    _kind = "ResultSet"

    def __init__(self, cursor: CursorT, observability: Observability):
        super().__init__(cursor, observability)
        self._self_iterator = None

    def _traced_fetch(
        self,
        method: str,
        query_method: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ):
        if not self._self_observability.track_result_set_fetch:
            return query_method(*args, **kwargs)
        return self._traced_call(method, query_method, args, kwargs)

    def fetchone(self, *args: Any, **kwargs: Any):
        return self._traced_fetch(
            "fetchone", self.__wrapped__.fetchone, args, kwargs
        )

    def fetchmany(self, *args: Any, **kwargs: Any):
        return self._traced_fetch(
            "fetchmany", self.__wrapped__.fetchmany, args, kwargs
        )

    def fetchall(self, *args: Any, **kwargs: Any):
        return self._traced_fetch(
            "fetchall", self.__wrapped__.fetchall, args, kwargs
        )

    def scroll(self, *args: Any, **kwargs: Any):
        return self._traced_fetch(
            "scroll", self.__wrapped__.scroll, args, kwargs
        )

    def nextset(self, *args: Any, **kwargs: Any):
        return self._wrap_result(
            self._traced_call(
                "nextset", self.__wrapped__.nextset, args, kwargs
            )
        )

    def close(self, *args: Any, **kwargs: Any):
        return self._traced_call("close", self.__wrapped__.close, args, kwargs)

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any):
        # Cursors close themselves on exit
        return self._traced_call(
            "close",
            self.__wrapped__.__exit__,
            (exc_type, exc_value, traceback),
        )

    def __iter__(self):
        if not self._self_observability.track_result_set_fetch:
            return wrap_result(iter(self.__wrapped__), self)
        self._self_iterator = iter(self.__wrapped__)
        return self

    def __next__(self):
        if not self._self_observability.track_result_set_fetch:
            return next(self.__wrapped__)
        if self._self_iterator is None:
            self._self_iterator = iter(self.__wrapped__)
        # Exhaustion is signalled through the default so it is not
        # recorded as a failure
        row = self._traced_call("next", next, (self._self_iterator, _EXHAUSTED))
        if row is _EXHAUSTED:
            raise StopIteration
        return row


# pylint: disable=abstract-method
class TracedStatement(TracedResultSet[CursorT]):
    _kind = "Statement"
    _traced_extensions = {
        "callfunc": True,
        "cancel": False,
        "executescript": True,
    }

    def __init__(
        self,
        cursor: CursorT,
        observability: Observability,
        connection: TracedConnection | None = None,
    ):
        super().__init__(cursor, observability)
        self._self_connection = connection

    @property
    def connection(self):
        connection = self.__wrapped__.connection
        parent = self._self_connection
        if parent is not None and parent.__wrapped__ is connection:
            return parent
        if connection is None:
            return None
        return wrap_connection(connection, self._self_observability)

    def _statement_for(
        self, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        return get_statement_arg(args, kwargs)

    def execute(self, *args: Any, **kwargs: Any):
        return self._wrap_result(
            self._traced_call(
                "execute",
                self.__wrapped__.execute,
                args,
                kwargs,
                self._statement_for(args, kwargs),
            )
        )

    def executemany(self, *args: Any, **kwargs: Any):
        return self._wrap_result(
            self._traced_call(
                "executemany",
                self.__wrapped__.executemany,
                args,
                kwargs,
                self._statement_for(args, kwargs),
            )
        )

    def callproc(self, *args: Any, **kwargs: Any):
        return self._traced_call(
            "callproc",
            self.__wrapped__.callproc,
            args,
            kwargs,
            get_statement_arg(args, kwargs),
        )


# pylint: disable=abstract-method
class TracedPreparedStatement(TracedStatement[CursorT]):
    _kind = "PreparedStatement"
    _traced_extensions = {
        **TracedStatement._traced_extensions,
        "prepare": True,
    }

    def __init__(
        self,
        cursor: CursorT,
        observability: Observability,
        connection: TracedConnection | None = None,
        statement: Any = None,
    ):
        super().__init__(cursor, observability, connection)
        self._self_statement = statement

    def _traced_extension(
        self,
        name: str,
        method: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ):
        if name == "prepare":
            self._self_statement = get_statement_arg(args, kwargs)
        return super()._traced_extension(name, method, args, kwargs)

    def _statement_for(
        self, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        # execute(None, params) runs the prepared statement
        statement = get_statement_arg(args, kwargs)
        if statement is None:
            return self._self_statement
        return statement


def wrap_connection(
    connection: ConnectionT, observability: Observability
) -> TracedConnection[ConnectionT]:
    if isinstance(connection, TracedConnection):
        return connection
    return TracedConnection(connection, observability)


def wrap_statement(
    cursor: CursorT,
    observability: Observability,
    connection: TracedConnection | None = None,
) -> TracedStatement[CursorT]:
    if isinstance(cursor, TracedStatement):
        return cursor
    return TracedStatement(cursor, observability, connection)


def wrap_prepared_statement(
    cursor: CursorT,
    observability: Observability,
    connection: TracedConnection | None = None,
    statement: Any = None,
) -> TracedPreparedStatement[CursorT]:
    if isinstance(cursor, TracedPreparedStatement):
        return cursor
    return TracedPreparedStatement(
        cursor, observability, connection, statement
    )


def wrap_result_set(
    cursor: CursorT, observability: Observability
) -> TracedResultSet[CursorT]:
    if isinstance(cursor, TracedResultSet):
        return cursor
    return TracedResultSet(cursor, observability)


def wrap_result(result: Any, proxy: _TracedProxy):
    """Returns ``result`` with driver cursors wrapped; the proxy itself is
    returned when the driver hands back the object it already wraps."""
    if result is None:
        return None
    if result is proxy.__wrapped__:
        return proxy
    if isinstance(result, wrapt.ObjectProxy) or not _is_cursor(result):
        return result
    return wrap_result_set(result, proxy._self_observability)
