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
Tracking operations and the shared per-connection observability settings.

A :class:`TrackingOperation` measures one driver roundtrip: it owns exactly one
span, becomes the current span while the driver call runs, records the first
failure observed and is closed exactly once, which ends the span and records
the roundtrip duration and call count.

Telemetry is best effort. Failures of the tracing or metrics backend are
logged and never replace or prevent the outcome of the driver call.
"""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from timeit import default_timer
from typing import Any, Iterator

from opentelemetry import trace as trace_api
from opentelemetry.instrumentation.dbapi_roundtrip.options import (
    should_annotate_spans_with_sql,
    should_track_result_set_fetch,
    trace_options,
)
from opentelemetry.metrics import MeterProvider, get_meter
from opentelemetry.semconv.attributes.error_attributes import ERROR_TYPE
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.trace import SpanKind, TracerProvider, get_tracer
from opentelemetry.trace.status import Status, StatusCode

_logger = logging.getLogger(__name__)

_SCHEMA_URL = "https://opentelemetry.io/schemas/1.11.0"

DB_CLIENT_ROUNDTRIP_DURATION = "db.client.roundtrip.duration"
DB_CLIENT_ROUNDTRIP_CALLS = "db.client.roundtrip.calls"

DB_ROUNDTRIP_METHOD = "db.roundtrip.method"
DB_ROUNDTRIP_STATUS = "db.roundtrip.status"

OUTCOME_IN_PROGRESS = "in_progress"
OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


def get_statement(statement: Any) -> str:
    if statement is None:
        return ""
    if isinstance(statement, bytes):
        return statement.decode("utf8", "replace")
    try:
        return str(statement)
    except Exception:  # pylint: disable=broad-except
        _logger.exception("Failed to convert statement to text")
        return ""


class TrackingOperation:
    """A single traced and measured driver roundtrip.

    Operations go through ``created -> active -> (ok | error) -> closed``;
    once closed no further recording happens.
    """

    def __init__(
        self,
        observability: Observability,
        name: str,
        statement: str = "",
    ):
        self.name = name
        self.annotated = bool(statement)
        self.outcome = OUTCOME_IN_PROGRESS
        self._observability = observability
        self._error_type: str | None = None
        self._closed = False
        self._start = default_timer()

        attributes = dict(observability.span_attributes)
        if self.annotated:
            attributes[SpanAttributes.DB_STATEMENT] = statement
        self.span = observability.start_span(name, attributes)

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def activate(self) -> Iterator[trace_api.Span]:
        """Makes the operation's span current until the block exits."""
        with trace_api.use_span(
            self.span,
            end_on_exit=False,
            record_exception=False,
            set_status_on_exception=False,
        ):
            yield self.span

    def record_exception(self, exception: Exception) -> None:
        if self._closed or self.outcome != OUTCOME_IN_PROGRESS:
            return
        self.outcome = OUTCOME_ERROR
        self._error_type = type(exception).__qualname__
        try:
            if self.span.is_recording():
                self.span.record_exception(exception)
                self.span.set_status(
                    Status(
                        StatusCode.ERROR,
                        f"{type(exception).__name__}: {exception}",
                    )
                )
        except Exception:  # pylint: disable=broad-except
            _logger.exception("Failed to record exception on %s", self.name)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.outcome == OUTCOME_IN_PROGRESS:
            self.outcome = OUTCOME_OK
        duration = max(default_timer() - self._start, 0)
        try:
            self.span.end()
        except Exception:  # pylint: disable=broad-except
            _logger.exception("Failed to end span of %s", self.name)
        self._observability.record_roundtrip(
            self.name, duration, self.outcome, self._error_type
        )


class Observability:
    """Settings and instruments shared by every proxy created from one
    root connection. Read-only once the connection attributes are known."""

    def __init__(
        self,
        name: str,
        database_system: str,
        connection_attributes: dict[str, str] | None = None,
        version: str = "",
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
        options: Any = None,
    ):
        if connection_attributes is None:
            self.connection_attributes = {
                "database": "database",
                "port": "port",
                "host": "host",
                "user": "user",
            }
        else:
            self.connection_attributes = connection_attributes
        self._name = name
        self._version = version
        self._tracer = get_tracer(
            self._name,
            instrumenting_library_version=self._version,
            tracer_provider=tracer_provider,
            schema_url=_SCHEMA_URL,
        )
        meter = get_meter(
            self._name,
            self._version,
            meter_provider,
            schema_url=_SCHEMA_URL,
        )
        self._duration_histogram = meter.create_histogram(
            name=DB_CLIENT_ROUNDTRIP_DURATION,
            description="Duration of database driver roundtrips",
            unit="s",
        )
        self._calls_counter = meter.create_counter(
            name=DB_CLIENT_ROUNDTRIP_CALLS,
            description="Number of database driver roundtrips",
            unit="{call}",
        )
        self.options = trace_options(options)
        self.annotate_spans_with_sql = should_annotate_spans_with_sql(
            self.options
        )
        self.track_result_set_fetch = should_track_result_set_fetch(
            self.options
        )
        self.database_system = database_system
        self.database = ""
        self.connection_props: dict[str, Any] = {}
        self.span_attributes: dict[str, Any] = {
            SpanAttributes.DB_SYSTEM: database_system
        }

    def get_connection_attributes(self, connection: object) -> None:
        # Populate span fields using connection
        for key, value in self.connection_attributes.items():
            # Allow attributes nested in connection object
            attribute = functools.reduce(
                lambda attribute, attribute_value: getattr(
                    attribute, attribute_value, None
                ),
                value.split("."),
                connection,
            )
            if attribute:
                self.connection_props[key] = attribute
        database = self.connection_props.get("database", "")
        if isinstance(database, bytes):
            database = database.decode(errors="ignore")
        if database:
            self.database = str(database)
            self.span_attributes[SpanAttributes.DB_NAME] = self.database
        user = self.connection_props.get("user")
        if isinstance(user, bytes):
            user = user.decode()
        if user is not None:
            self.span_attributes[SpanAttributes.DB_USER] = str(user)
        host = self.connection_props.get("host")
        if host is not None:
            self.span_attributes[SpanAttributes.NET_PEER_NAME] = host
        port = self.connection_props.get("port")
        if port is not None:
            self.span_attributes[SpanAttributes.NET_PEER_PORT] = port

    def create_tracking_operation(
        self,
        name: str,
        should_annotate: bool = False,
        statement: Any = None,
    ) -> TrackingOperation:
        """Starts an operation; the statement becomes a span attribute at
        creation time when ``should_annotate`` is set and it is not empty."""
        text = get_statement(statement) if should_annotate else ""
        return TrackingOperation(self, name, text)

    def start_span(
        self, name: str, attributes: dict[str, Any]
    ) -> trace_api.Span:
        try:
            return self._tracer.start_span(
                name, kind=SpanKind.CLIENT, attributes=attributes
            )
        except Exception:  # pylint: disable=broad-except
            _logger.exception("Failed to start span %s", name)
            return trace_api.INVALID_SPAN

    def record_roundtrip(
        self,
        method: str,
        duration: float,
        outcome: str,
        error_type: str | None = None,
    ) -> None:
        attributes = {
            SpanAttributes.DB_SYSTEM: self.database_system,
            DB_ROUNDTRIP_METHOD: method,
            DB_ROUNDTRIP_STATUS: outcome,
        }
        if error_type:
            attributes[ERROR_TYPE] = error_type
        try:
            self._duration_histogram.record(duration, attributes)
            self._calls_counter.add(1, attributes)
        except Exception:  # pylint: disable=broad-except
            _logger.exception("Failed to record metrics of %s", method)
