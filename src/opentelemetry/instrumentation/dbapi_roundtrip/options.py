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

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import FrozenSet, Iterable, Union

from opentelemetry.instrumentation.dbapi_roundtrip.environment_variables import (
    OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS,
)

_logger = logging.getLogger(__name__)


class TraceOption(Enum):
    """Flags selecting what instrumented connections record."""

    # Attach the query text of query-bearing calls to their spans.
    ANNOTATE_TRACES_WITH_SQL = "annotate_traces_with_sql"
    # Trace row fetches and cursor iteration as roundtrips.
    TRACK_RESULT_SET_FETCH = "track_result_set_fetch"


TraceOptions = FrozenSet[TraceOption]


def _parse_trace_option(value: Union[TraceOption, str]) -> TraceOption | None:
    if isinstance(value, TraceOption):
        return value
    name = str(value).strip().lower()
    if not name:
        return None
    try:
        return TraceOption(name)
    except ValueError:
        _logger.warning("Ignoring unknown trace option %r", value)
        return None


def parse_trace_options(
    options: Union[str, Iterable[Union[TraceOption, str]], None],
) -> TraceOptions:
    """Builds the immutable option set from members, names or a comma
    separated string of names."""
    if options is None:
        return frozenset()
    if isinstance(options, str):
        options = options.split(",")
    parsed = (_parse_trace_option(option) for option in options)
    return frozenset(option for option in parsed if option is not None)


def get_trace_options_from_env() -> TraceOptions:
    """
    Function to get the trace options from the environment variable,
    empty by default
    """
    return parse_trace_options(
        os.getenv(OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS)
    )


def trace_options(
    options: Union[str, Iterable[Union[TraceOption, str]], None] = None,
) -> TraceOptions:
    if options is None:
        return get_trace_options_from_env()
    return parse_trace_options(options)


def should_annotate_spans_with_sql(options: TraceOptions) -> bool:
    return TraceOption.ANNOTATE_TRACES_WITH_SQL in options


def should_track_result_set_fetch(options: TraceOptions) -> bool:
    return TraceOption.TRACK_RESULT_SET_FETCH in options


__all__ = [
    "TraceOption",
    "TraceOptions",
    "get_trace_options_from_env",
    "parse_trace_options",
    "should_annotate_spans_with_sql",
    "should_track_result_set_fetch",
    "trace_options",
]
