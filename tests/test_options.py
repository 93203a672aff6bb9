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

from unittest import TestCase, mock

from opentelemetry.instrumentation.dbapi_roundtrip.environment_variables import (
    OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS,
)
from opentelemetry.instrumentation.dbapi_roundtrip.options import (
    TraceOption,
    get_trace_options_from_env,
    parse_trace_options,
    should_annotate_spans_with_sql,
    should_track_result_set_fetch,
    trace_options,
)


class TestTraceOptions(TestCase):
    def test_parse_members(self):
        options = parse_trace_options([TraceOption.ANNOTATE_TRACES_WITH_SQL])
        self.assertEqual(
            options, frozenset({TraceOption.ANNOTATE_TRACES_WITH_SQL})
        )
        self.assertIsInstance(options, frozenset)

    def test_parse_names(self):
        options = parse_trace_options(
            " Annotate_Traces_With_SQL , track_result_set_fetch,"
        )
        self.assertEqual(
            options,
            frozenset(
                {
                    TraceOption.ANNOTATE_TRACES_WITH_SQL,
                    TraceOption.TRACK_RESULT_SET_FETCH,
                }
            ),
        )

    def test_parse_unknown_name(self):
        with self.assertLogs(level="WARNING"):
            options = parse_trace_options(["annotate_traces_with_sql", "foo"])
        self.assertEqual(
            options, frozenset({TraceOption.ANNOTATE_TRACES_WITH_SQL})
        )

    def test_parse_none(self):
        self.assertEqual(parse_trace_options(None), frozenset())
        self.assertEqual(parse_trace_options(""), frozenset())

    @mock.patch.dict(
        "os.environ",
        {OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS: "track_result_set_fetch"},
    )
    def test_options_from_env(self):
        self.assertEqual(
            get_trace_options_from_env(),
            frozenset({TraceOption.TRACK_RESULT_SET_FETCH}),
        )
        self.assertEqual(
            trace_options(), frozenset({TraceOption.TRACK_RESULT_SET_FETCH})
        )

    @mock.patch.dict(
        "os.environ",
        {OTEL_PYTHON_DBAPI_ROUNDTRIP_TRACE_OPTIONS: "track_result_set_fetch"},
    )
    def test_explicit_options_override_env(self):
        self.assertEqual(trace_options([]), frozenset())

    @mock.patch.dict("os.environ", {}, clear=True)
    def test_env_unset(self):
        self.assertEqual(trace_options(), frozenset())

    def test_policy(self):
        self.assertFalse(should_annotate_spans_with_sql(frozenset()))
        self.assertFalse(should_track_result_set_fetch(frozenset()))
        options = frozenset(
            {
                TraceOption.ANNOTATE_TRACES_WITH_SQL,
                TraceOption.TRACK_RESULT_SET_FETCH,
            }
        )
        self.assertTrue(should_annotate_spans_with_sql(options))
        self.assertTrue(should_track_result_set_fetch(options))
