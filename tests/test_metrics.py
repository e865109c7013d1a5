"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from sahay.services.metrics import MetricsClient


class TestMetricsRecording:
    """Verify that record_success / record_failure / record_retry buffer the right data."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_record_success_appends_two_data_points(self):
        client = self._make_client()
        client.record_success("supabase", "select doctors", latency_ms=123.4)
        # Should buffer RequestCount + Latency
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"External/RequestCount", "External/Latency"}

    def test_record_failure_appends_count_and_error(self):
        client = self._make_client()
        client.record_failure("anthropic", "reason", error_type="APITimeoutError")
        # No latency point since the default is 0
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"External/RequestCount", "External/ErrorCount"}

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = self._make_client()
        client.record_failure(
            "supabase", "insert appointments",
            error_type="Unavailable", latency_ms=500.0,
        )
        assert len(client._buffer) == 3
        names = {m["MetricName"] for m in client._buffer}
        assert names == {
            "External/RequestCount",
            "External/ErrorCount",
            "External/Latency",
        }

    def test_record_retry_appends_retry_count(self):
        client = self._make_client()
        client.record_retry("supabase", "select appointments", attempt=2)
        assert len(client._buffer) == 1
        metric = client._buffer[0]
        assert metric["MetricName"] == "External/RetryCount"
        dim_map = {d["Name"]: d["Value"] for d in metric["Dimensions"]}
        assert dim_map == {"Service": "supabase", "Operation": "select appointments"}

    def test_success_dimensions_include_service_and_status(self):
        client = self._make_client()
        client.record_success("supabase", "select doctors", latency_ms=50.0)
        count_metric = next(
            m for m in client._buffer
            if m["MetricName"] == "External/RequestCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in count_metric["Dimensions"]}
        assert dim_map["Service"] == "supabase"
        assert dim_map["Status"] == "success"

    def test_failure_dimensions_include_error_type(self):
        client = self._make_client()
        client.record_failure("supabase", "update appointments", error_type="Timeout")
        error_metric = next(
            m for m in client._buffer
            if m["MetricName"] == "External/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map["ErrorType"] == "Timeout"


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_does_not_call_boto3(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            client = MetricsClient()
        client.record_success("supabase", "select doctors", latency_ms=100.0)
        with patch.object(client, "_get_cw_client") as mock_get:
            sent = client.flush()
        assert sent == 0
        mock_get.assert_not_called()

    def test_flush_clears_buffer(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            client = MetricsClient()
        client.record_success("supabase", "select doctors", latency_ms=100.0)
        assert len(client._buffer) == 2
        client.flush()
        assert len(client._buffer) == 0

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()

        mock_cw = MagicMock()
        client._cw_client = mock_cw  # inject mock

        client.record_success("supabase", "select doctors", latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "Sahay"
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_failure_is_logged_not_raised(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_retry("supabase", "select doctors", attempt=1)
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()
        assert client.flush() == 0
