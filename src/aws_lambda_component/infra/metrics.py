"""CloudWatch metrics for a deployed function."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from botocore.exceptions import ClientError

from ..exceptions import ConfigurationError, classify_client_error
from ..models import MetricPoint

logger = logging.getLogger(__name__)

NAMESPACE = "AWS/Lambda"

# Metric name -> statistic
FUNCTION_METRICS = {
    "Invocations": "Sum",
    "Errors": "Sum",
    "Throttles": "Sum",
    "Duration": "Average",
}

# (longest range, period in seconds), checked in order
PERIOD_STEPS = (
    (timedelta(hours=3), 60),
    (timedelta(days=1), 300),
    (timedelta(days=7), 3600),
)
MAX_PERIOD = 86400


def choose_period(start: datetime, end: datetime) -> int:
    """
    Pick a datapoint period that keeps the series readable.

    Raises:
        ConfigurationError: If ``end`` is not after ``start``
    """
    if end <= start:
        raise ConfigurationError(
            f"range end {end.isoformat()} must be after range start {start.isoformat()}"
        )
    span = end - start
    for limit, period in PERIOD_STEPS:
        if span <= limit:
            return period
    return MAX_PERIOD


def build_queries(function_name: str, period: int) -> list[dict[str, Any]]:
    """Build the MetricDataQueries for every function metric."""
    return [
        {
            "Id": metric.lower(),
            "Label": metric,
            "MetricStat": {
                "Metric": {
                    "Namespace": NAMESPACE,
                    "MetricName": metric,
                    "Dimensions": [{"Name": "FunctionName", "Value": function_name}],
                },
                "Period": period,
                "Stat": stat,
            },
            "ReturnData": True,
        }
        for metric, stat in FUNCTION_METRICS.items()
    ]


class MetricsReader:
    """Reads the standard Lambda metrics of one function."""

    def __init__(self, cloudwatch_client: Any) -> None:
        self._cloudwatch = cloudwatch_client

    async def read(
        self, function_name: str, start: datetime, end: datetime
    ) -> dict[str, list[MetricPoint]]:
        """
        Fetch Invocations, Errors, Throttles and Duration for a time range.

        Args:
            function_name: Deployed function name
            start: Range start (inclusive)
            end: Range end (exclusive)

        Returns:
            Metric name -> datapoints sorted by timestamp. Every metric is
            present, with an empty list when there was no activity.

        Raises:
            ConfigurationError: If the range is inverted or empty
            ProviderError: If CloudWatch rejects the query
        """
        period = choose_period(start, end)
        queries = build_queries(function_name, period)
        labels = {query["Id"]: query["Label"] for query in queries}
        series: dict[str, list[MetricPoint]] = {metric: [] for metric in FUNCTION_METRICS}

        kwargs: dict[str, Any] = {
            "MetricDataQueries": queries,
            "StartTime": start,
            "EndTime": end,
            "ScanBy": "TimestampAscending",
        }
        while True:
            try:
                response = await self._cloudwatch.get_metric_data(**kwargs)
            except ClientError as e:
                raise classify_client_error(e, "GetMetricData") from e

            for result in response.get("MetricDataResults", []):
                metric = labels.get(result["Id"])
                if metric is None:
                    continue
                series[metric].extend(
                    MetricPoint(timestamp=ts, value=float(value))
                    for ts, value in zip(result.get("Timestamps", []), result.get("Values", []))
                )

            token = response.get("NextToken")
            if not token:
                break
            kwargs["NextToken"] = token

        for points in series.values():
            points.sort(key=lambda point: point.timestamp)
        logger.debug(
            "Read %d metric series for %s (period %ds)", len(series), function_name, period
        )
        return series
