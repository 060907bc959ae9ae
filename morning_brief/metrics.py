"""CloudWatch metrics for digest cycles."""

from typing import Any

import boto3

from .logging_config import create_execution_logger

NAMESPACE = "Feishu-Morning-Brief"


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics to CloudWatch.

    Failures are logged and never raised.

    Args:
        metrics: Dictionary produced by ``CycleResult.as_metrics``
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        total_errors = len(metrics["errors"])
        execution_success = total_errors == 0
        dimensions = [{"Name": "ExecutionId", "Value": execution_id}]

        counters = [
            ("FeedsProcessed", "feeds_processed"),
            ("ItemsFound", "items_found"),
            ("ItemsNew", "items_new"),
            ("ItemsSaved", "items_saved"),
            ("DestinationsDelivered", "destinations_delivered"),
            ("DestinationsFailed", "destinations_failed"),
            ("ArticlesSent", "articles_sent"),
        ]
        metric_data = [
            {
                "MetricName": name,
                "Value": metrics[key],
                "Unit": "Count",
                "Dimensions": dimensions,
            }
            for name, key in counters
        ]
        status = [{"Name": "Status", "Value": "Success" if execution_success else "Failure"}]
        metric_data += [
            {"MetricName": "Errors", "Value": total_errors, "Unit": "Count", "Dimensions": dimensions},
            {
                "MetricName": "ExecutionSuccess",
                "Value": 1 if execution_success else 0,
                "Unit": "Count",
                "Dimensions": status,
            },
            {
                "MetricName": "ExecutionFailure",
                "Value": 0 if execution_success else 1,
                "Unit": "Count",
                "Dimensions": status,
            },
            {
                "MetricName": "DeduplicationRate",
                "Value": (
                    (metrics["items_found"] - metrics["items_new"]) / max(metrics["items_found"], 1)
                )
                * 100,
                "Unit": "Percent",
                "Dimensions": dimensions,
            },
        ]

        # CloudWatch accepts at most 20 metrics per call
        batch_size = 20
        for i in range(0, len(metric_data), batch_size):
            batch = metric_data[i : i + batch_size]
            cloudwatch.put_metric_data(Namespace=NAMESPACE, MetricData=batch)
            metrics_logger.debug(f"Sent batch of {len(batch)} metrics to CloudWatch")

        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=NAMESPACE,
            execution_success=execution_success,
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
