"""Lambda handler serving item-limited podcast feeds."""

import json
import os
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import boto3

from .config import Config
from .fetcher import FeedFetcher
from .logging_config import create_execution_logger, setup_structured_logging
from .models import TranspodError
from .transform import FeedTransformer

setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))

FEED_REQUIRED_MESSAGE = "Feed URL parameter is required"
INVALID_LIMIT_MESSAGE = "Limit must be a positive number"
PROCESSING_FAILED_MESSAGE = "Failed to process podcast feed"

LANDING_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Podcast Feed Transformer</title>
<style>
body { font-family: sans-serif; max-width: 600px; margin: 2rem auto; padding: 0 1rem; }
label { display: block; margin-top: 1rem; font-weight: 600; }
input { width: 100%; padding: 0.5rem; box-sizing: border-box; }
button { margin-top: 1.5rem; padding: 0.5rem 2rem; }
#result { margin-top: 1.5rem; word-break: break-all; }
</style>
</head>
<body>
<h1>Podcast Feed Transformer</h1>
<p>Limit any podcast feed to its most recent episodes.</p>
<form id="feed-form">
<label for="feed">Podcast feed URL</label>
<input type="url" id="feed" required placeholder="https://example.com/podcast.xml">
<label for="limit">Episode limit</label>
<input type="number" id="limit" min="1" value="10">
<button type="submit">Generate feed URL</button>
</form>
<div id="result"></div>
<script>
document.getElementById("feed-form").addEventListener("submit", function (e) {
  e.preventDefault();
  var feed = document.getElementById("feed").value;
  var limit = document.getElementById("limit").value || "10";
  var base = window.location.origin + window.location.pathname;
  document.getElementById("result").textContent =
    base + "?feed=" + encodeURIComponent(feed) + "&limit=" + limit;
});
</script>
</body>
</html>
"""


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Serve a feed truncated to its first ``limit`` items.

    Accepts API Gateway (payload v1 and v2) and function URL events for
    ``GET /?feed=<url>&limit=<n>``. A request without query parameters gets
    the landing page.

    Args:
        event: Lambda event data
        context: Lambda context object

    Returns:
        HTTP response dictionary
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)
    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )

    params = event.get("queryStringParameters") or {}
    if not params:
        main_logger.log_execution_end(success=True, response="landing_page")
        return _response(200, LANDING_PAGE, "text/html; charset=utf-8")

    try:
        config = Config()
    except ValueError as e:
        main_logger.error(f"Invalid configuration: {e}", error=str(e))
        main_logger.log_execution_end(success=False, error=str(e))
        return _json_response(500, {"error": PROCESSING_FAILED_MESSAGE})

    try:
        feed_url, limit = parse_query(params, config.default_limit)
    except ValueError as e:
        main_logger.warning(f"Rejected request: {e}", error=str(e))
        main_logger.log_execution_end(success=False, error=str(e))
        return _json_response(400, {"error": str(e)})

    metrics = {
        "feeds_requested": 1,
        "feed_bytes": 0,
        "items_seen": 0,
        "items_emitted": 0,
        "errors": [],
    }

    try:
        fetcher = FeedFetcher(config.get_fetch_config(), execution_id=execution_id)
        xml_text = fetcher.fetch(feed_url)
        metrics["feed_bytes"] = len(xml_text.encode("utf-8"))

        transformer = FeedTransformer(
            config.get_transform_config(), execution_id=execution_id
        )
        result = transformer.transform_with_stats(
            xml_text, limit, build_self_url(event)
        )
        metrics["items_seen"] = result.items_seen
        metrics["items_emitted"] = result.items_emitted
        main_logger.log_transform(
            feed_url, limit, result.items_seen, result.items_emitted
        )
    except TranspodError as e:
        error_msg = f"Error processing feed: {e}"
        main_logger.error(
            error_msg,
            feed_url=feed_url,
            error_kind=getattr(e.kind, "value", None),
        )
        metrics["errors"].append(error_msg)
    except Exception as e:
        error_msg = f"Unexpected error processing feed: {type(e).__name__}: {e}"
        main_logger.error(error_msg, feed_url=feed_url, error=str(e))
        metrics["errors"].append(error_msg)

    main_logger.log_metrics(metrics)
    metrics_config = config.get_metrics_config()
    if metrics_config.enabled:
        send_cloudwatch_metrics(
            metrics, metrics_config.region, execution_id, metrics_config.namespace
        )

    if metrics["errors"]:
        main_logger.log_execution_end(success=False, metrics=metrics)
        return _json_response(500, {"error": PROCESSING_FAILED_MESSAGE})

    main_logger.log_execution_end(success=True, metrics=metrics)
    return _response(200, result.xml, "application/xml; charset=utf-8")


def parse_query(params: dict[str, str], default_limit: int = 10) -> tuple[str, int]:
    """Validate the ``feed`` and ``limit`` query parameters.

    Raises:
        ValueError: If the feed URL is missing or the limit is not a
            positive integer
    """
    feed_url = (params.get("feed") or "").strip()
    if not feed_url:
        raise ValueError(FEED_REQUIRED_MESSAGE)

    raw_limit = (params.get("limit") or "").strip()
    if not raw_limit:
        return feed_url, default_limit

    # Digits only: int() would also take signs, underscores and non-ASCII digits
    if not (raw_limit.isascii() and raw_limit.isdigit()):
        raise ValueError(INVALID_LIMIT_MESSAGE)
    limit = int(raw_limit)
    if limit < 1:
        raise ValueError(INVALID_LIMIT_MESSAGE)
    return feed_url, limit


def build_self_url(event: dict[str, Any]) -> str:
    """Rebuild the URL this request was made to, or "" if the host is unknown."""
    headers = {key.lower(): value for key, value in (event.get("headers") or {}).items()}
    host = headers.get("host") or event.get("requestContext", {}).get("domainName")
    if not host:
        return ""

    scheme = headers.get("x-forwarded-proto", "https").split(",")[0].strip()
    path = event.get("rawPath") or event.get("path") or "/"

    if "rawQueryString" in event:
        query = event["rawQueryString"]
    else:
        multi = event.get("multiValueQueryStringParameters")
        if multi:
            query = urlencode(
                [(key, value) for key, values in multi.items() for value in values]
            )
        else:
            query = urlencode(event.get("queryStringParameters") or {})

    return f"{scheme}://{host}{path}" + (f"?{query}" if query else "")


def _response(status_code: int, body: str, content_type: str) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": content_type},
        "body": body,
    }


def _json_response(status_code: int, payload: dict[str, Any]) -> dict[str, Any]:
    return _response(status_code, json.dumps(payload), "application/json")


def send_cloudwatch_metrics(
    metrics: dict[str, Any],
    aws_region: str,
    execution_id: str,
    namespace: str = "Transpod",
) -> None:
    """
    Send custom metrics to CloudWatch.

    Args:
        metrics: Dictionary containing execution metrics
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
        namespace: CloudWatch namespace
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        total_errors = len(metrics["errors"])
        execution_success = total_errors == 0
        status_dimension = [
            {"Name": "Status", "Value": "Success" if execution_success else "Failure"}
        ]

        metric_data = [
            {
                "MetricName": "FeedsRequested",
                "Value": metrics["feeds_requested"],
                "Unit": "Count",
            },
            {
                "MetricName": "FeedBytes",
                "Value": metrics["feed_bytes"],
                "Unit": "Bytes",
            },
            {
                "MetricName": "ItemsSeen",
                "Value": metrics["items_seen"],
                "Unit": "Count",
            },
            {
                "MetricName": "ItemsEmitted",
                "Value": metrics["items_emitted"],
                "Unit": "Count",
            },
            {
                "MetricName": "Errors",
                "Value": total_errors,
                "Unit": "Count",
            },
            {
                "MetricName": "ExecutionSuccess",
                "Value": 1 if execution_success else 0,
                "Unit": "Count",
                "Dimensions": status_dimension,
            },
            {
                "MetricName": "ExecutionFailure",
                "Value": 0 if execution_success else 1,
                "Unit": "Count",
                "Dimensions": status_dimension,
            },
        ]

        # CloudWatch accepts at most 20 metrics per call
        batch_size = 20
        for i in range(0, len(metric_data), batch_size):
            batch = metric_data[i : i + batch_size]
            cloudwatch.put_metric_data(Namespace=namespace, MetricData=batch)
            metrics_logger.debug(f"Sent batch of {len(batch)} metrics to CloudWatch")

        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=namespace,
            execution_success=execution_success,
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
