import argparse
import sys
import time
from typing import List

import requests

DEFAULT_DASHBOARD_URL = "http://localhost:8000"


def read_urls(path: str) -> List[str]:
    """One URL per line; blank lines and # comments are ignored."""
    with open(path, encoding="utf-8") as f:
        return [
            line.strip()
            for line in f
            if line.strip() and not line.lstrip().startswith("#")
        ]


def submit_batch(base_url: str, urls: List[str], mode: str, include_phones: bool) -> str:
    """Submit URLs to the dashboard and return the new batch id."""
    response = requests.post(
        f"{base_url}/submit-batch",
        json={
            "urls": urls,
            "settings": {"mode": mode, "includePhoneNumbers": include_phones},
        },
        timeout=30,
    )
    response.raise_for_status()
    result = response.json()
    print(result["message"])
    print(f"Batch ID: {result['batchId']}")
    return result["batchId"]


def wait_for_batch(base_url: str, batch_id: str, expected: int, interval: float) -> None:
    """Poll batch status until every URL has at least one result row."""
    while True:
        response = requests.get(
            f"{base_url}/batch-status", params={"batchId": batch_id}, timeout=30
        )
        response.raise_for_status()
        status = response.json()
        processed = status["progress"]["processed"]
        summary = status["summary"]
        print(
            f"{processed}/{expected} processed "
            f"({summary['successful']} ok, {summary['failed']} failed), "
            f"{summary['totalEmails']} emails"
        )
        if processed >= expected:
            return
        time.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Submit a batch of URLs for contact harvesting")
    parser.add_argument("urls", nargs="*", help="URLs to scrape")
    parser.add_argument("-f", "--file", help="File with one URL per line")
    parser.add_argument(
        "--mode", choices=["gentle", "standard", "aggressive"], default="standard"
    )
    parser.add_argument("--phones", action="store_true", help="Also extract phone numbers")
    parser.add_argument("--dashboard-url", default=DEFAULT_DASHBOARD_URL)
    parser.add_argument("--wait", action="store_true", help="Poll until the batch completes")
    parser.add_argument("--interval", type=float, default=10.0)
    args = parser.parse_args()

    urls = list(args.urls)
    if args.file:
        urls.extend(read_urls(args.file))
    if not urls:
        parser.error("no URLs given")

    try:
        batch_id = submit_batch(args.dashboard_url, urls, args.mode, args.phones)
        if args.wait:
            wait_for_batch(args.dashboard_url, batch_id, len(urls), args.interval)
    except requests.RequestException as e:
        print(f"Error calling API: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
