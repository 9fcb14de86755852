"""
Datasheet Extraction API: Python client example.

Demonstrates:
  1. List the available extraction tasks.
  2. Extract a pinout from a local PDF (sent inline).
  3. Ask a custom question with a caller-supplied schema.
  4. Look up a part at Mouser and extract from its datasheet.

Requirements:
  pip install requests        # or: uv add requests

Usage:
  python examples/python/client.py path/to/datasheet.pdf
"""

from __future__ import annotations

import base64
import sys
from pathlib import Path
from typing import Any

import requests

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

API_BASE = "http://localhost:8000/api/v1"
EXTRACT_TIMEOUT = 900  # first calls upload the PDF; allow for slow models
DISTRIBUTOR = "mouser"
PART_NUMBER = "LM317DCYR"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def list_tasks() -> list[dict[str, Any]]:
    """GET /tasks and return the task catalog."""
    resp = requests.get(f"{API_BASE}/tasks", timeout=10)
    resp.raise_for_status()
    return resp.json()["tasks"]


def extract_file(path: Path, task: str, **options: Any) -> dict[str, Any]:
    """POST /extract with the PDF at *path* encoded inline.

    Args:
        path: Local PDF file.
        task: Task name from ``list_tasks()``.
        **options: ``model``, ``temperature``, ``prompt``,
            ``schema`` or ``no_cache``.

    Returns:
        Parsed ``ExtractionResponse``.

    Raises:
        requests.HTTPError: On non-2xx responses.  A 422 body
            carries the model's last ``raw_output``.
    """
    payload = {
        "task": task,
        "document_base64": base64.b64encode(path.read_bytes()).decode(),
        "filename": path.name,
        **options,
    }
    resp = requests.post(f"{API_BASE}/extract", json=payload, timeout=EXTRACT_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def extract_part(distributor: str, part_number: str, task: str) -> dict[str, Any]:
    """POST /distributors/{d}/parts/{part}/extract/{task}."""
    resp = requests.post(
        f"{API_BASE}/distributors/{distributor}/parts/{part_number}/extract/{task}",
        json={},
        timeout=EXTRACT_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------------------------
# Examples
# ---------------------------------------------------------------------------


def example_tasks() -> None:
    """Print every registered task."""
    print("\n── Tasks ────────────────────────────────────────")
    for task in list_tasks():
        print(f"  {task['name']:<20} {task['description']}")


def example_pinout(path: Path) -> None:
    """Extract the pinout of a local datasheet."""
    print("\n── Pinout extraction ────────────────────────────")
    result = extract_file(path, "pinout")
    if result["not_found"]:
        print(f"No pinout: {result['data'].get('error')}")
        return
    for package in result["data"].get("packages", []):
        pins = package.get("pins", [])
        print(f"  {package.get('package_name')}: {len(pins)} pins")
    print(f"  ({result['attempt_count']} attempt(s), {result['processing_time_ms']} ms)")


def example_custom(path: Path) -> None:
    """Ask a one-off question; the upload is reused from the cache."""
    print("\n── Custom extraction ────────────────────────────")
    result = extract_file(
        path,
        "custom",
        prompt="What is the absolute maximum input voltage?",
        schema={
            "type": "object",
            "properties": {
                "max_input_voltage": {"type": "number"},
                "unit": {"type": "string"},
            },
            "required": ["max_input_voltage", "unit"],
        },
        temperature=0.0,
    )
    print(f"  {result['data']}")


def example_distributor() -> None:
    """Search Mouser and extract power data from a part's datasheet."""
    print("\n── Distributor lookup ───────────────────────────")
    resp = requests.get(
        f"{API_BASE}/distributors/{DISTRIBUTOR}/search",
        params={"q": PART_NUMBER, "exact": "true"},
        timeout=30,
    )
    resp.raise_for_status()
    for part in resp.json()["parts"]:
        print(f"  {part['part_number']}  stock={part['stock']}  {part['description']}")

    result = extract_part(DISTRIBUTOR, PART_NUMBER, "power")
    print(f"  power rails: {len(result['data'].get('power_rails', []))}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: client.py path/to/datasheet.pdf")
    pdf = Path(sys.argv[1])
    example_tasks()
    example_pinout(pdf)
    example_custom(pdf)
    example_distributor()
