# src/tidecopy/__init__.py
"""
tidecopy: capability-gated bulk copies between local paths and S3 buckets.

Locators such as ``s3://bucket/dir/`` are parsed, checked against a static
table of what each backend supports, expanded into an ordered transfer plan
and executed by a bounded pool of workers with retry and resume.

The primary entry point for programmatic use is the `TransferPipeline` class.
"""

from typing import List

from tidecopy.pipeline import TransferPipeline

__all__: List[str] = ["TransferPipeline"]
